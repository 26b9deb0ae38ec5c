from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from neptune.models.chat import Attachment

MAX_MESSAGE_LENGTH = 10000


class ChatContext(BaseModel):
    """Where in the dashboard the user started the conversation."""

    feature: Optional[str] = None
    page: Optional[str] = None


class ChatRequest(BaseModel):
    """Inbound payload for a single conversation turn"""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    conversation_id: Optional[UUID] = Field(None, alias="conversationId")
    attachments: Optional[List[Attachment]] = None
    context: Optional[ChatContext] = None
    # Top-level "feature" wins over context.feature
    requested_feature: Optional[str] = Field(None, alias="feature")

    @field_validator("message")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)

    @property
    def feature(self) -> Optional[str]:
        if self.requested_feature:
            return self.requested_feature
        return self.context.feature if self.context else None

    @property
    def page(self) -> Optional[str]:
        return self.context.page if self.context else None

    def context_snapshot(self) -> Optional[Dict[str, Any]]:
        """Context stored on a new conversation, with the effective feature."""
        snapshot = self.context.model_dump(exclude_none=True) if self.context else {}
        if self.feature:
            snapshot["feature"] = self.feature
        return snapshot or None


class ConfirmActionRequest(BaseModel):
    """Human decision on a tool call the autonomy gate held back."""

    model_config = ConfigDict(populate_by_name=True)

    tool_name: str = Field(..., alias="toolName", min_length=1)
    args: Dict[str, Any] = Field(default_factory=dict)
    approved: bool
    conversation_id: Optional[UUID] = Field(None, alias="conversationId")
