from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class AttachmentType(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    FILE = "file"


class Attachment(BaseModel):
    """File reference uploaded alongside a user message."""

    model_config = ConfigDict(populate_by_name=True)

    type: AttachmentType
    url: str
    name: str
    size: int = Field(..., ge=0)
    mime_type: str = Field(..., alias="mimeType")


class Conversation(BaseModel):
    """Conversation row owned by a single user inside a tenant."""

    id: str
    tenant_id: str
    user_id: str
    title: Optional[str] = None
    message_count: int = 0
    last_message_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Message(BaseModel):
    """Immutable conversation message. Creation order is the only ordering guarantee."""

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    attachments: Optional[List[Attachment]] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
