from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models.chat import Attachment, Conversation, Message, MessageRole
from ..models.tools import ToolExecutionRecord


class BaseConversationStore(ABC):
    """Base interface for conversation, message and action-history storage."""

    @abstractmethod
    async def initialize(self) -> bool:
        """Create tables if needed. Returns: Success status"""
        pass

    @abstractmethod
    async def get_or_create(
        self,
        conversation_id: Optional[str],
        tenant_id: str,
        user_id: str,
        seed_title: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Conversation:
        """
        Load a conversation owned by the user, or create one when no id is given.

        Raises:
            ConversationNotFoundError: If the id is unknown or belongs to another tenant/user
        """
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: str, tenant_id: str, user_id: str) -> Optional[Conversation]:
        """Return the conversation if it exists and is owned by the user, None otherwise"""
        pass

    @abstractmethod
    async def get_history(self, conversation_id: str, limit: int) -> List[Message]:
        """
        Return the most recent ``limit`` messages in creation order (oldest first).
        """
        pass

    @abstractmethod
    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        attachments: Optional[List[Attachment]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        """Insert an immutable message at the end of the conversation"""
        pass

    @abstractmethod
    async def advance_counters(self, conversation_id: str, delta: int = 2) -> None:
        """Increase message_count by ``delta`` and touch last_message_at"""
        pass

    @abstractmethod
    async def complete_turn(
        self,
        conversation_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        delta: int = 2,
    ) -> Message:
        """
        Insert the assistant message and advance the counters in one transaction.
        """
        pass

    @abstractmethod
    async def record_action(self, record: ToolExecutionRecord) -> bool:
        """Persist a tool execution audit record. Returns: Success status"""
        pass

    @abstractmethod
    async def get_autonomy_preference(self, tenant_id: str, user_id: str, tool_name: str) -> Optional[Dict[str, Any]]:
        """
        Return the learned preference row for a tool, or None when nothing was learned yet.

        Keys: confidence_score (0-100), auto_execute_enabled, approval_count, rejection_count
        """
        pass
