import logging
import uuid
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text, func, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from neptune.config import get_settings

from ..models.chat import Attachment, Conversation, Message, MessageRole
from ..models.errors import ConversationNotFoundError, PersistenceError
from ..models.tools import ToolExecutionRecord
from .base_database import BaseConversationStore

logger = logging.getLogger(__name__)
Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

TITLE_LENGTH = 50


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConversationModel(Base):
    """SQLAlchemy model for assistant conversations."""

    __tablename__ = "ai_conversations"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    title = Column(String, nullable=True)
    message_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime(timezone=True), default=_utcnow)
    context = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_conversation_owner", "tenant_id", "user_id"),)


class MessageModel(Base):
    """SQLAlchemy model for conversation messages."""

    __tablename__ = "ai_messages"

    id = Column(String, primary_key=True)
    conversation_id = Column(String, nullable=False)
    # Creation order within the conversation
    position = Column(Integer, nullable=False)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    attachments = Column(JSONType, nullable=True)
    message_metadata = Column("metadata", JSONType, nullable=True)  # 'metadata' is reserved on declarative models
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_message_conversation_position", "conversation_id", "position", unique=True),)


class ActionHistoryModel(Base):
    """SQLAlchemy model for tool execution audit records."""

    __tablename__ = "ai_action_history"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    tool_name = Column(String, nullable=False)
    was_automatic = Column(Boolean, nullable=False, default=False)
    user_approved = Column(Boolean, nullable=True)
    execution_time_ms = Column(Integer, nullable=False, default=0)
    result_status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_action_history_owner_tool", "tenant_id", "user_id", "tool_name"),)


class AutonomyPreferenceModel(Base):
    """Learned per-user autonomy preference. Written by the learning service, read here."""

    __tablename__ = "ai_autonomy_preferences"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    tool_name = Column(String, nullable=False)
    confidence_score = Column(Integer, nullable=False, default=0)
    approval_count = Column(Integer, nullable=False, default=0)
    rejection_count = Column(Integer, nullable=False, default=0)
    auto_execute_enabled = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_autonomy_owner_tool", "tenant_id", "user_id", "tool_name", unique=True),)


def _conversation_from_model(model: ConversationModel) -> Conversation:
    return Conversation(
        id=model.id,
        tenant_id=model.tenant_id,
        user_id=model.user_id,
        title=model.title,
        message_count=model.message_count or 0,
        last_message_at=model.last_message_at,
        context=model.context or {},
        created_at=model.created_at,
    )


def _message_from_model(model: MessageModel) -> Message:
    return Message(
        id=model.id,
        conversation_id=model.conversation_id,
        role=MessageRole(model.role),
        content=model.content,
        attachments=[Attachment(**att) for att in model.attachments] if model.attachments else None,
        metadata=model.message_metadata,
        created_at=model.created_at,
    )


def title_from_message(message: str) -> str:
    """Conversation title derived from the first user message."""
    return message[:TITLE_LENGTH] + ("..." if len(message) > TITLE_LENGTH else "")


class PostgresConversationStore(BaseConversationStore):
    """PostgreSQL implementation of the conversation store."""

    def __init__(
        self,
        uri: str,
    ):
        """Initialize the async engine for conversation storage."""
        if uri.startswith("sqlite"):
            # Single shared connection so in-memory databases survive across sessions
            self.engine = create_async_engine(
                uri, poolclass=StaticPool, connect_args={"check_same_thread": False}, echo=False
            )
        else:
            settings = get_settings()
            logger.info(
                f"Initializing PostgreSQL connection pool with size={settings.DB_POOL_SIZE}, "
                f"max_overflow={settings.DB_MAX_OVERFLOW}, pool_recycle={settings.DB_POOL_RECYCLE}s"
            )
            self.engine = create_async_engine(
                uri,
                pool_pre_ping=settings.DB_POOL_PRE_PING,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_recycle=settings.DB_POOL_RECYCLE,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                echo=False,
            )
        self.async_session = sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        self._initialized = False

    async def initialize(self) -> bool:
        """Initialize database tables and indexes."""
        if self._initialized:
            return True

        try:
            logger.info("Initializing conversation store tables and indexes...")
            async with self.engine.begin() as conn:
                await conn.run_sync(lambda conn: Base.metadata.create_all(conn, checkfirst=True))
            logger.info("Created database tables successfully")
            self._initialized = True
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error initializing conversation store: {e}")
            return False

    async def close(self) -> None:
        await self.engine.dispose()

    async def get_or_create(
        self,
        conversation_id: Optional[str],
        tenant_id: str,
        user_id: str,
        seed_title: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Conversation:
        if conversation_id:
            conversation = await self.get_conversation(conversation_id, tenant_id, user_id)
            if conversation is None:
                raise ConversationNotFoundError("Conversation not found")
            return conversation

        now = _utcnow()
        model = ConversationModel(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            user_id=user_id,
            title=title_from_message(seed_title),
            message_count=0,
            last_message_at=now,
            context={**(context or {}), "timestamp": now.isoformat()},
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.async_session() as session:
                session.add(model)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error creating conversation for user {user_id}: {e}")
            raise PersistenceError("Failed to create conversation") from e

        logger.debug(f"Created conversation {model.id} for tenant {tenant_id}")
        return _conversation_from_model(model)

    async def get_conversation(self, conversation_id: str, tenant_id: str, user_id: str) -> Optional[Conversation]:
        try:
            async with self.async_session() as session:
                model = await session.get(ConversationModel, conversation_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading conversation {conversation_id}: {e}")
            raise PersistenceError("Failed to load conversation") from e

        # Ownership mismatch is indistinguishable from a missing row
        if model is None or model.tenant_id != tenant_id or model.user_id != user_id:
            return None
        return _conversation_from_model(model)

    async def get_history(self, conversation_id: str, limit: int) -> List[Message]:
        try:
            async with self.async_session() as session:
                query = (
                    select(MessageModel)
                    .where(MessageModel.conversation_id == conversation_id)
                    .order_by(MessageModel.position.desc())
                    .limit(limit)
                )
                result = await session.execute(query)
                models = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error loading history for conversation {conversation_id}: {e}")
            raise PersistenceError("Failed to load conversation history") from e

        models.reverse()
        return [_message_from_model(m) for m in models]

    async def _insert_message(
        self,
        session: AsyncSession,
        conversation_id: str,
        role: MessageRole,
        content: str,
        attachments: Optional[List[Attachment]],
        metadata: Optional[Dict[str, Any]],
    ) -> MessageModel:
        result = await session.execute(
            select(func.coalesce(func.max(MessageModel.position), 0)).where(
                MessageModel.conversation_id == conversation_id
            )
        )
        position = (result.scalar() or 0) + 1
        model = MessageModel(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            position=position,
            role=role.value,
            content=content,
            attachments=[att.model_dump(by_alias=True) for att in attachments] if attachments else None,
            message_metadata=metadata,
            created_at=_utcnow(),
        )
        session.add(model)
        return model

    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        attachments: Optional[List[Attachment]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        try:
            async with self.async_session() as session:
                model = await self._insert_message(session, conversation_id, role, content, attachments, metadata)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error appending {role.value} message to conversation {conversation_id}: {e}")
            raise PersistenceError("Failed to save message") from e
        return _message_from_model(model)

    def _counter_update(self, conversation_id: str, delta: int):
        now = _utcnow()
        return (
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(
                message_count=ConversationModel.message_count + delta,
                last_message_at=now,
                updated_at=now,
            )
        )

    async def advance_counters(self, conversation_id: str, delta: int = 2) -> None:
        try:
            async with self.async_session() as session:
                await session.execute(self._counter_update(conversation_id, delta))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error advancing counters for conversation {conversation_id}: {e}")
            raise PersistenceError("Failed to update conversation") from e

    async def complete_turn(
        self,
        conversation_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        delta: int = 2,
    ) -> Message:
        try:
            async with self.async_session() as session:
                async with session.begin():
                    model = await self._insert_message(
                        session, conversation_id, MessageRole.ASSISTANT, content, None, metadata
                    )
                    await session.execute(self._counter_update(conversation_id, delta))
        except SQLAlchemyError as e:
            logger.error(f"Error completing turn for conversation {conversation_id}: {e}")
            raise PersistenceError("Failed to save assistant message") from e
        return _message_from_model(model)

    async def record_action(self, record: ToolExecutionRecord) -> bool:
        try:
            async with self.async_session() as session:
                session.add(
                    ActionHistoryModel(
                        id=str(uuid.uuid4()),
                        tenant_id=record.tenant_id,
                        user_id=record.user_id,
                        tool_name=record.tool_name,
                        was_automatic=record.was_automatic,
                        user_approved=record.user_approved,
                        execution_time_ms=record.execution_time_ms,
                        result_status=record.result_status,
                        created_at=record.recorded_at,
                    )
                )
                await session.commit()
                return True
        except SQLAlchemyError as e:
            logger.error(f"Error recording action {record.tool_name}: {e}")
            return False

    async def get_autonomy_preference(self, tenant_id: str, user_id: str, tool_name: str) -> Optional[Dict[str, Any]]:
        async with self.async_session() as session:
            result = await session.execute(
                select(AutonomyPreferenceModel).where(
                    AutonomyPreferenceModel.tenant_id == tenant_id,
                    AutonomyPreferenceModel.user_id == user_id,
                    AutonomyPreferenceModel.tool_name == tool_name,
                )
            )
            model = result.scalar_one_or_none()

        if model is None:
            return None
        return {
            "confidence_score": model.confidence_score,
            "auto_execute_enabled": model.auto_execute_enabled,
            "approval_count": model.approval_count,
            "rejection_count": model.rejection_count,
        }
