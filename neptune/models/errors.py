"""Failure taxonomy for a conversation turn.

Every error that ends a turn is rendered as a single ``{"error", "code"}``
event on the stream; the ``code`` lets clients tell a rate limit apart from
an upstream outage without parsing the message.
"""

from typing import Any, Dict, Optional


class TurnError(Exception):
    """Base class for errors surfaced to the client as an error event."""

    code = "turn_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_event(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class TurnValidationError(TurnError):
    code = "validation_error"


class AuthError(TurnError):
    code = "auth_error"


class RateLimitError(TurnError):
    code = "rate_limited"

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after

    def to_event(self) -> Dict[str, Any]:
        event = super().to_event()
        if self.retry_after is not None:
            event["retryAfter"] = self.retry_after
        return event


class ConversationNotFoundError(TurnError):
    code = "conversation_not_found"


class UpstreamError(TurnError):
    """The LLM provider failed before or during streaming."""

    code = "upstream_error"


class ToolExecutionError(TurnError):
    """Raised by tool handlers; always contained to the failing call."""

    code = "tool_error"


class PersistenceError(TurnError):
    code = "persistence_error"


class IdleTimeoutError(TurnError):
    code = "idle_timeout"
