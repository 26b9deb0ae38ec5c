import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from neptune.auth_utils import decode_authorization, verify_token
from neptune.database.base_database import BaseConversationStore
from neptune.dependencies import get_conversation_store, get_orchestrator, get_response_cache, get_tool_executor
from neptune.models.auth import AuthContext
from neptune.models.chat import Message
from neptune.models.errors import PersistenceError
from neptune.models.request import ConfirmActionRequest
from neptune.models.tools import ToolContext
from neptune.services.response_cache import ResponseCache
from neptune.services.telemetry import get_telemetry_service
from neptune.services.tool_executor import ToolExecutor
from neptune.services.turn_orchestrator import TurnOrchestrator

# ---------------------------------------------------------------------------
# Router initialisation & shared singletons
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/assistant", tags=["Assistant"])
logger = logging.getLogger(__name__)
telemetry = get_telemetry_service()

STREAM_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}

# ---------------------------------------------------------------------------
# /assistant/chat
# ---------------------------------------------------------------------------


@router.post("/chat")
async def chat(
    request: Request,
    authorization: Optional[str] = Header(None),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Stream one assistant turn as server-sent events.

    The body is read raw and validated inside the turn, and the session is
    resolved there too, so every failure reaches the client as an error event
    on an already-open stream.
    """
    try:
        payload: Any = await request.json()
    except ValueError:
        payload = None

    async def resolve_auth() -> AuthContext:
        return decode_authorization(authorization)

    handle = orchestrator.start(payload, resolve_auth)
    return StreamingResponse(handle.frames(), media_type="text/event-stream", headers=STREAM_HEADERS)


# ---------------------------------------------------------------------------
# /assistant/conversations
# ---------------------------------------------------------------------------


@router.get("/conversations/{conversation_id}/messages", response_model=List[Message])
@telemetry.track(operation_type="get_conversation_messages")
async def get_conversation_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=500),
    auth: AuthContext = Depends(verify_token),
    store: BaseConversationStore = Depends(get_conversation_store),
) -> List[Message]:
    """Return the most recent messages of a conversation owned by the caller."""
    try:
        conversation = await store.get_conversation(conversation_id, auth.tenant_id, auth.user_id)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        return await store.get_history(conversation.id, limit)
    except PersistenceError as e:
        logger.error(f"Error loading messages for {conversation_id}: {e}")
        raise HTTPException(status_code=500, detail=e.message)


# ---------------------------------------------------------------------------
# /assistant/actions/confirm
# ---------------------------------------------------------------------------


@router.post("/actions/confirm")
@telemetry.track(operation_type="confirm_action")
async def confirm_action(
    request: ConfirmActionRequest,
    auth: AuthContext = Depends(verify_token),
    executor: ToolExecutor = Depends(get_tool_executor),
    store: BaseConversationStore = Depends(get_conversation_store),
) -> Dict[str, Any]:
    """Run or reject a tool call that was held for confirmation.

    The decision is audited either way so the learning service can adjust
    its confidence for this tool and user.
    """
    conversation_id = None
    if request.conversation_id:
        try:
            conversation = await store.get_conversation(str(request.conversation_id), auth.tenant_id, auth.user_id)
        except PersistenceError as e:
            raise HTTPException(status_code=500, detail=e.message)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        conversation_id = conversation.id

    context = ToolContext(
        tenant_id=auth.tenant_id,
        user_id=auth.user_id,
        user_email=auth.email,
        user_name=auth.display_name,
        conversation_id=conversation_id,
    )
    result = await executor.execute_confirmed(request.tool_name, request.args, context, request.approved)
    logger.info(f"Action {request.tool_name} {'approved' if request.approved else 'rejected'} by {auth.user_id}")
    return {
        "toolName": request.tool_name,
        "approved": request.approved,
        "result": result.model_dump(exclude_none=True),
    }


# ---------------------------------------------------------------------------
# /assistant/cache
# ---------------------------------------------------------------------------


@router.get("/cache")
async def get_cache_stats(
    auth: AuthContext = Depends(verify_token),
    cache: ResponseCache = Depends(get_response_cache),
) -> Dict[str, Any]:
    return await cache.stats(auth.tenant_id)


@router.delete("/cache")
@telemetry.track(operation_type="invalidate_cache")
async def invalidate_cache(
    auth: AuthContext = Depends(verify_token),
    cache: ResponseCache = Depends(get_response_cache),
) -> Dict[str, Any]:
    """Drop every cached response for the caller's tenant."""
    removed = await cache.invalidate(auth.tenant_id)
    return {"status": "ok", "removed": removed}
