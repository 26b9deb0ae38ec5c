"""Drives one assistant turn from inbound request to terminal stream event.

A turn moves through context gathering, a cache check and then either a
paced replay of the cached answer or a bounded loop of model rounds and tool
batches, before the assistant message and conversation counters are
persisted together.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from neptune.completion.base_completion import BaseCompletionModel
from neptune.config import DEFAULT_FALLBACK_RESPONSE
from neptune.database.base_database import BaseConversationStore
from neptune.models.auth import AuthContext
from neptune.models.chat import Attachment, AttachmentType, Conversation, Message, MessageRole
from neptune.models.completion import SamplingParams, ToolCallAccumulator
from neptune.models.errors import IdleTimeoutError, PersistenceError, TurnError, TurnValidationError, UpstreamError
from neptune.models.request import ChatRequest
from neptune.models.tools import ToolCall, ToolContext, ToolExecutionResult
from neptune.services.background import BackgroundTaskQueue
from neptune.services.event_emitter import EventEmitter, StreamHandle
from neptune.services.message_analysis import (
    detect_website_reference,
    forced_tool_choice,
    is_complex_question,
    website_arguments,
    website_directive,
)
from neptune.services.prompts import build_system_prompt
from neptune.services.rate_limiter import RateLimiter
from neptune.services.response_cache import CachedResponse, ResponseCache
from neptune.services.telemetry import TelemetryService
from neptune.services.tool_executor import ToolExecutor, result_payloads, summarize_results
from neptune.tools.registry import ToolRegistry
from neptune.tools.website_tools import ANALYZE_WEBSITE_TOOL

logger = logging.getLogger(__name__)

AuthResolver = Callable[[], Awaitable[AuthContext]]
DocumentExtractor = Callable[[List[Attachment]], Awaitable[Optional[str]]]
LearningHook = Callable[[str, str, str], Awaitable[Any]]

DOCUMENTS_HEADER = "--- Attached Documents ---"
PERSISTENCE_WARNING = "The response was delivered but could not be saved to the conversation history."


def render_user_content(text: str, attachments: Optional[List[Attachment]]) -> Union[str, List[Dict[str, Any]]]:
    """Model-facing content for a user message; images become multi-part content."""
    images = [a for a in attachments or [] if a.type == AttachmentType.IMAGE]
    if not images:
        return text
    parts: List[Dict[str, Any]] = [{"type": "text", "text": text}]
    parts.extend({"type": "image_url", "image_url": {"url": image.url}} for image in images)
    return parts


def render_history(history: List[Message]) -> List[Dict[str, Any]]:
    rendered = []
    for message in history:
        if message.role == MessageRole.USER:
            rendered.append({"role": "user", "content": render_user_content(message.content, message.attachments)})
        elif message.role == MessageRole.ASSISTANT:
            rendered.append({"role": "assistant", "content": message.content})
        # Tool messages are only meaningful next to the tool_calls that produced them
    return rendered


def assistant_tool_message(text: str, calls: List[ToolCall]) -> Dict[str, Any]:
    return {
        "role": "assistant",
        "content": text or None,
        "tool_calls": [
            {"id": call.id, "type": "function", "function": {"name": call.name, "arguments": call.arguments}}
            for call in calls
        ],
    }


def replay_chunks(text: str, words_per_chunk: int) -> List[str]:
    """Split text into small word groups that concatenate back to ``text``."""
    words = text.split(" ")
    chunks = []
    for i in range(0, len(words), words_per_chunk):
        chunk = " ".join(words[i : i + words_per_chunk])
        if i + words_per_chunk < len(words):
            chunk += " "
        chunks.append(chunk)
    return chunks


class TurnOrchestrator:
    """Bounded state machine for a single conversation turn.

    ``start`` opens the stream immediately and runs the turn as its own task;
    everything the client sees goes through the returned handle. A watchdog
    cancels the turn when nothing was emitted for ``idle_timeout`` seconds.
    """

    def __init__(
        self,
        completion_model: BaseCompletionModel,
        store: BaseConversationStore,
        executor: ToolExecutor,
        registry: ToolRegistry,
        emitter: Optional[EventEmitter] = None,
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        background: Optional[BackgroundTaskQueue] = None,
        telemetry: Optional[TelemetryService] = None,
        document_extractor: Optional[DocumentExtractor] = None,
        learning_hook: Optional[LearningHook] = None,
        sampling: Optional[SamplingParams] = None,
        max_rounds: int = 5,
        history_limit: int = 25,
        idle_timeout: float = 30.0,
        replay_chunk_words: int = 3,
        replay_delay: float = 0.01,
        fallback_response: str = DEFAULT_FALLBACK_RESPONSE,
        learning_trigger_message_count: int = 10,
    ):
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.completion_model = completion_model
        self.store = store
        self.executor = executor
        self.registry = registry
        self.emitter = emitter or EventEmitter()
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.background = background or BackgroundTaskQueue()
        self.telemetry = telemetry or TelemetryService()
        self.document_extractor = document_extractor
        self.learning_hook = learning_hook
        self.sampling = sampling or SamplingParams()
        self.max_rounds = max_rounds
        self.history_limit = history_limit
        self.idle_timeout = idle_timeout
        self.replay_chunk_words = replay_chunk_words
        self.replay_delay = replay_delay
        self.fallback_response = fallback_response
        self.learning_trigger_message_count = learning_trigger_message_count

    def start(self, payload: Any, resolve_auth: AuthResolver) -> StreamHandle:
        """Open a stream and run the turn for ``payload`` in the background."""
        handle = self.emitter.open()
        task = asyncio.create_task(self._supervise(handle, payload, resolve_auth), name="assistant-turn")
        handle.attach(task)
        return handle

    async def _supervise(self, handle: StreamHandle, payload: Any, resolve_auth: AuthResolver) -> None:
        turn = asyncio.create_task(self.run_turn(handle, payload, resolve_auth))
        poll_interval = min(1.0, self.idle_timeout / 4)
        try:
            while True:
                done, _ = await asyncio.wait({turn}, timeout=poll_interval)
                if done:
                    break
                if handle.idle_seconds >= self.idle_timeout:
                    logger.warning(f"Turn idle for {self.idle_timeout}s, cancelling")
                    # Error goes out first; the cancelled turn closes the handle on its way out
                    handle.send_error(IdleTimeoutError("The response timed out. Please try again."))
                    turn.cancel()
                    await asyncio.gather(turn, return_exceptions=True)
                    break
        except asyncio.CancelledError:
            # Client went away; stop the model call and any tool work
            turn.cancel()
            await asyncio.gather(turn, return_exceptions=True)
            raise
        finally:
            handle.close()

    async def run_turn(self, handle: StreamHandle, payload: Any, resolve_auth: AuthResolver) -> None:
        """Run one turn against ``handle``. The handle is always closed on return."""
        started = time.monotonic()
        try:
            auth = await resolve_auth()
            request = self._parse_request(payload)
            if self.rate_limiter is not None:
                await self.rate_limiter.check(auth.user_id)

            conversation = await self.store.get_or_create(
                str(request.conversation_id) if request.conversation_id else None,
                auth.tenant_id,
                auth.user_id,
                seed_title=request.message,
                context=request.context_snapshot(),
            )
            handle.send_event({"conversationId": conversation.id})
            logger.info(
                f"Turn started for conversation {conversation.id} "
                f"(tenant={auth.tenant_id}, attachments={len(request.attachments or [])})"
            )

            if not request.has_attachments and self.cache is not None:
                cached = await self.cache.lookup(request.message, auth.tenant_id)
                if cached is not None:
                    await self._replay(handle, request, conversation, cached)
                    return

            await self._generate(handle, request, auth, conversation, started)
        except TurnError as e:
            logger.warning(f"Turn ended with {e.code}: {e.message}")
            handle.send_error(e)
        except Exception as e:
            logger.error(f"Unexpected error during assistant turn: {e}", exc_info=True)
            handle.send_error("An unexpected error occurred. Please try again.")
        finally:
            handle.close()

    def _parse_request(self, payload: Any) -> ChatRequest:
        try:
            return ChatRequest.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first["loc"]) or "request"
            raise TurnValidationError(f"Invalid request: {field}: {first['msg']}") from e

    async def _replay(
        self, handle: StreamHandle, request: ChatRequest, conversation: Conversation, cached: CachedResponse
    ) -> None:
        logger.info(f"Cache hit for conversation {conversation.id}, replaying {len(cached.response)} chars")
        for chunk in replay_chunks(cached.response, self.replay_chunk_words):
            handle.send_content(chunk)
            await asyncio.sleep(self.replay_delay)

        metadata: Dict[str, Any] = {}
        message_id = None
        try:
            await self.store.append_message(conversation.id, MessageRole.USER, request.message)
            assistant = await self.store.complete_turn(
                conversation.id, cached.response, metadata={"cached": True, "toolsUsed": cached.tools_used}
            )
            message_id = assistant.id
        except PersistenceError as e:
            logger.error(f"Failed to persist cached turn for {conversation.id}: {e}")
            metadata["warning"] = PERSISTENCE_WARNING

        handle.close(
            {
                "conversationId": conversation.id,
                "messageId": message_id,
                "toolsExecuted": [],
                "metadata": metadata,
                "cached": True,
            }
        )

    async def _extract_documents(self, request: ChatRequest) -> Optional[str]:
        documents = [a for a in request.attachments or [] if a.type != AttachmentType.IMAGE]
        if not documents or self.document_extractor is None:
            return None
        try:
            return await self.document_extractor(documents)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Document extraction failed, continuing without it: {e}")
            return None

    def _tool_definitions(self, feature: Optional[str], forced_tool: Optional[str]) -> List[Dict[str, Any]]:
        definitions = self.registry.definitions(feature)
        if forced_tool and forced_tool not in {d["function"]["name"] for d in definitions}:
            spec = self.registry.get(forced_tool)
            if spec is not None:
                definitions.append(spec.definition())
        return definitions

    async def _generate(
        self,
        handle: StreamHandle,
        request: ChatRequest,
        auth: AuthContext,
        conversation: Conversation,
        started: float,
    ) -> None:
        history = await self.store.get_history(conversation.id, self.history_limit)

        user_content = request.message
        document_text = await self._extract_documents(request)
        if document_text:
            user_content += f"\n\n{DOCUMENTS_HEADER}\n{document_text}"
        await self.store.append_message(conversation.id, MessageRole.USER, user_content, attachments=request.attachments)

        reasoning = is_complex_question(request.message)
        if reasoning:
            logger.info("Complex question detected, enabling chain-of-thought reasoning")

        model_content = user_content
        forced_url = detect_website_reference(request.message)
        forced_tool = None
        if forced_url and ANALYZE_WEBSITE_TOOL in self.registry:
            forced_tool = ANALYZE_WEBSITE_TOOL
            model_content += website_directive(forced_url)
            logger.info(f"Website reference detected ({forced_url}), forcing {forced_tool}")

        messages: List[Dict[str, Any]] = [{"role": "system", "content": ""}]
        messages.extend(render_history(history))
        messages.append({"role": "user", "content": render_user_content(model_content, request.attachments)})

        tools = self._tool_definitions(request.feature, forced_tool)
        tool_context = ToolContext(
            tenant_id=auth.tenant_id,
            user_id=auth.user_id,
            user_email=auth.email,
            user_name=auth.display_name,
            conversation_id=conversation.id,
        )

        text_parts: List[str] = []
        results: List[ToolExecutionResult] = []
        upstream_error: Optional[UpstreamError] = None
        round_number = 0

        async with self.telemetry.span("assistant.turn", conversation_id=conversation.id, reasoning=reasoning):
            try:
                while round_number < self.max_rounds:
                    round_number += 1
                    first_round = round_number == 1
                    messages[0] = {
                        "role": "system",
                        "content": build_system_prompt(
                            request.feature, request.page, auth.display_name, reasoning=reasoning and first_round
                        ),
                    }
                    completion_request = self.sampling.request(
                        messages,
                        tools,
                        tool_choice=forced_tool_choice() if forced_tool and first_round else None,
                        reasoning=reasoning and first_round,
                    )

                    logger.debug(f"Round {round_number} for conversation {conversation.id}")
                    async with self.telemetry.span("assistant.round", round=round_number):
                        round_text, calls = await self._stream_round(handle, completion_request)
                    text_parts.append(round_text)
                    if first_round and forced_tool and forced_tool not in {call.name for call in calls}:
                        logger.info(f"Model skipped {forced_tool} for {forced_url}, adding the call")
                        forced_call = ToolCall(
                            id=f"forced_{round_number}", name=forced_tool, arguments=website_arguments(forced_url)
                        )
                        calls = calls + [forced_call]
                    if not calls:
                        break

                    handle.send_event({"toolExecution": True, "tools": [call.name for call in calls]})
                    round_results = await self.executor.execute_all(calls, tool_context)
                    handle.send_event({"toolResults": summarize_results(round_results)})
                    results.extend(round_results)

                    messages.append(assistant_tool_message(round_text, calls))
                    messages.extend(result.to_message() for result in round_results)
                else:
                    logger.warning(
                        f"Conversation {conversation.id} hit the limit of {self.max_rounds} tool rounds, "
                        "delivering best-effort answer"
                    )
            except UpstreamError as e:
                upstream_error = e
                handle.send_error(e)

        final_text = "".join(text_parts)
        used_fallback = False
        if upstream_error is not None:
            if not final_text.strip():
                return
        elif not final_text.strip():
            final_text = self.fallback_response
            used_fallback = True
            handle.send_content(final_text)

        tools_executed = [r.name for r in results if r.success]
        terminal_metadata: Dict[str, Any] = {"rounds": round_number, "reasoning": reasoning}
        message_id = None
        try:
            assistant = await self.store.complete_turn(
                conversation.id,
                final_text,
                metadata={"functionCalls": result_payloads(results)} if results else None,
            )
            message_id = assistant.id
        except PersistenceError as e:
            logger.error(f"Failed to persist assistant message for {conversation.id}: {e}")
            terminal_metadata["warning"] = PERSISTENCE_WARNING

        cacheable = (
            upstream_error is None
            and not used_fallback
            and not request.has_attachments
            and not any(r.requires_confirmation for r in results)
        )
        if self.cache is not None and cacheable:
            self.background.submit(
                self.cache.store(
                    request.message,
                    final_text,
                    auth.tenant_id,
                    tools_used=tools_executed,
                    metadata={"conversationId": conversation.id},
                ),
                name="cache-store",
            )

        if self.learning_hook is not None and conversation.message_count >= self.learning_trigger_message_count:
            self.background.submit(
                self.learning_hook(auth.tenant_id, auth.user_id, conversation.id), name="learning-trigger"
            )

        logger.info(
            f"Turn completed for {conversation.id} in {time.monotonic() - started:.2f}s "
            f"(rounds={round_number}, tools={tools_executed})"
        )
        handle.close(
            {
                "conversationId": conversation.id,
                "messageId": message_id,
                "toolsExecuted": tools_executed,
                "metadata": terminal_metadata,
                "cached": False,
            }
        )

    async def _stream_round(self, handle: StreamHandle, request) -> Tuple[str, List[ToolCall]]:
        """Stream one model round, forwarding content and collecting tool calls."""
        accumulator = ToolCallAccumulator()
        parts: List[str] = []
        finish_reason = None
        async for delta in self.completion_model.stream_chat(request):
            if delta.content:
                parts.append(delta.content)
                handle.send_content(delta.content)
            for tool_delta in delta.tool_calls:
                accumulator.add(tool_delta)
            if delta.finish_reason:
                finish_reason = delta.finish_reason

        text = "".join(parts)
        if not len(accumulator):
            return text, []
        if finish_reason not in (None, "tool_calls"):
            logger.warning(
                f"Ignoring {len(accumulator)} tool call fragment(s) from a round that finished with {finish_reason}"
            )
            return text, []
        return text, accumulator.calls()
