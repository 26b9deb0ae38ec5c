import logging
from typing import Any, AsyncIterator, Dict, List

import litellm

from neptune.config import get_settings
from neptune.models.completion import CompletionDelta, CompletionRequest, ToolCallDelta
from neptune.models.errors import UpstreamError

from .base_completion import BaseCompletionModel

logger = logging.getLogger(__name__)


def parse_stream_chunk(chunk: Any) -> CompletionDelta:
    """Convert a raw LiteLLM streaming chunk into a :class:`CompletionDelta`.

    Chunks without choices (usage-only trailers) become empty deltas.
    """
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return CompletionDelta()

    choice = choices[0]
    delta = getattr(choice, "delta", None)
    finish_reason = getattr(choice, "finish_reason", None)
    if delta is None:
        return CompletionDelta(finish_reason=finish_reason)

    tool_calls: List[ToolCallDelta] = []
    for tc in getattr(delta, "tool_calls", None) or []:
        function = getattr(tc, "function", None)
        tool_calls.append(
            ToolCallDelta(
                index=getattr(tc, "index", 0) or 0,
                id=getattr(tc, "id", None),
                name=getattr(function, "name", None) if function else None,
                arguments=getattr(function, "arguments", None) if function else None,
            )
        )

    return CompletionDelta(
        content=getattr(delta, "content", None) or None,
        tool_calls=tool_calls,
        finish_reason=finish_reason,
    )


class LiteLLMCompletionModel(BaseCompletionModel):
    """
    LiteLLM completion model that streams chat rounds with tool calling.
    Uses registered models from the config file.
    """

    def __init__(self, model_key: str):
        """
        Initialize LiteLLM completion model with a model key from registered_models.

        Args:
            model_key: The key of the model in the registered_models config
        """
        settings = get_settings()
        self.model_key = model_key

        if model_key not in settings.REGISTERED_MODELS:
            raise ValueError(f"Model '{model_key}' not found in registered_models configuration")

        self.model_config = settings.REGISTERED_MODELS[model_key]
        logger.info(f"Initialized LiteLLM completion model with model_key={model_key}, config={self.model_config}")

    def _build_params(self, request: CompletionRequest) -> Dict[str, Any]:
        model_params: Dict[str, Any] = {
            "model": self.model_config["model_name"],
            "messages": request.messages,
            "stream": True,
            "num_retries": 3,
        }
        if request.max_tokens is not None:
            model_params["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            model_params["temperature"] = request.temperature
        if request.frequency_penalty is not None:
            model_params["frequency_penalty"] = request.frequency_penalty
        if request.presence_penalty is not None:
            model_params["presence_penalty"] = request.presence_penalty
        if request.tools:
            model_params["tools"] = request.tools
            model_params["tool_choice"] = request.tool_choice or "auto"

        for key, value in self.model_config.items():
            if key != "model_name":
                model_params[key] = value
        return model_params

    async def stream_chat(self, request: CompletionRequest) -> AsyncIterator[CompletionDelta]:
        """
        Stream one chat round through LiteLLM.

        Args:
            request: Messages, tool schemas and sampling parameters for the round

        Yields:
            CompletionDelta objects carrying content and tool-call fragments
        """
        model_params = self._build_params(request)
        logger.debug(
            f"Calling LiteLLM stream with model={model_params['model']}, "
            f"messages={len(request.messages)}, tools={len(request.tools)}"
        )

        try:
            response = await litellm.acompletion(**model_params)
            async for chunk in response:
                yield parse_stream_chunk(chunk)
        except UpstreamError:
            raise
        except Exception as e:
            logger.error(f"LiteLLM streaming failed for model {self.model_key}: {e}")
            raise UpstreamError(f"Completion provider error: {e}") from e
