from abc import ABC, abstractmethod
from typing import AsyncIterator

from neptune.models.completion import CompletionDelta, CompletionRequest


class BaseCompletionModel(ABC):
    """Base class for streaming chat completion models"""

    @abstractmethod
    def stream_chat(self, request: CompletionRequest) -> AsyncIterator[CompletionDelta]:
        """Stream content and tool-call deltas for one model round.

        Implementations raise :class:`neptune.models.errors.UpstreamError`
        when the provider fails before or during streaming.
        """
        pass
