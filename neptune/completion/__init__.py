from neptune.completion.base_completion import BaseCompletionModel
from neptune.completion.litellm_completion import LiteLLMCompletionModel

__all__ = ["BaseCompletionModel", "LiteLLMCompletionModel"]
