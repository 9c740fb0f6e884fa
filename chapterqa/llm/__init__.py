"""LLM transport, caching, and prompt helpers.

Stage components (`FocusedRetriever`, `ChapterCompressor`, `CompletionInvoker`,
`NoteTaker`) live in their own modules and are imported from there.
"""

from .cache import ResponseCache
from .completion import CompletionService, OpenAICompletionService
from .openai_client import OpenAIChatClient, OpenAIProviderError
from .prompts import PromptLibrary
from .rate_limiter import RateLimiter

__all__ = [
    "CompletionService",
    "OpenAIChatClient",
    "OpenAICompletionService",
    "OpenAIProviderError",
    "PromptLibrary",
    "RateLimiter",
    "ResponseCache",
]
