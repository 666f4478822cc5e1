"""Generation backends for Supervision Helper."""

from .base import BaseGenerationBackend
from .gemini_backend import GeminiBackend
from .openai_backend import OpenAIBackend
from .retry import RetryingInvoker


def create_backend(backend: str, **kwargs) -> BaseGenerationBackend:
    """Factory function to create a generation backend.

    Args:
        backend: Either "gemini" or "openai"
        **kwargs: Backend-specific configuration

    Returns:
        Configured backend instance
    """
    backends = {
        "gemini": GeminiBackend,
        "openai": OpenAIBackend,
    }

    if backend not in backends:
        raise ValueError(f"Unknown backend: {backend}. Available: {list(backends.keys())}")

    return backends[backend](**kwargs)


__all__ = [
    "BaseGenerationBackend",
    "GeminiBackend",
    "OpenAIBackend",
    "RetryingInvoker",
    "create_backend",
]
