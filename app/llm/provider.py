"""
LLM Provider interface for abstracting LLM implementations.
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field


@dataclass
class LLMResponse:
    """Standardized LLM response.

    Token counts are None when the provider did not report them.
    """
    content: str
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    model: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EmbeddingResponse:
    """Embedding vector for a single text."""
    vector: List[float]
    tokens_in: Optional[int] = None
    model: str = ""


class ProviderError(Exception):
    """
    Failure reported by a remote provider, already classified.

    Args:
        message: Error description
        retryable: Whether repeating the same call may succeed
        status_code: HTTP status from the provider, if any
    """

    def __init__(self, message: str, retryable: bool, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        model: str,
        max_tokens: int = 1024,
        temperature: float = 0.2,
        **kwargs
    ) -> LLMResponse:
        """
        Generate a completion for a single user prompt.

        Args:
            prompt: Prompt text
            model: Model identifier
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            **kwargs: Additional provider-specific parameters

        Returns:
            LLMResponse with content and token usage

        Raises:
            ProviderError: On any remote failure
        """
        pass

    @abstractmethod
    async def embed(self, text: str, model: str) -> EmbeddingResponse:
        """
        Embed a text for vector search.

        Raises:
            ProviderError: On any remote failure
        """
        pass
