"""
OpenAI provider implementation.
"""
import logging
from typing import Optional
from openai import AsyncOpenAI, APIConnectionError, APIStatusError, APIError

from app.core.config import OPENAI_API_KEY
from app.llm.provider import LLMProvider, LLMResponse, EmbeddingResponse, ProviderError

logger = logging.getLogger(__name__)


def classify_openai_error(error: APIError) -> ProviderError:
    """
    Translate an OpenAI SDK error into a classified ProviderError.

    Timeouts, connection errors, 429 and 5xx are retryable; every other
    status (400, 401, 403, 404, 422) is not.
    """
    if isinstance(error, APIConnectionError):
        return ProviderError(f"OpenAI connection error: {error}", retryable=True)
    if isinstance(error, APIStatusError):
        status_code = error.status_code
        retryable = status_code == 429 or status_code >= 500
        return ProviderError(f"OpenAI API error {status_code}: {error}", retryable=retryable, status_code=status_code)
    return ProviderError(f"OpenAI error: {error}", retryable=False)


class OpenAIProvider(LLMProvider):
    """OpenAI provider using the official async OpenAI SDK."""

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        """Initialize OpenAI client."""
        self.api_key = api_key or OPENAI_API_KEY
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY not configured")
        # Retries are owned by the invocation gateway, not the SDK
        self.client = AsyncOpenAI(api_key=self.api_key, max_retries=0, timeout=timeout)
        logger.info("OpenAI provider initialized")

    async def complete(
        self,
        prompt: str,
        model: str = "gpt-4o-mini",
        max_tokens: int = 1024,
        temperature: float = 0.2,
        **kwargs
    ) -> LLMResponse:
        """Generate a chat completion for a single user prompt."""
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except APIError as e:
            logger.warning(f"OpenAI API error: {e}")
            raise classify_openai_error(e) from e

        content = response.choices[0].message.content or ""
        usage = response.usage
        return LLMResponse(
            content=content,
            tokens_in=usage.prompt_tokens if usage else None,
            tokens_out=usage.completion_tokens if usage else None,
            model=response.model or model,
            metadata={
                "finish_reason": response.choices[0].finish_reason,
                "request_id": response.id,
            }
        )

    async def embed(self, text: str, model: str = "text-embedding-3-small") -> EmbeddingResponse:
        """Embed a text with the OpenAI embeddings endpoint."""
        try:
            response = await self.client.embeddings.create(model=model, input=text)
        except APIError as e:
            logger.warning(f"OpenAI embeddings error: {e}")
            raise classify_openai_error(e) from e

        usage = response.usage
        return EmbeddingResponse(
            vector=list(response.data[0].embedding),
            tokens_in=usage.prompt_tokens if usage else None,
            model=model,
        )
