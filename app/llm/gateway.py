"""
Model invocation gateway.

Builds the kind-specific prompt, calls the remote model with bounded
exponential backoff, and turns the untyped answer into a validated payload.
Quota and auditing are handled by the caller (app.services.ai_gateway).
"""
import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.core.clock import utcnow
from app.core.config import (
    AI_MODEL,
    AI_EMBEDDING_MODEL,
    AI_MAX_RETRIES,
    AI_RETRY_BASE_DELAY_SECONDS,
    AI_REQUEST_TIMEOUT_SECONDS,
)
from app.core.exceptions import ParseError, RemoteUnavailable
from app.llm.pricing import estimate_cost
from app.llm.prompts import PROMPT_BUILDERS
from app.llm.provider import LLMProvider, ProviderError
from app.llm.vector_search import VectorSearchClient
from app.schemas.ai import RESPONSE_MODELS, SemanticSearchRequest

logger = logging.getLogger(__name__)

# Completion budget per operation kind; also the pre-check estimate before any call of that kind
KIND_MAX_TOKENS: Dict[str, int] = {
    "sentiment": 300,
    "categorization": 400,
    "suggestion": 1000,
    "summarization": 1500,
    "scheduling": 600,
    "insights": 2000,
    "semantic_search": 0,
}

CHARS_PER_TOKEN = 4

_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


def count_tokens(text: str) -> int:
    """Approximate token count used when the API reports none."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def strip_code_fence(text: str) -> str:
    """Remove one markdown code fence wrapping the whole answer, if present."""
    match = _CODE_FENCE.match(text)
    return match.group(1) if match else text.strip()


def is_retryable(error: BaseException) -> bool:
    """Timeouts, connection failures and provider errors marked retryable."""
    if isinstance(error, ProviderError):
        return error.retryable
    return isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError))


@dataclass
class RawResponse:
    """Unvalidated answer of one successful remote invocation."""
    kind: str
    text: str
    model: str
    tokens_in: int
    tokens_out: int
    cost: float
    attempts: int
    request_size: int
    tokens_reported: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.tokens_in + self.tokens_out

    @property
    def response_size(self) -> int:
        return len(self.text.encode("utf-8"))


class ModelInvocationGateway:
    """
    Remote model calls with retry, timeout and response validation.

    Args:
        provider: LLM provider used for completions and embeddings
        vector_search: Vector search client, required for semantic search
        model: Chat model for completion kinds
        embedding_model: Model used to embed semantic search queries
        max_retries: Retries after the first attempt
        base_delay: Backoff base in seconds; delay before retry n is base_delay * 2**(n-1)
        timeout: Per-attempt timeout in seconds
        sleep: Awaitable sleep used between attempts
        clock: Source of the current naive UTC time
    """

    def __init__(
        self,
        provider: LLMProvider,
        vector_search: Optional[VectorSearchClient] = None,
        model: str = AI_MODEL,
        embedding_model: str = AI_EMBEDDING_MODEL,
        max_retries: int = AI_MAX_RETRIES,
        base_delay: float = AI_RETRY_BASE_DELAY_SECONDS,
        timeout: float = AI_REQUEST_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.vector_search = vector_search
        self.model = model
        self.embedding_model = embedding_model
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.timeout = timeout
        self.sleep = sleep
        self.clock = clock
        self._last_output_tokens: Dict[str, int] = {}

    def model_for(self, kind: str) -> str:
        return self.embedding_model if kind == "semantic_search" else self.model

    def build_prompt(self, request: BaseModel, now: Optional[datetime] = None) -> str:
        builder = PROMPT_BUILDERS[request.kind]
        return builder(request, now or self.clock())

    def estimate_tokens(self, request: BaseModel) -> int:
        """
        Conservative token estimate for the quota pre-check.

        Prompt tokens plus the output size last observed for this kind, or the
        kind's completion budget before any call of that kind has completed.
        """
        prompt_tokens = count_tokens(self.build_prompt(request))
        expected_output = self._last_output_tokens.get(request.kind, KIND_MAX_TOKENS[request.kind])
        return prompt_tokens + expected_output

    async def invoke(
        self,
        request: BaseModel,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RawResponse:
        """
        Call the remote model for a request, retrying transient failures.

        Args:
            request: One of the InvocationRequest models
            user_id: Requesting user; scopes semantic search results
            now: Current time used in time-sensitive prompts

        Raises:
            RemoteUnavailable: Retries exhausted or a non-retryable remote error
        """
        kind = request.kind
        if isinstance(request, SemanticSearchRequest) and not user_id:
            raise ValueError("semantic search requires a user_id")
        prompt = self.build_prompt(request, now)
        attempts = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2),
            retry=retry_if_exception(is_retryable),
            sleep=self.sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    raw = await asyncio.wait_for(self._call_remote(request, prompt, user_id), timeout=self.timeout)
        except ProviderError as e:
            logger.error(f"{kind} invocation failed after {attempts} attempt(s): {e}")
            raise RemoteUnavailable(
                f"AI service unavailable: {e}",
                attempts=attempts,
                rate_limited=e.rate_limited,
                retryable=e.retryable,
            ) from e
        except (asyncio.TimeoutError, TimeoutError, ConnectionError) as e:
            logger.error(f"{kind} invocation failed after {attempts} attempt(s): {type(e).__name__}")
            raise RemoteUnavailable(
                f"AI service unavailable: {type(e).__name__}",
                attempts=attempts,
            ) from e

        raw.attempts = attempts
        self._last_output_tokens[kind] = raw.tokens_out
        logger.debug(
            f"{kind} invocation succeeded: attempts={attempts}, "
            f"tokens_in={raw.tokens_in}, tokens_out={raw.tokens_out}, cost=${raw.cost:.6f}"
        )
        return raw

    async def _call_remote(self, request: BaseModel, prompt: str, user_id: Optional[str]) -> RawResponse:
        if isinstance(request, SemanticSearchRequest):
            return await self._search(request, prompt, user_id)

        model = self.model_for(request.kind)
        response = await self.provider.complete(
            prompt,
            model=model,
            max_tokens=KIND_MAX_TOKENS[request.kind],
        )
        reported = response.tokens_in is not None and response.tokens_out is not None
        tokens_in = response.tokens_in if response.tokens_in is not None else count_tokens(prompt)
        tokens_out = response.tokens_out if response.tokens_out is not None else count_tokens(response.content)
        return RawResponse(
            kind=request.kind,
            text=response.content,
            model=response.model or model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost=estimate_cost(model, tokens_in, tokens_out),
            attempts=0,
            request_size=len(prompt.encode("utf-8")),
            tokens_reported=reported,
            metadata=dict(response.metadata),
        )

    async def _search(self, request: SemanticSearchRequest, prompt: str, user_id: str) -> RawResponse:
        if self.vector_search is None:
            raise ProviderError("Vector search is not configured", retryable=False)

        embedding = await self.provider.embed(prompt, model=self.embedding_model)
        hits = await self.vector_search.query(
            embedding.vector,
            user_id=user_id,
            conversation_ids=request.conversation_ids or None,
            limit=request.limit,
        )
        text = json.dumps({"matches": hits}, default=str)
        tokens_in = embedding.tokens_in if embedding.tokens_in is not None else count_tokens(prompt)
        return RawResponse(
            kind=request.kind,
            text=text,
            model=self.embedding_model,
            tokens_in=tokens_in,
            tokens_out=0,
            cost=estimate_cost(self.embedding_model, tokens_in, 0),
            attempts=0,
            request_size=len(prompt.encode("utf-8")),
            tokens_reported=embedding.tokens_in is not None,
            metadata={"hits": len(hits)},
        )

    def parse_and_validate(self, raw_text: str, kind: str, now: Optional[datetime] = None) -> BaseModel:
        """
        Parse the model's answer into the payload model for its kind.

        Raises:
            ParseError: Not JSON, wrong shape, or an invariant does not hold
        """
        model = RESPONSE_MODELS[kind]
        text = strip_code_fence(raw_text)
        try:
            return model.model_validate_json(text, strict=True, context={"now": now or self.clock()})
        except ValidationError as e:
            errors = e.errors(include_url=False, include_context=False, include_input=False)
            logger.warning(f"Invalid {kind} response: {e.error_count()} validation error(s)")
            raise ParseError(f"Invalid {kind} response from AI service", kind=kind, errors=errors) from e

    async def is_healthy(self) -> bool:
        """One minimal completion; False on any failure."""
        try:
            await asyncio.wait_for(
                self.provider.complete("ping", model=self.model, max_tokens=1, temperature=0),
                timeout=self.timeout,
            )
            return True
        except Exception as e:
            logger.warning(f"AI health check failed: {e}")
            return False
