"""
AI gateway facade.

The only entry point callers use for AI operations. Every invocation goes
through the same sequence:

    quota pre-check (reserves the estimate)
      -> remote invocation with retries
      -> parse and validate
      -> exactly one audit entry
      -> commit actual usage (or release the reservation)
      -> return the payload or raise a GatewayError

Audit happens before commit, and commit before return, so a caller never
sees a result whose cost has not been recorded.
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.clock import utcnow
from app.core.config import (
    AI_AUDIT_RETENTION_DAYS,
    AI_RATE_LIMIT_COOLDOWN_SECONDS,
    QDRANT_URL,
    QDRANT_COLLECTION,
)
from app.core.exceptions import Denied, ParseError, RemoteUnavailable
from app.db.models.ai_usage_log import AIUsageLog, UsageStatus
from app.llm.gateway import ModelInvocationGateway
from app.llm.openai_provider import OpenAIProvider
from app.llm.provider import LLMProvider
from app.llm.vector_search import VectorSearchClient, QdrantVectorSearch
from app.schemas.ai import (
    SentimentRequest,
    CategorizationRequest,
    SuggestionRequest,
    SummarizationRequest,
    SchedulingRequest,
    InsightsRequest,
    SemanticSearchRequest,
)
from app.services.quota_ledger import QuotaLedger, UserLockRegistry
from app.services.rate_limit_gate import RateLimitGate
from app.services.usage_audit import UsageAuditLog

logger = logging.getLogger(__name__)


class AIGateway:
    """
    Quota-checked, audited AI operations.

    Args:
        ledger: Per-user quota accounting
        rate_limit_gate: Short-term throttle, tripped when the remote rate-limits us
        gateway: Remote model invocation and response validation
        audit: Usage audit log
        clock: Source of the current naive UTC time
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        rate_limit_gate: RateLimitGate,
        gateway: ModelInvocationGateway,
        audit: UsageAuditLog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.rate_limit_gate = rate_limit_gate
        self.gateway = gateway
        self.audit = audit
        self.clock = clock

    async def invoke(
        self,
        user_id: str,
        request: BaseModel,
        token_estimate: Optional[int] = None,
        message_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> BaseModel:
        """
        Run one AI operation for a user.

        Args:
            user_id: Requesting user
            request: One of the InvocationRequest models
            token_estimate: Expected total tokens; defaults to the gateway's estimate
            message_id: Correlation id; defaults to the request's message_id
            conversation_id: Correlation id; defaults to the request's conversation_id

        Returns:
            The validated payload model for the request's kind

        Raises:
            QuotaExceeded: A limit would be crossed (AIDisabled when switched off)
            RateLimited: The user is throttled
            RemoteUnavailable: The model service could not answer
            ParseError: The answer failed validation
        """
        kind = request.kind
        model = self.gateway.model_for(kind)
        started = time.monotonic()
        audit_fields = {
            "user_id": user_id,
            "operation": kind,
            "model": model,
            "message_id": message_id or getattr(request, "message_id", None),
            "conversation_id": conversation_id or getattr(request, "conversation_id", None),
        }

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        estimate = token_estimate if token_estimate is not None else self.gateway.estimate_tokens(request)

        try:
            reservation = await self.ledger.check_and_reserve(user_id, estimate, model=model)
        except Denied as e:
            await self.audit.record(
                **audit_fields,
                status=e.audit_status,
                response_time_ms=elapsed_ms(),
                error_code=e.code,
                error_message=e.message,
                metadata={"token_estimate": estimate},
            )
            raise

        try:
            raw = await self.gateway.invoke(request, user_id=user_id, now=self.clock())
            # Time-sensitive invariants are checked against the time the answer arrived
            payload = self.gateway.parse_and_validate(raw.text, kind, self.clock())
        except RemoteUnavailable as e:
            await self.audit.record(
                **audit_fields,
                status=UsageStatus.FAILURE,
                response_time_ms=elapsed_ms(),
                attempts=e.attempts,
                error_code=e.code,
                error_message=e.message,
                metadata={"rate_limited": e.rate_limited, "retryable": e.retryable, "token_estimate": estimate},
            )
            try:
                if e.rate_limited:
                    await self.rate_limit_gate.trip(user_id)
            finally:
                await self.ledger.commit(user_id, 0, 0.0, reservation)
            raise
        except ParseError as e:
            # The call succeeded and was billed; record what it cost
            await self.audit.record(
                **{**audit_fields, "model": raw.model},
                status=UsageStatus.FAILURE,
                input_tokens=raw.tokens_in,
                output_tokens=raw.tokens_out,
                estimated_cost=raw.cost,
                request_size=raw.request_size,
                response_size=raw.response_size,
                response_time_ms=elapsed_ms(),
                attempts=raw.attempts,
                error_code=e.code,
                error_message=e.message,
                metadata={"validation_errors": e.errors, "token_estimate": estimate},
            )
            await self.ledger.commit(user_id, raw.total_tokens, raw.cost, reservation)
            raise
        except Exception as e:
            logger.error(f"Unexpected error during {kind} for user {user_id}: {e}", exc_info=True)
            await self.audit.record(
                **audit_fields,
                status=UsageStatus.FAILURE,
                response_time_ms=elapsed_ms(),
                error_code="internal_error",
                error_message=str(e),
            )
            await self.ledger.release(reservation)
            raise
        except asyncio.CancelledError:
            logger.warning(f"AI {kind} cancelled for user {user_id}")
            await self.audit.record(
                **audit_fields,
                status=UsageStatus.FAILURE,
                response_time_ms=elapsed_ms(),
                error_code="cancelled",
                error_message="Request was cancelled before completing",
            )
            await self.ledger.release(reservation)
            raise

        await self.audit.record(
            **{**audit_fields, "model": raw.model},
            status=UsageStatus.SUCCESS,
            input_tokens=raw.tokens_in,
            output_tokens=raw.tokens_out,
            estimated_cost=raw.cost,
            request_size=raw.request_size,
            response_size=raw.response_size,
            response_time_ms=elapsed_ms(),
            attempts=raw.attempts,
            metadata={"token_estimate": estimate, "tokens_reported": raw.tokens_reported, **raw.metadata},
        )
        await self.ledger.commit(user_id, raw.total_tokens, raw.cost, reservation)
        logger.info(
            f"AI {kind} completed: user_id={user_id}, tokens={raw.total_tokens}, "
            f"cost=${raw.cost:.6f}, attempts={raw.attempts}"
        )
        return payload

    # Convenience wrappers

    async def analyze_sentiment(self, user_id: str, content: str, token_estimate: Optional[int] = None, **fields):
        return await self.invoke(user_id, SentimentRequest(content=content, **fields), token_estimate)

    async def categorize_message(self, user_id: str, content: str, token_estimate: Optional[int] = None, **fields):
        return await self.invoke(user_id, CategorizationRequest(content=content, **fields), token_estimate)

    async def generate_suggestions(self, user_id: str, content: str, token_estimate: Optional[int] = None, **fields):
        return await self.invoke(user_id, SuggestionRequest(content=content, **fields), token_estimate)

    async def summarize_conversation(
        self,
        user_id: str,
        conversation_id: str,
        messages: List[Dict[str, Any]],
        token_estimate: Optional[int] = None,
        **fields
    ):
        request = SummarizationRequest(conversation_id=conversation_id, messages=messages, **fields)
        return await self.invoke(user_id, request, token_estimate)

    async def recommend_schedule(
        self,
        user_id: str,
        conversation_id: str,
        token_estimate: Optional[int] = None,
        **fields
    ):
        return await self.invoke(user_id, SchedulingRequest(conversation_id=conversation_id, **fields), token_estimate)

    async def analyze_conversation(
        self,
        user_id: str,
        conversation_id: str,
        period_start: datetime,
        period_end: datetime,
        token_estimate: Optional[int] = None,
        **fields
    ):
        request = InsightsRequest(
            conversation_id=conversation_id,
            period_start=period_start,
            period_end=period_end,
            **fields
        )
        return await self.invoke(user_id, request, token_estimate)

    async def semantic_search(self, user_id: str, query: str, token_estimate: Optional[int] = None, **fields):
        return await self.invoke(user_id, SemanticSearchRequest(query=query, **fields), token_estimate)

    # Health and usage

    async def is_healthy(self) -> bool:
        return await self.gateway.is_healthy()

    async def get_usage_metrics(self, user_id: str) -> Dict[str, Any]:
        """Current-window usage and remaining request allowance for a user."""
        stats = await self.ledger.usage_stats(user_id)
        daily, monthly = stats["daily"], stats["monthly"]
        return {
            "requests_today": daily["requests"],
            "tokens_today": daily["tokens"],
            "cost_today": daily["cost"],
            "requests_this_month": monthly["requests"],
            "tokens_this_month": monthly["tokens"],
            "cost_this_month": monthly["cost"],
            "daily_limit_remaining": daily["requests_remaining"],
            "monthly_limit_remaining": monthly["requests_remaining"],
        }

    async def get_usage_logs(self, user_id: str, limit: int = 50, offset: int = 0) -> List[AIUsageLog]:
        return await self.audit.user_logs(user_id, limit=limit, offset=offset)

    async def purge_audit_log(self, retention_days: int = AI_AUDIT_RETENTION_DAYS) -> int:
        """Apply the audit retention policy; returns how many entries were deleted."""
        return await self.audit.cleanup_older_than(self.clock() - timedelta(days=retention_days))

    # Administration

    async def apply_rate_limit(self, user_id: str, duration_seconds: Optional[int] = None) -> datetime:
        return await self.rate_limit_gate.trip(user_id, duration_seconds)

    async def clear_rate_limit(self, user_id: str) -> None:
        await self.rate_limit_gate.clear(user_id)

    async def disable_user(self, user_id: str, reason: str) -> None:
        await self.ledger.disable(user_id, reason)

    async def enable_user(self, user_id: str) -> None:
        await self.ledger.enable(user_id)

    async def update_limits(self, user_id: str, **limits):
        return await self.ledger.update_limits(user_id, **limits)


def build_ai_gateway(
    session_factory: async_sessionmaker,
    provider: Optional[LLMProvider] = None,
    vector_search: Optional[VectorSearchClient] = None,
    clock: Callable[[], datetime] = utcnow,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **gateway_options
) -> AIGateway:
    """
    Wire up the AI gateway and its collaborators.

    Args:
        session_factory: Async session factory for quota and audit tables
        provider: LLM provider; OpenAIProvider when omitted
        vector_search: Vector search client; Qdrant when QDRANT_URL is set
        clock: Source of the current naive UTC time
        sleep: Awaitable sleep used between retries
        **gateway_options: Overrides for ModelInvocationGateway (model, max_retries, base_delay, timeout)
    """
    if provider is None:
        provider = OpenAIProvider()
    if vector_search is None and QDRANT_URL:
        vector_search = QdrantVectorSearch(QDRANT_URL, QDRANT_COLLECTION)

    ledger = QuotaLedger(session_factory, clock=clock, locks=UserLockRegistry())
    gateway = ModelInvocationGateway(provider, vector_search, sleep=sleep, clock=clock, **gateway_options)

    logger.info(f"AI gateway ready (model={gateway.model}, max_retries={gateway.max_retries})")
    return AIGateway(
        ledger=ledger,
        rate_limit_gate=RateLimitGate(ledger, cooldown_seconds=AI_RATE_LIMIT_COOLDOWN_SECONDS),
        gateway=gateway,
        audit=UsageAuditLog(session_factory, clock=clock),
        clock=clock,
    )
