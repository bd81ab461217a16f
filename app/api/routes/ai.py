"""
AI endpoints.

Thin HTTP surface over the AI gateway: every operation kind goes through
POST /ai/invoke and gateway errors are mapped to HTTP status codes.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status

from app.core.auth_dependency import get_current_user, get_ai_gateway
from app.core.exceptions import (
    AIDisabled,
    GatewayError,
    ParseError,
    QuotaExceeded,
    RateLimited,
    RemoteUnavailable,
)
from app.schemas.ai import InvokeRequest, InvokeResponse
from app.schemas.usage import GatewayErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["AI"])


def gateway_error_to_http(error: GatewayError) -> HTTPException:
    """Map a gateway error to the HTTP error returned to the client."""
    headers = None
    if isinstance(error, AIDisabled):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, (QuotaExceeded, RateLimited)):
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
        if isinstance(error, RateLimited) and error.reset_at is not None:
            headers = {"Retry-After": error.reset_at.strftime("%a, %d %b %Y %H:%M:%S GMT")}
    elif isinstance(error, RemoteUnavailable):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(error, ParseError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail=error.to_dict(), headers=headers)


@router.post(
    "/invoke",
    response_model=InvokeResponse,
    responses={
        403: {"model": GatewayErrorResponse},
        429: {"model": GatewayErrorResponse},
        502: {"model": GatewayErrorResponse},
        503: {"model": GatewayErrorResponse},
    },
)
async def invoke(
    body: InvokeRequest,
    user_id: str = Depends(get_current_user),
    gateway=Depends(get_ai_gateway),
):
    """
    Run one AI operation for the authenticated user.

    The body's `request.kind` selects the operation (sentiment, categorization,
    suggestion, summarization, scheduling, insights, semantic_search).

    Errors:
    - 429: quota exceeded or rate limited
    - 403: AI disabled for this account
    - 503: AI service unavailable
    - 502: AI service returned an invalid response
    """
    try:
        payload = await gateway.invoke(user_id, body.request, token_estimate=body.token_estimate)
    except GatewayError as e:
        logger.info(f"AI {body.request.kind} refused for user {user_id}: {e.code}")
        raise gateway_error_to_http(e)

    return InvokeResponse(kind=body.request.kind, result=payload.model_dump(mode="json"))
