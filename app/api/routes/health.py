"""
Health check endpoint for deployment monitoring.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text

from app.core.auth_dependency import get_ai_gateway
from app.core.clock import utcnow

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check(request: Request, gateway=Depends(get_ai_gateway)):
    """
    Health check endpoint for deployment monitoring.

    Returns 200 with "healthy" when both the database and the AI service are
    reachable, "degraded" otherwise.
    """
    status = "healthy"

    # Check database connectivity
    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"
        status = "degraded"

    ai_status = "reachable" if await gateway.is_healthy() else "unreachable"
    if ai_status != "reachable":
        status = "degraded"

    return {
        "status": status,
        "timestamp": utcnow().isoformat(),
        "database": db_status,
        "ai_service": ai_status,
        "version": "1.0.0",
    }
