import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# ✅ Import All API Routes
from app.api.routes import ai, usage, health

# ✅ Import Core Services
from app.core import config
from app.core.config import LOG_LEVEL
from app.core.logging_config import sanitize_log_data, setup_logging
from app.db.init_db import init_db
from app.db.session import create_engine, create_session_factory
from app.services.ai_gateway import build_ai_gateway

logger = logging.getLogger(__name__)


def startup_settings() -> dict:
    """Effective settings for the startup log line, secrets redacted."""
    return sanitize_log_data({
        "database_url": config.DATABASE_URL,
        "secret_key": config.SECRET_KEY,
        "openai_api_key": config.OPENAI_API_KEY,
        "ai_model": config.AI_MODEL,
        "ai_embedding_model": config.AI_EMBEDDING_MODEL,
        "ai_max_retries": config.AI_MAX_RETRIES,
        "ai_request_timeout_seconds": config.AI_REQUEST_TIMEOUT_SECONDS,
        "qdrant_url": config.QDRANT_URL,
    })


# ============================================
# ✅ STARTUP / SHUTDOWN
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(LOG_LEVEL)
    logger.info(f"Starting AI gateway API with settings: {startup_settings()}")

    engine = create_engine()
    await init_db(engine)
    session_factory = create_session_factory(engine)

    app.state.session_factory = session_factory
    app.state.ai_gateway = build_ai_gateway(session_factory)
    logger.info("AI gateway API started")

    yield

    await engine.dispose()
    logger.info("AI gateway API stopped")


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="AI Gateway", lifespan=lifespan)

# ✅ CORS LOCKDOWN: ONLY ALLOW YOUR FRONTEND
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",      # local frontend
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(ai.router)
app.include_router(usage.router)
app.include_router(health.router)


# ============================================
# ✅ HEALTH CHECK ROOT ENDPOINT
# ============================================

@app.get("/")
def root():
    return {"status": "AI gateway running"}
