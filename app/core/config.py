import os

# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./ai_gateway.db")

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# ✅ OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
AI_MODEL = os.getenv("AI_MODEL", "gpt-4o-mini")
AI_EMBEDDING_MODEL = os.getenv("AI_EMBEDDING_MODEL", "text-embedding-3-small")

# ✅ Invocation resilience
AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", "3"))
AI_RETRY_BASE_DELAY_SECONDS = float(os.getenv("AI_RETRY_BASE_DELAY_SECONDS", "1.0"))
AI_REQUEST_TIMEOUT_SECONDS = float(os.getenv("AI_REQUEST_TIMEOUT_SECONDS", "30"))
AI_RATE_LIMIT_COOLDOWN_SECONDS = int(os.getenv("AI_RATE_LIMIT_COOLDOWN_SECONDS", "60"))
AI_RESERVATION_TTL_SECONDS = int(os.getenv("AI_RESERVATION_TTL_SECONDS", "900"))

# ✅ Audit retention
AI_AUDIT_RETENTION_DAYS = int(os.getenv("AI_AUDIT_RETENTION_DAYS", "90"))

# ✅ Vector search
QDRANT_URL = os.getenv("QDRANT_URL")
QDRANT_COLLECTION = os.getenv("QDRANT_COLLECTION", "messages")

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
