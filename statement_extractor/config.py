"""
Central configuration — reads environment variables and provides defaults.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


# ── Document-understanding service (Anthropic Messages API) ──────────────────
ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY") or os.getenv("APP_CLAUDE_API_KEY", "")
MESSAGES_URL: str = os.getenv("MESSAGES_URL", "https://api.anthropic.com/v1/messages")
ANTHROPIC_VERSION: str = os.getenv("ANTHROPIC_VERSION", "2023-06-01")

# ── Models ────────────────────────────────────────────────────────────────────
DEFAULT_MODEL: str = os.getenv("DEFAULT_MODEL", "haiku")
MODEL_IDS: dict[str, str] = {
    "haiku": os.getenv("HAIKU_MODEL_ID", "claude-3-5-haiku-20241022"),
    "sonnet": os.getenv("SONNET_MODEL_ID", "claude-3-5-sonnet-20241022"),
}
MAX_OUTPUT_TOKENS: int = int(os.getenv("MAX_OUTPUT_TOKENS", "4000"))

# ── Timeouts & retries ────────────────────────────────────────────────────────
API_TIMEOUT: float = float(os.getenv("API_TIMEOUT", "60"))
RETRY_ATTEMPTS: int = int(os.getenv("RETRY_ATTEMPTS", "3"))
RETRY_DELAY: float = float(os.getenv("RETRY_DELAY", "1.0"))
RETRY_MAX_DELAY: float = float(os.getenv("RETRY_MAX_DELAY", "10.0"))

# ── Rate limiting ─────────────────────────────────────────────────────────────
RATE_LIMIT_PER_MINUTE: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "45"))

# ── Cost control (USD) ────────────────────────────────────────────────────────
DAILY_COST_LIMIT: float = float(os.getenv("DAILY_COST_LIMIT", "100"))
MONTHLY_COST_LIMIT: float = float(os.getenv("MONTHLY_COST_LIMIT", "2000"))
COST_ALERT_THRESHOLD: float = float(os.getenv("COST_ALERT_THRESHOLD", "0.8"))
ENABLE_COST_TRACKING: bool = _flag("ENABLE_COST_TRACKING")
COST_HISTORY_LIMIT: int = int(os.getenv("COST_HISTORY_LIMIT", "1000"))
USD_TO_INR_RATE: float = float(os.getenv("USD_TO_INR_RATE", "86.76"))

# Per million tokens
PRICING: dict[str, dict[str, float]] = {
    "haiku": {"input": 0.8, "output": 4.0},
    "sonnet": {"input": 3.0, "output": 15.0},
}

# ── Response cache ────────────────────────────────────────────────────────────
CACHE_TTL: float = float(os.getenv("CACHE_TTL", "3600"))
CACHE_MAX_KEYS: int = int(os.getenv("CACHE_MAX_KEYS", "1000"))
ENABLE_CACHE: bool = _flag("ENABLE_CACHE")

# ── Chunking & uploads ────────────────────────────────────────────────────────
PAGES_PER_CHUNK: int = int(os.getenv("PAGES_PER_CHUNK", "2"))
MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

# ── Batch pacing ──────────────────────────────────────────────────────────────
BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "20"))
BATCH_DELAY: float = float(os.getenv("BATCH_DELAY", "2.0"))
BATCH_STAGGER: float = float(os.getenv("BATCH_STAGGER", "0.1"))

# ── Job store ─────────────────────────────────────────────────────────────────
DATABASE_PATH: str = os.getenv("DATABASE_PATH", "data/jobs.db")
JOB_RETENTION_DAYS: int = int(os.getenv("JOB_RETENTION_DAYS", "7"))

# ── Logging ───────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
