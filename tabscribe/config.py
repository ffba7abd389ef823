import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


# Primary provider (Gemini)
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "") or os.getenv("GOOGLE_GENAI_API_KEY", "")
GEMINI_MODEL_ID = os.getenv("GEMINI_MODEL_ID", "") or "gemini-2.5-flash"
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")

# Fallback provider (Deepgram prerecorded)
DEEPGRAM_API_KEY = os.getenv("DEEPGRAM_API_KEY", "")
DEEPGRAM_MODEL = os.getenv("DEEPGRAM_MODEL", "nova-3")
DEEPGRAM_BASE_URL = os.getenv("DEEPGRAM_BASE_URL", "https://api.deepgram.com")

# Provider call policy
INLINE_MAX_BYTES = int(os.getenv("INLINE_MAX_BYTES", str(20 * 1024 * 1024)))
PROVIDER_MAX_ATTEMPTS = int(os.getenv("PROVIDER_MAX_ATTEMPTS", "2"))
PROVIDER_BACKOFF_BASE_SECONDS = float(os.getenv("PROVIDER_BACKOFF_BASE_SECONDS", "2.0"))
PROVIDER_MAX_BACKOFF_SECONDS = float(os.getenv("PROVIDER_MAX_BACKOFF_SECONDS", "60"))
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "120"))
PROVIDER_HTTP_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_HTTP_TIMEOUT_SECONDS", "60"))
DEFAULT_RETRY_AFTER = os.getenv("DEFAULT_RETRY_AFTER", "60s")

MAX_PREV_TAIL_CHARS = int(os.getenv("MAX_PREV_TAIL_CHARS", "300"))

DATABASE_PATH = os.getenv("DATABASE_PATH", "tabscribe.db")
DATABASE_URL = os.getenv("DATABASE_URL", "")
DATABASE_MAX_CONNECTIONS = int(os.getenv("DATABASE_MAX_CONNECTIONS", "5"))
AGGREGATOR_MAX_CONFLICT_RETRIES = int(os.getenv("AGGREGATOR_MAX_CONFLICT_RETRIES", "5"))

# Identity resolved by the upstream auth layer (bearer token / cookie session)
AUTH_OWNER_HEADER = os.getenv("AUTH_OWNER_HEADER", "X-Owner-Id")

# Recorder extension origin for CORS
EXT_ALLOWED_ORIGIN = os.getenv("EXT_ALLOWED_ORIGIN", "*")

HEALTHCHECK_KEY = os.getenv("HEALTHCHECK_KEY", "")

LOG_PROVIDER_TEXT = _flag("LOG_PROVIDER_TEXT")
