import os

# Load environment variables from .env if available, but avoid during pytest to keep tests deterministic
try:
    from dotenv import load_dotenv
    if "PYTEST_CURRENT_TEST" not in os.environ:
        load_dotenv()
except Exception:
    pass


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    try:
        v = os.getenv(name, "1" if default else "0").strip().lower()
        return v in ("1", "true", "yes", "on")
    except Exception:
        return default


LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()

OPENROUTER_BASE_URL = _env_str("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1/chat/completions")
OPENROUTER_APP_TITLE = _env_str("OPENROUTER_APP_TITLE", "AmICooked Agent API")
PUBLIC_APP_ORIGIN = _env_str("PUBLIC_APP_ORIGIN", "http://localhost:5173")

# Convex HTTP API (CONVEX_URL is read per call); in-process store when unset
CONVEX_TIMEOUT_SECONDS = _env_float("CONVEX_TIMEOUT_SECONDS", _env_float("AI_HTTP_TIMEOUT_SECONDS", 10))

# Memory limits
SHORT_TERM_MEMORY_LIMIT = max(1, _env_int("SHORT_TERM_MEMORY_LIMIT", 10))
MEMORY_ITEM_MAX_LENGTH = max(1, _env_int("MEMORY_ITEM_MAX_LENGTH", 500))
MEMORY_MAX_ITEMS = max(0, _env_int("MEMORY_MAX_ITEMS", 500))
MEMORY_EXTRACTION_ENABLED = _env_bool("MEMORY_EXTRACTION_ENABLED", True)


def openrouter_timeout_seconds() -> float:
    """HTTP timeout for model calls. Read lazily so tests can override via env."""
    try:
        return float(os.getenv("OPENROUTER_TIMEOUT_SECONDS") or os.getenv("AI_HTTP_TIMEOUT_SECONDS") or 60)
    except Exception:
        return 60.0
