import os

from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./orderflow.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000").strip().rstrip("/")
AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "1" if IS_DEV else "0")

META_WA_VERIFY_TOKEN = os.getenv("META_WA_VERIFY_TOKEN", "")
META_API_VERSION = os.getenv("META_API_VERSION", "v19.0")

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

# Extraction (LLM)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip()
OPENAI_EMBEDDING_MODEL = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small").strip()
OPENAI_EMBEDDING_DIMENSIONS = int(os.getenv("OPENAI_EMBEDDING_DIMENSIONS", "512"))
EXTRACTION_TIMEOUT_SECONDS = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "20"))
EXTRACTION_TEMPERATURE = float(os.getenv("EXTRACTION_TEMPERATURE", "0.3"))
EXTRACTION_MAX_TOKENS = int(os.getenv("EXTRACTION_MAX_TOKENS", "1024"))
DEFAULT_EXTRACTION_PROVIDER = os.getenv("DEFAULT_EXTRACTION_PROVIDER", "mock").strip().lower()
EXTRACTION_CONFIDENCE_THRESHOLD = float(os.getenv("EXTRACTION_CONFIDENCE_THRESHOLD", "0.7"))
EXTRACTION_ITEM_CONFIDENCE_THRESHOLD = float(os.getenv("EXTRACTION_ITEM_CONFIDENCE_THRESHOLD", "0.5"))
EXTRACTION_HISTORY_TURNS = int(os.getenv("EXTRACTION_HISTORY_TURNS", "10"))
EXTRACTION_BREAKER_THRESHOLD = int(os.getenv("EXTRACTION_BREAKER_THRESHOLD", "3"))
EXTRACTION_BREAKER_COOLDOWN_SECONDS = float(os.getenv("EXTRACTION_BREAKER_COOLDOWN_SECONDS", "60"))

AMBIGUOUS_ITEM_POLICY = os.getenv("AMBIGUOUS_ITEM_POLICY", "ask").strip().lower()
if AMBIGUOUS_ITEM_POLICY not in {"ask", "pick"}:
    AMBIGUOUS_ITEM_POLICY = "ask"

EMBEDDINGS_ENABLED = _flag("EMBEDDINGS_ENABLED", "0")
MENU_CACHE_TTL_SECONDS = float(os.getenv("MENU_CACHE_TTL_SECONDS", "300"))

# Checkout
PAYMENT_LINK_EXPIRY_MINUTES = int(os.getenv("PAYMENT_LINK_EXPIRY_MINUTES", "30"))

# Locks
CONVERSATION_LOCK_TTL_SECONDS = int(os.getenv("CONVERSATION_LOCK_TTL_SECONDS", "120"))
CONVERSATION_MUTEX_TIMEOUT_SECONDS = float(os.getenv("CONVERSATION_MUTEX_TIMEOUT_SECONDS", "60"))
