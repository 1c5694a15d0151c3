import os
from dotenv import load_dotenv
from datetime import timedelta

# Load environment variables from .env file
load_dotenv()

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))


def _env_flag(name, default):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration settings."""

    # Flask Secret Key for session signing
    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        raise ValueError("No SECRET_KEY found in environment variables. This is required for security.")

    # Database configuration
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL", "sqlite:///" + os.path.join(BASE_DIR, "data", "database.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = _env_flag("AUTO_CREATE_TABLES", "true")

    # Rate Limiter Storage URI
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

    # Number of reverse proxies in front of the app
    TRUST_PROXY_HOPS = int(os.getenv("TRUST_PROXY_HOPS", 1))

    # Uploads (videos, voice notes) are buffered in memory
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_UPLOAD_MB", 100)) * 1024 * 1024

    # Dashboard credentials seeded on first start
    ADMIN_USER = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS = os.getenv("ADMIN_PASS")

    # WhatsApp Cloud API
    META_TOKEN = os.getenv("META_TOKEN")
    PHONE_NUMBER_ID = os.getenv("PHONE_NUMBER_ID")
    GRAPH_API_VERSION = os.getenv("GRAPH_API_VERSION", "v21.0")
    GRAPH_API_TIMEOUT = int(os.getenv("GRAPH_API_TIMEOUT", 30))
    WEBHOOK_VERIFY_TOKEN = os.getenv("WEBHOOK_VERIFY_TOKEN", "ICC_2025")

    # --- LLM Provider Settings ---
    LLM_PROVIDER = os.getenv("LLM_PROVIDER", "gemini")

    # Google Gemini
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    GEMINI_MODEL_NAME = os.getenv("GEMINI_MODEL_NAME", "gemini-2.0-flash")

    # OpenAI
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL_NAME = os.getenv("OPENAI_MODEL_NAME", "gpt-4o-mini")

    # DeepSeek (uses OpenAI-compatible API)
    DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
    DEEPSEEK_MODEL_NAME = os.getenv("DEEPSEEK_MODEL_NAME", "deepseek-chat")
    DEEPSEEK_BASE_URL = os.getenv("DEEPSEEK_BASE_URL", "https://api.deepseek.com/v1")

    CHAT_HISTORY_LIMIT = int(os.getenv("CHAT_HISTORY_LIMIT", 15))
    CATALOG_MATCH_LIMIT = int(os.getenv("CATALOG_MATCH_LIMIT", 5))

    # Celery Configuration
    CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://redis:6379/0')
    CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', 'redis://redis:6379/0')
    CELERY_TASK_ALWAYS_EAGER = _env_flag("CELERY_TASK_ALWAYS_EAGER", "false")

    SESSION_COOKIE_NAME = 'icc_session'
    SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE", "false")
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(hours=int(os.getenv("SESSION_LIFETIME_HOURS", 24)))
