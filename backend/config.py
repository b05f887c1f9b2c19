# config.py
import os

from dotenv import load_dotenv

# Load .env locally; on Render, env vars are injected automatically.
load_dotenv()


def _flag(name, default="0"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_config():
    """Read every setting the app understands from the environment."""
    environment = os.getenv("ENVIRONMENT", "development").lower()
    return {
        # --- Database (Neon on Render, or local if you set it) ---
        "SQLALCHEMY_DATABASE_URI": os.getenv("DATABASE_URL"),
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "AUTO_MIGRATE": _flag("AUTO_MIGRATE", "1"),
        "STORE_RETRY_ATTEMPTS": int(os.getenv("STORE_RETRY_ATTEMPTS", "3")),
        "STORE_RETRY_BASE_DELAY": float(os.getenv("STORE_RETRY_BASE_DELAY", "0.5")),
        "TIMELINE_LIMIT": int(os.getenv("TIMELINE_LIMIT", "50")),
        "TIMELINE_CACHE_TTL": float(os.getenv("TIMELINE_CACHE_TTL", "30")),
        "TIMELINE_CACHE_MAX_USERS": int(os.getenv("TIMELINE_CACHE_MAX_USERS", "1024")),

        # --- LLM analysis (falls back to keyword scan when the key is unset) ---
        "OPENAI_API_KEY": os.getenv("OPENAI_API_KEY"),
        "OPENAI_MODEL": os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        "OPENAI_API_URL": os.getenv(
            "OPENAI_API_URL", "https://api.openai.com/v1/chat/completions"
        ),
        "PUBLIC_APP_URL": os.getenv("PUBLIC_APP_URL", ""),

        # --- Web ---
        "ENVIRONMENT": environment,
        "FRONTEND_ORIGIN": os.getenv("FRONTEND_ORIGIN"),
        "SESSION_COOKIE_SECURE": _flag(
            "SESSION_COOKIE_SECURE", "1" if environment == "production" else "0"
        ),
        "ALLOW_INIT_DB": _flag("ALLOW_INIT_DB"),
        "ALLOW_DEBUG": _flag("ALLOW_DEBUG"),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO").upper(),
    }
