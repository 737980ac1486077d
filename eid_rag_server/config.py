"""Base configuration for the Eid RAG server."""

from typing import List, Optional

DEFAULT_FALLBACK_MODELS = ["gemini-2.0-flash-lite", "gemini-1.5-flash"]


def parse_bool(value, default: bool = False) -> bool:
    """Parse an environment-style boolean ("true"/"1"/"yes")."""
    if value is None or value == "":
        return default
    return str(value).strip().lower() in ("true", "1", "yes")


def parse_list(value) -> List[str]:
    """Split a comma separated environment value into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in str(value).split(",") if item.strip()]


class ServerConfig:
    """Configuration for the knowledge API server and its Gemini/Qdrant backends.

    Projects can subclass this and override as needed.
    """

    # Gemini (Generative Language REST API)
    GEMINI_API_KEY: str = ""
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_CHAT_MODEL: str = "gemini-2.0-flash"
    GEMINI_FALLBACK_MODELS: Optional[List[str]] = None  # None = DEFAULT_FALLBACK_MODELS
    GEMINI_CONNECT_TIMEOUT: int = 10
    GEMINI_READ_TIMEOUT: int = 120

    # Qdrant vector backend (unset URL = vector search disabled)
    QDRANT_URL: str = ""
    QDRANT_API_KEY: str = ""
    QDRANT_CHECK_COMPATIBILITY: bool = True

    # Server configuration
    DEFAULT_HOST: str = "127.0.0.1"  # Default to localhost for security (use 0.0.0.0 for all interfaces)
    DEFAULT_PORT: int = 5000

    # Result cache and search history
    CACHE_TTL_SECONDS: int = 30 * 60
    HISTORY_FILE: str = ""  # Empty = keep history in memory only

    # Debug settings
    DEBUG_LOG: bool = False
    DEBUG_LOG_FILE: str = "rag_debug.log"
    DEBUG_LOG_MAX_BYTES: int = 10 * 1024 * 1024  # 10MB default
    DEBUG_LOG_BACKUP_COUNT: int = 5
    EXPOSE_ERRORS: bool = False  # Include exception text in 500 responses (development only)

    # Health check settings
    HEALTH_CHECK_ON_STARTUP: bool = True
    HEALTH_CHECK_TIMEOUT: int = 5

    @property
    def fallback_models(self) -> List[str]:
        if self.GEMINI_FALLBACK_MODELS is None:
            return list(DEFAULT_FALLBACK_MODELS)
        return list(self.GEMINI_FALLBACK_MODELS)

    @property
    def gemini_timeout(self):
        return (self.GEMINI_CONNECT_TIMEOUT, self.GEMINI_READ_TIMEOUT)

    @classmethod
    def from_env(cls, env_prefix: str = ""):
        """Create config from environment variables with optional prefix.

        Args:
            env_prefix: Prefix for environment variables (e.g., "EID_")

        Returns:
            ServerConfig instance populated from environment
        """
        import os

        from dotenv import load_dotenv

        load_dotenv()

        config = cls()

        # Helper to get env var with prefix
        def get_env(name: str, default):
            # Try with prefix first, then without
            prefixed = os.getenv(f"{env_prefix}{name}", None)
            if prefixed is not None:
                return prefixed
            return os.getenv(name, default)

        config.GEMINI_API_KEY = get_env("GEMINI_API_KEY", cls.GEMINI_API_KEY)
        config.GEMINI_API_BASE = get_env("GEMINI_API_BASE", cls.GEMINI_API_BASE).rstrip("/")
        config.GEMINI_CHAT_MODEL = get_env("GEMINI_CHAT_MODEL", cls.GEMINI_CHAT_MODEL)
        fallbacks = get_env("GEMINI_FALLBACK_MODELS", None)
        config.GEMINI_FALLBACK_MODELS = parse_list(fallbacks) if fallbacks is not None else None
        config.GEMINI_CONNECT_TIMEOUT = int(get_env("GEMINI_CONNECT_TIMEOUT", str(cls.GEMINI_CONNECT_TIMEOUT)))
        config.GEMINI_READ_TIMEOUT = int(get_env("GEMINI_READ_TIMEOUT", str(cls.GEMINI_READ_TIMEOUT)))
        config.QDRANT_URL = get_env("QDRANT_URL", cls.QDRANT_URL)
        config.QDRANT_API_KEY = get_env("QDRANT_API_KEY", cls.QDRANT_API_KEY)
        config.QDRANT_CHECK_COMPATIBILITY = parse_bool(
            get_env("QDRANT_CHECK_COMPATIBILITY", None), cls.QDRANT_CHECK_COMPATIBILITY
        )
        config.DEFAULT_HOST = get_env("HOST", cls.DEFAULT_HOST)
        config.DEFAULT_PORT = int(get_env("PORT", str(cls.DEFAULT_PORT)))
        config.CACHE_TTL_SECONDS = int(get_env("CACHE_TTL_SECONDS", str(cls.CACHE_TTL_SECONDS)))
        config.HISTORY_FILE = get_env("HISTORY_FILE", cls.HISTORY_FILE)
        config.DEBUG_LOG = parse_bool(get_env("DEBUG_LOG", None), cls.DEBUG_LOG)
        config.DEBUG_LOG_FILE = get_env("DEBUG_LOG_FILE", cls.DEBUG_LOG_FILE)
        config.DEBUG_LOG_MAX_BYTES = int(get_env("DEBUG_LOG_MAX_BYTES", str(cls.DEBUG_LOG_MAX_BYTES)))
        config.DEBUG_LOG_BACKUP_COUNT = int(get_env("DEBUG_LOG_BACKUP_COUNT", str(cls.DEBUG_LOG_BACKUP_COUNT)))
        config.EXPOSE_ERRORS = parse_bool(get_env("EXPOSE_ERRORS", None), cls.EXPOSE_ERRORS)
        config.HEALTH_CHECK_ON_STARTUP = get_env("HEALTH_CHECK_ON_STARTUP", "").lower() not in ("false", "0", "no")
        config.HEALTH_CHECK_TIMEOUT = int(get_env("HEALTH_CHECK_TIMEOUT", str(cls.HEALTH_CHECK_TIMEOUT)))

        return config
