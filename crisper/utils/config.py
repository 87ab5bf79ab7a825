"""Configuration management for the Crisper recipe service.

Loads environment variables from system environment and .env file.
Priority order: system environment > .env file > hardcoded defaults

The same Config is read by both sides of the boundary:
- the proxy server (gate ceilings, allow-lists, server-held GEMINI_API_KEY)
- the client router (DEPLOYMENT_MODE, proxy location, credential expiry)
"""

import os
import platform

from dotenv import load_dotenv


# Load .env file (if exists, silently continues if missing)
load_dotenv()


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _as_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Application configuration loaded from environment variables."""

    def __init__(self) -> None:
        """Initialize configuration from environment variables."""
        # Server-held upstream credential. Only the proxy reads it; its absence is
        # reported per request (HTTP 500) rather than at import time.
        self.GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
        # Model used for both recipe generation and image analysis
        self.GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        # Base URL of the Gemini REST API
        self.GEMINI_API_BASE: str = os.getenv(
            "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
        )

        # Deployment Mode: "development" or "production"
        # "development": client calls Gemini directly with a session-held key
        # "production": client calls the same-origin proxy, never holds a key
        self.DEPLOYMENT_MODE: str = os.getenv("DEPLOYMENT_MODE", "development").lower()
        # Proxy location as seen by the client (production mode)
        self.PROXY_BASE_URL: str = os.getenv("PROXY_BASE_URL", "http://localhost:7777")
        # Path prefix the proxy endpoints are mounted under
        self.PROXY_PREFIX: str = os.getenv("PROXY_PREFIX", "/api")
        # Origin the client announces to the proxy
        self.CLIENT_ORIGIN: str = os.getenv("CLIENT_ORIGIN", "http://localhost:5173")

        # Origin allow-list. Loopback origins are always allowed.
        # ALLOWED_ORIGINS: exact origins, e.g. "https://crisper.example.com"
        self.ALLOWED_ORIGINS: list[str] = _as_list(os.getenv("ALLOWED_ORIGINS", ""))
        # ALLOWED_HOST_PATTERNS: glob patterns matched against the origin hostname
        self.ALLOWED_HOST_PATTERNS: list[str] = _as_list(
            os.getenv("ALLOWED_HOST_PATTERNS", "crisper*.vercel.app")
        )
        # TRUST_FORWARDED_HEADERS: derive client identity from X-Forwarded-For / X-Real-IP.
        # Only meaningful behind a reverse proxy that sets these headers honestly.
        self.TRUST_FORWARDED_HEADERS: bool = _as_bool(os.getenv("TRUST_FORWARDED_HEADERS", "true"))

        # Rate limiting: per client, per endpoint, fixed window opened by the first hit
        self.RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
        self.GENERATE_MAX_REQUESTS: int = int(os.getenv("GENERATE_MAX_REQUESTS", "10"))
        self.ANALYZE_MAX_REQUESTS: int = int(os.getenv("ANALYZE_MAX_REQUESTS", "5"))

        # Payload ceilings enforced by the proxy before any upstream call
        self.MAX_PROMPT_CHARS: int = int(os.getenv("MAX_PROMPT_CHARS", "10000"))
        self.MAX_IMAGE_BASE64_BYTES: int = int(os.getenv("MAX_IMAGE_BASE64_BYTES", str(7 * 1024 * 1024)))

        # Client-side image preparation
        # Maximum decoded image size (in MB) accepted for analysis. Default: 5 MB
        self.MAX_IMAGE_SIZE_MB: int = int(os.getenv("MAX_IMAGE_SIZE_MB", "5"))
        # Image Compression: Enable/disable image compression before upload
        self.COMPRESS_IMG: bool = _as_bool(os.getenv("COMPRESS_IMG", "true"))
        # Only compress images larger than this (in KB)
        self.COMPRESS_IMG_THRESHOLD_KB: int = int(os.getenv("COMPRESS_IMG_THRESHOLD_KB", "300"))

        # Session credential store
        # Idle timeout: the key is forgotten this many minutes after its last use
        self.KEY_EXPIRY_MINUTES: int = int(os.getenv("KEY_EXPIRY_MINUTES", "30"))
        # PBKDF2 iteration count for the session-derived encryption key
        self.KEY_DERIVATION_ITERATIONS: int = int(os.getenv("KEY_DERIVATION_ITERATIONS", "100000"))
        # Coarse client fingerprint mixed into key derivation
        self.CLIENT_FINGERPRINT: str = os.getenv(
            "CLIENT_FINGERPRINT", f"{platform.system()}/{platform.python_version()}"
        )

        # CLI preferences file: recent ingredients, saved filters, saved recipes
        self.PREFERENCES_FILE: str = os.getenv(
            "PREFERENCES_FILE", os.path.join(os.path.expanduser("~"), ".crisper", "preferences.json")
        )
        # How many recent ingredients to remember
        self.RECENT_INGREDIENTS_LIMIT: int = int(os.getenv("RECENT_INGREDIENTS_LIMIT", "20"))

        # Total timeout for any outbound HTTP call (seconds)
        self.UPSTREAM_TIMEOUT_SECONDS: float = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))

        # Server bind address
        self.HOST: str = os.getenv("HOST", "0.0.0.0")
        self.PORT: int = int(os.getenv("PORT", "7777"))

    @property
    def is_production(self) -> bool:
        return self.DEPLOYMENT_MODE == "production"

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If an invalid value is provided.
        """
        if self.DEPLOYMENT_MODE not in ("development", "production"):
            raise ValueError(
                f"DEPLOYMENT_MODE must be 'development' or 'production', got: {self.DEPLOYMENT_MODE}"
            )
        if self.PROXY_PREFIX and not self.PROXY_PREFIX.startswith("/"):
            raise ValueError(f"PROXY_PREFIX must start with '/', got: {self.PROXY_PREFIX}")
        if self.RATE_LIMIT_WINDOW_SECONDS < 1:
            raise ValueError(
                f"RATE_LIMIT_WINDOW_SECONDS must be at least 1, got: {self.RATE_LIMIT_WINDOW_SECONDS}"
            )
        if self.GENERATE_MAX_REQUESTS < 1 or self.ANALYZE_MAX_REQUESTS < 1:
            raise ValueError(
                "GENERATE_MAX_REQUESTS and ANALYZE_MAX_REQUESTS must be at least 1, "
                f"got: {self.GENERATE_MAX_REQUESTS}, {self.ANALYZE_MAX_REQUESTS}"
            )
        if self.MAX_PROMPT_CHARS < 1:
            raise ValueError(f"MAX_PROMPT_CHARS must be at least 1, got: {self.MAX_PROMPT_CHARS}")
        if self.KEY_EXPIRY_MINUTES < 1:
            raise ValueError(f"KEY_EXPIRY_MINUTES must be at least 1, got: {self.KEY_EXPIRY_MINUTES}")
        if self.KEY_DERIVATION_ITERATIONS < 1000:
            raise ValueError(
                f"KEY_DERIVATION_ITERATIONS must be at least 1000, got: {self.KEY_DERIVATION_ITERATIONS}"
            )
        if self.RECENT_INGREDIENTS_LIMIT < 1:
            raise ValueError(
                f"RECENT_INGREDIENTS_LIMIT must be at least 1, got: {self.RECENT_INGREDIENTS_LIMIT}"
            )
        if self.UPSTREAM_TIMEOUT_SECONDS <= 0:
            raise ValueError(
                f"UPSTREAM_TIMEOUT_SECONDS must be positive, got: {self.UPSTREAM_TIMEOUT_SECONDS}"
            )


# Create module-level config instance and validate immediately
config = Config()
config.validate()
