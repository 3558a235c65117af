import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

from studyhub.core.errors import ConfigurationError


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    PORT: int = 3001

    # Frontend / CORS
    FRONTEND_URL: str = "http://localhost:5500"
    ALLOWED_ORIGINS: Optional[str] = None  # comma-separated, defaults to FRONTEND_URL

    # Generative AI (Gemini)
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash-preview-09-2025"
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_TIMEOUT_SECONDS: float = 60.0

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_ID: Optional[str] = None

    # Identity provider JWT verification
    AUTH_JWT_SECRET: Optional[str] = None  # HS256 shared secret (dev/tests)
    AUTH_ISSUER: Optional[str] = None  # e.g. https://securetoken.google.com/<project>
    AUTH_AUDIENCE: Optional[str] = None  # typically the project id
    AUTH_JWKS_URL: Optional[str] = None

    # Entitlement store
    DATABASE_URL: Optional[str] = None

    # Free tier metering
    FREE_WORD_LIMIT: int = 500
    USAGE_LIMIT_SERVER_CHECK: bool = True

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def allowed_origins(self) -> List[str]:
        raw = self.ALLOWED_ORIGINS or self.FRONTEND_URL
        return [o.strip().rstrip("/") for o in raw.split(",") if o.strip()]


settings = Settings()


REQUIRED_KEYS = [
    "GEMINI_API_KEY",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_PRICE_ID",
]


def missing_config(settings_obj: Optional[Settings] = None) -> List[str]:
    """Return the required keys that are unset, including the identity provider."""
    cfg = settings_obj or settings
    missing = [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]
    if not (getattr(cfg, "AUTH_JWT_SECRET", None) or getattr(cfg, "AUTH_JWKS_URL", None) or getattr(cfg, "AUTH_ISSUER", None)):
        missing.append("AUTH_JWT_SECRET|AUTH_JWKS_URL")
    if (getattr(cfg, "ENV", "") or "").lower() == "production" and not getattr(cfg, "DATABASE_URL", None):
        missing.append("DATABASE_URL")
    return missing


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode (or ENV=production) raise ConfigurationError; otherwise
    emit a warning only. Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("studyhub")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)
    if (getattr(cfg, "ENV", "") or "").lower() == "production":
        strict_mode = True

    missing = missing_config(cfg)
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise ConfigurationError(message)
        log.warning(message)

    return True


def require(value: Optional[str], key: str) -> str:
    """Return a configured value or fail with a clear configuration error."""
    if not value:
        raise ConfigurationError(f"{key} is not configured")
    return value
