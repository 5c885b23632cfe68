import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Completion service
    GROQ_API_KEY: Optional[str] = None
    COMPLETION_BASE_URL: Optional[str] = None  # None = Groq default endpoint

    # Clerk Auth
    CLERK_SECRET_KEY: Optional[str] = None
    CLERK_PUBLISHABLE_KEY: Optional[str] = None
    CLERK_API_URL: str = "https://api.clerk.com/v1"

    # Clerk session token verification
    CLERK_JWT_KEY: Optional[str] = None  # PEM public key (networkless verification)
    CLERK_ISSUER: Optional[str] = None  # e.g. https://your-instance.clerk.accounts.dev
    CLERK_AUDIENCE: Optional[str] = None
    CLERK_JWKS_URL: Optional[str] = None

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_WEEKLY: Optional[str] = None
    STRIPE_PRICE_MONTHLY: Optional[str] = None
    STRIPE_PRICE_YEARLY: Optional[str] = None

    # App URLs
    BASE_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # Admin access (dead-letter endpoints)
    ADMIN_KEY: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


# Keys each feature needs to work; a gap degrades that feature only
REQUIRED_BY_FEATURE = {
    "database": ("DATABASE_URL",),
    "identity": ("CLERK_SECRET_KEY",),
    "meal plans": ("GROQ_API_KEY",),
    "billing": (
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "STRIPE_PRICE_WEEKLY",
        "STRIPE_PRICE_MONTHLY",
        "STRIPE_PRICE_YEARLY",
    ),
}


def missing_config(settings_obj: Optional[Settings] = None) -> Dict[str, List[str]]:
    """Feature name -> unset keys, for features with at least one gap."""
    cfg = settings_obj or settings
    gaps = {}
    for feature, keys in REQUIRED_BY_FEATURE.items():
        unset = [key for key in keys if not getattr(cfg, key, None)]
        if unset:
            gaps[feature] = unset
    return gaps


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Report missing configuration by feature.

    Strict mode (CONFIG_STRICT) raises RuntimeError; otherwise one warning per
    affected feature. Only key names are logged, never values.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("fitai")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    gaps = missing_config(cfg)
    if not gaps:
        return True

    if strict_mode:
        keys = [key for unset in gaps.values() for key in unset]
        raise RuntimeError(f"Missing required configuration: {', '.join(keys)}")
    for feature, unset in gaps.items():
        log.warning(f"{feature} disabled or degraded, missing configuration: {', '.join(unset)}")
    return True
