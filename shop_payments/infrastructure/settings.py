"""
Application settings.

Frozen dataclasses grouped by concern, populated from environment
variables by ``Settings.from_env`` and cached by ``get_settings``.
Logging and WebSocket values come from ``configs`` because the logger is
built before the settings.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional

from shop_payments import configs


# =============================================================================
# Environment Helpers
# =============================================================================


def _env_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_optional(env: Mapping[str, str], key: str) -> Optional[str]:
    raw = env.get(key)
    return raw if raw else None


# =============================================================================
# Configuration Classes
# =============================================================================


@dataclass(frozen=True)
class StripeSettings:
    """Payment processor credentials."""

    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_timeout: float = 20.0
    max_network_retries: int = 2

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)


@dataclass(frozen=True)
class RedisSettings:
    """Redis connection settings."""

    url: str = "redis://localhost:6379/0"
    decode_responses: bool = True
    max_update_retries: int = 10


@dataclass(frozen=True)
class PlatformFeeSettings:
    """Application fee taken on destination charges."""

    rate: Decimal = Decimal("0.05")
    flat_cents: int = 5


@dataclass(frozen=True)
class DispatchSettings:
    """Reader dispatch and compensation settings."""

    timeout_seconds: float = 30.0
    compensation_max_attempts: int = 3
    compensation_backoff_seconds: float = 1.0
    test_mode_payment_delay_seconds: float = 2.0
    claim_stale_margin_seconds: float = 60.0

    @property
    def claim_stale_after_seconds(self) -> float:
        """Age after which a bare claim token may be taken over."""
        return self.timeout_seconds + self.claim_stale_margin_seconds


@dataclass(frozen=True)
class OnboardingSettings:
    """Connected account onboarding redirects."""

    frontend_url: str = "http://localhost:3000"

    @property
    def refresh_url(self) -> str:
        return f"{self.frontend_url.rstrip('/')}/revenue.html?refresh=true"

    @property
    def return_url(self) -> str:
        return f"{self.frontend_url.rstrip('/')}/revenue.html?success=true"


@dataclass(frozen=True)
class ServiceSettings:
    """External service URLs."""

    loki_url: Optional[str] = configs.LOKI_URL
    websocket_url: Optional[str] = configs.WS_URL


@dataclass(frozen=True)
class LoggingSettings:
    log_file: str = configs.LOG_FILE
    level: str = configs.LOG_LEVEL


# =============================================================================
# Main Settings
# =============================================================================


@dataclass
class Settings:
    """
    Main application settings.

    Aggregates all configuration sections.
    """

    app_env: str = "development"
    test_mode: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    stripe: StripeSettings = field(default_factory=StripeSettings)
    redis: RedisSettings = field(default_factory=RedisSettings)
    fees: PlatformFeeSettings = field(default_factory=PlatformFeeSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    onboarding: OnboardingSettings = field(default_factory=OnboardingSettings)
    services: ServiceSettings = field(default_factory=ServiceSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    def resolve_test_mode(self, requested: bool = False) -> bool:
        """
        Decide whether a request runs against the simulator.

        Args:
            requested: Per-request ``?test=true`` flag.

        Returns:
            False in production regardless of flags.
        """
        if self.is_production:
            return False
        return self.test_mode or requested

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from, defaults to ``os.environ``.
        """
        env = os.environ if env is None else env
        return cls(
            app_env=env.get("APP_ENV", "development"),
            test_mode=_env_bool(env, "TEST_MODE"),
            host=env.get("HOST", "0.0.0.0"),
            port=int(env.get("PORT", "8000")),
            stripe=StripeSettings(
                secret_key=_env_optional(env, "STRIPE_SECRET_KEY"),
                webhook_secret=_env_optional(env, "STRIPE_WEBHOOK_SECRET"),
                api_timeout=float(env.get("STRIPE_API_TIMEOUT", "20")),
            ),
            redis=RedisSettings(url=env.get("REDIS_URL", "redis://localhost:6379/0")),
            fees=PlatformFeeSettings(
                rate=Decimal(env.get("PLATFORM_FEE_RATE", "0.05")),
                flat_cents=int(env.get("PLATFORM_FEE_FLAT_CENTS", "5")),
            ),
            dispatch=DispatchSettings(
                timeout_seconds=float(env.get("DISPATCH_TIMEOUT_SECONDS", "30")),
                compensation_max_attempts=int(env.get("COMPENSATION_MAX_ATTEMPTS", "3")),
                compensation_backoff_seconds=float(
                    env.get("COMPENSATION_BACKOFF_SECONDS", "1")
                ),
                test_mode_payment_delay_seconds=float(
                    env.get("TEST_MODE_PAYMENT_DELAY_SECONDS", "2")
                ),
                claim_stale_margin_seconds=float(env.get("CLAIM_STALE_MARGIN_SECONDS", "60")),
            ),
            onboarding=OnboardingSettings(
                frontend_url=env.get("FRONTEND_URL", "http://localhost:3000"),
            ),
        )


# =============================================================================
# Settings Singleton
# =============================================================================


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
