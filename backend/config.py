"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.keychain import APP_SECRET_KEYS, get_secret
from services.scheduler import CronSchedule


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load secret fields from the OS keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.keychain.APP_SECRET_KEYS` are looked up.  Everything
    else falls through to the environment and ``.env`` sources.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in APP_SECRET_KEYS:
            return None, field_name, False
        return get_secret(env_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


DEFAULT_REFERENCE_SYMBOLS = [
    "AAPL", "MSFT", "GOOGL", "AMZN", "NVDA", "TSLA", "META", "BRK.B",
    "SPY", "QQQ", "IWM", "VTI", "VXUS", "BND", "GLD", "ARKK",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./linksync.db"

    # SnapTrade application credentials (per-user secrets live in the DB)
    SNAPTRADE_CLIENT_ID: str = ""
    SNAPTRADE_CONSUMER_KEY: str = ""

    # Webhooks
    SNAPTRADE_WEBHOOK_SECRET: str = ""
    WEBHOOK_SIGNATURE_HEADER: str = "Signature"

    # Admin endpoints
    ADMIN_API_KEY: str = ""

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "America/New_York"
    ACCOUNT_REFRESH_ENABLED: bool = True
    ACCOUNT_REFRESH_SCHEDULE: str = "0 2 * * *"
    REFRESH_INTER_USER_DELAY_SECONDS: float = 1.0
    REFERENCE_CACHE_ENABLED: bool = True
    REFERENCE_CACHE_SCHEDULE: str = "0 */4 * * 1-5"
    REFERENCE_CACHE_SYMBOLS: str = ",".join(DEFAULT_REFERENCE_SYMBOLS)
    REFERENCE_CACHE_TTL_HOURS: int = 24
    REFERENCE_CACHE_DELAY_SECONDS: float = 0.5
    JOB_LOCK_TTL_SECONDS: int = 6 * 60 * 60

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    @field_validator("ACCOUNT_REFRESH_SCHEDULE", "REFERENCE_CACHE_SCHEDULE")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        """Reject cron expressions the scheduler cannot parse."""
        CronSchedule.parse(v)
        return v

    @property
    def reference_symbols(self) -> list[str]:
        """Symbols warmed by the reference-data cache job."""
        return [s.strip().upper() for s in self.REFERENCE_CACHE_SYMBOLS.split(",") if s.strip()]

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


settings = Settings()
