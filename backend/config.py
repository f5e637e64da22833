"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential

PLAID_ENVIRONMENTS = ("sandbox", "production")


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the system keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


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
    DATABASE_URL: str = "sqlite:///./ledgersync.db"

    # Plaid credentials (required for any sync)
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_ENVIRONMENT: str = "sandbox"
    TRANSACTIONS_PAGE_SIZE: int = 500

    # AI categorization (optional - jobs are skipped when unset)
    ANTHROPIC_API_KEY: str = ""
    CATEGORIZATION_MODEL: str = "claude-sonnet-4-5"
    CATEGORIZATION_BATCH_SIZE: int = 50

    # Sync engine / background jobs
    SYNC_MAX_WORKERS: int = 1
    JOB_MAX_WORKERS: int = 4
    SYNC_STALE_AFTER_MINUTES: int = 30
    JOB_STALE_AFTER_MINUTES: int = 60
    CRON_IGNORE_USER_IDS: str = ""

    @field_validator("PLAID_ENVIRONMENT", mode="before")
    @classmethod
    def validate_plaid_environment(cls, v: str) -> str:
        """Normalize PLAID_ENVIRONMENT and reject unknown environments."""
        if v.lower() not in PLAID_ENVIRONMENTS:
            raise ValueError(
                f"PLAID_ENVIRONMENT must be one of {PLAID_ENVIRONMENTS}, got {v!r}"
            )
        return v.lower()

    @field_validator("TRANSACTIONS_PAGE_SIZE")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        """Plaid accepts between 1 and 500 transactions per sync page."""
        if not 1 <= v <= 500:
            raise ValueError(f"TRANSACTIONS_PAGE_SIZE must be between 1 and 500, got {v}")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    @property
    def ignored_user_ids(self) -> frozenset[str]:
        """User ids excluded from scheduled batch runs (demo accounts etc.)."""
        return frozenset(
            uid.strip() for uid in self.CRON_IGNORE_USER_IDS.split(",") if uid.strip()
        )

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
