"""
Worker configuration via Pydantic Settings.
All values can be overridden by environment variables or a .env file.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class _CommaFallbackMixin:
    """Return the raw string when JSON parsing fails.

    pydantic-settings calls json.loads() on complex-typed fields (e.g.
    List[str]) before field_validators run, so ``a.com,b.com`` would raise
    SettingsError before parse_domains could split it.
    """

    def prepare_field_value(self, field_name, field, value, value_is_complex):  # type: ignore[override]
        try:
            return super().prepare_field_value(field_name, field, value, value_is_complex)  # type: ignore[misc]
        except ValueError:
            return value


class _CSVEnvSource(_CommaFallbackMixin, EnvSettingsSource):
    pass


class _CSVDotEnvSource(_CommaFallbackMixin, DotEnvSettingsSource):
    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Issuance identity ──────────────────────────────────────────────────
    SECURITY_EMAIL: str = ""          # Required by the CA; also receives failure alerts
    PRIMARY_DOMAIN: str = ""          # "" or "localhost" → oldest domain record is primary
    PROXY_TARGET_DOMAIN: str = ""     # CNAME target custom domains must point at
    PRODUCTION_MODE: bool = False     # False → certbot --dry-run

    # ── Locale ─────────────────────────────────────────────────────────────
    LOCALE: str = "en"
    DEFAULT_LOCALE: str = "en"

    # ── Filesystem layout ──────────────────────────────────────────────────
    STORAGE_ROOT: str = "./storage/certificates"
    CONFIG_ROOT: str = "./storage/config"
    TOOL_LIVE_ROOT: str = "/etc/letsencrypt/live"
    WEBROOT_PATH: Optional[str] = None        # Defaults to STORAGE_ROOT
    PROXY_STORAGE_PATH: Optional[str] = None  # Storage root as the proxy sees it

    # ── Issuance tool ──────────────────────────────────────────────────────
    CERTBOT_BIN: str = "certbot"
    ISSUANCE_TIMEOUT_SECONDS: int = 300

    # ── Records / locking / pool ───────────────────────────────────────────
    RECORD_STORE_PATH: str = "./storage/records"
    LOCK_ROOT: Optional[str] = None           # Defaults to <STORAGE_ROOT>/.locks
    LOCK_TIMEOUT_SECONDS: float = 0
    MAX_WORKERS: int = 4
    DOMAINS: List[str] = []

    # ── Mail ───────────────────────────────────────────────────────────────
    SMTP_HOST: str = ""
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_STARTTLS: bool = False
    MAIL_SENDER: str = "certificates@localhost"
    MAIL_SENDER_NAME: str = "Certificates Administrator"

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
            _CSVEnvSource(settings_cls),
            _CSVDotEnvSource(settings_cls, env_file=dotenv_settings.env_file),  # type: ignore[attr-defined]
            file_secret_settings,
        )

    @field_validator("DOMAINS", mode="before")
    @classmethod
    def parse_domains(cls, v: object) -> List[str]:
        """Accept comma-separated string or list."""
        if isinstance(v, str):
            return [d.strip() for d in v.split(",") if d.strip()]
        return v  # type: ignore[return-value]

    @field_validator("PRIMARY_DOMAIN", "PROXY_TARGET_DOMAIN")
    @classmethod
    def normalise_domain(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("LOCALE", "DEFAULT_LOCALE")
    @classmethod
    def validate_locale(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("locale must not be empty")
        return v.strip()

    # ── Derived paths ──────────────────────────────────────────────────────

    @property
    def webroot(self) -> str:
        return self.WEBROOT_PATH or self.STORAGE_ROOT

    @property
    def proxy_storage_path(self) -> str:
        return self.PROXY_STORAGE_PATH or self.STORAGE_ROOT

    @property
    def lock_root(self) -> str:
        return self.LOCK_ROOT or f"{self.STORAGE_ROOT.rstrip('/')}/.locks"


# Module-level singleton: the CLI reads it, the worker receives it explicitly.
settings = Settings()
