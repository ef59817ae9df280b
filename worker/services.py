"""
Collaborators a worker execution talks to, built once from Settings.

Nodes receive this container through the graph config
(config["configurable"]["services"]) instead of reading module globals,
so tests can swap any piece.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from config import Settings
from issuance.certbot import CertbotClient
from issuance.domains import DomainValidator
from notify.mail import MailDispatcher, make_dispatcher
from notify.templates import EmailRenderer
from storage.filesystem import DeploymentWriter
from storage.locks import DomainLeases
from storage.records import CertificateRepository, DomainFanout, JsonRecordStore, RecordStore


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class WorkerServices:
    settings: Settings
    store: RecordStore
    validator: DomainValidator
    certbot: CertbotClient
    deployer: DeploymentWriter
    renderer: EmailRenderer
    mailer: MailDispatcher
    leases: DomainLeases
    clock: Callable[[], datetime] = field(default=utc_now)

    @property
    def repository(self) -> CertificateRepository:
        return CertificateRepository(self.store)

    @property
    def fanout(self) -> DomainFanout:
        return DomainFanout(self.store)

    def now(self) -> str:
        return self.clock().isoformat()

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "WorkerServices":
        """Build the production collaborators; keyword overrides replace any of them."""
        parts = {
            "settings": settings,
            "store": JsonRecordStore(settings.RECORD_STORE_PATH),
            "validator": DomainValidator(settings.PROXY_TARGET_DOMAIN),
            "certbot": CertbotClient(
                webroot=settings.webroot,
                production=settings.PRODUCTION_MODE,
                certbot_bin=settings.CERTBOT_BIN,
                timeout=settings.ISSUANCE_TIMEOUT_SECONDS,
            ),
            "deployer": DeploymentWriter(
                storage_root=settings.STORAGE_ROOT,
                config_root=settings.CONFIG_ROOT,
                tool_live_root=settings.TOOL_LIVE_ROOT,
                proxy_storage_path=settings.proxy_storage_path,
            ),
            "renderer": EmailRenderer(locale=settings.LOCALE, default_locale=settings.DEFAULT_LOCALE),
            "mailer": None,
            "leases": DomainLeases(settings.lock_root, timeout=settings.LOCK_TIMEOUT_SECONDS),
        }
        parts.update(overrides)
        if parts["mailer"] is None:
            parts["mailer"] = make_dispatcher(settings)
        return cls(**parts)
