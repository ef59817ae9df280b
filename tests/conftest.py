"""
Shared pytest fixtures.

No test talks to a real CA, a real DNS server or an SMTP server: certbot is
replaced by FakeCertbot (writes real self-signed PEM files into the tool's
live directory), the domain validator and mailer are MagicMocks, and the
record store is in memory.  Filesystem work happens under tmp_path.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from cryptography.x509.oid import NameOID

from config import Settings
from issuance.domains import DomainValidator
from notify.templates import EmailRenderer
from storage.filesystem import DeploymentWriter
from storage.locks import DomainLeases
from storage.records import MemoryRecordStore
from worker.errors import IssuanceFailed
from worker.services import WorkerServices

# Frozen "now" for every worker test; X.509 dates carry whole seconds only
NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ─── Certificate helpers ──────────────────────────────────────────────────────


def make_cert_pem(domain: str, not_after: datetime) -> tuple[str, str]:
    """Return (cert_pem, key_pem) for a self-signed cert expiring at *not_after*."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_after - timedelta(days=90))
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    return cert.public_bytes(Encoding.PEM).decode(), key_pem.decode()


def write_artifacts(directory: Path, domain: str, not_after: datetime) -> None:
    """Write the four certbot output files for *domain* into *directory*."""
    cert_pem, key_pem = make_cert_pem(domain, not_after)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "cert.pem").write_text(cert_pem)
    (directory / "chain.pem").write_text(cert_pem)
    (directory / "fullchain.pem").write_text(cert_pem + cert_pem)
    (directory / "privkey.pem").write_text(key_pem)


class FakeCertbot:
    """Stands in for CertbotClient: records calls and produces real PEM files."""

    def __init__(self, live_root: str, valid_days: int = 90) -> None:
        self.live_root = Path(live_root)
        self.valid_days = valid_days
        self.calls: list[tuple[str, str, str]] = []
        self.fail_with: Optional[str] = None
        self.raise_exc: Optional[BaseException] = None

    def issue(self, work_dir: str, domain: str, email: str) -> dict:
        self.calls.append((work_dir, domain, email))
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.fail_with is not None:
            raise IssuanceFailed(self.fail_with)
        write_artifacts(self.live_root / work_dir, domain, NOW + timedelta(days=self.valid_days))
        return {"stdout": "cert issued", "stderr": ""}


# ─── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def worker_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        SECURITY_EMAIL="security@example.com",
        PRIMARY_DOMAIN="example.com",
        PROXY_TARGET_DOMAIN="proxy.example.net",
        PRODUCTION_MODE=False,
        LOCALE="en",
        DEFAULT_LOCALE="en",
        STORAGE_ROOT=str(tmp_path / "certificates"),
        CONFIG_ROOT=str(tmp_path / "config"),
        TOOL_LIVE_ROOT=str(tmp_path / "letsencrypt" / "live"),
        RECORD_STORE_PATH=str(tmp_path / "records"),
        MAX_WORKERS=4,
    )


@pytest.fixture()
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture()
def mailer() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def validator() -> MagicMock:
    return MagicMock(spec=DomainValidator)


@pytest.fixture()
def certbot(worker_settings: Settings) -> FakeCertbot:
    return FakeCertbot(worker_settings.TOOL_LIVE_ROOT)


@pytest.fixture()
def services(worker_settings, store, mailer, validator, certbot) -> WorkerServices:
    return WorkerServices(
        settings=worker_settings,
        store=store,
        validator=validator,
        certbot=certbot,
        deployer=DeploymentWriter(
            storage_root=worker_settings.STORAGE_ROOT,
            config_root=worker_settings.CONFIG_ROOT,
            tool_live_root=worker_settings.TOOL_LIVE_ROOT,
        ),
        renderer=EmailRenderer(locale="en", default_locale="en"),
        mailer=mailer,
        leases=DomainLeases(worker_settings.lock_root),
        clock=lambda: NOW,
    )
