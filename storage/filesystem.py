"""
PEM filesystem storage and reverse-proxy deployment.

Directory layout per domain:
  <storage-root>/<domain>/
      cert.pem        — Leaf certificate
      chain.pem       — Intermediate CA chain
      fullchain.pem   — cert + chain (the proxy serves this)
      privkey.pem     — Private key (mode 0o600)

  <config-root>/<domain>.yml   — Traefik dynamic config fragment

Certbot writes its output to <tool-live-root>/<work-dir>/ with the same four
file names; deploy() relocates them here and only then writes the config
fragment.
"""
from __future__ import annotations

import logging
import os
import shutil
import stat
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml
from cryptography import x509
from cryptography.hazmat.backends import default_backend

from storage.atomic import atomic_move, atomic_write_text
from worker.errors import ArtifactMoveFailed, ConfigWriteFailed, DirectoryCreateFailed

logger = logging.getLogger(__name__)

# Certbot output files, all four relocated on every deployment
ARTIFACTS = ("cert.pem", "chain.pem", "fullchain.pem", "privkey.pem")


# ─── Layout helpers ────────────────────────────────────────────────────────────


def cert_dir(storage_root: str, domain: str) -> Path:
    """Return the Path for a domain's cert directory (not created)."""
    return Path(storage_root) / domain


def config_path(config_root: str, domain: str) -> Path:
    return Path(config_root) / f"{domain}.yml"


def read_cert_pem(storage_root: str, domain: str) -> Optional[str]:
    """Return the PEM text of the leaf cert, or None if not found."""
    path = cert_dir(storage_root, domain) / "cert.pem"
    if path.exists():
        return path.read_text()
    return None


def parse_expiry(pem_text: str) -> datetime:
    """Parse the notAfter field from a PEM certificate and return a UTC datetime."""
    cert = x509.load_pem_x509_certificate(pem_text.encode(), default_backend())
    # cryptography >= 42 exposes .not_valid_after_utc (timezone-aware)
    try:
        return cert.not_valid_after_utc
    except AttributeError:
        return cert.not_valid_after.replace(tzinfo=timezone.utc)


def render_proxy_config(proxy_storage_path: str, domain: str) -> str:
    """Traefik file-provider fragment pointing at the domain's fullchain + key."""
    base = f"{proxy_storage_path.rstrip('/')}/{domain}"
    return yaml.safe_dump(
        {
            "tls": {
                "certificates": [
                    {
                        "certFile": f"{base}/fullchain.pem",
                        "keyFile": f"{base}/privkey.pem",
                    }
                ]
            }
        },
        default_flow_style=False,
        sort_keys=False,
    )


# ─── Deployment ────────────────────────────────────────────────────────────────


class DeploymentWriter:
    """
    Moves certbot's output into per-domain storage and publishes the proxy config.

    The four artifacts are first moved into a staging directory beside the
    live files.  Only when all four arrived are they renamed over the live
    files, and only then is the config fragment (re)written, so a failed
    move never leaves the proxy pointing at a half-deployed certificate.
    """

    def __init__(
        self,
        storage_root: str,
        config_root: str,
        tool_live_root: str,
        proxy_storage_path: Optional[str] = None,
    ) -> None:
        self.storage_root = storage_root
        self.config_root = config_root
        self.tool_live_root = tool_live_root
        self.proxy_storage_path = proxy_storage_path or storage_root

    def deploy(self, work_dir: str, domain: str, issued: dict) -> None:
        """
        issued: {"stdout": ..., "stderr": ...} from the issuance client; its
        text is folded into ArtifactMoveFailed for operator diagnosis.
        """
        target = cert_dir(self.storage_root, domain)
        if not domain or "/" in domain or domain in (".", ".."):
            # Forced runs skip validation; never let a domain name escape the storage root
            raise DirectoryCreateFailed(str(target))
        try:
            target.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Cannot create %s: %s", target, exc)
            raise DirectoryCreateFailed(str(target)) from exc

        source = Path(self.tool_live_root) / work_dir
        staging = target / f".staging-{work_dir}"
        tool_log = f"{issued.get('stderr', '')} ; {issued.get('stdout', '')}"

        try:
            staging.mkdir(mode=0o700, exist_ok=True)
        except OSError as exc:
            raise DirectoryCreateFailed(str(staging)) from exc

        try:
            for name in ARTIFACTS:
                try:
                    atomic_move(source / name, staging / name)
                except OSError as exc:
                    logger.error("Moving %s for %s failed: %s", name, domain, exc)
                    raise ArtifactMoveFailed(name, tool_log) from exc

            os.chmod(staging / "privkey.pem", stat.S_IRUSR | stat.S_IWUSR)  # 0o600

            for name in ARTIFACTS:
                try:
                    os.replace(staging / name, target / name)
                except OSError as exc:
                    raise ArtifactMoveFailed(name, tool_log) from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        fragment = config_path(self.config_root, domain)
        try:
            atomic_write_text(fragment, render_proxy_config(self.proxy_storage_path, domain))
        except OSError as exc:
            logger.error("Writing %s failed: %s", fragment, exc)
            raise ConfigWriteFailed(str(fragment)) from exc

        logger.info("Deployed certificate for %s → %s", domain, fragment)
