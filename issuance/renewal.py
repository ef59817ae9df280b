"""
Renewal decision: is the certificate on disk inside its renewal window?

Let's Encrypt allows renewal 30 days before expiry; that window is fixed
policy, not configuration.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from storage import filesystem as fs
from worker.errors import UnreadableCertificate

logger = logging.getLogger(__name__)

RENEWAL_WINDOW = timedelta(days=30)


def renewal_date(expiry: datetime) -> datetime:
    """Moment from which a certificate expiring at *expiry* is due for renewal."""
    return expiry - RENEWAL_WINDOW


def read_expiry(storage_root: str, domain: str) -> Optional[datetime]:
    """
    Expiry of the deployed certificate, or None when no cert.pem exists.

    Raises UnreadableCertificate when the file exists but yields no expiry.
    """
    pem = fs.read_cert_pem(storage_root, domain)
    if pem is None:
        return None
    try:
        return fs.parse_expiry(pem)
    except ValueError as exc:
        logger.warning("  %s → failed to parse cert: %s", domain, exc)
        raise UnreadableCertificate(str(fs.cert_dir(storage_root, domain) / "cert.pem")) from exc


def is_renewal_required(storage_root: str, domain: str, now: Optional[datetime] = None) -> bool:
    expiry = read_expiry(storage_root, domain)
    if expiry is None:
        logger.info("  %s → no certificate found — will issue", domain)
        return True

    now = now or datetime.now(tz=timezone.utc)
    due = renewal_date(expiry) <= now
    logger.info(
        "  %s → expires %s (%d days) — %s",
        domain,
        expiry.strftime("%Y-%m-%d"),
        (expiry - now).days,
        "RENEW" if due else "OK",
    )
    return due
