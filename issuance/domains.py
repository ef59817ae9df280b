"""
Domain eligibility checks run before asking the CA for a certificate.

Catches what the CA would reject anyway, without spending an ACME attempt:
  - the domain must sit under a known public suffix (no .test / .localhost)
  - a custom (non-primary) domain must CNAME to the proxy target domain

The public suffix list comes from tldextract's bundled snapshot and CNAME
lookups go through dnspython; both are injectable for tests.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Optional

import dns.exception
import dns.resolver
import tldextract

from worker.errors import DNSMismatch, EmptyDomain, UnknownSuffix, UnreachableTarget

logger = logging.getLogger(__name__)

# Reserved / internal TLDs the CA never issues for (RFC 2606, RFC 6761, RFC 6762)
TEST_TLDS = frozenset({"test", "localhost", "example", "invalid", "local", "internal"})

# Offline extractor: bundled public suffix snapshot, no HTTP fetch at runtime
_default_extractor = tldextract.TLDExtract(suffix_list_urls=())


def is_known(domain: str, extractor: Optional[tldextract.TLDExtract] = None) -> bool:
    """True when *domain* ends in a suffix present on the public suffix list."""
    ext = (extractor or _default_extractor)(domain)
    return bool(ext.suffix) and bool(ext.domain)


def is_test(domain: str) -> bool:
    """True when *domain* uses a reserved test / internal TLD."""
    return domain.rstrip(".").rsplit(".", 1)[-1].lower() in TEST_TLDS


def is_public(domain: str, extractor: Optional[tldextract.TLDExtract] = None) -> bool:
    return bool(domain) and is_known(domain, extractor) and not is_test(domain)


def lookup_cname(domain: str) -> List[str]:
    """Return CNAME targets of *domain* (no trailing dot); [] when none resolve."""
    try:
        answer = dns.resolver.resolve(domain, "CNAME")
    except dns.exception.DNSException as exc:
        logger.debug("CNAME lookup for %s failed: %s", domain, exc)
        return []
    return [rdata.target.to_text(omit_final_dot=True).lower() for rdata in answer]


class DomainValidator:
    """Pure eligibility check; raises a ValidationError subclass on rejection."""

    def __init__(
        self,
        proxy_target: str,
        resolve_cname: Callable[[str], List[str]] = lookup_cname,
        extractor: Optional[tldextract.TLDExtract] = None,
    ) -> None:
        self.proxy_target = proxy_target.strip().lower()
        self._resolve_cname = resolve_cname
        self._extractor = extractor

    def validate(self, domain: str, is_primary: bool) -> None:
        if not domain:
            raise EmptyDomain()

        if not is_public(domain, self._extractor):
            raise UnknownSuffix(domain)

        if is_primary:
            # Primary domain points at the service by other means; no DNS proof needed
            return

        if not is_public(self.proxy_target, self._extractor):
            raise UnreachableTarget(self.proxy_target)

        targets = self._resolve_cname(domain)
        if self.proxy_target not in {t.rstrip(".").lower() for t in targets}:
            logger.info("  %s → CNAME %s, expected %s", domain, targets or "(none)", self.proxy_target)
            raise DNSMismatch(domain, self.proxy_target)


def resolve_main_domain(configured: str, store) -> Optional[str]:
    """
    Return the service's primary domain.

    The configured value wins unless it is empty or "localhost"; otherwise the
    oldest domain record (lowest id) is primary.  None means no domain exists
    yet, in which case every domain is treated as primary.
    """
    if configured and configured != "localhost":
        return configured
    first = store.find_first("domains", order_by="$id")
    if first:
        return first.get("domain")
    return None
