"""
Unit tests for domain eligibility checks (public suffix + CNAME proof).

CNAME resolution is injected; no DNS query leaves the test process.
"""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import dns.exception
import pytest

from issuance.domains import (
    DomainValidator,
    is_public,
    is_test,
    lookup_cname,
    resolve_main_domain,
)
from storage.records import DOMAINS, MemoryRecordStore
from worker.errors import DNSMismatch, EmptyDomain, UnknownSuffix, UnreachableTarget

TARGET = "proxy.example.net"


def _validator(cnames=None, target=TARGET) -> DomainValidator:
    return DomainValidator(target, resolve_cname=lambda domain: list(cnames or []))


class TestSuffixChecks:
    @pytest.mark.parametrize("domain", ["example.com", "shop.example.co.uk", "app.example.io"])
    def test_public_domains(self, domain):
        assert is_public(domain)

    @pytest.mark.parametrize("domain", ["app.localhost", "shop.test", "printer.local", "foo.invalid"])
    def test_reserved_domains(self, domain):
        assert not is_public(domain)

    def test_bare_suffix_is_not_public(self):
        assert not is_public("co.uk")

    def test_is_test_ignores_trailing_dot_and_case(self):
        assert is_test("Shop.TEST.")


class TestDomainValidator:
    def test_empty_domain(self):
        with pytest.raises(EmptyDomain, match="Missing certificate domain."):
            _validator().validate("", is_primary=True)

    def test_unknown_suffix(self):
        with pytest.raises(UnknownSuffix, match="Unknown public suffix for domain."):
            _validator().validate("shop.test", is_primary=False)

    def test_primary_needs_no_dns_proof(self):
        resolver = MagicMock(return_value=[])
        DomainValidator(TARGET, resolve_cname=resolver).validate("example.com", is_primary=True)
        resolver.assert_not_called()

    def test_unknown_suffix_applies_to_primary(self):
        with pytest.raises(UnknownSuffix):
            _validator().validate("console.localhost", is_primary=True)

    def test_custom_domain_with_matching_cname(self):
        _validator(cnames=[TARGET]).validate("shop.example.org", is_primary=False)

    def test_cname_comparison_ignores_case_and_trailing_dot(self):
        _validator(cnames=["Proxy.Example.NET."]).validate("shop.example.org", is_primary=False)

    def test_custom_domain_with_other_cname(self):
        with pytest.raises(DNSMismatch, match="Failed to verify domain DNS records."):
            _validator(cnames=["elsewhere.example.net"]).validate("shop.example.org", is_primary=False)

    def test_custom_domain_without_cname(self):
        with pytest.raises(DNSMismatch):
            _validator(cnames=[]).validate("shop.example.org", is_primary=False)

    def test_unreachable_proxy_target(self):
        with pytest.raises(UnreachableTarget) as exc_info:
            _validator(cnames=["proxy.localhost"], target="proxy.localhost").validate(
                "shop.example.org", is_primary=False
            )
        assert "proxy.localhost" in str(exc_info.value)

    def test_empty_proxy_target_is_unreachable(self):
        with pytest.raises(UnreachableTarget):
            _validator(target="").validate("shop.example.org", is_primary=False)


class TestLookupCname:
    def test_returns_targets_without_final_dot(self):
        rdata = MagicMock()
        rdata.target.to_text.return_value = "Proxy.Example.net"
        with patch("issuance.domains.dns.resolver.resolve", return_value=[rdata]) as resolve:
            assert lookup_cname("shop.example.org") == ["proxy.example.net"]
        resolve.assert_called_once_with("shop.example.org", "CNAME")
        rdata.target.to_text.assert_called_once_with(omit_final_dot=True)

    def test_dns_error_means_no_targets(self):
        with patch("issuance.domains.dns.resolver.resolve", side_effect=dns.exception.Timeout()):
            assert lookup_cname("shop.example.org") == []


class TestResolveMainDomain:
    def test_configured_domain_wins(self):
        assert resolve_main_domain("console.example.com", MemoryRecordStore()) == "console.example.com"

    @pytest.mark.parametrize("configured", ["", "localhost"])
    def test_falls_back_to_oldest_domain_record(self, configured):
        store = MemoryRecordStore()
        store.create_document(DOMAINS, {"$id": "0002", "domain": "second.example.com"})
        store.create_document(DOMAINS, {"$id": "0001", "domain": "first.example.com"})

        assert resolve_main_domain(configured, store) == "first.example.com"

    def test_no_domains_yet(self):
        assert resolve_main_domain("", MemoryRecordStore()) is None
