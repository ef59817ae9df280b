"""
Error taxonomy for the certificate worker.

Every error raised by validation, the renewal check, issuance or deployment
derives from CertificateError and is converted into recorded state by the
workflow.  PersistenceError is the exception: it always reaches the caller.
"""
from __future__ import annotations


class CertificateError(Exception):
    """Base class for failures that end up in a certificate record's log."""


# ─── Validation ───────────────────────────────────────────────────────────────


class ValidationError(CertificateError):
    pass


class EmptyDomain(ValidationError):
    def __init__(self) -> None:
        super().__init__("Missing certificate domain.")


class UnknownSuffix(ValidationError):
    def __init__(self, domain: str) -> None:
        self.domain = domain
        super().__init__("Unknown public suffix for domain.")


class UnreachableTarget(ValidationError):
    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(
            f"Unreachable CNAME target ({target}), please use a domain with a public suffix."
        )


class DNSMismatch(ValidationError):
    def __init__(self, domain: str, target: str) -> None:
        self.domain = domain
        self.target = target
        super().__init__("Failed to verify domain DNS records.")


# ─── Policy / configuration ───────────────────────────────────────────────────


class PolicyError(CertificateError):
    pass


class RenewalNotRequired(PolicyError):
    """Early-exit signal: the current certificate is outside its renewal window."""

    def __init__(self) -> None:
        super().__init__("Renew isn't required.")


class ConfigurationError(CertificateError):
    pass


class MissingSecurityEmail(ConfigurationError):
    def __init__(self) -> None:
        super().__init__(
            "You must set a valid security email address (SECURITY_EMAIL) "
            "to issue an SSL certificate."
        )


class LeaseSetupFailed(ConfigurationError):
    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to open certificate lock file: {reason}")


class RenewalCheckError(CertificateError):
    pass


class UnreadableCertificate(RenewalCheckError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__("Unable to read certificate file (cert.pem).")


# ─── Issuance ─────────────────────────────────────────────────────────────────


class IssuanceError(CertificateError):
    pass


class IssuanceFailed(IssuanceError):
    def __init__(self, stderr: str, stdout: str = "") -> None:
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(f"Failed to issue a certificate with message: {stderr}")


# ─── Deployment ───────────────────────────────────────────────────────────────


class DeploymentError(CertificateError):
    pass


class DirectoryCreateFailed(DeploymentError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__("Failed to create path for certificate.")


class ArtifactMoveFailed(DeploymentError):
    def __init__(self, file_name: str, tool_log: str) -> None:
        self.file_name = file_name
        self.tool_log = tool_log
        super().__init__(
            f"Failed to rename certificate {file_name}. Let's Encrypt log: {tool_log}"
        )


class ConfigWriteFailed(DeploymentError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__("Failed to save Traefik configuration.")


# ─── Persistence (never caught by the failure pipeline) ───────────────────────


class PersistenceError(Exception):
    pass


class RecordStoreError(PersistenceError):
    pass


class ConcurrentUpdate(PersistenceError):
    def __init__(self, collection: str, record_id: str, expected: int, actual: int) -> None:
        self.collection = collection
        self.record_id = record_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{collection}/{record_id} changed concurrently "
            f"(expected version {expected}, found {actual})"
        )
