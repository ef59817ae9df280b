"""
Workflow state for one certificate worker execution.

One execution handles exactly one domain:
  Start → Validated | ValidationSkipped
        → RenewalRequired | RenewalSkipped   (or NotDue: early exit, nothing written)
        → Issuing → Deploying → Success
  any step → Failed
  Success | Failed → Persisted → Propagated

`certificate` is the in-memory certificate document; the workflow owns it
until certificate_saver hands it to the record manager.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from typing_extensions import TypedDict


class Stage(str, Enum):
    START = "Start"
    VALIDATED = "Validated"
    VALIDATION_SKIPPED = "ValidationSkipped"
    RENEWAL_REQUIRED = "RenewalRequired"
    RENEWAL_SKIPPED = "RenewalSkipped"
    NOT_DUE = "NotDue"
    ISSUING = "Issuing"
    DEPLOYING = "Deploying"
    SUCCESS = "Success"
    FAILED = "Failed"
    PERSISTED = "Persisted"
    PROPAGATED = "Propagated"


class WorkflowState(TypedDict):
    # ── Input ──────────────────────────────────────────────────────────────
    domain: str
    skip_renew_check: bool            # Forced run: skips validation and the renewal gate

    # ── Record ─────────────────────────────────────────────────────────────
    certificate: Optional[dict]       # domain, log, attempts, renewDate, issueDate, updated
    certificate_id: Optional[str]     # Set once the record manager saved it

    # ── Progress ───────────────────────────────────────────────────────────
    stage: str
    work_dir: Optional[str]           # Unique certbot --cert-name for this attempt
    issued: Optional[dict]            # {"stdout", "stderr"} from certbot
    error: Optional[str]              # Human-readable failure, becomes certificate.log
    error_kind: Optional[str]         # Exception class name
    failure_recorded: bool            # failure_handler already applied the failure
    persisted: bool
    linked_domains: int


def initial_state(domain: str, skip_renew_check: bool = False) -> dict:
    return {
        "domain": domain,
        "skip_renew_check": skip_renew_check,
        "certificate": None,
        "certificate_id": None,
        "stage": Stage.START.value,
        "work_dir": None,
        "issued": None,
        "error": None,
        "error_kind": None,
        "failure_recorded": False,
        "persisted": False,
        "linked_domains": 0,
    }


def failed(exc: BaseException) -> dict:
    """State update recording *exc* as the execution's failure."""
    return {
        "stage": Stage.FAILED.value,
        "error": str(exc) or exc.__class__.__name__,
        "error_kind": exc.__class__.__name__,
    }
