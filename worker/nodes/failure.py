"""
failure_handler node — turn a failed attempt into recorded state and an
operator alert.

record_failure() never raises: a broken mail setup must not stop the
certificate from being persisted.
"""
from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from notify.mail import MailMessage
from worker.state import WorkflowState

logger = logging.getLogger(__name__)


def record_failure(services, domain: str, error: str, certificate: dict) -> dict:
    """
    Apply a failure to *certificate* and alert the security contact.

    The log is overwritten (the latest failure is what operators act on),
    attempts grows by one and renewDate becomes "now" so the next
    maintenance pass picks the domain up again.
    """
    certificate = dict(certificate)
    attempts = int(certificate.get("attempts") or 0) + 1
    certificate["log"] = error
    certificate["attempts"] = attempts
    certificate["renewDate"] = services.now()

    logger.warning("Cannot renew domain (%s) on attempt no. %d certificate: %s", domain, attempts, error)

    try:
        notify_error(services, domain, error, attempts)
    except Exception as exc:
        logger.error("Failure notification for %s could not be queued: %s", domain, exc)

    return certificate


def notify_error(services, domain: str, error: str, attempts: int) -> None:
    settings = services.settings
    subject, body = services.renderer.render_certificate_failure(domain, error, attempts)
    services.mailer.trigger(
        MailMessage(
            recipient=settings.SECURITY_EMAIL,
            subject=subject,
            body=body,
            sender_name=settings.MAIL_SENDER_NAME,
        )
    )


def failure_handler(state: WorkflowState, config: RunnableConfig) -> dict:
    services = config["configurable"]["services"]
    domain = state["domain"]
    certificate = state["certificate"] or {"domain": domain}
    error = state["error"] or "Unknown error"

    return {
        "certificate": record_failure(services, domain, error, certificate),
        "failure_recorded": True,
    }
