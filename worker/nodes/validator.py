"""
domain_validator node — refuse domains the CA would reject before spending an
ACME attempt on them.

The security email is checked first and also applies to forced runs: the CA
requires it on every certbot invocation.
"""
from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from issuance.domains import resolve_main_domain
from worker.errors import MissingSecurityEmail, PersistenceError
from worker.state import Stage, WorkflowState, failed

logger = logging.getLogger(__name__)


def domain_validator(state: WorkflowState, config: RunnableConfig) -> dict:
    services = config["configurable"]["services"]
    settings = services.settings
    domain = state["domain"]

    try:
        if not settings.SECURITY_EMAIL:
            raise MissingSecurityEmail()

        if state["skip_renew_check"]:
            logger.info("Forced run for %s — skipping domain validation", domain)
            return {"stage": Stage.VALIDATION_SKIPPED.value}

        main_domain = resolve_main_domain(settings.PRIMARY_DOMAIN, services.store)
        is_primary = main_domain is None or domain == main_domain
        services.validator.validate(domain, is_primary)
    except PersistenceError:
        raise
    except Exception as exc:
        logger.info("Validation of %s failed: %s", domain, exc)
        return failed(exc)

    return {"stage": Stage.VALIDATED.value}
