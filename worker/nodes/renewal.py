"""
renewal_gate node — stop early when the deployed certificate is not yet due.
"""
from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from issuance.renewal import is_renewal_required
from worker.errors import RenewalNotRequired
from worker.state import Stage, WorkflowState, failed

logger = logging.getLogger(__name__)


def renewal_gate(state: WorkflowState, config: RunnableConfig) -> dict:
    services = config["configurable"]["services"]
    domain = state["domain"]

    if state["skip_renew_check"]:
        return {"stage": Stage.RENEWAL_SKIPPED.value}

    try:
        due = is_renewal_required(services.settings.STORAGE_ROOT, domain, now=services.clock())
    except Exception as exc:
        return failed(exc)

    if not due:
        logger.info("%s: %s", domain, RenewalNotRequired())
        return {"stage": Stage.NOT_DUE.value}

    return {"stage": Stage.RENEWAL_REQUIRED.value}
