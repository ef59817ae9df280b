"""
certificate_loader node — fetch the domain's certificate document, or start a
new one that certificate_saver will insert.
"""
from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from worker.state import Stage, WorkflowState

logger = logging.getLogger(__name__)


def certificate_loader(state: WorkflowState, config: RunnableConfig) -> dict:
    services = config["configurable"]["services"]
    domain = state["domain"]

    certificate = services.repository.load(domain)
    if certificate is None:
        logger.info("No certificate record for %s yet — starting a new one", domain)
        certificate = {"domain": domain}

    return {"certificate": certificate, "stage": Stage.START.value}
