"""
Issuance nodes — reserve a fresh work directory, then run certbot in it.

issuance_starter records the Issuing stage and the work directory before
certbot is spawned, so an interrupted run is seen (and recorded) as
interrupted during issuance.

On success the certbot output becomes the certificate log as JSON
{"stdout": ..., "stderr": ...}; stderr is kept since certbot reports
non-fatal warnings there.
"""
from __future__ import annotations

import json
import logging

from langchain_core.runnables import RunnableConfig

from issuance.certbot import new_work_dir
from worker.state import Stage, WorkflowState, failed

logger = logging.getLogger(__name__)


def issuance_starter(state: WorkflowState) -> dict:
    return {"work_dir": new_work_dir(), "stage": Stage.ISSUING.value}


def certificate_issuer(state: WorkflowState, config: RunnableConfig) -> dict:
    services = config["configurable"]["services"]
    domain = state["domain"]
    work_dir = state["work_dir"] or new_work_dir()

    logger.info("Issuing certificate for %s (work dir %s)", domain, work_dir)
    try:
        issued = services.certbot.issue(work_dir, domain, services.settings.SECURITY_EMAIL)
    except Exception as exc:
        return {**failed(exc), "work_dir": work_dir}

    certificate = dict(state["certificate"] or {})
    certificate["log"] = json.dumps({"stdout": issued["stdout"], "stderr": issued["stderr"]})

    return {
        "certificate": certificate,
        "work_dir": work_dir,
        "issued": issued,
        "stage": Stage.DEPLOYING.value,
    }
