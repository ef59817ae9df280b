"""
certificate_deployer node — hand the new files to the reverse proxy and stamp
the record with dates read back from the deployed cert.pem.
"""
from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from issuance.renewal import read_expiry, renewal_date
from worker.errors import UnreadableCertificate
from worker.state import Stage, WorkflowState, failed

logger = logging.getLogger(__name__)


def certificate_deployer(state: WorkflowState, config: RunnableConfig) -> dict:
    services = config["configurable"]["services"]
    domain = state["domain"]
    storage_root = services.settings.STORAGE_ROOT

    try:
        services.deployer.deploy(state["work_dir"], domain, state["issued"] or {})
        expiry = read_expiry(storage_root, domain)
        if expiry is None:
            raise UnreadableCertificate(f"{storage_root}/{domain}/cert.pem")
    except Exception as exc:
        return failed(exc)

    certificate = dict(state["certificate"] or {})
    certificate["renewDate"] = renewal_date(expiry).isoformat()
    certificate["attempts"] = 0
    certificate["issueDate"] = services.now()

    logger.info("Certificate for %s deployed, renewal due %s", domain, certificate["renewDate"][:10])
    return {"certificate": certificate, "stage": Stage.SUCCESS.value}
