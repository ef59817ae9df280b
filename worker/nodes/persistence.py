"""
certificate_saver and domain_linker nodes — the steps every execution that
reached a verdict (success or failure) runs.

Store errors are not converted into state: if the record cannot be
written, nothing about this attempt can be recorded, so the fault goes to
the caller.
"""
from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from worker.errors import PersistenceError, RecordStoreError
from worker.state import Stage, WorkflowState

logger = logging.getLogger(__name__)


def save_certificate(services, domain: str, certificate: dict) -> dict:
    certificate = {**certificate, "updated": services.now()}
    try:
        return services.repository.save(domain, certificate)
    except PersistenceError:
        raise
    except Exception as exc:
        raise RecordStoreError(f"Saving certificate for {domain} failed: {exc}") from exc


def certificate_saver(state: WorkflowState, config: RunnableConfig) -> dict:
    services = config["configurable"]["services"]
    saved = save_certificate(services, state["domain"], state["certificate"] or {})

    logger.info("Saved certificate %s for %s (attempts=%s)",
                saved["$id"], state["domain"], saved.get("attempts", 0))
    return {
        "certificate": saved,
        "certificate_id": saved["$id"],
        "persisted": True,
        "stage": Stage.PERSISTED.value,
    }


def domain_linker(state: WorkflowState, config: RunnableConfig) -> dict:
    services = config["configurable"]["services"]
    try:
        linked = services.fanout.propagate(state["certificate_id"], state["domain"], services.now())
    except PersistenceError:
        raise
    except Exception as exc:
        raise RecordStoreError(f"Linking domains for {state['domain']} failed: {exc}") from exc

    return {"linked_domains": linked, "stage": Stage.PROPAGATED.value}
