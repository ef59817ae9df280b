"""
CertificateWorker — runs the certificate graph for one domain at a time,
or for many domains on a thread pool.

Guarantees per execution:
  - a per-domain lease is held for the whole run and released on every path
  - once a verdict exists the record is persisted, even if the run is
    interrupted (KeyboardInterrupt, an unexpected node fault): the last
    observed state goes through the failure pipeline and is saved before
    the interruption is re-raised
  - PersistenceError always reaches the caller untouched
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from config import Settings
from storage.records import CERTIFICATES
from worker.errors import LeaseSetupFailed, PersistenceError
from worker.graph import build_graph
from worker.nodes.failure import record_failure
from worker.nodes.persistence import save_certificate
from worker.services import WorkerServices
from worker.state import Stage, failed, initial_state

logger = logging.getLogger(__name__)


class CertificateWorker:
    def __init__(self, settings: Settings, services: Optional[WorkerServices] = None) -> None:
        self.settings = settings
        self.services = services or WorkerServices.from_settings(settings)
        self._graph = build_graph()

    def __enter__(self) -> "CertificateWorker":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Flush queued failure emails; background delivery dies with the process otherwise."""
        close = getattr(self.services.mailer, "close", None)
        if callable(close):
            close()

    # ── Entry points ──────────────────────────────────────────────────────

    def handle_message(self, payload: Optional[dict]) -> Optional[dict]:
        """
        Queue entry point.

        payload: {"domain": {"domain": "<fqdn>", ...}, "skipRenewCheck": bool}
        """
        if not payload:
            raise ValueError("Missing payload")

        domain = (payload.get("domain") or {}).get("domain", "")
        return self.run(domain, skip_renew_check=bool(payload.get("skipRenewCheck", False)))

    def run(self, domain: str, skip_renew_check: bool = False) -> Optional[dict]:
        """
        Check / issue / deploy the certificate for *domain*.

        Returns the final workflow state, or None when another execution
        holds the domain's lease.  Failures of the certificate itself are
        recorded on the certificate document, not raised.
        """
        try:
            with self.services.leases.hold(domain or "_empty") as acquired:
                if not acquired:
                    logger.info("Skipping %s — another execution is processing it", domain)
                    return None
                return self._execute(domain, skip_renew_check)
        except LeaseSetupFailed as exc:
            return self._record_lease_failure(domain, skip_renew_check, exc)

    def run_many(
        self, domains: Iterable[str], skip_renew_check: bool = False
    ) -> Tuple[Dict[str, Optional[dict]], Dict[str, BaseException]]:
        """
        Process different domains concurrently (MAX_WORKERS threads).

        Returns (results, faults): per-domain final state, and the domains
        whose execution raised (persistence faults).
        """
        domains = list(dict.fromkeys(domains))
        results: Dict[str, Optional[dict]] = {}
        faults: Dict[str, BaseException] = {}

        with ThreadPoolExecutor(max_workers=max(1, self.settings.MAX_WORKERS)) as pool:
            futures = {d: pool.submit(self.run, d, skip_renew_check) for d in domains}
            for domain, future in futures.items():
                try:
                    results[domain] = future.result()
                except Exception as exc:
                    logger.exception("Certificate run for %s failed: %s", domain, exc)
                    faults[domain] = exc

        return results, faults

    def due_domains(self, now: Optional[datetime] = None, limit: int = 5000) -> List[str]:
        """Domains whose certificate renewDate has passed (for an external scheduler)."""
        now = now or self.services.clock()
        due = []
        for record in self.services.store.find(CERTIFICATES, {}, limit=limit):
            renew = record.get("renewDate")
            if renew and datetime.fromisoformat(renew) <= now:
                due.append(record["domain"])
        return due

    # ── Internal ──────────────────────────────────────────────────────────

    def _execute(self, domain: str, skip_renew_check: bool) -> dict:
        config = {"configurable": {"services": self.services}}
        latest = initial_state(domain, skip_renew_check)

        try:
            for latest in self._graph.stream(latest, config=config, stream_mode="values"):
                pass
        except PersistenceError:
            raise
        except BaseException as exc:
            if not latest.get("persisted"):
                logger.error("Run for %s interrupted at %s — recording failure", domain, latest.get("stage"))
                error = latest.get("error") or f"Certificate run interrupted: {exc.__class__.__name__}: {exc}"
                self._persist_failure(latest, error)
            raise

        stage = latest["stage"]
        logger.info("Certificate run for %s finished at %s", domain, stage)
        return latest

    def _record_lease_failure(self, domain: str, skip_renew_check: bool, exc: LeaseSetupFailed) -> dict:
        """The run never started; record why, so the domain stays in the retry cycle."""
        state = {**initial_state(domain, skip_renew_check), **failed(exc)}
        return {**state, **self._persist_failure(state, state["error"])}

    def _persist_failure(self, state: dict, error: str) -> dict:
        domain = state["domain"]
        certificate = state.get("certificate") or self.services.repository.load(domain) or {"domain": domain}

        if not state.get("failure_recorded"):
            certificate = record_failure(self.services, domain, error, certificate)
        saved = save_certificate(self.services, domain, certificate)
        linked = self.services.fanout.propagate(saved["$id"], domain, self.services.now())

        return {
            "certificate": saved,
            "certificate_id": saved["$id"],
            "failure_recorded": True,
            "persisted": True,
            "linked_domains": linked,
            "stage": Stage.PROPAGATED.value,
        }
