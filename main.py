"""
TLS certificate worker — CLI entry point.

Usage:
  python main.py --domain example.com           # Check / issue one domain
  python main.py --domain example.com --force   # Issue regardless of expiry and DNS
  python main.py --all                          # Every domain in DOMAINS, on the worker pool
  python main.py --renew-due                    # Print domains whose renewDate has passed
"""
from __future__ import annotations

import argparse
import logging
import sys

import structlog

# ── Logging setup ─────────────────────────────────────────────────────────────

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = structlog.get_logger()


# ── Runners ───────────────────────────────────────────────────────────────────


def _summary(domain: str, state: dict | None) -> None:
    if state is None:
        log.info("skipped", domain=domain, reason="lease held by another execution")
        return
    certificate = state.get("certificate") or {}
    log.info(
        "certificate run finished",
        domain=domain,
        stage=state.get("stage"),
        attempts=certificate.get("attempts"),
        renew_date=certificate.get("renewDate"),
        linked_domains=state.get("linked_domains"),
    )


def run_one(domain: str, force: bool = False) -> int:
    from config import settings
    from worker.errors import PersistenceError
    from worker.orchestrator import CertificateWorker

    with CertificateWorker(settings) as worker:
        try:
            state = worker.run(domain, skip_renew_check=force)
        except PersistenceError as exc:
            log.error("certificate record could not be saved", domain=domain, error=str(exc))
            return 1
    _summary(domain, state)
    return 0


def run_all(force: bool = False) -> int:
    from config import settings
    from worker.orchestrator import CertificateWorker

    if not settings.DOMAINS:
        log.error("No domains configured. Set DOMAINS in .env or use --domain.")
        return 1

    with CertificateWorker(settings) as worker:
        results, faults = worker.run_many(settings.DOMAINS, skip_renew_check=force)
    for domain, state in results.items():
        _summary(domain, state)
    for domain, exc in faults.items():
        log.error("certificate record could not be saved", domain=domain, error=str(exc))
    return 1 if faults else 0


def list_due() -> int:
    from config import settings
    from worker.orchestrator import CertificateWorker

    with CertificateWorker(settings) as worker:
        for domain in worker.due_domains():
            print(domain)
    return 0


# ── CLI ───────────────────────────────────────────────────────────────────────


def main() -> None:
    parser = argparse.ArgumentParser(
        description="TLS certificate worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --domain shop.example.com
  python main.py --domain shop.example.com --force
  python main.py --all
  python main.py --renew-due
        """,
    )
    parser.add_argument(
        "--domain",
        metavar="DOMAIN",
        help="Check and, when due, issue the certificate for one domain",
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Run every domain listed in DOMAINS concurrently (MAX_WORKERS)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Skip domain validation and the renewal check",
    )
    parser.add_argument(
        "--renew-due",
        action="store_true",
        help="Print domains whose certificate renewDate has passed",
    )

    args = parser.parse_args()

    if args.renew_due:
        sys.exit(list_due())
    if args.domain is not None:
        sys.exit(run_one(args.domain, force=args.force))
    if args.all:
        sys.exit(run_all(force=args.force))

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
