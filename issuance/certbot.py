"""
Certbot driver: obtains certificate material by running the certbot CLI.

Every attempt gets a fresh --cert-name (the work directory).  Reusing a name
across attempts lets certbot's renewal config for that lineage leak into
the next run, so the name is never derived from the domain.

Outside production the run is a --dry-run against the staging CA, which
exercises the whole flow without burning Let's Encrypt rate limits.
"""
from __future__ import annotations

import logging
import subprocess
import uuid
from typing import List, TypedDict

from worker.errors import IssuanceFailed

logger = logging.getLogger(__name__)


class IssuedData(TypedDict):
    stdout: str
    stderr: str


def new_work_dir() -> str:
    """Unique per-attempt certificate name; never reused, even for the same domain."""
    return uuid.uuid4().hex


class CertbotClient:
    def __init__(
        self,
        webroot: str,
        production: bool = False,
        certbot_bin: str = "certbot",
        timeout: int = 300,
    ) -> None:
        self.webroot = webroot
        self.production = production
        self.certbot_bin = certbot_bin
        self.timeout = timeout

    def build_command(self, work_dir: str, domain: str, email: str) -> List[str]:
        cmd = [
            self.certbot_bin, "certonly",
            "--webroot",
            "--noninteractive",
            "--agree-tos",
        ]
        if not self.production:
            cmd.append("--dry-run")
        cmd.extend([
            "--email", email,
            "--cert-name", work_dir,
            "-w", self.webroot,
            "-d", domain,
        ])
        return cmd

    def issue(self, work_dir: str, domain: str, email: str) -> IssuedData:
        """
        Run certbot for *domain*.

        Returns stdout and stderr on success; stderr is kept because certbot
        prints non-fatal warnings there.  Raises IssuanceFailed on a non-zero
        exit, a timeout, or a missing binary.
        """
        cmd = self.build_command(work_dir, domain, email)
        logger.debug("Running: %s", " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise IssuanceFailed(f"certbot timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise IssuanceFailed(f"cannot execute {self.certbot_bin}: {exc}") from exc

        # Unexpected error: usually CA 5XX, rate limits, failed challenge
        if result.returncode != 0:
            logger.error("Certbot stderr for %s: %s", domain, result.stderr)
            raise IssuanceFailed(result.stderr, result.stdout)

        logger.debug("Certbot stdout for %s: %s", domain, result.stdout)
        return {"stdout": result.stdout, "stderr": result.stderr}
