"""
Localized rendering of the certificate-failure email.

Locale catalogs are flat JSON files (notify/locales/<code>.json).  When the
configured locale lacks any string the email needs, the whole email falls
back to the default locale, so a message is never half-translated.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

logger = logging.getLogger(__name__)

_HERE = Path(__file__).parent
LOCALES_DIR = _HERE / "locales"
TEMPLATES_DIR = _HERE / "templates"

REQUIRED_KEYS = (
    "emails.sender",
    "emails.certificate.hello",
    "emails.certificate.subject",
    "emails.certificate.body",
    "emails.certificate.footer",
    "emails.certificate.thanks",
    "emails.certificate.signature",
)


def load_catalog(locales_dir: Path, code: str) -> Dict[str, str]:
    path = locales_dir / f"{code}.json"
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


class EmailRenderer:
    def __init__(
        self,
        locale: str = "en",
        default_locale: str = "en",
        locales_dir: Optional[Path] = None,
        templates_dir: Optional[Path] = None,
    ) -> None:
        self.locale = locale
        self.default_locale = default_locale
        self.locales_dir = Path(locales_dir or LOCALES_DIR)
        self._env = Environment(
            loader=FileSystemLoader(str(templates_dir or TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"], default_for_string=True),
        )

    def catalog(self) -> Dict[str, str]:
        """Strings for the configured locale, or the default locale if any are missing."""
        strings = load_catalog(self.locales_dir, self.locale)
        missing = [key for key in REQUIRED_KEYS if not strings.get(key)]
        if missing:
            logger.debug("Locale %r lacks %s — using %r", self.locale, missing, self.default_locale)
            strings = load_catalog(self.locales_dir, self.default_locale)
        return strings

    def render_certificate_failure(self, domain: str, error: str, attempt: int) -> Tuple[str, str]:
        """Return (subject, html_body) for a failed issuance of *domain*."""
        strings = self.catalog()
        params = {"domain": domain, "error": error, "attempt": attempt}

        def text(key: str) -> Markup:
            # Catalog strings may reference {{domain}}, {{error}}, {{attempt}}
            return Markup(self._env.from_string(strings.get(key, "")).render(params))

        subject = strings.get("emails.certificate.subject", "%s") % domain
        body = self._env.get_template("email-base.html").render(
            subject=subject,
            hello=text("emails.certificate.hello"),
            body=text("emails.certificate.body"),
            redirect=f"https://{domain}",
            footer=text("emails.certificate.footer"),
            thanks=text("emails.certificate.thanks"),
            signature=text("emails.certificate.signature"),
            project="Console",
            direction=strings.get("settings.direction", "ltr"),
            bg_body="#f7f7f7",
            bg_content="#ffffff",
            text_content="#000000",
        )
        return subject, body
