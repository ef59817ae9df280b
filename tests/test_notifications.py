"""
Tests for failure emails: localized rendering, the failure pipeline and
SMTP dispatch (smtplib patched).
"""
from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from notify.mail import LogMailDispatcher, MailMessage, SmtpMailDispatcher, make_dispatcher
from notify.templates import LOCALES_DIR, REQUIRED_KEYS, EmailRenderer
from tests.conftest import NOW
from worker.nodes.failure import record_failure


# ─── EmailRenderer ────────────────────────────────────────────────────────────


class TestEmailRenderer:
    def test_english_failure_mail(self):
        subject, body = EmailRenderer("en", "en").render_certificate_failure(
            "shop.example.com", "Failed to issue a certificate with message: rate limited", 2
        )

        assert subject == "Certificate failure for shop.example.com"
        assert "shop.example.com" in body
        assert "rate limited" in body
        assert "attempt no. 2" in body
        assert 'dir="ltr"' in body

    def test_german_locale(self):
        subject, body = EmailRenderer("de", "en").render_certificate_failure("example.com", "boom", 1)

        strings = json.loads((LOCALES_DIR / "de.json").read_text(encoding="utf-8"))
        assert subject == strings["emails.certificate.subject"] % "example.com"
        assert strings["emails.certificate.hello"] in body

    def test_unknown_locale_falls_back(self):
        subject, _ = EmailRenderer("xx", "en").render_certificate_failure("example.com", "boom", 1)
        assert subject == "Certificate failure for example.com"

    def test_partial_locale_falls_back_entirely(self, tmp_path):
        en = json.loads((LOCALES_DIR / "en.json").read_text(encoding="utf-8"))
        partial = {"emails.certificate.subject": "Zertifikat %s"}
        (tmp_path / "en.json").write_text(json.dumps(en))
        (tmp_path / "fr.json").write_text(json.dumps(partial))

        subject, _ = EmailRenderer("fr", "en", locales_dir=tmp_path).render_certificate_failure(
            "example.com", "boom", 1
        )

        assert subject == "Certificate failure for example.com"

    def test_shipped_catalogs_are_complete(self):
        for code in ("en", "de"):
            strings = json.loads((LOCALES_DIR / f"{code}.json").read_text(encoding="utf-8"))
            assert all(strings.get(key) for key in REQUIRED_KEYS), code

    def test_error_text_is_escaped(self):
        _, body = EmailRenderer().render_certificate_failure("example.com", "<script>alert(1)</script>", 1)
        assert "<script>" not in body
        assert "&lt;script&gt;" in body


# ─── record_failure ───────────────────────────────────────────────────────────


class TestRecordFailure:
    def test_updates_record_and_queues_mail(self, services, mailer):
        certificate = {"domain": "example.com", "attempts": 2, "log": "old", "issueDate": "x"}

        result = record_failure(services, "example.com", "new failure", certificate)

        assert result["attempts"] == 3
        assert result["log"] == "new failure"
        assert result["renewDate"] == NOW.isoformat()
        assert result["issueDate"] == "x"
        assert certificate["attempts"] == 2  # Input is not mutated

        message = mailer.trigger.call_args.args[0]
        assert isinstance(message, MailMessage)
        assert message.recipient == "security@example.com"
        assert message.sender_name == services.settings.MAIL_SENDER_NAME
        assert "attempt no. 3" in message.body

    def test_first_failure_on_new_record(self, services):
        result = record_failure(services, "example.com", "boom", {"domain": "example.com"})
        assert result["attempts"] == 1

    def test_mail_error_is_logged_not_raised(self, services, mailer, caplog):
        mailer.trigger.side_effect = OSError("queue full")

        result = record_failure(services, "example.com", "boom", {})

        assert result["attempts"] == 1
        assert "could not be queued" in caplog.text


# ─── Dispatchers ──────────────────────────────────────────────────────────────


def _message():
    return MailMessage(recipient="security@example.com", subject="Certificate failure", body="<p>x</p>",
                       sender_name="Certificates Administrator")


class TestDispatchers:
    def test_no_smtp_host_only_logs(self, worker_settings, caplog):
        dispatcher = make_dispatcher(worker_settings)
        assert isinstance(dispatcher, LogMailDispatcher)

        with caplog.at_level("INFO"):
            dispatcher.trigger(_message())
        assert "security@example.com" in caplog.text

    def test_smtp_host_builds_smtp_dispatcher(self, worker_settings):
        worker_settings.SMTP_HOST = "mail.example.com"
        dispatcher = make_dispatcher(worker_settings)
        assert isinstance(dispatcher, SmtpMailDispatcher)
        assert dispatcher.host == "mail.example.com"

    def test_send_builds_multipart_message(self):
        dispatcher = SmtpMailDispatcher("mail.example.com", 587, sender="certs@example.com",
                                        username="u", password="p", starttls=True)
        smtp = MagicMock()

        with patch("notify.mail.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value = smtp
            dispatcher.send(_message())

        smtp_cls.assert_called_once_with("mail.example.com", 587, timeout=30)
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("u", "p")
        sent = smtp.send_message.call_args.args[0]
        assert sent["To"] == "security@example.com"
        assert "certs@example.com" in sent["From"]
        assert sent.is_multipart()

    def test_trigger_delivers_in_background(self):
        dispatcher = SmtpMailDispatcher("mail.example.com")

        with patch.object(dispatcher, "send") as send:
            dispatcher.trigger(_message())
            dispatcher.close()

        send.assert_called_once()

    def test_delivery_failure_does_not_kill_sender_thread(self):
        dispatcher = SmtpMailDispatcher("mail.example.com")

        with patch.object(dispatcher, "send", side_effect=[OSError("refused"), None]) as send:
            dispatcher.trigger(_message())
            dispatcher.trigger(_message())
            dispatcher.close()

        assert send.call_count == 2


@pytest.mark.parametrize("code", ["en", "de"])
def test_catalog_body_mentions_all_placeholders(code):
    body = json.loads((LOCALES_DIR / f"{code}.json").read_text(encoding="utf-8"))["emails.certificate.body"]
    for placeholder in ("{{domain}}", "{{attempt}}", "{{error}}"):
        assert placeholder in body
