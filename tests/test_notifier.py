"""Tests for notification formatting and delivery."""

import smtplib
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeTransport, record
from grade_notifier.exceptions import AuthError, SendError
from grade_notifier.models import GradeDelta, GradeOverview
from grade_notifier.notify import GradeMessageFormatter, Notifier, SmtpTransport

DELTA = GradeDelta(records=(
    record("2024-Fall", "CS102", "Algorithms", "4", "B+"),
    record("2024-Fall", "PE100", "Swimming & Diving", "0.5", "Pass"),
    record("2025-Spring", "MA201", "Linear Algebra", "3.0", "92"),
))


class TestNotifier:

    def test_empty_delta_never_touches_transport(self):
        transport = MagicMock()

        Notifier("student@example.com").notify(GradeDelta(), transport)

        transport.send.assert_not_called()

    def test_non_empty_delta_sends_exactly_once(self, transport):
        Notifier("student@example.com").notify(DELTA, transport)

        assert len(transport.sent) == 1
        message = transport.sent[0]
        assert message["to"] == "student@example.com"
        assert message["subject"] == "New grades: 3 courses"
        for grade in DELTA.records:
            assert grade.course_id in message["body"]
            assert grade.course_name in message["body"]
            assert grade.score in message["body"]
            assert grade.term in message["body"]

    def test_all_recipients_share_one_message(self, transport):
        Notifier(["student@example.com", "parent@example.com"]).notify(DELTA, transport)

        (message,) = transport.sent
        assert message["to"] == "student@example.com, parent@example.com"

    def test_send_error_is_surfaced(self):
        transport = FakeTransport(error=SendError("relay refused"))

        with pytest.raises(SendError, match="relay refused"):
            Notifier("student@example.com").notify(DELTA, transport)

    def test_error_report(self, transport):
        Notifier("student@example.com").notify_error(AuthError("bad password"), transport)

        (message,) = transport.sent
        assert message["subject"] == "Grade check failed"
        assert "authentication error: bad password" in message["body"]


class TestFormatter:

    def test_single_course_subject(self):
        delta = GradeDelta(records=DELTA.records[:1])
        assert GradeMessageFormatter.format_subject(delta) == "New grades: 1 course"

    def test_text_lists_every_field(self):
        body = GradeMessageFormatter.format_text(DELTA)

        assert "CS102  Algorithms  credit 4  score B+" in body
        assert "PE100  Swimming & Diving  credit 0.5  score Pass" in body
        assert "MA201  Linear Algebra  credit 3  score 92" in body
        assert body.index("2024-Fall") < body.index("CS102") < body.index("2025-Spring")

    def test_overview_preface(self):
        overview = GradeOverview(gpa=3.456, term_gpa=3.9, passed_credits=Decimal("42.5"))

        body = GradeMessageFormatter.format_text(DELTA, overview)

        assert "Total GPA: 3.46" in body
        assert "Term GPA: 3.90" in body
        assert "Credits earned: 42.5" in body

    def test_html_escapes_names(self):
        html = GradeMessageFormatter.format_html(DELTA)

        assert "Swimming &amp; Diving" in html
        assert "<h4>2025-Spring</h4>" in html


class TestSmtpTransport:

    def make_transport(self, **overrides):
        options = dict(
            host="smtp.example.com",
            port=465,
            sender="bot@example.com",
            username="bot@example.com",
            password="mailpass",
        )
        options.update(overrides)
        return SmtpTransport(**options)

    def test_sends_over_ssl_with_login(self):
        with patch("grade_notifier.notify.email.smtplib.SMTP_SSL") as smtp_ssl:
            server = smtp_ssl.return_value.__enter__.return_value
            self.make_transport().send("student@example.com", "Subject", "Body", html="<p>Body</p>")

        server.login.assert_called_once_with("bot@example.com", "mailpass")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "student@example.com"
        assert message["From"] == "bot@example.com"
        assert message.get_body(("plain",)).get_content().strip() == "Body"
        assert message.get_body(("html",)) is not None

    def test_every_recipient_is_in_the_to_header(self):
        with patch("grade_notifier.notify.email.smtplib.SMTP_SSL") as smtp_ssl:
            server = smtp_ssl.return_value.__enter__.return_value
            self.make_transport().send("student@example.com, parent@example.com", "Subject", "Body")

        server.send_message.assert_called_once()
        message = server.send_message.call_args.args[0]
        assert [a.addr_spec for a in message["To"].addresses] == [
            "student@example.com",
            "parent@example.com",
        ]

    def test_starttls(self):
        with patch("grade_notifier.notify.email.smtplib.SMTP") as smtp:
            server = smtp.return_value
            self.make_transport(security="starttls", port=587, username=None).send(
                "student@example.com", "Subject", "Body"
            )

        server.starttls.assert_called_once()
        server.__enter__.return_value.login.assert_not_called()

    @pytest.mark.parametrize("error", [
        smtplib.SMTPAuthenticationError(535, b"bad credentials"),
        ConnectionRefusedError("refused"),
    ])
    def test_failures_become_send_errors(self, error):
        with patch("grade_notifier.notify.email.smtplib.SMTP_SSL", side_effect=error):
            with pytest.raises(SendError):
                self.make_transport().send("student@example.com", "Subject", "Body")

    def test_rejects_unknown_security_mode(self):
        with pytest.raises(ValueError):
            self.make_transport(security="tls13")
