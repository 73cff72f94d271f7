"""
Email delivery of grade notifications.

``Notifier`` turns a grade delta into one message; ``SmtpTransport`` sends
it. Anything with a matching ``send`` method can stand in for the
transport.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional, Protocol, Sequence, Union

from grade_notifier.exceptions import SendError
from grade_notifier.models import GradeDelta, GradeOverview
from grade_notifier.notify.formatters import GradeMessageFormatter

logger = logging.getLogger(__name__)


class MailTransport(Protocol):
    def send(self, to: str, subject: str, body: str, html: Optional[str] = None) -> None:
        ...


class SmtpTransport:
    """
    Sends mail through an SMTP server.

    Opens one connection per message; a run sends at most one grade
    email, so there is nothing to keep alive.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        security: str = "ssl",
        timeout: float = 30.0,
    ):
        """
        Initialize SMTP transport.

        Args:
            host: SMTP server host
            port: SMTP server port
            sender: From address
            username: Login name, or None to skip authentication
            password: Resolved login password
            security: "ssl", "starttls" or "none"
            timeout: Socket timeout in seconds
        """
        if security not in ("ssl", "starttls", "none"):
            raise ValueError(f"Unsupported SMTP security mode: {security}")
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.security = security
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        if self.security == "ssl":
            return smtplib.SMTP_SSL(
                self.host, self.port,
                timeout=self.timeout,
                context=ssl.create_default_context(),
            )
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        if self.security == "starttls":
            server.starttls(context=ssl.create_default_context())
        return server

    def build_message(
        self,
        to: str,
        subject: str,
        body: str,
        html: Optional[str] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        if html is not None:
            message.add_alternative(html, subtype="html")
        return message

    def send(self, to: str, subject: str, body: str, html: Optional[str] = None) -> None:
        """
        Send one message.

        Raises:
            SendError: If connecting, logging in or sending fails
        """
        message = self.build_message(to, subject, body, html)
        logger.info(f"Sending email to {to} via {self.host}:{self.port}")
        try:
            with self._connect() as server:
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise SendError(f"Could not send email to {to}: {e}") from e
        logger.info("Email sent")


class Notifier:
    """
    Sends one email per non-empty grade delta.
    """

    def __init__(
        self,
        recipients: Union[str, Sequence[str]],
        formatter: Optional[GradeMessageFormatter] = None,
    ):
        """
        Args:
            recipients: One address or several; all of them share one message
            formatter: Message formatter
        """
        self.recipients = [recipients] if isinstance(recipients, str) else list(recipients)
        self.recipient = ", ".join(self.recipients)
        self.formatter = formatter or GradeMessageFormatter()

    def notify(
        self,
        delta: GradeDelta,
        transport: MailTransport,
        overview: Optional[GradeOverview] = None,
    ) -> None:
        """
        Email the new grades.

        Does nothing for an empty delta. Otherwise calls the transport
        exactly once.

        Raises:
            SendError: If the transport fails
        """
        if delta.is_empty:
            logger.info("No new grades to notify")
            return

        logger.info(f"Notifying {self.recipient} of {len(delta)} new grade(s)")
        transport.send(
            self.recipient,
            self.formatter.format_subject(delta),
            self.formatter.format_text(delta, overview),
            html=self.formatter.format_html(delta, overview),
        )

    def notify_error(self, error: Exception, transport: MailTransport) -> None:
        """Email a short report about a failed run."""
        transport.send(
            self.recipient,
            "Grade check failed",
            self.formatter.format_error(error),
        )
