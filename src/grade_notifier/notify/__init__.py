"""Email notification module for the grade notifier."""

from grade_notifier.notify.email import MailTransport, Notifier, SmtpTransport
from grade_notifier.notify.formatters import GradeMessageFormatter

__all__ = ["MailTransport", "Notifier", "SmtpTransport", "GradeMessageFormatter"]
