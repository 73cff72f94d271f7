"""
Error taxonomy for the grade notifier.

Every failure a run can end with is a ``GradeNotifierError`` subclass whose
``kind`` names it in logs and on the command line.
"""


class GradeNotifierError(Exception):
    """Base class for all grade notifier failures."""

    kind = "error"


class ConfigError(GradeNotifierError):
    """Raised when the configuration is missing or invalid."""

    kind = "config error"


class CredentialResolutionError(GradeNotifierError):
    """Raised when a password command cannot be run or exits non-zero."""

    kind = "credential resolution error"


class AuthError(GradeNotifierError):
    """Raised when the portal rejects the login or the handshake is malformed."""

    kind = "authentication error"


class NetworkError(GradeNotifierError):
    """Raised on transport-level failures. Retrying later may succeed."""

    kind = "network error"


class SessionExpiredError(GradeNotifierError):
    """Raised when the portal answers an authenticated request with its login page."""

    kind = "session expired"


class ParseError(GradeNotifierError):
    """Raised when a portal response does not have the expected shape."""

    kind = "parse error"


class SendError(GradeNotifierError):
    """Raised when the notification email cannot be delivered."""

    kind = "send error"


class SnapshotStoreError(GradeNotifierError):
    """Raised when the stored snapshot cannot be read or written."""

    kind = "snapshot store error"
