"""Portal authentication module."""

from grade_notifier.auth.credentials import CredentialResolver
from grade_notifier.auth.portal_session import PortalSession

__all__ = ["CredentialResolver", "PortalSession"]
