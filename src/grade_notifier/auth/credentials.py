"""
Credential resolution.

Turns a configured credential into the secret it stands for. Password
commands let users keep secrets in a password manager instead of the
config file, e.g. ``portal_password_command = "pass show portal"``.
"""

import logging
import subprocess
from typing import Dict

from grade_notifier.exceptions import CredentialResolutionError
from grade_notifier.models import CommandCredential, Credential, LiteralCredential

logger = logging.getLogger(__name__)


def strip_line_terminator(output: str) -> str:
    """Remove exactly one trailing line terminator, if there is one."""
    if output.endswith("\r\n"):
        return output[:-2]
    if output.endswith("\n"):
        return output[:-1]
    return output


class CredentialResolver:
    """
    Resolves credentials, running each password command at most once.

    One resolver is meant to live for a whole process run, so a session
    that has to log in again reuses the secret instead of prompting the
    password manager a second time.
    """

    def __init__(self):
        self._cache: Dict[str, str] = {}

    def resolve(self, credential: Credential) -> str:
        """
        Return the secret for a credential.

        Args:
            credential: Literal or command credential

        Returns:
            str: The secret

        Raises:
            CredentialResolutionError: If the command cannot be run, exits
                non-zero or prints something that is not text
        """
        if isinstance(credential, LiteralCredential):
            return credential.value
        if isinstance(credential, CommandCredential):
            if credential.command not in self._cache:
                self._cache[credential.command] = self._run(credential.command)
            return self._cache[credential.command]
        raise TypeError(f"Unsupported credential type: {type(credential).__name__}")

    @staticmethod
    def _run(command: str) -> str:
        logger.info("Resolving password from command")
        try:
            result = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                check=False,
            )
        except OSError as e:
            raise CredentialResolutionError(f"Cannot run password command: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            message = f"Password command exited with status {result.returncode}"
            if stderr:
                message += f": {stderr}"
            raise CredentialResolutionError(message)

        try:
            output = result.stdout.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CredentialResolutionError(
                "Password command printed invalid UTF-8"
            ) from e

        return strip_line_terminator(output)
