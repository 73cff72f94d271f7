"""
Base scraper class with shared utilities.

Provides strict field extraction for portal JSON payloads. Scrapers never
skip a row they do not understand: a missing or mistyped field is a
ParseError, because a silently dropped grade would later show up as "new".
"""

import logging
import re
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Sequence

from grade_notifier.auth.portal_session import PortalSession
from grade_notifier.exceptions import ParseError

logger = logging.getLogger(__name__)


class BaseScraper(ABC):
    """
    Base class for portal scrapers.

    Provides common utilities for text cleanup and typed field access.
    """

    def __init__(self, session: PortalSession):
        """
        Initialize scraper with a portal session.

        Args:
            session: Portal session, authenticated before scrape() is called
        """
        self.session = session
        self.settings = session.settings

    @abstractmethod
    def scrape(self, *args, **kwargs) -> Any:
        """Scrape data - implemented by subclasses."""
        pass

    def clean_text(self, text: Optional[str]) -> str:
        """
        Clean and normalize text content.

        Args:
            text: Text to clean

        Returns:
            str: Text with whitespace runs collapsed and ends trimmed
        """
        if not text:
            return ""
        return re.sub(r'\s+', ' ', text).strip()

    @staticmethod
    def require_mapping(value: Any, where: str) -> Mapping[str, Any]:
        if not isinstance(value, Mapping):
            raise ParseError(f"Expected an object for {where}, got {type(value).__name__}")
        return value

    @staticmethod
    def require_list(value: Any, where: str) -> Sequence[Any]:
        if not isinstance(value, list):
            raise ParseError(f"Expected a list for {where}, got {type(value).__name__}")
        return value

    def require_str(self, row: Mapping[str, Any], *names: str, where: str) -> str:
        """
        Return the first present field among ``names`` as non-empty text.

        Raises:
            ParseError: If none of the fields is present or the value is empty
        """
        for name in names:
            if name in row and row[name] is not None:
                value = row[name]
                if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                    raise ParseError(f"Field '{name}' of {where} has unexpected type")
                text = self.clean_text(str(value))
                if not text:
                    raise ParseError(f"Field '{name}' of {where} is empty")
                return text
        raise ParseError(f"{where} is missing field '{names[0]}'")

    @staticmethod
    def require_int(row: Mapping[str, Any], name: str, where: str) -> int:
        value = row.get(name)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ParseError(f"Field '{name}' of {where} is not an integer: {value!r}")
        return value

    @staticmethod
    def require_decimal(row: Mapping[str, Any], name: str, where: str) -> Decimal:
        value = row.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ParseError(f"Field '{name}' of {where} is not a number: {value!r}")
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ParseError(f"Field '{name}' of {where} is not a number: {value!r}") from e
        if not number.is_finite():
            raise ParseError(f"Field '{name}' of {where} is not a finite number: {value!r}")
        return number
