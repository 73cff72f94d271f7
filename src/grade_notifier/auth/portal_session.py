"""
Portal session management and authentication.

Handles the HTML form login to the academic-records portal and exposes
authenticated GET requests. The portal answers both accepted and rejected
logins with HTTP 200, so every verdict here is taken from the page content.
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urljoin, urlsplit

import requests
from bs4 import BeautifulSoup

from grade_notifier.config import Settings
from grade_notifier.exceptions import (
    AuthError,
    NetworkError,
    ParseError,
    SessionExpiredError,
)
from grade_notifier.models import SessionState

logger = logging.getLogger(__name__)


class PortalSession:
    """
    Owns the cookie jar and login state for one student.

    State machine::

        UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED -> EXPIRED | CLOSED
                                   |
                                   +-> UNAUTHENTICATED (AuthError)

    An expired session is only noticed when a request comes back as the
    login page. Nothing here logs in again on its own; the caller decides.
    """

    # User agent to mimic a real browser
    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )

    def __init__(self, settings: Settings, http: Optional[requests.Session] = None):
        """
        Initialize portal session.

        Args:
            settings: Portal settings (URLs, form field names, markers)
            http: Optional requests session to use as the cookie jar
        """
        self.settings = settings
        self.base_url = settings.portal_base_url
        self.timeout = settings.request_timeout

        # Create session with default headers
        self.session = http or requests.Session()
        self.session.headers.update({
            "User-Agent": self.USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "Connection": "keep-alive",
        })

        self._state = SessionState.UNAUTHENTICATED

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        """Check if session is authenticated."""
        return self._state is SessionState.AUTHENTICATED

    def _get_url(self, path: str) -> str:
        """Build full URL from path."""
        return urljoin(self.base_url + "/", path.lstrip("/"))

    def _is_login_url(self, url: str) -> bool:
        login_path = urlsplit(self._get_url(self.settings.login_path)).path.rstrip("/")
        return urlsplit(url).path.rstrip("/") == login_path

    @staticmethod
    def _find_login_form(soup: BeautifulSoup):
        """Return the first form with a password input, or None."""
        for form in soup.find_all("form"):
            if form.find("input", {"type": "password"}):
                return form
        return None

    def _looks_like_login_page(self, response: requests.Response) -> bool:
        if self._is_login_url(response.url or ""):
            return True
        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type:
            return False
        soup = BeautifulSoup(response.text, "lxml")
        return self._find_login_form(soup) is not None

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Send a request, turning transport failures into NetworkError."""
        kwargs.setdefault("timeout", self.timeout)
        try:
            return self.session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Request to {url} timed out: {e}") from e
        except requests.exceptions.SSLError as e:
            raise NetworkError(f"TLS failure talking to {url}: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(f"Cannot connect to {url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

    def login(self, username: str, password: str) -> None:
        """
        Authenticate with the portal.

        Fetches the login page, submits the credentials together with the
        form's hidden fields and checks the resulting page.

        Args:
            username: Portal username
            password: Resolved portal password

        Raises:
            AuthError: If the portal rejects the credentials or the login
                page does not look as expected
            NetworkError: On transport failures
        """
        if self._state is SessionState.CLOSED:
            raise AuthError("Session is closed")

        logger.info(f"Attempting login to {self.base_url} as {username}")
        self._state = SessionState.AUTHENTICATING
        try:
            self._attempt_login(username, password)
        except Exception:
            self._state = SessionState.UNAUTHENTICATED
            raise

        self._state = SessionState.AUTHENTICATED
        logger.info(f"Login successful for user: {username}")

    def _attempt_login(self, username: str, password: str) -> None:
        # Step 1: GET the login page to establish session and get the token
        login_page_url = self._get_url(self.settings.login_path)
        response = self._request("GET", login_page_url)
        if response.status_code >= 400:
            raise AuthError(f"Login page returned HTTP {response.status_code}")

        soup = BeautifulSoup(response.text, "lxml")
        form = self._find_login_form(soup)
        if form is None:
            raise AuthError("Login page has no login form; the portal layout may have changed")

        form_data = self._hidden_inputs(form)
        token_field = self.settings.login_token_field
        if token_field and not form_data.get(token_field):
            raise AuthError(f"Login form is missing the '{token_field}' token")

        form_action = urljoin(response.url or login_page_url, form.get("action") or "")

        # Step 2: POST credentials to the form action URL
        form_data[self.settings.username_field] = username
        form_data[self.settings.password_field] = password
        response = self._request(
            "POST",
            form_action,
            data=form_data,
            allow_redirects=True,
        )

        # Step 3: Verify login from content
        self._verify_login(response)

    @staticmethod
    def _hidden_inputs(form) -> Dict[str, str]:
        data = {}
        for field in form.find_all("input", {"type": "hidden"}):
            name = field.get("name")
            if name:
                data[name] = field.get("value", "")
        return data

    def _verify_login(self, response: requests.Response) -> None:
        """
        Decide whether the login POST succeeded.

        Raises:
            AuthError: If the page shows an error banner, is still the login
                form, or shows no sign of being logged in
        """
        body = response.text.lower()

        for marker in self.settings.login_error_markers:
            if marker.lower() in body:
                raise AuthError(f"Portal rejected the login: '{marker}'")

        if self._looks_like_login_page(response):
            raise AuthError("Login form shown again; credentials may be incorrect")

        if self.settings.success_path and self.settings.success_path in (response.url or ""):
            return

        for marker in self.settings.login_success_markers:
            if marker.lower() in body:
                return

        raise AuthError(
            "Could not confirm login - credentials may be incorrect "
            "or login page structure changed"
        )

    def get(self, path: str, **kwargs) -> str:
        """
        Make authenticated GET request.

        Args:
            path: URL path (will be joined with base URL)
            **kwargs: Additional arguments passed to requests

        Returns:
            str: Response body

        Raises:
            SessionExpiredError: If the portal sends the login page instead
            AuthError: If login() has not succeeded yet
            NetworkError: On transport failures or error statuses
        """
        if self._state is SessionState.EXPIRED:
            raise SessionExpiredError("Session expired. Call login() again.")
        if self._state is not SessionState.AUTHENTICATED:
            raise AuthError("Not authenticated. Call login() first.")

        url = self._get_url(path)
        response = self._request("GET", url, **kwargs)

        # Check if session expired (redirected to login)
        if self._looks_like_login_page(response):
            logger.warning(f"Session expired while fetching {path}")
            self._state = SessionState.EXPIRED
            raise SessionExpiredError(f"Portal returned the login page for {path}")

        if response.status_code >= 400:
            raise NetworkError(f"GET {path} returned HTTP {response.status_code}")

        return response.text

    def get_json(self, path: str, **kwargs) -> Any:
        """
        Make authenticated GET request and return parsed JSON.

        Raises:
            ParseError: If the body is not valid JSON
        """
        body = self.get(path, **kwargs)
        try:
            return json.loads(body)
        except ValueError as e:
            raise ParseError(f"Response from {path} is not valid JSON: {e}") from e

    def close(self) -> None:
        """Log out and drop the cookie jar."""
        if self._state is SessionState.CLOSED:
            return
        if self._state is SessionState.AUTHENTICATED:
            try:
                self._request("GET", self._get_url(self.settings.logout_path), timeout=10)
            except NetworkError as e:
                logger.debug(f"Logout request failed: {e}")
        self._state = SessionState.CLOSED
        self.session.cookies.clear()
        logger.info("Portal session closed")

    def __enter__(self) -> "PortalSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
