import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import pytest
import requests

# Add src to sys.path so we can import grade_notifier
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if SRC_PATH.as_posix() not in sys.path:
    sys.path.insert(0, SRC_PATH.as_posix())

from grade_notifier.auth.portal_session import PortalSession  # noqa: E402
from grade_notifier.config import Settings  # noqa: E402
from grade_notifier.models import GradeRecord  # noqa: E402

BASE_URL = "https://portal.example.edu"

LOGIN_PAGE = """
<html><body>
<form action="/login" method="post">
  <input type="hidden" name="csrf_token" value="tok123"/>
  <input type="hidden" name="execution" value="e1s1"/>
  <input type="text" name="username"/>
  <input type="password" name="password"/>
  <button type="submit">Sign in</button>
</form>
</body></html>
"""

LOGIN_PAGE_WITHOUT_TOKEN = """
<html><body>
<form action="/login" method="post">
  <input type="text" name="username"/>
  <input type="password" name="password"/>
</form>
</body></html>
"""

LOGIN_ERROR_PAGE = LOGIN_PAGE.replace(
    "<body>", '<body><div class="alert">Invalid login or password.</div>'
)

HOME_PAGE = """
<html><body>
<div id="user">Jane Student</div>
<a href="/logout">Logout</a>
</body></html>
"""

TERMS = [
    {"id": 41, "nameZh": "2024-Fall", "schoolYear": "2024-2025", "current": True},
    {"id": 42, "nameZh": "2025-Spring", "schoolYear": "2024-2025", "current": False},
]


def score_row(code: str, name: str, credits: Any, score: Any) -> Dict[str, Any]:
    return {"courseCode": code, "courseNameCh": name, "credits": credits, "scoreCh": score}


def grade_sheet(semesters: List[Tuple[int, List[Dict[str, Any]]]], gpa: float = 3.5) -> Dict[str, Any]:
    return {
        "overview": {"gpa": gpa, "passedCredits": 7},
        "semesters": [{"id": term_id, "scores": rows} for term_id, rows in semesters],
    }


def make_response(
    body: str,
    url: str,
    status: int = 200,
    content_type: str = "text/html; charset=utf-8",
) -> requests.Response:
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status
    response._content = body.encode("utf-8")
    response.url = url
    response.encoding = "utf-8"
    response.headers["Content-Type"] = content_type
    return response


def json_response(payload: Any, url: str) -> requests.Response:
    return make_response(json.dumps(payload), url, content_type="application/json")


class FakePortal:
    """
    Routes requests issued through a PortalSession's requests.Session.

    Routes map (method, path) to a handler or a list of handlers consumed
    in order; the last one repeats.
    """

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    def add(self, method: str, path: str, *handlers: Any) -> None:
        self.routes[(method.upper(), path)] = list(handlers)

    def paths(self, method: Optional[str] = None) -> List[str]:
        return [
            urlsplit(url).path
            for m, url, _ in self.calls
            if method is None or m == method
        ]

    def __call__(self, method: str, url: str, **kwargs) -> requests.Response:
        self.calls.append((method, url, kwargs))
        path = urlsplit(url).path
        handlers = self.routes.get((method.upper(), path))
        if not handlers:
            return make_response("not found", url, status=404)
        handler = handlers.pop(0) if len(handlers) > 1 else handlers[0]
        if isinstance(handler, BaseException):
            raise handler
        if isinstance(handler, requests.Response):
            return handler
        return handler(url, kwargs)

    def install(self, session: PortalSession) -> PortalSession:
        session.session.request = self
        return session

    # Canned portal behaviour

    def serve_login(self, landing: str = "/home") -> None:
        self.add("GET", "/login", make_response(LOGIN_PAGE, f"{self.base_url}/login"))
        self.add("POST", "/login", make_response(HOME_PAGE, f"{self.base_url}{landing}"))
        self.add("GET", "/logout", make_response("bye", f"{self.base_url}/login"))

    def serve_grades(self, sheet: Dict[str, Any], terms: Optional[List[Dict[str, Any]]] = None) -> None:
        self.add(
            "GET", "/for-std/grade/sheet/getSemesters",
            json_response(terms if terms is not None else TERMS,
                          f"{self.base_url}/for-std/grade/sheet/getSemesters"),
        )
        self.add(
            "GET", "/for-std/grade/sheet/getGradeList",
            json_response(sheet, f"{self.base_url}/for-std/grade/sheet/getGradeList"),
        )


def build_settings(**overrides) -> Settings:
    values = dict(
        portal_base_url=BASE_URL,
        portal_username="PB20000001",
        portal_password="s3cret",
        recipient_emails=["student@example.com"],
        smtp_host="smtp.example.com",
        smtp_username="student@example.com",
        smtp_password="mailpass",
        log_level="DEBUG",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeTransport:
    """Records every message instead of sending it."""

    def __init__(self, error: Optional[Exception] = None):
        self.sent: List[Dict[str, Any]] = []
        self.error = error

    def send(self, to: str, subject: str, body: str, html: Optional[str] = None) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "body": body, "html": html})


def record(term: str, course_id: str, name: str = "Course", credit: str = "3", score: str = "A") -> GradeRecord:
    return GradeRecord(
        term=term,
        course_id=course_id,
        course_name=name,
        credit=Decimal(credit),
        score=score,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return build_settings(snapshot_path=tmp_path / "grades.json")


@pytest.fixture
def fake_portal() -> FakePortal:
    return FakePortal()


@pytest.fixture
def portal_session(settings: Settings, fake_portal: FakePortal) -> PortalSession:
    return fake_portal.install(PortalSession(settings))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
