"""
Data models for the grade notifier.

Defines Pydantic models for:
- Credentials (literal password or password command)
- Grade records, snapshots and deltas
- The GPA overview reported by the portal
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Set, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """Lifecycle of a portal session."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    CLOSED = "closed"


class LiteralCredential(BaseModel):
    """A password given verbatim in the configuration."""
    model_config = ConfigDict(frozen=True)

    value: str = Field(..., repr=False)


class CommandCredential(BaseModel):
    """A password printed on stdout by a shell command."""
    model_config = ConfigDict(frozen=True)

    command: str = Field(..., repr=False)


Credential = Union[LiteralCredential, CommandCredential]

GradeKey = Tuple[str, str]


class GradeRecord(BaseModel):
    """
    One published grade.

    Attributes:
        term: Term name as shown by the portal (e.g., "2024-Fall")
        course_id: Course code, unique within a term
        course_name: Human readable course name
        credit: Credit hours of the course
        score: Score exactly as published ("A", "92", "Pass", ...)
    """
    model_config = ConfigDict(frozen=True)

    term: str
    course_id: str
    course_name: str
    credit: Decimal
    score: str

    @property
    def key(self) -> GradeKey:
        """Identity of the record across snapshots."""
        return (self.term, self.course_id)


class GradeSnapshot(BaseModel):
    """All grade records observed by one fetch, in portal order."""
    model_config = ConfigDict(frozen=True)

    records: Tuple[GradeRecord, ...] = ()
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def empty(cls) -> "GradeSnapshot":
        return cls(records=())

    def key_set(self) -> Set[GradeKey]:
        return {record.key for record in self.records}

    def __len__(self) -> int:
        return len(self.records)


class GradeDelta(BaseModel):
    """Records that are new relative to the last committed snapshot."""
    model_config = ConfigDict(frozen=True)

    records: Tuple[GradeRecord, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.records

    def __len__(self) -> int:
        return len(self.records)


class GradeOverview(BaseModel):
    """
    Summary figures from the portal's grade sheet.

    Attributes:
        gpa: Overall GPA across all terms
        term_gpa: GPA of the watched terms
        passed_credits: Total credits earned
    """
    gpa: float
    term_gpa: Optional[float] = None
    passed_credits: Decimal
