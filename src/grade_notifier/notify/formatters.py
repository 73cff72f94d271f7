"""
Message formatters for grade notification emails.

Builds the subject, a plain-text body and an HTML alternative from a
grade delta.
"""

from decimal import Decimal
from html import escape
from typing import List, Optional

from grade_notifier.models import GradeDelta, GradeOverview, GradeRecord


class GradeMessageFormatter:
    """
    Formats grade deltas for email.

    Records are grouped by term, keeping the order in which the portal
    listed them.
    """

    SUBJECT_PREFIX = "New grades"

    @staticmethod
    def _format_credit(credit: Decimal) -> str:
        """Drop a trailing ``.0`` so 4.0 credits read as 4."""
        if credit == credit.to_integral_value():
            return str(credit.to_integral_value())
        return str(credit.normalize())

    @staticmethod
    def _group_by_term(delta: GradeDelta) -> List[tuple]:
        groups: dict = {}
        for record in delta.records:
            groups.setdefault(record.term, []).append(record)
        return list(groups.items())

    @classmethod
    def format_subject(cls, delta: GradeDelta) -> str:
        count = len(delta)
        noun = "course" if count == 1 else "courses"
        return f"{cls.SUBJECT_PREFIX}: {count} {noun}"

    @classmethod
    def _format_record_line(cls, record: GradeRecord) -> str:
        return (
            f"  {record.course_id}  {record.course_name}  "
            f"credit {cls._format_credit(record.credit)}  score {record.score}"
        )

    @classmethod
    def format_text(
        cls,
        delta: GradeDelta,
        overview: Optional[GradeOverview] = None,
    ) -> str:
        """
        Format the plain-text body.

        Args:
            delta: New grade records
            overview: Optional GPA overview appended as a preface

        Returns:
            str: Message body
        """
        lines = [f"{len(delta)} new grade(s) have been published.", ""]

        if overview is not None:
            lines.extend(cls._overview_lines(overview))
            lines.append("")

        for term, records in cls._group_by_term(delta):
            lines.append(term)
            lines.append("-" * len(term))
            lines.extend(cls._format_record_line(record) for record in records)
            lines.append("")

        return "\n".join(lines).rstrip() + "\n"

    @staticmethod
    def _overview_lines(overview: GradeOverview) -> List[str]:
        lines = [f"Total GPA: {overview.gpa:.2f}"]
        if overview.term_gpa is not None:
            lines.append(f"Term GPA: {overview.term_gpa:.2f}")
        lines.append(f"Credits earned: {overview.passed_credits}")
        return lines

    @classmethod
    def format_html(
        cls,
        delta: GradeDelta,
        overview: Optional[GradeOverview] = None,
    ) -> str:
        """Format the HTML alternative body."""
        parts = [f"<p>{len(delta)} new grade(s) have been published.</p>"]

        if overview is not None:
            parts.append("<p>" + "<br />".join(
                escape(line) for line in cls._overview_lines(overview)
            ) + "</p>")

        for term, records in cls._group_by_term(delta):
            rows = "".join(
                "<tr>"
                f'<td align="center">{escape(record.course_id)}</td>'
                f'<td align="center">{escape(record.course_name)}</td>'
                f'<td align="center">{escape(cls._format_credit(record.credit))}</td>'
                f'<td align="center">{escape(record.score)}</td>'
                "</tr>"
                for record in records
            )
            parts.append(
                f"<h4>{escape(term)}</h4>"
                "<table>"
                "<tr><th>Course</th><th>Name</th><th>Credit</th><th>Score</th></tr>"
                f"{rows}"
                "</table>"
            )

        return "\n".join(parts)

    @staticmethod
    def format_error(error: Exception) -> str:
        """
        Format an error report for a failed run.

        Args:
            error: The error that ended the run

        Returns:
            str: Message body
        """
        kind = getattr(error, "kind", type(error).__name__)
        return (
            "The grade check failed.\n\n"
            f"{kind}: {error}\n\n"
            "The stored grades were left unchanged; the next run will retry.\n"
        )
