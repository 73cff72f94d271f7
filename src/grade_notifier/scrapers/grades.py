"""
Grade scraper for the academic-records portal.

Uses the portal's grade-sheet JSON API: one request for the list of terms,
one request for the scores of the selected terms, and, for the GPA
overview, one request covering all terms.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from grade_notifier.exceptions import ParseError
from grade_notifier.models import GradeOverview, GradeRecord, GradeSnapshot
from grade_notifier.scrapers.base import BaseScraper

logger = logging.getLogger(__name__)


class GradeFetcher(BaseScraper):
    """
    Fetches the student's published grades.

    Every term is flattened into one list in portal order. Rows are
    parsed strictly; an unrecognised row fails the whole fetch.
    """

    COURSE_ID_FIELDS = ("courseCode",)
    COURSE_NAME_FIELDS = ("courseNameCh", "courseName", "courseNameEn")
    SCORE_FIELDS = ("scoreCh", "score")
    TERM_NAME_FIELDS = ("nameZh", "name", "nameEn")

    def __init__(self, session):
        super().__init__(session)
        self._selected_overview: Optional[Mapping[str, Any]] = None

    def scrape(self) -> List[GradeRecord]:
        """
        Fetch all grade records of the watched terms.

        Returns:
            List[GradeRecord]: Records in portal order

        Raises:
            SessionExpiredError: If the portal sends its login page
            ParseError: If a response has an unexpected shape
            NetworkError: On transport failures
        """
        logger.info("Fetching grade list...")

        terms = self._fetch_terms()
        selected = self._select_terms(terms)
        if not selected:
            logger.info("Portal lists no terms yet")
            return []

        payload = self._fetch_grade_sheet(",".join(str(term_id) for term_id in selected))
        self._selected_overview = payload.get("overview")
        records = self._parse_grade_sheet(payload, terms)

        logger.info(f"Found {len(records)} grades across {len(selected)} term(s)")
        return records

    def fetch_snapshot(self) -> GradeSnapshot:
        return GradeSnapshot(records=tuple(self.scrape()))

    def scrape_overview(self) -> GradeOverview:
        """
        Fetch GPA and earned credits over all terms.

        The watched-terms GPA comes from the last scrape(), when available.

        Raises:
            ParseError: If the overview block is missing or malformed
        """
        payload = self._fetch_grade_sheet("")
        overview = self.require_mapping(payload.get("overview"), "grade overview")

        term_gpa = None
        if self._selected_overview is not None:
            selected = self.require_mapping(self._selected_overview, "term overview")
            if selected.get("gpa") is not None:
                term_gpa = float(self.require_decimal(selected, "gpa", "term overview"))

        return GradeOverview(
            gpa=float(self.require_decimal(overview, "gpa", "grade overview")),
            term_gpa=term_gpa,
            passed_credits=self.require_decimal(overview, "passedCredits", "grade overview"),
        )

    def _fetch_terms(self) -> Dict[int, str]:
        """Return term id -> term name, in portal order."""
        data = self.session.get_json(self.settings.terms_path)
        terms: Dict[int, str] = {}
        for index, entry in enumerate(self.require_list(data, "term list")):
            where = f"term #{index}"
            entry = self.require_mapping(entry, where)
            term_id = self.require_int(entry, "id", where)
            terms[term_id] = self.require_str(entry, *self.TERM_NAME_FIELDS, where=where)
        return terms

    def _select_terms(self, terms: Dict[int, str]) -> List[int]:
        wanted = self.settings.terms
        if not wanted:
            return list(terms)

        selected = [term_id for term_id, name in terms.items() if name in wanted]
        listed = set(terms.values())
        for name in wanted:
            if name not in listed:
                logger.warning(f"Configured term '{name}' is not listed by the portal")
        if not selected:
            raise ParseError(
                f"None of the configured terms {wanted} are listed by the portal"
            )
        return selected

    def _fetch_grade_sheet(self, term_ids: str) -> Mapping[str, Any]:
        params = dict(self.settings.grades_query_params)
        params["semesterIds"] = term_ids
        data = self.session.get_json(self.settings.grades_path, params=params)
        return self.require_mapping(data, "grade sheet")

    def _parse_grade_sheet(
        self,
        payload: Mapping[str, Any],
        terms: Dict[int, str],
    ) -> List[GradeRecord]:
        records: List[GradeRecord] = []
        seen = set()

        for index, block in enumerate(self.require_list(payload.get("semesters"), "grade sheet terms")):
            block = self.require_mapping(block, f"grade sheet term #{index}")
            term_id = self.require_int(block, "id", f"grade sheet term #{index}")
            if term_id not in terms:
                raise ParseError(f"Grade sheet refers to unknown term id {term_id}")
            term = terms[term_id]

            for record in self._parse_rows(block.get("scores"), term):
                if record.key in seen:
                    raise ParseError(
                        f"Course {record.course_id} appears twice in term {term}"
                    )
                seen.add(record.key)
                records.append(record)

        return records

    def _parse_rows(self, rows: Sequence[Any], term: str) -> List[GradeRecord]:
        parsed = []
        for index, row in enumerate(self.require_list(rows, f"scores of {term}")):
            where = f"grade row #{index} of {term}"
            row = self.require_mapping(row, where)
            parsed.append(GradeRecord(
                term=term,
                course_id=self.require_str(row, *self.COURSE_ID_FIELDS, where=where),
                course_name=self.require_str(row, *self.COURSE_NAME_FIELDS, where=where),
                credit=self.require_decimal(row, "credits", where),
                score=self.require_str(row, *self.SCORE_FIELDS, where=where),
            ))
        return parsed
