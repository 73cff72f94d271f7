"""
Detection of newly published grades.

A grade is new when its (term, course) key is absent from the last
committed snapshot. Changed scores of already known courses are not
reported.
"""

import logging

from grade_notifier.models import GradeDelta, GradeSnapshot

logger = logging.getLogger(__name__)


def diff_snapshots(previous: GradeSnapshot, current: GradeSnapshot) -> GradeDelta:
    """
    Return the records of ``current`` whose key is not in ``previous``.

    The result keeps the order of ``current``; the order of ``previous``
    does not matter.
    """
    known = {record.key: record for record in previous.records}

    new_records = []
    for record in current.records:
        old = known.get(record.key)
        if old is None:
            new_records.append(record)
        elif old.score != record.score:
            logger.debug(
                f"Score of {record.course_id} ({record.term}) changed; not reported"
            )

    logger.info(
        f"Grades: {len(current)} total, {len(new_records)} new"
    )
    return GradeDelta(records=tuple(new_records))
