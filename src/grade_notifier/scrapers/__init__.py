"""Portal scrapers module."""

from grade_notifier.scrapers.grades import GradeFetcher

__all__ = ["GradeFetcher"]
