"""
Grade Notifier

Checks a university academic-records portal for newly published grades
and emails a summary of them.
"""

__version__ = "1.0.0"
