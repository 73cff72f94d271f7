"""Snapshot persistence for the grade notifier."""

from grade_notifier.db.snapshot_store import JsonSnapshotStore

__all__ = ["JsonSnapshotStore"]
