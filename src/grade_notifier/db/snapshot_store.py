"""
Snapshot store for deduplication.

Keeps the last committed grade snapshot in a JSON file so the next run
only reports grades published since then.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from grade_notifier.exceptions import SnapshotStoreError
from grade_notifier.models import GradeSnapshot

logger = logging.getLogger(__name__)


class JsonSnapshotStore:
    """
    Reads and writes the committed snapshot.

    Writes go to a temporary file in the same directory that then replaces
    the old file, so a crash never leaves a half-written snapshot behind.
    """

    def __init__(self, path: Path):
        """
        Initialize the snapshot store.

        Args:
            path: JSON file holding the snapshot
        """
        self.path = Path(path)

    def exists(self) -> bool:
        """Whether a snapshot has ever been saved."""
        return self.path.is_file()

    def load(self) -> GradeSnapshot:
        """
        Load the committed snapshot.

        Returns:
            GradeSnapshot: The snapshot, or an empty one if none was saved

        Raises:
            SnapshotStoreError: If the file cannot be read or parsed
        """
        if not self.exists():
            logger.info(f"No snapshot at {self.path}; starting from an empty baseline")
            return GradeSnapshot.empty()

        try:
            raw = self.path.read_text(encoding="utf-8")
            snapshot = GradeSnapshot.model_validate(json.loads(raw))
        except OSError as e:
            raise SnapshotStoreError(f"Cannot read snapshot {self.path}: {e}") from e
        except (ValueError, ValidationError) as e:
            raise SnapshotStoreError(f"Snapshot {self.path} is corrupt: {e}") from e

        logger.debug(f"Loaded {len(snapshot)} records from {self.path}")
        return snapshot

    def save(self, snapshot: GradeSnapshot) -> None:
        """
        Replace the committed snapshot.

        Raises:
            SnapshotStoreError: If the file cannot be written
        """
        data = json.dumps(snapshot.model_dump(mode="json"), ensure_ascii=False, indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                    f.write("\n")
                os.replace(tmp_name, self.path)
            except BaseException:
                os.unlink(tmp_name)
                raise
        except OSError as e:
            raise SnapshotStoreError(f"Cannot write snapshot {self.path}: {e}") from e

        logger.info(f"Saved {len(snapshot)} records to {self.path}")
