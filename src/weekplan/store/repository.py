"""Saved schedule repositories.

Snapshots are stored in their serialized form, so a SavedSchedule handed to
`save` can never be changed through the repository afterwards. Only the name
and description of a stored snapshot can be edited.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from weekplan.domain.models import SavedSchedule
from weekplan.errors import StoreFormatError
from weekplan.store.adapter import (
    parse_timestamp,
    saved_schedule_from_dict,
    saved_schedule_to_dict,
)

logger = logging.getLogger(__name__)

# Sort position of records written without a timestamp.
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ScheduleSummary:
    """List view of a saved schedule."""

    id: str
    created_at: datetime
    name: Optional[str]
    description: Optional[str]
    fitness_score: float
    workload_variance: float
    total_gaps: int

    @classmethod
    def from_record(cls, record: dict) -> "ScheduleSummary":
        created_at = record.get("created_at")
        return cls(
            id=str(record["id"]),
            created_at=parse_timestamp(created_at) if created_at else _EPOCH,
            name=record.get("name"),
            description=record.get("description"),
            fitness_score=float(record.get("fitness_score", 0.0)),
            workload_variance=float(record.get("workload_variance", 0.0)),
            total_gaps=int(record.get("total_gaps", 0)),
        )


class ScheduleRepository(ABC):
    """Abstract base class for saved schedule storage."""

    @abstractmethod
    def _load_record(self, schedule_id: str) -> Optional[dict]:
        """Return the raw record for an ID, or None if absent."""
        pass

    @abstractmethod
    def _store_record(self, record: dict) -> None:
        """Write a raw record, replacing any record with the same ID."""
        pass

    @abstractmethod
    def _all_records(self) -> list[dict]:
        """Return every raw record."""
        pass

    @abstractmethod
    def delete(self, schedule_id: str) -> bool:
        """Delete a saved schedule.

        Returns:
            True if a schedule was deleted.
        """
        pass

    def save(self, saved: SavedSchedule) -> None:
        """Store a new snapshot."""
        self._store_record(saved_schedule_to_dict(saved))
        logger.info(f"Saved schedule {saved.id} ({len(saved.schedule)} entries)")

    def get(self, schedule_id: str) -> Optional[SavedSchedule]:
        """Load a snapshot by ID.

        Raises:
            StoreFormatError: If the stored record is unusable.
        """
        record = self._load_record(schedule_id)
        if record is None:
            return None
        return saved_schedule_from_dict(record)

    def list_summaries(self) -> list[ScheduleSummary]:
        """Summaries of all saved schedules, newest first."""
        summaries = []
        for record in self._all_records():
            try:
                summaries.append(ScheduleSummary.from_record(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable saved schedule record: {e}")
        return sorted(summaries, key=lambda s: (s.created_at, s.id), reverse=True)

    def update_details(
        self,
        schedule_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> bool:
        """Edit the name and description of a saved schedule.

        Returns:
            True if the schedule exists and was updated.
        """
        record = self._load_record(schedule_id)
        if record is None:
            return False
        record = dict(record)
        record["name"] = name
        record["description"] = description
        self._store_record(record)
        return True


class InMemoryScheduleRepository(ScheduleRepository):
    """Repository keeping serialized snapshots in a dict."""

    def __init__(self):
        self._records: dict[str, dict] = {}

    def _load_record(self, schedule_id: str) -> Optional[dict]:
        record = self._records.get(schedule_id)
        return None if record is None else json.loads(json.dumps(record))

    def _store_record(self, record: dict) -> None:
        # Round-trip through JSON so callers never share state with the store.
        self._records[record["id"]] = json.loads(json.dumps(record))

    def _all_records(self) -> list[dict]:
        return [dict(record) for record in self._records.values()]

    def delete(self, schedule_id: str) -> bool:
        return self._records.pop(schedule_id, None) is not None


class JsonFileScheduleRepository(ScheduleRepository):
    """Repository writing one JSON file per saved schedule."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, schedule_id: str) -> Path:
        if not schedule_id or "/" in schedule_id or "\\" in schedule_id or schedule_id.startswith("."):
            raise StoreFormatError(f"Invalid schedule id {schedule_id!r}")
        return self.directory / f"{schedule_id}.json"

    def _read(self, path: Path) -> dict:
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StoreFormatError(f"Corrupt schedule file {path}: {e}") from None
        if not isinstance(record, dict):
            raise StoreFormatError(f"Schedule file {path} does not hold an object")
        return record

    def _load_record(self, schedule_id: str) -> Optional[dict]:
        path = self._path(schedule_id)
        if not path.exists():
            return None
        return self._read(path)

    def _store_record(self, record: dict) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(record["id"])
        path.write_text(json.dumps(record, indent=2, ensure_ascii=False), encoding="utf-8")

    def _all_records(self) -> list[dict]:
        if not self.directory.exists():
            return []
        records = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                records.append(self._read(path))
            except StoreFormatError as e:
                logger.warning(str(e))
        return records

    def delete(self, schedule_id: str) -> bool:
        path = self._path(schedule_id)
        if not path.exists():
            return False
        path.unlink()
        return True
