"""Conversion between Schedule objects and their flat stored form.

A stored schedule is a list of `[key, entry]` rows. Over time three key
encodings have been written, and all of them are still read:

- `LegacyDayNameKey`: `DayName-Hour[-anything]`, e.g. `Pazartesi-3-lab2`
- `DayHourKey`: `dayIndex-hour`, e.g. `0-3`
- `CanonicalKey`: `teacherId-dayIndex-hour`, e.g. `t-17-0-3`

The first two carry no teacher, so the entry's first teacher ID is used to
build the canonical key. Teacher IDs may contain hyphens, so canonical keys
are split from the right.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from weekplan.domain.models import (
    Day,
    LessonDemand,
    SavedSchedule,
    Schedule,
    ScheduledEntry,
    TimeSlot,
    UnassignedRemainder,
    make_key,
    utc_now,
)
from weekplan.domain.policies import ClassGroupPolicy, DefaultClassGroupPolicy
from weekplan.errors import ConstraintViolation, StoreFormatError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LegacyDayNameKey:
    """Original encoding: day name, hour and an ignored suffix."""

    day: Day
    hour: int
    suffix: str = ""


@dataclass(frozen=True)
class DayHourKey:
    """Intermediate encoding: day index and hour, without a teacher."""

    day: Day
    hour: int


@dataclass(frozen=True)
class CanonicalKey:
    """Current encoding: teacher, day index and hour."""

    teacher_id: str
    day: Day
    hour: int

    @property
    def slot(self) -> TimeSlot:
        return TimeSlot(self.day, self.hour)

    def __str__(self) -> str:
        return make_key(self.teacher_id, self.slot)


StoredKey = Union[LegacyDayNameKey, DayHourKey, CanonicalKey]


def _day(text: str, raw: str) -> Day:
    try:
        return Day.from_value(text)
    except ValueError:
        raise StoreFormatError(f"Invalid day {text!r} in key {raw!r}") from None


def _hour(text: str, raw: str) -> int:
    if not text.isdigit() or int(text) < 1:
        raise StoreFormatError(f"Invalid hour {text!r} in key {raw!r}")
    return int(text)


def parse_stored_key(raw: Any) -> StoredKey:
    """Parse a stored key into one of the known encodings.

    Args:
        raw: The stored key.

    Returns:
        LegacyDayNameKey, DayHourKey or CanonicalKey.

    Raises:
        StoreFormatError: If the key matches none of the encodings.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise StoreFormatError(f"Key must be a non-empty string, got {raw!r}")

    parts = raw.split("-")
    if Day.is_day_name(parts[0]):
        if len(parts) < 2:
            raise StoreFormatError(f"Legacy key {raw!r} has no hour")
        return LegacyDayNameKey(
            day=_day(parts[0], raw),
            hour=_hour(parts[1], raw),
            suffix="-".join(parts[2:]),
        )

    if len(parts) == 2:
        return DayHourKey(day=_day(parts[0], raw), hour=_hour(parts[1], raw))

    if len(parts) < 3:
        raise StoreFormatError(f"Unrecognized key format {raw!r}")
    teacher_id, day_text, hour_text = raw.rsplit("-", 2)
    if not teacher_id or not day_text.isdigit():
        raise StoreFormatError(f"Unrecognized key format {raw!r}")
    return CanonicalKey(
        teacher_id=teacher_id,
        day=_day(day_text, raw),
        hour=_hour(hour_text, raw),
    )


def canonicalize(key: StoredKey, teacher_ids: tuple[str, ...]) -> CanonicalKey:
    """Normalize any stored key to a CanonicalKey.

    Args:
        key: Parsed stored key.
        teacher_ids: Teachers of the entry stored under the key.

    Raises:
        StoreFormatError: If a teacher-less key has no entry teacher to
            prefix, or a canonical key names a teacher the entry lacks.
    """
    if isinstance(key, CanonicalKey):
        if teacher_ids and key.teacher_id != teacher_ids[0]:
            raise StoreFormatError(
                f"Key teacher {key.teacher_id} is not the entry's first teacher {teacher_ids[0]}"
            )
        return key
    if not teacher_ids:
        raise StoreFormatError("Entry has no teacher to build a canonical key")
    return CanonicalKey(teacher_id=teacher_ids[0], day=key.day, hour=key.hour)


def _strings(value: Any, name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise StoreFormatError(f"Field {name!r} must be a list, got {value!r}")
    return tuple(str(item) for item in value)


def entry_to_dict(entry: ScheduledEntry) -> dict:
    """Convert an entry to its stored dict form."""
    return {
        "lessonId": entry.lesson_id,
        "lessonName": entry.lesson_name,
        "teacherIds": list(entry.teacher_ids),
        "teacherNames": list(entry.teacher_names),
        "locationIds": list(entry.location_ids),
        "locationNames": list(entry.location_names),
        "classIds": list(entry.class_ids),
        "timeSlot": {"day": entry.time_slot.day.index, "hour": entry.time_slot.hour},
        "trackId": entry.track_id,
        "gradeLevel": entry.grade_level,
    }


def entry_from_dict(
    data: Any,
    slot: TimeSlot,
    teacher_ids: tuple[str, ...],
    class_policy: Optional[ClassGroupPolicy] = None,
) -> ScheduledEntry:
    """Build an entry from its stored dict form.

    The slot comes from the key, which is authoritative. Rows written before
    class groups were stored get them from the class policy.
    """
    if not isinstance(data, dict):
        raise StoreFormatError(f"Entry must be an object, got {data!r}")
    if "lessonId" not in data:
        raise StoreFormatError("Entry has no lessonId")

    grade = data.get("gradeLevel", data.get("sinifSeviyesi"))
    try:
        grade_level = int(grade)
    except (TypeError, ValueError):
        raise StoreFormatError(f"Entry has invalid gradeLevel {grade!r}") from None

    track_id = data.get("trackId", data.get("dalId"))
    track_id = None if track_id is None else str(track_id)

    if "classIds" in data:
        class_ids = _strings(data["classIds"], "classIds")
    else:
        policy = class_policy or DefaultClassGroupPolicy()
        class_ids = policy.class_ids(LessonDemand(
            id=str(data["lessonId"]),
            name="",
            track_id=track_id,
            grade_level=grade_level,
            weekly_hours=0,
        ))

    return ScheduledEntry(
        lesson_id=str(data["lessonId"]),
        lesson_name=str(data.get("lessonName", "")),
        teacher_ids=teacher_ids,
        location_ids=_strings(data.get("locationIds"), "locationIds"),
        time_slot=slot,
        grade_level=grade_level,
        track_id=track_id,
        class_ids=class_ids,
        teacher_names=_strings(data.get("teacherNames"), "teacherNames"),
        location_names=_strings(data.get("locationNames"), "locationNames"),
    )


def serialize_schedule(schedule: Schedule) -> list[list]:
    """Flatten a schedule into `[key, entry]` rows sorted by key."""
    return [[key, entry_to_dict(entry)] for key, entry in schedule.items()]


def deserialize_schedule(
    rows: Iterable[Any],
    class_policy: Optional[ClassGroupPolicy] = None,
) -> tuple[Schedule, list[str]]:
    """Rebuild a schedule from stored rows.

    Malformed rows are skipped and rows that normalize to an already seen
    canonical key are discarded, each with a warning. Deserialization never
    fails as a whole because of a single row.

    Args:
        rows: Stored `[key, entry]` rows in any of the known key encodings.
        class_policy: Policy for rows that predate stored class groups.

    Returns:
        Tuple of (schedule, warnings).
    """
    schedule = Schedule()
    warnings: list[str] = []

    def warn(message: str) -> None:
        logger.warning(message)
        warnings.append(message)

    for index, row in enumerate(rows):
        try:
            if not isinstance(row, (list, tuple)) or len(row) != 2:
                raise StoreFormatError(f"Row must be a [key, entry] pair, got {row!r}")
            raw_key, data = row
            stored = parse_stored_key(raw_key)
            if not isinstance(data, dict):
                raise StoreFormatError(f"Entry must be an object, got {data!r}")
            teacher_ids = _strings(data.get("teacherIds"), "teacherIds")
            key = canonicalize(stored, teacher_ids)
            if not teacher_ids:
                teacher_ids = (key.teacher_id,)
            entry = entry_from_dict(data, key.slot, teacher_ids, class_policy)
        except StoreFormatError as e:
            warn(f"Skipping malformed row {index}: {e}")
            continue

        if str(key) in schedule:
            warn(f"Discarding duplicate entry for {key} (row {index}, stored as {raw_key!r})")
            continue
        try:
            schedule.add(entry)
        except ConstraintViolation as e:
            warn(f"Discarding conflicting row {index}: {e}")

    return schedule, warnings


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp into an aware datetime.

    Records written by older versions carry naive local timestamps or a
    trailing `Z`; naive values are read as UTC so that every timestamp coming
    out of the store can be compared with every other one.

    Raises:
        TypeError, ValueError: If the value is not an ISO 8601 string.
    """
    if not isinstance(value, str):
        raise TypeError(f"Timestamp must be a string, got {value!r}")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _unassigned_to_dict(remainder: UnassignedRemainder) -> dict:
    return {
        "id": remainder.lesson_id,
        "name": remainder.lesson_name,
        "weeklyHours": remainder.weekly_hours,
        "remainingHours": remainder.remaining_hours,
        "reason": remainder.reason,
    }


def _unassigned_from_dict(data: Any) -> UnassignedRemainder:
    if not isinstance(data, dict) or "id" not in data:
        raise StoreFormatError(f"Invalid unassigned lesson {data!r}")
    weekly = int(data.get("weeklyHours", 0))
    return UnassignedRemainder(
        lesson_id=str(data["id"]),
        lesson_name=str(data.get("name", "")),
        remaining_hours=int(data.get("remainingHours", weekly)),
        weekly_hours=weekly,
        reason=str(data.get("reason", "")),
    )


def saved_schedule_to_dict(saved: SavedSchedule) -> dict:
    """Convert a SavedSchedule to its persisted record."""
    return {
        "id": saved.id,
        "name": saved.name,
        "description": saved.description,
        "fitness_score": saved.fitness_score,
        "workload_variance": saved.workload_variance,
        "total_gaps": saved.total_gaps,
        "schedule_data": serialize_schedule(saved.schedule),
        "unassigned_lessons": [_unassigned_to_dict(r) for r in saved.unassigned],
        "logs": list(saved.logs),
        "created_at": saved.created_at.isoformat(),
    }


def saved_schedule_from_dict(
    data: Any,
    class_policy: Optional[ClassGroupPolicy] = None,
) -> SavedSchedule:
    """Rebuild a SavedSchedule from its persisted record.

    Row-level problems in `schedule_data` become warnings appended to the
    snapshot's logs.

    Raises:
        StoreFormatError: If the record itself is unusable.
    """
    if not isinstance(data, dict) or "id" not in data:
        raise StoreFormatError("Saved schedule record has no id")

    schedule, warnings = deserialize_schedule(data.get("schedule_data") or [], class_policy)

    unassigned = []
    for item in data.get("unassigned_lessons") or []:
        try:
            unassigned.append(_unassigned_from_dict(item))
        except (StoreFormatError, TypeError, ValueError) as e:
            warnings.append(f"Skipping unassigned lesson record: {e}")

    created_at = data.get("created_at")
    try:
        created = parse_timestamp(created_at) if created_at else utc_now()
    except (TypeError, ValueError):
        raise StoreFormatError(f"Invalid created_at {created_at!r}") from None

    try:
        return SavedSchedule(
            id=str(data["id"]),
            fitness_score=float(data.get("fitness_score", 0.0)),
            workload_variance=float(data.get("workload_variance", 0.0)),
            total_gaps=int(data.get("total_gaps", schedule.total_gaps())),
            schedule=schedule,
            unassigned=tuple(unassigned),
            logs=tuple(data.get("logs") or ()) + tuple(f"WARNING: {w}" for w in warnings),
            created_at=created,
            name=data.get("name"),
            description=data.get("description"),
        )
    except (TypeError, ValueError) as e:
        raise StoreFormatError(f"Invalid saved schedule record: {e}") from None
