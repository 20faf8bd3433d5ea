"""Raw persistence records consumed by the input normalizer.

Records arrive as plain dicts from the surrounding application, with either
camelCase or snake_case field names. Each `from_dict` raises InputError when a
required field is missing or has the wrong shape.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from weekplan.domain.models import AssignmentOverride, Day, OverrideKind, TimeSlot
from weekplan.errors import InputError

_MISSING = object()


def _field(data: dict, *names: str, default: Any = _MISSING) -> Any:
    """Read the first present field among `names`."""
    for name in names:
        if name in data:
            return data[name]
    if default is _MISSING:
        raise InputError(f"Missing required field {names[0]!r} in {data!r}")
    return default


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise InputError(f"Field {name!r} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InputError(f"Field {name!r} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class UnavailabilityRecord:
    """A teacher's unavailable period range on one day.

    Attributes:
        day_of_week: 1-based day (1 = Monday, 5 = Friday).
        start_period: First unavailable hour.
        end_period: Last unavailable hour (inclusive).
    """

    day_of_week: int
    start_period: int
    end_period: int

    @classmethod
    def from_dict(cls, data: dict) -> "UnavailabilityRecord":
        record = cls(
            day_of_week=_int(_field(data, "day_of_week", "dayOfWeek"), "day_of_week"),
            start_period=_int(_field(data, "start_period", "startPeriod"), "start_period"),
            end_period=_int(_field(data, "end_period", "endPeriod"), "end_period"),
        )
        if not 1 <= record.day_of_week <= len(Day):
            raise InputError(f"day_of_week out of range: {record.day_of_week}")
        if record.end_period < record.start_period:
            raise InputError(
                f"end_period {record.end_period} before start_period {record.start_period}"
            )
        return record

    def to_slots(self) -> list[TimeSlot]:
        day = Day(self.day_of_week - 1)
        return [TimeSlot(day, hour) for hour in range(self.start_period, self.end_period + 1)]


@dataclass(frozen=True)
class TeacherRecord:
    id: str
    name: str
    branch_id: Optional[str] = None
    is_active: bool = True
    unavailability: tuple[dict, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "TeacherRecord":
        raw_unavailability = _field(
            data, "unavailability", "teacher_unavailability", default=None
        ) or []
        if not isinstance(raw_unavailability, list):
            raise InputError(f"unavailability must be a list, got {raw_unavailability!r}")
        return cls(
            id=str(_field(data, "id")),
            name=str(_field(data, "name", default="")),
            branch_id=_field(data, "branch_id", "branchId", default=None),
            is_active=bool(_field(data, "is_active", "isActive", default=True)),
            unavailability=tuple(raw_unavailability),
        )


@dataclass(frozen=True)
class LessonRecord:
    id: str
    name: str
    track_id: Optional[str]
    grade_level: int
    weekly_hours: int
    splittable: bool = True
    include_in_schedule: bool = True
    requires_multiple_resources: bool = False
    suitable_location_type_ids: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "LessonRecord":
        location_types = _field(
            data, "suitable_location_type_ids", "suitableLocationTypeIds", default=None
        ) or []
        return cls(
            id=str(_field(data, "id")),
            name=str(_field(data, "name", default="")),
            track_id=_field(data, "track_id", "trackId", default=None),
            grade_level=_int(_field(data, "grade_level", "gradeLevel"), "grade_level"),
            weekly_hours=_int(_field(data, "weekly_hours", "weeklyHours"), "weekly_hours"),
            splittable=bool(_field(data, "splittable", "canSplit", default=True)),
            include_in_schedule=bool(
                _field(data, "include_in_schedule", "includeInSchedule", default=True)
            ),
            requires_multiple_resources=bool(
                _field(
                    data,
                    "requires_multiple_resources",
                    "requiresMultipleResources",
                    default=False,
                )
            ),
            suitable_location_type_ids=tuple(str(t) for t in location_types),
        )


@dataclass(frozen=True)
class LocationRecord:
    id: str
    name: str
    location_type_id: Optional[str] = None
    capacity: Optional[int] = None
    bookable: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "LocationRecord":
        capacity = _field(data, "capacity", default=None)
        return cls(
            id=str(_field(data, "id")),
            name=str(_field(data, "name", default="")),
            location_type_id=_field(
                data, "location_type_id", "locationTypeId", "labTypeId", default=None
            ),
            capacity=None if capacity is None else _int(capacity, "capacity"),
            bookable=bool(_field(data, "bookable", default=True)),
        )


def parse_override(data: dict) -> AssignmentOverride:
    """Parse an assignment override record."""
    kind = _field(data, "kind")
    try:
        override_kind = OverrideKind(str(kind).lower())
    except ValueError:
        raise InputError(f"Unknown override kind: {kind!r}") from None
    return AssignmentOverride(
        teacher_id=str(_field(data, "teacher_id", "teacherId")),
        lesson_id=str(_field(data, "lesson_id", "lessonId")),
        kind=override_kind,
    )


@dataclass
class InputRecords:
    """All raw records for one solver run.

    Attributes:
        teachers: Teacher records.
        lessons: Lesson records.
        locations: Location records.
        track_to_branch: Track ID -> branch ID (None when unlinked).
        overrides: Assignment overrides.
    """

    teachers: list[dict] = field(default_factory=list)
    lessons: list[dict] = field(default_factory=list)
    locations: list[dict] = field(default_factory=list)
    track_to_branch: dict[str, Optional[str]] = field(default_factory=dict)
    overrides: list[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: dict) -> "InputRecords":
        """Build from a payload such as a JSON input file."""
        return cls(
            teachers=list(payload.get("teachers", [])),
            lessons=list(payload.get("lessons", [])),
            locations=list(payload.get("locations", [])),
            track_to_branch=dict(
                payload.get("track_to_branch", payload.get("trackToBranch", {}))
            ),
            overrides=list(payload.get("overrides", [])),
        )
