"""Domain models for the timetabling system.

This module contains the core data structures shared by the solver, the gap
optimizer and the store adapter: days and time slots, teachers, lessons,
locations, placed entries, the schedule itself and its quality metrics.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Iterator, Optional

from weekplan.errors import ConstraintViolation


# Day names found in legacy stored data, mapped to the 0-based day index.
_DAY_ALIASES = {
    "pazartesi": 0,
    "salı": 1,
    "sali": 1,
    "çarşamba": 2,
    "carsamba": 2,
    "perşembe": 3,
    "persembe": 3,
    "cuma": 4,
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "mon": 0,
    "tue": 1,
    "wed": 2,
    "thu": 3,
    "fri": 4,
}


class Day(Enum):
    """School days of the weekly cycle.

    The value is the canonical 0-based day index used in schedule keys.
    """

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4

    @property
    def index(self) -> int:
        return self.value

    @property
    def short_name(self) -> str:
        return self.name[:3].title()

    @classmethod
    def from_value(cls, value) -> "Day":
        """Parse a day from an index, a numeric string or a day name.

        Args:
            value: 0-based index (int or digit string), or an English or
                Turkish day name in any case.

        Returns:
            The matching Day.

        Raises:
            ValueError: If the value does not name a school day.
        """
        if isinstance(value, Day):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid day: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls(int(text))
            alias = _DAY_ALIASES.get(text.casefold())
            if alias is not None:
                return cls(alias)
        raise ValueError(f"Invalid day: {value!r}")

    @classmethod
    def is_day_name(cls, value: str) -> bool:
        """Check whether a string is a day name (not a numeric index)."""
        return value.strip().casefold() in _DAY_ALIASES


@dataclass(frozen=True)
class TimeSlot:
    """A single (day, hour) cell of the weekly grid.

    Attributes:
        day: Day of the week.
        hour: 1-based period number within the day.
    """

    day: Day
    hour: int

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.day.index, self.hour)

    def shifted(self, offset: int) -> "TimeSlot":
        """Return the slot `offset` hours later on the same day."""
        return TimeSlot(self.day, self.hour + offset)

    def __str__(self) -> str:
        return f"{self.day.short_name}-{self.hour}"


def make_key(teacher_id: str, slot: TimeSlot) -> str:
    """Build the canonical schedule key `teacherId-dayIndex-hour`."""
    return f"{teacher_id}-{slot.day.index}-{slot.hour}"


@dataclass(frozen=True)
class TeacherProfile:
    """A teacher as seen by the scheduler.

    Attributes:
        id: Unique identifier.
        name: Display name.
        branch_id: Subject-matter department, if known.
        is_active: Inactive teachers never enter the resolution pool.
        unavailable_slots: Slots in which the teacher cannot teach.
    """

    id: str
    name: str
    branch_id: Optional[str] = None
    is_active: bool = True
    unavailable_slots: frozenset[TimeSlot] = field(default_factory=frozenset)

    def is_available(self, slot: TimeSlot) -> bool:
        return slot not in self.unavailable_slots


@dataclass(frozen=True)
class LessonDemand:
    """A lesson with a weekly-hour quota for one track and grade.

    Attributes:
        id: Unique identifier.
        name: Display name.
        track_id: Track (program) the lesson belongs to.
        grade_level: Grade the lesson is taught in.
        weekly_hours: Hours to place per week.
        splittable: Whether the hours may be spread over several blocks.
        include_in_schedule: Only included lessons enter the solver.
        requires_multiple_resources: Needs two teachers and two locations
            simultaneously.
        suitable_location_type_ids: Location types the lesson can use. Empty
            means any bookable location.
    """

    id: str
    name: str
    track_id: Optional[str]
    grade_level: int
    weekly_hours: int
    splittable: bool = True
    include_in_schedule: bool = True
    requires_multiple_resources: bool = False
    suitable_location_type_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class LocationResource:
    """A bookable room or lab.

    Attributes:
        id: Unique identifier.
        name: Display name.
        location_type_id: Lab or room type, if any.
        capacity: Seat count. None means unknown.
        bookable: Non-bookable locations are excluded globally.
    """

    id: str
    name: str
    location_type_id: Optional[str] = None
    capacity: Optional[int] = None
    bookable: bool = True


class OverrideKind(Enum):
    """Kinds of explicit exceptions to branch-based eligibility."""

    REQUIRED = "required"
    EXCLUDED = "excluded"


@dataclass(frozen=True)
class AssignmentOverride:
    """Forces (required) or forbids (excluded) a teacher for a lesson."""

    teacher_id: str
    lesson_id: str
    kind: OverrideKind


@dataclass(frozen=True)
class ScheduledEntry:
    """One atomic placed unit: a lesson-hour bound to its resources.

    Attributes:
        lesson_id: Placed lesson.
        lesson_name: Lesson display name.
        teacher_ids: Teachers holding the slot. The first one owns the key.
        location_ids: Locations holding the slot.
        time_slot: Occupied slot.
        grade_level: Grade of the lesson.
        track_id: Track of the lesson.
        class_ids: Class groups holding the slot.
        teacher_names: Display names, parallel to teacher_ids.
        location_names: Display names, parallel to location_ids.
    """

    lesson_id: str
    lesson_name: str
    teacher_ids: tuple[str, ...]
    location_ids: tuple[str, ...]
    time_slot: TimeSlot
    grade_level: int
    track_id: Optional[str] = None
    class_ids: tuple[str, ...] = ()
    teacher_names: tuple[str, ...] = ()
    location_names: tuple[str, ...] = ()

    @property
    def primary_teacher_id(self) -> str:
        return self.teacher_ids[0]

    @property
    def key(self) -> str:
        return make_key(self.primary_teacher_id, self.time_slot)

    def moved_to(self, slot: TimeSlot) -> "ScheduledEntry":
        """Return a copy of this entry placed at another slot."""
        return replace(self, time_slot=slot)


class Schedule:
    """Mapping of canonical key to ScheduledEntry with occupancy indexes.

    Every teacher, location and class referenced by an entry is indexed per
    slot, so a multi-resource entry blocks all of its resources.
    """

    def __init__(self, entries: Optional[Iterable[ScheduledEntry]] = None):
        self._entries: dict[str, ScheduledEntry] = {}
        self._teachers: dict[tuple[str, TimeSlot], str] = {}
        self._locations: dict[tuple[str, TimeSlot], str] = {}
        self._classes: dict[tuple[str, TimeSlot], str] = {}
        self._teacher_days: dict[tuple[str, Day], dict[int, str]] = {}
        for entry in entries or ():
            self.add(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Schedule):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"Schedule({len(self._entries)} entries)"

    def get(self, key: str) -> Optional[ScheduledEntry]:
        return self._entries.get(key)

    def items(self) -> list[tuple[str, ScheduledEntry]]:
        """Entries sorted by key, for deterministic iteration."""
        return [(key, self._entries[key]) for key in sorted(self._entries)]

    def entries(self) -> list[ScheduledEntry]:
        return [entry for _, entry in self.items()]

    def copy(self) -> "Schedule":
        clone = Schedule()
        clone._entries = dict(self._entries)
        clone._teachers = dict(self._teachers)
        clone._locations = dict(self._locations)
        clone._classes = dict(self._classes)
        clone._teacher_days = {k: dict(v) for k, v in self._teacher_days.items()}
        return clone

    def conflicts(
        self,
        entry: ScheduledEntry,
        slot: Optional[TimeSlot] = None,
        ignore_keys: Iterable[str] = (),
    ) -> list[str]:
        """Keys of entries that would clash with `entry` placed at `slot`.

        Args:
            entry: Entry whose resources are checked.
            slot: Slot to check. Defaults to the entry's own slot.
            ignore_keys: Keys treated as already vacated.

        Returns:
            Sorted list of conflicting keys (empty if the slot is free).
        """
        slot = slot or entry.time_slot
        ignored = set(ignore_keys)
        clashes = set()
        if make_key(entry.primary_teacher_id, slot) in self._entries:
            clashes.add(make_key(entry.primary_teacher_id, slot))
        for index, resources in (
            (self._teachers, entry.teacher_ids),
            (self._locations, entry.location_ids),
            (self._classes, entry.class_ids),
        ):
            for resource_id in resources:
                owner = index.get((resource_id, slot))
                if owner is not None:
                    clashes.add(owner)
        return sorted(clashes - ignored)

    def is_free(
        self,
        teacher_ids: Iterable[str],
        location_ids: Iterable[str],
        class_ids: Iterable[str],
        slot: TimeSlot,
    ) -> bool:
        """Check that every listed resource is unoccupied at `slot`."""
        for index, resources in (
            (self._teachers, teacher_ids),
            (self._locations, location_ids),
            (self._classes, class_ids),
        ):
            for resource_id in resources:
                if (resource_id, slot) in index:
                    return False
        return True

    def add(self, entry: ScheduledEntry, check: bool = True) -> None:
        """Insert an entry and index its resources.

        Args:
            entry: Entry to insert.
            check: If True, refuse entries that double-book a resource.

        Raises:
            ConstraintViolation: If the key is taken, or if `check` is set and
                a resource is already occupied.
        """
        key = entry.key
        if key in self._entries:
            raise ConstraintViolation(f"Key {key} is already occupied")
        if check:
            clashes = self.conflicts(entry)
            if clashes:
                raise ConstraintViolation(
                    f"Entry {key} ({entry.lesson_id}) clashes with {', '.join(clashes)}"
                )
        self._entries[key] = entry
        slot = entry.time_slot
        for teacher_id in entry.teacher_ids:
            self._teachers[(teacher_id, slot)] = key
            self._teacher_days.setdefault((teacher_id, slot.day), {})[slot.hour] = key
        for location_id in entry.location_ids:
            self._locations[(location_id, slot)] = key
        for class_id in entry.class_ids:
            self._classes[(class_id, slot)] = key

    def remove(self, key: str) -> ScheduledEntry:
        """Remove an entry and release its resources."""
        entry = self._entries.pop(key)
        slot = entry.time_slot
        for index, resources in (
            (self._teachers, entry.teacher_ids),
            (self._locations, entry.location_ids),
            (self._classes, entry.class_ids),
        ):
            for resource_id in resources:
                if index.get((resource_id, slot)) == key:
                    del index[(resource_id, slot)]
        for teacher_id in entry.teacher_ids:
            day_hours = self._teacher_days.get((teacher_id, slot.day), {})
            if day_hours.get(slot.hour) == key:
                del day_hours[slot.hour]
                if not day_hours:
                    del self._teacher_days[(teacher_id, slot.day)]
        return entry

    def teacher_ids(self) -> list[str]:
        """All teachers holding at least one slot, sorted."""
        return sorted({teacher_id for teacher_id, _ in self._teacher_days})

    def teacher_entry_keys(self, teacher_id: str, day: Day) -> dict[int, str]:
        """Map hour -> key for every slot the teacher holds on a day."""
        return dict(self._teacher_days.get((teacher_id, day), {}))

    def teacher_hours(self, teacher_id: str, day: Day) -> list[int]:
        return sorted(self.teacher_entry_keys(teacher_id, day))

    def teacher_gaps(self, teacher_id: str) -> int:
        """Idle hours between occupied hours for one teacher, all days."""
        return sum(
            count_gaps(self.teacher_hours(teacher_id, day)) for day in Day
        )

    def total_gaps(self) -> int:
        return sum(self.teacher_gaps(teacher_id) for teacher_id in self.teacher_ids())

    def hours_by_teacher(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for teacher_id, _ in self._teachers:
            counts[teacher_id] = counts.get(teacher_id, 0) + 1
        return counts

    def hours_by_lesson(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self._entries.values():
            counts[entry.lesson_id] = counts.get(entry.lesson_id, 0) + 1
        return counts

    def lesson_entries(self, lesson_id: str) -> list[ScheduledEntry]:
        """Entries of one lesson, ordered by slot."""
        return sorted(
            (e for e in self._entries.values() if e.lesson_id == lesson_id),
            key=lambda e: e.time_slot.sort_key,
        )


def count_gaps(hours: list[int]) -> int:
    """Count idle hours strictly between the first and last occupied hour."""
    distinct = sorted(set(hours))
    if len(distinct) < 2:
        return 0
    return (distinct[-1] - distinct[0] + 1) - len(distinct)


@dataclass(frozen=True)
class UnassignedRemainder:
    """Hours of a lesson that could not be placed.

    Attributes:
        lesson_id: Lesson with a shortfall.
        lesson_name: Lesson display name.
        remaining_hours: Hours left unplaced.
        weekly_hours: The lesson's full weekly quota.
        reason: Short explanation for the log trail.
    """

    lesson_id: str
    lesson_name: str
    remaining_hours: int
    weekly_hours: int = 0
    reason: str = ""


@dataclass
class ScoringWeights:
    """Tunable weights for the fitness score.

    Attributes:
        alpha: Weight on teacher workload variance.
        beta: Weight on total teacher gaps.
        gamma: Weight on unassigned lesson-hours.
        delta: Weight on the short-day penalty.
        same_day: Soft penalty for a second block of a lesson on a day the
            lesson already uses.
        free_day: Soft penalty for a block that would leave a teacher busy on
            every day of the week.
    """

    alpha: float = 1.0
    beta: float = 1.0
    gamma: float = 10.0
    delta: float = 1.0
    same_day: float = 0.5
    free_day: float = 10.0


# Teacher-days shorter than this are penalized quadratically.
SHORT_DAY_THRESHOLD = 4


@dataclass
class ScheduleMetrics:
    """Quality metrics of a schedule.

    Attributes:
        workload_variance: Population variance of hours per teacher.
        total_gaps: Idle hours inside teacher days, summed.
        short_day_penalty: Sum of (4 - n)^2 over teacher-days with 1-3 hours.
        unassigned_hours: Lesson-hours left unplaced.
        fitness_score: Weighted sum of the above (lower is better).
        teacher_hours: Hours per teacher.
    """

    workload_variance: float = 0.0
    total_gaps: int = 0
    short_day_penalty: int = 0
    unassigned_hours: int = 0
    fitness_score: float = 0.0
    teacher_hours: dict[str, int] = field(default_factory=dict)

    @classmethod
    def calculate(
        cls,
        schedule: Schedule,
        teacher_ids: Iterable[str] = (),
        unassigned: Iterable[UnassignedRemainder] = (),
        weights: Optional[ScoringWeights] = None,
    ) -> "ScheduleMetrics":
        """Calculate metrics for a schedule.

        Args:
            schedule: Schedule to measure.
            teacher_ids: Teachers counted in the variance, including those
                without any hours. Teachers found in the schedule are always
                counted.
            unassigned: Unplaced remainders.
            weights: Fitness weights (defaults used if None).

        Returns:
            ScheduleMetrics instance.
        """
        weights = weights or ScoringWeights()
        hours = {teacher_id: 0 for teacher_id in teacher_ids}
        hours.update(schedule.hours_by_teacher())

        variance = 0.0
        if hours:
            mean = sum(hours.values()) / len(hours)
            variance = sum((h - mean) ** 2 for h in hours.values()) / len(hours)

        short_days = 0
        for teacher_id in schedule.teacher_ids():
            for day in Day:
                short_days += short_day_penalty(len(schedule.teacher_hours(teacher_id, day)))

        gaps = schedule.total_gaps()
        unassigned_hours = sum(r.remaining_hours for r in unassigned)
        fitness = (
            weights.alpha * variance
            + weights.beta * gaps
            + weights.gamma * unassigned_hours
            + weights.delta * short_days
        )

        return cls(
            workload_variance=variance,
            total_gaps=gaps,
            short_day_penalty=short_days,
            unassigned_hours=unassigned_hours,
            fitness_score=fitness,
            teacher_hours=dict(sorted(hours.items())),
        )


def short_day_penalty(lesson_count: int) -> int:
    """Quadratic penalty for a teacher-day with only a few lessons."""
    if 0 < lesson_count < SHORT_DAY_THRESHOLD:
        return (SHORT_DAY_THRESHOLD - lesson_count) ** 2
    return 0


class ChangeType(Enum):
    """Kinds of optimizer moves."""

    RELOCATE = "relocate"
    SWAP = "swap"
    MERGE = "merge"


@dataclass(frozen=True)
class OptimizationChange:
    """One accepted optimizer move, as recorded in the changelog."""

    type: ChangeType
    teacher_id: str
    lesson_id: str
    from_key: str
    to_key: str
    reason: str

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "teacherId": self.teacher_id,
            "lessonId": self.lesson_id,
            "fromKey": self.from_key,
            "toKey": self.to_key,
            "reason": self.reason,
        }


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SavedSchedule:
    """A persisted snapshot of a computed or optimized schedule.

    Snapshots are immutable: metadata edits produce a new instance via
    `with_details`, and the schedule itself is never changed in place.

    Attributes:
        id: Unique identifier.
        fitness_score: Fitness at save time.
        workload_variance: Workload variance at save time.
        total_gaps: Total gaps at save time.
        schedule: The saved schedule.
        unassigned: Unplaced remainders.
        logs: Log trail of the run that produced the schedule.
        created_at: Creation timestamp, timezone-aware (UTC).
        name: Optional display name.
        description: Optional description.
    """

    id: str
    fitness_score: float
    workload_variance: float
    total_gaps: int
    schedule: Schedule
    unassigned: tuple[UnassignedRemainder, ...] = ()
    logs: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    name: Optional[str] = None
    description: Optional[str] = None

    def with_details(
        self, name: Optional[str], description: Optional[str]
    ) -> "SavedSchedule":
        return replace(self, name=name, description=description)
