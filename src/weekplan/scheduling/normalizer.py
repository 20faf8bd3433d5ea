"""Input normalization.

This module turns raw teacher, lesson, location and override records into a
cross-referenced InputModel. Malformed records are skipped with a warning; the
model is only rejected outright when it is structurally impossible to solve.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from weekplan.domain.models import (
    AssignmentOverride,
    LessonDemand,
    LocationResource,
    TeacherProfile,
)
from weekplan.domain.records import (
    InputRecords,
    LessonRecord,
    LocationRecord,
    TeacherRecord,
    UnavailabilityRecord,
    parse_override,
)
from weekplan.errors import FatalScheduleError, InputError
from weekplan.scheduling.run_log import RunLog
from weekplan.scheduling.slot_grid import SlotGrid

logger = logging.getLogger(__name__)

# Staff-only rooms that older data marks only by name.
DEFAULT_NON_BOOKABLE_NAMES = frozenset({"Şef Odası"})


@dataclass
class InputModel:
    """Cross-referenced input for one solver run.

    Rebuilt fresh for every run and never persisted.

    Attributes:
        teachers: Active teachers by ID.
        lessons: Every parsed lesson by ID, included or not.
        locations: Bookable locations by ID.
        track_to_branch: Track ID -> branch ID (None when unlinked).
        overrides: Valid assignment overrides.
        grid: Weekly slot grid.
        inactive_teacher_ids: Teachers dropped because they are inactive.
        warnings: Warnings raised while normalizing.
    """

    teachers: dict[str, TeacherProfile]
    lessons: dict[str, LessonDemand]
    locations: dict[str, LocationResource]
    track_to_branch: dict[str, Optional[str]] = field(default_factory=dict)
    overrides: list[AssignmentOverride] = field(default_factory=list)
    grid: SlotGrid = field(default_factory=SlotGrid)
    inactive_teacher_ids: set[str] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)

    @property
    def scheduled_lessons(self) -> list[LessonDemand]:
        """Included lessons by decreasing weekly hours, then ID."""
        return sorted(
            (lesson for lesson in self.lessons.values() if lesson.include_in_schedule),
            key=lambda lesson: (-lesson.weekly_hours, lesson.id),
        )

    def branch_of(self, track_id: Optional[str]) -> Optional[str]:
        if track_id is None:
            return None
        return self.track_to_branch.get(track_id)

    def check_integrity(self) -> None:
        """Raise FatalScheduleError if the model cannot be solved at all."""
        self.grid.ensure_bookable()
        for mapping, kind in (
            (self.teachers, "teacher"),
            (self.lessons, "lesson"),
            (self.locations, "location"),
        ):
            for item_id, item in mapping.items():
                if item.id != item_id:
                    raise FatalScheduleError(
                        f"Corrupt input model: {kind} stored under {item_id!r} has id {item.id!r}"
                    )


class InputNormalizer:
    """Builds an InputModel from raw persistence records.

    Example:
        >>> normalizer = InputNormalizer()
        >>> model = normalizer.normalize(InputRecords.from_dict(payload))
        >>> model.scheduled_lessons[0].weekly_hours
        6
    """

    def __init__(
        self,
        grid: Optional[SlotGrid] = None,
        non_bookable_names: frozenset[str] = DEFAULT_NON_BOOKABLE_NAMES,
    ):
        self.grid = grid or SlotGrid()
        self.non_bookable_names = non_bookable_names

    def normalize(
        self,
        records: Union[InputRecords, dict],
        log: Optional[RunLog] = None,
    ) -> InputModel:
        """Normalize raw records.

        Args:
            records: Raw records, or a payload dict accepted by
                InputRecords.from_dict.
            log: Run log receiving warnings. A private one is used if None.

        Returns:
            The cross-referenced InputModel.

        Raises:
            FatalScheduleError: If the slot grid is empty.
        """
        if isinstance(records, dict):
            records = InputRecords.from_dict(records)
        log = log or RunLog(logger)
        first_line = len(log.lines)

        self.grid.ensure_bookable()

        teachers, inactive = self._normalize_teachers(records.teachers, log)
        lessons = self._normalize_lessons(records.lessons, log)
        locations = self._normalize_locations(records.locations, log)
        track_to_branch = {
            str(track_id): None if branch_id is None else str(branch_id)
            for track_id, branch_id in records.track_to_branch.items()
        }
        known_teacher_ids = set(teachers) | inactive
        overrides = self._normalize_overrides(records.overrides, known_teacher_ids, lessons, log)

        for lesson in sorted(lessons.values(), key=lambda l: l.id):
            if not lesson.include_in_schedule:
                continue
            if lesson.track_id is None or track_to_branch.get(lesson.track_id) is None:
                log.warning(
                    f"Lesson {lesson.name} ({lesson.id}): track {lesson.track_id} "
                    f"has no branch link"
                )

        log.info(
            f"Input normalized: {len(teachers)} active teachers, {len(lessons)} lessons, "
            f"{len(locations)} locations, {len(overrides)} overrides, {self.grid.size} slots"
        )

        model = InputModel(
            teachers=teachers,
            lessons=lessons,
            locations=locations,
            track_to_branch=track_to_branch,
            overrides=overrides,
            grid=self.grid,
            inactive_teacher_ids=inactive,
            warnings=[line for line in log.lines[first_line:] if line.startswith("WARNING: ")],
        )
        model.check_integrity()
        return model

    def _normalize_teachers(
        self, raw_teachers: list[dict], log: RunLog
    ) -> tuple[dict[str, TeacherProfile], set[str]]:
        teachers: dict[str, TeacherProfile] = {}
        inactive: set[str] = set()
        for raw in raw_teachers:
            try:
                record = TeacherRecord.from_dict(raw)
            except InputError as e:
                log.warning(f"Skipping teacher record: {e}")
                continue
            if record.id in teachers or record.id in inactive:
                log.warning(f"Skipping duplicate teacher {record.id}")
                continue
            if not record.is_active:
                inactive.add(record.id)
                log.debug(f"Teacher {record.name} ({record.id}) is inactive")
                continue

            unavailable = set()
            for row in record.unavailability:
                try:
                    unavailable.update(UnavailabilityRecord.from_dict(row).to_slots())
                except InputError as e:
                    log.warning(f"Teacher {record.id}: skipping unavailability row: {e}")

            teachers[record.id] = TeacherProfile(
                id=record.id,
                name=record.name,
                branch_id=None if record.branch_id is None else str(record.branch_id),
                is_active=True,
                unavailable_slots=frozenset(s for s in unavailable if s in self.grid),
            )
        return teachers, inactive

    def _normalize_lessons(self, raw_lessons: list[dict], log: RunLog) -> dict[str, LessonDemand]:
        lessons: dict[str, LessonDemand] = {}
        for raw in raw_lessons:
            try:
                record = LessonRecord.from_dict(raw)
            except InputError as e:
                log.warning(f"Skipping lesson record: {e}")
                continue
            if record.id in lessons:
                log.warning(f"Skipping duplicate lesson {record.id}")
                continue
            if record.weekly_hours < 0:
                log.warning(f"Skipping lesson {record.id}: negative weekly hours")
                continue
            lessons[record.id] = LessonDemand(
                id=record.id,
                name=record.name,
                track_id=None if record.track_id is None else str(record.track_id),
                grade_level=record.grade_level,
                weekly_hours=record.weekly_hours,
                splittable=record.splittable,
                include_in_schedule=record.include_in_schedule,
                requires_multiple_resources=record.requires_multiple_resources,
                suitable_location_type_ids=frozenset(record.suitable_location_type_ids),
            )
        return lessons

    def _normalize_locations(
        self, raw_locations: list[dict], log: RunLog
    ) -> dict[str, LocationResource]:
        locations: dict[str, LocationResource] = {}
        for raw in raw_locations:
            try:
                record = LocationRecord.from_dict(raw)
            except InputError as e:
                log.warning(f"Skipping location record: {e}")
                continue
            if record.id in locations:
                log.warning(f"Skipping duplicate location {record.id}")
                continue
            if not record.bookable or record.name in self.non_bookable_names:
                log.debug(f"Location {record.name} ({record.id}) is not bookable")
                continue
            if record.capacity is None or record.capacity < 0:
                log.warning(
                    f"Skipping location {record.name} ({record.id}): invalid capacity "
                    f"{record.capacity}"
                )
                continue
            locations[record.id] = LocationResource(
                id=record.id,
                name=record.name,
                location_type_id=(
                    None if record.location_type_id is None else str(record.location_type_id)
                ),
                capacity=record.capacity,
                bookable=True,
            )
        return locations

    def _normalize_overrides(
        self,
        raw_overrides: list[dict],
        known_teacher_ids: set[str],
        lessons: dict[str, LessonDemand],
        log: RunLog,
    ) -> list[AssignmentOverride]:
        overrides: list[AssignmentOverride] = []
        seen = set()
        for raw in raw_overrides:
            try:
                override = parse_override(raw)
            except InputError as e:
                log.warning(f"Skipping override record: {e}")
                continue
            if override.lesson_id not in lessons:
                log.warning(f"Skipping override for unknown lesson {override.lesson_id}")
                continue
            if override.teacher_id not in known_teacher_ids:
                log.warning(f"Skipping override for unknown teacher {override.teacher_id}")
                continue
            if override in seen:
                continue
            seen.add(override)
            overrides.append(override)
        return overrides
