"""Validation module for verifying schedule correctness.

This module re-checks every hard constraint on a finished Schedule against
the InputModel it was built from. Every generated or optimized schedule should
pass validation before being saved or reported.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from weekplan.domain.models import Schedule, ScheduledEntry, TimeSlot
from weekplan.domain.policies import BlockPolicy, DefaultBlockPolicy
from weekplan.scheduling.normalizer import InputModel


class ValidationErrorType(Enum):
    """Types of validation errors."""

    SLOT_OUTSIDE_GRID = "slot_outside_grid"
    TEACHER_DOUBLE_BOOKED = "teacher_double_booked"
    LOCATION_DOUBLE_BOOKED = "location_double_booked"
    CLASS_DOUBLE_BOOKED = "class_double_booked"
    TEACHER_UNAVAILABLE = "teacher_unavailable"
    UNKNOWN_LESSON = "unknown_lesson"
    UNKNOWN_TEACHER = "unknown_teacher"
    UNKNOWN_LOCATION = "unknown_location"
    BLOCK_NOT_CONTIGUOUS = "block_not_contiguous"
    RESOURCES_NOT_DISTINCT = "resources_not_distinct"
    WEEKLY_HOURS_EXCEEDED = "weekly_hours_exceeded"
    MULTIPLE_TEACHERS = "multiple_teachers"


@dataclass
class ValidationError:
    """A single validation error."""

    error_type: ValidationErrorType
    message: str
    lesson_id: Optional[str] = None
    key: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        parts = [f"[{self.error_type.value}]"]
        if self.lesson_id:
            parts.append(f"Lesson {self.lesson_id}:")
        parts.append(self.message)
        if self.key is not None:
            parts.append(f"(key {self.key})")
        return " ".join(parts)


@dataclass
class ValidationResult:
    """Result of validating a schedule."""

    is_valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, error: ValidationError) -> None:
        """Add an error and mark as invalid."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning (doesn't affect validity)."""
        self.warnings.append(warning)


class ScheduleValidator:
    """Validates schedules against all hard constraints.

    Occupancy is recomputed from the entries themselves rather than taken
    from the Schedule's indexes, so entries inserted without checks are
    still caught.

    Example:
        >>> validator = ScheduleValidator()
        >>> result = validator.validate(schedule, model)
        >>> if not result.is_valid:
        ...     for error in result.errors:
        ...         print(error)
    """

    def __init__(self, block_policy: Optional[BlockPolicy] = None):
        self.block_policy = block_policy or DefaultBlockPolicy()

    def validate(self, schedule: Schedule, model: InputModel) -> ValidationResult:
        """Validate a complete schedule.

        Args:
            schedule: The schedule to validate.
            model: Input model the schedule was generated from.

        Returns:
            ValidationResult with is_valid flag and any errors.
        """
        result = ValidationResult(is_valid=True)

        # Validate each entry
        for key, entry in schedule.items():
            self._validate_entry(key, entry, model, result)

        # Validate occupancy across all slots
        self._validate_occupancy(schedule, result)

        # Validate per-lesson rules
        self._validate_lessons(schedule, model, result)

        # Soft checks
        self._check_free_days(schedule, model, result)

        return result

    def _validate_entry(
        self,
        key: str,
        entry: ScheduledEntry,
        model: InputModel,
        result: ValidationResult,
    ) -> None:
        """Validate a single placed entry."""
        if entry.time_slot not in model.grid:
            result.add_error(
                ValidationError(
                    error_type=ValidationErrorType.SLOT_OUTSIDE_GRID,
                    message=f"Slot {entry.time_slot} is outside the weekly grid",
                    lesson_id=entry.lesson_id,
                    key=key,
                )
            )

        if entry.lesson_id not in model.lessons:
            result.add_error(
                ValidationError(
                    error_type=ValidationErrorType.UNKNOWN_LESSON,
                    message=f"Unknown lesson ID: {entry.lesson_id}",
                    lesson_id=entry.lesson_id,
                    key=key,
                )
            )

        for teacher_id in entry.teacher_ids:
            teacher = model.teachers.get(teacher_id)
            if teacher is None:
                result.add_error(
                    ValidationError(
                        error_type=ValidationErrorType.UNKNOWN_TEACHER,
                        message=f"Unknown or inactive teacher ID: {teacher_id}",
                        lesson_id=entry.lesson_id,
                        key=key,
                    )
                )
            elif not teacher.is_available(entry.time_slot):
                result.add_error(
                    ValidationError(
                        error_type=ValidationErrorType.TEACHER_UNAVAILABLE,
                        message=f"Teacher {teacher_id} is unavailable at {entry.time_slot}",
                        lesson_id=entry.lesson_id,
                        key=key,
                    )
                )

        for location_id in entry.location_ids:
            if location_id not in model.locations:
                result.add_error(
                    ValidationError(
                        error_type=ValidationErrorType.UNKNOWN_LOCATION,
                        message=f"Unknown or non-bookable location ID: {location_id}",
                        lesson_id=entry.lesson_id,
                        key=key,
                    )
                )

        lesson = model.lessons.get(entry.lesson_id)
        if lesson is not None and lesson.requires_multiple_resources:
            needed = self.block_policy.multi_resource_count()
            if (
                len(set(entry.teacher_ids)) < needed
                or len(set(entry.location_ids)) < needed
            ):
                result.add_error(
                    ValidationError(
                        error_type=ValidationErrorType.RESOURCES_NOT_DISTINCT,
                        message=(
                            f"Needs {needed} distinct teachers and locations, has "
                            f"{len(set(entry.teacher_ids))} and {len(set(entry.location_ids))}"
                        ),
                        lesson_id=entry.lesson_id,
                        key=key,
                    )
                )

    def _validate_occupancy(self, schedule: Schedule, result: ValidationResult) -> None:
        """Check that no teacher, location or class holds two entries at once."""
        seen: dict[tuple[str, str, TimeSlot], str] = {}
        error_types = {
            "teacher": ValidationErrorType.TEACHER_DOUBLE_BOOKED,
            "location": ValidationErrorType.LOCATION_DOUBLE_BOOKED,
            "class": ValidationErrorType.CLASS_DOUBLE_BOOKED,
        }

        for key, entry in schedule.items():
            for kind, resource_ids in (
                ("teacher", entry.teacher_ids),
                ("location", entry.location_ids),
                ("class", entry.class_ids),
            ):
                for resource_id in resource_ids:
                    owner = seen.setdefault((kind, resource_id, entry.time_slot), key)
                    if owner != key:
                        result.add_error(
                            ValidationError(
                                error_type=error_types[kind],
                                message=(
                                    f"{kind.title()} {resource_id} is booked by both "
                                    f"{owner} and {key} at {entry.time_slot}"
                                ),
                                lesson_id=entry.lesson_id,
                                key=key,
                            )
                        )

    def _validate_lessons(
        self, schedule: Schedule, model: InputModel, result: ValidationResult
    ) -> None:
        """Check weekly quotas, contiguity and teacher consistency per lesson."""
        for lesson_id, placed in sorted(schedule.hours_by_lesson().items()):
            lesson = model.lessons.get(lesson_id)
            if lesson is None:
                continue
            entries = schedule.lesson_entries(lesson_id)

            if placed > lesson.weekly_hours:
                result.add_error(
                    ValidationError(
                        error_type=ValidationErrorType.WEEKLY_HOURS_EXCEEDED,
                        message=f"{placed} hours placed, weekly quota is {lesson.weekly_hours}",
                        lesson_id=lesson_id,
                        details={"placed": placed, "weekly_hours": lesson.weekly_hours},
                    )
                )
            elif placed < lesson.weekly_hours:
                result.add_warning(
                    f"Lesson {lesson.name} ({lesson_id}): {placed} of "
                    f"{lesson.weekly_hours} hours placed"
                )

            if not lesson.splittable:
                days = {e.time_slot.day for e in entries}
                hours = sorted(e.time_slot.hour for e in entries)
                if len(days) != 1 or hours[-1] - hours[0] + 1 != len(hours):
                    result.add_error(
                        ValidationError(
                            error_type=ValidationErrorType.BLOCK_NOT_CONTIGUOUS,
                            message="Non-splittable lesson is not one contiguous block",
                            lesson_id=lesson_id,
                            details={"slots": [str(e.time_slot) for e in entries]},
                        )
                    )

            if not lesson.requires_multiple_resources:
                teacher_sets = {e.teacher_ids for e in entries}
                if len(teacher_sets) > 1 or any(len(t) > 1 for t in teacher_sets):
                    result.add_error(
                        ValidationError(
                            error_type=ValidationErrorType.MULTIPLE_TEACHERS,
                            message=(
                                "Single-resource lesson is taught by "
                                f"{sorted({t for ids in teacher_sets for t in ids})}"
                            ),
                            lesson_id=lesson_id,
                        )
                    )

    def _check_free_days(
        self, schedule: Schedule, model: InputModel, result: ValidationResult
    ) -> None:
        for teacher_id in schedule.teacher_ids():
            busy_days = [d for d in model.grid.days if schedule.teacher_hours(teacher_id, d)]
            if model.grid.days and len(busy_days) == len(model.grid.days):
                teacher = model.teachers.get(teacher_id)
                name = teacher.name if teacher is not None else teacher_id
                result.add_warning(f"Teacher {name} ({teacher_id}) has no free day")
