"""Policy definitions for timetabling rules.

This module contains configurable policies that define school rules for
splitting lessons into blocks and for deciding which lessons share a class.
Policies are kept separate from the solver to allow independent testing and
easy modification.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from weekplan.domain.models import LessonDemand


class BlockPolicy(ABC):
    """Abstract base class for lesson block sizing policies."""

    @abstractmethod
    def block_sizes(self, total_hours: int, remaining_hours: int, splittable: bool) -> list[int]:
        """Get block durations to try for the next placement of a lesson.

        Args:
            total_hours: The lesson's weekly quota.
            remaining_hours: Hours still to place.
            splittable: Whether the lesson may use several blocks.

        Returns:
            Durations in preference order. Each is at most remaining_hours.
        """
        pass

    @abstractmethod
    def requires_new_day(self, total_hours: int, remaining_hours: int) -> bool:
        """Whether the next block must go on a day the lesson has not used."""
        pass

    @abstractmethod
    def multi_resource_count(self) -> int:
        """Number of teachers and locations a multi-resource lesson needs."""
        pass


@dataclass
class DefaultBlockPolicy(BlockPolicy):
    """Default block sizing.

    - Non-splittable lessons: one block with every remaining hour.
    - Long splittable lessons (more than 3 hours): two halves, the larger one
      first; smaller blocks are tried only when a half does not fit.
    - Short splittable lessons: 3, 2 then 1 hour blocks.
    - Lessons over 5 hours place their second half on a different day.
    """

    short_lesson_max_hours: int = 3
    new_day_threshold_hours: int = 5
    resources_per_multi_lesson: int = 2

    def block_sizes(self, total_hours: int, remaining_hours: int, splittable: bool) -> list[int]:
        if remaining_hours <= 0:
            return []
        if not splittable:
            return [remaining_hours]

        preferred = []
        if total_hours > self.short_lesson_max_hours:
            first_half = (total_hours + 1) // 2
            second_half = total_hours // 2
            if remaining_hours == total_hours:
                preferred.append(first_half)
            elif remaining_hours == second_half:
                preferred.append(second_half)

        fallback = range(min(remaining_hours, self.short_lesson_max_hours), 0, -1)
        sizes = []
        for size in [*preferred, *fallback]:
            if 0 < size <= remaining_hours and size not in sizes:
                sizes.append(size)
        return sizes

    def requires_new_day(self, total_hours: int, remaining_hours: int) -> bool:
        return (
            total_hours > self.new_day_threshold_hours
            and remaining_hours == total_hours // 2
        )

    def multi_resource_count(self) -> int:
        return self.resources_per_multi_lesson


class ClassGroupPolicy(ABC):
    """Abstract base class for deciding which lessons share a class group."""

    @abstractmethod
    def class_ids(self, lesson: LessonDemand) -> tuple[str, ...]:
        """Class groups occupied whenever the lesson is taught.

        Two lessons sharing a class group can never be placed in the same slot.
        """
        pass


@dataclass
class DefaultClassGroupPolicy(ClassGroupPolicy):
    """Default class grouping.

    Lessons of the same track and grade share a class. Grades listed in
    `shared_grade_levels` have a common program across tracks, so all their
    lessons share one class group.
    """

    shared_grade_levels: set[int] = field(default_factory=lambda: {9})

    def class_ids(self, lesson: LessonDemand) -> tuple[str, ...]:
        if lesson.grade_level in self.shared_grade_levels:
            return (f"grade:{lesson.grade_level}",)
        return (f"{lesson.track_id}:{lesson.grade_level}",)
