"""Candidate resolution for lesson placement.

This module computes, for every lesson entering the solver, which teachers
and which locations are eligible to teach it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from weekplan.domain.models import LessonDemand, OverrideKind
from weekplan.domain.policies import (
    BlockPolicy,
    ClassGroupPolicy,
    DefaultBlockPolicy,
    DefaultClassGroupPolicy,
)
from weekplan.scheduling.normalizer import InputModel
from weekplan.scheduling.run_log import RunLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LessonCandidates:
    """Eligible resources for a single lesson.

    Attributes:
        lesson: The lesson.
        teacher_ids: Eligible teachers, sorted.
        location_ids: Eligible locations, sorted.
        class_ids: Class groups the lesson occupies.
        from_required_override: True if teachers come from required overrides.
        unschedulable_reason: Why the lesson cannot be placed, if known up front.
    """

    lesson: LessonDemand
    teacher_ids: tuple[str, ...]
    location_ids: tuple[str, ...]
    class_ids: tuple[str, ...]
    from_required_override: bool = False
    unschedulable_reason: Optional[str] = None

    @property
    def is_schedulable(self) -> bool:
        return self.unschedulable_reason is None

    @property
    def option_count(self) -> int:
        """Rough size of the search space, used to order lessons."""
        return len(self.teacher_ids) * len(self.location_ids)


class CandidateResolver:
    """Resolves eligible teachers and locations per lesson.

    Teacher eligibility:
    - If any required override names the lesson, exactly those teachers are
      eligible; branch matching and excluded overrides are ignored.
    - Otherwise, active teachers of the branch linked to the lesson's track,
      minus teachers with an excluded override for the lesson.

    Location eligibility:
    - Locations whose type is one of the lesson's suitable types.
    - Any bookable location if the lesson declares no types.
    """

    def __init__(
        self,
        class_policy: Optional[ClassGroupPolicy] = None,
        block_policy: Optional[BlockPolicy] = None,
        min_capacity: int = 0,
    ):
        self.class_policy = class_policy or DefaultClassGroupPolicy()
        self.block_policy = block_policy or DefaultBlockPolicy()
        self.min_capacity = min_capacity

    def resolve(self, model: InputModel, lesson: LessonDemand, log: Optional[RunLog] = None) -> LessonCandidates:
        """Resolve candidates for one lesson.

        Args:
            model: Normalized input.
            lesson: Lesson to resolve.
            log: Run log receiving warnings.

        Returns:
            LessonCandidates for the lesson. An empty resource set is a
            warning, not an error.
        """
        log = log or RunLog(logger)

        teacher_ids, from_required = self._eligible_teachers(model, lesson)
        location_ids = self._eligible_locations(model, lesson)

        reason = None
        needed = self.block_policy.multi_resource_count() if lesson.requires_multiple_resources else 1
        if not teacher_ids:
            reason = "no eligible teacher"
        elif len(teacher_ids) < needed:
            reason = f"needs {needed} distinct teachers, {len(teacher_ids)} eligible"
        elif not location_ids:
            reason = "no suitable location"
        elif len(location_ids) < needed:
            reason = f"needs {needed} distinct locations, {len(location_ids)} suitable"

        if reason:
            log.warning(f"Lesson {lesson.name} ({lesson.id}) unschedulable: {reason}")

        return LessonCandidates(
            lesson=lesson,
            teacher_ids=teacher_ids,
            location_ids=location_ids,
            class_ids=self.class_policy.class_ids(lesson),
            from_required_override=from_required,
            unschedulable_reason=reason,
        )

    def resolve_all(
        self, model: InputModel, log: Optional[RunLog] = None
    ) -> dict[str, LessonCandidates]:
        """Resolve candidates for every lesson that enters the solver.

        Returns:
            Dict mapping lesson ID to LessonCandidates, in solver order.
        """
        return {
            lesson.id: self.resolve(model, lesson, log) for lesson in model.scheduled_lessons
        }

    def _eligible_teachers(
        self, model: InputModel, lesson: LessonDemand
    ) -> tuple[tuple[str, ...], bool]:
        required = {
            o.teacher_id
            for o in model.overrides
            if o.lesson_id == lesson.id and o.kind == OverrideKind.REQUIRED
        }
        if required:
            # Inactive teachers are out of the pool even when required.
            return tuple(sorted(t for t in required if t in model.teachers)), True

        branch_id = model.branch_of(lesson.track_id)
        if branch_id is None:
            return (), False

        excluded = {
            o.teacher_id
            for o in model.overrides
            if o.lesson_id == lesson.id and o.kind == OverrideKind.EXCLUDED
        }
        eligible = sorted(
            t.id
            for t in model.teachers.values()
            if t.is_active and t.branch_id == branch_id and t.id not in excluded
        )
        return tuple(eligible), False

    def _eligible_locations(self, model: InputModel, lesson: LessonDemand) -> tuple[str, ...]:
        eligible = []
        for location in model.locations.values():
            if not location.bookable:
                continue
            if location.capacity is None or location.capacity < self.min_capacity:
                continue
            if (
                lesson.suitable_location_type_ids
                and location.location_type_id not in lesson.suitable_location_type_ids
            ):
                continue
            eligible.append(location.id)
        return tuple(sorted(eligible))
