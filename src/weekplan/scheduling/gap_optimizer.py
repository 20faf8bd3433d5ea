"""Gap reduction for existing timetables.

This module implements a local search over a finished Schedule that moves
lesson-hours within a day to close idle gaps in teacher days:
1. Relocate a single cell into a gap hour
2. Swap a cell with the entry blocking a gap hour
3. Merge two separated single-hour cells of a splittable lesson

A move is accepted only if it strictly lowers the gaps of the teachers it
touches, so total gaps never increase and the search always terminates.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from weekplan.domain.models import (
    ChangeType,
    Day,
    OptimizationChange,
    SavedSchedule,
    Schedule,
    ScheduledEntry,
    ScheduleMetrics,
    ScoringWeights,
    TeacherProfile,
    TimeSlot,
)
from weekplan.errors import WeekplanError
from weekplan.scheduling.normalizer import InputModel
from weekplan.scheduling.run_log import RunLog
from weekplan.scheduling.slot_grid import SlotGrid
from weekplan.store.repository import ScheduleRepository

logger = logging.getLogger(__name__)


@dataclass
class OptimizerConfig:
    """Configuration for the gap optimizer.

    Attributes:
        max_passes: Upper bound on full passes over all teachers.
    """

    max_passes: int = 50


@dataclass
class OptimizationResult:
    """Result of an optimizer run.

    Attributes:
        schedule: The revised schedule (the input is left untouched).
        initial_gaps: Total gaps before optimizing.
        new_gaps: Total gaps after optimizing.
        changes: Accepted moves in the order they were applied.
        passes: Number of full passes run.
        logs: Log trail of the run.
        cancelled: True if a deadline or cancel event stopped the search.
    """

    schedule: Schedule
    initial_gaps: int
    new_gaps: int
    changes: list[OptimizationChange] = field(default_factory=list)
    passes: int = 0
    logs: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def improved(self) -> bool:
        return self.new_gaps < self.initial_gaps


@dataclass
class _Move:
    """A candidate set of entry relocations evaluated as one unit."""

    change_type: ChangeType
    relocations: list[tuple[str, TimeSlot]]
    reason: str


class GapOptimizer:
    """Local-search optimizer that closes idle gaps in teacher days.

    Moves stay within a day, keep every entry's teachers, locations and
    classes, respect teacher unavailability when profiles are known, and keep
    non-splittable lessons in one contiguous block.

    Example:
        >>> optimizer = GapOptimizer()
        >>> result = optimizer.optimize(schedule, model)
        >>> result.new_gaps <= result.initial_gaps
        True
    """

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()

    def optimize(
        self,
        schedule: Schedule,
        model: Optional[InputModel] = None,
        log: Optional[RunLog] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OptimizationResult:
        """Reduce teacher gaps in a schedule.

        Args:
            schedule: Schedule to improve. It is not modified.
            model: Input model supplying teacher unavailability, lesson
                splittability and the slot grid. Without it only occupancy
                is checked, and any lesson that currently forms one
                contiguous block is kept contiguous.
            log: Run log for the changelog trail.
            deadline: Absolute time.monotonic() value checked between passes.
            cancel_event: Event checked between passes.

        Returns:
            OptimizationResult with the revised schedule and changelog.
        """
        log = log or RunLog(logger)
        working = schedule.copy()
        teachers = model.teachers if model is not None else {}
        grid = model.grid if model is not None else SlotGrid()
        contiguous = self._contiguous_lessons(working, model)

        initial_gaps = working.total_gaps()
        log.info(f"Gap optimizer started: {len(working)} entries, {initial_gaps} gaps")

        changes: list[OptimizationChange] = []
        passes = 0
        cancelled = False
        while passes < self.config.max_passes:
            if (cancel_event is not None and cancel_event.is_set()) or (
                deadline is not None and time.monotonic() > deadline
            ):
                cancelled = True
                log.warning(f"Gap optimizer stopped early after {passes} passes")
                break
            passes += 1

            accepted = 0
            for teacher_id in working.teacher_ids():
                for day in Day:
                    while True:
                        applied = self._improve_teacher_day(
                            working, teacher_id, day, teachers, grid, contiguous, log
                        )
                        if not applied:
                            break
                        changes.extend(applied)
                        accepted += 1
            log.debug(f"Pass {passes}: {accepted} moves accepted")
            if accepted == 0:
                break
        else:
            log.warning(f"Gap optimizer reached the pass limit ({self.config.max_passes})")

        new_gaps = working.total_gaps()
        log.info(
            f"Gap optimizer finished: {initial_gaps} -> {new_gaps} gaps, "
            f"{len(changes)} changes in {passes} passes"
        )
        return OptimizationResult(
            schedule=working,
            initial_gaps=initial_gaps,
            new_gaps=new_gaps,
            changes=changes,
            passes=passes,
            logs=list(log.lines),
            cancelled=cancelled,
        )

    def _contiguous_lessons(self, schedule: Schedule, model: Optional[InputModel]) -> set[str]:
        """Lessons whose hours must stay in one contiguous block."""
        lesson_ids = {entry.lesson_id for entry in schedule.entries()}
        if model is not None:
            return {
                lesson_id
                for lesson_id in lesson_ids
                if lesson_id in model.lessons and not model.lessons[lesson_id].splittable
            } | {
                lesson_id
                for lesson_id in lesson_ids
                if lesson_id not in model.lessons and _is_single_block(schedule, lesson_id)
            }
        return {lesson_id for lesson_id in lesson_ids if _is_single_block(schedule, lesson_id)}

    def _improve_teacher_day(
        self,
        schedule: Schedule,
        teacher_id: str,
        day: Day,
        teachers: dict[str, TeacherProfile],
        grid: SlotGrid,
        contiguous: set[str],
        log: RunLog,
    ) -> list[OptimizationChange]:
        """Apply the first improving move for one teacher-day, if any."""
        hour_keys = schedule.teacher_entry_keys(teacher_id, day)
        if len(hour_keys) < 2:
            return []
        hours = sorted(hour_keys)
        gap_hours = [h for h in range(hours[0] + 1, hours[-1]) if h not in hour_keys]

        for move in self._candidate_moves(schedule, day, hour_keys, gap_hours, grid, contiguous):
            applied = self._try_apply(schedule, move, teachers, contiguous)
            if applied:
                return self._record(teacher_id, move, applied, log)
        return []

    def _candidate_moves(
        self,
        schedule: Schedule,
        day: Day,
        hour_keys: dict[int, str],
        gap_hours: list[int],
        grid: SlotGrid,
        contiguous: set[str],
    ):
        """Yield moves in preference order: relocations, swaps, merges."""
        # Later lessons first, so days are pulled towards their start.
        movable = [hour_keys[h] for h in sorted(hour_keys, reverse=True)]

        for gap in gap_hours:
            target = TimeSlot(day, gap)
            for key in movable:
                yield _Move(ChangeType.RELOCATE, [(key, target)], "gap reduction")

        for gap in gap_hours:
            target = TimeSlot(day, gap)
            for key in movable:
                entry = schedule.get(key)
                blockers = schedule.conflicts(entry, target, ignore_keys=[key])
                if len(blockers) != 1:
                    continue
                blocker = blockers[0]
                yield _Move(
                    ChangeType.SWAP,
                    [(key, target), (blocker, entry.time_slot)],
                    "gap reduction swap",
                )

        singles: dict[str, list[str]] = {}
        for hour in sorted(hour_keys):
            entry = schedule.get(hour_keys[hour])
            if entry.lesson_id in contiguous:
                continue
            same_day = [e for e in schedule.lesson_entries(entry.lesson_id) if e.time_slot.day == day]
            if _is_isolated(entry, same_day):
                singles.setdefault(entry.lesson_id, []).append(hour_keys[hour])
        for lesson_id in sorted(singles):
            keys = singles[lesson_id]
            for key in keys:
                for anchor_key in keys:
                    if anchor_key == key:
                        continue
                    anchor = schedule.get(anchor_key).time_slot
                    for offset in (-1, 1):
                        target = anchor.shifted(offset)
                        if target in grid:
                            yield _Move(ChangeType.MERGE, [(key, target)], "block merge")

    def _try_apply(
        self,
        schedule: Schedule,
        move: _Move,
        teachers: dict[str, TeacherProfile],
        contiguous: set[str],
    ) -> Optional[list[tuple[str, ScheduledEntry]]]:
        """Apply a move if it is legal and strictly reduces gaps.

        Returns:
            (old key, relocated entry) pairs if the move was applied, else None.
        """
        moved = [(schedule.get(key), target) for key, target in move.relocations]
        if any(entry is None or entry.time_slot == target for entry, target in moved):
            return None

        for entry, target in moved:
            for teacher_id in entry.teacher_ids:
                profile = teachers.get(teacher_id)
                if profile is not None and not profile.is_available(target):
                    return None

        affected = sorted({t for entry, _ in moved for t in entry.teacher_ids})
        before = sum(schedule.teacher_gaps(t) for t in affected)

        for entry, _ in moved:
            schedule.remove(entry.key)
        placed = []
        legal = True
        for entry, target in moved:
            relocated = entry.moved_to(target)
            if relocated.key in schedule or schedule.conflicts(relocated):
                legal = False
                break
            schedule.add(relocated)
            placed.append(relocated)

        if legal:
            lessons = {entry.lesson_id for entry, _ in moved}
            legal = all(
                lesson_id not in contiguous or _is_single_block(schedule, lesson_id)
                for lesson_id in lessons
            )
        if legal:
            after = sum(schedule.teacher_gaps(t) for t in affected)
            if after < before:
                return [(entry.key, relocated) for (entry, _), relocated in zip(moved, placed)]

        # Roll back
        for relocated in placed:
            schedule.remove(relocated.key)
        for entry, _ in moved:
            schedule.add(entry, check=False)
        return None

    def _record(
        self,
        teacher_id: str,
        move: _Move,
        applied: list[tuple[str, ScheduledEntry]],
        log: RunLog,
    ) -> list[OptimizationChange]:
        changes = []
        for old_key, entry in applied:
            new_key = entry.key
            change = OptimizationChange(
                type=move.change_type,
                teacher_id=teacher_id,
                lesson_id=entry.lesson_id,
                from_key=old_key,
                to_key=new_key,
                reason=move.reason,
            )
            log.info(
                f"{move.change_type.value}: {entry.lesson_name} ({entry.lesson_id}) "
                f"{old_key} -> {new_key} [{move.reason}]"
            )
            changes.append(change)
        return changes


def _is_single_block(schedule: Schedule, lesson_id: str) -> bool:
    """True if the lesson's hours form one contiguous block on one day."""
    entries = schedule.lesson_entries(lesson_id)
    if not entries:
        return True
    days = {e.time_slot.day for e in entries}
    if len(days) != 1:
        return False
    hours = sorted(e.time_slot.hour for e in entries)
    return hours[-1] - hours[0] + 1 == len(hours)


def _is_isolated(entry: ScheduledEntry, same_day: list[ScheduledEntry]) -> bool:
    """True if no other hour of the lesson sits right next to this one."""
    hour = entry.time_slot.hour
    return not any(abs(other.time_slot.hour - hour) == 1 for other in same_day)


def optimize_saved_schedule(
    repository: ScheduleRepository,
    schedule_id: str,
    optimizer: Optional[GapOptimizer] = None,
    model: Optional[InputModel] = None,
    weights: Optional[ScoringWeights] = None,
) -> dict:
    """Optimize a persisted schedule and save the result as a new snapshot.

    Args:
        repository: Repository holding the schedule.
        schedule_id: ID of the SavedSchedule to optimize.
        optimizer: Optimizer to use (default configuration if None).
        model: Optional input model for unavailability and splittability.
        weights: Fitness weights used to update the stored fitness score.

    Returns:
        Dict with success, message and, on success, newScheduleId (only when
        a new snapshot was written), newGaps and changes.
    """
    optimizer = optimizer or GapOptimizer()
    weights = weights or ScoringWeights()

    try:
        saved = repository.get(schedule_id)
    except WeekplanError as e:
        logger.warning(f"Could not load schedule {schedule_id}: {e}")
        return {"success": False, "message": f"Could not load schedule {schedule_id}: {e}"}

    if saved is None:
        return {"success": False, "message": f"Schedule {schedule_id} not found"}
    if len(saved.schedule) == 0:
        return {
            "success": False,
            "message": f"Schedule {schedule_id} has no valid entries to optimize",
        }

    log = RunLog(logger)
    result = optimizer.optimize(saved.schedule, model=model, log=log)

    if not result.changes:
        return {
            "success": True,
            "message": "No gap-reducing moves found",
            "newGaps": result.new_gaps,
            "changes": [],
        }

    old_metrics = ScheduleMetrics.calculate(saved.schedule, weights=weights)
    new_metrics = ScheduleMetrics.calculate(result.schedule, weights=weights)
    fitness = (
        saved.fitness_score
        + weights.beta * (new_metrics.total_gaps - old_metrics.total_gaps)
        + weights.delta * (new_metrics.short_day_penalty - old_metrics.short_day_penalty)
    )

    optimized = SavedSchedule(
        id=uuid.uuid4().hex,
        fitness_score=fitness,
        workload_variance=saved.workload_variance,
        total_gaps=result.new_gaps,
        schedule=result.schedule,
        unassigned=saved.unassigned,
        logs=tuple(saved.logs) + tuple(result.logs),
        name=f"{saved.name or 'Schedule'} (optimized)",
        description=saved.description,
    )
    try:
        repository.save(optimized)
    except WeekplanError as e:
        logger.warning(f"Could not save optimized schedule: {e}")
        return {"success": False, "message": f"Could not save optimized schedule: {e}"}

    return {
        "success": True,
        "message": (
            f"Gaps reduced from {result.initial_gaps} to {result.new_gaps} "
            f"with {len(result.changes)} changes"
        ),
        "newScheduleId": optimized.id,
        "newGaps": result.new_gaps,
        "changes": [change.to_dict() for change in result.changes],
    }
