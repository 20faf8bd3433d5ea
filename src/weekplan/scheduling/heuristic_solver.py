"""Heuristic solver for timetable generation.

This module implements a greedy, deterministic approach to:
1. Order lessons most-constrained first
2. Enumerate feasible (teacher, location, day, start hour) blocks per lesson
3. Score each block by its marginal cost increase
4. Commit the cheapest block and record shortfalls as unassigned remainders
"""

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from itertools import combinations
from typing import Iterable, Optional

from weekplan.domain.models import (
    Day,
    Schedule,
    ScheduledEntry,
    ScheduleMetrics,
    ScoringWeights,
    TimeSlot,
    UnassignedRemainder,
    count_gaps,
    short_day_penalty,
)
from weekplan.domain.policies import BlockPolicy, DefaultBlockPolicy
from weekplan.scheduling.candidate_resolver import LessonCandidates
from weekplan.scheduling.normalizer import InputModel
from weekplan.scheduling.run_log import RunLog

logger = logging.getLogger(__name__)


@dataclass
class SolverConfig:
    """Configuration shared by the timetable solvers.

    Attributes:
        time_limit_seconds: Optional wall-clock budget for one run. None runs
            without a wall-clock cap, so the same input always yields the same
            schedule; a limit or deadline trades that for a bounded run time.
        num_workers: Worker threads (heuristic candidate scoring, CP-SAT
            search). 1 keeps everything on the calling thread.
        deterministic_time_limit: CP-SAT deterministic time budget. Unlike
            wall time, it yields the same answer on every run.
        random_seed: CP-SAT random seed.
    """

    time_limit_seconds: Optional[float] = None
    num_workers: int = 1
    deterministic_time_limit: float = 10.0
    random_seed: int = 0


@dataclass
class AssignmentResult:
    """Result of a solver run.

    Attributes:
        schedule: The generated Schedule.
        unassigned: Lessons with unplaced hours.
        metrics: Quality metrics of the schedule.
        logs: Log trail of key decisions.
        status: COMPLETE, PARTIAL (some hours unplaced) or CANCELLED.
        solver: Name of the solver that produced the schedule.
        solve_time_seconds: Time taken to solve.
    """

    schedule: Schedule
    unassigned: list[UnassignedRemainder] = field(default_factory=list)
    metrics: ScheduleMetrics = field(default_factory=ScheduleMetrics)
    logs: list[str] = field(default_factory=list)
    status: str = "COMPLETE"
    solver: str = "heuristic"
    solve_time_seconds: float = 0.0

    @property
    def fitness_score(self) -> float:
        return self.metrics.fitness_score

    @property
    def workload_variance(self) -> float:
        return self.metrics.workload_variance

    @property
    def total_gaps(self) -> int:
        return self.metrics.total_gaps

    @property
    def cancelled(self) -> bool:
        return self.status == "CANCELLED"


@dataclass(frozen=True)
class BlockCandidate:
    """A feasible placement of one block of a lesson."""

    teacher_ids: tuple[str, ...]
    location_ids: tuple[str, ...]
    slots: tuple[TimeSlot, ...]

    @property
    def day(self) -> Day:
        return self.slots[0].day

    @property
    def duration(self) -> int:
        return len(self.slots)

    @property
    def sort_key(self) -> tuple:
        return (self.day.index, self.slots[0].hour, self.teacher_ids, self.location_ids)


@dataclass
class LessonState:
    """Tracks placement progress of a single lesson."""

    remaining: int
    teacher_ids: Optional[tuple[str, ...]] = None
    days_used: set[Day] = field(default_factory=set)


@dataclass
class WorkloadState:
    """Running teacher workload totals for marginal variance scoring."""

    hours: dict[str, int]
    total: int = 0
    total_sq: int = 0

    def variance_delta(self, teacher_ids: Iterable[str], added: int) -> float:
        """Change in population variance if each teacher gains `added` hours."""
        count = len(self.hours)
        if count == 0:
            return 0.0
        teacher_ids = list(teacher_ids)
        new_total = self.total + added * len(teacher_ids)
        new_total_sq = self.total_sq + sum(
            (self.hours.get(t, 0) + added) ** 2 - self.hours.get(t, 0) ** 2 for t in teacher_ids
        )
        old = self.total_sq / count - (self.total / count) ** 2
        new = new_total_sq / count - (new_total / count) ** 2
        return new - old

    def add(self, teacher_id: str, hours: int) -> None:
        current = self.hours.get(teacher_id, 0)
        self.hours[teacher_id] = current + hours
        self.total += hours
        self.total_sq += (current + hours) ** 2 - current ** 2


class AssignmentSolver:
    """Greedy heuristic solver for weekly timetables.

    The solver follows this approach:
    1. Process lessons by decreasing weekly hours, then by narrower teacher
       and location pools, then by lesson ID
    2. For each lesson, pick block sizes from the block policy
    3. Enumerate every feasible block and score its marginal cost
    4. Commit the cheapest block (ties broken by day, hour, then resource IDs)
    5. Record any shortfall as an UnassignedRemainder and move on

    Identical input always yields an identical schedule.
    """

    def __init__(
        self,
        block_policy: Optional[BlockPolicy] = None,
        weights: Optional[ScoringWeights] = None,
        config: Optional[SolverConfig] = None,
    ):
        self.block_policy = block_policy or DefaultBlockPolicy()
        self.weights = weights or ScoringWeights()
        self.config = config or SolverConfig()
        self._commit_lock = threading.Lock()

    def solve(
        self,
        model: InputModel,
        candidates: dict[str, LessonCandidates],
        log: Optional[RunLog] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AssignmentResult:
        """Generate a timetable using the greedy heuristic.

        Args:
            model: Normalized input.
            candidates: Eligible resources per lesson.
            log: Run log for the decision trail.
            deadline: Absolute time.monotonic() value after which placement
                stops and the partial result is returned.
            cancel_event: Event that stops placement when set.

        Returns:
            AssignmentResult with the schedule, remainders and metrics.
        """
        log = log or RunLog(logger)
        started = time.monotonic()
        if self.config.time_limit_seconds is not None:
            limit = started + self.config.time_limit_seconds
            deadline = limit if deadline is None else min(deadline, limit)

        schedule = Schedule()
        workload = WorkloadState(hours={teacher_id: 0 for teacher_id in model.teachers})
        unassigned: list[UnassignedRemainder] = []
        status = "COMPLETE"

        ordered = self._order_lessons(candidates)
        log.info(f"Heuristic solver started with {len(ordered)} lessons")

        pool: Optional[Executor] = None
        if self.config.num_workers > 1:
            pool = ThreadPoolExecutor(max_workers=self.config.num_workers)
        try:
            for index, lesson_candidates in enumerate(ordered):
                if self._should_stop(deadline, cancel_event):
                    status = "CANCELLED"
                    log.warning(
                        f"Solver stopped early; {len(ordered) - index} lessons not processed"
                    )
                    for skipped in ordered[index:]:
                        lesson = skipped.lesson
                        if lesson.weekly_hours > 0:
                            unassigned.append(UnassignedRemainder(
                                lesson_id=lesson.id,
                                lesson_name=lesson.name,
                                remaining_hours=lesson.weekly_hours,
                                weekly_hours=lesson.weekly_hours,
                                reason="cancelled",
                            ))
                    break

                remainder = self._place_lesson(
                    model, lesson_candidates, schedule, workload, log, pool
                )
                if remainder is not None:
                    unassigned.append(remainder)
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

        if status != "CANCELLED" and unassigned:
            status = "PARTIAL"

        metrics = ScheduleMetrics.calculate(
            schedule, model.teachers.keys(), unassigned, self.weights
        )
        log.info(
            f"Heuristic solver finished: {len(schedule)} entries, "
            f"{metrics.unassigned_hours} unassigned hours, fitness {metrics.fitness_score:.4f}"
        )
        return AssignmentResult(
            schedule=schedule,
            unassigned=unassigned,
            metrics=metrics,
            logs=list(log.lines),
            status=status,
            solver="heuristic",
            solve_time_seconds=time.monotonic() - started,
        )

    def _order_lessons(self, candidates: dict[str, LessonCandidates]) -> list[LessonCandidates]:
        """Most-constrained first: more hours, then narrower resource pools."""
        return sorted(
            candidates.values(),
            key=lambda c: (
                -c.lesson.weekly_hours,
                len(c.teacher_ids),
                len(c.location_ids),
                c.lesson.id,
            ),
        )

    def _should_stop(
        self, deadline: Optional[float], cancel_event: Optional[threading.Event]
    ) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and time.monotonic() > deadline

    def _place_lesson(
        self,
        model: InputModel,
        lesson_candidates: LessonCandidates,
        schedule: Schedule,
        workload: WorkloadState,
        log: RunLog,
        pool: Optional[Executor],
    ) -> Optional[UnassignedRemainder]:
        """Place every hour of one lesson, returning the shortfall if any."""
        lesson = lesson_candidates.lesson
        state = LessonState(remaining=lesson.weekly_hours)

        if state.remaining == 0:
            return None
        if not lesson_candidates.is_schedulable:
            return UnassignedRemainder(
                lesson_id=lesson.id,
                lesson_name=lesson.name,
                remaining_hours=state.remaining,
                weekly_hours=lesson.weekly_hours,
                reason=lesson_candidates.unschedulable_reason or "",
            )

        while state.remaining > 0:
            best = None
            new_day = self.block_policy.requires_new_day(lesson.weekly_hours, state.remaining)
            for size in self.block_policy.block_sizes(
                lesson.weekly_hours, state.remaining, lesson.splittable
            ):
                best = self._best_candidate(
                    model, lesson_candidates, state, size, new_day, schedule, workload, pool
                )
                if best is not None:
                    break
            if best is None:
                break
            self._commit(model, lesson_candidates, state, best, schedule, workload, log)

        if state.remaining > 0:
            log.warning(
                f"Lesson {lesson.name} ({lesson.id}): {state.remaining} of "
                f"{lesson.weekly_hours} hours could not be placed"
            )
            return UnassignedRemainder(
                lesson_id=lesson.id,
                lesson_name=lesson.name,
                remaining_hours=state.remaining,
                weekly_hours=lesson.weekly_hours,
                reason="no feasible slot",
            )
        return None

    def _best_candidate(
        self,
        model: InputModel,
        lesson_candidates: LessonCandidates,
        state: LessonState,
        size: int,
        new_day: bool,
        schedule: Schedule,
        workload: WorkloadState,
        pool: Optional[Executor],
    ) -> Optional[BlockCandidate]:
        """Find the cheapest feasible block of `size` hours."""
        days = [d for d in model.grid.days if not (new_day and d in state.days_used)]
        days.sort(key=lambda d: d.index)

        def evaluate(day: Day) -> Optional[tuple[float, tuple, BlockCandidate]]:
            best_day = None
            for candidate in self._enumerate_day(
                model, lesson_candidates, state, size, day, schedule
            ):
                cost = self._score(candidate, state, schedule, workload, model.grid.days)
                ranked = (cost, candidate.sort_key, candidate)
                if best_day is None or ranked[:2] < best_day[:2]:
                    best_day = ranked
            return best_day

        if pool is not None:
            per_day = list(pool.map(evaluate, days))
        else:
            per_day = [evaluate(day) for day in days]

        found = [ranked for ranked in per_day if ranked is not None]
        if not found:
            return None
        return min(found, key=lambda ranked: ranked[:2])[2]

    def _enumerate_day(
        self,
        model: InputModel,
        lesson_candidates: LessonCandidates,
        state: LessonState,
        size: int,
        day: Day,
        schedule: Schedule,
    ) -> Iterable[BlockCandidate]:
        """Yield every feasible block of `size` hours on one day."""
        lesson = lesson_candidates.lesson
        needed = (
            self.block_policy.multi_resource_count() if lesson.requires_multiple_resources else 1
        )
        if state.teacher_ids is not None and not lesson.requires_multiple_resources:
            teacher_options = [state.teacher_ids]
        else:
            teacher_options = list(combinations(lesson_candidates.teacher_ids, needed))
        location_options = list(combinations(lesson_candidates.location_ids, needed))

        for start_hour in range(1, model.grid.hours_per_day - size + 2):
            slots = model.grid.block(TimeSlot(day, start_hour), size)
            if slots is None:
                continue
            if not all(schedule.is_free((), (), lesson_candidates.class_ids, s) for s in slots):
                continue
            for teacher_ids in teacher_options:
                if not self._teachers_available(model, teacher_ids, slots, schedule):
                    continue
                for location_ids in location_options:
                    if all(schedule.is_free((), location_ids, (), s) for s in slots):
                        yield BlockCandidate(teacher_ids, location_ids, tuple(slots))

    def _teachers_available(
        self,
        model: InputModel,
        teacher_ids: tuple[str, ...],
        slots: list[TimeSlot],
        schedule: Schedule,
    ) -> bool:
        for teacher_id in teacher_ids:
            teacher = model.teachers.get(teacher_id)
            if teacher is None:
                return False
            for slot in slots:
                if not teacher.is_available(slot):
                    return False
        return all(schedule.is_free(teacher_ids, (), (), s) for s in slots)

    def _score(
        self,
        candidate: BlockCandidate,
        state: LessonState,
        schedule: Schedule,
        workload: WorkloadState,
        grid_days: Iterable[Day],
    ) -> float:
        """Marginal cost of committing a candidate block."""
        block_hours = [slot.hour for slot in candidate.slots]
        other_days = [d for d in grid_days if d != candidate.day]
        gap_delta = 0
        short_delta = 0
        lost_free_days = 0
        for teacher_id in candidate.teacher_ids:
            hours = schedule.teacher_hours(teacher_id, candidate.day)
            # Opening this day would leave the teacher without a day off
            if not hours and all(schedule.teacher_hours(teacher_id, d) for d in other_days):
                lost_free_days += 1
            gap_delta += count_gaps(hours + block_hours) - count_gaps(hours)
            short_delta += (
                short_day_penalty(len(hours) + candidate.duration)
                - short_day_penalty(len(hours))
            )

        cost = (
            self.weights.alpha * workload.variance_delta(candidate.teacher_ids, candidate.duration)
            + self.weights.beta * gap_delta
            + self.weights.delta * short_delta
            + self.weights.free_day * lost_free_days
            - self.weights.gamma * candidate.duration
        )
        if candidate.day in state.days_used:
            cost += self.weights.same_day
        return cost

    def _commit(
        self,
        model: InputModel,
        lesson_candidates: LessonCandidates,
        state: LessonState,
        candidate: BlockCandidate,
        schedule: Schedule,
        workload: WorkloadState,
        log: RunLog,
    ) -> None:
        """Write a block into the schedule and update running state."""
        lesson = lesson_candidates.lesson
        teacher_names = tuple(model.teachers[t].name for t in candidate.teacher_ids)
        location_names = tuple(model.locations[l].name for l in candidate.location_ids)

        with self._commit_lock:
            for slot in candidate.slots:
                schedule.add(ScheduledEntry(
                    lesson_id=lesson.id,
                    lesson_name=lesson.name,
                    teacher_ids=candidate.teacher_ids,
                    location_ids=candidate.location_ids,
                    time_slot=slot,
                    grade_level=lesson.grade_level,
                    track_id=lesson.track_id,
                    class_ids=lesson_candidates.class_ids,
                    teacher_names=teacher_names,
                    location_names=location_names,
                ))
            for teacher_id in candidate.teacher_ids:
                workload.add(teacher_id, candidate.duration)

        state.remaining -= candidate.duration
        state.days_used.add(candidate.day)
        if not lesson.requires_multiple_resources:
            state.teacher_ids = candidate.teacher_ids

        last_hour = candidate.slots[-1].hour
        log.info(
            f"Placed {lesson.name} ({lesson.id}) {candidate.day.short_name} "
            f"{candidate.slots[0].hour}-{last_hour} with {', '.join(teacher_names)} "
            f"in {', '.join(location_names)}"
        )
