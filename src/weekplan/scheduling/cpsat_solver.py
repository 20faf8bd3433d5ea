"""OR-Tools CP-SAT solver for timetable generation.

This module provides a constraint programming alternative to the greedy
heuristic. Every feasible lesson block is enumerated up front and the model
selects a conflict-free subset that places as many hours as possible while
keeping teacher workloads level and teacher days free of idle hours.
"""

import logging
import threading
import time
from dataclasses import dataclass
from itertools import combinations
from typing import Optional

from ortools.sat.python import cp_model

from weekplan.domain.models import (
    Day,
    Schedule,
    ScheduledEntry,
    ScheduleMetrics,
    ScoringWeights,
    TimeSlot,
    UnassignedRemainder,
)
from weekplan.domain.policies import BlockPolicy, DefaultBlockPolicy
from weekplan.scheduling.candidate_resolver import LessonCandidates
from weekplan.scheduling.heuristic_solver import AssignmentResult, BlockCandidate, SolverConfig
from weekplan.scheduling.normalizer import InputModel
from weekplan.scheduling.run_log import RunLog

logger = logging.getLogger(__name__)

# CP-SAT needs integer coefficients; weights are scaled by this factor.
WEIGHT_SCALE = 10


@dataclass
class SolverResult:
    """Result from the CP-SAT solver.

    Attributes:
        result: The assignment result, None if no solution was found.
        status: Solver status (OPTIMAL, FEASIBLE, etc.).
        objective_value: Final objective value.
        solve_time_seconds: Time taken to solve.
        num_branches: Number of branches explored.
        num_conflicts: Number of conflicts encountered.
    """

    result: Optional[AssignmentResult]
    status: str
    objective_value: int = 0
    solve_time_seconds: float = 0.0
    num_branches: int = 0
    num_conflicts: int = 0

    @property
    def is_optimal(self) -> bool:
        return self.status == "OPTIMAL"

    @property
    def is_feasible(self) -> bool:
        return self.status in ("OPTIMAL", "FEASIBLE")


class CPSATSolver:
    """Constraint Programming solver using OR-Tools CP-SAT.

    Hard constraints match the heuristic solver: teacher availability, one
    booking per teacher, location and class per slot, the weekly quota, one
    block for non-splittable lessons and one teacher for single-resource
    lessons.

    The objective weighs placed hours (gamma), the spread between the most
    and least loaded teacher (alpha) and idle hours inside each teacher-day
    (beta). Workload variance and the short-day penalty only enter the fitness
    score of the result, and the free-day preference is not modelled. The
    search runs with a fixed seed and a deterministic time limit, and without
    a wall-clock cap unless one is configured, so repeated runs agree.
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

    def solve(
        self,
        model: InputModel,
        candidates: dict[str, LessonCandidates],
        log: Optional[RunLog] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SolverResult:
        """Solve the timetabling problem using CP-SAT.

        Args:
            model: Normalized input.
            candidates: Eligible resources per lesson.
            log: Run log for the decision trail.
            deadline: Absolute time.monotonic() value bounding the search.
            cancel_event: Checked before the search starts.

        Returns:
            SolverResult with the assignment and solver statistics.
        """
        log = log or RunLog(logger)
        if cancel_event is not None and cancel_event.is_set():
            log.warning("CP-SAT solve cancelled before start")
            return SolverResult(result=None, status="CANCELLED")

        time_limit = self.config.time_limit_seconds
        if deadline is not None:
            remaining = max(deadline - time.monotonic(), 0.0)
            time_limit = remaining if time_limit is None else min(time_limit, remaining)

        cp = cp_model.CpModel()

        # Decision variables: x[(lesson_id, i)] = 1 if block i of the lesson is used
        blocks: dict[str, list[BlockCandidate]] = {}
        x: dict[tuple[str, int], cp_model.IntVar] = {}
        for lesson_id, lesson_candidates in candidates.items():
            blocks[lesson_id] = self._enumerate_blocks(model, lesson_candidates)
            for i in range(len(blocks[lesson_id])):
                x[(lesson_id, i)] = cp.new_bool_var(f"x_{lesson_id}_{i}")

        occupancy: dict[tuple[str, str, TimeSlot], list[cp_model.IntVar]] = {}
        loads: dict[str, list] = {teacher_id: [] for teacher_id in model.teachers}

        for lesson_id, lesson_blocks in blocks.items():
            if not lesson_blocks:
                continue
            lesson_candidates = candidates[lesson_id]
            lesson = lesson_candidates.lesson
            chosen = [x[(lesson_id, i)] for i in range(len(lesson_blocks))]

            # Constraint 1: never exceed the weekly quota
            cp.add(
                sum(block.duration * var for block, var in zip(lesson_blocks, chosen))
                <= lesson.weekly_hours
            )

            # Constraint 2: a non-splittable lesson uses at most one block
            if not lesson.splittable:
                cp.add_at_most_one(chosen)

            # Constraint 3: at most one block per day for lessons split across days
            if self.block_policy.requires_new_day(lesson.weekly_hours, lesson.weekly_hours // 2):
                for day in model.grid.days:
                    same_day = [v for b, v in zip(lesson_blocks, chosen) if b.day == day]
                    if len(same_day) > 1:
                        cp.add_at_most_one(same_day)

            # Constraint 4: one teacher across all blocks of a single-resource lesson
            if not lesson.requires_multiple_resources:
                teacher_vars = {
                    t: cp.new_bool_var(f"y_{lesson_id}_{t}") for t in lesson_candidates.teacher_ids
                }
                if teacher_vars:
                    cp.add_at_most_one(list(teacher_vars.values()))
                for block, var in zip(lesson_blocks, chosen):
                    cp.add_implication(var, teacher_vars[block.teacher_ids[0]])

            for block, var in zip(lesson_blocks, chosen):
                for slot in block.slots:
                    for teacher_id in block.teacher_ids:
                        occupancy.setdefault(("teacher", teacher_id, slot), []).append(var)
                    for location_id in block.location_ids:
                        occupancy.setdefault(("location", location_id, slot), []).append(var)
                    for class_id in lesson_candidates.class_ids:
                        occupancy.setdefault(("class", class_id, slot), []).append(var)
                for teacher_id in block.teacher_ids:
                    loads[teacher_id].append(block.duration * var)

        # Constraint 5: every teacher, location and class holds one block per slot
        for variables in occupancy.values():
            if len(variables) > 1:
                cp.add_at_most_one(variables)

        # Objective: place as many hours as possible, then level workloads and close gaps
        placed = sum(
            block.duration * x[(lesson_id, i)]
            for lesson_id, lesson_blocks in blocks.items()
            for i, block in enumerate(lesson_blocks)
        )
        objective = int(round(self.weights.gamma * WEIGHT_SCALE)) * placed

        busy_teachers = [t for t, terms in loads.items() if terms]
        if busy_teachers:
            horizon = model.grid.size
            max_load = cp.new_int_var(0, horizon, "max_load")
            min_load = cp.new_int_var(0, horizon, "min_load")
            for teacher_id in busy_teachers:
                load = cp.new_int_var(0, horizon, f"load_{teacher_id}")
                cp.add(load == sum(loads[teacher_id]))
                cp.add(max_load >= load)
                cp.add(min_load <= load)
            objective -= int(round(self.weights.alpha * WEIGHT_SCALE)) * (max_load - min_load)

        gaps = self._add_gap_terms(cp, model, occupancy)
        if gaps:
            objective -= int(round(self.weights.beta * WEIGHT_SCALE)) * sum(gaps)

        cp.maximize(objective)

        # Solve
        solver = cp_model.CpSolver()
        if time_limit is not None:
            solver.parameters.max_time_in_seconds = time_limit
        solver.parameters.max_deterministic_time = self.config.deterministic_time_limit
        solver.parameters.num_workers = max(self.config.num_workers, 1)
        solver.parameters.random_seed = self.config.random_seed

        status = solver.solve(cp)

        # Map status to string
        status_map = {
            cp_model.OPTIMAL: "OPTIMAL",
            cp_model.FEASIBLE: "FEASIBLE",
            cp_model.INFEASIBLE: "INFEASIBLE",
            cp_model.MODEL_INVALID: "MODEL_INVALID",
            cp_model.UNKNOWN: "UNKNOWN",
        }
        status_str = status_map.get(status, "UNKNOWN")
        log.info(f"CP-SAT finished with status {status_str} in {solver.wall_time:.2f}s")

        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            return SolverResult(
                result=None,
                status=status_str,
                solve_time_seconds=solver.wall_time,
            )

        # Extract solution
        result = self._extract_solution(solver, x, blocks, model, candidates, log)
        return SolverResult(
            result=result,
            status=status_str,
            objective_value=int(solver.objective_value),
            solve_time_seconds=solver.wall_time,
            num_branches=solver.num_branches,
            num_conflicts=solver.num_conflicts,
        )

    def _add_gap_terms(
        self,
        cp: cp_model.CpModel,
        model: InputModel,
        occupancy: dict[tuple[str, str, TimeSlot], list[cp_model.IntVar]],
    ) -> list[cp_model.IntVar]:
        """Add one idle-hour count per teacher-day.

        A teacher-day's gaps are bounded below by the span between its first
        and last busy hour minus its busy hours. The bound only binds while the
        day has any booking, and minimizing the count makes it exact.
        """
        by_day: dict[tuple[str, Day], dict[int, list[cp_model.IntVar]]] = {}
        for (kind, resource_id, slot), variables in occupancy.items():
            if kind == "teacher":
                by_day.setdefault((resource_id, slot.day), {})[slot.hour] = variables

        hours = model.grid.hours_per_day
        gaps = []
        for (teacher_id, day), by_hour in sorted(
            by_day.items(), key=lambda item: (item[0][0], item[0][1].index)
        ):
            if len(by_hour) < 2:
                continue
            tag = f"{teacher_id}_{day.index}"
            busy = []
            first = cp.new_int_var(1, hours, f"first_{tag}")
            last = cp.new_int_var(1, hours, f"last_{tag}")
            for hour, variables in sorted(by_hour.items()):
                occupied = cp.new_bool_var(f"busy_{tag}_{hour}")
                cp.add(occupied == sum(variables))
                cp.add(first <= hour).only_enforce_if(occupied)
                cp.add(last >= hour).only_enforce_if(occupied)
                busy.append(occupied)
            active = cp.new_bool_var(f"active_{tag}")
            cp.add_max_equality(active, busy)

            idle = cp.new_int_var(0, hours, f"gaps_{tag}")
            cp.add(idle >= last - first + 1 - sum(busy)).only_enforce_if(active)
            gaps.append(idle)
        return gaps

    def _block_sizes(self, total: int, splittable: bool) -> list[int]:
        """All block sizes the heuristic could ever try for a lesson."""
        if not splittable:
            return [total] if total > 0 else []
        sizes = set()
        for remaining in range(1, total + 1):
            sizes.update(self.block_policy.block_sizes(total, remaining, True))
        return sorted(sizes, reverse=True)

    def _enumerate_blocks(
        self, model: InputModel, lesson_candidates: LessonCandidates
    ) -> list[BlockCandidate]:
        """Enumerate every block that respects availability on an empty grid."""
        lesson = lesson_candidates.lesson
        if not lesson_candidates.is_schedulable:
            return []

        needed = (
            self.block_policy.multi_resource_count() if lesson.requires_multiple_resources else 1
        )
        teacher_options = list(combinations(lesson_candidates.teacher_ids, needed))
        location_options = list(combinations(lesson_candidates.location_ids, needed))

        result = []
        for size in self._block_sizes(lesson.weekly_hours, lesson.splittable):
            for start in model.grid.slots():
                slots = model.grid.block(start, size)
                if slots is None:
                    continue
                for teacher_ids in teacher_options:
                    if not all(
                        model.teachers[t].is_available(s) for t in teacher_ids for s in slots
                    ):
                        continue
                    for location_ids in location_options:
                        result.append(BlockCandidate(teacher_ids, location_ids, tuple(slots)))
        return result

    def _extract_solution(
        self,
        solver: cp_model.CpSolver,
        x: dict[tuple[str, int], cp_model.IntVar],
        blocks: dict[str, list[BlockCandidate]],
        model: InputModel,
        candidates: dict[str, LessonCandidates],
        log: RunLog,
    ) -> AssignmentResult:
        """Build an AssignmentResult from solver values."""
        schedule = Schedule()
        unassigned = []

        for lesson_id in sorted(blocks):
            lesson_candidates = candidates[lesson_id]
            lesson = lesson_candidates.lesson
            placed = 0
            for i, block in enumerate(blocks[lesson_id]):
                if solver.value(x[(lesson_id, i)]) != 1:
                    continue
                for slot in block.slots:
                    schedule.add(ScheduledEntry(
                        lesson_id=lesson.id,
                        lesson_name=lesson.name,
                        teacher_ids=block.teacher_ids,
                        location_ids=block.location_ids,
                        time_slot=slot,
                        grade_level=lesson.grade_level,
                        track_id=lesson.track_id,
                        class_ids=lesson_candidates.class_ids,
                        teacher_names=tuple(model.teachers[t].name for t in block.teacher_ids),
                        location_names=tuple(model.locations[l].name for l in block.location_ids),
                    ))
                placed += block.duration

            remaining = lesson.weekly_hours - placed
            if remaining > 0:
                reason = lesson_candidates.unschedulable_reason or "no feasible slot"
                log.warning(
                    f"Lesson {lesson.name} ({lesson.id}): {remaining} of "
                    f"{lesson.weekly_hours} hours could not be placed"
                )
                unassigned.append(UnassignedRemainder(
                    lesson_id=lesson.id,
                    lesson_name=lesson.name,
                    remaining_hours=remaining,
                    weekly_hours=lesson.weekly_hours,
                    reason=reason,
                ))

        metrics = ScheduleMetrics.calculate(
            schedule, model.teachers.keys(), unassigned, self.weights
        )
        return AssignmentResult(
            schedule=schedule,
            unassigned=unassigned,
            metrics=metrics,
            logs=list(log.lines),
            status="PARTIAL" if unassigned else "COMPLETE",
            solver="cpsat",
            solve_time_seconds=solver.wall_time,
        )
