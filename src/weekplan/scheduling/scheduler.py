"""Main scheduler interface.

This module provides the high-level Scheduler class that orchestrates input
normalization, candidate resolution and solving.
"""

import logging
import threading
import uuid
from enum import Enum
from typing import Optional, Union

from weekplan.domain.models import (
    SavedSchedule,
    Schedule,
    ScheduleMetrics,
    ScoringWeights,
    UnassignedRemainder,
)
from weekplan.domain.policies import (
    BlockPolicy,
    ClassGroupPolicy,
    DefaultBlockPolicy,
    DefaultClassGroupPolicy,
)
from weekplan.domain.records import InputRecords
from weekplan.scheduling.candidate_resolver import CandidateResolver, LessonCandidates
from weekplan.scheduling.cpsat_solver import CPSATSolver
from weekplan.scheduling.heuristic_solver import AssignmentResult, AssignmentSolver, SolverConfig
from weekplan.scheduling.normalizer import InputModel, InputNormalizer
from weekplan.scheduling.run_log import RunLog
from weekplan.scheduling.slot_grid import SlotGrid

logger = logging.getLogger(__name__)


class SolverType(Enum):
    """Type of solver to use for timetabling."""

    HEURISTIC = "heuristic"  # Fast greedy placement
    CPSAT = "cpsat"  # OR-Tools CP-SAT over enumerated blocks
    HYBRID = "hybrid"  # CP-SAT with heuristic fallback


class Scheduler:
    """High-level scheduler for generating weekly timetables.

    The Scheduler coordinates normalization, candidate resolution and solving
    to produce conflict-free timetables.

    Example:
        >>> scheduler = Scheduler()
        >>> result = scheduler.generate_schedule(records)
        >>> saved = scheduler.to_saved_schedule(result, name="Autumn term")
    """

    def __init__(
        self,
        solver_type: SolverType = SolverType.HEURISTIC,
        grid: Optional[SlotGrid] = None,
        block_policy: Optional[BlockPolicy] = None,
        class_policy: Optional[ClassGroupPolicy] = None,
        weights: Optional[ScoringWeights] = None,
        solver_config: Optional[SolverConfig] = None,
    ):
        """Initialize scheduler with policies.

        Args:
            solver_type: Which solver produces the schedule.
            grid: Weekly slot grid (5 days x 10 hours by default).
            block_policy: Policy for splitting lessons into blocks.
            class_policy: Policy for class groups.
            weights: Fitness weights.
            solver_config: Solver limits and worker count.
        """
        self.solver_type = solver_type
        self.block_policy = block_policy or DefaultBlockPolicy()
        self.class_policy = class_policy or DefaultClassGroupPolicy()
        self.weights = weights or ScoringWeights()
        self.solver_config = solver_config or SolverConfig()

        self.normalizer = InputNormalizer(grid=grid)
        self.resolver = CandidateResolver(
            class_policy=self.class_policy,
            block_policy=self.block_policy,
        )
        self.heuristic_solver = AssignmentSolver(
            block_policy=self.block_policy,
            weights=self.weights,
            config=self.solver_config,
        )
        self.cpsat_solver = CPSATSolver(
            block_policy=self.block_policy,
            weights=self.weights,
            config=self.solver_config,
        )

    def prepare(
        self,
        records: Union[InputRecords, dict],
        log: Optional[RunLog] = None,
    ) -> tuple[InputModel, dict[str, LessonCandidates]]:
        """Normalize records and resolve candidates.

        Raises:
            FatalScheduleError: If the input is structurally impossible.
        """
        log = log or RunLog(logger)
        model = self.normalizer.normalize(records, log)
        candidates = self.resolver.resolve_all(model, log)
        return model, candidates

    def generate_schedule(
        self,
        records: Union[InputRecords, dict],
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AssignmentResult:
        """Generate a complete timetable for the records.

        Args:
            records: Raw teacher, lesson, location, track and override records.
            deadline: Absolute time.monotonic() value bounding the run.
            cancel_event: Event that stops the run early when set.

        Returns:
            AssignmentResult with the schedule, remainders, metrics and logs.
        """
        log = RunLog(logger)
        model, candidates = self.prepare(records, log)
        return self.solve(model, candidates, log, deadline, cancel_event)

    def solve(
        self,
        model: InputModel,
        candidates: dict[str, LessonCandidates],
        log: Optional[RunLog] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AssignmentResult:
        """Run the configured solver on a prepared model."""
        log = log or RunLog(logger)

        if self.solver_type == SolverType.HEURISTIC:
            return self.heuristic_solver.solve(model, candidates, log, deadline, cancel_event)

        cpsat = self.cpsat_solver.solve(model, candidates, log, deadline, cancel_event)
        if cpsat.is_feasible and cpsat.result is not None:
            return cpsat.result

        if self.solver_type == SolverType.CPSAT:
            log.warning(f"CP-SAT found no solution (status {cpsat.status})")
            unassigned = [
                UnassignedRemainder(
                    lesson_id=c.lesson.id,
                    lesson_name=c.lesson.name,
                    remaining_hours=c.lesson.weekly_hours,
                    weekly_hours=c.lesson.weekly_hours,
                    reason=f"CP-SAT status {cpsat.status}",
                )
                for c in candidates.values()
                if c.lesson.weekly_hours > 0
            ]
            empty = Schedule()
            return AssignmentResult(
                schedule=empty,
                unassigned=unassigned,
                metrics=ScheduleMetrics.calculate(
                    empty, model.teachers.keys(), unassigned, self.weights
                ),
                logs=list(log.lines),
                status=cpsat.status,
                solver="cpsat",
                solve_time_seconds=cpsat.solve_time_seconds,
            )

        # Fallback to heuristic
        log.warning(f"CP-SAT status {cpsat.status}; falling back to heuristic solver")
        return self.heuristic_solver.solve(model, candidates, log, deadline, cancel_event)

    def generate_schedule_with_stats(
        self,
        records: Union[InputRecords, dict],
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> tuple[AssignmentResult, dict]:
        """Generate a timetable and return statistics.

        Returns:
            Tuple of (result, stats_dict).
        """
        log = RunLog(logger)
        model, candidates = self.prepare(records, log)
        result = self.solve(model, candidates, log, deadline, cancel_event)
        return result, self.calculate_stats(result, model)

    def to_saved_schedule(
        self,
        result: AssignmentResult,
        name: Optional[str] = None,
        description: Optional[str] = None,
        schedule_id: Optional[str] = None,
    ) -> SavedSchedule:
        """Snapshot a result for persistence."""
        return SavedSchedule(
            id=schedule_id or uuid.uuid4().hex,
            fitness_score=result.fitness_score,
            workload_variance=result.workload_variance,
            total_gaps=result.total_gaps,
            schedule=result.schedule.copy(),
            unassigned=tuple(result.unassigned),
            logs=tuple(result.logs),
            name=name,
            description=description,
        )

    def calculate_stats(self, result: AssignmentResult, model: InputModel) -> dict:
        """Calculate schedule statistics."""
        lessons = model.scheduled_lessons
        required_hours = sum(lesson.weekly_hours for lesson in lessons)
        placed_hours = sum(result.schedule.hours_by_lesson().values())
        teacher_hours = result.metrics.teacher_hours

        return {
            "solver": result.solver,
            "status": result.status,
            "total_lessons": len(lessons),
            "fully_placed_lessons": len(lessons) - len(result.unassigned),
            "required_hours": required_hours,
            "placed_hours": placed_hours,
            "unassigned_hours": result.metrics.unassigned_hours,
            "total_teachers": len(model.teachers),
            "busy_teachers": sum(1 for hours in teacher_hours.values() if hours > 0),
            "max_teacher_hours": max(teacher_hours.values()) if teacher_hours else 0,
            "min_teacher_hours": min(teacher_hours.values()) if teacher_hours else 0,
            "workload_variance": result.workload_variance,
            "total_gaps": result.total_gaps,
            "short_day_penalty": result.metrics.short_day_penalty,
            "fitness_score": result.fitness_score,
            "solve_time_seconds": result.solve_time_seconds,
            "warnings": len([line for line in result.logs if line.startswith("WARNING: ")]),
        }
