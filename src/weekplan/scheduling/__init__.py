"""Scheduling engine for generating and improving weekly timetables."""

from weekplan.scheduling.candidate_resolver import CandidateResolver, LessonCandidates
from weekplan.scheduling.cpsat_solver import CPSATSolver, SolverResult
from weekplan.scheduling.gap_optimizer import (
    GapOptimizer,
    OptimizationResult,
    OptimizerConfig,
    optimize_saved_schedule,
)
from weekplan.scheduling.heuristic_solver import (
    AssignmentResult,
    AssignmentSolver,
    SolverConfig,
)
from weekplan.scheduling.normalizer import InputModel, InputNormalizer
from weekplan.scheduling.run_log import RunLog
from weekplan.scheduling.scheduler import Scheduler, SolverType
from weekplan.scheduling.slot_grid import SlotGrid

__all__ = [
    # Core scheduler
    "Scheduler",
    # Input preparation
    "InputModel",
    "InputNormalizer",
    "CandidateResolver",
    "LessonCandidates",
    "SlotGrid",
    # Solvers
    "AssignmentSolver",
    "CPSATSolver",
    "AssignmentResult",
    "SolverResult",
    # Gap optimization
    "GapOptimizer",
    "OptimizationResult",
    "OptimizerConfig",
    "optimize_saved_schedule",
    # Configuration
    "SolverConfig",
    "SolverType",
    "RunLog",
]
