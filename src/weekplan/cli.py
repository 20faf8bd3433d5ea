"""Command-line interface for the weekplan timetabling tool."""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from weekplan.domain.records import InputRecords
from weekplan.errors import WeekplanError
from weekplan.output.report_generator import TextReportGenerator
from weekplan.scheduling.gap_optimizer import GapOptimizer, optimize_saved_schedule
from weekplan.scheduling.heuristic_solver import SolverConfig
from weekplan.scheduling.normalizer import InputNormalizer
from weekplan.scheduling.run_log import RunLog
from weekplan.scheduling.scheduler import Scheduler, SolverType
from weekplan.store.repository import JsonFileScheduleRepository
from weekplan.validation.validator import ScheduleValidator

logger = logging.getLogger("weekplan")


def create_sample_school(teacher_count: int = 8) -> dict:
    """Create a sample school payload for demos and tests.

    Args:
        teacher_count: Number of teachers to create, spread over four
            branches.
    """
    branches = ["br-math", "br-lang", "br-sci", "br-it"]
    tracks = {
        "trk-math": "br-math",
        "trk-lang": "br-lang",
        "trk-sci": "br-sci",
        "trk-it": "br-it",
    }

    names = [
        "Ayse", "Burak", "Cem", "Deniz", "Elif", "Fatih", "Gul", "Hakan",
        "Ipek", "Kaan", "Leyla", "Murat", "Nil", "Onur", "Pelin", "Selim",
    ]

    teachers = []
    for i in range(teacher_count):
        name = names[i % len(names)]
        if i >= len(names):
            name = f"{name}{i // len(names) + 1}"

        unavailability = []
        if i % 3 == 0:
            # Monday mornings off for some
            unavailability.append({"day_of_week": 1, "start_period": 1, "end_period": 3})
        if i % 5 == 4:
            # Friday afternoons off for some
            unavailability.append({"day_of_week": 5, "start_period": 7, "end_period": 10})

        teachers.append({
            "id": f"T{i + 1:02d}",
            "name": name,
            "branch_id": branches[i % len(branches)],
            "is_active": True,
            "unavailability": unavailability,
        })

    lessons = []
    for grade in (9, 10, 11):
        lessons.extend([
            {
                "id": f"L{grade}-math",
                "name": f"Mathematics {grade}",
                "track_id": "trk-math",
                "grade_level": grade,
                "weekly_hours": 6 if grade == 11 else 4,
            },
            {
                "id": f"L{grade}-lang",
                "name": f"Language {grade}",
                "track_id": "trk-lang",
                "grade_level": grade,
                "weekly_hours": 3,
            },
            {
                "id": f"L{grade}-sci",
                "name": f"Science Lab {grade}",
                "track_id": "trk-sci",
                "grade_level": grade,
                "weekly_hours": 2,
                "splittable": False,
                "suitable_location_type_ids": ["lab"],
            },
            {
                "id": f"L{grade}-it",
                "name": f"Workshop {grade}",
                "track_id": "trk-it",
                "grade_level": grade,
                "weekly_hours": 2,
                "requires_multiple_resources": grade == 11,
            },
        ])

    locations = [
        {"id": f"R{i}", "name": f"Room {i}", "capacity": 30} for i in range(1, 5)
    ] + [
        {"id": "LAB1", "name": "Lab 1", "location_type_id": "lab", "capacity": 20},
        {"id": "LAB2", "name": "Lab 2", "location_type_id": "lab", "capacity": 20},
        {"id": "OFFICE", "name": "Şef Odası", "capacity": 2},
    ]

    return {
        "teachers": teachers,
        "lessons": lessons,
        "locations": locations,
        "track_to_branch": tracks,
        "overrides": [],
    }


def _load_records(path: str) -> InputRecords:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise WeekplanError(f"Input file {path} must hold a JSON object")
    return InputRecords.from_dict(payload)


def _print_result(stats: dict, validation) -> None:
    print(f"\nSchedule generated ({stats['solver']}, {stats['status']})")
    print(f"  Lessons: {stats['fully_placed_lessons']}/{stats['total_lessons']} fully placed")
    print(f"  Hours: {stats['placed_hours']}/{stats['required_hours']} placed")
    print(f"  Teachers: {stats['busy_teachers']}/{stats['total_teachers']} teaching, "
          f"{stats['min_teacher_hours']}-{stats['max_teacher_hours']} hours each")
    print(f"  Workload variance: {stats['workload_variance']:.2f}")
    print(f"  Total gaps: {stats['total_gaps']}")
    print(f"  Fitness score: {stats['fitness_score']:.2f}")
    print(f"  Warnings: {stats['warnings']}")

    if validation.is_valid:
        print("\n  Validation: PASSED")
    else:
        print(f"\n  Validation: FAILED ({len(validation.errors)} errors)")
        for error in validation.errors[:5]:
            print(f"    - {error}")
        if len(validation.errors) > 5:
            print(f"    ... and {len(validation.errors) - 5} more errors")


def run_demo(
    teacher_count: int = 8,
    solver: str = "heuristic",
    output_path: Optional[str] = None,
) -> int:
    """Run a demo timetable generation."""
    print(f"Generating demo timetable for {teacher_count} teachers...")

    records = InputRecords.from_dict(create_sample_school(teacher_count))
    scheduler = Scheduler(solver_type=SolverType(solver))
    log = RunLog(logger)
    model, candidates = scheduler.prepare(records, log)
    result = scheduler.solve(model, candidates, log)
    stats = scheduler.calculate_stats(result, model)

    validation = ScheduleValidator(scheduler.block_policy).validate(result.schedule, model)
    _print_result(stats, validation)

    optimized = GapOptimizer().optimize(result.schedule, model)
    print(f"\n  Gap optimizer: {optimized.initial_gaps} -> {optimized.new_gaps} gaps "
          f"({len(optimized.changes)} changes)")

    generator = TextReportGenerator(grid=model.grid, include_logs=False)
    if output_path:
        generator.generate(result, output_path, title="Demo timetable")
        print(f"\nReport written to {output_path}")
    else:
        print()
        print(generator.generate_to_string(result, title="Demo timetable"))
    return 0 if validation.is_valid else 1


def run_solve(
    input_path: str,
    store_dir: Optional[str] = None,
    solver: str = "hybrid",
    time_limit: Optional[float] = None,
    workers: int = 1,
    name: Optional[str] = None,
) -> int:
    """Generate a timetable from an input file and optionally save it."""
    records = _load_records(input_path)
    scheduler = Scheduler(
        solver_type=SolverType(solver),
        solver_config=SolverConfig(time_limit_seconds=time_limit, num_workers=workers),
    )
    log = RunLog(logger)
    model, candidates = scheduler.prepare(records, log)
    deadline = None if time_limit is None else time.monotonic() + time_limit
    result = scheduler.solve(model, candidates, log, deadline=deadline)
    stats = scheduler.calculate_stats(result, model)

    validation = ScheduleValidator(scheduler.block_policy).validate(result.schedule, model)
    _print_result(stats, validation)

    if store_dir:
        saved = scheduler.to_saved_schedule(result, name=name or Path(input_path).stem)
        JsonFileScheduleRepository(store_dir).save(saved)
        print(f"\nSaved schedule {saved.id}")
    return 0 if validation.is_valid else 1


def run_optimize(store_dir: str, schedule_id: str, input_path: Optional[str] = None) -> int:
    """Optimize a saved schedule and print the outcome."""
    model = None
    if input_path:
        model = InputNormalizer().normalize(_load_records(input_path), RunLog(logger))
    outcome = optimize_saved_schedule(
        JsonFileScheduleRepository(store_dir), schedule_id, model=model
    )
    print(json.dumps(outcome, indent=2, ensure_ascii=False))
    return 0 if outcome["success"] else 1


def run_list(store_dir: str) -> int:
    """List saved schedules, newest first."""
    summaries = JsonFileScheduleRepository(store_dir).list_summaries()
    if not summaries:
        print("No saved schedules")
        return 0
    print(f"{'ID':<34} {'Created':<20} {'Fitness':>9} {'Gaps':>5}  Name")
    for summary in summaries:
        print(f"{summary.id:<34} {summary.created_at:%Y-%m-%d %H:%M:%S} "
              f"{summary.fitness_score:>9.2f} {summary.total_gaps:>5}  {summary.name or ''}")
    return 0


def run_report(store_dir: str, schedule_id: str, output_path: Optional[str] = None) -> int:
    """Render a saved schedule as a text report."""
    saved = JsonFileScheduleRepository(store_dir).get(schedule_id)
    if saved is None:
        print(f"Schedule {schedule_id} not found", file=sys.stderr)
        return 1
    generator = TextReportGenerator()
    if output_path:
        generator.generate(saved, output_path)
        print(f"Report written to {output_path}")
    else:
        print(generator.generate_to_string(saved))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="weekplan - Weekly School Timetabling Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s demo                           Solve a sample school with 8 teachers
  %(prog)s demo --count 12 --solver cpsat Use CP-SAT on 12 teachers
  %(prog)s solve --input school.json --store schedules/
  %(prog)s list --store schedules/
  %(prog)s optimize --store schedules/ --id ID
  %(prog)s report --store schedules/ --id ID --output report.txt
        """,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Solve a synthetic sample school")
    demo_parser.add_argument(
        "--count", "-c",
        type=int,
        default=8,
        help="Number of teachers to generate (default: 8)",
    )
    demo_parser.add_argument(
        "--solver", "-s",
        type=str,
        default="heuristic",
        choices=["heuristic", "cpsat", "hybrid"],
        help="Solver type (default: heuristic)",
    )
    demo_parser.add_argument(
        "--output", "-o",
        type=str,
        help="Output report file path",
    )

    # Solve command
    solve_parser = subparsers.add_parser("solve", help="Generate a timetable from a JSON file")
    solve_parser.add_argument("--input", "-i", required=True, help="Input JSON file")
    solve_parser.add_argument("--store", help="Directory to save the schedule in")
    solve_parser.add_argument(
        "--solver", "-s",
        type=str,
        default="hybrid",
        choices=["heuristic", "cpsat", "hybrid"],
        help="Solver type: heuristic (fast), cpsat (exact), hybrid (default)",
    )
    solve_parser.add_argument(
        "--time-limit", "-t",
        type=float,
        default=None,
        help="Wall-clock limit in seconds (default: none, reproducible runs)",
    )
    solve_parser.add_argument(
        "--workers", "-w",
        type=int,
        default=1,
        help="Worker threads (default: 1)",
    )
    solve_parser.add_argument("--name", "-n", help="Name of the saved schedule")

    # Optimize command
    optimize_parser = subparsers.add_parser("optimize", help="Reduce gaps in a saved schedule")
    optimize_parser.add_argument("--store", required=True, help="Schedule directory")
    optimize_parser.add_argument("--id", required=True, help="Saved schedule ID")
    optimize_parser.add_argument(
        "--input", "-i",
        help="Input JSON file supplying unavailability and splittability",
    )

    # List command
    list_parser = subparsers.add_parser("list", help="List saved schedules")
    list_parser.add_argument("--store", required=True, help="Schedule directory")

    # Report command
    report_parser = subparsers.add_parser("report", help="Render a saved schedule")
    report_parser.add_argument("--store", required=True, help="Schedule directory")
    report_parser.add_argument("--id", required=True, help="Saved schedule ID")
    report_parser.add_argument("--output", "-o", help="Output report file path")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "demo":
            return run_demo(args.count, args.solver, args.output)
        elif args.command == "solve":
            return run_solve(
                args.input,
                args.store,
                args.solver,
                args.time_limit,
                args.workers,
                args.name,
            )
        elif args.command == "optimize":
            return run_optimize(args.store, args.id, args.input)
        elif args.command == "list":
            return run_list(args.store)
        elif args.command == "report":
            return run_report(args.store, args.id, args.output)
        else:
            parser.print_help()
            return 1
    except (WeekplanError, OSError, json.JSONDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
