"""Smoke tests for end-to-end scheduling flow."""

import json

import pytest

from weekplan.cli import create_sample_school, main
from weekplan.errors import FatalScheduleError
from weekplan.output.report_generator import TextReportGenerator
from weekplan.scheduling.heuristic_solver import SolverConfig
from weekplan.scheduling.scheduler import Scheduler, SolverType
from weekplan.scheduling.slot_grid import SlotGrid
from weekplan.store.repository import JsonFileScheduleRepository
from weekplan.validation.validator import ScheduleValidator


class TestSmoke:
    """End-to-end smoke tests for the scheduling system."""

    @pytest.fixture
    def scheduler(self):
        """Create a scheduler with default policies."""
        return Scheduler()

    @pytest.fixture
    def validator(self):
        """Create a validator with default policies."""
        return ScheduleValidator()

    @pytest.fixture
    def tiny_school(self):
        """One teacher, one room, one lesson."""
        return {
            "teachers": [{"id": "T1", "name": "Ayse", "branch_id": "b1"}],
            "lessons": [{"id": "L1", "name": "Math", "track_id": "k1", "grade_level": 10,
                         "weekly_hours": 3}],
            "locations": [{"id": "R1", "name": "Room 1", "capacity": 30}],
            "track_to_branch": {"k1": "b1"},
        }

    def test_sample_school(self, scheduler, validator):
        """The sample school is solved without constraint violations."""
        payload = create_sample_school(8)
        model, candidates = scheduler.prepare(payload)
        result = scheduler.solve(model, candidates)

        assert len(result.schedule) > 0
        assert result.solver == "heuristic"
        validation = validator.validate(result.schedule, model)
        assert validation.is_valid, [str(e) for e in validation.errors]

        stats = scheduler.calculate_stats(result, model)
        assert stats["placed_hours"] + stats["unassigned_hours"] == stats["required_hours"]
        assert stats["total_teachers"] == 8
        assert stats["fitness_score"] == pytest.approx(result.fitness_score)

    def test_cpsat_tiny_instance(self, tiny_school, validator):
        """CP-SAT places every hour of a trivially feasible instance."""
        scheduler = Scheduler(
            solver_type=SolverType.CPSAT,
            solver_config=SolverConfig(time_limit_seconds=10),
        )
        model, candidates = scheduler.prepare(tiny_school)
        result = scheduler.solve(model, candidates)

        assert result.solver == "cpsat"
        assert result.status == "COMPLETE"
        assert len(result.schedule) == 3
        assert result.unassigned == []
        assert validator.validate(result.schedule, model).is_valid

    def test_cpsat_avoids_gaps(self, tiny_school):
        """CP-SAT packs a teacher's hours together when it can."""
        unavailability = [
            {"day_of_week": day, "start_period": 1, "end_period": 10} for day in range(1, 5)
        ]
        unavailability += [
            {"day_of_week": 5, "start_period": 3, "end_period": 4},
            {"day_of_week": 5, "start_period": 6, "end_period": 10},
        ]
        tiny_school["teachers"][0]["unavailability"] = unavailability
        tiny_school["lessons"] = [
            {"id": lesson_id, "name": lesson_id, "track_id": "k1", "grade_level": grade,
             "weekly_hours": 1}
            for lesson_id, grade in (("L1", 10), ("L2", 11))
        ]
        scheduler = Scheduler(solver_type=SolverType.CPSAT)
        result = scheduler.generate_schedule(tiny_school)

        assert result.solver == "cpsat"
        assert set(result.schedule) == {"T1-4-1", "T1-4-2"}
        assert result.total_gaps == 0

    def test_hybrid_sample_school(self, validator):
        """The hybrid solver yields a valid schedule on the sample school."""
        scheduler = Scheduler(
            solver_type=SolverType.HYBRID,
            solver_config=SolverConfig(time_limit_seconds=10, deterministic_time_limit=2),
        )
        model, candidates = scheduler.prepare(create_sample_school(8))
        result = scheduler.solve(model, candidates)

        assert result.solver in ("cpsat", "heuristic")
        placed = result.schedule.hours_by_lesson()
        remaining = {r.lesson_id: r.remaining_hours for r in result.unassigned}
        for lesson in model.scheduled_lessons:
            assert placed.get(lesson.id, 0) + remaining.get(lesson.id, 0) == lesson.weekly_hours
        validation = validator.validate(result.schedule, model)
        assert validation.is_valid, [str(e) for e in validation.errors]

    def test_empty_grid_is_fatal(self, tiny_school):
        """A grid without slots raises instead of returning a result."""
        scheduler = Scheduler(grid=SlotGrid(hours_per_day=0))
        with pytest.raises(FatalScheduleError):
            scheduler.generate_schedule(tiny_school)

    def test_generate_with_stats(self, scheduler, tiny_school):
        """Statistics describe the generated schedule."""
        result, stats = scheduler.generate_schedule_with_stats(tiny_school)
        assert stats["status"] == "COMPLETE"
        assert stats["placed_hours"] == 3
        assert stats["busy_teachers"] == 1
        assert stats["max_teacher_hours"] == 3
        assert stats["warnings"] == 0

    def test_saved_schedule_round_trip(self, scheduler, tmp_path):
        """A saved result loads back with the same schedule and metrics."""
        result = scheduler.generate_schedule(create_sample_school(8))
        saved = scheduler.to_saved_schedule(result, name="Autumn", schedule_id="autumn")

        repository = JsonFileScheduleRepository(tmp_path)
        repository.save(saved)
        loaded = repository.get("autumn")

        assert loaded.schedule == result.schedule
        assert loaded.fitness_score == pytest.approx(result.fitness_score)
        assert loaded.total_gaps == result.total_gaps
        assert loaded.logs == tuple(result.logs)

    def test_report(self, scheduler, tiny_school, tmp_path):
        """Reports show the summary, a grid per teacher and the log."""
        result = scheduler.generate_schedule(tiny_school)
        generator = TextReportGenerator()

        content = generator.generate_to_string(result, title="Tiny school")
        assert content.startswith("=" * 80 + "\nTINY SCHOOL")
        assert "Entries: 3" in content
        assert "Ayse (T1): 3 hours, 0 gaps" in content
        assert "Math/Room 1" in content
        assert "\nLOG\n" in content

        path = tmp_path / "report.txt"
        written = generator.generate(result, path, title="Tiny school")
        assert path.read_text(encoding="utf-8") == written

    def test_report_lists_unassigned(self, scheduler, tiny_school):
        """Unplaced hours appear in their own section."""
        tiny_school["lessons"].append(
            {"id": "L2", "name": "Art", "track_id": "k9", "grade_level": 10, "weekly_hours": 2}
        )
        result = scheduler.generate_schedule(tiny_school)
        content = TextReportGenerator(include_logs=False).generate_to_string(result)
        assert "UNASSIGNED LESSONS" in content
        assert "Art (L2): 2 of 2 hours - no eligible teacher" in content
        assert "\nLOG\n" not in content


class TestCli:
    """Tests for the command-line interface."""

    def test_demo(self, capsys):
        """The demo solves the sample school and prints a report."""
        assert main(["demo"]) == 0
        out = capsys.readouterr().out
        assert "Validation: PASSED" in out
        assert "DEMO TIMETABLE" in out

    def test_no_command(self, capsys):
        """Running without a command prints help and fails."""
        assert main([]) == 1

    def test_missing_input(self, tmp_path, capsys):
        """A missing input file is reported, not raised."""
        assert main(["solve", "--input", str(tmp_path / "missing.json")]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_solve_list_report_optimize(self, tmp_path, capsys):
        """A saved schedule can be listed, reported and optimized."""
        input_path = tmp_path / "school.json"
        input_path.write_text(json.dumps(create_sample_school(8)), encoding="utf-8")
        store = tmp_path / "store"

        assert main([
            "solve", "--input", str(input_path), "--store", str(store),
            "--solver", "heuristic", "--name", "Week A",
        ]) == 0
        assert "Saved schedule" in capsys.readouterr().out

        summaries = JsonFileScheduleRepository(store).list_summaries()
        assert len(summaries) == 1
        schedule_id = summaries[0].id

        assert main(["list", "--store", str(store)]) == 0
        assert schedule_id in capsys.readouterr().out

        assert main(["report", "--store", str(store), "--id", schedule_id]) == 0
        assert "WEEK A" in capsys.readouterr().out

        assert main([
            "optimize", "--store", str(store), "--id", schedule_id, "--input", str(input_path),
        ]) == 0
        outcome = json.loads(capsys.readouterr().out)
        assert outcome["success"] is True

        assert main(["report", "--store", str(store), "--id", "unknown"]) == 1
