"""Tests for the greedy assignment solver."""

import itertools
import threading

import pytest

from weekplan.cli import create_sample_school
from weekplan.domain.models import Day, ScoringWeights
from weekplan.scheduling import heuristic_solver
from weekplan.scheduling.heuristic_solver import SolverConfig, WorkloadState
from weekplan.scheduling.scheduler import Scheduler, SolverType
from weekplan.validation.validator import ScheduleValidator


def _school(teachers, lessons, locations=None, overrides=None):
    return {
        "teachers": teachers,
        "lessons": lessons,
        "locations": locations or [{"id": "R1", "name": "Room 1", "capacity": 30}],
        "track_to_branch": {"k1": "b1", "k2": "b2"},
        "overrides": overrides or [],
    }


def _teacher(teacher_id, branch="b1", **extra):
    return {"id": teacher_id, "name": f"Teacher {teacher_id}", "branch_id": branch, **extra}


def _lesson(lesson_id, hours, track="k1", grade=10, **extra):
    return {
        "id": lesson_id,
        "name": f"Lesson {lesson_id}",
        "track_id": track,
        "grade_level": grade,
        "weekly_hours": hours,
        **extra,
    }


class TestAssignmentSolver:
    """Tests for heuristic placement."""

    @pytest.fixture
    def scheduler(self):
        """Create a heuristic scheduler."""
        return Scheduler(solver_type=SolverType.HEURISTIC)

    def test_avoids_unavailable_hours(self, scheduler):
        """A teacher unavailable Monday 1-3 is placed Monday 4-6."""
        payload = _school(
            [_teacher("T1", unavailability=[
                {"day_of_week": 1, "start_period": 1, "end_period": 3},
            ])],
            [_lesson("L1", 3)],
        )
        result = scheduler.generate_schedule(payload)
        assert list(result.schedule) == ["T1-0-4", "T1-0-5", "T1-0-6"]
        assert result.status == "COMPLETE"
        assert result.unassigned == []

    def test_required_override(self, scheduler):
        """A required teacher from another branch teaches every hour."""
        payload = _school(
            [_teacher("T1"), _teacher("T2", branch="b2")],
            [_lesson("L1", 4)],
            overrides=[{"teacher_id": "T2", "lesson_id": "L1", "kind": "required"}],
        )
        result = scheduler.generate_schedule(payload)
        assert len(result.schedule) == 4
        assert all(entry.teacher_ids == ("T2",) for entry in result.schedule.entries())

    def test_single_teacher_per_lesson(self, scheduler):
        """Every block of a single-resource lesson keeps the same teacher."""
        payload = _school(
            [_teacher("T1"), _teacher("T2")],
            [_lesson("L1", 5)],
        )
        result = scheduler.generate_schedule(payload)
        assert len(result.schedule) == 5
        assert len({entry.teacher_ids for entry in result.schedule.entries()}) == 1

    def test_non_splittable_is_contiguous(self, scheduler):
        """A non-splittable 4-hour lesson occupies 4 consecutive hours of one day."""
        payload = _school([_teacher("T1")], [_lesson("L1", 4, splittable=False)])
        result = scheduler.generate_schedule(payload)
        entries = result.schedule.lesson_entries("L1")
        assert len(entries) == 4
        assert len({e.time_slot.day for e in entries}) == 1
        hours = [e.time_slot.hour for e in entries]
        assert hours == list(range(hours[0], hours[0] + 4))

    def test_long_lesson_halves_on_two_days(self, scheduler):
        """A 6-hour lesson puts its second half on a different day."""
        payload = _school([_teacher("T1")], [_lesson("L1", 6)])
        result = scheduler.generate_schedule(payload)
        by_day = {}
        for entry in result.schedule.lesson_entries("L1"):
            by_day.setdefault(entry.time_slot.day, []).append(entry.time_slot.hour)
        assert by_day == {Day.MONDAY: [1, 2, 3], Day.TUESDAY: [1, 2, 3]}

    def test_multi_resource_lesson(self, scheduler):
        """A multi-resource lesson holds two teachers and two locations."""
        payload = _school(
            [_teacher("T1"), _teacher("T2")],
            [_lesson("L1", 2, requires_multiple_resources=True)],
            locations=[
                {"id": "R1", "name": "Room 1", "capacity": 30},
                {"id": "R2", "name": "Room 2", "capacity": 30},
            ],
        )
        result = scheduler.generate_schedule(payload)
        assert len(result.schedule) == 2
        for entry in result.schedule.entries():
            assert entry.teacher_ids == ("T1", "T2")
            assert entry.location_ids == ("R1", "R2")
            assert not result.schedule.is_free(["T2"], [], [], entry.time_slot)

    def test_unschedulable_lesson_is_reported(self, scheduler):
        """A lesson without eligible teachers becomes an unassigned remainder."""
        payload = _school([_teacher("T1")], [_lesson("L1", 2), _lesson("L2", 3, track="k2")])
        result = scheduler.generate_schedule(payload)
        assert result.status == "PARTIAL"
        assert len(result.unassigned) == 1
        remainder = result.unassigned[0]
        assert remainder.lesson_id == "L2"
        assert remainder.remaining_hours == 3
        assert remainder.reason == "no eligible teacher"
        assert result.metrics.unassigned_hours == 3
        assert any(line.startswith("WARNING: ") for line in result.logs)

    def test_capacity_shortfall_is_partial(self, scheduler):
        """Hours that do not fit in the grid are left unassigned."""
        payload = _school(
            [_teacher("T1", unavailability=[
                {"day_of_week": day, "start_period": 1, "end_period": 10} for day in (1, 2, 3, 4)
            ])],
            [_lesson("L1", 8), _lesson("L2", 4, grade=11)],
        )
        result = scheduler.generate_schedule(payload)
        placed = result.schedule.hours_by_lesson()
        remaining = {r.lesson_id: r.remaining_hours for r in result.unassigned}
        assert result.status == "PARTIAL"
        assert sum(placed.values()) <= 10
        for lesson_id, hours in (("L1", 8), ("L2", 4)):
            assert placed.get(lesson_id, 0) + remaining.get(lesson_id, 0) == hours

    def test_inactive_teacher_never_assigned(self, scheduler):
        """Inactive teachers never appear in the schedule."""
        payload = _school(
            [_teacher("T1", is_active=False), _teacher("T2")],
            [_lesson("L1", 3)],
        )
        result = scheduler.generate_schedule(payload)
        assert result.schedule.teacher_ids() == ["T2"]

    def test_zero_hour_lesson(self, scheduler):
        """A lesson with no weekly hours is neither placed nor unassigned."""
        payload = _school([_teacher("T1")], [_lesson("L1", 0)])
        result = scheduler.generate_schedule(payload)
        assert len(result.schedule) == 0
        assert result.unassigned == []

    def test_cancel_event(self, scheduler):
        """A set cancel event stops placement and reports every lesson."""
        cancel = threading.Event()
        cancel.set()
        payload = _school([_teacher("T1")], [_lesson("L1", 2), _lesson("L2", 1, grade=11)])
        result = scheduler.generate_schedule(payload, cancel_event=cancel)
        assert result.cancelled
        assert len(result.schedule) == 0
        assert {r.lesson_id for r in result.unassigned} == {"L1", "L2"}

    def test_slow_clock_does_not_cut_default_run(self, monkeypatch):
        """Without a time limit, elapsed wall time never changes the result."""
        payload = _school([_teacher("T1")], [_lesson("L1", 2), _lesson("L2", 1, grade=11)])
        expected = Scheduler().generate_schedule(payload)

        clock = itertools.count(step=1000.0)
        monkeypatch.setattr(heuristic_solver.time, "monotonic", lambda: next(clock))
        result = Scheduler().generate_schedule(payload)

        assert SolverConfig().time_limit_seconds is None
        assert result.status == "COMPLETE"
        assert not result.cancelled
        assert result.schedule == expected.schedule

    def test_time_limit_stops_run(self, monkeypatch):
        """An explicit time limit still stops placement once exceeded."""
        payload = _school([_teacher("T1")], [_lesson("L1", 2)])
        clock = itertools.count(step=1000.0)
        monkeypatch.setattr(heuristic_solver.time, "monotonic", lambda: next(clock))

        scheduler = Scheduler(solver_config=SolverConfig(time_limit_seconds=1))
        result = scheduler.generate_schedule(payload)
        assert result.cancelled
        assert [r.lesson_id for r in result.unassigned] == ["L1"]


class TestFreeDay:
    """Tests for the soft preference to keep a teacher day off."""

    @pytest.fixture
    def payload(self):
        """One teacher, free at hour 1 every day and hour 10 on Monday."""
        unavailability = [{"day_of_week": 1, "start_period": 2, "end_period": 9}]
        unavailability += [
            {"day_of_week": day, "start_period": 2, "end_period": 10} for day in range(2, 6)
        ]
        return _school(
            [_teacher("T1", unavailability=unavailability)],
            [_lesson(lesson_id, 1) for lesson_id in ("A", "B", "C", "D", "E")],
        )

    def _days(self, result):
        return {entry.time_slot.day for entry in result.schedule.entries()}

    def test_last_free_day_kept(self, payload):
        """The fifth hour goes to a gappy Monday rather than the free Friday."""
        scheduler = Scheduler(weights=ScoringWeights(delta=0.0))
        result = scheduler.generate_schedule(payload)
        assert len(result.schedule) == 5
        assert Day.FRIDAY not in self._days(result)
        assert "T1-0-10" in result.schedule

        validation = ScheduleValidator().validate(result.schedule, scheduler.prepare(payload)[0])
        assert not any("has no free day" in w for w in validation.warnings)

    def test_zero_weight_uses_every_day(self, payload):
        """Without the free-day weight the gap-free Friday wins."""
        scheduler = Scheduler(weights=ScoringWeights(delta=0.0, free_day=0.0))
        result = scheduler.generate_schedule(payload)
        assert self._days(result) == set(Day)
        assert "T1-0-10" not in result.schedule


class TestSampleSchool:
    """Invariant checks on a realistic sample school."""

    @pytest.fixture
    def payload(self):
        """Create the sample school used by the demo."""
        return create_sample_school(8)

    def test_hour_accounting(self, payload):
        """Placed plus unassigned hours equal each lesson's weekly quota."""
        scheduler = Scheduler()
        model, candidates = scheduler.prepare(payload)
        result = scheduler.solve(model, candidates)
        placed = result.schedule.hours_by_lesson()
        remaining = {r.lesson_id: r.remaining_hours for r in result.unassigned}
        for lesson in model.scheduled_lessons:
            assert placed.get(lesson.id, 0) + remaining.get(lesson.id, 0) == lesson.weekly_hours

    def test_schedule_is_valid(self, payload):
        """The generated schedule satisfies every hard constraint."""
        scheduler = Scheduler()
        model, candidates = scheduler.prepare(payload)
        result = scheduler.solve(model, candidates)
        validation = ScheduleValidator().validate(result.schedule, model)
        assert validation.is_valid, [str(e) for e in validation.errors]

    def test_deterministic(self, payload):
        """Identical input yields an identical schedule and log."""
        first = Scheduler().generate_schedule(payload)
        second = Scheduler().generate_schedule(payload)
        assert first.schedule == second.schedule
        assert first.logs == second.logs
        assert first.fitness_score == second.fitness_score

    def test_worker_threads_do_not_change_result(self, payload):
        """Parallel candidate scoring yields the same schedule as serial."""
        serial = Scheduler(solver_config=SolverConfig(num_workers=1)).generate_schedule(payload)
        parallel = Scheduler(solver_config=SolverConfig(num_workers=4)).generate_schedule(payload)
        assert serial.schedule == parallel.schedule


class TestWorkloadState:
    """Tests for incremental variance bookkeeping."""

    def test_variance_delta_matches_recomputation(self):
        """The incremental delta equals the change in population variance."""
        state = WorkloadState(hours={"T1": 0, "T2": 0, "T3": 0})
        state.add("T1", 4)
        state.add("T2", 1)

        def variance(hours):
            mean = sum(hours) / len(hours)
            return sum((h - mean) ** 2 for h in hours) / len(hours)

        before = variance([4, 1, 0])
        after = variance([4, 3, 0])
        assert state.variance_delta(["T2"], 2) == pytest.approx(after - before)

