"""Tests for core domain models."""

import pytest

from weekplan.domain.models import (
    ChangeType,
    Day,
    OptimizationChange,
    SavedSchedule,
    Schedule,
    ScheduledEntry,
    ScheduleMetrics,
    ScoringWeights,
    TimeSlot,
    UnassignedRemainder,
    count_gaps,
    make_key,
    short_day_penalty,
)
from weekplan.errors import ConstraintViolation


def _entry(
    lesson_id: str,
    teacher_id: str,
    day: Day,
    hour: int,
    location_id: str = "R1",
    class_id: str = "k1:10",
) -> ScheduledEntry:
    return ScheduledEntry(
        lesson_id=lesson_id,
        lesson_name=lesson_id,
        teacher_ids=(teacher_id,),
        location_ids=(location_id,),
        time_slot=TimeSlot(day, hour),
        grade_level=10,
        track_id="k1",
        class_ids=(class_id,),
    )


class TestDay:
    """Tests for Day parsing."""

    def test_from_index(self):
        """Integer indices should map to 0-based days."""
        assert Day.from_value(0) == Day.MONDAY
        assert Day.from_value(4) == Day.FRIDAY

    def test_from_digit_string(self):
        """Digit strings should parse like indices."""
        assert Day.from_value("3") == Day.THURSDAY

    def test_from_turkish_names(self):
        """Legacy Turkish day names should be recognized."""
        assert Day.from_value("Pazartesi") == Day.MONDAY
        assert Day.from_value("Salı") == Day.TUESDAY
        assert Day.from_value("Çarşamba") == Day.WEDNESDAY
        assert Day.from_value("Perşembe") == Day.THURSDAY
        assert Day.from_value("Cuma") == Day.FRIDAY

    def test_from_english_name_any_case(self):
        """English names should parse regardless of case."""
        assert Day.from_value("friday") == Day.FRIDAY
        assert Day.from_value("TUESDAY") == Day.TUESDAY

    def test_invalid_values(self):
        """Out-of-range indices, booleans and unknown names should fail."""
        for value in (7, -1, True, "Sunday", "", None):
            with pytest.raises(ValueError):
                Day.from_value(value)

    def test_is_day_name(self):
        """Only names count as day names, not indices."""
        assert Day.is_day_name("Pazartesi") is True
        assert Day.is_day_name("0") is False
        assert Day.is_day_name("T1") is False


class TestKeysAndGaps:
    """Tests for canonical keys and gap counting."""

    def test_make_key(self):
        """Keys should be teacherId-dayIndex-hour."""
        assert make_key("t-1", TimeSlot(Day.TUESDAY, 3)) == "t-1-1-3"

    def test_entry_key_uses_first_teacher(self):
        """The first teacher of an entry owns its key."""
        entry = ScheduledEntry(
            lesson_id="L1",
            lesson_name="Lab",
            teacher_ids=("T2", "T1"),
            location_ids=("R1", "R2"),
            time_slot=TimeSlot(Day.FRIDAY, 7),
            grade_level=11,
        )
        assert entry.key == "T2-4-7"

    def test_count_gaps(self):
        """Gaps are idle hours between the first and last lesson."""
        assert count_gaps([]) == 0
        assert count_gaps([2]) == 0
        assert count_gaps([1, 2, 3]) == 0
        assert count_gaps([1, 3, 4]) == 1
        assert count_gaps([5, 1]) == 3

    def test_short_day_penalty(self):
        """Teacher-days with 1-3 lessons are penalized quadratically."""
        assert short_day_penalty(0) == 0
        assert short_day_penalty(1) == 9
        assert short_day_penalty(2) == 4
        assert short_day_penalty(3) == 1
        assert short_day_penalty(4) == 0
        assert short_day_penalty(8) == 0


class TestSchedule:
    """Tests for the Schedule container."""

    @pytest.fixture
    def schedule(self):
        """Create a schedule with one entry at Monday hour 1."""
        return Schedule([_entry("L1", "T1", Day.MONDAY, 1)])

    def test_key_collision_rejected(self, schedule):
        """A second entry under the same key should be rejected."""
        with pytest.raises(ConstraintViolation):
            schedule.add(_entry("L2", "T1", Day.MONDAY, 1, location_id="R2", class_id="x"))

    def test_location_clash_rejected(self, schedule):
        """A location cannot host two entries in one slot."""
        clash = _entry("L2", "T2", Day.MONDAY, 1, class_id="k2:10")
        assert schedule.conflicts(clash) == ["T1-0-1"]
        with pytest.raises(ConstraintViolation):
            schedule.add(clash)
        assert len(schedule) == 1

    def test_class_clash_rejected(self, schedule):
        """A class cannot attend two entries in one slot."""
        with pytest.raises(ConstraintViolation):
            schedule.add(_entry("L2", "T2", Day.MONDAY, 1, location_id="R2"))

    def test_unchecked_add_skips_clash_detection(self, schedule):
        """add(check=False) inserts even when resources clash."""
        schedule.add(_entry("L2", "T2", Day.MONDAY, 1), check=False)
        assert len(schedule) == 2

    def test_remove_releases_resources(self, schedule):
        """Removing an entry frees its teacher, location and class."""
        schedule.remove("T1-0-1")
        slot = TimeSlot(Day.MONDAY, 1)
        assert schedule.is_free(["T1"], ["R1"], ["k1:10"], slot)
        assert schedule.teacher_ids() == []

    def test_multi_resource_entry_blocks_every_teacher(self):
        """Every teacher of an entry is occupied, not only the key owner."""
        schedule = Schedule()
        schedule.add(ScheduledEntry(
            lesson_id="L1",
            lesson_name="Lab",
            teacher_ids=("T1", "T2"),
            location_ids=("R1", "R2"),
            time_slot=TimeSlot(Day.MONDAY, 1),
            grade_level=11,
        ))
        assert not schedule.is_free(["T2"], [], [], TimeSlot(Day.MONDAY, 1))
        assert schedule.teacher_hours("T2", Day.MONDAY) == [1]
        assert schedule.hours_by_teacher() == {"T1": 1, "T2": 1}

    def test_copy_is_independent(self, schedule):
        """Changes to a copy never touch the original."""
        clone = schedule.copy()
        clone.add(_entry("L2", "T1", Day.MONDAY, 2))
        assert len(schedule) == 1
        assert len(clone) == 2
        assert schedule != clone

    def test_teacher_gaps(self):
        """Gaps are counted per teacher-day and summed."""
        schedule = Schedule([
            _entry("L1", "T1", Day.MONDAY, 1),
            _entry("L2", "T1", Day.MONDAY, 4, location_id="R2", class_id="k2:10"),
            _entry("L3", "T1", Day.TUESDAY, 2),
            _entry("L4", "T2", Day.TUESDAY, 1, location_id="R3", class_id="k3:10"),
            _entry("L4", "T2", Day.TUESDAY, 3, location_id="R3", class_id="k3:10"),
        ])
        assert schedule.teacher_gaps("T1") == 2
        assert schedule.teacher_gaps("T2") == 1
        assert schedule.total_gaps() == 3

    def test_items_sorted_by_key(self):
        """Iteration order is deterministic."""
        schedule = Schedule([
            _entry("L1", "T2", Day.MONDAY, 1),
            _entry("L2", "T1", Day.MONDAY, 1, location_id="R2", class_id="k2:10"),
        ])
        assert list(schedule) == ["T1-0-1", "T2-0-1"]
        assert [key for key, _ in schedule.items()] == ["T1-0-1", "T2-0-1"]


class TestScheduleMetrics:
    """Tests for fitness metric calculation."""

    def test_calculate(self):
        """Fitness is the weighted sum of variance, gaps, unassigned and short days."""
        schedule = Schedule([
            _entry("L1", "T1", Day.MONDAY, 1),
            _entry("L2", "T1", Day.MONDAY, 3, location_id="R2", class_id="k2:10"),
        ])
        unassigned = [UnassignedRemainder("L9", "Extra", remaining_hours=3, weekly_hours=3)]
        metrics = ScheduleMetrics.calculate(schedule, ["T1", "T2"], unassigned)

        # Hours {T1: 2, T2: 0}: mean 1, population variance 1
        assert metrics.workload_variance == pytest.approx(1.0)
        assert metrics.total_gaps == 1
        assert metrics.short_day_penalty == 4
        assert metrics.unassigned_hours == 3
        assert metrics.fitness_score == pytest.approx(1.0 + 1 + 10 * 3 + 4)
        assert metrics.teacher_hours == {"T1": 2, "T2": 0}

    def test_custom_weights(self):
        """Weights are tunable."""
        schedule = Schedule([
            _entry("L1", "T1", Day.MONDAY, 1),
            _entry("L2", "T1", Day.MONDAY, 3, location_id="R2", class_id="k2:10"),
        ])
        weights = ScoringWeights(alpha=0, beta=5, gamma=0, delta=0)
        metrics = ScheduleMetrics.calculate(schedule, weights=weights)
        assert metrics.fitness_score == pytest.approx(5.0)

    def test_empty_schedule(self):
        """An empty schedule with no teachers scores zero."""
        metrics = ScheduleMetrics.calculate(Schedule())
        assert metrics.workload_variance == 0.0
        assert metrics.fitness_score == 0.0


class TestRecords:
    """Tests for changelog and snapshot records."""

    def test_change_to_dict(self):
        """Changes serialize with camelCase keys."""
        change = OptimizationChange(
            type=ChangeType.RELOCATE,
            teacher_id="T1",
            lesson_id="L1",
            from_key="T1-0-3",
            to_key="T1-0-2",
            reason="gap reduction",
        )
        assert change.to_dict() == {
            "type": "relocate",
            "teacherId": "T1",
            "lessonId": "L1",
            "fromKey": "T1-0-3",
            "toKey": "T1-0-2",
            "reason": "gap reduction",
        }

    def test_saved_schedule_with_details(self):
        """Editing details returns a new snapshot and leaves the old one alone."""
        saved = SavedSchedule(
            id="s1",
            fitness_score=1.0,
            workload_variance=0.0,
            total_gaps=0,
            schedule=Schedule(),
            name="Old",
        )
        renamed = saved.with_details("New", "Spring term")
        assert renamed.name == "New"
        assert renamed.description == "Spring term"
        assert saved.name == "Old"
        assert renamed.created_at == saved.created_at
