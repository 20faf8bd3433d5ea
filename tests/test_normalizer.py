"""Tests for input normalization."""

import pytest

from weekplan.domain.models import Day, TimeSlot
from weekplan.domain.records import InputRecords, UnavailabilityRecord
from weekplan.errors import FatalScheduleError, InputError
from weekplan.scheduling.normalizer import InputNormalizer
from weekplan.scheduling.run_log import RunLog
from weekplan.scheduling.slot_grid import SlotGrid


class TestUnavailabilityRecord:
    """Tests for unavailability rows."""

    def test_inclusive_range(self):
        """End period is inclusive and day_of_week is 1-based."""
        record = UnavailabilityRecord.from_dict(
            {"day_of_week": 1, "start_period": 1, "end_period": 3}
        )
        assert record.to_slots() == [
            TimeSlot(Day.MONDAY, 1),
            TimeSlot(Day.MONDAY, 2),
            TimeSlot(Day.MONDAY, 3),
        ]

    def test_camel_case_fields(self):
        """camelCase field names are accepted."""
        record = UnavailabilityRecord.from_dict({"dayOfWeek": 5, "startPeriod": 9, "endPeriod": 9})
        assert record.to_slots() == [TimeSlot(Day.FRIDAY, 9)]

    def test_invalid_rows(self):
        """Out-of-range days, reversed ranges and missing fields are rejected."""
        with pytest.raises(InputError):
            UnavailabilityRecord.from_dict({"day_of_week": 6, "start_period": 1, "end_period": 2})
        with pytest.raises(InputError):
            UnavailabilityRecord.from_dict({"day_of_week": 2, "start_period": 4, "end_period": 2})
        with pytest.raises(InputError):
            UnavailabilityRecord.from_dict({"day_of_week": 2, "start_period": 4})


class TestInputNormalizer:
    """Tests for InputNormalizer."""

    @pytest.fixture
    def payload(self):
        """Create a payload mixing valid and malformed records."""
        return {
            "teachers": [
                {
                    "id": "T1",
                    "name": "Ayse",
                    "branch_id": "b1",
                    "unavailability": [
                        {"day_of_week": 1, "start_period": 1, "end_period": 3},
                        {"day_of_week": 6, "start_period": 1, "end_period": 1},
                    ],
                },
                {"id": "T2", "name": "Burak", "branchId": "b1", "isActive": False},
                {"name": "No Id"},
                {"id": "T1", "name": "Duplicate"},
            ],
            "lessons": [
                {"id": "L1", "name": "Math", "track_id": "k1", "grade_level": 10, "weekly_hours": 2},
                {
                    "id": "L2",
                    "name": "Physics",
                    "trackId": "k1",
                    "gradeLevel": 10,
                    "weeklyHours": 5,
                    "canSplit": False,
                },
                {"id": "L3", "name": "Club", "track_id": "k1", "grade_level": 10,
                 "weekly_hours": 4, "include_in_schedule": False},
                {"id": "L4", "name": "Orphan", "track_id": "k9", "grade_level": 10,
                 "weekly_hours": 1},
                {"id": "L5", "name": "Broken", "track_id": "k1", "grade_level": 10},
            ],
            "locations": [
                {"id": "R1", "name": "Room 1", "capacity": 30},
                {"id": "LAB", "name": "Lab", "labTypeId": "lab", "capacity": 20},
                {"id": "OFF", "name": "Şef Odası", "capacity": 2},
                {"id": "R2", "name": "Room 2", "capacity": None},
                {"id": "R3", "name": "Room 3", "capacity": -1},
                {"id": "R4", "name": "Room 4", "capacity": 30, "bookable": False},
            ],
            "track_to_branch": {"k1": "b1"},
            "overrides": [
                {"teacher_id": "T1", "lesson_id": "L1", "kind": "required"},
                {"teacher_id": "T9", "lesson_id": "L1", "kind": "excluded"},
                {"teacher_id": "T1", "lesson_id": "L1", "kind": "sometimes"},
            ],
        }

    def test_teachers(self, payload):
        """Inactive teachers are set aside and malformed ones skipped."""
        model = InputNormalizer().normalize(payload)
        assert list(model.teachers) == ["T1"]
        assert model.teachers["T1"].name == "Ayse"
        assert model.inactive_teacher_ids == {"T2"}

    def test_unavailability(self, payload):
        """Valid unavailability rows become slots, invalid rows are skipped."""
        model = InputNormalizer().normalize(payload)
        assert model.teachers["T1"].unavailable_slots == frozenset(
            TimeSlot(Day.MONDAY, hour) for hour in (1, 2, 3)
        )
        assert any("unavailability row" in w for w in model.warnings)

    def test_lessons(self, payload):
        """Lessons accept camelCase fields and malformed ones are skipped."""
        model = InputNormalizer().normalize(payload)
        assert sorted(model.lessons) == ["L1", "L2", "L3", "L4"]
        assert model.lessons["L2"].splittable is False
        assert model.lessons["L2"].weekly_hours == 5

    def test_scheduled_lessons_order(self, payload):
        """Only included lessons enter the solver, longest first."""
        model = InputNormalizer().normalize(payload)
        assert [lesson.id for lesson in model.scheduled_lessons] == ["L2", "L1", "L4"]

    def test_locations(self, payload):
        """Non-bookable and invalid-capacity locations are excluded."""
        model = InputNormalizer().normalize(payload)
        assert sorted(model.locations) == ["LAB", "R1"]
        assert model.locations["LAB"].location_type_id == "lab"
        assert any("R2" in w and "invalid capacity" in w for w in model.warnings)
        assert any("R3" in w and "invalid capacity" in w for w in model.warnings)

    def test_overrides(self, payload):
        """Overrides for unknown teachers or with unknown kinds are skipped."""
        model = InputNormalizer().normalize(payload)
        assert len(model.overrides) == 1
        assert model.overrides[0].teacher_id == "T1"
        assert any("unknown teacher T9" in w for w in model.warnings)
        assert any("Unknown override kind" in w for w in model.warnings)

    def test_missing_branch_link_warns(self, payload):
        """An included lesson without a branch link produces a warning."""
        model = InputNormalizer().normalize(payload)
        assert any("Orphan" in w and "no branch link" in w for w in model.warnings)
        assert not any("Club" in w for w in model.warnings)

    def test_warnings_reach_run_log(self, payload):
        """Warnings are recorded in the run log with a WARNING prefix."""
        log = RunLog()
        InputNormalizer().normalize(payload, log)
        assert log.warnings
        assert all(line.startswith("WARNING: ") for line in log.warnings)

    def test_accepts_input_records(self, payload):
        """InputRecords and plain dicts normalize identically."""
        from_dict = InputNormalizer().normalize(payload)
        from_records = InputNormalizer().normalize(InputRecords.from_dict(payload))
        assert from_dict.teachers == from_records.teachers
        assert from_dict.lessons == from_records.lessons

    def test_empty_grid_is_fatal(self):
        """A grid with zero slots cannot be solved."""
        normalizer = InputNormalizer(grid=SlotGrid(hours_per_day=0))
        with pytest.raises(FatalScheduleError):
            normalizer.normalize({})

    def test_unavailability_outside_grid_dropped(self):
        """Unavailable slots beyond the grid are ignored."""
        normalizer = InputNormalizer(grid=SlotGrid(hours_per_day=6))
        model = normalizer.normalize({
            "teachers": [{
                "id": "T1",
                "name": "Ayse",
                "unavailability": [{"day_of_week": 2, "start_period": 5, "end_period": 8}],
            }],
        })
        assert model.teachers["T1"].unavailable_slots == frozenset(
            {TimeSlot(Day.TUESDAY, 5), TimeSlot(Day.TUESDAY, 6)}
        )


class TestSlotGrid:
    """Tests for SlotGrid."""

    def test_default_size(self):
        """The default grid is 5 days of 10 hours."""
        grid = SlotGrid()
        assert grid.size == 50
        assert grid.slots()[0] == TimeSlot(Day.MONDAY, 1)
        assert grid.slots()[-1] == TimeSlot(Day.FRIDAY, 10)

    def test_block(self):
        """Blocks never leave the day."""
        grid = SlotGrid()
        assert grid.block(TimeSlot(Day.MONDAY, 9), 2) == [
            TimeSlot(Day.MONDAY, 9),
            TimeSlot(Day.MONDAY, 10),
        ]
        assert grid.block(TimeSlot(Day.MONDAY, 9), 3) is None
        assert grid.block(TimeSlot(Day.MONDAY, 0), 1) is None
