"""Persistence of saved schedules and their legacy key formats."""

from weekplan.store.adapter import (
    CanonicalKey,
    DayHourKey,
    LegacyDayNameKey,
    deserialize_schedule,
    parse_stored_key,
    saved_schedule_from_dict,
    saved_schedule_to_dict,
    serialize_schedule,
)
from weekplan.store.repository import (
    InMemoryScheduleRepository,
    JsonFileScheduleRepository,
    ScheduleRepository,
    ScheduleSummary,
)

__all__ = [
    # Key formats
    "CanonicalKey",
    "DayHourKey",
    "LegacyDayNameKey",
    "parse_stored_key",
    # Conversion
    "serialize_schedule",
    "deserialize_schedule",
    "saved_schedule_to_dict",
    "saved_schedule_from_dict",
    # Repositories
    "ScheduleRepository",
    "InMemoryScheduleRepository",
    "JsonFileScheduleRepository",
    "ScheduleSummary",
]
