"""The bookable universe of (day, hour) cells for one weekly cycle."""

from dataclasses import dataclass, field
from typing import Optional

from weekplan.domain.models import Day, TimeSlot
from weekplan.errors import FatalScheduleError


@dataclass(frozen=True)
class SlotGrid:
    """Weekly slot grid.

    Attributes:
        days: School days in the cycle.
        hours_per_day: Periods per day, numbered from 1.
    """

    days: tuple[Day, ...] = field(default_factory=lambda: tuple(Day))
    hours_per_day: int = 10

    def __post_init__(self):
        if self.hours_per_day < 0:
            raise FatalScheduleError(f"hours_per_day must be >= 0, got {self.hours_per_day}")

    @property
    def size(self) -> int:
        return len(self.days) * self.hours_per_day

    def slots(self) -> list[TimeSlot]:
        """All slots, ordered by day then hour."""
        return [
            TimeSlot(day, hour)
            for day in sorted(self.days, key=lambda d: d.index)
            for hour in range(1, self.hours_per_day + 1)
        ]

    def __contains__(self, slot: object) -> bool:
        return (
            isinstance(slot, TimeSlot)
            and slot.day in self.days
            and 1 <= slot.hour <= self.hours_per_day
        )

    def block(self, start: TimeSlot, duration: int) -> Optional[list[TimeSlot]]:
        """Contiguous slots starting at `start`, or None if they leave the day."""
        if duration <= 0 or start not in self:
            return None
        if start.hour + duration - 1 > self.hours_per_day:
            return None
        return [start.shifted(offset) for offset in range(duration)]

    def ensure_bookable(self) -> None:
        """Raise FatalScheduleError when the grid has no slots at all."""
        if self.size == 0:
            raise FatalScheduleError("Slot grid contains zero slots")
