"""Plain-text timetable reports.

This module renders a computed or saved schedule as text:
- Summary metrics (fitness, workload variance, gaps)
- One weekly grid per teacher, days across and hours down
- Unassigned lesson remainders
- The log trail of the run
"""

from collections import defaultdict
from pathlib import Path
from typing import Optional, Union

from weekplan.domain.models import (
    SavedSchedule,
    Schedule,
    ScheduleMetrics,
    TimeSlot,
    UnassignedRemainder,
)
from weekplan.scheduling.heuristic_solver import AssignmentResult
from weekplan.scheduling.slot_grid import SlotGrid

ReportSource = Union[AssignmentResult, SavedSchedule]

CELL_WIDTH = 14


class TextReportGenerator:
    """Generates text reports for timetables.

    Accepts either a fresh AssignmentResult or a SavedSchedule loaded from a
    repository; both carry a schedule, unassigned remainders and logs.
    """

    def __init__(self, grid: Optional[SlotGrid] = None, include_logs: bool = True):
        self.grid = grid or SlotGrid()
        self.include_logs = include_logs

    def generate(
        self,
        source: ReportSource,
        output_path: Union[str, Path],
        title: Optional[str] = None,
    ) -> str:
        """Generate a report and save it to file.

        Args:
            source: Result or saved schedule to render.
            output_path: Path to save the text file.
            title: Report title. Defaults to the saved name, if any.

        Returns:
            The generated text content.
        """
        content = self._generate_content(source, title)
        Path(output_path).write_text(content, encoding="utf-8")
        return content

    def generate_to_string(self, source: ReportSource, title: Optional[str] = None) -> str:
        """Generate a report and return it as a string."""
        return self._generate_content(source, title)

    def _generate_content(self, source: ReportSource, title: Optional[str]) -> str:
        schedule = source.schedule
        if title is None:
            title = getattr(source, "name", None) or "WEEKLY TIMETABLE"
        metrics = ScheduleMetrics.calculate(schedule, unassigned=source.unassigned)

        lines = []

        # Header
        lines.append("=" * 80)
        lines.append(title.upper())
        lines.append("=" * 80)
        lines.append("")

        # Summary
        lines.append(f"Entries: {len(schedule)}")
        lines.append(f"Teachers: {len(schedule.teacher_ids())}")
        lines.append(f"Fitness Score: {source.fitness_score:.4f}")
        lines.append(f"Workload Variance: {source.workload_variance:.4f}")
        lines.append(f"Total Gaps: {source.total_gaps}")
        lines.append(f"Short-Day Penalty: {metrics.short_day_penalty}")
        lines.append(f"Unassigned Hours: {metrics.unassigned_hours}")
        lines.append("")

        lines.extend(self._teacher_grids(schedule))
        lines.extend(self._unassigned_section(source.unassigned))

        if self.include_logs and source.logs:
            lines.append("-" * 80)
            lines.append("LOG")
            lines.append("-" * 80)
            lines.extend(source.logs)
            lines.append("")

        return "\n".join(lines)

    def _teacher_grids(self, schedule: Schedule) -> list[str]:
        lines = []
        names: dict[str, str] = {}
        cells: dict[str, dict[TimeSlot, str]] = defaultdict(dict)
        for entry in schedule.entries():
            for teacher_id, name in zip(entry.teacher_ids, entry.teacher_names):
                names.setdefault(teacher_id, name)
            label = entry.lesson_name or entry.lesson_id
            if entry.location_names:
                label = f"{label}/{entry.location_names[0]}"
            for teacher_id in entry.teacher_ids:
                cells[teacher_id][entry.time_slot] = label

        days = sorted(self.grid.days, key=lambda d: d.index)
        for teacher_id in schedule.teacher_ids():
            teacher_cells = cells[teacher_id]
            header = f"{names.get(teacher_id) or teacher_id} ({teacher_id})"
            lines.append("-" * 80)
            lines.append(
                f"{header}: {len(teacher_cells)} hours, "
                f"{schedule.teacher_gaps(teacher_id)} gaps"
            )
            lines.append("-" * 80)
            lines.append("Hr  " + "".join(f"{d.short_name:<{CELL_WIDTH}}" for d in days))
            for hour in range(1, self.grid.hours_per_day + 1):
                row = [
                    teacher_cells.get(TimeSlot(day, hour), ".")[: CELL_WIDTH - 1]
                    for day in days
                ]
                lines.append(f"{hour:>2}  " + "".join(f"{c:<{CELL_WIDTH}}" for c in row))
            lines.append("")
        return lines

    def _unassigned_section(self, unassigned) -> list[str]:
        remainders: list[UnassignedRemainder] = list(unassigned)
        if not remainders:
            return []
        lines = ["-" * 80, "UNASSIGNED LESSONS", "-" * 80]
        for remainder in sorted(remainders, key=lambda r: r.lesson_id):
            reason = f" - {remainder.reason}" if remainder.reason else ""
            lines.append(
                f"{remainder.lesson_name or remainder.lesson_id} ({remainder.lesson_id}): "
                f"{remainder.remaining_hours} of {remainder.weekly_hours} hours{reason}"
            )
        lines.append("")
        return lines
