"""Output generation for timetables."""

from weekplan.output.report_generator import TextReportGenerator

__all__ = [
    "TextReportGenerator",
]
