"""Exception hierarchy for the timetabling core.

Only FatalScheduleError is allowed to escape a public operation. The other
errors describe recoverable data-quality problems: they are caught where they
occur, logged as warnings and recorded in the returned log trail.
"""


class WeekplanError(Exception):
    """Base class for all timetabling errors."""


class InputError(WeekplanError):
    """Malformed or missing referential data in an input record."""


class ConstraintViolation(WeekplanError):
    """A placement would double-book a teacher, location or class."""


class StoreFormatError(WeekplanError):
    """A persisted schedule row could not be parsed."""


class FatalScheduleError(WeekplanError):
    """Structurally impossible input, such as an empty slot grid."""
