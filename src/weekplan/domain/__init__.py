"""Domain models and business rules for timetabling."""

from weekplan.domain.models import (
    AssignmentOverride,
    ChangeType,
    Day,
    LessonDemand,
    LocationResource,
    OptimizationChange,
    OverrideKind,
    SavedSchedule,
    Schedule,
    ScheduledEntry,
    ScheduleMetrics,
    ScoringWeights,
    TeacherProfile,
    TimeSlot,
    UnassignedRemainder,
    make_key,
)
from weekplan.domain.policies import (
    BlockPolicy,
    ClassGroupPolicy,
    DefaultBlockPolicy,
    DefaultClassGroupPolicy,
)
from weekplan.domain.records import InputRecords, UnavailabilityRecord

__all__ = [
    # Models
    "AssignmentOverride",
    "ChangeType",
    "Day",
    "LessonDemand",
    "LocationResource",
    "OptimizationChange",
    "OverrideKind",
    "SavedSchedule",
    "Schedule",
    "ScheduledEntry",
    "ScheduleMetrics",
    "ScoringWeights",
    "TeacherProfile",
    "TimeSlot",
    "UnassignedRemainder",
    "make_key",
    # Records
    "InputRecords",
    "UnavailabilityRecord",
    # Policies
    "BlockPolicy",
    "ClassGroupPolicy",
    "DefaultBlockPolicy",
    "DefaultClassGroupPolicy",
]
