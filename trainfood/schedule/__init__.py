"""
Schedule — train timetables and food-readiness timing.

    from trainfood import schedule

    calc = schedule.ReadinessCalculator(provider, clock)
    readiness = await calc.compute("12633", "Villupuram Jn")
    if readiness is None:
        ...  # degrade: order proceeds without schedule fields
"""

from trainfood.schedule._types import (
    Stop,
    TrainSchedule,
    ReadinessRules,
    Readiness,
    StopState,
    TrackedStop,
)
from trainfood.schedule._provider import ScheduleProvider, MemorySchedules
from trainfood.schedule._readiness import (
    compute_expected_ready_at,
    upcoming_stops,
    annotate_stops,
    ReadinessCalculator,
)
from trainfood.schedule._sqlalchemy import TrainScheduleTable, SQLAlchemySchedules

__all__ = (
    "Stop",
    "TrainSchedule",
    "ReadinessRules",
    "Readiness",
    "StopState",
    "TrackedStop",
    "ScheduleProvider",
    "MemorySchedules",
    "compute_expected_ready_at",
    "upcoming_stops",
    "annotate_stops",
    "ReadinessCalculator",
    "TrainScheduleTable",
    "SQLAlchemySchedules",
)
