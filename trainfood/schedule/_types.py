"""
Schedule types — timetables and readiness results.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass(frozen=True, slots=True)
class Stop:
    station: str
    arrival: datetime
    departure: datetime


@dataclass(frozen=True, slots=True)
class TrainSchedule:
    """
    One day's run of a train. Unique per (train_no, date).

    Stops are assumed to be in travel order.
    """

    train_no: str
    date: str  # YYYY-MM-DD
    stops: tuple[Stop, ...]

    def find_stop(self, station: str) -> tuple[int, Stop] | None:
        for index, stop in enumerate(self.stops):
            if stop.station == station:
                return index, stop
        return None


@dataclass(frozen=True, slots=True)
class ReadinessRules:
    prep_time_minutes: int = 20
    transit_buffer_minutes: int = 5
    pickup_buffer_minutes: int = 3


@dataclass(frozen=True, slots=True)
class Readiness:
    scheduled_arrival: datetime
    scheduled_depart: datetime
    expected_ready_at: datetime
    station_index: int


class StopState(Enum):
    PASSED = "passed"
    UPCOMING = "upcoming"


@dataclass(frozen=True, slots=True)
class TrackedStop:
    index: int
    station: str
    arrival: datetime
    departure: datetime
    state: StopState


__all__ = (
    "Stop",
    "TrainSchedule",
    "ReadinessRules",
    "Readiness",
    "StopState",
    "TrackedStop",
)
