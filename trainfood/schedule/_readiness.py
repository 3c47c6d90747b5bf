"""
Readiness — when food must be ready for a train's arrival.

    expected_ready_at = arrival - prep - transit_buffer - pickup_buffer

``compute_expected_ready_at`` is pure. ``ReadinessCalculator`` adds the
one provider read for today's timetable; any miss degrades to None.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from trainfood._types import Clock
from trainfood.schedule._provider import ScheduleProvider
from trainfood.schedule._types import (
    Readiness,
    ReadinessRules,
    StopState,
    TrackedStop,
    TrainSchedule,
)

logger = logging.getLogger("trainfood.schedule.readiness")


# ═══════════════════════════════════════════════════════════════════════════════
# Pure computation
# ═══════════════════════════════════════════════════════════════════════════════

def compute_expected_ready_at(
    schedule: TrainSchedule | None,
    station_name: str,
    prep_minutes: int | None = None,
    rules: ReadinessRules = ReadinessRules(),
) -> Readiness | None:
    """Readiness for ``station_name`` on ``schedule``; None when unknown."""
    if schedule is None:
        return None

    found = schedule.find_stop(station_name)
    if found is None:
        return None

    index, stop = found
    prep = rules.prep_time_minutes if prep_minutes is None else prep_minutes
    lead = timedelta(
        minutes=prep + rules.transit_buffer_minutes + rules.pickup_buffer_minutes
    )
    return Readiness(
        scheduled_arrival=stop.arrival,
        scheduled_depart=stop.departure,
        expected_ready_at=stop.arrival - lead,
        station_index=index,
    )


def upcoming_stops(
    schedule: TrainSchedule, now: datetime, limit: int = 5
) -> tuple[TrackedStop, ...]:
    """The next ``limit`` stops arriving at or after ``now``."""
    upcoming = [
        TrackedStop(i, s.station, s.arrival, s.departure, StopState.UPCOMING)
        for i, s in enumerate(schedule.stops)
        if s.arrival >= now
    ]
    return tuple(upcoming[:limit])


def annotate_stops(
    schedule: TrainSchedule, station_index: int
) -> tuple[TrackedStop, ...]:
    """Stops before the delivery station are passed, the rest upcoming."""
    return tuple(
        TrackedStop(
            index=i,
            station=s.station,
            arrival=s.arrival,
            departure=s.departure,
            state=StopState.PASSED if i < station_index else StopState.UPCOMING,
        )
        for i, s in enumerate(schedule.stops)
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Calculator — provider-backed
# ═══════════════════════════════════════════════════════════════════════════════

class ReadinessCalculator:
    def __init__(
        self,
        provider: ScheduleProvider,
        clock: Clock,
        rules: ReadinessRules = ReadinessRules(),
    ) -> None:
        self._provider = provider
        self._clock = clock
        self.rules = rules

    def today(self) -> str:
        return self._clock().date().isoformat()

    async def todays_schedule(self, train_no: str) -> TrainSchedule | None:
        try:
            return await self._provider.find_schedule(train_no, self.today())
        except Exception:
            logger.exception("schedule lookup failed for train %s", train_no)
            return None

    async def compute(
        self,
        train_no: str,
        station_name: str,
        prep_minutes: int | None = None,
    ) -> Readiness | None:
        schedule = await self.todays_schedule(train_no)
        readiness = compute_expected_ready_at(schedule, station_name, prep_minutes, self.rules)
        if readiness is None:
            logger.warning(
                "readiness unknown: train=%s station=%s date=%s",
                train_no, station_name, self.today(),
            )
        return readiness


__all__ = (
    "compute_expected_ready_at",
    "upcoming_stops",
    "annotate_stops",
    "ReadinessCalculator",
)
