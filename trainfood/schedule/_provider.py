"""
Schedule provider — protocol and in-memory implementation.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from trainfood.schedule._types import TrainSchedule


class ScheduleProvider(Protocol):
    async def find_schedule(self, train_no: str, date: str) -> TrainSchedule | None:
        """Timetable for (train_no, date) or None."""
        ...


class MemorySchedules:
    """Read-mostly timetable map keyed by (train_no, date)."""

    def __init__(self, schedules: Iterable[TrainSchedule] = ()) -> None:
        self._schedules: dict[tuple[str, str], TrainSchedule] = {}
        for schedule in schedules:
            self.put(schedule)

    def put(self, schedule: TrainSchedule) -> None:
        self._schedules[(schedule.train_no, schedule.date)] = schedule

    async def find_schedule(self, train_no: str, date: str) -> TrainSchedule | None:
        return self._schedules.get((train_no, date))


__all__ = ("ScheduleProvider", "MemorySchedules")
