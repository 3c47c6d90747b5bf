"""
SQLAlchemy schedule provider — one row per (train_no, date), stops as JSON.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, String, UniqueConstraint, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from trainfood.db import Base
from trainfood.schedule._types import Stop, TrainSchedule


class TrainScheduleTable(Base):
    __tablename__ = "train_schedules"
    __table_args__ = (UniqueConstraint("train_no", "date", name="uq_train_schedule_day"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    train_no: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    stops: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)


def _stop_to_json(stop: Stop) -> dict[str, Any]:
    return {
        "station": stop.station,
        "arrival": stop.arrival.isoformat(),
        "departure": stop.departure.isoformat(),
    }


def _stop_from_json(data: dict[str, Any]) -> Stop:
    return Stop(
        station=data["station"],
        arrival=datetime.fromisoformat(data["arrival"]),
        departure=datetime.fromisoformat(data["departure"]),
    )


class SQLAlchemySchedules:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def put(self, schedule: TrainSchedule) -> None:
        """Insert or replace the timetable for (train_no, date)."""
        async with self._session_factory() as session:
            row = (await session.execute(
                select(TrainScheduleTable)
                .where(TrainScheduleTable.train_no == schedule.train_no)
                .where(TrainScheduleTable.date == schedule.date)
            )).scalar_one_or_none()
            stops = [_stop_to_json(s) for s in schedule.stops]
            if row is None:
                session.add(TrainScheduleTable(
                    train_no=schedule.train_no, date=schedule.date, stops=stops,
                ))
            else:
                row.stops = stops
            await session.commit()

    async def find_schedule(self, train_no: str, date: str) -> TrainSchedule | None:
        async with self._session_factory() as session:
            row = (await session.execute(
                select(TrainScheduleTable)
                .where(TrainScheduleTable.train_no == train_no)
                .where(TrainScheduleTable.date == date)
            )).scalar_one_or_none()
            if row is None:
                return None
            return TrainSchedule(
                train_no=row.train_no,
                date=row.date,
                stops=tuple(_stop_from_json(s) for s in row.stops),
            )


__all__ = ("TrainScheduleTable", "SQLAlchemySchedules")
