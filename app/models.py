from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def today() -> dt.date:
    return dt.datetime.now(dt.timezone.utc).date()


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    logo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Derived from standings; rewritten on every recompute.
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # No delete cascade: removing a team leaves its drivers unassigned.
    drivers: Mapped[list["Driver"]] = relationship("Driver", back_populates="team")
    penalties: Mapped[list["Penalty"]] = relationship(
        "Penalty", back_populates="team", cascade="all"
    )


class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    team_id: Mapped[int | None] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True
    )
    photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Derived from standings; rewritten on every recompute.
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    team: Mapped[Team | None] = relationship("Team", back_populates="drivers")
    results: Mapped[list["RaceResult"]] = relationship(
        "RaceResult", back_populates="driver", cascade="all"
    )
    penalties: Mapped[list["Penalty"]] = relationship(
        "Penalty", back_populates="driver", cascade="all"
    )


class Race(Base):
    __tablename__ = "races"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    results: Mapped[list["RaceResult"]] = relationship(
        "RaceResult",
        back_populates="race",
        cascade="all, delete-orphan",
        order_by="RaceResult.position",
    )


class RaceResult(Base):
    __tablename__ = "race_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    race_id: Mapped[int] = mapped_column(
        ForeignKey("races.id", ondelete="CASCADE"), nullable=False, index=True
    )
    driver_id: Mapped[int] = mapped_column(ForeignKey("drivers.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), default="completed", nullable=False
    )  # completed, dnf, dsq, retired
    points_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    race: Mapped[Race] = relationship("Race", back_populates="results")
    driver: Mapped[Driver] = relationship("Driver", back_populates="results")

    __table_args__ = (
        UniqueConstraint("race_id", "position", name="uq_race_result_position"),
        UniqueConstraint("race_id", "driver_id", name="uq_race_result_driver"),
        CheckConstraint("position >= 1", name="ck_race_result_position_positive"),
        CheckConstraint(
            "status IN ('completed', 'dnf', 'dsq', 'retired')", name="ck_race_result_status"
        ),
    )


class PointsConfig(Base):
    __tablename__ = "points_config"

    position: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("position >= 1", name="ck_points_config_position_positive"),
        CheckConstraint("points >= 0", name="ck_points_config_points_non_negative"),
    )


class Penalty(Base):
    __tablename__ = "penalties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    driver_id: Mapped[int | None] = mapped_column(ForeignKey("drivers.id"), nullable=True, index=True)
    team_id: Mapped[int | None] = mapped_column(ForeignKey("teams.id"), nullable=True, index=True)
    kind: Mapped[str] = mapped_column(
        String(32), default="points_loss", nullable=False
    )  # points_loss, disqualification, time_penalty, other
    points_deducted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, default=today, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    driver: Mapped[Driver | None] = relationship("Driver", back_populates="penalties")
    team: Mapped[Team | None] = relationship("Team", back_populates="penalties")

    __table_args__ = (
        CheckConstraint(
            "(driver_id IS NULL AND team_id IS NOT NULL) OR (driver_id IS NOT NULL AND team_id IS NULL)",
            name="ck_penalty_single_target",
        ),
        CheckConstraint("points_deducted >= 0", name="ck_penalty_points_non_negative"),
        CheckConstraint(
            "kind IN ('points_loss', 'disqualification', 'time_penalty', 'other')",
            name="ck_penalty_kind",
        ),
    )
