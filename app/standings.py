"""
Standings engine.

Pure functions over immutable snapshots: callers load drivers, teams, races
with their results, the point table and penalties, then ask for ranked
standings. Nothing here touches the database.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from app.rules import PenaltyKind, PointTable, ResultStatus, deduct_floored


@dataclass(frozen=True)
class DriverTarget:
    driver_id: int


@dataclass(frozen=True)
class TeamTarget:
    team_id: int


PenaltyTarget = Union[DriverTarget, TeamTarget]


@dataclass(frozen=True)
class DriverSnapshot:
    id: int
    name: str
    number: int
    team_id: Optional[int] = None
    points: int = 0
    photo_url: Optional[str] = None


@dataclass(frozen=True)
class TeamSnapshot:
    id: int
    name: str
    points: int = 0
    logo_url: Optional[str] = None


@dataclass(frozen=True)
class ResultSnapshot:
    race_id: int
    driver_id: int
    position: int
    status: ResultStatus = ResultStatus.COMPLETED
    points_earned: int = 0


@dataclass(frozen=True)
class RaceSnapshot:
    id: int
    name: str
    date: dt.date
    results: Tuple[ResultSnapshot, ...] = ()


@dataclass(frozen=True)
class PenaltySnapshot:
    id: int
    target: PenaltyTarget
    kind: PenaltyKind
    points_deducted: int
    description: str = ""
    date: Optional[dt.date] = None


@dataclass(frozen=True)
class Standings:
    drivers: List[DriverSnapshot]
    teams: List[TeamSnapshot]


def compute_driver_standings(
    drivers: Sequence[DriverSnapshot],
    races: Iterable[RaceSnapshot],
    point_table: PointTable,
    penalties: Iterable[PenaltySnapshot],
) -> List[DriverSnapshot]:
    """
    Driver totals: stored points_earned summed per driver, then driver
    penalties deducted with a floor of zero. Sorted by points descending;
    equal totals keep their input order.

    point_table is accepted so every scoring input travels together, but
    stored points_earned values are summed as-is and never re-derived here.
    """
    totals: Dict[int, int] = {d.id: 0 for d in drivers}

    for race in races:
        for result in race.results:
            # Results for deleted drivers contribute nothing.
            if result.driver_id in totals:
                totals[result.driver_id] += result.points_earned

    for penalty in penalties:
        target = penalty.target
        if isinstance(target, DriverTarget) and target.driver_id in totals:
            totals[target.driver_id] = deduct_floored(
                totals[target.driver_id], penalty.points_deducted
            )

    scored = [replace(d, points=totals[d.id]) for d in drivers]
    scored.sort(key=lambda d: -d.points)
    return scored


def compute_team_standings(
    drivers: Iterable[DriverSnapshot],
    teams: Sequence[TeamSnapshot],
    penalties: Iterable[PenaltySnapshot],
) -> List[TeamSnapshot]:
    """
    Team totals from already-penalised driver totals.

    drivers must be the output of compute_driver_standings; raw results are
    not consulted. Unassigned drivers and unknown team ids are skipped.
    """
    totals: Dict[int, int] = {t.id: 0 for t in teams}

    for driver in drivers:
        if driver.team_id is not None and driver.team_id in totals:
            totals[driver.team_id] += driver.points

    for penalty in penalties:
        target = penalty.target
        if isinstance(target, TeamTarget) and target.team_id in totals:
            totals[target.team_id] = deduct_floored(
                totals[target.team_id], penalty.points_deducted
            )

    scored = [replace(t, points=totals[t.id]) for t in teams]
    scored.sort(key=lambda t: -t.points)
    return scored


def compute_standings(
    drivers: Sequence[DriverSnapshot],
    teams: Sequence[TeamSnapshot],
    races: Iterable[RaceSnapshot],
    point_table: PointTable,
    penalties: Iterable[PenaltySnapshot],
) -> Standings:
    penalty_list = list(penalties)
    ranked_drivers = compute_driver_standings(drivers, races, point_table, penalty_list)
    ranked_teams = compute_team_standings(ranked_drivers, teams, penalty_list)
    return Standings(drivers=ranked_drivers, teams=ranked_teams)
