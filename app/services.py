from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Sequence

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.models import Driver, Penalty, PointsConfig, Race, RaceResult, Team, today
from app.rules import (
    DEFAULT_POINT_TABLE,
    PenaltyKind,
    ResultStatus,
    best_result,
    find_duplicates,
    points_for_result,
    validate_result_entries,
)
from app.standings import (
    DriverSnapshot,
    DriverTarget,
    PenaltySnapshot,
    PenaltyTarget,
    RaceSnapshot,
    ResultSnapshot,
    Standings,
    TeamSnapshot,
    TeamTarget,
    compute_standings,
)


logger = logging.getLogger(__name__)


# -- persistence helpers -----------------------------------------------------


@contextmanager
def persistence_guard(db: Session, action: str) -> Iterator[None]:
    """
    Roll the session back on any database failure and surface it as an HTTP
    error, so a failed write never leaves half-applied state behind.
    """
    try:
        yield
    except IntegrityError as exc:
        db.rollback()
        logger.error("Integrity error while trying to %s: %s", action, exc.orig)
        raise HTTPException(status_code=409, detail=f"Could not {action}: conflicting data") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Database error while trying to %s", action)
        raise HTTPException(status_code=500, detail=f"Could not {action}") from exc


def commit_or_rollback(db: Session, action: str) -> None:
    with persistence_guard(db, action):
        db.commit()


def get_or_404(db: Session, model: Any, obj_id: int, label: str):
    obj = db.get(model, obj_id)
    if not obj:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return obj


def get_driver_or_404(db: Session, driver_id: int) -> Driver:
    return get_or_404(db, Driver, driver_id, "Driver")


def get_team_or_404(db: Session, team_id: int) -> Team:
    return get_or_404(db, Team, team_id, "Team")


def get_race_or_404(db: Session, race_id: int) -> Race:
    return get_or_404(db, Race, race_id, "Race")


def get_penalty_or_404(db: Session, penalty_id: int) -> Penalty:
    return get_or_404(db, Penalty, penalty_id, "Penalty")


def require_team(db: Session, team_id: int) -> Team:
    team = db.get(Team, team_id)
    if not team:
        raise HTTPException(status_code=400, detail="Team does not exist")
    return team


# -- payloads ----------------------------------------------------------------


def team_out(team: Team) -> dict[str, Any]:
    return {
        "id": team.id,
        "name": team.name,
        "logo_url": team.logo_url,
        "points": team.points,
    }


def driver_out(driver: Driver) -> dict[str, Any]:
    return {
        "id": driver.id,
        "name": driver.name,
        "number": driver.number,
        "team_id": driver.team_id,
        "photo_url": driver.photo_url,
        "points": driver.points,
    }


def result_out(result: RaceResult) -> dict[str, Any]:
    status = ResultStatus(result.status)
    return {
        "id": result.id,
        "race_id": result.race_id,
        "driver_id": result.driver_id,
        "position": result.position,
        "status": status.value,
        "status_label": status.label,
        "points_earned": result.points_earned,
    }


def race_out(race: Race) -> dict[str, Any]:
    return {
        "id": race.id,
        "name": race.name,
        "date": race.date,
        "results": [result_out(r) for r in race.results],
    }


def penalty_target(penalty: Penalty) -> PenaltyTarget:
    if penalty.driver_id is not None and penalty.team_id is None:
        return DriverTarget(driver_id=penalty.driver_id)
    if penalty.team_id is not None and penalty.driver_id is None:
        return TeamTarget(team_id=penalty.team_id)
    raise ValueError(f"Penalty {penalty.id} must target exactly one driver or team")


def target_out(target: PenaltyTarget) -> dict[str, Any]:
    if isinstance(target, DriverTarget):
        return {"type": "driver", "driver_id": target.driver_id}
    return {"type": "team", "team_id": target.team_id}


def penalty_out(penalty: Penalty) -> dict[str, Any]:
    kind = PenaltyKind(penalty.kind)
    return {
        "id": penalty.id,
        "target": target_out(penalty_target(penalty)),
        "driver_id": penalty.driver_id,
        "team_id": penalty.team_id,
        "kind": kind.value,
        "kind_label": kind.label,
        "points_deducted": penalty.points_deducted,
        "description": penalty.description,
        "date": penalty.date,
        "created_at": penalty.created_at,
    }


# -- teams -------------------------------------------------------------------


def list_teams(db: Session) -> list[Team]:
    return list(db.scalars(select(Team).order_by(Team.id.asc())).all())


def create_team(db: Session, name: str, logo_url: Optional[str] = None) -> Team:
    team = Team(name=name.strip(), logo_url=logo_url, points=0)
    db.add(team)
    with persistence_guard(db, "save team"):
        db.flush()
    logger.info("Created team %s (%s)", team.id, team.name)
    return team


def update_team(db: Session, team_id: int, changes: dict[str, Any]) -> Team:
    team = get_team_or_404(db, team_id)
    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Team name is required")
        team.name = name
    if "logo_url" in changes:
        team.logo_url = changes["logo_url"]
    logger.info("Updated team %s", team.id)
    return team


def delete_team(db: Session, team_id: int) -> None:
    team = get_team_or_404(db, team_id)
    # Drivers stay, unassigned; the team's penalties go with it.
    for driver in list(team.drivers):
        driver.team_id = None
    db.delete(team)
    logger.info("Deleted team %s", team_id)


def team_detail(db: Session, team_id: int) -> dict[str, Any]:
    team = get_team_or_404(db, team_id)
    drivers = db.scalars(
        select(Driver).where(Driver.team_id == team.id).order_by(Driver.points.desc(), Driver.id.asc())
    ).all()
    payload = team_out(team)
    payload["drivers"] = [driver_out(d) for d in drivers]
    payload["penalties"] = [penalty_out(p) for p in list_team_penalties(db, team.id)]
    return payload


# -- drivers -----------------------------------------------------------------


def list_drivers(db: Session) -> list[Driver]:
    return list(db.scalars(select(Driver).order_by(Driver.id.asc())).all())


def create_driver(
    db: Session,
    name: str,
    number: int,
    team_id: int,
    photo_url: Optional[str] = None,
) -> Driver:
    require_team(db, team_id)
    driver = Driver(name=name.strip(), number=number, team_id=team_id, photo_url=photo_url, points=0)
    db.add(driver)
    with persistence_guard(db, "save driver"):
        db.flush()
    logger.info("Created driver %s (#%s %s)", driver.id, driver.number, driver.name)
    return driver


def update_driver(db: Session, driver_id: int, changes: dict[str, Any]) -> Driver:
    driver = get_driver_or_404(db, driver_id)
    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Driver name is required")
        driver.name = name
    if "number" in changes:
        if changes["number"] is None:
            raise HTTPException(status_code=400, detail="Driver number is required")
        driver.number = changes["number"]
    if "team_id" in changes:
        team_id = changes["team_id"]
        if team_id is not None:
            require_team(db, team_id)
        driver.team_id = team_id
    if "photo_url" in changes:
        driver.photo_url = changes["photo_url"]
    logger.info("Updated driver %s", driver.id)
    return driver


def delete_driver(db: Session, driver_id: int) -> None:
    driver = get_driver_or_404(db, driver_id)
    # Results and penalties are removed through the relationship cascades.
    db.delete(driver)
    logger.info("Deleted driver %s", driver_id)


def driver_detail(db: Session, driver_id: int) -> dict[str, Any]:
    driver = get_driver_or_404(db, driver_id)
    rows = db.scalars(
        select(RaceResult)
        .join(Race, Race.id == RaceResult.race_id)
        .where(RaceResult.driver_id == driver.id)
        .order_by(Race.date.desc(), Race.id.desc())
        .options(selectinload(RaceResult.race))
    ).all()

    results = []
    for r in rows:
        item = result_out(r)
        item["race_name"] = r.race.name
        item["race_date"] = r.race.date
        results.append(item)

    best = best_result(rows)
    best_payload = None
    if best is not None:
        best_status = ResultStatus(best.status)
        best_payload = {
            "race_id": best.race_id,
            "race_name": best.race.name,
            "position": best.position,
            "status": best_status.value,
            "status_label": best_status.label,
            "points_earned": best.points_earned,
        }

    payload = driver_out(driver)
    payload["team"] = team_out(driver.team) if driver.team else None
    payload["results"] = results
    payload["best_result"] = best_payload
    payload["penalties"] = [penalty_out(p) for p in list_driver_penalties(db, driver.id)]
    return payload


# -- races -------------------------------------------------------------------


def list_races(db: Session) -> list[Race]:
    return list(
        db.scalars(
            select(Race)
            .order_by(Race.date.desc(), Race.id.desc())
            .options(selectinload(Race.results))
        ).all()
    )


def create_race(db: Session, name: str, date: dt.date) -> Race:
    race = Race(name=name.strip(), date=date)
    db.add(race)
    with persistence_guard(db, "save race"):
        db.flush()
    logger.info("Created race %s (%s, %s)", race.id, race.name, race.date)
    return race


def update_race(db: Session, race_id: int, changes: dict[str, Any]) -> Race:
    race = get_race_or_404(db, race_id)
    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Race name is required")
        race.name = name
    if "date" in changes:
        if changes["date"] is None:
            raise HTTPException(status_code=400, detail="Race date is required")
        race.date = changes["date"]
    logger.info("Updated race %s", race.id)
    return race


def delete_race(db: Session, race_id: int) -> None:
    race = get_race_or_404(db, race_id)
    db.delete(race)
    logger.info("Deleted race %s and its results", race_id)


# -- race results ------------------------------------------------------------


def list_results(db: Session) -> list[RaceResult]:
    return list(db.scalars(select(RaceResult).order_by(RaceResult.race_id, RaceResult.position)).all())


def list_race_results(db: Session, race_id: int) -> list[RaceResult]:
    get_race_or_404(db, race_id)
    return list(
        db.scalars(
            select(RaceResult).where(RaceResult.race_id == race_id).order_by(RaceResult.position.asc())
        ).all()
    )


@dataclass(frozen=True)
class ResultEntry:
    position: int
    driver_id: int
    status: ResultStatus = ResultStatus.COMPLETED


def replace_race_results(db: Session, race_id: int, entries: Sequence[ResultEntry]) -> list[RaceResult]:
    """
    Swap a race's whole result set for a new one.

    Clearing and inserting share one transaction: the caller commits once at
    the end, and any database failure in between rolls back to the previous
    set. points_earned is fixed here from the current point table.
    """
    race = get_race_or_404(db, race_id)

    problems = validate_result_entries([(e.position, e.driver_id) for e in entries])
    if problems:
        raise HTTPException(status_code=400, detail="; ".join(problems))

    driver_ids = sorted({e.driver_id for e in entries})
    known = set(db.scalars(select(Driver.id).where(Driver.id.in_(driver_ids))).all())
    missing = [d for d in driver_ids if d not in known]
    if missing:
        raise HTTPException(
            status_code=400,
            detail="Some driver IDs do not exist: " + ", ".join(str(d) for d in missing),
        )

    point_table = get_point_table(db)

    with persistence_guard(db, "save race results"):
        race.results.clear()
        # Deletes must reach the database before inserts reuse the same positions.
        db.flush()
        for entry in entries:
            race.results.append(
                RaceResult(
                    driver_id=entry.driver_id,
                    position=entry.position,
                    status=ResultStatus(entry.status).value,
                    points_earned=points_for_result(entry.position, entry.status, point_table),
                )
            )
        db.flush()

    logger.info("Replaced results of race %s with %d entries", race.id, len(entries))
    return sorted(race.results, key=lambda r: r.position)


def rescore_results(db: Session) -> int:
    """Re-derive every stored points_earned from the current point table."""
    point_table = get_point_table(db)
    changed = 0
    for result in list_results(db):
        points = points_for_result(result.position, result.status, point_table)
        if points != result.points_earned:
            result.points_earned = points
            changed += 1
    logger.info("Rescored race results, %d changed", changed)
    return changed


# -- point table -------------------------------------------------------------


def get_point_table(db: Session) -> dict[int, int]:
    rows = db.scalars(select(PointsConfig).order_by(PointsConfig.position.asc())).all()
    return {row.position: row.points for row in rows}


def upsert_point_table(db: Session, entries: Sequence[tuple[int, int]]) -> dict[int, int]:
    repeated = find_duplicates([position for position, _ in entries])
    if repeated:
        raise HTTPException(
            status_code=400,
            detail=f"Duplicate positions: {', '.join(str(p) for p in repeated)}",
        )
    for position, points in entries:
        if position < 1:
            raise HTTPException(status_code=400, detail="Position must be 1 or greater")
        if points < 0:
            raise HTTPException(status_code=400, detail="Points cannot be negative")
        row = db.get(PointsConfig, position)
        if row:
            row.points = points
        else:
            db.add(PointsConfig(position=position, points=points))
    with persistence_guard(db, "update the point table"):
        db.flush()
    logger.info("Upserted %d point table entries", len(entries))
    return get_point_table(db)


def delete_point_position(db: Session, position: int) -> None:
    row = get_or_404(db, PointsConfig, position, "Point table position")
    db.delete(row)
    logger.info("Removed position %s from the point table", position)


def seed_default_points(db: Session) -> bool:
    if db.scalar(select(PointsConfig.position).limit(1)) is not None:
        return False
    for position, points in DEFAULT_POINT_TABLE.items():
        db.add(PointsConfig(position=position, points=points))
    logger.info("Seeded default point table")
    return True


# -- penalties ---------------------------------------------------------------


def _penalty_query():
    return select(Penalty).order_by(Penalty.date.desc(), Penalty.created_at.desc(), Penalty.id.desc())


def list_penalties(db: Session) -> list[Penalty]:
    return list(db.scalars(_penalty_query()).all())


def list_driver_penalties(db: Session, driver_id: int) -> list[Penalty]:
    return list(db.scalars(_penalty_query().where(Penalty.driver_id == driver_id)).all())


def list_team_penalties(db: Session, team_id: int) -> list[Penalty]:
    return list(db.scalars(_penalty_query().where(Penalty.team_id == team_id)).all())


def create_penalty(
    db: Session,
    target: PenaltyTarget,
    kind: PenaltyKind | str,
    points_deducted: int,
    description: str,
    date: Optional[dt.date] = None,
) -> Penalty:
    if points_deducted < 0:
        raise HTTPException(status_code=400, detail="Points to deduct cannot be negative")
    if not description or not description.strip():
        raise HTTPException(status_code=400, detail="Penalty description is required")

    if isinstance(target, DriverTarget):
        if not db.get(Driver, target.driver_id):
            raise HTTPException(status_code=400, detail="Driver does not exist")
        driver_id, team_id = target.driver_id, None
    elif isinstance(target, TeamTarget):
        require_team(db, target.team_id)
        driver_id, team_id = None, target.team_id
    else:
        raise HTTPException(status_code=400, detail="Penalty must target a driver or a team")

    penalty = Penalty(
        driver_id=driver_id,
        team_id=team_id,
        kind=PenaltyKind(kind).value,
        points_deducted=points_deducted,
        description=description.strip(),
        date=date or today(),
    )
    db.add(penalty)
    with persistence_guard(db, "add penalty"):
        db.flush()
    logger.info(
        "Created %s penalty %s against %s (-%d)",
        penalty.kind,
        penalty.id,
        target,
        penalty.points_deducted,
    )
    return penalty


def delete_penalty(db: Session, penalty_id: int) -> None:
    penalty = get_penalty_or_404(db, penalty_id)
    db.delete(penalty)
    logger.info("Deleted penalty %s", penalty_id)


# -- standings ---------------------------------------------------------------


def driver_snapshot(driver: Driver) -> DriverSnapshot:
    return DriverSnapshot(
        id=driver.id,
        name=driver.name,
        number=driver.number,
        team_id=driver.team_id,
        points=driver.points,
        photo_url=driver.photo_url,
    )


def team_snapshot(team: Team) -> TeamSnapshot:
    return TeamSnapshot(id=team.id, name=team.name, points=team.points, logo_url=team.logo_url)


def race_snapshot(race: Race) -> RaceSnapshot:
    return RaceSnapshot(
        id=race.id,
        name=race.name,
        date=race.date,
        results=tuple(
            ResultSnapshot(
                race_id=r.race_id,
                driver_id=r.driver_id,
                position=r.position,
                status=ResultStatus(r.status),
                points_earned=r.points_earned,
            )
            for r in race.results
        ),
    )


def penalty_snapshot(penalty: Penalty) -> PenaltySnapshot:
    return PenaltySnapshot(
        id=penalty.id,
        target=penalty_target(penalty),
        kind=PenaltyKind(penalty.kind),
        points_deducted=penalty.points_deducted,
        description=penalty.description,
        date=penalty.date,
    )


@dataclass(frozen=True)
class ChampionshipSnapshot:
    drivers: List[DriverSnapshot]
    teams: List[TeamSnapshot]
    races: List[RaceSnapshot]
    point_table: dict[int, int]
    penalties: List[PenaltySnapshot]


def load_snapshots(db: Session) -> ChampionshipSnapshot:
    return ChampionshipSnapshot(
        drivers=[driver_snapshot(d) for d in list_drivers(db)],
        teams=[team_snapshot(t) for t in list_teams(db)],
        races=[race_snapshot(r) for r in list_races(db)],
        point_table=get_point_table(db),
        penalties=[penalty_snapshot(p) for p in list_penalties(db)],
    )


def current_standings(db: Session) -> Standings:
    snap = load_snapshots(db)
    return compute_standings(snap.drivers, snap.teams, snap.races, snap.point_table, snap.penalties)


def refresh_standings(db: Session) -> Standings:
    """
    Recompute standings and store the derived totals on driver and team rows.
    Run after every change to results, penalties or the point table.
    """
    with persistence_guard(db, "recompute standings"):
        db.flush()
    # Collections loaded before the mutation may still hold deleted rows.
    db.expire_all()
    standings = current_standings(db)
    drivers = {d.id: d for d in list_drivers(db)}
    teams = {t.id: t for t in list_teams(db)}
    for snap in standings.drivers:
        drivers[snap.id].points = snap.points
    for snap in standings.teams:
        teams[snap.id].points = snap.points
    logger.debug(
        "Recomputed standings for %d drivers and %d teams",
        len(standings.drivers),
        len(standings.teams),
    )
    return standings


def driver_standings_rows(standings: Standings) -> list[dict[str, Any]]:
    teams = {t.id: t for t in standings.teams}
    rows: list[dict[str, Any]] = []
    for rank, d in enumerate(standings.drivers, start=1):
        team = teams.get(d.team_id) if d.team_id is not None else None
        rows.append(
            {
                "rank": rank,
                "driver_id": d.id,
                "driver_name": d.name,
                "driver_number": d.number,
                "photo_url": d.photo_url,
                "team_id": d.team_id,
                "team_name": team.name if team else None,
                "points": d.points,
            }
        )
    return rows


def team_standings_rows(standings: Standings) -> list[dict[str, Any]]:
    return [
        {
            "rank": rank,
            "team_id": t.id,
            "team_name": t.name,
            "logo_url": t.logo_url,
            "points": t.points,
        }
        for rank, t in enumerate(standings.teams, start=1)
    ]


def dashboard(db: Session) -> dict[str, Any]:
    standings = current_standings(db)
    leader = standings.drivers[0] if standings.drivers else None
    leader_team = standings.teams[0] if standings.teams else None
    return {
        "driver_count": len(standings.drivers),
        "team_count": len(standings.teams),
        "leader": {"driver_id": leader.id, "driver_name": leader.name, "points": leader.points}
        if leader
        else None,
        "leader_team": {"team_id": leader_team.id, "team_name": leader_team.name, "points": leader_team.points}
        if leader_team
        else None,
        "driver_standings": driver_standings_rows(standings)[:10],
        "team_standings": team_standings_rows(standings),
    }
