from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from app.config import settings
from app.database import Base, SessionLocal, engine, get_db
from app.schemas import (
    DriverCreate,
    DriverTargetIn,
    DriverUpdate,
    PenaltyCreate,
    PointTableUpsert,
    RaceCreate,
    RaceResultsReplace,
    RaceUpdate,
    TeamCreate,
    TeamUpdate,
)
from app.services import (
    ResultEntry,
    commit_or_rollback,
    create_driver,
    create_penalty,
    create_race,
    create_team,
    current_standings,
    dashboard,
    delete_driver,
    delete_penalty,
    delete_point_position,
    delete_race,
    delete_team,
    driver_detail,
    driver_out,
    driver_standings_rows,
    get_driver_or_404,
    get_point_table,
    get_race_or_404,
    get_team_or_404,
    list_driver_penalties,
    list_drivers,
    list_penalties,
    list_race_results,
    list_races,
    list_team_penalties,
    list_teams,
    penalty_out,
    race_out,
    refresh_standings,
    replace_race_results,
    rescore_results,
    result_out,
    seed_default_points,
    team_detail,
    team_out,
    team_standings_rows,
    update_driver,
    update_race,
    update_team,
    upsert_point_table,
)
from app.standings import DriverTarget, TeamTarget


logger = logging.getLogger(__name__)


app = FastAPI(
    title="Championship Manager",
    version="1.0.0",
    description=(
        "Single-season championship administration: drivers, teams, races, "
        "point table, penalties and computed driver/team standings."
    ),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


@app.on_event("startup")
def on_startup() -> None:
    configure_logging()
    Base.metadata.create_all(bind=engine)
    if settings.seed_default_points:
        db = SessionLocal()
        try:
            if seed_default_points(db):
                refresh_standings(db)
            commit_or_rollback(db, "seed the point table")
        finally:
            db.close()
    logger.info("Championship manager started")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/dashboard")
def get_dashboard(db: Session = Depends(get_db)):
    return dashboard(db)


@app.get("/standings/drivers")
def get_driver_standings(db: Session = Depends(get_db)):
    return {"standings": driver_standings_rows(current_standings(db))}


@app.get("/standings/teams")
def get_team_standings(db: Session = Depends(get_db)):
    return {"standings": team_standings_rows(current_standings(db))}


# -- teams -------------------------------------------------------------------


@app.post("/teams", status_code=201)
def post_team(payload: TeamCreate, db: Session = Depends(get_db)):
    team = create_team(db, payload.name, payload.logo_url)
    commit_or_rollback(db, "save team")
    db.refresh(team)
    return team_out(team)


@app.get("/teams")
def get_teams(db: Session = Depends(get_db)):
    return [team_out(t) for t in list_teams(db)]


@app.get("/teams/{team_id}")
def get_team(team_id: int, db: Session = Depends(get_db)):
    return team_detail(db, team_id)


@app.put("/teams/{team_id}")
def put_team(team_id: int, payload: TeamUpdate, db: Session = Depends(get_db)):
    team = update_team(db, team_id, payload.model_dump(exclude_unset=True))
    commit_or_rollback(db, "update team")
    db.refresh(team)
    return team_out(team)


@app.delete("/teams/{team_id}", status_code=204)
def remove_team(team_id: int, db: Session = Depends(get_db)) -> Response:
    delete_team(db, team_id)
    refresh_standings(db)
    commit_or_rollback(db, "delete team")
    return Response(status_code=204)


@app.get("/teams/{team_id}/penalties")
def get_team_penalties(team_id: int, db: Session = Depends(get_db)):
    get_team_or_404(db, team_id)
    return [penalty_out(p) for p in list_team_penalties(db, team_id)]


# -- drivers -----------------------------------------------------------------


@app.post("/drivers", status_code=201)
def post_driver(payload: DriverCreate, db: Session = Depends(get_db)):
    driver = create_driver(db, payload.name, payload.number, payload.team_id, payload.photo_url)
    commit_or_rollback(db, "save driver")
    db.refresh(driver)
    return driver_out(driver)


@app.get("/drivers")
def get_drivers(db: Session = Depends(get_db)):
    return [driver_out(d) for d in list_drivers(db)]


@app.get("/drivers/{driver_id}")
def get_driver(driver_id: int, db: Session = Depends(get_db)):
    return driver_detail(db, driver_id)


@app.put("/drivers/{driver_id}")
def put_driver(driver_id: int, payload: DriverUpdate, db: Session = Depends(get_db)):
    driver = update_driver(db, driver_id, payload.model_dump(exclude_unset=True))
    # A team change moves points between teams.
    refresh_standings(db)
    commit_or_rollback(db, "update driver")
    db.refresh(driver)
    return driver_out(driver)


@app.delete("/drivers/{driver_id}", status_code=204)
def remove_driver(driver_id: int, db: Session = Depends(get_db)) -> Response:
    delete_driver(db, driver_id)
    refresh_standings(db)
    commit_or_rollback(db, "delete driver")
    return Response(status_code=204)


@app.get("/drivers/{driver_id}/penalties")
def get_driver_penalties(driver_id: int, db: Session = Depends(get_db)):
    get_driver_or_404(db, driver_id)
    return [penalty_out(p) for p in list_driver_penalties(db, driver_id)]


# -- races -------------------------------------------------------------------


@app.post("/races", status_code=201)
def post_race(payload: RaceCreate, db: Session = Depends(get_db)):
    race = create_race(db, payload.name, payload.date)
    commit_or_rollback(db, "save race")
    db.refresh(race)
    return race_out(race)


@app.get("/races")
def get_races(db: Session = Depends(get_db)):
    return [race_out(r) for r in list_races(db)]


@app.post("/races/rescore")
def post_rescore(db: Session = Depends(get_db)):
    changed = rescore_results(db)
    refresh_standings(db)
    commit_or_rollback(db, "rescore race results")
    return {"changed_results": changed}


@app.get("/races/{race_id}")
def get_race(race_id: int, db: Session = Depends(get_db)):
    return race_out(get_race_or_404(db, race_id))


@app.put("/races/{race_id}")
def put_race(race_id: int, payload: RaceUpdate, db: Session = Depends(get_db)):
    race = update_race(db, race_id, payload.model_dump(exclude_unset=True))
    commit_or_rollback(db, "update race")
    db.refresh(race)
    return race_out(race)


@app.delete("/races/{race_id}", status_code=204)
def remove_race(race_id: int, db: Session = Depends(get_db)) -> Response:
    delete_race(db, race_id)
    refresh_standings(db)
    commit_or_rollback(db, "delete race")
    return Response(status_code=204)


@app.get("/races/{race_id}/results")
def get_race_results(race_id: int, db: Session = Depends(get_db)):
    return [result_out(r) for r in list_race_results(db, race_id)]


@app.put("/races/{race_id}/results")
def put_race_results(race_id: int, payload: RaceResultsReplace, db: Session = Depends(get_db)):
    entries = [
        ResultEntry(position=r.position, driver_id=r.driver_id, status=r.status)
        for r in payload.results
    ]
    replace_race_results(db, race_id, entries)
    standings = refresh_standings(db)
    commit_or_rollback(db, "save race results")
    return {
        "race_id": race_id,
        "results": [result_out(r) for r in list_race_results(db, race_id)],
        "driver_standings": driver_standings_rows(standings),
        "team_standings": team_standings_rows(standings),
    }


# -- point table -------------------------------------------------------------


def _point_table_payload(table: dict[int, int]) -> dict[str, Any]:
    return {"entries": [{"position": p, "points": pts} for p, pts in sorted(table.items())]}


@app.get("/points")
def get_points(db: Session = Depends(get_db)):
    return _point_table_payload(get_point_table(db))


@app.put("/points")
def put_points(payload: PointTableUpsert, db: Session = Depends(get_db)):
    table = upsert_point_table(db, [(e.position, e.points) for e in payload.entries])
    refresh_standings(db)
    commit_or_rollback(db, "update the point table")
    return _point_table_payload(table)


@app.delete("/points/{position}", status_code=204)
def remove_point_position(position: int, db: Session = Depends(get_db)) -> Response:
    delete_point_position(db, position)
    refresh_standings(db)
    commit_or_rollback(db, "update the point table")
    return Response(status_code=204)


# -- penalties ---------------------------------------------------------------


@app.get("/penalties")
def get_penalties(db: Session = Depends(get_db)):
    return [penalty_out(p) for p in list_penalties(db)]


@app.post("/penalties", status_code=201)
def post_penalty(payload: PenaltyCreate, db: Session = Depends(get_db)):
    if isinstance(payload.target, DriverTargetIn):
        target = DriverTarget(driver_id=payload.target.driver_id)
    else:
        target = TeamTarget(team_id=payload.target.team_id)
    penalty = create_penalty(
        db,
        target=target,
        kind=payload.kind,
        points_deducted=payload.points_deducted,
        description=payload.description,
        date=payload.date,
    )
    refresh_standings(db)
    commit_or_rollback(db, "add penalty")
    db.refresh(penalty)
    return penalty_out(penalty)


@app.delete("/penalties/{penalty_id}", status_code=204)
def remove_penalty(penalty_id: int, db: Session = Depends(get_db)) -> Response:
    delete_penalty(db, penalty_id)
    refresh_standings(db)
    commit_or_rollback(db, "delete penalty")
    return Response(status_code=204)
