def _setup(client):
    r = client.put(
        "/points",
        json={"entries": [{"position": 1, "points": 25}, {"position": 2, "points": 18}, {"position": 3, "points": 15}]},
    )
    assert r.status_code == 200
    team = client.post("/teams", json={"name": "Mercedes"}).json()
    other = client.post("/teams", json={"name": "Red Bull"}).json()
    ham = client.post("/drivers", json={"name": "Lewis Hamilton", "number": 44, "team_id": team["id"]}).json()
    ros = client.post("/drivers", json={"name": "Nico Rosberg", "number": 6, "team_id": team["id"]}).json()
    ric = client.post("/drivers", json={"name": "Daniel Ricciardo", "number": 3, "team_id": other["id"]}).json()
    race = client.post("/races", json={"name": "Australian GP", "date": "2014-03-16"}).json()
    return team, other, ham, ros, ric, race


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_create_entities_and_defaults(client):
    team, other, ham, ros, ric, race = _setup(client)
    assert team["points"] == 0
    assert ham["team_id"] == team["id"]
    assert race["results"] == []
    assert race["date"] == "2014-03-16"

    r = client.get("/points")
    assert r.json()["entries"][0] == {"position": 1, "points": 25}


def test_required_fields_are_validated(client):
    assert client.post("/teams", json={"name": ""}).status_code == 422
    assert client.post("/drivers", json={"name": "No team", "number": 1}).status_code == 422
    assert client.post("/races", json={"name": "No date"}).status_code == 422
    r = client.post("/drivers", json={"name": "Ghost team", "number": 1, "team_id": 999})
    assert r.status_code == 400


def test_saving_results_updates_standings(client):
    team, other, ham, ros, ric, race = _setup(client)

    r = client.put(
        f"/races/{race['id']}/results",
        json={
            "results": [
                {"position": 1, "driver_id": ros["id"]},
                {"position": 2, "driver_id": ric["id"], "status": "dsq"},
                {"position": 3, "driver_id": ham["id"], "status": "dnf"},
            ]
        },
    )
    assert r.status_code == 200
    body = r.json()
    assert [x["points_earned"] for x in body["results"]] == [25, 0, 0]
    assert body["driver_standings"][0]["driver_id"] == ros["id"]
    assert body["driver_standings"][0]["rank"] == 1
    assert body["team_standings"][0] == {
        "rank": 1,
        "team_id": team["id"],
        "team_name": "Mercedes",
        "logo_url": None,
        "points": 25,
    }

    drivers = {d["id"]: d["points"] for d in client.get("/drivers").json()}
    assert drivers == {ham["id"]: 0, ros["id"]: 25, ric["id"]: 0}


def test_resave_drops_missing_positions(client):
    team, other, ham, ros, ric, race = _setup(client)
    url = f"/races/{race['id']}/results"
    client.put(
        url,
        json={
            "results": [
                {"position": 1, "driver_id": ros["id"]},
                {"position": 2, "driver_id": ham["id"]},
                {"position": 3, "driver_id": ric["id"]},
            ]
        },
    )
    client.put(url, json={"results": [{"position": 1, "driver_id": ham["id"]}]})

    rows = client.get(url).json()
    assert [(x["position"], x["driver_id"]) for x in rows] == [(1, ham["id"])]
    standings = client.get("/standings/drivers").json()["standings"]
    assert standings[0]["driver_id"] == ham["id"]
    assert standings[0]["points"] == 25


def test_duplicate_positions_rejected(client):
    team, other, ham, ros, ric, race = _setup(client)
    r = client.put(
        f"/races/{race['id']}/results",
        json={"results": [{"position": 1, "driver_id": ros["id"]}, {"position": 1, "driver_id": ham["id"]}]},
    )
    assert r.status_code == 400
    assert client.get(f"/races/{race['id']}/results").json() == []


def test_penalties_flow(client):
    team, other, ham, ros, ric, race = _setup(client)
    client.put(
        f"/races/{race['id']}/results",
        json={"results": [{"position": 1, "driver_id": ham["id"]}, {"position": 2, "driver_id": ros["id"]}]},
    )

    r = client.post(
        "/penalties",
        json={
            "target": {"type": "driver", "driver_id": ros["id"]},
            "kind": "points_loss",
            "points_deducted": 30,
            "description": "Causing a collision",
            "date": "2014-03-20",
        },
    )
    assert r.status_code == 201
    driver_penalty = r.json()
    assert driver_penalty["target"] == {"type": "driver", "driver_id": ros["id"]}
    assert driver_penalty["team_id"] is None
    assert driver_penalty["kind_label"] == "Points loss"

    r = client.post(
        "/penalties",
        json={
            "target": {"type": "team", "team_id": team["id"]},
            "points_deducted": 10,
            "description": "Unsafe release",
            "date": "2014-03-25",
        },
    )
    assert r.status_code == 201
    team_penalty = r.json()

    standings = client.get("/standings/teams").json()["standings"]
    assert standings[0]["team_id"] == team["id"]
    assert standings[0]["points"] == 15

    listed = client.get("/penalties").json()
    assert [p["id"] for p in listed] == [team_penalty["id"], driver_penalty["id"]]
    assert [p["id"] for p in client.get(f"/drivers/{ros['id']}/penalties").json()] == [driver_penalty["id"]]
    assert [p["id"] for p in client.get(f"/teams/{team['id']}/penalties").json()] == [team_penalty["id"]]

    assert client.delete(f"/penalties/{driver_penalty['id']}").status_code == 204
    drivers = {d["id"]: d["points"] for d in client.get("/drivers").json()}
    assert drivers[ros["id"]] == 18
    assert client.get(f"/teams/{team['id']}").json()["points"] == 33


def test_penalty_target_must_be_single(client):
    team, other, ham, ros, ric, race = _setup(client)
    base = {"points_deducted": 5, "description": "x"}
    assert client.post("/penalties", json=base).status_code == 422
    assert client.post("/penalties", json={**base, "target": {"type": "car", "car_id": 1}}).status_code == 422
    assert (
        client.post("/penalties", json={**base, "target": {"type": "team", "team_id": 999}}).status_code == 400
    )
    assert (
        client.post(
            "/penalties", json={**base, "description": "", "target": {"type": "team", "team_id": team["id"]}}
        ).status_code
        == 422
    )


def test_driver_detail_best_result_and_history(client):
    team, other, ham, ros, ric, race = _setup(client)
    race2 = client.post("/races", json={"name": "Malaysian GP", "date": "2014-03-30"}).json()
    client.put(
        f"/races/{race['id']}/results",
        json={"results": [{"position": 1, "driver_id": ros["id"]}, {"position": 3, "driver_id": ham["id"], "status": "retired"}]},
    )
    client.put(
        f"/races/{race2['id']}/results",
        json={"results": [{"position": 1, "driver_id": ham["id"]}, {"position": 2, "driver_id": ros["id"]}]},
    )

    r = client.get(f"/drivers/{ham['id']}")
    assert r.status_code == 200
    detail = r.json()
    assert detail["points"] == 25
    assert detail["team"]["name"] == "Mercedes"
    assert [x["race_name"] for x in detail["results"]] == ["Malaysian GP", "Australian GP"]
    assert detail["results"][1]["status_label"] == "Retired"
    assert detail["best_result"]["race_name"] == "Malaysian GP"
    assert detail["best_result"]["position"] == 1
    assert detail["best_result"]["status"] == "completed"
    assert detail["best_result"]["status_label"] == "Completed"
    assert detail["penalties"] == []

    assert client.get("/drivers/999").status_code == 404


def test_point_table_change_and_rescore(client):
    team, other, ham, ros, ric, race = _setup(client)
    client.put(f"/races/{race['id']}/results", json={"results": [{"position": 1, "driver_id": ham["id"]}]})

    client.put("/points", json={"entries": [{"position": 1, "points": 10}]})
    assert client.get("/standings/drivers").json()["standings"][0]["points"] == 25

    r = client.post("/races/rescore")
    assert r.json() == {"changed_results": 1}
    assert client.get("/standings/drivers").json()["standings"][0]["points"] == 10

    assert client.delete("/points/3").status_code == 204
    assert client.delete("/points/3").status_code == 404
    assert [e["position"] for e in client.get("/points").json()["entries"]] == [1, 2]


def test_point_table_rejects_repeated_positions(client):
    _setup(client)
    r = client.put(
        "/points",
        json={"entries": [{"position": 1, "points": 25}, {"position": 1, "points": 18}]},
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Duplicate positions: 1"
    assert client.get("/points").json()["entries"] == [
        {"position": 1, "points": 25},
        {"position": 2, "points": 18},
        {"position": 3, "points": 15},
    ]


def test_delete_entities(client):
    team, other, ham, ros, ric, race = _setup(client)
    client.put(
        f"/races/{race['id']}/results",
        json={"results": [{"position": 1, "driver_id": ric["id"]}, {"position": 2, "driver_id": ham["id"]}]},
    )

    assert client.delete(f"/teams/{other['id']}").status_code == 204
    assert client.get(f"/teams/{other['id']}").status_code == 404
    drivers = {d["id"]: d for d in client.get("/drivers").json()}
    assert drivers[ric["id"]]["team_id"] is None
    assert drivers[ric["id"]]["points"] == 25

    assert client.delete(f"/drivers/{ham['id']}").status_code == 204
    assert client.get(f"/teams/{team['id']}").json()["points"] == 0

    assert client.delete(f"/races/{race['id']}").status_code == 204
    assert client.get("/races").json() == []
    assert all(d["points"] == 0 for d in client.get("/drivers").json())


def test_updates(client):
    team, other, ham, ros, ric, race = _setup(client)
    client.put(f"/races/{race['id']}/results", json={"results": [{"position": 1, "driver_id": ham["id"]}]})

    r = client.put(f"/drivers/{ham['id']}", json={"team_id": other["id"], "number": 1})
    assert r.status_code == 200
    assert r.json()["number"] == 1
    teams = {t["id"]: t["points"] for t in client.get("/teams").json()}
    assert teams == {team["id"]: 0, other["id"]: 25}

    r = client.put(f"/races/{race['id']}", json={"name": "Australian Grand Prix"})
    assert r.json()["name"] == "Australian Grand Prix"
    assert r.json()["date"] == "2014-03-16"

    r = client.put(f"/teams/{team['id']}", json={"logo_url": "data:image/png;base64,AAAA"})
    assert r.json()["logo_url"].startswith("data:image/png")
    assert r.json()["name"] == "Mercedes"


def test_dashboard(client):
    empty = client.get("/dashboard").json()
    assert empty["leader"] is None
    assert empty["driver_standings"] == []

    team, other, ham, ros, ric, race = _setup(client)
    client.put(f"/races/{race['id']}/results", json={"results": [{"position": 1, "driver_id": ric["id"]}]})
    board = client.get("/dashboard").json()
    assert board["driver_count"] == 3
    assert board["leader"] == {"driver_id": ric["id"], "driver_name": "Daniel Ricciardo", "points": 25}
    assert board["leader_team"]["team_name"] == "Red Bull"
    assert board["driver_standings"][0]["team_name"] == "Red Bull"
