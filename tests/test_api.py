import database
import main
from config import Settings
from conftest import add_user, as_user

ADMIN = as_user("admin")
SUPERVISOR = as_user("sup-tech")


def nominate(client, event_id, collaborator_id, user="sup-tech"):
    return client.post(
        f"/events/{event_id}/nominations",
        json={"collaboratorId": collaborator_id},
        headers=as_user(user),
    )


def vote(client, event_id, voter, ids):
    return client.post(f"/events/{event_id}/votes", json={"votedForIds": ids}, headers=as_user(voter))


def evaluate(client, event_id, evaluator, evaluated, scores):
    return client.post(
        f"/events/{event_id}/evaluations",
        json={"evaluatedUserId": evaluated, "scores": scores},
        headers=as_user(evaluator),
    )


def run_nominations(client, clock, event_id):
    clock.at(days=2)
    for cid in ("col-1", "col-2", "col-3"):
        assert nominate(client, event_id, cid).status_code == 200


def test_root_and_diagnostics(client):
    assert client.get("/").json() == {"message": "Soy El Mejor Backend Running"}
    diag = client.get("/test").json()
    assert diag["database"] == "✅ Connected"
    assert "departments" in diag["collections"]


def test_seed_data_on_startup(client):
    departments = client.get("/departments", headers=ADMIN).json()["data"]
    assert [d["name"] for d in departments] == ["Human Resources", "Marketing", "Sales", "Technology"]
    assert client.get("/me", headers=ADMIN).json()["role"] == "Admin"


def test_identity_is_required(client, team):
    assert client.get("/events").status_code == 401
    assert client.get("/events", headers=as_user("nobody")).status_code == 401
    assert client.get("/users", headers=as_user("col-1")).status_code == 403
    assert client.get("/users", headers=ADMIN).status_code == 200


def test_dev_auth_mode_uses_configured_user(client):
    main.app.state.settings = Settings(auth_mode="dev", dev_user_id="admin")
    try:
        assert client.get("/me").json()["id"] == "admin"
    finally:
        main.app.state.settings = Settings(auth_mode="header")
    assert client.get("/me").status_code == 401


def test_database_unavailable(client):
    handle = database.db
    database.set_db(None)
    try:
        response = client.get("/events", headers=ADMIN)
    finally:
        database.set_db(handle)
    assert response.status_code == 500
    assert response.json()["detail"] == "Database not available"


def test_login_by_email(client, team):
    response = client.post("/login", json={"email": "COL-1@soyelmejor.com"})
    assert response.status_code == 200
    assert response.json()["id"] == "col-1"
    assert client.post("/login", json={"email": "ghost@soyelmejor.com"}).status_code == 401


def test_provision_user(client):
    response = client.post(
        "/users",
        json={"name": "Maria Lopez", "cedula": "12345678", "role": "Collaborator", "department": "Sales"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "mar@soyelmejor.com"
    assert body["tempPassword"] == "mar12345678"

    user = client.get(f"/users/{body['userId']}", headers=ADMIN).json()
    assert user["department"] == "Sales"
    assert user["avatar"].startswith("https://picsum.photos/seed/")

    duplicate = client.post(
        "/users",
        json={"name": "Mario Perez", "cedula": "87654321", "role": "Collaborator", "department": "Sales"},
        headers=ADMIN,
    )
    assert duplicate.status_code == 400


def test_provision_user_validates_department(client):
    unknown = client.post(
        "/users",
        json={"name": "Ana Rodriguez", "cedula": "30303030", "role": "Supervisor", "department": "Legal"},
        headers=ADMIN,
    )
    assert unknown.status_code == 400
    missing = client.post(
        "/users",
        json={"name": "Ana Rodriguez", "cedula": "30303030", "role": "Supervisor"},
        headers=ADMIN,
    )
    assert missing.status_code == 400
    admin = client.post(
        "/users",
        json={"name": "Ana Rodriguez", "cedula": "30303030", "role": "Admin", "email": "ana.admin@soyelmejor.com"},
        headers=ADMIN,
    )
    assert admin.status_code == 200


def test_create_event_and_status_transitions(client):
    short = client.post(
        "/events",
        json={"month": "Octubre 2024", "startDate": "2024-10-01T00:00:00Z", "endDate": "2024-10-10T00:00:00Z"},
        headers=ADMIN,
    )
    assert short.status_code == 400

    response = client.post(
        "/events",
        json={"month": "Octubre 2024", "startDate": "2024-10-01T00:00:00Z", "endDate": "2024-10-31T00:00:00Z"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    event = response.json()
    assert event["status"] == "Pending"
    assert len(event["surveyQuestions"]) == 5

    url = f"/events/{event['id']}/status"
    assert client.post(url, json={"status": "Closed"}, headers=ADMIN).status_code == 409
    assert client.post(url, json={"status": "Active"}, headers=ADMIN).json()["status"] == "Active"
    assert client.post(url, json={"status": "Pending"}, headers=ADMIN).status_code == 409
    assert client.post(url, json={"status": "Closed"}, headers=ADMIN).json()["status"] == "Closed"
    assert client.patch(f"/events/{event['id']}", json={"month": "X"}, headers=ADMIN).status_code == 409


def test_update_event_revalidates_dates(client, team):
    bad = client.patch("/events/event-1", json={"endDate": "2024-09-10T00:00:00Z"}, headers=ADMIN)
    assert bad.status_code == 400
    ok = client.patch("/events/event-1", json={"month": "Sept 2024"}, headers=ADMIN)
    assert ok.json()["month"] == "Sept 2024"


def test_sync_status_moves_forward_only(client, clock, team):
    client.post(
        "/events",
        json={"month": "Agosto 2024", "startDate": "2024-08-01T00:00:00Z", "endDate": "2024-08-25T00:00:00Z"},
        headers=ADMIN,
    )
    clock.at(days=3)
    moved = client.post("/events/sync-status", headers=ADMIN).json()["data"]
    assert [m["to"] for m in moved] == ["Closed"]
    assert client.post("/events/sync-status", headers=ADMIN).json()["data"] == []
    assert [e["id"] for e in client.get("/events/active", headers=ADMIN).json()["data"]] == ["event-1"]


def test_phase_endpoint(client, clock, team):
    clock.at(days=10)
    body = client.get("/events/event-1/phase", headers=as_user("col-1")).json()
    assert body["phase"] == "voting"
    assert body["progress"] == 42.9
    clock.at(days=30)
    assert client.get("/events/event-1/phase", headers=as_user("col-1")).json()["phase"] is None


def test_nomination_rules(client, clock, team):
    clock.at(days=2)
    candidates = client.get("/events/event-1/nominations/candidates", headers=SUPERVISOR).json()
    assert [c["id"] for c in candidates["data"]] == ["col-1", "col-2", "col-4", "col-3"]
    assert candidates["limit"] == 3

    assert nominate(client, "event-1", "col-1").status_code == 200
    assert nominate(client, "event-1", "col-1").status_code == 400
    assert nominate(client, "event-1", "col-mktg").status_code == 400
    assert nominate(client, "event-1", "coord-tech").status_code == 400
    assert nominate(client, "event-1", "col-2", user="col-3").status_code == 403
    assert nominate(client, "event-1", "col-2").status_code == 200
    assert nominate(client, "event-1", "col-3").status_code == 200
    limited = nominate(client, "event-1", "col-4")
    assert limited.status_code == 400
    assert "limit" in limited.json()["detail"]

    searched = client.get(
        "/events/event-1/nominations/candidates", params={"search": "kev"}, headers=SUPERVISOR
    ).json()
    assert [c["id"] for c in searched["data"]] == ["col-4"]
    assert searched["used"] == 3

    mine = client.get("/nominations/mine", headers=SUPERVISOR).json()["data"]
    assert len(mine) == 3
    assert all(n["eventName"] == "Septiembre 2024" and n["eventIsActive"] for n in mine)


def test_nomination_outside_phase(client, clock, team):
    clock.at(days=8)
    response = nominate(client, "event-1", "col-1")
    assert response.status_code == 400
    assert "nomination phase" in response.json()["detail"]


def test_remove_nomination(client, clock, team):
    clock.at(days=1)
    nomination = nominate(client, "event-1", "col-1").json()
    assert client.delete(f"/nominations/{nomination['id']}", headers=as_user("sup-mktg")).status_code == 403
    assert client.delete(f"/nominations/{nomination['id']}", headers=SUPERVISOR).status_code == 200
    assert client.delete(f"/nominations/{nomination['id']}", headers=SUPERVISOR).status_code == 404


def test_voting_rules(client, clock, team):
    run_nominations(client, clock, "event-1")
    assert vote(client, "event-1", "col-4", ["col-1"]).status_code == 400

    clock.at(days=10)
    nominees = client.get("/events/event-1/nominees", headers=as_user("col-4")).json()
    assert [n["id"] for n in nominees["data"]] == ["col-1", "col-2", "col-3"]
    assert nominees["voteLimit"] == 2
    assert nominees["hasVoted"] is False

    assert vote(client, "event-1", "col-4", ["col-1", "col-2", "col-3"]).status_code == 400
    assert vote(client, "event-1", "col-4", ["col-1", "col-1"]).status_code == 400
    assert vote(client, "event-1", "col-4", ["col-mktg"]).status_code == 400
    assert vote(client, "event-1", "col-1", ["col-1"]).status_code == 400
    assert vote(client, "event-1", "admin", ["col-1"]).status_code == 403
    assert vote(client, "event-1", "col-4", ["col-1", "col-2"]).status_code == 200
    assert vote(client, "event-1", "col-4", ["col-3"]).status_code == 400
    assert client.get("/events/event-1/nominees", headers=as_user("col-4")).json()["hasVoted"] is True


def test_evaluation_rules(client, clock, team):
    run_nominations(client, clock, "event-1")
    assert evaluate(client, "event-1", "col-4", "col-1", [8] * 5).status_code == 400

    clock.at(days=16)
    assert evaluate(client, "event-1", "col-4", "col-1", [8] * 4).status_code == 400
    assert evaluate(client, "event-1", "col-4", "col-1", [11, 8, 8, 8, 8]).status_code == 422
    assert evaluate(client, "event-1", "col-4", "col-mktg", [8] * 5).status_code == 400
    assert evaluate(client, "event-1", "col-1", "col-1", [8] * 5).status_code == 400
    assert evaluate(client, "event-1", "col-4", "col-1", [8] * 5).status_code == 200
    assert evaluate(client, "event-1", "col-4", "col-1", [9] * 5).status_code == 400
    assert client.get("/events/event-1/evaluations/mine", headers=as_user("col-4")).json()["data"] == ["col-1"]


def test_full_event_standings_and_results(client, clock, team):
    run_nominations(client, clock, "event-1")

    clock.at(days=10)
    assert vote(client, "event-1", "col-4", ["col-1", "col-2"]).status_code == 200
    assert vote(client, "event-1", "coord-tech", ["col-1"]).status_code == 200
    assert vote(client, "event-1", "col-2", ["col-1", "col-3"]).status_code == 200

    clock.at(days=16)
    assert evaluate(client, "event-1", "col-4", "col-1", [8, 9, 7, 8, 8]).status_code == 200
    assert evaluate(client, "event-1", "coord-tech", "col-1", [10] * 5).status_code == 200
    assert evaluate(client, "event-1", "col-4", "col-2", [5] * 5).status_code == 200

    standings = client.get("/events/event-1/standings", headers=as_user("col-3")).json()
    assert standings["phase"] == "evaluation"
    assert standings["refreshSeconds"] == 30
    assert [(s["nomineeId"], s["score"], s["position"]) for s in standings["standings"]] == [
        ("col-1", 90, 1),
        ("col-2", 50, 2),
        ("col-3", None, 3),
    ]
    assert standings["standings"][0]["name"] == "Alex Johnson"
    assert isinstance(standings["standings"][0]["score"], int)

    results = client.get("/events/event-1/results", headers=as_user("col-3")).json()
    assert results["winner"] is None
    assert results["totalBallots"] == 3
    assert [(r["id"], r["votes"]) for r in results["results"]] == [("col-1", 3), ("col-2", 1), ("col-3", 1)]
    assert results["nominationCounts"] == {"col-1": 1, "col-2": 1, "col-3": 1}

    assert client.post("/events/event-1/status", json={"status": "Closed"}, headers=ADMIN).status_code == 200
    results = client.get("/events/event-1/results", headers=as_user("col-3")).json()
    assert results["winner"]["nomineeId"] == "col-1"
    assert results["winner"]["basis"] == "votes"
    assert results["winner"]["count"] == 3
    assert results["winnerMessage"] == "¡Felicidades!"

    closed = client.get("/events/event-1/standings", headers=as_user("col-3")).json()
    assert closed["phase"] is None
    assert closed["refreshSeconds"] is None


def test_results_fall_back_to_nominations(client, clock, team):
    run_nominations(client, clock, "event-1")
    add_user("sup-tech-2", "Robert Hall", "Supervisor", "Technology")
    clock.at(days=3)
    assert nominate(client, "event-1", "col-4", user="sup-tech-2").status_code == 200
    client.post("/events/event-1/status", json={"status": "Closed"}, headers=ADMIN)
    winner = client.get("/events/event-1/results", headers=ADMIN).json()["winner"]
    assert winner["basis"] == "nominations"
    assert winner["nomineeId"] == "col-1"


def test_stats(client, clock, team):
    run_nominations(client, clock, "event-1")
    stats = client.get("/stats", headers=as_user("col-1")).json()
    assert stats["totalNominations"] == 3
    assert stats["activeEvents"] == 1
    assert stats["totalUsers"] == 9


def test_delete_event_removes_its_records(client, clock, team):
    run_nominations(client, clock, "event-1")
    response = client.delete("/events/event-1", headers=ADMIN)
    assert response.json()["removed"]["nominations"] == 3
    assert client.get("/events/event-1", headers=ADMIN).status_code == 404


def test_departments_crud(client, team):
    created = client.post("/departments", json={"name": "Legal", "displayName": "Legal"}, headers=ADMIN)
    assert created.status_code == 200
    assert client.post("/departments", json={"name": "Legal"}, headers=ADMIN).status_code == 400

    dept_id = created.json()["id"]
    updated = client.patch(f"/departments/{dept_id}", json={"isActive": False}, headers=ADMIN).json()
    assert updated["isActive"] is False
    active = client.get("/departments", params={"active_only": True}, headers=ADMIN).json()["data"]
    assert "Legal" not in [d["name"] for d in active]
    assert client.delete(f"/departments/{dept_id}", headers=ADMIN).status_code == 200

    tech = [d for d in client.get("/departments", headers=ADMIN).json()["data"] if d["name"] == "Technology"][0]
    assert client.delete(f"/departments/{tech['id']}", headers=ADMIN).status_code == 400


def test_audit_log_and_undo(client, team):
    client.patch("/users/col-1", json={"name": "Alexander Johnson"}, headers=ADMIN)
    logs = client.get("/audit-logs", params={"action": "Edit User"}, headers=ADMIN).json()["data"]
    assert len(logs) == 1
    entry = logs[0]
    assert entry["oldState"] == {"name": "Alex Johnson"}
    assert entry["canUndo"] is True

    undo = client.post(f"/audit-logs/{entry['id']}/undo", headers=ADMIN)
    assert undo.status_code == 200
    assert client.get("/users/col-1", headers=ADMIN).json()["name"] == "Alex Johnson"
    assert client.post(f"/audit-logs/{entry['id']}/undo", headers=ADMIN).status_code == 400

    undo_logs = client.get("/audit-logs", params={"action": "Undo Action"}, headers=ADMIN).json()["data"]
    assert undo_logs[0]["id"] == undo.json()["undoLogId"]


def test_status_changes_cannot_be_undone(client, team):
    client.post("/events/event-1/status", json={"status": "Closed"}, headers=ADMIN)
    entry = client.get("/audit-logs", params={"resourceType": "event"}, headers=ADMIN).json()["data"][0]
    assert entry["action"] == "Change Event Status"
    assert client.post(f"/audit-logs/{entry['id']}/undo", headers=ADMIN).status_code == 400


def test_users_list_and_delete(client, team):
    tech = client.get("/users", params={"department": "Technology"}, headers=ADMIN).json()["data"]
    assert [u["name"] for u in tech][:2] == ["Alex Johnson", "James Brown"]
    assert client.get("/users/col-2", headers=as_user("col-1")).status_code == 403
    assert client.get("/users/col-1", headers=as_user("col-1")).status_code == 200
    assert client.delete("/users/admin", headers=ADMIN).status_code == 400
    assert client.delete("/users/col-4", headers=ADMIN).status_code == 200
    assert client.get("/users/col-4", headers=ADMIN).status_code == 404


def test_reset(client, team):
    response = client.post("/admin/reset", headers=ADMIN)
    assert response.status_code == 200
    assert client.get("/events", headers=ADMIN).json()["data"] == []
    assert len(client.get("/departments", headers=ADMIN).json()["data"]) == 4


def test_null_fields_in_updates_are_ignored(client, team):
    assert client.patch("/events/event-1", json={"month": None}, headers=ADMIN).status_code == 400
    updated = client.patch(
        "/events/event-1", json={"month": None, "surveyQuestions": None, "winnerMessage": "Bravo"}, headers=ADMIN
    )
    assert updated.status_code == 200
    assert updated.json()["month"] == "Septiembre 2024"
    assert len(updated.json()["surveyQuestions"]) == 5
    assert client.get("/events/event-1/phase", headers=as_user("col-1")).json()["phase"] == "nomination"

    assert client.patch("/users/col-1", json={"name": None, "role": None}, headers=ADMIN).status_code == 400
    assert client.get("/users/col-1", headers=ADMIN).json()["name"] == "Alex Johnson"

    tech = [d for d in client.get("/departments", headers=ADMIN).json()["data"] if d["name"] == "Technology"][0]
    assert client.patch(f"/departments/{tech['id']}", json={"isActive": None}, headers=ADMIN).status_code == 400


def test_promoting_to_admin_clears_department(client, team):
    promoted = client.patch("/users/coord-tech", json={"role": "Admin"}, headers=ADMIN).json()
    assert promoted["role"] == "Admin"
    assert promoted["department"] is None


def test_undo_cannot_shrink_event_window(client, team):
    client.patch("/events/event-1", json={"endDate": "2024-10-01T00:00:00Z"}, headers=ADMIN)
    assert client.patch("/events/event-1", json={"startDate": "2024-09-11T00:00:00Z"}, headers=ADMIN).status_code == 200

    edits = client.get("/audit-logs", params={"action": "Edit Event"}, headers=ADMIN).json()["data"]
    end_edit = [e for e in edits if "endDate" in e["newState"]][0]
    response = client.post(f"/audit-logs/{end_edit['id']}/undo", headers=ADMIN)
    assert response.status_code == 400
    assert "window" in response.json()["detail"]

    event = client.get("/events/event-1", headers=ADMIN).json()
    assert event["startDate"].startswith("2024-09-11")
    assert event["endDate"].startswith("2024-10-01")


def test_undo_cannot_edit_closed_event(client, team):
    client.patch("/events/event-1", json={"month": "Sept 2024"}, headers=ADMIN)
    client.post("/events/event-1/status", json={"status": "Closed"}, headers=ADMIN)
    edit = client.get("/audit-logs", params={"action": "Edit Event"}, headers=ADMIN).json()["data"][0]
    assert client.post(f"/audit-logs/{edit['id']}/undo", headers=ADMIN).status_code == 400
    assert client.get("/events/event-1", headers=ADMIN).json()["month"] == "Sept 2024"


def test_undo_restores_event_edit(client, team):
    client.patch("/events/event-1", json={"endDate": "2024-10-01T00:00:00Z"}, headers=ADMIN)
    edit = client.get("/audit-logs", params={"action": "Edit Event"}, headers=ADMIN).json()["data"][0]
    assert client.post(f"/audit-logs/{edit['id']}/undo", headers=ADMIN).status_code == 200
    assert client.get("/events/event-1", headers=ADMIN).json()["endDate"].startswith("2024-09-22")
