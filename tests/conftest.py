from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
from config import Settings
from schemas import DEFAULT_SURVEY_QUESTIONS

START = datetime(2024, 9, 1, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def at(self, **delta):
        self.now = START + timedelta(**delta)


@pytest.fixture
def db():
    handle = mongomock.MongoClient()["soy_el_mejor_test"]
    database.set_db(handle)
    yield handle
    database.set_db(None)


@pytest.fixture
def clock():
    return Clock(START + timedelta(days=2))


@pytest.fixture
def client(db, clock):
    main.app.state.settings = Settings(auth_mode="header")
    main.app.dependency_overrides[main.get_now] = clock
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


def add_user(user_id, name, role, department=None):
    database.create_document(database.USERS, {
        "id": user_id,
        "name": name,
        "email": f"{user_id}@soyelmejor.com",
        "role": role,
        "department": department,
        "isActive": True,
    })
    return user_id


@pytest.fixture
def team(client):
    """A Technology team and an Active event starting on START, lasting 21 days."""
    add_user("sup-tech", "Sofia Davis", "Supervisor", "Technology")
    add_user("coord-tech", "Maria Garcia", "Coordinator", "Technology")
    add_user("col-1", "Alex Johnson", "Collaborator", "Technology")
    add_user("col-2", "James Brown", "Collaborator", "Technology")
    add_user("col-3", "Linda Miller", "Collaborator", "Technology")
    add_user("col-4", "Kevin Lee", "Collaborator", "Technology")
    add_user("sup-mktg", "David Smith", "Supervisor", "Marketing")
    add_user("col-mktg", "Emily White", "Collaborator", "Marketing")
    database.create_document(database.VOTING_EVENTS, {
        "id": "event-1",
        "month": "Septiembre 2024",
        "status": "Active",
        "startDate": START,
        "endDate": START + timedelta(days=21),
        "surveyQuestions": [q.model_dump() for q in DEFAULT_SURVEY_QUESTIONS],
        "winnerMessage": "¡Felicidades!",
    })
    return "event-1"


def as_user(user_id):
    return {"X-User-Id": user_id}
