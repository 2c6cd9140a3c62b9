import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

import audit
import database
from accounts import ProvisioningError, avatar_url, generate_email, generate_temp_password, mask
from audit import AuditError
from config import Settings, load_settings
from database import (
    DEPARTMENTS,
    NOMINATIONS,
    SURVEY_EVALUATIONS,
    USERS,
    VOTES,
    VOTING_EVENTS,
    DatabaseUnavailable,
    count_documents,
    create_document,
    delete_document,
    delete_documents,
    find_one,
    get_document,
    get_documents,
    update_document,
)
from lifecycle import (
    EventConfigError,
    StatusTransitionError,
    check_transition,
    forward_status,
    validate_event_window,
)
from schemas import (
    AuditLog,
    DEFAULT_SURVEY_QUESTIONS,
    Department,
    DepartmentIn,
    DepartmentUpdate,
    EvaluationIn,
    EventCreate,
    EventUpdate,
    LoginRequest,
    Nomination,
    NominationIn,
    StatusChange,
    SurveyEvaluation,
    User,
    UserCreate,
    UserUpdate,
    Vote,
    VoteIn,
    VotingEvent,
)
from seed import ensure_seed_data, reset_with_seed_data
from standings import (
    current_phase,
    determine_winner,
    event_status_for,
    nominee_pool,
    phase_boundaries,
    rank,
    score_standings,
    selection_limit,
    tally_nominations,
    vote_counts_with_pool,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = getattr(app.state, "settings", None) or load_settings()
    app.state.settings = settings
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if database.db is None:
        database.init_db(settings.database_url, settings.database_name)
    if database.db is not None:
        ensure_seed_data()
    logger.info("Soy El Mejor backend started (auth mode: %s)", settings.auth_mode)
    yield


app = FastAPI(title="Soy El Mejor - Employee Recognition Voting", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DatabaseUnavailable)
async def database_unavailable_handler(request: Request, exc: DatabaseUnavailable):
    return JSONResponse(status_code=500, content={"detail": "Database not available"})


# -----------------------------
# Dependencies
# -----------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_now() -> datetime:
    return datetime.now(timezone.utc)


def current_user(
    x_user_id: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    user_id = x_user_id
    if not user_id and settings.auth_mode == "dev":
        user_id = settings.dev_user_id
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")

    user = get_document(USERS, user_id)
    if user is None or not user.get("isActive", True):
        raise HTTPException(status_code=401, detail="Unknown or inactive user")
    return user


def require_roles(*roles: str):
    def dependency(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail=f"Requires role: {', '.join(roles)}")
        return user
    return dependency


admin_only = require_roles("Admin")
supervisor_only = require_roles("Supervisor")
participant = require_roles("Supervisor", "Coordinator", "Collaborator")

# -----------------------------
# Helpers
# -----------------------------

def load_event(event_id: str) -> VotingEvent:
    doc = get_document(VOTING_EVENTS, event_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Voting event not found")
    return VotingEvent(**doc)


def load_user(user_id: str) -> Dict[str, Any]:
    user = get_document(USERS, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def require_department(name: Optional[str]) -> None:
    if find_one(DEPARTMENTS, {"name": name}) is None:
        raise HTTPException(status_code=400, detail=f"Unknown department: {name}")


def require_phase(event: VotingEvent, phase: str, now: datetime) -> None:
    info = current_phase(event, now)
    if info is None or info.phase != phase:
        current = info.phase if info else None
        logger.warning("Rejected %s action on %s (current phase: %s)", phase, event.id, current)
        raise HTTPException(
            status_code=400,
            detail=f"The {phase} phase is not open for this event (current phase: {current})",
        )


def event_nominations(event_id: str) -> List[Nomination]:
    return [Nomination(**d) for d in get_documents(NOMINATIONS, {"eventId": event_id})]


def team_members(department: Optional[str]) -> List[Dict[str, Any]]:
    """Active collaborators of a department, by name."""
    return [
        u for u in get_documents(USERS, {"department": department, "role": "Collaborator"}, sort=[("name", 1)])
        if u.get("isActive", True)
    ]


def changed_fields(before: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    return {k: before.get(k) for k in changes}


async def gather_event_data(event_id: str):
    """Fetch the event's nominations, votes, evaluations and users concurrently."""
    nominations, votes, evaluations, users = await asyncio.gather(
        run_in_threadpool(get_documents, NOMINATIONS, {"eventId": event_id}),
        run_in_threadpool(get_documents, VOTES, {"eventId": event_id}),
        run_in_threadpool(get_documents, SURVEY_EVALUATIONS, {"eventId": event_id}),
        run_in_threadpool(get_documents, USERS),
    )
    return (
        [Nomination(**d) for d in nominations],
        [Vote(**d) for d in votes],
        [SurveyEvaluation(**d) for d in evaluations],
        {u["id"]: u for u in users},
    )


def user_card(users: Dict[str, Dict[str, Any]], user_id: str) -> Dict[str, Any]:
    u = users.get(user_id, {})
    return {
        "id": user_id,
        "name": u.get("name", "Unknown"),
        "department": u.get("department"),
        "avatar": u.get("avatar"),
    }


def phase_payload(event: VotingEvent, now: datetime) -> Dict[str, Any]:
    info = current_phase(event, now)
    bounds = phase_boundaries(event)
    return {
        "phase": info.phase if info else None,
        "progress": round(info.progress, 1) if info else None,
        "phaseStart": info.phaseStart if info else None,
        "phaseEnd": info.phaseEnd if info else None,
        "boundaries": bounds.model_dump() if bounds else None,
    }


# -----------------------------
# Routes
# -----------------------------

@app.get("/")
def root():
    return {"message": "Soy El Mejor Backend Running"}


@app.get("/test")
def test_database(settings: Settings = Depends(get_settings)):
    db = database.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available" if db is None else "✅ Connected",
        "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
        "database_name": settings.database_name,
        "auth_mode": settings.auth_mode,
        "collections": [],
    }
    try:
        if db is not None:
            response["collections"] = db.list_collection_names()
    except Exception as e:
        response["database"] = f"⚠️ Error: {str(e)[:80]}"
    return response


@app.post("/login", response_model=User)
def login(payload: LoginRequest):
    """Identity lookup by email; credential checks belong to the identity provider."""
    user = find_one(USERS, {"email": payload.email.strip().lower()})
    if user is None or not user.get("isActive", True):
        raise HTTPException(status_code=401, detail="Unknown user")
    audit.log_action(user, audit.LOGIN, resource_type="user", resource_id=user["id"])
    return user


@app.get("/me", response_model=User)
def me(user: Dict[str, Any] = Depends(current_user)):
    return user


@app.get("/stats")
def stats(user: Dict[str, Any] = Depends(current_user)):
    return {
        "totalUsers": count_documents(USERS),
        "totalEvents": count_documents(VOTING_EVENTS),
        "activeEvents": count_documents(VOTING_EVENTS, {"status": "Active"}),
        "totalNominations": count_documents(NOMINATIONS),
        "totalVotes": count_documents(VOTES),
        "totalEvaluations": count_documents(SURVEY_EVALUATIONS),
    }


# ---------- users ----------

@app.get("/users")
def list_users(department: Optional[str] = None, admin: Dict[str, Any] = Depends(admin_only)):
    query = {"department": department} if department else {}
    return {"data": get_documents(USERS, query, sort=[("name", 1)])}


@app.get("/users/{user_id}", response_model=User)
def get_user(user_id: str, user: Dict[str, Any] = Depends(current_user)):
    if user["role"] != "Admin" and user["id"] != user_id:
        raise HTTPException(status_code=403, detail="Requires role: Admin")
    return load_user(user_id)


@app.post("/users")
def provision_user(payload: UserCreate, admin: Dict[str, Any] = Depends(admin_only)):
    """Create a user account and return its temporary password once."""
    if payload.role != "Admin":
        if not payload.department:
            raise HTTPException(status_code=400, detail="Department is required for non-Admin roles")
        require_department(payload.department)

    try:
        email = (payload.email or "").strip().lower() or generate_email(payload.name)
        temp_password = generate_temp_password(payload.name, payload.cedula)
    except ProvisioningError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if find_one(USERS, {"email": email}) is not None:
        raise HTTPException(status_code=400, detail=f"Email already in use: {email}")

    user_doc = {
        "name": payload.name.strip(),
        "email": email,
        "role": payload.role,
        "department": None if payload.role == "Admin" else payload.department,
        "avatar": avatar_url(payload.name),
        "cedula": payload.cedula.strip(),
        "isActive": True,
    }
    user_id = create_document(USERS, user_doc)
    audit.log_action(
        admin, audit.CREATE_USER,
        details={"email": email, "role": payload.role},
        resource_type="user", resource_id=user_id, severity="medium",
    )
    logger.info("Provisioned user %s (%s), temp password %s", user_id, email, mask(temp_password))
    return {"userId": user_id, "email": email, "tempPassword": temp_password}


@app.patch("/users/{user_id}", response_model=User)
def update_user(user_id: str, payload: UserUpdate, admin: Dict[str, Any] = Depends(admin_only)):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    existing = load_user(user_id)
    role = changes.get("role", existing["role"])
    if "department" in changes or "role" in changes:
        department = changes.get("department", existing.get("department"))
        if role == "Admin":
            changes["department"] = None
        else:
            if not department:
                raise HTTPException(status_code=400, detail="Department is required for non-Admin roles")
            require_department(department)
    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
        other = find_one(USERS, {"email": changes["email"]})
        if other is not None and other["id"] != user_id:
            raise HTTPException(status_code=400, detail=f"Email already in use: {changes['email']}")

    before = update_document(USERS, user_id, changes)
    audit.log_action(
        admin, audit.EDIT_USER,
        resource_type="user", resource_id=user_id, severity="medium",
        old_state=changed_fields(before, changes), new_state=changes, can_undo=True,
    )
    return load_user(user_id)


@app.delete("/users/{user_id}")
def delete_user(user_id: str, admin: Dict[str, Any] = Depends(admin_only)):
    if user_id == admin["id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    existing = load_user(user_id)
    delete_document(USERS, user_id)
    audit.log_action(
        admin, audit.DELETE_USER,
        details={"email": existing.get("email")},
        resource_type="user", resource_id=user_id, severity="high",
    )
    return {"status": "ok"}


# ---------- departments ----------

@app.get("/departments")
def list_departments(active_only: bool = False, user: Dict[str, Any] = Depends(current_user)):
    query = {"isActive": True} if active_only else {}
    return {"data": get_documents(DEPARTMENTS, query, sort=[("name", 1)])}


@app.post("/departments", response_model=Department)
def create_department(payload: DepartmentIn, admin: Dict[str, Any] = Depends(admin_only)):
    if find_one(DEPARTMENTS, {"name": payload.name}) is not None:
        raise HTTPException(status_code=400, detail=f"Department already exists: {payload.name}")
    dept_id = create_document(DEPARTMENTS, payload)
    audit.log_action(admin, audit.CREATE_DEPARTMENT, resource_type="department", resource_id=dept_id)
    return get_document(DEPARTMENTS, dept_id)


@app.patch("/departments/{dept_id}", response_model=Department)
def update_department(dept_id: str, payload: DepartmentUpdate, admin: Dict[str, Any] = Depends(admin_only)):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    before = update_document(DEPARTMENTS, dept_id, changes)
    if before is None:
        raise HTTPException(status_code=404, detail="Department not found")
    audit.log_action(
        admin, audit.EDIT_DEPARTMENT,
        resource_type="department", resource_id=dept_id,
        old_state=changed_fields(before, changes), new_state=changes, can_undo=True,
    )
    return get_document(DEPARTMENTS, dept_id)


@app.delete("/departments/{dept_id}")
def delete_department(dept_id: str, admin: Dict[str, Any] = Depends(admin_only)):
    dept = get_document(DEPARTMENTS, dept_id)
    if dept is None:
        raise HTTPException(status_code=404, detail="Department not found")
    members = count_documents(USERS, {"department": dept["name"]})
    if members:
        raise HTTPException(status_code=400, detail=f"Department still has {members} user(s)")
    delete_document(DEPARTMENTS, dept_id)
    audit.log_action(
        admin, audit.DELETE_DEPARTMENT,
        details={"name": dept["name"]},
        resource_type="department", resource_id=dept_id, severity="high",
    )
    return {"status": "ok"}


# ---------- voting events ----------

@app.get("/events")
def list_events(user: Dict[str, Any] = Depends(current_user)):
    return {"data": get_documents(VOTING_EVENTS, sort=[("created_at", -1)])}


@app.get("/events/active")
def active_events(user: Dict[str, Any] = Depends(current_user)):
    return {"data": get_documents(VOTING_EVENTS, {"status": "Active"}, sort=[("startDate", 1)])}


@app.post("/events/sync-status")
def sync_event_statuses(admin: Dict[str, Any] = Depends(admin_only), now: datetime = Depends(get_now)):
    """Move every event forward to the status its dates imply."""
    updated = []
    for doc in get_documents(VOTING_EVENTS):
        event = VotingEvent(**doc)
        new_status = forward_status(event.status, event_status_for(event, now))
        if new_status == event.status:
            continue
        update_document(VOTING_EVENTS, event.id, {"status": new_status})
        audit.log_action(
            admin, audit.CHANGE_EVENT_STATUS,
            details={"from": event.status, "to": new_status, "reason": "dates"},
            resource_type="event", resource_id=event.id, severity="medium",
        )
        logger.info("Event %s status %s -> %s (dates)", event.id, event.status, new_status)
        updated.append({"id": event.id, "from": event.status, "to": new_status})
    return {"data": updated}


@app.get("/events/{event_id}")
def get_event(event_id: str, user: Dict[str, Any] = Depends(current_user)):
    return load_event(event_id)


@app.post("/events")
def create_event(payload: EventCreate, admin: Dict[str, Any] = Depends(admin_only)):
    try:
        validate_event_window(payload.startDate, payload.endDate)
    except EventConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    questions = payload.surveyQuestions if payload.surveyQuestions else DEFAULT_SURVEY_QUESTIONS
    event_doc = {
        "month": payload.month,
        "status": "Pending",
        "startDate": payload.startDate,
        "endDate": payload.endDate,
        "surveyQuestions": [q.model_dump() for q in questions],
        "winnerMessage": payload.winnerMessage,
        "createdBy": admin["id"],
    }
    event_id = create_document(VOTING_EVENTS, event_doc)
    audit.log_action(
        admin, audit.CREATE_EVENT,
        details={"month": payload.month},
        resource_type="event", resource_id=event_id, severity="medium",
    )
    logger.info("Created voting event %s (%s)", event_id, payload.month)
    return load_event(event_id)


@app.patch("/events/{event_id}")
def update_event(event_id: str, payload: EventUpdate, admin: Dict[str, Any] = Depends(admin_only)):
    event = load_event(event_id)
    if event.status == "Closed":
        raise HTTPException(status_code=409, detail="Closed events cannot be edited")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")

    if "startDate" in changes or "endDate" in changes:
        try:
            validate_event_window(
                changes.get("startDate", event.startDate),
                changes.get("endDate", event.endDate),
            )
        except EventConfigError as e:
            raise HTTPException(status_code=400, detail=str(e))

    before = update_document(VOTING_EVENTS, event_id, changes)
    audit.log_action(
        admin, audit.EDIT_EVENT,
        resource_type="event", resource_id=event_id, severity="medium",
        old_state=changed_fields(before, changes), new_state=changes, can_undo=True,
    )
    return load_event(event_id)


@app.delete("/events/{event_id}")
def delete_event(event_id: str, admin: Dict[str, Any] = Depends(admin_only)):
    event = load_event(event_id)
    removed = {
        name: delete_documents(name, {"eventId": event_id})
        for name in (NOMINATIONS, VOTES, SURVEY_EVALUATIONS)
    }
    delete_document(VOTING_EVENTS, event_id)
    audit.log_action(
        admin, audit.DELETE_EVENT,
        details={"month": event.month, "removed": removed},
        resource_type="event", resource_id=event_id, severity="high",
    )
    return {"status": "ok", "removed": removed}


@app.post("/events/{event_id}/status")
def change_event_status(event_id: str, payload: StatusChange, admin: Dict[str, Any] = Depends(admin_only)):
    event = load_event(event_id)
    try:
        check_transition(event.status, payload.status)
    except StatusTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if payload.status == "Active" and (event.startDate is None or event.endDate is None):
        raise HTTPException(status_code=400, detail="An event needs startDate and endDate to become Active")

    update_document(VOTING_EVENTS, event_id, {"status": payload.status})
    audit.log_action(
        admin, audit.CHANGE_EVENT_STATUS,
        details={"from": event.status, "to": payload.status},
        resource_type="event", resource_id=event_id, severity="medium",
    )
    logger.info("Event %s status %s -> %s", event_id, event.status, payload.status)
    return load_event(event_id)


@app.get("/events/{event_id}/phase")
def event_phase(event_id: str, user: Dict[str, Any] = Depends(current_user), now: datetime = Depends(get_now)):
    event = load_event(event_id)
    return {"eventId": event_id, "status": event.status, **phase_payload(event, now)}


# ---------- nominations ----------

@app.get("/nominations/mine")
def my_nominations(user: Dict[str, Any] = Depends(supervisor_only)):
    events = {e["id"]: e for e in get_documents(VOTING_EVENTS)}
    users = {u["id"]: u for u in get_documents(USERS)}
    data = []
    for nom in get_documents(NOMINATIONS, {"nominatedById": user["id"]}, sort=[("nominationDate", -1)]):
        event = events.get(nom["eventId"], {})
        data.append({
            **nom,
            "collaboratorName": users.get(nom["collaboratorId"], {}).get("name", "Unknown"),
            "eventName": event.get("month", "Unknown event"),
            "eventIsActive": event.get("status") == "Active",
        })
    return {"data": data}


@app.get("/events/{event_id}/nominations/candidates")
def nomination_candidates(event_id: str, search: str = "", user: Dict[str, Any] = Depends(supervisor_only)):
    """Own-department collaborators not yet nominated for the event."""
    load_event(event_id)
    team = team_members(user.get("department"))
    nominations = event_nominations(event_id)
    nominated = nominee_pool(event_id, nominations)
    used = sum(1 for n in nominations if n.nominatedById == user["id"])
    term = search.strip().lower()
    available = [u for u in team if u["id"] not in nominated and term in u["name"].lower()]
    return {"data": available, "limit": selection_limit(len(team)), "used": used}


@app.post("/events/{event_id}/nominations")
def nominate(
    event_id: str,
    payload: NominationIn,
    user: Dict[str, Any] = Depends(supervisor_only),
    now: datetime = Depends(get_now),
):
    event = load_event(event_id)
    require_phase(event, "nomination", now)

    collaborator = get_document(USERS, payload.collaboratorId)
    if collaborator is None or collaborator.get("role") != "Collaborator":
        raise HTTPException(status_code=400, detail="Only collaborators can be nominated")
    if collaborator.get("department") != user.get("department"):
        raise HTTPException(status_code=400, detail="You can only nominate collaborators from your department")

    nominations = event_nominations(event_id)
    if payload.collaboratorId in nominee_pool(event_id, nominations):
        raise HTTPException(status_code=400, detail=f"{collaborator['name']} is already nominated for this event")

    team_size = len(team_members(user.get("department")))
    limit = selection_limit(team_size)
    used = sum(1 for n in nominations if n.nominatedById == user["id"])
    if used >= limit:
        logger.warning("Supervisor %s hit nomination limit %d on %s", user["id"], limit, event_id)
        raise HTTPException(status_code=400, detail=f"Nomination limit reached ({limit})")

    nomination_id = create_document(NOMINATIONS, {
        "eventId": event_id,
        "collaboratorId": payload.collaboratorId,
        "nominatedById": user["id"],
        "nominationDate": now,
        "reason": payload.reason,
        "department": collaborator.get("department"),
    })
    audit.log_action(
        user, audit.NOMINATE,
        details={"collaboratorId": payload.collaboratorId, "eventId": event_id},
        resource_type="nomination", resource_id=nomination_id,
    )
    return get_document(NOMINATIONS, nomination_id)


@app.delete("/nominations/{nomination_id}")
def remove_nomination(nomination_id: str, user: Dict[str, Any] = Depends(supervisor_only)):
    nomination = get_document(NOMINATIONS, nomination_id)
    if nomination is None:
        raise HTTPException(status_code=404, detail="Nomination not found")
    if nomination["nominatedById"] != user["id"]:
        raise HTTPException(status_code=403, detail="You can only remove your own nominations")
    event = load_event(nomination["eventId"])
    if event.status != "Active":
        raise HTTPException(status_code=400, detail="Nominations can only be removed while the event is Active")

    delete_document(NOMINATIONS, nomination_id)
    audit.log_action(
        user, audit.REMOVE_NOMINATION,
        details={"collaboratorId": nomination["collaboratorId"], "eventId": event.id},
        resource_type="nomination", resource_id=nomination_id,
    )
    return {"status": "ok"}


# ---------- votes ----------

@app.get("/events/{event_id}/nominees")
def list_nominees(event_id: str, user: Dict[str, Any] = Depends(current_user)):
    load_event(event_id)
    pool = nominee_pool(event_id, event_nominations(event_id))
    nominees = sorted(
        (u for u in get_documents(USERS, {"id": {"$in": sorted(pool)}})),
        key=lambda u: u["name"],
    )
    has_voted = find_one(VOTES, {"eventId": event_id, "voterId": user["id"]}) is not None
    return {"data": nominees, "voteLimit": selection_limit(len(pool)), "hasVoted": has_voted}


@app.post("/events/{event_id}/votes")
def cast_vote(
    event_id: str,
    payload: VoteIn,
    user: Dict[str, Any] = Depends(participant),
    now: datetime = Depends(get_now),
):
    """Save one ballot per voter per event. Prevent duplicate ballots."""
    event = load_event(event_id)
    require_phase(event, "voting", now)

    ids = payload.votedForIds
    if len(set(ids)) != len(ids):
        raise HTTPException(status_code=400, detail="Each nominee can only be selected once")
    if user["id"] in ids:
        raise HTTPException(status_code=400, detail="You cannot vote for yourself")

    pool = nominee_pool(event_id, event_nominations(event_id))
    outside = [i for i in ids if i not in pool]
    if outside:
        raise HTTPException(status_code=400, detail=f"Not nominated for this event: {', '.join(outside)}")
    limit = selection_limit(len(pool))
    if len(ids) > limit:
        raise HTTPException(status_code=400, detail=f"You can select at most {limit} nominee(s)")

    if find_one(VOTES, {"eventId": event_id, "voterId": user["id"]}) is not None:
        raise HTTPException(status_code=400, detail="You have already voted in this event.")

    vote_id = create_document(VOTES, {
        "eventId": event_id,
        "voterId": user["id"],
        "votedForIds": ids,
        "voteDate": now,
        "voterDepartment": user.get("department"),
    })
    audit.log_action(
        user, audit.VOTE,
        details={"eventId": event_id, "count": len(ids)},
        resource_type="vote", resource_id=vote_id,
    )
    return {"status": "ok", "voteId": vote_id, "count": len(ids)}


# ---------- survey ----------

@app.get("/events/{event_id}/evaluations/mine")
def my_evaluations(event_id: str, user: Dict[str, Any] = Depends(participant)):
    docs = get_documents(SURVEY_EVALUATIONS, {"eventId": event_id, "evaluatorId": user["id"]})
    return {"data": [d["evaluatedUserId"] for d in docs]}


@app.post("/events/{event_id}/evaluations")
def submit_evaluation(
    event_id: str,
    payload: EvaluationIn,
    user: Dict[str, Any] = Depends(participant),
    now: datetime = Depends(get_now),
):
    event = load_event(event_id)
    require_phase(event, "evaluation", now)

    if payload.evaluatedUserId == user["id"]:
        raise HTTPException(status_code=400, detail="You cannot evaluate yourself")
    if payload.evaluatedUserId not in nominee_pool(event_id, event_nominations(event_id)):
        raise HTTPException(status_code=400, detail="Only nominees can be evaluated")

    expected = len(event.surveyQuestions)
    if expected == 0:
        raise HTTPException(status_code=400, detail="This event has no survey questions")
    if len(payload.scores) != expected:
        raise HTTPException(status_code=400, detail=f"Expected {expected} scores, got {len(payload.scores)}")

    existing = find_one(SURVEY_EVALUATIONS, {
        "eventId": event_id,
        "evaluatorId": user["id"],
        "evaluatedUserId": payload.evaluatedUserId,
    })
    if existing:
        raise HTTPException(status_code=400, detail="You have already evaluated this nominee.")

    evaluated = get_document(USERS, payload.evaluatedUserId) or {}
    evaluation_id = create_document(SURVEY_EVALUATIONS, {
        "eventId": event_id,
        "evaluatorId": user["id"],
        "evaluatedUserId": payload.evaluatedUserId,
        "scores": payload.scores,
        "evaluationDate": now,
        "comments": payload.comments,
        "evaluatorDepartment": user.get("department"),
        "evaluatedUserDepartment": evaluated.get("department"),
    })
    audit.log_action(
        user, audit.COMPLETE_SURVEY,
        details={"eventId": event_id, "evaluatedUserId": payload.evaluatedUserId},
        resource_type="evaluation", resource_id=evaluation_id,
    )
    return {"status": "ok", "evaluationId": evaluation_id}


# ---------- standings & results ----------

@app.get("/events/{event_id}/standings")
async def live_standings(
    event_id: str,
    user: Dict[str, Any] = Depends(current_user),
    now: datetime = Depends(get_now),
    settings: Settings = Depends(get_settings),
):
    """Real-time ranking by peer evaluation score (0-100, None = no data yet)."""
    event = await run_in_threadpool(load_event, event_id)
    nominations, _votes, evaluations, users = await gather_event_data(event_id)

    ranking = rank(score_standings(event_id, nominations, evaluations))
    return {
        "eventId": event_id,
        "month": event.month,
        "status": event.status,
        **phase_payload(event, now),
        "standings": [{**s.model_dump(), **user_card(users, s.nomineeId)} for s in ranking],
        "refreshSeconds": settings.standings_refresh_seconds if event.status == "Active" else None,
    }


@app.get("/events/{event_id}/results")
async def event_results(event_id: str, user: Dict[str, Any] = Depends(current_user)):
    """Vote ranking for the event; the winner is only reported once the event is Closed."""
    event = await run_in_threadpool(load_event, event_id)
    nominations, votes, _evaluations, users = await gather_event_data(event_id)

    ranking = rank(vote_counts_with_pool(event_id, nominations, votes))
    winner = determine_winner(event_id, nominations, votes) if event.status == "Closed" else None
    return {
        "eventId": event_id,
        "month": event.month,
        "status": event.status,
        "totalBallots": len(votes),
        "results": [
            {**user_card(users, s.nomineeId), "votes": s.score or 0, "position": s.position}
            for s in ranking
        ],
        "nominationCounts": tally_nominations(event_id, nominations),
        "winner": {**winner.model_dump(), **user_card(users, winner.nomineeId)} if winner else None,
        "winnerMessage": event.winnerMessage if winner else None,
    }


# ---------- audit ----------

@app.get("/audit-logs")
def audit_logs(
    action: Optional[str] = None,
    userId: Optional[str] = None,
    resourceType: Optional[str] = None,
    severity: Optional[str] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=audit.MAX_LIMIT),
    admin: Dict[str, Any] = Depends(admin_only),
):
    logs = audit.get_logs(
        action=action,
        user_id=userId,
        resource_type=resourceType,
        severity=severity,
        start=startDate,
        end=endDate,
        limit=limit,
    )
    return {"data": [AuditLog(**entry) for entry in logs]}


@app.post("/audit-logs/{log_id}/undo")
def undo_audit_entry(log_id: str, admin: Dict[str, Any] = Depends(admin_only)):
    try:
        undo_id = audit.undo_action(log_id, admin)
    except AuditError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "ok", "undoLogId": undo_id}


# ---------- admin ----------

@app.post("/admin/reset")
def reset_data(admin: Dict[str, Any] = Depends(admin_only)):
    """Wipe every collection and reseed the defaults."""
    deleted = reset_with_seed_data()
    audit.log_action(admin, audit.RESET_DATA, details={"deleted": deleted}, resource_type="system", severity="critical")
    return {"status": "ok", "deleted": deleted}


if __name__ == "__main__":
    import uvicorn
    settings = load_settings()
    app.state.settings = settings
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
