"""
Audit trail: every state-changing action writes one entry to `audit_logs`.

Entries for plain field updates keep the previous values (`oldState`) so
an admin can roll the change back with undo_action().
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from database import (
    AUDIT_LOGS,
    DEPARTMENTS,
    USERS,
    VOTING_EVENTS,
    create_document,
    get_document,
    get_documents,
    update_document,
)
from lifecycle import EventConfigError, validate_event_window
from schemas import as_utc

logger = logging.getLogger(__name__)

LOGIN = "Login"
CREATE_USER = "Create User"
EDIT_USER = "Edit User"
DELETE_USER = "Delete User"
CREATE_DEPARTMENT = "Create Department"
EDIT_DEPARTMENT = "Edit Department"
DELETE_DEPARTMENT = "Delete Department"
CREATE_EVENT = "Create Event"
EDIT_EVENT = "Edit Event"
DELETE_EVENT = "Delete Event"
CHANGE_EVENT_STATUS = "Change Event Status"
NOMINATE = "Nominate Collaborator"
REMOVE_NOMINATION = "Remove Nomination"
VOTE = "Vote"
COMPLETE_SURVEY = "Complete Survey"
RESET_DATA = "Reset Data"
UNDO = "Undo Action"

UNDOABLE_COLLECTIONS = {
    "user": USERS,
    "event": VOTING_EVENTS,
    "department": DEPARTMENTS,
}

MAX_LIMIT = 500


class AuditError(ValueError):
    pass


def log_action(
    actor: Dict[str, Any],
    action: str,
    details: Optional[Dict[str, Any]] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    severity: str = "low",
    old_state: Optional[Dict[str, Any]] = None,
    new_state: Optional[Dict[str, Any]] = None,
    can_undo: bool = False,
) -> str:
    entry = {
        "userId": actor.get("id", ""),
        "userName": actor.get("name"),
        "action": action,
        "timestamp": datetime.now(timezone.utc),
        "details": details or {},
        "resourceType": resource_type,
        "resourceId": resource_id,
        "severity": severity,
        "success": True,
        "oldState": old_state,
        "newState": new_state,
        "canUndo": can_undo and old_state is not None,
        "isUndone": False,
    }
    log_id = create_document(AUDIT_LOGS, entry)
    logger.info("%s by %s on %s %s", action, entry["userId"], resource_type, resource_id)
    return log_id


def get_logs(
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    severity: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if action:
        query["action"] = action
    if user_id:
        query["userId"] = user_id
    if resource_type:
        query["resourceType"] = resource_type
    if severity:
        query["severity"] = severity
    if start or end:
        query["timestamp"] = {}
        if start:
            query["timestamp"]["$gte"] = start
        if end:
            query["timestamp"]["$lte"] = end

    limit = max(1, min(limit, MAX_LIMIT))
    return get_documents(AUDIT_LOGS, query, limit=limit, sort=[("timestamp", -1)])


def _check_event_restore(event_id: str, old_state: Dict[str, Any]) -> None:
    """Restored fields must leave the event editable and its window valid."""
    current = get_document(VOTING_EVENTS, event_id)
    if current is None:
        raise AuditError("The affected resource no longer exists")
    if current.get("status") == "Closed":
        raise AuditError("Closed events cannot be edited")
    merged = {**current, **old_state}
    try:
        validate_event_window(as_utc(merged.get("startDate")), as_utc(merged.get("endDate")))
    except EventConfigError as e:
        raise AuditError(f"Undo would leave an invalid event window: {e}")


def undo_action(log_id: str, actor: Dict[str, Any]) -> str:
    """
    Restore the previous field values recorded by an update entry.
    Returns the id of the new "Undo Action" entry.
    """
    entry = get_document(AUDIT_LOGS, log_id)
    if entry is None:
        raise AuditError("Audit log entry not found")
    if not entry.get("canUndo") or not entry.get("oldState"):
        raise AuditError("This action cannot be undone")
    if entry.get("isUndone"):
        raise AuditError("This action has already been undone")

    collection = UNDOABLE_COLLECTIONS.get(entry.get("resourceType"))
    if collection is None or not entry.get("resourceId"):
        raise AuditError(f"Undo is not supported for {entry.get('resourceType')}")

    if collection == VOTING_EVENTS:
        _check_event_restore(entry["resourceId"], entry["oldState"])

    before = update_document(collection, entry["resourceId"], dict(entry["oldState"]))
    if before is None:
        raise AuditError("The affected resource no longer exists")

    undo_id = log_action(
        actor,
        UNDO,
        details={"originalAction": entry["action"], "originalLogId": log_id},
        resource_type=entry.get("resourceType"),
        resource_id=entry["resourceId"],
        severity="medium",
        new_state=entry["oldState"],
    )
    update_document(AUDIT_LOGS, log_id, {"isUndone": True, "undoneByLogId": undo_id})
    return undo_id
