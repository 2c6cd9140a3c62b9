# event configuration + status transition rules
from datetime import datetime, timedelta

from standings import VOTING_DAYS

STATUS_ORDER = ("Pending", "Active", "Closed")

ALLOWED_TRANSITIONS = {
    "Pending": "Active",
    "Active": "Closed",
}


class EventConfigError(ValueError):
    pass


class StatusTransitionError(ValueError):
    pass


def validate_event_window(start: datetime, end: datetime) -> None:
    """
    An event must outlast its nomination and voting phases so the
    evaluation window is never empty or inverted.
    """
    if start is None or end is None:
        raise EventConfigError("startDate and endDate are required")
    if end <= start:
        raise EventConfigError("endDate must be after startDate")
    voting_end = start + timedelta(days=VOTING_DAYS)
    if end <= voting_end:
        raise EventConfigError(
            f"endDate must be later than {VOTING_DAYS} days after startDate "
            f"(after {voting_end.isoformat()})"
        )


def check_transition(current: str, new: str) -> None:
    """Pending -> Active -> Closed, one step at a time, never backwards."""
    if ALLOWED_TRANSITIONS.get(current) != new:
        raise StatusTransitionError(f"Cannot change status from {current} to {new}")


def forward_status(current: str, implied: str) -> str:
    """Status after a date-driven sync: only ever moves forward."""
    if STATUS_ORDER.index(implied) > STATUS_ORDER.index(current):
        return implied
    return current
