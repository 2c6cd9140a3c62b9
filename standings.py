"""
Phase / winner calculator for a voting event.

Pure functions over already fetched collections: nothing here touches the
database or mutates its inputs, so calling any of them twice on the same
snapshot gives the same answer.

Ties are resolved by the lowest nominee id, both for the winner and for
the order of equal entries in a ranking.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Literal, Optional, Set

from pydantic import BaseModel

from schemas import Nomination, SurveyEvaluation, Vote, VotingEvent, as_utc

logger = logging.getLogger(__name__)

NOMINATION_DAYS = 7
VOTING_DAYS = 14
MAX_SELECTIONS = 3

PhaseName = Literal["nomination", "voting", "evaluation"]


class PhaseBoundaries(BaseModel):
    start: datetime
    nominationEnd: datetime
    votingEnd: datetime
    evaluationEnd: datetime


class PhaseInfo(BaseModel):
    phase: PhaseName
    progress: float
    phaseStart: datetime
    phaseEnd: datetime


class Standing(BaseModel):
    nomineeId: str
    score: Optional[int] = None
    position: int


class WinnerResult(BaseModel):
    nomineeId: str
    count: int
    basis: Literal["votes", "nominations"]


# -----------------------------
# Phases
# -----------------------------

def phase_boundaries(event: VotingEvent) -> Optional[PhaseBoundaries]:
    if event.startDate is None or event.endDate is None:
        return None
    start = as_utc(event.startDate)
    return PhaseBoundaries(
        start=start,
        nominationEnd=start + timedelta(days=NOMINATION_DAYS),
        votingEnd=start + timedelta(days=VOTING_DAYS),
        evaluationEnd=as_utc(event.endDate),
    )


def _progress(now: datetime, start: datetime, end: datetime) -> float:
    span = (end - start).total_seconds()
    if span <= 0:
        return 100.0
    pct = (now - start).total_seconds() / span * 100
    return max(0.0, min(100.0, pct))


def current_phase(event: VotingEvent, now: datetime) -> Optional[PhaseInfo]:
    """
    Classify `now` into the nomination, voting or evaluation window of an
    Active event.

    nomination: start <= now <= start+7d
    voting:     start+7d < now <= start+14d
    evaluation: start+14d < now <= endDate

    Returns None when the event is not Active, a date is missing, or now
    falls outside [startDate, endDate]. Windows never extend past endDate.
    """
    if event.status != "Active":
        return None
    bounds = phase_boundaries(event)
    if bounds is None:
        return None

    now = as_utc(now)
    end = bounds.evaluationEnd
    if now < bounds.start or now > end:
        return None

    if now <= bounds.nominationEnd:
        name, lo, hi = "nomination", bounds.start, bounds.nominationEnd
    elif now <= bounds.votingEnd:
        name, lo, hi = "voting", bounds.nominationEnd, bounds.votingEnd
    else:
        name, lo, hi = "evaluation", bounds.votingEnd, end

    hi = min(hi, end)
    return PhaseInfo(phase=name, progress=_progress(now, lo, hi), phaseStart=lo, phaseEnd=hi)


def event_status_for(event: VotingEvent, now: datetime) -> str:
    """Status implied by the event dates alone."""
    now = as_utc(now)
    start = as_utc(event.startDate)
    end = as_utc(event.endDate)
    if end is not None and now > end:
        return "Closed"
    if start is not None and now >= start:
        return "Active"
    return "Pending"


# -----------------------------
# Tallies
# -----------------------------

def selection_limit(count: int) -> int:
    """How many people may be picked out of `count`: min(count - 1, 3), never negative."""
    if count <= 1:
        return 0
    return min(count - 1, MAX_SELECTIONS)


def nominee_pool(event_id: str, nominations: Iterable[Nomination]) -> Set[str]:
    return {n.collaboratorId for n in nominations if n.eventId == event_id}


def tally_nominations(event_id: str, nominations: Iterable[Nomination]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for n in nominations:
        if n.eventId != event_id:
            continue
        counts[n.collaboratorId] = counts.get(n.collaboratorId, 0) + 1
    return counts


def tally_votes(
    event_id: str,
    nominations: Iterable[Nomination],
    votes: Iterable[Vote],
) -> Dict[str, int]:
    """
    Count ballots per nominee. Ids outside the nominee pool are ignored and
    a ballot counts at most once for any nominee.
    """
    pool = nominee_pool(event_id, nominations)
    counts: Dict[str, int] = {}
    for vote in votes:
        if vote.eventId != event_id:
            continue
        for cid in set(vote.votedForIds):
            if cid in pool:
                counts[cid] = counts.get(cid, 0) + 1
    logger.debug("Vote tally for %s: %s", event_id, counts)
    return counts


def _top(counts: Dict[str, int]):
    # lowest id among the maxima
    return min(counts.items(), key=lambda kv: (-kv[1], kv[0]))


def determine_winner(
    event_id: str,
    nominations: Iterable[Nomination],
    votes: Iterable[Vote],
) -> Optional[WinnerResult]:
    """
    Nominee with the most votes; with no counted votes, the most nominated.
    None when nobody was nominated.
    """
    nominations = list(nominations)
    if not nominee_pool(event_id, nominations):
        return None

    counts = tally_votes(event_id, nominations, votes)
    basis = "votes"
    if not counts:
        counts = tally_nominations(event_id, nominations)
        basis = "nominations"

    nominee_id, count = _top(counts)
    return WinnerResult(nomineeId=nominee_id, count=count, basis=basis)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def score_standings(
    event_id: str,
    nominations: Iterable[Nomination],
    evaluations: Iterable[SurveyEvaluation],
) -> Dict[str, Optional[int]]:
    """
    Standing score per nominee: the mean of each evaluation's mean score,
    moved from the 1-10 scale onto 0-100. None for nominees nobody has
    evaluated yet.
    """
    pool = nominee_pool(event_id, nominations)
    means: Dict[str, List[float]] = {cid: [] for cid in pool}
    for ev in evaluations:
        if ev.eventId != event_id or ev.evaluatedUserId not in pool or not ev.scores:
            continue
        means[ev.evaluatedUserId].append(sum(ev.scores) / len(ev.scores))

    result: Dict[str, Optional[int]] = {}
    for cid, values in means.items():
        if not values:
            result[cid] = None
            continue
        avg = sum(values) / len(values)
        result[cid] = _round_half_up(avg / 10 * 100)
    return result


def vote_counts_with_pool(
    event_id: str,
    nominations: Iterable[Nomination],
    votes: Iterable[Vote],
) -> Dict[str, int]:
    """Vote tally including nominees who received no votes (as 0)."""
    nominations = list(nominations)
    counts = {cid: 0 for cid in nominee_pool(event_id, nominations)}
    counts.update(tally_votes(event_id, nominations, votes))
    return counts


def rank(scores: Dict[str, Optional[int]]) -> List[Standing]:
    """
    Order nominees by descending score (1-based positions). Equal scores
    keep ascending id order; nominees without a score go last.
    """
    ordered = sorted(
        scores.items(),
        key=lambda kv: (kv[1] is None, -(kv[1] or 0), kv[0]),
    )
    return [
        Standing(nomineeId=cid, score=score, position=idx)
        for idx, (cid, score) in enumerate(ordered, start=1)
    ]
