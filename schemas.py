"""
Database Schemas for Soy El Mejor (employee of the month voting)

Each Pydantic model represents a document in a MongoDB collection
(see database.py for the collection names). Datetimes are always
UTC-aware; naive values read back from the store are taken as UTC.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Role = Literal["Admin", "Supervisor", "Coordinator", "Collaborator"]
EventStatus = Literal["Pending", "Active", "Closed"]
Severity = Literal["low", "medium", "high", "critical"]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCModel(BaseModel):
    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, v):
        if isinstance(v, datetime):
            return as_utc(v)
        return v


class SurveyQuestion(BaseModel):
    title: str = Field(..., min_length=1)
    body: str = ""


DEFAULT_SURVEY_QUESTIONS = [
    SurveyQuestion(
        title="Trabajo en Equipo y Colaboración",
        body="¿Qué tan bien colabora esta persona con otros hacia un objetivo común?",
    ),
    SurveyQuestion(
        title="Innovación y Creatividad",
        body="¿Aporta esta persona ideas nuevas y creativas o mejora los procesos existentes?",
    ),
    SurveyQuestion(
        title="Liderazgo y Mentoría",
        body="¿Demuestra esta persona cualidades de liderazgo o mentorea activamente a otros?",
    ),
    SurveyQuestion(
        title="Resolución de Problemas y Resiliencia",
        body="¿Cuán efectiva es esta persona para superar desafíos y encontrar soluciones?",
    ),
    SurveyQuestion(
        title="Impacto y Contribución",
        body="¿Cuál ha sido la contribución o impacto más significativo de esta persona este mes?",
    ),
]


class User(UTCModel):
    id: str
    name: str
    email: str
    role: Role
    department: Optional[str] = Field(None, description="Department name, None for Admins")
    avatar: str = ""
    cedula: Optional[str] = None
    isActive: bool = True


class Department(UTCModel):
    id: str
    name: str = Field(..., min_length=1, description="Unique department key")
    displayName: Optional[str] = None
    description: Optional[str] = None
    isActive: bool = True


class VotingEvent(UTCModel):
    id: str
    month: str = Field(..., description="Label, e.g. 'Agosto 2024'")
    status: EventStatus = "Pending"
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    surveyQuestions: List[SurveyQuestion] = Field(default_factory=list)
    winnerMessage: Optional[str] = None
    createdBy: Optional[str] = None


class Nomination(UTCModel):
    id: str
    eventId: str
    collaboratorId: str
    nominatedById: str
    nominationDate: datetime
    reason: Optional[str] = None


class Vote(UTCModel):
    id: str
    eventId: str
    voterId: str
    votedForIds: List[str] = Field(default_factory=list, max_length=3)
    voteDate: datetime


class SurveyEvaluation(UTCModel):
    id: str
    eventId: str
    evaluatorId: str
    evaluatedUserId: str
    scores: List[int] = Field(default_factory=list, description="One 1-10 score per question")
    evaluationDate: Optional[datetime] = None
    comments: Optional[str] = None


class AuditLog(UTCModel):
    id: str
    userId: str
    userName: Optional[str] = None
    action: str
    timestamp: datetime
    details: Dict[str, Any] = Field(default_factory=dict)
    resourceId: Optional[str] = None
    resourceType: Optional[str] = None
    severity: Severity = "low"
    success: bool = True
    oldState: Optional[Dict[str, Any]] = None
    newState: Optional[Dict[str, Any]] = None
    canUndo: bool = False
    isUndone: bool = False
    undoneByLogId: Optional[str] = None


# -----------------------------
# Request bodies
# -----------------------------

class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3)


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1)
    cedula: str = Field(..., min_length=1)
    role: Role
    email: Optional[str] = None
    department: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = None
    department: Optional[str] = None
    avatar: Optional[str] = None
    isActive: Optional[bool] = None


class DepartmentIn(BaseModel):
    name: str = Field(..., min_length=1)
    displayName: Optional[str] = None
    description: Optional[str] = None
    isActive: bool = True


class DepartmentUpdate(BaseModel):
    displayName: Optional[str] = None
    description: Optional[str] = None
    isActive: Optional[bool] = None


class EventCreate(UTCModel):
    month: str = Field(..., min_length=1)
    startDate: datetime
    endDate: datetime
    surveyQuestions: Optional[List[SurveyQuestion]] = None
    winnerMessage: Optional[str] = None


class EventUpdate(UTCModel):
    month: Optional[str] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    surveyQuestions: Optional[List[SurveyQuestion]] = None
    winnerMessage: Optional[str] = None


class StatusChange(BaseModel):
    status: EventStatus


class NominationIn(BaseModel):
    collaboratorId: str
    reason: Optional[str] = None


class VoteIn(BaseModel):
    votedForIds: List[str] = Field(default_factory=list, max_length=3)


class EvaluationIn(BaseModel):
    evaluatedUserId: str
    scores: List[int]
    comments: Optional[str] = None

    @field_validator("scores")
    @classmethod
    def _scores_in_range(cls, v: List[int]) -> List[int]:
        for s in v:
            if s < 1 or s > 10:
                raise ValueError("scores must be integers between 1 and 10")
        return v
