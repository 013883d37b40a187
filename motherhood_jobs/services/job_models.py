import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from motherhood_jobs.services.errors import InvalidTransitionError

# Fixed-width UTC format: lexical order == chronological order on both backends.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# processing -> processing is a lease reclaim after a crashed invocation.
ALLOWED_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({
        JobStatus.PROCESSING,
        JobStatus.COMPLETED,
        JobStatus.PENDING,
        JobStatus.FAILED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: JobStatus, target: JobStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Illegal job transition {current.value} -> {target.value}"
        )


@dataclass
class Job:
    id: str
    type: str
    payload: Dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    priority: int = 0
    retry_count: int = 0
    max_retries: int = 3
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    user_id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None
    not_before: Optional[str] = None
    lease_expires_at: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Job":
        """Build a Job from an aiosqlite Row or an asyncpg Record."""
        return cls(
            id=row["id"],
            type=row["type"],
            payload=_load_json(row["payload"]) or {},
            status=JobStatus(row["status"]),
            priority=row["priority"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            result=_load_json(row["result"]),
            error_message=row["error_message"],
            user_id=row["user_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
            not_before=row["not_before"],
            lease_expires_at=row["lease_expires_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "status": self.status.value,
            "priority": self.priority,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "result": self.result,
            "error_message": self.error_message,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "not_before": self.not_before,
        }


def _load_json(value: Any) -> Any:
    # SQLite stores TEXT, asyncpg hands jsonb back as str as well.
    if value is None or isinstance(value, (dict, list)):
        return value
    return json.loads(value)


# ─── Typed Payloads ──────────────────────────────────────────────────────────
# Producers send camelCase keys; handlers read snake_case attributes.

class JobPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class UserScopedPayload(JobPayload):
    """userId falls back to the job owner."""

    user_id: Optional[str] = Field(default=None, alias="userId")


class ImageAnalysisPayload(UserScopedPayload):
    image_url: str = Field(alias="imageUrl", min_length=1)
    analysis_type: Literal["meal", "posture", "general", "ultrasound"] = Field(alias="analysisType")


class MealEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    calories: float = Field(ge=0)


class NutritionReportPayload(JobPayload):
    meals_data: List[MealEntry] = Field(alias="mealsData")


class EnqueueRequest(BaseModel):
    type: str = Field(min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    priority: int = 0
    max_retries: Optional[int] = Field(default=None, ge=1)
