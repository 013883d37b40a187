"""
Handler registry and the built-in job handlers.

The registry is an explicit object built at process start and handed to the
processor; nothing here is looked up through module globals. Each handler is a
boundary adapter: it reads its typed payload, performs one class of side effect
and returns a JSON-serializable summary. Handlers may run more than once for
the same job (at-least-once delivery).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from pydantic import ValidationError

from motherhood_jobs.db import Database
from motherhood_jobs.services.analysis_client import AnalysisClient
from motherhood_jobs.services.errors import InvalidPayloadError, NoHandlerError
from motherhood_jobs.services.job_models import (
    ImageAnalysisPayload,
    Job,
    JobPayload,
    NutritionReportPayload,
    UserScopedPayload,
    format_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

IMAGE_ANALYSIS = "image-analysis"
NUTRITION_REPORT = "generate-nutrition-report"
POSTURE_REMINDER = "daily-posture-check-reminder"
WEEKLY_SUMMARY = "weekly-summary"


@dataclass
class HandlerContext:
    """Collaborators a handler may touch."""
    db: Database
    analysis_client: Optional[AnalysisClient] = None
    clock: Callable = field(default=utc_now)


HandlerFn = Callable[[Job, Any, HandlerContext], Awaitable[Dict[str, Any]]]


@dataclass
class RegisteredHandler:
    job_type: str
    fn: HandlerFn
    payload_model: Optional[Type[JobPayload]] = None

    def parse_payload(self, job: Job) -> Any:
        if self.payload_model is None:
            return job.payload
        try:
            return self.payload_model.model_validate(job.payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "payload" for err in e.errors())
            raise InvalidPayloadError(f"Invalid payload for {job.type}: {fields}") from e


class HandlerRegistry:
    """Maps job type strings to typed async handlers."""

    def __init__(self):
        self._handlers: Dict[str, RegisteredHandler] = {}

    def register(self, job_type: str, fn: HandlerFn, payload_model: Optional[Type[JobPayload]] = None):
        if job_type in self._handlers:
            raise ValueError(f"Handler already registered for job type: {job_type}")
        self._handlers[job_type] = RegisteredHandler(job_type, fn, payload_model)

    def lookup(self, job_type: str) -> RegisteredHandler:
        try:
            return self._handlers[job_type]
        except KeyError:
            raise NoHandlerError(job_type) from None

    def types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers


# ─── Built-in Handlers ───────────────────────────────────────────────────────

async def handle_image_analysis(job: Job, payload: ImageAnalysisPayload, ctx: HandlerContext) -> Dict[str, Any]:
    user_id = _owner(job, payload)
    if ctx.analysis_client is None:
        raise RuntimeError("Analysis client is not configured")
    return await ctx.analysis_client.analyze(payload.image_url, payload.analysis_type, user_id)


async def handle_nutrition_report(job: Job, payload: NutritionReportPayload, ctx: HandlerContext) -> Dict[str, Any]:
    total = sum(meal.calories for meal in payload.meals_data)
    if float(total).is_integer():
        total = int(total)
    meal_count = len(payload.meals_data)
    return {
        "totalCalories": total,
        "mealCount": meal_count,
        "summary": f"Logged {meal_count} meals with total estimated {total} calories",
        "timestamp": format_timestamp(ctx.clock()),
    }


async def handle_posture_reminder(job: Job, payload: UserScopedPayload, ctx: HandlerContext) -> Dict[str, Any]:
    user_id = _owner(job, payload)
    async with ctx.db.connection() as conn:
        await conn.execute(
            """
            INSERT INTO health_alerts (user_id, title, description, type, priority, read, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, "Daily Posture Check", "Time for your daily posture assessment",
             "reminder", "medium", False, format_timestamp(ctx.clock())),
        )
        await conn.commit()
    logger.info(f"Posture reminder created for user {user_id} (job {job.id}).")
    return {"notificationCreated": True}


async def handle_weekly_summary(job: Job, payload: UserScopedPayload, ctx: HandlerContext) -> Dict[str, Any]:
    user_id = _owner(job, payload)
    week_start = format_timestamp(ctx.clock() - timedelta(days=7))
    counts = {}
    async with ctx.db.connection() as conn:
        for analysis_type in ("meal", "posture"):
            cursor = await conn.execute(
                """
                SELECT COUNT(*) AS cnt FROM image_analysis_results
                WHERE user_id = ? AND analysis_type = ? AND created_at >= ?
                """,
                (user_id, analysis_type, week_start),
            )
            row = await cursor.fetchone()
            counts[analysis_type] = row["cnt"] if row else 0
    return {
        "mealsLogged": counts["meal"],
        "postureChecks": counts["posture"],
        "period": "weekly",
        "weekStart": week_start,
    }


def _owner(job: Job, payload: UserScopedPayload) -> str:
    user_id = payload.user_id or job.user_id
    if not user_id:
        raise InvalidPayloadError(f"Job {job.id} has no userId in payload and no owning user")
    return user_id


def build_default_registry() -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register(IMAGE_ANALYSIS, handle_image_analysis, ImageAnalysisPayload)
    registry.register(NUTRITION_REPORT, handle_nutrition_report, NutritionReportPayload)
    registry.register(POSTURE_REMINDER, handle_posture_reminder, UserScopedPayload)
    registry.register(WEEKLY_SUMMARY, handle_weekly_summary, UserScopedPayload)
    return registry
