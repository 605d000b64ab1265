"""Daily nutrition aggregation, driven by nutrition/analysis.completed."""

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, Iterable, Tuple
from zoneinfo import ZoneInfo

from fitness_coach.config import CONFIDENCE_THRESHOLD, LOCAL_TIMEZONE
from fitness_coach.events import (
    NUTRITION_ANALYSIS_COMPLETED,
    NUTRITION_LOW_CONFIDENCE,
    Event,
    LocalStepExecutor,
    StepContext,
)
from fitness_coach.models import DailySummary, NutritionLogRecord
from fitness_coach.storage import NutritionLogStore

logger = logging.getLogger(__name__)

FUNCTION_ID = "update-nutrition-data"


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def local_day_bounds(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """[local midnight of day, local midnight of the next day)."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def fold_daily_summary(user_id: str, day: date, records: Iterable[NutritionLogRecord]) -> DailySummary:
    """Sum the five numeric totals over records; missing values count as 0."""
    totals = {"calories": 0.0, "protein": 0.0, "carbs": 0.0, "fat": 0.0, "fiber": 0.0}
    count = 0
    for record in records:
        totals["calories"] += record.total_calories or 0.0
        totals["protein"] += record.total_protein or 0.0
        totals["carbs"] += record.total_carbs or 0.0
        totals["fat"] += record.total_fat or 0.0
        totals["fiber"] += record.total_fiber or 0.0
        count += 1

    return DailySummary(
        user_id=user_id,
        date=day,
        total_calories=round(totals["calories"], 2),
        total_protein=round(totals["protein"], 2),
        total_carbs=round(totals["carbs"], 2),
        total_fat=round(totals["fat"], 2),
        total_fiber=round(totals["fiber"], 2),
        entry_count=count,
    )


class DailyAggregator:
    """
    Two independently retryable steps:

    1) update-daily-summary: recompute the day's totals from persisted records
    2) check-insights-trigger: emit nutrition/low-confidence below the threshold

    Totals are always recomputed from the stored records, never incremented,
    so redelivered events cannot double count.
    """

    def __init__(
        self,
        store: NutritionLogStore,
        tz: tzinfo | None = None,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.tz = tz or resolve_timezone(LOCAL_TIMEZONE)
        self.confidence_threshold = confidence_threshold
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def register(self, executor: LocalStepExecutor) -> None:
        executor.register(FUNCTION_ID, NUTRITION_ANALYSIS_COMPLETED, self.handle)

    def local_day_of(self, moment: datetime) -> date:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz).date()

    def summary_for(self, user_id: str, day: date) -> DailySummary:
        start, end = local_day_bounds(day, self.tz)
        records = self.store.list_between(user_id, start, end)
        return fold_daily_summary(user_id, day, records)

    def _event_day(self, data: Dict[str, Any]) -> date:
        created_at = data.get("createdAt")
        if created_at:
            return self.local_day_of(datetime.fromisoformat(created_at))
        return self.local_day_of(self.clock())

    def handle(self, event: Event, step: StepContext) -> Dict[str, Any]:
        log_id = event.data["logId"]
        user_id = event.data["userId"]
        confidence_score = event.data["confidenceScore"]

        def update_daily_summary() -> DailySummary:
            day = self._event_day(event.data)
            summary = self.summary_for(user_id, day)
            self.store.save_daily_summary(summary)
            logger.info(
                "Daily nutrition summary updated: user=%s date=%s calories=%s protein=%s "
                "carbs=%s fat=%s fiber=%s entries=%s",
                user_id,
                day.isoformat(),
                summary.total_calories,
                summary.total_protein,
                summary.total_carbs,
                summary.total_fat,
                summary.total_fiber,
                summary.entry_count,
            )
            return summary

        summary = step.run("update-daily-summary", update_daily_summary)

        def check_insights_trigger() -> bool:
            if confidence_score >= self.confidence_threshold:
                return False
            step.send_event(
                "low-confidence-alert",
                Event(
                    name=NUTRITION_LOW_CONFIDENCE,
                    data={
                        "logId": log_id,
                        "userId": user_id,
                        "confidenceScore": confidence_score,
                    },
                ),
            )
            logger.info("Low-confidence alert sent for log=%s score=%s", log_id, confidence_score)
            return True

        alerted = step.run("check-insights-trigger", check_insights_trigger)

        return {"success": True, "summary": summary, "lowConfidenceAlert": alerted}
