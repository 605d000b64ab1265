"""Nutrition log persistence.

The store is the only writer of record ids and timestamps. Every query is
filtered by user_id.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fitness_coach.database import DailySummaryRow, NutritionLogRow, session_scope
from fitness_coach.errors import PersistenceFailure
from fitness_coach.models import DailySummary, FoodItem, NewNutritionLog, NutritionLogRecord
from fitness_coach.oplog import log_operation

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalise a timestamp read from or written to the database to aware UTC.

    SQLite drops tzinfo, so naive values are taken to be UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class NutritionLogStore(Protocol):
    def create(self, new_log: NewNutritionLog) -> NutritionLogRecord: ...

    def get(self, user_id: str, log_id: str) -> Optional[NutritionLogRecord]: ...

    def list_between(self, user_id: str, start: datetime, end: datetime) -> List[NutritionLogRecord]: ...

    def save_daily_summary(self, summary: DailySummary) -> None: ...


def _row_to_record(row: NutritionLogRow) -> NutritionLogRecord:
    return NutritionLogRecord(
        id=row.id,
        user_id=row.user_id,
        food_items=[FoodItem.model_validate(i) for i in (row.food_items or [])],
        total_calories=row.total_calories or 0.0,
        total_protein=row.total_protein_g or 0.0,
        total_carbs=row.total_carbs_g or 0.0,
        total_fat=row.total_fat_g or 0.0,
        total_fiber=row.total_fiber_g or 0.0,
        confidence_score=row.confidence_score,
        image_reference=row.image_reference,
        analysis_notes=row.analysis_notes or "",
        created_at=as_utc(row.created_at),
    )


class SqlNutritionLogStore:
    """NutritionLogStore backed by SQLAlchemy."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = _utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def create(self, new_log: NewNutritionLog) -> NutritionLogRecord:
        """Insert one record with a fresh id and server timestamp, all or nothing."""
        row = NutritionLogRow(
            id=str(uuid4()),
            user_id=new_log.user_id,
            food_items=[i.model_dump() for i in new_log.food_items],
            total_calories=new_log.total_calories,
            total_protein_g=new_log.total_protein,
            total_carbs_g=new_log.total_carbs,
            total_fat_g=new_log.total_fat,
            total_fiber_g=new_log.total_fiber,
            confidence_score=new_log.confidence_score,
            image_reference=new_log.image_reference,
            analysis_notes=new_log.analysis_notes,
            created_at=as_utc(self.clock()),
        )
        with log_operation("store_create_log", user_id=new_log.user_id):
            try:
                with session_scope(self.session_factory) as db:
                    db.add(row)
                    db.flush()
                    record = _row_to_record(row)
            except SQLAlchemyError as e:
                raise PersistenceFailure(f"Failed to save nutrition log: {e}") from e
        return record

    def get(self, user_id: str, log_id: str) -> Optional[NutritionLogRecord]:
        try:
            with session_scope(self.session_factory) as db:
                row = db.execute(
                    select(NutritionLogRow).where(
                        NutritionLogRow.user_id == user_id,
                        NutritionLogRow.id == log_id,
                    )
                ).scalar_one_or_none()
                return _row_to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to load nutrition log {log_id}: {e}") from e

    def list_between(self, user_id: str, start: datetime, end: datetime) -> List[NutritionLogRecord]:
        """Records with start <= created_at < end, oldest first."""
        with log_operation("store_list_logs", user_id=user_id) as meta:
            try:
                with session_scope(self.session_factory) as db:
                    rows = db.execute(
                        select(NutritionLogRow)
                        .where(
                            NutritionLogRow.user_id == user_id,
                            NutritionLogRow.created_at >= as_utc(start),
                            NutritionLogRow.created_at < as_utc(end),
                        )
                        .order_by(NutritionLogRow.created_at)
                    ).scalars().all()
                    records = [_row_to_record(r) for r in rows]
            except SQLAlchemyError as e:
                raise PersistenceFailure(f"Failed to fetch nutrition logs: {e}") from e
            meta["count"] = len(records)
        return records

    def save_daily_summary(self, summary: DailySummary) -> None:
        """Upsert the cached summary for (user_id, date)."""
        row = DailySummaryRow(
            user_id=summary.user_id,
            date=summary.date,
            total_calories=summary.total_calories,
            total_protein_g=summary.total_protein,
            total_carbs_g=summary.total_carbs,
            total_fat_g=summary.total_fat,
            total_fiber_g=summary.total_fiber,
            entry_count=summary.entry_count,
            updated_at=as_utc(self.clock()),
        )
        try:
            with session_scope(self.session_factory) as db:
                db.merge(row)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to save daily summary: {e}") from e

