from datetime import datetime, timezone

import pytest

from fakes import Clock
from fitness_coach.database import DailySummaryRow, init_db, make_engine, make_session_factory
from fitness_coach.events import LocalStepExecutor
from fitness_coach.storage import SqlNutritionLogStore


@pytest.fixture
def clock():
    return Clock(datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory, clock):
    return SqlNutritionLogStore(session_factory, clock=clock)


@pytest.fixture
def executor():
    return LocalStepExecutor(max_attempts=3)


@pytest.fixture
def cached_summary(session_factory):
    """Read a row of the daily summary table as (total_calories, entry_count), or None."""

    def _read(user_id, day):
        with session_factory() as db:
            row = db.get(DailySummaryRow, (user_id, day))
            return None if row is None else (row.total_calories, row.entry_count)

    return _read
