"""SQLAlchemy engine, session factory and table definitions."""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import JSON, Column, Date, DateTime, Float, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class NutritionLogRow(Base):
    """One analysed meal. Rows are append-only."""

    __tablename__ = "nutrition_logs"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    food_items = Column(JSON, nullable=False, default=list)

    total_calories = Column(Float, default=0.0)
    total_protein_g = Column(Float, default=0.0)
    total_carbs_g = Column(Float, default=0.0)
    total_fat_g = Column(Float, default=0.0)
    total_fiber_g = Column(Float, default=0.0)

    confidence_score = Column(Float, nullable=False)
    image_reference = Column(String(500))
    analysis_notes = Column(Text, default="")

    # Always written in UTC
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class DailySummaryRow(Base):
    """Cached per-user, per-local-day totals. Overwritten on every recompute."""

    __tablename__ = "daily_nutrition_summaries"

    user_id = Column(String(64), primary_key=True)
    date = Column(Date, primary_key=True)

    total_calories = Column(Float, default=0.0)
    total_protein_g = Column(Float, default=0.0)
    total_carbs_g = Column(Float, default=0.0)
    total_fat_g = Column(Float, default=0.0)
    total_fiber_g = Column(Float, default=0.0)
    entry_count = Column(Integer, default=0)

    updated_at = Column(DateTime(timezone=True), nullable=False)


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables."""
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Commit on success, roll back on any error.

    Usage:
        with session_scope(factory) as db:
            db.add(row)
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
