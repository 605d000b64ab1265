"""Main FastAPI application."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from fitness_coach import config
from fitness_coach.aggregator import DailyAggregator, local_day_bounds
from fitness_coach.database import init_db, make_engine, make_session_factory
from fitness_coach.errors import (
    ConfigurationError,
    EventDeliveryFailure,
    InvalidModelOutput,
    PersistenceFailure,
    TransportFailure,
)
from fitness_coach.events import LocalStepExecutor
from fitness_coach.logging_config import configure_logging
from fitness_coach.openai_client import create_openai_client
from fitness_coach.pipeline import NutritionPipeline
from fitness_coach.services import EstimateValidator, VisionEstimator
from fitness_coach.storage import SqlNutritionLogStore

logger = logging.getLogger(__name__)


def build_services(app: FastAPI, database_url: str = config.DATABASE_URL) -> None:
    """Wire store, executor, aggregator and (if configured) the pipeline onto app.state."""
    engine = make_engine(database_url)
    init_db(engine)
    store = SqlNutritionLogStore(make_session_factory(engine))

    executor = LocalStepExecutor(max_attempts=config.EVENT_MAX_ATTEMPTS, backoff_s=0.5)
    aggregator = DailyAggregator(store, confidence_threshold=config.CONFIDENCE_THRESHOLD)
    aggregator.register(executor)

    app.state.engine = engine
    app.state.store = store
    app.state.executor = executor
    app.state.aggregator = aggregator
    app.state.pipeline = None
    app.state.pipeline_error = None

    try:
        client = create_openai_client(config.OPENAI_API_KEY)
    except ConfigurationError as e:
        logger.error("Photo analysis disabled: %s", e)
        app.state.pipeline_error = str(e)
        return

    max_side = config.BACKEND_MAX_SIDE_PX if config.USE_BACKEND_RESIZE else None
    app.state.pipeline = NutritionPipeline(
        estimator=VisionEstimator(client, model=config.GPT_MODEL, max_side_px=max_side),
        validator=EstimateValidator(client, model=config.VALIDATOR_MODEL),
        store=store,
        events=executor,
        confidence_threshold=config.CONFIDENCE_THRESHOLD,
        validation_fallback=config.VALIDATION_FALLBACK,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(config.LOG_LEVEL, config.LOG_FILE)
    if not getattr(app.state, "store", None):
        build_services(app)
    yield
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        engine.dispose()


app = FastAPI(title="AI Fitness Coach", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """The authenticated user id, set by the auth layer in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(401, "Not authenticated")
    return x_user_id.strip()


def drain_events(executor: LocalStepExecutor) -> None:
    try:
        executor.run_pending()
    except EventDeliveryFailure as e:
        logger.error("Event delivery failed: %s failures=%s", e, e.failures)


# -----------------------------------
# Endpoints
# -----------------------------------

@app.get("/health")
def health(request: Request):
    return {
        "status": "ok",
        "photo_analysis_enabled": request.app.state.pipeline is not None,
    }


@app.post("/nutrition/photo")
async def log_meal_photo(
    request: Request,
    background_tasks: BackgroundTasks,
    image: UploadFile = File(None),
    user_id: str = Depends(current_user_id),
):
    if not image:
        raise HTTPException(422, "Image field is required")

    pipeline: Optional[NutritionPipeline] = request.app.state.pipeline
    if pipeline is None:
        raise HTTPException(503, request.app.state.pipeline_error or "Photo analysis is disabled")

    img_bytes = await image.read()
    logger.info("[PIPELINE] /nutrition/photo user=%s file=%s bytes=%s", user_id, image.filename, len(img_bytes))

    try:
        result = await asyncio.to_thread(pipeline.process_photo, img_bytes, user_id, image.filename)
    except InvalidModelOutput as e:
        logger.warning("Photo analysis returned unusable output: %s", e)
        raise HTTPException(422, "Could not read the meal from this photo. Please retry or enter it manually.")
    except TransportFailure as e:
        logger.error("Model provider unavailable: %s", e)
        raise HTTPException(502, "Analysis service unavailable. Please retry or enter the meal manually.")
    except PersistenceFailure as e:
        logger.error("Failed to save nutrition log: %s", e)
        raise HTTPException(503, "Could not save the meal. Please retry.")
    except ValueError as e:
        raise HTTPException(422, str(e))

    background_tasks.add_task(drain_events, request.app.state.executor)
    return result.to_response()


@app.get("/nutrition/logs")
def list_logs(
    request: Request,
    day: Optional[date] = Query(None, alias="date", description="YYYY-MM-DD, local day"),
    user_id: str = Depends(current_user_id),
):
    aggregator: DailyAggregator = request.app.state.aggregator
    day = day or aggregator.local_day_of(aggregator.clock())
    start, end = local_day_bounds(day, aggregator.tz)
    try:
        records = request.app.state.store.list_between(user_id, start, end)
    except PersistenceFailure as e:
        logger.error("Failed to list nutrition logs: %s", e)
        raise HTTPException(503, "Could not load meals. Please retry.")
    return {
        "date": day.isoformat(),
        "count": len(records),
        "logs": [r.model_dump(mode="json", by_alias=True) for r in records],
    }


@app.get("/nutrition/logs/{log_id}")
def get_log(
    log_id: str,
    request: Request,
    user_id: str = Depends(current_user_id),
):
    try:
        record = request.app.state.store.get(user_id, log_id)
    except PersistenceFailure as e:
        logger.error("Failed to load nutrition log %s: %s", log_id, e)
        raise HTTPException(503, "Could not load the meal. Please retry.")
    if record is None:
        raise HTTPException(404, "Nutrition log not found")
    return record.model_dump(mode="json", by_alias=True)


@app.get("/nutrition/summary")
def daily_summary(
    request: Request,
    day: Optional[date] = Query(None, alias="date", description="YYYY-MM-DD, local day"),
    user_id: str = Depends(current_user_id),
):
    aggregator: DailyAggregator = request.app.state.aggregator
    day = day or aggregator.local_day_of(aggregator.clock())
    try:
        summary = aggregator.summary_for(user_id, day)
    except PersistenceFailure as e:
        logger.error("Failed to compute daily summary: %s", e)
        raise HTTPException(503, "Could not load the daily summary. Please retry.")
    return summary.model_dump(mode="json", by_alias=True)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("fitness_coach.main:app", host="0.0.0.0", port=8000)
