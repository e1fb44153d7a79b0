import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Literal

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from spacedeck.application.stats.grades import best_grade, classify
from spacedeck.application.study_service import StudyService
from spacedeck.consts import VERSION
from spacedeck.domain.errors import NotFoundError, StorageError, ValidationError
from spacedeck.domain.stats.models import DeckScore, Grade, LoadWarning

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("spacedeck.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"spacedeck server v{VERSION} starting up...")
    store = None
    if getattr(app.state, "service", None) is None:
        from spacedeck.application.config import resolve_config
        from spacedeck.application.factory import build_study_service, get_store

        config = resolve_config()
        logging.getLogger().setLevel(config.log_level)
        store = get_store(config)
        app.state.service = build_study_service(config, store=store)
    yield
    # Shutdown
    logger.info("spacedeck server shutting down...")
    if store is not None:
        store.close()


app = FastAPI(
    title="spacedeck",
    description="Spaced-repetition scheduling and deck mastery scoring.",
    version=VERSION,
    lifespan=lifespan,
)

start_time = time.time()


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": str(exc), "code": "VALIDATION_ERROR", "field": exc.field},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc), "code": "NOT_FOUND"})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "STORAGE_ERROR"},
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_service(request: Request) -> StudyService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialised")
    return service


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Authentication happens upstream; the gateway forwards the user id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


Service = Annotated[StudyService, Depends(get_service)]
UserId = Annotated[str, Depends(get_user_id)]


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class ReviewRequest(CamelModel):
    card_id: str = Field(alias="cardId", min_length=1)
    rating: Literal["again", "hard", "good", "easy"]
    session_id: str | None = Field(default=None, alias="sessionId")


class ReviewResponse(CamelModel):
    success: bool
    next_due: datetime = Field(alias="nextDue")
    interval: int
    stability: float


class QueueStats(BaseModel):
    due: int
    new: int
    total: int


class WarningModel(CamelModel):
    reason: str
    message: str
    today_count: int = Field(alias="todayCount")
    daily_average: float = Field(alias="dailyAverage")

    @classmethod
    def from_domain(cls, warning: LoadWarning | None) -> "WarningModel | None":
        if warning is None:
            return None
        return cls(
            reason=warning.reason,
            message=warning.message,
            today_count=warning.today_count,
            daily_average=warning.daily_average,
        )


class StudyQueueResponse(BaseModel):
    due: list[str]
    new: list[str]
    stats: QueueStats
    warning: WarningModel | None = None


class QuizQueueResponse(BaseModel):
    items: list[str]
    stats: QueueStats
    warning: WarningModel | None = None


class GradeModel(BaseModel):
    key: str
    label: str
    color: str

    @classmethod
    def from_domain(cls, grade: Grade | None) -> "GradeModel | None":
        if grade is None:
            return None
        return cls(key=grade.key, label=grade.label, color=grade.color)


class DeckScoreModel(CamelModel):
    window: str
    accuracy_pct: float = Field(alias="accuracyPct")
    stability_avg: float = Field(alias="stabilityAvg")
    lapses: int
    updated_at: datetime = Field(alias="updatedAt")
    grade: GradeModel

    @classmethod
    def from_domain(cls, score: DeckScore) -> "DeckScoreModel":
        return cls(
            window=score.window.value,
            accuracy_pct=score.accuracy_pct,
            stability_avg=score.stability_avg,
            lapses=score.lapses,
            updated_at=score.updated_at,
            grade=GradeModel.from_domain(classify(score.accuracy_pct)),
        )


class DeckScoreResponse(CamelModel):
    score: DeckScoreModel | None
    windows: list[DeckScoreModel]
    best_grade: GradeModel | None = Field(alias="bestGrade")


class PerformanceResponse(CamelModel):
    review_count: int = Field(alias="reviewCount")
    success_rate: float | None = Field(alias="successRate")
    grade: GradeModel | None
    insufficient_data: bool = Field(alias="insufficientData")


class LoadWarningResponse(BaseModel):
    warning: WarningModel | None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


@app.post("/decks/{deck_id}/review", response_model=ReviewResponse)
async def record_review(deck_id: str, req: ReviewRequest, service: Service, user_id: UserId):
    """Record a rating and return the next due date."""
    if req.session_id:
        logger.debug(f"Review of {req.card_id} in session {req.session_id}")

    outcome = await service.record_review(user_id, deck_id, req.card_id, req.rating)
    return ReviewResponse(
        success=True,
        next_due=outcome.due,
        interval=outcome.scheduled_days,
        stability=outcome.stability,
    )


@app.get("/decks/{deck_id}/study-queue", response_model=StudyQueueResponse)
async def study_queue(
    deck_id: str,
    service: Service,
    user_id: UserId,
    limit: Annotated[int | None, Query()] = None,
):
    queue = await service.build_study_queue(
        user_id, deck_id, limit if limit is not None else service.study_limit
    )
    warning = await service.get_daily_load_warning(user_id, deck_id)
    return StudyQueueResponse(
        due=queue.due,
        new=queue.new,
        stats=QueueStats(due=len(queue.due), new=len(queue.new), total=queue.total),
        warning=WarningModel.from_domain(warning),
    )


@app.get("/decks/{deck_id}/quiz-queue", response_model=QuizQueueResponse)
async def quiz_queue(
    deck_id: str,
    service: Service,
    user_id: UserId,
    limit: Annotated[int | None, Query()] = None,
):
    # Non-positive limits from the query string fall back to the default.
    if limit is not None and limit <= 0:
        limit = None
    queue = await service.build_quiz_queue(user_id, deck_id, limit)
    return QuizQueueResponse(
        items=queue.items,
        stats=QueueStats(due=queue.due_count, new=queue.new_count, total=queue.total_count),
        warning=WarningModel.from_domain(queue.warning),
    )


@app.get("/decks/{deck_id}/score", response_model=DeckScoreResponse)
async def deck_score(deck_id: str, service: Service, user_id: UserId):
    scores = await service.list_deck_scores(user_id, deck_id)
    current = await service.get_deck_score(user_id, deck_id)
    return DeckScoreResponse(
        score=DeckScoreModel.from_domain(current) if current else None,
        windows=[DeckScoreModel.from_domain(s) for s in scores],
        best_grade=GradeModel.from_domain(best_grade(scores)),
    )


@app.get(
    "/decks/{deck_id}/performance",
    response_model=PerformanceResponse,
)
async def deck_performance(deck_id: str, service: Service, user_id: UserId):
    perf = await service.get_deck_performance(user_id, deck_id)
    return PerformanceResponse(
        review_count=perf.review_count,
        success_rate=perf.success_rate,
        grade=GradeModel.from_domain(perf.grade),
        insufficient_data=perf.insufficient_data,
    )


@app.get("/decks/{deck_id}/load-warning", response_model=LoadWarningResponse)
async def load_warning(deck_id: str, service: Service, user_id: UserId):
    warning = await service.get_daily_load_warning(user_id, deck_id)
    return LoadWarningResponse(warning=WarningModel.from_domain(warning))
