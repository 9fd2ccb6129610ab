"""FastAPI app: submission, voting, clustering, expert matching and export.

Analysis components are built per request from an injectable analyzer so
tests can swap the semantic service for a fake.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import AsyncIterator, Literal

from fastapi import Depends, FastAPI, HTTPException, Query, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ai.classifier import TextClassifier
from ai.clustering import ClusterEngine
from ai.semantic import StructuredTextAnalyzer, build_analyzer
from ai.similarity import SimilarityDetector, SimilarityVerdict

from . import export
from .config import settings
from .db import get_session
from .feeds import RedditFeedClient
from .logging_config import setup_logging
from .models import Category, ProblemOrigin
from .pipelines.clustering import cluster_recent_problems, digest_problems
from .pipelines.ingest import load_feed
from .pipelines.matching import match_problem_to_experts
from .pipelines.submission import (
    DuplicateProblemError,
    SubmissionRejected,
    cast_vote,
    check_submission_similarity,
    register_expert,
    submit_problem,
)
from .rules import RuleStatus
from .storage import ProblemFilters, ProblemNotFoundError, Storage, StorageError

logger = logging.getLogger(__name__)

EXPORT_LIMIT = 10000


# Pydantic request/response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class ProblemDTO(BaseModel):
    """Problem data transfer object."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    origin: str
    channel: str | None = None
    author_handle: str | None = None
    author_reputation: int | None = None
    original_text: str
    summary: str | None = None
    keywords: list[str] | None = None
    category: str | None = None
    popularity: int
    processed: bool
    created_at: datetime


class ExpertDTO(BaseModel):
    """Expert data transfer object."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    affiliation: str
    expertise: list[str]
    description: str
    email: str
    created_at: datetime


class SimilarityVerdictDTO(BaseModel):
    """Duplicate check outcome."""
    is_duplicate: bool
    similar_problem_id: str | None = None
    similarity: float | None = None
    rationale: str = ""

    @classmethod
    def from_verdict(cls, verdict: SimilarityVerdict) -> SimilarityVerdictDTO:
        return cls(
            is_duplicate=verdict.is_duplicate,
            similar_problem_id=verdict.similar_problem_id,
            similarity=verdict.similarity,
            rationale=verdict.rationale,
        )


class SimilarityCheckRequest(BaseModel):
    """Duplicate check request."""
    problem_text: str


class SubmitProblemRequest(BaseModel):
    """Problem submission request."""
    text: str
    origin: ProblemOrigin = ProblemOrigin.DIRECT
    force_submit: bool = False


class DuplicateResponse(BaseModel):
    """Returned with 409 when a submission duplicates a recent problem."""
    message: str
    similarity: SimilarityVerdictDTO
    can_force: bool = True


class VoteRequest(BaseModel):
    """Vote request."""
    voter: str | None = Field(default=None, max_length=255)


class VoteDTO(BaseModel):
    """Vote data transfer object."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    problem_id: str
    voter: str
    created_at: datetime


class VoteResponse(BaseModel):
    """Vote response with the refreshed problem."""
    vote: VoteDTO
    problem: ProblemDTO


class LoadFeedRequest(BaseModel):
    """Feed load request."""
    channels: list[str] | None = None


class LoadFeedResponse(BaseModel):
    """Feed load response."""
    message: str
    failed: int
    skipped: int
    problems: list[ProblemDTO]


class ClusterDTO(BaseModel):
    """Cluster data transfer object."""
    model_config = ConfigDict(from_attributes=True)

    name: str
    problem_ids: list[str]
    common_themes: list[str]
    innovation_gap: int


class CreateExpertRequest(BaseModel):
    """Create expert request."""
    name: str = Field(min_length=1, max_length=255)
    affiliation: str = Field(min_length=1, max_length=255)
    expertise: list[str] = Field(min_length=1)
    description: str = Field(min_length=1)
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")


class RuleTraceDTO(BaseModel):
    """Rule trace data transfer object."""
    model_config = ConfigDict(from_attributes=True)

    rule_id: str
    name: str
    status: RuleStatus
    reason: str
    evidence: list[str]
    score_delta: float = 0.0


class MatchResultDTO(BaseModel):
    """Single expert match."""
    expert: ExpertDTO
    match_score: float
    reasons: list[str]
    rule_trace: list[RuleTraceDTO]


# Dependencies
@lru_cache(maxsize=1)
def get_analyzer() -> StructuredTextAnalyzer:
    """Process-wide analyzer built from settings; override in tests."""
    return build_analyzer(settings.gemini)


def get_classifier(analyzer: StructuredTextAnalyzer = Depends(get_analyzer)) -> TextClassifier:
    return TextClassifier(analyzer, settings.classifier)


def get_detector(analyzer: StructuredTextAnalyzer = Depends(get_analyzer)) -> SimilarityDetector:
    return SimilarityDetector(analyzer)


def get_cluster_engine(analyzer: StructuredTextAnalyzer = Depends(get_analyzer)) -> ClusterEngine:
    return ClusterEngine(analyzer, settings.clustering, settings.gemini)


async def get_feed_client() -> AsyncIterator[RedditFeedClient]:
    async with RedditFeedClient(settings.feeds) as client:
        yield client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title="Problem Hub",
    version=settings.version,
    description="Problem collection, clustering and expert matching",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(SubmissionRejected)
async def submission_rejected_handler(request, exc: SubmissionRejected):
    """Handle input validation failures."""
    logger.info(f"Submission rejected: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="validation_error", detail=str(exc)).model_dump(),
    )


@app.exception_handler(DuplicateProblemError)
async def duplicate_handler(request, exc: DuplicateProblemError):
    """Handle duplicate submissions; the client may resubmit with force."""
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=DuplicateResponse(
            message="Similar problem detected",
            similarity=SimilarityVerdictDTO.from_verdict(exc.verdict),
        ).model_dump(),
    )


@app.exception_handler(ProblemNotFoundError)
async def not_found_handler(request, exc: ProblemNotFoundError):
    """Handle references to missing problems."""
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(error="not_found", detail=str(exc)).model_dump(),
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request, exc: StorageError):
    """Handle persistence failures."""
    logger.error(f"Storage error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="storage_error", detail=str(exc)).model_dump(),
    )


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Unexpected error {action}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed {action}",
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.version)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "problems": "/api/problems",
            "check_similarity": "/api/problems/check-similarity",
            "vote": "/api/problems/{problem_id}/vote",
            "matches": "/api/problems/{problem_id}/matches",
            "clusters": "/api/clusters",
            "experts": "/api/experts",
            "load_feed": "/api/feeds/load",
            "export": "/api/export/{problems|clusters|analytics}",
            "docs": "/docs",
        },
    }


@app.post("/api/problems/check-similarity", response_model=SimilarityVerdictDTO)
async def check_similarity(
    request: SimilarityCheckRequest,
    session: AsyncSession = Depends(get_session),
    detector: SimilarityDetector = Depends(get_detector),
) -> SimilarityVerdictDTO:
    """Check a draft problem against recent problems before submitting."""
    verdict = await check_submission_similarity(
        session, detector, request.problem_text, config=settings.similarity,
    )
    return SimilarityVerdictDTO.from_verdict(verdict)


@app.post(
    "/api/problems",
    response_model=ProblemDTO,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": DuplicateResponse}, 400: {"model": ErrorResponse}},
)
async def create_problem(
    request: SubmitProblemRequest,
    session: AsyncSession = Depends(get_session),
    detector: SimilarityDetector = Depends(get_detector),
    classifier: TextClassifier = Depends(get_classifier),
) -> ProblemDTO:
    """Submit a problem.

    This endpoint:
    1. Rejects text shorter than the minimum length
    2. Checks recent problems for a duplicate (409 unless force_submit)
    3. Classifies the text
    4. Persists the enriched problem
    """
    problem = await submit_problem(
        session,
        detector,
        classifier,
        request.text,
        origin=request.origin,
        force=request.force_submit,
        similarity_config=settings.similarity,
        submission_config=settings.submission,
    )
    return ProblemDTO.model_validate(problem)


@app.get("/api/problems", response_model=list[ProblemDTO])
async def list_problems(
    category: Category | None = None,
    origin: ProblemOrigin | None = None,
    search: str | None = None,
    sort_by: Literal["created_at", "popularity"] = "created_at",
    order: Literal["asc", "desc"] = "desc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> list[ProblemDTO]:
    """List problems with filtering, sorting and pagination."""
    filters = ProblemFilters(
        category=category.value if category else None,
        origin=origin.value if origin else None,
        search=search,
        sort_by=sort_by,
        order=order,
        page=page,
        limit=limit,
    )
    problems = await Storage(session).list_problems(filters)
    return [ProblemDTO.model_validate(p) for p in problems]


@app.post("/api/problems/{problem_id}/vote", response_model=VoteResponse)
async def vote(
    problem_id: str,
    request: VoteRequest | None = None,
    session: AsyncSession = Depends(get_session),
) -> VoteResponse:
    """Vote on a problem and return it with refreshed popularity."""
    outcome = await cast_vote(session, problem_id, request.voter if request else None)
    return VoteResponse(
        vote=VoteDTO.model_validate(outcome.vote),
        problem=ProblemDTO.model_validate(outcome.problem),
    )


@app.get("/api/problems/{problem_id}/matches", response_model=list[MatchResultDTO])
async def problem_matches(
    problem_id: str,
    session: AsyncSession = Depends(get_session),
) -> list[MatchResultDTO]:
    """Experts ranked for a problem; empty for unknown problems."""
    matches = await match_problem_to_experts(session, problem_id, config=settings.matching)
    return [
        MatchResultDTO(
            expert=ExpertDTO.model_validate(m.expert),
            match_score=m.match_score,
            reasons=m.reasons,
            rule_trace=[RuleTraceDTO.model_validate(t) for t in m.rule_trace],
        )
        for m in matches
    ]


@app.post("/api/feeds/load", response_model=LoadFeedResponse)
async def load_feed_data(
    request: LoadFeedRequest | None = None,
    session: AsyncSession = Depends(get_session),
    classifier: TextClassifier = Depends(get_classifier),
    feed_client: RedditFeedClient = Depends(get_feed_client),
) -> LoadFeedResponse:
    """Fetch feed channels and ingest their problem statements."""
    try:
        report = await load_feed(
            session,
            feed_client,
            classifier,
            channels=request.channels if request else None,
            config=settings.feeds,
        )
    except Exception as e:
        raise _internal_error("loading feed data", e)

    return LoadFeedResponse(
        message=f"Loaded and processed {len(report.created)} problems from the feed",
        failed=report.failed,
        skipped=report.skipped,
        problems=[ProblemDTO.model_validate(p) for p in report.created],
    )


@app.get("/api/clusters", response_model=list[ClusterDTO])
async def clusters(
    session: AsyncSession = Depends(get_session),
    engine: ClusterEngine = Depends(get_cluster_engine),
) -> list[ClusterDTO]:
    """Cluster enriched problems on demand."""
    result = await cluster_recent_problems(session, engine)
    return [ClusterDTO.model_validate(c) for c in result]


@app.get("/api/experts", response_model=list[ExpertDTO])
async def list_experts(
    expertise: str | None = None,
    search: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> list[ExpertDTO]:
    """List experts, optionally by expertise tag or free text."""
    experts = await Storage(session).list_experts(expertise=expertise, search=search)
    return [ExpertDTO.model_validate(e) for e in experts]


@app.post("/api/experts", response_model=ExpertDTO, status_code=status.HTTP_201_CREATED)
async def create_expert(
    request: CreateExpertRequest,
    session: AsyncSession = Depends(get_session),
) -> ExpertDTO:
    """Register an expert profile."""
    expert = await register_expert(session, **request.model_dump())
    return ExpertDTO.model_validate(expert)


# Export
async def _filtered_problems(
    session: AsyncSession,
    category: Category | None,
    origin: ProblemOrigin | None,
    search: str | None,
    sort_by: str = "created_at",
    order: str = "desc",
):
    filters = ProblemFilters(
        category=category.value if category else None,
        origin=origin.value if origin else None,
        search=search,
        sort_by=sort_by,
        order=order,
        page=1,
        limit=EXPORT_LIMIT,
    )
    return await Storage(session).list_problems(filters)


def _export_filters(category: Category | None, origin: ProblemOrigin | None, search: str | None, **extra) -> dict:
    return {
        "category": category.value if category else None,
        "origin": origin.value if origin else None,
        "search": search,
        **extra,
    }


async def _clusters_for_export(session, engine, problems, filtered: bool):
    # Filtered exports cluster only what the filters selected
    if filtered:
        return await engine.cluster(digest_problems(problems))
    return await cluster_recent_problems(session, engine)


def _export_response(kind: str, export_format: str, filters: dict, csv_body: str | None, payload: dict) -> Response:
    filename = export.export_filename(kind, filters, export_format)
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    if export_format == "csv":
        return Response(content=csv_body, media_type="text/csv", headers=headers)
    return JSONResponse(content=jsonable_encoder(export.export_envelope(filters, **payload)), headers=headers)


@app.get("/api/export/problems")
async def export_problems(
    format: Literal["json", "csv"] = "json",
    category: Category | None = None,
    origin: ProblemOrigin | None = None,
    search: str | None = None,
    sort_by: Literal["created_at", "popularity"] = "created_at",
    order: Literal["asc", "desc"] = "desc",
    session: AsyncSession = Depends(get_session),
) -> Response:
    """Export problems as CSV or JSON."""
    problems = await _filtered_problems(session, category, origin, search, sort_by, order)
    filters = _export_filters(category, origin, search, sort_by=sort_by, order=order)
    return _export_response(
        "problems",
        format,
        filters,
        export.problems_to_csv(problems) if format == "csv" else None,
        {"total_problems": len(problems), "data": [export.problem_to_dict(p) for p in problems]},
    )


@app.get("/api/export/clusters")
async def export_clusters(
    format: Literal["json", "csv"] = "json",
    category: Category | None = None,
    origin: ProblemOrigin | None = None,
    search: str | None = None,
    session: AsyncSession = Depends(get_session),
    engine: ClusterEngine = Depends(get_cluster_engine),
) -> Response:
    """Export clusters (with their problems in JSON) as CSV or JSON."""
    problems = await _filtered_problems(session, category, origin, search)
    filtered = bool(category or origin or search)
    result = await _clusters_for_export(session, engine, problems, filtered)
    problems_by_id = {p.id: p for p in problems}
    filters = _export_filters(category, origin, search)
    return _export_response(
        "clusters",
        format,
        filters,
        export.clusters_to_csv(result) if format == "csv" else None,
        {
            "total_clusters": len(result),
            "data": [export.cluster_to_dict(c, problems_by_id) for c in result],
        },
    )


@app.get("/api/export/analytics")
async def export_analytics(
    format: Literal["json", "csv"] = "json",
    category: Category | None = None,
    origin: ProblemOrigin | None = None,
    search: str | None = None,
    session: AsyncSession = Depends(get_session),
    engine: ClusterEngine = Depends(get_cluster_engine),
) -> Response:
    """Export an analytics summary, plus the underlying data in JSON."""
    problems = await _filtered_problems(session, category, origin, search)
    filtered = bool(category or origin or search)
    result = await _clusters_for_export(session, engine, problems, filtered)
    experts = await Storage(session).list_experts()
    summary = export.analytics_summary(problems, result, len(experts))
    filters = _export_filters(category, origin, search)
    return _export_response(
        "analytics",
        format,
        filters,
        export.analytics_to_csv(summary) if format == "csv" else None,
        {
            "summary": summary,
            "problems": [export.problem_to_dict(p) for p in problems],
            "clusters": [export.cluster_to_dict(c) for c in result],
            "experts": [export.expert_to_dict(e) for e in experts],
        },
    )
