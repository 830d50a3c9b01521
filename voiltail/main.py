"""FastAPI backend for Voiltail."""

import logging
import uuid
from contextlib import aclosing, asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from . import __version__
from .attachments import AttachmentError, validate_attachments
from .config import (
    CORS_ORIGINS,
    COST_TRACKING_FILE,
    RESULT_SWEEP_INTERVAL_SECONDS,
    RESULT_TTL_MINUTES,
    get_missing_provider_keys,
)
from .cost_tracking import TARGET_COST_PER_QUERY, TARGET_PROCESSING_SECONDS, CostTracker
from .events import format_sse
from .logging_config import set_correlation_id, setup_logging
from .pipeline import (
    MODES,
    PipelineError,
    PipelineInput,
    run_pipeline,
    run_synthesis_stream,
    select_synthesis_input,
)
from .providers import close_shared_client
from .result_store import ResultStore
from .shutdown import shutdown_coordinator
from .telemetry import instrument_app, setup_telemetry

logger = logging.getLogger(__name__)

SERVICE_NAME = "voiltail"
CORRELATION_HEADER = "X-Request-ID"


class SynthesisRequest(BaseModel):
    """Request body for both synthesis endpoints.

    Fields are loosely typed so that a missing or malformed prompt or mode is
    reported with its own error code instead of a generic validation error.
    """
    prompt: Optional[Any] = None
    mode: Optional[Any] = "pro"
    attachments: Optional[List[Dict[str, Any]]] = None


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": code, "message": message})


def _validate_request(request: SynthesisRequest) -> PipelineInput:
    """Check a synthesis request and build the pipeline input.

    Raises:
        HTTPException: 400 for a bad prompt, mode or attachment; 500 when
            provider keys are missing
    """
    if not isinstance(request.prompt, str) or not request.prompt.strip():
        raise _error(400, "prompt_required", "Prompt is required")

    if request.mode not in MODES:
        raise _error(400, "invalid_mode", f"Mode must be one of: {', '.join(MODES)}")

    try:
        attachments = validate_attachments(request.attachments)
    except AttachmentError as e:
        raise _error(400, "invalid_attachment", str(e))

    missing = get_missing_provider_keys()
    if missing:
        logger.error("Missing provider API keys. Keys: %s", ", ".join(missing))
        raise _error(500, "missing_api_keys", f"Missing API keys: {', '.join(missing)}")

    return PipelineInput(prompt=request.prompt, mode=request.mode, attachments=attachments)


router = APIRouter()


@router.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": SERVICE_NAME, "version": __version__}


@router.post("/api/ai/synthesize")
async def synthesize(body: SynthesisRequest, request: Request):
    """Run a synthesis and return the full analysis in one response."""
    pipeline_input = _validate_request(body)
    cost_tracker: CostTracker = request.app.state.cost_tracker

    try:
        result = await run_pipeline(pipeline_input)
    except PipelineError as e:
        logger.error("Synthesis failed. Error: %s", e)
        raise _error(500, "synthesis_failed", str(e))

    cost = cost_tracker.track_query(pipeline_input.mode, result.processing_time_ms)
    return {
        "analysis": result.analysis.to_dict(),
        "metadata": {
            "total_time": result.processing_time_ms,
            "model_count": len(select_synthesis_input(result.responses)),
            "has_errors": result.has_errors,
            "estimated_cost": cost.total,
        },
    }


@router.post("/api/ai/synthesize-stream")
async def synthesize_stream(body: SynthesisRequest, request: Request):
    """
    Run a synthesis and stream progress as Server-Sent Events.

    The final event carries a result id; fetch the analysis from
    /api/ai/synthesis-result/{result_id}.
    """
    if body.mode != "pro":
        raise _error(400, "streaming_requires_pro_mode", "Streaming is only available in pro mode")
    pipeline_input = _validate_request(body)

    result_store: ResultStore = request.app.state.result_store
    cost_tracker: CostTracker = request.app.state.cost_tracker

    async def event_generator():
        shutdown_coordinator.register_stream()
        try:
            stream = run_synthesis_stream(
                pipeline_input, result_store=result_store, cost_tracker=cost_tracker
            )
            async with aclosing(stream):
                async for event in stream:
                    if shutdown_coordinator.is_shutting_down:
                        yield format_sse(shutdown_coordinator.shutdown_event())
                        return
                    yield format_sse(event)
        finally:
            shutdown_coordinator.unregister_stream()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.get("/api/ai/synthesis-result/")
async def get_synthesis_result_without_id():
    raise _error(400, "result_id_required", "Result ID is required")


@router.get("/api/ai/synthesis-result/{result_id}")
async def get_synthesis_result(result_id: str, request: Request):
    """Fetch a streamed synthesis result. Each result can be read once."""
    if not result_id.strip():
        raise _error(400, "result_id_required", "Result ID is required")

    result_store: ResultStore = request.app.state.result_store
    analysis = result_store.take(result_id)
    if analysis is None:
        raise _error(404, "result_not_found", "Result not found or expired")

    return {"analysis": analysis.to_dict(), "retrieved": True}


@router.get("/api/cost-validation")
async def cost_validation(request: Request):
    """Pro-tier target validation plus recent cost and timing statistics."""
    cost_tracker: CostTracker = request.app.state.cost_tracker
    validation = cost_tracker.validate_targets()
    stats = cost_tracker.get_performance_stats(7)

    return {
        "validation": {
            "processing_time": {
                "passed": validation["processing_time_ok"],
                "target": f"<{TARGET_PROCESSING_SECONDS} seconds",
                "actual": f"{validation['avg_time']:.1f} seconds",
            },
            "cost_per_query": {
                "passed": validation["cost_per_query_ok"],
                "target": f"<${TARGET_COST_PER_QUERY}",
                "actual": f"${validation['avg_cost']:.4f}",
            },
        },
        "performance_stats": {
            tier: {
                "average_cost": tier_stats["avg_cost"],
                "average_time": round(tier_stats["avg_time"] / 1000),
                "query_count": tier_stats["count"],
            }
            for tier, tier_stats in stats.items()
        },
        "cost_summary": {"last_30_days": cost_tracker.get_total_costs(30)},
        "recommendations": cost_tracker.get_recommendations(),
    }


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400 with the standard error shape."""
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "error": "invalid_request",
                "message": "Invalid request body",
                "errors": jsonable_encoder(exc.errors()),
            }
        },
    )


def create_app(
    result_store: Optional[ResultStore] = None,
    cost_tracker: Optional[CostTracker] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        result_store: Result handoff store (a fresh one if None)
        cost_tracker: Cost log (backed by COST_TRACKING_FILE if None)

    Returns:
        Configured FastAPI app
    """
    store = result_store or ResultStore(
        default_ttl_minutes=RESULT_TTL_MINUTES,
        sweep_interval_seconds=RESULT_SWEEP_INTERVAL_SECONDS,
    )
    tracker = cost_tracker or CostTracker(COST_TRACKING_FILE or None)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        shutdown_coordinator.reset()
        store.start()
        logger.info("Voiltail started. Version: %s", __version__)
        try:
            yield
        finally:
            shutdown_coordinator.initiate_shutdown()
            store.shutdown()
            await close_shared_client()
            logger.info("Voiltail stopped")

    app = FastAPI(title="Voiltail API", version=__version__, lifespan=lifespan)
    app.state.result_store = store
    app.state.cost_tracker = tracker

    # Enable CORS for a separately served frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            set_correlation_id(None)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.include_router(router)

    # Instrumentation adds middleware, so it must run before startup
    if setup_telemetry(service_version=__version__):
        instrument_app(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
