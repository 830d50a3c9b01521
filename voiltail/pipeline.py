"""Synthesis pipeline: fan out to the providers, score agreement, merge.

Per query the pipeline moves through

    STARTED -> MODELS_IN_FLIGHT -> MODELS_SETTLED -> SIMILARITY_COMPUTED
    -> SYNTHESIS_IN_FLIGHT -> COMPLETE

and ends in ERRORED only when no response came back at all. Provider,
embedding, synthesis-call and analysis failures are absorbed below this
level and show up as degraded content, not as errors.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Awaitable, Callable

from . import events
from .alignment import (
    METHODOLOGY_SEMANTIC,
    METHODOLOGY_WORD_OVERLAP,
    calculate_alignment,
    single_response_alignment,
)
from .attachments import Attachment
from .config import PROVIDER_TIMEOUT_SECONDS
from .cost_tracking import CostTracker
from .divergence import find_divergences
from .models import (
    AlignmentData,
    AlignmentLevel,
    ConsensusAnalysis,
    DivergentSection,
    ModelResponse,
    Provider,
)
from .providers import ProviderError, call_provider
from .result_store import ResultStore
from .similarity import jaccard_similarity, semantic_similarity
from .synthesis import fallback_synthesis, generate_unified_response
from .telemetry import get_tracer, is_telemetry_enabled, record_span_error

logger = logging.getLogger(__name__)

MODES = ("pro", "basic")

SYNTHESIS_ERROR_INTRO = "Error during synthesis. Here are the individual responses:"

ModelCallback = Callable[[ModelResponse, int, int], Awaitable[None]]
PhaseCallback = Callable[[str], Awaitable[None]]


class PipelineState(str, Enum):
    """Lifecycle of one synthesis request."""

    STARTED = "started"
    MODELS_IN_FLIGHT = "models_in_flight"
    MODELS_SETTLED = "models_settled"
    SIMILARITY_COMPUTED = "similarity_computed"
    SYNTHESIS_IN_FLIGHT = "synthesis_in_flight"
    COMPLETE = "complete"
    ERRORED = "errored"


class PipelineError(Exception):
    """The pipeline could not produce an analysis."""


@dataclass(frozen=True)
class PipelineInput:
    """Everything a synthesis run needs."""

    prompt: str
    mode: str = "pro"
    attachments: list[Attachment] = field(default_factory=list)
    providers: tuple[Provider, ...] = tuple(Provider)
    provider_timeout: float = PROVIDER_TIMEOUT_SECONDS


@dataclass
class PipelineResult:
    """Analysis plus the bookkeeping the endpoints report."""

    analysis: ConsensusAnalysis
    responses: list[ModelResponse]
    processing_time_ms: int
    state: PipelineState = PipelineState.COMPLETE

    @property
    def successful_count(self) -> int:
        return sum(1 for r in self.responses if not r.is_error)

    @property
    def has_errors(self) -> bool:
        return any(r.is_error for r in self.responses)


class _PipelineRun:
    """Tracks the state machine for one run."""

    def __init__(self) -> None:
        self.state = PipelineState.STARTED

    def advance(self, state: PipelineState) -> None:
        logger.debug("Pipeline state change. From: %s, To: %s", self.state.value, state.value)
        self.state = state


async def _call_isolated(
    provider: Provider,
    prompt: str,
    attachments: list[Attachment],
    timeout: float,
) -> ModelResponse:
    """Call one provider, turning every failure into a placeholder response."""
    try:
        return await asyncio.wait_for(
            call_provider(provider, prompt, attachments, timeout=timeout), timeout
        )
    except asyncio.TimeoutError:
        logger.warning("Provider timed out. Provider: %s, TimeoutSeconds: %.0f", provider.value, timeout)
        return ModelResponse.failure(
            provider, f"{provider.value} API call failed: timed out after {timeout:.0f}s"
        )
    except ProviderError as e:
        logger.warning(
            "Provider failed. Provider: %s, Category: %s, Status: %s, Error: %s",
            provider.value, e.category, e.status_code, e.message,
        )
        return ModelResponse.failure(provider, str(e))
    except Exception as e:
        logger.exception("Provider raised unexpectedly. Provider: %s", provider.value)
        return ModelResponse.failure(
            provider, f"{provider.value} API call failed: {e or type(e).__name__}"
        )


async def collect_responses(
    prompt: str,
    attachments: list[Attachment] | None = None,
    on_model_complete: ModelCallback | None = None,
    providers: tuple[Provider, ...] = tuple(Provider),
    timeout: float = PROVIDER_TIMEOUT_SECONDS,
) -> list[ModelResponse]:
    """
    Query every provider concurrently and wait for all of them to settle.

    Args:
        prompt: The user's prompt
        attachments: Optional attachments forwarded to each provider
        on_model_complete: Awaited as (response, completed, total) when each
            provider settles, in completion order
        providers: Providers to query
        timeout: Per-provider ceiling in seconds; exceeding it is a failure

    Returns:
        One response per provider in dispatch order; failed providers yield
        error placeholders
    """
    tracer = get_tracer()
    total = len(providers)
    completed = 0

    async def run_one(provider: Provider) -> ModelResponse:
        nonlocal completed
        response = await _call_isolated(provider, prompt, attachments or [], timeout)
        completed += 1
        if on_model_complete:
            await on_model_complete(response, completed, total)
        return response

    span_attributes = {"pipeline.provider_count": total}
    with tracer.start_as_current_span("pipeline.collect_responses", attributes=span_attributes) as span:
        responses = list(await asyncio.gather(*(run_one(p) for p in providers)))

        if is_telemetry_enabled():
            failures = sum(1 for r in responses if r.is_error)
            span.set_attributes({
                "pipeline.success_count": total - failures,
                "pipeline.failure_count": failures,
            })

    return responses


def select_synthesis_input(responses: list[ModelResponse]) -> list[ModelResponse]:
    """Successful responses if any exist, otherwise the error placeholders."""
    valid = [r for r in responses if not r.is_error]
    return valid if valid else list(responses)


async def _emit_phase(on_phase: PhaseCallback | None, phase: str) -> None:
    if on_phase:
        await on_phase(phase)


async def analyze_responses(
    responses: list[ModelResponse],
    original_responses: list[ModelResponse] | None = None,
    mode: str = "pro",
    on_phase: PhaseCallback | None = None,
) -> ConsensusAnalysis:
    """
    Score agreement across responses and produce the unified answer.

    The pro path uses embeddings and the synthesis model; the basic path uses
    word overlap only and concatenates. A single response is returned
    verbatim with every similarity set to 1.0.

    Args:
        responses: Synthesis input (see select_synthesis_input)
        original_responses: Every provider response, recorded on the result;
            defaults to ``responses``
        mode: "pro" or "basic"
        on_phase: Awaited with each analysis phase event type as it starts

    Returns:
        The complete analysis. If scoring or merging raises, an error
        analysis that lists each response verbatim is returned instead.

    Raises:
        PipelineError: If there is nothing to analyze or the mode is unknown
    """
    if not responses:
        raise PipelineError("No responses to synthesize")
    if mode not in MODES:
        raise PipelineError(f"Unknown synthesis mode: {mode}")

    originals = list(original_responses) if original_responses is not None else list(responses)
    methodology = METHODOLOGY_SEMANTIC if mode == "pro" else METHODOLOGY_WORD_OVERLAP

    try:
        return await _score_and_merge(responses, originals, mode, methodology, on_phase)
    except Exception:
        logger.exception("Analysis failed, returning individual responses. Mode: %s", mode)
        return synthesis_error_analysis(responses, originals, methodology)


def synthesis_error_analysis(
    responses: list[ModelResponse],
    original_responses: list[ModelResponse],
    methodology: str,
) -> ConsensusAnalysis:
    """Analysis used when scoring or merging fails: every response verbatim, zero agreement."""
    listed = "\n\n".join(f"**{r.model.value.upper()}**: {r.content}" for r in responses)
    alignment = AlignmentData(
        semantic=0.0,
        surface=0.0,
        model_levels={provider: AlignmentLevel.LOW for provider in Provider},
        overall_alignment=AlignmentLevel.LOW,
        description="Synthesis error occurred",
        methodology=methodology,
    )
    return ConsensusAnalysis(
        unified_response=f"{SYNTHESIS_ERROR_INTRO}\n\n{listed}",
        alignment=alignment,
        aligned_points=[],
        divergent_sections=[
            DivergentSection(
                topic="Synthesis Error",
                content="Unable to synthesize responses due to technical error",
                models=[r.model.value for r in responses],
                description="Technical error prevented proper synthesis",
            )
        ],
        original_responses=list(original_responses),
    )


async def _score_and_merge(
    responses: list[ModelResponse],
    originals: list[ModelResponse],
    mode: str,
    methodology: str,
    on_phase: PhaseCallback | None,
) -> ConsensusAnalysis:
    is_pro = mode == "pro"

    await _emit_phase(on_phase, events.EMBEDDINGS_STARTED)

    if len(responses) == 1:
        await _emit_phase(on_phase, events.EMBEDDINGS_PROGRESS)
        await _emit_phase(on_phase, events.SYNTHESIS_STARTED)
        alignment = single_response_alignment(responses[0], methodology)
        return ConsensusAnalysis(
            unified_response=responses[0].content,
            alignment=alignment,
            aligned_points=list(alignment.aligned_points),
            divergent_sections=[],
            original_responses=originals,
        )

    texts = [r.content for r in responses]
    surface = jaccard_similarity(texts)
    semantic = await semantic_similarity(texts) if is_pro else surface
    await _emit_phase(on_phase, events.EMBEDDINGS_PROGRESS)

    alignment = calculate_alignment(responses, semantic, surface, methodology)
    divergences = find_divergences(responses, include_keyword_check=is_pro)

    await _emit_phase(on_phase, events.SYNTHESIS_STARTED)
    if is_pro:
        unified = await generate_unified_response(responses, alignment)
    else:
        unified = fallback_synthesis(responses)

    logger.info(
        "Analysis complete. Mode: %s, Responses: %d, Semantic: %.3f, Surface: %.3f, Alignment: %s, Divergences: %d",
        mode, len(responses), semantic, surface, alignment.overall_alignment.value, len(divergences),
    )
    return ConsensusAnalysis(
        unified_response=unified,
        alignment=alignment,
        aligned_points=list(alignment.aligned_points),
        divergent_sections=divergences,
        original_responses=originals,
    )


_PHASE_STATES = {
    events.EMBEDDINGS_PROGRESS: PipelineState.SIMILARITY_COMPUTED,
    events.SYNTHESIS_STARTED: PipelineState.SYNTHESIS_IN_FLIGHT,
}


async def run_pipeline(
    input: PipelineInput,
    on_model_complete: ModelCallback | None = None,
    on_phase: PhaseCallback | None = None,
) -> PipelineResult:
    """
    Run one query end to end.

    Args:
        input: Prompt, mode, attachments and provider settings
        on_model_complete: See collect_responses
        on_phase: See analyze_responses

    Returns:
        PipelineResult with the analysis and total wall-clock time

    Raises:
        PipelineError: If no response exists at all or the mode is unknown
    """
    tracer = get_tracer()
    run = _PipelineRun()
    start_time = time.monotonic()

    async def track_phase(phase: str) -> None:
        if phase in _PHASE_STATES:
            run.advance(_PHASE_STATES[phase])
        await _emit_phase(on_phase, phase)

    logger.info(
        "Beginning synthesis pipeline. Mode: %s, Providers: %d, Attachments: %d, PromptChars: %d",
        input.mode, len(input.providers), len(input.attachments), len(input.prompt),
    )

    span_attributes = {"pipeline.mode": input.mode, "pipeline.provider_count": len(input.providers)}
    with tracer.start_as_current_span("pipeline.run", attributes=span_attributes) as span:
        try:
            run.advance(PipelineState.MODELS_IN_FLIGHT)
            responses = await collect_responses(
                input.prompt,
                input.attachments,
                on_model_complete=on_model_complete,
                providers=input.providers,
                timeout=input.provider_timeout,
            )
            run.advance(PipelineState.MODELS_SETTLED)

            if not responses:
                raise PipelineError("All models failed")

            synthesis_input = select_synthesis_input(responses)
            if len(synthesis_input) < len(responses):
                logger.info(
                    "Excluding failed providers from synthesis. Usable: %d/%d",
                    len(synthesis_input), len(responses),
                )
            elif synthesis_input and synthesis_input[0].is_error:
                logger.warning("All providers failed, synthesizing error placeholders")

            analysis = await analyze_responses(
                synthesis_input, responses, mode=input.mode, on_phase=track_phase
            )
        except Exception as e:
            run.advance(PipelineState.ERRORED)
            record_span_error(span, e)
            if isinstance(e, PipelineError):
                raise
            raise PipelineError(f"Synthesis failed: {e}") from e

        run.advance(PipelineState.COMPLETE)

    processing_time_ms = int((time.monotonic() - start_time) * 1000)
    logger.info(
        "Successfully completed synthesis pipeline. Mode: %s, DurationMs: %d",
        input.mode, processing_time_ms,
    )
    return PipelineResult(
        analysis=analysis,
        responses=responses,
        processing_time_ms=processing_time_ms,
        state=run.state,
    )


async def run_synthesis_stream(
    input: PipelineInput,
    *,
    result_store: ResultStore,
    cost_tracker: CostTracker,
) -> AsyncGenerator[dict[str, Any], None]:
    """Run the pipeline, yielding progress event dicts.

    Model events are yielded in completion order. The stream always ends
    with exactly one terminal event: synthesis_complete (carrying the
    result-store id) or error.

    Args:
        input: Pipeline parameters.
        result_store: Where the finished analysis is handed off.
        cost_tracker: Records the query's estimated cost.
    """
    yield events.started_event()

    # Callbacks run inside the pipeline task; the queue hands their events
    # to this generator. None marks the end of the run.
    event_queue: asyncio.Queue = asyncio.Queue()

    async def on_model_complete(response: ModelResponse, completed: int, total: int) -> None:
        await event_queue.put(events.model_event(response, completed, total))

    async def on_phase(phase: str) -> None:
        await event_queue.put(events.phase_event(phase))

    async def run() -> PipelineResult:
        try:
            return await run_pipeline(input, on_model_complete=on_model_complete, on_phase=on_phase)
        finally:
            await event_queue.put(None)

    task = asyncio.create_task(run())
    try:
        while True:
            event = await event_queue.get()
            if event is None:
                break
            yield event

        result = await task
        cost = cost_tracker.track_query(input.mode, result.processing_time_ms)
        result_id = result_store.put(result.analysis)
    except Exception as e:
        logger.exception("Failed streaming synthesis. Error: %s", e)
        yield events.error_event(str(e))
        return
    finally:
        if not task.done():
            task.cancel()

    yield events.synthesis_complete_event(
        result_id,
        {
            "total_models": len(result.responses),
            "successful_models": result.successful_count,
            "has_errors": result.has_errors,
            "estimated_cost": cost.total,
            "processing_time": result.processing_time_ms,
        },
    )
