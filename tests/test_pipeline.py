"""Tests for the synthesis pipeline and its streaming wrapper."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from voiltail.cost_tracking import CostTracker
from voiltail.events import TERMINAL_EVENTS
from voiltail.models import AlignmentLevel, ModelResponse, Provider
from voiltail.pipeline import (
    PipelineError,
    PipelineInput,
    SYNTHESIS_ERROR_INTRO,
    PipelineState,
    analyze_responses,
    collect_responses,
    run_pipeline,
    run_synthesis_stream,
    select_synthesis_input,
)
from voiltail.providers import ProviderError
from voiltail.result_store import ResultStore

AI_ANSWERS = {
    Provider.GEMINI: "Artificial intelligence is the simulation of human intelligence by machines.",
    Provider.OPENAI: "Artificial intelligence is the simulation of human intelligence in machines.",
    Provider.CLAUDE: "Artificial intelligence means machines performing the simulation of human intelligence.",
}


def make_input(**overrides) -> PipelineInput:
    """Factory for test inputs with sensible defaults."""
    defaults = {"prompt": "What is artificial intelligence?", "mode": "pro"}
    defaults.update(overrides)
    return PipelineInput(**defaults)


def fake_provider(answers=None, delays=None, failures=None):
    """Build a stand-in for call_provider with per-provider delays and failures."""
    answers = answers or AI_ANSWERS
    delays = delays or {}
    failures = failures or {}

    async def call(provider, prompt, attachments=None, timeout=None):
        await asyncio.sleep(delays.get(provider, 0))
        if provider in failures:
            raise failures[provider]
        return ModelResponse.success(provider, answers[provider], 100)

    return call


async def collect_events(pipeline) -> list[dict]:
    """Drain an async generator into a list."""
    return [event async for event in pipeline]


def event_types(events: list[dict]) -> list[str]:
    """Extract just the type field from events."""
    return [e["type"] for e in events]


class TestCollectResponses:
    """Tests for collect_responses."""

    @pytest.mark.asyncio
    async def test_results_in_dispatch_order_callbacks_in_completion_order(self):
        """Callbacks fire as providers settle; the returned list keeps provider order."""
        delays = {Provider.GEMINI: 0.01, Provider.OPENAI: 0.05, Provider.CLAUDE: 0.005}
        completed = []

        async def on_model_complete(response, done, total):
            completed.append((response.model, done, total))

        with patch("voiltail.pipeline.call_provider", side_effect=fake_provider(delays=delays)):
            responses = await collect_responses("prompt", on_model_complete=on_model_complete)

        assert [r.model for r in responses] == [Provider.GEMINI, Provider.OPENAI, Provider.CLAUDE]
        assert completed == [
            (Provider.CLAUDE, 1, 3),
            (Provider.GEMINI, 2, 3),
            (Provider.OPENAI, 3, 3),
        ]

    @pytest.mark.asyncio
    async def test_provider_failure_becomes_placeholder(self):
        failures = {Provider.OPENAI: ProviderError(Provider.OPENAI, "quota exceeded", 429, "rate_limit")}

        with patch("voiltail.pipeline.call_provider", side_effect=fake_provider(failures=failures)):
            responses = await collect_responses("prompt")

        assert [r.is_error for r in responses] == [False, True, False]
        assert responses[1].error == "openai API call failed: quota exceeded"
        assert responses[1].response_time == 0

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_isolated(self):
        failures = {Provider.CLAUDE: KeyError("boom")}

        with patch("voiltail.pipeline.call_provider", side_effect=fake_provider(failures=failures)):
            responses = await collect_responses("prompt")

        assert responses[2].is_error
        assert not responses[0].is_error

    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self):
        delays = {Provider.GEMINI: 1.0}

        with patch("voiltail.pipeline.call_provider", side_effect=fake_provider(delays=delays)):
            responses = await collect_responses("prompt", timeout=0.05)

        assert responses[0].is_error
        assert "timed out" in responses[0].error
        assert not responses[1].is_error


class TestSelectSynthesisInput:
    """Tests for select_synthesis_input."""

    def test_prefers_successes(self):
        ok = ModelResponse.success(Provider.GEMINI, "fine", 10)
        bad = ModelResponse.failure(Provider.OPENAI, "down")
        assert select_synthesis_input([ok, bad]) == [ok]

    def test_falls_back_to_placeholders(self):
        bad = [ModelResponse.failure(p, "down") for p in Provider]
        assert select_synthesis_input(bad) == bad


class TestAnalyzeResponses:
    """Tests for analyze_responses."""

    @pytest.mark.asyncio
    async def test_single_response_shortcut(self):
        """One response is returned verbatim without embeddings or synthesis."""
        response = ModelResponse.success(Provider.CLAUDE, "Only answer", 50)
        phases = []

        async def on_phase(phase):
            phases.append(phase)

        with (
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed,
            patch("voiltail.synthesis.generate_text", new_callable=AsyncMock) as mock_generate,
        ):
            analysis = await analyze_responses([response], on_phase=on_phase)

        assert analysis.unified_response == "Only answer"
        assert analysis.alignment.semantic == 1.0
        assert analysis.alignment.surface == 1.0
        assert analysis.divergent_sections == []
        assert phases == ["embeddings_started", "embeddings_progress", "synthesis_started"]
        mock_embed.assert_not_called()
        mock_generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_basic_mode_uses_word_overlap_only(self, three_responses):
        with (
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed,
            patch("voiltail.synthesis.generate_text", new_callable=AsyncMock) as mock_generate,
        ):
            analysis = await analyze_responses(three_responses, mode="basic")

        assert analysis.alignment.methodology == "word-overlap-v1"
        assert analysis.alignment.semantic == analysis.alignment.surface
        assert analysis.unified_response.startswith("Based on analysis from multiple AI models")
        mock_embed.assert_not_called()
        mock_generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_input_raises(self):
        with pytest.raises(PipelineError):
            await analyze_responses([])

    @pytest.mark.asyncio
    async def test_unknown_mode_raises(self, three_responses):
        with pytest.raises(PipelineError, match="mode"):
            await analyze_responses(three_responses, mode="turbo")


class TestRunPipeline:
    """Tests for run_pipeline."""

    @pytest.mark.asyncio
    async def test_end_to_end_agreeing_models(self):
        """Three consistent answers yield high alignment and aligned points."""
        with (
            patch("voiltail.pipeline.call_provider", side_effect=fake_provider()),
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed,
            patch("voiltail.synthesis.generate_text", new_callable=AsyncMock) as mock_generate,
        ):
            mock_embed.return_value = [0.6, 0.8]
            mock_generate.return_value = "AI is the simulation of human intelligence by machines."
            result = await run_pipeline(make_input())

        analysis = result.analysis
        assert result.state == PipelineState.COMPLETE
        assert analysis.alignment.overall_alignment == AlignmentLevel.HIGH
        assert len(analysis.aligned_points) >= 1
        assert analysis.unified_response == "AI is the simulation of human intelligence by machines."
        assert len(analysis.original_responses) == 3
        assert result.successful_count == 3
        assert result.has_errors is False
        assert len(analysis.divergent_sections) <= 1

    @pytest.mark.asyncio
    async def test_partial_failure_excludes_failed_provider(self):
        failures = {Provider.GEMINI: ProviderError(Provider.GEMINI, "down")}

        with (
            patch("voiltail.pipeline.call_provider", side_effect=fake_provider(failures=failures)),
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed,
            patch("voiltail.synthesis.generate_text", new_callable=AsyncMock) as mock_generate,
        ):
            mock_embed.return_value = [1.0, 0.0]
            mock_generate.return_value = "Merged"
            result = await run_pipeline(make_input())

        assert mock_embed.await_count == 2
        assert result.has_errors is True
        assert len(result.analysis.original_responses) == 3
        synthesized = mock_generate.call_args.args[1]
        assert "Gemini" not in synthesized

    @pytest.mark.asyncio
    async def test_all_providers_failing_still_completes(self):
        """Error placeholders are synthesized instead of failing the request."""
        failures = {p: ProviderError(p, "down") for p in Provider}

        with (
            patch("voiltail.pipeline.call_provider", side_effect=fake_provider(failures=failures)),
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed,
            patch("voiltail.synthesis.generate_text", new_callable=AsyncMock) as mock_generate,
        ):
            mock_embed.side_effect = RuntimeError("no embeddings")
            mock_generate.side_effect = RuntimeError("no synthesis")
            result = await run_pipeline(make_input())

        assert result.successful_count == 0
        assert result.analysis.alignment.semantic == 0.5
        assert result.analysis.unified_response.startswith("Based on analysis from multiple AI models")

    @pytest.mark.asyncio
    async def test_analysis_failure_returns_individual_responses(self):
        """A failing analysis step degrades to an error analysis instead of raising."""
        with (
            patch("voiltail.pipeline.call_provider", side_effect=fake_provider()),
            patch("voiltail.pipeline.find_divergences", side_effect=RuntimeError("heuristic blew up")),
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock, return_value=[1.0]),
            patch("voiltail.synthesis.generate_text", new_callable=AsyncMock) as mock_generate,
        ):
            result = await run_pipeline(make_input())

        analysis = result.analysis
        assert result.state == PipelineState.COMPLETE
        assert analysis.unified_response.startswith(SYNTHESIS_ERROR_INTRO)
        assert f"**GEMINI**: {AI_ANSWERS[Provider.GEMINI]}" in analysis.unified_response
        assert f"**CLAUDE**: {AI_ANSWERS[Provider.CLAUDE]}" in analysis.unified_response
        assert analysis.alignment.semantic == 0.0
        assert analysis.alignment.surface == 0.0
        assert analysis.alignment.overall_alignment == AlignmentLevel.LOW
        assert set(analysis.alignment.model_levels.values()) == {AlignmentLevel.LOW}
        assert analysis.alignment.description == "Synthesis error occurred"
        assert analysis.aligned_points == []
        assert [d.topic for d in analysis.divergent_sections] == ["Synthesis Error"]
        assert analysis.divergent_sections[0].models == ["gemini", "openai", "claude"]
        assert len(analysis.original_responses) == 3
        mock_generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_two_failures_use_single_response_shortcut(self):
        """The one surviving answer is returned verbatim; originals keep every provider."""
        failures = {
            Provider.GEMINI: ProviderError(Provider.GEMINI, "down"),
            Provider.CLAUDE: ProviderError(Provider.CLAUDE, "down"),
        }

        with (
            patch("voiltail.pipeline.call_provider", side_effect=fake_provider(failures=failures)),
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed,
            patch("voiltail.synthesis.generate_text", new_callable=AsyncMock) as mock_generate,
        ):
            result = await run_pipeline(make_input())

        analysis = result.analysis
        assert analysis.unified_response == AI_ANSWERS[Provider.OPENAI]
        assert analysis.alignment.semantic == 1.0
        assert analysis.alignment.surface == 1.0
        assert analysis.divergent_sections == []
        assert [r.model for r in analysis.original_responses] == list(Provider)
        assert result.successful_count == 1
        mock_embed.assert_not_called()
        mock_generate.assert_not_called()


class TestRunSynthesisStream:
    """Tests for run_synthesis_stream."""

    @pytest.mark.asyncio
    async def test_event_order(self):
        delays = {Provider.GEMINI: 0.01, Provider.OPENAI: 0.05, Provider.CLAUDE: 0.005}
        store = ResultStore()
        tracker = CostTracker()

        with (
            patch("voiltail.pipeline.call_provider", side_effect=fake_provider(delays=delays)),
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock, return_value=[0.6, 0.8]),
            patch("voiltail.synthesis.generate_text", new_callable=AsyncMock, return_value="Merged"),
        ):
            events = await collect_events(
                run_synthesis_stream(make_input(), result_store=store, cost_tracker=tracker)
            )

        assert event_types(events) == [
            "started",
            "model_complete",
            "model_complete",
            "model_complete",
            "embeddings_started",
            "embeddings_progress",
            "synthesis_started",
            "synthesis_complete",
        ]
        assert [e["model"] for e in events[1:4]] == ["claude", "gemini", "openai"]
        assert [e["progress"] for e in events] == [0, 20, 40, 60, 70, 80, 85, 100]

        final = events[-1]
        assert store.get(final["result_id"]).unified_response == "Merged"
        assert final["metadata"]["total_models"] == 3
        assert final["metadata"]["successful_models"] == 3
        assert final["metadata"]["has_errors"] is False
        assert final["metadata"]["estimated_cost"] == pytest.approx(0.1001)
        assert len(tracker.export_costs()) == 1

    @pytest.mark.asyncio
    async def test_model_errors_are_streamed(self):
        failures = {Provider.OPENAI: ProviderError(Provider.OPENAI, "down")}

        with (
            patch("voiltail.pipeline.call_provider", side_effect=fake_provider(failures=failures)),
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock, return_value=[0.6, 0.8]),
            patch("voiltail.synthesis.generate_text", new_callable=AsyncMock, return_value="Merged"),
        ):
            events = await collect_events(
                run_synthesis_stream(make_input(), result_store=ResultStore(), cost_tracker=CostTracker())
            )

        errors = [e for e in events if e["type"] == "model_error"]
        assert [e["model"] for e in errors] == ["openai"]
        assert events[-1]["metadata"]["has_errors"] is True

    @pytest.mark.asyncio
    async def test_analysis_failure_still_completes(self):
        store = ResultStore()

        with (
            patch("voiltail.pipeline.call_provider", side_effect=fake_provider()),
            patch("voiltail.pipeline.calculate_alignment", side_effect=RuntimeError("bad math")),
            patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock, return_value=[1.0]),
        ):
            events = await collect_events(
                run_synthesis_stream(make_input(), result_store=store, cost_tracker=CostTracker())
            )

        terminal = [e for e in events if e["type"] in TERMINAL_EVENTS]
        assert len(terminal) == 1
        assert events[-1]["type"] == "synthesis_complete"
        analysis = store.get(events[-1]["result_id"])
        assert analysis.unified_response.startswith(SYNTHESIS_ERROR_INTRO)

    @pytest.mark.asyncio
    async def test_failure_ends_with_single_error_event(self):
        store = ResultStore()

        with patch(
            "voiltail.pipeline.run_pipeline",
            new_callable=AsyncMock,
            side_effect=PipelineError("All models failed"),
        ):
            events = await collect_events(
                run_synthesis_stream(make_input(), result_store=store, cost_tracker=CostTracker())
            )

        assert event_types(events) == ["started", "error"]
        assert events[-1]["reason"] == "synthesis_failed"
        assert events[-1]["error"] == "All models failed"
        assert len(store) == 0
