"""Unified-answer generation from several model responses."""

import logging

from .alignment import alignment_context
from .models import AlignmentData, ModelResponse
from .providers import generate_text
from .telemetry import get_tracer, is_telemetry_enabled, record_span_error

logger = logging.getLogger(__name__)

FALLBACK_EXCERPT_CHARS = 200
FALLBACK_INTRO = (
    "Based on analysis from multiple AI models, here is a synthesis of their responses:"
)
FALLBACK_CONCLUSION = (
    "This synthesis combines insights from multiple AI models to provide a "
    "comprehensive perspective."
)

SYNTHESIS_SYSTEM_PROMPT = """You are an expert research synthesizer. Your job is to analyze multiple AI responses and create a unified synthesis that combines the best insights from each response.

Guidelines:
- Identify areas of agreement and disagreement
- Combine complementary insights
- Note any contradictions or varying perspectives
- Create a balanced, comprehensive answer
- Maintain the collective intelligence of all models
- Use clear, professional language
- Structure the response logically"""


def build_synthesis_prompt(responses: list[ModelResponse], alignment: AlignmentData) -> str:
    """
    Compose the synthesis request: alignment context, each model's labelled
    answer, and the instructions.
    """
    context = alignment_context(alignment.semantic, alignment.surface)

    responses_text = "\n\n".join(
        f"**Response {index} ({response.model.display_name})**:\n{response.content}"
        for index, response in enumerate(responses, start=1)
    )

    return f"""Please synthesize these {len(responses)} AI model responses into a unified, comprehensive answer:

**Alignment Analysis**: {context}

{responses_text}

**Instructions**:
1. Create a synthesis that represents the collective intelligence of all the models
2. Highlight areas where models agree and complement each other
3. Address any contradictions or different perspectives
4. Provide a balanced, comprehensive response
5. Structure the answer clearly and logically

**Synthesis**:"""


def fallback_synthesis(responses: list[ModelResponse]) -> str:
    """Deterministic synthesis: a labelled excerpt of each response."""
    sections = [
        f"**{response.model.display_name} Perspective**: "
        f"{response.content[:FALLBACK_EXCERPT_CHARS]}..."
        for response in responses
    ]
    return "\n".join([FALLBACK_INTRO, "", *sections, "", FALLBACK_CONCLUSION])


async def generate_unified_response(
    responses: list[ModelResponse], alignment: AlignmentData
) -> str:
    """
    Ask the synthesis model for one unified answer.

    Never raises: a failed call, a malformed reply or empty content all fall
    back to the deterministic concatenation.

    Args:
        responses: The responses to merge
        alignment: Agreement scores used to brief the synthesis model

    Returns:
        Unified answer text
    """
    tracer = get_tracer()
    span_attributes = {
        "synthesis.response_count": len(responses),
        "synthesis.semantic": alignment.semantic,
        "synthesis.surface": alignment.surface,
    }

    with tracer.start_as_current_span("synthesis.generate", attributes=span_attributes) as span:
        prompt = build_synthesis_prompt(responses, alignment)
        try:
            text = await generate_text(SYNTHESIS_SYSTEM_PROMPT, prompt)
        except Exception as e:
            logger.warning("Synthesis call failed, using fallback. Error: %s", e)
            record_span_error(span, e)
            return fallback_synthesis(responses)

        if not text.strip():
            logger.warning("Synthesis call returned empty content, using fallback")
            return fallback_synthesis(responses)

        if is_telemetry_enabled():
            span.set_attribute("synthesis.response_chars", len(text))
        return text
