"""Alignment scoring: turn similarity figures into qualitative agreement.

The thresholds below are the scoring policy. Each decision table is an
ordered list of (predicate, outcome) pairs; the first matching row wins.
"""

from typing import Callable

from .models import AlignedPoint, AlignmentData, AlignmentLevel, ModelResponse, Provider

# Combined score = SEMANTIC_WEIGHT * semantic + SURFACE_WEIGHT * surface
SEMANTIC_WEIGHT = 0.7
SURFACE_WEIGHT = 0.3
HIGH_THRESHOLD = 0.7
MODERATE_THRESHOLD = 0.4

# Bands used by the description tables
SEMANTIC_HIGH = 0.8
SEMANTIC_MODERATE = 0.6
SURFACE_HIGH = 0.3
SURFACE_MODERATE = 0.15

# Aligned-point thresholds
STRONG_AGREEMENT_SEMANTIC = 0.8
TERMINOLOGY_SEMANTIC = 0.6
TERMINOLOGY_SURFACE = 0.2

METHODOLOGY_SEMANTIC = "semantic-similarity-v2"
METHODOLOGY_WORD_OVERLAP = "word-overlap-v1"

SINGLE_RESPONSE_DESCRIPTION = "Single model response"

# Presentational per-model multipliers on the semantic score. They only keep
# the three displayed levels from looking identical; they are not derived
# from each model's content.
MODEL_LEVEL_JITTER = {
    Provider.GEMINI: 0.95,
    Provider.OPENAI: 1.05,
    Provider.CLAUDE: 1.0,
}

Rule = tuple[Callable[[float, float], bool], str]

DESCRIPTION_RULES: list[Rule] = [
    (
        lambda sem, surf: sem > SEMANTIC_HIGH and surf > SURFACE_HIGH,
        "Strong semantic alignment with consistent expression",
    ),
    (
        lambda sem, surf: sem > SEMANTIC_HIGH,
        "Strong semantic alignment with diverse expression styles",
    ),
    (
        lambda sem, surf: sem > SEMANTIC_MODERATE,
        "Moderate semantic alignment with complementary perspectives",
    ),
    (
        lambda sem, surf: surf > SURFACE_HIGH,
        "Similar language usage but potentially different underlying concepts",
    ),
    (
        lambda sem, surf: True,
        "Diverse perspectives with low alignment - models offer complementary insights",
    ),
]


def _semantic_band(semantic: float) -> str:
    if semantic > SEMANTIC_HIGH:
        return "high"
    if semantic > SEMANTIC_MODERATE:
        return "moderate"
    return "low"


def _surface_band(surface: float) -> str:
    if surface > SURFACE_HIGH:
        return "high"
    if surface > SURFACE_MODERATE:
        return "moderate"
    return "low"


# Keyed on (semantic band, surface band); used to brief the synthesis model
CONTEXT_RULES: list[tuple[Callable[[str, str], bool], str]] = [
    (
        lambda sem, surf: sem == "high" and surf == "high",
        "Models show strong agreement in both meaning and expression",
    ),
    (
        lambda sem, surf: sem == "high" and surf == "low",
        "Models agree on core concepts but express them differently",
    ),
    (
        lambda sem, surf: sem == "low" and surf == "high",
        "Models use similar language but may have different underlying meanings",
    ),
    (
        lambda sem, surf: sem == "moderate",
        "Models show partial agreement with some complementary perspectives",
    ),
    (
        lambda sem, surf: True,
        "Models provide diverse perspectives that may complement each other",
    ),
]


def combined_score(semantic: float, surface: float) -> float:
    return SEMANTIC_WEIGHT * semantic + SURFACE_WEIGHT * surface


def alignment_level(semantic: float, surface: float) -> AlignmentLevel:
    """Map the weighted combination of both scores onto high/moderate/low."""
    score = combined_score(semantic, surface)
    if score > HIGH_THRESHOLD:
        return AlignmentLevel.HIGH
    if score > MODERATE_THRESHOLD:
        return AlignmentLevel.MODERATE
    return AlignmentLevel.LOW


def describe_alignment(semantic: float, surface: float) -> str:
    """Pick the human-readable summary for a (semantic, surface) pair."""
    for predicate, description in DESCRIPTION_RULES:
        if predicate(semantic, surface):
            return description
    raise AssertionError("DESCRIPTION_RULES has no catch-all row")


def alignment_context(semantic: float, surface: float) -> str:
    """One sentence describing agreement, phrased for the synthesis prompt."""
    semantic_band = _semantic_band(semantic)
    surface_band = _surface_band(surface)
    for predicate, context in CONTEXT_RULES:
        if predicate(semantic_band, surface_band):
            return context
    raise AssertionError("CONTEXT_RULES has no catch-all row")


def build_aligned_points(
    responses: list[ModelResponse], semantic: float, surface: float
) -> list[AlignedPoint]:
    """
    Report agreement claims only when the scores clear fixed thresholds.

    Both points may be emitted; low-alignment runs report none.
    """
    models = [r.model.value for r in responses]
    points = []

    if semantic > STRONG_AGREEMENT_SEMANTIC:
        points.append(AlignedPoint(
            content="Models show strong semantic agreement on core concepts",
            models=models,
            strength=semantic,
        ))

    if semantic > TERMINOLOGY_SEMANTIC and surface > TERMINOLOGY_SURFACE:
        points.append(AlignedPoint(
            content="Models demonstrate consensus on key terminology and approach",
            models=models,
            strength=(semantic + surface) / 2,
        ))

    return points


def model_levels(semantic: float, surface: float) -> dict[Provider, AlignmentLevel]:
    """Per-model display levels (see MODEL_LEVEL_JITTER)."""
    return {
        provider: alignment_level(semantic * multiplier, surface)
        for provider, multiplier in MODEL_LEVEL_JITTER.items()
    }


def calculate_alignment(
    responses: list[ModelResponse],
    semantic: float,
    surface: float,
    methodology: str = METHODOLOGY_SEMANTIC,
) -> AlignmentData:
    """
    Score agreement across a response set.

    Args:
        responses: The responses the scores were computed over
        semantic: Average pairwise embedding similarity
        surface: Jaccard similarity
        methodology: Label recorded with the result

    Returns:
        AlignmentData with levels, description and aligned points
    """
    return AlignmentData(
        semantic=semantic,
        surface=surface,
        model_levels=model_levels(semantic, surface),
        overall_alignment=alignment_level(semantic, surface),
        description=describe_alignment(semantic, surface),
        methodology=methodology,
        aligned_points=build_aligned_points(responses, semantic, surface),
    )


def single_response_alignment(response: ModelResponse, methodology: str) -> AlignmentData:
    """Trivial alignment for a one-response set: every similarity is 1.0."""
    point = AlignedPoint(
        content=SINGLE_RESPONSE_DESCRIPTION,
        models=[response.model.value],
        strength=1.0,
    )
    return AlignmentData(
        semantic=1.0,
        surface=1.0,
        model_levels={provider: AlignmentLevel.HIGH for provider in MODEL_LEVEL_JITTER},
        overall_alignment=AlignmentLevel.HIGH,
        description=SINGLE_RESPONSE_DESCRIPTION,
        methodology=methodology,
        aligned_points=[point],
    )
