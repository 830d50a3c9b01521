"""Heuristic detection of how model responses disagree.

Each check inspects already-fetched text and contributes at most one
DivergentSection. Checks run in a fixed order so the output is stable for
a given input.
"""

import re
from collections import Counter

from .models import DivergentSection, ModelResponse

# Length skew: flag when the longest/shortest response strays this far from the mean
LENGTH_MAX_RATIO = 1.3
LENGTH_MIN_RATIO = 0.7

# Formality skew
FORMALITY_RANGE_THRESHOLD = 0.2
FORMALITY_SENTENCE_WORDS = 20
FORMALITY_TERM_WEIGHT = 10
TECHNICAL_TERMS = (
    "algorithm",
    "implementation",
    "methodology",
    "analysis",
    "framework",
    "approach",
)

# Keyword diversity
KEYWORD_MIN_LENGTH = 5
KEYWORD_LIMIT = 10
SHARED_KEYWORD_THRESHOLD = 0.3

STOPWORDS = frozenset({
    "about", "above", "across", "after", "again", "against", "along", "already",
    "also", "although", "always", "among", "another", "answer", "around", "based",
    "because", "been", "before", "being", "below", "between", "both", "cannot",
    "certain", "could", "different", "does", "doing", "during", "each", "either",
    "enough", "especially", "even", "every", "example", "first", "following",
    "found", "from", "further", "general", "generally", "given", "great", "have",
    "having", "here", "however", "important", "including", "instead", "into",
    "itself", "just", "known", "large", "later", "least", "less", "like", "likely",
    "made", "make", "makes", "making", "many", "might", "more", "most", "much",
    "must", "need", "needs", "never", "often", "other", "others", "otherwise",
    "over", "overall", "particular", "perhaps", "point", "possible", "question",
    "rather", "really", "same", "second", "several", "should", "since", "small",
    "some", "something", "specific", "still", "such", "than", "that", "their",
    "them", "then", "there", "therefore", "these", "they", "thing", "things",
    "think", "this", "those", "though", "three", "through", "thus", "together",
    "under", "until", "upon", "used", "useful", "using", "usually", "various",
    "very", "want", "well", "were", "what", "whatever", "when", "where", "whether",
    "which", "while", "whole", "will", "with", "within", "without", "would",
    "years", "your", "yourself",
})

_NON_WORD = re.compile(r"[^\w\s]")
_SENTENCE_END = re.compile(r"[.!?]+")


def formality_score(text: str) -> float:
    """
    Rough formality score in [0, 1].

    Average sentence length in words (normalised by 20) plus the number of
    technical terms present (each worth 0.1), capped at 1.0.
    """
    sentences = [s for s in _SENTENCE_END.split(text) if s.strip()]
    if not sentences:
        return 0.0

    avg_sentence_words = sum(len(s.split()) for s in sentences) / len(sentences)
    lowered = text.lower()
    technical_count = sum(1 for term in TECHNICAL_TERMS if term in lowered)

    return min(
        1.0,
        avg_sentence_words / FORMALITY_SENTENCE_WORDS + technical_count / FORMALITY_TERM_WEIGHT,
    )


def extract_keywords(text: str, limit: int = KEYWORD_LIMIT) -> list[str]:
    """Most frequent non-stopword tokens longer than four characters."""
    words = [
        word
        for word in _NON_WORD.sub(" ", text.lower()).split()
        if len(word) >= KEYWORD_MIN_LENGTH and word not in STOPWORDS
    ]
    # most_common keeps first-seen order among equal counts
    return [word for word, _ in Counter(words).most_common(limit)]


def _check_length_skew(responses: list[ModelResponse]) -> DivergentSection | None:
    lengths = [len(r.content) for r in responses]
    avg_length = sum(lengths) / len(lengths)

    if max(lengths) > avg_length * LENGTH_MAX_RATIO or min(lengths) < avg_length * LENGTH_MIN_RATIO:
        return DivergentSection(
            topic="Response Detail Level",
            content="Models provided different levels of detail in their responses",
            models=[r.model.value for r in responses],
            description="Response lengths differ substantially from the average",
        )
    return None


def _check_formality_skew(responses: list[ModelResponse]) -> DivergentSection | None:
    scores = [formality_score(r.content) for r in responses]

    if max(scores) - min(scores) > FORMALITY_RANGE_THRESHOLD:
        return DivergentSection(
            topic="Communication Style",
            content="Models adopted different communication approaches",
            models=[r.model.value for r in responses],
            description="Varying levels of formality and technical depth in responses",
        )
    return None


def _check_keyword_diversity(responses: list[ModelResponse]) -> DivergentSection | None:
    keyword_sets = [set(extract_keywords(r.content)) for r in responses]
    all_keywords = set().union(*keyword_sets)
    if not all_keywords:
        return None

    shared = set.intersection(*keyword_sets)
    if len(shared) / len(all_keywords) < SHARED_KEYWORD_THRESHOLD:
        return DivergentSection(
            topic="Conceptual Focus",
            content="Models emphasized different aspects and concepts",
            models=[r.model.value for r in responses],
            description="Few of each model's key terms appear in every response",
        )
    return None


def find_divergences(
    responses: list[ModelResponse],
    include_keyword_check: bool = True,
) -> list[DivergentSection]:
    """
    Run the divergence checks in order: length, formality, keywords.

    Args:
        responses: Responses to compare (at least two for a meaningful result)
        include_keyword_check: Whether to run the keyword-diversity check

    Returns:
        Zero to three sections, in check order
    """
    if len(responses) < 2:
        return []

    checks = [_check_length_skew, _check_formality_skew]
    if include_keyword_check:
        checks.append(_check_keyword_diversity)

    sections = []
    for check in checks:
        section = check(responses)
        if section is not None:
            sections.append(section)
    return sections
