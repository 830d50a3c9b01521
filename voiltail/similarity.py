"""Lexical and semantic similarity across a set of response texts."""

import asyncio
import logging
import math
import re
from itertools import combinations

from .providers import fetch_embedding

logger = logging.getLogger(__name__)

# Neutral score used when embeddings cannot be fetched
SEMANTIC_FALLBACK = 0.5

# Tokens this short or shorter are ignored by the word-overlap measure
MIN_WORD_LENGTH = 3

_NON_WORD = re.compile(r"[^\w\s]")


def word_set(text: str) -> set[str]:
    """Lowercase, strip punctuation, split, and drop tokens of length <= 2."""
    words = _NON_WORD.sub(" ", text.lower()).split()
    return {word for word in words if len(word) >= MIN_WORD_LENGTH}


def jaccard_similarity(texts: list[str]) -> float:
    """
    Jaccard index across all texts at once.

    The intersection is the set of words present in every text, not a
    pairwise average.

    Args:
        texts: Response texts

    Returns:
        |intersection| / |union| in [0, 1]; 0 when the union is empty
    """
    if not texts:
        return 0.0

    word_sets = [word_set(text) for text in texts]
    union = set().union(*word_sets)
    if not union:
        return 0.0

    intersection = set.intersection(*word_sets)
    return len(intersection) / len(union)


def cosine_similarity(vec_a: list[float], vec_b: list[float]) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Returns:
        A value in [-1, 1]; 0 if either vector has zero norm

    Raises:
        ValueError: If the vectors differ in length
    """
    if len(vec_a) != len(vec_b):
        raise ValueError(
            f"Vectors must have the same length ({len(vec_a)} != {len(vec_b)})"
        )

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    # Clamp float drift so the result stays within bounds
    return max(-1.0, min(1.0, dot_product / (norm_a * norm_b)))


def mean_pairwise_cosine(vectors: list[list[float]]) -> float:
    """Average cosine similarity over every unordered pair (i < j)."""
    similarities = [cosine_similarity(a, b) for a, b in combinations(vectors, 2)]
    if not similarities:
        return 1.0
    return sum(similarities) / len(similarities)


async def semantic_similarity(texts: list[str]) -> float:
    """
    Average pairwise embedding similarity of the texts.

    Embeddings are fetched concurrently, one request per text. Any failure,
    including mismatched vector lengths, yields SEMANTIC_FALLBACK instead of
    an exception.

    Args:
        texts: Response texts

    Returns:
        Mean pairwise cosine similarity, 1.0 for fewer than two texts
    """
    if len(texts) < 2:
        return 1.0

    try:
        embeddings = await asyncio.gather(*(fetch_embedding(text) for text in texts))
        return mean_pairwise_cosine(list(embeddings))
    except Exception as e:
        logger.warning(
            "Semantic similarity unavailable, using fallback. Texts: %d, Fallback: %.2f, Error: %s",
            len(texts), SEMANTIC_FALLBACK, e,
        )
        return SEMANTIC_FALLBACK
