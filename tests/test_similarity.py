"""Tests for voiltail.similarity."""

from unittest.mock import AsyncMock, patch

import pytest

from voiltail.similarity import (
    SEMANTIC_FALLBACK,
    cosine_similarity,
    jaccard_similarity,
    mean_pairwise_cosine,
    semantic_similarity,
    word_set,
)


class TestWordSet:
    """Tests for word_set."""

    def test_lowercases_and_strips_punctuation(self):
        assert word_set("Hello, World!") == {"hello", "world"}

    def test_drops_short_tokens(self):
        """Tokens of two characters or fewer are ignored."""
        assert word_set("AI is a big field") == {"big", "field"}


class TestJaccardSimilarity:
    """Tests for jaccard_similarity."""

    def test_identical_texts_score_one(self):
        assert jaccard_similarity(["the quick fox", "the quick fox"]) == 1.0

    def test_disjoint_texts_score_zero(self):
        assert jaccard_similarity(["apple banana", "cherry grape"]) == 0.0

    def test_intersection_spans_all_texts(self):
        """A word shared by only two of three texts is not in the intersection."""
        score = jaccard_similarity(["alpha beta", "alpha beta", "alpha gamma"])
        assert score == pytest.approx(1 / 3)

    def test_empty_input_scores_zero(self):
        assert jaccard_similarity([]) == 0.0

    def test_only_short_words_scores_zero(self):
        """An empty union yields 0 rather than dividing by zero."""
        assert jaccard_similarity(["a b", "is it"]) == 0.0


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_parallel_vectors(self):
        assert cosine_similarity([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1, 0], [0, 1]) == 0.0

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity([0, 0], [1, 1]) == 0.0

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError, match="same length"):
            cosine_similarity([1, 2], [1, 2, 3])


class TestMeanPairwiseCosine:
    """Tests for mean_pairwise_cosine."""

    def test_averages_over_pairs(self):
        vectors = [[1, 0], [1, 0], [0, 1]]
        # pairs: (1.0, 0.0, 0.0)
        assert mean_pairwise_cosine(vectors) == pytest.approx(1 / 3)

    def test_single_vector_scores_one(self):
        assert mean_pairwise_cosine([[1, 2]]) == 1.0


class TestSemanticSimilarity:
    """Tests for semantic_similarity."""

    @pytest.mark.asyncio
    async def test_fewer_than_two_texts_skips_embeddings(self):
        with patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed:
            assert await semantic_similarity(["only one"]) == 1.0
        mock_embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_fetches_one_embedding_per_text(self):
        with patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed:
            mock_embed.return_value = [0.5, 0.5]
            score = await semantic_similarity(["a", "b", "c"])

        assert score == pytest.approx(1.0)
        assert mock_embed.await_count == 3

    @pytest.mark.asyncio
    async def test_embedding_failure_returns_fallback(self):
        with patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed:
            mock_embed.side_effect = RuntimeError("embedding service down")
            score = await semantic_similarity(["a", "b"])

        assert score == SEMANTIC_FALLBACK

    @pytest.mark.asyncio
    async def test_mismatched_vector_lengths_return_fallback(self):
        with patch("voiltail.similarity.fetch_embedding", new_callable=AsyncMock) as mock_embed:
            mock_embed.side_effect = [[1.0, 0.0], [1.0, 0.0, 0.0]]
            score = await semantic_similarity(["a", "b"])

        assert score == SEMANTIC_FALLBACK
