# tests/test_cli.py

import pytest

from manual_rag.interface.cli import _score_to_color


@pytest.mark.parametrize("score, color", [
    (0.92, "green"),
    (0.75, "green"),
    (0.60, "yellow"),
    (0.20, "red"),
    (-0.3, "red"),
])
def test_cosine_scores_use_similarity_bands(score, color):
    assert _score_to_color(score) == color


@pytest.mark.parametrize("score, color", [
    (28, "green"),
    (20, "green"),
    (10, "yellow"),
    (5, "red"),
])
def test_keyword_scores_use_their_own_bands(score, color):
    assert _score_to_color(score) == color
