"""Property-based tests for block scoring."""

import numpy as np
import pytest
from hypothesis import given, strategies as st, settings
from stereo_depth.scoring import BlockScorer, sad, ssd


@st.composite
def window_strategy(draw, max_size=11):
    """
    Generate a random window in one of the supported encodings.

    Returns:
        Window array (uint8, float32 or packed int16 pairs)
    """
    height = draw(st.integers(min_value=1, max_value=max_size))
    width = draw(st.integers(min_value=1, max_value=max_size))
    encoding = draw(st.sampled_from(["gray8", "float32", "packed"]))

    seed = draw(st.integers(min_value=0, max_value=2**31 - 1))
    rng = np.random.RandomState(seed)

    if encoding == "gray8":
        return rng.randint(0, 256, (height, width)).astype(np.uint8)
    if encoding == "float32":
        return rng.uniform(-1000.0, 1000.0, (height, width)).astype(np.float32)
    return rng.randint(-32768, 32768, (height, width, 2)).astype(np.int16)


class TestScoringProperties:
    """Property-based tests for SSD and SAD."""

    @given(window_strategy(), st.sampled_from(list(BlockScorer)))
    @settings(max_examples=50)
    def test_property_identical_windows_score_zero(self, window, scorer):
        """
        Property: Every window scores 0 against itself with both scorers.
        """
        assert scorer.score(window, window.copy()) == 0.0

    @given(window_strategy(), window_strategy())
    @settings(max_examples=50)
    def test_property_scores_symmetric_and_non_negative(self, left, right):
        """
        Property: Scores are non-negative and do not depend on argument order.
        """
        if left.dtype != right.dtype or left.shape != right.shape:
            right = np.resize(left[::-1], left.shape).astype(left.dtype)

        for scorer in (ssd, sad):
            forward = scorer(left, right)
            backward = scorer(right, left)
            assert forward >= 0.0
            assert forward == pytest.approx(backward)
