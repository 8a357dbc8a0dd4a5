"""
Property-based tests for band lookup, rounding and score bounds.
"""

from hypothesis import given, strategies as st

from liveability_config import PenaltyBand, ScoringWeights
from schemas import MetricPenalties
from scoring import compose_score
from utils import lookup_band_penalty, round_to

finite = st.floats(min_value=-1e6, max_value=1e6, allow_nan=False, allow_infinity=False)

band_tables = st.lists(
    st.tuples(st.floats(min_value=-1000, max_value=1000, allow_nan=False), st.floats(min_value=0, max_value=100)),
    min_size=1,
    max_size=8,
).map(lambda rows: [PenaltyBand(threshold=t, penalty=p) for t, p in sorted(rows, key=lambda row: row[0])])


@given(value=finite, bands=band_tables)
def test_lookup_returns_a_penalty_from_the_table(value, bands):
    assert lookup_band_penalty(value, bands) in {band.penalty for band in bands}


@given(value=finite, bands=band_tables)
def test_lookup_picks_first_row_at_or_above_value(value, bands):
    penalty = lookup_band_penalty(value, bands)
    matching = [band for band in bands if value <= band.threshold]
    expected = matching[0].penalty if matching else bands[-1].penalty
    assert penalty == expected


@given(value=finite)
def test_empty_table_yields_zero(value):
    assert lookup_band_penalty(value, []) == 0.0


def test_threshold_is_inclusive():
    bands = [PenaltyBand(threshold=3, penalty=0), PenaltyBand(threshold=7, penalty=10)]
    assert lookup_band_penalty(3, bands) == 0
    assert lookup_band_penalty(3.01, bands) == 10
    assert lookup_band_penalty(50, bands) == 10


def test_round_half_up():
    assert round_to(0.125, 2) == 0.13
    assert round_to(2.5, 0) == 3
    assert round_to(0.5, 0) == 1


penalty = st.floats(min_value=0, max_value=1000, allow_nan=False)
weight = st.floats(min_value=0, max_value=10, allow_nan=False)


@given(transit=penalty, wait=penalty, weather=penalty, air=penalty, w1=weight, w2=weight, w3=weight, w4=weight)
def test_score_always_within_bounds(transit, wait, weather, air, w1, w2, w3, w4):
    result = compose_score(
        MetricPenalties(transit=transit, wait=wait, weather=weather, air=air),
        ScoringWeights(transit=w1, wait=w2, weather=w3, air=w4),
    )
    assert 0.0 <= result.score <= 100.0
    assert result.weighted_total >= 0.0
