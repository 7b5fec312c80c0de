import pandas as pd
import pytest

from normalizer import PeerGroupNormalizer, category_statistics, rescale
from scoring import ScoredFund


def scored(code, raw, category="Large Cap Fund", fund_type="Equity"):
    return ScoredFund(code=code, category=category, fund_type=fund_type, raw_score=raw)


def finals(funds):
    return {f.code: f.final_score for f in funds}


@pytest.fixture
def normalizer():
    return PeerGroupNormalizer()


def test_all_non_positive_group_gets_lower_bound(normalizer):
    result = normalizer.normalize([scored("A", -2.0), scored("B", -1.0), scored("C", 0.0)])
    assert finals(result) == {"A": 50.0, "B": 50.0, "C": 50.0}


def test_tied_positive_group_gets_upper_bound(normalizer):
    result = normalizer.normalize([scored("A", 3.0), scored("B", 3.0), scored("C", 3.0)])
    assert finals(result) == {"A": 100.0, "B": 100.0, "C": 100.0}


def test_single_fund_group_gets_upper_bound(normalizer):
    assert finals(normalizer.normalize([scored("A", 0.4)])) == {"A": 100.0}


def test_min_max_rescaling(normalizer):
    result = normalizer.normalize([scored("A", 0.0), scored("B", 5.0), scored("C", 10.0)])
    assert finals(result) == {"A": 50.0, "B": 75.0, "C": 100.0}


def test_mixed_sign_group_is_rescaled(normalizer):
    result = normalizer.normalize([scored("A", -4.0), scored("B", 1.0), scored("C", 6.0)])
    assert finals(result) == {"A": 50.0, "B": 75.0, "C": 100.0}


def test_final_scores_round_to_two_decimals(normalizer):
    result = normalizer.normalize([scored("A", 0.0), scored("B", 1.0), scored("C", 3.0)])
    assert finals(result)["B"] == 66.67


def test_peer_groups_are_normalised_independently(normalizer):
    funds = [
        scored("L1", 1.0), scored("L2", 2.0),
        scored("M1", 100.0, category="Mid Cap Fund"), scored("M2", 200.0, category="Mid Cap Fund"),
    ]
    assert finals(normalizer.normalize(funds)) == {"L1": 50.0, "L2": 100.0, "M1": 50.0, "M2": 100.0}


def test_blended_members_share_one_peer_group(normalizer):
    funds = [
        scored("H1", 1.0, category="Aggressive Hybrid Fund", fund_type="Hybrid"),
        scored("H2", 3.0, category="Multi Asset Allocation", fund_type="Hybrid"),
    ]
    assert finals(normalizer.normalize(funds)) == {"H1": 50.0, "H2": 100.0}


def test_output_keeps_input_order_and_raw_scores(normalizer):
    funds = [scored("C", 10.0), scored("A", 0.0), scored("B", 5.0)]
    result = normalizer.normalize(funds)
    assert [f.code for f in result] == ["C", "A", "B"]
    assert [f.raw_score for f in result] == [10.0, 0.0, 5.0]


def test_funds_without_raw_score_are_excluded(normalizer, caplog):
    funds = [scored("A", 0.0), scored("B", None), scored("C", 10.0)]
    result = normalizer.normalize(funds)
    assert finals(result) == {"A": 50.0, "C": 100.0}
    assert "Excluding 1 funds" in caplog.text


def test_group_with_only_missing_scores_is_reported(normalizer, caplog):
    funds = [scored("A", 1.0), scored("M", None, category="Mid Cap Fund")]
    assert [f.code for f in normalizer.normalize(funds)] == ["A"]
    assert "Mid Cap Fund" in caplog.text


def test_empty_input(normalizer):
    assert normalizer.normalize([]) == []
    assert normalizer.normalize([scored("A", None)]) == []


def test_renormalising_is_idempotent(normalizer):
    funds = [scored("A", -3.0), scored("B", 0.5), scored("C", 9.0),
             scored("D", -1.0, category="Small Cap Fund"), scored("E", -2.0, category="Small Cap Fund")]
    once = normalizer.normalize(funds)
    twice = normalizer.normalize(once)
    assert finals(once) == finals(twice)
    assert finals(twice)["D"] == 50.0


def test_final_scores_stay_within_bounds(normalizer):
    funds = [scored(str(i), raw) for i, raw in enumerate([-7.2, 0.01, 3.3, 12.9, 44.0])]
    for fund in normalizer.normalize(funds):
        assert 50.0 <= fund.final_score <= 100.0


def test_custom_score_range():
    normalizer = PeerGroupNormalizer(score_range=(0, 10))
    assert finals(normalizer.normalize([scored("A", 1.0), scored("B", 3.0)])) == {"A": 0.0, "B": 10.0}


def test_invalid_score_range_is_rejected():
    with pytest.raises(ValueError):
        PeerGroupNormalizer(score_range=(100, 50))


def test_rescale_is_identity_on_normalised_scores():
    scores = pd.Series([50.0, 75.0, 100.0])
    assert rescale(scores, 50, 100).tolist() == [50.0, 75.0, 100.0]


def test_category_statistics():
    funds = [
        ScoredFund("A", "Large Cap Fund", "Equity", 1.0, final_score=50.0),
        ScoredFund("B", "Large Cap Fund", "Equity", 2.0, final_score=75.5),
        ScoredFund("C", "Large Cap Fund", "Equity", 3.0, final_score=100.0),
        ScoredFund("H", "Aggressive Hybrid Fund", "Hybrid", 1.0, final_score=100.0),
        ScoredFund("X", "Mid Cap Fund", "Equity", None),
    ]
    stats = category_statistics(funds)
    assert stats["Large Cap Fund"] == {"count": 3, "avg_score": 75.17, "min_score": 50.0, "max_score": 100.0}
    assert stats["Hybrid"]["count"] == 1
    assert "Mid Cap Fund" not in stats


def test_category_statistics_without_final_scores():
    assert category_statistics([scored("A", 1.0)]) == {}


def test_custom_blended_peer_group():
    normalizer = PeerGroupNormalizer(blended_categories=["Multi Asset Allocation"], blended_name="Balanced")
    funds = [
        scored("H1", 1.0, category="Multi Asset Allocation", fund_type="Hybrid"),
        scored("H2", 3.0, category="Aggressive Hybrid Fund", fund_type="Hybrid"),
    ]
    assert [normalizer.group_key(f) for f in funds] == ["Balanced", "Aggressive Hybrid Fund"]
    # separate groups, so each fund is alone in its own
    assert finals(normalizer.normalize(funds)) == {"H1": 100.0, "H2": 100.0}
    stats = category_statistics(normalizer.normalize(funds), normalizer.blended_categories, normalizer.blended_name)
    assert set(stats) == {"Balanced", "Aggressive Hybrid Fund"}
