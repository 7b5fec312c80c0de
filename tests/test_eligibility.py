import pytest

from eligibility import EligibilityFilter, Predicate, default_predicates, min_aum, min_rating


@pytest.fixture
def eligibility():
    return EligibilityFilter()


def test_well_formed_fund_is_eligible(eligibility, make_details):
    assert eligibility.is_eligible(make_details())
    assert eligibility.failures(make_details()) == []


@pytest.mark.parametrize("overrides,predicate", [
    ({"lump_available": "N", "sip_available": "N"}, "availability"),
    ({"direct": "N"}, "fund_type"),
    ({"plan": "IDCW"}, "plan_type"),
    ({"maturity_type": "Close Ended"}, "maturity"),
    ({"fund_rating": 2}, "rating"),
    ({"aum": 50.0}, "aum"),
    ({"name": "Some Fund Direct Bonus"}, "name_keywords"),
    ({"name": ""}, "data_integrity"),
])
def test_each_predicate_rejects(eligibility, make_details, overrides, predicate):
    assert eligibility.failures(make_details(**overrides)) == [predicate]


def test_sip_only_fund_is_available(eligibility, make_details):
    assert eligibility.is_eligible(make_details(lump_available="N", sip_available="Y"))


@pytest.mark.parametrize("rating,passes", [(None, True), (0, True), (1, False), (3, False), (4, True), ("5", True)])
def test_rating_threshold(rating, passes):
    assert min_rating(3)({"fund_rating": rating}) is passes


def test_rating_threshold_is_configurable():
    assert min_rating(4)({"fund_rating": 4}) is False
    assert min_rating(0)({"fund_rating": 1}) is True


@pytest.mark.parametrize("aum,passes", [(None, True), (99.0, False), (100.0, True), ("2500", True)])
def test_aum_threshold_in_crores(aum, passes):
    assert min_aum(10)({"aum": aum}) is passes


def test_name_keywords_are_case_insensitive(eligibility, make_details):
    assert eligibility.failures(make_details(name="Equity Fund - IDCW Payout")) == ["name_keywords"]


def test_every_failing_predicate_is_tallied(eligibility, make_details):
    funds = [
        make_details("A-GR"),
        make_details("B-GR", direct="N", plan="DIVIDEND"),
        make_details("C-GR", direct="N"),
    ]
    eligible, stats = eligibility.apply(funds)
    assert [f["code"] for f in eligible] == ["A-GR"]
    assert stats["fund_type"] == 2
    assert stats["plan_type"] == 1
    assert stats["aum"] == 0
    assert stats["passed"] == 1


def test_predicate_order_does_not_change_result(make_details):
    funds = [make_details("A-GR"), make_details("B-GR", direct="N", fund_rating=1)]
    forward = EligibilityFilter(default_predicates())
    backward = EligibilityFilter(list(reversed(default_predicates())))
    assert forward.apply(funds) == backward.apply(funds)


def test_custom_predicates(make_details):
    eligibility = EligibilityFilter([Predicate("equity_only", lambda f: f.get("fund_type") == "Equity")])
    eligible, stats = eligibility.apply([make_details(), make_details("H-GR", fund_type="Hybrid")])
    assert len(eligible) == 1
    assert stats == {"equity_only": 1, "passed": 1}
