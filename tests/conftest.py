import copy

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from store import FundStore


BASE_DETAILS = {
    "code": "PPFCF-GR",
    "name": "Parag Parikh Flexi Cap Growth Direct Plan",
    "ISIN": "INF879O01027",
    "fund_house": "PPFAS_MF",
    "fund_name": "PPFAS Mutual Fund",
    "fund_category": "Flexi Cap Fund",
    "fund_type": "Equity",
    "lump_available": "Y",
    "lump_min": 1000,
    "sip_available": "Y",
    "sip_min": 1000,
    "direct": "Y",
    "plan": "GROWTH",
    "maturity_type": "Open Ended",
    "fund_rating": 5,
    "fund_rating_date": "2024-05-31",
    "aum": 800000.0,
    "expense_ratio": "0.63",
    "expense_ratio_date": "2024-05-31",
    "fund_manager": "Rajeev Thakkar; Raunak Onkar;",
    "volatility": 11.2,
    "portfolio_turnover": 8.5,
    "investment_objective": "Long term capital appreciation",
    "start_date": "2013-05-24",
    "crisil_rating": "Very High Risk",
    "nav": {"nav": 85.0, "date": "2024-06-14"},
    "last_nav": {"nav": 84.0, "date": "2024-06-13"},
    "returns": {
        "week_1": 1.2,
        "year_1": 30.5,
        "year_3": 22.1,
        "year_5": 25.3,
        "inception": 19.8,
        "date": "2024-06-14",
    },
}


@pytest.fixture
def make_details():
    """Factory for Kuvera fund detail payloads."""
    def _make(code="PPFCF-GR", returns=None, nav_date=None, **overrides):
        details = copy.deepcopy(BASE_DETAILS)
        details["code"] = code
        details["name"] = overrides.pop("name", f"{code} Direct Growth")
        if returns is not None:
            details["returns"].update(returns)
        if nav_date is not None:
            details["nav"]["date"] = nav_date
        details.update(overrides)
        return details
    return _make


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    fund_store = FundStore(engine=engine)
    fund_store.create_tables()
    yield fund_store
    engine.dispose()
