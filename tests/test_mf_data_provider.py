import pytest
import requests

import mf_data_provider
from mf_data_provider import (
    APIError,
    DataNotFoundError,
    MfDataProvider,
    validate_fund_data,
)


class FakeResponse:
    def __init__(self, payload=None, status_code=200, invalid_json=False):
        self.payload = payload
        self.status_code = status_code
        self.invalid_json = invalid_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")

    def json(self):
        if self.invalid_json:
            raise ValueError("No JSON object could be decoded")
        return self.payload


class FakeSession:
    """Serves canned responses by URL; unknown URLs fail like a dead host."""

    def __init__(self, routes):
        self.routes = routes
        self.requested = []

    def get(self, url, timeout=None):
        self.requested.append(url)
        if url not in self.routes:
            raise requests.exceptions.ConnectionError(f"No route to {url}")
        response = self.routes[url]
        return response if isinstance(response, FakeResponse) else FakeResponse(response)

    def close(self):
        pass


LIST_PAYLOAD = {
    "Equity": {
        "Large Cap Fund": {
            "AXIS": [
                {"c": "AXLC-GR", "n": "Axis Bluechip Growth", "v": 55.1, "re": "Z"},
                {"c": "AXLC-DP", "n": "Axis Bluechip IDCW", "v": 18.2, "re": "N"},
            ],
        },
        "Sectoral Fund": {
            "AXIS": [{"c": "AXSEC-GR", "n": "Axis Sector Growth", "v": 10.0, "re": "Z"}],
        },
        "Small Cap Fund": {
            "SBI": [{"c": "SBISC-GR", "n": "SBI Small Cap Growth", "v": 160.0, "re": "Y"}],
            "BROKEN": "not a list",
        },
    },
    "Hybrid": {
        "Aggressive Hybrid Fund": {
            "ICICI": [{"c": "ICAH-GR", "n": "ICICI Equity & Debt Growth", "v": 350.0, "re": "Z"}],
        },
    },
    "Debt": {
        "Liquid Fund": {"HDFC": [{"c": "HDLQ-GR", "n": "HDFC Liquid Growth", "re": "Z"}]},
    },
}


def details_url(code):
    return MfDataProvider.DETAILS_URL.format(code=code)


@pytest.fixture
def routes():
    return {MfDataProvider.LIST_URL: LIST_PAYLOAD}


@pytest.fixture
def provider(monkeypatch, routes):
    monkeypatch.setattr(MfDataProvider, "_create_session", lambda self: FakeSession(routes))
    return MfDataProvider()


def test_fetch_fund_list_keeps_allowed_growth_plans(provider):
    df = provider.fetch_fund_list()
    assert df["code"].tolist() == ["AXLC-GR", "SBISC-GR", "ICAH-GR"]
    assert df.loc[df["code"] == "ICAH-GR", "asset_class"].item() == "Hybrid"
    assert list(df.columns) == mf_data_provider.FUND_LIST_COLUMNS


def test_fetch_fund_list_is_cached(monkeypatch, routes, tmp_path):
    session = FakeSession(routes)
    monkeypatch.setattr(MfDataProvider, "_create_session", lambda self: session)
    provider = MfDataProvider(base_dir=str(tmp_path), date="2024-06-14")

    first = provider.fetch_fund_list()
    assert (tmp_path / "2024-06-14" / "funds.csv").exists()
    second = provider.fetch_fund_list()
    assert second["code"].tolist() == first["code"].tolist()
    assert session.requested.count(MfDataProvider.LIST_URL) == 1

    provider.fetch_fund_list(force_refresh=True)
    assert session.requested.count(MfDataProvider.LIST_URL) == 2


def test_categories_breakdown(provider):
    breakdown = provider.categories_breakdown(provider.fetch_fund_list())
    assert breakdown == {
        "Equity - Large Cap Fund": 1,
        "Equity - Small Cap Fund": 1,
        "Hybrid - Aggressive Hybrid Fund": 1,
    }


def test_test_connection(provider, routes):
    assert provider.test_connection() is True
    routes[MfDataProvider.LIST_URL] = {"Equity": {}}
    with pytest.raises(APIError, match="Hybrid"):
        provider.test_connection()


def test_http_error_becomes_api_error(provider, routes):
    routes[MfDataProvider.CATEGORIES_URL] = FakeResponse(status_code=503)
    with pytest.raises(APIError):
        provider.fetch_category_averages()


def test_invalid_json_becomes_api_error(provider, routes):
    routes[MfDataProvider.CATEGORIES_URL] = FakeResponse(invalid_json=True)
    with pytest.raises(APIError, match="Invalid JSON"):
        provider.fetch_category_averages()


def test_category_averages_must_be_a_list(provider, routes):
    routes[MfDataProvider.CATEGORIES_URL] = [{"category_name": "ELSS", "year_1": 20.0}]
    assert provider.fetch_category_averages()[0]["category_name"] == "ELSS"
    routes[MfDataProvider.CATEGORIES_URL] = {"category_name": "ELSS"}
    with pytest.raises(APIError):
        provider.fetch_category_averages()


def test_fetch_fund_details(provider, routes, make_details):
    routes[details_url("PPFCF-GR")] = [make_details()]
    assert provider.fetch_fund_details("PPFCF-GR")["fund_category"] == "Flexi Cap Fund"


@pytest.mark.parametrize("payload", [[], {}, [{"code": "X-GR"}], ["junk"]])
def test_fetch_fund_details_without_usable_data(provider, routes, payload):
    routes[details_url("X-GR")] = payload
    with pytest.raises(DataNotFoundError):
        provider.fetch_fund_details("X-GR")


def test_batch_fetch_isolates_failures_and_paces_batches(monkeypatch, provider, routes, make_details):
    sleeps = []
    monkeypatch.setattr(mf_data_provider, "sleep", sleeps.append)
    codes = [f"F{i}-GR" for i in range(7)]
    for code in codes:
        routes[details_url(code)] = [make_details(code)]
    del routes[details_url("F3-GR")]

    results = provider.fetch_fund_details_batch(codes, batch_size=3, delay=0.2)

    assert [code for code, _, _ in results] == codes
    failed = [code for code, _, err in results if err is not None]
    assert failed == ["F3-GR"]
    assert isinstance(results[3][2], APIError)
    assert results[0][1]["code"] == "F0-GR"
    # 3 batches, pause between them only
    assert sleeps == [0.2, 0.2]


def test_validate_fund_data(make_details):
    assert validate_fund_data(make_details()) == (True, "Fund data validation passed")
    assert validate_fund_data(make_details(ISIN=None))[0] is False
    assert validate_fund_data(make_details(nav={"nav": 0, "date": "2024-06-14"})) == (
        False, "NAV data is missing or invalid")
    assert validate_fund_data(make_details(nav={"nav": -1.0}))[1] == "Invalid NAV value"
