"""
Mapping between API fund details, storage records and scoring profiles.
"""

import json
import logging
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional

import pandas as pd

from config import PERIODS
from scoring import FundReturnProfile, InvalidInput, parse_return

logger = logging.getLogger(__name__)

# API returns field -> period label
API_RETURN_FIELDS = {
    "week_1": "returns_1w",
    "year_1": "returns_1y",
    "year_3": "returns_3y",
    "year_5": "returns_5y",
    "inception": "returns_inception",
}


def parse_date(value: Any) -> Optional[date]:
    """Parse an API or database date. Unparseable dates become None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def nav_date_is_newer(current: Any, new: Any) -> bool:
    """
    True when ``new`` should replace ``current``.

    Missing dates on either side count as new data; equal or older dates do not.
    """
    current_date = parse_date(current)
    new_date = parse_date(new)
    if current_date is None or new_date is None:
        return True
    return new_date > current_date


def _number(details: Mapping[str, Any], key: str) -> Optional[float]:
    value = details.get(key)
    if not value:
        return None
    try:
        return parse_return(value)
    except InvalidInput:
        logger.warning(f"Ignoring non-numeric {key} for {details.get('code')}: {value!r}")
        return None


def _integer(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _fund_managers(value: Any) -> Optional[str]:
    """Semicolon-separated manager names as a JSON array string."""
    if not isinstance(value, str):
        return None
    names = [name.strip() for name in value.split(";") if name.strip()]
    return json.dumps(names) if names else None


def parse_fund_details(details: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Flatten Kuvera fund details into a storage record.

    AUM is converted from the API's units of 10 lakh into crores, and the
    1-day return is derived from the current and previous NAV.
    """
    nav = details.get("nav") or {}
    last_nav = details.get("last_nav") or {}
    returns = details.get("returns") or {}

    current_nav = _number(nav, "nav")
    t1_nav = _number(last_nav, "nav")
    returns_1d = None
    if current_nav and t1_nav:
        returns_1d = (current_nav - t1_nav) / t1_nav * 100

    aum = _number(details, "aum")

    record = {
        "kuvera_code": details.get("code"),
        "scheme_name": details.get("name"),
        "isin": details.get("ISIN"),
        "fund_house": details.get("fund_house"),
        "fund_house_name": details.get("fund_name"),
        "fund_category": details.get("fund_category"),
        "fund_type": details.get("fund_type") or "Other",
        "lump_available": details.get("lump_available"),
        "lump_min": _number(details, "lump_min"),
        "sip_available": details.get("sip_available"),
        "sip_min": _number(details, "sip_min"),
        "lock_in_period": _integer(details.get("lock_in_period")),
        "investment_objective": details.get("investment_objective"),
        "current_nav": current_nav,
        "current_nav_date": parse_date(nav.get("date")),
        "t1_nav": t1_nav,
        "t1_nav_date": parse_date(last_nav.get("date")),
        "returns_1d": returns_1d,
        "returns_date": parse_date(returns.get("date")),
        "start_date": parse_date(details.get("start_date")),
        "expense_ratio": _number(details, "expense_ratio"),
        "expense_ratio_date": parse_date(details.get("expense_ratio_date")),
        "fund_managers": _fund_managers(details.get("fund_manager")),
        "volatility": _number(details, "volatility"),
        "portfolio_turnover": _number(details, "portfolio_turnover"),
        "aum": aum / 10 if aum else None,
        "fund_rating": _integer(details.get("fund_rating")),
        "fund_rating_date": parse_date(details.get("fund_rating_date")),
        "crisil_rating": details.get("crisil_rating"),
    }
    for field, period in API_RETURN_FIELDS.items():
        try:
            record[period] = parse_return(returns.get(field))
        except InvalidInput as e:
            logger.warning(f"{details.get('code')}: {period} treated as unavailable: {e}")
            record[period] = None
    return record


def profile_from_record(record: Mapping[str, Any]) -> FundReturnProfile:
    """
    Build a scoring profile from a storage record.

    Malformed return values are logged and treated as unavailable so that
    one bad field does not stop the fund, or its peers, from being scored.
    """
    code = record.get("kuvera_code")
    returns = {}
    for period in PERIODS:
        try:
            returns[period] = parse_return(record.get(period))
        except InvalidInput as e:
            logger.warning(f"{code}: {period} treated as unavailable: {e}")
            returns[period] = None
    return FundReturnProfile(
        code=code,
        category=record.get("fund_category"),
        fund_type=record.get("fund_type"),
        returns=returns,
    )
