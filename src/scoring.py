"""
Fund Scoring - Weighted Outperformance Calculator

Converts a fund's per-period returns into a single raw score. When the fund's
peer category has average returns available, each period is scored as a
magnitude-normalised outperformance over the category average; otherwise the
fund's absolute returns are used. Weights of unavailable periods are
redistributed across the available ones, so a fund without a 5Y history is
scored on the periods it has.
"""

import math
import logging
from dataclasses import dataclass, field
from datetime import datetime
from numbers import Real
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from config import (
    BLENDED_CATEGORIES,
    BLENDED_CATEGORY_NAME,
    DEFAULT_WEIGHTS,
    EQUITY_FALLBACK_KEY,
    NEGATIVE_RETURN_PENALTY,
    OTHER_FALLBACK_KEY,
    PERIODS,
)

logger = logging.getLogger(__name__)


class InvalidInput(ValueError):
    """Raised when a return value is present but not numeric."""
    pass


# ===================================================================
# Data Model
# ===================================================================

@dataclass(frozen=True)
class FundReturnProfile:
    """Scoring input for one fund. A period mapped to None is unavailable."""

    code: str
    category: Optional[str]
    fund_type: Optional[str]
    returns: Mapping[str, Optional[float]] = field(default_factory=dict)


@dataclass(frozen=True)
class CategoryAverage:
    """Average returns of one peer category, keyed by category name."""

    category_name: str
    report_date: Optional[str]
    returns: Mapping[str, Optional[float]] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoredFund:
    """
    A fund's raw score and, after normalisation, its final score.

    raw_score is kept alongside final_score so that renormalising a set of
    already-normalised funds recomputes from the same inputs.
    """

    code: str
    category: Optional[str]
    fund_type: Optional[str]
    raw_score: Optional[float]
    final_score: Optional[float] = None
    scored_at: datetime = field(default_factory=datetime.now)


def parse_return(value: Any) -> Optional[float]:
    """
    Parse a return value coming from the API or the database.

    None, empty strings and NaN mean "not available". Numeric strings and
    Decimals are converted to float.

    Raises:
        InvalidInput: If the value is present but cannot be parsed as a number
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"Boolean is not a return value: {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            parsed = float(value)
        except ValueError as e:
            raise InvalidInput(f"Non-numeric return value: {value!r}") from e
    elif isinstance(value, Real) or hasattr(value, "__float__"):
        parsed = float(value)
    else:
        raise InvalidInput(f"Unsupported return value type: {type(value).__name__}")
    if math.isnan(parsed):
        return None
    if math.isinf(parsed):
        raise InvalidInput(f"Infinite return value: {value!r}")
    return parsed


def is_equity_like(fund_type: Optional[str]) -> bool:
    return bool(fund_type) and "equity" in fund_type.lower()


def peer_group_key_of(fund: Any, blended_categories: Iterable[str] = BLENDED_CATEGORIES,
                      blended_name: str = BLENDED_CATEGORY_NAME) -> str:
    """
    Resolve the peer group a fund is compared and normalised within.

    Equity funds are grouped by their specific category. Other funds use their
    category directly, except that members of the blended hybrid group all
    collapse into the single blended key. A fund without a category lands in
    a fallback bucket instead of being dropped.

    Args:
        fund: Any object with ``category`` and ``fund_type`` attributes
        blended_categories: Category names merged into the blended key
        blended_name: The blended key

    Returns:
        str: Peer group key
    """
    category = fund.category
    if is_equity_like(fund.fund_type):
        return category or EQUITY_FALLBACK_KEY
    if category and category in tuple(blended_categories):
        return blended_name
    return category or OTHER_FALLBACK_KEY


def outperformance(fund_value: float, category_value: float,
                   penalty: float = NEGATIVE_RETURN_PENALTY) -> float:
    """
    Signed outperformance of a fund over its category for one period.

    The difference is divided by the category magnitude (floored at 1 so that
    near-zero averages do not explode the ratio). Negative absolute fund
    returns are penalised by ``penalty``.
    """
    denom = max(abs(category_value), 1.0)
    outperf = (fund_value - category_value) / denom
    if fund_value < 0:
        return outperf * penalty
    return outperf


def _checked(value: Any, fund_code: str, period: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidInput(f"{fund_code}: {period} is not numeric: {value!r}")
    value = float(value)
    if math.isnan(value):
        return None
    return value


# ===================================================================
# Scorer
# ===================================================================

class ReturnScorer:
    """
    Weighted outperformance scorer.

    Attributes:
        weights (Mapping[str, float]): Base weight per period, summing to 1.0
        penalty (float): Multiplier applied to the outperformance of funds
                         with a negative absolute return
        blended_categories (tuple): Categories looked up under the blended average
        blended_name (str): Name of the blended category average
    """

    def __init__(self, weights: Optional[Mapping[str, float]] = None,
                 penalty: float = NEGATIVE_RETURN_PENALTY,
                 blended_categories: Iterable[str] = BLENDED_CATEGORIES,
                 blended_name: str = BLENDED_CATEGORY_NAME):
        weights = dict(DEFAULT_WEIGHTS if weights is None else weights)
        unknown = set(weights) - set(PERIODS)
        if unknown:
            raise ValueError(f"Unknown return periods in weight table: {sorted(unknown)}")
        if any(w < 0 for w in weights.values()):
            raise ValueError("Weights must be non-negative")
        if not math.isclose(sum(weights.values()), 1.0, abs_tol=1e-6):
            raise ValueError(f"Weights must sum to 1.0, got {sum(weights.values()):.6f}")
        self.weights = MappingProxyType(weights)
        self.penalty = penalty
        self.blended_categories = tuple(blended_categories)
        self.blended_name = blended_name

    def group_key(self, fund: FundReturnProfile) -> str:
        return peer_group_key_of(fund, self.blended_categories, self.blended_name)

    def _category_average_for(self, fund: FundReturnProfile,
                              category_averages: Optional[Mapping[str, CategoryAverage]]
                              ) -> Optional[CategoryAverage]:
        if not category_averages:
            return None
        return category_averages.get(self.group_key(fund))

    def _period_values(self, fund: FundReturnProfile,
                       category_avg: Optional[CategoryAverage]) -> Dict[str, Dict[str, float]]:
        """Usable periods in the active mode, with the value each one contributes."""
        usable = {}
        for period in self.weights:
            fund_value = _checked(fund.returns.get(period), fund.code, period)
            if fund_value is None:
                continue
            if category_avg is None:
                usable[period] = {"fund_value": fund_value, "value": fund_value}
                continue
            category_value = _checked(category_avg.returns.get(period), category_avg.category_name, period)
            if category_value is None:
                continue
            usable[period] = {
                "fund_value": fund_value,
                "category_value": category_value,
                "value": outperformance(fund_value, category_value, self.penalty),
            }
        return usable

    def raw_score(self, fund: FundReturnProfile,
                  category_averages: Optional[Mapping[str, CategoryAverage]] = None) -> float:
        """Unrounded weighted score. See ``score``."""
        category_avg = self._category_average_for(fund, category_averages)
        if category_averages and category_avg is None:
            logger.debug(f"No category averages for {self.group_key(fund)}, "
                         f"using absolute returns for {fund.code}")
        usable = self._period_values(fund, category_avg)

        total_available_weight = sum(self.weights[p] for p in usable)
        if total_available_weight == 0:
            return 0.0

        total = 0.0
        for period, parts in usable.items():
            total += parts["value"] * (self.weights[period] / total_available_weight)
        return total

    def score(self, fund: FundReturnProfile,
              category_averages: Optional[Mapping[str, CategoryAverage]] = None) -> float:
        """
        Calculate the raw score of a single fund.

        Args:
            fund (FundReturnProfile): Fund returns
            category_averages (Mapping[str, CategoryAverage], optional):
                Averages keyed by peer group. If None, or if the fund's group
                has no entry, absolute returns are scored.

        Returns:
            float: Raw score rounded to 2 decimals; 0 when no period is usable

        Raises:
            InvalidInput: If a return value in the profile is not numeric
        """
        return round(self.raw_score(fund, category_averages), 2)

    def score_all(self, funds: Iterable[FundReturnProfile],
                  category_averages: Optional[Mapping[str, CategoryAverage]] = None
                  ) -> List[ScoredFund]:
        """
        Score every fund. A fund that fails to score keeps a None raw score
        and does not stop the others.
        """
        scored = []
        for fund in funds:
            try:
                raw = self.score(fund, category_averages)
            except (InvalidInput, TypeError, AttributeError) as e:
                logger.error(f"Failed to score {fund.code}: {e}")
                raw = None
            scored.append(ScoredFund(
                code=fund.code,
                category=fund.category,
                fund_type=fund.fund_type,
                raw_score=raw,
            ))
        return scored

    def score_components(self, fund: FundReturnProfile,
                         category_averages: Optional[Mapping[str, CategoryAverage]] = None
                         ) -> Dict[str, Dict[str, float]]:
        """
        Per-period breakdown of a fund's score for transparency.

        Returns:
            dict: {period: {fund_value, [category_value, outperformance],
                   weight, contribution}}
        """
        category_avg = self._category_average_for(fund, category_averages)
        usable = self._period_values(fund, category_avg)
        total_available_weight = sum(self.weights[p] for p in usable)

        components = {}
        for period, parts in usable.items():
            weight = self.weights[period] / total_available_weight
            component = {"fund_value": parts["fund_value"]}
            if "category_value" in parts:
                component["category_value"] = parts["category_value"]
                component["outperformance"] = parts["value"]
            component["weight"] = weight
            component["contribution"] = parts["value"] * weight
            components[period] = component
        return components

    def methodology(self) -> Dict[str, Any]:
        return {
            "description": "Weighted outperformance scoring based on category relative performance",
            "weights": dict(self.weights),
            "negative_return_penalty": self.penalty,
            "process": [
                "1. Outperformance per period: (fund - category) / max(|category|, 1)",
                "2. Negative fund returns are multiplied by the penalty factor",
                "3. Weights of unavailable periods are redistributed",
                "4. Scores are normalised within each peer group",
            ],
            "fallback": "Absolute returns when no category average is available",
        }


def validate_profile(fund: FundReturnProfile) -> List[str]:
    """Sanity check a profile before scoring. Returns a list of issues."""
    issues = []
    values = {p: fund.returns.get(p) for p in PERIODS}
    if all(v is None for v in values.values()):
        issues.append("No valid return data available for scoring")
    one_year = values.get("returns_1y")
    if one_year is not None and (one_year < -100 or one_year > 1000):
        issues.append("1-year return value seems unreasonable")
    return issues
