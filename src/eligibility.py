"""
Eligibility filter for discovered funds.

A fund is eligible when every predicate passes. Predicates are independent of
each other and of the order they run in; each rejection is tallied against
the predicate that failed so the seed summary can show why funds were dropped.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from config import EXCLUDED_NAME_KEYWORDS

logger = logging.getLogger(__name__)

FundDetails = Mapping[str, Any]


@dataclass(frozen=True)
class Predicate:
    name: str
    check: Callable[[FundDetails], bool]


def has_availability(fund: FundDetails) -> bool:
    return fund.get("lump_available") == "Y" or fund.get("sip_available") == "Y"


def is_direct_plan(fund: FundDetails) -> bool:
    return fund.get("direct") == "Y"


def is_growth_plan(fund: FundDetails) -> bool:
    return fund.get("plan") == "GROWTH"


def is_open_ended(fund: FundDetails) -> bool:
    return fund.get("maturity_type") == "Open Ended"


def has_identity(fund: FundDetails) -> bool:
    return bool(fund.get("name")) and bool(fund.get("code"))


def min_rating(max_excluded_rating: int) -> Callable[[FundDetails], bool]:
    """Reject funds rated 1..max_excluded_rating. Unrated funds pass."""
    def check(fund: FundDetails) -> bool:
        rating = fund.get("fund_rating")
        if not rating:
            return True
        try:
            return int(rating) > max_excluded_rating
        except (TypeError, ValueError):
            return True
    return check


def min_aum(crores: float) -> Callable[[FundDetails], bool]:
    """Reject funds below ``crores`` of AUM. The API reports AUM in units of 10 lakh."""
    def check(fund: FundDetails) -> bool:
        aum = fund.get("aum")
        if not aum:
            return True
        try:
            return float(aum) / 10 >= crores
        except (TypeError, ValueError):
            return True
    return check


def excludes_name_keywords(keywords: Sequence[str]) -> Callable[[FundDetails], bool]:
    lowered = tuple(k.lower() for k in keywords)

    def check(fund: FundDetails) -> bool:
        name = (fund.get("name") or "").lower()
        return not any(k in name for k in lowered)
    return check


def default_predicates(min_aum_crores: float = 10.0, max_excluded_rating: int = 3,
                       excluded_keywords: Sequence[str] = EXCLUDED_NAME_KEYWORDS) -> List[Predicate]:
    return [
        Predicate("availability", has_availability),
        Predicate("fund_type", is_direct_plan),
        Predicate("plan_type", is_growth_plan),
        Predicate("maturity", is_open_ended),
        Predicate("rating", min_rating(max_excluded_rating)),
        Predicate("aum", min_aum(min_aum_crores)),
        Predicate("name_keywords", excludes_name_keywords(excluded_keywords)),
        Predicate("data_integrity", has_identity),
    ]


class EligibilityFilter:
    """Apply a set of predicates to fund details and tally rejections."""

    def __init__(self, predicates: Optional[Iterable[Predicate]] = None):
        self.predicates = tuple(predicates if predicates is not None else default_predicates())

    def failures(self, fund: FundDetails) -> List[str]:
        """Names of every predicate the fund fails."""
        return [p.name for p in self.predicates if not p.check(fund)]

    def is_eligible(self, fund: FundDetails) -> bool:
        return not self.failures(fund)

    def apply(self, funds: Iterable[FundDetails]) -> Tuple[List[FundDetails], Dict[str, int]]:
        """
        Filter funds.

        Returns:
            tuple: (eligible funds, {predicate name: rejections, "passed": n})
        """
        eligible = []
        stats = Counter({p.name: 0 for p in self.predicates})
        for fund in funds:
            failed = self.failures(fund)
            if failed:
                stats.update(failed)
                logger.debug(f"Rejected {fund.get('code')}: {', '.join(failed)}")
            else:
                eligible.append(fund)
        stats["passed"] = len(eligible)
        logger.info(f"Funds passed eligibility filters: {len(eligible)}")
        return eligible, dict(stats)
