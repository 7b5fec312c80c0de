"""
Category average returns, filtered and blended for scoring.

The fund categories feed reports average returns for every category the
provider knows about. Scoring needs the primary equity categories as they are
and one blended average across the hybrid categories.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from config import BLENDED_CATEGORIES, BLENDED_CATEGORY_NAME, PERIODS, PRIMARY_CATEGORIES
from scoring import CategoryAverage, InvalidInput, parse_return

logger = logging.getLogger(__name__)

# Raw feed field -> period label
RAW_PERIOD_FIELDS = {
    "week_1": "returns_1w",
    "year_1": "returns_1y",
    "year_3": "returns_3y",
    "year_5": "returns_5y",
    "inception": "returns_inception",
}


def _raw_value(raw: Mapping[str, Any], field: str) -> Optional[float]:
    try:
        return parse_return(raw.get(field))
    except InvalidInput as e:
        logger.warning(f"Ignoring {field} for {raw.get('category_name')}: {e}")
        return None


class CategoryAggregator:
    """
    Turn the raw category feed into scoring category averages.

    Attributes:
        primary (tuple): Categories kept individually
        blended (tuple): Categories merged into one synthetic category
        blended_name (str): Name of the synthetic category
    """

    def __init__(self, primary: Sequence[str] = PRIMARY_CATEGORIES,
                 blended: Sequence[str] = BLENDED_CATEGORIES,
                 blended_name: str = BLENDED_CATEGORY_NAME):
        self.primary = tuple(primary)
        self.blended = tuple(blended)
        self.blended_name = blended_name
        overlap = set(self.primary) & set(self.blended)
        if overlap:
            raise ValueError(f"Categories cannot be both primary and blended: {sorted(overlap)}")

    def _to_average(self, raw: Mapping[str, Any]) -> CategoryAverage:
        return CategoryAverage(
            category_name=raw["category_name"],
            report_date=raw.get("report_date"),
            returns={period: _raw_value(raw, field) for field, period in RAW_PERIOD_FIELDS.items()},
        )

    def blend(self, members: Sequence[Mapping[str, Any]]) -> CategoryAverage:
        """
        Average the members period by period.

        Each period is averaged over the members that report a numeric value
        for it; a period no member reports stays None.
        """
        returns: Dict[str, Optional[float]] = {}
        for field, period in RAW_PERIOD_FIELDS.items():
            values = [v for v in (_raw_value(m, field) for m in members) if v is not None]
            returns[period] = sum(values) / len(values) if values else None
        return CategoryAverage(
            category_name=self.blended_name,
            report_date=members[0].get("report_date"),
            returns=returns,
        )

    def aggregate(self, raw_categories: Iterable[Mapping[str, Any]]) -> List[CategoryAverage]:
        """
        Filter and blend the raw category feed.

        Args:
            raw_categories: Raw category records with ``category_name``,
                ``report_date`` and ``week_1``/``year_1``/... fields

        Returns:
            list[CategoryAverage]: Primary categories in feed order, then the
            blended category if any blended member was present
        """
        primary, blended = [], []
        for raw in raw_categories:
            name = raw.get("category_name")
            if name in self.primary:
                primary.append(self._to_average(raw))
            elif name in self.blended:
                blended.append(raw)

        averages = list(primary)
        if blended:
            averages.append(self.blend(blended))
        logger.info(f"Aggregated {len(averages)} category averages "
                    f"({len(primary)} primary, {len(blended)} blended into {self.blended_name!r})")
        return averages


def averages_by_name(averages: Iterable[CategoryAverage]) -> Dict[str, CategoryAverage]:
    """Index category averages by name for the scorer."""
    return {avg.category_name: avg for avg in averages}


def average_to_record(avg: CategoryAverage) -> Dict[str, Any]:
    """Flatten a category average into a storage record."""
    record = {"category_name": avg.category_name, "report_date": avg.report_date}
    for period in PERIODS:
        record[period] = avg.returns.get(period)
    return record
