"""
Peer-group score normalisation.

Raw scores are only comparable within a peer group, so each group is rescaled
onto a common range (50-100 by default). Normalisation has to see the whole
group at once: min and max are taken over every fund passed in, so callers
must score all funds before normalising any of them.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd

from config import BLENDED_CATEGORIES, BLENDED_CATEGORY_NAME, SCORE_RANGE
from scoring import ScoredFund, peer_group_key_of

logger = logging.getLogger(__name__)


def rescale(scores: pd.Series, lower: float, upper: float) -> pd.Series:
    """
    Min-max rescale one group's scores into [lower, upper].

    All scores non-positive: every fund gets ``lower`` (nobody beat the
    benchmark, so ranking is meaningless). All scores tied: every fund gets
    ``upper``.
    """
    max_score = scores.max()
    min_score = scores.min()
    if max_score <= 0:
        return pd.Series(lower, index=scores.index, dtype=float)
    if max_score == min_score:
        return pd.Series(upper, index=scores.index, dtype=float)
    scaled = (scores - min_score) / (max_score - min_score) * (upper - lower) + lower
    return scaled.round(2)


class PeerGroupNormalizer:
    """
    Rescale raw scores within peer groups.

    Attributes:
        score_range (tuple): (lower, upper) bounds of the final score
        blended_categories (tuple): Categories collapsed into the blended peer group
        blended_name (str): Key of the blended peer group
    """

    def __init__(self, score_range: Tuple[float, float] = SCORE_RANGE,
                 blended_categories: Sequence[str] = BLENDED_CATEGORIES,
                 blended_name: str = BLENDED_CATEGORY_NAME):
        lower, upper = score_range
        if lower >= upper:
            raise ValueError(f"Invalid score range: {score_range}")
        self.score_range = (float(lower), float(upper))
        self.blended_categories = tuple(blended_categories)
        self.blended_name = blended_name

    def group_key(self, fund: ScoredFund) -> str:
        return peer_group_key_of(fund, self.blended_categories, self.blended_name)

    def _frame(self, funds: Sequence[ScoredFund]) -> pd.DataFrame:
        return pd.DataFrame({
            "group": [self.group_key(f) for f in funds],
            "raw": pd.Series([f.raw_score for f in funds], dtype="float64"),
        })

    def normalize(self, funds: Iterable[ScoredFund]) -> List[ScoredFund]:
        """
        Normalise final scores within each peer group.

        Funds without a raw score are left out of the result and reported;
        they are never scored as 0. Re-normalising the output gives the same
        output, since final scores are always derived from raw scores.

        Args:
            funds: Every scored fund of the run

        Returns:
            list[ScoredFund]: Funds with a raw score, in input order, with
            final_score set
        """
        funds = list(funds)
        if not funds:
            return []

        df = self._frame(funds)
        missing = df["raw"].isna()
        if missing.any():
            dropped_groups = sorted(set(df.loc[missing, "group"]) - set(df.loc[~missing, "group"]))
            logger.warning(f"Excluding {int(missing.sum())} funds without a raw score from normalisation")
            if dropped_groups:
                logger.warning(f"Peer groups with no scored funds: {', '.join(dropped_groups)}")
        df = df[~missing]
        if df.empty:
            return []

        lower, upper = self.score_range
        finals = df.groupby("group")["raw"].transform(lambda s: rescale(s, lower, upper))

        now = datetime.now()
        return [
            replace(funds[idx], final_score=float(final), scored_at=now)
            for idx, final in finals.items()
        ]


def category_statistics(funds: Iterable[ScoredFund],
                        blended_categories: Sequence[str] = BLENDED_CATEGORIES,
                        blended_name: str = BLENDED_CATEGORY_NAME
                        ) -> Dict[str, Dict[str, float]]:
    """
    Count, average, min and max final score per peer group.

    Returns:
        dict: {group: {"count", "avg_score", "min_score", "max_score"}}
    """
    rows = [
        {"group": peer_group_key_of(f, blended_categories, blended_name), "score": f.final_score}
        for f in funds
        if f.final_score is not None
    ]
    if not rows:
        return {}
    stats = pd.DataFrame(rows).groupby("group")["score"].agg(["count", "mean", "min", "max"])
    return {
        group: {
            "count": int(row["count"]),
            "avg_score": float(np.round(row["mean"], 2)),
            "min_score": float(row["min"]),
            "max_score": float(row["max"]),
        }
        for group, row in stats.iterrows()
    }
