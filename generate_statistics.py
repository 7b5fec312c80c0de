#!/usr/bin/env python3
"""
Generate and Print Score Statistics for Stored Mutual Funds

Reads the funds table and prints per-peer-group score statistics, data
availability per return period and the top funds of every peer group.

Usage:
    python generate_statistics.py [TOP_N]
"""

import sys
import logging
from datetime import datetime
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from config import PERIODS, Settings
from fund_records import profile_from_record
from normalizer import category_statistics
from scoring import ReturnScorer, ScoredFund, peer_group_key_of
from store import FundStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_scores(store: FundStore) -> pd.DataFrame:
    """Stored funds with their peer group, one row per fund."""
    rows = store.scoring_rows()
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    df['peer_group'] = [
        peer_group_key_of(ScoredFund(code=r['kuvera_code'], category=r['fund_category'],
                                     fund_type=r['fund_type'], raw_score=r['raw_score']))
        for r in rows
    ]
    return df


def generate_and_print_statistics(store: FundStore, top_n: int = 5) -> None:
    """Generate and print statistics report"""

    print("\n" + "="*70)
    print("MUTUAL FUND SCORES - STATISTICS")
    print("="*70)
    print(f"\nGenerated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    logger.info("Loading stored scores...")
    df = load_scores(store)
    if df.empty:
        print("\nNo funds stored. Run `python run_sync.py seed` first.")
        return

    # ========== PEER GROUP STATISTICS ==========
    print("\n" + "="*70)
    print("PEER GROUP SCORE STATISTICS")
    print("="*70 + "\n")

    scored = [
        ScoredFund(code=r.kuvera_code, category=r.fund_category, fund_type=r.fund_type,
                   raw_score=r.raw_score, final_score=None if pd.isna(r.total_score) else r.total_score)
        for r in df.itertuples()
    ]
    stats = category_statistics(scored)
    if stats:
        df_stats = pd.DataFrame.from_dict(stats, orient='index')
        df_stats.index.name = 'Peer Group'
        print(df_stats.sort_index().to_string())
    else:
        print("No normalised scores available")

    # ========== DATA AVAILABILITY ==========
    print("\n" + "="*70)
    print("RETURN DATA AVAILABILITY")
    print("="*70 + "\n")

    availability = df.groupby('peer_group')[list(PERIODS)].count()
    availability.insert(0, 'Funds', df.groupby('peer_group').size())
    print(availability.to_string())

    # ========== TOP FUNDS ==========
    print("\n" + "="*70)
    print(f"TOP {top_n} FUNDS PER PEER GROUP")
    print("="*70)

    ranked = df.dropna(subset=['total_score']).sort_values('total_score', ascending=False)
    for group, group_df in ranked.groupby('peer_group', sort=True):
        print(f"\n{group}")
        for _, fund in group_df.head(top_n).iterrows():
            print(f"  {fund['scheme_name'][:50]:50s} {fund['total_score']:>7.2f}  (raw {fund['raw_score']:.2f})")

    unscored = int(df['total_score'].isna().sum())
    print(f"\nFunds without a score: {unscored:,}")

    # ========== SCORE BREAKDOWN ==========
    print("\n" + "="*70)
    print("SCORE BREAKDOWN - TOP FUND PER PEER GROUP")
    print("="*70)

    scorer = ReturnScorer()
    averages = store.load_category_averages() or None
    methodology = scorer.methodology()
    print(f"\n{methodology['description']}")
    print("Weights: " + ", ".join(f"{p} {w:.4f}" for p, w in methodology['weights'].items()))
    if averages is None:
        print(methodology['fallback'])

    for group, group_df in ranked.groupby('peer_group', sort=True):
        top = group_df.iloc[0]
        components = scorer.score_components(profile_from_record(top.to_dict()), averages)
        print(f"\n{group}: {top['scheme_name'][:50]}")
        breakdown = pd.DataFrame.from_dict(components, orient='index')
        print(breakdown.round(4).to_string() if not breakdown.empty else "  No usable return periods")

    print("\n" + "="*70)
    print("REPORT COMPLETED")
    print("="*70 + "\n")


if __name__ == "__main__":
    try:
        top = int(sys.argv[1]) if len(sys.argv) > 1 else 5
        settings = Settings.from_env()
        generate_and_print_statistics(FundStore(settings.database_url), top_n=top)
    except KeyboardInterrupt:
        print("\n\n⚠️  Report generation interrupted by user")
    except Exception as e:
        logger.error(f"Error generating statistics: {str(e)}", exc_info=True)
        print(f"\n✗ Error: {str(e)}")
        raise
