"""
MF Compass sync job.

Operations:
    seed     Discover, filter, store and score funds into an empty database
    update   Refresh category averages and NAV/returns, then rescore everything
    rescore  Recompute and renormalise all scores from stored data
    flush    Drop all tables
    test     Check database, API, discovery and sample data quality

Usage:
    python run_sync.py update
"""

import sys
import logging
import argparse
from dataclasses import dataclass
from time import sleep
from typing import Dict, List, Optional

from category_averages import CategoryAggregator, averages_by_name
from config import Settings
from eligibility import EligibilityFilter, default_predicates
from fund_records import nav_date_is_newer, parse_fund_details, profile_from_record
from mf_data_provider import MfDataProvider, MfDataProviderError, validate_fund_data
from normalizer import PeerGroupNormalizer, category_statistics
from scoring import CategoryAverage, ReturnScorer, ScoredFund, validate_profile
from store import FundStore, StoreError

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Raised when a sync operation cannot continue"""
    pass


@dataclass
class UpdateSummary:
    total: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 0.0
        return (self.total - self.failed) / self.total * 100


class SyncJob:
    """
    Wires the data provider, the scoring engine and the store together.

    Scores are always recomputed for every fund before normalising, so that
    each peer group's bounds come from the complete group.
    """

    def __init__(self, store: FundStore, provider: MfDataProvider, settings: Optional[Settings] = None,
                 scorer: Optional[ReturnScorer] = None,
                 aggregator: Optional[CategoryAggregator] = None,
                 normalizer: Optional[PeerGroupNormalizer] = None,
                 eligibility: Optional[EligibilityFilter] = None):
        self.store = store
        self.provider = provider
        self.settings = settings or Settings()
        # The aggregator names the blended average; scorer and normalizer must
        # resolve hybrid funds to that same key.
        self.aggregator = aggregator or CategoryAggregator()
        blended = {"blended_categories": self.aggregator.blended, "blended_name": self.aggregator.blended_name}
        self.scorer = scorer or ReturnScorer(**blended)
        self.normalizer = normalizer or PeerGroupNormalizer(**blended)
        for component in (self.scorer, self.normalizer):
            if (component.blended_categories, component.blended_name) != (self.aggregator.blended,
                                                                         self.aggregator.blended_name):
                raise ValueError(f"{type(component).__name__} blended categories differ from the aggregator's")
        self.eligibility = eligibility or EligibilityFilter(default_predicates(
            min_aum_crores=self.settings.min_aum_crores,
            max_excluded_rating=self.settings.max_excluded_rating,
        ))

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def refresh_category_averages(self) -> Dict[str, CategoryAverage]:
        """Fetch, aggregate and store the latest category averages."""
        logger.info("Fetching and updating latest category averages...")
        raw = self.provider.fetch_category_averages()
        averages = self.aggregator.aggregate(raw)
        self.store.upsert_category_averages(averages)
        return averages_by_name(averages)

    def load_category_averages(self) -> Optional[Dict[str, CategoryAverage]]:
        """Stored category averages, or None to fall back to absolute returns."""
        try:
            averages = self.store.load_category_averages()
        except StoreError as e:
            logger.warning(f"Failed to load category averages, scoring absolute returns: {e}")
            return None
        return averages or None

    def score_and_normalize(self) -> List[ScoredFund]:
        """
        Score every stored fund, normalise within peer groups and store both
        the raw and the final score.

        Returns:
            list[ScoredFund]: Normalised funds
        """
        rows = self.store.scoring_rows()
        averages = self.load_category_averages()
        logger.info(f"Scoring {len(rows)} funds "
                    f"({'outperformance vs category' if averages else 'absolute returns'})")

        profiles = [profile_from_record(row) for row in rows]
        for profile in profiles:
            for issue in validate_profile(profile):
                logger.warning(f"{profile.code}: {issue}")
        scored = self.scorer.score_all(profiles, averages)
        normalized = self.normalizer.normalize(scored)

        finals = {fund.code: fund for fund in normalized}
        self.store.write_scores([finals.get(fund.code, fund) for fund in scored])

        stats = category_statistics(normalized, self.normalizer.blended_categories, self.normalizer.blended_name)
        logger.info("Category-wise score statistics:")
        for group, group_stats in sorted(stats.items()):
            logger.info(f"  {group}: count={group_stats['count']} avg={group_stats['avg_score']} "
                        f"range={group_stats['min_score']}-{group_stats['max_score']}")
        return normalized

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _fetch_details(self, codes: List[str]):
        return self.provider.fetch_fund_details_batch(
            codes,
            batch_size=self.settings.fetch_batch_size,
            delay=self.settings.fetch_batch_delay,
        )

    def seed(self) -> int:
        """
        Populate an empty database.

        Returns:
            int: Number of funds stored (0 when seeding was skipped)

        Raises:
            SyncError: If discovery, detail retrieval or filtering leaves no funds
        """
        existing = self.store.count_funds()
        if existing > 0:
            logger.warning(f"Database already contains {existing} funds. Skipping seeding; "
                           f"run flush first to reseed.")
            return 0

        logger.info("Stage 1: Fund discovery")
        fund_list = self.provider.fetch_fund_list()
        if fund_list.empty:
            raise SyncError("No eligible funds found during discovery")
        for key, count in self.provider.categories_breakdown(fund_list).items():
            logger.info(f"  {key}: {count} funds")

        logger.info("Stage 2: Detailed information retrieval")
        results = self._fetch_details(fund_list['code'].tolist())
        details = [data for _, data, err in results if err is None]
        failures = [(code, err) for code, _, err in results if err is not None]
        if failures:
            logger.warning(f"Failed to retrieve {len(failures)} funds")
            for code, err in failures[:5]:
                logger.warning(f"  - {code}: {err}")
        if not details:
            raise SyncError("No valid fund details retrieved")

        logger.info("Stage 3: Eligibility filtering")
        eligible, filter_stats = self.eligibility.apply(details)
        for name, count in filter_stats.items():
            logger.info(f"  {name}: {count}")
        if not eligible:
            raise SyncError("No funds passed eligibility filtering")

        logger.info("Stage 4: Table creation")
        self.store.create_tables()

        logger.info("Stage 5: Storage")
        records = [parse_fund_details(fund) for fund in eligible]
        stored, failed = self.store.upsert_funds(records, batch_size=self.settings.store_batch_size)
        logger.info(f"Stored {stored} funds, {failed} failed")

        logger.info("Stage 6: Score calculation and normalisation")
        try:
            self.refresh_category_averages()
        except (MfDataProviderError, StoreError) as e:
            logger.warning(f"Category averages unavailable, scoring absolute returns: {e}")
        self.score_and_normalize()
        return stored

    def daily_update(self) -> UpdateSummary:
        """
        Refresh NAV and returns for every stored fund and rescore.

        Funds whose NAV date has not advanced are skipped. Fetch failures are
        counted and do not stop the run.
        """
        summary = UpdateSummary()

        funds = self.store.active_funds()
        summary.total = len(funds)
        logger.info(f"Found {summary.total} active funds in database")
        if not funds:
            return summary

        self.refresh_category_averages()

        results = self._fetch_details([fund['kuvera_code'] for fund in funds])
        current = {fund['kuvera_code']: fund for fund in funds}

        changed = []
        for code, details, err in results:
            if err is not None:
                logger.warning(f"✗ {code}: {err}")
                summary.failed += 1
                continue
            new_nav_date = (details.get('nav') or {}).get('date')
            if nav_date_is_newer(current[code].get('current_nav_date'), new_nav_date):
                changed.append(parse_fund_details(details))
            else:
                summary.skipped += 1

        stored, failed = self.store.upsert_funds(changed, batch_size=self.settings.store_batch_size)
        summary.updated = stored
        summary.failed += failed

        if summary.updated:
            self.score_and_normalize()
        return summary

    def flush(self, delay: Optional[float] = None) -> None:
        delay = self.settings.flush_delay if delay is None else delay
        logger.warning("Dropping ALL tables (funds, category_averages). This cannot be undone.")
        if delay > 0:
            logger.warning(f"Proceeding with database flush in {delay:g} seconds...")
            sleep(delay)
        self.store.drop_tables()

    def system_check(self) -> Dict[str, str]:
        """
        Run the connection and data quality checks in order.

        Raises:
            StoreError, MfDataProviderError, SyncError: On the first failing check
        """
        report = {}
        db_time = self.store.verify_connection()
        report["database"] = f"OK ({db_time})"

        self.provider.test_connection()
        report["api"] = "OK"

        fund_list = self.provider.fetch_fund_list(force_refresh=True)
        if fund_list.empty:
            raise SyncError("No funds discovered")
        report["discovery"] = f"OK ({len(fund_list)} funds)"

        details = self.provider.fetch_fund_details(fund_list['code'].iloc[0])
        is_valid, message = validate_fund_data(details)
        if not is_valid:
            raise SyncError(f"Data validation failed: {message}")
        report["data_quality"] = "OK"
        return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MF Compass fund sync")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("seed", help="Populate an empty database")
    sub.add_parser("update", help="Refresh NAV/returns and rescore")
    sub.add_parser("rescore", help="Recompute and renormalise scores from stored data")
    flush = sub.add_parser("flush", help="Drop all tables")
    flush.add_argument("--yes", action="store_true", help="Skip the confirmation pause")
    sub.add_parser("test", help="Check database, API and data quality")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point: run one sync operation and print a summary.

    Returns:
        int: Process exit code
    """
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("\n" + "=" * 70)
    print(f"MF COMPASS SYNC - {args.command.upper()}")
    print("=" * 70)

    try:
        job = SyncJob(FundStore(settings.database_url), MfDataProvider(base_dir=settings.cache_dir), settings)

        if args.command == "seed":
            stored = job.seed()
            print(f"\nTotal funds stored: {stored}")
        elif args.command == "update":
            summary = job.daily_update()
            print(f"\nTotal funds processed:       {summary.total}")
            print(f"Funds updated with new data: {summary.updated}")
            print(f"Funds skipped (no new data): {summary.skipped}")
            print(f"Funds failed:                {summary.failed}")
            print(f"Success rate:                {summary.success_rate:.1f}%")
        elif args.command == "rescore":
            normalized = job.score_and_normalize()
            print(f"\nScores normalised for {len(normalized)} funds")
        elif args.command == "flush":
            job.flush(delay=0 if args.yes else None)
            print("\nFlush completed. All tables removed.")
        elif args.command == "test":
            for check, result in job.system_check().items():
                print(f"  {check:15s} {result}")
            print("\nAll tests passed. System ready.")

        print("=" * 70)
        return 0
    except KeyboardInterrupt:
        print("\n\nInterrupted by user (Ctrl+C).")
        logger.warning(f"{args.command} interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"{args.command} failed: {str(e)}", exc_info=True)
        print(f"\nFatal error: {str(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
