"""
Relational store for funds, scores and category averages.

SQLAlchemy ORM over any supported database (PostgreSQL in production, SQLite
for local runs and tests). Writes go through ``transaction()`` so a failing
batch is rolled back without touching batches committed before it.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import (
    Column, Date, DateTime, Float, Integer, String, Text,
    create_engine, func, inspect, select, text, update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from category_averages import average_to_record
from config import PERIODS
from fund_records import parse_date
from scoring import CategoryAverage, ScoredFund

logger = logging.getLogger(__name__)

Base = declarative_base()


class StoreError(Exception):
    """Raised when a database operation fails."""
    pass


class Fund(Base):
    __tablename__ = "funds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kuvera_code = Column(String(64), unique=True, nullable=False, index=True)
    scheme_name = Column(Text, nullable=False)
    isin = Column(String(32), index=True)

    fund_house = Column(Text, index=True)
    fund_house_name = Column(Text)
    fund_category = Column(Text, index=True)
    fund_type = Column(Text, index=True)

    lump_available = Column(String(1))
    lump_min = Column(Float)
    sip_available = Column(String(1))
    sip_min = Column(Float)
    lock_in_period = Column(Integer)
    investment_objective = Column(Text)

    current_nav = Column(Float)
    current_nav_date = Column(Date)
    t1_nav = Column(Float)
    t1_nav_date = Column(Date)

    # Percentages
    returns_1d = Column(Float)
    returns_1w = Column(Float)
    returns_1y = Column(Float)
    returns_3y = Column(Float)
    returns_5y = Column(Float)
    returns_inception = Column(Float)
    returns_date = Column(Date)

    start_date = Column(Date)
    expense_ratio = Column(Float)
    expense_ratio_date = Column(Date)
    fund_managers = Column(Text)  # JSON array of names
    volatility = Column(Float)
    portfolio_turnover = Column(Float)
    aum = Column(Float)  # crores
    fund_rating = Column(Integer)
    fund_rating_date = Column(Date)
    crisil_rating = Column(Text)

    raw_score = Column(Float)
    total_score = Column(Float, index=True)
    score_updated = Column(DateTime)

    last_updated = Column(DateTime, default=datetime.now, onupdate=datetime.now)
    created_at = Column(DateTime, default=datetime.now)


class CategoryAverageRow(Base):
    __tablename__ = "category_averages"

    category_name = Column(String(128), primary_key=True)
    report_date = Column(Date)
    returns_1w = Column(Float)
    returns_1y = Column(Float)
    returns_3y = Column(Float)
    returns_5y = Column(Float)
    returns_inception = Column(Float)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


FUND_COLUMNS = frozenset(c.name for c in Fund.__table__.columns) - {"id", "created_at", "last_updated"}


def _row_to_dict(row: Base) -> Dict[str, Any]:
    return {c.name: getattr(row, c.name) for c in row.__table__.columns}


class FundStore:
    """
    Persistence for the sync job.

    Attributes:
        engine (Engine): SQLAlchemy engine
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None, echo: bool = False):
        if engine is None:
            if not url:
                raise ValueError("Either url or engine is required")
            engine = create_engine(url, echo=echo, pool_pre_ping=True)
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        logger.debug(f"FundStore bound to {engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Session scope that commits on success and rolls back on any error.

        Raises:
            StoreError: If the transaction fails
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database transaction failed, rolling back: {e}")
            raise StoreError(f"Transaction failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def verify_connection(self) -> Any:
        """Run a trivial query and return the database's current time."""
        try:
            with self.engine.connect() as conn:
                return conn.execute(text("SELECT CURRENT_TIMESTAMP")).scalar()
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot connect to database: {e}") from e

    def create_tables(self) -> None:
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Table creation failed: {e}") from e
        logger.info("Database tables and indexes created")

    def drop_tables(self) -> None:
        try:
            Base.metadata.drop_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Dropping tables failed: {e}") from e
        logger.info("All tables removed")

    def has_funds_table(self) -> bool:
        return inspect(self.engine).has_table(Fund.__tablename__)

    def count_funds(self) -> int:
        if not self.has_funds_table():
            return 0
        with self.transaction() as session:
            return session.execute(select(func.count()).select_from(Fund)).scalar_one()

    # ------------------------------------------------------------------
    # Funds
    # ------------------------------------------------------------------

    def _upsert_fund(self, session: Session, record: Mapping[str, Any]) -> Fund:
        code = record.get("kuvera_code")
        if not code:
            raise StoreError("Fund record without kuvera_code")
        fund = session.execute(select(Fund).filter_by(kuvera_code=code)).scalar_one_or_none()
        is_new = fund is None
        if is_new:
            fund = Fund(kuvera_code=code)
            session.add(fund)
        for key, value in record.items():
            if key in FUND_COLUMNS:
                setattr(fund, key, value)
        if is_new:
            # A repeated code later in the same batch must find this row
            session.flush()
        return fund

    def upsert_funds(self, records: Sequence[Mapping[str, Any]], batch_size: int = 10) -> Tuple[int, int]:
        """
        Insert or update funds keyed by Kuvera code, one transaction per batch.

        Returns:
            tuple: (stored, failed) record counts
        """
        stored, failed = 0, 0
        for start in range(0, len(records), batch_size):
            batch = records[start:start + batch_size]
            try:
                with self.transaction() as session:
                    for record in batch:
                        self._upsert_fund(session, record)
                stored += len(batch)
            except StoreError as e:
                failed += len(batch)
                logger.error(f"Batch {start // batch_size + 1} rolled back: {e}")
            if stored and (stored % 50 == 0 or start + batch_size >= len(records)):
                logger.info(f"Stored {stored}/{len(records)} funds")
        return stored, failed

    def active_funds(self) -> List[Dict[str, Any]]:
        with self.transaction() as session:
            rows = session.execute(select(Fund).order_by(Fund.scheme_name)).scalars().all()
            return [_row_to_dict(row) for row in rows]

    def scoring_rows(self) -> List[Dict[str, Any]]:
        """Every fund's returns, category and current scores."""
        columns = [Fund.kuvera_code, Fund.scheme_name, Fund.fund_category, Fund.fund_type,
                   Fund.raw_score, Fund.total_score, Fund.score_updated]
        columns += [getattr(Fund, period) for period in PERIODS]
        with self.transaction() as session:
            result = session.execute(select(*columns).order_by(Fund.fund_type, Fund.fund_category))
            return [dict(row._mapping) for row in result]

    def write_scores(self, scored: Iterable[ScoredFund]) -> int:
        """
        Store raw and final scores by fund code in one transaction.

        Returns:
            int: Number of funds written
        """
        count = 0
        with self.transaction() as session:
            for fund in scored:
                session.execute(
                    update(Fund)
                    .where(Fund.kuvera_code == fund.code)
                    .values(raw_score=fund.raw_score, total_score=fund.final_score,
                            score_updated=fund.scored_at)
                )
                count += 1
        return count

    # ------------------------------------------------------------------
    # Category averages
    # ------------------------------------------------------------------

    def upsert_category_averages(self, averages: Iterable[CategoryAverage]) -> int:
        """Replace category averages by name. All-or-nothing."""
        count = 0
        with self.transaction() as session:
            for avg in averages:
                record = average_to_record(avg)
                row = session.get(CategoryAverageRow, record["category_name"])
                if row is None:
                    row = CategoryAverageRow(category_name=record["category_name"])
                    session.add(row)
                row.report_date = parse_date(record["report_date"])
                for period in PERIODS:
                    setattr(row, period, record[period])
                count += 1
        logger.info(f"Category averages updated: {count}")
        return count

    def load_category_averages(self) -> Dict[str, CategoryAverage]:
        with self.transaction() as session:
            rows = session.execute(select(CategoryAverageRow)).scalars().all()
            return {
                row.category_name: CategoryAverage(
                    category_name=row.category_name,
                    report_date=row.report_date.isoformat() if row.report_date else None,
                    returns={period: getattr(row, period) for period in PERIODS},
                )
                for row in rows
            }
