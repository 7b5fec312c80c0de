"""
Mutual Fund Data Provider

Fetches mutual fund listings, per-fund details and category average returns
from the Kuvera public API. Handles retries, pacing of batched requests and
an optional date-based cache of the discovered fund list.
"""

import os
import logging
import requests
import pandas as pd
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from time import sleep
from concurrent.futures import ThreadPoolExecutor
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config import ALLOWED_CATEGORIES

logger = logging.getLogger(__name__)


class MfDataProviderError(Exception):
    """Base exception for MfDataProvider errors"""
    pass


class APIError(MfDataProviderError):
    """Raised when API calls fail"""
    pass


class DataNotFoundError(MfDataProviderError):
    """Raised when requested data is not found"""
    pass


FUND_LIST_COLUMNS = ["code", "name", "asset_class", "category", "fund_house", "nav", "reinvestment"]


class MfDataProvider:
    """
    Data provider for Kuvera mutual fund data.

    Features:
    - Discovers growth plans in the allowed asset classes and categories
    - Fetches per-fund details in paced, concurrent batches
    - Fetches category average returns
    - Retry logic for API failures

    Attributes:
        allowed_categories (Mapping[str, Sequence[str]]): Asset class -> categories
        data_dir (str, optional): Date-based cache directory for the fund list
        session (requests.Session): Configured session with retry logic
    """

    # API Configuration
    LIST_URL = "https://api.kuvera.in/mf/api/v4/fund_schemes/list.json"
    DETAILS_URL = "https://api.kuvera.in/mf/api/v5/fund_schemes/{code}.json"
    CATEGORIES_URL = "https://api.kuvera.in/mf/api/v4/fund_categories.json"
    HEADERS = {
        "Accept": "application/json",
        "User-Agent": "MF-Compass-Sync-Service/2.0",
    }
    TIMEOUT = 15

    # Growth plan codes end with -GR; Z is the reinvestment flag most growth plans carry
    GROWTH_SUFFIX = "-GR"
    REINVESTMENT_FLAGS = ("Y", "Z")

    # Batched detail fetches
    BATCH_SIZE = 5
    BATCH_DELAY = 0.2  # seconds between batches

    def __init__(self, allowed_categories: Mapping[str, Sequence[str]] = ALLOWED_CATEGORIES,
                 base_dir: Optional[str] = None, date: Optional[str] = None):
        """
        Initialize the MfDataProvider.

        Args:
            allowed_categories: Asset class -> category names to discover
            base_dir (str, optional): Base directory for the fund list cache.
                                      No caching when None.
            date (str, optional): Date string in 'YYYY-MM-DD' format for the
                                  cache directory. If None, uses today's date.
        """
        self.allowed_categories = allowed_categories
        self.data_dir = None
        if base_dir:
            self.data_dir = os.path.join(base_dir, date or datetime.now().strftime('%Y-%m-%d'))
            Path(self.data_dir).mkdir(parents=True, exist_ok=True)

        self.session = self._create_session()
        logger.info(f"MfDataProvider initialized (cache: {self.data_dir or 'disabled'})")

    def _create_session(self) -> requests.Session:
        """
        Create a requests session with retry logic.

        Returns:
            requests.Session: Configured session object
        """
        session = requests.Session()
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update(self.HEADERS)
        return session

    def _get_json(self, url: str, session: Optional[requests.Session] = None) -> Any:
        """
        GET a URL and decode its JSON body.

        Raises:
            APIError: If the request fails or the body is not JSON
        """
        session = session or self.session
        try:
            response = session.get(url, timeout=self.TIMEOUT)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed for {url}: {str(e)}")
            raise APIError(f"Failed to fetch data from {url}: {str(e)}") from e
        except ValueError as e:
            logger.error(f"Invalid JSON response from {url}")
            raise APIError(f"Invalid JSON response from {url}") from e

    def test_connection(self) -> bool:
        """
        Check that the list endpoint answers with the expected asset classes.

        Raises:
            APIError: If the API is unreachable or the response is unexpected
        """
        data = self._get_json(self.LIST_URL)
        if not isinstance(data, dict):
            raise APIError("Invalid API response")
        missing = [ac for ac in self.allowed_categories if not isinstance(data.get(ac), dict)]
        if missing:
            raise APIError(f"Expected asset classes not found in API response: {', '.join(missing)}")
        return True

    def _is_growth_plan(self, fund: Mapping[str, Any]) -> bool:
        code = fund.get("c")
        return (
            isinstance(code, str)
            and code.endswith(self.GROWTH_SUFFIX)
            and fund.get("re") in self.REINVESTMENT_FLAGS
        )

    def fetch_fund_list(self, force_refresh: bool = False) -> pd.DataFrame:
        """
        Discover growth plans in the allowed asset classes and categories.

        Args:
            force_refresh (bool): If True, fetch fresh data even if cached. Default: False

        Returns:
            pd.DataFrame: DataFrame with columns
                          [code, name, asset_class, category, fund_house, nav, reinvestment]

        Raises:
            APIError: If API call fails
        """
        cache_file = os.path.join(self.data_dir, 'funds.csv') if self.data_dir else None
        if cache_file and os.path.exists(cache_file) and not force_refresh:
            logger.info("Loading cached fund list from funds.csv")
            return pd.read_csv(cache_file)

        logger.info("Fetching mutual fund list from API...")
        data = self._get_json(self.LIST_URL)
        if not isinstance(data, dict):
            raise APIError("No data received from API")

        funds = []
        for asset_class, categories in self.allowed_categories.items():
            asset_data = data.get(asset_class) or {}
            for category in categories:
                for fund_house, schemes in (asset_data.get(category) or {}).items():
                    if not isinstance(schemes, list):
                        continue
                    for scheme in schemes:
                        if not self._is_growth_plan(scheme):
                            continue
                        funds.append({
                            'code': scheme['c'],
                            'name': scheme.get('n'),
                            'asset_class': asset_class,
                            'category': category,
                            'fund_house': fund_house,
                            'nav': scheme.get('v'),
                            'reinvestment': scheme.get('re'),
                        })

        df = pd.DataFrame(funds, columns=FUND_LIST_COLUMNS)
        if cache_file:
            df.to_csv(cache_file, index=False)
            logger.info(f"Saved {len(df)} funds to {cache_file}")
        logger.info(f"Found {len(df)} eligible funds after discovery filtering")
        return df

    @staticmethod
    def categories_breakdown(fund_list: pd.DataFrame) -> Dict[str, int]:
        """
        Count discovered funds per asset class and category.

        Returns:
            dict: {"Equity - Large Cap Fund": 42, ...}
        """
        if fund_list.empty:
            return {}
        keys = fund_list['asset_class'] + " - " + fund_list['category']
        return {key: int(count) for key, count in keys.value_counts(sort=False).items()}

    def fetch_fund_details(self, code: str, session: Optional[requests.Session] = None) -> Dict[str, Any]:
        """
        Fetch full details for one fund.

        Args:
            code (str): Kuvera fund code (e.g., 'PPFCF-GR')

        Returns:
            dict: Fund details as returned by the API

        Raises:
            APIError: If the API call fails
            DataNotFoundError: If the API returns no usable details
        """
        data = self._get_json(self.DETAILS_URL.format(code=code), session=session)
        if not isinstance(data, list) or not data:
            raise DataNotFoundError(f"No fund details found for code: {code}")
        details = data[0]
        if not isinstance(details, dict) or not details.get('code') or not details.get('name'):
            raise DataNotFoundError(f"Invalid fund details structure for code: {code}")
        return details

    def _fetch_one_details(self, code: str) -> Tuple[str, Optional[Dict[str, Any]], Optional[Exception]]:
        """
        Fetch a single fund's details. Thread-safe (own session).
        Returns (code, details, None) on success, (code, None, exception) on failure.
        """
        session = self._create_session()
        try:
            return (code, self.fetch_fund_details(code, session=session), None)
        except MfDataProviderError as e:
            return (code, None, e)
        finally:
            session.close()

    def fetch_fund_details_batch(self, codes: Sequence[str], batch_size: Optional[int] = None,
                                 delay: Optional[float] = None
                                 ) -> List[Tuple[str, Optional[Dict[str, Any]], Optional[Exception]]]:
        """
        Fetch details for many funds in small concurrent batches.

        Each batch runs on a thread pool; the provider pauses between batches
        to stay under the API rate limit.

        Returns:
            list: (code, details or None, error or None) in input order
        """
        batch_size = batch_size or self.BATCH_SIZE
        delay = self.BATCH_DELAY if delay is None else delay
        codes = list(codes)
        total_batches = (len(codes) + batch_size - 1) // batch_size

        results = []
        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            for start in range(0, len(codes), batch_size):
                batch = codes[start:start + batch_size]
                results.extend(executor.map(self._fetch_one_details, batch))

                batch_number = start // batch_size + 1
                if batch_number % 20 == 0:
                    logger.info(f"Fund details progress: batch {batch_number}/{total_batches}")
                if start + batch_size < len(codes) and delay > 0:
                    sleep(delay)

        failed = sum(1 for _, _, err in results if err is not None)
        logger.info(f"Fund details done: {len(results) - failed} ok, {failed} failed")
        return results

    def fetch_category_averages(self) -> List[Dict[str, Any]]:
        """
        Fetch average returns for every fund category.

        Raises:
            APIError: If the API call fails or returns something other than a list
        """
        data = self._get_json(self.CATEGORIES_URL)
        if not isinstance(data, list):
            raise APIError("Invalid category averages response from API")
        return data


def validate_fund_data(details: Mapping[str, Any]) -> Tuple[bool, str]:
    """
    Check that fund details carry the fields the sync job relies on.

    Returns:
        tuple: (is_valid, message)
    """
    required = ['code', 'name', 'ISIN', 'fund_house', 'fund_category']
    missing = [f for f in required if not details.get(f)]
    if missing:
        return False, f"Missing required fields: {', '.join(missing)}"

    nav = details.get('nav') or {}
    if not nav.get('nav'):
        return False, "NAV data is missing or invalid"
    try:
        nav_value = float(nav['nav'])
    except (TypeError, ValueError):
        return False, "Invalid NAV value"
    if nav_value <= 0:
        return False, "Invalid NAV value"

    return True, "Fund data validation passed"
