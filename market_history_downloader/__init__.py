"""
Market History Downloader

Downloads historical ticks and OHLCV bars from the IQFeed-style lookup feed
and writes them as parquet/csv locally or to Google Cloud Storage.

Key Features:
- Eligibility filtering and vendor symbol mapping for equities, forex, options and futures
- In-memory or file-staged retrieval of lookup responses
- Tick, second, minute, hour and daily resolutions, optionally aggregated from ticks
- Bounded pool of worker threads sharing the feed's session limit
- US_STOCKS / CANADIAN_STOCKS universe expansion

Usage:
    from market_history_downloader import DataDownloader, HistoryProvider, LookupClient
    from market_history_downloader.data_downloader.message_source import create_message_source

    with LookupClient() as client:
        downloader = DataDownloader(HistoryProvider(create_message_source(client)))
        bars = list(downloader.get(Symbol.create("SPY"), Resolution.MINUTE, start_utc, end_utc))

    # Command line
    python -m market_history_downloader --tickers SPY --resolution minute --from-date 2024-01-02 --to-date 2024-01-05
"""

__version__ = "1.0.0"
__author__ = "Market Data Team"
__description__ = "Historical market data downloader for the IQFeed lookup feed"

from .models import Symbol, SecurityType, Market, Resolution, HistoryRequest, Tick, TradeBar, Slice
from .data_downloader.data_downloader import DataDownloader
from .data_downloader.history_provider import HistoryProvider
from .data_downloader.lookup_client import LookupClient

__all__ = [
    'Symbol',
    'SecurityType',
    'Market',
    'Resolution',
    'HistoryRequest',
    'Tick',
    'TradeBar',
    'Slice',
    'DataDownloader',
    'HistoryProvider',
    'LookupClient',
]
