"""
Shared pytest fixtures for the test suite
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import Mock

from market_history_downloader.models import (
    Symbol, SecurityType, Market, Resolution, HistoryRequest, Tick,
    TickMessage, IntervalMessage, DailyMessage,
)
from market_history_downloader.data_downloader.message_source import MessageSource
from market_history_downloader.utils.error_handler import ErrorHandler


@pytest.fixture
def spy():
    """SPY equity symbol"""
    return Symbol.create("SPY")


@pytest.fixture
def eurusd():
    """EURUSD forex symbol on FXCM"""
    return Symbol.create("EURUSD", SecurityType.FOREX, Market.FXCM)


@pytest.fixture
def fixed_now():
    """Fixed clock value well after every test request"""
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def minute_request(spy):
    """Minute request for one January trading day"""
    return HistoryRequest(
        symbol=spy,
        resolution=Resolution.MINUTE,
        start_time_utc=datetime(2024, 1, 2, 14, 30, tzinfo=timezone.utc),
        end_time_utc=datetime(2024, 1, 2, 21, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def make_ticks(spy):
    """Factory for ticks at one-second spacing"""
    def _make(prices, start=datetime(2024, 1, 2, 9, 30), spacing=timedelta(seconds=1), quantity=10):
        return [
            Tick(
                time=start + i * spacing,
                symbol=spy,
                last_price=Decimal(str(price)),
                bid_price=Decimal(str(price)) - Decimal("0.01"),
                ask_price=Decimal(str(price)) + Decimal("0.01"),
                quantity=Decimal(quantity),
            )
            for i, price in enumerate(prices)
        ]
    return _make


@pytest.fixture
def tick_message():
    """Factory for raw tick messages"""
    def _make(timestamp=datetime(2024, 1, 2, 9, 30, 0, 250000), last=472.65, size=100):
        return TickMessage(
            timestamp=timestamp, last=last, last_size=size, total_volume=size,
            bid=last - 0.01, ask=last + 0.01, tick_id=1, basis_for_last='C',
            trade_market_center='11', trade_conditions='01',
        )
    return _make


@pytest.fixture
def interval_message():
    """Factory for raw interval messages"""
    def _make(timestamp=datetime(2024, 1, 2, 9, 31)):
        return IntervalMessage(
            timestamp=timestamp, high=473.1, low=472.2, open=472.5, close=473.0,
            total_volume=1_000_000, period_volume=25_000, number_of_trades=140,
        )
    return _make


@pytest.fixture
def daily_message():
    """Factory for raw daily messages"""
    def _make(timestamp=datetime(2024, 1, 2)):
        return DailyMessage(
            timestamp=timestamp, high=474.0, low=470.1, open=472.2, close=472.6,
            period_volume=123_000_000, open_interest=0,
        )
    return _make


@pytest.fixture
def recording_source():
    """Message source recording every call and replaying canned messages per resolution kind"""
    class RecordingSource(MessageSource):
        def __init__(self):
            super().__init__(lookup_client=Mock())
            self.calls = []
            self.messages = {'tick': [], 'interval': [], 'daily': []}

        def get_tick_messages(self, ticker, start, end):
            self.calls.append(('tick', ticker, start, end))
            return iter(self.messages['tick'])

        def get_interval_messages(self, ticker, seconds, start, end):
            self.calls.append(('interval', ticker, seconds, start, end))
            return iter(self.messages['interval'])

        def get_daily_messages(self, ticker, start, end):
            self.calls.append(('daily', ticker, start, end))
            return iter(self.messages['daily'])

    return RecordingSource()


@pytest.fixture
def error_handler():
    """Fresh error handler"""
    return ErrorHandler()


@pytest.fixture
def mock_gcs_client():
    """Mock GCS client for testing"""
    mock_client = Mock()
    mock_bucket = Mock()
    mock_client.bucket.return_value = mock_bucket
    return mock_client, mock_bucket


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every configuration environment variable"""
    from market_history_downloader.config import ConfigManager

    for name in ConfigManager.ENV_MAPPING:
        # setenv first so teardown also removes values loaded from .env files
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch
