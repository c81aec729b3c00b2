"""
Data Downloader

Historical data for a single symbol, resolution and UTC date range.
"""

import logging
from datetime import datetime
from typing import Iterator

from ..models import BaseData, HistoryRequest, Resolution, Symbol
from .history_provider import HistoryProvider

logger = logging.getLogger(__name__)


class DataDownloader:
    """Unwraps history slices into Ticks (tick resolution) or TradeBars"""

    def __init__(self, history_provider: HistoryProvider):
        self.history_provider = history_provider

    def get(self, symbol: Symbol, resolution: Resolution, start_utc: datetime, end_utc: datetime) -> Iterator[BaseData]:
        """
        Get historical data for a single symbol, type and resolution between
        start_utc and end_utc.

        Args:
            symbol: Symbol for the data we're looking for
            resolution: Resolution of the data request
            start_utc: Start time of the data in UTC
            end_utc: End time of the data in UTC

        Returns:
            Lazy iterator of Tick or TradeBar, oldest first
        """
        if end_utc < start_utc:
            raise ValueError("The end date must be greater or equal than the start date.")

        request = HistoryRequest(
            symbol=symbol,
            resolution=resolution,
            start_time_utc=start_utc,
            end_time_utc=end_utc,
        )
        return (slice_.data for slice_ in self.history_provider.process_history_request(request))
