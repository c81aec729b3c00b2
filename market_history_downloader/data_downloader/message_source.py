"""
Message Source

Resolution-aware retrieval of raw lookup messages for one instrument and
date range. Two interchangeable strategies sit behind the same contract:
``FileMessageSource`` goes through a temporary file, ``MemoryMessageSource``
streams the response directly. Both yield messages oldest-first, one at a time.
"""

import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional, Tuple, Type

from ..models import HistoryRequest, Resolution, RawMessage, TickMessage, IntervalMessage, DailyMessage
from ..utils.timezones import NEW_YORK, convert_from_utc
from .lookup_client import LookupClient, DATA_DIRECTION_OLDEST

logger = logging.getLogger(__name__)

# Requests ending this close to now are left open-ended
OPEN_END_THRESHOLD = timedelta(minutes=1)

_INTERVAL_SECONDS = {
    Resolution.SECOND: 1,
    Resolution.MINUTE: 60,
    Resolution.HOUR: 3600,
}


def interval_seconds(resolution: Resolution) -> int:
    """Interval length in seconds for the bar resolutions served by interval requests"""
    try:
        return _INTERVAL_SECONDS[resolution]
    except KeyError:
        raise ValueError(f"Resolution {resolution.value} has no interval length") from None


def fetch_window(request: HistoryRequest, now: Optional[datetime] = None) -> Tuple[datetime, Optional[datetime]]:
    """New York start/end bounds for a request

    The end bound is None (fetch through the latest data) when the request ends
    within a minute of now.
    """
    now = now or datetime.now(timezone.utc)
    start = convert_from_utc(request.start_time_utc, NEW_YORK)
    end = convert_from_utc(request.end_time_utc, NEW_YORK)
    if request.end_time_utc >= now - OPEN_END_THRESHOLD:
        end = None
    return start, end


class MessageSource(ABC):
    """Capability interface for retrieving raw messages"""

    def __init__(self, lookup_client: LookupClient):
        self.lookup_client = lookup_client

    @abstractmethod
    def get_tick_messages(self, ticker: str, start: datetime, end: Optional[datetime]) -> Iterator[TickMessage]:
        ...

    @abstractmethod
    def get_interval_messages(self, ticker: str, seconds: int, start: datetime,
                              end: Optional[datetime]) -> Iterator[IntervalMessage]:
        ...

    @abstractmethod
    def get_daily_messages(self, ticker: str, start: datetime, end: Optional[datetime]) -> Iterator[DailyMessage]:
        ...

    def get_messages(self, ticker: str, resolution: Resolution, start: datetime,
                     end: Optional[datetime]) -> Iterator[RawMessage]:
        """Messages of the kind implied by the resolution"""
        fetcher = _FETCHERS.get(resolution)
        if fetcher is not None:
            return getattr(self, fetcher)(ticker, start, end)
        return self.get_interval_messages(ticker, interval_seconds(resolution), start, end)


_FETCHERS = {
    Resolution.TICK: 'get_tick_messages',
    Resolution.DAILY: 'get_daily_messages',
}


class MemoryMessageSource(MessageSource):
    """Streams lookup responses straight into the pipeline"""

    def get_tick_messages(self, ticker, start, end):
        return self.lookup_client.get_history_tick_timeframe(ticker, start, end, DATA_DIRECTION_OLDEST)

    def get_interval_messages(self, ticker, seconds, start, end):
        return self.lookup_client.get_history_interval_timeframe(ticker, seconds, start, end, DATA_DIRECTION_OLDEST)

    def get_daily_messages(self, ticker, start, end):
        return self.lookup_client.get_history_daily_timeframe(ticker, start, end, DATA_DIRECTION_OLDEST)


class FileMessageSource(MessageSource):
    """Downloads lookup responses to a temporary file, parses it, then deletes it"""

    def get_tick_messages(self, ticker, start, end):
        return self._from_file(
            lambda: self.lookup_client.download_history_tick_timeframe(ticker, start, end, DATA_DIRECTION_OLDEST),
            TickMessage
        )

    def get_interval_messages(self, ticker, seconds, start, end):
        return self._from_file(
            lambda: self.lookup_client.download_history_interval_timeframe(ticker, seconds, start, end,
                                                                            DATA_DIRECTION_OLDEST),
            IntervalMessage
        )

    def get_daily_messages(self, ticker, start, end):
        return self._from_file(
            lambda: self.lookup_client.download_history_daily_timeframe(ticker, start, end, DATA_DIRECTION_OLDEST),
            DailyMessage
        )

    def _from_file(self, download: Callable[[], str], message_type: Type[RawMessage]) -> Iterator[RawMessage]:
        filename = download()
        try:
            yield from message_type.parse_from_file(filename)
        finally:
            remove_temporary_file(filename)


def remove_temporary_file(filename: Optional[str]):
    """Delete a downloaded file; failures are logged and never raised"""
    if not filename:
        return
    try:
        os.remove(filename)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(
            f"⚠️ Could not delete temporary file {filename}: {e}",
            extra={'extra_fields': {'temporary_file': filename, 'error_type': type(e).__name__}}
        )


def create_message_source(lookup_client: LookupClient, save_on_disk: bool = False) -> MessageSource:
    """Pick the retrieval strategy once, at pipeline construction"""
    if save_on_disk:
        return FileMessageSource(lookup_client)
    return MemoryMessageSource(lookup_client)
