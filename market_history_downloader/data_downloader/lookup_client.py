"""
Lookup Client for the historical feed

This module handles all communication with the feed's historical lookup port:
protocol negotiation, the capped session pool, request formatting and response
parsing into raw messages. Results are served either as a lazy message iterator
or as a temporary CSV file holding the same rows.
"""

import csv
import itertools
import logging
import os
import queue
import socket
import tempfile
import threading
from datetime import datetime
from typing import Iterator, List, Optional, Type

from ..models import RawMessage, TickMessage, IntervalMessage, DailyMessage
from ..utils.error_handler import FeedError
from ..utils.logger import bind_context

logger = logging.getLogger(__name__)

DATA_DIRECTION_NEWEST = 0
DATA_DIRECTION_OLDEST = 1

END_OF_MESSAGE = '!ENDMSG!'
NO_DATA = '!NO_DATA!'


def format_datetime(value: Optional[datetime]) -> str:
    return value.strftime('%Y%m%d %H%M%S') if value else ''


def format_date(value: Optional[datetime]) -> str:
    return value.strftime('%Y%m%d') if value else ''


class LookupSession:
    """A single connection to the lookup port"""

    def __init__(self, host: str, port: int, protocol: str, timeout: float):
        self.host = host
        self.port = port
        self.protocol = protocol
        self.timeout = timeout
        self._socket: Optional[socket.socket] = None
        self._reader = None

    def connect(self):
        self._socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
        self._reader = self._socket.makefile('r', encoding='latin-1', newline='')
        self.send(f"S,SET PROTOCOL,{self.protocol}")
        while True:
            fields = self.read_fields()
            if fields[:2] == ['S', 'CURRENT PROTOCOL']:
                if fields[2] != self.protocol:
                    raise FeedError(f"Feed refused protocol {self.protocol}, using {fields[2]}")
                return
            if fields[0] == 'E':
                raise FeedError(f"Protocol negotiation failed: {','.join(fields[1:])}")

    def send(self, command: str):
        self._socket.sendall(f"{command}\r\n".encode('latin-1'))

    def read_fields(self) -> List[str]:
        line = self._reader.readline()
        if not line:
            raise FeedError(f"Lookup connection to {self.host}:{self.port} closed by the feed")
        return line.rstrip('\r\n').split(',')

    def close(self):
        for resource in (self._reader, self._socket):
            if resource is None:
                continue
            try:
                resource.close()
            except OSError as e:
                logger.debug(f"Ignoring error while closing lookup session: {e}")
        self._reader = None
        self._socket = None


class LookupClient:
    """Historical lookup client with a session pool capped at max_sessions

    Every request holds one session from the moment iteration starts until the
    feed's end-of-message marker is read; a session abandoned mid-stream is
    closed instead of being returned to the pool.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 9100,
        protocol: str = "6.2",
        max_sessions: int = 8,
        timeout: float = 60,
        datapoints_per_send: int = 500,
        temp_dir: Optional[str] = None
    ):
        self.host = host
        self.port = port
        self.protocol = protocol
        self.max_sessions = max_sessions
        self.timeout = timeout
        self.datapoints_per_send = datapoints_per_send
        self.temp_dir = temp_dir

        self._sessions = threading.BoundedSemaphore(max_sessions)
        self._idle: "queue.LifoQueue[LookupSession]" = queue.LifoQueue()
        self._request_ids = itertools.count(1)
        self._request_id_lock = threading.Lock()

    @classmethod
    def from_config(cls, feed_config) -> 'LookupClient':
        return cls(
            host=feed_config.host,
            port=feed_config.lookup_port,
            protocol=feed_config.protocol,
            max_sessions=feed_config.max_sessions,
            timeout=feed_config.timeout,
            datapoints_per_send=feed_config.datapoints_per_send,
            temp_dir=feed_config.temp_dir
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        """Close every idle session"""
        while True:
            try:
                self._idle.get_nowait().close()
            except queue.Empty:
                break

    # Request builders

    def _next_request_id(self) -> str:
        with self._request_id_lock:
            return f"R{next(self._request_ids)}"

    def _tick_command(self, ticker, start, end, direction, request_id) -> str:
        return (f"HTT,{ticker},{format_datetime(start)},{format_datetime(end)},,,,"
                f"{direction},{request_id},{self.datapoints_per_send}")

    def _interval_command(self, ticker, interval_seconds, start, end, direction, request_id) -> str:
        return (f"HIT,{ticker},{interval_seconds},{format_datetime(start)},{format_datetime(end)},,,,"
                f"{direction},{request_id},{self.datapoints_per_send},s,0")

    def _daily_command(self, ticker, start, end, direction, request_id) -> str:
        return (f"HDT,{ticker},{format_date(start)},{format_date(end)},,"
                f"{direction},{request_id},{self.datapoints_per_send}")

    # In-memory retrieval

    def get_history_tick_timeframe(self, ticker: str, start: datetime, end: Optional[datetime],
                                   data_direction: int = DATA_DIRECTION_OLDEST) -> Iterator[TickMessage]:
        request_id = self._next_request_id()
        command = self._tick_command(ticker, start, end, data_direction, request_id)
        return self._messages(TickMessage, command, request_id, ticker)

    def get_history_interval_timeframe(self, ticker: str, interval_seconds: int, start: datetime,
                                       end: Optional[datetime],
                                       data_direction: int = DATA_DIRECTION_OLDEST) -> Iterator[IntervalMessage]:
        request_id = self._next_request_id()
        command = self._interval_command(ticker, interval_seconds, start, end, data_direction, request_id)
        return self._messages(IntervalMessage, command, request_id, ticker)

    def get_history_daily_timeframe(self, ticker: str, start: datetime, end: Optional[datetime],
                                    data_direction: int = DATA_DIRECTION_OLDEST) -> Iterator[DailyMessage]:
        request_id = self._next_request_id()
        command = self._daily_command(ticker, start, end, data_direction, request_id)
        return self._messages(DailyMessage, command, request_id, ticker)

    # File-backed retrieval

    def download_history_tick_timeframe(self, ticker: str, start: datetime, end: Optional[datetime],
                                        data_direction: int = DATA_DIRECTION_OLDEST) -> str:
        request_id = self._next_request_id()
        command = self._tick_command(ticker, start, end, data_direction, request_id)
        return self._download(TickMessage, command, request_id, ticker)

    def download_history_interval_timeframe(self, ticker: str, interval_seconds: int, start: datetime,
                                            end: Optional[datetime],
                                            data_direction: int = DATA_DIRECTION_OLDEST) -> str:
        request_id = self._next_request_id()
        command = self._interval_command(ticker, interval_seconds, start, end, data_direction, request_id)
        return self._download(IntervalMessage, command, request_id, ticker)

    def download_history_daily_timeframe(self, ticker: str, start: datetime, end: Optional[datetime],
                                         data_direction: int = DATA_DIRECTION_OLDEST) -> str:
        request_id = self._next_request_id()
        command = self._daily_command(ticker, start, end, data_direction, request_id)
        return self._download(DailyMessage, command, request_id, ticker)

    # Session pool

    def _acquire_session(self) -> LookupSession:
        self._sessions.acquire()
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        session = LookupSession(self.host, self.port, self.protocol, self.timeout)
        try:
            session.connect()
        except (OSError, FeedError) as e:
            session.close()
            self._sessions.release()
            if isinstance(e, FeedError):
                raise
            raise FeedError(f"Unable to connect to lookup port {self.host}:{self.port}: {e}") from e
        logger.debug(f"🔌 Opened lookup session to {self.host}:{self.port}")
        return session

    def _release_session(self, session: LookupSession, reusable: bool):
        if reusable:
            self._idle.put(session)
        else:
            session.close()
        self._sessions.release()

    def _rows(self, command: str, request_id: str, ticker: str) -> Iterator[List[str]]:
        """Send one request and yield the data fields of each response row"""
        request_logger = bind_context(logger, request_id=request_id, ticker=ticker,
                                      feed=f"{self.host}:{self.port}")
        session = self._acquire_session()
        completed = False
        try:
            request_logger.debug(f"➡️ {command}")
            try:
                session.send(command)
                error_text = None
                while True:
                    fields = session.read_fields()
                    if fields[0] != request_id:
                        request_logger.debug(f"Skipping unrelated lookup line: {','.join(fields)}")
                        continue
                    kind = fields[1] if len(fields) > 1 else ''
                    if kind == END_OF_MESSAGE:
                        break
                    if kind == 'E':
                        error_text = fields[2] if len(fields) > 2 else 'unknown error'
                        continue
                    if kind == 'LH':
                        yield fields[2:]
            except OSError as e:
                raise FeedError(f"Lookup request failed: {e}", ticker=ticker, request=command) from e

            completed = True
            if error_text and error_text != NO_DATA:
                raise FeedError(f"Feed returned error for {ticker}: {error_text}", ticker=ticker, request=command)
            if error_text == NO_DATA:
                request_logger.info(f"📭 No data available for {ticker}")
        finally:
            self._release_session(session, reusable=completed)

    def _messages(self, message_type: Type[RawMessage], command: str, request_id: str,
                  ticker: str) -> Iterator[RawMessage]:
        rows = self._rows(command, request_id, ticker)
        try:
            for fields in rows:
                yield message_type.from_fields(fields)
        finally:
            rows.close()

    def _download(self, message_type: Type[RawMessage], command: str, request_id: str, ticker: str) -> str:
        """Write the response rows to a temporary headerless CSV file and return its path"""
        width = len(message_type.FIELDS)
        handle = tempfile.NamedTemporaryFile(
            mode='w', suffix='.csv', prefix=f"{ticker.replace('/', '_')}_",
            dir=self.temp_dir, delete=False, newline='', encoding='utf-8'
        )
        rows = 0
        try:
            with handle:
                writer = csv.writer(handle)
                for fields in self._rows(command, request_id, ticker):
                    writer.writerow((list(fields) + [''] * width)[:width])
                    rows += 1
        except BaseException:
            try:
                os.remove(handle.name)
            except OSError as e:
                logger.warning(f"⚠️ Could not remove partial download {handle.name}: {e}")
            raise

        logger.debug(f"💾 Saved {rows} {message_type.__name__} rows for {ticker} to {handle.name}")
        return handle.name
