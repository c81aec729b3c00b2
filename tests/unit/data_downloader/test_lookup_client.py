"""
Unit tests for lookup client
"""

import os
import pytest
from datetime import datetime
from unittest.mock import patch

from market_history_downloader.config import FeedConfig
from market_history_downloader.models import DailyMessage, IntervalMessage, TickMessage
from market_history_downloader.data_downloader.lookup_client import (
    LookupClient, format_date, format_datetime,
)
from market_history_downloader.utils.error_handler import FeedError

START = datetime(2024, 1, 2, 9, 30)
END = datetime(2024, 1, 2, 16, 0)


class FakeSession:
    """Stands in for a connected lookup socket"""

    def __init__(self, lines):
        self.lines = list(lines)
        self.sent = []
        self.closed = False

    def connect(self):
        pass

    def send(self, command):
        self.sent.append(command)

    def read_fields(self):
        line = self.lines.pop(0)
        if isinstance(line, Exception):
            raise line
        return line.split(',')

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    """Patch session creation with a scripted fake"""
    with patch('market_history_downloader.data_downloader.lookup_client.LookupSession') as session_cls:
        def _script(lines):
            session = FakeSession(lines)
            session_cls.return_value = session
            return session
        yield _script


class TestFormatting:
    """Test request formatting"""

    def test_format_datetime(self):
        assert format_datetime(START) == "20240102 093000"
        assert format_datetime(None) == ""

    def test_format_date(self):
        assert format_date(START) == "20240102"
        assert format_date(None) == ""

    def test_commands(self):
        client = LookupClient(datapoints_per_send=500)
        assert client._tick_command("SPY", START, END, 1, "R1") == \
            "HTT,SPY,20240102 093000,20240102 160000,,,,1,R1,500"
        assert client._interval_command("SPY", 60, START, None, 1, "R2") == \
            "HIT,SPY,60,20240102 093000,,,,,1,R2,500,s,0"
        assert client._daily_command("SPY", START, END, 1, "R3") == \
            "HDT,SPY,20240102,20240102,,1,R3,500"

    def test_from_config(self):
        client = LookupClient.from_config(FeedConfig(host="10.0.0.5", lookup_port=9200, max_sessions=3))
        assert client.host == "10.0.0.5"
        assert client.port == 9200
        assert client.max_sessions == 3


class TestInMemoryRequests:
    """Test streamed responses"""

    def test_tick_rows_parsed(self, fake_session):
        session = fake_session([
            "R1,LH,2024-01-02 09:30:00.250000,472.65,100,100,472.64,472.66,1,C,11,01,",
            "R1,LH,2024-01-02 09:30:01.000000,472.70,50,150,472.69,472.71,2,C,11,01,",
            "R1,!ENDMSG!,",
        ])
        client = LookupClient()

        messages = list(client.get_history_tick_timeframe("SPY", START, END))

        assert [type(m) for m in messages] == [TickMessage, TickMessage]
        assert messages[0].last == 472.65
        assert session.sent == ["HTT,SPY,20240102 093000,20240102 160000,,,,1,R1,500"]
        assert client._idle.qsize() == 1
        assert not session.closed

    def test_request_is_lazy(self, fake_session):
        session = fake_session(["R1,!ENDMSG!,"])
        client = LookupClient()

        messages = client.get_history_daily_timeframe("SPY", START, END)
        assert session.sent == []
        assert list(messages) == []

    def test_unrelated_lines_skipped(self, fake_session):
        fake_session([
            "T,20240102 09:30:00",
            "R1,LH,2024-01-02 09:31:00,473.1,472.2,472.5,473.0,1000000,25000,140,",
            "R1,!ENDMSG!,",
        ])
        messages = list(LookupClient().get_history_interval_timeframe("SPY", 60, START, END))
        assert len(messages) == 1
        assert isinstance(messages[0], IntervalMessage)

    def test_no_data_is_empty(self, fake_session):
        fake_session(["R1,E,!NO_DATA!,", "R1,!ENDMSG!,"])
        assert list(LookupClient().get_history_daily_timeframe("SPY", START, END)) == []

    def test_feed_error_raised(self, fake_session):
        fake_session(["R1,E,Invalid symbol.,", "R1,!ENDMSG!,"])
        client = LookupClient()
        with pytest.raises(FeedError, match="Invalid symbol"):
            list(client.get_history_daily_timeframe("XXXX", START, END))
        assert client._idle.qsize() == 1

    def test_socket_error_wrapped(self, fake_session):
        session = fake_session([ConnectionResetError("reset")])
        client = LookupClient()
        with pytest.raises(FeedError, match="reset"):
            list(client.get_history_tick_timeframe("SPY", START, END))
        assert session.closed
        assert client._idle.qsize() == 0

    def test_abandoned_session_closed_and_released(self, fake_session):
        """Test a partially consumed response never returns its session to the pool"""
        session = fake_session([
            "R1,LH,2024-01-02 09:30:00.250000,472.65,100,100,472.64,472.66,1,C,11,01,",
            "R1,LH,2024-01-02 09:30:01.000000,472.70,50,150,472.69,472.71,2,C,11,01,",
            "R1,!ENDMSG!,",
        ])
        client = LookupClient(max_sessions=1)

        messages = client.get_history_tick_timeframe("SPY", START, END)
        next(messages)
        messages.close()

        assert session.closed
        assert client._idle.qsize() == 0
        assert client._sessions.acquire(blocking=False)


class TestFileDownloads:
    """Test temporary file downloads"""

    def test_rows_written_to_temp_file(self, fake_session, tmp_path):
        fake_session([
            "R1,LH,2024-01-02,474.0,470.1,472.2,472.6,123000000,0,",
            "R1,!ENDMSG!,",
        ])
        client = LookupClient(temp_dir=str(tmp_path))

        path = client.download_history_daily_timeframe("SPY", START, END)

        assert os.path.dirname(path) == str(tmp_path)
        messages = list(DailyMessage.parse_from_file(path))
        assert len(messages) == 1
        assert messages[0].close == 472.6

    def test_partial_file_removed_on_error(self, fake_session, tmp_path):
        fake_session([
            "R1,LH,2024-01-02,474.0,470.1,472.2,472.6,123000000,0,",
            "R1,E,Invalid request.,",
            "R1,!ENDMSG!,",
        ])
        client = LookupClient(temp_dir=str(tmp_path))

        with pytest.raises(FeedError):
            client.download_history_daily_timeframe("SPY", START, END)
        assert list(tmp_path.iterdir()) == []
