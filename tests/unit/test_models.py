"""
Unit tests for models module
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from pydantic import ValidationError

from market_history_downloader.models import (
    SecurityType, Market, OptionRight, Resolution, Symbol, HistoryRequest, Tick, TradeBar, Slice,
    TickMessage, IntervalMessage, DailyMessage, UNSET_TIMESTAMP, parse_timestamp,
)


class TestResolution:
    """Test Resolution enum"""

    def test_periods(self):
        """Test every resolution maps to its bar length"""
        assert Resolution.TICK.period == timedelta(0)
        assert Resolution.SECOND.period == timedelta(seconds=1)
        assert Resolution.MINUTE.period == timedelta(minutes=1)
        assert Resolution.HOUR.period == timedelta(hours=1)
        assert Resolution.DAILY.period == timedelta(days=1)

    def test_parse_is_case_insensitive(self):
        assert Resolution.parse("Minute") == Resolution.MINUTE
        assert Resolution.parse("DAILY") == Resolution.DAILY
        assert Resolution.parse(" tick ") == Resolution.TICK

    def test_parse_invalid(self):
        with pytest.raises(ValueError, match="Invalid resolution"):
            Resolution.parse("weekly")


class TestSymbol:
    """Test Symbol dataclass"""

    def test_create_defaults_to_us_equity(self):
        """Test create() upper-cases and defaults to equity/usa"""
        symbol = Symbol.create("spy")
        assert symbol.ticker == "SPY"
        assert symbol.security_type == SecurityType.EQUITY
        assert symbol.market == Market.USA
        assert str(symbol) == "EQUITY:USA:SPY"

    def test_empty_ticker_rejected(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            Symbol("  ", SecurityType.EQUITY, Market.USA)

    def test_canonical_chains(self):
        """Test options/futures without expiry are canonical"""
        assert Symbol("ES", SecurityType.FUTURE, Market.CME).is_canonical
        assert Symbol("SPY", SecurityType.OPTION, Market.USA).is_canonical
        assert not Symbol("ES", SecurityType.FUTURE, Market.CME, expiry=date(2024, 12, 20)).is_canonical
        assert not Symbol.create("SPY").is_canonical

    def test_option_contract_requires_strike_and_right(self):
        with pytest.raises(ValueError, match="requires strike"):
            Symbol("SPY", SecurityType.OPTION, Market.USA, expiry=date(2024, 1, 19))

    def test_option_contract_str(self):
        symbol = Symbol("SPY", SecurityType.OPTION, Market.USA, expiry=date(2024, 1, 19),
                        strike=Decimal("450"), option_right=OptionRight.CALL)
        assert str(symbol) == "OPTION:USA:SPY:20240119:450:CALL"


class TestHistoryRequest:
    """Test HistoryRequest model"""

    def test_naive_times_are_utc(self, spy):
        request = HistoryRequest(
            symbol=spy, resolution=Resolution.MINUTE,
            start_time_utc=datetime(2024, 1, 2), end_time_utc=datetime(2024, 1, 3),
        )
        assert request.start_time_utc.tzinfo == timezone.utc
        assert request.is_universe is False

    def test_aware_times_converted_to_utc(self, spy):
        plus_two = timezone(timedelta(hours=2))
        request = HistoryRequest(
            symbol=spy, resolution=Resolution.MINUTE,
            start_time_utc=datetime(2024, 1, 2, 12, tzinfo=plus_two),
            end_time_utc=datetime(2024, 1, 2, 14, tzinfo=plus_two),
        )
        assert request.start_time_utc == datetime(2024, 1, 2, 10, tzinfo=timezone.utc)

    def test_start_after_end_rejected(self, spy):
        with pytest.raises(ValidationError):
            HistoryRequest(
                symbol=spy, resolution=Resolution.DAILY,
                start_time_utc=datetime(2024, 1, 3), end_time_utc=datetime(2024, 1, 2),
            )


class TestDataTypes:
    """Test Tick, TradeBar and Slice"""

    def test_trade_bar_end_time(self, spy):
        bar = TradeBar(
            time=datetime(2024, 1, 2, 9, 30), symbol=spy,
            open=Decimal(1), high=Decimal(2), low=Decimal(1), close=Decimal(2),
            volume=Decimal(10), period=timedelta(minutes=1),
        )
        assert bar.end_time == datetime(2024, 1, 2, 9, 31)
        assert bar.model_dump()['end_time'] == datetime(2024, 1, 2, 9, 31)

    def test_slice_accessors(self, make_ticks):
        tick = make_ticks([100.0])[0]
        slice_ = Slice(tick.end_time, tick)
        assert slice_.tick is tick
        assert slice_.bar is None
        assert slice_.symbol == tick.symbol


class TestRawMessages:
    """Test vendor message parsing"""

    def test_parse_timestamp_formats(self):
        assert parse_timestamp("2024-01-02 09:30:00.250000") == datetime(2024, 1, 2, 9, 30, 0, 250000)
        assert parse_timestamp("2024-01-02 09:31:00") == datetime(2024, 1, 2, 9, 31)
        assert parse_timestamp("2024-01-02") == datetime(2024, 1, 2)

    def test_parse_timestamp_unparseable_is_unset(self):
        assert parse_timestamp("") == UNSET_TIMESTAMP
        assert parse_timestamp("not a date") == UNSET_TIMESTAMP
        assert parse_timestamp(None) == UNSET_TIMESTAMP

    def test_tick_message_from_fields(self):
        fields = ["2024-01-02 09:30:00.250000", "472.65", "100", "5000", "472.64", "472.66",
                  "42", "C", "11", "01", "extra"]
        message = TickMessage.from_fields(fields)
        assert message.last == 472.65
        assert message.last_size == 100
        assert message.tick_id == 42
        assert message.trade_conditions == "01"

    def test_too_few_fields(self):
        with pytest.raises(ValueError, match="expects 8 fields"):
            IntervalMessage.from_fields(["2024-01-02 09:31:00", "1.0"])

    def test_parse_from_file(self, tmp_path):
        path = tmp_path / "daily.csv"
        path.write_text(
            "2024-01-02,474.0,470.1,472.2,472.6,123000000,0\n"
            "2024-01-03,473.0,469.5,471.0,470.2,98000000,0\n"
        )
        messages = list(DailyMessage.parse_from_file(path))
        assert [m.timestamp for m in messages] == [datetime(2024, 1, 2), datetime(2024, 1, 3)]
        assert messages[1].close == 470.2
        assert messages[1].period_volume == 98_000_000

    def test_parse_from_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        assert list(TickMessage.parse_from_file(path)) == []
