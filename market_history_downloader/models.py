"""
Data Models for Market History Downloader

Instrument identifiers, history requests, the vendor's raw lookup messages and
the normalized Tick / TradeBar / Slice events produced from them.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Optional, Dict, Any, Iterator, Sequence, Union, Tuple
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal
from pathlib import Path
import logging

import pandas as pd
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

logger = logging.getLogger(__name__)

# Vendor value for a message that carries no timestamp
UNSET_TIMESTAMP = datetime.min

_TIMESTAMP_FORMATS = ('%Y-%m-%d %H:%M:%S.%f', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d')


class SecurityType(str, Enum):
    """Supported security types"""
    EQUITY = "equity"
    FOREX = "forex"
    OPTION = "option"
    FUTURE = "future"


class Market(str, Enum):
    """Market codes an instrument can be listed on"""
    USA = "usa"
    CANADA = "canada"
    FXCM = "fxcm"
    CME = "cme"
    CBOT = "cbot"
    NYMEX = "nymex"
    COMEX = "comex"
    ICE = "ice"


class OptionRight(str, Enum):
    CALL = "call"
    PUT = "put"


class Resolution(str, Enum):
    """Time granularity of requested data"""
    TICK = "tick"
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAILY = "daily"

    @property
    def period(self) -> timedelta:
        """Length of one bar at this resolution (zero for ticks)"""
        return _RESOLUTION_PERIODS[self]

    @classmethod
    def parse(cls, name: str) -> 'Resolution':
        """Parse a resolution name case-insensitively ('Minute', 'minute', 'MINUTE')"""
        try:
            return cls(name.strip().lower())
        except ValueError:
            valid = ', '.join(r.value for r in cls)
            raise ValueError(f"Invalid resolution '{name}'. Expected one of: {valid}") from None


_RESOLUTION_PERIODS = {
    Resolution.TICK: timedelta(0),
    Resolution.SECOND: timedelta(seconds=1),
    Resolution.MINUTE: timedelta(minutes=1),
    Resolution.HOUR: timedelta(hours=1),
    Resolution.DAILY: timedelta(days=1),
}

# Tick plus every coarser standard resolution
ALL_RESOLUTIONS = (Resolution.TICK, Resolution.SECOND, Resolution.MINUTE, Resolution.HOUR, Resolution.DAILY)


@dataclass(frozen=True)
class Symbol:
    """Instrument identifier: ticker + security type + market

    Options and futures without an expiry identify the whole chain
    (canonical symbol) rather than a single contract.
    """
    ticker: str
    security_type: SecurityType
    market: Market
    expiry: Optional[date] = None
    strike: Optional[Decimal] = None
    option_right: Optional[OptionRight] = None

    def __post_init__(self):
        if not self.ticker or not self.ticker.strip():
            raise ValueError("Symbol ticker cannot be empty")
        if self.security_type == SecurityType.OPTION and self.expiry is not None:
            if self.strike is None or self.option_right is None:
                raise ValueError(f"Option contract {self.ticker} requires strike and option right")

    @classmethod
    def create(cls, ticker: str, security_type: SecurityType = SecurityType.EQUITY,
               market: Market = Market.USA) -> 'Symbol':
        return cls(ticker=ticker.upper(), security_type=security_type, market=market)

    @property
    def is_canonical(self) -> bool:
        """True for option/future chain symbols"""
        return self.security_type in (SecurityType.OPTION, SecurityType.FUTURE) and self.expiry is None

    def __str__(self) -> str:
        parts = [self.security_type.value.upper(), self.market.value.upper(), self.ticker]
        if self.expiry:
            parts.append(self.expiry.strftime('%Y%m%d'))
        if self.strike is not None:
            parts.append(str(self.strike))
        if self.option_right:
            parts.append(self.option_right.value.upper())
        return ":".join(parts)


class HistoryRequest(BaseModel):
    """A single historical data request for one instrument and resolution"""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    symbol: Symbol
    resolution: Resolution
    start_time_utc: datetime
    end_time_utc: datetime
    is_universe: bool = False

    @field_validator('start_time_utc', 'end_time_utc')
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        """Naive datetimes are taken as UTC, aware ones are converted to UTC"""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode='after')
    def validate_range(self) -> 'HistoryRequest':
        if self.start_time_utc > self.end_time_utc:
            raise ValueError(
                f"start_time_utc ({self.start_time_utc.isoformat()}) must not be after "
                f"end_time_utc ({self.end_time_utc.isoformat()})"
            )
        return self


@dataclass(frozen=True)
class Tick:
    """A single trade/quote event"""
    time: datetime
    symbol: Symbol
    last_price: Decimal
    bid_price: Decimal
    ask_price: Decimal
    quantity: Decimal

    @property
    def end_time(self) -> datetime:
        return self.time

    def model_dump(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'time': self.time,
            'last_price': self.last_price,
            'bid_price': self.bid_price,
            'ask_price': self.ask_price,
            'quantity': self.quantity,
        }


@dataclass(frozen=True)
class TradeBar:
    """OHLCV summary over one resolution period, labeled by its open time"""
    time: datetime
    symbol: Symbol
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    period: timedelta

    @property
    def end_time(self) -> datetime:
        return self.time + self.period

    def model_dump(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'time': self.time,
            'end_time': self.end_time,
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
        }


BaseData = Union[Tick, TradeBar]


@dataclass(frozen=True)
class Slice:
    """Output envelope carrying one Tick or TradeBar, keyed by its end time"""
    time: datetime
    data: BaseData

    @property
    def symbol(self) -> Symbol:
        return self.data.symbol

    @property
    def tick(self) -> Optional[Tick]:
        return self.data if isinstance(self.data, Tick) else None

    @property
    def bar(self) -> Optional[TradeBar]:
        return self.data if isinstance(self.data, TradeBar) else None


def parse_timestamp(value: Any) -> datetime:
    """Parse a vendor timestamp; anything unparseable becomes UNSET_TIMESTAMP"""
    if isinstance(value, datetime):
        return value
    text = str(value).strip() if value is not None else ''
    if not text:
        return UNSET_TIMESTAMP
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    logger.debug(f"Unparseable vendor timestamp {text!r}, treating as unset")
    return UNSET_TIMESTAMP


def _to_float(value: Any) -> float:
    text = str(value).strip() if value is not None else ''
    return float(text) if text else 0.0


def _to_str(value: Any) -> str:
    return '' if value is None else str(value).strip()


def _to_int(value: Any) -> int:
    text = str(value).strip() if value is not None else ''
    return int(float(text)) if text else 0


class RawMessage:
    """Base for the vendor's lookup messages

    FIELDS lists the CSV columns of the message, in wire order.
    """

    FIELDS: Tuple[str, ...] = ()
    CONVERTERS: Dict[str, Any] = {}

    @classmethod
    def from_fields(cls, fields: Sequence[Any]):
        """Build a message from the positional CSV fields of one row"""
        if len(fields) < len(cls.FIELDS):
            raise ValueError(
                f"{cls.__name__} expects {len(cls.FIELDS)} fields, got {len(fields)}: {list(fields)!r}"
            )
        values = {
            name: cls.CONVERTERS.get(name, _to_str)(raw)
            for name, raw in zip(cls.FIELDS, fields)
        }
        return cls(**values)

    @classmethod
    def parse_from_file(cls, filename: Union[str, Path], chunksize: int = 10_000) -> Iterator['RawMessage']:
        """Lazily parse a headerless CSV file of rows in FIELDS order"""
        if Path(filename).stat().st_size == 0:
            return
        try:
            reader = pd.read_csv(
                filename,
                header=None,
                names=list(cls.FIELDS),
                index_col=False,
                dtype=str,
                keep_default_na=False,
                chunksize=chunksize,
            )
        except pd.errors.EmptyDataError:
            return

        with reader:
            for chunk in reader:
                for row in chunk.itertuples(index=False, name=None):
                    yield cls.from_fields(row)


@dataclass(frozen=True)
class TickMessage(RawMessage):
    timestamp: datetime
    last: float
    last_size: int
    total_volume: int
    bid: float
    ask: float
    tick_id: int
    basis_for_last: str
    trade_market_center: str
    trade_conditions: str

    FIELDS = ('timestamp', 'last', 'last_size', 'total_volume', 'bid', 'ask', 'tick_id',
              'basis_for_last', 'trade_market_center', 'trade_conditions')
    CONVERTERS = {
        'timestamp': parse_timestamp,
        'last': _to_float,
        'last_size': _to_int,
        'total_volume': _to_int,
        'bid': _to_float,
        'ask': _to_float,
        'tick_id': _to_int,
    }


@dataclass(frozen=True)
class IntervalMessage(RawMessage):
    timestamp: datetime
    high: float
    low: float
    open: float
    close: float
    total_volume: int
    period_volume: int
    number_of_trades: int

    FIELDS = ('timestamp', 'high', 'low', 'open', 'close', 'total_volume', 'period_volume', 'number_of_trades')
    CONVERTERS = {
        'timestamp': parse_timestamp,
        'high': _to_float,
        'low': _to_float,
        'open': _to_float,
        'close': _to_float,
        'total_volume': _to_int,
        'period_volume': _to_int,
        'number_of_trades': _to_int,
    }


@dataclass(frozen=True)
class DailyMessage(RawMessage):
    timestamp: datetime
    high: float
    low: float
    open: float
    close: float
    period_volume: int
    open_interest: int

    FIELDS = ('timestamp', 'high', 'low', 'open', 'close', 'period_volume', 'open_interest')
    CONVERTERS = {
        'timestamp': parse_timestamp,
        'high': _to_float,
        'low': _to_float,
        'open': _to_float,
        'close': _to_float,
        'period_volume': _to_int,
        'open_interest': _to_int,
    }
