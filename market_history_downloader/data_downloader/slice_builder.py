"""
Slice Builder

Converts raw lookup messages into Tick / TradeBar slices. This is the only
place vendor floats become Decimals.

Time rules:
- equities keep the feed's New York wall-clock timestamps; every other
  security type is shifted to Eastern Standard Time (no daylight saving)
- interval bars are labeled at their close by the feed, so the bar opens one
  period before the message timestamp
- daily bars open at midnight of the message date
"""

import logging
from datetime import datetime, time
from decimal import Decimal
from typing import Callable, Dict, Optional, Type

from ..models import (
    HistoryRequest, SecurityType, Slice, Symbol, Tick, TradeBar,
    RawMessage, TickMessage, IntervalMessage, DailyMessage, UNSET_TIMESTAMP,
)
from ..utils.timezones import NEW_YORK, EASTERN_STANDARD, convert_time_zone

logger = logging.getLogger(__name__)


def to_decimal(value: float) -> Decimal:
    """Vendor float -> Decimal using the shortest round-tripping representation"""
    return Decimal(str(value))


def exchange_time(timestamp: datetime, symbol: Symbol) -> datetime:
    if symbol.security_type == SecurityType.EQUITY:
        return timestamp
    return convert_time_zone(timestamp, NEW_YORK, EASTERN_STANDARD)


def _build_tick(message: TickMessage, request: HistoryRequest) -> Slice:
    tick = Tick(
        time=exchange_time(message.timestamp, request.symbol),
        symbol=request.symbol,
        last_price=to_decimal(message.last),
        bid_price=to_decimal(message.bid),
        ask_price=to_decimal(message.ask),
        quantity=Decimal(message.last_size),
    )
    return Slice(tick.end_time, tick)


def _build_interval_bar(message: IntervalMessage, request: HistoryRequest) -> Slice:
    period = request.resolution.period
    bar = TradeBar(
        time=exchange_time(message.timestamp - period, request.symbol),
        symbol=request.symbol,
        open=to_decimal(message.open),
        high=to_decimal(message.high),
        low=to_decimal(message.low),
        close=to_decimal(message.close),
        volume=Decimal(message.period_volume),
        period=period,
    )
    return Slice(bar.end_time, bar)


def _build_daily_bar(message: DailyMessage, request: HistoryRequest) -> Slice:
    bar_open = datetime.combine(message.timestamp.date(), time.min)
    bar = TradeBar(
        time=exchange_time(bar_open, request.symbol),
        symbol=request.symbol,
        open=to_decimal(message.open),
        high=to_decimal(message.high),
        low=to_decimal(message.low),
        close=to_decimal(message.close),
        volume=Decimal(message.period_volume),
        period=request.resolution.period,
    )
    return Slice(bar.end_time, bar)


_BUILDERS: Dict[Type[RawMessage], Callable[[RawMessage, HistoryRequest], Slice]] = {
    TickMessage: _build_tick,
    IntervalMessage: _build_interval_bar,
    DailyMessage: _build_daily_bar,
}


def build_slice(message: RawMessage, request: HistoryRequest) -> Optional[Slice]:
    """Convert one raw message; messages without a timestamp yield None"""
    if message.timestamp is None or message.timestamp == UNSET_TIMESTAMP:
        return None
    builder = _BUILDERS.get(type(message))
    if builder is None:
        raise TypeError(f"No slice builder for {type(message).__name__}")
    return builder(message, request)
