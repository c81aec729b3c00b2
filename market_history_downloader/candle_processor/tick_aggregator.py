"""
Tick Aggregator

Builds OHLCV trade bars from an ordered tick sequence. Bars are aligned to
multiples of the bucket size counted from ``datetime.min``, so a 1m bucket
starts on the minute and a 1d bucket at midnight. Empty buckets produce no bar.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from ..models import Symbol, Tick, TradeBar

logger = logging.getLogger(__name__)


def round_down(value: datetime, interval: timedelta) -> datetime:
    """Truncate a timestamp to the nearest lower multiple of interval"""
    if interval <= timedelta(0):
        raise ValueError(f"Bucket size must be positive, got {interval}")
    origin = datetime.min.replace(tzinfo=value.tzinfo)
    return value - (value - origin) % interval


@dataclass
class BarBuilder:
    """
    Accumulates the ticks of one bucket.
    First tick sets the open, every tick moves the close.
    """
    symbol: Symbol
    time: datetime
    period: timedelta

    open: Optional[Decimal] = None
    high: Optional[Decimal] = None
    low: Optional[Decimal] = None
    close: Optional[Decimal] = None
    volume: Decimal = Decimal(0)
    tick_count: int = 0

    def add_tick(self, price: Decimal, quantity: Decimal) -> None:
        if self.open is None:
            self.open = price
        if self.high is None or price > self.high:
            self.high = price
        if self.low is None or price < self.low:
            self.low = price
        self.close = price
        self.volume += quantity
        self.tick_count += 1

    def finalize(self) -> TradeBar:
        if self.tick_count == 0:
            raise ValueError(f"Cannot build a bar for empty bucket {self.time.isoformat()}")
        return TradeBar(
            time=self.time,
            symbol=self.symbol,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
            period=self.period,
        )


def aggregate_ticks(ticks: Iterable[Tick], symbol: Symbol, bucket_size: timedelta) -> List[TradeBar]:
    """Aggregate ticks into bars of bucket_size, in ascending bucket order

    Ticks are expected in ascending time order; ties keep arrival order for
    open/close selection.
    """
    if bucket_size <= timedelta(0):
        raise ValueError(f"Bucket size must be positive, got {bucket_size}")

    buckets: Dict[datetime, BarBuilder] = {}
    for tick in ticks:
        key = round_down(tick.time, bucket_size)
        builder = buckets.get(key)
        if builder is None:
            builder = buckets[key] = BarBuilder(symbol=symbol, time=key, period=bucket_size)
        builder.add_tick(tick.last_price, tick.quantity)

    return [buckets[key].finalize() for key in sorted(buckets)]
