"""
Candle Processor Package

Builds OHLCV trade bars from tick sequences.
"""

from .tick_aggregator import BarBuilder, aggregate_ticks, round_down

__all__ = [
    'BarBuilder',
    'aggregate_ticks',
    'round_down'
]
