"""
Eligibility rules deciding which instruments the historical feed can serve
"""

from ..models import Symbol, SecurityType, Market, HistoryRequest

# Security types served on a single market; futures are served on any market
_SERVED_MARKETS = {
    SecurityType.EQUITY: Market.USA,
    SecurityType.FOREX: Market.FXCM,
    SecurityType.OPTION: Market.USA,
}


def can_handle(symbol: Symbol) -> bool:
    """Returns True if the feed can serve data for the symbol's security type and market"""
    if symbol.security_type == SecurityType.FUTURE:
        return True
    return _SERVED_MARKETS.get(symbol.security_type) == symbol.market


def is_servable(request: HistoryRequest) -> bool:
    """Returns True if the request should be fetched at all

    Universe requests, canonical option/future chains and unsupported
    security type/market combinations are skipped.
    """
    if request.is_universe:
        return False
    if request.symbol.is_canonical:
        return False
    return can_handle(request.symbol)
