"""
Symbol Mapper

Maps instrument identifiers to the ticker strings understood by the
historical lookup feed.
"""

from decimal import Decimal

from ..models import Symbol, SecurityType, OptionRight

FUTURE_MONTH_CODES = "FGHJKMNQUVXZ"
CALL_MONTH_CODES = "ABCDEFGHIJKL"
PUT_MONTH_CODES = "MNOPQRSTUVWX"


class SymbolMapper:
    """Converts Symbols to feed tickers

    - equity: ticker as-is (``SPY``)
    - forex: ticker with venue suffix (``EURUSD.FXCM``)
    - future: ``@`` + root + month code + 2-digit year (``@ESZ24``)
    - option: root + yy + dd + month/right code + strike (``SPY2420L450``)
    """

    def get_brokerage_symbol(self, symbol: Symbol) -> str:
        if symbol.security_type == SecurityType.EQUITY:
            return symbol.ticker
        if symbol.security_type == SecurityType.FOREX:
            return f"{symbol.ticker}.{symbol.market.value.upper()}"
        if symbol.is_canonical:
            raise ValueError(f"Canonical symbol {symbol} has no single feed ticker")
        if symbol.security_type == SecurityType.FUTURE:
            month_code = FUTURE_MONTH_CODES[symbol.expiry.month - 1]
            return f"@{symbol.ticker}{month_code}{symbol.expiry:%y}"
        if symbol.security_type == SecurityType.OPTION:
            codes = CALL_MONTH_CODES if symbol.option_right == OptionRight.CALL else PUT_MONTH_CODES
            month_code = codes[symbol.expiry.month - 1]
            return f"{symbol.ticker}{symbol.expiry:%y%d}{month_code}{_format_strike(symbol.strike)}"
        raise ValueError(f"Unsupported security type: {symbol.security_type}")


def _format_strike(strike: Decimal) -> str:
    text = format(strike.normalize(), 'f')
    return text.rstrip('0').rstrip('.') if '.' in text else text
