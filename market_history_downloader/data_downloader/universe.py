"""
Universe Expansion

Resolves the special universe tickers (US_STOCKS, CANADIAN_STOCKS) into the
concrete equity tickers listed in the vendor's market-symbols archive.
"""

import asyncio
import io
import logging
from typing import List, Optional, Sequence, Tuple

import aiohttp
import pandas as pd

from ..models import Market
from ..utils.error_handler import FeedError
from ..utils.logger import log_operation_failure, log_operation_start, log_operation_success

logger = logging.getLogger(__name__)

MARKET_SYMBOLS_URL = "http://www.dtniq.com/product/mktsymbols_v2.zip"

US_STOCKS = "US_STOCKS"
CANADIAN_STOCKS = "CANADIAN_STOCKS"
US_EXCHANGES = ("NYSE", "NASDAQ", "NYSE_AMERICAN", "BATS", "IEX")


class MarketSymbolsClient:
    """Downloads the vendor's market-symbols list over HTTP"""

    def __init__(self, url: str = MARKET_SYMBOLS_URL, timeout: int = 300):
        self.url = url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._create_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self._close_session()

    async def _create_session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={'User-Agent': 'MarketHistoryDownloader/1.0.0'}
            )

    async def _close_session(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch_market_symbols(self) -> pd.DataFrame:
        """Download and parse the full market-symbols table"""
        await self._create_session()
        logger.info(f"🌐 Downloading market symbols from {self.url}")
        try:
            async with self._session.get(self.url) as response:
                if response.status >= 400:
                    raise FeedError(f"Market symbols download failed with HTTP {response.status}")
                content = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedError(f"Market symbols download failed: {e}") from e

        symbols = parse_market_symbols(content)
        logger.info(f"✅ Loaded {len(symbols)} market symbols")
        return symbols


def parse_market_symbols(content: bytes) -> pd.DataFrame:
    """Parse the tab-separated symbols table, zipped or plain"""
    compression = 'zip' if content[:2] == b'PK' else None
    df = pd.read_csv(
        io.BytesIO(content),
        sep='\t',
        dtype=str,
        keep_default_na=False,
        compression=compression,
    )
    df.columns = [column.strip().upper() for column in df.columns]
    return df


def select_universe(symbols: pd.DataFrame, universe: str) -> Tuple[List[str], Market]:
    """Tickers and market for a universe name"""
    equities = symbols[symbols['SECURITY TYPE'] == 'EQUITY']
    if universe == CANADIAN_STOCKS:
        selected = equities[equities['LISTED MARKET'] == 'TSE']
        return selected['SYMBOL'].tolist(), Market.CANADA
    if universe == US_STOCKS:
        selected = equities[equities['EXCHANGE'].isin(US_EXCHANGES)]
        return selected['SYMBOL'].tolist(), Market.USA
    raise ValueError(f"Unknown universe '{universe}'")


def is_universe(tickers: Sequence[str]) -> bool:
    return bool(tickers) and tickers[0] in (US_STOCKS, CANADIAN_STOCKS)


async def expand_universe_tickers_async(tickers: Sequence[str], market: Market,
                                        client: Optional[MarketSymbolsClient] = None) -> Tuple[List[str], Market]:
    """Replace a universe ticker with its members; plain ticker lists pass through"""
    if not is_universe(tickers):
        return list(tickers), market

    universe = tickers[0]
    log_operation_start(logger, "universe expansion", universe=universe)
    try:
        async with (client or MarketSymbolsClient()) as symbols_client:
            symbols = await symbols_client.fetch_market_symbols()
        expanded, universe_market = select_universe(symbols, universe)
    except Exception as e:
        log_operation_failure(logger, "universe expansion", e, universe=universe)
        raise

    log_operation_success(logger, "universe expansion", universe=universe,
                          ticker_count=len(expanded), market=universe_market.value)
    return expanded, universe_market


def expand_universe_tickers(tickers: Sequence[str], market: Market = Market.USA,
                            client: Optional[MarketSymbolsClient] = None) -> Tuple[List[str], Market]:
    """Blocking wrapper around expand_universe_tickers_async"""
    if not is_universe(tickers):
        return list(tickers), market
    return asyncio.run(expand_universe_tickers_async(tickers, market, client))
