"""
History Provider

Runs the per-request pipeline: eligibility filter -> message source -> slice builder.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from ..models import HistoryRequest, Slice
from .eligibility import is_servable
from .message_source import MessageSource, fetch_window
from .slice_builder import build_slice
from .symbol_mapper import SymbolMapper

logger = logging.getLogger(__name__)


class HistoryProvider:
    """Turns history requests into lazily produced, oldest-first slices"""

    def __init__(self, message_source: MessageSource, symbol_mapper: Optional[SymbolMapper] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.message_source = message_source
        self.symbol_mapper = symbol_mapper or SymbolMapper()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def process_history_request(self, request: HistoryRequest) -> Iterator[Slice]:
        """Slices for one request; ineligible requests yield nothing"""
        if not is_servable(request):
            logger.info(f"⏭️ Skipping unsupported request for {request.symbol}")
            return

        ticker = self.symbol_mapper.get_brokerage_symbol(request.symbol)
        now = self.clock()
        start, end = fetch_window(request, now=now)

        logger.info(
            f"📥 Submitting request: {request.symbol.security_type.value}-{ticker}: "
            f"{request.resolution.value} {start.isoformat()}->"
            f"{end.isoformat() if end else 'latest'}",
            extra={'extra_fields': {'ticker': ticker, 'resolution': request.resolution.value,
                                    'open_ended': end is None}}
        )

        skipped = 0
        for message in self.message_source.get_messages(ticker, request.resolution, start, end):
            slice_ = build_slice(message, request)
            if slice_ is None:
                skipped += 1
                continue
            yield slice_

        if skipped:
            logger.debug(f"Skipped {skipped} messages without timestamp for {ticker}")
