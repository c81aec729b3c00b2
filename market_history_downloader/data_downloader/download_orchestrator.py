"""
Download Orchestrator Module

Runs a batch of (symbol, resolution) work items through the downloader and
writer with a fixed number of worker threads pulling from one shared queue.
Every item is attempted exactly once; failures are collected and reported
together after the queue has drained.
"""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..candle_processor.tick_aggregator import aggregate_ticks
from ..models import Resolution, Symbol
from ..storage.data_writer import DataWriter
from ..utils.error_handler import (
    BatchDownloadError, ConfigurationError, ErrorContext, ErrorHandler, ItemFailure,
)
from ..utils.logger import PerformanceLogger, bind_context, log_data_processing
from .data_downloader import DataDownloader

logger = logging.getLogger(__name__)

# Resolutions derived from one tick download when aggregating
AGGREGATED_RESOLUTIONS = (Resolution.SECOND, Resolution.MINUTE, Resolution.HOUR, Resolution.DAILY)


@dataclass(frozen=True)
class WorkItem:
    """One unit of work; resolution None means ticks plus every aggregated resolution"""
    symbol: Symbol
    resolution: Optional[Resolution] = None

    def __str__(self) -> str:
        return f"{self.symbol}@{self.resolution.value if self.resolution else 'tick+aggregates'}"


def build_work_items(symbols: Iterable[Symbol], resolutions: Sequence[Resolution],
                     aggregate_ticks: bool = False) -> List[WorkItem]:
    """Expand symbols x resolutions into work items

    With aggregate_ticks each symbol becomes a single item whose coarser
    resolutions are built from its ticks.
    """
    if aggregate_ticks:
        return [WorkItem(symbol) for symbol in symbols]
    return [WorkItem(symbol, resolution) for symbol in symbols for resolution in resolutions]


class DownloadOrchestrator:
    """Dispatches work items over a pool of worker threads"""

    def __init__(self, downloader: DataDownloader, writer: DataWriter, max_workers: int,
                 error_handler: Optional[ErrorHandler] = None):
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be at least 1, got {max_workers}")
        self.downloader = downloader
        self.writer = writer
        self.max_workers = max_workers
        self.error_handler = error_handler or ErrorHandler(logger)

    def run(self, items: Sequence[WorkItem], start_utc: datetime, end_utc: datetime) -> Dict[str, Any]:
        """
        Process every work item, then report.

        Args:
            items: Work items to process
            start_utc: Start of the requested range (UTC)
            end_utc: End of the requested range (UTC)

        Returns:
            Summary with total, processed, failed and elapsed_seconds

        Raises:
            BatchDownloadError: if any item failed, after all items were attempted
        """
        work_queue: "queue.Queue[WorkItem]" = queue.Queue()
        for item in items:
            work_queue.put(item)

        results = {'processed': 0, 'files': 0, 'failures': []}
        results_lock = threading.Lock()

        logger.info(f"🚀 Starting download of {len(items)} work items with {self.max_workers} workers")
        start_time = time.time()

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='downloader') as executor:
            futures = [
                executor.submit(self._worker_loop, work_queue, start_utc, end_utc, results, results_lock)
                for _ in range(self.max_workers)
            ]
            for future in as_completed(futures):
                future.result()

        elapsed = time.time() - start_time
        failures: List[ItemFailure] = results['failures']
        summary = {
            'total': len(items),
            'processed': results['processed'],
            'failed': len(failures),
            'files_written': results['files'],
            'elapsed_seconds': round(elapsed, 3),
        }

        logger.info(
            f"🏁 Download finished in {elapsed:.2f}s: {summary['processed']}/{summary['total']} succeeded, "
            f"{summary['failed']} failed",
            extra={'extra_fields': summary}
        )

        if failures:
            raise BatchDownloadError(failures, len(items))
        return summary

    def _worker_loop(self, work_queue: queue.Queue, start_utc: datetime, end_utc: datetime,
                     results: Dict[str, Any], results_lock: threading.Lock):
        while True:
            try:
                item = work_queue.get_nowait()
            except queue.Empty:
                return

            try:
                written = self.process_item(item, start_utc, end_utc)
            except Exception as e:
                context = ErrorContext(
                    operation="process_item",
                    component="DownloadOrchestrator",
                    work_item=item,
                )
                self.error_handler.handle_error(e, context)
                with results_lock:
                    results['failures'].append(ItemFailure(item, e))
            else:
                with results_lock:
                    results['processed'] += 1
                    results['files'] += len(written)
            finally:
                work_queue.task_done()

    def process_item(self, item: WorkItem, start_utc: datetime, end_utc: datetime) -> List[str]:
        """Download and write one work item, returning the written locations"""
        item_logger = bind_context(
            logger,
            work_item=str(item),
            symbol=str(item.symbol),
            resolution=item.resolution.value if item.resolution else None,
        )
        with PerformanceLogger(item_logger, f"download {item}"):
            if item.resolution is None:
                return self._process_with_aggregation(item.symbol, start_utc, end_utc, item_logger)

            data = self.downloader.get(item.symbol, item.resolution, start_utc, end_utc)
            return self.writer.write(item.symbol, item.resolution, data)

    def _process_with_aggregation(self, symbol: Symbol, start_utc: datetime, end_utc: datetime,
                                  item_logger) -> List[str]:
        ticks = list(self.downloader.get(symbol, Resolution.TICK, start_utc, end_utc))
        log_data_processing(item_logger, "tick download", len(ticks))

        written = self.writer.write(symbol, Resolution.TICK, ticks)
        for resolution in AGGREGATED_RESOLUTIONS:
            bars = aggregate_ticks(ticks, symbol, resolution.period)
            written.extend(self.writer.write(symbol, resolution, bars))
        return written
