#!/usr/bin/env python3
"""
Market History Downloader - command line entry point

Downloads historical ticks and bars from the lookup feed for a list of
tickers, a resolution and a New York date range, and writes them out with
the configured writer.

Usage:
    python -m market_history_downloader --tickers SPY,AAPL --resolution minute \
        --from-date 2024-01-02 --to-date 2024-01-05
    python -m market_history_downloader --tickers US_STOCKS --resolution all \
        --from-date 2024-01-02 --to-date 2024-01-02 --aggregate-ticks
"""

import argparse
import logging
import sys
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import Config, get_config
from .data_downloader.data_downloader import DataDownloader
from .data_downloader.download_orchestrator import DownloadOrchestrator, build_work_items
from .data_downloader.history_provider import HistoryProvider
from .data_downloader.lookup_client import LookupClient
from .data_downloader.message_source import create_message_source
from .data_downloader.universe import expand_universe_tickers
from .models import ALL_RESOLUTIONS, Market, Resolution, SecurityType, Symbol
from .storage.data_writer import create_writer
from .utils.error_handler import ConfigurationError, ErrorContext, ErrorHandler
from .utils.logger import performance_monitor, setup_structured_logging
from .utils.timezones import NEW_YORK, convert_to_utc

logger = logging.getLogger(__name__)

ALL = "all"


def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='Market History Downloader - historical ticks and bars from the lookup feed',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Minute bars for two tickers
  python -m market_history_downloader --tickers SPY,AAPL --resolution minute --from-date 2024-01-02 --to-date 2024-01-05

  # Every resolution, built from one tick download per ticker
  python -m market_history_downloader --tickers SPY --resolution all --from-date 2024-01-02 --to-date 2024-01-02 --aggregate-ticks

  # All Canadian equities, daily
  python -m market_history_downloader --tickers CANADIAN_STOCKS --resolution daily --from-date 2023-01-01 --to-date 2023-12-31
        """
    )

    # Request
    parser.add_argument(
        '--tickers',
        nargs='+',
        help='Ticker symbols, comma or space separated (e.g. SPY,AAPL), or US_STOCKS / CANADIAN_STOCKS'
    )
    parser.add_argument(
        '--resolution',
        type=str,
        help='Tick, Second, Minute, Hour, Daily or All'
    )
    parser.add_argument(
        '--from-date',
        type=str,
        help='First New York trading date, YYYY-MM-DD or YYYYMMDD'
    )
    parser.add_argument(
        '--to-date',
        type=str,
        help='Last New York trading date (inclusive), YYYY-MM-DD or YYYYMMDD'
    )
    parser.add_argument(
        '--security-type',
        choices=[s.value for s in SecurityType],
        default=SecurityType.EQUITY.value,
        help='Security type of the tickers (default: equity)'
    )
    parser.add_argument(
        '--market',
        choices=[m.value for m in Market],
        default=Market.USA.value,
        help='Market of the tickers (default: usa)'
    )
    parser.add_argument(
        '--aggregate-ticks',
        action='store_true',
        help='Download ticks once per ticker and build the coarser resolutions from them'
    )

    # Execution
    parser.add_argument(
        '--max-workers',
        type=int,
        help='Number of worker threads (default: feed session limit)'
    )
    parser.add_argument(
        '--save-on-disk',
        action='store_true',
        help='Stage feed responses in temporary files instead of streaming them in memory'
    )

    # Configuration
    parser.add_argument(
        '--env-file',
        type=str,
        help='Path to environment file (.env)'
    )
    parser.add_argument(
        '--config-file',
        type=str,
        help='Path to configuration file (YAML)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level (overrides LOG_LEVEL)'
    )

    return parser.parse_args(argv)


def parse_tickers(values: Optional[Sequence[str]]) -> List[str]:
    """Flatten '--tickers SPY,AAPL MSFT' into ['SPY', 'AAPL', 'MSFT']"""
    tickers = []
    for value in values or []:
        tickers.extend(t.strip().upper() for t in value.split(',') if t.strip())
    return tickers


def parse_resolutions(value: str) -> List[Resolution]:
    if value.strip().lower() == ALL:
        return list(ALL_RESOLUTIONS)
    try:
        return [Resolution.parse(value)]
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def parse_date(date_str: str) -> date:
    """Parse YYYY-MM-DD or YYYYMMDD"""
    for fmt in ('%Y-%m-%d', '%Y%m%d'):
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue
    raise ConfigurationError(f"Invalid date format '{date_str}'. Use YYYY-MM-DD format.")


def resolve_date_range(from_date: date, to_date: date) -> Tuple[datetime, datetime]:
    """New York date range -> UTC instants covering both dates entirely"""
    if to_date < from_date:
        raise ConfigurationError(f"--to-date {to_date} is before --from-date {from_date}")
    start_utc = convert_to_utc(datetime.combine(from_date, time.min), NEW_YORK)
    end_local = datetime.combine(to_date, time.min) + timedelta(days=1) - timedelta(milliseconds=1)
    end_utc = convert_to_utc(end_local, NEW_YORK)
    return start_utc, end_utc


def validate_arguments(args: argparse.Namespace):
    """Required parameters must be present before anything is dispatched"""
    missing = [
        name for name, value in (
            ('--tickers', parse_tickers(args.tickers)),
            ('--resolution', args.resolution),
            ('--from-date', args.from_date),
            ('--to-date', args.to_date),
        ) if not value
    ]
    if missing:
        raise ConfigurationError(
            f"Missing required parameter(s): {', '.join(missing)}. "
            f"Example: --tickers=SPY,AAPL --resolution=Tick/Second/Minute/Hour/Daily/All "
            f"--from-date=2024-01-02 --to-date=2024-01-05"
        )


def resolve_max_workers(args: argparse.Namespace, config: Config) -> int:
    max_workers = args.max_workers or config.service.max_workers
    if max_workers < 1:
        raise ConfigurationError(f"--max-workers must be at least 1, got {max_workers}")
    if max_workers > config.feed.max_sessions:
        raise ConfigurationError(
            f"--max-workers ({max_workers}) exceeds the feed session limit ({config.feed.max_sessions})"
        )
    return max_workers


@performance_monitor("download batch")
def run_download(args: argparse.Namespace, config: Config) -> Dict[str, Any]:
    """Build the pipeline from config and run the whole batch"""
    resolutions = parse_resolutions(args.resolution)
    start_utc, end_utc = resolve_date_range(parse_date(args.from_date), parse_date(args.to_date))
    max_workers = resolve_max_workers(args, config)
    aggregate = args.aggregate_ticks and len(resolutions) > 1
    if args.aggregate_ticks and not aggregate:
        logger.warning("⚠️ --aggregate-ticks only applies to --resolution all, ignoring it")

    tickers, market = expand_universe_tickers(parse_tickers(args.tickers), Market(args.market))
    security_type = SecurityType(args.security_type)
    symbols = [Symbol.create(ticker, security_type, market) for ticker in tickers]
    items = build_work_items(symbols, resolutions, aggregate_ticks=aggregate)

    logger.info(
        f"📋 {len(symbols)} tickers x {', '.join(r.value for r in resolutions)} "
        f"from {start_utc.isoformat()} to {end_utc.isoformat()}"
    )

    save_on_disk = args.save_on_disk or config.feed.save_on_disk
    with LookupClient.from_config(config.feed) as lookup_client:
        message_source = create_message_source(lookup_client, save_on_disk=save_on_disk)
        downloader = DataDownloader(HistoryProvider(message_source))
        orchestrator = DownloadOrchestrator(
            downloader=downloader,
            writer=create_writer(config.output),
            max_workers=max_workers,
        )
        return orchestrator.run(items, start_utc, end_utc)


def main(argv: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    """Main entry point; exits with status 1 on any fatal error"""
    error_handler = ErrorHandler(logger)
    context = ErrorContext(operation="main", component="main.py")

    args = parse_arguments(argv)
    setup_structured_logging(log_level=args.log_level or 'INFO')

    try:
        validate_arguments(args)

        config = get_config(config_file=args.config_file, env_file=args.env_file)
        setup_structured_logging(
            log_level=args.log_level or config.service.log_level,
            log_file=config.service.log_file
        )

        summary = run_download(args, config)
        logger.info(f"✅ Download completed successfully in {summary['elapsed_seconds']:.2f}s")
        return summary

    except Exception as e:
        enhanced_error = error_handler.handle_error(e, context)
        logger.error(f"❌ Fatal error: {enhanced_error.message}")
        logger.error(f"🔍 Error category: {enhanced_error.category.value}")
        logger.error(f"📊 Error summary: {error_handler.get_error_summary()}")
        sys.exit(1)


if __name__ == '__main__':
    main()
