#!/usr/bin/env python3
"""
Entry point for running market_history_downloader as a module.

This allows the package to be executed with:
    python -m market_history_downloader --tickers SPY --resolution minute --from-date 2024-01-02 --to-date 2024-01-05
"""

from .main import main

if __name__ == "__main__":
    main()
