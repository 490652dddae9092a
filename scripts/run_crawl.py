#!/usr/bin/env python3
"""CLI entrypoint: crawl every URL in a CSV/XLSX file and write <name>_crawled.xlsx."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

import yaml
from dotenv import load_dotenv

# Ensure project root is on PYTHONPATH
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from config.settings import load_settings
from core.run_manager import MAX_RESULT_COUNT, MIN_RESULT_COUNT, CrawlOptions, RunManager
from ingestion.playwright_manager import BrowserUnavailableError, PlaywrightBrowserManager

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool, log_file: Optional[str]) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def _print_progress(percent: int, index: int, total: int) -> None:
    logger.info("[CRAWL] Progress: %d%% (%d/%d)", percent, index + 1, total)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl product pages listed in a spreadsheet")
    parser.add_argument("input", help="Input .csv or .xlsx file")
    parser.add_argument("--output", help="Output .xlsx path (default: <input>_crawled.xlsx)")
    parser.add_argument("--heading-count", type=int, default=5, help=f"Search headings per row ({MIN_RESULT_COUNT}-{MAX_RESULT_COUNT})")
    parser.add_argument("--search-count", type=int, default=5, help=f"Search result titles per row ({MIN_RESULT_COUNT}-{MAX_RESULT_COUNT})")
    parser.add_argument("--heading-skip", type=int, default=0, help="Drop this many leading headings")
    parser.add_argument("--force-js", action="store_true", help="Always load pages through the headless browser")
    headless = parser.add_mutually_exclusive_group()
    headless.add_argument("--headless", dest="headless", action="store_true", default=None, help="Run the browser headless")
    headless.add_argument("--headed", dest="headless", action="store_false", help="Show the browser window")
    parser.add_argument("--config", help="YAML file overriding crawler settings")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", help="Also write the log to this file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose, args.log_file)

    try:
        settings = load_settings(args.config)
    except (ValueError, yaml.YAMLError) as e:
        logger.error("Invalid config: %s", e)
        return 1
    if args.headless is not None:
        settings["headless_mode"] = args.headless

    try:
        options = CrawlOptions(
            heading_count=args.heading_count,
            search_count=args.search_count,
            force_js=args.force_js,
            heading_skip=args.heading_skip,
        )
    except ValueError as e:
        logger.error("Invalid options: %s", e)
        return 1

    browser_manager = PlaywrightBrowserManager(settings=settings)
    try:
        manager = RunManager(browser_manager=browser_manager, settings=settings)
    except ValueError as e:
        logger.error("Invalid config: %s", e)
        return 1
    try:
        summary = manager.run_file(args.input, options, output_path=args.output, progress=_print_progress)
    except (FileNotFoundError, ValueError) as e:
        logger.error("Could not read input %s: %s", args.input, e)
        return 1
    except BrowserUnavailableError as e:
        logger.error("Browser unavailable: %s", e)
        return 2
    finally:
        manager.close()

    print(json.dumps(summary.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
