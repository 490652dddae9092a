"""Run Manager orchestrates crawl runs over spreadsheet rows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup

from config.settings import SETTINGS
from data.models import CrawlRow, FailureReason, FieldOutcome, PageLoad, RowReport, RunSummary
from data.spreadsheet import default_output_path, export_to_excel, read_input_file
from ingestion.extraction import build_chain, parse_html, run_strategies
from ingestion.page_fetcher import PageLoader, save_debug_html
from ingestion.playwright_manager import BrowserUnavailableError, PlaywrightBrowserManager

logger = logging.getLogger(__name__)

MIN_RESULT_COUNT = 1
MAX_RESULT_COUNT = 50

# (percent complete, row index, total rows)
ProgressCallback = Callable[[int, int, int], None]


@dataclass
class CrawlOptions:
    """Per-run knobs chosen by the operator."""

    heading_count: int = 5
    search_count: int = 5
    force_js: bool = False
    heading_skip: int = 0

    def __post_init__(self):
        for name in ("heading_count", "search_count"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or not MIN_RESULT_COUNT <= value <= MAX_RESULT_COUNT:
                raise ValueError(f"{name} must be between {MIN_RESULT_COUNT} and {MAX_RESULT_COUNT} (got {value!r})")
        if isinstance(self.heading_skip, bool) or not isinstance(self.heading_skip, int) or self.heading_skip < 0:
            raise ValueError(f"heading_skip must be a non-negative integer (got {self.heading_skip!r})")


class RunManager:
    """High level orchestrator for a crawl run.

    Rows are processed strictly in order, one page load at a time. Failures
    are recorded per field and leave the cell blank; only an unavailable
    browser stops the run.
    """

    def __init__(
        self,
        page_loader: Optional[PageLoader] = None,
        browser_manager: Optional[PlaywrightBrowserManager] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.settings = settings if settings is not None else SETTINGS
        if page_loader is None:
            browser_manager = browser_manager or PlaywrightBrowserManager(settings=self.settings)
            page_loader = PageLoader(browser_manager, settings=self.settings)
        self.page_loader = page_loader
        self.reports: List[RowReport] = []

        order = self.settings.get("strategy_order") or {}
        self.heading_chain = build_chain("headings", order.get("headings"))
        self.search_chain = build_chain("search", order.get("search"))
        self.overview_chain = build_chain("overview", order.get("overview"))
        self.feature_chain = build_chain("features", order.get("features"))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run_file(
        self,
        input_path: str | Path,
        options: Optional[CrawlOptions] = None,
        output_path: Optional[str | Path] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> RunSummary:
        rows = read_input_file(input_path)
        logger.info("[CRAWL] Crawling %d rows from %s", len(rows), input_path)
        try:
            reports = self.crawl_rows(rows, options, progress)
        except BrowserUnavailableError as e:
            logger.error("[CRAWL] Browser unavailable, aborting run after %d row(s): %s", len(self.reports), e)
            raise

        written = export_to_excel(rows, output_path or default_output_path(input_path))
        summary = RunSummary(total_rows=len(rows), rows=reports, output_path=str(written) if written else None)
        logger.info(
            "[CRAWL] Finished: %d fields filled, %d failed, output=%s",
            summary.fields_succeeded,
            summary.fields_failed,
            summary.output_path,
        )
        return summary

    def crawl_rows(
        self,
        rows: Sequence[CrawlRow],
        options: Optional[CrawlOptions] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> List[RowReport]:
        """Fill the derived columns of every row in place."""
        options = options or CrawlOptions()
        self.reports = []
        total = len(rows)
        for index, row in enumerate(rows):
            report = RowReport(index=index)
            self.reports.append(report)
            self._crawl_row(row, report, options)
            if report.failed_fields:
                logger.info("[CRAWL] Row %d: %d field(s) left blank", index + 1, len(report.failed_fields))
            if progress:
                progress(int((index + 1) * 100 / total), index, total)
        return self.reports

    def close(self) -> None:
        self.page_loader.browser_manager.close()

    # ------------------------------------------------------------------
    # Row processing
    # ------------------------------------------------------------------
    def _crawl_row(self, row: CrawlRow, report: RowReport, options: CrawlOptions) -> None:
        inputs = self.settings["input_columns"]
        outputs = self.settings["output_columns"]
        for column in outputs.values():
            row.setdefault(column, "")

        heading_url = (row.get(inputs["headings"]) or "").strip()
        if heading_url:
            field = outputs["headings"]
            page = self._load(heading_url, options, report, [field])
            if page is not None:
                skip = options.heading_skip
                soup = parse_html(page.html)
                limit = options.heading_count + skip
                outcome = self._extract_list(field, self.heading_chain, soup, heading_url, limit=limit, skip=skip)
                self._record(row, report, outcome)

        search_url = (row.get(inputs["search"]) or "").strip()
        if search_url:
            field = outputs["search"]
            page = self._load(search_url, options, report, [field])
            if page is not None:
                soup = parse_html(page.html)
                outcome = self._extract_list(field, self.search_chain, soup, search_url, limit=options.search_count)
                self._record(row, report, outcome)

        detail_url = (row.get(inputs["detail"]) or "").strip()
        if detail_url:
            fields = [outputs["overview"], outputs["features"]]
            page = self._load(detail_url, options, report, fields)
            if page is not None:
                soup = parse_html(page.html)
                overview = self._extract_overview(outputs["overview"], soup, detail_url)
                max_items = int(self.settings.get("max_about_items", 10))
                features = self._extract_list(outputs["features"], self.feature_chain, soup, detail_url, limit=max_items)
                self._record(row, report, overview)
                self._record(row, report, features)
                if not overview.ok and not features.ok and self.settings.get("save_debug_html", False):
                    save_debug_html(detail_url, page.html, "empty", self.settings.get("debug_dir", "."))

    def _load(self, url: str, options: CrawlOptions, report: RowReport, fields: List[str]) -> Optional[PageLoad]:
        try:
            page = self.page_loader.load(url, force_js=options.force_js)
        except BrowserUnavailableError as e:
            report.outcomes.extend(
                FieldOutcome(field=f, failure=FailureReason.RESOURCE_UNAVAILABLE, error=str(e)) for f in fields
            )
            raise
        if not page.ok:
            logger.warning("[CRAWL] Could not load %s (%s): %s", url, page.failure.value, page.error)
            report.outcomes.extend(FieldOutcome(field=f, failure=page.failure, error=page.error) for f in fields)
            return None
        return page

    def _extract_list(self, field: str, chain, soup: BeautifulSoup, url: str, limit: int, skip: int = 0) -> FieldOutcome:
        result = run_strategies(chain, soup, limit)
        items = list(result.value)[skip:][: max(limit - skip, 0)]
        if not items:
            return self._empty(field, url)
        return FieldOutcome(field=field, value="\n".join(items), count=len(items), strategy=result.strategy)

    def _extract_overview(self, field: str, soup: BeautifulSoup, url: str) -> FieldOutcome:
        result = run_strategies(self.overview_chain, soup)
        if not result:
            return self._empty(field, url)
        lines = [f"{label}: {value}" for label, value in result.value.items()]
        return FieldOutcome(field=field, value="\n".join(lines), count=len(lines), strategy=result.strategy)

    @staticmethod
    def _empty(field: str, url: str) -> FieldOutcome:
        logger.info("[CRAWL] No %s found on %s", field, url)
        return FieldOutcome(field=field, failure=FailureReason.EXTRACTION_EMPTY, error="No extraction strategy matched")

    @staticmethod
    def _record(row: CrawlRow, report: RowReport, outcome: FieldOutcome) -> None:
        report.outcomes.append(outcome)
        if outcome.ok:
            row[outcome.field] = outcome.value
