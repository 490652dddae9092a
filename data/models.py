"""Data models for the product crawler.

Rows are plain ``Dict[str, str]`` records as read from the input spreadsheet.
Everything produced while crawling them is expressed as small dataclasses so
callers can inspect failures without parsing log output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

# One spreadsheet record: column name -> cell text
CrawlRow = Dict[str, str]


class FailureReason(Enum):
    """Why a page load or a field extraction produced nothing."""

    LOAD_FAILED = "load_failed"
    TIMEOUT = "timeout"
    CAPTCHA = "captcha"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    EXTRACTION_EMPTY = "extraction_empty"


class LoadMethod(Enum):
    STATIC = "static"
    BROWSER = "browser"


@dataclass(frozen=True)
class PageLoad:
    """Outcome of loading one URL.

    ``html`` is only set for a successful load; a CAPTCHA page never carries
    its markup forward to extraction.
    """

    url: str
    html: Optional[str] = None
    method: Optional[LoadMethod] = None
    failure: Optional[FailureReason] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None and self.html is not None

    @classmethod
    def success(cls, url: str, html: str, method: LoadMethod) -> "PageLoad":
        return cls(url=url, html=html, method=method)

    @classmethod
    def failed(
        cls,
        url: str,
        reason: FailureReason,
        error: str = "",
        method: Optional[LoadMethod] = None,
    ) -> "PageLoad":
        return cls(url=url, method=method, failure=reason, error=error)


@dataclass(frozen=True)
class FieldOutcome:
    """Result of filling one derived column for one row."""

    field: str
    value: str = ""
    count: int = 0
    strategy: Optional[str] = None
    failure: Optional[FailureReason] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class RowReport:
    """All field outcomes for a single input row."""

    index: int
    outcomes: List[FieldOutcome] = field(default_factory=list)

    @property
    def failed_fields(self) -> List[FieldOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def skipped(self) -> bool:
        """True when the row had no URL in any crawlable column."""
        return not self.outcomes


@dataclass
class RunSummary:
    """Aggregate of a crawl run, returned to the CLI."""

    total_rows: int = 0
    rows: List[RowReport] = field(default_factory=list)
    output_path: Optional[str] = None

    @property
    def fields_succeeded(self) -> int:
        return sum(1 for r in self.rows for o in r.outcomes if o.ok)

    @property
    def fields_failed(self) -> int:
        return sum(len(r.failed_fields) for r in self.rows)

    def failure_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for report in self.rows:
            for outcome in report.failed_fields:
                key = outcome.failure.value
                counts[key] = counts.get(key, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_rows": self.total_rows,
            "rows_processed": len(self.rows),
            "fields_succeeded": self.fields_succeeded,
            "fields_failed": self.fields_failed,
            "failures": self.failure_counts(),
            "output_path": self.output_path,
        }
