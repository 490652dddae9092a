"""Data package for the product crawler.

Exposes the crawl result models and the spreadsheet reader/writer.
"""

from .models import (
    CrawlRow,
    FailureReason,
    FieldOutcome,
    LoadMethod,
    PageLoad,
    RowReport,
    RunSummary,
)

__all__ = [
    "CrawlRow",
    "FailureReason",
    "FieldOutcome",
    "LoadMethod",
    "PageLoad",
    "RowReport",
    "RunSummary",
]
