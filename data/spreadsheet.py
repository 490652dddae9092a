"""Spreadsheet input/output for crawl runs.

Reads ``.csv`` / ``.xlsx`` inputs into plain row dicts and writes the enriched
rows to an ``.xlsx`` workbook with multi-line cells.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment
from openpyxl.utils import get_column_letter

from data.models import CrawlRow

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".csv", ".xlsx"}
RESULTS_SHEET = "Results"
MAX_COLUMN_WIDTH = 80


def read_input_file(path: str | Path) -> List[CrawlRow]:
    """Load every record of a CSV or XLSX file as ``{column: text}``.

    All cells are read as text; empty cells become ``""``.
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(file_path)

    extension = file_path.suffix.lower()
    if extension == ".csv":
        frame = pd.read_csv(file_path, dtype=str, keep_default_na=False)
    elif extension == ".xlsx":
        frame = pd.read_excel(file_path, sheet_name=0, dtype=str, keep_default_na=False, engine="openpyxl")
    else:
        raise ValueError(f"Only CSV and XLSX files are supported (got '{extension or file_path.name}')")

    frame = frame.fillna("")
    frame.columns = [str(c) for c in frame.columns]
    rows = [{k: str(v) for k, v in record.items()} for record in frame.to_dict(orient="records")]
    logger.info("Loaded %d records from %s", len(rows), file_path)
    return rows


def default_output_path(input_path: str | Path) -> Path:
    """``/dir/input.csv`` -> ``/dir/input_crawled.xlsx``"""
    p = Path(input_path)
    return p.with_name(f"{p.stem}_crawled.xlsx")


def _ordered_columns(rows: Iterable[CrawlRow]) -> List[str]:
    columns: List[str] = []
    seen = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                columns.append(key)
    return columns


def _cell_value(value):
    # openpyxl refuses control characters such as \x08 scraped from page text
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def export_to_excel(rows: List[CrawlRow], output_path: str | Path) -> Optional[Path]:
    """Write ``rows`` to a single ``Results`` sheet.

    Returns the written path, or ``None`` when there is nothing to write.
    """
    if not rows:
        logger.warning("No rows to export; %s not written", output_path)
        return None

    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    columns = _ordered_columns(rows)
    frame = pd.DataFrame([[_cell_value(row.get(c, "")) for c in columns] for row in rows], columns=columns)

    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=RESULTS_SHEET, index=False)
        sheet = writer.sheets[RESULTS_SHEET]
        wrap = Alignment(wrap_text=True, vertical="top")
        for idx, column in enumerate(columns, start=1):
            # widest single line in the column, header included
            lines = [column] + [line for value in frame[column] for line in str(value).splitlines()]
            width = min(max(len(line) for line in lines) + 2, MAX_COLUMN_WIDTH)
            sheet.column_dimensions[get_column_letter(idx)].width = width
        for sheet_row in sheet.iter_rows(min_row=2):
            for cell in sheet_row:
                cell.alignment = wrap

    logger.info("Exported %d rows to %s", len(rows), out)
    return out
