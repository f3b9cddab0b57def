"""Turn pasted text or an uploaded CSV/Excel file into a list of questions."""

from __future__ import annotations

import csv
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from openpyxl import load_workbook

from .constants import HEADER_KEYWORDS

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def split_manual_questions(text: str) -> list[str]:
    """One question per line, trimmed, blank lines dropped."""
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


def looks_like_header(value: str) -> bool:
    lowered = (value or "").strip().lower()
    return any(lowered == keyword or keyword in lowered for keyword in HEADER_KEYWORDS)


def _first_column(rows: Iterable[Iterable], has_header: Optional[bool]) -> list[str]:
    values = []
    for row in rows:
        row = list(row)
        values.append(str(row[0]).strip() if row and row[0] is not None else "")

    if values:
        skip = looks_like_header(values[0]) if has_header is None else has_header
        logger.info(f"Question file format: {'with header' if skip else 'without header'}")
        if skip:
            values = values[1:]
    return [v for v in values if v]


def parse_question_file(path: str | Path, has_header: Optional[bool] = None) -> list[str]:
    """Read questions from the first column of a .csv or .xlsx file.

    Args:
        path: File to read.
        has_header: Skip the first row; None auto-detects by keyword.

    Raises:
        ValueError: unsupported file extension.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".csv":
        with path.open(newline="", encoding="utf-8-sig") as f:
            questions = _first_column(csv.reader(f), has_header)
    elif suffix == ".xlsx":
        workbook = load_workbook(path, read_only=True, data_only=True)
        try:
            sheet = workbook.worksheets[0]
            questions = _first_column(sheet.iter_rows(values_only=True), has_header)
        finally:
            workbook.close()
    else:
        raise ValueError("Unsupported file format. Please use a CSV or .xlsx file.")

    logger.info(f"Parsed {len(questions)} question(s) from {path.name}")
    return questions
