"""CSV export of scrape results."""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Iterable

from .models.result import ScrapeResult

CSV_HEADER = ["Question", "Answer", "Sources"]


def results_to_csv(results: Iterable[ScrapeResult]) -> str:
    """Header row plus one row per result.

    Fields containing a comma, quote or line break are quoted, with inner
    quotes doubled.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for result in results:
        writer.writerow([result.question, result.answer, result.sources])
    return buffer.getvalue()


def write_results_csv(results: Iterable[ScrapeResult], path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(results_to_csv(results), encoding="utf-8")
    return path
