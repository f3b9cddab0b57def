"""Async repository for finished batches and their results."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from ..models.result import BatchSummary, ScrapeResult

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class ResultRepository:
    """Async repository for batch history in SQLite."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def save_batch(
        self,
        batch_id: str,
        results: list[ScrapeResult],
        started_at: str,
        finished_at: Optional[str] = None,
    ) -> BatchSummary:
        """Store a batch and its results, replacing any earlier copy."""
        finished_at = finished_at or datetime.now(timezone.utc).isoformat()
        failed = sum(1 for r in results if r.is_error)
        summary = BatchSummary(
            id=batch_id,
            started_at=started_at,
            finished_at=finished_at,
            total=len(results),
            succeeded=len(results) - failed,
            failed=failed,
        )

        await self._db.execute("DELETE FROM results WHERE batch_id = ?", (batch_id,))
        await self._db.execute(
            """
            INSERT INTO batches (id, started_at, finished_at, total, succeeded, failed)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                finished_at = excluded.finished_at,
                total = excluded.total,
                succeeded = excluded.succeeded,
                failed = excluded.failed
            """,
            (summary.id, summary.started_at, summary.finished_at, summary.total, summary.succeeded, summary.failed),
        )
        await self._db.executemany(
            """
            INSERT INTO results (batch_id, position, question, answer, sources, is_error)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (batch_id, position, r.question, r.answer, r.sources, 1 if r.is_error else 0)
                for position, r in enumerate(results)
            ],
        )
        await self._db.commit()
        logger.info(f"Saved batch {batch_id}: {summary.succeeded} ok, {summary.failed} failed")
        return summary

    async def get_batch(self, batch_id: str) -> Optional[BatchSummary]:
        async with self._db.execute("SELECT * FROM batches WHERE id = ?", (batch_id,)) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_summary(row, cursor.description)
        return None

    async def list_batches(self, limit: int = 20) -> list[BatchSummary]:
        """Most recent batches first."""
        async with self._db.execute(
            "SELECT * FROM batches ORDER BY started_at DESC LIMIT ?", (limit,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_summary(row, cursor.description) for row in rows]

    async def get_results(self, batch_id: str) -> list[ScrapeResult]:
        """Results of one batch in their original question order."""
        async with self._db.execute(
            "SELECT question, answer, sources FROM results WHERE batch_id = ? ORDER BY position",
            (batch_id,),
        ) as cursor:
            return [
                ScrapeResult(question=row[0], answer=row[1], sources=row[2] or "")
                async for row in cursor
            ]

    async def get_batch_count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM batches") as cursor:
            return (await cursor.fetchone())[0]

    def _row_to_summary(self, row: tuple, description) -> BatchSummary:
        col_names = [d[0] for d in description]
        return BatchSummary(**dict(zip(col_names, row)))
