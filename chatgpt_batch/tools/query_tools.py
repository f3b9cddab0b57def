"""MCP tools for querying stored batch results (instant, no scraping)."""

from __future__ import annotations

import aiosqlite

from ..config import DATA_DIR, DB_PATH
from ..database.models import initialize_db
from ..database.repository import ResultRepository
from ..export import write_results_csv


async def _get_repo() -> tuple[aiosqlite.Connection, ResultRepository]:
    """Get a database connection and repository."""
    db = await aiosqlite.connect(str(DB_PATH))
    db.row_factory = aiosqlite.Row
    await initialize_db(db)
    return db, ResultRepository(db)


async def list_batches(limit: int = 20) -> str:
    """List previously finished batches, most recent first.

    Args:
        limit: Max batches to return (default 20).

    Returns:
        One line per batch with its id and answer counts.
    """
    db, repo = await _get_repo()
    try:
        batches = await repo.list_batches(limit)

        if not batches:
            return "No batches stored yet. Run scrape_questions first."

        lines = [f"Found {len(batches)} batches:\n"]
        for i, batch in enumerate(batches, 1):
            lines.append(
                f"{i}. **{batch.id}**\n"
                f"   Started: {batch.started_at} | Finished: {batch.finished_at or 'N/A'}\n"
                f"   Questions: {batch.total} | Answered: {batch.succeeded} | Failed: {batch.failed}\n"
            )

        return "\n".join(lines)
    finally:
        await db.close()


async def export_results(batch_id: str, output_path: str = "") -> str:
    """Write the results of a batch to a CSV file.

    Args:
        batch_id: Batch id from scrape_questions or list_batches.
        output_path: Target file. Defaults to data/exports/chatgpt-results-<id>.csv.

    Returns:
        Path of the written file.
    """
    db, repo = await _get_repo()
    try:
        if await repo.get_batch(batch_id) is None:
            return f"Error: unknown batch '{batch_id}'. Use list_batches to see stored batches."

        results = await repo.get_results(batch_id)
        path = output_path or DATA_DIR / "exports" / f"chatgpt-results-{batch_id}.csv"
        written = write_results_csv(results, path)
        return f"Exported {len(results)} results to {written}"
    finally:
        await db.close()
