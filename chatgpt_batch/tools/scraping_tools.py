"""MCP tools for scraping ChatGPT answers in batches."""

from __future__ import annotations

import json

from ..ingest import parse_question_file, split_manual_questions
from ..models.result import ERROR_PREFIX
from .session_tools import _call_session_manager

# The whole batch runs inside one request
SCRAPE_TIMEOUT = 4 * 60 * 60.0


def _gather_questions(questions: str, file_path: str) -> list[str]:
    if file_path:
        return parse_question_file(file_path)
    return split_manual_questions(questions)


async def scrape_questions(questions: str = "", file_path: str = "", session_id: str = "") -> str:
    """Ask ChatGPT each question and collect answers with cited sources.

    Questions run one at a time in the persistent browser, with a random
    pause between them. A failed question becomes an "Error: ..." row
    and the batch moves on.

    Args:
        questions: One question per line.
        file_path: CSV or .xlsx file with questions in the first column.
            Takes precedence over questions.
        session_id: Optional id to follow progress with scrape_progress.

    Returns:
        Summary plus the results as JSON.
    """
    try:
        question_list = _gather_questions(questions, file_path)
    except (OSError, ValueError) as e:
        return f"Error: could not read questions: {e}"

    if not question_list:
        return "Error: no questions given. Pass questions (one per line) or a CSV/Excel file_path."

    body = {"questions": question_list}
    if session_id:
        body["sessionId"] = session_id

    result = await _call_session_manager("POST", "/api/scrape", body, timeout=SCRAPE_TIMEOUT)

    if "error" in result:
        if result["error"] == "LOGIN_REQUIRED":
            return "Not logged in to ChatGPT. Call login first, then retry the batch."
        detail = result.get("message", "")
        return f"Error: {result['error']}" + (f" ({detail})" if detail else "")

    results = result.get("results", [])
    failed = sum(1 for r in results if r.get("answer", "").startswith(ERROR_PREFIX))
    header = (
        f"Batch {result.get('sessionId')} finished: "
        f"{len(results) - failed} answered, {failed} failed.\n"
        "Use export_results with this batch id to save a CSV.\n\n"
    )
    return header + json.dumps(results, indent=2, ensure_ascii=False)


async def scrape_progress(session_id: str) -> str:
    """Get progress of a running batch.

    Args:
        session_id: The id passed to scrape_questions.

    Returns:
        JSON progress snapshot.
    """
    result = await _call_session_manager("GET", f"/api/progress/{session_id}", timeout=10.0)

    if "error" in result:
        return f"Error: {result['error']}"

    return json.dumps(result, indent=2)
