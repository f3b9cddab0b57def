"""MCP Server entry point for the ChatGPT batch scraper.

Exposes 9 tools via the Model Context Protocol:
- Session: check_login, login, reset_session, session_status
- Scraping: scrape_questions, scrape_progress
- Query: list_batches, export_results

The Session Manager HTTP service (aiohttp on localhost:8025) is auto-started
as part of the MCP server lifecycle, no separate process needed.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from aiohttp.web import AppRunner, TCPSite
from mcp.server.fastmcp import FastMCP

from .config import SESSION_MANAGER_HOST, SESSION_MANAGER_PORT, ensure_dirs
from .tools.query_tools import export_results, list_batches
from .tools.scraping_tools import scrape_progress, scrape_questions
from .tools.session_tools import check_login, login, reset_session, session_status

# Configure logging to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("chatgpt-batch")

# Ensure data directories exist
ensure_dirs()


# ── Lifespan: auto-start Session Manager ─────────────────────────────────────


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Start the Session Manager HTTP service alongside the MCP server."""
    from .session_manager.manager import create_app

    app = create_app()
    runner = AppRunner(app)
    await runner.setup()
    site = TCPSite(runner, SESSION_MANAGER_HOST, SESSION_MANAGER_PORT)
    managed = False
    try:
        await site.start()
        logger.info(
            "Session Manager auto-started on %s:%s", SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
        )
        managed = True
    except OSError:
        # Port already in use, assume Session Manager was started manually
        logger.info(
            "Session Manager already running on %s:%s", SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
        )
        await runner.cleanup()

    try:
        yield {}
    finally:
        if managed:
            await runner.cleanup()
            logger.info("Session Manager stopped.")


# ── MCP Server ───────────────────────────────────────────────────────────────

mcp = FastMCP(
    "chatgpt-batch",
    lifespan=lifespan,
    instructions=(
        "ChatGPT Batch Scraper - Ask ChatGPT a list of questions and collect "
        "answers with their cited sources. "
        "Call check_login first. If not logged in, call login and wait for the "
        "user to sign in through the browser window. "
        "Then call scrape_questions with questions or a CSV/Excel file. "
        "Use scrape_progress to follow a running batch, list_batches to see "
        "stored batches and export_results to save a batch as CSV."
    ),
)


# ── Session Tools ────────────────────────────────────────────────────────────


@mcp.tool()
async def tool_check_login() -> str:
    """Check whether a saved ChatGPT login session exists."""
    return await check_login()


@mcp.tool()
async def tool_login() -> str:
    """Open a browser window so the user can log in to ChatGPT.

    Returns right away. The window closes by itself once login is detected.
    """
    return await login()


@mcp.tool()
async def tool_reset_session() -> str:
    """Log out: close the browser and delete the saved session."""
    return await reset_session()


@mcp.tool()
async def tool_session_status() -> str:
    """Show whether the scraping browser is running or busy."""
    return await session_status()


# ── Scraping Tools ───────────────────────────────────────────────────────────


@mcp.tool()
async def tool_scrape_questions(questions: str = "", file_path: str = "", session_id: str = "") -> str:
    """Ask ChatGPT each question and collect the answers and sources.

    Requires a logged-in session. Questions run one by one with a 5-10s
    pause between them; a failed question yields an "Error: ..." answer.

    Args:
        questions: One question per line.
        file_path: Local CSV or .xlsx file, questions in the first column.
        session_id: Optional id for scrape_progress.
    """
    return await scrape_questions(questions, file_path, session_id)


@mcp.tool()
async def tool_scrape_progress(session_id: str) -> str:
    """Get progress of a running batch.

    Args:
        session_id: Id given to scrape_questions.
    """
    return await scrape_progress(session_id)


# ── Query Tools (instant, from local history) ────────────────────────────────


@mcp.tool()
async def tool_list_batches(limit: int = 20) -> str:
    """List stored batches, most recent first.

    Args:
        limit: Max batches (default 20).
    """
    return await list_batches(limit)


@mcp.tool()
async def tool_export_results(batch_id: str, output_path: str = "") -> str:
    """Save a batch's results as a CSV file (Question, Answer, Sources).

    Args:
        batch_id: Batch id from scrape_questions or list_batches.
        output_path: Target file path; defaults to the data/exports folder.
    """
    return await export_results(batch_id, output_path)


# ── Entry Point ──────────────────────────────────────────────────────────────


def main():
    """Run the MCP server on STDIO transport."""
    logger.info("Starting ChatGPT batch scraper MCP server...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
