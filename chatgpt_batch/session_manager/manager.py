"""Session Manager HTTP service.

Runs as a lightweight local web server that bridges the MCP server
to the Camoufox browser. Handles the browser lifecycle, login, batch
scraping and progress reporting.

Endpoints:
    GET  /health                          - Liveness
    GET  /api/status                      - Browser/session state
    GET  /api/check-login                 - Is a ChatGPT session saved?
    POST /api/reset-session               - Close browser, delete profile
    POST /api/login                       - Open visible browser for login
    POST /api/scrape                      - Run a batch of questions
    GET  /api/progress/{session_id}       - Progress snapshot (JSON)
    GET  /api/scrape-progress/{session_id} - Progress stream (SSE)
    GET  /api/batches                     - Finished batches
    GET  /api/batches/{batch_id}          - Results of one batch
    GET  /api/batches/{batch_id}/csv      - Results as CSV
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import aiosqlite
from aiohttp import web

from ..config import DB_PATH, SESSION_MANAGER_HOST, SESSION_MANAGER_PORT, ensure_dirs
from ..constants import CHATGPT_BASE
from ..database.models import initialize_db
from ..database.repository import ResultRepository
from ..errors import LoginRequired, ScrapeError, SessionResetFailed
from ..export import results_to_csv
from ..models.progress import ProgressStatus
from ..models.result import ScrapeResult
from ..models.session import LoginStatus, SessionStatus
from .batch import BatchCoordinator, ProgressStore, new_session_id
from .browser import BrowserSession
from .extraction import ExtractionEngine
from .login import LoginFlowController
from .orchestrator import ScrapeOrchestrator
from .readiness import ReadinessDetector, Sleep, is_authenticated, read_snapshot
from .session_store import SessionStore

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

ERROR_STATUS = {
    "LOGIN_REQUIRED": 401,
    "BROWSER_LAUNCH_FAILED": 503,
    "TRANSPORT_ERROR": 503,
}

# Ticks to wait for a batch that has not started yet
PROGRESS_STREAM_MAX_MISSES = 30


class SessionManager:
    """Wires the scraping core together and owns its shared state."""

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        browser: Optional[BrowserSession] = None,
        login_flow: Optional[LoginFlowController] = None,
        coordinator: Optional[BatchCoordinator] = None,
        progress_interval: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.store = store or SessionStore()
        self.browser = browser or BrowserSession(store=self.store)
        self.detector = ReadinessDetector()
        self.login_flow = login_flow or LoginFlowController(
            launcher=lambda headless: self.browser.launch_with_retry(headless=headless)
        )
        self.progress = ProgressStore()
        self.coordinator = coordinator or BatchCoordinator(
            orchestrator=ScrapeOrchestrator(
                self.browser, self.detector, ExtractionEngine(self.detector)
            ),
            browser=self.browser,
            check_login=self.check_login,
            progress=self.progress,
        )
        self.db: aiosqlite.Connection | None = None
        self.repo: ResultRepository | None = None
        self._batches: dict[str, asyncio.Task] = {}
        self.progress_interval = progress_interval
        self._sleep = sleep

    async def setup(self, db_path=DB_PATH):
        """Initialize database connection."""
        ensure_dirs()
        self.db = await aiosqlite.connect(str(db_path))
        self.db.row_factory = aiosqlite.Row
        await initialize_db(self.db)
        self.repo = ResultRepository(self.db)

    async def cleanup(self):
        """Let running batches finish, then release resources."""
        pending = [t for t in self._batches.values() if not t.done()]
        if pending:
            logger.info(f"Waiting for {len(pending)} running batch(es) to finish...")
            await asyncio.gather(*pending, return_exceptions=True)
        await self.browser.close()
        if self.db:
            await self.db.close()

    async def check_login(self, verify: bool = True) -> LoginStatus:
        """Session-store heuristic, confirmed in a headless browser when unsure."""
        status = await self.store.check_login_status()
        if status.conclusive or not status.is_logged_in or not verify:
            return status
        if self.browser.is_running:
            # The scraping browser holds the profile; a second one can't open it
            return status
        return await self._verify_live()

    async def _verify_live(self) -> LoginStatus:
        logger.info("Verifying saved session in a headless browser...")
        handle = None
        try:
            handle = await self.browser.launch_with_retry(headless=True)
            pages = await handle.pages()
            page = pages[0] if pages else await handle.new_page()
            await page.goto(CHATGPT_BASE, wait_until="domcontentloaded", timeout=30000)
            await self._sleep(3)
            logged_in = is_authenticated(await read_snapshot(page))
            return LoginStatus(
                is_logged_in=logged_in,
                reason="Session verified" if logged_in else "Login modal detected",
            )
        except Exception as e:
            # Assume not logged in to be safe
            return LoginStatus(is_logged_in=False, reason=f"Verification failed: {e}")
        finally:
            if handle is not None:
                await handle.close()
                await self._sleep(2)  # let the browser release the profile lock

    async def reset_session(self):
        await self.browser.reset()

    def start_batch(self, questions: list[str], session_id: str) -> asyncio.Task:
        """Run a batch as its own task so a vanished client can't cancel it."""
        task = asyncio.create_task(self._run_and_store(questions, session_id))
        self._batches[session_id] = task
        task.add_done_callback(lambda t: self._on_batch_done(session_id, t))
        return task

    def _on_batch_done(self, session_id: str, task: asyncio.Task):
        self._batches.pop(session_id, None)
        if task.cancelled():
            logger.warning(f"Batch {session_id} was cancelled")
        elif task.exception() is not None:
            logger.error(f"Batch {session_id} failed: {task.exception()}")

    async def _run_and_store(self, questions: list[str], session_id: str) -> list[ScrapeResult]:
        started_at = datetime.now(timezone.utc).isoformat()
        results = await self.coordinator.run_batch(questions, session_id)
        if self.repo:
            try:
                await self.repo.save_batch(session_id, results, started_at)
            except Exception as e:
                logger.error(f"Could not save batch {session_id}: {e}", exc_info=True)
        return results

    def status(self) -> SessionStatus:
        return SessionStatus(
            state="busy" if self.browser.in_use else ("idle" if self.browser.is_running else "not_running"),
            in_use=self.browser.in_use,
            created_at=self.browser.created_at.isoformat() if self.browser.created_at else None,
            profile_exists=self.store.exists(),
            active_batches=len(self._batches),
        )


def _error_response(error: ScrapeError) -> web.Response:
    return web.json_response(error.to_dict(), status=ERROR_STATUS.get(error.code, 500))


def _bad_request(message: str) -> web.Response:
    return web.json_response({"error": "Invalid request", "message": message}, status=400)


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "message": "ChatGPT batch scraper is running"})


async def handle_status(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    status = mgr.status()
    if mgr.repo:
        status.batches_in_history = await mgr.repo.get_batch_count()
    return web.json_response(status.model_dump())


async def handle_check_login(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        status = await mgr.check_login()
    except Exception as e:
        logger.error(f"Error checking login status: {e}", exc_info=True)
        return web.json_response(
            {"isLoggedIn": False, "error": "Failed to check login status", "message": str(e)},
            status=500,
        )

    if status.is_logged_in:
        return web.json_response({"isLoggedIn": True, "message": "User is logged in", "reason": status.reason})
    return web.json_response(
        {
            "isLoggedIn": False,
            "error": LoginRequired.code,
            "message": "User is not logged in",
            "reason": status.reason,
        },
        status=401,
    )


async def handle_reset_session(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        await mgr.reset_session()
    except SessionResetFailed as e:
        return web.json_response({"error": "Failed to delete session directory", "message": str(e)}, status=500)
    return web.json_response({"message": "Session has been reset successfully. Please login again."})


async def handle_login(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    if mgr.login_flow.is_waiting:
        return web.json_response({"error": "A login window is already open."}, status=409)
    try:
        outcome = await mgr.login_flow.initiate()
    except ScrapeError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Failed to open login browser: {e}", exc_info=True)
        return web.json_response({"error": "Failed to open login browser", "message": str(e)}, status=500)
    return web.json_response({"alreadyLoggedIn": outcome.already_logged_in, "message": outcome.message})


async def handle_scrape(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        body = await request.json() if request.content_length else {}
    except ValueError as e:
        return _bad_request(f"Request body is not valid JSON: {e}")
    if not isinstance(body, dict):
        return _bad_request("Request body must be a JSON object")
    questions = body.get("questions")

    if not isinstance(questions, list) or not questions or not all(isinstance(q, str) for q in questions):
        return _bad_request("Questions array is required and must not be empty")

    session_id = body.get("sessionId") or new_session_id()
    if not isinstance(session_id, str):
        return _bad_request("sessionId must be a string")
    task = mgr.start_batch(questions, session_id)
    try:
        results = await asyncio.shield(task)
    except asyncio.CancelledError:
        logger.warning(f"Client disconnected; batch {session_id} keeps running and will be saved")
        raise
    except ScrapeError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Batch {session_id} failed: {e}", exc_info=True)
        return web.json_response({"error": "Internal server error", "message": str(e)}, status=500)

    return web.json_response({"sessionId": session_id, "results": [r.model_dump() for r in results]})


async def handle_progress(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    record = mgr.progress.get(request.match_info["session_id"])
    if record is None:
        return web.json_response({"error": "No progress for this session"}, status=404)
    return web.json_response(record.snapshot().model_dump(mode="json", by_alias=True))


async def _send_event(response: web.StreamResponse, payload: dict):
    await response.write(f"data: {json.dumps(payload)}\n\n".encode())


async def handle_progress_stream(request: web.Request) -> web.StreamResponse:
    mgr: SessionManager = request.app["manager"]
    session_id = request.match_info["session_id"]

    response = web.StreamResponse(
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )
    await response.prepare(request)
    await _send_event(response, {"type": "connected", "sessionId": session_id})

    seen = False
    misses = 0
    try:
        while True:
            await asyncio.sleep(mgr.progress_interval)
            record = mgr.progress.get(session_id)
            if record is None:
                misses += 1
                if seen or misses >= PROGRESS_STREAM_MAX_MISSES:
                    message = "Batch ended without a final update" if seen else "No batch with this session id"
                    await _send_event(response, {"type": "error", "sessionId": session_id, "message": message})
                    break
                continue
            seen = True
            await _send_event(response, {"type": "progress", **record.snapshot().model_dump(mode="json", by_alias=True)})
            if record.status is ProgressStatus.FINISHED:
                break
    except ConnectionResetError:
        logger.info(f"Progress stream for {session_id} closed by client")
    return response


async def handle_list_batches(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    try:
        limit = int(request.query.get("limit", "20"))
    except ValueError:
        return _bad_request("limit must be an integer")
    if limit < 1:
        return _bad_request("limit must be at least 1")
    batches = await mgr.repo.list_batches(limit) if mgr.repo else []
    return web.json_response({"batches": [b.model_dump() for b in batches], "count": len(batches)})


async def handle_batch_results(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    batch_id = request.match_info["batch_id"]
    batch = await mgr.repo.get_batch(batch_id) if mgr.repo else None
    if batch is None:
        return web.json_response({"error": f"Unknown batch: {batch_id}"}, status=404)
    results = await mgr.repo.get_results(batch_id)
    return web.json_response({"batch": batch.model_dump(), "results": [r.model_dump() for r in results]})


async def handle_batch_csv(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    batch_id = request.match_info["batch_id"]
    batch = await mgr.repo.get_batch(batch_id) if mgr.repo else None
    if batch is None:
        return web.json_response({"error": f"Unknown batch: {batch_id}"}, status=404)
    results = await mgr.repo.get_results(batch_id)
    return web.Response(
        text=results_to_csv(results),
        content_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="chatgpt-results-{batch_id}.csv"'},
    )


# ── App Factory ──────────────────────────────────────────────────────────────


def create_app(manager: Optional[SessionManager] = None, db_path=DB_PATH) -> web.Application:
    app = web.Application()

    async def on_startup(app: web.Application):
        mgr = manager or SessionManager()
        await mgr.setup(db_path)
        app["manager"] = mgr
        logger.info(f"Session Manager started on {SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}")

    async def on_cleanup(app: web.Application):
        mgr: SessionManager = app["manager"]
        await mgr.cleanup()
        logger.info("Session Manager stopped.")

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/health", handle_health)
    app.router.add_get("/api/status", handle_status)
    app.router.add_get("/api/check-login", handle_check_login)
    app.router.add_post("/api/reset-session", handle_reset_session)
    app.router.add_post("/api/login", handle_login)
    app.router.add_post("/api/scrape", handle_scrape)
    app.router.add_get("/api/progress/{session_id}", handle_progress)
    app.router.add_get("/api/scrape-progress/{session_id}", handle_progress_stream)
    app.router.add_get("/api/batches", handle_list_batches)
    app.router.add_get("/api/batches/{batch_id}", handle_batch_results)
    app.router.add_get("/api/batches/{batch_id}/csv", handle_batch_csv)

    return app


def main():
    """Run the session manager as a standalone HTTP service."""
    app = create_app()
    web.run_app(app, host=SESSION_MANAGER_HOST, port=SESSION_MANAGER_PORT)


if __name__ == "__main__":
    main()
