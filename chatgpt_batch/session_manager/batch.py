"""Sequential batch runs with per-session progress tracking."""

from __future__ import annotations

import asyncio
import logging
import random
import sys
import time
import uuid
from typing import Awaitable, Callable, Optional

from ..config import MAX_DELAY_SECONDS, MIN_DELAY_SECONDS, PROGRESS_GRACE_SECONDS
from ..errors import BrowserLaunchFailed, LoginRequired
from ..models.progress import ProgressRecord, ProgressStatus
from ..models.result import ScrapeResult
from ..models.session import LoginStatus
from .browser import BrowserSession
from .orchestrator import ScrapeOrchestrator
from .readiness import Sleep

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

LoginCheck = Callable[[], Awaitable[LoginStatus]]


def new_session_id() -> str:
    return f"scrape-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class ProgressStore:
    """In-memory progress records keyed by session id."""

    def __init__(self):
        self._records: dict[str, ProgressRecord] = {}
        self._removals: dict[str, asyncio.TimerHandle] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, session_id: str) -> Optional[ProgressRecord]:
        return self._records.get(session_id)

    def start(self, session_id: str, total: int) -> ProgressRecord:
        self._cancel_removal(session_id)
        record = ProgressRecord(total=total)
        self._records[session_id] = record
        return record

    def update(
        self,
        session_id: str,
        status: ProgressStatus,
        current: int,
        current_question: Optional[str] = None,
        results: Optional[list[ScrapeResult]] = None,
    ):
        record = self._records[session_id]
        record.current = max(record.current, current)
        record.status = status
        record.current_question = current_question
        if results is not None:
            record.results = list(results)

    def discard(self, session_id: str):
        self._cancel_removal(session_id)
        self._records.pop(session_id, None)

    def discard_later(self, session_id: str, delay: float):
        """Drop the record after ``delay`` seconds so late readers see the end state."""
        self._cancel_removal(session_id)
        loop = asyncio.get_running_loop()
        self._removals[session_id] = loop.call_later(delay, self._expire, session_id)

    def _expire(self, session_id: str):
        self._removals.pop(session_id, None)
        self._records.pop(session_id, None)

    def _cancel_removal(self, session_id: str):
        handle = self._removals.pop(session_id, None)
        if handle is not None:
            handle.cancel()


class BatchCoordinator:
    """Runs a list of questions one after another through the orchestrator.

    A failing question becomes an error row and the batch moves on; only a
    missing login (checked up front) or a browser that never starts before
    the first result fail the whole batch.
    """

    def __init__(
        self,
        orchestrator: ScrapeOrchestrator,
        browser: BrowserSession,
        check_login: LoginCheck,
        progress: Optional[ProgressStore] = None,
        delay_range: tuple[float, float] = (MIN_DELAY_SECONDS, MAX_DELAY_SECONDS),
        grace_period: float = PROGRESS_GRACE_SECONDS,
        sleep: Sleep = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ):
        self._orchestrator = orchestrator
        self._browser = browser
        self._check_login = check_login
        self.progress = progress or ProgressStore()
        self._delay_range = delay_range
        self._grace_period = grace_period
        self._sleep = sleep
        self._jitter = jitter

    async def run_batch(self, questions: list[str], session_id: Optional[str] = None) -> list[ScrapeResult]:
        """Scrape every question in order and return one result per question.

        Raises:
            LoginRequired: the session store says nobody is logged in.
            BrowserLaunchFailed: the browser could not be started before any
                question produced a result.
        """
        session_id = session_id or new_session_id()

        logger.info("Checking login status...")
        login = await self._check_login()
        if not login.is_logged_in:
            logger.warning(f"User not logged in: {login.reason}")
            raise LoginRequired(f"Please log in to ChatGPT first. ({login.reason})")
        logger.info("Login status verified, proceeding with scraping...")

        total = len(questions)
        self.progress.start(session_id, total)
        results: list[ScrapeResult] = []

        try:
            for i, raw_question in enumerate(questions):
                question = raw_question.strip()
                self.progress.update(session_id, ProgressStatus.PROCESSING, i, question, results)
                logger.info(f"[{i + 1}/{total}] Processing: '{question}'")

                try:
                    if not question:
                        raise ValueError("Empty question")
                    result = await self._orchestrator.scrape_one(question)
                    succeeded = True
                except BrowserLaunchFailed as e:
                    if not results:
                        raise
                    logger.error(f"Browser could not be started for question {i + 1}: {e}")
                    result, succeeded = ScrapeResult.from_error(question, e), False
                except Exception as e:
                    logger.error(f"Error processing question '{question}': {e}")
                    result, succeeded = ScrapeResult.from_error(question, e), False

                results.append(result)
                if succeeded:
                    self.progress.update(session_id, ProgressStatus.COMPLETED, i + 1, None, results)
                    logger.info(f"Question {i + 1}/{total} completed successfully")
                else:
                    self.progress.update(session_id, ProgressStatus.ERROR, i + 1, None, results)
                    logger.warning(f"Question {i + 1}/{total} failed, continuing with next question...")

                if i < total - 1:
                    delay = self._jitter(*self._delay_range)
                    logger.info(f"Resting {delay:.1f} seconds before next question...")
                    self.progress.update(session_id, ProgressStatus.WAITING, i + 1, None, results)
                    await self._sleep(delay)

        except BaseException:
            self.progress.discard(session_id)
            await self._close_browser()
            raise

        self.progress.update(session_id, ProgressStatus.FINISHED, total, None, results)
        self.progress.discard_later(session_id, self._grace_period)
        logger.info(f"Batch {session_id} finished: {len(results)} result(s) for {total} question(s)")

        await self._close_browser()
        return results

    async def _close_browser(self):
        try:
            await self._browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")
