"""Per-question scrape protocol on the shared browser page.

ACQUIRE -> NAVIGATE -> DETECT_READINESS -> SUBMIT -> AWAIT_GENERATION
-> VERIFY_NO_LOGIN_INTERRUPT -> EXTRACT, releasing the browser on every exit.
"""

from __future__ import annotations

import asyncio
import logging
import sys

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import GENERATION_START_TIMEOUT, GENERATION_TIMEOUT, NAVIGATION_TIMEOUT
from ..constants import CHATGPT_BASE, SELECTORS
from ..errors import LoginRequired, ScrapeError, TransportError, is_transport_error
from ..models.result import ScrapeResult
from ..models.session import Readiness
from .browser import BrowserSession
from .extraction import ExtractionEngine
from .readiness import ReadinessDetector, Sleep

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class ScrapeOrchestrator:
    """Asks one question on ChatGPT and returns the extracted answer."""

    def __init__(
        self,
        browser: BrowserSession,
        detector: ReadinessDetector,
        extractor: ExtractionEngine,
        url: str = CHATGPT_BASE,
        new_browser_warmup: float = 3.0,
        reuse_warmup: float = 1.0,
        page_load_delay: float = 3.0,
        post_submit_delay: float = 2.0,
        settle_delay: float = 6.0,
        typing_delay_ms: int = 20,
        sleep: Sleep = asyncio.sleep,
    ):
        self._browser = browser
        self._detector = detector
        self._extractor = extractor
        self._url = url
        self._new_browser_warmup = new_browser_warmup
        self._reuse_warmup = reuse_warmup
        self._page_load_delay = page_load_delay
        self._post_submit_delay = post_submit_delay
        self._settle_delay = settle_delay
        self._typing_delay_ms = typing_delay_ms
        self._sleep = sleep

    async def scrape_one(self, question: str) -> ScrapeResult:
        """Run the full protocol for one question.

        Raises:
            LoginRequired: the page needs a login at any checkpoint.
            ExtractionFailed: the answer never materialized.
            TransportError / ScrapeError: navigation, timeout or browser faults.
        """
        acquired = await self._browser.acquire()
        try:
            page = acquired.page
            if acquired.is_new:
                logger.info("Waiting for browser to load session...")
                await self._sleep(self._new_browser_warmup)
            else:
                await self._sleep(self._reuse_warmup)

            logger.info(f"Accessing ChatGPT for: '{question}'")
            await page.goto(self._url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT)
            await self._sleep(self._page_load_delay)

            if await self._detector.wait_until_usable(page) is not Readiness.USABLE:
                raise LoginRequired(
                    "Login page detected. Run the login flow; if it keeps happening, reset the session and log in again."
                )

            await self._submit(page, question)

            await self._sleep(self._post_submit_delay)
            await self._detector.ensure_no_login(page, "after submitting the question")

            await self._await_generation(page)
            await self._sleep(self._settle_delay)

            await self._detector.ensure_no_login(page, "before extraction")
            await self._extractor.scroll_to_bottom(page)

            extracted = await self._extractor.extract(page)
            logger.info(f"Final result: answer ({len(extracted.answer)} chars), sources ({len(extracted.sources)} URLs)")
            return ScrapeResult(question=question, answer=extracted.answer, sources=extracted.sources_joined)

        except ScrapeError:
            raise
        except (PlaywrightTimeoutError, PlaywrightError) as e:
            if is_transport_error(e):
                raise TransportError(f"Browser connection lost: {e}") from e
            raise ScrapeError(f"Page interaction failed: {e}") from e
        except Exception as e:
            if is_transport_error(e):
                raise TransportError(f"Browser connection lost: {e}") from e
            raise ScrapeError(str(e) or type(e).__name__) from e
        finally:
            # Keep the browser open for the next question
            self._browser.release()
            logger.info("Question processed, browser kept open for next question")

    async def _submit(self, page: Page, question: str):
        """Recheck readiness, then type the question and press Enter."""
        if await self._detector.classify(page) is not Readiness.USABLE:
            raise LoginRequired("A login modal appeared before submitting the question.")

        selector = SELECTORS["prompt_input"]
        await page.click(selector)
        await page.keyboard.type(question, delay=self._typing_delay_ms)
        await page.keyboard.press("Enter")

    async def _await_generation(self, page: Page):
        """Wait for the stop button to appear and then vanish.

        Timeouts are tolerated: the answer may already be complete.
        """
        logger.info("Waiting for response...")
        stop_button = SELECTORS["stop_button"]
        try:
            await page.wait_for_selector(stop_button, state="visible", timeout=GENERATION_START_TIMEOUT)
        except PlaywrightTimeoutError:
            logger.warning("Stop button never appeared, assuming generation already finished")
            return
        try:
            await page.wait_for_selector(stop_button, state="hidden", timeout=GENERATION_TIMEOUT)
        except PlaywrightTimeoutError:
            logger.warning("Generation did not finish in time, extracting anyway")
