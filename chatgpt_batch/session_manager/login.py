"""Visible-browser login flow that saves the ChatGPT session to disk."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..config import NAVIGATION_TIMEOUT, SESSION_FLUSH_SECONDS
from ..constants import CHATGPT_LOGIN_URL
from ..models.session import LoginOutcome
from .browser import BrowserHandle, Launcher, configure_page
from .readiness import Sleep, dismiss_stay_logged_out, is_authenticated, read_snapshot

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class LoginFlowController:
    """Opens a separate, non-headless browser for a human to log in.

    The session is only trusted after several consecutive passing checks;
    a prompt input that flashes up mid-redirect must not count as a login.
    """

    def __init__(
        self,
        launcher: Launcher,
        url: str = CHATGPT_LOGIN_URL,
        poll_interval: float = 5.0,
        max_polls: int = 120,
        required_consecutive: int = 3,
        page_load_delay: float = 3.0,
        dismiss_delay: float = 2.0,
        flush_delay: float = SESSION_FLUSH_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ):
        self._launcher = launcher
        self._url = url
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._required_consecutive = required_consecutive
        self._page_load_delay = page_load_delay
        self._dismiss_delay = dismiss_delay
        self._flush_delay = flush_delay
        self._sleep = sleep
        self._watcher: Optional[asyncio.Task] = None

    @property
    def is_waiting(self) -> bool:
        return self._watcher is not None and not self._watcher.done()

    async def initiate(self) -> LoginOutcome:
        """Open the login page and report whether a login is still needed.

        When it is, a background task keeps polling until the user logs in,
        closes the window, or the wait times out.
        """
        logger.info("Opening browser for ChatGPT login...")
        handle = await self._launcher(False)
        try:
            pages = await handle.pages()
            page = pages[0] if pages else await handle.new_page()
            await configure_page(page)
            await page.goto(self._url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT)
            await self._sleep(self._page_load_delay)

            if await self._check(page):
                logger.info("Already logged in!")
                return LoginOutcome(
                    already_logged_in=True,
                    message="You are already logged in to ChatGPT. Close the browser window when you are ready.",
                )

            logger.info("Looking for 'Stay logged out' option...")
            await self._sleep(self._dismiss_delay)
            if await dismiss_stay_logged_out(page):
                await self._sleep(self._page_load_delay)
            else:
                logger.info("'Stay logged out' option not found, may already be dismissed or not present")

            if await self._check(page):
                logger.info("ChatGPT is usable without further login.")
                return LoginOutcome(
                    already_logged_in=True,
                    message="ChatGPT is ready to use. Close the browser window when you are ready.",
                )
        except Exception:
            await handle.close()
            raise

        logger.info("Waiting for user to login...")
        self._watcher = asyncio.create_task(self._watch(handle, page))
        return LoginOutcome(
            already_logged_in=False,
            message=(
                "Browser opened. Please log in in the browser window "
                "(email/password works best). It closes automatically once login is detected."
            ),
        )

    async def _check(self, page: Page) -> bool:
        try:
            return is_authenticated(await read_snapshot(page))
        except PlaywrightError as e:
            logger.warning(f"Login check failed: {e}")
            return False

    async def wait_for_login(self, page: Page) -> bool:
        """Poll until ``required_consecutive`` checks pass in a row.

        Returns False on timeout or when the user closes the window.
        """
        closed = False

        def on_close(*_):
            nonlocal closed
            closed = True
            logger.info("Browser window was closed by user")

        page.on("close", on_close)
        consecutive = 0

        for _ in range(self._max_polls):
            if closed or page.is_closed():
                logger.info("Browser was closed by user, stopping login check")
                return False

            await self._sleep(self._poll_interval)

            try:
                snapshot = await read_snapshot(page)
            except PlaywrightError as e:
                if page.is_closed():
                    logger.info("Browser was closed by user during check")
                    return False
                logger.warning(f"Login check errored, resetting counter: {e}")
                consecutive = 0
                continue

            if is_authenticated(snapshot):
                consecutive += 1
                logger.info(f"Login check passed ({consecutive}/{self._required_consecutive})")
                if consecutive >= self._required_consecutive:
                    logger.info("Login confirmed! ChatGPT is ready to use.")
                    return True
            else:
                if consecutive > 0:
                    logger.warning(f"Login check failed, resetting counter. Status: {snapshot.model_dump()}")
                consecutive = 0

        logger.warning("Login timeout - user may not have logged in yet")
        return False

    async def _watch(self, handle: BrowserHandle, page: Page):
        try:
            if await self.wait_for_login(page):
                logger.info("Login successful! Saving session...")
            else:
                logger.info("If login was completed before closing, the session should be saved.")
        except Exception as e:
            logger.error(f"Login watcher failed: {e}", exc_info=True)
        finally:
            await self.finish(handle)

    async def finish(self, handle: BrowserHandle):
        """Close the login browser and give the profile time to flush."""
        logger.info("Closing login browser...")
        await handle.close()
        logger.info("Waiting for the browser to release the session lock...")
        await self._sleep(self._flush_delay)
        logger.info("Browser closed and session lock released")
