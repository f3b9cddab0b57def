"""Camoufox browser automation: launch with retry, page reuse, teardown."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, NamedTuple, Optional

import psutil
from camoufox.async_api import AsyncCamoufox
from playwright.async_api import BrowserContext, Page

from ..config import (
    BROWSER_HEADLESS,
    BROWSER_LAUNCH_TIMEOUT,
    BROWSER_PROFILE_DIR,
    BROWSER_TIMEOUT,
    BROWSER_USER_AGENT,
    NAVIGATION_TIMEOUT,
    VIEWPORT,
)
from ..constants import AUTOMATION_PROCESS_FLAG
from ..errors import BrowserLaunchFailed, is_transport_error
from .readiness import Sleep
from .session_store import SessionStore

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class BrowserHandle:
    """A running Camoufox instance on the persistent profile."""

    def __init__(self, camoufox: Any, context: BrowserContext):
        self._camoufox = camoufox
        self.context = context
        self._connected = True
        context.on("close", self._on_close)

    def _on_close(self, *_):
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    async def pages(self) -> list[Page]:
        return list(self.context.pages)

    async def version(self) -> str:
        if self.context.browser is not None:
            return self.context.browser.version
        # Persistent contexts have no Browser object; ask a page instead
        pages = self.context.pages
        page = pages[0] if pages else await self.context.new_page()
        return await page.evaluate("() => navigator.userAgent")

    async def new_page(self) -> Page:
        return await self.context.new_page()

    async def close(self):
        self._connected = False
        try:
            await self._camoufox.__aexit__(None, None, None)
        except Exception as e:
            logger.warning(f"Error closing camoufox: {e}")


class CamoufoxLauncher:
    """Starts Camoufox with the shared on-disk profile."""

    def __init__(self, profile_dir: Path = BROWSER_PROFILE_DIR):
        self.profile_dir = Path(profile_dir)

    async def __call__(self, headless: bool) -> BrowserHandle:
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Launching Camoufox (headless={headless}, profile={self.profile_dir})...")
        camoufox = AsyncCamoufox(
            headless=headless,
            humanize=True,
            geoip=True,
            persistent_context=True,
            user_data_dir=str(self.profile_dir),
            i_know_what_im_doing=True,
            config={"forceScopeAccess": True},
            disable_coop=True,
        )
        context = await camoufox.__aenter__()
        return BrowserHandle(camoufox, context)


Launcher = Callable[[bool], Awaitable[BrowserHandle]]


# ── Launch Retry Policy ──────────────────────────────────────────────────────


class RetryStep(NamedTuple):
    delay: float
    kill_orphans: bool


@dataclass(frozen=True)
class LaunchPolicy:
    """Escalation ladder for failed launches, keyed by attempt and error class.

    Transport failures (reset connections, hang-ups) wait longer, and after
    the cleanup attempt they also kill orphaned automation browsers.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    transport_base_delay: float = 3.0
    max_delay: float = 10.0
    cleanup_attempt: int = 2

    def next_step(self, attempt: int, error: BaseException) -> RetryStep:
        transport = is_transport_error(error)
        base = self.transport_base_delay if transport else self.base_delay
        delay = min(base * (2 ** (attempt - 1)), self.max_delay)
        return RetryStep(delay=delay, kill_orphans=transport and attempt == self.cleanup_attempt)


def kill_orphan_browsers(flag: str = AUTOMATION_PROCESS_FLAG) -> int:
    """Kill leftover automation browsers. Returns how many were killed."""
    killed = 0
    for proc in psutil.process_iter(["pid", "cmdline"]):
        try:
            cmdline = " ".join(proc.info.get("cmdline") or [])
            if flag in cmdline:
                proc.kill()
                killed += 1
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    if killed:
        logger.info(f"Cleaned up {killed} hanging browser process(es)")
    return killed


# ── Persistent Session ───────────────────────────────────────────────────────


class AcquiredPage(NamedTuple):
    page: Page
    is_new: bool


class BrowserSession:
    """Owns at most one long-lived browser + page shared by all scrapes.

    ``acquire`` hands out the page under an in-use flag; ``release`` clears
    the flag but leaves the browser running for the next question.
    """

    def __init__(
        self,
        launcher: Optional[Launcher] = None,
        store: Optional[SessionStore] = None,
        headless: Optional[bool] = None,
        policy: LaunchPolicy = LaunchPolicy(),
        launch_timeout: float = BROWSER_LAUNCH_TIMEOUT,
        poll_interval: float = 1.0,
        orphan_killer: Callable[[], int] = kill_orphan_browsers,
        sleep: Sleep = asyncio.sleep,
    ):
        self._store = store or SessionStore()
        self._launcher = launcher or CamoufoxLauncher(self._store.profile_dir)
        self._headless = BROWSER_HEADLESS if headless is None else headless
        self._policy = policy
        self._launch_timeout = launch_timeout
        self._poll_interval = poll_interval
        self._orphan_killer = orphan_killer
        self._sleep = sleep

        self._handle: Optional[BrowserHandle] = None
        self._page: Optional[Page] = None
        self._in_use = False
        self._created_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._handle is not None and self._handle.is_connected()

    @property
    def in_use(self) -> bool:
        return self._in_use

    @property
    def created_at(self) -> Optional[datetime]:
        return self._created_at

    async def acquire(self) -> AcquiredPage:
        """Wait for the in-use flag, take it, and return a ready page."""
        while self._in_use:
            logger.info("Browser is in use, waiting...")
            await self._sleep(self._poll_interval)
        self._in_use = True

        try:
            return await self._get_or_create()
        except BaseException:
            self._in_use = False
            raise

    def release(self):
        self._in_use = False

    async def _get_or_create(self) -> AcquiredPage:
        if self._handle is not None:
            if self._handle.is_connected():
                if self._page is not None and not self._page.is_closed():
                    logger.info("Reusing existing browser instance")
                    return AcquiredPage(self._page, False)
                logger.warning("Page was closed, creating new page...")
                self._page = await self._handle.new_page()
                await configure_page(self._page)
                return AcquiredPage(self._page, False)
            logger.warning("Browser disconnected, resetting...")
            await self._discard()

        handle = await self.launch_with_retry()
        pages = await handle.pages()
        page = pages[0] if pages else await handle.new_page()
        await configure_page(page)

        self._handle = handle
        self._page = page
        self._created_at = datetime.now(timezone.utc)
        return AcquiredPage(page, True)

    async def launch_with_retry(self, headless: Optional[bool] = None) -> BrowserHandle:
        """Launch the browser, verifying it answers before handing it out.

        Raises:
            BrowserLaunchFailed: every attempt failed.
        """
        use_headless = self._headless if headless is None else headless
        last_error: Optional[BaseException] = None

        for attempt in range(1, self._policy.max_attempts + 1):
            handle = None
            try:
                logger.info(f"Attempting to launch browser (attempt {attempt}/{self._policy.max_attempts})...")
                try:
                    handle = await asyncio.wait_for(self._launcher(use_headless), timeout=self._launch_timeout)
                except asyncio.TimeoutError:
                    raise TimeoutError(
                        f"Browser launch timeout after {self._launch_timeout:.0f} seconds"
                    ) from None

                await self._sleep(1.0)
                try:
                    pages = await handle.pages()
                    version = await handle.version()
                except Exception as e:
                    raise RuntimeError(f"Browser connection failed: {e}") from e
                logger.info(f"Browser launched successfully ({len(pages)} pages, version {version})")
                return handle

            except Exception as e:
                last_error = e
                logger.warning(f"Browser launch attempt {attempt} failed: {e}")
                if handle is not None:
                    await handle.close()

                if attempt < self._policy.max_attempts:
                    step = self._policy.next_step(attempt, e)
                    logger.info(f"Waiting {step.delay:.1f}s before retry...")
                    await self._sleep(step.delay)
                    if step.kill_orphans:
                        logger.info("Attempting to clean up any hanging browser processes...")
                        try:
                            self._orphan_killer()
                        except Exception as cleanup_error:
                            logger.warning(f"Process cleanup failed: {cleanup_error}")

        raise BrowserLaunchFailed(self._policy.max_attempts, last_error)

    async def _discard(self):
        handle = self._handle
        self._handle = None
        self._page = None
        self._created_at = None
        if handle is not None:
            await handle.close()

    async def close(self):
        """Close the browser; the profile on disk is kept."""
        if self._handle is None:
            return
        logger.info("Closing persistent browser...")
        await self._discard()
        logger.info("Browser closed.")

    async def reset(self):
        """Force-close the browser and delete the on-disk session."""
        logger.info("Resetting session...")
        await self.close()
        self._in_use = False
        await self._store.clear()
        logger.info("Session reset complete")


async def configure_page(page: Page):
    """Apply timeouts, viewport and (optionally) user agent to a page."""
    page.set_default_timeout(BROWSER_TIMEOUT)
    page.set_default_navigation_timeout(NAVIGATION_TIMEOUT)
    await page.set_viewport_size(VIEWPORT)
    if BROWSER_USER_AGENT:
        await page.set_extra_http_headers({"User-Agent": BROWSER_USER_AGENT})
