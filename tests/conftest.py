"""Shared fakes for the scraping pipeline tests.

The fakes stand in for Playwright pages and Camoufox handles. ``FakePage``
answers ``page.evaluate`` by looking at which script was passed, so each
test scripts the DOM reads it cares about and nothing else.
"""

from __future__ import annotations

import pytest

from chatgpt_batch.session_manager import extraction, readiness

# ── Snapshot builders ────────────────────────────────────────────────────────


def usable(**overrides) -> dict:
    snapshot = {"has_usable_input": True, "url": "https://chatgpt.com/"}
    snapshot.update(overrides)
    return snapshot


def login_page(**overrides) -> dict:
    snapshot = {"has_login_button": True, "has_usable_input": False, "url": "https://chatgpt.com/"}
    snapshot.update(overrides)
    return snapshot


def answer_payload(text: str, html: str | None = None) -> dict:
    return {"text": text, "html": html if html is not None else f"<div class='markdown'><p>{text}</p></div>"}


class Sequence:
    """Hands out values in order, repeating the last one forever."""

    def __init__(self, *values):
        self._values = list(values)
        self.calls = 0

    def next(self):
        index = min(self.calls, len(self._values) - 1)
        self.calls += 1
        value = self._values[index]
        if isinstance(value, BaseException):
            raise value
        return value


# ── Fake Playwright objects ──────────────────────────────────────────────────


class FakeKeyboard:
    def __init__(self):
        self.typed: list[str] = []
        self.pressed: list[str] = []

    async def type(self, text: str, delay: int = 0):
        self.typed.append(text)

    async def press(self, key: str):
        self.pressed.append(key)


class FakePage:
    def __init__(self, snapshots=None, open_sources=None, clones=None, dismiss=None, url="https://chatgpt.com/"):
        self.snapshots = snapshots or Sequence(usable())
        self.open_sources = open_sources or Sequence(0)
        self.clones = clones or Sequence(answer_payload("4"))
        # Per-strategy results for the "Stay logged out" scripts
        self.dismiss = dismiss or {}
        self.url = url
        self.closed = False
        self.keyboard = FakeKeyboard()
        self.handlers: dict[str, list] = {}
        self.goto_calls: list[str] = []
        self.goto_error: BaseException | None = None
        self.clicks: list[str] = []
        self.waits: list[tuple[str, str]] = []
        self.wait_errors: dict[str, BaseException] = {}
        self.screenshots: list[str] = []
        self.scrolls = 0
        self.viewport = None
        self.timeouts: dict[str, int] = {}
        self.extra_headers = None

    async def evaluate(self, script, arg=None):
        if script is readiness.SNAPSHOT_SCRIPT:
            return self.snapshots.next()
        if script in (s for _, s in readiness.DISMISS_STRATEGIES):
            result = self.dismiss.get(script, False)
            if isinstance(result, BaseException):
                raise result
            return result
        if script is extraction.OPEN_SOURCES_SCRIPT:
            return self.open_sources.next()
        if script is extraction.CLONE_ANSWER_SCRIPT:
            return self.clones.next()
        if "scrollTo" in script:
            self.scrolls += 1
            return None
        raise AssertionError(f"Unexpected script: {script[:60]}")

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append(url)
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url

    async def click(self, selector):
        self.clicks.append(selector)

    async def wait_for_selector(self, selector, state=None, timeout=None):
        self.waits.append((selector, state))
        error = self.wait_errors.get(state)
        if error is not None:
            raise error

    async def screenshot(self, path=None, full_page=False):
        self.screenshots.append(path)

    def set_default_timeout(self, timeout):
        self.timeouts["default"] = timeout

    def set_default_navigation_timeout(self, timeout):
        self.timeouts["navigation"] = timeout

    async def set_viewport_size(self, size):
        self.viewport = size

    async def set_extra_http_headers(self, headers):
        self.extra_headers = headers

    def on(self, event, callback):
        self.handlers.setdefault(event, []).append(callback)

    def is_closed(self) -> bool:
        return self.closed

    def close_by_user(self):
        self.closed = True
        for callback in self.handlers.get("close", []):
            callback(self)

    @property
    def evaluated_snapshots(self) -> int:
        return self.snapshots.calls


class FakeHandle:
    """Stands in for ``BrowserHandle``."""

    def __init__(self, page: FakePage | None = None, version_error: BaseException | None = None):
        self._pages = [page] if page is not None else []
        self.connected = True
        self.close_calls = 0
        self.version_error = version_error
        self.created_pages: list[FakePage] = []

    def is_connected(self) -> bool:
        return self.connected

    async def pages(self):
        return list(self._pages)

    async def version(self) -> str:
        if self.version_error is not None:
            raise self.version_error
        return "Firefox/135.0"

    async def new_page(self):
        page = FakePage()
        self.created_pages.append(page)
        self._pages.append(page)
        return page

    async def close(self):
        self.connected = False
        self.close_calls += 1


class FakeLauncher:
    """Returns handles (or raises errors) in the order given."""

    def __init__(self, *outcomes):
        self._outcomes = list(outcomes)
        self.calls: list[bool] = []

    async def __call__(self, headless: bool):
        self.calls.append(headless)
        outcome = self._outcomes[min(len(self.calls), len(self._outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class SleepRecorder:
    """No-op replacement for ``asyncio.sleep`` that remembers each delay."""

    def __init__(self, hook=None):
        self.delays: list[float] = []
        self._hook = hook

    async def __call__(self, seconds: float):
        self.delays.append(seconds)
        if self._hook is not None:
            self._hook(len(self.delays))


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def page():
    return FakePage()
