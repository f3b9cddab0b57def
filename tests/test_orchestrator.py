"""Tests for the per-question scrape protocol.

Covers:
- Happy path: navigate, submit, wait for generation, extract
- Login interrupts before and after submission
- Generation-wait timeouts are tolerated
- Error classification (transport vs. plain scrape errors)
- Browser released on every exit path
"""

from __future__ import annotations

import pytest
from conftest import FakeHandle, FakeLauncher, FakePage, Sequence, answer_payload, login_page, usable
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from chatgpt_batch.constants import CHATGPT_BASE, SELECTORS
from chatgpt_batch.errors import ExtractionFailed, LoginRequired, ScrapeError, TransportError
from chatgpt_batch.models.result import ScrapeResult
from chatgpt_batch.session_manager.browser import BrowserSession
from chatgpt_batch.session_manager.extraction import ExtractionEngine
from chatgpt_batch.session_manager.orchestrator import ScrapeOrchestrator
from chatgpt_batch.session_manager.readiness import ReadinessDetector
from chatgpt_batch.session_manager.session_store import SessionStore


@pytest.fixture
def build(sleep, tmp_path):
    def _build(page: FakePage) -> tuple[ScrapeOrchestrator, BrowserSession]:
        browser = BrowserSession(
            launcher=FakeLauncher(FakeHandle(page)),
            store=SessionStore(tmp_path / "profile", sleep=sleep),
            headless=True,
            sleep=sleep,
        )
        detector = ReadinessDetector(sleep=sleep)
        extractor = ExtractionEngine(detector, debug_dir=tmp_path, sleep=sleep)
        return ScrapeOrchestrator(browser, detector, extractor, sleep=sleep), browser

    return _build


class TestScrapeOne:
    async def test_simple_question(self, build):
        page = FakePage(clones=Sequence(answer_payload("4")))
        orchestrator, browser = build(page)

        result = await orchestrator.scrape_one("What is 2+2?")

        assert result == ScrapeResult(question="What is 2+2?", answer="4", sources="")
        assert page.goto_calls == [CHATGPT_BASE]
        assert page.clicks == [SELECTORS["prompt_input"]]
        assert page.keyboard.typed == ["What is 2+2?"]
        assert page.keyboard.pressed == ["Enter"]
        assert page.waits == [(SELECTORS["stop_button"], "visible"), (SELECTORS["stop_button"], "hidden")]
        assert not browser.in_use
        assert browser.is_running

    async def test_answer_with_sources(self, build):
        payload = {
            "text": "Use asyncio.TaskGroup.",
            "html": '<p>Use asyncio.TaskGroup. <a href="https://docs.python.org/3/library/asyncio-task.html">docs</a></p>',
        }
        orchestrator, _ = build(FakePage(clones=Sequence(payload)))

        result = await orchestrator.scrape_one("How do I run tasks concurrently?")

        assert result.sources == "https://docs.python.org/3/library/asyncio-task.html"

    async def test_login_after_submit_aborts(self, build):
        page = FakePage(snapshots=Sequence(usable(), usable(), usable(has_login_button=True)))
        orchestrator, browser = build(page)

        with pytest.raises(LoginRequired):
            await orchestrator.scrape_one("Hello?")

        assert page.keyboard.pressed == ["Enter"]
        assert page.clones.calls == 0
        assert not browser.in_use

    async def test_login_page_on_arrival(self, build):
        page = FakePage(snapshots=Sequence(login_page()))
        orchestrator, browser = build(page)

        with pytest.raises(LoginRequired):
            await orchestrator.scrape_one("Hello?")

        assert page.keyboard.typed == []
        assert not browser.in_use

    async def test_missing_stop_button_still_extracts(self, build):
        page = FakePage()
        page.wait_errors["visible"] = PlaywrightTimeoutError("Timeout 10000ms exceeded")
        orchestrator, _ = build(page)

        result = await orchestrator.scrape_one("Quick one")

        assert result.answer == "4"
        assert page.waits == [(SELECTORS["stop_button"], "visible")]

    async def test_slow_generation_still_extracts(self, build):
        page = FakePage()
        page.wait_errors["hidden"] = PlaywrightTimeoutError("Timeout 120000ms exceeded")
        orchestrator, _ = build(page)

        assert (await orchestrator.scrape_one("Long one")).answer == "4"

    async def test_extraction_failure_propagates(self, build):
        orchestrator, browser = build(FakePage(open_sources=Sequence(-1)))

        with pytest.raises(ExtractionFailed):
            await orchestrator.scrape_one("Anything")
        assert not browser.in_use


class TestErrorClassification:
    async def test_navigation_error_is_scrape_error(self, build):
        page = FakePage()
        page.goto_error = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        orchestrator, browser = build(page)

        with pytest.raises(ScrapeError) as info:
            await orchestrator.scrape_one("Hi")

        assert not isinstance(info.value, TransportError)
        assert "ERR_NAME_NOT_RESOLVED" in info.value.reason
        assert not browser.in_use

    async def test_connection_loss_is_transport_error(self, build):
        page = FakePage()
        page.goto_error = PlaywrightError("Connection closed")
        orchestrator, _ = build(page)

        with pytest.raises(TransportError):
            await orchestrator.scrape_one("Hi")
