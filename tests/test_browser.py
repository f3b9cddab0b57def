"""Tests for the persistent browser session.

Covers:
- LaunchPolicy escalation ladder
- launch_with_retry(): retries, orphan cleanup, verification, timeout
- acquire()/release(): reuse, page recreation, disconnect recovery
- close(): keeps a held in-use flag; reset(): deletes the profile
- kill_orphan_browsers(): only automation processes are killed
"""

from __future__ import annotations

import asyncio

import psutil
import pytest
from conftest import FakeHandle, FakeLauncher, FakePage, SleepRecorder

from chatgpt_batch.errors import BrowserLaunchFailed
from chatgpt_batch.session_manager import browser
from chatgpt_batch.session_manager.browser import BrowserSession, LaunchPolicy
from chatgpt_batch.session_manager.session_store import SessionStore


def make_session(launcher, sleep, tmp_path, **kwargs) -> tuple[BrowserSession, list[int]]:
    kills: list[int] = []

    def killer():
        kills.append(1)
        return 0

    session = BrowserSession(
        launcher=launcher,
        store=SessionStore(tmp_path / "profile", sleep=sleep),
        headless=True,
        orphan_killer=killer,
        sleep=sleep,
        **kwargs,
    )
    return session, kills


# ---------------------------------------------------------------------------
# LaunchPolicy
# ---------------------------------------------------------------------------


class TestLaunchPolicy:
    def test_generic_errors_back_off_exponentially(self):
        policy = LaunchPolicy()
        assert policy.next_step(1, RuntimeError("boom")) == (1.0, False)
        assert policy.next_step(2, RuntimeError("boom")) == (2.0, False)

    def test_transport_errors_wait_longer_and_clean_up_once(self):
        policy = LaunchPolicy()
        assert policy.next_step(1, ConnectionResetError("socket hang up")) == (3.0, False)
        assert policy.next_step(2, RuntimeError("read ECONNRESET")) == (6.0, True)

    def test_delay_is_capped(self):
        assert LaunchPolicy().next_step(5, ConnectionResetError()).delay == 10.0


# ---------------------------------------------------------------------------
# launch_with_retry
# ---------------------------------------------------------------------------


class TestLaunchWithRetry:
    async def test_transport_failures_then_success(self, sleep, tmp_path):
        handle = FakeHandle(FakePage())
        launcher = FakeLauncher(
            ConnectionResetError("socket hang up"),
            ConnectionResetError("socket hang up"),
            handle,
        )
        session, kills = make_session(launcher, sleep, tmp_path)

        assert await session.launch_with_retry() is handle
        assert len(launcher.calls) == 3
        assert sleep.delays == [3.0, 6.0, 1.0]
        assert kills == [1]

    async def test_all_attempts_fail(self, sleep, tmp_path):
        launcher = FakeLauncher(RuntimeError("no display"))
        session, kills = make_session(launcher, sleep, tmp_path)

        with pytest.raises(BrowserLaunchFailed, match="after 3 attempts. Last error: no display") as info:
            await session.launch_with_retry()
        assert isinstance(info.value.last_error, RuntimeError)
        assert kills == []

    async def test_unverifiable_browser_is_closed_and_retried(self, sleep, tmp_path):
        broken = FakeHandle(FakePage(), version_error=RuntimeError("Target closed"))
        good = FakeHandle(FakePage())
        session, _ = make_session(FakeLauncher(broken, good), sleep, tmp_path)

        assert await session.launch_with_retry() is good
        assert broken.close_calls == 1

    async def test_launch_timeout(self, sleep, tmp_path):
        async def hanging_launcher(headless):
            await asyncio.Event().wait()

        session, _ = make_session(
            hanging_launcher, sleep, tmp_path, launch_timeout=0.01, policy=LaunchPolicy(max_attempts=1)
        )
        with pytest.raises(BrowserLaunchFailed, match="Browser launch timeout"):
            await session.launch_with_retry()

    async def test_headless_override(self, sleep, tmp_path):
        launcher = FakeLauncher(FakeHandle(FakePage()))
        session, _ = make_session(launcher, sleep, tmp_path)

        await session.launch_with_retry(headless=False)
        assert launcher.calls == [False]


# ---------------------------------------------------------------------------
# acquire / release
# ---------------------------------------------------------------------------


class TestAcquire:
    async def test_first_acquire_launches_and_configures(self, sleep, tmp_path):
        page = FakePage()
        session, _ = make_session(FakeLauncher(FakeHandle(page)), sleep, tmp_path)

        acquired = await session.acquire()

        assert acquired.page is page
        assert acquired.is_new
        assert session.in_use
        assert session.is_running
        assert session.created_at is not None
        assert page.viewport == {"width": 1920, "height": 1080}

    async def test_reuses_open_page(self, sleep, tmp_path):
        launcher = FakeLauncher(FakeHandle(FakePage()))
        session, _ = make_session(launcher, sleep, tmp_path)

        first = await session.acquire()
        session.release()
        second = await session.acquire()

        assert second.page is first.page
        assert not second.is_new
        assert len(launcher.calls) == 1

    async def test_closed_page_is_replaced(self, sleep, tmp_path):
        handle = FakeHandle(FakePage())
        session, _ = make_session(FakeLauncher(handle), sleep, tmp_path)

        first = await session.acquire()
        session.release()
        first.page.closed = True
        second = await session.acquire()

        assert second.page is handle.created_pages[0]
        assert not second.is_new

    async def test_disconnected_browser_is_relaunched(self, sleep, tmp_path):
        old, new = FakeHandle(FakePage()), FakeHandle(FakePage())
        launcher = FakeLauncher(old, new)
        session, _ = make_session(launcher, sleep, tmp_path)

        await session.acquire()
        session.release()
        old.connected = False
        acquired = await session.acquire()

        assert acquired.is_new
        assert old.close_calls == 1
        assert len(launcher.calls) == 2

    async def test_waits_for_in_use_flag(self, tmp_path):
        session = None
        armed = []

        def release_while_waiting(count):
            if armed:
                session.release()

        sleep = SleepRecorder(hook=release_while_waiting)
        session, _ = make_session(FakeLauncher(FakeHandle(FakePage())), sleep, tmp_path)

        await session.acquire()
        armed.append(True)
        waited_from = len(sleep.delays)
        acquired = await session.acquire()

        assert sleep.delays[waited_from:] == [1.0]
        assert not acquired.is_new
        assert session.in_use

    async def test_failed_acquire_clears_in_use(self, sleep, tmp_path):
        session, _ = make_session(FakeLauncher(RuntimeError("boom")), sleep, tmp_path)

        with pytest.raises(BrowserLaunchFailed):
            await session.acquire()
        assert not session.in_use


class TestCloseAndReset:
    async def test_close_does_not_release_a_held_browser(self, tmp_path):
        session = None
        released = []

        def release_on_second_wait(count):
            if waiting and not released and len(sleep.delays) - waited_from == 2:
                released.append(True)
                session.release()

        waiting = []
        sleep = SleepRecorder(hook=release_on_second_wait)
        launcher = FakeLauncher(FakeHandle(FakePage()), FakeHandle(FakePage()))
        session, _ = make_session(launcher, sleep, tmp_path)
        await session.acquire()

        await session.close()
        assert session.in_use

        waited_from = len(sleep.delays)
        waiting.append(True)
        acquired = await session.acquire()

        # Two polls while held, then the verification pause of the relaunch
        assert sleep.delays[waited_from:] == [1.0, 1.0, 1.0]
        assert released
        assert acquired.is_new
        assert len(launcher.calls) == 2
        assert session.in_use

    async def test_close_keeps_profile(self, sleep, tmp_path):
        handle = FakeHandle(FakePage())
        session, _ = make_session(FakeLauncher(handle), sleep, tmp_path)
        await session.acquire()
        session.release()

        await session.close()

        assert handle.close_calls == 1
        assert not session.is_running
        assert not session.in_use
        assert session.created_at is None

    async def test_reset_deletes_profile(self, sleep, tmp_path):
        profile = tmp_path / "profile"
        profile.mkdir()
        (profile / "cookies.sqlite").write_bytes(b"x" * 2000)
        handle = FakeHandle(FakePage())
        session, _ = make_session(FakeLauncher(handle), sleep, tmp_path)
        await session.acquire()

        await session.reset()

        assert handle.close_calls == 1
        assert not session.in_use
        assert not profile.exists()


# ---------------------------------------------------------------------------
# Orphan cleanup
# ---------------------------------------------------------------------------


class FakeProcess:
    def __init__(self, cmdline, kill_error: BaseException | None = None):
        self.info = {"pid": id(self), "cmdline": cmdline}
        self.kill_error = kill_error
        self.killed = False

    def kill(self):
        if self.kill_error is not None:
            raise self.kill_error
        self.killed = True


class TestKillOrphanBrowsers:
    def test_kills_only_automation_browsers(self, monkeypatch):
        automation = FakeProcess(["/opt/camoufox/camoufox", "-juggler-pipe", "-profile", "/tmp/p"])
        desktop = FakeProcess(["/usr/bin/firefox", "--new-window"])
        kernel = FakeProcess(None)
        monkeypatch.setattr(browser.psutil, "process_iter", lambda attrs: [automation, desktop, kernel])

        assert browser.kill_orphan_browsers() == 1
        assert automation.killed
        assert not desktop.killed
        assert not kernel.killed

    def test_vanished_and_protected_processes_are_skipped(self, monkeypatch):
        gone = FakeProcess(["camoufox", "-juggler-pipe"], kill_error=psutil.NoSuchProcess(1))
        denied = FakeProcess(["camoufox", "-juggler-pipe"], kill_error=psutil.AccessDenied(2))
        alive = FakeProcess(["camoufox", "-juggler-pipe"])
        monkeypatch.setattr(browser.psutil, "process_iter", lambda attrs: [gone, denied, alive])

        assert browser.kill_orphan_browsers() == 1
        assert alive.killed
