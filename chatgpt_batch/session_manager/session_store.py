"""On-disk browser profile used as a proxy for "is someone logged in".

The profile directory is written only by the browser (the login flow and
the scraping session) and read here through size and lock-file checks.
This is a heuristic: around the moment a browser opens or closes the
profile it can misreport, which is why callers may verify it live.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

from ..config import BROWSER_PROFILE_DIR, MIN_COOKIE_STORE_BYTES, SESSION_FLUSH_SECONDS
from ..constants import PROFILE_COOKIE_STORE, PROFILE_LOCK_FILES
from ..errors import SessionResetFailed
from ..models.session import LoginStatus
from .readiness import Sleep

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class SessionStore:
    """Reads login hints from, and deletes, the browser profile directory."""

    def __init__(
        self,
        profile_dir: Path = BROWSER_PROFILE_DIR,
        lock_files: list[str] = PROFILE_LOCK_FILES,
        cookie_store: str = PROFILE_COOKIE_STORE,
        min_cookie_bytes: int = MIN_COOKIE_STORE_BYTES,
        lock_recheck_delay: float = SESSION_FLUSH_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ):
        self.profile_dir = Path(profile_dir)
        self._lock_files = lock_files
        self._cookie_store = cookie_store
        self._min_cookie_bytes = min_cookie_bytes
        self._lock_recheck_delay = lock_recheck_delay
        self._sleep = sleep

    def exists(self) -> bool:
        return self.profile_dir.is_dir()

    def lock_paths(self) -> list[Path]:
        # lexists: Firefox's "lock" is a symlink to a non-existent target
        return [
            self.profile_dir / name
            for name in self._lock_files
            if os.path.lexists(self.profile_dir / name)
        ]

    def is_locked(self) -> bool:
        return bool(self.lock_paths())

    async def check_login_status(self) -> LoginStatus:
        """Infer login state from the profile directory."""
        if not self.exists():
            return LoginStatus(is_logged_in=False, reason="No session directory found")

        if self.is_locked():
            # The browser may be closing; give it a moment
            await self._sleep(self._lock_recheck_delay)
            if self.is_locked():
                logger.warning("Browser lock file detected, skipping verification (assuming logged in)")
                return LoginStatus(is_logged_in=True, reason="Browser in use (lock file detected)")
            logger.info("Browser lock file removed, waiting for session to be saved...")
            await self._sleep(self._lock_recheck_delay)

        cookie_path = self.profile_dir / self._cookie_store
        if not cookie_path.exists():
            return LoginStatus(is_logged_in=False, reason="No cookie store found")

        size = cookie_path.stat().st_size
        if size < self._min_cookie_bytes:
            return LoginStatus(
                is_logged_in=False,
                reason=f"Cookie store too small ({size} bytes, likely not logged in)",
            )

        return LoginStatus(is_logged_in=True, reason="Session files present", conclusive=False)

    async def wait_for_unlock(self, timeout: float = 10.0, interval: float = 0.5) -> bool:
        """Wait for the browser to drop its profile lock. True if it did."""
        for _ in range(max(1, int(timeout / interval))):
            if not self.is_locked():
                return True
            await self._sleep(interval)
        return not self.is_locked()

    async def clear(self, unlock_timeout: float = 10.0):
        """Delete the profile directory, escalating to an OS-level delete.

        Raises:
            SessionResetFailed: the directory survived every removal attempt.
        """
        if not self.exists():
            logger.info("No session directory found, nothing to delete")
            return

        for lock in self.lock_paths():
            try:
                lock.unlink()
                logger.info(f"Lock file removed: {lock.name}")
            except OSError as e:
                logger.warning(f"Could not remove lock file {lock.name}: {e}")

        if not await self.wait_for_unlock(unlock_timeout):
            logger.warning("Profile still locked after timeout, forcing deletion")

        try:
            shutil.rmtree(self.profile_dir)
            logger.info("Session directory deleted successfully")
            return
        except OSError as e:
            logger.warning(f"Error deleting session directory: {e}")

        self._force_delete()

    def _force_delete(self):
        if sys.platform == "win32":
            command = ["cmd", "/c", "rmdir", "/s", "/q", str(self.profile_dir)]
        else:
            command = ["rm", "-rf", str(self.profile_dir)]
        try:
            subprocess.run(command, check=True, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise SessionResetFailed(
                f"Failed to delete session directory {self.profile_dir}: {e}. "
                "Delete it manually and restart the service."
            ) from e
        if self.exists():
            raise SessionResetFailed(f"Session directory {self.profile_dir} still exists after forced delete.")
        logger.info("Session directory deleted using OS-level fallback")
