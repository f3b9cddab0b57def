"""Login/readiness detection for the ChatGPT page.

Every DOM check funnels through ``read_snapshot`` (one ``page.evaluate``)
and ``classify`` (a pure function over the snapshot), so the scrape, the
extraction retries and the login flow all agree on what "logged in" means.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Awaitable, Callable

from playwright.async_api import Page

from ..constants import (
    AUTH_PATH_MARKERS,
    LOGGED_OUT_MODAL_PHRASES,
    LOGIN_CONTROL_LABELS,
    LOGIN_PROMPT_PHRASES,
    SELECTORS,
    STAY_LOGGED_OUT_TEXT,
)
from ..errors import LoginRequired
from ..models.session import Readiness, ReadinessSnapshot

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

Sleep = Callable[[float], Awaitable[None]]

# Control text is only read outside answer articles, so an answer that talks
# about "logging in" never looks like a login prompt.
SNAPSHOT_SCRIPT = """
(cfg) => {
  const norm = (el) => (el.innerText || el.textContent || '').toLowerCase().trim();
  const inArticle = (el) => el.closest('article') !== null;

  const controls = Array.from(document.querySelectorAll('button, a, [role="button"]'))
    .filter(el => !inArticle(el));
  const hasLoginButton = controls.some(el => {
    const text = norm(el);
    return cfg.controlLabels.includes(text) || cfg.promptPhrases.some(p => text.includes(p));
  });

  const modals = Array.from(document.querySelectorAll(cfg.modalSelector));
  const modalText = modals.map(norm).join(' ');
  const bodyText = norm(document.body || document.documentElement);
  const hasModal = modals.length > 0 || cfg.loggedOutPhrases.some(p => bodyText.includes(p));
  const hasLoginModal = modals.length > 0 && (
    cfg.promptPhrases.some(p => modalText.includes(p)) ||
    cfg.controlLabels.some(p => modalText.includes(p))
  );

  const input = document.querySelector(cfg.inputSelector);
  let hasUsableInput = false;
  if (input) {
    const style = window.getComputedStyle(input);
    const rect = input.getBoundingClientRect();
    hasUsableInput = style.display !== 'none' &&
                     style.visibility !== 'hidden' &&
                     style.opacity !== '0' &&
                     rect.width > 0 &&
                     rect.height > 0;
  }

  return {
    has_login_button: hasLoginButton,
    has_email_input: document.querySelector(cfg.emailSelector) !== null,
    has_password_input: document.querySelector(cfg.passwordSelector) !== null,
    has_login_form: document.querySelector(cfg.loginFormSelector) !== null,
    has_modal: hasModal,
    has_login_modal: hasLoginModal,
    has_usable_input: hasUsableInput,
    url: window.location.href,
  };
}
"""

SNAPSHOT_CONFIG = {
    "controlLabels": LOGIN_CONTROL_LABELS,
    "promptPhrases": LOGIN_PROMPT_PHRASES,
    "loggedOutPhrases": LOGGED_OUT_MODAL_PHRASES,
    "modalSelector": SELECTORS["modal"],
    "inputSelector": SELECTORS["prompt_input"],
    "emailSelector": SELECTORS["email_input"],
    "passwordSelector": SELECTORS["password_input"],
    "loginFormSelector": SELECTORS["login_form"],
}

# ── "Stay logged out" dismissal strategies ──────────────────────────────────

DISMISS_BY_TEXT_SCRIPT = """
(label) => {
  for (const el of document.querySelectorAll('a, button, span, div, p')) {
    const text = (el.innerText || el.textContent || '').toLowerCase().trim();
    if (text !== label) continue;
    if (typeof el.click === 'function') { el.click(); return true; }
    if (el.parentElement && typeof el.parentElement.click === 'function') {
      el.parentElement.click();
      return true;
    }
    el.dispatchEvent(new MouseEvent('click', { bubbles: true, cancelable: true }));
    return true;
  }
  return false;
}
"""

DISMISS_IN_MODAL_SCRIPT = """
(label) => {
  const modals = document.querySelectorAll('[role="dialog"], .modal, [class*="modal"]');
  for (const modal of modals) {
    for (const link of modal.querySelectorAll('a, button')) {
      const text = (link.innerText || link.textContent || '').toLowerCase().trim();
      if (text.includes(label)) { link.click(); return true; }
    }
  }
  return false;
}
"""

DISMISS_BY_STYLE_SCRIPT = """
(label) => {
  const links = document.querySelectorAll('a[class*="blue"], a[style*="blue"], a[href="#"], a.underline');
  for (const link of links) {
    const text = (link.innerText || link.textContent || '').toLowerCase().trim();
    if (text.includes(label)) { link.click(); return true; }
  }
  return false;
}
"""

DISMISS_STRATEGIES = [
    ("exact text", DISMISS_BY_TEXT_SCRIPT),
    ("link inside modal", DISMISS_IN_MODAL_SCRIPT),
    ("styled link", DISMISS_BY_STYLE_SCRIPT),
]


def classify(snapshot: ReadinessSnapshot, after_submit: bool = False) -> Readiness:
    """Classify one DOM read.

    Before submission a page with both a usable input and a modal is still
    settling and comes back INDETERMINATE. After a question has been
    submitted any login affordance is LOGIN_REQUIRED: nothing client-side
    can recover a session that started asking for credentials.
    """
    blocked = snapshot.has_login_affordance
    if after_submit and blocked:
        return Readiness.LOGIN_REQUIRED
    if snapshot.has_usable_input and not blocked and not snapshot.has_modal:
        return Readiness.USABLE
    if (blocked or snapshot.has_modal) and not snapshot.has_usable_input:
        return Readiness.LOGIN_REQUIRED
    return Readiness.INDETERMINATE


def is_on_auth_page(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in AUTH_PATH_MARKERS)


def is_authenticated(snapshot: ReadinessSnapshot) -> bool:
    """Stricter check used by the login flow before trusting a session."""
    return (
        classify(snapshot) is Readiness.USABLE
        and not snapshot.has_email_input
        and not snapshot.has_password_input
        and not snapshot.has_login_form
        and not is_on_auth_page(snapshot.url)
    )


async def read_snapshot(page: Page) -> ReadinessSnapshot:
    """Evaluate the page once and return its readiness flags."""
    data = await page.evaluate(SNAPSHOT_SCRIPT, SNAPSHOT_CONFIG)
    return ReadinessSnapshot(**data)


async def dismiss_stay_logged_out(page: Page) -> bool:
    """Try each dismissal strategy in order until one clicks something.

    A strategy that throws is logged and skipped; it never stops the rest.
    """
    for name, script in DISMISS_STRATEGIES:
        try:
            if await page.evaluate(script, STAY_LOGGED_OUT_TEXT):
                logger.info(f"Clicked 'Stay logged out' ({name}).")
                return True
        except Exception as e:
            logger.warning(f"Dismissal strategy '{name}' failed: {e}")
    return False


class ReadinessDetector:
    """Runs the bounded readiness loop and the post-submit login checks."""

    def __init__(
        self,
        attempts: int = 5,
        delay: float = 2.0,
        dismiss_attempts: int = 2,
        sleep: Sleep = asyncio.sleep,
    ):
        self._attempts = attempts
        self._delay = delay
        self._dismiss_attempts = dismiss_attempts
        self._sleep = sleep

    async def classify(self, page: Page, after_submit: bool = False) -> Readiness:
        snapshot = await read_snapshot(page)
        readiness = classify(snapshot, after_submit=after_submit)
        logger.info(
            f"Readiness: {readiness.value} (input={snapshot.has_usable_input}, "
            f"login={snapshot.has_login_affordance}, modal={snapshot.has_modal}, url={snapshot.url})"
        )
        return readiness

    async def wait_until_usable(self, page: Page) -> Readiness:
        """Poll until the page is USABLE or clearly needs a login.

        Returns the last classification. INDETERMINATE after the final
        attempt is reported as LOGIN_REQUIRED since no input ever became
        usable.
        """
        for attempt in range(self._attempts):
            snapshot = await read_snapshot(page)
            readiness = classify(snapshot)

            if readiness is Readiness.USABLE:
                logger.info(f"Page usable (detected on attempt {attempt + 1}), URL: {snapshot.url}")
                return readiness

            if snapshot.has_modal and attempt < self._dismiss_attempts:
                logger.info("Modal present, trying to click 'Stay logged out'...")
                if await dismiss_stay_logged_out(page):
                    await self._sleep(self._delay)
                    continue

            if readiness is Readiness.LOGIN_REQUIRED and (
                not snapshot.has_modal or attempt >= self._dismiss_attempts
            ):
                logger.warning(f"Login page detected. URL: {snapshot.url}")
                return readiness

            if attempt < self._attempts - 1:
                logger.info(f"Checking if ChatGPT is ready (attempt {attempt + 1}/{self._attempts})...")
                await self._sleep(self._delay)

        logger.warning("Page never became usable.")
        return Readiness.LOGIN_REQUIRED

    async def ensure_no_login(self, page: Page, checkpoint: str):
        """Raise LoginRequired if a login affordance appeared after submission."""
        if await self.classify(page, after_submit=True) is Readiness.LOGIN_REQUIRED:
            logger.warning(f"Login prompt detected {checkpoint}")
            raise LoginRequired(f"ChatGPT asked for a login {checkpoint}. Run the login flow first.")
