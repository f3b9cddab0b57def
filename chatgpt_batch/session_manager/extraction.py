"""Read the finished answer and its source links out of the page.

Extraction strategy:
1. Open any "Sources"/"Searched N sites" toggles in the newest answer
2. Clone the answer's markdown node in the page and return its text + HTML
3. Collect outbound links from the cloned HTML with BeautifulSoup
4. Union with raw URLs found in the answer text, minus ChatGPT's own hosts
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from playwright.async_api import Page

from ..config import DEBUG_DIR, EXTRACTION_ATTEMPTS, MIN_ANSWER_CHARS
from ..constants import INTERNAL_HOSTS, SELECTORS, SOURCE_TOGGLE_PHRASES
from ..errors import ExtractionFailed, LoginRequired
from ..models.result import ExtractedAnswer
from .readiness import ReadinessDetector, Sleep

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

URL_PATTERN = re.compile(r"https?://[^\s)\]>\"']+")
TRAILING_PUNCTUATION = ".,;:!?"

# Returns the number of toggles clicked, or -1 when no answer node exists.
# Picking the last bot article assumes one fresh exchange per page.
OPEN_SOURCES_SCRIPT = """
(cfg) => {
  const articles = Array.from(document.querySelectorAll(cfg.articleSelector))
    .filter(a => a.querySelector(cfg.contentSelector));
  const last = articles[articles.length - 1];
  if (!last) return -1;

  let clicked = 0;
  const toggles = Array.from(last.querySelectorAll(cfg.toggleSelector)).filter(el => {
    const text = (el.innerText || '').toLowerCase();
    return cfg.togglePhrases.some(p => text.includes(p));
  });
  for (const el of [...toggles, ...last.querySelectorAll(cfg.citationSelector)]) {
    try { el.click(); clicked++; } catch (e) {}
  }
  return clicked;
}
"""

# The clone is rendered off-screen only long enough to read innerText,
# which needs layout to produce paragraph breaks.
CLONE_ANSWER_SCRIPT = """
(cfg) => {
  const articles = Array.from(document.querySelectorAll(cfg.articleSelector))
    .filter(a => a.querySelector(cfg.contentSelector));
  const last = articles[articles.length - 1];
  if (!last) return null;
  const content = last.querySelector(cfg.contentSelector);
  if (!content) return null;

  const clone = content.cloneNode(true);
  const holder = document.createElement('div');
  holder.style.cssText = 'position:absolute;left:-100000px;top:0;width:800px;';
  holder.appendChild(clone);
  document.body.appendChild(holder);
  const text = clone.innerText;
  holder.remove();
  return { text: text, html: clone.outerHTML };
}
"""

EXTRACTION_CONFIG = {
    "articleSelector": SELECTORS["article"],
    "contentSelector": SELECTORS["answer_content"],
    "toggleSelector": SELECTORS["source_toggle"],
    "citationSelector": SELECTORS["citation_button"],
    "togglePhrases": SOURCE_TOGGLE_PHRASES,
}


# ── Utility Functions ────────────────────────────────────────────────────────


def is_internal_url(url: str) -> bool:
    """True for links back into ChatGPT/OpenAI (chats, auth, backend)."""
    host = (urlparse(url).hostname or "").lower()
    return any(host == h or host.endswith(f".{h}") for h in INTERNAL_HOSTS)


def _dedupe(urls) -> list[str]:
    seen = {}
    for url in urls:
        seen.setdefault(url, None)
    return list(seen)


def normalize_text(text: str | None) -> str:
    """Collapse runs of three or more newlines to a single blank line."""
    if not text:
        return ""
    return re.sub(r"\n\s*\n\s*\n", "\n\n", text).strip()


def collect_links(html: str, base_url: str = "") -> list[str]:
    """Outbound http(s) links in the answer HTML, in document order."""
    soup = BeautifulSoup(html or "", "html.parser")
    urls = []
    for link in soup.find_all("a", href=True):
        url = urljoin(base_url, link["href"].strip())
        if urlparse(url).scheme not in ("http", "https"):
            continue
        if is_internal_url(url):
            continue
        urls.append(url)
    return _dedupe(urls)


def extract_urls(text: str) -> list[str]:
    """Raw URLs mentioned in plain text, minus internal ones."""
    urls = []
    for match in URL_PATTERN.findall(text or ""):
        url = match.rstrip(TRAILING_PUNCTUATION)
        if url and not is_internal_url(url):
            urls.append(url)
    return _dedupe(urls)


def merge_sources(*groups: list[str]) -> list[str]:
    return _dedupe(url for group in groups for url in group)


def parse_answer(payload: Optional[dict], base_url: str, min_chars: int = MIN_ANSWER_CHARS) -> Optional[ExtractedAnswer]:
    """Turn the cloned-node payload into an answer, or None if it is unusable."""
    if not payload:
        return None
    answer = normalize_text(payload.get("text"))
    if len(answer) < min_chars:
        return None
    return ExtractedAnswer(answer=answer, sources=collect_links(payload.get("html", ""), base_url))


# ── Engine ───────────────────────────────────────────────────────────────────


class ExtractionEngine:
    """Retrying answer extraction for a page that holds a finished answer."""

    def __init__(
        self,
        detector: ReadinessDetector,
        attempts: int = EXTRACTION_ATTEMPTS,
        settle_delay: float = 2.5,
        retry_delay: float = 3.0,
        scroll_delay: float = 2.0,
        min_chars: int = MIN_ANSWER_CHARS,
        debug_dir: Path = DEBUG_DIR,
        sleep: Sleep = asyncio.sleep,
    ):
        self._detector = detector
        self._attempts = attempts
        self._settle_delay = settle_delay
        self._retry_delay = retry_delay
        self._scroll_delay = scroll_delay
        self._min_chars = min_chars
        self._debug_dir = debug_dir
        self._sleep = sleep

    async def extract(self, page: Page) -> ExtractedAnswer:
        """Extract the newest answer, retrying up to the attempt bound.

        Raises:
            LoginRequired: a login affordance showed up during any attempt.
            ExtractionFailed: no usable answer after all attempts.
        """
        last_error: Optional[BaseException] = None

        for attempt in range(1, self._attempts + 1):
            logger.info(f"Extraction attempt {attempt}/{self._attempts}...")
            try:
                await self._detector.ensure_no_login(page, "during extraction")
                extracted = await self._attempt(page)
            except LoginRequired:
                raise
            except Exception as e:
                last_error = e
                logger.error(f"Error during extraction attempt {attempt}: {e}")
                extracted = None

            if extracted is not None:
                return self._finalize(extracted, attempt)

            if attempt < self._attempts:
                logger.info("No answer content yet, waiting before retry...")
                await self._sleep(self._retry_delay)
                await self.scroll_to_bottom(page)

        await self._capture_screenshot(page)
        reason = f"Failed to extract answer after {self._attempts} attempts."
        if last_error is not None:
            reason = f"{reason} Last error: {last_error}"
        else:
            reason = f"{reason} The response may not have loaded or the page layout changed."
        raise ExtractionFailed(reason)

    async def _attempt(self, page: Page) -> Optional[ExtractedAnswer]:
        clicked = await page.evaluate(OPEN_SOURCES_SCRIPT, EXTRACTION_CONFIG)
        if clicked is None or clicked < 0:
            logger.warning("No answer article found.")
            return None
        if clicked:
            logger.info(f"Opened {clicked} source toggle(s).")
        await self._sleep(self._settle_delay)

        payload = await page.evaluate(CLONE_ANSWER_SCRIPT, EXTRACTION_CONFIG)
        extracted = parse_answer(payload, page.url, self._min_chars)
        if extracted is None:
            logger.warning("Answer content empty or too short.")
        return extracted

    def _finalize(self, extracted: ExtractedAnswer, attempt: int) -> ExtractedAnswer:
        sources = merge_sources(extracted.sources, extract_urls(extracted.answer))
        logger.info(
            f"Extraction successful on attempt {attempt}: "
            f"answer {len(extracted.answer)} chars, {len(sources)} source(s)"
        )
        return ExtractedAnswer(answer=extracted.answer, sources=sources)

    async def scroll_to_bottom(self, page: Page):
        """Scroll down to trigger lazy rendering. Failures are only logged."""
        try:
            await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            await self._sleep(self._scroll_delay)
        except Exception as e:
            logger.warning(f"Error scrolling: {e}")

    async def _capture_screenshot(self, page: Page):
        path = self._debug_dir / f"extraction-failure-{datetime.now():%Y%m%d-%H%M%S}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
            logger.info(f"Debug screenshot saved to {path}")
        except Exception as e:
            logger.warning(f"Could not take screenshot: {e}")
