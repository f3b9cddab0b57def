"""ChatGPT URLs, CSS selectors, DOM text markers and file conventions."""

# ── URLs ─────────────────────────────────────────────────────────────────────

CHATGPT_BASE = "https://chatgpt.com"
CHATGPT_LOGIN_URL = "https://auth.openai.com/log-in"

# Hosts whose links are never reported as answer sources
INTERNAL_HOSTS = ("chatgpt.com", "openai.com")

# URL fragments that mean we are still on an auth page
AUTH_PATH_MARKERS = ("/auth", "/login", "/log-in", "/signup")

# ── CSS Selectors ────────────────────────────────────────────────────────────

SELECTORS = {
    "prompt_input": "#prompt-textarea",
    "stop_button": '[data-testid="stop-button"]',
    "article": "article",
    "answer_content": ".markdown, .prose",
    "citation_button": 'button[data-testid="source-citation-button"]',
    "source_toggle": 'button, div[role="button"], span[role="button"]',
    "modal": '[role="dialog"], .modal',
    "email_input": 'input[type="email"]',
    "password_input": 'input[type="password"]',
    "login_form": 'form[action*="auth"], form[action*="login"]',
}

# ── Login Detection ──────────────────────────────────────────────────────────

# Exact labels of login/signup controls (buttons and links)
LOGIN_CONTROL_LABELS = ["log in", "sign up", "log in or sign up", "sign up for free"]

# Phrases that mark a login prompt when they appear on a control or in a dialog
LOGIN_PROMPT_PHRASES = [
    "log in or sign up",
    "continue with google",
    "continue with apple",
    "continue with microsoft",
    "continue with phone",
]

# Dialog text shown to logged-out visitors after a few questions
LOGGED_OUT_MODAL_PHRASES = ["thanks for trying"]

STAY_LOGGED_OUT_TEXT = "stay logged out"

# ── Extraction ───────────────────────────────────────────────────────────────

# Labels of the "Searched N sites" / "Sources" toggles (English + Indonesian UI)
SOURCE_TOGGLE_PHRASES = ["searched", "sources", "telusuri", "sumber"]

# ── Launch Failures ──────────────────────────────────────────────────────────

TRANSPORT_ERROR_MARKERS = [
    "socket hang up",
    "econnreset",
    "connection reset",
    "websocket",
    "epipe",
    "broken pipe",
    "connection closed",
]

# Command-line flag of browsers started by Playwright's Firefox driver
AUTOMATION_PROCESS_FLAG = "-juggler-pipe"

# ── Session Store ────────────────────────────────────────────────────────────

# Firefox profile lock files (``lock`` is a dangling symlink on Linux)
PROFILE_LOCK_FILES = ["lock", ".parentlock", "parent.lock"]
PROFILE_COOKIE_STORE = "cookies.sqlite"

# ── Question Files ───────────────────────────────────────────────────────────

HEADER_KEYWORDS = ["question", "questions", "query", "queries", "text", "prompt", "input"]
