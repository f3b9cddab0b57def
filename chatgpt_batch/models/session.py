"""Pydantic models for page readiness and login state."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Readiness(str, Enum):
    """Classification of one DOM read."""

    USABLE = "usable"
    LOGIN_REQUIRED = "login_required"
    INDETERMINATE = "indeterminate"


class ReadinessSnapshot(BaseModel):
    """Flags read from the page in a single evaluation. Never persisted."""

    has_login_button: bool = False
    has_email_input: bool = False
    has_password_input: bool = False
    has_login_form: bool = False
    has_modal: bool = False
    has_login_modal: bool = False
    has_usable_input: bool = False
    url: str = ""

    @property
    def has_login_affordance(self) -> bool:
        return (
            self.has_login_button
            or self.has_email_input
            or self.has_password_input
            or self.has_login_modal
        )


class LoginStatus(BaseModel):
    """Result of the session-store heuristic, optionally verified live.

    ``conclusive`` is False when the profile files look fine but nobody has
    actually looked at the page yet.
    """

    is_logged_in: bool
    reason: str
    conclusive: bool = True


class LoginOutcome(BaseModel):
    """What the login flow reports back to the caller right away."""

    already_logged_in: bool
    message: str = ""


class SessionStatus(BaseModel):
    """Current state of the persistent scraping browser."""

    state: str = "not_running"  # not_running, idle, busy
    in_use: bool = False
    created_at: Optional[str] = None
    profile_exists: bool = False
    active_batches: int = 0
    batches_in_history: int = 0
