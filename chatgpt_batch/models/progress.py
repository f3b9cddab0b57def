"""Pydantic models for per-batch progress tracking."""

from __future__ import annotations

import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .result import ScrapeResult


class ProgressStatus(str, Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    WAITING = "waiting"
    COMPLETED = "completed"
    ERROR = "error"
    FINISHED = "finished"


class ProgressSnapshot(BaseModel):
    """What a progress reader sees. Serialized in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    current: int
    total: int
    progress_percent: float
    elapsed_ms: int
    estimated_remaining_ms: Optional[int] = None
    current_question: Optional[str] = None
    status: ProgressStatus


class ProgressRecord(BaseModel):
    """Mutable progress of one batch, keyed by session id in the store."""

    current: int = 0
    total: int = 0
    start_time: float = Field(default_factory=time.time)
    current_question: Optional[str] = None
    status: ProgressStatus = ProgressStatus.STARTING
    results: list[ScrapeResult] = Field(default_factory=list)

    def snapshot(self, now: Optional[float] = None) -> ProgressSnapshot:
        now = time.time() if now is None else now
        elapsed_ms = max(0, int((now - self.start_time) * 1000))
        percent = (self.current / self.total) * 100 if self.total > 0 else 0.0

        remaining = None
        if self.current > 0:
            remaining = round((elapsed_ms / self.current) * (self.total - self.current))

        return ProgressSnapshot(
            current=self.current,
            total=self.total,
            progress_percent=percent,
            elapsed_ms=elapsed_ms,
            estimated_remaining_ms=remaining,
            current_question=self.current_question,
            status=self.status,
        )
