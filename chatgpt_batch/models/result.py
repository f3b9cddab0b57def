"""Pydantic models for scraped answers."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

ERROR_PREFIX = "Error:"


class ScrapeResult(BaseModel):
    """One question with its answer text and comma-joined source URLs."""

    model_config = ConfigDict(frozen=True)

    question: str
    answer: str
    sources: str = ""

    @property
    def is_error(self) -> bool:
        return self.answer.startswith(ERROR_PREFIX)

    @classmethod
    def from_error(cls, question: str, error: BaseException) -> "ScrapeResult":
        message = str(error) or "Unknown error occurred"
        return cls(question=question, answer=f"{ERROR_PREFIX} {message}", sources="")


class ExtractedAnswer(BaseModel):
    """Answer text and source URLs read from the newest answer node."""

    answer: str
    sources: list[str] = Field(default_factory=list)

    @property
    def sources_joined(self) -> str:
        return ", ".join(self.sources)


class BatchSummary(BaseModel):
    """A finished batch as stored in the local history database."""

    id: str
    started_at: str
    finished_at: Optional[str] = None
    total: int = 0
    succeeded: int = 0
    failed: int = 0
