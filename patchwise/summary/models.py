"""Change summary shown to the user for a proposal."""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Confidence = Literal["high", "medium", "low"]

MAX_TITLE = 80
MAX_BULLETS = 8
MAX_RISKS = 4


class FileChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    change: str


class ChangeSummary(BaseModel):
    """``files`` is always filled from ground truth, never from model output."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = "Changes applied"
    what_changed: List[str] = Field(default_factory=list, alias="whatChanged")
    behavior_after: List[str] = Field(default_factory=list, alias="behaviorAfter")
    files: List[FileChange] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    confidence: Confidence = "medium"

    @field_validator("title", mode="before")
    @classmethod
    def clip_title(cls, v):
        if not isinstance(v, str) or not v.strip():
            return "Changes applied"
        return v.strip()[:MAX_TITLE]

    @field_validator("what_changed", "behavior_after", mode="before")
    @classmethod
    def clip_bullets(cls, v):
        if not isinstance(v, list):
            return []
        return [x for x in v if isinstance(x, str)][:MAX_BULLETS]

    @field_validator("risks", mode="before")
    @classmethod
    def clip_risks(cls, v):
        if not isinstance(v, list):
            return []
        return [x for x in v if isinstance(x, str)][:MAX_RISKS]
