"""
ember/dialog/models.py — Inbound and outbound contracts of the disambiguation dialog.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ember.core.constants import EmberConstants as C


class InterpretationCandidate(BaseModel):
    """One possible reading of the user's speech. Immutable once received."""

    model_config = ConfigDict(frozen=True)

    text: str
    confidence: int = Field(ge=0, le=100)

    @field_validator("text")
    @classmethod
    def must_be_non_empty(cls, v: str) -> str:
        """
        Validate that the candidate text is not blank.

        Raises:
            ValueError: If the string is empty or whitespace-only.
        """
        if not v or not v.strip():
            raise ValueError("Candidate text must not be empty")
        return v


class DisambiguationRequest(BaseModel):
    """
    What the caller hands to the dialog.

    Candidates keep the caller's order (best first); they are never re-sorted.
    """

    original_message: str
    alternatives: list[InterpretationCandidate] = Field(min_length=1)
    auto_select_timeout_s: int = Field(default=C.AUTO_SELECT_TIMEOUT_S, ge=1)


class DialogOutcome(BaseModel):
    """The single result of a dialog lifecycle."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["confirmed", "cancelled"]
    text: Optional[str] = None

    @classmethod
    def confirmed(cls, text: str) -> "DialogOutcome":
        return cls(kind="confirmed", text=text)

    @classmethod
    def cancelled(cls) -> "DialogOutcome":
        return cls(kind="cancelled")
