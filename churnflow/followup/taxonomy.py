"""
Churn reason taxonomy.

Maps a free-text churn reason onto the classes that drive the follow-up
workflow, and onto the controlled/uncontrolled split used in reporting.
Every consumer receives a `ReasonTaxonomy` instance; nothing else in the
package holds reason lists.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, StrictStr, ValidationError, field_validator

logger = logging.getLogger("churnflow.followup.taxonomy")


class ReasonClass(str, Enum):
    NO_RESPONSE = "no_response"
    TERMINAL = "terminal"
    OTHER = "other"


class ControlledStatus(str, Enum):
    CONTROLLED = "Controlled"
    UNCONTROLLED = "Uncontrolled"
    UNKNOWN = "Unknown"


NO_RESPONSE_REASONS = (
    "I don't know",
    "KAM needs to respond",
)

TERMINAL_REASONS = (
    "Outlet once out of Sync- now Active",
    "Renewal Payment Overdue",
    "Temporarily Closed (Renovation / Relocation/Internet issue)",
    "Permanently Closed (Outlet/brand)",
    "Event Account / Demo Account",
    "Switched to Another POS",
    "Ownership Transferred",
)

CONTROLLED_REASONS = (
    "KAM needs to respond",
    "I don't know",
    "Temporarily Closed (Renovation / Relocation/Internet issue)",
    "Switched to Another POS",
    "Ownership Transferred",
    "Renewal Payment Overdue",
)

UNCONTROLLED_REASONS = (
    "Outlet once out of Sync- now Active",
    "Permanently Closed (Outlet/brand)",
    "Event Account / Demo Account",
)


@dataclass(frozen=True)
class ReasonTaxonomy:
    """Immutable, versioned set of reason lists."""

    version: str
    no_response: tuple[str, ...]
    terminal: tuple[str, ...]
    controlled: tuple[str, ...]
    uncontrolled: tuple[str, ...]

    def classify(self, reason: Optional[str]) -> ReasonClass:
        """Classify a reason.

        Blank and placeholder reasons are NO_RESPONSE (exact match only).
        Terminal outcomes match exactly or as a case-insensitive substring.
        """
        text = (reason or "").strip()
        if not text or text in self.no_response:
            return ReasonClass.NO_RESPONSE
        lowered = text.lower()
        if any(t.lower() in lowered for t in self.terminal):
            return ReasonClass.TERMINAL
        return ReasonClass.OTHER

    def is_no_response(self, reason: Optional[str]) -> bool:
        return self.classify(reason) == ReasonClass.NO_RESPONSE

    def is_terminal(self, reason: Optional[str]) -> bool:
        return self.classify(reason) == ReasonClass.TERMINAL

    def controlled_status(self, reason: Optional[str]) -> ControlledStatus:
        text = (reason or "").strip()
        if not text:
            return ControlledStatus.UNKNOWN

        if text in self.controlled:
            return ControlledStatus.CONTROLLED
        if text in self.uncontrolled:
            return ControlledStatus.UNCONTROLLED

        lowered = text.lower()
        if any(r.lower() in lowered for r in self.controlled):
            return ControlledStatus.CONTROLLED
        if any(r.lower() in lowered for r in self.uncontrolled):
            return ControlledStatus.UNCONTROLLED
        return ControlledStatus.UNKNOWN

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "no_response": list(self.no_response),
            "terminal": list(self.terminal),
            "controlled": list(self.controlled),
            "uncontrolled": list(self.uncontrolled),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReasonTaxonomy":
        """Build a taxonomy from parsed JSON. Raises ValueError if malformed."""
        try:
            parsed = TaxonomyFile.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Invalid reason taxonomy: {e}") from e
        return cls(
            version=parsed.version,
            no_response=tuple(parsed.no_response),
            terminal=tuple(parsed.terminal),
            controlled=tuple(parsed.controlled),
            uncontrolled=tuple(parsed.uncontrolled),
        )


class TaxonomyFile(BaseModel):
    """Shape of a taxonomy override file."""

    version: str
    no_response: list[StrictStr] = Field(min_length=1)
    terminal: list[StrictStr] = Field(min_length=1)
    controlled: list[StrictStr] = Field(default_factory=list)
    uncontrolled: list[StrictStr] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def version_as_text(cls, v):
        return str(v) if isinstance(v, (int, float)) else v

    @field_validator("no_response", "terminal", "controlled", "uncontrolled")
    @classmethod
    def no_blank_entries(cls, v: list[str]) -> list[str]:
        # A blank entry would match every reason as a substring
        entries = [item.strip() for item in v]
        if any(not item for item in entries):
            raise ValueError("reason lists cannot contain blank entries")
        return entries


DEFAULT_TAXONOMY = ReasonTaxonomy(
    version="2025.1",
    no_response=NO_RESPONSE_REASONS,
    terminal=TERMINAL_REASONS,
    controlled=CONTROLLED_REASONS,
    uncontrolled=UNCONTROLLED_REASONS,
)


def load_taxonomy(path: Path) -> ReasonTaxonomy:
    """Load a taxonomy from a JSON file."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    taxonomy = ReasonTaxonomy.from_dict(data)
    logger.info("Loaded reason taxonomy %s from %s", taxonomy.version, path)
    return taxonomy


_taxonomy: Optional[ReasonTaxonomy] = None


def get_taxonomy() -> ReasonTaxonomy:
    """Get the configured taxonomy (file override or the built-in default)."""
    global _taxonomy
    if _taxonomy is None:
        from ..config import settings

        path = settings.followup.taxonomy_path
        _taxonomy = load_taxonomy(path) if path else DEFAULT_TAXONOMY
    return _taxonomy
