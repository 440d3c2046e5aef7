"""Data contracts shared by the memory subsystem.

Architectural role:
    Defines the atomic `Memory` record and the option/result structures passed
    between the engine, the storage backends and the analytics layer.

Serialization:
    `Memory.to_dict()` / `Memory.from_dict()` use the JSON shape
    `{"id", "text", "embedding", "metadata"}` shared by the local persistence blob
    and the HTTP adapter.

Timestamps:
    Creation timestamps are ISO-8601 strings. `parse_timestamp` accepts a trailing
    `Z` and treats naive values as UTC so comparisons are always between aware
    datetimes.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


DEFAULT_IMPORTANCE = 5
DEFAULT_TASK_PRIORITY = 3


class MemoryType(str, Enum):
    """Closed set of memory categories used by the analytics views."""

    CONVERSATION = "conversation"
    NOTE = "note"
    REMINDER = "reminder"
    PREFERENCE = "preference"
    FACT = "fact"
    TASK = "task"
    SYSTEM_STATUS = "system_status"


def type_value(memory_type: MemoryType | str | None) -> str | None:
    """Return the plain string form of a memory type (or `None`)."""
    if memory_type is None:
        return None
    if isinstance(memory_type, MemoryType):
        return memory_type.value
    return str(memory_type)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Args:
        value: ISO string (a trailing `Z` is accepted) or datetime.

    Returns:
        Timezone-aware datetime. Naive inputs are interpreted as UTC.

    Raises:
        ValueError: If the string is not ISO-8601.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_to_epoch(value: str | datetime | None) -> float:
    """Return epoch seconds for sort keys; unparsable values sort as oldest."""
    if not value:
        return 0.0
    try:
        return parse_timestamp(value).timestamp()
    except (TypeError, ValueError):
        return 0.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Memory:
    """One stored unit of text plus embedding plus metadata.

    Attributes:
        id: Globally unique id assigned at creation, never reused.
        text: Raw content.
        embedding: Vector, or `None` when the backend did not return vectors.
        metadata: Open map with required keys `speaker`, `timestamp`, `type`,
            `persona`, `importance` plus consumer-defined extras.
    """

    id: str
    text: str
    embedding: list[float] | None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def speaker(self) -> str:
        return str(self.metadata.get("speaker") or "")

    @property
    def timestamp(self) -> str:
        return str(self.metadata.get("timestamp") or "")

    @property
    def memory_type(self) -> str | None:
        return self.metadata.get("type")

    @property
    def persona(self) -> str | None:
        return self.metadata.get("persona")

    @property
    def importance(self) -> int | float:
        value = self.metadata.get("importance")
        return value if isinstance(value, (int, float)) and value else DEFAULT_IMPORTANCE

    def copy(self) -> "Memory":
        """Return a deep value copy safe to hand to callers."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "embedding": list(self.embedding) if self.embedding is not None else None,
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Memory":
        embedding = data.get("embedding")
        return cls(
            id=str(data["id"]),
            text=str(data.get("text", "")),
            embedding=[float(x) for x in embedding] if embedding is not None else None,
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class MemorySearchOptions:
    """Filtering and ranking options shared by both backends."""

    limit: int = 10
    threshold: float = 0.7
    speaker: str | None = None
    persona: str | None = None
    memory_type: MemoryType | str | None = None

    def where(self) -> dict[str, str]:
        """Return the equality filter map for the active attribute filters."""
        where: dict[str, str] = {}
        if self.speaker:
            where["speaker"] = self.speaker
        if self.persona:
            where["persona"] = self.persona
        if self.memory_type:
            where["type"] = type_value(self.memory_type)
        return where


@dataclass
class EnhancedSearchOptions(MemorySearchOptions):
    """Search options for recency-boosted re-ranking."""

    date_range: tuple[datetime, datetime] | None = None
    tags: list[str] | None = None
    time_boost: bool = True
    importance_threshold: float | None = None

    def base_options(self) -> MemorySearchOptions:
        return MemorySearchOptions(
            limit=self.limit,
            threshold=self.threshold,
            speaker=self.speaker,
            persona=self.persona,
            memory_type=self.memory_type,
        )


@dataclass
class MemorySearchResult:
    memory: Memory
    score: float


@dataclass
class SpeakerStats:
    speaker: str
    message_count: int
    first_seen: datetime
    last_seen: datetime
    average_importance: float
