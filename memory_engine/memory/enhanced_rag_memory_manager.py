"""Analytics views layered on the memory engine.

Architectural role:
    Adds type-partitioned listings, speaker analytics, calendar queries, tag search
    and recency-boosted re-ranking on top of `RAGMemoryManager`. Every view is
    computed in process from `get_all_memories()`; nothing here writes to storage,
    so the views behave the same on either backend.

Ordering rules:
    - Type listings: importance (or task priority) descending, then recency
      descending.
    - Speaker conversation replay and day buckets: chronological ascending.
    - Date-range queries: recency descending.
    - Time-boosted search: `score * recency_boost(age)` descending, where the boost
      is a fixed step function of age in days.

Speaker matching:
    Case-insensitive and whitespace-trimmed in every view here. Persona and type
    filters are exact.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Iterable

from memory_engine.memory.errors import UnknownSpeakerError
from memory_engine.memory.rag_memory_manager import RAGMemoryManager
from memory_engine.memory.types import (
    DEFAULT_IMPORTANCE,
    DEFAULT_TASK_PRIORITY,
    EnhancedSearchOptions,
    Memory,
    MemorySearchResult,
    MemoryType,
    SpeakerStats,
    parse_timestamp,
    timestamp_to_epoch,
    type_value,
)


logger = logging.getLogger(__name__)

# (max age in days, multiplier); ages at or beyond the last bound get the floor.
RECENCY_STEPS = ((1, 1.0), (2, 0.9), (7, 0.8), (30, 0.7), (90, 0.6))
RECENCY_FLOOR = 0.5


def normalize_speaker(speaker: str | None) -> str:
    return (speaker or "").strip().lower()


def recency_boost(age_days: float) -> float:
    """Step-function multiplier for a memory of the given age."""
    for bound, boost in RECENCY_STEPS:
        if age_days < bound:
            return boost
    return RECENCY_FLOOR


def _aware(value: datetime) -> datetime:
    """Treat naive datetimes as local wall-clock time."""
    return value if value.tzinfo is not None else value.astimezone()


def _numeric(value, default):
    return value if isinstance(value, (int, float)) and not isinstance(value, bool) and value else default


def _ranked(memories: Iterable[Memory], field: str = "importance", default=DEFAULT_IMPORTANCE) -> list[Memory]:
    return sorted(
        memories,
        key=lambda m: (
            -_numeric(m.metadata.get(field), default),
            -timestamp_to_epoch(m.metadata.get("timestamp")),
        ),
    )


def _newest_first(memories: Iterable[Memory]) -> list[Memory]:
    return sorted(memories, key=lambda m: timestamp_to_epoch(m.metadata.get("timestamp")), reverse=True)


def _oldest_first(memories: Iterable[Memory]) -> list[Memory]:
    return sorted(memories, key=lambda m: timestamp_to_epoch(m.metadata.get("timestamp")))


def _in_range(timestamp, start: datetime, end: datetime) -> bool:
    try:
        moment = parse_timestamp(timestamp)
    except (TypeError, ValueError):
        return False
    return start <= moment <= end


def _has_any_tag(metadata, wanted) -> bool:
    tags = metadata.get("tags")
    return isinstance(tags, list) and bool(wanted.intersection(tags))


def _narrow(
    memories: Iterable[Memory],
    speaker: str | None = None,
    persona: str | None = None,
    memory_type: MemoryType | str | None = None,
) -> list[Memory]:
    wanted_speaker = normalize_speaker(speaker) if speaker else None
    wanted_type = type_value(memory_type)
    return [
        m for m in memories
        if (not wanted_speaker or normalize_speaker(m.metadata.get("speaker")) == wanted_speaker)
        and (not persona or m.metadata.get("persona") == persona)
        and (not wanted_type or m.metadata.get("type") == wanted_type)
    ]


def _limited(memories: list[Memory], limit: int | None) -> list[Memory]:
    return memories[:limit] if limit else memories


class EnhancedRAGMemoryManager(RAGMemoryManager):
    """Memory engine with type, speaker, calendar and tag views."""

    async def _of_type(self, memory_type: MemoryType) -> list[Memory]:
        memories = await self.get_all_memories()
        return [m for m in memories if m.metadata.get("type") == memory_type.value]

    async def get_memories_by_type(self, memory_type: MemoryType | str) -> list[Memory]:
        wanted = type_value(memory_type)
        memories = await self.get_all_memories()
        return _newest_first(m for m in memories if m.metadata.get("type") == wanted)

    # ------------------------------------------------------------------
    # Type-partitioned views
    # ------------------------------------------------------------------
    async def get_notes(self, limit: int | None = None) -> list[Memory]:
        return _limited(_ranked(await self._of_type(MemoryType.NOTE)), limit)

    async def get_facts(self, limit: int | None = None) -> list[Memory]:
        return _limited(_ranked(await self._of_type(MemoryType.FACT)), limit)

    async def get_preferences(self, limit: int | None = None) -> list[Memory]:
        return _limited(_ranked(await self._of_type(MemoryType.PREFERENCE)), limit)

    async def get_reminders(self, active: bool = True) -> list[Memory]:
        """Reminders ranked by importance; `active` drops those whose date passed."""
        reminders = await self._of_type(MemoryType.REMINDER)

        if active:
            now = self.clock()
            kept = []
            for memory in reminders:
                reminder_date = memory.metadata.get("reminderDate")
                if not reminder_date:
                    kept.append(memory)
                    continue
                try:
                    if parse_timestamp(reminder_date) >= now:
                        kept.append(memory)
                except (TypeError, ValueError):
                    logger.warning("Unparsable reminderDate on %s: %r", memory.id, reminder_date)
                    kept.append(memory)
            reminders = kept

        return _ranked(reminders)

    async def get_tasks(self, limit: int | None = None) -> list[Memory]:
        """Tasks ranked by priority, then by last update (or creation) time."""
        tasks = await self._of_type(MemoryType.TASK)
        tasks.sort(
            key=lambda m: (
                -_numeric(m.metadata.get("priority"), DEFAULT_TASK_PRIORITY),
                -timestamp_to_epoch(m.metadata.get("updatedAt") or m.metadata.get("timestamp")),
            )
        )
        return _limited(tasks, limit)

    # ------------------------------------------------------------------
    # Speakers
    # ------------------------------------------------------------------
    async def get_speakers(self) -> list[str]:
        memories = await self.get_all_memories()
        return sorted({m.metadata["speaker"] for m in memories if m.metadata.get("speaker")})

    async def get_speaker_stats(self, speaker: str) -> SpeakerStats:
        """Message count, first/last seen and mean importance for one speaker.

        Raises:
            UnknownSpeakerError: When the speaker has no memories.
        """
        memories = _narrow(await self.get_all_memories(), speaker=speaker)
        if not memories:
            raise UnknownSpeakerError(speaker)

        moments = [parse_timestamp(m.metadata["timestamp"]) for m in memories]
        importances = [_numeric(m.metadata.get("importance"), DEFAULT_IMPORTANCE) for m in memories]

        return SpeakerStats(
            speaker=memories[0].metadata["speaker"],
            message_count=len(memories),
            first_seen=min(moments),
            last_seen=max(moments),
            average_importance=sum(importances) / len(importances),
        )

    async def get_memories_by_speaker(self, speaker: str, limit: int | None = None) -> list[Memory]:
        memories = _narrow(await self.get_all_memories(), speaker=speaker)
        return _limited(_newest_first(memories), limit)

    async def get_conversation_between(self, speaker_a: str, speaker_b: str) -> list[Memory]:
        """Both speakers' memories in chronological order."""
        wanted = {normalize_speaker(speaker_a), normalize_speaker(speaker_b)}
        memories = await self.get_all_memories()
        return _oldest_first(m for m in memories if normalize_speaker(m.metadata.get("speaker")) in wanted)

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------
    async def get_memories_in_date_range(
        self,
        start: datetime,
        end: datetime,
        *,
        speaker: str | None = None,
        persona: str | None = None,
        memory_type: MemoryType | str | None = None,
        limit: int | None = None,
    ) -> list[Memory]:
        """Memories with `start <= timestamp <= end`, newest first."""
        start, end = _aware(start), _aware(end)
        memories = await self.get_all_memories()
        in_range = [m for m in memories if _in_range(m.metadata.get("timestamp"), start, end)]
        narrowed = _narrow(in_range, speaker=speaker, persona=persona, memory_type=memory_type)
        return _limited(_newest_first(narrowed), limit)

    def _day_bounds(self, day_offset: int = 0) -> tuple[datetime, datetime]:
        local_now = self.clock().astimezone()
        day = local_now - timedelta(days=day_offset)
        start = day.replace(hour=0, minute=0, second=0, microsecond=0)
        end = day.replace(hour=23, minute=59, second=59, microsecond=999999)
        return start, end

    async def get_memories_today(self) -> list[Memory]:
        return await self.get_memories_in_date_range(*self._day_bounds(0))

    async def get_memories_yesterday(self) -> list[Memory]:
        return await self.get_memories_in_date_range(*self._day_bounds(1))

    async def get_memories_last_week(self) -> list[Memory]:
        now = self.clock()
        return await self.get_memories_in_date_range(now - timedelta(days=7), now)

    async def get_memories_by_day(self) -> dict[str, list[Memory]]:
        """Bucket memories by local calendar day (`YYYY-MM-DD`), oldest day first."""
        buckets: dict[str, list[Memory]] = {}
        for memory in await self.get_all_memories():
            try:
                key = parse_timestamp(memory.metadata.get("timestamp")).astimezone().date().isoformat()
            except (TypeError, ValueError):
                logger.warning("Skipping memory %s with unparsable timestamp", memory.id)
                continue
            buckets.setdefault(key, []).append(memory)

        return OrderedDict((day, _oldest_first(buckets[day])) for day in sorted(buckets))

    # ------------------------------------------------------------------
    # Tags and boosted search
    # ------------------------------------------------------------------
    async def search_by_tags(
        self,
        tags: Iterable[str],
        *,
        speaker: str | None = None,
        persona: str | None = None,
        memory_type: MemoryType | str | None = None,
        limit: int | None = None,
    ) -> list[Memory]:
        """Memories carrying any of `tags`, ranked by importance then recency."""
        wanted = set(tags)
        tagged = [
            m for m in await self.get_all_memories()
            if _has_any_tag(m.metadata, wanted)
        ]
        narrowed = _narrow(tagged, speaker=speaker, persona=persona, memory_type=memory_type)
        return _limited(_ranked(narrowed), limit)

    async def search_with_time_boost(
        self,
        query: str,
        options: EnhancedSearchOptions | None = None,
    ) -> list[MemorySearchResult]:
        """Semantic search re-ranked by a recency step function.

        Stage one is `retrieve_relevant_memories`; stage two multiplies each score
        by `recency_boost(age_days)` (when `time_boost`), drops results under
        `importance_threshold`, outside `date_range` or carrying none of `tags`,
        and re-sorts.
        """
        options = options or EnhancedSearchOptions(
            limit=self.config.search_limit,
            threshold=self.config.search_threshold,
        )
        results = await self.retrieve_relevant_memories(query, options.base_options())

        wanted_tags = set(options.tags or ())
        now = self.clock()
        if options.date_range:
            start, end = (_aware(d) for d in options.date_range)

        boosted = []
        for result in results:
            metadata = result.memory.metadata
            if options.importance_threshold is not None and (
                _numeric(metadata.get("importance"), DEFAULT_IMPORTANCE) < options.importance_threshold
            ):
                continue
            if options.date_range and not _in_range(metadata.get("timestamp"), start, end):
                continue
            if wanted_tags and not _has_any_tag(metadata, wanted_tags):
                continue

            score = result.score
            if options.time_boost:
                try:
                    age_days = (now - parse_timestamp(metadata.get("timestamp"))).total_seconds() / 86400
                except (TypeError, ValueError):
                    age_days = float("inf")
                score *= recency_boost(age_days)
            boosted.append(MemorySearchResult(memory=result.memory, score=score))

        boosted.sort(key=lambda r: r.score, reverse=True)
        return boosted
