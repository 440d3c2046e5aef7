"""Task tracking on top of the memory engine.

Architectural role:
    Stores each task as a `task` memory whose text is `"{title}\\n\\n{description}"`
    so tasks are reachable by semantic search. Task state lives in metadata
    (`taskTitle`, `taskDescription`, `taskStatus`, `priority`, `dueDate`,
    `assignee`, `createdAt`, `updatedAt`, `completedAt`).

Status lifecycle:
    pending -> in_progress -> completed -> pending (toggle cycle); cancelled is
    only reachable through `update_task` and toggles back to pending.
    `completedAt` is stamped on the transition into completed and cleared whenever
    the status is anything else.

Failure model:
    - Invalid input (blank title/description/query, priority outside 1..5) raises
      `ValueError`.
    - Mutations on ids that are not stored tasks raise `TaskNotFoundError`.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from memory_engine.memory.enhanced_rag_memory_manager import EnhancedRAGMemoryManager
from memory_engine.memory.errors import TaskNotFoundError
from memory_engine.memory.types import (
    DEFAULT_TASK_PRIORITY,
    Memory,
    MemorySearchOptions,
    MemoryType,
    parse_timestamp,
)


logger = logging.getLogger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 5
SEARCH_THRESHOLD = 0.5

_UNSET: Any = object()


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


NEXT_STATUS = {
    TaskStatus.PENDING: TaskStatus.IN_PROGRESS,
    TaskStatus.IN_PROGRESS: TaskStatus.COMPLETED,
    TaskStatus.COMPLETED: TaskStatus.PENDING,
    TaskStatus.CANCELLED: TaskStatus.PENDING,
}

CLOSED_STATUSES = (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


@dataclass
class TaskFilters:
    status: TaskStatus | list[TaskStatus] | None = None
    assignee: str | None = None
    priority: int | None = None
    due_before: datetime | None = None
    due_after: datetime | None = None


@dataclass
class TaskSummary:
    id: str
    title: str
    status: TaskStatus
    priority: int
    due_date: str | None
    assignee: str
    created_at: str
    updated_at: str
    completed_at: str | None
    is_overdue: bool

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class TaskDetail(TaskSummary):
    description: str = ""


@dataclass
class TaskStatistics:
    total: int
    completed: int
    in_progress: int
    pending: int
    overdue: int
    completion_rate: float
    priority_distribution: dict[int, int] = field(default_factory=dict)


def validate_priority(priority: int) -> None:
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValueError(f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")


def _status(value) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        return TaskStatus.PENDING


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _due_moment(value) -> datetime | None:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        return None


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.astimezone()


def _due_within(memory: Memory, start: datetime | None = None, end: datetime | None = None) -> bool:
    due = _due_moment(memory.metadata.get("dueDate"))
    if due is None:
        return False
    return (start is None or due >= start) and (end is None or due <= end)


class TasksManager:
    """Task CRUD, semantic search and statistics over an analytics engine."""

    def __init__(self, engine: EnhancedRAGMemoryManager):
        self.engine = engine

    async def initialize(self) -> None:
        await self.engine.initialize()

    def _is_overdue(self, due_date, status: TaskStatus) -> bool:
        if status in CLOSED_STATUSES:
            return False
        due = _due_moment(due_date)
        return due is not None and due < self.engine.clock()

    def to_summary(self, memory: Memory) -> TaskSummary:
        metadata = memory.metadata
        status = _status(metadata.get("taskStatus"))
        due_date = metadata.get("dueDate") or None
        return TaskSummary(
            id=memory.id,
            title=metadata.get("taskTitle") or "Untitled Task",
            status=status,
            priority=metadata.get("priority") or DEFAULT_TASK_PRIORITY,
            due_date=due_date,
            assignee=metadata.get("assignee") or "user",
            created_at=metadata.get("createdAt") or metadata.get("timestamp"),
            updated_at=metadata.get("updatedAt") or metadata.get("timestamp"),
            completed_at=metadata.get("completedAt") or None,
            is_overdue=self._is_overdue(due_date, status),
        )

    def to_detail(self, memory: Memory) -> TaskDetail:
        summary = self.to_summary(memory)
        return TaskDetail(
            **summary.__dict__,
            description=memory.metadata.get("taskDescription") or memory.text,
        )

    async def _require_task(self, task_id: str) -> Memory:
        memory = await self.engine.get_memory_by_id(task_id)
        if memory is None or memory.metadata.get("type") != MemoryType.TASK.value:
            raise TaskNotFoundError(task_id)
        return memory

    # ------------------------------------------------------------------
    async def create_task(
        self,
        title: str,
        description: str,
        priority: int = DEFAULT_TASK_PRIORITY,
        due_date: datetime | None = None,
        assignee: str = "user",
    ) -> str:
        """Store a new pending task and return its id."""
        if not title or not title.strip():
            raise ValueError("Task title cannot be empty")
        if not description or not description.strip():
            raise ValueError("Task description cannot be empty")
        validate_priority(priority)

        timestamp = self.engine.clock().isoformat()
        task_id = await self.engine.add_memory(
            f"{title}\n\n{description}",
            "user",
            MemoryType.TASK,
            assignee,
            priority,
            {
                "taskTitle": title,
                "taskDescription": description,
                "taskStatus": TaskStatus.PENDING.value,
                "priority": priority,
                "dueDate": _iso(due_date),
                "assignee": assignee,
                "createdAt": timestamp,
                "updatedAt": timestamp,
                "completedAt": None,
            },
        )
        logger.info("Created task %s: %r", task_id, title)
        return task_id

    async def get_tasks(self, filters: TaskFilters | None = None) -> list[TaskSummary]:
        """Tasks ranked by priority then last update, narrowed by `filters`."""
        tasks = await self.engine.get_tasks()
        filters = filters or TaskFilters()

        if filters.status:
            statuses = filters.status if isinstance(filters.status, list) else [filters.status]
            wanted = {TaskStatus(s).value for s in statuses}
            tasks = [t for t in tasks if t.metadata.get("taskStatus") in wanted]

        if filters.assignee:
            tasks = [t for t in tasks if t.metadata.get("assignee") == filters.assignee]

        if filters.priority is not None:
            tasks = [t for t in tasks if t.metadata.get("priority") == filters.priority]

        if filters.due_before:
            before = _aware(filters.due_before)
            tasks = [t for t in tasks if _due_within(t, end=before)]

        if filters.due_after:
            after = _aware(filters.due_after)
            tasks = [t for t in tasks if _due_within(t, start=after)]

        return [self.to_summary(t) for t in tasks]

    async def get_task(self, task_id: str) -> TaskDetail | None:
        memory = await self.engine.get_memory_by_id(task_id)
        if memory is None or memory.metadata.get("type") != MemoryType.TASK.value:
            return None
        return self.to_detail(memory)

    async def update_task(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        status: TaskStatus | str | None = None,
        priority: int | None = None,
        due_date: datetime | None = _UNSET,
        assignee: str | None = None,
    ) -> None:
        """Apply the given changes; `due_date=None` clears the due date."""
        existing = await self._require_task(task_id)
        metadata = existing.metadata

        if priority is not None:
            validate_priority(priority)

        current_title = metadata.get("taskTitle") or ""
        current_description = metadata.get("taskDescription") or ""
        current_status = _status(metadata.get("taskStatus"))

        new_title = title if title is not None else current_title
        new_description = description if description is not None else current_description
        new_status = TaskStatus(status) if status is not None else current_status

        updated = existing.copy()
        if new_title != current_title or new_description != current_description:
            updated.text = f"{new_title}\n\n{new_description}"

        timestamp = self.engine.clock().isoformat()
        completed_at = metadata.get("completedAt")
        if new_status == TaskStatus.COMPLETED and current_status != TaskStatus.COMPLETED:
            completed_at = timestamp
        elif new_status != TaskStatus.COMPLETED:
            completed_at = None

        updated.metadata.update(
            {
                "taskTitle": new_title,
                "taskDescription": new_description,
                "taskStatus": new_status.value,
                "priority": priority if priority is not None else metadata.get("priority") or DEFAULT_TASK_PRIORITY,
                "dueDate": metadata.get("dueDate") if due_date is _UNSET else _iso(due_date),
                "assignee": assignee if assignee is not None else metadata.get("assignee") or "user",
                "updatedAt": timestamp,
                "completedAt": completed_at,
            }
        )

        await self.engine.update_memory(task_id, updated)
        logger.info("Updated task %s: %r", task_id, new_title)

    async def delete_task(self, task_id: str) -> None:
        await self._require_task(task_id)
        if not await self.engine.delete_memory(task_id):
            raise TaskNotFoundError(task_id)
        logger.info("Deleted task %s", task_id)

    async def search_tasks(self, query: str, limit: int = 10) -> list[TaskDetail]:
        if not query or not query.strip():
            raise ValueError("Search query cannot be empty")

        results = await self.engine.retrieve_relevant_memories(
            query,
            MemorySearchOptions(limit=limit, threshold=SEARCH_THRESHOLD, memory_type=MemoryType.TASK),
        )
        return [self.to_detail(r.memory) for r in results]

    async def toggle_task_status(self, task_id: str) -> TaskStatus:
        """Advance the task along the toggle cycle; return the new status."""
        task = await self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        new_status = NEXT_STATUS[task.status]
        await self.update_task(task_id, status=new_status)
        logger.info("Toggled task %s: %s -> %s", task_id, task.status.value, new_status.value)
        return new_status

    async def compute_statistics(self, filters: TaskFilters | None = None) -> TaskStatistics:
        tasks = await self.get_tasks(filters)
        total = len(tasks)
        completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)

        distribution: dict[int, int] = {}
        for task in tasks:
            distribution[task.priority] = distribution.get(task.priority, 0) + 1

        return TaskStatistics(
            total=total,
            completed=completed,
            in_progress=sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS),
            pending=sum(1 for t in tasks if t.status == TaskStatus.PENDING),
            overdue=sum(1 for t in tasks if t.is_overdue),
            completion_rate=(completed / total) * 100 if total else 0.0,
            priority_distribution=distribution,
        )
