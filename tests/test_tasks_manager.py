from datetime import timedelta

import pytest

from memory_engine.memory.errors import TaskNotFoundError
from memory_engine.memory.tasks_manager import TaskFilters, TasksManager, TaskStatus

from tests.conftest import NOW


@pytest.fixture
def tasks(engine):
    return TasksManager(engine)


async def test_create_task_stores_task_memory(tasks, engine):
    due = NOW + timedelta(days=2)
    task_id = await tasks.create_task("Buy milk", "From the corner store", priority=4, due_date=due, assignee="sam")

    memory = await engine.get_memory_by_id(task_id)
    assert memory.text == "Buy milk\n\nFrom the corner store"
    assert memory.metadata["type"] == "task"
    assert memory.metadata["speaker"] == "user"
    assert memory.metadata["persona"] == "sam"
    assert memory.metadata["importance"] == 4
    assert memory.metadata["taskStatus"] == "pending"
    assert memory.metadata["dueDate"] == due.isoformat()
    assert memory.metadata["createdAt"] == memory.metadata["updatedAt"] == NOW.isoformat()

    detail = await tasks.get_task(task_id)
    assert detail.title == "Buy milk"
    assert detail.description == "From the corner store"
    assert detail.status == TaskStatus.PENDING
    assert detail.completed_at is None
    assert detail.is_overdue is False


@pytest.mark.parametrize(
    "title, description, priority",
    [("", "desc", 3), ("   ", "desc", 3), ("title", "", 3), ("title", "desc", 0), ("title", "desc", 6)],
)
async def test_create_task_validation(tasks, title, description, priority):
    with pytest.raises(ValueError):
        await tasks.create_task(title, description, priority=priority)


async def test_toggle_cycle_sets_and_clears_completed_at(tasks, clock):
    task_id = await tasks.create_task("Write report", "Quarterly numbers")

    assert await tasks.toggle_task_status(task_id) == TaskStatus.IN_PROGRESS
    assert (await tasks.get_task(task_id)).completed_at is None

    clock.set(minutes=-30)
    assert await tasks.toggle_task_status(task_id) == TaskStatus.COMPLETED
    detail = await tasks.get_task(task_id)
    assert detail.completed_at == (NOW + timedelta(minutes=30)).isoformat()

    assert await tasks.toggle_task_status(task_id) == TaskStatus.PENDING
    assert (await tasks.get_task(task_id)).completed_at is None

    await tasks.update_task(task_id, status=TaskStatus.CANCELLED)
    assert await tasks.toggle_task_status(task_id) == TaskStatus.PENDING


async def test_update_task_reembeds_on_text_change(tasks, engine):
    task_id = await tasks.create_task("Call plumber", "Kitchen sink leaks")
    before = await engine.get_memory_by_id(task_id)

    await tasks.update_task(task_id, priority=5, due_date=None)
    same_text = await engine.get_memory_by_id(task_id)
    assert same_text.embedding == before.embedding
    assert same_text.metadata["priority"] == 5

    await tasks.update_task(task_id, title="Call electrician")
    after = await engine.get_memory_by_id(task_id)
    assert after.text == "Call electrician\n\nKitchen sink leaks"
    assert after.embedding != before.embedding

    with pytest.raises(ValueError):
        await tasks.update_task(task_id, priority=9)


async def test_unknown_task_ids(tasks, engine):
    note_id = await engine.add_memory("just a note", "user", "note", "NIRVANA")

    assert await tasks.get_task("missing") is None
    assert await tasks.get_task(note_id) is None
    with pytest.raises(TaskNotFoundError, match="Task with ID missing not found"):
        await tasks.update_task("missing", title="x")
    with pytest.raises(TaskNotFoundError):
        await tasks.delete_task(note_id)
    with pytest.raises(TaskNotFoundError):
        await tasks.toggle_task_status("missing")


async def test_delete_task(tasks):
    task_id = await tasks.create_task("Temporary", "Delete me")
    await tasks.delete_task(task_id)
    assert await tasks.get_task(task_id) is None


async def test_filters_and_statistics(tasks):
    overdue = await tasks.create_task("Overdue", "Late", priority=5, due_date=NOW - timedelta(days=1))
    soon = await tasks.create_task("Soon", "Next week", priority=2, due_date=NOW + timedelta(days=3), assignee="sam")
    done = await tasks.create_task("Done", "Finished", priority=2, due_date=NOW - timedelta(days=2))
    await tasks.create_task("Undated", "Whenever", priority=3)
    await tasks.update_task(done, status=TaskStatus.COMPLETED)

    pending = await tasks.get_tasks(TaskFilters(status=TaskStatus.PENDING))
    assert [t.title for t in pending] == ["Overdue", "Undated", "Soon"]
    assert [t.id for t in await tasks.get_tasks(TaskFilters(assignee="sam"))] == [soon]
    assert [t.id for t in await tasks.get_tasks(TaskFilters(due_before=NOW))] == [overdue, done]
    assert [t.id for t in await tasks.get_tasks(TaskFilters(due_after=NOW))] == [soon]

    stats = await tasks.compute_statistics()
    assert stats.total == 4
    assert stats.completed == 1
    assert stats.pending == 3
    assert stats.in_progress == 0
    assert stats.overdue == 1
    assert stats.completion_rate == 25.0
    assert stats.priority_distribution == {5: 1, 2: 2, 3: 1}


async def test_search_tasks(tasks, engine):
    task_id = await tasks.create_task("Buy milk", "From the corner store")
    await engine.add_memory("Buy milk\n\nFrom the corner store", "user", "note", "NIRVANA")

    results = await tasks.search_tasks("Buy milk\n\nFrom the corner store")
    assert [t.id for t in results] == [task_id]

    with pytest.raises(ValueError):
        await tasks.search_tasks("  ")
