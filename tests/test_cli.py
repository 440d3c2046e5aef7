from memory_engine.api.cli import run_command, split_add_argument
from memory_engine.memory.types import MemoryType


def test_split_add_argument():
    assert split_add_argument("fact I love hiking") == (MemoryType.FACT, "I love hiking")
    assert split_add_argument("Task buy milk") == (MemoryType.TASK, "buy milk")
    assert split_add_argument("hello there") == (MemoryType.CONVERSATION, "hello there")


async def test_commands_round_trip(local_engine, capsys):
    await run_command(local_engine, "add", "fact I love hiking")
    await run_command(local_engine, "add", "note Meeting at 3pm")
    capsys.readouterr()

    await run_command(local_engine, "facts", "")
    assert "I love hiking" in capsys.readouterr().out

    await run_command(local_engine, "search", "Meeting at 3pm")
    assert "Content: Meeting at 3pm" in capsys.readouterr().out

    await run_command(local_engine, "stats", "nobody")
    assert "No memories found for speaker: nobody" in capsys.readouterr().out

    await run_command(local_engine, "clear", "")
    await run_command(local_engine, "notes", "")
    assert "No notes." in capsys.readouterr().out
