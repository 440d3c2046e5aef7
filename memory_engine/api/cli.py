"""
Interactive CLI adapter for the memory engine.

Architectural role:
- Exposes terminal interaction over one `EnhancedRAGMemoryManager`.
- Provides startup observability for the active backend and embedding mode.
- Delegates all storage, ranking and analytics to the engine.

Request lifecycle (per line, CLI):
1. Read stdin.
2. Split into a command word and its argument text.
3. Dispatch to the matching engine call.
4. Print formatted results.

Commands:
- `add [type] <text>`: store a memory (type defaults to `conversation`).
- `search <query>`: semantic search, printed as context blocks.
- `notes` / `tasks` / `facts`: type-partitioned listings.
- `speakers`, `stats <speaker>`: speaker analytics.
- `today`: memories created since local midnight.
- `info`: backend and embedding mode.
- `clear`: delete every memory.
- `exit` / `quit`: leave the loop.

Error handling strategy:
- Empty input is ignored.
- Unknown speakers and invalid input print a message and keep the loop running.
- EOF and keyboard interrupts terminate the loop without traceback output.
"""

from dotenv import load_dotenv

load_dotenv()

import asyncio
import logging
import os
import sys

from memory_engine.memory.enhanced_rag_memory_manager import EnhancedRAGMemoryManager
from memory_engine.memory.errors import UnknownSpeakerError
from memory_engine.memory.types import Memory, MemoryType

SPEAKER = os.getenv("MEMORY_CLI_SPEAKER", "user")
PERSONA = os.getenv("MEMORY_CLI_PERSONA", "default")


# =========================================================
# UTF-8 SAFE OUTPUT
# Best-effort stdout encoding normalization for interactive terminals.
# =========================================================

if hasattr(sys.stdout, "reconfigure"):
    try:
        sys.stdout.reconfigure(encoding="utf-8", errors="ignore")
    except (AttributeError, OSError, ValueError):
        pass


# =========================================================
# FORMATTING
# =========================================================

def format_memory_line(memory: Memory) -> str:
    metadata = memory.metadata
    return (
        f"[{metadata.get('type', '?')}] "
        f"{metadata.get('timestamp', '')[:19]} "
        f"{metadata.get('speaker', '')}: {memory.text} "
        f"(importance {memory.importance})"
    )


def print_memories(memories: list[Memory], empty: str = "Nothing stored.") -> None:
    if not memories:
        print(empty)
        return
    for memory in memories:
        print(f" - {format_memory_line(memory)}")


def split_add_argument(argument: str) -> tuple[MemoryType, str]:
    """Return `(type, text)` for `add [type] <text>`."""
    head, _, rest = argument.partition(" ")
    try:
        memory_type = MemoryType(head.lower())
    except ValueError:
        return MemoryType.CONVERSATION, argument
    return memory_type, rest.strip()


# =========================================================
# COMMAND DISPATCH
# =========================================================

async def run_command(engine: EnhancedRAGMemoryManager, command: str, argument: str) -> None:
    """Execute one CLI command against `engine`."""

    if command == "add":
        memory_type, text = split_add_argument(argument)
        if not text:
            print("Usage: add [type] <text>")
            return
        memory_id = await engine.add_memory(text, SPEAKER, memory_type, PERSONA)
        print(f"Stored {memory_type.value} memory {memory_id}")

    elif command == "search":
        if not argument:
            print("Usage: search <query>")
            return
        results = await engine.retrieve_relevant_memories(argument)
        print(engine.format_memories_for_context(results))

    elif command == "notes":
        print_memories(await engine.get_notes(), "No notes.")

    elif command == "tasks":
        print_memories(await engine.get_tasks(), "No tasks.")

    elif command == "facts":
        print_memories(await engine.get_facts(), "No facts.")

    elif command == "speakers":
        speakers = await engine.get_speakers()
        print(", ".join(speakers) if speakers else "No speakers.")

    elif command == "stats":
        if not argument:
            print("Usage: stats <speaker>")
            return
        try:
            stats = await engine.get_speaker_stats(argument)
        except UnknownSpeakerError as exc:
            print(exc)
            return
        print(f"Speaker: {stats.speaker}")
        print(f"Messages: {stats.message_count}")
        print(f"First seen: {stats.first_seen.astimezone():%Y-%m-%d %H:%M:%S}")
        print(f"Last seen: {stats.last_seen.astimezone():%Y-%m-%d %H:%M:%S}")
        print(f"Average importance: {stats.average_importance:.1f}")

    elif command == "today":
        print_memories(await engine.get_memories_today(), "Nothing stored today.")

    elif command == "info":
        info = engine.get_storage_info()
        print(f"Storage: {info['type']}")
        print(f"Embeddings: {info['embedding_type']}")
        print(f"Ready: {info['ready']}")

    elif command == "clear":
        await engine.clear_all_memories()
        print("All memories cleared.")

    else:
        print(f"Unknown command: {command}")
        print("Commands: add, search, notes, tasks, facts, speakers, stats, today, info, clear, exit")


# =========================================================
# MAIN
# =========================================================

def main():
    """
    Run the interactive memory shell.

    Error handling strategy:
    - Startup always succeeds; backend and embedding problems degrade to the
      local fallback and are reported by `info`.
    - EOF/interrupt are handled without stack traces.
    """
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "WARNING").upper())

    engine = EnhancedRAGMemoryManager()
    asyncio.run(engine.initialize())

    info = engine.get_storage_info()
    print("Memory shell started. (Type 'exit' to quit)")
    print(f"Storage: {info['type']} | Embeddings: {info['embedding_type']}")
    print("-" * 60)

    while True:

        try:
            line = input("memory> ").strip()

        except EOFError:
            print()
            break

        except KeyboardInterrupt:
            print("\nOperation cancelled by user.")
            break

        if not line:
            continue

        command, _, argument = line.partition(" ")
        command = command.lower()

        if command in ("exit", "quit"):
            print("Shutting down.")
            break

        try:
            asyncio.run(run_command(engine, command, argument.strip()))
        except ValueError as exc:
            print(f"Invalid input: {exc}")


if __name__ == "__main__":
    main()
