"""
Log relay - copy a child process's output stream into a file in the background

Relays are fire-and-forget: the spawner never awaits them, and a failing
relay only logs. Finished or not, they never affect the child process.
"""

import asyncio
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192

# asyncio only keeps weak references to tasks
_background_tasks: set = set()


async def _copy(source: asyncio.StreamReader, target_path: Path):
    # opened on the loop so a cancelled relay can never drop the handle
    with open(target_path, 'wb') as f:
        while True:
            chunk = await source.read(CHUNK_SIZE)
            if not chunk:
                break
            await asyncio.to_thread(f.write, chunk)


async def _relay(source: asyncio.StreamReader, target_path: Path):
    try:
        await _copy(source, target_path)
    except OSError as e:
        logger.error("failed to transfer logs to: %s: %s", target_path, e)


def relay_to_file(source: asyncio.StreamReader, target_path) -> None:
    """Start copying source into target_path (created or truncated)."""
    task = asyncio.get_running_loop().create_task(_relay(source, Path(target_path)))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def active_relays() -> set:
    return set(_background_tasks)


async def flush_relays(timeout: float = 1.0):
    """Give outstanding relays up to timeout seconds to finish."""
    loop = asyncio.get_running_loop()
    pending = {task for task in active_relays() if task.get_loop() is loop}
    if not pending:
        return
    _, still_pending = await asyncio.wait(pending, timeout=timeout)
    if still_pending:
        logger.debug("%d log relay(s) still running at exit", len(still_pending))
