"""
Change watcher - turn bursts of filesystem events into rebuild triggers

The watchdog observer runs on its own thread and only pushes paths into an
asyncio queue. triggers() filters those paths and debounces them: after the
first relevant change it keeps draining changes until DEBOUNCE_SECS have
passed, then yields a single time.monotonic() timestamp.
"""

import asyncio
import logging
import os
import time
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from stackctl.errors import WatchError
from stackctl.workspace import DATA_DIR_NAME

logger = logging.getLogger(__name__)

DEBOUNCE_SECS = 0.1

TARGET_SEGMENT = 'target'
SOURCE_SEGMENT = 'src'

# Reads are not changes; cargo and trunk open sources all the time
_IGNORED_EVENT_TYPES = {'opened', 'closed_no_write'}


def is_relevant(path, root=None) -> bool:
    """Coarse filter: only files below a src/ directory, outside target/ and .stackable/"""
    path = Path(path)
    if root is not None:
        try:
            path = path.relative_to(root)
        except ValueError:
            pass
    parts = path.parts
    if TARGET_SEGMENT in parts or DATA_DIR_NAME in parts:
        return False
    return SOURCE_SEGMENT in parts[:-1]


class _PathForwarder(FileSystemEventHandler):
    """Runs on the observer thread"""

    def __init__(self, push):
        super().__init__()
        self._push = push

    def on_any_event(self, event):
        if event.event_type in _IGNORED_EVENT_TYPES:
            return
        paths = [event.src_path]
        dest_path = getattr(event, 'dest_path', '')
        if dest_path:
            paths.append(dest_path)
        for p in paths:
            try:
                self._push(os.fsdecode(p))
            except RuntimeError:
                # event loop already closed
                return


class ChangeWatcher:
    """Recursive watch of the workspace producing debounced rebuild triggers"""

    def __init__(self, root, debounce: float = DEBOUNCE_SECS):
        self.root = Path(root)
        self.debounce = debounce
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop = None
        self._observer = None

    def start(self):
        """Start watching. Must be called from the event loop."""
        self._loop = asyncio.get_running_loop()
        observer = Observer()
        try:
            observer.schedule(_PathForwarder(self.push), str(self.root), recursive=True)
            observer.start()
        except OSError as e:
            raise WatchError(f"failed to watch workspace {self.root}: {e}") from e
        self._observer = observer
        logger.debug("watching %s", self.root)

    def push(self, path):
        """Report a changed path. Safe to call from any thread."""
        if self._loop is None:
            self._queue.put_nowait(path)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, path)

    def stop(self):
        """Stop the observer and end the trigger stream."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=2.0)
            self._observer = None
        self.push(None)

    async def _next_relevant(self):
        """Next relevant path, or None once the stream has ended."""
        while True:
            path = await self._queue.get()
            if path is None:
                # leave the end marker for later readers
                self._queue.put_nowait(None)
                return None
            if is_relevant(path, self.root):
                return path

    async def triggers(self):
        """Yield one timestamp per burst of relevant changes."""
        while True:
            first = await self._next_relevant()
            if first is None:
                return
            logger.debug("change detected: %s", first)

            timer = asyncio.ensure_future(asyncio.sleep(self.debounce))
            next_path = None
            try:
                while True:
                    next_path = asyncio.ensure_future(self._next_relevant())
                    done, _ = await asyncio.wait(
                        {timer, next_path}, return_when=asyncio.FIRST_COMPLETED
                    )
                    if next_path in done and next_path.result() is None:
                        return
                    if timer in done:
                        break
            finally:
                timer.cancel()
                if next_path is not None and not next_path.done():
                    next_path.cancel()

            yield time.monotonic()
