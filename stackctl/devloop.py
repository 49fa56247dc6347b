"""
Dev loop - build, serve, wait for a change, stop, rebuild

    BUILDING -> SERVING -> WAITING -> STOPPING -> BUILDING ...
                           WAITING -> EXITED   (trigger stream ended)

A failed build does not end the loop: there is simply no server until a
change fixes it. At most one server is alive at any time.
"""

import asyncio
import logging
import time
import webbrowser
from enum import Enum
from pathlib import Path

from rich.markup import escape

from stackctl.config import StackctlConfig
from stackctl.errors import StackctlError, UnsupportedError, WorkspaceError
from stackctl.indicators import console, print_built
from stackctl.pipeline import BuildPipeline
from stackctl.utils import elapsed_secs

logger = logging.getLogger(__name__)


class LoopState(Enum):
    BUILDING = 'building'
    SERVING = 'serving'
    WAITING = 'waiting'
    STOPPING = 'stopping'
    EXITED = 'exited'


class DevLoop:
    """Rebuilds and restarts the backend whenever a trigger arrives"""

    def __init__(self, supervisor, triggers, url: str, open_browser: bool = False, opener=None):
        self.supervisor = supervisor
        self.triggers = triggers
        self.url = url
        self.open_browser = open_browser
        self.opener = opener or webbrowser.open
        self.state = LoopState.BUILDING
        self.handle = None
        self.iterations = 0
        self._opened = False

    def _print_started(self, secs: float):
        console.clear()
        print_built(secs)
        console.print("Stackable development server has started!")
        console.print()
        console.print()
        console.print(f"    Listen: {escape(self.url)}")
        console.print()
        console.print()
        console.print(
            "To produce a production build, you can use "
            "[bold cyan]`stackctl build --release`[/bold cyan]"
        )

    async def _build(self, start: float):
        self.state = LoopState.BUILDING
        self.iterations += 1
        try:
            handle = await self.supervisor.serve_once()
        except WorkspaceError:
            raise
        except (StackctlError, OSError) as e:
            logger.error("failed to build development server: %s", e)
            return None
        self._print_started(elapsed_secs(start))
        self.state = LoopState.SERVING
        return handle

    async def _open(self):
        self._opened = True
        opened = await asyncio.to_thread(self.opener, self.url)
        if opened is False:
            logger.warning("could not open a browser for %s", self.url)

    async def _wait_for_change(self, start: float) -> bool:
        """True on a trigger newer than start, False if the stream ended."""
        self.state = LoopState.WAITING
        while True:
            try:
                change_time = await anext(self.triggers)
            except StopAsyncIteration:
                return False
            if change_time > start:
                return True

    async def _stop(self):
        handle, self.handle = self.handle, None
        if handle is not None:
            await handle.kill()

    async def run(self):
        try:
            while True:
                start = time.monotonic()
                self.handle = await self._build(start)

                if self.open_browser and self.handle is not None and not self._opened:
                    await self._open()

                if not await self._wait_for_change(start):
                    self.state = LoopState.EXITED
                    break

                self.state = LoopState.STOPPING
                await self._stop()
        finally:
            await self._stop()


async def run_build(config: StackctlConfig, release: bool) -> Path:
    """One-shot release build into <workspace>/build"""
    if not release:
        raise UnsupportedError("building distributable in debug mode is not yet supported!")

    console.print("Building Release Distribution...", style='bold cyan')
    start = time.monotonic()

    pipeline = BuildPipeline(config)
    frontend_dir = await pipeline.build_frontend()
    backend_bin_path = await pipeline.build_backend(frontend_dir)

    print_built(elapsed_secs(start))
    console.print(f"The server binary is available at: {escape(str(backend_bin_path))}")
    return backend_bin_path
