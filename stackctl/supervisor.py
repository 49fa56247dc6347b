"""
Process supervisor - build, start and health-check the backend server

serve_once() builds both parts, starts the copied backend binary with the
runtime metadata in STACKCTL_META and polls its listen address until it
answers with a 2xx. The poll is raced against the process exiting, so a
backend that dies during startup is reported instead of polled forever.
"""

import asyncio
import logging
import os
from asyncio import subprocess
from dataclasses import dataclass
from pathlib import Path

import aiohttp
import orjson

from stackctl.config import StackctlConfig
from stackctl.errors import ServerError
from stackctl.indicators import ServeProgress
from stackctl.pipeline import BuildPipeline

logger = logging.getLogger(__name__)

META_ENV = 'STACKCTL_META'
POLL_INTERVAL_SECS = 1.0
PROBE_TIMEOUT_SECS = 1.0


@dataclass(frozen=True)
class RuntimeMetadata:
    """What the backend needs to know about the dev build"""
    listen_addr: str
    frontend_dev_build_dir: Path

    def to_json(self) -> str:
        return orjson.dumps({
            'listen_addr': self.listen_addr,
            'frontend_dev_build_dir': str(self.frontend_dev_build_dir),
        }).decode('utf-8')


@dataclass
class ServerHandle:
    """A running backend process"""
    process: subprocess.Process
    listen_addr: str
    artifact: Path

    @property
    def url(self) -> str:
        return f"http://{self.listen_addr}/"

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    async def kill(self):
        """Kill (no graceful signal) and reap the process."""
        if self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
            except OSError as e:
                raise ServerError(f"failed to stop server: {e}") from e
        await self.process.wait()


async def probe(session: aiohttp.ClientSession, url: str) -> bool:
    """True if url answers with a 2xx"""
    try:
        async with session.get(url) as resp:
            return 200 <= resp.status < 300
    except (aiohttp.ClientError, asyncio.TimeoutError):
        return False


async def wait_until_ready(url: str, interval: float = POLL_INTERVAL_SECS,
                           timeout: float = PROBE_TIMEOUT_SECS):
    """Poll url until it is healthy. No overall deadline."""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(timeout=client_timeout) as session:
        while not await probe(session, url):
            await asyncio.sleep(interval)


class ProcessSupervisor:
    """Owns starting the backend for each dev iteration"""

    def __init__(self, config: StackctlConfig, pipeline: BuildPipeline | None = None,
                 poll_interval: float = POLL_INTERVAL_SECS):
        self.config = config
        self.pipeline = pipeline or BuildPipeline(config)
        self.poll_interval = poll_interval

    @property
    def listen_addr(self) -> str:
        return self.config.manifest.dev_server.listen

    async def _spawn(self, artifact: Path, meta: RuntimeMetadata):
        env = {**os.environ, META_ENV: meta.to_json()}
        try:
            return await asyncio.create_subprocess_exec(
                str(artifact),
                cwd=self.config.workspace_dir,
                env=env,
                stdin=subprocess.DEVNULL,
            )
        except OSError as e:
            raise ServerError(f"failed to start {artifact}: {e}") from e

    async def _wait_ready(self, handle: ServerHandle):
        ready = asyncio.ensure_future(wait_until_ready(handle.url, self.poll_interval))
        exited = asyncio.ensure_future(handle.process.wait())
        try:
            done, _ = await asyncio.wait({ready, exited}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (ready, exited):
                if not task.done():
                    task.cancel()

        if ready in done:
            ready.result()
            return
        raise ServerError(
            f"{self.config.bin_name} exited with status {handle.process.returncode} before becoming ready"
        )

    async def serve_once(self) -> ServerHandle:
        """Build both parts and start the backend; returns once it is healthy."""
        progress = ServeProgress()
        self.pipeline.progress = progress
        try:
            self.pipeline.new_session()

            progress.step_build_frontend()
            frontend_dir = await self.pipeline.build_frontend()

            progress.step_build_backend()
            artifact = await self.pipeline.build_backend(frontend_dir)

            meta = RuntimeMetadata(listen_addr=self.listen_addr, frontend_dev_build_dir=frontend_dir)

            progress.step_starting()
            handle = ServerHandle(
                process=await self._spawn(artifact, meta),
                listen_addr=self.listen_addr,
                artifact=artifact,
            )
            logger.debug("started %s (pid %s)", artifact, handle.process.pid)

            try:
                await self._wait_ready(handle)
            except (Exception, asyncio.CancelledError):
                await handle.kill()
                raise
        finally:
            progress.hide()
            self.pipeline.progress = None

        return handle
