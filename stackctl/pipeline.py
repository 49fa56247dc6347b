"""
Build pipeline - trunk for the frontend, cargo for the backend

Dev builds run quietly with their output relayed to log files. If a quiet
build fails it is run once more with output on the console so the failure
is visible. Release builds always print to the console and never retry.
"""

import asyncio
import logging
import os
import shutil
from asyncio import subprocess
from pathlib import Path

import orjson

from stackctl.config import StackctlConfig
from stackctl.errors import ArtifactError, BuildError
from stackctl.indicators import console
from stackctl.relay import relay_to_file
from stackctl.utils import random_str
from stackctl.workspace import (
    BACKEND,
    FRONTEND,
    backend_build_dir,
    ensure_dir,
    frontend_build_dir,
    log_path,
)

logger = logging.getLogger(__name__)

FRONTEND_BUILD_DIR_ENV = 'STACKABLE_FRONTEND_BUILD_DIR'
FRONTEND_ENTRY = 'index.html'


class BuildPipeline:
    """Runs the frontend and backend builds for one mode"""

    def __init__(self, config: StackctlConfig, progress=None):
        self.config = config
        self.progress = progress
        self.session_id = None

    @property
    def release(self) -> bool:
        return self.config.mode.is_release

    @property
    def layout(self):
        return self.config.layout

    def new_session(self) -> str | None:
        """Fresh build directories for the next dev iteration."""
        if not self.release:
            self.session_id = random_str()
        return self.session_id

    def binary_name(self) -> str:
        suffix = '.exe' if os.name == 'nt' else ''
        return f"{self.config.bin_name}{suffix}"

    def frontend_command(self, out_dir: Path) -> list:
        argv = [
            *self.config.manifest.toolchain.trunk,
            'build',
            '--dist', str(out_dir),
            str(self.layout.root / FRONTEND_ENTRY),
        ]
        if self.release:
            argv.append('--release')
        return argv

    def backend_command(self) -> list:
        argv = [*self.config.manifest.toolchain.cargo, 'build', '--bin', self.config.bin_name]
        if self.release:
            argv.append('--release')
        return argv

    async def _spawn(self, tool: str, argv: list, env, capture: bool):
        output = subprocess.PIPE if capture else None
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.layout.root,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=output,
            )
        except OSError as e:
            raise BuildError(tool, message=f"failed to run {argv[0]}: {e}") from e

    @staticmethod
    async def _wait(proc, waiter=None):
        try:
            return await (waiter if waiter is not None else proc.wait())
        except asyncio.CancelledError:
            # do not leave a compiler running behind a cancelled build
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

    async def run_tool(self, tool: str, argv: list, part: str, env=None):
        """Run one build command with the quiet-then-verbose policy."""
        capture = not self.release
        proc = await self._spawn(tool, argv, env, capture)

        if capture:
            data_dir = ensure_dir(self.layout.part_data_dir(part))
            relay_to_file(proc.stdout, log_path(self.layout, part, 'stdout', random_str()))
            relay_to_file(proc.stderr, log_path(self.layout, part, 'stderr', random_str()))
            logger.debug("%s logs in %s", tool, data_dir)

        returncode = await self._wait(proc)
        if returncode == 0:
            return

        if self.release:
            raise BuildError(tool, returncode)

        # Try again with logs printed to the console
        if self.progress is not None:
            self.progress.hide()
        console.print(f"[BUILD] {tool} failed with status {returncode}, re-running with output attached", style='yellow')
        proc = await self._spawn(tool, argv, env, capture=False)
        returncode = await self._wait(proc)
        if returncode != 0:
            raise BuildError(tool, returncode)

    async def build_frontend(self) -> Path:
        out_dir = ensure_dir(frontend_build_dir(self.layout, self.config.mode, self.session_id))
        await self.run_tool('trunk', self.frontend_command(out_dir), FRONTEND)
        return out_dir

    async def build_backend(self, frontend_dir) -> Path:
        out_dir = ensure_dir(backend_build_dir(self.layout, self.config.mode, self.session_id))
        env = {**os.environ, FRONTEND_BUILD_DIR_ENV: str(frontend_dir)}
        await self.run_tool('cargo', self.backend_command(), BACKEND, env=env)

        # Copy the artifact out of cargo's target directory
        profile = 'release' if self.release else 'debug'
        bin_path = await self.target_directory() / profile / self.binary_name()
        backend_bin_path = out_dir / self.binary_name()
        try:
            await asyncio.to_thread(shutil.copy2, bin_path, backend_bin_path)
        except OSError as e:
            raise ArtifactError(f"failed to copy binary {bin_path}: {e}") from e
        return backend_bin_path

    async def target_directory(self) -> Path:
        """Ask cargo where it puts build output."""
        argv = [*self.config.manifest.toolchain.cargo, 'metadata', '--format-version=1']
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.layout.root,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
            stdout, stderr = await self._wait(proc, proc.communicate())
        except OSError as e:
            raise ArtifactError(f"failed to read package metadata: {e}") from e

        if proc.returncode != 0:
            logger.debug("cargo metadata stderr: %s", stderr.decode(errors='replace'))
            raise ArtifactError(f"cargo metadata failed with status {proc.returncode}")

        try:
            meta = orjson.loads(stdout)
        except orjson.JSONDecodeError as e:
            raise ArtifactError(f"failed to parse package metadata: {e}") from e

        target_dir = meta.get('target_directory') if isinstance(meta, dict) else None
        if not isinstance(target_dir, str):
            raise ArtifactError("package metadata has no target_directory")
        return Path(target_dir)
