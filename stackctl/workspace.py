"""
Workspace layout - where build outputs, dev builds and logs live

    <workspace>/build/{frontend,backend}                        release builds
    <workspace>/.stackable/{frontend,backend}/dev-builds/<id>   dev builds
    <workspace>/.stackable/{frontend,backend}/log-std*-<id>     dev build logs

Path helpers are pure; ensure_dir() is the only thing that touches disk.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from stackctl.errors import WorkspaceError

BUILD_DIR_NAME = 'build'
DATA_DIR_NAME = '.stackable'
DEV_BUILDS_DIR_NAME = 'dev-builds'

FRONTEND = 'frontend'
BACKEND = 'backend'


class Mode(Enum):
    """What a run produces"""
    SERVE = 'serve'
    BUILD_RELEASE = 'build-release'

    @property
    def is_release(self) -> bool:
        return self is Mode.BUILD_RELEASE


@dataclass(frozen=True)
class WorkspaceLayout:
    """Directory containing stackable.toml"""
    root: Path

    @classmethod
    def from_manifest_path(cls, manifest_path) -> 'WorkspaceLayout':
        try:
            resolved = Path(manifest_path).resolve(strict=True)
        except OSError as e:
            raise WorkspaceError(f"failed to find workspace directory from {manifest_path}: {e}") from e
        return cls(root=resolved.parent)

    @property
    def build_dir(self) -> Path:
        return self.root / BUILD_DIR_NAME

    @property
    def data_dir(self) -> Path:
        return self.root / DATA_DIR_NAME

    def part_data_dir(self, part: str) -> Path:
        """.stackable/<part>, holds dev builds and logs of one part"""
        return self.data_dir / part


def part_build_dir(layout: WorkspaceLayout, mode: Mode, part: str, session_id: str | None) -> Path:
    """Output directory of one part for a mode and session."""
    if mode.is_release:
        return layout.build_dir / part
    if not session_id:
        raise ValueError("dev builds need a session id")
    return layout.part_data_dir(part) / DEV_BUILDS_DIR_NAME / session_id


def frontend_build_dir(layout: WorkspaceLayout, mode: Mode, session_id: str | None = None) -> Path:
    return part_build_dir(layout, mode, FRONTEND, session_id)


def backend_build_dir(layout: WorkspaceLayout, mode: Mode, session_id: str | None = None) -> Path:
    return part_build_dir(layout, mode, BACKEND, session_id)


def log_path(layout: WorkspaceLayout, part: str, stream_name: str, log_id: str) -> Path:
    """.stackable/<part>/log-<stream>-<id>"""
    return layout.part_data_dir(part) / f"log-{stream_name}-{log_id}"


def ensure_dir(path: Path) -> Path:
    """Create path (and parents) if missing and return it."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WorkspaceError(f"failed to create directory {path}: {e}") from e
    return path
