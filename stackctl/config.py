"""Run configuration shared by the pipeline, supervisor and loop"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from stackctl.manifest import Manifest, load_manifest
from stackctl.workspace import Mode, WorkspaceLayout

LOG_ENV = 'STACKCTL_LOG'
MANIFEST_PATH_ENV = 'STACKCTL_MANIFEST_PATH'
DEFAULT_MANIFEST_PATH = 'stackable.toml'


@dataclass(frozen=True)
class StackctlConfig:
    layout: WorkspaceLayout
    mode: Mode
    manifest: Manifest

    @property
    def workspace_dir(self) -> Path:
        return self.layout.root

    @property
    def bin_name(self) -> str:
        return self.manifest.dev_server.bin_name


def default_manifest_path() -> str:
    return os.environ.get(MANIFEST_PATH_ENV, DEFAULT_MANIFEST_PATH)


def load_config(manifest_path, mode: Mode) -> StackctlConfig:
    """Resolve the workspace, load .env from it and parse the manifest."""
    layout = WorkspaceLayout.from_manifest_path(manifest_path)
    # Existing environment wins over .env
    load_dotenv(layout.root / '.env', override=False)
    manifest = load_manifest(manifest_path)
    return StackctlConfig(layout=layout, mode=mode, manifest=manifest)
