"""
Manifest - stackable.toml

    [dev-server]
    bin-name = "my-app"
    listen = "localhost:5000"

    [toolchain]            # optional
    trunk = "trunk"
    cargo = ["cargo", "+nightly"]
"""

import shlex
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from stackctl.errors import ManifestError

DEFAULT_LISTEN = 'localhost:5000'


@dataclass(frozen=True)
class DevServer:
    bin_name: str
    listen: str = DEFAULT_LISTEN

    @property
    def http_url(self) -> str:
        return f"http://{self.listen}/"


@dataclass(frozen=True)
class Toolchain:
    """argv prefixes used to invoke the external tools"""
    trunk: tuple = ('trunk',)
    cargo: tuple = ('cargo',)


@dataclass(frozen=True)
class Manifest:
    dev_server: DevServer
    toolchain: Toolchain = field(default_factory=Toolchain)


def _command(value, key: str) -> tuple:
    if isinstance(value, str):
        words = shlex.split(value)
    elif isinstance(value, list) and all(isinstance(v, str) for v in value):
        words = list(value)
    else:
        raise ManifestError(f"toolchain.{key} must be a string or a list of strings")
    if not words:
        raise ManifestError(f"toolchain.{key} must not be empty")
    return tuple(words)


def parse_manifest(data: dict) -> Manifest:
    """Build a Manifest from already decoded TOML."""
    dev_server = data.get('dev-server')
    if not isinstance(dev_server, dict):
        raise ManifestError("missing [dev-server] table")

    bin_name = dev_server.get('bin-name')
    if not isinstance(bin_name, str) or not bin_name:
        raise ManifestError("dev-server.bin-name must be a non-empty string")

    listen = dev_server.get('listen', DEFAULT_LISTEN)
    if not isinstance(listen, str) or not listen:
        raise ManifestError("dev-server.listen must be a non-empty string")

    toolchain_data = data.get('toolchain', {})
    if not isinstance(toolchain_data, dict):
        raise ManifestError("[toolchain] must be a table")
    defaults = Toolchain()
    toolchain = Toolchain(
        trunk=_command(toolchain_data['trunk'], 'trunk') if 'trunk' in toolchain_data else defaults.trunk,
        cargo=_command(toolchain_data['cargo'], 'cargo') if 'cargo' in toolchain_data else defaults.cargo,
    )

    return Manifest(dev_server=DevServer(bin_name=bin_name, listen=listen), toolchain=toolchain)


def load_manifest(path) -> Manifest:
    path = Path(path)
    try:
        with open(path, 'rb') as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ManifestError(f"failed to read manifest {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"failed to parse manifest {path}: {e}") from e
    return parse_manifest(data)
