"""Fake trunk/cargo toolchain and a fake backend, wired up through stackable.toml"""
import asyncio
import json
import os
import socket
import sys
import textwrap
import time
from pathlib import Path

import pytest

from stackctl.config import load_config

FAKE_TRUNK = textwrap.dedent('''
    import os, sys
    from pathlib import Path

    args = sys.argv[1:]
    with open(os.environ['FAKE_CALLS'], 'a') as f:
        f.write('trunk ' + ' '.join(args) + '\\n')

    fail_file = Path(os.environ['FAKE_STATE']) / 'fail-trunk'
    if fail_file.exists():
        remaining = int(fail_file.read_text())
        if remaining > 0:
            fail_file.write_text(str(remaining - 1))
            print('trunk: error: broken frontend', file=sys.stderr)
            sys.exit(1)

    dist = Path(args[args.index('--dist') + 1])
    dist.mkdir(parents=True, exist_ok=True)
    (dist / 'index.html').write_text('<html></html>')
    print('trunk: frontend built')
''')

FAKE_CARGO = textwrap.dedent('''
    import json, os, shutil, sys, time
    from pathlib import Path

    args = sys.argv[1:]
    target = Path.cwd() / 'target'

    def hang(name):
        (Path(os.environ['FAKE_STATE']) / name).write_text(str(os.getpid()))
        while True:
            time.sleep(1)

    if args[0] == 'metadata':
        if os.environ.get('FAKE_METADATA_FAIL'):
            sys.exit(101)
        if os.environ.get('FAKE_METADATA_HANG'):
            hang('cargo-metadata.pid')
        print(json.dumps({'target_directory': str(target), 'packages': []}))
        sys.exit(0)

    with open(os.environ['FAKE_CALLS'], 'a') as f:
        frontend_dir = os.environ.get('STACKABLE_FRONTEND_BUILD_DIR', '')
        f.write('cargo ' + ' '.join(args) + ' frontend=' + frontend_dir + '\\n')

    fail_file = Path(os.environ['FAKE_STATE']) / 'fail-cargo'
    if fail_file.exists():
        remaining = int(fail_file.read_text())
        if remaining > 0:
            fail_file.write_text(str(remaining - 1))
            print('error[E0425]: cannot find value', file=sys.stderr)
            sys.exit(101)

    if os.environ.get('FAKE_CARGO_HANG'):
        hang('cargo.pid')

    if os.environ.get('FAKE_CARGO_NO_BINARY'):
        sys.exit(0)

    bin_name = args[args.index('--bin') + 1]
    profile = 'release' if '--release' in args else 'debug'
    out = target / profile
    out.mkdir(parents=True, exist_ok=True)
    shutil.copy(os.environ['FAKE_BACKEND_SOURCE'], out / bin_name)
    os.chmod(out / bin_name, 0o755)
    print('Finished dev [unoptimized + debuginfo] target(s)')
''')

FAKE_BACKEND = textwrap.dedent('''
    import json, os, sys, time
    from http.server import BaseHTTPRequestHandler, HTTPServer
    from pathlib import Path

    meta = json.loads(os.environ['STACKCTL_META'])
    if os.environ.get('FAKE_BACKEND_EXIT'):
        sys.exit(3)
    if os.environ.get('FAKE_BACKEND_HANG'):
        # alive but never listening
        (Path(os.environ['FAKE_STATE']) / 'backend.pid').write_text(str(os.getpid()))
        while True:
            time.sleep(1)

    host, port = meta['listen_addr'].rsplit(':', 1)

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            body = meta['frontend_dev_build_dir'].encode()
            self.send_response(200)
            self.send_header('Content-Length', str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass

    HTTPServer((host, int(port)), Handler).serve_forever()
''')


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


class FakeWorkspace:
    """A workspace whose stackable.toml points at the fake tools"""

    def __init__(self, root: Path, tools: Path, bin_name: str = 'app'):
        self.root = root.resolve()
        self.tools = tools
        self.bin_name = bin_name
        self.listen = f'127.0.0.1:{free_port()}'
        self.calls_file = tools / 'calls'
        self.manifest_path = root / 'stackable.toml'

        (tools / 'trunk.py').write_text(FAKE_TRUNK)
        (tools / 'cargo.py').write_text(FAKE_CARGO)
        (tools / 'backend.py').write_text(f'#!{sys.executable}\n' + FAKE_BACKEND)

        (root / 'src').mkdir(parents=True, exist_ok=True)
        (root / 'src' / 'main.rs').write_text('fn main() {}\n')
        (root / 'index.html').write_text('<html></html>\n')
        self.manifest_path.write_text(textwrap.dedent(f'''
            [dev-server]
            bin-name = "{bin_name}"
            listen = "{self.listen}"

            [toolchain]
            trunk = {json.dumps([sys.executable, str(tools / 'trunk.py')])}
            cargo = {json.dumps([sys.executable, str(tools / 'cargo.py')])}
        '''))

    def config(self, mode):
        return load_config(self.manifest_path, mode)

    def calls(self, tool: str | None = None) -> list:
        if not self.calls_file.exists():
            return []
        lines = self.calls_file.read_text().splitlines()
        if tool is None:
            return lines
        return [line for line in lines if line.startswith(tool + ' ')]

    def fail(self, tool: str, times: int):
        (self.tools / f'fail-{tool}').write_text(str(times))

    async def wait_for_pid(self, name: str, timeout: float = 30.0) -> int:
        """Pid written by a hanging fake once it is up"""
        pid_file = self.tools / name
        deadline = time.monotonic() + timeout
        while not pid_file.exists() or not pid_file.read_text():
            if time.monotonic() > deadline:
                raise AssertionError(f"{name} was never written")
            await asyncio.sleep(0.05)
        return int(pid_file.read_text())


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    if os.name == 'nt':
        pytest.skip("fake toolchain relies on shebang executables")
    root = tmp_path / 'workspace'
    tools = tmp_path / 'tools'
    root.mkdir()
    tools.mkdir()
    ws = FakeWorkspace(root, tools)
    monkeypatch.setenv('FAKE_CALLS', str(ws.calls_file))
    monkeypatch.setenv('FAKE_STATE', str(tools))
    monkeypatch.setenv('FAKE_BACKEND_SOURCE', str(tools / 'backend.py'))
    return ws
