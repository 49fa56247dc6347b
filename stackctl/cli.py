"""
stackctl - command line entry point

Usage:
    stackctl serve                 # Build, serve and rebuild on change
    stackctl serve --open          # Same, and open the server in a browser
    stackctl build --release       # One-shot release build into ./build
    stackctl --manifest-path app/stackable.toml serve
"""

import argparse
import asyncio
import logging
import os
import sys

from rich.logging import RichHandler
from rich.markup import escape

from stackctl import __version__
from stackctl.config import LOG_ENV, default_manifest_path, load_config
from stackctl.devloop import DevLoop, run_build
from stackctl.errors import StackctlError
from stackctl.indicators import console
from stackctl.relay import flush_relays
from stackctl.supervisor import ProcessSupervisor
from stackctl.watcher import ChangeWatcher
from stackctl.workspace import Mode


def setup_logging():
    """Log level comes from STACKCTL_LOG (debug, info, warning, error)"""
    level = logging.getLevelName(os.environ.get(LOG_ENV, 'info').upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format='%(message)s',
        datefmt='[%X]',
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )
    logging.getLogger('watchdog').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='stackctl', description='Stackable development tool')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--manifest-path', default=default_manifest_path(),
                        help='Path to stackable.toml (default: ./stackable.toml)')

    commands = parser.add_subparsers(dest='command', required=True)

    serve = commands.add_parser('serve', help='Start the development server, rebuilding on change')
    serve.add_argument('--open', action='store_true',
                       help='Open the server in a browser once it has started')

    build = commands.add_parser('build', help='Build a distributable')
    build.add_argument('--release', action='store_true',
                       help='Build in release mode (required)')
    return parser


async def serve(config, open_browser: bool):
    watcher = ChangeWatcher(config.workspace_dir)
    watcher.start()
    console.print(f"[WATCH] Watching {escape(str(config.workspace_dir))} for changes")

    loop = DevLoop(
        supervisor=ProcessSupervisor(config),
        triggers=watcher.triggers(),
        url=config.manifest.dev_server.http_url,
        open_browser=open_browser,
    )
    try:
        await loop.run()
    finally:
        await asyncio.to_thread(watcher.stop)
        await flush_relays()


async def run(args):
    if args.command == 'serve':
        config = load_config(args.manifest_path, Mode.SERVE)
        await serve(config, args.open)
    else:
        config = load_config(args.manifest_path, Mode.BUILD_RELEASE)
        await run_build(config, args.release)


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        asyncio.run(run(args))
    except StackctlError as e:
        console.print(f"[bold red]error:[/bold red] {escape(str(e))}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[STOP] Shutting down...")
        sys.exit(130)


if __name__ == '__main__':
    main()
