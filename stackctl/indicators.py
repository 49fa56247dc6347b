"""Console output and the serve progress spinner"""

from rich.console import Console

# stdout belongs to the backend server
console = Console(stderr=True, highlight=False, soft_wrap=True)


class ServeProgress:
    """Spinner shown while a dev iteration builds and starts the server"""

    def __init__(self, out: Console | None = None):
        self._console = out or console
        self._status = None

    def _step(self, message: str):
        if self._status is None:
            self._status = self._console.status(message, spinner='dots')
            self._status.start()
        else:
            self._status.update(message)

    def step_build_frontend(self):
        self._step("[cyan]Building frontend...[/cyan]")

    def step_build_backend(self):
        self._step("[cyan]Building backend...[/cyan]")

    def step_starting(self):
        self._step("[cyan]Starting server...[/cyan]")

    def hide(self):
        if self._status is not None:
            self._status.stop()
            self._status = None


def format_elapsed(secs: float) -> str:
    return f"Built in {secs:.2f}s!"


def print_built(secs: float):
    console.print(format_elapsed(secs), style='bold green')
