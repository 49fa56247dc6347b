"""Exception types raised by stackctl"""


class StackctlError(Exception):
    """Base class for every error stackctl reports to the user"""


class WorkspaceError(StackctlError):
    """Workspace could not be resolved or a directory could not be created"""


class ManifestError(StackctlError):
    """stackable.toml is missing, unreadable or malformed"""


class WatchError(StackctlError):
    """Filesystem watch could not be set up"""


class BuildError(StackctlError):
    """An external build tool failed"""

    def __init__(self, tool: str, returncode: int | None = None, message: str | None = None):
        self.tool = tool
        self.returncode = returncode
        if message is None:
            message = f"{tool} failed with status {returncode}"
        super().__init__(message)


class ArtifactError(StackctlError):
    """The compiled backend binary could not be located or copied"""


class ServerError(StackctlError):
    """The backend server could not be started or stopped"""


class UnsupportedError(StackctlError):
    """Requested operation is not supported"""
