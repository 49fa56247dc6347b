"""Small helpers shared across modules"""

import secrets
import string
import time

_ALPHABET = string.ascii_letters + string.digits


def random_str(length: int = 16) -> str:
    """Random alphanumeric id used for session directories and log files."""
    return ''.join(secrets.choice(_ALPHABET) for _ in range(length))


def elapsed_secs(start: float) -> float:
    """Seconds since a time.monotonic() reading."""
    return time.monotonic() - start
