"""Namespace PID marker files.

A marker holds the decimal PID of a namespace owner so that sessions started
later, or by a restarted host process, can find and join the namespace.
"""

import logging
import os

from nsshare.errors import MarkerError

logger = logging.getLogger(__name__)


def read_marker(marker_path: str) -> int:
    """Read the owner PID recorded in a marker file.

    Args:
        marker_path: Path of the marker file.

    Returns:
        The recorded PID.

    Raises:
        MarkerError: If the file is missing, unreadable or does not hold a
            positive integer.
    """
    try:
        with open(marker_path, "r") as _file:
            content = _file.read().strip()
    except OSError as e:
        raise MarkerError(f"Cannot read marker {marker_path}: {e}") from e

    try:
        pid = int(content)
    except ValueError as e:
        raise MarkerError(f"Corrupt marker {marker_path}: {content!r}") from e

    if pid <= 0:
        raise MarkerError(f"Invalid PID {pid} in marker {marker_path}")
    return pid


def write_marker(marker_path: str, pid: int) -> None:
    """Atomically record ``pid`` in a marker file.

    Raises:
        OSError: If the marker cannot be written.
    """
    os.makedirs(os.path.dirname(marker_path) or ".", exist_ok=True)
    temp_file = f"{marker_path}.tmp"
    with open(temp_file, "w") as _file:
        _file.write(f"{pid}\n")
    os.replace(temp_file, marker_path)


def remove_marker(marker_path: str) -> bool:
    """Delete a marker file.

    Returns:
        True if a file was removed, False if there was nothing to remove or
        it could not be removed.
    """
    try:
        os.remove(marker_path)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to remove marker {marker_path}: {e}")
        return False
    logger.debug(f"Removed marker {marker_path}")
    return True
