"""Process helpers for running host commands."""

import logging
import shlex
import subprocess
from typing import List, Optional, Sequence

from nsshare.constants import PRIVILEGE_TOOL

logger = logging.getLogger(__name__)


def wrap_elevated(argv: Sequence[str], tool: str = PRIVILEGE_TOOL) -> List[str]:
    """Wrap a command so it runs through the privilege tool.

    The privilege tool only accepts a command string, so the argument list
    is shell-quoted into a single ``-c`` argument.

    Args:
        argv: Command and arguments to elevate.
        tool: Privilege tool, ``su`` by default.

    Returns:
        The wrapped argument list.
    """
    return [tool, "-c", shlex.join(argv)]


def maybe_elevated(argv: Sequence[str], elevated: bool) -> List[str]:
    return wrap_elevated(argv) if elevated else list(argv)


def run_command(argv: Sequence[str], timeout: Optional[float] = None) -> bool:
    """Run a command to completion without raising on failure.

    Args:
        argv: Command and arguments.
        timeout: Seconds to wait before giving up.

    Returns:
        True if the command exited with status 0, False otherwise.
    """
    command = shlex.join(argv)
    try:
        result = subprocess.run(
            list(argv),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.error(f"Failed to execute command: {command}: {e}")
        return False

    if result.returncode != 0:
        logger.warning(
            f"Command failed (exit {result.returncode}): {command}\n"
            f"Error: {result.stderr.strip()}"
        )
        return False
    return True
