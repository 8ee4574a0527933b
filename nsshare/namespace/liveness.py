"""Process liveness probes."""

import logging
import os
import subprocess
from abc import ABC, abstractmethod

from nsshare.constants import PRIVILEGE_TOOL, PROBE_TIMEOUT

logger = logging.getLogger(__name__)


class ProcessLivenessChecker(ABC):
    """Capability that tells whether a process id is alive.

    Any failure to probe must be reported as "not alive" so that callers
    reclaim the namespace instead of hanging on a dead owner.
    """

    @abstractmethod
    def is_alive(self, pid: int) -> bool:
        """Return True if ``pid`` names a live process."""
        raise NotImplementedError


class LocalLivenessChecker(ProcessLivenessChecker):
    """Probe with a zero signal sent from the current process."""

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
            return True
        except OSError:
            return False


class PrivilegedLivenessChecker(ProcessLivenessChecker):
    """Probe through the privilege tool, for owners running as root.

    Args:
        tool: Privilege tool used to run ``kill -0``.
        timeout: Seconds the tool may take before the probe counts as failed.
    """

    def __init__(self, tool: str = PRIVILEGE_TOOL, timeout: float = PROBE_TIMEOUT):
        self._tool = tool
        self._timeout = timeout

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            result = subprocess.run(
                [self._tool, "-c", f"kill -0 {int(pid)}"],
                capture_output=True,
                timeout=self._timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Liveness probe for PID {pid} failed: {e}")
            return False
        return result.returncode == 0


def liveness_checker_for(elevated: bool) -> ProcessLivenessChecker:
    """Pick the probe matching the privilege level sessions run with."""
    if elevated:
        return PrivilegedLivenessChecker()
    return LocalLivenessChecker()
