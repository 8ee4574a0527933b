"""Bind mounts of host directories into a container root."""

import logging
import os
from typing import Callable, List, Sequence

from nsshare.constants import CHROOT_BIND_MOUNTS
from nsshare.session.model import SetupStep, StepKind
from nsshare.utils.process import maybe_elevated, run_command

logger = logging.getLogger(__name__)


class MountManager:
    """Performs best-effort bind mounts of host paths into a container root.

    Individual mount failures are logged and skipped, since some host paths
    do not exist on every device. Callers never abort a session because of
    a failed mount.

    Args:
        runner: Callable executing one command, returning True on success.
    """

    def __init__(self, runner: Callable[[Sequence[str]], bool] = run_command) -> None:
        self._runner = runner

    def bind_mount_steps(self, root: str) -> List[SetupStep]:
        """Return the bind mounts of the fixed host paths as setup steps."""
        return [
            SetupStep(
                kind=StepKind.BIND_MOUNT,
                argv=("mount", "--bind", host_path, os.path.join(root, target)),
                description=f"{host_path} -> {os.path.join(root, target)}",
                tolerate_failure=True,
            )
            for host_path, target in CHROOT_BIND_MOUNTS
        ]

    def proc_mount_step(self, root: str) -> SetupStep:
        proc_path = os.path.join(root, "proc")
        return SetupStep(
            kind=StepKind.MOUNT_PROC,
            argv=("mount", "-t", "proc", "proc", proc_path),
            description=f"proc -> {proc_path}",
            tolerate_failure=True,
        )

    def setup_mounts(self, root: str, elevated: bool) -> bool:
        """Bind-mount the fixed host paths into ``root``.

        Args:
            root: Container root directory.
            elevated: Run mount through the privilege tool.

        Returns:
            True. Mounting is best-effort.
        """
        return self.run_steps(self.bind_mount_steps(root), elevated)

    def setup_proc(self, root: str, elevated: bool) -> bool:
        """Mount a proc filesystem at ``root``/proc."""
        step = self.proc_mount_step(root)
        self._ensure_mount_point(step.argv[-1])
        return self._runner(maybe_elevated(step.argv, elevated))

    def run_steps(self, steps: Sequence[SetupStep], elevated: bool) -> bool:
        """Run mount setup steps in order, skipping failures.

        Returns:
            True. Failures are logged, never raised.
        """
        for step in steps:
            self._ensure_mount_point(step.argv[-1])
            if self._runner(maybe_elevated(step.argv, elevated)):
                logger.debug(f"Mounted {step.description}")
            else:
                logger.warning(f"Mount failed, continuing: {step.description}")
        return True

    def cleanup_mounts(self, root: str, elevated: bool) -> None:
        """Unmount proc and every bind target under ``root``.

        Failures are ignored: targets that were never mounted fail to unmount.
        """
        targets = [os.path.join(root, "proc")] + [
            os.path.join(root, target) for _, target in CHROOT_BIND_MOUNTS
        ]
        for target in targets:
            if not self._runner(maybe_elevated(["umount", target], elevated)):
                logger.debug(f"Unmount of {target} failed, ignoring")

    def _ensure_mount_point(self, path: str) -> None:
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            logger.warning(f"Could not create mount point {path}: {e}")
