"""Integration tests for the owner PID written by a namespace creator."""

import os
import shutil
import subprocess

import pytest

from nsshare.namespace.marker import read_marker
from nsshare.session.model import SetupStep, StepKind

UNSHARE_PID_NAMESPACE = [
    "unshare",
    "--user",
    "--map-root-user",
    "--pid",
    "--fork",
]

pytestmark = pytest.mark.skipif(
    not os.path.exists("/proc/self/stat") or shutil.which("sh") is None,
    reason="requires a Linux procfs and a POSIX shell",
)


def _persist_step(marker_path):
    return SetupStep(kind=StepKind.PERSIST_MARKER, argv=(marker_path,))


def _can_unshare_pid_namespace():
    if shutil.which("unshare") is None:
        return False
    try:
        result = subprocess.run(
            [*UNSHARE_PID_NAMESPACE, "true"], capture_output=True, timeout=10
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return result.returncode == 0


def test_should_persist_pid_of_the_shell_running_the_step(tmp_path):
    marker_path = str(tmp_path / ".alpine-ns-pid")

    process = subprocess.Popen(["sh", "-c", _persist_step(marker_path).render()])
    assert process.wait(timeout=10) == 0

    assert read_marker(marker_path) == process.pid


def test_should_persist_host_pid_inside_new_pid_namespace(tmp_path):
    if not _can_unshare_pid_namespace():
        pytest.skip("unprivileged PID namespaces are not available")
    marker_path = str(tmp_path / ".alpine-ns-pid")

    result = subprocess.run(
        [*UNSHARE_PID_NAMESPACE, "sh", "-c", _persist_step(marker_path).render()],
        capture_output=True,
        text=True,
        timeout=10,
    )

    assert result.returncode == 0, result.stderr
    # The shell is PID 1 inside the namespace; the marker must name it by
    # the PID the host sees.
    assert read_marker(marker_path) > 1
