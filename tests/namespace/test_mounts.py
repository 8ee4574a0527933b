"""Tests for the MountManager class."""

from unittest.mock import MagicMock, patch

from nsshare.namespace.mounts import MountManager
from nsshare.session.model import StepKind

ROOT = "/data/local/alpine"


def test_should_bind_mount_fixed_host_paths_in_order():
    runner = MagicMock(return_value=True)
    manager = MountManager(runner=runner)

    with patch("nsshare.namespace.mounts.os.makedirs") as mock_makedirs:
        assert manager.setup_mounts(ROOT, elevated=False) is True

    commands = [call.args[0] for call in runner.call_args_list]
    assert commands == [
        ["mount", "--bind", "/sdcard", f"{ROOT}/sdcard"],
        ["mount", "--bind", "/storage", f"{ROOT}/storage"],
        ["mount", "--bind", "/data/data", f"{ROOT}/data/data"],
        ["mount", "--bind", "/system", f"{ROOT}/system"],
        ["mount", "--bind", "/vendor", f"{ROOT}/vendor"],
    ]
    mock_makedirs.assert_any_call(f"{ROOT}/data/data", exist_ok=True)


def test_should_continue_when_individual_mounts_fail():
    runner = MagicMock(side_effect=[False, True, False, True, True])
    manager = MountManager(runner=runner)

    with patch("nsshare.namespace.mounts.os.makedirs"):
        assert manager.setup_mounts(ROOT, elevated=False) is True

    assert runner.call_count == 5


def test_should_continue_when_mount_point_cannot_be_created():
    runner = MagicMock(return_value=True)
    manager = MountManager(runner=runner)

    with patch(
        "nsshare.namespace.mounts.os.makedirs", side_effect=PermissionError("denied")
    ):
        assert manager.setup_mounts(ROOT, elevated=False) is True

    assert runner.call_count == 5


def test_should_wrap_mounts_with_privilege_tool_when_elevated():
    runner = MagicMock(return_value=True)
    manager = MountManager(runner=runner)

    with patch("nsshare.namespace.mounts.os.makedirs"):
        manager.setup_mounts(ROOT, elevated=True)

    assert runner.call_args_list[0].args[0] == [
        "su",
        "-c",
        f"mount --bind /sdcard {ROOT}/sdcard",
    ]


def test_should_mount_proc_and_report_result():
    runner = MagicMock(return_value=False)
    manager = MountManager(runner=runner)

    with patch("nsshare.namespace.mounts.os.makedirs"):
        assert manager.setup_proc(ROOT, elevated=False) is False

    runner.assert_called_once_with(["mount", "-t", "proc", "proc", f"{ROOT}/proc"])


def test_should_unmount_proc_and_bind_targets_ignoring_failures():
    runner = MagicMock(return_value=False)
    manager = MountManager(runner=runner)

    manager.cleanup_mounts(ROOT, elevated=False)

    commands = [call.args[0] for call in runner.call_args_list]
    assert commands[0] == ["umount", f"{ROOT}/proc"]
    assert ["umount", f"{ROOT}/vendor"] in commands
    assert len(commands) == 6


def test_should_describe_mounts_as_failure_tolerant_steps():
    manager = MountManager()

    steps = manager.bind_mount_steps(ROOT)
    proc = manager.proc_mount_step(ROOT)

    assert all(step.kind == StepKind.BIND_MOUNT for step in steps)
    assert all(step.tolerate_failure for step in steps)
    assert proc.kind == StepKind.MOUNT_PROC
    assert proc.render() == f"mount -t proc proc {ROOT}/proc 2>/dev/null || true"
