"""Integration tests for sessions sharing one namespace."""

import os
import subprocess
from unittest.mock import MagicMock

import pytest

from nsshare.namespace.marker import read_marker, write_marker
from nsshare.namespace.mounts import MountManager
from nsshare.namespace.registry import NamespaceRegistry
from nsshare.session.manager import SessionRegistry
from nsshare.session.model import NamespaceAction


def _owner_shell_factory(factory, marker_path, liveness):
    """Popen stand-in that runs a creator's marker step the way its shell would."""

    def start(argv, cwd=None, env=None):
        process = factory(argv, cwd=cwd, env=env)
        if argv[0] == "unshare":
            persist_line = argv[-1].splitlines()[0]
            subprocess.run(["sh", "-c", persist_line], check=True)
            liveness.alive.add(read_marker(marker_path))
        return process

    return start


@pytest.mark.skipif(
    not os.path.exists("/proc/self/stat"), reason="requires a Linux procfs"
)
def test_should_share_namespace_between_two_sessions(
    namespace_registry, liveness, process_factory, shared_config, shared_type, marker_path
):
    sessions = SessionRegistry(
        namespace_registry,
        mount_manager=MountManager(runner=MagicMock(return_value=True)),
        process_factory=_owner_shell_factory(process_factory, marker_path, liveness),
        monitor_exits=False,
        marker_wait=5,
    )

    try:
        # Session A creates the namespace and its shell records itself as owner.
        session_a = sessions.create_session("a", shared_config)
        assert sessions.wait_for_notifications(timeout=10)
        owner_pid = read_marker(marker_path)

        assert owner_pid > 1
        assert session_a.invocation.namespace_action == NamespaceAction.CREATE
        record = namespace_registry.get_namespace_info(shared_type)
        assert record.owner_pid == owner_pid
        assert record.attached_sessions == 1

        # Session B joins it.
        session_b = sessions.create_session("b", shared_config)

        assert session_b.invocation.namespace_action == NamespaceAction.JOIN
        assert session_b.invocation.target_pid == owner_pid
        assert session_b.invocation.argv[:3] == ["nsenter", "-t", str(owner_pid)]
        assert namespace_registry.get_namespace_info(shared_type).attached_sessions == 2

        sessions.terminate_session("b")
        assert sessions.wait_for_notifications(timeout=5)
        record = namespace_registry.get_namespace_info(shared_type)
        assert record is not None
        assert record.attached_sessions == 1

        sessions.terminate_session("a")
        assert sessions.wait_for_notifications(timeout=5)
        assert namespace_registry.get_namespace_info(shared_type) is None
        assert os.path.exists(marker_path)
    finally:
        sessions.shutdown()

    # The owner is gone by the time the next session asks.
    liveness.alive.clear()
    assert namespace_registry.register_session(shared_type, marker_path) is None
    assert not os.path.exists(marker_path)

def test_should_recover_namespace_after_host_restart(
    liveness, process_factory, shared_config, shared_type, marker_path
):
    write_marker(marker_path, 321)
    liveness.alive.add(321)
    restarted = NamespaceRegistry(liveness)
    sessions = SessionRegistry(
        restarted,
        mount_manager=MountManager(runner=MagicMock(return_value=True)),
        process_factory=process_factory,
        monitor_exits=False,
    )

    try:
        session = sessions.create_session("first-after-restart", shared_config)

        assert session.invocation.namespace_action == NamespaceAction.JOIN
        assert session.invocation.target_pid == 321
        assert restarted.get_namespace_info(shared_type).attached_sessions == 1
    finally:
        sessions.shutdown()


def test_should_track_counts_for_owner_created_then_joined(
    namespace_registry, liveness, shared_type, marker_path
):
    liveness.alive.add(500)

    # A: first session, creates and confirms owner 500.
    assert namespace_registry.register_session(shared_type, marker_path) is None
    write_marker(marker_path, 500)
    namespace_registry.notify_namespace_created(shared_type, 500, marker_path)

    # B: joins owner 500.
    joined = namespace_registry.register_session(shared_type, marker_path)
    assert joined.owner_pid == 500
    assert joined.attached_sessions == 2

    namespace_registry.unregister_session(shared_type)
    assert namespace_registry.get_namespace_info(shared_type).attached_sessions == 1
    namespace_registry.unregister_session(shared_type)
    assert namespace_registry.get_namespace_info(shared_type) is None
    assert os.path.exists(marker_path)

    liveness.alive.clear()
    assert namespace_registry.register_session(shared_type, marker_path) is None
    assert not os.path.exists(marker_path)
