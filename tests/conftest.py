"""Test fixtures for nsshare."""

import itertools
from unittest.mock import MagicMock

import pytest

from nsshare.namespace.liveness import ProcessLivenessChecker
from nsshare.namespace.registry import NamespaceRegistry
from nsshare.session.model import ContainerMode, SessionConfig


class FakeLivenessChecker(ProcessLivenessChecker):
    """Liveness probe that reports a configurable set of PIDs as alive."""

    def __init__(self, alive=()):
        self.alive = set(alive)
        self.probed = []

    def is_alive(self, pid):
        self.probed.append(pid)
        return pid in self.alive


@pytest.fixture
def liveness():
    return FakeLivenessChecker()


@pytest.fixture
def namespace_registry(liveness):
    return NamespaceRegistry(liveness)


@pytest.fixture
def prefix_dir(tmp_path):
    return str(tmp_path / "files")


@pytest.fixture
def shared_config(prefix_dir, tmp_path):
    (tmp_path / "alpine").mkdir(exist_ok=True)
    return SessionConfig(
        container_mode=ContainerMode.CHROOT,
        use_namespace_isolation=True,
        share_namespace=True,
        container_root_dir=str(tmp_path / "alpine"),
        native_lib_dir=str(tmp_path / "lib"),
        prefix_dir=prefix_dir,
    )


@pytest.fixture
def shared_type(shared_config):
    return shared_config.namespace_type


@pytest.fixture
def marker_path(shared_config):
    return shared_config.marker_path()


@pytest.fixture
def process_factory():
    """Popen stand-in handing out processes with increasing PIDs."""
    pids = itertools.count(500)
    started = []

    def factory(argv, cwd=None, env=None):
        process = MagicMock()
        process.pid = next(pids)
        process.poll.return_value = None
        process.argv = argv
        process.env = env
        started.append(process)
        return process

    factory.started = started
    return factory
