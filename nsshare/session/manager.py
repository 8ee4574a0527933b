"""Session registry."""

import logging
import os
import subprocess
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Any, Callable, Dict, List, Optional, Set

from nsshare.command.builder import CommandBuilder
from nsshare.constants import (
    DEFAULT_NOTIFICATION_WORKERS,
    MARKER_POLL_INTERVAL,
    MARKER_WAIT_TIMEOUT,
    TERMINATE_TIMEOUT,
)
from nsshare.errors import MarkerError, SessionStartError
from nsshare.namespace.marker import read_marker
from nsshare.namespace.mounts import MountManager
from nsshare.namespace.registry import NamespaceRegistry
from nsshare.session.environment import as_mapping, build_environment
from nsshare.session.model import (
    Invocation,
    NamespaceAction,
    NamespaceType,
    Session,
    SessionConfig,
)

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Creates, tracks and tears down shell sessions.

    This class maps session identifiers to running processes. It asks the
    CommandBuilder what to run, starts the process, and keeps the
    NamespaceRegistry's attachment counts in step with session lifetimes.
    Namespace notifications run on a small worker pool and never block the
    caller.

    Attributes:
        _namespaces (NamespaceRegistry): Shared namespace coordinator.
        _builder (CommandBuilder): Produces session invocations.
        _mounts (MountManager): Runs host setup steps.
        _sessions (dict[str, Session]): Live sessions keyed by ID.
        _notifications (dict[str, Future]): Pending namespace-created
            notifications keyed by session ID.
        _lock (threading.RLock): Guards the session map.
    """

    def __init__(
        self,
        namespace_registry: NamespaceRegistry,
        command_builder: Optional[CommandBuilder] = None,
        mount_manager: Optional[MountManager] = None,
        process_factory: Callable[..., Any] = subprocess.Popen,
        max_workers: int = DEFAULT_NOTIFICATION_WORKERS,
        on_empty: Optional[Callable[[], None]] = None,
        monitor_exits: bool = True,
        marker_wait: float = MARKER_WAIT_TIMEOUT,
    ) -> None:
        """Initialize the session registry.

        Args:
            namespace_registry: Coordinator shared with the command builder.
            command_builder: Builder to use. Defaults to one bound to
                ``namespace_registry``.
            mount_manager: Runs host setup steps.
            process_factory: Starts a process from ``(argv, cwd=, env=)``.
            max_workers: Size of the namespace notification pool.
            on_empty: Called when the last session is gone.
            monitor_exits: Watch each process and tear its session down when
                it exits.
            marker_wait: Seconds a namespace creator is given to write its
                marker before its process PID is recorded instead.
        """
        self._namespaces = namespace_registry
        self._mounts = mount_manager or MountManager()
        self._builder = command_builder or CommandBuilder(
            namespace_registry, self._mounts
        )
        self._process_factory = process_factory
        self._on_empty = on_empty
        self._monitor_exits = monitor_exits
        self._marker_wait = marker_wait

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="nsshare-namespace"
        )
        self._sessions: Dict[str, Session] = {}
        self._notifications: Dict[str, Future] = {}
        self._pending: Set[Future] = set()
        self._lock = threading.RLock()

    def create_session(self, session_id: str, config: SessionConfig) -> Session:
        """Start a new session.

        Args:
            session_id: Identifier, unique among live sessions.
            config: Settings of the session.

        Returns:
            The started session.

        Raises:
            ValueError: If a live session already uses ``session_id``.
            CommandBuildError: If the invocation cannot be constructed.
            SessionStartError: If the process cannot be started.
        """
        with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"Session {session_id} already exists")

        invocation = self._builder.build_command(config)
        try:
            if invocation.host_setup_steps:
                self._mounts.run_steps(
                    invocation.host_setup_steps, config.use_elevated_privilege
                )
            env = build_environment(config, session_id)
            process = self._process_factory(
                invocation.argv,
                cwd=self._host_working_directory(config, invocation),
                env=as_mapping(env),
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.error(f"Failed to start session {session_id}: {e}")
            self._release_attachment(invocation)
            raise SessionStartError(f"Failed to start session {session_id}: {e}") from e

        session = Session(
            id=session_id,
            process=process,
            config=config,
            invocation=invocation,
            namespace_type=invocation.namespace_type,
        )
        with self._lock:
            duplicate = session_id in self._sessions
            if not duplicate:
                self._sessions[session_id] = session
                if invocation.namespace_action == NamespaceAction.CREATE:
                    self._notifications[session_id] = self._submit(
                        self._notify_created, invocation, process.pid
                    )

        if duplicate:
            self._stop_process(session)
            self._release_attachment(invocation)
            raise ValueError(f"Session {session_id} already exists")

        logger.info(
            f"Session {session_id} started with PID {process.pid} "
            f"({invocation.namespace_action.value})"
        )

        if self._monitor_exits:
            try:
                monitor_thread = threading.Thread(
                    target=self._monitor_session,
                    args=(session_id,),
                    daemon=True,
                )
                monitor_thread.start()
            except RuntimeError as e:
                logger.warning(f"Could not start monitoring thread: {e}")
        return session

    def terminate_session(self, session_id: str) -> bool:
        """Stop a session and detach it from its namespace.

        Args:
            session_id: Identifier of the session.

        Returns:
            True if the session existed, False otherwise.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            notification = self._notifications.pop(session_id, None)
            remaining = len(self._sessions)

        if session is None:
            return False

        self._stop_process(session)
        if session.namespace_type is not None:
            self._submit(self._unregister_after, session.namespace_type, notification)
        logger.info(f"Session {session_id} terminated")

        if remaining == 0 and self._on_empty is not None:
            self._on_empty()
        return True

    def terminate_all(self) -> None:
        """Terminate every session and clear the registry."""
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            self.terminate_session(session_id)

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def wait_for_notifications(self, timeout: Optional[float] = None) -> bool:
        """Block until queued namespace notifications have run.

        Returns:
            True if all of them completed within ``timeout``.
        """
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self) -> None:
        """Terminate all sessions, drain notifications and reset namespaces."""
        self.terminate_all()
        self._executor.shutdown(wait=True)
        self._namespaces.shutdown()

    def _submit(self, fn: Callable[..., None], *args: Any) -> Future:
        future = self._executor.submit(fn, *args)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard_pending)
        return future

    def _discard_pending(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        error = future.exception()
        if error is not None:
            logger.error(f"Namespace notification failed: {error}")

    def _notify_created(self, invocation: Invocation, process_pid: int) -> None:
        pid = self._await_owner_pid(invocation.marker_path, process_pid)
        self._namespaces.notify_namespace_created(
            invocation.namespace_type, pid, invocation.marker_path
        )

    def _await_owner_pid(self, marker_path: Optional[str], fallback_pid: int) -> int:
        if marker_path is None:
            return fallback_pid

        deadline = time.monotonic() + self._marker_wait
        while True:
            try:
                return read_marker(marker_path)
            except MarkerError:
                if time.monotonic() >= deadline:
                    break
                time.sleep(MARKER_POLL_INTERVAL)

        logger.warning(
            f"Namespace owner did not write {marker_path}, "
            f"recording process PID {fallback_pid}"
        )
        return fallback_pid

    def _unregister_after(
        self, ns_type: NamespaceType, notification: Optional[Future]
    ) -> None:
        if notification is not None:
            wait_futures([notification])
        self._namespaces.unregister_session(ns_type)

    def _release_attachment(self, invocation: Invocation) -> None:
        if invocation.namespace_action != NamespaceAction.NONE:
            self._namespaces.unregister_session(invocation.namespace_type)

    def _stop_process(self, session: Session) -> None:
        process = session.process
        try:
            if process.poll() is not None:
                return
            process.terminate()
            try:
                process.wait(timeout=TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"Session {session.id} did not terminate after "
                    f"{TERMINATE_TIMEOUT} seconds, sending SIGKILL"
                )
                process.kill()
                process.wait()
        except ProcessLookupError:
            logger.debug(f"Session {session.id} process already gone")
        except OSError as e:
            logger.error(f"Failed to terminate session {session.id}: {e}")

    def _monitor_session(self, session_id: str) -> None:
        session = self.get_session(session_id)
        if session is None:
            return

        try:
            exit_code = session.process.wait()
            logger.info(f"Session {session_id} exited with code {exit_code}")
        except OSError as e:
            logger.warning(f"Failed to monitor session {session_id}: {e}")
        finally:
            self.terminate_session(session_id)

    def _host_working_directory(
        self, config: SessionConfig, invocation: Invocation
    ) -> Optional[str]:
        path = os.path.join(
            config.container_root_dir, invocation.working_directory.lstrip("/")
        )
        return path if os.path.isdir(path) else None
