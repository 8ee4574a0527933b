"""Namespace registry."""

import logging
import os
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from nsshare.constants import CREATION_TIMEOUT
from nsshare.errors import MarkerError
from nsshare.namespace.liveness import ProcessLivenessChecker
from nsshare.namespace.marker import read_marker, remove_marker
from nsshare.namespace.model import NamespaceRecord
from nsshare.session.model import NamespaceType

logger = logging.getLogger(__name__)


class NamespaceRegistry:
    """Coordinates the shared namespace slots used by sessions.

    The registry tracks at most one NamespaceRecord per NamespaceType, with a
    count of the sessions attached to it. Every operation runs under a single
    lock, liveness probes and marker file I/O included, so deciding between
    joining and creating a namespace is atomic.

    A session told to create a namespace leaves a pending record behind,
    already counting it as attached. Sessions arriving before the creator's
    owner PID is confirmed wait for the confirmation and then join, instead
    of creating a second namespace.

    Args:
        liveness_checker: Probe used to confirm namespace owners are alive.
        creation_timeout: Seconds a session waits on a pending record before
            taking the slot over.

    Attributes:
        _liveness (ProcessLivenessChecker): Owner liveness probe.
        _namespaces (Dict[NamespaceType, NamespaceRecord]): Records keyed by
            namespace type.
        _lock (threading.Lock): Serializes all operations.
        _changed (threading.Condition): Signalled when a pending record is
            confirmed or dropped.
    """

    def __init__(
        self,
        liveness_checker: ProcessLivenessChecker,
        creation_timeout: float = CREATION_TIMEOUT,
    ) -> None:
        self._liveness = liveness_checker
        self._creation_timeout = creation_timeout
        self._namespaces: Dict[NamespaceType, NamespaceRecord] = {}
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)

    def register_session(
        self, ns_type: NamespaceType, marker_path: str
    ) -> Optional[NamespaceRecord]:
        """Attach a session to the namespace of ``ns_type`` if one exists.

        When no record is held in memory, the marker file is consulted: a
        live recorded owner is adopted, a dead or unreadable one has its
        marker deleted. When another session is still creating the
        namespace, this call blocks until the creation is confirmed or
        abandoned.

        Args:
            ns_type: Namespace slot the session wants.
            marker_path: Marker file of that slot.

        Returns:
            A snapshot of the record the session was attached to, or None if
            the caller is the first session and must create the namespace.
            In that case a pending record now holds the slot for the caller,
            to be confirmed with notify_namespace_created or released with
            unregister_session. Also None when sharing is inactive for
            ``ns_type``.
        """
        with self._lock:
            if not ns_type.is_shared:
                logger.debug(f"Namespace sharing inactive for {ns_type}")
                return None

            deadline = time.monotonic() + self._creation_timeout
            while True:
                record = self._namespaces.get(ns_type)
                if record is None:
                    record = self._recover_from_marker(ns_type, marker_path)

                if record is None:
                    self._reserve(ns_type, marker_path)
                    logger.info(f"New namespace will be created: type={ns_type}")
                    return None

                if not record.pending:
                    break

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        f"Namespace {ns_type} still pending after "
                        f"{self._creation_timeout} seconds, taking over creation"
                    )
                    self._reserve(ns_type, marker_path)
                    return None

                logger.debug(f"Waiting for namespace {ns_type} to be created")
                self._changed.wait(remaining)

            record.attached_sessions += 1
            logger.info(
                f"Session registered: type={ns_type}, PID={record.owner_pid}, "
                f"count={record.attached_sessions}"
            )
            return record.snapshot()

    def _reserve(self, ns_type: NamespaceType, marker_path: str) -> None:
        self._namespaces[ns_type] = NamespaceRecord(
            owner_pid=0, marker_path=marker_path, attached_sessions=1, pending=True
        )

    def _recover_from_marker(
        self, ns_type: NamespaceType, marker_path: str
    ) -> Optional[NamespaceRecord]:
        if not os.path.exists(marker_path):
            return None

        try:
            pid = read_marker(marker_path)
        except MarkerError as e:
            logger.warning(f"Discarding unreadable marker: {e}")
            remove_marker(marker_path)
            return None

        if not self._liveness.is_alive(pid):
            logger.info(f"Removing stale marker {marker_path} for dead PID {pid}")
            remove_marker(marker_path)
            return None

        record = NamespaceRecord(owner_pid=pid, marker_path=marker_path)
        self._namespaces[ns_type] = record
        logger.info(f"Found existing namespace: type={ns_type}, PID={pid}")
        return record

    def notify_namespace_created(
        self, ns_type: NamespaceType, pid: int, marker_path: str
    ) -> None:
        """Record that ``pid`` now owns the namespace of ``ns_type``.

        A pending record reserved by the creating session is confirmed with
        ``pid`` and keeps its count; sessions waiting on it are woken. Without
        a reservation the new record starts with the creating session
        attached. A confirmed record for a different owner is replaced. One
        for the same owner, which a joining session adopted from the marker
        before this notification arrived, keeps its count and gains the
        creator's attachment.
        """
        with self._lock:
            if not ns_type.is_shared:
                return

            existing = self._namespaces.get(ns_type)
            if existing is not None and existing.pending:
                existing.owner_pid = pid
                existing.marker_path = marker_path
                existing.pending = False
                existing.created_at = datetime.now()
                self._changed.notify_all()
                logger.info(
                    f"Namespace created: type={ns_type}, PID={pid}, "
                    f"count={existing.attached_sessions}"
                )
                return

            if existing is not None and existing.owner_pid == pid:
                existing.attached_sessions += 1
                logger.info(
                    f"Namespace creation confirmed: type={ns_type}, PID={pid}, "
                    f"count={existing.attached_sessions}"
                )
                return

            if existing is not None:
                logger.warning(
                    f"Replacing namespace record for {ns_type}: "
                    f"PID {existing.owner_pid} -> {pid}"
                )
            self._namespaces[ns_type] = NamespaceRecord(
                owner_pid=pid, marker_path=marker_path, attached_sessions=1
            )
            logger.info(f"Namespace created: type={ns_type}, PID={pid}")

    def unregister_session(self, ns_type: NamespaceType) -> None:
        """Detach a session from the namespace of ``ns_type``.

        The record is dropped when no sessions remain. The owner process and
        the marker file are left alone: the owner exits on its own once the
        last shell inside the namespace is gone.
        """
        with self._lock:
            if not ns_type.is_shared:
                return

            record = self._namespaces.get(ns_type)
            if record is None:
                return

            record.attached_sessions = max(record.attached_sessions - 1, 0)
            logger.info(
                f"Session unregistered: type={ns_type}, PID={record.owner_pid}, "
                f"count={record.attached_sessions}"
            )
            if record.attached_sessions == 0:
                del self._namespaces[ns_type]
                self._changed.notify_all()
                logger.info(
                    f"Namespace released: type={ns_type}, PID={record.owner_pid}"
                )

    def get_namespace_info(self, ns_type: NamespaceType) -> Optional[NamespaceRecord]:
        """Return a snapshot of the record for ``ns_type``, if any."""
        with self._lock:
            if not ns_type.is_shared:
                return None
            record = self._namespaces.get(ns_type)
            return record.snapshot() if record else None

    def cleanup_stale_namespaces(self) -> List[NamespaceType]:
        """Drop every confirmed record whose owner process has died.

        The marker of each reclaimed namespace is deleted as well.

        Returns:
            The namespace types that were reclaimed.
        """
        with self._lock:
            stale = [
                ns_type
                for ns_type, record in self._namespaces.items()
                if not record.pending and not self._liveness.is_alive(record.owner_pid)
            ]
            for ns_type in stale:
                record = self._namespaces.pop(ns_type)
                remove_marker(record.marker_path)
                logger.info(
                    f"Removed stale namespace: type={ns_type}, PID={record.owner_pid}"
                )
            return stale

    def get_stats(self) -> Dict[str, Any]:
        """Summarize the namespaces currently tracked."""
        with self._lock:
            return {
                "active_namespaces": len(self._namespaces),
                "namespaces": [
                    {
                        "type": ns_type.key,
                        "pid": record.owner_pid,
                        "session_count": record.attached_sessions,
                        "pending": record.pending,
                        "uptime": record.uptime(),
                    }
                    for ns_type, record in self._namespaces.items()
                ],
            }

    def shutdown(self) -> None:
        """Forget all namespaces. Owners and markers are left untouched."""
        with self._lock:
            self._namespaces.clear()
            self._changed.notify_all()
            logger.info("Namespace registry shut down, all namespaces cleared")
