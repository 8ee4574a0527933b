"""Namespace record model."""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime


@dataclass
class NamespaceRecord:
    """A live shared namespace tracked by the registry.

    Attributes:
        owner_pid: PID of the process that created the namespace.
        marker_path: Path of the persisted PID marker.
        attached_sessions: Number of sessions attached to the namespace.
        pending: The creating session has reserved the slot but its owner
            PID is not known yet.
        created_at: Timestamp when the record was created.
    """

    owner_pid: int
    marker_path: str
    attached_sessions: int = 0
    pending: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    def snapshot(self) -> "NamespaceRecord":
        """Return a detached copy of the record."""
        return replace(self)

    def uptime(self) -> float:
        """Seconds since the record was created."""
        return (datetime.now() - self.created_at).total_seconds()

    def to_dict(self) -> dict:
        """Serialize the record to a dictionary.

        Returns:
            A dictionary with the datetime field converted to ISO 8601.
        """
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data
