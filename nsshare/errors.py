"""Exceptions raised by nsshare."""


class NsShareError(Exception):
    """Base class for nsshare errors."""


class MarkerError(NsShareError):
    """Raised when a namespace marker file is missing, unreadable or corrupt."""


class CommandBuildError(NsShareError):
    """Raised when a session invocation cannot be constructed."""


class SessionStartError(NsShareError):
    """Raised when a session process cannot be started."""
