"""Session configuration, invocation and session models."""

import os
import shlex
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from nsshare.constants import (
    MARKER_FILE_NAME,
    NSSHARE_NATIVE_LIB_DIR,
    NSSHARE_PREFIX_DIR,
    NSSHARE_ROOT_DIR,
    TRUTHY_VALUES,
)


class ContainerMode(str, Enum):
    """How the container root is entered.

    PLAIN_ROOT re-executes into the root through the rootless isolation
    helper, CHROOT uses a real chroot and optionally Linux namespaces.
    """

    PLAIN_ROOT = "plain_root"
    CHROOT = "chroot"


class NamespaceAction(str, Enum):
    """What an invocation does with the shared namespace slot."""

    NONE = "none"
    CREATE = "create"
    JOIN = "join"


class StepKind(str, Enum):
    """Kinds of setup steps an invocation may require."""

    MOUNT_PROC = "mount_proc"
    BIND_MOUNT = "bind_mount"
    PERSIST_MARKER = "persist_marker"
    LAUNCH_INIT = "launch_init"
    EXEC_INIT = "exec_init"


@dataclass(frozen=True)
class NamespaceType:
    """Configuration-derived key identifying one shareable namespace slot.

    Attributes:
        container_mode: Container mode the slot belongs to.
        use_namespace_isolation: Whether sessions unshare namespaces.
        share_namespace: Whether sessions share one namespace.
    """

    container_mode: ContainerMode
    use_namespace_isolation: bool
    share_namespace: bool

    @property
    def is_shared(self) -> bool:
        """Whether namespace sharing is active for this slot."""
        return (
            self.container_mode == ContainerMode.CHROOT
            and self.use_namespace_isolation
            and self.share_namespace
        )

    @property
    def key(self) -> str:
        if self.container_mode == ContainerMode.PLAIN_ROOT:
            return ContainerMode.PLAIN_ROOT.value
        if self.is_shared:
            return "chroot-shared"
        if self.use_namespace_isolation:
            return "chroot-isolated"
        return "chroot"

    def marker_file_name(self) -> str:
        """Return the marker file name for this slot."""
        if self.is_shared:
            return MARKER_FILE_NAME
        return f"{MARKER_FILE_NAME}-{self.key}"

    def __str__(self) -> str:
        return self.key


def _env_flag(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY_VALUES


@dataclass
class SessionConfig:
    """Container-mode settings a session is created with.

    Attributes:
        container_mode: PLAIN_ROOT or CHROOT.
        use_namespace_isolation: Run the chroot inside fresh namespaces.
        share_namespace: Let sessions share the first session's namespaces.
            Forced to False when namespace isolation is off.
        use_elevated_privilege: Wrap commands with the privilege tool.
        seccomp: Passed through to the shell as SECCOMP=1.
        container_root_dir: Root filesystem of the container.
        native_lib_dir: Directory holding the isolation helper libraries.
        prefix_dir: Application prefix.
        state_dir: Directory holding markers, proc shims and local binaries.
            Defaults to the local/ directory under the prefix.
    """

    container_mode: ContainerMode = ContainerMode.CHROOT
    use_namespace_isolation: bool = False
    share_namespace: bool = False
    use_elevated_privilege: bool = False
    seccomp: bool = False
    container_root_dir: str = NSSHARE_ROOT_DIR
    native_lib_dir: str = NSSHARE_NATIVE_LIB_DIR
    prefix_dir: str = NSSHARE_PREFIX_DIR
    state_dir: Optional[str] = None

    def __post_init__(self) -> None:
        if self.state_dir is None:
            self.state_dir = os.path.join(self.prefix_dir, "local")
        if isinstance(self.container_mode, str):
            self.container_mode = ContainerMode(self.container_mode)
        if not self.use_namespace_isolation:
            self.share_namespace = False

    @property
    def namespace_type(self) -> NamespaceType:
        return NamespaceType(
            container_mode=self.container_mode,
            use_namespace_isolation=self.use_namespace_isolation,
            share_namespace=self.share_namespace,
        )

    def marker_path(self) -> str:
        """Return the marker file path for this configuration's slot."""
        return os.path.join(self.state_dir, self.namespace_type.marker_file_name())

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SessionConfig":
        """Build a configuration from NSSHARE_* environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Returns:
            A SessionConfig populated from the environment.

        Raises:
            ValueError: If NSSHARE_CONTAINER_MODE is not a known mode.
        """
        environ = os.environ if environ is None else environ
        prefix_dir = environ.get("NSSHARE_PREFIX", NSSHARE_PREFIX_DIR)
        state_dir = environ.get("NSSHARE_STATE_DIR", os.path.join(prefix_dir, "local"))
        return cls(
            container_mode=ContainerMode(
                environ.get("NSSHARE_CONTAINER_MODE", ContainerMode.CHROOT.value)
            ),
            use_namespace_isolation=_env_flag(environ, "NSSHARE_UNSHARE"),
            share_namespace=_env_flag(environ, "NSSHARE_SHARE_NAMESPACE"),
            use_elevated_privilege=_env_flag(environ, "NSSHARE_USE_SU"),
            seccomp=_env_flag(environ, "NSSHARE_SECCOMP"),
            container_root_dir=environ.get(
                "NSSHARE_ROOT_DIR", os.path.join(state_dir, "alpine")
            ),
            native_lib_dir=environ.get("NSSHARE_NATIVE_LIB_DIR", NSSHARE_NATIVE_LIB_DIR),
            prefix_dir=prefix_dir,
            state_dir=state_dir,
        )


@dataclass(frozen=True)
class SetupStep:
    """One setup action an invocation requires.

    Attributes:
        kind: What the step does.
        argv: Command and arguments. For PERSIST_MARKER this is the marker path.
        description: Human-readable summary used in logs.
        tolerate_failure: Keep going when the step fails.
    """

    kind: StepKind
    argv: Tuple[str, ...]
    description: str = ""
    tolerate_failure: bool = False

    def render(self) -> str:
        """Render the step as one line of a POSIX shell script."""
        if self.kind == StepKind.PERSIST_MARKER:
            # $$ is 1 inside a new PID namespace; the host procfs still
            # reports the shell's host PID until proc is remounted.
            return (
                "read -r owner_pid _ < /proc/self/stat && "
                f'echo "$owner_pid" > {shlex.quote(self.argv[0])}'
            )

        line = shlex.join(self.argv)
        if self.kind == StepKind.EXEC_INIT:
            return f"exec {line}"
        if self.kind == StepKind.LAUNCH_INIT:
            return f"{line} &\nwait $!"
        if self.tolerate_failure:
            return f"{line} 2>/dev/null || true"
        return line


@dataclass
class Invocation:
    """The process to execute for a session and what must happen first.

    Attributes:
        argv: Full argument vector; argv[0] is the program.
        working_directory: Directory the process starts in.
        host_setup_steps: Steps to run on the host before the process starts.
        namespace_setup_steps: Steps the process runs inside its new namespace.
        namespace_action: Whether the session creates or joins a shared
            namespace.
        namespace_type: Slot the action applies to, if any.
        marker_path: Marker file of that slot, if any.
        target_pid: Owner pid a joining session enters.
    """

    argv: List[str]
    working_directory: str
    host_setup_steps: List[SetupStep] = field(default_factory=list)
    namespace_setup_steps: List[SetupStep] = field(default_factory=list)
    namespace_action: NamespaceAction = NamespaceAction.NONE
    namespace_type: Optional[NamespaceType] = None
    marker_path: Optional[str] = None
    target_pid: Optional[int] = None

    @property
    def program(self) -> str:
        return self.argv[0]

    @property
    def required_setup_steps(self) -> List[SetupStep]:
        """All setup steps in execution order."""
        return [*self.host_setup_steps, *self.namespace_setup_steps]

    def command_line(self) -> str:
        """Return the invocation as a single shell-quoted string."""
        return shlex.join(self.argv)


@dataclass
class Session:
    """A live shell session.

    Attributes:
        id: Identifier, unique among live sessions.
        process: Handle of the running process.
        config: Settings the session was created with.
        invocation: Invocation the process was started from.
        namespace_type: Shared namespace slot the session is attached to.
        created_at: Timestamp when the session was created.
    """

    id: str
    process: Any
    config: SessionConfig
    invocation: Invocation
    namespace_type: Optional[NamespaceType] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    def is_running(self) -> bool:
        """Whether the session's process has not exited yet."""
        return self.process.poll() is None
