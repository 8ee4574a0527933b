"""Command builder for session invocations."""

import logging
import os
from typing import List, Optional

from nsshare.constants import (
    CHROOT_BINARY,
    CONTAINER_HOME,
    CONTAINER_INIT,
    CONTAINER_SHELL,
    DETACHED_SHELL_COMMAND,
    HOST_SHELL,
    INTERACTIVE_SHELL_COMMAND,
    LINKER64_PATH,
    LINKER_PATH,
    NSENTER_BINARY,
    PROC_STAT_SHIMS,
    PROOT_BIND_MOUNTS,
    PROOT_DEVICE_BINDS,
    PROOT_LIBRARY,
    UNSHARE_BINARY,
)
from nsshare.errors import CommandBuildError
from nsshare.namespace.mounts import MountManager
from nsshare.namespace.registry import NamespaceRegistry
from nsshare.session.model import (
    ContainerMode,
    Invocation,
    NamespaceAction,
    SessionConfig,
    SetupStep,
    StepKind,
)
from nsshare.utils.process import maybe_elevated

logger = logging.getLogger(__name__)


class CommandBuilder:
    """Decides which process a session runs and how it is set up.

    The decision table, evaluated in order:

    1. PLAIN_ROOT: re-exec into the root through proot with bind flags.
    2. CHROOT without isolation: bind-mount on the host, then chroot.
    3. CHROOT with isolated namespaces: unshare, mount inside, exec init.
    4. CHROOT with a shared namespace: create it through unshare when this is
       the first session, otherwise nsenter the owner's namespaces.

    Args:
        namespace_registry: Registry deciding create-vs-join for shared
            namespaces.
        mount_manager: Source of the mount setup steps.
    """

    def __init__(
        self,
        namespace_registry: NamespaceRegistry,
        mount_manager: Optional[MountManager] = None,
    ) -> None:
        self._registry = namespace_registry
        self._mounts = mount_manager or MountManager()

    def build_command(self, config: SessionConfig) -> Invocation:
        """Build the invocation for a new session.

        Args:
            config: Settings of the session.

        Returns:
            The invocation to execute.

        Raises:
            CommandBuildError: If the container root is missing or the
                invocation cannot be constructed.
        """
        root = config.container_root_dir
        if not root or not os.path.isdir(root):
            logger.error(f"Container root {root!r} does not exist")
            raise CommandBuildError(f"Container root {root!r} does not exist")

        if config.container_mode == ContainerMode.PLAIN_ROOT:
            invocation = self._build_plain_root(config)
        elif not config.use_namespace_isolation:
            invocation = self._build_chroot(config)
        elif not config.share_namespace:
            invocation = self._build_isolated(config)
        else:
            invocation = self._build_shared(config)

        logger.debug(
            f"Built {config.namespace_type} invocation: {invocation.command_line()}"
        )
        return invocation

    def _build_plain_root(self, config: SessionConfig) -> Invocation:
        linker = LINKER64_PATH if os.path.exists(LINKER64_PATH) else LINKER_PATH
        proot = os.path.join(config.native_lib_dir, PROOT_LIBRARY)

        binds = list(PROOT_BIND_MOUNTS)
        binds += [
            (os.path.join(config.state_dir, name), guest)
            for name, guest in PROC_STAT_SHIMS
        ]
        binds += PROOT_DEVICE_BINDS

        argv = [linker, proot, "-r", config.container_root_dir]
        for host_path, guest_path in binds:
            argv += ["-b", f"{host_path}:{guest_path}"]
        argv += ["-w", CONTAINER_HOME, CONTAINER_SHELL, "-c", INTERACTIVE_SHELL_COMMAND]
        return Invocation(argv=argv, working_directory=CONTAINER_HOME)

    def _build_chroot(self, config: SessionConfig) -> Invocation:
        root = config.container_root_dir
        argv = [CHROOT_BINARY, root, CONTAINER_SHELL, "-c", INTERACTIVE_SHELL_COMMAND]
        return Invocation(
            argv=maybe_elevated(argv, config.use_elevated_privilege),
            working_directory=CONTAINER_HOME,
            host_setup_steps=self._mounts.bind_mount_steps(root),
        )

    def _build_isolated(self, config: SessionConfig) -> Invocation:
        root = config.container_root_dir
        steps = self._namespace_mount_steps(root)
        steps.append(
            SetupStep(
                kind=StepKind.EXEC_INIT,
                argv=(CHROOT_BINARY, root, CONTAINER_INIT),
                description="init as PID 1",
            )
        )
        return self._unshare_invocation(config, steps, NamespaceAction.NONE)

    def _build_shared(self, config: SessionConfig) -> Invocation:
        ns_type = config.namespace_type
        marker_path = config.marker_path()
        record = self._registry.register_session(ns_type, marker_path)

        try:
            if record is None:
                return self._build_shared_create(config, marker_path)
            return self._build_shared_join(config, record.owner_pid, marker_path)
        except Exception:
            # Give back the attachment or the creation reservation
            self._registry.unregister_session(ns_type)
            raise

    def _build_shared_create(self, config: SessionConfig, marker_path: str) -> Invocation:
        try:
            os.makedirs(os.path.dirname(marker_path), exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot prepare marker directory for {marker_path}: {e}")
            raise CommandBuildError(
                f"Cannot prepare marker directory for {marker_path}: {e}"
            ) from e

        root = config.container_root_dir
        steps = [
            SetupStep(
                kind=StepKind.PERSIST_MARKER,
                argv=(marker_path,),
                description=f"owner PID -> {marker_path}",
            )
        ]
        steps += self._namespace_mount_steps(root)
        steps.append(
            SetupStep(
                kind=StepKind.LAUNCH_INIT,
                argv=(CHROOT_BINARY, root, CONTAINER_INIT),
                description="init in background, kept alive by the owner shell",
            )
        )
        logger.info(f"First session creates namespace {config.namespace_type}")
        return self._unshare_invocation(
            config, steps, NamespaceAction.CREATE, marker_path=marker_path
        )

    def _build_shared_join(
        self, config: SessionConfig, owner_pid: int, marker_path: str
    ) -> Invocation:
        argv = [
            NSENTER_BINARY,
            "-t",
            str(owner_pid),
            "-m",
            "-p",
            "-u",
            "-i",
            CHROOT_BINARY,
            config.container_root_dir,
            CONTAINER_SHELL,
            "-c",
            DETACHED_SHELL_COMMAND,
        ]
        logger.info(f"Session joins namespace {config.namespace_type} of PID {owner_pid}")
        return Invocation(
            argv=maybe_elevated(argv, config.use_elevated_privilege),
            working_directory=CONTAINER_HOME,
            namespace_action=NamespaceAction.JOIN,
            namespace_type=config.namespace_type,
            marker_path=marker_path,
            target_pid=owner_pid,
        )

    def _namespace_mount_steps(self, root: str) -> List[SetupStep]:
        return [self._mounts.proc_mount_step(root), *self._mounts.bind_mount_steps(root)]

    def _unshare_invocation(
        self,
        config: SessionConfig,
        steps: List[SetupStep],
        action: NamespaceAction,
        marker_path: Optional[str] = None,
    ) -> Invocation:
        script = "\n".join(step.render() for step in steps)
        argv = [UNSHARE_BINARY, "-a", "-f", HOST_SHELL, "-c", script]
        return Invocation(
            argv=maybe_elevated(argv, config.use_elevated_privilege),
            working_directory=CONTAINER_HOME,
            namespace_setup_steps=steps,
            namespace_action=action,
            namespace_type=config.namespace_type if action != NamespaceAction.NONE else None,
            marker_path=marker_path,
        )
