"""CLI for nsshare."""

import logging
import os
import uuid
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from nsshare.command.builder import CommandBuilder
from nsshare.errors import MarkerError, NsShareError
from nsshare.namespace.liveness import liveness_checker_for
from nsshare.namespace.marker import read_marker, remove_marker
from nsshare.namespace.registry import NamespaceRegistry
from nsshare.session.manager import SessionRegistry
from nsshare.session.model import ContainerMode, Invocation, SessionConfig


class NsShareCLI:
    """nsshare CLI for shared-namespace shell sessions.

    This class provides a command-line interface to inspect and launch the
    sessions the namespace coordinator decides on. Settings default to the
    NSSHARE_* environment variables and can be overridden per command.

    Attributes:
        app (typer.Typer): The Typer application instance for command registration.
        console (Console): Rich console for formatted output.
    """

    def __init__(self) -> None:
        """Initialize the CLI with common resources."""
        self.app = typer.Typer(
            help="nsshare: shell sessions sharing one container namespace"
        )
        self.console = Console()

        self.app.callback()(self.main_options)
        self.app.command("plan")(self.plan)
        self.app.command("run")(self.run)
        self.app.command("status")(self.status)
        self.app.command("cleanup")(self.cleanup)

    def main_options(
        self,
        verbose: bool = typer.Option(
            False, "--verbose", "-v", help="Enable debug logging"
        ),
    ) -> None:
        """Shell sessions sharing one container namespace."""
        if verbose:
            logging.basicConfig(
                level=logging.DEBUG,
                format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            )

    def _config(
        self,
        mode: Optional[str],
        unshare: Optional[bool],
        share: Optional[bool],
        su: Optional[bool],
        root: Optional[str],
        prefix: Optional[str],
    ) -> SessionConfig:
        try:
            config = SessionConfig.from_env()
            if mode is not None:
                config.container_mode = ContainerMode(mode)
        except ValueError as e:
            self.console.print(f"[bold red]Error:[/] Invalid container mode: {e}")
            raise typer.Exit(1)

        if unshare is not None:
            config.use_namespace_isolation = unshare
        if share is not None:
            config.share_namespace = share
        if su is not None:
            config.use_elevated_privilege = su
        if prefix is not None:
            config.prefix_dir = prefix
            config.state_dir = os.path.join(prefix, "local")
            if root is None:
                config.container_root_dir = os.path.join(config.state_dir, "alpine")
        if root is not None:
            config.container_root_dir = root
        # Re-apply the sharing invariant after overrides
        config.__post_init__()
        return config

    def _print_invocation(self, invocation: Invocation) -> None:
        table = Table(show_header=False)
        table.add_column("FIELD", style="cyan")
        table.add_column("VALUE")
        table.add_row("Program", invocation.program)
        table.add_row("Command", invocation.command_line())
        table.add_row("Working dir", invocation.working_directory)
        table.add_row("Namespace", invocation.namespace_action.value)
        if invocation.target_pid is not None:
            table.add_row("Target PID", str(invocation.target_pid))
        if invocation.marker_path:
            table.add_row("Marker", invocation.marker_path)
        self.console.print(table)

        steps = invocation.required_setup_steps
        if not steps:
            return

        step_table = Table(show_header=True)
        step_table.add_column("#", style="cyan")
        step_table.add_column("WHERE")
        step_table.add_column("STEP", style="green")
        step_table.add_column("DETAIL")
        host_steps = len(invocation.host_setup_steps)
        for index, step in enumerate(steps, start=1):
            where = "host" if index <= host_steps else "namespace"
            step_table.add_row(str(index), where, step.kind.value, step.description)
        self.console.print(step_table)

    def plan(
        self,
        mode: Optional[str] = typer.Option(
            None, "--mode", "-m", help="Container mode (plain_root, chroot)"
        ),
        unshare: Optional[bool] = typer.Option(
            None, "--unshare/--no-unshare", help="Use namespace isolation"
        ),
        share: Optional[bool] = typer.Option(
            None, "--share/--no-share", help="Share one namespace across sessions"
        ),
        su: Optional[bool] = typer.Option(
            None, "--su/--no-su", help="Run through the privilege tool"
        ),
        root: Optional[str] = typer.Option(None, "--root", help="Container root"),
        prefix: Optional[str] = typer.Option(None, "--prefix", help="App prefix"),
    ) -> None:
        """Show the invocation a new session would run.

        This command runs the create-vs-join decision against the marker file
        on disk and prints the resulting program, arguments and setup steps
        without starting anything.
        """
        config = self._config(mode, unshare, share, su, root, prefix)
        registry = NamespaceRegistry(liveness_checker_for(config.use_elevated_privilege))
        try:
            invocation = CommandBuilder(registry).build_command(config)
        except NsShareError as e:
            self.console.print(f"[bold red]Error:[/] {str(e)}")
            raise typer.Exit(1)
        self._print_invocation(invocation)

    def run(
        self,
        session_id: Optional[str] = typer.Option(
            None, "--id", help="Session ID (random if omitted)"
        ),
        mode: Optional[str] = typer.Option(
            None, "--mode", "-m", help="Container mode (plain_root, chroot)"
        ),
        unshare: Optional[bool] = typer.Option(
            None, "--unshare/--no-unshare", help="Use namespace isolation"
        ),
        share: Optional[bool] = typer.Option(
            None, "--share/--no-share", help="Share one namespace across sessions"
        ),
        su: Optional[bool] = typer.Option(
            None, "--su/--no-su", help="Run through the privilege tool"
        ),
        root: Optional[str] = typer.Option(None, "--root", help="Container root"),
        prefix: Optional[str] = typer.Option(None, "--prefix", help="App prefix"),
    ) -> None:
        """Start a session in the foreground and wait for it to exit.

        Chroot sessions without the privilege tool need root privileges.

        Raises:
            typer.Exit: With the session's exit code, or 1 if it could not
                be started.
        """
        config = self._config(mode, unshare, share, su, root, prefix)
        if (
            config.container_mode == ContainerMode.CHROOT
            and not config.use_elevated_privilege
            and os.geteuid() != 0
        ):
            self.console.print(
                "[bold red]Error:[/] Chroot sessions require root privileges or --su"
            )
            raise typer.Exit(1)

        session_id = session_id or str(uuid.uuid4())[:8]
        namespaces = NamespaceRegistry(
            liveness_checker_for(config.use_elevated_privilege)
        )
        sessions = SessionRegistry(namespaces, monitor_exits=False)
        try:
            session = sessions.create_session(session_id, config)
        except (NsShareError, ValueError) as e:
            self.console.print(f"[bold red]Error:[/] {str(e)}")
            sessions.shutdown()
            raise typer.Exit(1)

        self.console.print(
            f"Session [bold green]{session_id}[/] started with PID {session.pid}"
        )
        try:
            exit_code = session.process.wait()
        except KeyboardInterrupt:
            exit_code = 130
        finally:
            sessions.shutdown()
        raise typer.Exit(exit_code)

    def status(
        self,
        su: Optional[bool] = typer.Option(
            None, "--su/--no-su", help="Probe through the privilege tool"
        ),
        prefix: Optional[str] = typer.Option(None, "--prefix", help="App prefix"),
    ) -> None:
        """Show the shared namespace marker and whether its owner is alive."""
        config = self._config(ContainerMode.CHROOT.value, True, True, su, None, prefix)
        marker_path = config.marker_path()

        if not os.path.exists(marker_path):
            self.console.print(f"No shared namespace marker at {marker_path}")
            return

        table = Table(show_header=True)
        table.add_column("MARKER", style="cyan")
        table.add_column("PID")
        table.add_column("STATE")
        try:
            pid = read_marker(marker_path)
        except MarkerError as e:
            table.add_row(marker_path, "-", f"[red]unreadable[/red] ({e})")
            self.console.print(table)
            return

        checker = liveness_checker_for(config.use_elevated_privilege)
        state = "[green]alive[/green]" if checker.is_alive(pid) else "[red]stale[/red]"
        table.add_row(marker_path, str(pid), state)
        self.console.print(table)

    def cleanup(
        self,
        su: Optional[bool] = typer.Option(
            None, "--su/--no-su", help="Probe through the privilege tool"
        ),
        prefix: Optional[str] = typer.Option(None, "--prefix", help="App prefix"),
    ) -> None:
        """Delete the shared namespace marker if its owner is gone."""
        config = self._config(ContainerMode.CHROOT.value, True, True, su, None, prefix)
        marker_path = config.marker_path()

        if not os.path.exists(marker_path):
            self.console.print("Nothing to clean up")
            return

        try:
            pid = read_marker(marker_path)
        except MarkerError:
            pid = None

        checker = liveness_checker_for(config.use_elevated_privilege)
        if pid is not None and checker.is_alive(pid):
            self.console.print(f"Namespace owner [bold]{pid}[/] is alive, keeping marker")
            return

        remove_marker(marker_path)
        self.console.print(f"Removed stale marker [bold]{marker_path}[/]")


def main() -> None:
    """Entry point for the nsshare CLI application.

    Returns:
        None
    """
    cli = NsShareCLI()
    cli.app()


if __name__ == "__main__":
    main()
