"""Main CLI implementation using Typer."""

import subprocess
from pathlib import Path
from typing import Any, Callable, Optional

import typer
from rich.console import Console
from rich.markup import escape

from genoring import __version__
from genoring.cli.commands import (
    backup_platform,
    compile_service,
    disable_alternative,
    disable_module,
    enable_alternative,
    enable_module,
    generate_compose,
    install_module,
    list_alternatives,
    list_modules,
    list_services,
    reset_platform,
    restore_platform,
    setup_platform,
    show_logs,
    show_status,
    start_platform,
    stop_platform,
    to_docker_service,
    to_local_service,
    uninstall_module,
    update_platform,
    upgrade_platform,
)
from genoring.engine.lifecycle import MODES, Platform
from genoring.errors import GenoringError
from genoring.models.config import Settings
from genoring.utils.logging import setup_logging


# Create Typer app
app = typer.Typer(
    name="genoring",
    help="GenoRing - modular multi-container platform orchestration",
    add_completion=False,
)

# Console for rich output
console = Console()
stderr_console = Console(stderr=True)


def _version_callback(value: bool):
    if value:
        console.print(f"genoring {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    project_dir: Optional[Path] = typer.Option(
        None, "--dir", "-d", help="GenoRing installation directory (default: GENORING_DIR or cwd)"
    ),
    runtime: Optional[str] = typer.Option(None, "--runtime", help="Container runtime (docker, podman)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    non_interactive: bool = typer.Option(False, "--non-interactive", "-y", help="Never ask for confirmation"),
    no_backup: bool = typer.Option(False, "--no-backup", help="Skip the implicit backup of operations"),
    no_exposed_volumes: bool = typer.Option(
        False, "--no-exposed-volumes", help="Use named volumes instead of host directories"
    ),
    hide_compile: bool = typer.Option(False, "--hide-compile", help="Do not compile missing images"),
    platform: Optional[str] = typer.Option(None, "--platform", help="Target platform for image builds"),
    wait_ready: Optional[int] = typer.Option(None, "--wait-ready", help="Readiness budget in seconds"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """Global options."""
    setup_logging("DEBUG" if verbose else "INFO")
    try:
        settings = Settings.from_env(
            project_dir=project_dir,
            runtime=runtime,
            verbose=verbose,
            interactive=not non_interactive,
            no_backup=no_backup,
            no_exposed_volumes=no_exposed_volumes,
            hide_compile=hide_compile,
            platform=platform,
            wait_ready=wait_ready,
            log_level="DEBUG" if verbose else "INFO",
        )
    except ValueError as e:
        stderr_console.print(f"[red]ERROR:[/red] Invalid settings: {e}")
        raise typer.Exit(1) from e
    ctx.obj = settings


def _run_cli_command(
    handler: Callable[..., Any],
    ctx: typer.Context,
    check_runtime: bool = True,
    **kwargs: Any,
):
    """Helper to run a CLI command on a platform with error handling."""
    settings: Settings = ctx.obj
    confirm = typer.confirm if settings.interactive else None
    try:
        platform = Platform(settings, confirm=confirm)
        if check_runtime:
            platform.check_runtime()
        handler(platform, **kwargs)
    except subprocess.CalledProcessError as e:
        details = (e.stderr or e.stdout or "").strip()
        stderr_console.print(f"[red]ERROR:[/red] Command failed: {escape(' '.join(map(str, e.cmd)))}")
        if details:
            stderr_console.print(details, markup=False, highlight=False)
        raise typer.Exit(1) from e
    except GenoringError as e:
        stderr_console.print(f"[red]ERROR:[/red] {escape(str(e))}", markup=True, highlight=False)
        raise typer.Exit(1) from e


def _confirm_or_abort(ctx: typer.Context, message: str):
    if ctx.obj.interactive and not typer.confirm(message):
        raise typer.Abort()


@app.command("start")
def start_command(
    ctx: typer.Context,
    mode: str = typer.Argument("online", help="Start mode (online, backend, offline)"),
):
    """Start GenoRing."""
    if mode not in MODES:
        stderr_console.print(f"[red]ERROR:[/red] Invalid mode '{mode}'. Valid modes: {', '.join(MODES)}")
        raise typer.Exit(1)
    _run_cli_command(start_platform, ctx, mode=mode)


@app.command("stop")
def stop_command(ctx: typer.Context):
    """Stop GenoRing."""
    _run_cli_command(stop_platform, ctx)


@app.command("status")
def status_command(
    ctx: typer.Context,
    module: Optional[str] = typer.Argument(None, help="Show status of a specific module"),
):
    """Show GenoRing or module status."""
    _run_cli_command(show_status, ctx, module=module)


@app.command("modules")
def modules_command(
    ctx: typer.Context,
    which: str = typer.Argument("all", help="Modules to list (all, enabled, disabled)"),
):
    """List modules."""
    _run_cli_command(list_modules, ctx, check_runtime=False, which=which)


@app.command("services")
def services_command(ctx: typer.Context):
    """List enabled services."""
    _run_cli_command(list_services, ctx, check_runtime=False)


@app.command("install")
def install_command(ctx: typer.Context, module: str = typer.Argument(..., help="Module name")):
    """Install and enable a module."""
    _run_cli_command(install_module, ctx, module=module)


@app.command("enable")
def enable_command(ctx: typer.Context, module: str = typer.Argument(..., help="Module name")):
    """Enable a module (installing it if needed)."""
    _run_cli_command(enable_module, ctx, module=module)


@app.command("disable")
def disable_command(ctx: typer.Context, module: str = typer.Argument(..., help="Module name")):
    """Disable a module."""
    _confirm_or_abort(ctx, f"Disable module {module}?")
    _run_cli_command(disable_module, ctx, module=module)


@app.command("uninstall")
def uninstall_command(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
    keep_env: bool = typer.Option(False, "--keep-env", help="Keep the module environment files"),
):
    """Uninstall a module and remove its data."""
    _confirm_or_abort(ctx, f"Uninstall module {module}? Its data will be removed.")
    _run_cli_command(uninstall_module, ctx, module=module, keep_env=keep_env)


@app.command("alternatives")
def alternatives_command(ctx: typer.Context, module: str = typer.Argument(..., help="Module name")):
    """List the alternatives of a module."""
    _run_cli_command(list_alternatives, ctx, check_runtime=False, module=module)


@app.command("enalt")
def enalt_command(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
    alternative: str = typer.Argument(..., help="Alternative name"),
):
    """Enable a module alternative."""
    _run_cli_command(enable_alternative, ctx, check_runtime=False, module=module, alternative=alternative)


@app.command("disalt")
def disalt_command(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
    alternative: str = typer.Argument(..., help="Alternative name"),
):
    """Disable a module alternative."""
    _run_cli_command(disable_alternative, ctx, check_runtime=False, module=module, alternative=alternative)


@app.command("backup")
def backup_command(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Backup name"),
    module: Optional[str] = typer.Argument(None, help="Only back up this module"),
):
    """Back up GenoRing or a module."""
    _run_cli_command(backup_platform, ctx, name=name, module=module)


@app.command("restore")
def restore_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Backup name"),
    module: Optional[str] = typer.Argument(None, help="Only restore this module"),
):
    """Restore a backup."""
    _confirm_or_abort(ctx, f"Restore backup {name}? Current data will be replaced.")
    _run_cli_command(restore_platform, ctx, name=name, module=module)


@app.command("update")
def update_command(
    ctx: typer.Context,
    module: Optional[str] = typer.Argument(None, help="Only update this module"),
):
    """Run module update hooks."""
    _run_cli_command(update_platform, ctx, module=module)


@app.command("upgrade")
def upgrade_command(
    ctx: typer.Context,
    version: Optional[str] = typer.Argument(None, help="Target GenoRing version (default: latest)"),
    module: Optional[str] = typer.Option(None, "--module", "-m", help="Upgrade a module instead"),
    stability: str = typer.Option("", "--stability", help="Minimum stability (RC, beta, alpha, dev)"),
):
    """Upgrade GenoRing or a module."""
    _run_cli_command(upgrade_platform, ctx, version=version, module=module, stability=stability)


@app.command("compile")
def compile_command(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name"),
    service: Optional[str] = typer.Argument(None, help="Service name"),
):
    """Build a service image from module sources."""
    _run_cli_command(compile_service, ctx, module=module, service=service)


@app.command("tolocal")
def tolocal_command(
    ctx: typer.Context,
    service: str = typer.Argument(..., help="Service name"),
    ip: str = typer.Argument(..., help="IP address of the replacing host"),
):
    """Replace a container service by an external host."""
    _run_cli_command(to_local_service, ctx, service=service, ip=ip)


@app.command("todocker")
def todocker_command(ctx: typer.Context, service: str = typer.Argument(..., help="Service name")):
    """Turn a redirected service back into a container."""
    _run_cli_command(to_docker_service, ctx, service=service)


@app.command("logs")
def logs_command(
    ctx: typer.Context,
    service: str = typer.Argument(..., help="Service name"),
    tail: Optional[int] = typer.Option(None, "--tail", "-n", help="Number of lines"),
):
    """Show the logs of a service container."""
    _run_cli_command(show_logs, ctx, service=service, tail=tail)


@app.command("generate")
def generate_command(ctx: typer.Context):
    """Regenerate the docker compose file."""
    _run_cli_command(generate_compose, ctx)


@app.command("setup")
def setup_command(
    ctx: typer.Context,
    module: Optional[str] = typer.Argument(None, help="Only set up this module"),
):
    """Initialize GenoRing."""
    _run_cli_command(setup_platform, ctx, module=module)


@app.command("reset")
def reset_command(
    ctx: typer.Context,
    delete_images: bool = typer.Option(False, "--delete-images", help="Also remove locally built images"),
    keep_env: bool = typer.Option(False, "--keep-env", help="Keep environment files"),
):
    """Remove all data and configuration, then set GenoRing up again."""
    _confirm_or_abort(
        ctx,
        "This will stop all GenoRing containers, REMOVE their data and reset the configuration. Continue?",
    )
    _run_cli_command(reset_platform, ctx, delete_images=delete_images, keep_env=keep_env)


def main():
    """Main entry point for CLI."""
    app()
