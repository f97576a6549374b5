"""Command implementations for CLI."""

from typing import Any, Callable, Optional

from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

from genoring.engine.lifecycle import Platform


console = Console()
stderr_console = Console(stderr=True)

STATE_COLORS = {
    "running": "green",
    "online": "green",
    "backend": "yellow",
    "offline": "yellow",
    "": "dim",
}


def _run_action(
    platform: Platform,
    description: str,
    action: Callable[..., Any],
    *args: Any,
    success_msg: Optional[str] = None,
) -> Any:
    """Helper to run a platform action with a progress spinner."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        disable=platform.settings.verbose,
        transient=True,
    ) as progress:
        task = progress.add_task(description, total=None)
        result = action(*args)
        progress.update(task, completed=True)

    if success_msg:
        console.print(success_msg)
    return result


def _state_label(state: str) -> str:
    color = STATE_COLORS.get(state, "red")
    return f"[{color}]{state or 'n/a'}[/{color}]"


def start_platform(platform: Platform, mode: str = "online"):
    _run_action(platform, f"Starting GenoRing ({mode})...", platform.start, mode,
                success_msg=f"[green]✓[/green] GenoRing started in {mode} mode")


def stop_platform(platform: Platform):
    _run_action(platform, "Stopping GenoRing...", platform.stop,
                success_msg="[green]✓[/green] GenoRing stopped")


def show_status(platform: Platform, module: Optional[str] = None):
    """Show platform or module status."""
    if module:
        if not platform.registry.is_enabled(module):
            console.print(f"Module [cyan]{module}[/cyan] is not enabled")
            return
        state = platform.state.module_state(module)
        console.print(f"Module [cyan]{module}[/cyan]: {_state_label(state)}")
        return

    status = platform.status()
    console.print(f"GenoRing: {_state_label(status) if status else '[dim]stopped[/dim]'}")
    states = platform.module_states() if status else {}

    table = Table(title="Enabled modules")
    table.add_column("Module", style="cyan")
    table.add_column("Version", style="magenta")
    table.add_column("State")
    for name in platform.registry.list_enabled():
        table.add_row(
            name,
            platform.registry.installed_version(name),
            _state_label(states.get(name, "")),
        )
    console.print(table)


def list_modules(platform: Platform, which: str = "all"):
    """List modules with their status."""
    registry = platform.registry
    if which == "enabled":
        modules = registry.list_enabled()
    elif which == "disabled":
        modules = registry.list_disabled()
    else:
        modules = registry.list_available()

    table = Table(title="Modules")
    table.add_column("Module", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Version", style="magenta")
    table.add_column("Description", style="dim", max_width=60)
    for name in modules:
        info = registry.module_info(name)
        conf = registry.get_module_conf(name)
        if conf is None:
            status = "[dim]not installed[/dim]"
        elif conf.status == "enabled":
            status = "[green]enabled[/green]"
        else:
            status = "[yellow]disabled[/yellow]"
        table.add_row(name, info.label, status, conf.version if conf else info.version, info.description)
    console.print(table)


def list_services(platform: Platform):
    """List enabled services and their containers."""
    table = Table(title="Services")
    table.add_column("Service", style="cyan")
    table.add_column("Module")
    table.add_column("Container", style="magenta")
    for service, module in sorted(platform.registry.services().items()):
        table.add_row(service, module, platform.registry.container_name(service))
    console.print(table)


def list_alternatives(platform: Platform, module: str):
    alternatives = platform.list_alternatives(module)
    if not alternatives:
        console.print(f"No alternative available for module [cyan]{module}[/cyan]")
        return
    table = Table(title=f"Alternatives of {module}")
    table.add_column("Alternative", style="cyan")
    table.add_column("Description")
    table.add_column("Substitutes")
    table.add_column("Adds")
    table.add_column("Removes")
    for name, alternative in sorted(alternatives.items()):
        table.add_row(
            name,
            alternative.description,
            ", ".join(f"{old} → {new}" for old, new in alternative.substitute.items()),
            ", ".join(alternative.add),
            ", ".join(alternative.remove),
        )
    console.print(table)


def install_module(platform: Platform, module: str):
    _run_action(platform, f"Installing module {module}...", platform.install, module,
                success_msg=f"[green]✓[/green] Module {module} installed")


def enable_module(platform: Platform, module: str):
    _run_action(platform, f"Enabling module {module}...", platform.enable, module,
                success_msg=f"[green]✓[/green] Module {module} enabled")


def disable_module(platform: Platform, module: str):
    _run_action(platform, f"Disabling module {module}...", platform.disable, module,
                success_msg=f"[green]✓[/green] Module {module} disabled")


def uninstall_module(platform: Platform, module: str, keep_env: bool = False):
    _run_action(platform, f"Uninstalling module {module}...", platform.uninstall, module, keep_env,
                success_msg=f"[green]✓[/green] Module {module} uninstalled")


def enable_alternative(platform: Platform, module: str, alternative: str):
    platform.enable_alternative(module, alternative)
    console.print(f"[green]✓[/green] Alternative {alternative} enabled on module {module}")


def disable_alternative(platform: Platform, module: str, alternative: str):
    platform.disable_alternative(module, alternative)
    console.print(f"[green]✓[/green] Alternative {alternative} disabled on module {module}")


def backup_platform(platform: Platform, name: Optional[str] = None, module: Optional[str] = None):
    target = _run_action(platform, "Backing up GenoRing...", platform.backup, name, module)
    console.print(f"[green]✓[/green] Backup created in {target}")


def restore_platform(platform: Platform, name: str, module: Optional[str] = None):
    _run_action(platform, f"Restoring backup {name}...", platform.restore, name, module,
                success_msg=f"[green]✓[/green] Backup {name} restored")


def update_platform(platform: Platform, module: Optional[str] = None):
    _run_action(platform, f"Updating {module or 'GenoRing'}...", platform.update, module,
                success_msg="[green]✓[/green] Update done")


def upgrade_platform(
    platform: Platform,
    version: Optional[str] = None,
    module: Optional[str] = None,
    stability: str = "",
):
    """Upgrade GenoRing or a single module."""
    if module:
        changed = platform.upgrade_module(module)
        target = f"module {module}"
    else:
        changed = platform.upgrade(version, stability)
        target = "GenoRing"
    if changed:
        console.print(f"[green]✓[/green] {target} upgraded")
    else:
        console.print(f"{target} left unchanged")


def compile_service(platform: Platform, module: str, service: Optional[str] = None):
    tag = _run_action(platform, f"Compiling {module} sources...", platform.compile, module, service)
    console.print(f"[green]✓[/green] Image {tag} built")


def to_local_service(platform: Platform, service: str, ip: str):
    platform.to_local_service(service, ip)
    console.print(f"[green]✓[/green] Service {service} now points to {ip}")


def to_docker_service(platform: Platform, service: str):
    platform.to_docker_service(service)
    console.print(f"[green]✓[/green] Service {service} runs in a container again")


def show_logs(platform: Platform, service: str, tail: Optional[int] = None):
    console.print(platform.logs(service, tail), markup=False, highlight=False)


def setup_platform(platform: Platform, module: Optional[str] = None):
    _run_action(platform, "Setting up GenoRing...", platform.setup, module,
                success_msg="[green]✓[/green] GenoRing setup done")


def reset_platform(platform: Platform, delete_images: bool = False, keep_env: bool = False):
    _run_action(platform, "Reinitializing GenoRing...", platform.reset, delete_images, keep_env)
    setup_platform(platform)


def generate_compose(platform: Platform):
    result = platform.generate()
    console.print(
        f"[green]✓[/green] {platform.settings.compose_file.name} generated "
        f"({len(result.document['services'])} services, {len(result.document['volumes'])} volumes)"
    )
