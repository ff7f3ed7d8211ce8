"""Thin CLI wrapper for heyos_builder.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console

from heyos_builder import __version__
from heyos_builder.config import BuildOptions, get_settings, print_settings_json

app = typer.Typer(
    name="heyos-build",
    help="heyOS ISO builder - compile components and assemble the live ISO",
    no_args_is_help=True,
)
console = Console()

EXIT_STAGE_FAILED = 1
EXIT_ENVIRONMENT = 2


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"heyos-builder version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """heyOS ISO builder - compile components and assemble the live ISO."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
        return

    origin_display = (
        str(settings.origin_workspace) if settings.origin_workspace else "(not relocated)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Native build dir:    {settings.native_build_dir}")
    console.print(f"  Build cache dir:     {settings.build_cache_dir}")
    console.print(f"  Origin workspace:    {origin_display}")
    console.print(f"  Installer script:    {settings.installer_script}")
    console.print(f"  Offline packages:    {settings.offline_package_dir}")
    console.print(f"  Build log:           {settings.log_file_name}")
    console.print()
    console.print("[bold]Relocation:[/bold]")
    console.print(f"  Enabled:             {settings.relocate}")
    console.print(f"  Slow mount prefixes: {', '.join(settings.slow_mount_prefixes)}")
    console.print(f"  Checksum sync:       {settings.sync_checksum}")
    console.print()
    console.print("[bold]Builds:[/bold]")
    console.print(f"  Staleness policy:    {settings.staleness_policy.value}")
    console.print(f"  Jobs:                {settings.jobs}")
    console.print(f"  ISO name:            {settings.iso_name or '(from profiledef.sh)'}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Require root:        {settings.require_root}")
    console.print(f"  Log level:           {settings.log_level}")


@app.command()
def build(
    workspace: Annotated[
        Path | None,
        typer.Option(
            "--workspace",
            "-w",
            help="archiso profile directory (default: current directory)",
        ),
    ] = None,
    clean: Annotated[
        bool,
        typer.Option("--clean", help="Wipe build caches and rebuild everything"),
    ] = False,
    greeter_only: Annotated[
        bool,
        typer.Option("--greeter-only", help="Build an ISO that boots into hey-greeter"),
    ] = False,
    heydm_only: Annotated[
        bool,
        typer.Option("--heydm-only", help="Build an ISO that boots straight into heydm"),
    ] = False,
) -> None:
    """Build the heyOS ISO.

    Unchanged components, cached packages and installed image packages
    are reused, so repeated builds only redo what changed.
    """
    from heyos_builder.buildlog import close_build_log, setup_build_log
    from heyos_builder.context import create_context
    from heyos_builder.errors import EnvironmentCheckError, StageFailedError
    from heyos_builder.pipeline import run_pipeline

    try:
        options = BuildOptions(
            force_clean=clean,
            greeter_only=greeter_only,
            heydm_only=heydm_only,
        )
    except ValidationError:
        console.print("[red]Error: Cannot use both --greeter-only and --heydm-only[/red]")
        raise typer.Exit(code=EXIT_ENVIRONMENT) from None

    settings = get_settings()
    try:
        ctx = create_context(workspace or Path.cwd(), settings, options)
    except EnvironmentCheckError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=EXIT_ENVIRONMENT) from None
    setup_build_log(ctx.log_path, relaunched=ctx.relocated, console_level=settings.log_level)

    try:
        result = run_pipeline(ctx)
    except EnvironmentCheckError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=EXIT_ENVIRONMENT) from None
    except StageFailedError as e:
        console.print(f"[red]Build failed in stage '{e.stage}': {e.cause}[/red]")
        console.print(f"  See build log: {ctx.log_path}")
        raise typer.Exit(code=EXIT_STAGE_FAILED) from None
    finally:
        close_build_log()

    if result.relocated:
        return

    console.print()
    console.print("[bold magenta]heyOS ISO built successfully![/bold magenta]")
    console.print(f"  Output: {result.artifact_path}")
    if result.assembly is not None:
        from heyos_builder.image.artifacts import format_size

        console.print(f"  Size:   {format_size(result.assembly.artifact.size_bytes)}")
    minutes, seconds = divmod(int(result.elapsed), 60)
    console.print(f"  Time:   {minutes}m {seconds}s")
    for unit in result.components:
        marker = "rebuilt" if unit.rebuilt else "reused"
        console.print(f"  [green]✓ {unit.unit}[/green] ({marker})")


__all__ = ["app"]
