#!/usr/bin/env python3
"""
Property Notice Maintenance

Command-line jobs over the stored notices: geocode the ones without
coordinates, re-clean village names and re-run the refinement pass.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / "src"))

from notice_extractor import NoticeError, Settings, init_services, validate_config
from notice_extractor import pipeline

app = typer.Typer(
    name="notice-maintenance",
    help="Maintenance jobs for stored property notices.",
    add_completion=False,
)
console = Console()


def _services(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    settings = Settings.from_env()
    config_status = validate_config(settings)
    for issue in config_status["issues"]:
        console.print(f"[yellow]⚠[/] {issue}")

    services = init_services(settings)
    if not services.store.is_configured:
        console.print("[bold red]Configuration Error:[/] Firestore credentials are required")
        console.print("\n[dim]Please check your .env file.[/]")
        raise typer.Exit(1)
    return services


@app.command("geocode-existing")
def geocode_existing(
    delay: float = typer.Option(0.2, "--delay", help="Seconds to wait between geocoding calls"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Geocode every stored notice that has no coordinates yet.
    """
    services = _services(verbose)
    try:
        summary = pipeline.geocode_existing(services, delay=delay)
    except NoticeError as e:
        console.print(f"\n[bold red]Error:[/] {e.message}")
        raise typer.Exit(1)

    table = Table(title="Geocoding results")
    table.add_column("ID", style="dim")
    table.add_column("Village")
    table.add_column("Status")
    table.add_column("Coordinates / error")
    for result in summary["results"]:
        coords = result["coordinates"]
        table.add_row(
            result["id"],
            result["village_name"] or "",
            f"[green]{result['status']}[/]" if result["success"] else f"[red]{result['status']}[/]",
            f"{coords['lat']:.5f}, {coords['lng']:.5f}" if coords else (result["error"] or ""),
        )
    console.print(table)
    console.print(f"\n[bold]{summary['successful']}/{summary['processed']}[/] villages geocoded")


@app.command("fix-village-names")
def fix_village_names(
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show what would change"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Re-run the village name cleanup over every stored notice.
    """
    services = _services(verbose)
    try:
        summary = pipeline.fix_village_names(services, dry_run=dry_run)
    except NoticeError as e:
        console.print(f"\n[bold red]Error:[/] {e.message}")
        raise typer.Exit(1)

    if summary["changes"]:
        table = Table(title="Village names" + (" (dry run)" if dry_run else ""))
        table.add_column("ID", style="dim")
        table.add_column("Original")
        table.add_column("Cleaned", style="green")
        for change in summary["changes"]:
            table.add_row(change["id"], change["original"], change["cleaned"])
        console.print(table)

    verb = "would be fixed" if dry_run else "fixed"
    console.print(f"\n[bold]{summary['fixed']}[/] names {verb}, {summary['skipped']} already clean")


@app.command("refine-batch")
def refine_batch(
    ids: Optional[List[str]] = typer.Argument(None, help="Notice IDs to refine"),
    refine_all: bool = typer.Option(False, "--all", help="Refine every notice not refined yet"),
    delay: float = typer.Option(0.5, "--delay", help="Seconds to wait between notices"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Run the Gemini refinement pass over stored notices.
    """
    services = _services(verbose)
    try:
        summary = pipeline.refine_batch(services, ids=ids, refine_all=refine_all, delay=delay)
    except NoticeError as e:
        console.print(f"\n[bold red]Error:[/] {e.message}")
        raise typer.Exit(1)

    for result in summary["results"]:
        if result["success"]:
            console.print(f"  [green]✓[/] {result['id']}")
        else:
            console.print(f"  [red]✗[/] {result['id']} - {result.get('error') or 'not refined'}")
    console.print(f"\n{summary['message']}")


if __name__ == "__main__":
    app()
