"""
Console output helpers for verbose mode and the end-of-run summary
"""

from typing import Any, Optional

import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from smoldev.models import PipelineResult


def print_yaml(console: Console, title: str, data: Any) -> None:
    """Print a title followed by data rendered as YAML"""
    console.print(title, markup=False)
    console.print(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), markup=False, highlight=False)


def show_summary(console: Console, result: PipelineResult, target_dir: Optional[str] = None) -> None:
    """Display pipeline results"""
    table = Table(title="Generation Summary", show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    table.add_row("Files in manifest", str(len(result.manifest)))
    table.add_row("Written", f"[green]{len(result.written)}[/green]")
    table.add_row("Skipped (already present)", str(len(result.skipped)))
    table.add_row("Failed", f"[red]{len(result.failures)}[/red]" if result.failures else "0")
    if target_dir:
        table.add_row("Target directory", target_dir)

    console.print(table)

    if result.failures:
        console.print("\n[bold red]Errors:[/bold red]")
        for path, error in result.failures.items():
            cause = getattr(error, "cause", None) or error
            console.print(f"  [red]✗[/red] {escape(path)}: {type(cause).__name__}: {escape(str(cause))}", highlight=False)
