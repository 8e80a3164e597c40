"""Rich tables for history and standards listings."""
from typing import Any, Dict, List, Sequence

from rich.console import Console
from rich.table import Table

from schemas.acceptance import AcceptanceStandard, TemplateBinding

console = Console()


def verdict_style(passed: bool) -> str:
    return "[green]PASS[/green]" if passed else "[red]FAIL[/red]"


def history_table(title: str, entries: List[Dict[str, Any]]) -> Table:
    """One row per stored run: verdict plus the mismatch counts that feed it."""
    table = Table(title=title)

    table.add_column("Run", style="cyan")
    table.add_column("Standard")
    table.add_column("Verdict", justify="center")
    for header in ("Missing", "Extra", "OK/NG", "Defect", "Extent", "Items"):
        table.add_column(header, justify="right")

    for entry in entries:
        counts = entry.get("counts", {})
        table.add_row(
            entry.get("run_id", ""),
            entry.get("standard_name", ""),
            verdict_style(bool(entry.get("passed"))),
            str(counts.get("missing", 0)),
            str(counts.get("extra", 0)),
            str(counts.get("ok_ng", 0)),
            str(counts.get("defect_type", 0)),
            str(counts.get("extent", 0)),
            f"[dim]{entry.get('item_mismatches', 0)}[/dim]",
        )
    return table


def standards_table(title: str, standards: Sequence[AcceptanceStandard]) -> Table:
    table = Table(title=title)

    table.add_column("Name", style="cyan")
    table.add_column("OK/NG", justify="right")
    table.add_column("Defect", justify="right")
    table.add_column("Extent", justify="right")
    table.add_column("Abs", justify="right")
    table.add_column("Ratio", justify="right")
    table.add_column("Overrides", justify="right")

    for standard in standards:
        table.add_row(
            f"[bold]{standard.name}[/bold]" if standard.is_default else standard.name,
            str(standard.allowed_ok_ng_mismatch),
            str(standard.allowed_defect_type_mismatch),
            str(standard.allowed_extent_mismatch),
            f"{standard.default_tolerance_abs:g}",
            f"{standard.default_tolerance_ratio:g}",
            str(len(standard.item_tolerances)),
        )
    return table


def bindings_table(bindings: Sequence[TemplateBinding]) -> Table:
    table = Table(title="Template bindings")
    table.add_column("Template", style="cyan")
    table.add_column("Standard")
    for binding in bindings:
        table.add_row(binding.template_name, binding.bound_standard_name or "")
    return table


def show(table: Table) -> None:
    console.print()
    console.print(table)
