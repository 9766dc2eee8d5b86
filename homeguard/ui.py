from typing import Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "green",
}

OUTCOME_STYLES = {
    "succeeded": "green",
    "failed": "red",
    "skipped": "dim",
}


def banner(title: str, subtitle: Optional[str] = None) -> None:
    text = title if subtitle is None else f"{title}\n{subtitle}"
    console.print(Panel.fit(text, border_style="cyan"))


def rules_table(rules: Iterable) -> Table:
    table = Table(title="Rules", show_lines=False)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Condition")
    table.add_column("Sensitivity")
    table.add_column("Actions")
    table.add_column("Enabled", justify="center")

    for rule in rules:
        table.add_row(
            rule.id,
            rule.name,
            f"{rule.condition_type.value} {rule.operator.value} '{rule.condition_value}'",
            rule.sensitivity.value,
            ", ".join(f"{a.type}:{a.value}" for a in rule.actions) or "-",
            "[green]yes[/green]" if rule.enabled else "[dim]no[/dim]",
        )
    return table


def report_panel(report) -> Panel:
    """Render an evaluation report."""
    lines = [
        f"Event: {report.event_id}",
        f"Rules evaluated: {report.rules_evaluated} (snapshot v{report.snapshot_version})",
    ]
    if report.degraded:
        lines.append("[yellow]Degraded: rule store unavailable, cached rules used[/yellow]")

    if not report.alerts:
        lines.append("[dim]No rule matched[/dim]")

    for alert in report.alerts:
        style = SEVERITY_STYLES.get(alert.severity.value, "white")
        lines.append(f"\n[{style}]{alert.severity.value.upper()}[/{style}] {alert.rule_name or alert.rule_id}: {alert.message}")
        for outcome in alert.outcomes:
            o_style = OUTCOME_STYLES.get(outcome.status.value, "white")
            reason = f" ({outcome.reason})" if outcome.reason else ""
            lines.append(f"  [{o_style}]{outcome.status.value:<9}[/{o_style}] {outcome.action_type}{reason}")

    for error in report.errors:
        lines.append(f"[red]error[/red] {error.get('error_type')}: {error.get('message')}")

    border = "red" if report.alerts else "green"
    return Panel("\n".join(lines), title="Evaluation", border_style=border)
