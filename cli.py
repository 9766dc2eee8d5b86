#!/usr/bin/env python3
"""
HomeGuard CLI
Command line interface for managing rules and evaluating events.
"""
import sys
import json
import argparse
import asyncio
import logging
import time
from pathlib import Path

from rich.panel import Panel
from rich.table import Table

from config import load_config
from exceptions import HomeGuardError
from homeguard.logging_setup import setup_logging
from homeguard.ui import banner, console, report_panel, rules_table, SEVERITY_STYLES
from main import HomeGuardSystem
from rules_engine.parser import RuleParser, TRIGGER_TEMPLATES


logger = logging.getLogger("HomeGuardCLI")


def build_system(args) -> HomeGuardSystem:
    """Build a system from the environment, adjusted by CLI flags."""
    config = load_config(args.config)

    rule_file = getattr(args, "rule_file", None)
    if rule_file:
        # Evaluate against the given rules only
        config.database.path = ":memory:"
        config.store.backend = "sqlite"
        config.store.seed_from_files = False

    system = HomeGuardSystem(config)

    if rule_file:
        if Path(rule_file).is_dir():
            rules = system.parser.parse_multiple_files(rule_file)
        else:
            rules = [system.parser.parse_yaml_file(rule_file)]
        for rule in rules:
            system.store.add(rule)

    return system


def load_event(args) -> dict:
    if args.event_file:
        return json.loads(Path(args.event_file).read_text())
    return json.loads(args.event)


def cmd_rules(args) -> None:
    with build_system(args) as system:
        enabled = True if args.enabled_only else None
        rules = system.store.list(enabled=enabled)
        console.print(rules_table(rules))
        for error in system.store.load_errors:
            console.print(f"[yellow]skipped[/yellow] {error.rule_id or '?'}: {error.message}")


def cmd_templates(args) -> None:
    table = Table(title="Trigger Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Condition")
    table.add_column("Actions")

    for template in TRIGGER_TEMPLATES:
        condition = template["condition"]
        table.add_row(
            template["name"],
            f"{condition['type']} {condition.get('operator', 'equals')} '{condition['value']}'",
            ", ".join(a["type"] for a in template["actions"]),
        )
    console.print(table)


def cmd_validate(args) -> None:
    """Validate rule files without storing them."""
    parser = RuleParser()
    path = Path(args.path)
    files = sorted(path.glob("*.y*ml")) if path.is_dir() else [path]

    failures = 0
    for file_path in files:
        try:
            rule = parser.parse_yaml_file(str(file_path))
        except HomeGuardError as e:
            failures += 1
            console.print(f"[red]invalid[/red] {file_path}: {e.message}")
            continue

        result = parser.validate_rule(rule)
        if result.valid:
            console.print(f"[green]valid[/green]   {file_path}: {rule.id}")
        else:
            failures += 1
            console.print(f"[red]invalid[/red] {file_path}: {rule.id}: {'; '.join(result.errors)}")
        for warning in result.warnings:
            console.print(f"  [yellow]warning[/yellow] {warning}")

    if failures:
        sys.exit(1)


def cmd_evaluate(args) -> None:
    raw = load_event(args)
    with build_system(args) as system:
        start = time.time()
        report = asyncio.run(system.evaluate_raw(raw))
        duration = time.time() - start

        console.print(report_panel(report))
        console.print(f"[dim]Evaluated in {duration * 1000:.1f} ms[/dim]")

        if args.json:
            console.print_json(json.dumps(report.to_dict()))


async def _replay(system: HomeGuardSystem, lines) -> int:
    await system.start()
    submitted = 0
    try:
        for line_no, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                accepted = system.submit_raw(json.loads(line))
            except (ValueError, HomeGuardError) as e:
                logger.warning(f"Line {line_no} skipped: {e}")
                continue
            if accepted:
                submitted += 1
            # Let the workers catch up instead of dropping
            await asyncio.sleep(0)
        await system.loop.join()
    finally:
        await system.stop()
    return submitted


def cmd_replay(args) -> None:
    """Replay a JSON-lines file of raw events through the evaluation loop."""
    with build_system(args) as system:
        with open(args.file, "r", encoding="utf-8") as f:
            submitted = asyncio.run(_replay(system, f))

        table = Table(title="Alerts")
        table.add_column("Event", style="cyan", no_wrap=True)
        table.add_column("Rule")
        table.add_column("Severity")
        table.add_column("Succeeded")
        table.add_column("Failed / skipped")

        for report in system.loop.recent_reports:
            for alert in report.alerts:
                style = SEVERITY_STYLES.get(alert.severity.value, "white")
                not_done = [o.action_type for o in alert.outcomes if not o.succeeded]
                table.add_row(
                    report.event_id,
                    alert.rule_id,
                    f"[{style}]{alert.severity.value}[/{style}]",
                    ", ".join(alert.actions_succeeded) or "-",
                    ", ".join(not_done) or "-",
                )

        console.print(table)
        stats = system.loop.stats()
        console.print(
            Panel.fit(
                f"Submitted: {submitted}\n"
                f"Processed: {stats['processed']}\n"
                f"Dropped: {stats['dropped']}\n"
                f"Failed: {stats['failed']}",
                title="Replay",
                border_style="cyan",
            )
        )


def cmd_seed(args) -> None:
    with build_system(args) as system:
        added = system.seed_rules()
        console.print(f"Seeded {added} rule(s)")


def cmd_serve(args) -> None:
    import uvicorn

    config = load_config(args.config)
    uvicorn.run(
        "api:app",
        host=args.host or config.api.host,
        port=args.port or config.api.port,
        log_config=None,
    )


def main():
    parser = argparse.ArgumentParser(description="HomeGuard CLI")
    parser.add_argument("--config", help="Path to a JSON configuration file")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    rules_parser = subparsers.add_parser("rules", help="List stored rules")
    rules_parser.add_argument("--enabled-only", action="store_true")

    subparsers.add_parser("templates", help="List trigger templates")

    validate_parser = subparsers.add_parser("validate", help="Validate a rule file or directory")
    validate_parser.add_argument("path")

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate a single event")
    source = evaluate_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--event", help="Raw event as JSON")
    source.add_argument("--event-file", help="File holding one raw event as JSON")
    evaluate_parser.add_argument("--rule-file", help="Evaluate against the rules in this YAML file only")
    evaluate_parser.add_argument("--json", action="store_true", help="Also print the report as JSON")

    replay_parser = subparsers.add_parser("replay", help="Replay a JSON-lines event file")
    replay_parser.add_argument("file")
    replay_parser.add_argument("--rule-file", help="Evaluate against the rules in this YAML file only")

    subparsers.add_parser("seed", help="Install the starter rules")

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host")
    serve_parser.add_argument("--port", type=int)

    args = parser.parse_args()
    setup_logging(args.log_level)

    commands = {
        "rules": cmd_rules,
        "templates": cmd_templates,
        "validate": cmd_validate,
        "evaluate": cmd_evaluate,
        "replay": cmd_replay,
        "seed": cmd_seed,
        "serve": cmd_serve,
    }

    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return

    if args.command not in ("templates", "validate", "serve"):
        banner("HomeGuard", f"Command: {args.command}")

    try:
        command(args)
    except HomeGuardError as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        console.print(Panel.fit(f"Error: {e.message}", border_style="red"))
        sys.exit(1)


if __name__ == "__main__":
    main()
