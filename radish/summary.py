"""
Radish Session Summary

Everything here is derived from the audit ledger, so a summary can be
rebuilt at any time from a flushed session directory.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from radish.governance import Policy, Violation
from radish.ledger import AuditLedger, atomic_write_text

STATUS_COLORS = {
    "completed": "green",
    "stopped": "red",
    "timed_out": "yellow",
    "failed": "red",
}


def render_markdown(
    ledger: AuditLedger,
    status: str,
    reason: str | None = None,
    policy: Policy | None = None,
) -> str:
    meta = ledger.metadata
    ended = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    lines = [
        "# Radish Session Summary",
        "",
        f"**Session ID:** {ledger.session_id}",
        f"**Status:** {status}" + (f" ({reason})" if reason else ""),
        f"**Ended:** {ended}",
        "",
    ]

    if meta is not None:
        lines += [
            "## Configuration",
            f"- Task: {meta.task}",
            f"- Agent: {meta.agent}",
            f"- Timeout: {meta.timeout:g}s",
            f"- Checkpoint Interval: {meta.checkpoint_interval:g}s",
            f"- Base revision: {meta.base_revision or 'none'}",
        ]
        if policy is not None:
            lines += [
                f"- On violation: {policy.on_violation.value}",
                f"- Limits: {policy.max_files_changed} files / {policy.max_lines_changed} lines"
                f" / ${policy.max_cost_usd}",
            ]
        lines.append("")

    lines.append("## Checkpoints")
    checkpoints = ledger.checkpoints
    if not checkpoints:
        lines.append("None created")
    for cp in checkpoints:
        lines.append(f"- `{cp.revision_id[:8]}` [{cp.trigger.value}] {cp.message} @ {cp.created_at.isoformat()}")
    lines.append("")

    lines.append("## Changes")
    changes = ledger.changes
    if not changes:
        lines.append("None recorded")
    for change in changes:
        lines.append(f"- [{change.action.value}] {change.path} @ {change.observed_at.isoformat()}")
    lines.append("")

    lines.append("## Violations")
    violations = ledger.violations
    if not violations:
        lines.append("None detected")
    for v in violations:
        lines.append(f"- {v.kind.value}: {v.detail}" + (f" (`{v.file}`)" if v.file else ""))

    lines += ["", "---", "Generated by Radish", ""]
    return "\n".join(lines)


def write_summary(
    ledger: AuditLedger,
    path: Path,
    status: str,
    reason: str | None = None,
    policy: Policy | None = None,
) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write_text(path, render_markdown(ledger, status, reason, policy))
    return path


def violations_table(violations: list[Violation], title: str = "Violations") -> Table:
    table = Table(title=title, border_style="red")
    table.add_column("#", style="dim")
    table.add_column("Kind")
    table.add_column("File")
    table.add_column("Detail")
    for i, v in enumerate(violations, 1):
        table.add_row(str(i), f"[bold red]{v.kind.value}[/]", v.file or "—", v.detail)
    return table


def print_summary(console: Console, ledger: AuditLedger, status: str, reason: str | None = None) -> None:
    color = STATUS_COLORS.get(status, "white")
    console.print(Panel(
        f"[bold]Status:[/] [{color}]{status}[/]" + (f" — {reason}" if reason else "") + "\n"
        f"[bold]Checkpoints:[/] {len(ledger.checkpoints)}  |  "
        f"[bold]Changes:[/] {len(ledger.changes)}  |  "
        f"[bold]Violations:[/] {len(ledger.violations)}\n"
        f"[bold]Logs:[/] {ledger.session_dir}",
        title=f"🌱 {ledger.session_id}",
        border_style=color,
    ))
    if ledger.violations:
        console.print(violations_table(ledger.violations))
