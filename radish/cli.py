"""
Radish CLI entry point.

Commands:
    radish run "task description"           — supervise an agent session
    radish check [--since REF]               — one-shot guardrail check of the working tree
    radish rollback REVISION [--yes]         — reset the working tree to a checkpoint
    radish show SESSION_DIR [--markdown]     — render a flushed session ledger
"""

from __future__ import annotations

import signal
import sys
from pathlib import Path

import click
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from radish import __version__
from radish.agents import AgentAdapterError, build_agent
from radish.agents.commands import CommandLog
from radish.config_loader import ConfigError, RadishConfig, load_config_or_defaults
from radish.governance import Policy, ViolationDetector
from radish.ledger import AuditLedger, LedgerError
from radish.session import Session
from radish.summary import print_summary, render_markdown, violations_table
from radish.telemetry import Telemetry
from radish.workspace import ChangeInspector, CheckpointError, CheckpointManager, GitRepo

console = Console()

positive = click.FloatRange(min=0, min_open=True)


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format="<blue>[{time:YYYY-MM-DD HH:mm:ss}]</blue> <level>{message}</level>",
    )


def _policy(config: RadishConfig) -> Policy:
    try:
        return config.policy()
    except ConfigError as e:
        logger.warning(f"[CONFIG] {e}")
        return Policy.defaults()


def _sessions_dir(config: RadishConfig, repo: Path) -> Path:
    sessions_dir = Path(config.logging.sessions_dir).expanduser()
    return sessions_dir if sessions_dir.is_absolute() else repo / sessions_dir


def _print_plan(task: str, kind: str, config: RadishConfig, policy: Policy, repo: Path) -> None:
    table = Table(title="Guardrails", border_style="cyan")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Allowed paths", ", ".join(sorted(policy.allowed_paths)) or "(any)")
    table.add_row("Forbidden paths", ", ".join(sorted(policy.forbidden_paths)) or "(none)")
    table.add_row("Forbidden commands", ", ".join(sorted(policy.forbidden_commands)) or "(none)")
    table.add_row("Max files changed", str(policy.max_files_changed))
    table.add_row("Max lines changed", str(policy.max_lines_changed))
    table.add_row("Max cost (USD)", str(policy.max_cost_usd))
    table.add_row("On violation", policy.on_violation.value)

    console.print(Panel(
        f"[bold green]Task:[/] {task[:120]}\n"
        f"[bold]Agent:[/] {kind}  |  [bold]Timeout:[/] {config.session.timeout:g}s  |  "
        f"[bold]Checkpoints:[/] every {config.session.checkpoint_interval:g}s\n"
        f"[bold]Repository:[/] {repo}",
        title="🌱 RADISH",
        subtitle="Autonomous loops, guarded.",
        border_style="bright_green",
    ))
    console.print(table)


@click.group()
@click.version_option(version=__version__, prog_name="Radish")
def main() -> None:
    """Radish - autonomous coding loops with safety guardrails."""


@main.command()
@click.argument("task")
@click.option("-a", "--agent", default=None, help="Agent kind: claude, cursor, aider, command.")
@click.option("--agent-command", default=None, help="Command that runs the agent; '{task}' is substituted.")
@click.option("-c", "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Path to radish.yaml.")
@click.option("-t", "--timeout", type=positive, default=None, help="Session timeout in seconds.")
@click.option("--interval", type=positive, default=None, help="Seconds between checkpoints.")
@click.option("--repo", type=click.Path(exists=True, file_okay=False, path_type=Path), default=Path("."),
              help="Working tree to guard.")
@click.option("-d", "--dry-run", is_flag=True, help="Show what would be done without executing.")
@click.option("--no-telemetry", is_flag=True, help="Disable telemetry for this session.")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
def run(
    task: str,
    agent: str | None,
    agent_command: str | None,
    config_path: Path | None,
    timeout: float | None,
    interval: float | None,
    repo: Path,
    dry_run: bool,
    no_telemetry: bool,
    verbose: bool,
) -> None:
    """Run an autonomous session for TASK under guardrails."""
    _configure_logging(verbose)
    repo = repo.resolve()
    config = load_config_or_defaults(config_path, repo)
    if timeout is not None:
        config.session.timeout = timeout
    if interval is not None:
        config.session.checkpoint_interval = interval
    kind = agent or config.session.agent

    try:
        adapter = build_agent(kind, agent_command)
    except AgentAdapterError as e:
        console.print(f"[red]❌ {e}[/]")
        sys.exit(1)

    _print_plan(task, kind, config, _policy(config), repo)
    if dry_run:
        console.print("[yellow]⚠ Dry run mode - no changes will be made[/]")
        return

    telemetry = Telemetry.disabled() if no_telemetry else None
    session = Session(task, adapter, config=config, repo_path=repo, telemetry=telemetry)

    try:
        signal.signal(signal.SIGTERM, lambda signum, frame: session.stop("SIGTERM"))
    except ValueError:
        logger.debug("[CLI] Not on the main thread, SIGTERM handler not installed")

    result = session.run()
    print_summary(console, session.ledger, result.status.value, result.reason)
    sys.exit(result.exit_code)


@main.command()
@click.option("-c", "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Path to radish.yaml.")
@click.option("--repo", type=click.Path(exists=True, file_okay=False, path_type=Path), default=Path("."),
              help="Working tree to check.")
@click.option("--since", default="HEAD", show_default=True, help="Revision to diff the working tree against.")
@click.option("--commands", "commands_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Command log to scan for forbidden commands.")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
def check(config_path: Path | None, repo: Path, since: str, commands_path: Path | None, verbose: bool) -> None:
    """Check the working tree against the guardrails once."""
    _configure_logging(verbose)
    repo = repo.resolve()
    config = load_config_or_defaults(config_path, repo)
    policy = _policy(config)

    git = GitRepo(repo, exclude=[_sessions_dir(config, repo)])
    if not git.is_repository:
        console.print(f"[red]❌ Not a git repository: {repo}[/]")
        sys.exit(2)

    try:
        changes = ChangeInspector(git).inspect(since)
    except CheckpointError as e:
        console.print(f"[red]❌ {e}[/]")
        sys.exit(2)

    commands = CommandLog(commands_path).read() if commands_path else []
    result = ViolationDetector(policy, git.toplevel).evaluate(changes, changes, commands)

    console.print(f"Checked {changes.files_changed} files, {changes.lines_changed} lines changed since {since}")
    if result.clean:
        console.print("[green]✓ No violations detected[/]")
        return
    console.print(violations_table(result.violations))
    console.print("[red]✗ Violations detected - review above[/]")
    sys.exit(1)


@main.command()
@click.argument("revision")
@click.option("--repo", type=click.Path(exists=True, file_okay=False, path_type=Path), default=Path("."),
              help="Working tree to reset.")
@click.option("-c", "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Path to radish.yaml.")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
def rollback(revision: str, repo: Path, config_path: Path | None, yes: bool) -> None:
    """Reset the working tree to checkpoint REVISION, discarding later work."""
    _configure_logging(False)
    repo = repo.resolve()
    config = load_config_or_defaults(config_path, repo)
    manager = CheckpointManager(GitRepo(repo, exclude=[_sessions_dir(config, repo)]), session_id="rollback")

    if not yes and not Confirm.ask(
        f"[bold]Discard all changes after {revision} in {repo}?[/]", console=console
    ):
        console.print("[yellow]Rollback cancelled.[/]")
        sys.exit(1)

    try:
        sha = manager.rollback(revision)
    except CheckpointError as e:
        console.print(f"[red]❌ {e}[/]")
        sys.exit(1)
    console.print(f"[green]✓ Working tree reset to {sha[:8]}[/]")


@main.command()
@click.argument("session_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--markdown", is_flag=True, help="Print the Markdown summary instead of a table.")
def show(session_dir: Path, markdown: bool) -> None:
    """Render the ledger of a (possibly still running) session."""
    try:
        ledger = AuditLedger.load(session_dir)
    except LedgerError as e:
        raise click.ClickException(str(e))

    status = ledger.final_status or "running"
    if markdown:
        click.echo(render_markdown(ledger, status))
    else:
        print_summary(console, ledger, status)


if __name__ == "__main__":
    main()
