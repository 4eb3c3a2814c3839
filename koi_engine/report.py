"""Terminal reporting of task outcomes.

Every terminal state is reported with its reason, the final and best
aggregate score, iterations completed, tokens and cost.
"""

from typing import Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from koi_engine.core.decision import describe_decision
from koi_engine.core.state import TaskHistoryEntry, TaskState
from koi_engine.core.types import Severity, TaskOutcome, TaskStatus

_STATUS_STYLE = {
    TaskStatus.STOPPED: "green",
    TaskStatus.FAILED: "red",
    TaskStatus.CANCELLED: "yellow",
    TaskStatus.RUNNING: "cyan",
    TaskStatus.PENDING: "dim",
}

_SEVERITY_STYLE = {
    Severity.BLOCKER: "bold red",
    Severity.IMPORTANT: "yellow",
    Severity.SUGGESTION: "dim",
}


def _fmt_score(score: Optional[float]) -> str:
    return "-" if score is None else f"{score:.2f}"


def format_outcome(outcome: TaskOutcome) -> str:
    """One-line plain summary, suitable for logs and non-tty output."""
    return (
        f"Task {outcome.task.id} {outcome.status.value} ({outcome.reason}): "
        f"final score {_fmt_score(outcome.final_score)}, "
        f"best {_fmt_score(outcome.best_score)}, "
        f"{outcome.iterations_completed} iteration(s), "
        f"{outcome.total_tokens} tokens, ${outcome.cost_usd:.4f}, "
        f"{outcome.elapsed_seconds:.1f}s"
    )


def render_outcome(outcome: TaskOutcome, console: Optional[Console] = None) -> None:
    """Render an outcome with its iterations and open findings."""
    console = console or Console()
    style = _STATUS_STYLE.get(outcome.status, "white")

    summary = Table(show_header=False, box=None, padding=(0, 1))
    summary.add_column("Key", style="bold cyan")
    summary.add_column("Value")
    summary.add_row("Status", f"[{style}]{outcome.status.value}[/{style}]")
    summary.add_row("Reason", outcome.reason)
    summary.add_row("Final score", _fmt_score(outcome.final_score))
    summary.add_row("Best score", _fmt_score(outcome.best_score))
    summary.add_row("Iterations", str(outcome.iterations_completed))
    summary.add_row(
        "Tokens", f"{outcome.total_tokens:,} / {outcome.task.limits.token_budget:,}"
    )
    summary.add_row("Cost", f"${outcome.cost_usd:.4f}")
    summary.add_row("Elapsed", f"{outcome.elapsed_seconds:.1f}s")
    console.print(Panel(summary, title=f"[bold]Task {outcome.task.id}[/bold]", border_style=style))

    if outcome.cycles:
        iterations = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        iterations.add_column("#", justify="right")
        iterations.add_column("Score", justify="right")
        iterations.add_column("Tokens", justify="right")
        iterations.add_column("Duration", justify="right")
        iterations.add_column("Decision")
        for cycle in outcome.cycles:
            iterations.add_row(
                str(cycle.index),
                _fmt_score(cycle.aggregate_score) if cycle.evaluated else "[dim]skipped[/dim]",
                f"{cycle.usage.total:,}",
                f"{cycle.duration:.1f}s",
                describe_decision(cycle.decision),
            )
        console.print(iterations)

    open_findings = [f for f in outcome.findings if f.resolved_by is None]
    if open_findings:
        console.print("\n[bold]Open findings[/bold]")
        for finding in open_findings:
            sev_style = _SEVERITY_STYLE[finding.severity]
            console.print(
                f"  [{sev_style}]{finding.severity.value.upper()}[/{sev_style}] "
                f"[cyan]{finding.dimension}[/cyan] {finding.title}"
            )


def render_running_tasks(states: Sequence[TaskState], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not states:
        console.print("[dim]No task is running.[/dim]")
        return
    for state in states:
        render_current_task(state, console)


def render_current_task(state: TaskState, console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Key", style="bold cyan")
    table.add_column("Value")
    table.add_row("Task", state.task_id)
    table.add_row("Description", state.description)
    table.add_row("Phase", state.phase)
    table.add_row("Iteration", f"{state.iteration}/{state.max_iterations}")
    table.add_row("Score", f"{_fmt_score(state.current_score)} (best {_fmt_score(state.best_score)})")
    table.add_row("Tokens", f"{state.tokens_used:,} / {state.token_budget:,}")
    table.add_row("Cost", f"${state.cost_usd:.4f}")
    table.add_row("Last decision", state.last_decision)
    console.print(Panel(table, title=f"[bold]Running task {state.task_id}[/bold]", border_style="blue"))


def render_history(entries: Sequence[TaskHistoryEntry], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not entries:
        console.print("[dim]No finished tasks yet.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Completed", style="dim")
    table.add_column("Task", style="cyan")
    table.add_column("Description")
    table.add_column("Reason")
    table.add_column("Iter", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Cost", justify="right")
    for entry in entries:
        description = entry.description
        if len(description) > 40:
            description = description[:37] + "..."
        table.add_row(
            entry.completed_at.strftime("%Y-%m-%d %H:%M"),
            entry.task_id,
            description,
            entry.reason,
            str(entry.iterations),
            _fmt_score(entry.final_score),
            f"${entry.cost_usd:.4f}",
        )
    console.print(table)
