# display.py
# All terminal output for the adaptive runner.
#
# This module owns presentation entirely. The engine and its components never
# format strings for the user; they call named functions here.
#
# Colour language:
#   cyan   : routing / planning events
#   blue   : backend requests
#   yellow : retries, evaluation checkpoints
#   green  : success / confirmed
#   red    : failures and fallbacks
#   magenta: recovery analysis

import json

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from adaptive_runner.models import (
    BackendProfile,
    Chunk,
    ExecutionOutcome,
    RunReport,
    Step,
    Strategy,
)

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return escape(value[:max_len]) + "…"
    return escape(value)


def _steps_table(steps: list[Step]) -> Table:
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("#", justify="right", width=4)
    table.add_column("Action", style="bold white", width=16)
    table.add_column("Target", style="dim white", width=28)
    table.add_column("Instruction", style="white")

    for step in steps:
        target = step.target or (json.dumps(step.suggested.args) if step.suggested else "")
        table.add_row(
            str(step.ordinal),
            step.action_type.value,
            _mono(target, 26),
            _mono(step.raw_text, 80),
        )
    return table


# ---------------------------------------------------------------------------
# Run entry
# ---------------------------------------------------------------------------


def banner(chain: list[BackendProfile]) -> None:
    tiers = "\n".join(
        f"[dim]{profile.tier_id:<12}:[/dim] [white]{profile.model}[/white]" for profile in chain
    )
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Adaptive Task Runner[/bold cyan]\n"
            "[dim]Step classification, tiered escalation, chunked re-planning[/dim]\n\n"
            f"{tiers}",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def prompt_received(instruction: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW INSTRUCTION[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{_mono(instruction, 600)}[/white]",
            title=_label("INSTRUCTION", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


def steps_classified(steps: list[Step], mode: str) -> None:
    console.print()
    console.print(
        Panel(
            _steps_table(steps),
            title=_label(f"CLASSIFIED {len(steps)} STEP(S)", "cyan"),
            subtitle=f"[dim]Path: {mode}[/dim]",
            border_style="cyan",
            padding=(0, 1),
        )
    )


def nothing_to_execute() -> None:
    console.print()
    console.print(
        Panel(
            "[bold red]Nothing to execute.[/bold red]\n"
            "[dim]No numbered steps were found in the instruction.[/dim]",
            title=_label("NO STEPS", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Step execution
# ---------------------------------------------------------------------------


def step_start(step: Step, tier: str) -> None:
    console.print()
    console.print(
        f"[bold cyan]  STEP {step.ordinal}[/bold cyan] [dim]({step.action_type.value}, {tier})[/dim]"
        f"  [white]{_mono(step.raw_text, 100)}[/white]"
    )


def backend_request(tier: str, purpose: str) -> None:
    console.print(f"  [blue]↳ {tier}[/blue] [dim]{purpose}…[/dim]")


def invocation(tool: str, args: dict) -> None:
    console.print(f"  [white]{tool}[/white]  [dim]{_mono(json.dumps(args), 100)}[/dim]")


def attempt_failed(outcome: ExecutionOutcome, next_tier: str) -> None:
    console.print(
        f"  [yellow]⚠ Attempt {outcome.attempt_number} failed:[/yellow] "
        f"[dim]{_mono(outcome.error_text or '', 120)}[/dim]\n"
        f"  [yellow]↻ Retrying on {next_tier}[/yellow]"
    )


def step_succeeded(outcome: ExecutionOutcome) -> None:
    console.print(f"  [bold green]✓[/bold green] [dim]{_mono(outcome.output.replace(chr(10), ' '), 120)}[/dim]")


def step_failed(outcome: ExecutionOutcome) -> None:
    console.print(
        f"  [bold red]✗ Step {outcome.step_ordinal} failed after {outcome.attempt_number} "
        f"attempt(s):[/bold red] [dim]{_mono(outcome.error_text or '', 120)}[/dim]"
    )


# ---------------------------------------------------------------------------
# Adaptive planning
# ---------------------------------------------------------------------------


def strategy_created(strategy: Strategy) -> None:
    checkpoints = ", ".join(str(c) for c in strategy.critical_checkpoints) or "none"
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(strategy.goal_description)}[/bold white]\n\n"
            f"[dim]Approach   :[/dim] {escape(strategy.approach_summary) or '-'}\n"
            f"[dim]Estimate   :[/dim] {strategy.estimated_total_steps} step(s)\n"
            f"[dim]Checkpoints:[/dim] {checkpoints}",
            title=_label("STRATEGY", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


def strategy_fallback(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]No usable strategy.[/bold red] [white]{_mono(reason, 200)}[/white]\n"
            "[dim]Falling back to sequential execution of the classified steps.[/dim]",
            title=_label("FALLBACK", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def chunk_planned(chunk: Chunk, cycle: int, max_cycles: int) -> None:
    console.print()
    console.print(Rule(f"[cyan]CHUNK {chunk.chunk_id} · cycle {cycle}/{max_cycles}[/cyan]", style="cyan"))
    console.print(_steps_table(chunk.steps))


def chunk_evaluated(succeeded: int, total: int, rate: float, threshold: float) -> None:
    color = "green" if rate >= threshold else "yellow"
    console.print(
        f"  [{color}]Chunk success rate {rate:.0%}[/{color}] "
        f"[dim]({succeeded}/{total}, threshold {threshold:.0%})[/dim]"
    )


def no_more_chunks() -> None:
    console.print("  [dim]Planner returned no further chunk.[/dim]")


def goal_reached(completed: int, estimate: int) -> None:
    console.print(f"  [bold green]✓ Goal appears to be achieved[/bold green] [dim]({completed}/{estimate})[/dim]")


def checkpoint_reached(checkpoint: int, completed: int) -> None:
    console.print(f"  [yellow]◆ Checkpoint {checkpoint} passed[/yellow] [dim]({completed} completed)[/dim]")


def recovery_start(failures: int) -> None:
    console.print()
    console.print(
        _label("RECOVERY", "magenta"),
        f"[magenta] Analyzing {failures} failure(s)…[/magenta]",
    )


def recovery_plan(steps: list[Step] | None) -> None:
    if not steps:
        console.print("  [dim magenta]No remediation proposed; continuing.[/dim magenta]")
        return
    console.print(
        Panel(
            _steps_table(steps),
            title=_label("RECOVERY PLAN", "magenta"),
            border_style="magenta",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Final report
# ---------------------------------------------------------------------------


def run_report(report: RunReport) -> None:
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_column("Field", style="dim", width=14)
    table.add_column("Value", style="white")
    table.add_row("Mode", report.mode.value)
    table.add_row("Goal", _mono(report.goal, 100))
    table.add_row("Completed", f"[green]{report.completed}[/green]")
    table.add_row("Failed", f"[red]{report.failed}[/red]" if report.failed else "0")
    table.add_row("Adaptations", str(report.adaptations))
    table.add_row("Chunk cycles", str(report.chunk_cycles))
    if report.message:
        table.add_row("Note", report.message)

    border = "green" if report.completed and not report.failed else "yellow"
    if not report.completed:
        border = "red"
    console.print()
    console.print(Panel(table, title=_label("RUN REPORT", border), border_style=border, padding=(0, 1)))
    console.print()


def interrupted(report: RunReport) -> None:
    console.print()
    console.print(
        Panel(
            "[bold white]Run interrupted.[/bold white] "
            f"[dim]{report.completed} completed, {report.failed} failed before stopping.[/dim]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
