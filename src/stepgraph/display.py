# display.py
# All terminal output for the step-graph engine.
#
# This module owns presentation entirely. The executor never formats
# strings. It calls named Reporter events here. Swap this file to change
# the entire UI.
#
# Colour language:
#   cyan    : scheduling / step boundaries
#   dim     : oracle rounds
#   magenta : tool calls
#   yellow  : verification, repairs, warnings
#   green   : outputs written, success
#   red     : halts and rejected patches

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from stepgraph.config import Verbosity
from stepgraph.models import Verdict


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        value = value[:max_len] + "…"
    return escape(value)


def _preview(raw_arguments: str, max_len: int = 140) -> str:
    try:
        text = json.dumps(json.loads(raw_arguments or "{}"))
    except json.JSONDecodeError:
        text = raw_arguments or ""
    return _mono(text, max_len)


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------


class Reporter:
    """Named run events, gated by an explicit Verbosity."""

    def __init__(self, verbosity: Verbosity | None = None, console: Console | None = None) -> None:
        self.verbosity = verbosity or Verbosity()
        self.console = console or Console()

    # -- run ------------------------------------------------------------

    def run_start(self, run_id: str, model: str, order: list[str]) -> None:
        if not self.verbosity.steps:
            return
        self.console.print()
        self.console.print(
            Panel.fit(
                "[bold cyan]Step-Graph Run[/bold cyan]\n\n"
                f"[dim]Run id :[/dim] [white]{escape(run_id)}[/white]\n"
                f"[dim]Model  :[/dim] [white]{escape(model)}[/white]\n"
                f"[dim]Order  :[/dim] [white]{escape(' → '.join(order)) or '(empty)'}[/white]",
                border_style="cyan",
                padding=(1, 4),
            )
        )

    def run_done(self, executed: int) -> None:
        if not self.verbosity.steps:
            return
        self.console.print()
        self.console.print(Rule(f"[green]RUN COMPLETE — {executed} step(s) executed[/green]", style="green"))

    # -- steps ----------------------------------------------------------

    def step_start(self, index: int, total: int, step_id: str, goal: str, scope: str) -> None:
        if not self.verbosity.steps:
            return
        where = f" [dim]({escape(scope)})[/dim]" if scope != step_id else ""
        goal_text = f"  [dim]— {_mono(goal, 96)}[/dim]" if goal else ""
        self.console.print()
        self.console.print(
            f"[bold cyan]▶ step {index}/{total}[/bold cyan] [white]{escape(step_id)}[/white]{where}{goal_text}"
        )

    def iteration(self, iteration: int, phase: str) -> None:
        if self.verbosity.steps:
            self.console.print(f"  [dim]iter {iteration + 1} — {phase}[/dim]")

    def tool_calls(self, iteration: int, names: list[str]) -> None:
        if self.verbosity.steps:
            self.console.print(
                f"  [magenta]iter {iteration + 1} — tool_call → {escape(', '.join(names))}[/magenta]"
            )

    def tool_call(self, name: str, raw_arguments: str, note: str = "") -> None:
        if not self.verbosity.tools:
            return
        suffix = f" [dim]({note})[/dim]" if note else ""
        self.console.print(f"    [yellow]↳ tool {escape(name)}({_preview(raw_arguments)})[/yellow]{suffix}")

    def json_nudge(self, iteration: int) -> None:
        if self.verbosity.steps:
            self.console.print(f"  [dim]iter {iteration + 1} — nudge: enforce JSON[/dim]")

    def repaired(self, call_ids: list[str]) -> None:
        if self.verbosity.steps:
            self.console.print(
                f"  [yellow]↺ synthesized {len(call_ids)} missing tool reply(ies):[/yellow] "
                f"[dim]{escape(', '.join(call_ids))}[/dim]"
            )

    def outputs_written(self, iteration: int, fields: list[str]) -> None:
        if self.verbosity.steps:
            self.console.print(
                f"  [green]iter {iteration + 1} — wrote: {escape(', '.join(fields)) or '(none)'}[/green]"
            )

    def verdict(self, step_id: str, verdict: Verdict) -> None:
        if not self.verbosity.steps:
            return
        for warning in verdict.warnings:
            self.console.print(f"  [yellow]⚠ {escape(warning)}[/yellow]")
        if verdict.passed:
            return
        self.console.print(
            f"  [bold yellow]✗ invariant failed[/bold yellow] [white]{escape(verdict.reason or '')}[/white] "
            f"[dim]intent={verdict.intent or '-'}[/dim]"
        )

    def branching(self, intent: str, step_ids: list[str]) -> None:
        if self.verbosity.steps:
            self.console.print(
                f"  [yellow]⤷ remediation[/yellow] [white]{escape(intent)}[/white] "
                f"[dim]→ {escape(', '.join(step_ids))}[/dim]"
            )

    def patch_applied(self, handle: str, mode: str, anchor: str, step_ids: list[str]) -> None:
        if not self.verbosity.steps:
            return
        table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan", padding=(0, 1))
        table.add_column("Handle", style="dim")
        table.add_column("Mode", width=8)
        table.add_column("Anchor", style="bold white")
        table.add_column("Steps", style="white")
        table.add_row(Text(handle), Text(mode), Text(anchor), Text(", ".join(step_ids)))
        self.console.print(
            Panel(table, title=_label("PATCH APPLIED", "cyan"), border_style="cyan", padding=(0, 1))
        )

    def patch_rejected(self, handle: str, reason: str) -> None:
        if self.verbosity.steps:
            self.console.print(
                f"  [bold red]✗ patch {escape(repr(handle))} not applied:[/bold red] [white]{escape(reason)}[/white]"
            )

    def note(self, message: str) -> None:
        if self.verbosity.steps:
            self.console.print(f"[dim]\\[runner] {escape(message)}[/dim]")

    def warning(self, message: str) -> None:
        if not self.verbosity.quiet:
            self.console.print(f"  [yellow]⚠ {escape(message)}[/yellow]")

    def step_done(self, step_id: str) -> None:
        if self.verbosity.steps:
            self.console.print(f"[green]✓ done[/green] {escape(step_id)}")

    # -- results --------------------------------------------------------

    def store_dump(self, snapshot: dict[str, Any]) -> None:
        if self.verbosity.quiet:
            return
        table = Table(
            box=box.SIMPLE_HEAVY,
            border_style="dim",
            show_header=True,
            header_style="bold dim",
            padding=(0, 1),
        )
        table.add_column("Key", style="bold white")
        table.add_column("Latest value", style="white")
        for key, value in snapshot.items():
            table.add_row(Text(key), Text(json.dumps(value, indent=2, default=str)))
        self.console.print()
        self.console.print(Panel(table, title="[dim]STORE[/dim]", border_style="dim", padding=(0, 1)))

    def halt(self, reason: str) -> None:
        self.console.print()
        self.console.print(
            Panel(
                f"[bold white]{escape(reason)}[/bold white]",
                title=_label("HALT", "red"),
                border_style="red",
                padding=(0, 2),
            )
        )
        self.console.print()
