"""
SOP Core - Trace Visualizer

Terminal report for run/check results: outcome banner, static world,
action transcript with before/after times, and the final snapshot.
Deterministic and compact.
"""

from typing import Any, Dict, List, Optional, Tuple
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.text import Text
from rich import box

from ..checker import CheckOutcome, CheckResult
from ..model.trace import Trace


_STATUS = {
    CheckOutcome.WITNESS_FOUND: ("WITNESS FOUND", "bold green", "green"),
    CheckOutcome.NO_WITNESS_WITHIN_BOUND: ("NO WITNESS WITHIN BOUND", "bold yellow", "yellow"),
    CheckOutcome.COUNTEREXAMPLE_FOUND: ("COUNTEREXAMPLE FOUND", "bold red", "red"),
    CheckOutcome.UNSAT_WITHIN_BOUND: ("NO COUNTEREXAMPLE WITHIN BOUND", "bold green", "green"),
    CheckOutcome.BUDGET_EXHAUSTED: ("BUDGET EXHAUSTED (INCONCLUSIVE)", "bold yellow", "yellow"),
}


class TraceVisualizer:
    def __init__(
        self,
        width: int = 110,
        max_value_len: int = 80,
        max_traces: int = 3,
        console: Optional[Console] = None,
    ):
        self.console = console or Console()
        self.width = width
        self.max_value_len = max_value_len
        self.max_traces = max_traces

    def visualize(self, result: CheckResult, title: str = "SOP Model Checker"):
        self.console.print()

        status_text, header_style, border_style = _STATUS[result.outcome]
        self.console.print(
            Panel(
                Text(status_text, justify="center", style=header_style),
                title=f"[white]{title}[/]",
                border_style=border_style,
                width=self.width,
            )
        )

        meta_table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan", width=self.width)
        meta_table.add_column("Meta", style="cyan", width=26)
        meta_table.add_column("Value", style="white")
        for k, v in self._extract_meta(result):
            meta_table.add_row(k, self._format_value(v))
        self.console.print(meta_table)

        if result.outcome == CheckOutcome.UNSAT_WITHIN_BOUND:
            self.console.print(
                Text(
                    f"No counterexample in {result.static_worlds} static world(s) up to {result.steps} step(s). "
                    "This is not a proof beyond the bound.",
                    style="dim",
                )
            )

        shown = result.traces[: self.max_traces]
        for i, trace in enumerate(shown, 1):
            label = "Counterexample" if result.mode == "check" else f"Witness #{i}"
            self._print_trace(trace, label)
        if len(result.traces) > len(shown):
            self.console.print(Text(f"(+{len(result.traces) - len(shown)} more trace(s) not shown)", style="dim"))

        if result.outcome == CheckOutcome.BUDGET_EXHAUSTED and result.deepest is not None:
            self._print_trace(result.deepest, "Deepest explored trace")

        self.console.print()
        stats = result.stats
        latency_color = "green" if result.latency_ms < 1000 else ("yellow" if result.latency_ms < 10000 else "red")
        footer = Text.assemble(
            ("States: ", "dim"),
            (str(stats.states_visited), "bold white"),
            (" | ", "dim"),
            ("Transitions: ", "dim"),
            (str(stats.transitions_applied), "bold white"),
            (" | ", "dim"),
            ("Latency: ", "dim"),
            (f"{result.latency_ms:.1f}ms", f"bold {latency_color}"),
        )
        self.console.print(footer, justify="right", width=self.width)
        self.console.print()

    def _print_trace(self, trace: Trace, label: str):
        self.console.print()
        facts = trace.facts.to_dict()
        facts_table = Table(title=f"{label}: Static World", box=box.SIMPLE, header_style="bold cyan", width=self.width)
        facts_table.add_column("Fact", style="cyan", width=34)
        facts_table.add_column("Value", style="white")
        for key, val in self._flatten(facts):
            facts_table.add_row(key, self._format_value(val))
        self.console.print(facts_table)

        t = Table(title=f"{label}: Actions", box=box.ROUNDED, style="cyan", width=self.width, show_header=True)
        t.add_column("#", style="dim", width=4)
        t.add_column("Time", style="dim", width=9)
        t.add_column("Action", style="bold cyan", width=20)
        t.add_column("From -> To", style="white", width=22)
        t.add_column("Fields", style="white")
        if not trace.steps:
            t.add_row("-", "t0", "(initial state)", "", "")
        for i, step in enumerate(trace.steps, 1):
            a = step.action.to_dict()
            fields = ", ".join(f"{k}={v}" for k, v in a["fields"].items())
            t.add_row(
                str(i),
                f"t{a['before_time']}->t{a['after_time']}",
                a["action_kind"],
                f"{a['from']} -> {a['to']}",
                self._format_value(fields),
            )
        self.console.print(t)

        snap = Table(title=f"{label}: Final Snapshot", box=box.SIMPLE, header_style="bold cyan", width=self.width)
        snap.add_column("Entity", style="cyan", width=34)
        snap.add_column("State", style="white")
        for key, val in self._flatten(trace.final.to_dict()):
            snap.add_row(key, self._format_value(val))
        self.console.print(snap)

    def _extract_meta(self, result: CheckResult) -> List[Tuple[str, Any]]:
        out: List[Tuple[str, Any]] = []
        if result.scenario_name:
            out.append(("Scenario", result.scenario_name))
        out.extend([
            ("Mode", result.mode),
            ("Predicate", result.predicate),
            ("Enforced facts", ", ".join(result.enforced) or "(none)"),
            ("Step bound", result.steps),
            ("Static worlds searched", result.static_worlds),
        ])
        if result.static_worlds_truncated:
            out.append(("Static worlds", "truncated at max_static_models"))
        if result.bounds is not None:
            out.append(("Atom bounds", ", ".join(f"{k}={v}" for k, v in result.bounds.__dict__.items())))
        return out

    def _flatten(self, data: Dict[str, Any]) -> List[Tuple[str, Any]]:
        """Flatten nested dicts deterministically; lists are shown inline."""
        items: List[Tuple[str, Any]] = []

        def walk(prefix: str, val: Any):
            if isinstance(val, dict) and val:
                for k in sorted(val.keys(), key=lambda x: str(x)):
                    walk(f"{prefix}.{k}" if prefix else str(k), val[k])
            else:
                items.append((prefix, val))

        walk("", data)
        return items

    def _format_value(self, v: Any) -> Text:
        if isinstance(v, (list, tuple)):
            s = "{" + ", ".join(str(x) for x in v) + "}"
        else:
            s = str(v)
        if len(s) > self.max_value_len:
            s = s[: self.max_value_len - 3] + "..."
        return Text(s)
