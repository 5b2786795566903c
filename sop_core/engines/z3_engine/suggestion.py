from typing import List, Union, Dict, Any
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


class SuggestionEngine:
    """Renders configuration issues (bounds, scenario validation, infeasible static facts)."""

    def __init__(self, console: Console = None):
        self.console = console or Console()

    def report_issues(self, issues: List[Union[str, Dict[str, Any]]]):
        if not issues:
            self._print_success()
            return

        self._print_header()

        for i, issue in enumerate(issues, 1):
            self._render_issue(i, issue)

        self._print_footer()

    def _render_issue(self, index: int, issue: Union[str, Dict[str, Any]]):
        if isinstance(issue, str):
            payload = {"kind": "UNKNOWN", "message": issue, "facts": [], "unsat_core": None, "meta": None}
        else:
            payload = issue

        kind = payload.get("kind", "UNKNOWN")
        msg = payload.get("message", "")
        facts = payload.get("facts", []) or []
        unsat_core = payload.get("unsat_core", None)
        severity = payload.get("severity", "error")

        title_color = "red" if severity == "error" else "yellow"
        border = "red" if kind in ("INFEASIBLE_FACTS", "INTERNAL_ERROR") else "yellow"

        title = f"[bold {title_color}]{kind} #{index}[/bold {title_color}]"

        header = Text(style="white")
        if facts:
            header.append("Facts: ", style="bold")
            header.append(", ".join(facts) + "\n\n")
        header.append(msg)

        self.console.print(Panel(header, title=title, border_style=border, width=96))

        if unsat_core:
            self._print_unsat_core(unsat_core)

        self._print_suggestions(kind)

    def _print_unsat_core(self, core: List[str]):
        table = Table(title="UNSAT Core (Assumptions)", show_header=True, header_style="bold cyan", width=96)
        table.add_column("#", style="cyan", width=6)
        table.add_column("Core Literal", style="white")
        for idx, lit in enumerate(core, 1):
            table.add_row(str(idx), str(lit))
        self.console.print(table)
        self.console.print()

    def _print_suggestions(self, kind: str):
        table = Table(title="Suggestions", show_header=True, header_style="bold yellow", width=96)
        table.add_column("Strategy", style="cyan", width=26)
        table.add_column("What to do", style="white")

        if kind == "INFEASIBLE_FACTS":
            table.add_row(
                "Align server tables",
                "Servers that DNS maps the same host to must serve identical resources at every path."
            )
            table.add_row(
                "Split the host",
                "If the servers really differ, give each its own host in the dns map."
            )
            table.add_row(
                "Use UNSAT core",
                "server_assumption::<host>::<s1>::<s2> and fixed_* literals name the facts that clash."
            )

        elif kind == "INVALID_BOUND":
            table.add_row(
                "Fix bounds",
                "Steps and required atom pools (protocol, host, browser, server, document) must be positive."
            )

        elif kind == "VALIDATION":
            table.add_row(
                "Check atom names",
                "Every atom named in static_facts or seed must be declared in the atoms block."
            )

        else:
            table.add_row(
                "Review scenario",
                "Check bounds, atom declarations and fixed static facts."
            )

        self.console.print(table)
        self.console.print()

    def _print_header(self):
        self.console.print()
        self.console.print(Panel(
            "[bold white]SOP Scenario Configuration Report[/bold white]",
            style="bold red",
            subtitle="[red]Rejected before search[/red]",
            width=96
        ))
        self.console.print()

    def _print_success(self):
        self.console.print()
        self.console.print(Panel(
            "[bold green]No issues found.[/bold green]\n"
            "Bounds are valid and at least one static world satisfies ServerAssumption.",
            style="bold green",
            title="Configuration OK",
            width=96
        ))
        self.console.print()

    def _print_footer(self):
        self.console.print(
            "[dim]Tip: leave a fact out of static_facts to let the solver enumerate it.[/dim]"
        )
        self.console.print()
