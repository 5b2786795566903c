"""
SOP Core CLI

    python -m sop_core.cli run   SCENARIO [--steps N] [--predicate NAME] [--enforce NAME]... [--witnesses K] [--json]
    python -m sop_core.cli check SCENARIO [--steps N] [--assertion NAME] [--enforce NAME]... [--json]
    python -m sop_core.cli facts SCENARIO [--limit N]

Exit codes:
    0   run: witness found / check: no counterexample within bound / facts: OK
    2   configuration error (bounds, scenario, infeasible static facts)
    3   engine failure (internal invariant breach)
    4   search budget exhausted (inconclusive)
    10  check: counterexample found
    20  run: no witness within bound
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from .audit.visualizer import TraceVisualizer
from .checker import CheckOutcome, CheckResult
from .engines.z3_engine import StaticFactsSolver, SuggestionEngine
from .explorer import ExplorationError
from .factory import checker_for, load_scenario
from .model.errors import ConfigurationError

app = typer.Typer(help="Bounded Same-Origin Policy model checker", add_completion=False)
console = Console()
err_console = Console(stderr=True)

EXIT_CODES = {
    CheckOutcome.WITNESS_FOUND: 0,
    CheckOutcome.UNSAT_WITHIN_BOUND: 0,
    CheckOutcome.BUDGET_EXHAUSTED: 4,
    CheckOutcome.COUNTEREXAMPLE_FOUND: 10,
    CheckOutcome.NO_WITNESS_WITHIN_BOUND: 20,
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _report_config_error(e: ConfigurationError) -> None:
    SuggestionEngine(console=err_console).report_issues(e.issues or [str(e)])


def _execute(scenario_path: Path, mode: str, overrides: dict, as_json: bool, verbose: bool) -> None:
    _setup_logging(verbose)
    try:
        scenario = load_scenario(scenario_path)
        checker = checker_for(scenario, {**overrides, "mode": mode}, debug=verbose)
        result: CheckResult = checker.execute()
    except FileNotFoundError as e:
        err_console.print(Text(str(e), style="red"))
        raise typer.Exit(code=2)
    except ConfigurationError as e:
        _report_config_error(e)
        raise typer.Exit(code=2)
    except ExplorationError as e:
        err_console.print(Text(f"Engine failure: {e}", style="bold red"))
        if e.trace is not None:
            err_console.print_json(json.dumps(e.trace.to_dict()))
        raise typer.Exit(code=3)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        TraceVisualizer(console=console).visualize(result, title=f"SOP Model Checker: {mode}")
        console.print(Text(f"{mode.capitalize()} Summary: {result.outcome.value}", style="bold"))

    raise typer.Exit(code=EXIT_CODES[result.outcome])


@app.command()
def run(
    scenario: Path = typer.Argument(..., help="Scenario JSON file"),
    steps: Optional[int] = typer.Option(None, "--steps", help="Step bound override"),
    predicate: Optional[str] = typer.Option(None, "--predicate", help="Existential predicate to witness"),
    enforce: Optional[List[str]] = typer.Option(None, "--enforce", help="Fact enforced on every trace (repeatable)"),
    witnesses: Optional[int] = typer.Option(None, "--witnesses", help="Number of witnesses to collect"),
    as_json: bool = typer.Option(False, "--json", help="Emit the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Search for witness traces satisfying a predicate."""
    overrides = {
        "steps": steps,
        "predicate": predicate,
        "enforce": tuple(enforce) if enforce else None,
        "witnesses": witnesses,
    }
    _execute(scenario, "run", overrides, as_json, verbose)


@app.command()
def check(
    scenario: Path = typer.Argument(..., help="Scenario JSON file"),
    steps: Optional[int] = typer.Option(None, "--steps", help="Step bound override"),
    assertion: Optional[str] = typer.Option(None, "--assertion", help="Universal assertion to check"),
    enforce: Optional[List[str]] = typer.Option(None, "--enforce", help="Fact enforced on every trace (repeatable)"),
    as_json: bool = typer.Option(False, "--json", help="Emit the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Search for a counterexample to an assertion."""
    overrides = {
        "steps": steps,
        "predicate": assertion,
        "enforce": tuple(enforce) if enforce else None,
    }
    _execute(scenario, "check", overrides, as_json, verbose)


@app.command()
def facts(
    scenario: Path = typer.Argument(..., help="Scenario JSON file"),
    limit: int = typer.Option(16, "--limit", help="Maximum number of static worlds to list"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Validate a scenario and list the static worlds accepted by ServerAssumption."""
    _setup_logging(verbose)
    try:
        sc = load_scenario(scenario)
        worlds = list(StaticFactsSolver(sc.pools, sc.fixed_facts).enumerate(limit=limit))
    except FileNotFoundError as e:
        err_console.print(Text(str(e), style="red"))
        raise typer.Exit(code=2)
    except ConfigurationError as e:
        _report_config_error(e)
        raise typer.Exit(code=2)

    table = Table(title=f"Static worlds ({len(worlds)} shown, limit {limit})", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("DNS", style="white")
    table.add_column("Resources", style="white")
    table.add_column("Contexts", style="white")
    table.add_column("Cookie scopes", style="white")
    for i, w in enumerate(worlds, 1):
        d = w.to_dict()
        table.add_row(
            str(i),
            Text(json.dumps(d["dns"], sort_keys=True)),
            Text(json.dumps(d["resources"], sort_keys=True)),
            Text(json.dumps(d["contexts"], sort_keys=True)),
            Text(json.dumps(d["cookie_scopes"], sort_keys=True)),
        )
    console.print(table)
    console.print(Text("Static facts OK", style="bold green"))


if __name__ == "__main__":
    app()
