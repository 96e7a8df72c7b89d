#!/usr/bin/env python3
"""
utils/test_run.py — GroupLedger test runner with a rich summary.

Usage (run from project root):
  python groupledger/utils/test_run.py                 # full suite
  python groupledger/utils/test_run.py --unit          # unit tests only
  python groupledger/utils/test_run.py --integration   # integration tests only
  python groupledger/utils/test_run.py --coverage      # with coverage report
  python groupledger/utils/test_run.py -x              # stop on first failure
  python groupledger/utils/test_run.py -k "ledger"     # filter by keyword

Requires:  pip install -e ".[test]"
"""

from __future__ import annotations

import argparse
import sys
import time
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

try:
    import pytest
    from rich import box
    from rich.console import Console
    from rich.panel import Panel
    from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
    from rich.table import Table
    from rich.theme import Theme
except ImportError as e:
    print(f"\n  Missing dependency: {e}")
    print('  Run:  pip install -e ".[test]"\n')
    sys.exit(1)

TESTS_DIR = Path(__file__).resolve().parent.parent / "tests"

THEME = Theme({
    "pass":  "bold bright_green",
    "fail":  "bold bright_red",
    "skip":  "bold yellow",
    "muted": "bright_black",
    "unit":  "cyan",
    "intg":  "magenta",
})

con = Console(theme=THEME, highlight=False)


@dataclass
class TResult:
    nodeid: str
    outcome: str      # passed | failed | error | skipped
    duration: float
    longrepr: str = ""

    @property
    def tier(self) -> str:
        if "/unit/" in self.nodeid:
            return "unit"
        if "/integration/" in self.nodeid:
            return "integration"
        return "other"

    @property
    def module(self) -> str:
        return Path(self.nodeid.split("::")[0]).stem


@dataclass
class Stats:
    results: list[TResult] = field(default_factory=list)

    def count(self, *outcomes: str) -> int:
        return sum(1 for r in self.results if r.outcome in outcomes)

    @property
    def ok(self) -> bool:
        return self.count("failed", "error") == 0


class Collector:
    """pytest plugin: records each test's outcome and advances the progress bar."""

    def __init__(self, progress: Progress) -> None:
        self.progress = progress
        self.task = progress.add_task("running", total=None)
        self.stats = Stats()

    def pytest_collection_finish(self, session) -> None:
        self.progress.update(self.task, total=len(session.items))

    def pytest_runtest_logreport(self, report) -> None:
        if report.when == "call" or (report.when == "setup" and report.outcome != "passed"):
            outcome = report.outcome
            if report.when == "setup" and outcome == "failed":
                outcome = "error"
            self.stats.results.append(TResult(
                nodeid=report.nodeid,
                outcome=outcome,
                duration=report.duration,
                longrepr=str(report.longrepr) if report.failed else "",
            ))
            self.progress.advance(self.task)


def _module_table(stats: Stats) -> Table:
    table = Table(box=box.SIMPLE_HEAVY, title="Results by module")
    table.add_column("Tier")
    table.add_column("Module")
    table.add_column("Passed", justify="right", style="pass")
    table.add_column("Failed", justify="right", style="fail")
    table.add_column("Skipped", justify="right", style="skip")
    table.add_column("Time", justify="right", style="muted")

    grouped: dict[tuple[str, str], list[TResult]] = defaultdict(list)
    for r in stats.results:
        grouped[(r.tier, r.module)].append(r)

    for (tier, module), rows in sorted(grouped.items()):
        style = "unit" if tier == "unit" else "intg"
        table.add_row(
            f"[{style}]{tier}[/]",
            module,
            str(sum(1 for r in rows if r.outcome == "passed")),
            str(sum(1 for r in rows if r.outcome in ("failed", "error"))),
            str(sum(1 for r in rows if r.outcome == "skipped")),
            f"{sum(r.duration for r in rows):.2f}s",
        )
    return table


def _render(stats: Stats, elapsed: float) -> None:
    con.print(_module_table(stats))

    for r in stats.results:
        if r.outcome in ("failed", "error"):
            con.print(Panel(r.longrepr[-3000:], title=f"[fail]{r.nodeid}[/]", border_style="red"))

    summary = (
        f"[pass]{stats.count('passed')} passed[/]  "
        f"[fail]{stats.count('failed', 'error')} failed[/]  "
        f"[skip]{stats.count('skipped')} skipped[/]  "
        f"[muted]in {elapsed:.2f}s[/]"
    )
    con.print(Panel(summary, border_style="green" if stats.ok else "red"))


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the GroupLedger test suite.")
    tier = parser.add_mutually_exclusive_group()
    tier.add_argument("--unit", action="store_true")
    tier.add_argument("--integration", action="store_true")
    parser.add_argument("--coverage", action="store_true")
    parser.add_argument("-x", "--exitfirst", action="store_true")
    parser.add_argument("-k", dest="keyword")
    args = parser.parse_args()

    target = TESTS_DIR
    if args.unit:
        target = TESTS_DIR / "unit"
    elif args.integration:
        target = TESTS_DIR / "integration"

    pytest_args = [str(target), "-q", "-p", "no:terminal"]
    if args.exitfirst:
        pytest_args.append("-x")
    if args.keyword:
        pytest_args += ["-k", args.keyword]
    if args.coverage:
        pytest_args += ["--cov=groupledger.app", "--cov-report=term-missing"]

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=con,
    )
    collector = Collector(progress)

    start = time.perf_counter()
    with progress:
        exit_code = pytest.main(pytest_args, plugins=[collector])
    elapsed = time.perf_counter() - start

    _render(collector.stats, elapsed)
    return int(exit_code)


if __name__ == "__main__":
    sys.exit(main())
