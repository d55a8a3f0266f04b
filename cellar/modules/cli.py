# cellar/modules/cli.py
"""
Central CLI for the cellar engine.
- Uses rich for tables, panels and progress bars.
- Commands: install, plan, uninstall, leaves, list, info, deps, graph, test,
  validate, cleanup.
- Exit codes: 0 success, 1 resolution/install failure, 2 usage error.

Usage examples:
  cellar --formula-dir ./formulae install gcc
  cellar plan gcc --target macos:arm64:big_sur
  cellar install pylint --build-from-source --jobs 4
  cellar uninstall gcc
  cellar leaves
"""

from __future__ import annotations
import argparse
import json
import os
import signal
import sys
import traceback
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from cellar.modules import logger
from cellar.modules.bottle import BottleSelector
from cellar.modules.build import BuildOrchestrator, FormulaResult, InstallReport
from cellar.modules.config import Settings, config
from cellar.modules.environment import Environment
from cellar.modules.errors import CellarError, DependentsInstalled, NotInstalled, ParseError
from cellar.modules.fetch import ContentFetcher
from cellar.modules.formula import DependencyKind
from cellar.modules.receipts import ReceiptStore
from cellar.modules.recipe import FormulaLoader
from cellar.modules.registry import FormulaRegistry
from cellar.modules.remove import Remover
from cellar.modules.resolver import ResolutionPlan, Resolver
from cellar.modules.testrun import FormulaTester

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

STATUS_STYLE = {
    "installed": "green",
    "failed": "red",
    "skipped": "yellow",
    "cancelled": "magenta",
}


def make_console(no_color: bool, quiet: bool) -> Console:
    if no_color:
        return Console(color_system=None, force_terminal=False, quiet=quiet)
    return Console(quiet=quiet)


class UsageError(Exception):
    pass


class CLI:
    def __init__(self, console: Console, settings: Settings, env: Optional[Environment] = None):
        self.console = console
        self.settings = settings
        self._env = env
        self._registry = None
        self.receipts = ReceiptStore(settings.state_dir)

    # -----------------------
    # shared objects
    # -----------------------
    @property
    def registry(self) -> FormulaRegistry:
        if self._registry is None:
            self._registry = FormulaRegistry.from_directory(self.settings.formula_dir, FormulaLoader())
        return self._registry

    def environment(self, target: Optional[str] = None) -> Environment:
        if self._env is None:
            self._env = Environment.detect()
        if not target:
            return self._env
        try:
            return Environment.from_target(target, base=self._env)
        except ValueError as e:
            raise UsageError(str(e)) from e

    def resolver(self) -> Resolver:
        selector = BottleSelector(self.settings.cellar, allow_older_os=self.settings.allow_older_os_bottles)
        return Resolver(self.registry, self.receipts, selector)

    def _resolve(self, args: argparse.Namespace) -> ResolutionPlan:
        env = self.environment(getattr(args, "target", None))
        return self.resolver().resolve(
            args.formulae, env,
            force=getattr(args, "force", False),
            build_from_source=getattr(args, "build_from_source", False),
            include_test=getattr(args, "include_test", False),
        )

    # -----------------------
    # rendering
    # -----------------------
    def print_plan(self, plan: ResolutionPlan):
        table = Table(title=f"Plan for {', '.join(plan.requested)} ({plan.env.bottle_tag})")
        table.add_column("#", justify="right")
        table.add_column("Formula", style="bold")
        table.add_column("Version")
        table.add_column("Method")
        table.add_column("Reason", overflow="fold")
        table.add_column("Note")
        for i, entry in enumerate(plan, 1):
            note = []
            if entry.requested:
                note.append("requested")
            if entry.upgrade_from:
                note.append(f"upgrade from {entry.upgrade_from}")
            if entry.reinstall:
                note.append("reinstall")
            table.add_row(str(i), entry.name, entry.version, entry.method.value,
                          entry.selection.reason, ", ".join(note))
        self.console.print(table)
        if plan.satisfied:
            self.console.print(f"Already installed: {', '.join(plan.satisfied)}")

    def print_report(self, report: InstallReport):
        table = Table(title="Install summary")
        table.add_column("Formula", style="bold")
        table.add_column("Version")
        table.add_column("Status")
        table.add_column("Method")
        table.add_column("Error", overflow="fold")
        for r in report.results:
            style = STATUS_STYLE.get(r.status, "")
            error = escape(f"{r.error.kind}: {r.error}") if r.error else ""
            table.add_row(r.name, r.version, f"[{style}]{r.status}[/{style}]" if style else r.status,
                          r.method.value if r.method else "-", error)
        self.console.print(table)
        for warning in report.warnings:
            self.console.print(f"[yellow]warning:[/yellow] {escape(warning)}")
        counts = (f"{len(report.installed)} installed, {len(report.failed)} failed, "
                  f"{len(report.skipped)} skipped, {len(report.cancelled)} cancelled")
        self.console.print(Panel(counts, title="install", style="green" if report.ok else "red"))

    # -----------------------
    # install / plan
    # -----------------------
    def cmd_plan(self, args: argparse.Namespace) -> int:
        plan = self._resolve(args)
        if args.json:
            self.console.print_json(json.dumps({
                "env": plan.env.to_dict(),
                "entries": [{"name": e.name, "version": e.version, "method": e.method.value,
                             "dependencies": e.dependencies, "requested": e.requested,
                             "upgrade_from": e.upgrade_from} for e in plan],
                "satisfied": plan.satisfied,
            }))
        else:
            self.print_plan(plan)
        return EXIT_OK

    def cmd_install(self, args: argparse.Namespace) -> int:
        if args.jobs is not None and args.jobs < 1:
            raise UsageError("--jobs must be at least 1")
        if args.jobs:
            self.settings.jobs = args.jobs
        if args.no_source_fallback:
            self.settings.source_fallback = False

        plan = self._resolve(args)
        self.print_plan(plan)
        if plan.is_empty:
            self.console.print("[green]Nothing to do.[/green]")
            return EXIT_OK
        if args.dry_run:
            self.console.print("[blue]Dry run: nothing installed.[/blue]")
            return EXIT_OK

        orchestrator = BuildOrchestrator(self.settings, self.receipts,
                                         fetcher=ContentFetcher(self.settings.cache_dir),
                                         keep_sandbox=args.keep_tmp)
        previous = None
        try:
            previous = signal.signal(signal.SIGINT, lambda signum, frame: orchestrator.cancel())
        except ValueError:
            # not in the main thread
            pass

        try:
            with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                          BarColumn(), TimeElapsedColumn(), console=self.console) as progress:
                task = progress.add_task("installing", total=len(plan))

                def on_result(result: FormulaResult):
                    progress.update(task, advance=1, description=f"{result.name}: {result.status}")

                report = orchestrator.run(plan, plan.env, callback=on_result)
        finally:
            if previous is not None:
                signal.signal(signal.SIGINT, previous)

        self.print_report(report)
        if args.report:
            BuildOrchestrator.report_json(report, args.report)
            self.console.print(f"Report written to {args.report}")
        return report.exit_code

    # -----------------------
    # uninstall
    # -----------------------
    def cmd_uninstall(self, args: argparse.Namespace) -> int:
        remover = Remover(self.settings, self.receipts)
        status = EXIT_OK
        for name in args.formulae:
            try:
                receipt = remover.uninstall(name, force=args.force)
                self.console.print(f"[green]Uninstalled {name} {receipt.version}[/green]")
            except (NotInstalled, DependentsInstalled) as e:
                self.console.print(f"[red]{e.kind}: {escape(str(e))}[/red]")
                status = EXIT_FAILURE
        return status

    def cmd_leaves(self, args: argparse.Namespace) -> int:
        for name in Remover(self.settings, self.receipts).leaves():
            self.console.print(name)
        return EXIT_OK

    # -----------------------
    # list / info / deps / graph
    # -----------------------
    def cmd_list(self, args: argparse.Namespace) -> int:
        receipts = self.receipts.all()
        if args.json:
            self.console.print_json(json.dumps([r.to_dict() for r in receipts]))
            return EXIT_OK
        table = Table(title="Installed formulae")
        table.add_column("Formula", style="bold")
        table.add_column("Version")
        table.add_column("Method")
        table.add_column("On request")
        table.add_column("Installed at")
        for r in receipts:
            table.add_row(r.name, r.version, r.method.value, "yes" if r.requested else "no", r.installed_at)
        self.console.print(table)
        return EXIT_OK

    def cmd_info(self, args: argparse.Namespace) -> int:
        formula = self.registry.lookup(args.formula)
        env = self.environment(args.target)
        receipt = self.receipts.query(formula.name)
        selection = self.resolver().selector.select(formula, env)

        tbl = Table(title=f"Info: {formula.name}")
        tbl.add_column("Key", style="bold")
        tbl.add_column("Value", overflow="fold")
        tbl.add_row("version", formula.pkg_version)
        tbl.add_row("desc", formula.desc or "-")
        tbl.add_row("homepage", formula.homepage or "-")
        tbl.add_row("license", formula.license or "-")
        for kind in DependencyKind:
            deps = formula.deps_for(env, kinds=(kind,))
            tbl.add_row(f"{kind.value} deps", ", ".join(str(d) for d in deps) or "-")
        tbl.add_row("bottles", ", ".join(sorted(formula.bottle.files)) or "-")
        tbl.add_row(f"method ({env.bottle_tag})", f"{selection.method.value}: {selection.reason}")
        if formula.keg_only:
            tbl.add_row("keg-only", formula.keg_only)
        if formula.conflicts_with:
            tbl.add_row("conflicts with", ", ".join(formula.conflicts_with))
        tbl.add_row("installed", f"{receipt.version} ({receipt.method.value})" if receipt else "no")
        self.console.print(tbl)
        return EXIT_OK

    def cmd_deps(self, args: argparse.Namespace) -> int:
        env = self.environment(args.target)
        graph, _, _, _ = self.resolver().expand([args.formula], env, include_test=args.include_test)
        order = [n for n in graph.topo_sort([args.formula]) if n != args.formula]
        for name in order:
            self.console.print(name)
        return EXIT_OK

    def cmd_graph(self, args: argparse.Namespace) -> int:
        env = self.environment(args.target)
        graph, _, _, _ = self.resolver().expand(sorted(set(args.formulae)), env)
        graph.topo_sort(sorted(set(args.formulae)))
        dot = graph.to_dot()
        if args.output:
            with open(args.output, "w", encoding="utf-8") as fh:
                fh.write(dot)
            self.console.print(f"Graph exported to {args.output}")
        else:
            self.console.print(dot, markup=False, highlight=False)
        return EXIT_OK

    # -----------------------
    # test / validate / cleanup
    # -----------------------
    def cmd_test(self, args: argparse.Namespace) -> int:
        formula = self.registry.lookup(args.formula)
        results = FormulaTester(self.settings, self.receipts).run(formula, self.environment())
        self.console.print(f"[green]{formula.name}: {len(results)} test steps passed[/green]")
        return EXIT_OK

    def cmd_validate(self, args: argparse.Namespace) -> int:
        loader = FormulaLoader()
        paths = args.paths or [self.settings.formula_dir]
        failed = 0
        for path in paths:
            try:
                found = loader.load_dir(path) if os.path.isdir(path) else [loader.load(path)]
                for f in found:
                    self.console.print(f"OK: {f.name} {f.pkg_version}")
            except ParseError as e:
                self.console.print(f"[red]INVALID: {escape(str(e))}[/red]")
                failed += 1
        return EXIT_FAILURE if failed else EXIT_OK

    def cmd_cleanup(self, args: argparse.Namespace) -> int:
        removed = ContentFetcher(self.settings.cache_dir).clean()
        self.console.print(f"Removed {removed} cached downloads")
        return EXIT_OK


def build_argparser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="cellar", description="Formula resolution and build engine")
    ap.add_argument("--no-color", action="store_true", help="Disable color output")
    ap.add_argument("--quiet", action="store_true", help="Quiet mode; less output")
    ap.add_argument("--conf", help="Path to cellar.conf")
    ap.add_argument("--prefix", help="Installation prefix (overrides [paths] prefix)")
    ap.add_argument("--formula-dir", help="Directory of formula files")
    sub = ap.add_subparsers(dest="command", required=True)

    def add_target(p):
        p.add_argument("--target", help="Resolve for OS:ARCH[:VERSION] instead of this machine")

    p_install = sub.add_parser("install", aliases=["i"], help="Install formulae and their dependencies")
    p_install.add_argument("formulae", nargs="+")
    p_install.add_argument("--force", action="store_true", help="Reinstall requested formulae")
    p_install.add_argument("--build-from-source", action="store_true")
    p_install.add_argument("--jobs", type=int)
    p_install.add_argument("--no-source-fallback", action="store_true",
                           help="Fail instead of building from source when a bottle is bad")
    p_install.add_argument("--include-test", action="store_true", help="Also install test dependencies")
    p_install.add_argument("--dry-run", action="store_true", help="Show the plan only")
    p_install.add_argument("--keep-tmp", action="store_true", help="Keep build sandboxes")
    p_install.add_argument("--report", help="Write a JSON report to this path")
    add_target(p_install)

    p_plan = sub.add_parser("plan", help="Show the install plan")
    p_plan.add_argument("formulae", nargs="+")
    p_plan.add_argument("--force", action="store_true")
    p_plan.add_argument("--build-from-source", action="store_true")
    p_plan.add_argument("--include-test", action="store_true")
    p_plan.add_argument("--json", action="store_true")
    add_target(p_plan)

    p_uninstall = sub.add_parser("uninstall", aliases=["rm", "remove"], help="Uninstall formulae")
    p_uninstall.add_argument("formulae", nargs="+")
    p_uninstall.add_argument("--force", action="store_true", help="Ignore installed dependents")

    p_list = sub.add_parser("list", aliases=["ls"], help="List installed formulae")
    p_list.add_argument("--json", action="store_true")

    sub.add_parser("leaves", help="List installed formulae nothing else depends on")

    p_info = sub.add_parser("info", help="Show formula information")
    p_info.add_argument("formula")
    add_target(p_info)

    p_deps = sub.add_parser("deps", help="Show dependencies in install order")
    p_deps.add_argument("formula")
    p_deps.add_argument("--include-test", action="store_true")
    add_target(p_deps)

    p_graph = sub.add_parser("graph", help="Export the dependency graph (DOT)")
    p_graph.add_argument("formulae", nargs="+")
    p_graph.add_argument("--output")
    add_target(p_graph)

    p_test = sub.add_parser("test", help="Run a formula's tests against its installed keg")
    p_test.add_argument("formula")

    p_validate = sub.add_parser("validate", help="Validate formula files")
    p_validate.add_argument("paths", nargs="*", help="Files or directories (default: formula dir)")

    sub.add_parser("cleanup", help="Remove cached downloads")
    return ap


COMMANDS = {
    "install": "cmd_install", "i": "cmd_install",
    "plan": "cmd_plan",
    "uninstall": "cmd_uninstall", "rm": "cmd_uninstall", "remove": "cmd_uninstall",
    "list": "cmd_list", "ls": "cmd_list",
    "leaves": "cmd_leaves",
    "info": "cmd_info",
    "deps": "cmd_deps",
    "graph": "cmd_graph",
    "test": "cmd_test",
    "validate": "cmd_validate",
    "cleanup": "cmd_cleanup",
}


def main(argv: Optional[List[str]] = None, env: Optional[Environment] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    parser = build_argparser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else EXIT_USAGE

    console = make_console(args.no_color, args.quiet)
    if args.conf:
        # loggers read the shared config, so --conf must replace it in place
        config.use([args.conf])
    settings = Settings.from_config(config, prefix=args.prefix, formula_dir=args.formula_dir)
    cli = CLI(console, settings, env=env)

    try:
        return getattr(cli, COMMANDS[args.command])(args)
    except UsageError as e:
        console.print(f"[red]usage error: {escape(str(e))}[/red]")
        return EXIT_USAGE
    except CellarError as e:
        console.print(f"[red]{e.kind}: {escape(str(e))}[/red]")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        return EXIT_FAILURE
    except Exception as e:
        console.print(f"[red]Unhandled CLI error: {escape(str(e))}[/red]")
        logger.Logger("cli").error(traceback.format_exc())
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
