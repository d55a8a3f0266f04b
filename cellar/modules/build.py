# cellar/modules/build.py
"""
Build orchestrator.

Walks a ResolutionPlan and installs each entry:
 - parallel across independent subgraphs (thread pool, `jobs` workers)
 - an entry starts only once every in-plan dependency is committed
 - bottles are poured; a bad bottle falls back to a source build
 - source builds run in a private Sandbox with placeholder substitution
 - staged kegs are moved into the cellar, then the receipt is committed
 - post-install hooks run after the commit and only ever produce warnings
 - a failed formula skips its dependents; unrelated formulae continue
 - cancel() stops scheduling; running builds finish, the rest is cancelled

Placeholders available to build steps:
  {prefix}   staging prefix inside the sandbox (install here)
  {keg}      final keg path (<cellar>/<name>/<pkg_version>)
  {cellar}   cellar root
  {name} {version} {workdir} {jobs} {resource:<name>}
The same values are exported as CELLAR_PREFIX, CELLAR_KEG, ... .
"""

from __future__ import annotations
import os
import shutil
import threading
import time
import traceback
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from cellar.modules import logger as _logger
from cellar.modules.bottle import pour
from cellar.modules.config import Settings
from cellar.modules.environment import Environment
from cellar.modules.errors import (BuildError, BuildStepFailed, CellarError, ChecksumMismatch,
                                   DependencyFailed, FetchError, PostInstallFailed)
from cellar.modules.fetch import ContentFetcher
from cellar.modules.formula import Formula, InstallMethod
from cellar.modules.hooks import HookManager
from cellar.modules.link import Linker
from cellar.modules.receipts import ReceiptStore
from cellar.modules.resolver import PlanEntry, ResolutionPlan
from cellar.modules.runner import CommandRunner, expand_placeholders
from cellar.modules.sandbox import Sandbox
from cellar.modules.utils import Utils

INSTALLED = "installed"
FAILED = "failed"
SKIPPED = "skipped"
CANCELLED = "cancelled"


# ---------------------------
# Report
# ---------------------------
@dataclass
class FormulaResult:
    name: str
    version: str
    status: str = CANCELLED
    method: Optional[InstallMethod] = None
    error: Optional[CellarError] = None
    warnings: List[str] = field(default_factory=list)
    keg: Optional[str] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == INSTALLED

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "status": self.status,
            "method": self.method.value if self.method else None,
            "error": {"kind": self.error.kind, "message": str(self.error)} if self.error else None,
            "warnings": list(self.warnings),
            "keg": self.keg,
            "duration": round(self.duration, 3),
        }


@dataclass
class InstallReport:
    results: List[FormulaResult] = field(default_factory=list)
    satisfied: List[str] = field(default_factory=list)

    def _with_status(self, status: str) -> List[FormulaResult]:
        return [r for r in self.results if r.status == status]

    @property
    def installed(self) -> List[FormulaResult]:
        return self._with_status(INSTALLED)

    @property
    def failed(self) -> List[FormulaResult]:
        return self._with_status(FAILED)

    @property
    def skipped(self) -> List[FormulaResult]:
        return self._with_status(SKIPPED)

    @property
    def cancelled(self) -> List[FormulaResult]:
        return self._with_status(CANCELLED)

    @property
    def warnings(self) -> List[str]:
        return [f"{r.name}: {w}" for r in self.results for w in r.warnings]

    def result(self, name: str) -> Optional[FormulaResult]:
        for r in self.results:
            if r.name == name:
                return r
        return None

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "satisfied": list(self.satisfied),
            "ok": self.ok,
        }


# ---------------------------
# Orchestrator
# ---------------------------
class BuildOrchestrator:
    def __init__(self,
                 settings: Settings,
                 receipts: ReceiptStore,
                 fetcher: Optional[ContentFetcher] = None,
                 runner: Optional[CommandRunner] = None,
                 hooks: Optional[HookManager] = None,
                 linker: Optional[Linker] = None,
                 keep_sandbox: bool = False):
        self.settings = settings
        self.receipts = receipts
        self.fetcher = fetcher or ContentFetcher(settings.cache_dir)
        self.runner = runner or CommandRunner(use_fakeroot=settings.use_fakeroot,
                                              timeout=settings.step_timeout)
        self.hooks = hooks or HookManager(self.runner)
        self.linker = linker or Linker(settings.prefix, settings.cellar)
        self.keep_sandbox = keep_sandbox
        self.log = _logger.Logger("build")
        self._cancel = threading.Event()

    def cancel(self):
        """
        Stop scheduling new entries; builds already running finish.
        Only sets an event, so it is safe to call from a signal handler.
        """
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ---------------------------
    # Scheduling
    # ---------------------------
    def run(self,
            plan: ResolutionPlan,
            env: Environment,
            callback: Optional[Callable[[FormulaResult], None]] = None) -> InstallReport:
        """
        Install every plan entry. Returns an InstallReport in plan order;
        per-formula failures never raise out of here.
        """
        results: Dict[str, FormulaResult] = {}
        committed = set(plan.satisfied)
        failed_root: Dict[str, str] = {}
        pending: List[PlanEntry] = list(plan.entries)
        running = {}

        def finish(result: FormulaResult):
            results[result.name] = result
            if callback:
                callback(result)

        workers = max(1, min(self.settings.jobs, len(pending) or 1))
        self.log.info(f"Installing {len(pending)} formulae with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as pool:
            while pending or running:
                if self._cancel.is_set():
                    if pending:
                        self.log.warning(f"Cancelled: {len(pending)} pending, waiting for {len(running)} running")
                    for entry in pending:
                        finish(FormulaResult(entry.name, entry.version, status=CANCELLED))
                    pending = []
                else:
                    for entry in list(pending):
                        broken = [d for d in entry.dependencies if d in failed_root]
                        if broken:
                            root = failed_root[broken[0]]
                            failed_root[entry.name] = root
                            pending.remove(entry)
                            self.log.warning(f"Skipping {entry.name}: dependency {root} failed")
                            finish(FormulaResult(entry.name, entry.version, status=SKIPPED,
                                                 error=DependencyFailed(entry.name, root)))
                        elif all(d in committed for d in entry.dependencies):
                            pending.remove(entry)
                            running[pool.submit(self.install_one, entry, env)] = entry

                if not running:
                    if pending:
                        raise RuntimeError(f"unschedulable plan entries: {[e.name for e in pending]}")
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for fut in done:
                    entry = running.pop(fut)
                    result = fut.result()
                    if result.ok:
                        committed.add(entry.name)
                    else:
                        failed_root[entry.name] = entry.name
                    finish(result)

        report = InstallReport(results=[results[e.name] for e in plan.entries if e.name in results],
                               satisfied=list(plan.satisfied))
        self.log.info(f"Done: {len(report.installed)} installed, {len(report.failed)} failed, "
                      f"{len(report.skipped)} skipped, {len(report.cancelled)} cancelled")
        return report

    # ---------------------------
    # One formula
    # ---------------------------
    def install_one(self, entry: PlanEntry, env: Environment) -> FormulaResult:
        formula = entry.formula
        result = FormulaResult(formula.name, formula.pkg_version, method=entry.method)
        start = time.time()
        try:
            self.hooks.run_global("pre-install", formula, self.settings.keg_path(formula.name, formula.pkg_version))
            with Sandbox(formula.name, base_dir=self.settings.build_root, keep=self.keep_sandbox) as sb:
                staged = None
                if entry.selection.is_bottle:
                    staged = self._try_bottle(entry, env, sb, result)
                if staged is None:
                    result.method = InstallMethod.SOURCE
                    staged = self._build(formula, env, sb)
                keg = self._place(formula, staged)

            result.keg = keg
            self._commit(entry, env, keg, result.method)
            result.status = INSTALLED
            self._finalize(entry, env, keg, result)
            self.log.success(f"{formula.name} {formula.pkg_version} installed ({result.method.value})")
        except CellarError as e:
            result.status = FAILED
            result.error = e
            self.log.error(f"{formula.name}: {e}")
        except Exception as e:
            result.status = FAILED
            result.error = BuildError(f"{formula.name}: unexpected {e.__class__.__name__}: {e}")
            self.log.error(f"{formula.name}: unexpected error: {e}")
            self.log.debug(traceback.format_exc())
        result.duration = time.time() - start
        return result

    def _try_bottle(self, entry: PlanEntry, env: Environment, sb: Sandbox,
                    result: FormulaResult) -> Optional[str]:
        name = entry.name
        self.log.info(f"{name}: pouring {entry.selection.bottle.tag} bottle")
        try:
            return pour(entry.formula, entry.selection, self.fetcher, os.path.join(sb.path, "bottle"))
        except (ChecksumMismatch, FetchError) as e:
            if not self.settings.source_fallback:
                raise
            if not entry.formula.source_for(env).url:
                self.log.error(f"{name}: bottle unusable and no source to build from")
                raise
            msg = f"bottle discarded ({e.kind}), built from source"
            self.log.warning(f"{name}: {msg}: {e}")
            result.warnings.append(msg)
            Utils.remove_tree(os.path.join(sb.path, "bottle"))
            return None

    def _build(self, formula: Formula, env: Environment, sb: Sandbox) -> str:
        self.log.info(f"{formula.name}: building from source")
        values = self._placeholders(formula, sb.prefix)

        source = formula.source_for(env)
        if source.url:
            archive = self.fetcher.fetch(source.urls, source.sha256)
            workdir = Sandbox.unpack(archive, sb.src)
        else:
            workdir = sb.src
        values["workdir"] = workdir

        for res in formula.resources_for(env):
            archive = self.fetcher.fetch(res.source.urls, res.source.sha256)
            values[f"resource:{res.name}"] = Sandbox.unpack(archive, sb.resource_dir(res.name))

        step_env = self._step_env(values)
        step_env["TMPDIR"] = sb.tmp
        for step in formula.steps_for(env):
            self.log.info(f"{formula.name}: {step.describe()}")
            cwd = os.path.join(workdir, step.cwd) if step.cwd else workdir
            run_env = dict(step_env)
            run_env.update({k: expand_placeholders(v, values) for k, v in step.env})
            res = self.runner.run(expand_placeholders(step.command, values), cwd=cwd, env=run_env)
            if not res.ok():
                raise BuildStepFailed(formula.name, step.describe(), res.returncode, res.output_tail())
        return sb.prefix

    def _place(self, formula: Formula, staged: str) -> str:
        """Move a staged keg into <cellar>/<name>/<pkg_version>."""
        rack = Utils.ensure_dir(os.path.join(self.settings.cellar, formula.name))
        keg = self.settings.keg_path(formula.name, formula.pkg_version)
        incoming = os.path.join(rack, f".{formula.pkg_version}.incoming")
        Utils.remove_tree(incoming)
        shutil.move(staged, incoming)
        if os.path.lexists(keg):
            self.log.info(f"{formula.name}: replacing existing keg {keg}")
            self.linker.unlink(keg)
            Utils.remove_tree(keg)
        os.replace(incoming, keg)
        return keg

    def _commit(self, entry: PlanEntry, env: Environment, keg: str, method: InstallMethod):
        formula = entry.formula
        previous = self.receipts.query(formula.name)
        linked = {}
        for dep in formula.runtime_deps(env):
            if dep.external:
                continue
            dep_receipt = self.receipts.query(dep.name)
            if dep_receipt is not None:
                linked[dep.name] = dep_receipt.version
        requested = entry.requested or (previous is not None and previous.requested)
        return self.receipts.record(formula.name, formula.pkg_version, method,
                                    Utils.list_files(keg), linked=linked, requested=requested)

    def _finalize(self, entry: PlanEntry, env: Environment, keg: str, result: FormulaResult):
        """Linking, old keg removal and post-install; problems here are warnings."""
        formula = entry.formula
        if entry.upgrade_from and entry.upgrade_from != formula.pkg_version:
            old = self.settings.keg_path(formula.name, entry.upgrade_from)
            try:
                self.linker.unlink(old)
                Utils.remove_tree(old)
                self.log.info(f"{formula.name}: removed old keg {entry.upgrade_from}")
            except OSError as e:
                result.warnings.append(f"could not remove old keg {old}: {e}")

        if formula.keg_only:
            self.log.info(f"{formula.name} is keg-only ({formula.keg_only}), not linked")
        elif self.settings.link:
            try:
                self.linker.link(keg)
            except OSError as e:
                result.warnings.append(f"linking failed: {e}")
                self.log.warning(f"{formula.name}: linking failed: {e}")

        values = self._placeholders(formula, keg)
        values["workdir"] = keg
        try:
            self.hooks.run_post_install(formula, keg, env, values, self._step_env(values))
        except PostInstallFailed as e:
            result.warnings.append(str(e))
            self.log.warning(str(e))

    # ---------------------------
    # Helpers
    # ---------------------------
    def _placeholders(self, formula: Formula, prefix: str) -> Dict[str, str]:
        return {
            "prefix": prefix,
            "keg": self.settings.keg_path(formula.name, formula.pkg_version),
            "cellar": self.settings.cellar,
            "name": formula.name,
            "version": formula.version,
            "jobs": str(self.settings.jobs),
        }

    @staticmethod
    def _step_env(values: Dict[str, str]) -> Dict[str, str]:
        env = {}
        for key, value in values.items():
            if ":" in key:
                kind, _, name = key.partition(":")
                key = f"{kind}_{name}".replace("-", "_").replace(".", "_")
            env[f"CELLAR_{key.upper()}"] = value
        return env

    @staticmethod
    def report_json(report: InstallReport, out: str) -> str:
        Utils.atomic_write_json(out, report.to_dict())
        return out
