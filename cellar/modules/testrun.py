# cellar/modules/testrun.py
from __future__ import annotations
import os
from typing import List, Optional

from cellar.modules import logger
from cellar.modules.config import Settings
from cellar.modules.environment import Environment
from cellar.modules.errors import BuildStepFailed, NotInstalled
from cellar.modules.formula import Formula
from cellar.modules.receipts import ReceiptStore
from cellar.modules.runner import CommandResult, CommandRunner, expand_placeholders
from cellar.modules.sandbox import Sandbox


class FormulaTester:
    """
    Run a formula's `test` steps against its installed keg.

    Steps run in a throwaway sandbox ({workdir}); {prefix} and {keg} both
    point at the installed keg. The first failing step raises BuildStepFailed.
    """

    def __init__(self, settings: Settings, receipts: ReceiptStore, runner: Optional[CommandRunner] = None):
        self.settings = settings
        self.receipts = receipts
        self.runner = runner or CommandRunner(timeout=settings.step_timeout)
        self.log = logger.Logger("test")

    def run(self, formula: Formula, env: Environment) -> List[CommandResult]:
        receipt = self.receipts.query(formula.name)
        if receipt is None:
            raise NotInstalled(formula.name)
        keg = self.settings.keg_path(formula.name, receipt.version)
        steps = formula.test_for(env)
        if not steps:
            self.log.warning(f"{formula.name} defines no test for {env.bottle_tag}")
            return []

        results = []
        with Sandbox(f"{formula.name}-test", base_dir=self.settings.build_root) as sb:
            values = {
                "prefix": keg,
                "keg": keg,
                "cellar": self.settings.cellar,
                "name": formula.name,
                "version": formula.version,
                "workdir": sb.tmp,
                "jobs": str(self.settings.jobs),
            }
            step_env = {f"CELLAR_{k.upper()}": v for k, v in values.items()}
            step_env["TMPDIR"] = sb.tmp
            for step in steps:
                self.log.info(f"{formula.name}: test: {step.describe()}")
                run_env = dict(step_env)
                run_env.update({k: expand_placeholders(v, values) for k, v in step.env})
                cwd = os.path.join(sb.tmp, step.cwd) if step.cwd else sb.tmp
                result = self.runner.run(expand_placeholders(step.command, values), cwd=cwd, env=run_env)
                results.append(result)
                if not result.ok():
                    raise BuildStepFailed(formula.name, step.describe(), result.returncode, result.output_tail())
        self.log.success(f"{formula.name}: {len(results)} test steps passed")
        return results
