# cellar/modules/hooks.py
import os
from typing import Callable, Dict, List, Optional

from cellar.modules import logger
from cellar.modules.environment import Environment
from cellar.modules.errors import PostInstallFailed
from cellar.modules.formula import BuildStep, Formula
from cellar.modules.runner import CommandRunner, expand_placeholders

HookFunc = Callable[[Formula, str], None]

STAGES = ("pre-install", "post-install")


class HookManager:
    """
    Runs install hooks.
    - Global hooks: Python callables registered per stage, run for every formula
    - Formula hooks: the formula's own `post_install` steps
    Post-install failures never unwind an install; they come back as
    PostInstallFailed for the caller to report.
    """

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.global_hooks: Dict[str, List[HookFunc]] = {}
        self.runner = runner or CommandRunner()
        self.log = logger.Logger("hooks")

    # ---------------------------------------------------
    # Registration
    # ---------------------------------------------------
    def register_global(self, stage: str, func: HookFunc):
        """Register a hook run for every formula at `stage`."""
        if stage not in STAGES:
            raise ValueError(f"unknown hook stage: {stage}")
        self.global_hooks.setdefault(stage, []).append(func)
        self.log.debug(f"Global hook registered for stage={stage}: {getattr(func, '__name__', func)}")

    # ---------------------------------------------------
    # Execution
    # ---------------------------------------------------
    def run_global(self, stage: str, formula: Formula, keg: str):
        for func in self.global_hooks.get(stage, []):
            func(formula, keg)

    def run_post_install(self,
                         formula: Formula,
                         keg: str,
                         env: Environment,
                         values: Dict[str, str],
                         step_env: Dict[str, str]):
        """Run global post-install hooks, then the formula's post_install steps."""
        try:
            self.run_global("post-install", formula, keg)
        except Exception as e:
            raise PostInstallFailed(formula.name, f"hook raised {e.__class__.__name__}: {e}") from e

        for step in formula.post_install_for(env):
            self._run_step(formula, step, keg, values, step_env)

    def _run_step(self, formula: Formula, step: BuildStep, keg: str, values, step_env):
        self.log.info(f"{formula.name}: post-install: {step.describe()}")
        env = dict(step_env)
        env.update({k: expand_placeholders(v, values) for k, v in step.env})
        cwd = os.path.join(keg, step.cwd) if step.cwd else keg
        result = self.runner.run(expand_placeholders(step.command, values), cwd=cwd, env=env)
        if not result.ok():
            raise PostInstallFailed(formula.name, f"'{step.describe()}' exited {result.returncode}: "
                                                  f"{result.output_tail(5)}")
