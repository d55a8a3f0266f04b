# cellar/modules/errors.py
"""
Error taxonomy shared by every cellar module.

Resolution errors abort a run before anything is built. Build errors are
fatal to one formula (and whatever depends on it). PostInstallFailed is only
ever reported as a warning.
"""

from __future__ import annotations
from typing import Iterable, Optional


class CellarError(Exception):
    """Base class; `kind` is what the CLI summary shows."""

    @property
    def kind(self) -> str:
        return type(self).__name__


# ---------------------------
# Loading
# ---------------------------
class ParseError(CellarError):
    def __init__(self, formula: str, message: str):
        self.formula = formula
        self.message = message
        super().__init__(f"{formula}: {message}")


# ---------------------------
# Resolution (fatal to the whole run)
# ---------------------------
class ResolutionError(CellarError):
    pass


class FormulaNotFound(ResolutionError):
    def __init__(self, name: str, required_by: Optional[str] = None):
        self.name = name
        self.required_by = required_by
        if required_by:
            msg = f"No available formula '{name}' (required by {required_by})"
        else:
            msg = f"No available formula '{name}'"
        super().__init__(msg)

    @property
    def kind(self) -> str:
        return "NotFound"


class DependencyCycle(ResolutionError):
    def __init__(self, cycle: Iterable[str]):
        self.cycle = list(cycle)
        super().__init__("Dependency cycle: " + " -> ".join(self.cycle))


class VersionConflict(ResolutionError):
    def __init__(self, formula: str, required_by: str, requirement: str, other: str, available: str):
        self.formula = formula
        self.required_by = required_by
        self.requirement = requirement
        self.other = other
        self.available = available
        super().__init__(
            f"{required_by} requires {formula} {requirement}, "
            f"incompatible with {other} ({formula} {available} available)"
        )


class FormulaConflict(ResolutionError):
    def __init__(self, formula: str, conflicts_with: str, installed: bool = False):
        self.formula = formula
        self.conflicts_with = conflicts_with
        self.installed = installed
        where = "installed" if installed else "requested"
        super().__init__(f"{formula} conflicts with {where} formula {conflicts_with}")


# ---------------------------
# Build-time (fatal to a formula and its dependents)
# ---------------------------
class BuildError(CellarError):
    pass


class FetchError(BuildError):
    def __init__(self, urls: Iterable[str], reason: str):
        self.urls = list(urls)
        self.reason = reason
        super().__init__(f"Failed to fetch {', '.join(self.urls) or '<no url>'}: {reason}")


class ChecksumMismatch(BuildError):
    def __init__(self, url: str, expected: str, actual: str):
        self.url = url
        self.expected = expected
        self.actual = actual
        super().__init__(f"SHA256 mismatch for {url}\n  expected: {expected}\n  actual:   {actual}")


class BuildStepFailed(BuildError):
    def __init__(self, formula: str, step: str, returncode: Optional[int], output: str = ""):
        self.formula = formula
        self.step = step
        self.returncode = returncode
        self.output = output
        super().__init__(f"{formula}: step '{step}' failed (exit {returncode})")


class DependencyFailed(BuildError):
    def __init__(self, formula: str, dependency: str):
        self.formula = formula
        self.dependency = dependency
        super().__init__(f"{formula} skipped: dependency {dependency} failed")


class PostInstallFailed(CellarError):
    def __init__(self, formula: str, reason: str):
        self.formula = formula
        self.reason = reason
        super().__init__(f"{formula}: post-install failed: {reason}")


# ---------------------------
# Installed state
# ---------------------------
class NotInstalled(CellarError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is not installed")


class DependentsInstalled(CellarError):
    def __init__(self, name: str, dependents: Iterable[str]):
        self.name = name
        self.dependents = sorted(dependents)
        super().__init__(f"Refusing to uninstall {name}: required by {', '.join(self.dependents)}")
