# cellar/modules/registry.py

from __future__ import annotations
from typing import Dict, Iterable, List, Optional

from cellar.modules import logger as _logger
from cellar.modules.errors import FormulaNotFound, ParseError
from cellar.modules.formula import Formula
from cellar.modules.recipe import FormulaLoader


class FormulaRegistry:
    """
    Read-only snapshot of formula definitions, keyed by name.

    Safe to share between build workers: nothing mutates it after __init__.
    """

    def __init__(self, formulas: Iterable[Formula] = ()):
        self._formulas: Dict[str, Formula] = {}
        for f in formulas:
            if f.name in self._formulas:
                other = self._formulas[f.name].path or "<memory>"
                raise ParseError(f.name, f"duplicate formula name (also defined in {other})")
            self._formulas[f.name] = f

    @classmethod
    def from_directory(cls, directory: str, loader: Optional[FormulaLoader] = None) -> "FormulaRegistry":
        loader = loader or FormulaLoader()
        registry = cls(loader.load_dir(directory))
        _logger.Logger("registry").debug(f"Registry snapshot: {len(registry)} formulae")
        return registry

    def lookup(self, name: str, required_by: Optional[str] = None) -> Formula:
        try:
            return self._formulas[name]
        except KeyError:
            raise FormulaNotFound(name, required_by) from None

    def all(self) -> List[Formula]:
        return [self._formulas[n] for n in sorted(self._formulas)]

    def names(self) -> List[str]:
        return sorted(self._formulas)

    def uses(self, name: str) -> List[str]:
        """Formulae that declare a dependency on `name` (any kind, any platform)."""
        return sorted(f.name for f in self._formulas.values()
                      if any(d.name == name for d in f.dependencies))

    def __contains__(self, name: str) -> bool:
        return name in self._formulas

    def __len__(self) -> int:
        return len(self._formulas)

    def __iter__(self):
        return iter(self.all())
