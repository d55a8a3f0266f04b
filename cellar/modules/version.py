# cellar/modules/version.py
"""
Version ordering and simple version constraints.

Formula versions are not PEP 440 (``11.2.0``, ``2021.1``, ``1.2.3_1``,
``3.0.0-rc1``), so comparison is done token by token: numeric tokens compare
numerically, alphabetic tokens compare lexically and sort *before* numbers
(so ``1.0rc1 < 1.0``), and missing trailing tokens count as zero.

Constraints are comma separated clauses: ``>=1.2``, ``<2``, ``==1.0``,
``!=1.1``, ``~>1.4`` (at least 1.4, below 2.0) or a bare version meaning
``==``.
"""

from __future__ import annotations
import functools
import re
from typing import List, Tuple, Union

_TOKEN_RE = re.compile(r"\d+|[A-Za-z]+")


@functools.total_ordering
class Version:
    def __init__(self, text: Union[str, int, float, "Version"]):
        if isinstance(text, Version):
            text = text.text
        self.text = str(text).strip()
        if not self.text:
            raise ValueError("empty version")
        self.tokens = self._tokenize(self.text)

    @staticmethod
    def _tokenize(text: str) -> Tuple:
        tokens = []
        for tok in _TOKEN_RE.findall(text):
            if tok.isdigit():
                tokens.append((1, int(tok), ""))
            else:
                tokens.append((0, 0, tok.lower()))
        return tuple(tokens)

    def _padded(self, n: int) -> Tuple:
        return self.tokens + ((1, 0, ""),) * (n - len(self.tokens))

    def _key(self, other: "Version"):
        n = max(len(self.tokens), len(other.tokens))
        return self._padded(n), other._padded(n)

    def __eq__(self, other):
        if not isinstance(other, Version):
            try:
                other = Version(other)
            except ValueError:
                return NotImplemented
        a, b = self._key(other)
        return a == b

    def __lt__(self, other):
        if not isinstance(other, Version):
            other = Version(other)
        a, b = self._key(other)
        return a < b

    def __hash__(self):
        toks = list(self.tokens)
        while toks and toks[-1] == (1, 0, ""):
            toks.pop()
        return hash(tuple(toks))

    @property
    def major(self) -> int:
        for kind, num, _ in self.tokens:
            if kind == 1:
                return num
        return 0

    def __str__(self):
        return self.text

    def __repr__(self):
        return f"Version('{self.text}')"


_CLAUSE_RE = re.compile(r"^\s*(>=|<=|==|!=|~>|>|<|=)?\s*([^\s,]+)\s*$")


class VersionConstraint:
    """A conjunction of comparison clauses, e.g. ``>=1.2, <2``."""

    def __init__(self, text: str):
        self.text = str(text).strip()
        self.clauses: List[Tuple[str, Version]] = []
        for part in self.text.split(","):
            if not part.strip():
                continue
            m = _CLAUSE_RE.match(part)
            if not m:
                raise ValueError(f"invalid version constraint: {text!r}")
            op = m.group(1) or "=="
            if op == "=":
                op = "=="
            self.clauses.append((op, Version(m.group(2))))
        if not self.clauses:
            raise ValueError(f"empty version constraint: {text!r}")

    def allows(self, version) -> bool:
        v = version if isinstance(version, Version) else Version(version)
        for op, bound in self.clauses:
            if op == ">=" and not v >= bound:
                return False
            if op == "<=" and not v <= bound:
                return False
            if op == ">" and not v > bound:
                return False
            if op == "<" and not v < bound:
                return False
            if op == "==" and not v == bound:
                return False
            if op == "!=" and v == bound:
                return False
            if op == "~>" and not (v >= bound and v < _pessimistic_ceiling(bound)):
                return False
        return True

    def __str__(self):
        return self.text

    def __repr__(self):
        return f"VersionConstraint('{self.text}')"


def _pessimistic_ceiling(bound: Version) -> Version:
    nums = [num for kind, num, _ in bound.tokens if kind == 1]
    if len(nums) <= 1:
        return Version(str((nums[0] if nums else 0) + 1))
    head = nums[:-1]
    head[-1] += 1
    return Version(".".join(str(n) for n in head))
