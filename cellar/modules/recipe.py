# cellar/modules/recipe.py
"""
Formula loader - parse and validate formula YAML files into Formula objects.

Format (every key except name/version is optional):

    name: gcc
    version: "11.2.0"
    revision: 1
    desc: GNU compiler collection
    url: https://ftp.gnu.org/gnu/gcc/gcc-11.2.0/gcc-11.2.0.tar.xz
    mirrors: [https://ftpmirror.gnu.org/gcc/gcc-11.2.0/gcc-11.2.0.tar.xz]
    sha256: d08edc53...
    variants:
      - when: {arch: arm64}
        url: https://github.com/fxcoudert/gcc/archive/refs/tags/gcc-11.1.0-arm-20210504.tar.gz
        sha256: ce862b4a...
    depends_on:
      - gmp
      - {name: binutils, when: {os: linux}}
      - {name: cmake, type: build}
      - {name: python, version: ">=3.9"}
    uses_from_macos: [zlib]
    resources:
      - {name: astroid, url: ..., sha256: ...}
    install:
      - ["./configure", "--prefix={prefix}"]
      - {run: make install, when: {os: linux}}
    post_install: [...]
    test: [...]
    bottle:
      root_url: https://example.org/bottles
      pour_only_if: [clt_installed]
      sha256:
        arm64_big_sur: 23ec727f...
        x86_64_linux: {sha256: 7e46b50b..., cellar: any_skip_relocation}
    conflicts_with: [gcc@10]
    keg_only: "provided by macOS"

Usage:
  - Programmatically: FormulaLoader().load(path) / load_dir(path)
  - CLI: cellar validate <file>...
"""

from __future__ import annotations
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml

from cellar.modules import logger as _logger
from cellar.modules.environment import Condition
from cellar.modules.errors import ParseError
from cellar.modules.formula import (
    BottleFile, BottleSpec, BuildStep, Dependency, DependencyKind, Formula,
    Resource, SourceSpec, SourceVariant,
)
from cellar.modules.version import VersionConstraint

FORMULA_SUFFIXES = (".yaml", ".yml")


class FormulaLoader:
    REQUIRED_FIELDS = ["name", "version"]
    KNOWN_FIELDS = {
        "name", "version", "revision", "desc", "homepage", "license", "url",
        "mirrors", "sha256", "variants", "depends_on", "uses_from_macos",
        "resources", "install", "post_install", "test", "bottle",
        "conflicts_with", "keg_only",
    }

    def __init__(self, logger: Optional[_logger.Logger] = None):
        self.log = logger or _logger.Logger("loader")

    # -------------------------
    # I/O
    # -------------------------
    def load(self, path: str) -> Formula:
        """Load one formula file."""
        path = os.path.abspath(path)
        stem = os.path.splitext(os.path.basename(path))[0]
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ParseError(stem, f"invalid YAML: {e}") from e
        except OSError as e:
            raise ParseError(stem, f"cannot read {path}: {e}") from e

        formula = self.from_dict(data, default_name=stem)
        formula.path = path
        self.log.debug(f"Formula loaded: {formula.name} {formula.pkg_version} ({path})")
        return formula

    def load_dir(self, directory: str) -> List[Formula]:
        """Load every *.yaml / *.yml file in `directory` (not recursive)."""
        directory = os.path.abspath(directory)
        if not os.path.isdir(directory):
            raise ParseError(os.path.basename(directory), f"formula directory not found: {directory}")
        formulas = []
        for fn in sorted(os.listdir(directory)):
            if fn.startswith(".") or not fn.endswith(FORMULA_SUFFIXES):
                continue
            formulas.append(self.load(os.path.join(directory, fn)))
        self.log.info(f"{len(formulas)} formulae loaded from {directory}")
        return formulas

    # -------------------------
    # Validation
    # -------------------------
    def validate(self, data: Any, name: str) -> bool:
        if not isinstance(data, Mapping):
            raise ParseError(name, "formula must be a mapping")

        missing = [f for f in self.REQUIRED_FIELDS if data.get(f) in (None, "")]
        if missing:
            raise ParseError(name, f"missing required fields: {missing}")

        if not isinstance(data["version"], (str, int, float)):
            raise ParseError(name, "'version' must be a string or a number")

        unknown = sorted(set(data) - self.KNOWN_FIELDS)
        if unknown:
            raise ParseError(name, f"unknown fields: {unknown}")

        for key in ("depends_on", "uses_from_macos", "resources", "variants",
                    "install", "post_install", "test", "conflicts_with", "mirrors"):
            if key in data and data[key] is not None and not isinstance(data[key], list):
                raise ParseError(name, f"'{key}' must be a list")

        if "bottle" in data and data["bottle"] is not None and not isinstance(data["bottle"], Mapping):
            raise ParseError(name, "'bottle' must be a mapping")
        return True

    # -------------------------
    # Conversion
    # -------------------------
    def from_dict(self, data: Any, default_name: str = "<unknown>") -> Formula:
        name = str(data.get("name") or default_name) if isinstance(data, Mapping) else default_name
        self.validate(data, name)
        try:
            return Formula(
                name=name,
                version=str(data["version"]),
                revision=int(data.get("revision") or 0),
                desc=str(data.get("desc") or ""),
                homepage=str(data.get("homepage") or ""),
                license=str(data.get("license") or ""),
                source=self._source(data),
                variants=[self._variant(v) for v in data.get("variants") or []],
                dependencies=self._dependencies(data),
                resources=[self._resource(r) for r in data.get("resources") or []],
                steps=[self._step(s) for s in data.get("install") or []],
                post_install=[self._step(s) for s in data.get("post_install") or []],
                test=[self._step(s) for s in data.get("test") or []],
                bottle=self._bottle(data.get("bottle") or {}),
                conflicts_with=[str(c) for c in data.get("conflicts_with") or []],
                keg_only=self._keg_only(data.get("keg_only")),
            )
        except ParseError:
            raise
        except (ValueError, TypeError, KeyError) as e:
            raise ParseError(name, str(e)) from e

    @staticmethod
    def _condition(raw) -> Condition:
        if raw is None:
            return Condition.always()
        if not isinstance(raw, Mapping):
            raise ValueError(f"'when' must be a mapping, got {raw!r}")
        return Condition(raw)

    @staticmethod
    def _source(data: Mapping) -> SourceSpec:
        return SourceSpec(
            url=data.get("url"),
            sha256=data.get("sha256"),
            mirrors=tuple(data.get("mirrors") or ()),
        )

    def _variant(self, raw) -> SourceVariant:
        if not isinstance(raw, Mapping) or "when" not in raw or "url" not in raw:
            raise ValueError("each variant needs 'when' and 'url'")
        return SourceVariant(condition=self._condition(raw["when"]), source=self._source(raw))

    def _dependencies(self, data: Mapping) -> List[Dependency]:
        deps = [self._dependency(d) for d in data.get("depends_on") or []]
        for raw in data.get("uses_from_macos") or []:
            spec = {"name": raw} if isinstance(raw, str) else dict(raw)
            when = dict(spec.get("when") or {})
            if "not" in when:
                raise ValueError("uses_from_macos entries cannot carry their own 'not' condition")
            when["not"] = {"os": "macos"}
            spec["when"] = when
            deps.append(self._dependency(spec))
        return deps

    def _dependency(self, raw) -> Dependency:
        if isinstance(raw, str):
            return Dependency(name=raw)
        if not isinstance(raw, Mapping) or not raw.get("name"):
            raise ValueError(f"invalid dependency: {raw!r}")
        kind = DependencyKind(str(raw.get("type", "run")))
        constraint = raw.get("version")
        return Dependency(
            name=str(raw["name"]),
            kind=kind,
            condition=self._condition(raw.get("when")),
            constraint=VersionConstraint(str(constraint)) if constraint is not None else None,
            external=bool(raw.get("external", False)),
        )

    def _resource(self, raw) -> Resource:
        if not isinstance(raw, Mapping) or not raw.get("name") or not raw.get("url"):
            raise ValueError(f"resource needs 'name' and 'url': {raw!r}")
        if not raw.get("sha256"):
            raise ValueError(f"resource {raw['name']} has no sha256")
        return Resource(
            name=str(raw["name"]),
            source=self._source(raw),
            condition=self._condition(raw.get("when")),
        )

    def _step(self, raw) -> BuildStep:
        if isinstance(raw, str):
            return BuildStep(command=raw)
        if isinstance(raw, list):
            return BuildStep(command=tuple(str(a) for a in raw))
        if isinstance(raw, Mapping) and "run" in raw:
            cmd = raw["run"]
            command = cmd if isinstance(cmd, str) else tuple(str(a) for a in cmd)
            env = raw.get("env") or {}
            if not isinstance(env, Mapping):
                raise ValueError("step 'env' must be a mapping")
            return BuildStep(
                command=command,
                condition=self._condition(raw.get("when")),
                cwd=raw.get("cwd"),
                env=tuple((str(k), str(v)) for k, v in sorted(env.items())),
            )
        raise ValueError(f"invalid build step: {raw!r}")

    def _bottle(self, raw: Mapping) -> BottleSpec:
        files: Dict[str, BottleFile] = {}
        entries = raw.get("sha256") or raw.get("files") or {}
        if not isinstance(entries, Mapping):
            raise ValueError("bottle 'sha256' must map tags to checksums")
        for tag, value in entries.items():
            if isinstance(value, str):
                files[str(tag)] = BottleFile(tag=str(tag), sha256=value)
            elif isinstance(value, Mapping) and value.get("sha256"):
                files[str(tag)] = BottleFile(
                    tag=str(tag),
                    sha256=str(value["sha256"]),
                    cellar=value.get("cellar"),
                    url=value.get("url"),
                )
            else:
                raise ValueError(f"invalid bottle entry for tag {tag}")
        pour = raw.get("pour_only_if") or []
        if isinstance(pour, str):
            pour = [pour]
        return BottleSpec(
            root_url=raw.get("root_url"),
            rebuild=int(raw.get("rebuild") or 0),
            files=files,
            pour_only_if=tuple(str(p) for p in pour),
        )

    @staticmethod
    def _keg_only(raw) -> Optional[str]:
        if raw in (None, False):
            return None
        if raw is True:
            return "keg-only"
        return str(raw)
