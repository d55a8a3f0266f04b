# cellar/modules/formula.py
"""
Formula data model.

These are plain value objects built by the loader (recipe.py) and owned by
the registry. Nothing here touches the filesystem.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from cellar.modules.environment import Condition, Environment
from cellar.modules.version import VersionConstraint


class DependencyKind(Enum):
    BUILD = "build"
    RUN = "run"
    TEST = "test"


class InstallMethod(Enum):
    BOTTLE = "bottle"
    SOURCE = "source"


@dataclass(frozen=True)
class Dependency:
    """Edge from the owning formula to `name`."""

    name: str
    kind: DependencyKind = DependencyKind.RUN
    condition: Condition = field(default_factory=Condition.always)
    constraint: Optional[VersionConstraint] = None
    external: bool = False

    def applies_to(self, env: Environment) -> bool:
        return self.condition.matches(env)

    def __str__(self):
        s = self.name
        if self.constraint:
            s += f" {self.constraint}"
        if self.kind is not DependencyKind.RUN:
            s += f" ({self.kind.value})"
        return s


@dataclass(frozen=True)
class SourceSpec:
    url: Optional[str]
    sha256: Optional[str] = None
    mirrors: Tuple[str, ...] = ()

    @property
    def urls(self) -> List[str]:
        return [u for u in (self.url,) + tuple(self.mirrors) if u]


@dataclass(frozen=True)
class SourceVariant:
    """Platform-specific replacement for the main source (e.g. an arm64 branch)."""

    condition: Condition
    source: SourceSpec


@dataclass(frozen=True)
class Resource:
    name: str
    source: SourceSpec
    condition: Condition = field(default_factory=Condition.always)


@dataclass(frozen=True)
class BuildStep:
    """
    One opaque command. `command` is an argv list, or a string split with
    shlex at run time.
    """

    command: Union[Tuple[str, ...], str]
    condition: Condition = field(default_factory=Condition.always)
    cwd: Optional[str] = None
    env: Tuple[Tuple[str, str], ...] = ()

    def applies_to(self, env: Environment) -> bool:
        return self.condition.matches(env)

    def describe(self) -> str:
        if isinstance(self.command, str):
            return self.command
        return " ".join(self.command)


@dataclass(frozen=True)
class BottleFile:
    tag: str
    sha256: str
    cellar: Optional[str] = None
    url: Optional[str] = None

    @property
    def relocatable(self) -> bool:
        return self.cellar in (None, "any", "any_skip_relocation")


@dataclass(frozen=True)
class BottleSpec:
    root_url: Optional[str] = None
    rebuild: int = 0
    files: Dict[str, BottleFile] = field(default_factory=dict)
    pour_only_if: Tuple[str, ...] = ()


@dataclass
class Formula:
    name: str
    version: str
    source: SourceSpec = field(default_factory=lambda: SourceSpec(None))
    revision: int = 0
    desc: str = ""
    homepage: str = ""
    license: str = ""
    dependencies: List[Dependency] = field(default_factory=list)
    variants: List[SourceVariant] = field(default_factory=list)
    resources: List[Resource] = field(default_factory=list)
    steps: List[BuildStep] = field(default_factory=list)
    post_install: List[BuildStep] = field(default_factory=list)
    test: List[BuildStep] = field(default_factory=list)
    bottle: BottleSpec = field(default_factory=BottleSpec)
    conflicts_with: List[str] = field(default_factory=list)
    keg_only: Optional[str] = None
    path: Optional[str] = None

    @property
    def pkg_version(self) -> str:
        if self.revision:
            return f"{self.version}_{self.revision}"
        return self.version

    # -------------------------
    # Environment-filtered views
    # -------------------------
    def deps_for(self, env: Environment, kinds=(DependencyKind.BUILD, DependencyKind.RUN)) -> List[Dependency]:
        return [d for d in self.dependencies if d.kind in kinds and d.applies_to(env)]

    def runtime_deps(self, env: Environment) -> List[Dependency]:
        return self.deps_for(env, kinds=(DependencyKind.RUN,))

    def source_for(self, env: Environment) -> SourceSpec:
        for variant in self.variants:
            if variant.condition.matches(env):
                return variant.source
        return self.source

    def resources_for(self, env: Environment) -> List[Resource]:
        return [r for r in self.resources if r.condition.matches(env)]

    def steps_for(self, env: Environment) -> List[BuildStep]:
        return [s for s in self.steps if s.applies_to(env)]

    def post_install_for(self, env: Environment) -> List[BuildStep]:
        return [s for s in self.post_install if s.applies_to(env)]

    def test_for(self, env: Environment) -> List[BuildStep]:
        return [s for s in self.test if s.applies_to(env)]

    def __repr__(self):
        return f"Formula({self.name} {self.pkg_version})"
