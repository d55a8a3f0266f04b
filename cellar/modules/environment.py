# cellar/modules/environment.py
"""
Environment descriptor and platform conditions.

An Environment is the immutable (os, arch, os_version, toolchains) tuple a
run is evaluated against. It decides which dependency edges and build steps
apply and which bottle tag to look for.

Conditions are declarative predicates written in formula files:

    when: {os: linux}
    when: {arch: arm64, os_version: ">=11"}
    when: {toolchain: {clang: ">=1000"}}
    when: {not: {os: macos}}
    when: {any: [{os: linux}, {arch: x86_64}]}

Every key of a mapping must match. ``os``/``arch`` accept a string or a list
of alternatives; ``toolchain`` maps a tool name to ``true`` (present),
``false`` (absent) or a version constraint.
"""

from __future__ import annotations
import platform
import re
import shutil
import subprocess
from typing import Any, Dict, Mapping, Optional

from cellar.modules.version import Version, VersionConstraint

MACOS_CODENAMES = {
    "high_sierra": "10.13",
    "mojave": "10.14",
    "catalina": "10.15",
    "big_sur": "11",
    "monterey": "12",
    "ventura": "13",
    "sonoma": "14",
    "sequoia": "15",
    "tahoe": "26",
}

OS_ALIASES = {
    "darwin": "macos",
    "mac": "macos",
    "osx": "macos",
    "macos": "macos",
    "linux": "linux",
}

ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "intel": "x86_64",
    "arm64": "arm64",
    "aarch64": "arm64",
    "arm": "arm64",
}


def normalize_os(value: str) -> str:
    v = str(value).strip().lower()
    if v not in OS_ALIASES:
        raise ValueError(f"unknown os: {value!r}")
    return OS_ALIASES[v]


def normalize_arch(value: str) -> str:
    v = str(value).strip().lower()
    if v not in ARCH_ALIASES:
        raise ValueError(f"unknown arch: {value!r}")
    return ARCH_ALIASES[v]


def macos_version(value: str) -> str:
    """Accept a codename (``big_sur``) or a number (``11``); return the number."""
    v = str(value).strip().lower()
    return MACOS_CODENAMES.get(v, v)


def macos_codename(version: str) -> Optional[str]:
    wanted = Version(version)
    for name, number in MACOS_CODENAMES.items():
        if Version(number) == wanted:
            return name
    # 10.x minor releases never get their own bottle tags past 10.15
    if wanted.major >= 11:
        for name, number in MACOS_CODENAMES.items():
            if Version(number).major == wanted.major:
                return name
    return None


class Environment:
    """Immutable platform description for one run."""

    __slots__ = ("os", "arch", "os_version", "toolchains")

    def __init__(self, os: str, arch: str, os_version: str = "", toolchains: Optional[Mapping[str, str]] = None):
        object.__setattr__(self, "os", normalize_os(os))
        object.__setattr__(self, "arch", normalize_arch(arch))
        osv = str(os_version or "")
        if self.os == "macos" and osv:
            osv = macos_version(osv)
        object.__setattr__(self, "os_version", osv)
        object.__setattr__(self, "toolchains", dict(toolchains or {}))

    def __setattr__(self, key, value):
        raise AttributeError("Environment is immutable")

    # -------------------------
    # Derived values
    # -------------------------
    @property
    def is_macos(self) -> bool:
        return self.os == "macos"

    @property
    def is_linux(self) -> bool:
        return self.os == "linux"

    @property
    def codename(self) -> Optional[str]:
        if self.is_macos and self.os_version:
            return macos_codename(self.os_version)
        return None

    @property
    def bottle_tag(self) -> str:
        if self.is_linux:
            return f"{self.arch}_linux"
        name = self.codename or "unknown"
        return f"arm64_{name}" if self.arch == "arm64" else name

    def has_toolchain(self, name: str) -> bool:
        return name in self.toolchains

    def toolchain_version(self, name: str) -> Optional[str]:
        return self.toolchains.get(name)

    @classmethod
    def from_target(cls, target: str, base: Optional["Environment"] = None) -> "Environment":
        """Parse ``OS:ARCH[:VERSION]`` (e.g. ``macos:arm64:big_sur``)."""
        parts = [p for p in target.split(":")]
        if len(parts) < 2 or len(parts) > 3 or not all(parts):
            raise ValueError(f"invalid target {target!r}, expected OS:ARCH[:VERSION]")
        osv = parts[2] if len(parts) == 3 else ""
        toolchains = base.toolchains if base else {}
        return cls(parts[0], parts[1], osv, toolchains)

    @classmethod
    def detect(cls) -> "Environment":
        system = platform.system().lower()
        arch = platform.machine()
        if system == "darwin":
            release = platform.mac_ver()[0]
            major, _, rest = release.partition(".")
            osv = f"10.{rest.split('.')[0]}" if major == "10" else major
            return cls("macos", arch, osv, detect_toolchains(macos=True))
        return cls("linux", arch, platform.release(), detect_toolchains(macos=False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "os": self.os,
            "arch": self.arch,
            "os_version": self.os_version,
            "toolchains": dict(self.toolchains),
        }

    def __eq__(self, other):
        if not isinstance(other, Environment):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.os, self.arch, self.os_version, tuple(sorted(self.toolchains.items()))))

    def __repr__(self):
        return f"Environment({self.os}/{self.arch} {self.os_version or '-'}, tag={self.bottle_tag})"


_VERSION_PROBES = {
    "clang": (["clang", "--version"], r"clang-([\d.]+)"),
    "gcc": (["gcc", "-dumpversion"], r"([\d.]+)"),
    "make": (["make", "--version"], r"Make ([\d.]+)"),
}


def detect_toolchains(macos: bool) -> Dict[str, str]:
    found: Dict[str, str] = {}
    for name, (cmd, pattern) in _VERSION_PROBES.items():
        if not shutil.which(cmd[0]):
            continue
        version = "unknown"
        try:
            out = subprocess.run(cmd, capture_output=True, text=True, timeout=10).stdout
            m = re.search(pattern, out)
            if m:
                version = m.group(1).split(".")[0] if name == "clang" else m.group(1)
        except (OSError, subprocess.SubprocessError):
            pass
        found[name] = version
    if macos:
        try:
            out = subprocess.run(["xcode-select", "-p"], capture_output=True, text=True, timeout=10).stdout.strip()
        except (OSError, subprocess.SubprocessError):
            out = ""
        if out.endswith("CommandLineTools"):
            found["clt"] = "installed"
        elif out:
            found["xcode"] = "installed"
    return found


# ---------------------------
# Conditions
# ---------------------------
_CODENAME_RE = re.compile("|".join(sorted(MACOS_CODENAMES, key=len, reverse=True)), re.IGNORECASE)


class Condition:
    """Declarative platform predicate evaluated against an Environment."""

    KEYS = ("os", "arch", "os_version", "toolchain", "not", "any")

    def __init__(self, spec: Optional[Mapping[str, Any]] = None):
        self.spec = dict(spec or {})
        unknown = set(self.spec) - set(self.KEYS)
        if unknown:
            raise ValueError(f"unknown condition keys: {', '.join(sorted(unknown))}")
        self._os = self._alternatives("os", normalize_os)
        self._arch = self._alternatives("arch", normalize_arch)
        self._os_version = None
        if "os_version" in self.spec:
            self._os_version = VersionConstraint(_CODENAME_RE.sub(
                lambda m: MACOS_CODENAMES[m.group(0).lower()], str(self.spec["os_version"])))
        self._toolchain = self._parse_toolchain(self.spec.get("toolchain"))
        self._not = Condition(self.spec["not"]) if "not" in self.spec else None
        anys = self.spec.get("any")
        if anys is not None and not isinstance(anys, list):
            raise ValueError("'any' must be a list of conditions")
        self._any = [Condition(c) for c in anys] if anys else None

    def _alternatives(self, key, normalize):
        if key not in self.spec:
            return None
        raw = self.spec[key]
        values = raw if isinstance(raw, list) else [raw]
        return {normalize(v) for v in values}

    @staticmethod
    def _parse_toolchain(raw):
        if raw is None:
            return None
        if isinstance(raw, str):
            return {raw: True}
        if not isinstance(raw, Mapping):
            raise ValueError("'toolchain' must be a name or a mapping")
        parsed = {}
        for name, want in raw.items():
            parsed[name] = want if isinstance(want, bool) else VersionConstraint(str(want))
        return parsed

    @classmethod
    def always(cls) -> "Condition":
        return cls()

    @property
    def unconditional(self) -> bool:
        return not self.spec

    def matches(self, env: Environment) -> bool:
        if self._os is not None and env.os not in self._os:
            return False
        if self._arch is not None and env.arch not in self._arch:
            return False
        if self._os_version is not None:
            if not env.os_version:
                return False
            try:
                if not self._os_version.allows(env.os_version):
                    return False
            except ValueError:
                return False
        if self._toolchain:
            for name, want in self._toolchain.items():
                present = env.has_toolchain(name)
                if want is True and not present:
                    return False
                if want is False and present:
                    return False
                if isinstance(want, VersionConstraint):
                    ver = env.toolchain_version(name)
                    if not present or not _allows_quietly(want, ver):
                        return False
        if self._not is not None and self._not.matches(env):
            return False
        if self._any is not None and not any(c.matches(env) for c in self._any):
            return False
        return True

    def __eq__(self, other):
        return isinstance(other, Condition) and self.spec == other.spec

    def __repr__(self):
        return f"Condition({self.spec})"


def _allows_quietly(constraint: VersionConstraint, version: Optional[str]) -> bool:
    try:
        return constraint.allows(version)
    except ValueError:
        return False
