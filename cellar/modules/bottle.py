# cellar/modules/bottle.py
"""
bottle.py - bottle (prebuilt binary) selection and unpacking

Bottle layout (tar.gz):
 - top-level directory: <name>/<pkg_version>/
 - inside it: the keg exactly as it will live in the cellar (bin, lib, ...)

Selection policy, evaluated fresh on every run:
 1. an artifact for the environment's exact tag (arm64_big_sur, x86_64_linux, ...)
 2. an artifact tagged "all"
 3. on macOS, the newest artifact for an older release of the same arch
    (when allow_older_os is set)
and then only if the artifact's cellar is relocatable or matches ours and
every `pour_only_if` policy check passes. Anything else is a source build.
"""

from __future__ import annotations
import os
import tarfile
import zipfile
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from cellar.modules import logger as _logger
from cellar.modules.environment import Environment, MACOS_CODENAMES
from cellar.modules.errors import FetchError
from cellar.modules.formula import BottleFile, Formula, InstallMethod
from cellar.modules.sandbox import Sandbox
from cellar.modules.version import Version

PolicyCheck = Callable[[Formula, Environment], bool]


@dataclass(frozen=True)
class Selection:
    method: InstallMethod
    bottle: Optional[BottleFile] = None
    url: Optional[str] = None
    reason: str = ""

    @classmethod
    def source(cls, reason: str = "") -> "Selection":
        return cls(InstallMethod.SOURCE, reason=reason)

    @property
    def is_bottle(self) -> bool:
        return self.method is InstallMethod.BOTTLE


def bottle_filename(formula: Formula, tag: str) -> str:
    rebuild = f".{formula.bottle.rebuild}" if formula.bottle.rebuild else ""
    return f"{formula.name}--{formula.pkg_version}.{tag}.bottle{rebuild}.tar.gz"


def bottle_url(formula: Formula, bf: BottleFile) -> Optional[str]:
    if bf.url:
        return bf.url
    if not formula.bottle.root_url:
        return None
    return formula.bottle.root_url.rstrip("/") + "/" + bottle_filename(formula, bf.tag)


class BottleSelector:
    def __init__(self,
                 cellar: Optional[str] = None,
                 allow_older_os: bool = True,
                 policies: Optional[Dict[str, PolicyCheck]] = None):
        self.cellar = os.path.abspath(cellar) if cellar else None
        self.allow_older_os = allow_older_os
        self.log = _logger.Logger("bottle")
        self.policies: Dict[str, PolicyCheck] = {
            "clt_installed": lambda f, env: env.has_toolchain("clt"),
            "xcode_installed": lambda f, env: env.has_toolchain("xcode"),
        }
        if policies:
            self.policies.update(policies)

    def register_policy(self, name: str, check: PolicyCheck):
        self.policies[name] = check
        self.log.debug(f"Bottle policy registered: {name}")

    # ------------------------
    # Selection
    # ------------------------
    def select(self, formula: Formula, env: Environment) -> Selection:
        bf = self.find_bottle(formula, env)
        if bf is None:
            return Selection.source(f"no bottle for {env.bottle_tag}")

        if not bf.relocatable and self.cellar and os.path.abspath(bf.cellar) != self.cellar:
            return Selection.source(f"bottle built for cellar {bf.cellar}")

        for policy in formula.bottle.pour_only_if:
            if not self._check_policy(policy, formula, env):
                return Selection.source(f"pour policy '{policy}' not satisfied")

        url = bottle_url(formula, bf)
        if not url:
            return Selection.source("bottle has no download location")
        self.log.debug(f"{formula.name}: bottle {bf.tag} selected")
        return Selection(InstallMethod.BOTTLE, bottle=bf, url=url, reason=f"bottle {bf.tag}")

    def find_bottle(self, formula: Formula, env: Environment) -> Optional[BottleFile]:
        files = formula.bottle.files
        if not files:
            return None
        if env.bottle_tag in files:
            return files[env.bottle_tag]
        if "all" in files:
            return files["all"]
        if env.is_macos and self.allow_older_os and env.os_version:
            return self._older_macos_bottle(files, env)
        return None

    @staticmethod
    def _older_macos_bottle(files: Dict[str, BottleFile], env: Environment) -> Optional[BottleFile]:
        current = Version(env.os_version)
        best = None
        for tag, bf in files.items():
            arch, _, codename = tag.partition("_") if tag.startswith("arm64_") else ("x86_64", "", tag)
            if arch != env.arch or codename not in MACOS_CODENAMES:
                continue
            release = Version(MACOS_CODENAMES[codename])
            if release <= current and (best is None or release > best[0]):
                best = (release, bf)
        return best[1] if best else None

    def _check_policy(self, name: str, formula: Formula, env: Environment) -> bool:
        if name.startswith("toolchain:"):
            return env.has_toolchain(name.split(":", 1)[1])
        check = self.policies.get(name)
        if check is None:
            self.log.warning(f"{formula.name}: unknown bottle policy '{name}', building from source")
            return False
        return bool(check(formula, env))


# ------------------------
# Unpacking
# ------------------------
def locate_keg(unpacked_root: str, formula: Formula) -> str:
    """Return <root>/<name>/<pkg_version> from an unpacked bottle."""
    keg = os.path.join(unpacked_root, formula.name, formula.pkg_version)
    if not os.path.isdir(keg):
        raise FetchError([], f"bottle for {formula.name} does not contain "
                             f"{formula.name}/{formula.pkg_version}/")
    return keg


def pour(formula: Formula, selection: Selection, fetcher, staging_dir: str) -> str:
    """
    Fetch and verify the selected bottle, unpack it under `staging_dir`
    and return the keg directory inside it. Nothing is placed in the cellar
    here; a ChecksumMismatch is raised before anything is unpacked.
    """
    archive = fetcher.fetch([selection.url], selection.bottle.sha256)
    try:
        root = Sandbox.unpack(archive, staging_dir, strip=False)
    except (tarfile.TarError, zipfile.BadZipFile) as e:
        raise FetchError([selection.url], f"cannot unpack bottle: {e}") from e
    return locate_keg(root, formula)
