# cellar/modules/receipts.py
"""
Install receipts: the persisted record of what is installed.

Layout: <state_dir>/receipts/<name>.json, one file per formula:
{
  "format_version": 1,
  "name": "gcc",
  "version": "11.2.0",
  "method": "bottle|source",
  "files": ["bin/gcc-11", ...],          # relative to the keg
  "linked": {"gmp": "6.2.1", ...},       # dependency versions installed at the time
  "requested": true,                     # installed on request, not as a dependency
  "installed_at": "2026-10-19T12:34:56Z"
}

Writes go through a temp file + os.replace, so a receipt is either fully
present or absent. Records without "format_version" (the older flat
installed-db entry layout: name/version/files/depends) are migrated on read.
"""

from __future__ import annotations
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from cellar.modules import logger as _logger
from cellar.modules.formula import InstallMethod
from cellar.modules.utils import Utils

FORMAT_VERSION = 1


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class Receipt:
    name: str
    version: str
    method: InstallMethod
    files: List[str] = field(default_factory=list)
    linked: Dict[str, str] = field(default_factory=dict)
    requested: bool = True
    installed_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format_version": FORMAT_VERSION,
            "name": self.name,
            "version": self.version,
            "method": self.method.value,
            "files": list(self.files),
            "linked": dict(self.linked),
            "requested": self.requested,
            "installed_at": self.installed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Receipt":
        data = migrate(data)
        return cls(
            name=data["name"],
            version=str(data["version"]),
            method=InstallMethod(data.get("method", "source")),
            files=list(data.get("files") or []),
            linked=dict(data.get("linked") or {}),
            requested=bool(data.get("requested", True)),
            installed_at=data.get("installed_at", ""),
        )


def migrate(data: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a stored record up to FORMAT_VERSION."""
    version = data.get("format_version", 0)
    if version > FORMAT_VERSION:
        raise ValueError(f"receipt format {version} is newer than supported ({FORMAT_VERSION})")
    if version == 0:
        data = dict(data)
        depends = data.pop("depends", None) or []
        data.setdefault("linked", {d: "" for d in depends})
        data.setdefault("method", "source")
        data.setdefault("requested", True)
        data.pop("recipe", None)
        data["format_version"] = 1
    return data


class ReceiptStore:
    """
    Install/state tracker. Single mutation point for installed state; each
    formula name has its own commit lock.
    """

    def __init__(self, state_dir: str):
        self.state_dir = os.path.abspath(state_dir)
        self.dir = os.path.join(self.state_dir, "receipts")
        self.log = _logger.Logger("receipts")
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(name, threading.Lock())

    def _path(self, name: str) -> str:
        if not name or "/" in name or name.startswith("."):
            raise ValueError(f"invalid formula name for receipt: {name!r}")
        return os.path.join(self.dir, f"{name}.json")

    # -------------------------
    # Operations
    # -------------------------
    def record(self,
               name: str,
               version: str,
               method: InstallMethod,
               manifest: Iterable[str],
               linked: Optional[Dict[str, str]] = None,
               requested: bool = True) -> Receipt:
        receipt = Receipt(
            name=name,
            version=version,
            method=method,
            files=sorted(manifest),
            linked=dict(linked or {}),
            requested=requested,
            installed_at=now_iso(),
        )
        with self._lock_for(name):
            Utils.atomic_write_json(self._path(name), receipt.to_dict())
        self.log.debug(f"Receipt committed: {name} {version} ({method.value}, {len(receipt.files)} files)")
        return receipt

    def query(self, name: str) -> Optional[Receipt]:
        path = self._path(name)
        if not os.path.exists(path):
            return None
        return Receipt.from_dict(Utils.read_json(path))

    def remove(self, name: str) -> bool:
        path = self._path(name)
        with self._lock_for(name):
            if not os.path.exists(path):
                return False
            os.remove(path)
        self.log.debug(f"Receipt removed: {name}")
        return True

    def all(self) -> List[Receipt]:
        if not os.path.isdir(self.dir):
            return []
        result = []
        for fn in sorted(os.listdir(self.dir)):
            if fn.endswith(".json") and not fn.startswith("."):
                receipt = self.query(fn[:-len(".json")])
                if receipt is not None:
                    result.append(receipt)
        return result

    def names(self) -> List[str]:
        return [r.name for r in self.all()]

    def reverse_dependencies(self, name: str) -> List[str]:
        """Installed formulae whose receipt lists `name` as a linked dependency."""
        return sorted(r.name for r in self.all() if r.name != name and name in r.linked)

    def __contains__(self, name: str) -> bool:
        return self.query(name) is not None
