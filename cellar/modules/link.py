# cellar/modules/link.py

from __future__ import annotations
import os
from typing import List

from cellar.modules import logger as _logger

LINKED_DIRS = ("bin", "sbin", "lib", "include", "share", "etc")


class Linker:
    """
    Symlink keg contents into the prefix (prefix/bin/foo -> Cellar/foo/1.0/bin/foo).

    Only files are linked; directories in the prefix are real directories so
    several kegs can share them. A path that already exists and is not a
    link into the cellar is left alone and reported.
    """

    def __init__(self, prefix: str, cellar: str):
        self.prefix = os.path.abspath(prefix)
        self.cellar = os.path.abspath(cellar)
        self.log = _logger.Logger("link")

    def link(self, keg: str) -> List[str]:
        keg = os.path.abspath(keg)
        linked = []
        for top in LINKED_DIRS:
            src_top = os.path.join(keg, top)
            if not os.path.isdir(src_top):
                continue
            for dirpath, dirnames, files in os.walk(src_top):
                rel_dir = os.path.relpath(dirpath, keg)
                os.makedirs(os.path.join(self.prefix, rel_dir), exist_ok=True)
                for fn in files + [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]:
                    src = os.path.join(dirpath, fn)
                    dst = os.path.join(self.prefix, rel_dir, fn)
                    if os.path.lexists(dst):
                        if os.path.islink(dst) and self._points_into_cellar(dst):
                            os.remove(dst)
                        else:
                            self.log.warning(f"Not linking {dst}: already exists")
                            continue
                    os.symlink(src, dst)
                    linked.append(os.path.join(rel_dir, fn))
        self.log.debug(f"Linked {len(linked)} files from {keg}")
        return linked

    def unlink(self, keg: str) -> int:
        keg = os.path.abspath(keg)
        removed = 0
        for top in LINKED_DIRS:
            root = os.path.join(self.prefix, top)
            if not os.path.isdir(root):
                continue
            for dirpath, dirnames, files in os.walk(root):
                for fn in files + dirnames:
                    path = os.path.join(dirpath, fn)
                    if os.path.islink(path) and self._target(path).startswith(keg + os.sep):
                        os.remove(path)
                        removed += 1
        self.log.debug(f"Unlinked {removed} files of {keg}")
        return removed

    @staticmethod
    def _target(path: str) -> str:
        return os.path.abspath(os.path.join(os.path.dirname(path), os.readlink(path)))

    def _points_into_cellar(self, path: str) -> bool:
        return self._target(path).startswith(self.cellar + os.sep)
