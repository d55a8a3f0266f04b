# cellar/modules/sandbox.py
import os
import shutil
import tarfile
import tempfile
import zipfile

from cellar.modules import logger


class Sandbox:
    """
    Private build workspace for one formula.

    Use as a context manager; the workspace is removed when the block exits,
    whether the build succeeded or raised:

        with Sandbox("gcc", base_dir=build_root) as sb:
            root = sb.unpack(archive, sb.src)
            ...

    Layout:
      src/        unpacked source tree
      resources/  one directory per staged resource
      prefix/     install destination; becomes the keg on success
      tmp/        TMPDIR for build steps
    """

    def __init__(self, package_name: str, base_dir: str = None, keep: bool = False):
        self.package_name = package_name
        self.base_dir = os.path.abspath(base_dir) if base_dir else None
        self.keep = keep
        self.path = None
        self.log = logger.Logger("sandbox")

    # -------------------------------
    # Core
    # -------------------------------
    def __enter__(self):
        self.prepare()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.clean()
        return False

    def prepare(self):
        if self.base_dir:
            os.makedirs(self.base_dir, exist_ok=True)
        self.path = tempfile.mkdtemp(prefix=f"cellar-{self.package_name}-", dir=self.base_dir)
        for d in ("src", "resources", "prefix", "tmp"):
            os.makedirs(os.path.join(self.path, d))
        self.log.debug(f"Sandbox prepared at {self.path}")
        return self.path

    def clean(self):
        if not self.path or not os.path.exists(self.path):
            return
        if self.keep:
            self.log.info(f"Keeping sandbox {self.path}")
            return
        shutil.rmtree(self.path, ignore_errors=True)
        self.log.debug(f"Sandbox removed: {self.path}")

    @property
    def src(self):
        return os.path.join(self.path, "src")

    @property
    def resources(self):
        return os.path.join(self.path, "resources")

    @property
    def prefix(self):
        return os.path.join(self.path, "prefix")

    @property
    def tmp(self):
        return os.path.join(self.path, "tmp")

    def resource_dir(self, name: str):
        path = os.path.join(self.resources, name)
        os.makedirs(path, exist_ok=True)
        return path

    # -------------------------------
    # Unpacking
    # -------------------------------
    @staticmethod
    def unpack(archive_file: str, dest: str, strip: bool = True) -> str:
        """
        Unpack a tarball or zip into `dest`. Anything else is copied in as-is.
        With `strip`, a single top-level directory is treated as the root.
        Returns the root directory of the unpacked content.
        """
        os.makedirs(dest, exist_ok=True)
        if tarfile.is_tarfile(archive_file):
            with tarfile.open(archive_file, "r:*") as tar:
                tar.extractall(path=dest, filter="data")
        elif zipfile.is_zipfile(archive_file):
            with zipfile.ZipFile(archive_file) as zf:
                zf.extractall(dest)
        else:
            shutil.copy2(archive_file, os.path.join(dest, os.path.basename(archive_file).split("--", 1)[-1]))
            return dest

        entries = [e for e in os.listdir(dest) if not e.startswith(".")]
        if strip and len(entries) == 1 and os.path.isdir(os.path.join(dest, entries[0])):
            return os.path.join(dest, entries[0])
        return dest
