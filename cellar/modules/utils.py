# cellar/modules/utils.py

import hashlib
import json
import os
import shutil
import tempfile


class Utils:
    """
    Small filesystem helpers shared by the other modules.
    """

    @staticmethod
    def ensure_dir(path):
        os.makedirs(path, exist_ok=True)
        return path

    @staticmethod
    def sha256sum(file_path):
        sha256 = hashlib.sha256()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                sha256.update(chunk)
        return sha256.hexdigest()

    @staticmethod
    def atomic_write_json(path, data):
        """
        Write `data` as JSON to `path` so that readers see either the old
        file or the complete new one, never a partial write.
        """
        dirpath = os.path.dirname(path) or "."
        os.makedirs(dirpath, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=dirpath)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    @staticmethod
    def read_json(path):
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)

    @staticmethod
    def list_files(root):
        """
        Sorted paths (relative to root) of every file and symlink under root.
        """
        result = []
        for dirpath, dirnames, files in os.walk(root):
            for d in dirnames:
                full = os.path.join(dirpath, d)
                if os.path.islink(full):
                    result.append(os.path.relpath(full, root))
            for fn in files:
                result.append(os.path.relpath(os.path.join(dirpath, fn), root))
        return sorted(result)

    @staticmethod
    def remove_tree(path):
        if os.path.islink(path) or os.path.isfile(path):
            os.remove(path)
        elif os.path.isdir(path):
            shutil.rmtree(path)
