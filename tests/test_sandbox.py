import io
import os
import zipfile

import pytest

from cellar.modules.sandbox import Sandbox


def test_workspace_removed_on_exit(tmp_path):
    with Sandbox("zstd", base_dir=str(tmp_path)) as sb:
        path = sb.path
        for d in (sb.src, sb.resources, sb.prefix, sb.tmp):
            assert os.path.isdir(d)
        assert os.path.isdir(sb.resource_dir("astroid"))
    assert not os.path.exists(path)


def test_workspace_removed_when_body_raises(tmp_path):
    with pytest.raises(RuntimeError):
        with Sandbox("zstd", base_dir=str(tmp_path)) as sb:
            path = sb.path
            raise RuntimeError("boom")
    assert not os.path.exists(path)


def test_keep(tmp_path):
    with Sandbox("zstd", base_dir=str(tmp_path), keep=True) as sb:
        path = sb.path
    assert os.path.isdir(path)


def test_unpack_tarball_strips_single_top_dir(tmp_path, make_tarball):
    archive, _ = make_tarball({"zstd-1.5.0/Makefile": "all:\n", "zstd-1.5.0/lib/zstd.h": ""})
    root = Sandbox.unpack(archive, str(tmp_path / "out"))
    assert root == str(tmp_path / "out" / "zstd-1.5.0")
    assert os.path.isfile(os.path.join(root, "lib", "zstd.h"))

    flat = Sandbox.unpack(archive, str(tmp_path / "flat"), strip=False)
    assert flat == str(tmp_path / "flat")


def test_unpack_zip(tmp_path):
    path = tmp_path / "a.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("a.txt", "x")
        zf.writestr("b.txt", "y")
    root = Sandbox.unpack(str(path), str(tmp_path / "out"))
    assert sorted(os.listdir(root)) == ["a.txt", "b.txt"]


def test_unpack_plain_file_is_copied(tmp_path):
    path = tmp_path / "0123456789abcdef--install.sh"
    path.write_text("#!/bin/sh\n")
    root = Sandbox.unpack(str(path), str(tmp_path / "out"))
    assert os.listdir(root) == ["install.sh"]
