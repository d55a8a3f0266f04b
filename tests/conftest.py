import hashlib
import io
import itertools
import os
import tarfile

import pytest

from cellar.modules.bottle import BottleSelector
from cellar.modules.build import BuildOrchestrator
from cellar.modules.config import Settings
from cellar.modules.environment import Environment
from cellar.modules.receipts import ReceiptStore
from cellar.modules.recipe import FormulaLoader
from cellar.modules.registry import FormulaRegistry
from cellar.modules.resolver import Resolver

FORMULAE_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "formulae")


@pytest.fixture
def linux_env():
    return Environment("linux", "x86_64", "5.15")


@pytest.fixture
def mac_env():
    return Environment("macos", "arm64", "big_sur", {"clt": "12.5", "clang": "1205"})


@pytest.fixture
def settings(tmp_path):
    return Settings(
        prefix=str(tmp_path / "prefix"),
        build_root=str(tmp_path / "build"),
        formula_dir=str(tmp_path / "formulae"),
        jobs=2,
    )


@pytest.fixture
def receipts(settings):
    return ReceiptStore(settings.state_dir)


@pytest.fixture
def make_formula():
    """Build a Formula from keyword fields written like the YAML format."""
    loader = FormulaLoader()

    def make(name, version="1.0", **fields):
        data = {"name": name, "version": version}
        data.update(fields)
        return loader.from_dict(data)
    return make


@pytest.fixture
def resolver_for(settings, receipts):
    def make(*formulas, selector=None):
        return Resolver(FormulaRegistry(formulas), receipts, selector or BottleSelector(settings.cellar))
    return make


@pytest.fixture
def orchestrator(settings, receipts):
    return BuildOrchestrator(settings, receipts)


@pytest.fixture
def make_tarball(tmp_path):
    """
    Write a .tar.gz holding {relative path: text} and return (path, sha256).
    Every member is executable so scripts can be run straight from a keg.
    """
    counter = itertools.count()
    out_dir = tmp_path / "archives"
    out_dir.mkdir()

    def make(files, name=None):
        path = out_dir / (name or f"archive-{next(counter)}.tar.gz")
        with tarfile.open(path, "w:gz") as tar:
            for rel, text in sorted(files.items()):
                data = text.encode("utf-8")
                info = tarfile.TarInfo(rel)
                info.size = len(data)
                info.mode = 0o755
                tar.addfile(info, io.BytesIO(data))
        with open(path, "rb") as fh:
            sha = hashlib.sha256(fh.read()).hexdigest()
        return str(path), sha
    return make


@pytest.fixture
def source_formula(make_formula, make_tarball):
    """
    A formula whose source tarball holds one script `tool` and whose build
    copies it to {prefix}/bin/<name>.
    """
    def make(name, version="1.0", sha256=None, **fields):
        path, sha = make_tarball({f"{name}-{version}/tool": f"#!/bin/sh\necho {name}\n"},
                                 name=f"{name}-{version}.tar.gz")
        fields.setdefault("install", [["sh", "-c", "mkdir -p {prefix}/bin && cp tool {prefix}/bin/{name}"]])
        return make_formula(name, version, url=path, sha256=sha256 or sha, **fields)
    return make
