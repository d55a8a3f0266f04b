import json
import os

import pytest

from cellar.modules.formula import InstallMethod
from cellar.modules.receipts import FORMAT_VERSION, Receipt, migrate


def test_record_and_query(receipts):
    receipts.record("gcc", "11.2.0", InstallMethod.BOTTLE, ["bin/gcc-11", "bin/cpp-11"],
                    linked={"gmp": "6.2.1"})
    r = receipts.query("gcc")
    assert r.version == "11.2.0"
    assert r.method is InstallMethod.BOTTLE
    assert r.files == ["bin/cpp-11", "bin/gcc-11"]
    assert r.linked == {"gmp": "6.2.1"}
    assert r.requested
    assert r.installed_at.endswith("Z")
    assert "gcc" in receipts
    assert receipts.query("clang") is None


def test_receipt_file_is_versioned_json(receipts):
    receipts.record("zstd", "1.5.0", InstallMethod.SOURCE, [])
    with open(os.path.join(receipts.dir, "zstd.json")) as fh:
        data = json.load(fh)
    assert data["format_version"] == FORMAT_VERSION
    assert data["method"] == "source"
    assert [f for f in os.listdir(receipts.dir) if f.startswith(".")] == []


def test_rewrite_replaces_receipt(receipts):
    receipts.record("zstd", "1.4.9", InstallMethod.SOURCE, [])
    receipts.record("zstd", "1.5.0", InstallMethod.SOURCE, [])
    assert receipts.query("zstd").version == "1.5.0"
    assert receipts.names() == ["zstd"]


def test_remove(receipts):
    receipts.record("zstd", "1.5.0", InstallMethod.SOURCE, [])
    assert receipts.remove("zstd")
    assert not receipts.remove("zstd")
    assert receipts.all() == []


def test_reverse_dependencies(receipts):
    receipts.record("gmp", "6.2.1", InstallMethod.SOURCE, [])
    receipts.record("mpfr", "4.1.0", InstallMethod.SOURCE, [], linked={"gmp": "6.2.1"})
    receipts.record("gcc", "11.2.0", InstallMethod.SOURCE, [], linked={"gmp": "6.2.1", "mpfr": "4.1.0"})
    assert receipts.reverse_dependencies("gmp") == ["gcc", "mpfr"]
    assert receipts.reverse_dependencies("gcc") == []


def test_legacy_record_is_migrated(receipts):
    os.makedirs(receipts.dir)
    legacy = {"name": "foo", "version": "1.0", "files": ["/usr/bin/foo"], "depends": ["bar"],
              "recipe": {"name": "foo"}, "installed_at": "2025-09-19T10:00:00"}
    with open(os.path.join(receipts.dir, "foo.json"), "w") as fh:
        json.dump(legacy, fh)
    r = receipts.query("foo")
    assert r.linked == {"bar": ""}
    assert r.method is InstallMethod.SOURCE
    assert receipts.reverse_dependencies("bar") == ["foo"]


def test_newer_format_is_refused():
    with pytest.raises(ValueError):
        migrate({"format_version": FORMAT_VERSION + 1, "name": "x", "version": "1"})


def test_round_trip_dict():
    r = Receipt("x", "1.0", InstallMethod.BOTTLE, ["a"], {"y": "2"}, False, "2026-01-01T00:00:00Z")
    assert Receipt.from_dict(r.to_dict()) == r


@pytest.mark.parametrize("name", ["", "../evil", ".hidden", "a/b"])
def test_invalid_names(receipts, name):
    with pytest.raises(ValueError):
        receipts.query(name)
