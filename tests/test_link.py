import os

import pytest

from cellar.modules.link import Linker


@pytest.fixture
def keg(settings):
    keg = os.path.join(settings.cellar, "zstd", "1.5.0")
    os.makedirs(os.path.join(keg, "bin"))
    os.makedirs(os.path.join(keg, "lib", "pkgconfig"))
    for rel in ("bin/zstd", "lib/libzstd.a", "lib/pkgconfig/libzstd.pc", "README"):
        with open(os.path.join(keg, rel), "w") as fh:
            fh.write(rel)
    return keg


@pytest.fixture
def linker(settings):
    return Linker(settings.prefix, settings.cellar)


def test_link_and_unlink(linker, keg, settings):
    linked = linker.link(keg)
    assert sorted(linked) == ["bin/zstd", "lib/libzstd.a", "lib/pkgconfig/libzstd.pc"]
    target = os.path.join(settings.prefix, "bin", "zstd")
    assert os.path.islink(target)
    assert os.path.realpath(target) == os.path.realpath(os.path.join(keg, "bin", "zstd"))
    assert not os.path.exists(os.path.join(settings.prefix, "README"))

    assert linker.unlink(keg) == 3
    assert not os.path.lexists(target)
    assert os.path.isdir(os.path.join(settings.prefix, "bin"))


def test_foreign_files_are_left_alone(linker, keg, settings):
    os.makedirs(os.path.join(settings.prefix, "bin"))
    foreign = os.path.join(settings.prefix, "bin", "zstd")
    with open(foreign, "w") as fh:
        fh.write("system zstd")
    assert "bin/zstd" not in linker.link(keg)
    assert not os.path.islink(foreign)


def test_relinking_replaces_links_from_another_keg(linker, keg, settings):
    linker.link(keg)
    newer = os.path.join(settings.cellar, "zstd", "1.5.2")
    os.makedirs(os.path.join(newer, "bin"))
    with open(os.path.join(newer, "bin", "zstd"), "w") as fh:
        fh.write("new")
    linker.link(newer)
    target = os.path.join(settings.prefix, "bin", "zstd")
    assert os.path.realpath(target) == os.path.realpath(os.path.join(newer, "bin", "zstd"))
    assert linker.unlink(keg) == 2
