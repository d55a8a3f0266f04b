import os

import pytest

from cellar.modules.errors import DependentsInstalled, NotInstalled
from cellar.modules.formula import InstallMethod
from cellar.modules.link import Linker
from cellar.modules.remove import Remover


def install_fake(settings, receipts, name, version="1.0", linked=None):
    keg = settings.keg_path(name, version)
    os.makedirs(os.path.join(keg, "bin"))
    with open(os.path.join(keg, "bin", name), "w") as fh:
        fh.write(name)
    Linker(settings.prefix, settings.cellar).link(keg)
    receipts.record(name, version, InstallMethod.SOURCE, ["bin/" + name], linked=linked)
    return keg


@pytest.fixture
def remover(settings, receipts):
    return Remover(settings, receipts)


def test_uninstall_removes_keg_links_and_receipt(remover, settings, receipts):
    keg = install_fake(settings, receipts, "zstd")
    receipt = remover.uninstall("zstd")
    assert receipt.version == "1.0"
    assert not os.path.exists(keg)
    assert not os.path.exists(os.path.join(settings.cellar, "zstd"))
    assert not os.path.lexists(os.path.join(settings.prefix, "bin", "zstd"))
    assert receipts.query("zstd") is None


def test_unknown_formula(remover):
    with pytest.raises(NotInstalled):
        remover.uninstall("ghost")


def test_refuses_while_dependents_are_installed(remover, settings, receipts):
    install_fake(settings, receipts, "gmp")
    install_fake(settings, receipts, "mpfr", linked={"gmp": "1.0"})
    with pytest.raises(DependentsInstalled) as exc:
        remover.uninstall("gmp")
    assert exc.value.dependents == ["mpfr"]
    assert receipts.query("gmp") is not None
    assert remover.leaves() == ["mpfr"]

    remover.uninstall("gmp", force=True)
    assert receipts.query("gmp") is None


def test_missing_keg_still_drops_receipt(remover, settings, receipts):
    receipts.record("orphan", "1.0", InstallMethod.SOURCE, [])
    remover.uninstall("orphan")
    assert receipts.query("orphan") is None
