import pytest

from cellar.modules.version import Version, VersionConstraint


def test_numeric_tokens_compare_numerically():
    assert Version("1.10") > Version("1.9")
    assert Version("11.2.0") > Version("9.4.0")


def test_missing_trailing_tokens_count_as_zero():
    assert Version("1.0") == Version("1.0.0")
    assert hash(Version("1.0")) == hash(Version("1.0.0"))


def test_prerelease_sorts_before_release():
    assert Version("1.0rc1") < Version("1.0")
    assert Version("3.0.0-rc1") < Version("3.0.0")


def test_major():
    assert Version("11.2.0").major == 11
    assert Version("10.15").major == 10


def test_empty_version_rejected():
    with pytest.raises(ValueError):
        Version("")


@pytest.mark.parametrize("constraint,version,expected", [
    (">=1.2", "1.2", True),
    (">=1.2", "1.1.9", False),
    (">=1.2, <2", "1.9", True),
    (">=1.2, <2", "2.0", False),
    ("!=1.1", "1.1", False),
    ("1.4", "1.4.0", True),
    ("~>1.4", "1.9", True),
    ("~>1.4", "2.0", False),
    ("~>1.4.2", "1.4.9", True),
    ("~>1.4.2", "1.5", False),
])
def test_constraints(constraint, version, expected):
    assert VersionConstraint(constraint).allows(version) is expected


def test_invalid_constraint():
    with pytest.raises(ValueError):
        VersionConstraint(">= 1.0 2.0")
    with pytest.raises(ValueError):
        VersionConstraint(" , ")
