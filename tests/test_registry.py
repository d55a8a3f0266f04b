import pytest

from cellar.modules.errors import FormulaNotFound, ParseError
from cellar.modules.registry import FormulaRegistry

from conftest import FORMULAE_DIR


def test_lookup_and_listing(make_formula):
    registry = FormulaRegistry([make_formula("zlib"), make_formula("abc", depends_on=["zlib"])])
    assert registry.lookup("zlib").name == "zlib"
    assert registry.names() == ["abc", "zlib"]
    assert [f.name for f in registry.all()] == ["abc", "zlib"]
    assert "abc" in registry
    assert len(registry) == 2
    assert registry.uses("zlib") == ["abc"]


def test_missing_formula_is_not_found(make_formula):
    registry = FormulaRegistry([make_formula("a")])
    with pytest.raises(FormulaNotFound) as exc:
        registry.lookup("b", required_by="a")
    assert exc.value.kind == "NotFound"
    assert "required by a" in str(exc.value)


def test_duplicate_names_rejected(make_formula):
    with pytest.raises(ParseError):
        FormulaRegistry([make_formula("a"), make_formula("a", "2.0")])


def test_from_directory():
    registry = FormulaRegistry.from_directory(FORMULAE_DIR)
    assert registry.names() == ["gcc", "pylint"]
    assert registry.lookup("gcc").path.endswith("gcc.yaml")


def test_from_missing_directory(tmp_path):
    with pytest.raises(ParseError):
        FormulaRegistry.from_directory(str(tmp_path / "nope"))
