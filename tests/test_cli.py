import json
import os

import pytest
import yaml

from cellar.modules.cli import main
from cellar.modules.config import config


@pytest.fixture(autouse=True)
def shared_config():
    """--conf switches the shared config; put it back afterwards."""
    saved = list(config.locations)
    yield config
    config.use(saved)


@pytest.fixture
def workspace(tmp_path, make_tarball):
    """A prefix, a config file and a formula directory with app -> lib."""
    formula_dir = tmp_path / "formulae"
    formula_dir.mkdir()
    conf = tmp_path / "cellar.conf"
    conf.write_text(f"[paths]\nbuild_root = {tmp_path / 'build'}\n\n[build]\njobs = 2\n")

    for name, deps in (("lib", []), ("app", ["lib"])):
        path, sha = make_tarball({f"{name}-1.0/tool": f"#!/bin/sh\necho {name}\n"}, name=f"{name}-1.0.tar.gz")
        data = {
            "name": name,
            "version": "1.0",
            "desc": f"the {name} formula",
            "url": path,
            "sha256": sha,
            "depends_on": deps,
            "install": [["sh", "-c", "mkdir -p {prefix}/bin && cp tool {prefix}/bin/{name}"]],
            "test": [["{prefix}/bin/" + name]],
        }
        (formula_dir / f"{name}.yaml").write_text(yaml.safe_dump(data))

    return {
        "prefix": tmp_path / "prefix",
        "formula_dir": formula_dir,
        "args": ["--no-color", "--conf", str(conf), "--prefix", str(tmp_path / "prefix"),
                 "--formula-dir", str(formula_dir)],
    }


@pytest.fixture
def cellar(workspace, linux_env):
    def run(*argv):
        return main(workspace["args"] + list(argv), env=linux_env)
    return run


def test_plan_json(cellar, capsys):
    assert cellar("plan", "app", "--json") == 0
    data = json.loads(capsys.readouterr().out)
    assert [e["name"] for e in data["entries"]] == ["lib", "app"]
    assert data["entries"][1]["dependencies"] == ["lib"]
    assert data["env"]["os"] == "linux"


def test_dry_run_installs_nothing(cellar, workspace):
    assert cellar("install", "app", "--dry-run") == 0
    assert not os.path.exists(workspace["prefix"] / "Cellar")


def test_install_list_test_uninstall(cellar, workspace, capsys, tmp_path):
    report = tmp_path / "report.json"
    assert cellar("install", "app", "--report", str(report)) == 0
    assert os.path.islink(workspace["prefix"] / "bin" / "app")
    assert json.loads(report.read_text())["ok"] is True
    capsys.readouterr()

    assert cellar("list", "--json") == 0
    listed = {r["name"]: r for r in json.loads(capsys.readouterr().out)}
    assert set(listed) == {"app", "lib"}
    assert listed["app"]["requested"] and not listed["lib"]["requested"]

    assert cellar("test", "app") == 0

    # lib is still needed by app
    assert cellar("uninstall", "lib") == 1
    assert cellar("uninstall", "app") == 0
    assert cellar("rm", "lib") == 0
    assert not os.path.lexists(workspace["prefix"] / "bin" / "app")
    capsys.readouterr()
    assert cellar("ls", "--json") == 0
    assert json.loads(capsys.readouterr().out) == []


def test_failed_install_exit_code(cellar, workspace):
    path = workspace["formula_dir"] / "lib.yaml"
    data = yaml.safe_load(path.read_text())
    data["install"] = [["false"]]
    path.write_text(yaml.safe_dump(data))

    assert cellar("install", "app") == 1
    assert not os.path.exists(workspace["prefix"] / "Cellar" / "app")


def test_deps_and_graph(cellar, capsys, tmp_path):
    assert cellar("deps", "app") == 0
    assert capsys.readouterr().out.split() == ["lib"]

    out = tmp_path / "deps.dot"
    assert cellar("graph", "app", "--output", str(out)) == 0
    assert '"app" -> "lib"' in out.read_text()


def test_validate(cellar, workspace, tmp_path):
    assert cellar("validate") == 0
    bad = tmp_path / "bad.yaml"
    bad.write_text("name: bad\n")
    assert cellar("validate", str(bad)) == 1


def test_usage_errors(cellar):
    assert cellar("plan", "app", "--target", "linux") == 2
    assert cellar("install", "app", "--jobs", "0") == 2
    assert cellar("frobnicate") == 2


def test_unknown_formula(cellar, capsys):
    assert cellar("plan", "ghost") == 1
    out = capsys.readouterr().out
    assert "NotFound: No available formula 'ghost'" in out
    assert "[red]" not in out


def test_uninstall_not_installed(cellar):
    assert cellar("uninstall", "app") == 1


def test_leaves(cellar, capsys):
    assert cellar("install", "app") == 0
    capsys.readouterr()
    assert cellar("leaves") == 0
    assert capsys.readouterr().out.split() == ["app"]


def test_conf_logging_section_applies(workspace, linux_env, tmp_path):
    log_file = tmp_path / "logs" / "cellar.log"
    conf = tmp_path / "logging.conf"
    conf.write_text(f"[paths]\nbuild_root = {tmp_path / 'build'}\n\n"
                    f"[logging]\nlog_to_file = true\nlog_file = {log_file}\nlog_format = json\n")
    args = ["--no-color", "--conf", str(conf), "--prefix", str(workspace["prefix"]),
            "--formula-dir", str(workspace["formula_dir"])]

    assert main(args + ["plan", "app"], env=linux_env) == 0
    records = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert any(r["logger"] == "resolver" for r in records)
