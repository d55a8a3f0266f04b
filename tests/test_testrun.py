import pytest

from cellar.modules.errors import BuildStepFailed, NotInstalled
from cellar.modules.testrun import FormulaTester


@pytest.fixture
def tester(settings, receipts):
    return FormulaTester(settings, receipts)


def installed(source_formula, resolver_for, orchestrator, env, **fields):
    f = source_formula("hello", **fields)
    report = orchestrator.run(resolver_for(f).resolve(["hello"], env), env)
    assert report.ok
    return f


def test_steps_run_against_installed_keg(source_formula, resolver_for, orchestrator, tester, linux_env):
    f = installed(source_formula, resolver_for, orchestrator, linux_env, test=[
        ["{prefix}/bin/hello"],
        ["sh", "-c", 'test "$({keg}/bin/hello)" = hello'],
        ["sh", "-c", "touch scratch && test -f $TMPDIR/scratch"],
    ])
    results = tester.run(f, linux_env)
    assert len(results) == 3
    assert results[0].stdout == "hello\n"


def test_failing_step_raises(source_formula, resolver_for, orchestrator, tester, linux_env):
    f = installed(source_formula, resolver_for, orchestrator, linux_env,
                  test=[["sh", "-c", "echo wrong answer; exit 3"], ["true"]])
    with pytest.raises(BuildStepFailed) as exc:
        tester.run(f, linux_env)
    assert exc.value.returncode == 3
    assert "wrong answer" in exc.value.output


def test_no_test_defined(source_formula, resolver_for, orchestrator, tester, linux_env):
    f = installed(source_formula, resolver_for, orchestrator, linux_env)
    assert tester.run(f, linux_env) == []


def test_not_installed(make_formula, tester, linux_env):
    with pytest.raises(NotInstalled):
        tester.run(make_formula("ghost", test=["true"]), linux_env)
