import pytest

from cellar.modules.environment import Condition, Environment


def test_bottle_tags():
    assert Environment("macos", "arm64", "11").bottle_tag == "arm64_big_sur"
    assert Environment("macos", "x86_64", "10.15").bottle_tag == "catalina"
    assert Environment("linux", "amd64", "5.15").bottle_tag == "x86_64_linux"


def test_codename_is_accepted_as_os_version():
    env = Environment("darwin", "aarch64", "big_sur")
    assert env.os == "macos"
    assert env.arch == "arm64"
    assert env.os_version == "11"


def test_environment_is_immutable(linux_env):
    with pytest.raises(AttributeError):
        linux_env.os = "macos"


def test_from_target_keeps_base_toolchains(mac_env):
    env = Environment.from_target("macos:x86_64:catalina", base=mac_env)
    assert env.bottle_tag == "catalina"
    assert env.has_toolchain("clt")


@pytest.mark.parametrize("target", ["macos", "macos:", "a:b:c:d", "plan9:x86_64"])
def test_from_target_rejects_bad_input(target):
    with pytest.raises(ValueError):
        Environment.from_target(target)


def test_equality_and_hash():
    a = Environment("linux", "x86_64", "5.15")
    b = Environment("linux", "amd64", "5.15")
    assert a == b
    assert len({a, b}) == 1


def test_os_and_arch_conditions(linux_env, mac_env):
    assert Condition({"os": "linux"}).matches(linux_env)
    assert not Condition({"os": "linux"}).matches(mac_env)
    assert Condition({"arch": ["arm64", "x86_64"]}).matches(mac_env)
    assert Condition({"os": "macos", "arch": "arm64"}).matches(mac_env)
    assert not Condition({"os": "macos", "arch": "x86_64"}).matches(mac_env)


def test_not_and_any(linux_env, mac_env):
    not_mac = Condition({"not": {"os": "macos"}})
    assert not_mac.matches(linux_env)
    assert not not_mac.matches(mac_env)
    either = Condition({"any": [{"os": "linux"}, {"arch": "arm64"}]})
    assert either.matches(linux_env)
    assert either.matches(mac_env)
    assert not either.matches(Environment("macos", "x86_64", "10.15"))


def test_os_version_accepts_codenames(mac_env):
    assert Condition({"os_version": ">=big_sur"}).matches(mac_env)
    assert not Condition({"os_version": ">=monterey"}).matches(mac_env)
    assert not Condition({"os_version": ">=10"}).matches(Environment("linux", "x86_64", ""))


def test_toolchain_conditions(mac_env, linux_env):
    assert Condition({"toolchain": "clt"}).matches(mac_env)
    assert not Condition({"toolchain": "clt"}).matches(linux_env)
    assert Condition({"toolchain": {"clang": ">=1000"}}).matches(mac_env)
    assert not Condition({"toolchain": {"clang": ">=1300"}}).matches(mac_env)
    assert Condition({"toolchain": {"xcode": False}}).matches(mac_env)


def test_unknown_condition_key():
    with pytest.raises(ValueError):
        Condition({"kernel": "5"})


def test_always():
    assert Condition.always().unconditional
    assert Condition.always().matches(Environment("linux", "arm64"))
