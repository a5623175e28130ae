"""Unit tests for architecture helpers."""

import pytest

from unibuild.config.architectures import (
    Architecture,
    default_archs,
    exec_arch_for,
    is_default_archs,
    uses_bitcode,
)


@pytest.mark.parametrize("name,exec_arch", [
    ("arm64", "x86_64"),
    ("armv7", "i386"),
    ("armv7s", "i386"),
    ("armv7k", "i386"),
    ("x86_64", "x86_64"),
    ("i386", "i386"),
])
def test_exec_arch_for(name, exec_arch):
    assert exec_arch_for(name) == exec_arch
    assert Architecture.from_name(name).exec_arch == exec_arch


def test_architecture_str():
    assert str(Architecture.from_name("arm64")) == "arm64"


class TestDefaults:
    """Tests for per-platform default architectures."""

    def test_default_archs(self):
        assert default_archs("iPhoneOS") == ["arm64"]
        assert default_archs("Unknown") == []

    def test_default_archs_returns_copy(self):
        archs = default_archs("iPhoneSimulator")
        archs.append("i386")
        assert default_archs("iPhoneSimulator") == ["x86_64"]

    def test_is_default_archs(self):
        assert is_default_archs("iPhoneSimulator", ["x86_64"])
        assert not is_default_archs("iPhoneSimulator", ["x86_64", "arm64"])
        assert not is_default_archs("Unknown", [])

    def test_uses_bitcode(self):
        assert uses_bitcode("WatchOS")
        assert not uses_bitcode("iPhoneOS")
