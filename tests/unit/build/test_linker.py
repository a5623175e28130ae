"""Unit tests for final link staging."""

import os
import time
from pathlib import Path

import pytest

from unibuild.build.linker import LinkerError, LinkStager, LinkTarget, stdlib_flag
from unibuild.config import VendorLibrary


def _file(path, age=100):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(path.name)
    stamp = time.time() - age
    os.utime(path, (stamp, stamp))
    return path


@pytest.fixture
def target(tmp_path):
    objs = tmp_path / "objs"
    return LinkTarget(
        executable=tmp_path / "Hello.app" / "Hello",
        objects=[_file(objs / "a.rb.o"), _file(objs / "b.rb.o")],
        init_object=_file(objs / "init.o"),
        main_object=_file(objs / "main.o"),
        runtime_library=_file(tmp_path / "data" / "libunibuild-static.a", age=1000),
        archs=["x86_64", "arm64"],
        frameworks=["UIKit", "Foundation"],
        weak_frameworks=["StoreKit"],
        framework_search_paths=[tmp_path / "Frameworks"],
        libs=["-lz"],
        ldflags=["-dead_strip"],
        deployment_target="12.0",
    )


class TestStdlibFlag:
    """Tests for the C++ standard library selection."""

    @pytest.mark.parametrize("version,expected", [
        ("6.1", "-stdlib=libc++"),
        ("5", "-stdlib=libc++"),
        ("7.0", None),
        ("12.0", None),
        ("", None),
    ])
    def test_versions(self, version, expected):
        assert stdlib_flag(version) == expected


class TestBuildCommand:
    """Tests for link command construction."""

    def test_object_order(self, target, tmp_path):
        """Test that bootstrap units and stubs come before compiled objects."""
        target.stub_objects = [tmp_path / "stubs.o"]
        cmd = LinkStager(Path("/usr/bin/clang++"), "iPhoneSimulator").build_command(target)

        assert cmd[:3] == ["/usr/bin/clang++", "-o", str(target.executable)]
        objects = [str(p) for p in target.link_objects]
        assert cmd[3:3 + len(objects)] == objects
        assert objects[:3] == [str(target.init_object), str(target.main_object), str(tmp_path / "stubs.o")]

    def test_flags(self, target):
        cmd = LinkStager(Path("clang++"), "iPhoneOS").build_command(target)

        assert cmd.count("-arch") == 2
        assert f"-L{target.runtime_library.parent}" in cmd
        assert "-lunibuild-static" in cmd
        assert "-lobjc" in cmd and "-licucore" in cmd
        assert "-stdlib=libc++" not in cmd
        assert cmd[cmd.index("-weak_framework") + 1] == "StoreKit"
        assert cmd[cmd.index("-F") + 1] == str(target.framework_search_paths[0])
        assert "-dead_strip" in cmd
        assert "-lz" in cmd

    def test_old_deployment_target_requests_libcxx(self, target):
        target.deployment_target = "6.0"
        cmd = LinkStager(Path("clang++"), "iPhoneOS").build_command(target)
        assert "-stdlib=libc++" in cmd

    def test_vendor_libraries(self, target, tmp_path):
        """Test force_load versus -ObjC vendor linking."""
        target.vendor_libraries = [
            VendorLibrary("A", [tmp_path / "libA.a"], force_load=True),
            VendorLibrary("B", [tmp_path / "libB.a"], force_load=False),
        ]
        cmd = LinkStager(Path("clang++"), "iPhoneOS").build_command(target)
        assert cmd[-4:] == ["-force_load", str(tmp_path / "libA.a"), "-ObjC", str(tmp_path / "libB.a")]

    def test_entitlements_only_for_simulator(self, target, tmp_path):
        target.entitlements = tmp_path / "Entitlements.plist"

        simulator = LinkStager(Path("clang++"), "iPhoneSimulator").build_command(target)
        device = LinkStager(Path("clang++"), "iPhoneOS").build_command(target)

        assert "__entitlements" in simulator
        assert str(target.entitlements) in simulator
        assert "__entitlements" not in device


class TestStage:
    """Tests for relink decisions and linking."""

    @pytest.fixture
    def stager(self, fake_toolchain):
        return LinkStager(fake_toolchain.cxx, "iPhoneSimulator")

    @pytest.fixture
    def project_file(self, tmp_path):
        return _file(tmp_path / "unibuild.ini", age=1000)

    def test_missing_executable_links(self, stager, target, project_file, fake_toolchain):
        result = stager.stage(target, stager.dependencies(target, project_file))

        assert result.changed is True
        assert target.executable.exists()
        assert len(fake_toolchain.calls("cxx")) == 1

    def test_up_to_date_executable_is_kept(self, stager, target, project_file, fake_toolchain):
        _file(target.executable, age=10)

        result = stager.stage(target, stager.dependencies(target, project_file))

        assert result.changed is False
        assert fake_toolchain.calls("cxx") == []

    @pytest.mark.parametrize("dependency", ["project_file", "object", "init", "runtime", "vendor"])
    def test_newer_dependency_relinks(self, stager, target, project_file, tmp_path, dependency):
        """Test that each kind of dependency triggers a relink."""
        vendor_lib = _file(tmp_path / "vendor" / "libV.a", age=1000)
        target.vendor_libraries = [VendorLibrary("V", [vendor_lib])]
        _file(target.executable, age=10)

        touched = {
            "project_file": project_file,
            "object": target.objects[1],
            "init": target.init_object,
            "runtime": target.runtime_library,
            "vendor": vendor_lib,
        }[dependency]
        os.utime(touched, None)

        deps = stager.dependencies(target, project_file)
        assert stager.needs_relink(target, deps)
        assert stager.stage(target, deps).changed is True

    def test_link_failure(self, stager, target, project_file, monkeypatch):
        monkeypatch.setenv("FAKE_TOOL_FAIL", "cxx")
        with pytest.raises(LinkerError, match="Linking failed for Hello"):
            stager.stage(target, stager.dependencies(target, project_file))

    def test_missing_executable_after_link(self, stager, target, project_file, monkeypatch):
        monkeypatch.setenv("FAKE_TOOL_NO_OUTPUT", "cxx")
        with pytest.raises(LinkerError, match="was not created"):
            stager.stage(target, stager.dependencies(target, project_file))
