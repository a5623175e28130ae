"""
unibuild.ini configuration parser.

This module parses the project descriptor and exposes everything the build
pass needs: the ordered source list, architectures, tool locations, and
link settings.

Example unibuild.ini:
    [project]
    name = Hello
    platform = iPhoneSimulator
    sdk_version = 17.0
    deployment_target = 12.0
    sources = app/**/*.rb

    [archs]
    iPhoneSimulator = x86_64 arm64

    [toolchain]
    datadir = /opt/unibuild/data
    compiler = /opt/unibuild/bin/unibuild-worker

    [build]
    jobs = 4

    [link]
    frameworks = UIKit Foundation CoreGraphics

    [vendor:Analytics]
    libs = vendor/Analytics/libAnalytics.a
    force_load = true
"""

import configparser
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .architectures import Architecture, default_archs, is_default_archs


PROJECT_FILE_NAME = "unibuild.ini"

VERSION_MIN_FLAGS: Dict[str, str] = {
    "iPhoneSimulator": "-mios-simulator-version-min",
    "iPhoneOS": "-miphoneos-version-min",
    "WatchSimulator": "-mwatchos-simulator-version-min",
    "WatchOS": "-mwatchos-version-min",
    "AppleTVSimulator": "-mtvos-simulator-version-min",
    "AppleTVOS": "-mtvos-version-min",
    "MacOSX": "-mmacosx-version-min",
}


class ConfigurationError(Exception):
    """Exception raised for project configuration errors."""

    pass


@dataclass
class VendorLibrary:
    """Prebuilt static libraries shipped with a vendor project."""

    name: str
    libs: List[Path] = field(default_factory=list)
    force_load: bool = True

    def link_flags(self) -> List[str]:
        """Get linker arguments for this vendor project's libraries."""
        flags = []
        for lib in self.libs:
            flags.extend(["-force_load" if self.force_load else "-ObjC", str(lib)])
        return flags


def _split_list(value: Optional[str]) -> List[str]:
    """Split a whitespace/comma/newline separated ini value."""
    if not value:
        return []
    items = []
    for line in value.split("\n"):
        for item in re.split(r"[,\s]+", line):
            item = item.strip()
            if item:
                items.append(item)
    return items


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class ProjectConfig:
    """
    Parsed unibuild.ini project descriptor.

    Usage:
        config = ProjectConfig(Path("unibuild.ini"))
        files = config.ordered_build_files()
        archs = config.architectures
    """

    REQUIRED_SECTIONS = {"project", "toolchain"}

    def __init__(self, ini_path: Path):
        """
        Load and parse a project descriptor.

        Args:
            ini_path: Path to unibuild.ini

        Raises:
            ConfigurationError: If the file doesn't exist or cannot be parsed
        """
        self.project_file = Path(ini_path).resolve()
        self.project_dir = self.project_file.parent

        if not self.project_file.exists():
            raise ConfigurationError(f"Configuration file not found: {ini_path}")

        self.config = configparser.ConfigParser(
            allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
        )
        self.config.optionxform = str  # preserve platform name case in [archs]

        try:
            self.config.read(self.project_file, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Failed to parse {ini_path}: {e}") from e

        missing = self.REQUIRED_SECTIONS - set(self.config.sections())
        if missing:
            raise ConfigurationError(
                f"{self.project_file.name} is missing required sections: "
                + ", ".join(sorted(missing))
            )

        self.name = self._get("project", "name", self.project_dir.name)
        self.platform = self._require("project", "platform")
        self.sdk_version = self._get("project", "sdk_version", "")
        self.deployment_target = self._get("project", "deployment_target", self.sdk_version)
        self.mode = self._get("project", "mode", "development")
        if self.mode not in ("development", "release"):
            raise ConfigurationError(
                f"Invalid mode '{self.mode}' (expected 'development' or 'release')"
            )
        self.spec_mode = _parse_bool(self._get("project", "spec_mode"))
        self.repl_port = self._get_int("project", "repl_port", 0)

        # Toolchain
        datadir = self._require("toolchain", "datadir")
        self.datadir = self._resolve_path(datadir)
        self.compiler = self._resolve_path(self._require("toolchain", "compiler"))
        self.cc = self._resolve_tool(self._get("toolchain", "cc", "clang"))
        self.cxx = self._resolve_tool(self._get("toolchain", "cxx", "clang++"))
        self.lipo = self._resolve_tool(self._get("toolchain", "lipo", "lipo"))
        self.dsymutil = self._resolve_optional_tool("dsymutil")
        self.strip = self._resolve_optional_tool("strip")
        self.strip_args = _split_list(self._get("toolchain", "strip_args", "-x"))
        self.runtime_library = self._get("toolchain", "runtime_library", "unibuild-static")
        # "none" runs the compiler directly even on macOS
        wrapper = self._get("toolchain", "arch_wrapper")
        self.use_arch_wrapper = (wrapper or "").lower() not in ("none", "off", "false")
        self.arch_wrapper = self._resolve_tool(wrapper) if self.use_arch_wrapper else None

        # Build
        jobs_env = os.environ.get("UNIBUILD_JOBS")
        if jobs_env:
            try:
                self.jobs = int(jobs_env)
            except ValueError as e:
                raise ConfigurationError(f"Invalid UNIBUILD_JOBS value: {jobs_env}") from e
        else:
            self.jobs = self._get_int("build", "jobs", os.cpu_count() or 1)
        if self.jobs < 1:
            raise ConfigurationError(f"jobs must be at least 1 (got {self.jobs})")

        self.keep_temps = _parse_bool(self._get("build", "keep_temps")) or _parse_bool(
            os.environ.get("UNIBUILD_KEEP_TEMPS")
        )
        self.opt_level = self._get_int("build", "opt_level", 3)
        self.worker_timeout = self._get_timeout("build", "worker_timeout")
        self.cflags = _split_list(self._get("build", "cflags"))
        self.bridgesupport_files = [
            self._resolve_path(p) for p in _split_list(self._get("build", "bridgesupport_files"))
        ]

        # Link
        self.frameworks = _split_list(self._get("link", "frameworks"))
        self.weak_frameworks = _split_list(self._get("link", "weak_frameworks"))
        self.framework_search_paths = self._unique_paths(
            _split_list(self._get("link", "framework_search_paths"))
        )
        self.framework_stubs = [
            self._resolve_path(p) for p in _split_list(self._get("link", "framework_stubs"))
        ]
        self.libs = _split_list(self._get("link", "libs"))
        self.ldflags = _split_list(self._get("link", "ldflags"))
        entitlements = self._get("link", "entitlements")
        self.entitlements: Optional[Path] = self._resolve_path(entitlements) if entitlements else None
        self.embedded_frameworks = _split_list(self._get("link", "embedded_frameworks"))

        self.vendor_libraries = self._parse_vendor_libraries()

    # -- accessors ---------------------------------------------------------

    def _get(self, section: str, key: str, default: Optional[str] = None) -> Optional[str]:
        if section not in self.config:
            return default
        value = self.config[section].get(key)
        if value is None:
            return default
        return value.strip()

    def _require(self, section: str, key: str) -> str:
        value = self._get(section, key)
        if not value:
            raise ConfigurationError(f"Missing required setting [{section}] {key}")
        return value

    def _get_int(self, section: str, key: str, default: int) -> int:
        value = self._get(section, key)
        if not value:
            return default
        try:
            return int(value)
        except ValueError as e:
            raise ConfigurationError(
                f"[{section}] {key} must be an integer (got '{value}')"
            ) from e

    def _get_timeout(self, section: str, key: str) -> Optional[float]:
        value = self._get(section, key)
        if not value:
            return None
        try:
            seconds = float(value)
        except ValueError as e:
            raise ConfigurationError(
                f"[{section}] {key} must be a number of seconds (got '{value}')"
            ) from e
        if seconds <= 0:
            raise ConfigurationError(f"[{section}] {key} must be positive (got '{value}')")
        return seconds

    def _resolve_path(self, value: str) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.project_dir / path
        return path.resolve()

    def _resolve_tool(self, value: Optional[str]) -> Optional[Path]:
        """Resolve a tool given either as a path or as a name on PATH."""
        if not value:
            return None
        if os.sep in value or "/" in value:
            # keep symlinks: clang++ -> clang selects the driver mode by name
            path = Path(value).expanduser()
            if not path.is_absolute():
                path = self.project_dir / path
            return Path(os.path.normpath(path))
        found = shutil.which(value)
        return Path(found) if found else None

    def _resolve_optional_tool(self, key: str) -> Optional[Path]:
        return self._resolve_tool(self._get("toolchain", key))

    def _unique_paths(self, values: List[str]) -> List[Path]:
        paths: List[Path] = []
        for value in values:
            path = self._resolve_path(value)
            if path not in paths:
                paths.append(path)
        return paths

    def _parse_vendor_libraries(self) -> List[VendorLibrary]:
        vendors = []
        for section in self.config.sections():
            if not section.startswith("vendor:"):
                continue
            name = section.split(":", 1)[1]
            libs = [self._resolve_path(p) for p in _split_list(self.config[section].get("libs"))]
            force_load = _parse_bool(self.config[section].get("force_load"), default=True)
            vendors.append(VendorLibrary(name=name, libs=libs, force_load=force_load))
        return vendors

    # -- derived settings --------------------------------------------------

    @property
    def archs(self) -> List[str]:
        """Architecture names configured for the current platform."""
        configured = _split_list(self._get("archs", self.platform))
        archs = configured or default_archs(self.platform)
        if not archs:
            raise ConfigurationError(
                f"No architectures configured for platform '{self.platform}'"
            )
        # de-duplicate, keep order
        return list(dict.fromkeys(archs))

    @property
    def architectures(self) -> List[Architecture]:
        return [Architecture.from_name(name) for name in self.archs]

    @property
    def is_default_archs(self) -> bool:
        return is_default_archs(self.platform, self.archs)

    @property
    def distribution_mode(self) -> bool:
        return self.mode == "release"

    @property
    def platform_dir(self) -> Path:
        """Platform data directory holding runtime context files and libraries."""
        return self.datadir / self.platform

    def runtime_context_file(self, arch: str) -> Path:
        """Get the runtime context file the worker needs for an architecture."""
        return self.platform_dir / f"kernel-{arch}.bc"

    @property
    def runtime_library_path(self) -> Path:
        return self.platform_dir / f"lib{self.runtime_library}.a"

    def cflag_version_min(self) -> List[str]:
        """Get the deployment target flag for the current platform."""
        flag = VERSION_MIN_FLAGS.get(self.platform)
        if not flag or not self.deployment_target:
            return []
        return [f"{flag}={self.deployment_target}"]

    def _glob_files(self, key: str) -> List[Path]:
        files: List[Path] = []
        for pattern in _split_list(self._get("project", key)):
            if Path(pattern).is_absolute():
                matches = [Path(pattern)] if Path(pattern).exists() else []
            else:
                matches = sorted(self.project_dir.glob(pattern))
            if not matches and not any(c in pattern for c in "*?["):
                raise ConfigurationError(f"Source file not found: {pattern}")
            for match in matches:
                if match.is_file():
                    path = match.resolve()
                    if path not in files:
                        files.append(path)
        return files

    def ordered_build_files(self) -> List[Path]:
        """
        Get application sources in build order.

        Explicit `files` entries come first, in the given order, followed by
        the sorted matches of the `sources` glob patterns.
        """
        ordered = self._glob_files("files")
        for path in self._glob_files("sources"):
            if path not in ordered:
                ordered.append(path)
        return ordered

    def spec_files(self) -> List[Path]:
        """Get spec sources (only used in spec mode)."""
        if not self.spec_mode:
            return []
        app_files = set(self.ordered_build_files())
        return [p for p in self._glob_files("spec_files") if p not in app_files]


def find_project_file(project_dir: Path) -> Path:
    """
    Locate unibuild.ini in a project directory.

    Raises:
        FileNotFoundError: If the project has no descriptor
    """
    ini_path = Path(project_dir) / PROJECT_FILE_NAME
    if not ini_path.exists():
        raise FileNotFoundError(f"{PROJECT_FILE_NAME} not found in {project_dir}")
    return ini_path
