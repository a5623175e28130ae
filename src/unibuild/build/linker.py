"""
Final link staging.

This module decides whether the executable must be relinked and, if so,
invokes the C++ compiler driver as linker with the computed object list and
framework/library flags.

Link states:
    unchanged (skip) | relinking -> linked | fatal
"""

import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..config.project_config import VendorLibrary
from .staleness import any_newer


class LinkerError(Exception):
    """Raised when linking fails."""
    pass


@dataclass
class LinkTarget:
    """Everything that goes into the final executable."""

    executable: Path
    objects: List[Path]
    init_object: Path
    main_object: Path
    runtime_library: Path
    archs: List[str] = field(default_factory=list)
    stub_objects: List[Path] = field(default_factory=list)
    frameworks: List[str] = field(default_factory=list)
    weak_frameworks: List[str] = field(default_factory=list)
    framework_search_paths: List[Path] = field(default_factory=list)
    vendor_libraries: List[VendorLibrary] = field(default_factory=list)
    libs: List[str] = field(default_factory=list)
    ldflags: List[str] = field(default_factory=list)
    system_libs: List[str] = field(default_factory=lambda: ["-lobjc", "-licucore"])
    deployment_target: str = ""
    entitlements: Optional[Path] = None

    @property
    def link_objects(self) -> List[Path]:
        """Objects in link order: bootstrap units and stubs first."""
        return [self.init_object, self.main_object, *self.stub_objects, *self.objects]

    @property
    def vendor_libs(self) -> List[Path]:
        return [lib for vendor in self.vendor_libraries for lib in vendor.libs]


@dataclass
class LinkResult:
    """Result of link staging."""

    executable: Path
    changed: bool
    stdout: str = ""
    stderr: str = ""


def stdlib_flag(deployment_target: str) -> Optional[str]:
    """
    Get the C++ standard library selection flag for a deployment target.

    Targets older than 7 default to libstdc++, so libc++ is requested
    explicitly.

    Args:
        deployment_target: Version string (e.g. '6.1', '12.0')

    Returns:
        '-stdlib=libc++' or None
    """
    match = re.match(r"(\d+)", deployment_target or "")
    if match and int(match.group(1)) < 7:
        return "-stdlib=libc++"
    return None


class LinkStager:
    """
    Decides on and performs the final link.

    Example usage:
        stager = LinkStager(cxx=Path("/usr/bin/clang++"), platform="iPhoneSimulator")
        result = stager.stage(target, stager.dependencies(target, project_file))
        if result.changed:
            print(f"Linked {result.executable}")
    """

    def __init__(self, cxx: Path, platform: str):
        """
        Initialize link stager.

        Args:
            cxx: C++ compiler driver used as linker
            platform: Target platform name
        """
        self.cxx = Path(cxx)
        self.platform = platform

    def dependencies(self, target: LinkTarget, project_file: Path) -> List[Path]:
        """
        Get every file whose change forces a relink.

        Args:
            target: Link target
            project_file: Project descriptor

        Returns:
            Dependency paths
        """
        deps = [Path(project_file)]
        deps.extend(target.objects)
        deps.extend([target.init_object, target.main_object])
        deps.extend(target.vendor_libs)
        deps.append(target.runtime_library)
        return deps

    def needs_relink(self, target: LinkTarget, dependencies: List[Path]) -> bool:
        """Check if the executable is missing or older than any dependency."""
        return any_newer(target.executable, dependencies)

    def entitlements_flags(self, target: LinkTarget) -> List[str]:
        """
        Get flags embedding entitlements as an executable section.

        Only simulator builds get the section; device builds carry entitlements
        through code signing instead.
        """
        if target.entitlements is None or "Simulator" not in self.platform:
            return []
        return [
            "-Xlinker", "-sectcreate",
            "-Xlinker", "__TEXT",
            "-Xlinker", "__entitlements",
            "-Xlinker", str(target.entitlements),
        ]

    def build_command(self, target: LinkTarget) -> List[str]:
        """
        Compose the link command line.

        Args:
            target: Link target

        Returns:
            Command line
        """
        cmd = [str(self.cxx), "-o", str(target.executable)]
        cmd.extend(self.entitlements_flags(target))
        cmd.extend(str(obj) for obj in target.link_objects)
        for arch in target.archs:
            cmd.extend(["-arch", arch])
        cmd.extend(target.ldflags)

        runtime_name = target.runtime_library.stem
        if runtime_name.startswith("lib"):
            runtime_name = runtime_name[3:]
        cmd.append(f"-L{target.runtime_library.parent}")
        cmd.append(f"-l{runtime_name}")
        cmd.extend(target.system_libs)

        flag = stdlib_flag(target.deployment_target)
        if flag:
            cmd.append(flag)

        for path in target.framework_search_paths:
            cmd.extend(["-F", str(path)])
        for framework in target.frameworks:
            cmd.extend(["-framework", framework])
        for framework in target.weak_frameworks:
            cmd.extend(["-weak_framework", framework])
        cmd.extend(target.libs)
        for vendor in target.vendor_libraries:
            cmd.extend(vendor.link_flags())
        return cmd

    def link(self, target: LinkTarget) -> LinkResult:
        """
        Link the executable.

        Args:
            target: Link target

        Returns:
            LinkResult with changed=True

        Raises:
            LinkerError: If the linker fails or produces nothing
        """
        target.executable.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(target)

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise LinkerError(f"Failed to run {self.cxx}: {e}") from e

        if result.returncode != 0:
            raise LinkerError(
                f"Linking failed for {target.executable.name}\n"
                f"stderr: {result.stderr}\n"
                f"stdout: {result.stdout}"
            )
        if not target.executable.exists():
            raise LinkerError(f"Executable was not created: {target.executable}")

        return LinkResult(
            executable=target.executable,
            changed=True,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    def stage(self, target: LinkTarget, dependencies: List[Path]) -> LinkResult:
        """
        Relink only if the executable is out of date.

        Args:
            target: Link target
            dependencies: Files the executable depends on

        Returns:
            LinkResult; changed is False when the link was skipped
        """
        if not self.needs_relink(target, dependencies):
            return LinkResult(executable=target.executable, changed=False)
        return self.link(target)
