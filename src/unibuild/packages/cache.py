"""Build directory layout for unibuild.

This module decides where every build artifact lives.

Directory Structure:
    <project>/build/
    └── {platform}-{sdk}-{mode}[-{archs}]/  # Versionized build directory
        ├── objs/
        │   ├── init.mm / init.o        # Generated bootstrap units
        │   ├── main.mm / main.o
        │   └── {absolute source path}.o           # Merged (fat) object
        │       {absolute source path}.o.sym.json  # Entry symbol record
        │       {absolute source path}.{arch}.o    # Per-architecture object
        ├── {name}.app/{name}           # Linked executable
        └── {name}.app.dSYM

    ~/.unibuild/build/                  # Common cache (UNIBUILD_COMMON_BUILD_DIR)
    └── {platform}-{sdk}-{mode}/objs/{absolute source path}.o

Sources outside the project directory (e.g. shared library code) are cached
in the common build directory when the default architecture set is used,
so unrelated projects can reuse them. A non-default architecture set gets
its own build directory, so objects and executables built for one set are
never reused for another. Concurrent invocations against the same common
cache are not locked.
"""

import os
import shutil
from pathlib import Path
from typing import List, Optional


class CacheError(Exception):
    """Raised when a build directory can't be used."""
    pass


def default_common_build_dir() -> Path:
    """Get the shared object cache root."""
    cache_env = os.environ.get("UNIBUILD_COMMON_BUILD_DIR")
    if cache_env:
        return Path(cache_env).expanduser().resolve()
    return Path.home() / ".unibuild" / "build"


class Cache:
    """Manages the unibuild build directory structure.

    Object paths mirror each source file's absolute path under the objects
    directory, so two sources with the same file name never collide.
    """

    def __init__(
        self,
        project_dir: Path,
        platform: str,
        sdk_version: str = "",
        mode: str = "development",
        common_build_dir: Optional[Path] = None,
        archs: Optional[List[str]] = None
    ):
        """Initialize cache manager.

        Args:
            project_dir: Project root directory
            platform: Target platform (e.g. 'iPhoneSimulator')
            sdk_version: SDK version the build targets
            mode: 'development' or 'release'
            common_build_dir: Shared cache root (defaults to ~/.unibuild/build)
            archs: Non-default architecture set; keys the build directory
        """
        self.project_dir = Path(project_dir).resolve()
        self.platform = platform
        self.sdk_version = sdk_version
        self.mode = mode
        self.archs = sorted(set(archs)) if archs else []
        self.build_root = self.project_dir / "build"
        self.common_build_dir = (
            Path(common_build_dir).resolve() if common_build_dir else default_common_build_dir()
        )

    @classmethod
    def for_project(cls, config) -> "Cache":
        """Create the build layout for a loaded ProjectConfig."""
        return cls(
            project_dir=config.project_dir,
            platform=config.platform,
            sdk_version=config.sdk_version,
            mode=config.mode,
            archs=None if config.is_default_archs else config.archs,
        )

    @property
    def build_name(self) -> str:
        """Name of the versionized build directory."""
        parts = [self.platform]
        if self.sdk_version:
            parts.append(self.sdk_version)
        parts.append(self.mode)
        parts.extend(self.archs)
        return "-".join(parts)

    @property
    def build_dir(self) -> Path:
        """Versionized build directory for this platform/SDK/mode."""
        return self.build_root / self.build_name

    @property
    def objs_dir(self) -> Path:
        """Directory for project objects and generated bootstrap units."""
        return self.build_dir / "objs"

    @property
    def common_objs_dir(self) -> Path:
        """Shared objects directory for sources outside the project."""
        return self.common_build_dir / self.build_name / "objs"

    @property
    def log_file(self) -> Path:
        return self.build_root / "unibuild.log"

    def app_bundle(self, name: str) -> Path:
        return self.build_dir / f"{name}.app"

    def executable_path(self, name: str) -> Path:
        """Path of the linked executable inside the app bundle."""
        return self.app_bundle(name) / name

    def dsym_path(self, name: str) -> Path:
        return self.build_dir / f"{name}.app.dSYM"

    def is_project_file(self, source: Path) -> bool:
        """Check if a source lives inside the project directory."""
        try:
            Path(source).resolve().relative_to(self.project_dir)
            return True
        except ValueError:
            return False

    def objects_dir_for(self, source: Path, default_archs: bool) -> Path:
        """Get the objects directory a source's artifacts go to.

        Args:
            source: Source file
            default_archs: Whether the build uses the platform's default archs

        Returns:
            Common objects dir for outside sources with default archs,
            otherwise the project objects dir
        """
        if default_archs and not self.is_project_file(source):
            return self.common_objs_dir
        return self.objs_dir

    def object_path(self, source: Path, default_archs: bool = False) -> Path:
        """Get the merged object path for a source file.

        Args:
            source: Source file
            default_archs: Whether the build uses the platform's default archs

        Returns:
            Object path mirroring the source's absolute path
        """
        source = Path(source).resolve()
        relative = source.relative_to(source.anchor)
        base = self.objects_dir_for(source, default_archs) / relative
        return base.with_name(base.name + ".o")

    @staticmethod
    def arch_path(object_path: Path, arch: str, extension: str) -> Path:
        """Get a per-architecture artifact path next to a merged object.

        Example:
            arch_path(Path("objs/app/foo.rb.o"), "arm64", "s")
            -> objs/app/foo.rb.arm64.s
        """
        stem = object_path.name[:-2] if object_path.name.endswith(".o") else object_path.name
        return object_path.with_name(f"{stem}.{arch}.{extension}")

    def ensure_build_directories(self) -> None:
        """Create the build and objects directories."""
        self.objs_dir.mkdir(parents=True, exist_ok=True)

    def ensure_common_build_dir(self) -> None:
        """Create the common cache and verify it is writable.

        Raises:
            CacheError: If the directory can't be created or written
        """
        try:
            self.common_objs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(
                f"Cannot create the `{self.common_build_dir}' directory: {e}"
            ) from e

        if not os.access(self.common_build_dir, os.W_OK):
            raise CacheError(
                f"Cannot write into the `{self.common_build_dir}' directory, "
                "please remove or check permissions and try again."
            )

    def clean_build(self) -> None:
        """Remove the versionized build directory (the common cache is kept)."""
        if self.build_dir.exists():
            shutil.rmtree(self.build_dir)

    def touch_objs_dir(self) -> None:
        """Bump the objects directory mtime after objects were rebuilt."""
        if self.objs_dir.exists():
            os.utime(self.objs_dir, None)
