"""
Build orchestration for unibuild projects.

This module runs one complete build pass:
1. Validate toolchain and runtime context files
2. Prepare build directories
3. Compile every source unit on parallel lanes (incremental)
4. Generate and compile the init/main bootstrap units
5. Link the executable if anything it depends on changed
6. Regenerate debug symbols / strip when the executable was relinked

Any fatal error ends the pass with a failed BuildResult. Compiler workers are
always shut down, and partial outputs stay on disk to be re-evaluated on the
next pass.
"""

import logging
import platform as host_platform
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from tqdm import tqdm

from ..config.architectures import uses_bitcode
from ..config.project_config import ConfigurationError, ProjectConfig
from ..packages.cache import Cache, CacheError
from .bootstrap import BootstrapError, BootstrapGenerator
from .fat_object import FatObjectAssembler, MergeError
from .linker import LinkerError, LinkStager, LinkTarget
from .object_compiler import ObjectCompileError, ObjectCompiler
from .post_link import PostLinkError, PostLinkProcessor
from .scheduler import Scheduler, SchedulerError
from .symbols import CacheInconsistencyError
from .unit_builder import CompiledObject, UnitBuilder
from .worker_pool import CompileWorkerPool, WorkerError, WorkerSettings


DARWIN_ARCH_WRAPPER = Path("/usr/bin/arch")


@dataclass
class BuildResult:
    """Result of a complete build pass."""

    success: bool
    executable: Optional[Path]
    changed: bool
    build_time: float
    message: str
    objects: List[Tuple[Path, str]] = field(default_factory=list)
    compiled_count: int = 0
    submissions: int = 0


class BuildOrchestrator:
    """
    Orchestrates a build pass for a unibuild project.

    Example usage:
        config = ProjectConfig(Path("unibuild.ini"))
        orchestrator = BuildOrchestrator(config, verbose=True)
        result = orchestrator.build()
        if result.success:
            print(f"Executable: {result.executable}")
    """

    def __init__(
        self,
        config: ProjectConfig,
        cache: Optional[Cache] = None,
        verbose: bool = False,
        show_progress: bool = False
    ):
        """
        Initialize build orchestrator.

        Args:
            config: Parsed project configuration
            cache: Build directory layout (derived from config if omitted)
            verbose: Print every build step
            show_progress: Show a progress bar while compiling
        """
        self.config = config
        self.cache = cache or Cache.for_project(config)
        self.verbose = verbose
        self.show_progress = show_progress

    def _info(self, action: str, path: Path) -> None:
        if self.verbose:
            try:
                display = path.relative_to(self.config.project_dir)
            except ValueError:
                display = path
            tqdm.write(f"{action:>12} {display}")

    def build(self, clean: bool = False, files: Optional[Sequence[Path]] = None) -> BuildResult:
        """
        Execute a build pass.

        Args:
            clean: Remove the build directory first
            files: Ordered source files (defaults to the configured sources,
                followed by spec files in spec mode)

        Returns:
            BuildResult with status, executable path and object list
        """
        start_time = time.time()
        pool: Optional[CompileWorkerPool] = None
        compiled: List[CompiledObject] = []

        try:
            config = self.config
            self._validate_toolchain()

            if clean:
                self.cache.clean_build()
            self.cache.ensure_build_directories()
            self._info("Build", self.cache.build_dir)

            if files is None:
                app_files = config.ordered_build_files()
                spec_files = config.spec_files() if config.spec_mode else []
            else:
                app_files = [Path(f).resolve() for f in files]
                spec_files = []
            all_files = app_files + spec_files
            if not all_files:
                raise ConfigurationError(f"No source files found in {config.project_dir}")
            if config.spec_mode and files is None and not spec_files:
                raise ConfigurationError(f"No spec files in `{config.project_dir}'")

            default_archs = config.is_default_archs
            if default_archs and not all(self.cache.is_project_file(f) for f in all_files):
                self.cache.ensure_common_build_dir()

            # Compile units
            pool = CompileWorkerPool(self._worker_settings())
            builder = UnitBuilder(
                pool=pool,
                cache=self.cache,
                object_compiler=ObjectCompiler(
                    cc=config.cc,
                    cxx=config.cxx,
                    version_min_flags=config.cflag_version_min(),
                    bitcode=uses_bitcode(config.platform),
                    keep_temps=config.keep_temps,
                ),
                assembler=FatObjectAssembler(config.lipo),
                architectures=config.architectures,
                compiler_path=config.compiler,
                default_archs=default_archs,
                verbose=self.verbose,
            )
            scheduler = Scheduler(lanes=config.jobs, show_progress=self.show_progress)
            logging.info(
                f"Compiling {len(all_files)} units on {config.jobs} lanes for {', '.join(config.archs)}"
            )
            try:
                compiled = scheduler.run(all_files, builder)
            finally:
                pool.shutdown()

            self._check_unique_symbols(compiled)
            if builder.rebuilt_count:
                self.cache.touch_objs_dir()

            app_objects = compiled[:len(app_files)]
            spec_objects = compiled[len(app_files):]

            # Bootstrap units
            bootstrap = BootstrapGenerator(
                objs_dir=self.cache.objs_dir,
                cxx=config.cxx,
                archs=config.archs,
                cflags=config.cflag_version_min() + config.cflags,
                repl_port=config.repl_port,
                development=not config.distribution_mode,
                embedded_frameworks=config.embedded_frameworks,
            )
            boot = bootstrap.build(
                [obj.symbol for obj in app_objects],
                [obj.symbol for obj in spec_objects],
            )
            if boot.compiled:
                self._info("Compile", boot.init_object)

            # Link
            executable = self.cache.executable_path(config.name)
            target = LinkTarget(
                executable=executable,
                objects=[obj.path for obj in compiled],
                init_object=boot.init_object,
                main_object=boot.main_object,
                runtime_library=config.runtime_library_path,
                archs=config.archs,
                stub_objects=config.framework_stubs,
                frameworks=config.frameworks,
                weak_frameworks=config.weak_frameworks,
                framework_search_paths=config.framework_search_paths,
                vendor_libraries=config.vendor_libraries,
                libs=config.libs,
                ldflags=config.ldflags,
                deployment_target=config.deployment_target,
                entitlements=config.entitlements,
            )
            stager = LinkStager(cxx=config.cxx, platform=config.platform)
            dependencies = stager.dependencies(target, config.project_file)
            if stager.needs_relink(target, dependencies):
                self._info("Link", executable)
            link_result = stager.stage(target, dependencies)

            # Post-link
            if link_result.changed:
                post = PostLinkProcessor(
                    dsymutil=config.dsymutil,
                    strip=config.strip,
                    strip_args=config.strip_args,
                )
                dsym = post.generate_dsym(executable, self.cache.dsym_path(config.name))
                if dsym is not None:
                    self._info("Create", dsym)
                if config.distribution_mode and post.strip_executable(executable):
                    self._info("Strip", executable)

            build_time = time.time() - start_time
            logging.info(
                f"Build finished in {build_time:.2f}s: {builder.rebuilt_count} units compiled, "
                f"executable {'relinked' if link_result.changed else 'unchanged'}"
            )

            return BuildResult(
                success=True,
                executable=executable,
                changed=link_result.changed,
                build_time=build_time,
                message="Build successful",
                objects=[(obj.path, obj.symbol) for obj in compiled],
                compiled_count=builder.rebuilt_count,
                submissions=pool.submissions,
            )

        except (
            ConfigurationError,
            CacheError,
            SchedulerError,
            WorkerError,
            CacheInconsistencyError,
            ObjectCompileError,
            MergeError,
            BootstrapError,
            LinkerError,
            PostLinkError,
        ) as e:
            logging.error(f"Build failed: {e}")
            return self._failed(start_time, str(e), pool)
        except Exception as e:
            logging.exception("Unexpected build error")
            return self._failed(start_time, f"Unexpected error: {e}", pool)

    def _failed(self, start_time: float, message: str, pool: Optional[CompileWorkerPool]) -> BuildResult:
        return BuildResult(
            success=False,
            executable=None,
            changed=False,
            build_time=time.time() - start_time,
            message=message,
            submissions=pool.submissions if pool else 0,
        )

    def _arch_wrapper(self) -> Optional[Path]:
        if not self.config.use_arch_wrapper:
            return None
        if self.config.arch_wrapper is not None:
            return self.config.arch_wrapper
        if host_platform.system() == "Darwin" and DARWIN_ARCH_WRAPPER.exists():
            return DARWIN_ARCH_WRAPPER
        return None

    def _worker_settings(self) -> WorkerSettings:
        config = self.config
        return WorkerSettings(
            compiler=config.compiler,
            datadir=config.datadir,
            platform=config.platform,
            project_dir=config.project_dir,
            runtime_contexts={arch: config.runtime_context_file(arch) for arch in config.archs},
            opt_level=config.opt_level,
            bridgesupport_files=config.bridgesupport_files,
            arch_wrapper=self._arch_wrapper(),
            timeout=config.worker_timeout,
        )

    def _validate_toolchain(self) -> None:
        """
        Check that every tool and platform file the pass needs exists.

        Raises:
            ConfigurationError: On the first missing item
        """
        config = self.config

        if not config.platform_dir.exists():
            raise ConfigurationError(
                f"This SDK data directory does not support `{config.platform}': "
                f"{config.platform_dir} not found"
            )

        tools = {
            "compiler": config.compiler,
            "cc": config.cc,
            "cxx": config.cxx,
            "lipo": config.lipo,
        }
        for name, path in tools.items():
            if path is None or not path.exists():
                raise ConfigurationError(
                    f"Build tool '{name}' not found: {path}. Check the [toolchain] section."
                )

        for arch in config.archs:
            context = config.runtime_context_file(arch)
            if not context.exists():
                raise ConfigurationError(
                    f"Can't locate runtime context file for {arch}: {context}"
                )

        if not config.runtime_library_path.exists():
            raise ConfigurationError(
                f"Runtime library not found: {config.runtime_library_path}"
            )

    @staticmethod
    def _check_unique_symbols(objects: List[CompiledObject]) -> None:
        seen = {}
        for obj in objects:
            previous = seen.get(obj.symbol)
            if previous is not None:
                raise CacheInconsistencyError(
                    f"Entry symbol {obj.symbol} is shared by {previous} and {obj.source.path}. "
                    "Remove the build directory and rebuild."
                )
            seen[obj.symbol] = obj.source.path
