"""
Per-file build step.

For one source file: decide whether its cached universal object can be
reused; if not, compile it for every architecture through the lane's
workers, assemble the per-architecture objects, and merge them.

Unit states:
    cached -> (stale?) -> compiling -> compiled -> merging -> merged
Any failure along the way is fatal for the build pass.
"""

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from tqdm import tqdm

from ..config.architectures import Architecture
from ..packages.cache import Cache
from .fat_object import FatObjectAssembler
from .object_compiler import ObjectCompiler
from .staleness import is_stale, mtime
from .symbols import generate_symbol, recover_symbol, recorded_archs, sidecar_path, write_symbol_record
from .worker_pool import CompileRequest, CompileWorkerPool


def staging_path(object_path: Path) -> Path:
    """Get the path a universal object is merged into before it is published."""
    return object_path.with_name(object_path.name + ".tmp")


@dataclass(frozen=True)
class SourceUnit:
    """A source file and its modification time for this build pass."""

    path: Path
    mtime: float

    @classmethod
    def from_path(cls, path: Path) -> "SourceUnit":
        path = Path(path).resolve()
        return cls(path=path, mtime=path.stat().st_mtime)


@dataclass
class CompiledObject:
    """A compilation unit's universal object and entry symbol."""

    path: Path
    source: SourceUnit
    symbol: str
    arch_objects: Dict[str, Path] = field(default_factory=dict)
    archs: List[str] = field(default_factory=list)
    rebuilt: bool = False


class UnitBuilder:
    """
    Builds one compilation unit on a given lane.

    Instances are callable so they can be handed to the Scheduler directly:
        objects = scheduler.run(files, UnitBuilder(...))
    """

    def __init__(
        self,
        pool: CompileWorkerPool,
        cache: Cache,
        object_compiler: ObjectCompiler,
        assembler: FatObjectAssembler,
        architectures: List[Architecture],
        compiler_path: Path,
        default_archs: bool = False,
        verbose: bool = False,
        reporter: Optional[Callable[[str, Path], None]] = None
    ):
        """
        Initialize the unit builder.

        Args:
            pool: Compiler worker pool for this build pass
            cache: Build directory layout
            object_compiler: Assembles worker output into objects
            assembler: Merges per-architecture objects
            architectures: Architectures to build, in order
            compiler_path: Compiler binary (its mtime invalidates objects)
            default_archs: Whether architectures equal the platform default
            verbose: Print a line for every compiled unit
            reporter: Override for progress lines (action, path)
        """
        self.pool = pool
        self.cache = cache
        self.object_compiler = object_compiler
        self.assembler = assembler
        self.architectures = architectures
        self.compiler_path = Path(compiler_path)
        self.compiler_mtime = mtime(self.compiler_path)
        self.default_archs = default_archs
        self.verbose = verbose
        self.reporter = reporter

        self._lock = threading.Lock()
        self.rebuilt_count = 0

    def _info(self, action: str, path: Path) -> None:
        if self.reporter is not None:
            self.reporter(action, path)
        elif self.verbose:
            tqdm.write(f"{action:>12} {self._display_path(path)}")

    def _display_path(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.cache.project_dir))
        except ValueError:
            return str(path)

    def __call__(self, source: Path, lane: int) -> CompiledObject:
        return self.build(source, lane)

    def build(self, source: Path, lane: int) -> CompiledObject:
        """
        Produce the universal object for a source file.

        Args:
            source: Source file
            lane: Lane running this step (selects the workers)

        Returns:
            CompiledObject for the source

        Raises:
            CacheInconsistencyError: If a fresh cached object has no usable symbol record
            WorkerError: If a worker fails
            ObjectCompileError: If assembling a worker output fails
            MergeError: If the universal object can't be created
        """
        unit = SourceUnit.from_path(source)
        obj = self.cache.object_path(unit.path, self.default_archs)

        if not is_stale(unit.mtime, obj, self.compiler_mtime):
            return CompiledObject(
                path=obj,
                source=unit,
                symbol=recover_symbol(obj),
                archs=recorded_archs(obj) or [a.name for a in self.architectures],
                rebuilt=False,
            )

        self._info("Compile", unit.path)
        obj.parent.mkdir(parents=True, exist_ok=True)

        # A half-written unit must look missing on the next pass
        obj.unlink(missing_ok=True)
        sidecar_path(obj).unlink(missing_ok=True)
        staging_path(obj).unlink(missing_ok=True)

        symbol = generate_symbol()
        arch_objects: Dict[str, Path] = {}

        for arch in self.architectures:
            intermediate = Cache.arch_path(obj, arch.name, self.object_compiler.intermediate_extension)
            worker = self.pool.acquire(lane, arch)
            self.pool.submit(
                worker,
                CompileRequest(source=unit.path, arch=arch, output_path=intermediate, symbol=symbol),
            )

            arch_obj = Cache.arch_path(obj, arch.name, "o")
            self.object_compiler.assemble(intermediate, arch_obj, arch.name)
            arch_objects[arch.name] = arch_obj

        # The object only appears once its symbol record is on disk
        archs = list(arch_objects.keys())
        staged = staging_path(obj)
        try:
            self.assembler.merge(list(arch_objects.values()), staged, force=True)
            write_symbol_record(obj, symbol, unit.path, archs)
            staged.replace(obj)
        except BaseException:
            staged.unlink(missing_ok=True)
            sidecar_path(obj).unlink(missing_ok=True)
            raise

        with self._lock:
            self.rebuilt_count += 1

        return CompiledObject(
            path=obj,
            source=unit,
            symbol=symbol,
            arch_objects=arch_objects,
            archs=archs,
            rebuilt=True,
        )
