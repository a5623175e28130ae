"""
Build system components for unibuild.

This module provides the build pipeline:
- Staleness checks for cached artifacts
- Persistent compiler workers (one per lane and architecture)
- Parallel lane scheduling with ordered results
- Universal object assembly (lipo)
- Bootstrap unit generation and final link staging
"""

from .bootstrap import BootstrapError, BootstrapGenerator, BootstrapObjects
from .fat_object import FatObjectAssembler, MergeError
from .linker import LinkerError, LinkResult, LinkStager, LinkTarget
from .object_compiler import ObjectCompileError, ObjectCompiler
from .orchestrator import BuildOrchestrator, BuildResult
from .post_link import PostLinkError, PostLinkProcessor
from .scheduler import Scheduler, SchedulerError
from .staleness import any_newer, is_stale, needs_rebuild
from .symbols import CacheInconsistencyError, generate_symbol, recover_symbol
from .unit_builder import CompiledObject, SourceUnit, UnitBuilder
from .worker_pool import (
    CompileRequest,
    CompileWorker,
    CompileWorkerPool,
    WorkerError,
    WorkerSettings,
    WorkerTimeoutError,
)

__all__ = [
    "BootstrapError",
    "BootstrapGenerator",
    "BootstrapObjects",
    "BuildOrchestrator",
    "BuildResult",
    "CacheInconsistencyError",
    "CompileRequest",
    "CompileWorker",
    "CompileWorkerPool",
    "CompiledObject",
    "FatObjectAssembler",
    "LinkResult",
    "LinkStager",
    "LinkTarget",
    "LinkerError",
    "MergeError",
    "ObjectCompileError",
    "ObjectCompiler",
    "PostLinkError",
    "PostLinkProcessor",
    "Scheduler",
    "SchedulerError",
    "SourceUnit",
    "UnitBuilder",
    "WorkerError",
    "WorkerSettings",
    "WorkerTimeoutError",
    "any_newer",
    "generate_symbol",
    "is_stale",
    "needs_rebuild",
    "recover_symbol",
]
