"""
Timestamp-based staleness checks for cached build artifacts.

Every incremental decision in the build pass goes through this module:
per-file objects, the generated init/main units and the final executable.
The checks are pure mtime comparisons; no content hashing is done.
"""

from pathlib import Path
from typing import Iterable, Optional, Union


PathLike = Union[str, Path]


def mtime(path: PathLike) -> Optional[float]:
    """
    Get the modification time of a file.

    Args:
        path: File to inspect

    Returns:
        Modification time in seconds, or None if the file doesn't exist
    """
    try:
        return Path(path).stat().st_mtime
    except FileNotFoundError:
        return None


def is_stale(
    source_mtime: float,
    output_path: PathLike,
    compiler_mtime: Optional[float] = None
) -> bool:
    """
    Decide whether a cached output must be regenerated.

    Args:
        source_mtime: Modification time of the input the output derives from
        output_path: Cached artifact
        compiler_mtime: Modification time of the tool that produced the
            artifact (None to ignore)

    Returns:
        True if the output is missing, older than its source, or older than
        the compiler binary
    """
    output_mtime = mtime(output_path)
    if output_mtime is None:
        return True
    if source_mtime > output_mtime:
        return True
    if compiler_mtime is not None and compiler_mtime > output_mtime:
        return True
    return False


def needs_rebuild(
    source: PathLike,
    output: PathLike,
    compiler: Optional[PathLike] = None
) -> bool:
    """
    Path-based variant of is_stale().

    Args:
        source: Source file path (must exist)
        output: Output file path
        compiler: Compiler binary path (optional)

    Returns:
        True if output needs to be regenerated
    """
    compiler_mtime = mtime(compiler) if compiler is not None else None
    return is_stale(Path(source).stat().st_mtime, output, compiler_mtime)


def any_newer(output: PathLike, inputs: Iterable[PathLike]) -> bool:
    """
    Check if any input is newer than the output.

    Inputs that don't exist are ignored; a missing output is always stale.

    Args:
        output: Artifact to check (e.g. the linked executable)
        inputs: Files the artifact depends on

    Returns:
        True if output is missing or any existing input is newer
    """
    output_mtime = mtime(output)
    if output_mtime is None:
        return True

    for dep in inputs:
        dep_mtime = mtime(dep)
        if dep_mtime is not None and dep_mtime > output_mtime:
            return True
    return False
