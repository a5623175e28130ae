"""
Entry symbol names for compiled units.

Each compiled unit exports one entry function that the generated init unit
calls. A rebuilt unit gets a fresh name; a unit reused from cache gets its
name back from a small JSON record written next to the cached object.

Record format (<object>.sym.json):
    {
        "source": "/abs/path/app/foo.rb",
        "archs": ["x86_64", "arm64"],
        "exported_symbols": ["UB_INIT_3F2504E04F8911D39A0C0305E82C3301"]
    }
"""

import json
import re
import uuid
from pathlib import Path
from typing import List, Optional


SYMBOL_PREFIX = "UB_INIT_"
SYMBOL_PATTERN = re.compile(r"^UB_INIT_[0-9A-F]{32}$")
SIDECAR_SUFFIX = ".sym.json"


class CacheInconsistencyError(Exception):
    """Raised when a cached object's entry symbol can't be recovered."""
    pass


def generate_symbol() -> str:
    """Generate a globally unique entry symbol name."""
    return SYMBOL_PREFIX + uuid.uuid4().hex.upper()


def sidecar_path(object_path: Path) -> Path:
    """Get the symbol record path stored alongside an object file."""
    return object_path.with_name(object_path.name + SIDECAR_SUFFIX)


def write_symbol_record(
    object_path: Path,
    symbol: str,
    source: Path,
    archs: List[str]
) -> Path:
    """
    Persist the entry symbol of a freshly built object.

    Args:
        object_path: Merged object the record describes
        symbol: Entry symbol exported by the object
        source: Source file the object was compiled from
        archs: Architectures contained in the object

    Returns:
        Path to the written record
    """
    record_path = sidecar_path(object_path)
    record = {
        "source": str(source),
        "archs": list(archs),
        "exported_symbols": [symbol],
    }

    temp_file = record_path.with_name(record_path.name + ".tmp")
    with open(temp_file, "w", encoding="utf-8") as f:
        json.dump(record, f, indent=2)
    temp_file.replace(record_path)

    return record_path


def recover_symbol(object_path: Path) -> str:
    """
    Recover the entry symbol of a cached object.

    The record must list exactly one symbol following the reserved
    naming convention.

    Args:
        object_path: Cached object file

    Returns:
        The entry symbol name

    Raises:
        CacheInconsistencyError: If the record is missing, unreadable, or
            doesn't contain exactly one matching symbol
    """
    record_path = sidecar_path(object_path)
    try:
        with open(record_path, "r", encoding="utf-8") as f:
            record = json.load(f)
    except FileNotFoundError as e:
        raise CacheInconsistencyError(
            f"No symbol record for cached object {object_path}. "
            "Remove the build directory and rebuild."
        ) from e
    except (OSError, json.JSONDecodeError) as e:
        raise CacheInconsistencyError(
            f"Corrupt symbol record {record_path}: {e}"
        ) from e

    symbols = record.get("exported_symbols") if isinstance(record, dict) else None
    matches = [
        s for s in (symbols or [])
        if isinstance(s, str) and SYMBOL_PATTERN.match(s)
    ]
    if len(matches) != 1:
        raise CacheInconsistencyError(
            f"Expected exactly one {SYMBOL_PREFIX}* symbol in {record_path}, "
            f"found {len(matches)}"
        )

    return matches[0]


def recorded_archs(object_path: Path) -> Optional[List[str]]:
    """Get the architectures recorded for a cached object, if any."""
    try:
        with open(sidecar_path(object_path), "r", encoding="utf-8") as f:
            record = json.load(f)
    except (OSError, json.JSONDecodeError):
        return None
    archs = record.get("archs") if isinstance(record, dict) else None
    return list(archs) if isinstance(archs, list) else None
