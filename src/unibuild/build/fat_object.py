"""Fat Object Assembler.

This module merges the per-architecture objects of one compilation unit into
a single universal object using the merge tool (lipo).

Design:
    - Wraps `lipo -create <objs> -output <out>`
    - Skips the merge when the output is already newer than every input
    - Validates the merged object exists afterwards
"""

import subprocess
from pathlib import Path
from typing import List

from .staleness import any_newer


class MergeError(Exception):
    """Raised when universal object creation fails."""
    pass


class FatObjectAssembler:
    """Creates universal objects from per-architecture objects."""

    def __init__(self, lipo: Path):
        """Initialize assembler.

        Args:
            lipo: Path to the merge tool
        """
        self.lipo = Path(lipo)

    def build_command(self, arch_objects: List[Path], output_path: Path) -> List[str]:
        cmd = [str(self.lipo), "-create"]
        cmd.extend(str(obj) for obj in arch_objects)
        cmd.extend(["-output", str(output_path)])
        return cmd

    def needs_merge(self, arch_objects: List[Path], output_path: Path) -> bool:
        """Check whether the universal object is missing or out of date."""
        return any_newer(output_path, arch_objects)

    def merge(
        self,
        arch_objects: List[Path],
        output_path: Path,
        force: bool = False
    ) -> Path:
        """Merge per-architecture objects into one universal object.

        Args:
            arch_objects: Per-architecture objects, in architecture order
            output_path: Universal object to create
            force: Merge even if the output looks up to date

        Returns:
            Path to the universal object

        Raises:
            MergeError: If the merge tool fails or produces nothing
        """
        if not arch_objects:
            raise MergeError(f"No architecture objects to merge into {output_path.name}")

        missing = [obj for obj in arch_objects if not obj.exists()]
        if missing:
            raise MergeError(
                "Missing architecture objects: " + ", ".join(str(m) for m in missing)
            )

        if not force and not self.needs_merge(arch_objects, output_path):
            return output_path

        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(arch_objects, output_path)

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise MergeError(f"Failed to run {self.lipo}: {e}") from e

        if result.returncode != 0:
            error_msg = f"Universal object creation failed for {output_path.name}\n"
            error_msg += f"stderr: {result.stderr}\n"
            error_msg += f"stdout: {result.stdout}"
            raise MergeError(error_msg)

        if not output_path.exists():
            raise MergeError(f"Universal object was not created: {output_path}")

        return output_path
