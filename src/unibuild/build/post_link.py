"""Post-link steps.

Runs after the executable has actually been relinked:
- regenerates the dSYM debug symbol bundle (dsymutil)
- strips symbols in release builds (strip)
"""

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional


class PostLinkError(Exception):
    """Raised when a post-link tool fails."""
    pass


class PostLinkProcessor:
    """Generates debug symbols and strips the linked executable."""

    def __init__(
        self,
        dsymutil: Optional[Path] = None,
        strip: Optional[Path] = None,
        strip_args: Optional[List[str]] = None
    ):
        """Initialize post-link processor.

        Args:
            dsymutil: dsymutil binary (None skips dSYM generation)
            strip: strip binary (None skips stripping)
            strip_args: Arguments passed to strip
        """
        self.dsymutil = Path(dsymutil) if dsymutil else None
        self.strip = Path(strip) if strip else None
        self.strip_args = strip_args if strip_args is not None else ["-x"]

    def _run(self, cmd: List[str], what: str) -> None:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise PostLinkError(f"Failed to run {cmd[0]}: {e}") from e
        if result.returncode != 0:
            raise PostLinkError(
                f"{what} failed\n"
                f"stderr: {result.stderr}\n"
                f"stdout: {result.stdout}"
            )

    def generate_dsym(self, executable: Path, dsym_path: Path) -> Optional[Path]:
        """Regenerate the dSYM bundle for an executable.

        Args:
            executable: Linked executable
            dsym_path: dSYM bundle to (re)create

        Returns:
            Path to the bundle, or None if dsymutil isn't configured
        """
        if self.dsymutil is None:
            return None
        if dsym_path.exists():
            shutil.rmtree(dsym_path)
        self._run([str(self.dsymutil), str(executable), "-o", str(dsym_path)], "dSYM generation")
        return dsym_path

    def strip_executable(self, executable: Path) -> bool:
        """Strip the executable's symbols.

        Returns:
            True if strip ran, False if it isn't configured
        """
        if self.strip is None:
            return False
        self._run([str(self.strip), *self.strip_args, str(executable)], "Strip")
        return True
