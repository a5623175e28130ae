"""Object Compiler.

This module turns the assembly (or bitcode) emitted by a compiler worker into
a per-architecture object file using the C/C++ compiler driver.

Design:
    - Wraps subprocess.run for the assemble step
    - Selects cc for assembly, cxx with embedded bitcode for bitcode platforms
    - Removes the intermediate worker output unless temps are kept
"""

import subprocess
from pathlib import Path
from typing import List, Optional


class ObjectCompileError(Exception):
    """Raised when an intermediate file can't be compiled to an object."""
    pass


class ObjectCompiler:
    """Compiles worker output into per-architecture objects.

    This class handles:
    - Running the compiler driver on assembly/bitcode input
    - Reporting failures with the tool's output
    - Cleaning up intermediates
    """

    def __init__(
        self,
        cc: Path,
        cxx: Optional[Path] = None,
        version_min_flags: Optional[List[str]] = None,
        bitcode: bool = False,
        keep_temps: bool = False
    ):
        """Initialize object compiler.

        Args:
            cc: C compiler driver used to assemble .s files
            cxx: C++ compiler driver used for bitcode input
            version_min_flags: Deployment target flags
            bitcode: Whether workers emit bitcode instead of assembly
            keep_temps: Keep intermediate files after compilation
        """
        self.cc = Path(cc)
        self.cxx = Path(cxx) if cxx else None
        self.version_min_flags = version_min_flags or []
        self.bitcode = bitcode
        self.keep_temps = keep_temps

    @property
    def intermediate_extension(self) -> str:
        """Extension of the files workers emit."""
        return "bc" if self.bitcode else "s"

    def build_command(self, source: Path, output: Path, arch: str) -> List[str]:
        """Build the compile command for one intermediate file.

        Args:
            source: Assembly or bitcode file
            output: Per-architecture object file
            arch: Target architecture

        Returns:
            Command line
        """
        if self.bitcode:
            if self.cxx is None:
                raise ObjectCompileError("A C++ compiler is required for bitcode platforms")
            cmd = [str(self.cxx), "-fexceptions", "-c", "-marm", "-arch", arch]
            cmd.append(str(source))
            cmd.extend(["-o", str(output), "-fembed-bitcode"])
            cmd.extend(self.version_min_flags)
            return cmd

        cmd = [str(self.cc)]
        cmd.extend(self.version_min_flags)
        cmd.extend(["-fexceptions", "-c", "-arch", arch, str(source), "-o", str(output)])
        return cmd

    def assemble(self, source: Path, output: Path, arch: str) -> Path:
        """Compile one intermediate file to an object.

        Args:
            source: Assembly or bitcode file emitted by the worker
            output: Per-architecture object file
            arch: Target architecture

        Returns:
            Path to the generated object file

        Raises:
            ObjectCompileError: If compilation fails
        """
        output.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(source, output, arch)

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ObjectCompileError(f"Failed to run {cmd[0]}: {e}") from e

        if result.returncode != 0:
            error_msg = f"Object compilation failed for {source.name} ({arch})\n"
            error_msg += f"stderr: {result.stderr}\n"
            error_msg += f"stdout: {result.stdout}"
            raise ObjectCompileError(error_msg)

        if not output.exists():
            raise ObjectCompileError(f"Object file was not created: {output}")

        if not self.keep_temps:
            source.unlink(missing_ok=True)

        return output
