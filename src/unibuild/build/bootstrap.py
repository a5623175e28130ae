"""
Generated bootstrap translation units.

The init unit declares and calls the entry symbol of every application unit
in build order; the main unit starts the runtime through the init function
(and runs spec units in spec mode). Both are ordinary link inputs.

A unit is rewritten and recompiled only when its generated text differs
from what is on disk or its object is missing, so an unchanged project keeps
the old objects and their mtimes.
"""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence


INIT_FUNCTION = "UniBuildInit"


class BootstrapError(Exception):
    """Raised when a bootstrap unit can't be generated or compiled."""
    pass


@dataclass
class BootstrapObjects:
    """Compiled bootstrap units."""

    init_object: Path
    main_object: Path
    compiled: bool


class BootstrapGenerator:
    """Renders and compiles the init and main units."""

    def __init__(
        self,
        objs_dir: Path,
        cxx: Path,
        archs: Sequence[str],
        cflags: Optional[List[str]] = None,
        repl_port: int = 0,
        development: bool = True,
        embedded_frameworks: Optional[List[str]] = None,
        embed_bitcode: bool = True
    ):
        """
        Initialize generator.

        Args:
            objs_dir: Directory for generated sources and objects
            cxx: C++ compiler driver
            archs: Architectures to compile the units for
            cflags: Extra compile flags (deployment target, SDK root, ...)
            repl_port: Port the device REPL listens on
            development: Start the device REPL at init
            embedded_frameworks: Framework bundles to load at init
            embed_bitcode: Compile with -fembed-bitcode
        """
        self.objs_dir = Path(objs_dir)
        self.cxx = Path(cxx)
        self.archs = list(archs)
        self.cflags = cflags or []
        self.repl_port = repl_port
        self.development = development
        self.embedded_frameworks = embedded_frameworks or []
        self.embed_bitcode = embed_bitcode

    def render_init(self, symbols: Sequence[str]) -> str:
        """
        Render the init unit.

        Args:
            symbols: Entry symbols of application units, in build order

        Returns:
            Objective-C++ source text
        """
        lines = [
            "#import <Foundation/Foundation.h>",
            "",
            'extern "C" {',
            "    void unibuild_runtime_init(void);",
            "    void unibuild_runtime_init_loadpath(void);",
            "    void unibuild_runtime_script(const char *);",
            "    void *unibuild_runtime_top_self(void);",
            "    void unibuild_runtime_exception_handler(void);",
            "    void unibuild_runtime_init_device_repl(void);",
        ]
        lines.extend(f"    void {symbol}(void *, void *);" for symbol in symbols)
        lines.append(f"    int unibuild_repl_port = {self.repl_port};")
        lines.extend([
            "}",
            "",
            'extern "C"',
            "void",
            f"{INIT_FUNCTION}(int argc, char **argv)",
            "{",
            "    static bool initialized = false;",
            "    if (!initialized) {",
            "        unibuild_runtime_init();",
            "        unibuild_runtime_init_loadpath();",
            "        if (argc > 0) {",
            "            unibuild_runtime_script(argv[0]);",
            "        }",
            "#if !__LP64__",
            "        try {",
            "#endif",
            "        void *self = unibuild_runtime_top_self();",
        ])
        if self.development:
            lines.append("        unibuild_runtime_init_device_repl();")
        if self.embedded_frameworks:
            lines.append(
                "        NSString *frameworks_path = [[[NSBundle mainBundle] bundlePath] "
                'stringByAppendingPathComponent: @"../../Frameworks"];'
            )
            for framework in self.embedded_frameworks:
                lines.append(
                    "        [[NSBundle bundleWithPath: [frameworks_path "
                    f'stringByAppendingPathComponent: @"{framework}"]] load];'
                )
        lines.extend(f"        {symbol}(self, 0);" for symbol in symbols)
        lines.extend([
            "#if !__LP64__",
            "        }",
            "        catch (...) {",
            "            unibuild_runtime_exception_handler();",
            "        }",
            "#endif",
            "        initialized = true;",
            "    }",
            "}",
            "",
        ])
        return "\n".join(lines)

    def render_main(self, spec_symbols: Sequence[str] = ()) -> str:
        """
        Render the main unit.

        Args:
            spec_symbols: Entry symbols of spec units (spec mode only)

        Returns:
            Objective-C++ source text
        """
        lines = [
            "#import <Foundation/Foundation.h>",
            "",
            'extern "C" {',
            f"    void {INIT_FUNCTION}(int, char **);",
            "    void *unibuild_runtime_top_self(void);",
            "    int unibuild_runtime_main(int, char **);",
        ]
        lines.extend(f"    void {symbol}(void *, void *);" for symbol in spec_symbols)
        lines.extend([
            "}",
            "",
            "int",
            "main(int argc, char **argv)",
            "{",
            "    @autoreleasepool {",
            f"        {INIT_FUNCTION}(argc, argv);",
        ])
        if spec_symbols:
            lines.append("        void *self = unibuild_runtime_top_self();")
            lines.extend(f"        {symbol}(self, 0);" for symbol in spec_symbols)
        lines.extend([
            "        return unibuild_runtime_main(argc, argv);",
            "    }",
            "}",
            "",
        ])
        return "\n".join(lines)

    def build_command(self, source: Path, output: Path) -> List[str]:
        cmd = [str(self.cxx), str(source)]
        for arch in self.archs:
            cmd.extend(["-arch", arch])
        cmd.extend(self.cflags)
        if self.embed_bitcode:
            cmd.append("-fembed-bitcode")
        cmd.extend(["-c", "-o", str(output)])
        return cmd

    def ensure_unit(self, name: str, text: str) -> bool:
        """
        Write and compile one unit if its text or object changed.

        Args:
            name: Unit base name ('init' or 'main')
            text: Generated source text

        Returns:
            True if the unit was compiled

        Raises:
            BootstrapError: If compilation fails
        """
        source = self.objs_dir / f"{name}.mm"
        obj = self.objs_dir / f"{name}.o"

        if source.exists() and obj.exists():
            if source.read_text(encoding="utf-8") == text:
                return False

        self.objs_dir.mkdir(parents=True, exist_ok=True)
        source.write_text(text, encoding="utf-8")

        cmd = self.build_command(source, obj)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise BootstrapError(f"Failed to run {self.cxx}: {e}") from e

        if result.returncode != 0:
            raise BootstrapError(
                f"Compilation failed for {source.name}\n"
                f"stderr: {result.stderr}\n"
                f"stdout: {result.stdout}"
            )
        if not obj.exists():
            raise BootstrapError(f"Object file was not created: {obj}")

        return True

    def build(self, app_symbols: Sequence[str], spec_symbols: Sequence[str] = ()) -> BootstrapObjects:
        """
        Generate and compile both bootstrap units.

        Args:
            app_symbols: Entry symbols of application units, in build order
            spec_symbols: Entry symbols of spec units

        Returns:
            BootstrapObjects with the object paths
        """
        init_compiled = self.ensure_unit("init", self.render_init(app_symbols))
        main_compiled = self.ensure_unit("main", self.render_main(spec_symbols))
        return BootstrapObjects(
            init_object=self.objs_dir / "init.o",
            main_object=self.objs_dir / "main.o",
            compiled=init_compiled or main_compiled,
        )
