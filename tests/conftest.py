"""
Shared fixtures for the unibuild test suite.

Real compilers aren't available on test machines, so these fixtures generate
small executable Python scripts that speak the same command-line and pipe
protocols as the tools unibuild drives:

- unibuild-worker: persistent compiler worker (3 request lines, 1 ack line)
- cc / cxx: compiler drivers writing a JSON "object" for -o
- lipo: merges the architecture lists of its inputs
- dsymutil / strip: post-link tools

Every invocation is appended to calls.log next to the scripts.

Source files can steer the fake worker:
    CRASH_WORKER     worker exits without answering
    HANG_WORKER      worker never answers
    NO_OUTPUT        worker answers without writing the output file
    # sleep <secs>   worker sleeps before answering

Setting FAKE_TOOL_FAIL=<tool name> makes that driver exit with an error
(FAKE_TOOL_FAIL=link fails only cxx link invocations);
FAKE_TOOL_NO_OUTPUT=<tool name> makes it succeed without writing output;
FAKE_TOOL_PARTIAL=<tool name> makes it write a truncated output and fail.
"""

import json
import os
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from unibuild.build.orchestrator import BuildOrchestrator, BuildResult
from unibuild.config import ProjectConfig


FAKE_WORKER = """#!@PYTHON@
import json
import os
import sys
import time
from pathlib import Path

LOG = Path(__file__).with_name("calls.log")


def log(entry):
    with open(LOG, "a") as f:
        f.write(json.dumps(entry) + "\\n")


while True:
    line = sys.stdin.readline()
    if not line or line.strip() == "quit":
        break
    output = line.rstrip("\\n")
    symbol = sys.stdin.readline().rstrip("\\n")
    source = sys.stdin.readline().rstrip("\\n")
    text = Path(source).read_text()
    arch = os.environ.get("UNIBUILD_ARCH", "")
    log({
        "tool": "worker",
        "pid": os.getpid(),
        "arch": arch,
        "source": source,
        "symbol": symbol,
        "output": output,
        "kernel": os.environ.get("UNIBUILD_KERNEL_PATH"),
    })
    if "CRASH_WORKER" in text:
        sys.exit(3)
    if "HANG_WORKER" in text:
        time.sleep(60)
    for source_line in text.splitlines():
        if source_line.startswith("# sleep "):
            time.sleep(float(source_line.split()[2]))
    if "NO_OUTPUT" not in text:
        Path(output).write_text(json.dumps({"arch": arch, "symbol": symbol, "source": source}))
    sys.stdout.write("done\\n")
    sys.stdout.flush()
"""


FAKE_DRIVER = """#!@PYTHON@
import json
import os
import sys
from pathlib import Path

tool = Path(__file__).name
args = sys.argv[1:]

with open(Path(__file__).with_name("calls.log"), "a") as f:
    f.write(json.dumps({"tool": tool, "args": args}) + "\\n")

fail = os.environ.get("FAKE_TOOL_FAIL")
if fail == tool or (fail == "link" and tool == "cxx" and "-c" not in args):
    sys.stderr.write(tool + ": simulated failure\\n")
    sys.exit(1)

if tool == "strip":
    sys.exit(0)


def read_archs(path):
    try:
        return json.loads(Path(path).read_text()).get("archs", [])
    except (OSError, ValueError):
        return []


if tool == "lipo":
    output = args[args.index("-output") + 1]
    inputs = args[args.index("-create") + 1:args.index("-output")]
    archs = []
    for path in inputs:
        archs.extend(read_archs(path))
else:
    output = args[args.index("-o") + 1]
    inputs = [a for a in args if a != output and os.path.isfile(a)]
    archs = [args[i + 1] for i, a in enumerate(args[:-1]) if a == "-arch"]

if os.environ.get("FAKE_TOOL_NO_OUTPUT") == tool:
    sys.exit(0)

if os.environ.get("FAKE_TOOL_PARTIAL") == tool:
    Path(output).parent.mkdir(parents=True, exist_ok=True)
    Path(output).write_text("partial")
    sys.stderr.write(tool + ": wrote partial output\\n")
    sys.exit(1)

if tool == "dsymutil":
    Path(output).mkdir(parents=True, exist_ok=True)
else:
    Path(output).parent.mkdir(parents=True, exist_ok=True)
    Path(output).write_text(json.dumps({"tool": tool, "archs": archs, "inputs": inputs}))
"""


OLD = 2000  # seconds in the past for tools and platform files
SOURCE_AGE = 1000


def set_age(path: Path, seconds: float) -> None:
    """Set a file's atime/mtime to `seconds` before now."""
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


def age_tree(root: Path, seconds: float) -> None:
    """Set every file below root to the same age."""
    for path in root.rglob("*"):
        if path.is_file():
            set_age(path, seconds)


class FakeToolchain:
    """Paths to the generated fake tools and their call log."""

    def __init__(self, root: Path):
        self.root = root
        self.log = root / "calls.log"
        self.worker = self._write("unibuild-worker", FAKE_WORKER)
        self.cc = self._write("cc", FAKE_DRIVER)
        self.cxx = self._write("cxx", FAKE_DRIVER)
        self.lipo = self._write("lipo", FAKE_DRIVER)
        self.dsymutil = self._write("dsymutil", FAKE_DRIVER)
        self.strip = self._write("strip", FAKE_DRIVER)

    def _write(self, name: str, template: str) -> Path:
        path = self.root / name
        path.write_text(template.replace("@PYTHON@", sys.executable))
        path.chmod(0o755)
        set_age(path, OLD)
        return path

    def calls(self, tool: Optional[str] = None) -> List[Dict]:
        """Get logged invocations, optionally for one tool."""
        if not self.log.exists():
            return []
        entries = [json.loads(line) for line in self.log.read_text().splitlines() if line]
        if tool is None:
            return entries
        return [e for e in entries if e["tool"] == tool]

    def link_calls(self) -> List[Dict]:
        """cxx invocations that linked (no -c)."""
        return [c for c in self.calls("cxx") if "-c" not in c["args"]]


class FakeProject:
    """A unibuild project wired to the fake toolchain."""

    PLATFORM = "iPhoneSimulator"
    KNOWN_ARCHS = ("x86_64", "arm64", "i386", "armv7")

    def __init__(self, root: Path, toolchain: FakeToolchain):
        self.root = root
        self.toolchain = toolchain
        self.app_dir = root / "app"
        self.app_dir.mkdir(parents=True)
        self.datadir = root.parent / "data"
        self.platform_dir = self.datadir / self.PLATFORM
        self.platform_dir.mkdir(parents=True)
        for arch in self.KNOWN_ARCHS:
            context = self.platform_dir / f"kernel-{arch}.bc"
            context.write_text(f"runtime context {arch}")
            set_age(context, OLD)
        self.runtime_library = self.platform_dir / "libunibuild-static.a"
        self.runtime_library.write_text("runtime")
        set_age(self.runtime_library, OLD)
        self.ini_path = root / "unibuild.ini"

    def write_config(
        self,
        archs: Sequence[str] = ("x86_64",),
        jobs: int = 2,
        files: Sequence[str] = (),
        sources: str = "app/*.rb",
        mode: str = "development",
        toolchain_extra: str = "",
        extra: str = "",
    ) -> Path:
        """Write unibuild.ini (aged like the tools)."""
        tools = self.toolchain
        self.ini_path.write_text(
            "[project]\n"
            "name = Hello\n"
            f"platform = {self.PLATFORM}\n"
            "sdk_version = 17.0\n"
            "deployment_target = 12.0\n"
            f"mode = {mode}\n"
            f"files = {' '.join(files)}\n"
            f"sources = {sources}\n"
            "\n"
            "[archs]\n"
            f"{self.PLATFORM} = {' '.join(archs)}\n"
            "\n"
            "[toolchain]\n"
            f"datadir = {self.datadir}\n"
            f"compiler = {tools.worker}\n"
            f"cc = {tools.cc}\n"
            f"cxx = {tools.cxx}\n"
            f"lipo = {tools.lipo}\n"
            "arch_wrapper = none\n"
            f"{toolchain_extra}\n"
            "\n"
            "[build]\n"
            f"jobs = {jobs}\n"
            "\n"
            f"{extra}\n"
        )
        set_age(self.ini_path, OLD)
        return self.ini_path

    def add_source(self, name: str, content: str = "", age: float = SOURCE_AGE) -> Path:
        path = self.app_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content or f"# {name}\nputs '{name}'\n")
        set_age(path, age)
        return path

    def age(self, path: Path, seconds: float) -> None:
        set_age(path, seconds)

    def age_build_dir(self, seconds: float) -> None:
        """Age every build output, keeping them newer than sources and tools."""
        age_tree(self.build_dir, seconds)

    def load_config(self) -> ProjectConfig:
        return ProjectConfig(self.ini_path)

    def orchestrator(self) -> BuildOrchestrator:
        return BuildOrchestrator(self.load_config())

    def build(self, **kwargs) -> BuildResult:
        """Run one build pass with a freshly loaded configuration."""
        return self.orchestrator().build(**kwargs)

    @property
    def build_dir(self) -> Path:
        return self.orchestrator().cache.build_dir

    @property
    def executable(self) -> Path:
        return self.build_dir / "Hello.app" / "Hello"


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from the caller's unibuild environment."""
    for name in (
        "UNIBUILD_JOBS",
        "UNIBUILD_KEEP_TEMPS",
        "FAKE_TOOL_FAIL",
        "FAKE_TOOL_NO_OUTPUT",
        "FAKE_TOOL_PARTIAL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("UNIBUILD_COMMON_BUILD_DIR", str(tmp_path / "common"))


@pytest.fixture
def fake_toolchain(tmp_path, clean_env):
    """Generate the fake tool scripts."""
    if os.name == "nt":
        pytest.skip("fake tools are POSIX shebang scripts")
    tools_dir = tmp_path / "tools"
    tools_dir.mkdir()
    return FakeToolchain(tools_dir)


@pytest.fixture
def fake_project(tmp_path, fake_toolchain):
    """Create a project with three sources and a single-arch config."""
    project = FakeProject(tmp_path / "project", fake_toolchain)
    project.add_source("a.rb")
    project.add_source("b.rb")
    project.add_source("c.rb")
    project.write_config()
    return project
