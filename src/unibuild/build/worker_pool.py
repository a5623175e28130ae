"""
Persistent compiler worker processes.

Starting the compiler is expensive (it loads an architecture-specific runtime
context), so each build lane keeps one long-lived worker per architecture and
feeds it requests over its stdin/stdout pipes.

Protocol (line based, UTF-8):
    request:   <output assembly path>\\n<entry symbol>\\n<source path>\\n
    response:  any single line, used only as a completion signal
    shutdown:  quit\\n  (no response)

A worker services one request at a time. Any protocol failure (worker exit,
closed pipe, missing output after the ack, response timeout) is fatal for the
build pass; nothing is retried.
"""

import logging
import os
import queue
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import psutil

from ..config.architectures import Architecture
from ..config.project_config import ConfigurationError


class WorkerError(Exception):
    """Raised when a compiler worker fails or violates the protocol."""
    pass


class WorkerTimeoutError(WorkerError):
    """Raised when a worker doesn't answer within the configured timeout."""
    pass


@dataclass(frozen=True)
class CompileRequest:
    """One compile of one source file for one architecture."""

    source: Path
    arch: Architecture
    output_path: Path
    symbol: str

    def encode(self) -> str:
        """Serialize the request as the three protocol lines."""
        fields = (str(self.output_path), self.symbol, str(self.source))
        for value in fields:
            if "\n" in value or "\r" in value:
                raise WorkerError(f"Cannot send a line break to the compiler: {value!r}")
        return "\n".join(fields) + "\n"


@dataclass
class WorkerSettings:
    """Everything needed to spawn a compiler worker.

    Attributes:
        compiler: Compiler worker executable
        datadir: SDK data directory exposed to the worker
        platform: Target platform name
        project_dir: Project root passed to the worker
        runtime_contexts: Runtime context file per architecture name
        opt_level: Optimization level
        bridgesupport_files: Metadata files the worker should load
        arch_wrapper: Launcher used to pick the host architecture
            (e.g. /usr/bin/arch on macOS); None to run the compiler directly
        timeout: Seconds to wait for a response (None waits forever)
    """

    compiler: Path
    datadir: Path
    platform: str
    project_dir: Path
    runtime_contexts: Dict[str, Path] = field(default_factory=dict)
    opt_level: int = 3
    bridgesupport_files: List[Path] = field(default_factory=list)
    arch_wrapper: Optional[Path] = None
    timeout: Optional[float] = None

    def command(self, arch: Architecture) -> List[str]:
        """Build the worker command line for an architecture."""
        cmd: List[str] = []
        if self.arch_wrapper is not None:
            cmd.extend([str(self.arch_wrapper), "-arch", arch.exec_arch])
        cmd.append(str(self.compiler))
        for bs_file in self.bridgesupport_files:
            cmd.extend(["--uses-bs", str(bs_file)])
        cmd.extend(["--project_dir", str(self.project_dir), "--emit-llvm-fast", ""])
        return cmd

    def environment(self, arch: Architecture) -> Dict[str, str]:
        """Build the worker environment for an architecture."""
        context = self.runtime_contexts.get(arch.name)
        if context is None or not context.exists():
            raise ConfigurationError(
                f"Can't locate runtime context file for {arch.name}: {context}"
            )

        env = dict(os.environ)
        env.update({
            "UNIBUILD_DATADIR_PATH": str(self.datadir),
            "UNIBUILD_PLATFORM": self.platform,
            "UNIBUILD_KERNEL_PATH": str(context),
            "UNIBUILD_OPT_LEVEL": str(self.opt_level),
            "UNIBUILD_ARCH": arch.name,
        })
        return env


class CompileWorker:
    """
    One persistent compiler process bound to a (lane, architecture) pair.

    Responses are read by a background thread into a queue so that a
    response timeout can be enforced without platform-specific select().
    """

    def __init__(
        self,
        lane: int,
        arch: Architecture,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize worker (the process is not started yet).

        Args:
            lane: Lane index owning this worker
            arch: Target architecture
            command: Command line to spawn
            env: Process environment
            timeout: Seconds to wait for each response (None waits forever)
        """
        self.lane = lane
        self.arch = arch
        self.command = command
        self.env = env
        self.timeout = timeout
        self.requests = 0

        self._process: Optional[subprocess.Popen] = None
        self._responses: "queue.Queue[Optional[str]]" = queue.Queue()
        self._reader: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def start(self) -> None:
        """
        Spawn the worker process.

        Raises:
            WorkerError: If the process can't be started
        """
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                env=self.env,
                text=True,
                encoding="utf-8",
                bufsize=1,
            )
        except OSError as e:
            raise WorkerError(
                f"Failed to start compiler for {self.arch.name}: {e}"
            ) from e

        self._reader = threading.Thread(
            target=self._read_responses,
            name=f"worker-{self.lane}-{self.arch.name}",
            daemon=True,
        )
        self._reader.start()
        logging.debug(
            f"Started compiler worker lane={self.lane} arch={self.arch.name} pid={self._process.pid}"
        )

    def _read_responses(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        try:
            for line in self._process.stdout:
                self._responses.put(line.rstrip("\r\n"))
        except (OSError, ValueError):
            # stdout closed during shutdown
            pass
        finally:
            self._responses.put(None)

    def is_alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def submit(self, request: CompileRequest) -> str:
        """
        Send one compile request and wait for its acknowledgment.

        Args:
            request: Compile request

        Returns:
            The acknowledgment line

        Raises:
            WorkerError: If the worker is gone or the pipe is broken
            WorkerTimeoutError: If no response arrives in time
        """
        payload = request.encode()

        with self._lock:
            if self._process is None:
                self.start()
            assert self._process is not None and self._process.stdin is not None

            if not self.is_alive():
                raise WorkerError(
                    f"Compiler worker for {self.arch.name} exited "
                    f"with code {self._process.returncode}"
                )

            try:
                self._process.stdin.write(payload)
                self._process.stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as e:
                raise WorkerError(
                    f"Lost connection to compiler worker for {self.arch.name}: {e}"
                ) from e

            try:
                response = self._responses.get(timeout=self.timeout)
            except queue.Empty as e:
                raise WorkerTimeoutError(
                    f"Compiler worker for {self.arch.name} did not answer within "
                    f"{self.timeout}s while compiling {request.source}"
                ) from e

            if response is None:
                returncode = self._process.wait()
                raise WorkerError(
                    f"Compiler worker for {self.arch.name} exited with code {returncode} "
                    f"while compiling {request.source}"
                )

            self.requests += 1
            return response

    def stop(self, grace: float = 5.0) -> None:
        """
        Ask the worker to quit and wait for it to exit.

        Workers that don't exit within the grace period get their whole
        process tree killed.

        Args:
            grace: Seconds to wait after sending quit
        """
        process = self._process
        if process is None:
            return

        if process.poll() is None:
            try:
                assert process.stdin is not None
                process.stdin.write("quit\n")
                process.stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as e:
                logging.debug(f"Could not send quit to worker {process.pid}: {e}")

            try:
                process.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logging.warning(
                    f"Compiler worker {process.pid} ({self.arch.name}) did not exit, killing it"
                )
                kill_process_tree(process.pid)
                process.wait()

        for stream in (process.stdin, process.stdout):
            if stream is not None:
                try:
                    stream.close()
                except (OSError, ValueError):
                    pass

        if self._reader is not None:
            self._reader.join(timeout=grace)

        logging.debug(
            f"Stopped compiler worker lane={self.lane} arch={self.arch.name} "
            f"after {self.requests} requests"
        )


def kill_process_tree(pid: int) -> int:
    """
    Kill a process and all of its children.

    Args:
        pid: Root process ID

    Returns:
        Number of processes signalled
    """
    try:
        root_proc = psutil.Process(pid)
        processes = root_proc.children(recursive=True) + [root_proc]
    except psutil.NoSuchProcess:
        return 0

    killed = 0
    for proc in processes:
        try:
            proc.terminate()
            killed += 1
        except psutil.NoSuchProcess:
            pass

    _gone, alive = psutil.wait_procs(processes, timeout=3)
    for proc in alive:
        try:
            proc.kill()
            logging.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass

    return killed


class CompileWorkerPool:
    """
    Owns one compiler worker per (lane, architecture) for a build pass.

    Example usage:
        pool = CompileWorkerPool(settings)
        try:
            worker = pool.acquire(0, Architecture.from_name("x86_64"))
            pool.submit(worker, request)
        finally:
            pool.shutdown()
    """

    def __init__(self, settings: WorkerSettings):
        """
        Initialize the pool.

        Args:
            settings: Worker spawn settings shared by all workers
        """
        self.settings = settings
        self._workers: Dict[Tuple[int, str], CompileWorker] = {}
        self._lock = threading.Lock()
        self._closed = False
        self.submissions = 0

    @property
    def workers(self) -> List[CompileWorker]:
        with self._lock:
            return list(self._workers.values())

    def acquire(self, lane: int, arch: Architecture) -> CompileWorker:
        """
        Get the worker for a lane and architecture, spawning it on first use.

        Raises:
            ConfigurationError: If the architecture's runtime context is missing
            WorkerError: If the pool is shut down or the worker can't start
        """
        key = (lane, arch.name)
        with self._lock:
            if self._closed:
                raise WorkerError("Compiler worker pool is shut down")
            worker = self._workers.get(key)
            if worker is None:
                worker = CompileWorker(
                    lane=lane,
                    arch=arch,
                    command=self.settings.command(arch),
                    env=self.settings.environment(arch),
                    timeout=self.settings.timeout,
                )
                worker.start()
                self._workers[key] = worker
            return worker

    def submit(self, worker: CompileWorker, request: CompileRequest) -> str:
        """
        Submit a request and verify the worker produced its output.

        Raises:
            WorkerError: If the worker fails or the output file is missing
        """
        request.output_path.parent.mkdir(parents=True, exist_ok=True)
        ack = worker.submit(request)

        with self._lock:
            self.submissions += 1

        if not request.output_path.exists():
            raise WorkerError(f"File '{request.source}' failed to compile")
        return ack

    def shutdown(self, grace: float = 5.0) -> None:
        """Send quit to every live worker and wait for them to exit."""
        with self._lock:
            self._closed = True
            workers = list(self._workers.values())
            self._workers.clear()

        for worker in workers:
            worker.stop(grace)
