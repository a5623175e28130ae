"""
Parallel lane scheduler.

Runs a per-file build step across a fixed number of lanes. Each lane is a
thread that pulls the next file index from a shared queue and runs the step
for it; a file stays on one lane for its whole multi-architecture compile.
Results are stored by input position, so the returned list always follows
the input order no matter which lane finishes first.

The first failure cancels the run: lanes stop pulling new files, in-flight
files drain, and the failure is raised from run().
"""

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from tqdm import tqdm

from ..interrupt_utils import handle_keyboard_interrupt_properly


T = TypeVar("T")

BuildStep = Callable[[Path, int], T]


class SchedulerError(Exception):
    """Raised when a build step fails on one of the lanes."""

    def __init__(self, message: str, source: Optional[Path] = None, lane: Optional[int] = None):
        super().__init__(message)
        self.source = source
        self.lane = lane


class _RunState(Generic[T]):
    """Shared state of one Scheduler.run() call."""

    def __init__(self, files: Sequence[Path], progress: tqdm):
        self.files = files
        self.results: List[Optional[T]] = [None] * len(files)
        self.pending: "queue.Queue[int]" = queue.Queue()
        for index in range(len(files)):
            self.pending.put(index)
        self.cancel = threading.Event()
        self.failures: List[Tuple[int, int, Exception]] = []
        self.progress = progress
        self.lock = threading.Lock()


class Scheduler:
    """
    Distributes build steps over parallel lanes.

    Example usage:
        scheduler = Scheduler(lanes=4)
        objects = scheduler.run(files, unit_builder)
    """

    def __init__(self, lanes: int = 1, show_progress: bool = False):
        """
        Initialize scheduler.

        Args:
            lanes: Number of parallel lanes (job concurrency level)
            show_progress: Show a progress bar while compiling
        """
        if lanes < 1:
            raise ValueError(f"lanes must be at least 1 (got {lanes})")
        self.lanes = lanes
        self.show_progress = show_progress

    def run(self, files: Sequence[Path], build_step: BuildStep) -> List[T]:
        """
        Run build_step(file, lane) for every file.

        Args:
            files: Source files in build order
            build_step: Callable building one file on a lane

        Returns:
            Step results in the same order as files

        Raises:
            SchedulerError: If any step fails (chained to the original error)
        """
        files = list(files)
        if not files:
            return []

        lanes = min(self.lanes, len(files))
        progress = tqdm(
            total=len(files),
            desc="Compiling",
            unit="file",
            disable=not self.show_progress,
        )
        state: _RunState = _RunState(files, progress)

        executor = ThreadPoolExecutor(max_workers=lanes, thread_name_prefix="lane")
        try:
            futures = [
                executor.submit(self._lane_loop, lane, build_step, state)
                for lane in range(lanes)
            ]
            for future in futures:
                future.result()
        except KeyboardInterrupt:
            state.cancel.set()
            executor.shutdown(wait=False, cancel_futures=True)
            progress.close()
            raise
        executor.shutdown(wait=True)
        progress.close()

        if state.failures:
            index, lane, error = state.failures[0]
            source = files[index]
            raise SchedulerError(
                f"Build failed for {source} (lane {lane}): {error}",
                source=source,
                lane=lane,
            ) from error

        return list(state.results)  # type: ignore[arg-type]

    def _lane_loop(self, lane: int, build_step: BuildStep, state: _RunState) -> None:
        """Pull files and build them sequentially until the queue drains or the run is cancelled."""
        while not state.cancel.is_set():
            try:
                index = state.pending.get_nowait()
            except queue.Empty:
                return

            try:
                state.results[index] = build_step(state.files[index], lane)
            except KeyboardInterrupt as ke:
                state.cancel.set()
                handle_keyboard_interrupt_properly(ke)
            except Exception as e:
                with state.lock:
                    state.failures.append((index, lane, e))
                state.cancel.set()
                return

            with state.lock:
                state.progress.update(1)
