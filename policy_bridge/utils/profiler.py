"""Lightweight profiling: wall-clock timers and NVTX markers.

Provides:
    - timer(): Context manager for wall-clock timing with optional sink
    - nvtx_range(): NVIDIA Nsight markers around GPU work
    - TimerAccumulator: Running totals per named section

Used by the model runner to time each decide_batch section:
    - generate (input tensors from the batch)
    - execute (worker set_input + schedule)
    - fetch (output retrieval)
    - apply (output decoding)

No heavy dependencies (no line_profiler, no cProfile overhead per step).
"""

import logging
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


@contextmanager
def timer(name: str, sink: Optional[Callable[[str, float], None]] = None):
    """Context manager for wall-clock timing.

    Parameters
    ----------
    name : str
        Timer name (for logging/display)
    sink : Optional[Callable[[str, float], None]]
        Optional callback(name, elapsed_seconds)
        If None, logs at DEBUG level

    Examples
    --------
    >>> with timer("decide_batch"):
    ...     runner.decide_batch()
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if sink is not None:
            sink(name, elapsed)
        else:
            logger.debug("%s: %.3f s", name, elapsed)


@contextmanager
def nvtx_range(msg: str):
    """Context manager for NVIDIA NVTX range markers.

    Notes
    -----
    No-op if CUDA is not available.
    """
    import torch

    pushed = False
    if torch.cuda.is_available():
        try:
            torch.cuda.nvtx.range_push(msg)
            pushed = True
        except (RuntimeError, AttributeError):
            pushed = False
    try:
        yield
    finally:
        if pushed:
            torch.cuda.nvtx.range_pop()


class TimerAccumulator:
    """Accumulate multiple timing measurements for averaging.

    Examples
    --------
    >>> execute_timer = TimerAccumulator("execute")
    >>> for _ in range(100):
    ...     with execute_timer.measure():
    ...         worker.schedule()
    >>> print(f"Mean: {execute_timer.mean():.4f} s")
    """

    def __init__(self, name: str):
        self.name = name
        self.total_time = 0.0
        self.count = 0

    @contextmanager
    def measure(self):
        """Context manager to measure and accumulate time."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.total_time += time.perf_counter() - start
            self.count += 1

    def mean(self) -> float:
        """Mean time per measurement in seconds, or 0.0 if none."""
        return self.total_time / self.count if self.count > 0 else 0.0

    def reset(self) -> None:
        self.total_time = 0.0
        self.count = 0

    def __repr__(self) -> str:
        return f"TimerAccumulator({self.name}, mean={self.mean():.4f}s, count={self.count})"


class SectionTimers:
    """A fixed set of named TimerAccumulators.

    Examples
    --------
    >>> timers = SectionTimers(["generate", "execute"])
    >>> with timers.measure("generate"):
    ...     build_inputs()
    >>> timers.summary()["generate"]["count"]
    1
    """

    def __init__(self, names: Iterable[str]):
        self._timers = {name: TimerAccumulator(name) for name in names}

    def measure(self, name: str):
        return self._timers[name].measure()

    def __getitem__(self, name: str) -> TimerAccumulator:
        return self._timers[name]

    def summary(self) -> Dict[str, Dict[str, float]]:
        """Per-section totals: {"name": {"total_s", "mean_s", "count"}}."""
        return {
            name: {"total_s": t.total_time, "mean_s": t.mean(), "count": t.count}
            for name, t in self._timers.items()
        }

    def reset(self) -> None:
        for t in self._timers.values():
            t.reset()
