"""
Phase timers.

both timers measure a zero-argument callable and return nanoseconds.
HostTimer reads the host clock and is valid for synchronous backends.
DeviceEventTimer brackets the call with CUDA events and waits for the stop
event, so asynchronous kernels are measured to completion.
"""

import time
from typing import Callable


class HostTimer:
    """Wall-clock timer for backends that return after the work is done."""

    def measure(self, operation: Callable[[], object]) -> int:
        start = time.perf_counter_ns()
        operation()
        return time.perf_counter_ns() - start


class DeviceEventTimer:
    """CUDA event timer (requires cupy)."""

    def __init__(self):
        import cupy

        self._cupy = cupy
        self._start = cupy.cuda.Event()
        self._stop = cupy.cuda.Event()

    def measure(self, operation: Callable[[], object]) -> int:
        self._start.record()
        operation()
        self._stop.record()
        self._stop.synchronize()
        elapsed_ms = self._cupy.cuda.get_elapsed_time(self._start, self._stop)
        return int(round(elapsed_ms * 1e6))
