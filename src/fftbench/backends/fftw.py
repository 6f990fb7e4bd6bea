"""
FFTW backend through pyfftw.

plans are pyfftw.FFTW objects bound to the adapter's aligned buffers and run
with execute(), which neither copies nor normalizes. the context handles
FFTW wisdom: it is imported when the context is created and exported when
it is destroyed, if a wisdom file is configured.
"""

import os
import logging
from typing import Optional

import numpy as np
import pyfftw

from ..config import get_config
from ..context import HostContext
from .base import Direction, PlanReuse, TransformAdapter

logger = logging.getLogger("fftbench.backends.fftw")

PLANNER_ESTIMATE = 'FFTW_ESTIMATE'    # quick planning, leaves the buffers alone
PLANNER_MEASURE = 'FFTW_MEASURE'      # thorough planning, overwrites the buffers
PLANNER_PATIENT = 'FFTW_PATIENT'
PLANNER_EXHAUSTIVE = 'FFTW_EXHAUSTIVE'
PLANNERS = (PLANNER_ESTIMATE, PLANNER_MEASURE, PLANNER_PATIENT, PLANNER_EXHAUSTIVE)

# threading thresholds in elements
THREADING_SMALL_THRESHOLD = 262144     # 256K, below: single thread
THREADING_LARGE_1D_THRESHOLD = 2097152  # 2M
THREADING_LARGE_ND_THRESHOLD = 1048576  # 1M


def select_threads(n: int, ndim: int, max_threads: Optional[int] = None) -> int:
    """
    Select a thread count from the transform size and dimensionality.

    Small transforms run single threaded since the threading overhead
    dominates; large multi-dimensional transforms get up to 4 threads.
    """
    if max_threads is None:
        max_threads = get_config('threading', 'default_threads')
    max_threads = max(1, int(max_threads))
    if n < THREADING_SMALL_THRESHOLD:
        return 1
    if ndim >= 2 and n >= THREADING_LARGE_ND_THRESHOLD:
        return min(max_threads, 4)
    if ndim == 1 and n >= THREADING_LARGE_1D_THRESHOLD:
        return min(max_threads, 2)
    return 1


def import_wisdom(filename: str) -> bool:
    """Load FFTW wisdom from a file written by export_wisdom()."""
    if not os.path.exists(filename):
        logger.warning(f"Wisdom file not found: {filename}")
        return False
    with open(filename, 'rb') as f:
        chunks = f.read().split(b'\0\0')
    if not any(chunks):
        logger.warning(f"Wisdom file is empty: {filename}")
        return False
    # pyfftw expects (double, single, long double) wisdom
    chunks = (chunks + [b'', b'', b''])[:3]
    success = pyfftw.import_wisdom(tuple(chunks))
    logger.debug(f"Imported wisdom from {filename}: {success}")
    return any(success)


def export_wisdom(filename: str) -> bool:
    """Write the accumulated FFTW wisdom to a file."""
    wisdom = pyfftw.export_wisdom()
    if not any(wisdom):
        logger.warning("No wisdom available to export")
        return False
    directory = os.path.dirname(os.path.abspath(filename))
    os.makedirs(directory, exist_ok=True)
    with open(filename, 'wb') as f:
        f.write(b'\0\0'.join(wisdom))
    logger.debug(f"Exported wisdom to {filename}")
    return True


class FftwContext(HostContext):
    """Host context of the FFTW backend, with wisdom handling."""

    def __init__(self, wisdom_file: Optional[str] = None):
        super().__init__(backend='fftw')
        self.wisdom_file = wisdom_file

    def _wisdom_path(self) -> Optional[str]:
        path = self.wisdom_file or get_config('fftw', 'wisdom_file')
        return os.path.expanduser(path) if path else None

    def _create(self):
        path = self._wisdom_path()
        if path:
            import_wisdom(path)

    def _destroy(self):
        path = self._wisdom_path()
        if path:
            export_wisdom(path)
        pyfftw.forget_wisdom()


class FftwAdapter(TransformAdapter):
    """FFTW adapter: all variants, single and double precision."""
    name = 'fftw'
    plan_reuse = PlanReuse.REUSABLE

    def __init__(self, context, extents, kind, placement, precision,
                 planner: Optional[str] = None, threads: Optional[int] = None):
        super().__init__(context, extents, kind, placement, precision)
        self.planner = planner or get_config('planning', 'default_strategy')
        if self.planner not in PLANNERS:
            raise ValueError(f"Invalid planner: {self.planner}")
        self.threads = threads or select_threads(self.geometry.n, self.geometry.ndim)
        # pyfftw always plans through the guru64 interface
        if self.geometry.use_wide_indexing:
            logger.debug(f"{self.describe()}: FFTW guru64 interface handles wide indexing")

    def _empty_bytes(self, nbytes):
        return pyfftw.empty_aligned(nbytes, dtype=np.uint8)

    def _make_fftw(self, direction: Direction, flags):
        buffers = self._buffers
        axes = tuple(range(self.geometry.ndim))
        if direction is Direction.FORWARD:
            source, target, fftw_direction = buffers.space, buffers.spectrum, 'FFTW_FORWARD'
        else:
            source, target, fftw_direction = buffers.spectrum, buffers.space, 'FFTW_BACKWARD'
        return pyfftw.FFTW(source, target, axes=axes, direction=fftw_direction,
                           flags=flags, threads=self.threads)

    def _build_plan(self, direction: Direction):
        if self.planner == PLANNER_ESTIMATE:
            return self._make_fftw(direction, (self.planner,))
        if direction is Direction.FORWARD and self.requires_inverse_plan:
            # measuring planners overwrite the buffers, so the inverse plan is
            # measured now, before upload, and rebuilt from wisdom later
            self._make_fftw(Direction.INVERSE, (self.planner,))
        if direction is Direction.INVERSE:
            return self._make_fftw(direction, (self.planner, 'FFTW_WISDOM_ONLY'))
        return self._make_fftw(direction, (self.planner,))

    def _execute(self, plan, direction: Direction):
        plan.execute()
