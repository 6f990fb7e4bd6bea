"""
numpy.fft and scipy.fft backends.

both wrap pocketfft and have no separate planning step: a "plan" is the
transform function bound to its axes, sizes and normalization, rebuilt for
every trial. the result is written into the preallocated transform buffer,
so only out-of-place variants are provided.

scaling 'scaled' divides the inverse by n (numpy's default); 'unscaled'
leaves both directions unnormalized like FFTW and cuFFT.
"""

import functools
import logging

import numpy as np
import scipy.fft

from ..config import get_config
from ..layout import Placement, TransformKind
from .base import Direction, PlanReuse, TransformAdapter

logger = logging.getLogger("fftbench.backends.pocketfft")

# scaling: (forward norm, inverse norm)
SCALINGS = {
    'scaled': ('backward', 'backward'),
    'unscaled': ('backward', 'forward'),
}


class PocketfftAdapter(TransformAdapter):
    """Shared implementation of the numpy and scipy adapters."""
    plan_reuse = PlanReuse.NOT_REUSABLE
    shares_plan_across_directions = True
    variants = (
        (TransformKind.REAL, Placement.OUTPLACE),
        (TransformKind.COMPLEX, Placement.OUTPLACE),
    )
    fft_module = None

    def __init__(self, context, extents, kind, placement, precision, scaling=None):
        super().__init__(context, extents, kind, placement, precision)
        self.scaling = scaling or get_config('pocketfft', 'scaling')
        if self.scaling not in SCALINGS:
            raise ValueError(f"Invalid scaling: {self.scaling}, expected one of {sorted(SCALINGS)}")

    @property
    def is_normalized(self) -> bool:
        return self.scaling == 'scaled'

    def describe(self) -> str:
        return f"{super().describe()} {self.scaling}"

    def _transform_kwargs(self) -> dict:
        return {}

    def _build_plan(self, direction: Direction):
        g = self.geometry
        fft = self.fft_module
        kwargs = dict(axes=tuple(range(g.ndim)), **self._transform_kwargs())
        forward_norm, inverse_norm = SCALINGS[self.scaling]
        logger.debug(f"{self.describe()}: binding {direction.value} transform")
        if g.is_real:
            if direction is Direction.FORWARD:
                return functools.partial(fft.rfftn, norm=forward_norm, **kwargs)
            return functools.partial(fft.irfftn, s=g.extents, norm=inverse_norm, **kwargs)
        return {
            Direction.FORWARD: functools.partial(fft.fftn, norm=forward_norm, **kwargs),
            Direction.INVERSE: functools.partial(fft.ifftn, norm=inverse_norm, **kwargs),
        }

    def _execute(self, plan, direction: Direction):
        buffers = self._buffers
        if isinstance(plan, dict):
            plan = plan[direction]
        if direction is Direction.FORWARD:
            np.copyto(buffers.spectrum, plan(buffers.space))
        else:
            np.copyto(buffers.space, plan(buffers.spectrum))


class NumpyAdapter(PocketfftAdapter):
    name = 'numpy'
    fft_module = np.fft


class ScipyAdapter(PocketfftAdapter):
    name = 'scipy'
    fft_module = scipy.fft

    def __init__(self, context, extents, kind, placement, precision, scaling=None, workers=None):
        super().__init__(context, extents, kind, placement, precision, scaling=scaling)
        self.workers = workers or get_config('threading', 'default_threads')

    def _transform_kwargs(self) -> dict:
        return {'workers': self.workers}
