"""
Raw allocations and the typed views backends operate on.

a TransformBuffers owns one primary byte allocation of exactly data_size
bytes and, for out-of-place configurations, one secondary allocation of
exactly complex_buffer_size bytes. backends never reinterpret memory
themselves: they use the `space` and `spectrum` views built here.

in-place real transforms use the padded layout expected by FFTW and cuFFT:
each row of the space-domain array is 2*(last//2+1) reals wide, so the same
bytes can hold the half spectrum. `space` hides the padding by slicing it off.
"""

import math
from typing import Any, Callable

from .layout import Geometry


def _typed(raw, geometry: Geometry, shape, complex_values: bool):
    """View raw bytes as an array of the configuration's precision."""
    precision = geometry.precision
    if not complex_values:
        return raw.view(precision.real_dtype)[:math.prod(shape)].reshape(shape)
    if precision.complex_dtype is not None:
        return raw.view(precision.complex_dtype)[:math.prod(shape)].reshape(shape)
    # half precision complex: interleaved (re, im) pairs
    return raw.view(precision.real_dtype)[:2 * math.prod(shape)].reshape(tuple(shape) + (2,))


def space_view(raw, geometry: Geometry):
    """Space-domain view of the primary allocation, padding excluded."""
    if not geometry.is_real:
        return _typed(raw, geometry, geometry.extents, complex_values=True)
    padded_shape = geometry.extents[:-1] + (geometry.padded_last_extent,)
    view = _typed(raw, geometry, padded_shape, complex_values=False)
    if geometry.padded_last_extent != geometry.extents[-1]:
        view = view[..., :geometry.extents[-1]]
    return view


def spectrum_view(raw, geometry: Geometry):
    """Transform-domain view of the allocation holding the spectrum."""
    return _typed(raw, geometry, geometry.extents_complex, complex_values=True)


class TransformBuffers:
    """
    Buffers of one configuration.

    Args:
        geometry: Geometry to allocate for
        empty_bytes: Allocator returning an uninitialized 1-D uint8 array
            of the requested length (numpy, pyfftw or cupy)
    """

    def __init__(self, geometry: Geometry, empty_bytes: Callable[[int], Any]):
        self.geometry = geometry
        self.primary = empty_bytes(geometry.data_size)
        self.secondary = None
        if not geometry.in_place:
            self.secondary = empty_bytes(geometry.complex_buffer_size)

        self.space = space_view(self.primary, geometry)
        if geometry.in_place and not geometry.is_real:
            self.spectrum = self.space
        else:
            self.spectrum = spectrum_view(self.primary if geometry.in_place else self.secondary, geometry)

    @property
    def nbytes(self) -> int:
        total = self.primary.nbytes
        if self.secondary is not None:
            total += self.secondary.nbytes
        return total

    @property
    def aliased(self) -> bool:
        """True when the spectrum lives in the primary allocation."""
        return self.secondary is None

    def release(self):
        self.space = None
        self.spectrum = None
        self.primary = None
        self.secondary = None
