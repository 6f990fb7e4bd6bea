"""
Buffer geometry of FFT configurations.

this module is the single source of truth for how many bytes a transform
needs and how the space-domain and transform-domain data are laid out.
every backend allocates and copies exactly what compute_geometry() says.

Axis order is fixed for all backends: the last extent is the contiguous axis
and the one the half-spectrum rule applies to.
"""

import enum
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import LayoutError

# sizes at or above this many bytes need 64-bit indexing in the backends
WIDE_INDEX_THRESHOLD = 1 << 32
MAX_DIMENSIONS = 3


class TransformKind(enum.Enum):
    REAL = 'real'        # real-to-complex forward, complex-to-real inverse
    COMPLEX = 'complex'  # complex-to-complex both ways


class Placement(enum.Enum):
    INPLACE = 'inplace'
    OUTPLACE = 'outplace'


class Precision(enum.Enum):
    HALF = 'half'
    SINGLE = 'single'
    DOUBLE = 'double'

    @property
    def real_dtype(self) -> np.dtype:
        return np.dtype(_REAL_DTYPES[self])

    @property
    def complex_dtype(self) -> Optional[np.dtype]:
        """Complex dtype, None for half precision (stored as float16 pairs)."""
        name = _COMPLEX_DTYPES[self]
        return np.dtype(name) if name else None

    @property
    def real_size(self) -> int:
        return self.real_dtype.itemsize

    @property
    def complex_size(self) -> int:
        return 2 * self.real_size

    def element_size(self, kind: TransformKind) -> int:
        """Bytes of one space-domain element for the given transform kind."""
        return self.real_size if kind is TransformKind.REAL else self.complex_size


_REAL_DTYPES = {Precision.HALF: 'float16', Precision.SINGLE: 'float32', Precision.DOUBLE: 'float64'}
_COMPLEX_DTYPES = {Precision.HALF: None, Precision.SINGLE: 'complex64', Precision.DOUBLE: 'complex128'}


@dataclass(frozen=True)
class Geometry:
    """Buffer geometry of one (extents, kind, placement, precision) configuration."""
    extents: Tuple[int, ...]
    kind: TransformKind
    placement: Placement
    precision: Precision
    extents_complex: Tuple[int, ...]
    n: int
    n_complex: int
    data_size: int
    complex_buffer_size: int
    use_wide_indexing: bool

    @property
    def ndim(self) -> int:
        return len(self.extents)

    @property
    def in_place(self) -> bool:
        return self.placement is Placement.INPLACE

    @property
    def is_real(self) -> bool:
        return self.kind is TransformKind.REAL

    @property
    def element_size(self) -> int:
        return self.precision.element_size(self.kind)

    @property
    def transfer_size(self) -> int:
        """Bytes moved by one upload or download, padding excluded."""
        return self.n * self.element_size

    @property
    def allocation_size(self) -> int:
        return self.data_size + self.complex_buffer_size

    @property
    def padded_last_extent(self) -> int:
        """Allocated width of the last axis in elements of the space-domain buffer."""
        if self.in_place and self.is_real:
            return 2 * self.extents_complex[-1]
        return self.extents[-1]

    @property
    def rows(self) -> int:
        return self.n // self.extents[-1]

    @property
    def row_strided(self) -> bool:
        """True when upload/download must skip the padding at the end of each row."""
        return self.in_place and self.is_real and self.ndim > 1

    def describe(self) -> str:
        dims = 'x'.join(str(e) for e in self.extents)
        return f"{self.kind.value}/{self.placement.value}/{self.precision.value} {dims}"


def validate_extents(extents: Sequence[int]) -> Tuple[int, ...]:
    """Check extents and return them as a tuple of ints."""
    try:
        values = tuple(extents)
    except TypeError:
        raise LayoutError(f"Extents must be a sequence, got {extents!r}") from None
    if not 1 <= len(values) <= MAX_DIMENSIONS:
        raise LayoutError(f"Expected 1 to {MAX_DIMENSIONS} extents, got {len(values)}: {values}", values)
    for e in values:
        if isinstance(e, bool) or not isinstance(e, (int, np.integer)):
            raise LayoutError(f"Extents must be integers, got {values}", values)
        if e <= 0:
            raise LayoutError(f"Extents must be positive, got {values}", values)
    return tuple(int(e) for e in values)


def compute_geometry(extents: Sequence[int],
                     kind: TransformKind,
                     placement: Placement,
                     precision: Precision) -> Geometry:
    """
    Compute the buffer geometry of a configuration.

    Args:
        extents: 1 to 3 positive extents, last one contiguous
        kind: Real-to-complex or complex-to-complex
        placement: In-place or out-of-place
        precision: Numeric precision

    Returns:
        Geometry with element counts and exact byte sizes

    Raises:
        LayoutError: if the extents are invalid
    """
    extents = validate_extents(extents)
    is_real = kind is TransformKind.REAL
    in_place = placement is Placement.INPLACE

    extents_complex = extents
    if is_real:
        extents_complex = extents[:-1] + (extents[-1] // 2 + 1,)

    n = math.prod(extents)
    n_complex = math.prod(extents_complex)

    data_size = (2 * n_complex if in_place and is_real else n) * precision.element_size(kind)
    complex_buffer_size = 0 if in_place else n_complex * precision.complex_size

    return Geometry(
        extents=extents,
        kind=kind,
        placement=placement,
        precision=precision,
        extents_complex=extents_complex,
        n=n,
        n_complex=n_complex,
        data_size=data_size,
        complex_buffer_size=complex_buffer_size,
        use_wide_indexing=(data_size >= WIDE_INDEX_THRESHOLD
                           or complex_buffer_size >= WIDE_INDEX_THRESHOLD),
    )


def parse_extents(text: str) -> Tuple[int, ...]:
    """Parse '1024' or '64x64x32' into an extents tuple."""
    try:
        values = tuple(int(part) for part in text.lower().split('x'))
    except ValueError:
        raise LayoutError(f"Cannot parse extents {text!r}") from None
    return validate_extents(values)
