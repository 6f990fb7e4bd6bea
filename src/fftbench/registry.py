"""
Backend registry: maps backend names to context and adapter classes.

adapters are resolved per configuration from the context's backend name,
after checking that the backend provides the requested variant.
"""

from typing import Dict, List, Sequence, Tuple

from .backends.base import TransformAdapter
from .backends.cufft import CufftAdapter, CupyContext
from .backends.fftw import FftwAdapter, FftwContext
from .backends.pocketfft import NumpyAdapter, ScipyAdapter
from .context import BackendContext, HostContext
from .errors import CapabilityError
from .layout import Placement, Precision, TransformKind

ADAPTERS: Dict[str, type] = {
    'fftw': FftwAdapter,
    'numpy': NumpyAdapter,
    'scipy': ScipyAdapter,
    'cufft': CufftAdapter,
}


def available_backends() -> List[str]:
    return sorted(ADAPTERS)


def adapter_class(backend: str) -> type:
    try:
        return ADAPTERS[backend]
    except KeyError:
        raise ValueError(f"Unknown backend {backend!r}, expected one of {available_backends()}") from None


def create_context(backend: str, **kwargs) -> BackendContext:
    """Create (but do not start) the context of a backend."""
    adapter_class(backend)
    if backend == 'fftw':
        return FftwContext(**kwargs)
    if backend == 'cufft':
        return CupyContext(**kwargs)
    return HostContext(backend=backend)


def supported_variants(backend: str) -> List[Tuple[TransformKind, Placement]]:
    return list(adapter_class(backend).variants)


def create_adapter(context: BackendContext,
                   extents: Sequence[int],
                   kind: TransformKind,
                   placement: Placement,
                   precision: Precision,
                   **kwargs) -> TransformAdapter:
    """
    Construct the adapter of the context's backend for one configuration.

    Raises:
        CapabilityError: the backend does not provide this variant/precision
    """
    cls = adapter_class(context.backend)
    if not cls.supports(kind, placement):
        raise CapabilityError(f"{cls.name} does not provide {kind.value} {placement.value} transforms")
    return cls(context, extents, kind, placement, precision, **kwargs)
