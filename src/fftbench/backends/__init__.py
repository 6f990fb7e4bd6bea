"""
Backend transform adapters.

the cufft module is not imported here; it imports cupy only when used.
"""

from .base import AdapterState, Direction, PlanReuse, TransformAdapter
from .fftw import FftwAdapter, FftwContext
from .pocketfft import NumpyAdapter, ScipyAdapter

__all__ = [
    'AdapterState', 'Direction', 'PlanReuse', 'TransformAdapter',
    'FftwAdapter', 'FftwContext', 'NumpyAdapter', 'ScipyAdapter',
]
