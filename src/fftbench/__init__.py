"""
fftbench: benchmark harness for FFT libraries.

this package drives FFT backends (FFTW through pyfftw, numpy.fft, scipy.fft
and cuFFT through cupy) through the same timed lifecycle: allocate, plan,
upload, transform forward and back, download, destroy. buffer sizes are
computed once for all backends, configurations that do not fit into memory
are skipped before anything is allocated, and every round trip is checked.

Basic usage:
    import fftbench

    records = fftbench.run_benchmarks('fftw', [(1024,), (64, 64)], trials=3)
    for r in records:
        print(r.phase, r.duration_ns, r.status.value)

Advanced usage:
    from fftbench import BenchmarkSuite, ResultCollector, create_context
    from fftbench import TransformKind, Placement, Precision

    collector = ResultCollector()
    with create_context('scipy') as context:
        suite = BenchmarkSuite(context, [(4096,)],
                               kinds=[TransformKind.COMPLEX],
                               precisions=[Precision.DOUBLE],
                               sink=collector)
        suite.run()
    print(collector.summary())
"""

import logging

__version__ = '0.1.0'

from .config import _config, configure, get_config, reset_config, load_env_config

from .errors import (
    BenchmarkError, ConfigurationError, CapabilityError, InsufficientMemoryError,
    BackendError, FatalError, LayoutError, ContextError, LifecycleError,
)

from .layout import (
    TransformKind, Placement, Precision, Geometry,
    compute_geometry, validate_extents, parse_extents,
)

from .capacity import CapacityVerdict, check_capacity, require_capacity, system_info

from .timer import HostTimer, DeviceEventTimer

from .context import BackendContext, HostContext, DeviceCapabilities

from .backends import AdapterState, Direction, PlanReuse, TransformAdapter

from .registry import (
    available_backends, adapter_class, create_context, create_adapter, supported_variants,
)

from .suite import (
    BenchmarkSuite, Configuration, ResultCollector, ResultRecord, Status,
    round_trip_deviation, run_benchmarks,
)


def _setup_logging():
    """Set up default logging configuration."""
    logger = logging.getLogger("fftbench")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, _config['logging']['level']))
        # Don't propagate to root logger
        logger.propagate = False

_setup_logging()
load_env_config()
