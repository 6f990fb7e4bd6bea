"""
Benchmark suite driver.

the suite enumerates kind x placement x precision x extents, admits each
configuration through the capacity guard, drives the adapter through its
phases under the adapter's timer and emits one result record per phase.

a configuration that cannot run is recorded as skipped, a backend call that
fails is recorded as failed; both leave the rest of the run untouched.
fatal errors propagate after the adapter has been destroyed.
"""

import enum
import functools
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .backends.base import AdapterState, PlanReuse, TransformAdapter
from .capacity import require_capacity
from .config import get_config
from .context import BackendContext
from .errors import BackendError, ConfigurationError, ContextError
from .layout import Placement, Precision, TransformKind, validate_extents
from .registry import adapter_class, create_adapter, create_context

logger = logging.getLogger("fftbench.suite")

PHASE_SETUP = 'setup'
PHASE_PLAN_SIZE = 'plan_size'
PHASE_ALLOCATE = 'allocate'
PHASE_INIT_FORWARD = 'init_forward'
PHASE_UPLOAD = 'upload'
PHASE_EXECUTE_FORWARD = 'execute_forward'
PHASE_INIT_INVERSE = 'init_inverse'
PHASE_EXECUTE_INVERSE = 'execute_inverse'
PHASE_DOWNLOAD = 'download'
PHASE_DESTROY = 'destroy'


class Status(enum.Enum):
    OK = 'ok'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclass(frozen=True)
class Configuration:
    kind: TransformKind
    placement: Placement
    precision: Precision
    extents: Tuple[int, ...]

    def describe(self) -> str:
        dims = 'x'.join(str(e) for e in self.extents)
        return f"{self.kind.value}/{self.placement.value}/{self.precision.value} {dims}"


@dataclass(frozen=True)
class ResultRecord:
    backend: str
    kind: TransformKind
    placement: Placement
    precision: Precision
    extents: Tuple[int, ...]
    phase: str
    duration_ns: int
    status: Status
    message: Optional[str] = None
    trial: int = 0
    deviation: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'backend': self.backend,
            'kind': self.kind.value,
            'placement': self.placement.value,
            'precision': self.precision.value,
            'extents': list(self.extents),
            'phase': self.phase,
            'duration_ns': self.duration_ns,
            'status': self.status.value,
            'message': self.message,
            'trial': self.trial,
            'deviation': self.deviation,
        }


class ResultCollector:
    """In-memory report sink."""

    def __init__(self):
        self.records: List[ResultRecord] = []

    def emit(self, record: ResultRecord):
        self.records.append(record)

    def by_status(self, status: Status) -> List[ResultRecord]:
        return [r for r in self.records if r.status is status]

    def summary(self) -> Dict[str, int]:
        """Number of configurations per final status."""
        final = {}
        for r in self.records:
            key = (r.backend, r.kind, r.placement, r.precision, r.extents)
            # the first record that is not ok decides
            if final.get(key, Status.OK) is Status.OK:
                final[key] = r.status
        counts = {status.value: 0 for status in Status}
        for status in final.values():
            counts[status.value] += 1
        return counts


def round_trip_deviation(original: np.ndarray, result: np.ndarray, scale: float = 1.0) -> float:
    """Maximum deviation of result/scale from original, relative to max |original|."""
    work = np.complex128 if np.iscomplexobj(original) else np.float64
    expected = original.astype(work)
    actual = result.astype(work) / scale
    magnitude = float(np.max(np.abs(expected))) if expected.size else 0.0
    return float(np.max(np.abs(actual - expected))) / max(magnitude, np.finfo(np.float64).tiny)


class BenchmarkSuite:
    """
    Run benchmark configurations on one backend context.

    Args:
        context: Created backend context
        extents: Extents to test, e.g. [(1024,), (64, 64)]
        kinds: Transform kinds (default: all)
        placements: Placements (default: all)
        precisions: Precisions (default: single and double)
        trials: Runs per configuration
        verify: Check the round trip (default from config 'verify.enabled')
        seed: Seed of the host input generator
        sink: Object with an emit(record) method
        adapter_options: Extra keyword arguments for the adapter constructor
    """

    def __init__(self,
                 context: BackendContext,
                 extents: Iterable[Sequence[int]],
                 kinds: Optional[Sequence[TransformKind]] = None,
                 placements: Optional[Sequence[Placement]] = None,
                 precisions: Optional[Sequence[Precision]] = None,
                 trials: int = 1,
                 verify: Optional[bool] = None,
                 seed: int = 0,
                 sink=None,
                 adapter_options: Optional[Dict[str, Any]] = None):
        if trials < 1:
            raise ValueError(f"trials must be at least 1, got {trials}")
        self.context = context
        self.extents = [validate_extents(e) for e in extents]
        self.kinds = list(kinds or TransformKind)
        self.placements = list(placements or Placement)
        self.precisions = list(precisions or (Precision.SINGLE, Precision.DOUBLE))
        self.trials = trials
        self.verify = get_config('verify', 'enabled') if verify is None else verify
        self.sink = sink
        self.adapter_options = adapter_options or {}
        self._rng = np.random.default_rng(seed)

    def configurations(self) -> List[Configuration]:
        """All configurations the backend provides, in run order."""
        cls = adapter_class(self.context.backend)
        configs = []
        for kind, placement, precision, extents in itertools.product(
                self.kinds, self.placements, self.precisions, self.extents):
            if not cls.supports(kind, placement):
                logger.debug(f"{cls.name} does not provide {kind.value} {placement.value}, not enumerated")
                continue
            configs.append(Configuration(kind, placement, precision, extents))
        return configs

    def run(self) -> List[ResultRecord]:
        if not self.context.created:
            raise ContextError(f"{self.context.backend} context must be created before running the suite")
        records = []
        for config in self.configurations():
            records.extend(self.run_configuration(config))
        return records

    def run_configuration(self, config: Configuration) -> List[ResultRecord]:
        """Run all trials of one configuration and return its records."""
        records: List[ResultRecord] = []
        adapter = self._admit(config, records)
        if adapter is None:
            return records

        if adapter.plan_reuse is PlanReuse.REUSABLE:
            self._drive(config, adapter, range(self.trials), records)
            return records

        for trial in range(self.trials):
            if trial > 0:
                adapter = self._construct(config, records)
                if adapter is None:
                    break
            if not self._drive(config, adapter, [trial], records):
                break
        return records

    # --- helpers ---

    def _record(self, records, config, phase, duration_ns, status, message=None, trial=0, deviation=None):
        record = ResultRecord(self.context.backend, config.kind, config.placement, config.precision,
                              config.extents, phase, int(duration_ns), status, message, trial, deviation)
        records.append(record)
        if self.sink is not None:
            self.sink.emit(record)
        return record

    def _construct(self, config: Configuration, records) -> Optional[TransformAdapter]:
        try:
            return create_adapter(self.context, config.extents, config.kind, config.placement,
                                  config.precision, **self.adapter_options)
        except ConfigurationError as e:
            logger.info(f"Skipping {self.context.backend} {config.describe()}: {e}")
            self._record(records, config, PHASE_SETUP, 0, Status.SKIPPED, str(e))
            return None

    def _admit(self, config: Configuration, records) -> Optional[TransformAdapter]:
        adapter = self._construct(config, records)
        if adapter is None:
            return None
        admitted = False
        try:
            plan_bytes = adapter.get_plan_size_estimate()
            capabilities = self.context.capabilities()
            require_capacity(adapter.geometry, plan_bytes,
                             capabilities.available_device_bytes, self.context.host_memory_bytes())
            admitted = True
            return adapter
        except ConfigurationError as e:
            logger.info(f"Skipping {adapter.describe()}: {e}")
            self._record(records, config, PHASE_SETUP, 0, Status.SKIPPED, str(e))
        except BackendError as e:
            logger.warning(f"{adapter.describe()} failed: {e}")
            self._record(records, config, PHASE_PLAN_SIZE, 0, Status.FAILED, str(e))
        finally:
            if not admitted:
                adapter.destroy()
        return None

    def _make_input(self, adapter: TransformAdapter) -> np.ndarray:
        shape, dtype = adapter.host_shape, adapter.host_dtype
        values = self._rng.random(shape)
        if np.issubdtype(dtype, np.complexfloating):
            values = values + 1j * self._rng.random(shape)
        return np.ascontiguousarray(values.astype(dtype))

    def _phases(self, adapter: TransformAdapter, host_in, host_out):
        phases = []
        if adapter.state is AdapterState.CONSTRUCTED:
            phases.append((PHASE_ALLOCATE, adapter.allocate))
        phases += [
            (PHASE_INIT_FORWARD, adapter.init_forward),
            (PHASE_UPLOAD, functools.partial(adapter.upload, host_in)),
            (PHASE_EXECUTE_FORWARD, adapter.execute_forward),
        ]
        if adapter.requires_inverse_plan:
            phases.append((PHASE_INIT_INVERSE, adapter.init_inverse))
        phases += [
            (PHASE_EXECUTE_INVERSE, adapter.execute_inverse),
            (PHASE_DOWNLOAD, functools.partial(adapter.download, host_out)),
        ]
        return phases

    def _check_round_trip(self, adapter: TransformAdapter, host_in, host_out) -> Tuple[float, Optional[str]]:
        scale = 1.0 if adapter.is_normalized else float(adapter.geometry.n)
        deviation = round_trip_deviation(host_in, host_out, scale)
        precision = adapter.geometry.precision
        tolerance = get_config('verify', f"tolerance_{precision.value}")
        if deviation > tolerance:
            return deviation, f"Round trip deviation {deviation:.3g} exceeds {tolerance:.3g} ({precision.value})"
        return deviation, None

    def _drive(self, config: Configuration, adapter: TransformAdapter, trials, records) -> bool:
        """Run the timed phases of the given trials; True when all succeeded."""
        phase, trial = PHASE_SETUP, 0
        try:
            timer = adapter.make_timer()
            for trial in trials:
                host_in = self._make_input(adapter)
                host_out = adapter.new_host_buffer()
                for phase, operation in self._phases(adapter, host_in, host_out):
                    duration = timer.measure(operation)
                    logger.debug(f"{adapter.describe()} trial {trial} {phase}: {duration} ns")
                    if phase != PHASE_DOWNLOAD or not self.verify:
                        self._record(records, config, phase, duration, Status.OK, trial=trial)
                        continue
                    deviation, problem = self._check_round_trip(adapter, host_in, host_out)
                    if problem:
                        logger.warning(f"{adapter.describe()}: {problem}")
                        self._record(records, config, phase, duration, Status.FAILED, problem, trial, deviation)
                        return False
                    self._record(records, config, phase, duration, Status.OK, trial=trial, deviation=deviation)
            phase = PHASE_DESTROY
            duration = timer.measure(adapter.destroy)
            self._record(records, config, phase, duration, Status.OK, trial=trial)
            return True
        except ConfigurationError as e:
            logger.info(f"Skipping {adapter.describe()} at {phase}: {e}")
            self._record(records, config, phase, 0, Status.SKIPPED, str(e), trial)
        except BackendError as e:
            logger.warning(f"{adapter.describe()} failed at {phase}: {e}")
            self._record(records, config, phase, 0, Status.FAILED, str(e), trial)
        finally:
            adapter.destroy()
        return False


def run_benchmarks(backend: str,
                   extents: Iterable[Sequence[int]],
                   context_options: Optional[Dict[str, Any]] = None,
                   **suite_options) -> List[ResultRecord]:
    """
    Create the backend context, run a suite on it and tear the context down.

    Args:
        backend: Backend name ('fftw', 'numpy', 'scipy', 'cufft')
        extents: Extents to test
        context_options: Keyword arguments of the context constructor
        **suite_options: Keyword arguments of BenchmarkSuite

    Returns:
        All result records
    """
    context = create_context(backend, **(context_options or {}))
    with context:
        return BenchmarkSuite(context, extents, **suite_options).run()
