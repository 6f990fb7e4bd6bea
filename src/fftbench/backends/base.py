"""
Lifecycle state machine shared by all backend adapters.

an adapter wraps one backend transform library for one configuration. it
walks through the benchmarked phases in a fixed order:

    CONSTRUCTED -> ALLOCATED -> FORWARD_PLANNED -> UPLOADED -> FORWARD_EXECUTED
    -> [INVERSE_PLANNED] -> INVERSE_EXECUTED -> DOWNLOADED -> DESTROYED

subclasses only implement the backend calls (_build_plan, _execute, ...);
ordering, plan reuse, error translation and buffer geometry are handled here.

an adapter holds at most one plan handle. init_inverse releases the forward
handle when the inverse needs its own; a reusable adapter keeps its buffers
across trials and re-activates the current handle when it already serves the
requested direction.
"""

import enum
import logging
import contextlib
from typing import Any, Optional, Sequence, Tuple

import numpy as np

from ..buffers import TransformBuffers
from ..context import BackendContext
from ..errors import BackendError, BenchmarkError, CapabilityError, LifecycleError
from ..layout import Geometry, Placement, Precision, TransformKind, compute_geometry
from ..timer import HostTimer

logger = logging.getLogger("fftbench.backends")


class AdapterState(enum.IntEnum):
    CONSTRUCTED = 0
    ALLOCATED = 1
    FORWARD_PLANNED = 2
    UPLOADED = 3
    FORWARD_EXECUTED = 4
    INVERSE_PLANNED = 5
    INVERSE_EXECUTED = 6
    DOWNLOADED = 7
    DESTROYED = 8


class Direction(enum.Enum):
    FORWARD = 'forward'
    INVERSE = 'inverse'


class PlanReuse(enum.Enum):
    REUSABLE = 'reusable'
    NOT_REUSABLE = 'not_reusable'


ALL_VARIANTS = (
    (TransformKind.REAL, Placement.INPLACE),
    (TransformKind.REAL, Placement.OUTPLACE),
    (TransformKind.COMPLEX, Placement.INPLACE),
    (TransformKind.COMPLEX, Placement.OUTPLACE),
)

_S = AdapterState
_ALLOWED_FROM = {
    'allocate': (_S.CONSTRUCTED,),
    'init_forward': (_S.ALLOCATED, _S.DOWNLOADED),
    'upload': (_S.FORWARD_PLANNED,),
    'execute_forward': (_S.UPLOADED,),
    'init_inverse': (_S.FORWARD_EXECUTED,),
    'execute_inverse': (_S.FORWARD_EXECUTED, _S.INVERSE_PLANNED),
    'download': (_S.UPLOADED, _S.FORWARD_EXECUTED, _S.INVERSE_PLANNED, _S.INVERSE_EXECUTED, _S.DOWNLOADED),
}


class TransformAdapter:
    """
    Base class of backend transform adapters.

    Args:
        context: Created backend context (read only)
        extents: 1 to 3 extents, last one contiguous
        kind: Real-to-complex or complex-to-complex
        placement: In-place or out-of-place
        precision: Numeric precision

    Raises:
        CapabilityError: backend or device can not run this configuration
        LayoutError: invalid extents
    """
    name = None
    timer_class = HostTimer
    plan_reuse = PlanReuse.REUSABLE
    # whether the inverse transform divides by n
    is_normalized = False
    # complex transforms run both directions on one plan handle
    shares_plan_across_directions = False
    precisions: Tuple[Precision, ...] = (Precision.SINGLE, Precision.DOUBLE)
    variants: Tuple[Tuple[TransformKind, Placement], ...] = ALL_VARIANTS
    # library exceptions turned into BackendError
    backend_errors: Tuple[type, ...] = (MemoryError, RuntimeError, ValueError)

    def __init__(self,
                 context: BackendContext,
                 extents: Sequence[int],
                 kind: TransformKind,
                 placement: Placement,
                 precision: Precision):
        self.context = context
        self.geometry: Geometry = compute_geometry(extents, kind, placement, precision)

        if precision is Precision.HALF and not context.capabilities().supports_half_precision:
            raise CapabilityError("Requested half precision, but device does not support it.")
        if precision not in self.precisions:
            raise CapabilityError(f"{self.name} does not support {precision.value} precision")
        if (kind, placement) not in self.variants:
            raise CapabilityError(f"{self.name} does not provide {kind.value} {placement.value} transforms")

        self.state = AdapterState.CONSTRUCTED
        self._buffers: Optional[TransformBuffers] = None
        self._plan: Any = None
        self._plan_direction: Optional[Direction] = None

        if self.geometry.use_wide_indexing:
            logger.info(f"{self.describe()}: buffers exceed 32-bit range, using wide indexing")

    @classmethod
    def supports(cls, kind: TransformKind, placement: Placement,
                 precision: Optional[Precision] = None) -> bool:
        if (kind, placement) not in cls.variants:
            return False
        return precision is None or precision in cls.precisions

    # --- properties ---

    @property
    def requires_inverse_plan(self) -> bool:
        """False when the forward plan handle also serves the inverse direction."""
        return self.geometry.is_real or not self.shares_plan_across_directions

    @property
    def host_dtype(self) -> np.dtype:
        precision = self.geometry.precision
        if self.geometry.is_real or precision.complex_dtype is None:
            return precision.real_dtype
        return precision.complex_dtype

    @property
    def host_shape(self) -> Tuple[int, ...]:
        g = self.geometry
        if not g.is_real and g.precision.complex_dtype is None:
            return g.extents + (2,)
        return g.extents

    def describe(self) -> str:
        return f"{self.name} {self.geometry.describe()}"

    def get_transfer_size(self) -> int:
        return self.geometry.transfer_size

    def get_allocation_size(self) -> int:
        return self.geometry.allocation_size

    def make_timer(self):
        return self.timer_class()

    def new_host_buffer(self) -> np.ndarray:
        """Host array of exactly get_transfer_size() bytes."""
        return np.empty(self.host_shape, dtype=self.host_dtype)

    # --- lifecycle ---

    def get_plan_size_estimate(self) -> int:
        """Estimated plan workspace in bytes; does not keep any plan."""
        if self.state is not AdapterState.CONSTRUCTED:
            raise LifecycleError(f"get_plan_size_estimate called in state {self.state.name}")
        with self._backend_call('plan_size'):
            return int(self._estimate_plan_bytes())

    def allocate(self):
        self._check('allocate')
        with self._backend_call('allocate'):
            self._buffers = TransformBuffers(self.geometry, self._empty_bytes)
        self.state = AdapterState.ALLOCATED

    def init_forward(self):
        self._check('init_forward')
        with self._backend_call('init_forward'):
            self._activate(Direction.FORWARD)
        self.state = AdapterState.FORWARD_PLANNED

    def upload(self, host: np.ndarray):
        self._check('upload')
        host = self._host_view(host, 'upload')
        with self._backend_call('upload'):
            self._copy_in(host)
        self.state = AdapterState.UPLOADED

    def execute_forward(self):
        self._check('execute_forward')
        with self._backend_call('execute_forward'):
            self._execute(self._plan, Direction.FORWARD)
        self.state = AdapterState.FORWARD_EXECUTED

    def init_inverse(self):
        self._check('init_inverse')
        if self.requires_inverse_plan:
            with self._backend_call('init_inverse'):
                self._activate(Direction.INVERSE)
        self.state = AdapterState.INVERSE_PLANNED

    def execute_inverse(self):
        self._check('execute_inverse')
        if self.state is AdapterState.FORWARD_EXECUTED and self.requires_inverse_plan:
            raise LifecycleError(f"{self.describe()}: init_inverse required before execute_inverse")
        with self._backend_call('execute_inverse'):
            self._execute(self._plan, Direction.INVERSE)
        self.state = AdapterState.INVERSE_EXECUTED

    def download(self, host: np.ndarray) -> np.ndarray:
        self._check('download')
        view = self._host_view(host, 'download')
        with self._backend_call('download'):
            self._copy_out(view)
        self.state = AdapterState.DOWNLOADED
        return host

    def destroy(self):
        """Release plans and buffers. Safe in any state, idempotent."""
        if self.state is AdapterState.DESTROYED:
            return
        buffers, self._buffers = self._buffers, None
        self.state = AdapterState.DESTROYED
        with self._backend_call('destroy'):
            self._release_current_plan()
            if buffers is not None:
                self._free_buffers(buffers)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.destroy()
        return False

    # --- helpers ---

    def _check(self, operation: str):
        if self.state not in _ALLOWED_FROM[operation]:
            raise LifecycleError(f"{self.describe()}: {operation} not allowed in state {self.state.name}")

    @contextlib.contextmanager
    def _backend_call(self, operation: str):
        try:
            yield
        except BenchmarkError:
            raise
        except self.backend_errors as e:
            raise BackendError(operation, f"{self.describe()}: {type(e).__name__}: {e}") from e

    def _activate(self, direction: Direction):
        if self.plan_reuse is PlanReuse.REUSABLE and self._serves(direction):
            return
        self._release_current_plan()
        self._plan = self._build_plan(direction)
        self._plan_direction = direction

    def _serves(self, direction: Direction) -> bool:
        """True when the current plan handle can run the given direction."""
        if self._plan is None:
            return False
        return self._plan_direction is direction or not self.requires_inverse_plan

    def _release_current_plan(self):
        plan, self._plan, self._plan_direction = self._plan, None, None
        if plan is not None:
            self._release_plan(plan)

    def _host_view(self, host: np.ndarray, operation: str) -> np.ndarray:
        if not isinstance(host, np.ndarray):
            raise TypeError(f"{operation} expects a numpy array, got {type(host).__name__}")
        if host.nbytes != self.get_transfer_size() or host.dtype != self.host_dtype:
            raise ValueError(f"{operation} expects {self.get_transfer_size()} bytes of {self.host_dtype}, "
                             f"got {host.nbytes} bytes of {host.dtype}")
        if not host.flags.c_contiguous:
            raise ValueError(f"{operation} expects a C-contiguous host array")
        return host.reshape(self.host_shape)

    # --- backend hooks ---

    def _empty_bytes(self, nbytes: int):
        return np.empty(nbytes, dtype=np.uint8)

    def _estimate_plan_bytes(self) -> int:
        return 0

    def _build_plan(self, direction: Direction):
        raise NotImplementedError

    def _release_plan(self, plan):
        pass

    def _execute(self, plan, direction: Direction):
        raise NotImplementedError

    def _copy_in(self, host: np.ndarray):
        np.copyto(self._buffers.space, host)

    def _copy_out(self, host: np.ndarray):
        np.copyto(host, self._buffers.space)

    def _free_buffers(self, buffers: TransformBuffers):
        buffers.release()
