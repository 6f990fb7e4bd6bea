"""
cuFFT backend through cupy.

cupy is imported lazily so the package works on hosts without CUDA; creating
a CupyContext without cupy or without a device is a fatal context error.

plans are created with cupy.cuda.cufft.PlanNd using cuFFT's advanced data
layout, which is how the padded rows of in-place real transforms are
described. half precision and buffers beyond the 32-bit index range go
through XtPlanNd, cuFFT's 64-bit plan API. the same plan handle serves both
directions of complex transforms. buffers come from cupy's memory pool,
which is drained whenever an adapter releases its buffers so free-memory
queries stay exact.
"""

import math
import logging
from typing import Optional

from ..config import get_config
from ..context import BackendContext, DeviceCapabilities
from ..errors import ContextError, InsufficientMemoryError
from ..layout import Precision
from ..timer import DeviceEventTimer
from .base import Direction, PlanReuse, TransformAdapter

logger = logging.getLogger("fftbench.backends.cufft")

# cufftType values, from cufft.h
CUFFT_R2C = 0x2a
CUFFT_C2R = 0x2c
CUFFT_C2C = 0x29
CUFFT_D2Z = 0x6a
CUFFT_Z2D = 0x6c
CUFFT_Z2Z = 0x69

_FFT_TYPES = {
    # precision: (forward real, inverse real, complex)
    Precision.SINGLE: (CUFFT_R2C, CUFFT_C2R, CUFFT_C2C),
    Precision.DOUBLE: (CUFFT_D2Z, CUFFT_Z2D, CUFFT_Z2Z),
}

_XT_DTYPES = {
    # precision: (real dtype char, complex dtype char); complex is also the execution type
    Precision.HALF: ('e', 'E'),
    Precision.SINGLE: ('f', 'F'),
    Precision.DOUBLE: ('d', 'D'),
}


def _import_cupy():
    try:
        import cupy
    except ImportError as e:
        raise ContextError("The cufft backend requires cupy (pip install fftbench[gpu])") from e
    return cupy


def device_supports_half_precision(major: int, minor: int) -> bool:
    """cuFFT half precision needs compute capability 5.3 or newer."""
    return (major == 5 and minor >= 3) or major >= 6


class CupyContext(BackendContext):
    """
    CUDA device context.

    Args:
        device: Device ordinal (default from config 'device.index'). Out of
            range ordinals fall back to device 0.
    """
    backend = 'cufft'

    def __init__(self, device: Optional[int] = None):
        super().__init__()
        self.device = device
        self._cupy = None
        self._properties = None

    def _create(self):
        cupy = _import_cupy()
        try:
            count = cupy.cuda.runtime.getDeviceCount()
        except cupy.cuda.runtime.CUDARuntimeError as e:
            raise ContextError(f"No CUDA capable device found: {e}") from e
        if count == 0:
            raise ContextError("No CUDA capable device found")

        device = get_config('device', 'index') if self.device is None else self.device
        if device < 0 or device >= count:
            logger.warning(f"Device {device} not available ({count} devices), using device 0")
            device = 0
        cupy.cuda.Device(device).use()
        self.device = device
        self._cupy = cupy
        self._properties = cupy.cuda.runtime.getDeviceProperties(device)

    def _destroy(self):
        cupy = self._cupy
        cupy.cuda.Device(self.device).synchronize()
        cupy.get_default_memory_pool().free_all_blocks()
        cupy.get_default_pinned_memory_pool().free_all_blocks()

    def _probe(self) -> DeviceCapabilities:
        props = self._properties
        free, total = self._cupy.cuda.runtime.memGetInfo()
        name = props['name']
        if isinstance(name, bytes):
            name = name.decode(errors='replace')
        description = (f'"{name}", "CC", {props["major"]}.{props["minor"]}'
                       f', "Multiprocessors", {props["multiProcessorCount"]}'
                       f', "Memory [MiB]", {total // 1048576}'
                       f', "MemoryFree [MiB]", {free // 1048576}'
                       f', "cufft", {self._cupy.cuda.cufft.getVersion()}')
        return DeviceCapabilities(
            supports_half_precision=device_supports_half_precision(props['major'], props['minor']),
            available_device_bytes=int(free),
            device_description=description,
        )


class CufftAdapter(TransformAdapter):
    """cuFFT adapter: all variants, half/single/double precision."""
    name = 'cufft'
    timer_class = DeviceEventTimer
    plan_reuse = PlanReuse.REUSABLE
    shares_plan_across_directions = True
    precisions = (Precision.HALF, Precision.SINGLE, Precision.DOUBLE)

    def __init__(self, context, extents, kind, placement, precision):
        super().__init__(context, extents, kind, placement, precision)
        self._cupy = _import_cupy()
        if self.geometry.use_wide_indexing:
            logger.debug(f"{self.describe()}: buffers exceed 32-bit range, planning with XtPlanNd")

    # --- plan construction ---

    def _layout(self, direction: Direction):
        """(inembed, idist, onembed, odist) of the plan for one direction."""
        g = self.geometry
        space_count = g.n
        if g.is_real and g.in_place:
            padded = g.extents[:-1] + (g.padded_last_extent,)
            space_embed, space_count = padded, math.prod(padded)
            spectrum_embed = g.extents_complex
        else:
            space_embed = spectrum_embed = None
        if direction is Direction.FORWARD:
            return space_embed, space_count, spectrum_embed, g.n_complex
        return spectrum_embed, g.n_complex, space_embed, space_count

    def _make_plan(self, direction: Direction):
        cufft = self._cupy.cuda.cufft
        g = self.geometry
        inembed, idist, onembed, odist = self._layout(direction)
        last_axis = g.ndim - 1
        last_size = g.extents[-1] if g.is_real else None

        if g.precision is Precision.HALF or g.use_wide_indexing:
            # cufftXtMakePlanMany takes 64-bit lengths and strides
            real, cplx = _XT_DTYPES[g.precision]
            if not g.is_real:
                idtype = odtype = cplx
            elif direction is Direction.FORWARD:
                idtype, odtype = real, cplx
            else:
                idtype, odtype = cplx, real
            return cufft.XtPlanNd(g.extents, inembed, 1, idist, idtype, onembed, 1, odist, odtype,
                                  1, cplx, order='C', last_axis=last_axis, last_size=last_size)

        forward_real, inverse_real, complex_type = _FFT_TYPES[g.precision]
        if not g.is_real:
            fft_type = complex_type
        elif direction is Direction.FORWARD:
            fft_type = forward_real
        else:
            fft_type = inverse_real
        return cufft.PlanNd(g.extents, inembed, 1, idist, onembed, 1, odist,
                            fft_type, 1, 'C', last_axis, last_size)

    def _estimate_plan_bytes(self) -> int:
        # one plan handle is alive at a time, so the larger work area counts
        sizes = []
        try:
            for direction in (Direction.FORWARD, Direction.INVERSE):
                plan = self._make_plan(direction)
                work_area = getattr(plan, 'work_area', None)
                sizes.append(work_area.mem.size if work_area is not None else 0)
                del plan
        except self._cupy.cuda.memory.OutOfMemoryError as e:
            raise InsufficientMemoryError(
                [f"Not enough device memory to plan {self.describe()}: {e}"]) from e
        finally:
            self._cupy.get_default_memory_pool().free_all_blocks()
        return max(sizes)

    def _build_plan(self, direction: Direction):
        return self._make_plan(direction)

    # --- buffers and execution ---

    def _empty_bytes(self, nbytes):
        return self._cupy.empty(nbytes, dtype=self._cupy.uint8)

    def _free_buffers(self, buffers):
        buffers.release()
        self._cupy.cuda.Device().synchronize()
        self._cupy.get_default_memory_pool().free_all_blocks()

    def _execute(self, plan, direction: Direction):
        cufft = self._cupy.cuda.cufft
        buffers = self._buffers
        # plans address raw allocations; typed views may be strided
        space_raw = buffers.primary
        spectrum_raw = buffers.primary if buffers.aliased else buffers.secondary
        if direction is Direction.FORWARD:
            plan.fft(space_raw, spectrum_raw, cufft.CUFFT_FORWARD)
        else:
            plan.fft(spectrum_raw, space_raw, cufft.CUFFT_INVERSE)

    def _copy(self, host, to_device: bool):
        runtime = self._cupy.cuda.runtime
        g = self.geometry
        device_ptr = self._buffers.primary.data
        if g.row_strided:
            width = g.extents[-1] * g.precision.real_size
            pitch = g.padded_last_extent * g.precision.real_size
            if to_device:
                runtime.memcpy2D(device_ptr.ptr, pitch, host.ctypes.data, width, width, g.rows,
                                 runtime.memcpyHostToDevice)
            else:
                runtime.memcpy2D(host.ctypes.data, width, device_ptr.ptr, pitch, width, g.rows,
                                 runtime.memcpyDeviceToHost)
        elif to_device:
            device_ptr.copy_from_host(host.ctypes.data, g.transfer_size)
        else:
            device_ptr.copy_to_host(host.ctypes.data, g.transfer_size)

    def _copy_in(self, host):
        self._copy(host, to_device=True)

    def _copy_out(self, host):
        self._copy(host, to_device=False)
