"""
Memory admission checks run before any buffer is allocated.

the capacity guard compares what a configuration will need against what the
device and the host can offer, keeping a configurable headroom. a rejected
configuration is skipped instead of pushing the device into an out-of-memory
state that would take the whole benchmark run down with it.
"""

import os
import platform
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import psutil

from .config import get_config
from .errors import InsufficientMemoryError
from .layout import Geometry

logger = logging.getLogger("fftbench.capacity")


@dataclass(frozen=True)
class CapacityVerdict:
    """Outcome of a capacity check; ok when no diagnostics were produced."""
    device_required: int
    device_budget: int
    host_required: int
    host_budget: int
    diagnostics: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.diagnostics


def host_memory_bytes() -> int:
    """Physical memory of the host in bytes."""
    return psutil.virtual_memory().total


def system_info() -> Dict[str, Any]:
    """
    Get information about the host relevant for CPU backends.

    Returns:
        Dict with CPU counts, memory sizes and platform
    """
    vm = psutil.virtual_memory()
    return {
        'cpu_count': os.cpu_count() or 1,
        'physical_cores': psutil.cpu_count(logical=False) or 1,
        'total_memory_bytes': vm.total,
        'available_memory_bytes': vm.available,
        'platform': platform.system(),
        'processor': platform.processor(),
    }


def check_capacity(geometry: Geometry,
                   estimated_plan_bytes: int,
                   available_device_bytes: int,
                   available_host_bytes: int,
                   device_fraction: Optional[float] = None,
                   host_fraction: Optional[float] = None,
                   host_buffer_multiplier: Optional[int] = None) -> CapacityVerdict:
    """
    Decide whether a configuration fits into device and host memory.

    Args:
        geometry: Geometry of the configuration
        estimated_plan_bytes: Plan workspace reported by the backend
        available_device_bytes: Free memory on the device
        available_host_bytes: Physical memory of the host
        device_fraction: Usable share of device memory (default from config)
        host_fraction: Usable share of host memory (default from config)
        host_buffer_multiplier: Host buffers per transfer (default from config)

    Returns:
        CapacityVerdict, with one diagnostic per failing check
    """
    if device_fraction is None:
        device_fraction = get_config('capacity', 'device_fraction')
    if host_fraction is None:
        host_fraction = get_config('capacity', 'host_fraction')
    if host_buffer_multiplier is None:
        host_buffer_multiplier = get_config('capacity', 'host_buffer_multiplier')

    device_required = int(estimated_plan_bytes) + geometry.data_size + geometry.complex_buffer_size
    device_budget = int(device_fraction * available_device_bytes)
    host_required = int(host_buffer_multiplier) * geometry.transfer_size
    host_budget = int(host_fraction * available_host_bytes)

    diagnostics = []
    if device_required > device_budget:
        diagnostics.append(
            f"Not enough device memory for {geometry.describe()}: "
            f"{device_budget} < {device_required} (bytes, plan {int(estimated_plan_bytes)}"
            f" + data {geometry.data_size} + complex {geometry.complex_buffer_size})")
    if host_required > host_budget:
        diagnostics.append(
            f"Host data exceeds physical memory for {geometry.describe()}: "
            f"{host_budget} < {host_required} (bytes, {host_buffer_multiplier} x {geometry.transfer_size})")

    return CapacityVerdict(device_required, device_budget, host_required, host_budget, diagnostics)


def require_capacity(geometry: Geometry,
                     estimated_plan_bytes: int,
                     available_device_bytes: int,
                     available_host_bytes: int,
                     **kwargs) -> CapacityVerdict:
    """Like check_capacity(), but raise InsufficientMemoryError on rejection."""
    verdict = check_capacity(geometry, estimated_plan_bytes,
                             available_device_bytes, available_host_bytes, **kwargs)
    if not verdict.ok:
        raise InsufficientMemoryError(verdict.diagnostics)
    logger.debug(f"Capacity ok for {geometry.describe()}: device {verdict.device_required}/{verdict.device_budget}, "
                 f"host {verdict.host_required}/{verdict.host_budget} bytes")
    return verdict
