"""
Backend contexts: process-wide bring-up and teardown of a backend.

a context is created once before the suite runs and destroyed once after it.
adapters receive it at construction and only read from it.
"""

import logging
from dataclasses import dataclass

from . import capacity
from .errors import ContextError

logger = logging.getLogger("fftbench.context")


@dataclass(frozen=True)
class DeviceCapabilities:
    supports_half_precision: bool
    available_device_bytes: int
    device_description: str


class BackendContext:
    """
    Base class of backend contexts.

    Subclasses implement _create(), _destroy() and _probe().
    """
    backend = None

    def __init__(self):
        self._created = False

    @property
    def created(self) -> bool:
        return self._created

    def create(self):
        """Bring the backend up. Calling it twice is a no-op."""
        if self._created:
            return
        self._create()
        self._created = True
        logger.info(f"Created {self.backend} context: {self._probe().device_description}")

    def destroy(self):
        """Tear the backend down. Calling it twice is a no-op."""
        if not self._created:
            return
        try:
            self._destroy()
        finally:
            self._created = False
        logger.info(f"Destroyed {self.backend} context")

    def capabilities(self) -> DeviceCapabilities:
        if not self._created:
            raise ContextError(f"{self.backend} context used before create()")
        return self._probe()

    def host_memory_bytes(self) -> int:
        return capacity.host_memory_bytes()

    def __enter__(self):
        self.create()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.destroy()
        return False

    def _create(self):
        pass

    def _destroy(self):
        pass

    def _probe(self) -> DeviceCapabilities:
        raise NotImplementedError


class HostContext(BackendContext):
    """Context of CPU backends; the 'device' is host memory."""

    def __init__(self, backend: str = 'numpy'):
        super().__init__()
        self.backend = backend

    def _probe(self) -> DeviceCapabilities:
        info = capacity.system_info()
        description = (f"{info['processor'] or info['platform']}, {info['physical_cores']} cores, "
                       f"{info['cpu_count']} threads, {info['total_memory_bytes'] // 1048576} MiB")
        return DeviceCapabilities(
            supports_half_precision=False,
            available_device_bytes=info['available_memory_bytes'],
            device_description=description,
        )
