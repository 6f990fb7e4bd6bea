"""
Exception hierarchy for fftbench.

errors fall in three groups which the suite driver treats differently:

- ConfigurationError: a configuration cannot run on this backend/device
  (missing capability, not enough memory). The configuration is skipped.
- BackendError: a backend call failed after resources were committed.
  The configuration is recorded as failed and the run continues.
- FatalError: the run itself is broken (no device, invalid extents,
  lifecycle misuse). Propagates out of the driver.
"""

from typing import List, Optional


class BenchmarkError(Exception):
    """Base class for all fftbench errors."""


class ConfigurationError(BenchmarkError):
    """A configuration can not be run and is skipped."""


class CapabilityError(ConfigurationError):
    """The backend or device lacks a feature the configuration needs."""


class InsufficientMemoryError(ConfigurationError):
    """The capacity guard rejected a configuration."""

    def __init__(self, diagnostics: List[str]):
        self.diagnostics = list(diagnostics)
        super().__init__("; ".join(self.diagnostics))


class BackendError(BenchmarkError):
    """
    A backend library call failed.

    Args:
        operation: Lifecycle operation that was running (e.g. 'init_forward')
        detail: Backend specific message
    """

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class FatalError(BenchmarkError):
    """Unrecoverable error, terminates the benchmark run."""


class LayoutError(FatalError, ValueError):
    """Invalid extents handed to the layout calculator."""

    def __init__(self, message: str, extents: Optional[tuple] = None):
        self.extents = extents
        super().__init__(message)


class ContextError(FatalError):
    """Backend context could not be brought up or torn down."""


class LifecycleError(FatalError):
    """An adapter operation was called out of order."""
