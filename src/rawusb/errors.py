"""Exception hierarchy for rawusb.

Every error raised by the library derives from ``UsbError``.  Native
failures are chained (``raise ... from exc``) so the original backend
error stays reachable through ``__cause__``.
"""

from __future__ import annotations

from typing import List, Optional


class UsbError(Exception):
    """Base class for all rawusb errors."""


class InitError(UsbError):
    """The native USB context could not be initialized."""


class ContextClosedError(UsbError):
    """The owning context has begun (or finished) teardown."""


class DiscoveryError(UsbError):
    """Device listing or descriptor retrieval failed mid-scan.

    ``partial`` holds the records matched before the failure.  Each still
    carries a retained reference; the caller either uses them or calls
    ``release()`` on every one.
    """

    def __init__(self, message: str, partial: Optional[List] = None):
        super().__init__(message)
        self.partial = list(partial or [])


class AmbiguousEndpointError(DiscoveryError):
    """An alt-setting exposes more than one candidate endpoint per direction."""


class NotFoundError(UsbError):
    """A device could not be re-resolved by port and interface."""


class OpenError(UsbError):
    """The native device handle could not be opened."""


class DetachError(UsbError):
    """A kernel driver could not be detached from the target interface."""


class ClaimError(UsbError):
    """The target interface could not be claimed."""


class ClosedHandleError(UsbError):
    """A transfer or setting was attempted on a closed handle."""


class UnsupportedTransferError(UsbError):
    """The endpoint's transfer type is neither bulk nor interrupt."""


class TransferError(UsbError):
    """A native transfer failed for a reason other than a timeout."""

    def __init__(self, message: str, reason: str = "", code: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.code = code


class UsbTimeoutError(UsbError, TimeoutError):
    """A transfer exceeded its configured timeout.  Safe to retry."""

    def __init__(self, message: str, transferred: int = 0):
        super().__init__(message)
        self.transferred = transferred
