"""
rawusb - raw USB interrupt/bulk device access

Finds USB interfaces that expose one IN and one OUT endpoint of the same
kind (bulk or interrupt), opens and claims them, and performs synchronous,
timeout-bounded reads and writes.  HID and mass-storage class devices are
left to the OS.

Usage:
    # As a library
    import rawusb

    infos = rawusb.enumerate(vendor_id=0x1209)
    with rawusb.open(infos[0]) as dev:
        dev.set_read_timeout(500)
        dev.write(b'\\x01')
        reply = dev.read_bytes(64)
    for info in infos[1:]:
        info.release()

    # Command line
    rawusb list               # List raw interfaces
    rawusb probe 1209:0001    # Open, write, read
"""

from typing import List, Optional

from rawusb.__version__ import __version__
from rawusb.context import Context, get_or_init_context, shutdown
from rawusb.descriptors import (
    Class,
    DescriptorType,
    EndpointDirection,
    IsoSyncType,
    Protocol,
    Speed,
    TransferType,
    UsageType,
)
from rawusb.device import DeviceHandle
from rawusb.discovery import DeviceInfo
from rawusb.errors import (
    AmbiguousEndpointError,
    ClaimError,
    ClosedHandleError,
    ContextClosedError,
    DetachError,
    DiscoveryError,
    InitError,
    NotFoundError,
    OpenError,
    TransferError,
    UnsupportedTransferError,
    UsbError,
    UsbTimeoutError,
)


def enumerate(vendor_id: int = 0, product_id: int = 0) -> List[DeviceInfo]:
    """Enumerate raw interfaces on the process-wide context."""
    return get_or_init_context().enumerate(vendor_id, product_id)


def open(info: DeviceInfo, read_timeout: Optional[int] = None,
         write_timeout: Optional[int] = None) -> DeviceHandle:
    """Open *info* on the process-wide context."""
    return get_or_init_context().open(info, read_timeout, write_timeout)


__all__ = [
    # Version
    "__version__",
    # Core
    "Context",
    "DeviceHandle",
    "DeviceInfo",
    "enumerate",
    "get_or_init_context",
    "open",
    "shutdown",
    # Descriptor vocabulary
    "Class",
    "DescriptorType",
    "EndpointDirection",
    "IsoSyncType",
    "Protocol",
    "Speed",
    "TransferType",
    "UsageType",
    # Errors
    "AmbiguousEndpointError",
    "ClaimError",
    "ClosedHandleError",
    "ContextClosedError",
    "DetachError",
    "DiscoveryError",
    "InitError",
    "NotFoundError",
    "OpenError",
    "TransferError",
    "UnsupportedTransferError",
    "UsbError",
    "UsbTimeoutError",
]
