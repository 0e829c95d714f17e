"""
Native USB access layer.

``UsbBackend`` abstracts the native capability the core calls into so that:
  • Tests can inject a fake backend (no real hardware needed).
  • ``PyUsbBackend`` provides real USB via pyusb (libusb 1.0 backend).

Every backend failure surfaces as ``BackendError`` carrying a libusb-style
negative error code.  The core decides which codes are tolerated
(NOT_SUPPORTED / NOT_FOUND during driver detach) and which become errors.

Linux dependencies:
  • pyusb:  ``pip install pyusb``  (needs libusb1 — ``apt install libusb-1.0-0``)
"""

from __future__ import annotations

import array
import logging
from abc import ABC, abstractmethod
from typing import Any, Hashable, List

from .descriptors import (
    ConfigDescriptor,
    DeviceDescriptor,
    EndpointDescriptor,
    InterfaceDescriptor,
    Speed,
)

# Optional USB backend: graceful import
try:
    import usb.backend.libusb1
    import usb.core
    import usb.util
    PYUSB_AVAILABLE = True
except ImportError:
    PYUSB_AVAILABLE = False

log = logging.getLogger(__name__)


# =========================================================================
# libusb error codes (libusb.h, enum libusb_error)
# =========================================================================

LIBUSB_SUCCESS = 0
LIBUSB_ERROR_IO = -1
LIBUSB_ERROR_INVALID_PARAM = -2
LIBUSB_ERROR_ACCESS = -3
LIBUSB_ERROR_NO_DEVICE = -4
LIBUSB_ERROR_NOT_FOUND = -5
LIBUSB_ERROR_BUSY = -6
LIBUSB_ERROR_TIMEOUT = -7
LIBUSB_ERROR_OVERFLOW = -8
LIBUSB_ERROR_PIPE = -9
LIBUSB_ERROR_INTERRUPTED = -10
LIBUSB_ERROR_NO_MEM = -11
LIBUSB_ERROR_NOT_SUPPORTED = -12
LIBUSB_ERROR_OTHER = -99

_ERROR_NAMES = {
    LIBUSB_ERROR_IO: "input/output error",
    LIBUSB_ERROR_INVALID_PARAM: "invalid parameter",
    LIBUSB_ERROR_ACCESS: "access denied (insufficient permissions)",
    LIBUSB_ERROR_NO_DEVICE: "no such device (it may have been disconnected)",
    LIBUSB_ERROR_NOT_FOUND: "entity not found",
    LIBUSB_ERROR_BUSY: "resource busy",
    LIBUSB_ERROR_TIMEOUT: "operation timed out",
    LIBUSB_ERROR_OVERFLOW: "overflow",
    LIBUSB_ERROR_PIPE: "pipe error",
    LIBUSB_ERROR_INTERRUPTED: "system call interrupted",
    LIBUSB_ERROR_NO_MEM: "insufficient memory",
    LIBUSB_ERROR_NOT_SUPPORTED: "operation not supported or unimplemented on this platform",
    LIBUSB_ERROR_OTHER: "other error",
}


def strerror(code: int) -> str:
    return _ERROR_NAMES.get(code, f"unknown error {code}")


class BackendError(Exception):
    """A native USB call failed with libusb error *code*."""

    def __init__(self, code: int, message: str = ""):
        super().__init__(message or strerror(code))
        self.code = code

    @property
    def not_supported(self) -> bool:
        return self.code == LIBUSB_ERROR_NOT_SUPPORTED

    @property
    def not_found(self) -> bool:
        return self.code == LIBUSB_ERROR_NOT_FOUND

    @property
    def timed_out(self) -> bool:
        return self.code == LIBUSB_ERROR_TIMEOUT


# =========================================================================
# Abstract backend
# =========================================================================

class UsbBackend(ABC):
    """Native USB capability — mockable for testing.

    Device objects (``dev``) and handles are opaque to the core.  A device
    object stays valid for as long as the caller keeps a Python reference
    to it; the core tracks those references in a ``DeviceArena``.
    """

    @abstractmethod
    def init(self) -> None:
        """Create the native library context."""

    @abstractmethod
    def exit(self) -> None:
        """Tear down the native library context."""

    @abstractmethod
    def get_device_list(self) -> List[Any]:
        """Return every attached device object."""

    def free_device_list(self, devices: List[Any]) -> None:
        """Release the list returned by ``get_device_list()``.

        Device objects retained elsewhere stay valid.
        """
        devices.clear()

    @abstractmethod
    def device_key(self, dev: Any) -> Hashable:
        """Stable identifier for *dev* within one native context."""

    @abstractmethod
    def get_device_descriptor(self, dev: Any) -> DeviceDescriptor:
        """Device descriptor plus bus/address/port topology."""

    @abstractmethod
    def get_config_descriptor(self, dev: Any, index: int) -> ConfigDescriptor:
        """Full configuration tree for configuration *index*."""

    @abstractmethod
    def open(self, dev: Any) -> Any:
        """Open *dev* and return a native handle."""

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Close a native handle."""

    @abstractmethod
    def claim_interface(self, handle: Any, interface: int) -> None:
        """Claim *interface* for exclusive use."""

    @abstractmethod
    def release_interface(self, handle: Any, interface: int) -> None:
        """Release a previously claimed *interface*."""

    @abstractmethod
    def set_auto_detach(self, handle: Any, enable: bool) -> None:
        """Toggle automatic kernel driver detach on claim."""

    @abstractmethod
    def detach_kernel_driver(self, handle: Any, interface: int) -> None:
        """Detach the kernel driver bound to *interface*."""

    @abstractmethod
    def bulk_write(self, handle: Any, endpoint: int, interface: int,
                   data: bytes, timeout: int) -> int:
        """Synchronous bulk OUT transfer.  Returns bytes transferred."""

    @abstractmethod
    def bulk_read(self, handle: Any, endpoint: int, interface: int,
                  buffer: bytearray, timeout: int) -> int:
        """Synchronous bulk IN transfer into *buffer*.  Returns bytes read."""

    @abstractmethod
    def interrupt_write(self, handle: Any, endpoint: int, interface: int,
                        data: bytes, timeout: int) -> int:
        """Synchronous interrupt OUT transfer.  Returns bytes transferred."""

    @abstractmethod
    def interrupt_read(self, handle: Any, endpoint: int, interface: int,
                       buffer: bytearray, timeout: int) -> int:
        """Synchronous interrupt IN transfer into *buffer*.  Returns bytes read."""


# =========================================================================
# Real backend: PyUSB  (libusb 1.0)
# =========================================================================

def _translate(exc: Exception) -> BackendError:
    """Map a pyusb exception onto ``BackendError``."""
    if isinstance(exc, NotImplementedError):
        return BackendError(LIBUSB_ERROR_NOT_SUPPORTED, str(exc))
    timeout_cls = getattr(usb.core, 'USBTimeoutError', None)
    if timeout_cls is not None and isinstance(exc, timeout_cls):
        return BackendError(LIBUSB_ERROR_TIMEOUT, str(exc))
    code = getattr(exc, 'backend_error_code', None)
    if code is None:
        code = LIBUSB_ERROR_OTHER
    return BackendError(code, str(exc))


def _speed(value) -> Speed:
    try:
        return Speed(value or 0)
    except ValueError:
        # libusb reports SUPER_PLUS (5) and newer
        return Speed.SUPER


class PyUsbBackend(UsbBackend):
    """Real USB backend using pyusb's libusb 1.0 backend.

    Requires: ``pip install pyusb`` + ``apt install libusb-1.0-0``
    """

    def __init__(self, find_library=None):
        if not PYUSB_AVAILABLE:
            raise ImportError(
                "pyusb is not installed. Install with: pip install pyusb\n"
                "Also need libusb: apt install libusb-1.0-0 (Debian/Ubuntu) "
                "or dnf install libusb1 (Fedora)"
            )
        self._find_library = find_library
        self._backend = None

    def _native(self):
        if self._backend is None:
            raise BackendError(LIBUSB_ERROR_OTHER, "libusb context not initialized")
        return self._backend

    def _call(self, fn, *args):
        try:
            return fn(*args)
        except (usb.core.USBError, NotImplementedError) as exc:
            raise _translate(exc) from exc

    # -- Context ---------------------------------------------------------

    def init(self) -> None:
        backend = usb.backend.libusb1.get_backend(find_library=self._find_library)
        if backend is None:
            raise BackendError(LIBUSB_ERROR_OTHER, "libusb 1.0 backend not available")
        self._backend = backend
        log.debug("libusb 1.0 backend loaded")

    def exit(self) -> None:
        # get_backend() caches the libusb1 backend module-wide; libusb_exit()
        # only runs when that object is collected at interpreter shutdown
        self._backend = None

    # -- Enumeration -----------------------------------------------------

    def get_device_list(self) -> List[Any]:
        return self._call(lambda: list(self._native().enumerate_devices()))

    def device_key(self, dev: Any) -> Hashable:
        desc = self._call(self._native().get_device_descriptor, dev)
        return (desc.bus, desc.address)

    def get_device_descriptor(self, dev: Any) -> DeviceDescriptor:
        d = self._call(self._native().get_device_descriptor, dev)
        return DeviceDescriptor(
            vendor_id=d.idVendor,
            product_id=d.idProduct,
            device_class=d.bDeviceClass,
            device_subclass=d.bDeviceSubClass,
            device_protocol=d.bDeviceProtocol,
            num_configurations=d.bNumConfigurations,
            bus=getattr(d, 'bus', 0) or 0,
            address=getattr(d, 'address', 0) or 0,
            port_number=getattr(d, 'port_number', None),
            speed=_speed(getattr(d, 'speed', 0)),
        )

    def get_config_descriptor(self, dev: Any, index: int) -> ConfigDescriptor:
        native = self._native()
        cfg = self._call(native.get_configuration_descriptor, dev, index)

        interfaces = []
        for intf in range(cfg.bNumInterfaces):
            alts = []
            alt = 0
            while True:
                try:
                    desc = self._call(native.get_interface_descriptor, dev, intf, alt, index)
                except IndexError:
                    break  # past the last alternate setting
                endpoints = tuple(
                    self._endpoint(self._call(
                        native.get_endpoint_descriptor, dev, ep, intf, alt, index))
                    for ep in range(desc.bNumEndpoints)
                )
                alts.append(InterfaceDescriptor(
                    number=desc.bInterfaceNumber,
                    alternate=desc.bAlternateSetting,
                    interface_class=desc.bInterfaceClass,
                    interface_subclass=desc.bInterfaceSubClass,
                    interface_protocol=desc.bInterfaceProtocol,
                    endpoints=endpoints,
                ))
                alt += 1
            interfaces.append(tuple(alts))

        return ConfigDescriptor(
            value=cfg.bConfigurationValue,
            interfaces=tuple(interfaces),
            attributes=cfg.bmAttributes,
            max_power=cfg.bMaxPower,
        )

    @staticmethod
    def _endpoint(e) -> EndpointDescriptor:
        return EndpointDescriptor(
            address=e.bEndpointAddress,
            attributes=e.bmAttributes,
            max_packet_size=e.wMaxPacketSize,
            interval=e.bInterval,
        )

    # -- Handles ---------------------------------------------------------

    def open(self, dev: Any) -> Any:
        return self._call(self._native().open_device, dev)

    def close(self, handle: Any) -> None:
        self._call(self._native().close_device, handle)

    def claim_interface(self, handle: Any, interface: int) -> None:
        self._call(self._native().claim_interface, handle, interface)

    def release_interface(self, handle: Any, interface: int) -> None:
        self._call(self._native().release_interface, handle, interface)

    def set_auto_detach(self, handle: Any, enable: bool) -> None:
        # pyusb's IBackend has no auto-detach call; go to the library directly
        lib = getattr(self._native(), 'lib', None)
        fn = getattr(lib, 'libusb_set_auto_detach_kernel_driver', None)
        if fn is None:
            raise BackendError(LIBUSB_ERROR_NOT_SUPPORTED,
                               "libusb_set_auto_detach_kernel_driver unavailable")
        ret = fn(handle.handle, int(bool(enable)))
        if ret < 0:
            raise BackendError(ret)

    def detach_kernel_driver(self, handle: Any, interface: int) -> None:
        self._call(self._native().detach_kernel_driver, handle, interface)

    # -- Transfers -------------------------------------------------------

    def bulk_write(self, handle, endpoint, interface, data, timeout) -> int:
        return self._call(self._native().bulk_write, handle, endpoint, interface,
                          array.array('B', data), timeout)

    def bulk_read(self, handle, endpoint, interface, buffer, timeout) -> int:
        return self._read(self._native().bulk_read, handle, endpoint, interface,
                          buffer, timeout)

    def interrupt_write(self, handle, endpoint, interface, data, timeout) -> int:
        return self._call(self._native().intr_write, handle, endpoint, interface,
                          array.array('B', data), timeout)

    def interrupt_read(self, handle, endpoint, interface, buffer, timeout) -> int:
        return self._read(self._native().intr_read, handle, endpoint, interface,
                          buffer, timeout)

    def _read(self, fn, handle, endpoint, interface, buffer, timeout: int) -> int:
        scratch = usb.util.create_buffer(len(buffer))
        n = self._call(fn, handle, endpoint, interface, scratch, timeout)
        buffer[:n] = scratch[:n].tobytes()
        return n


def default_backend(find_library=None) -> UsbBackend:
    """The backend used when a ``Context`` is created without one."""
    return PyUsbBackend(find_library=find_library)
