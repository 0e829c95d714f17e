"""
Open device handles and transfer dispatch.

A ``DeviceHandle`` wraps a claimed interface produced by ``Context.open()``.
Every operation on a handle (read, write, close, timeout setters) runs
under the handle's own lock, so one transfer is in flight per handle while
different handles transfer concurrently.

Reads and writes dispatch on the transfer type resolved at discovery time:

    BULK       -> backend.bulk_read / bulk_write
    INTERRUPT  -> backend.interrupt_read / interrupt_write
    otherwise  -> UnsupportedTransferError (no native call)

Timeouts are in milliseconds; 0 blocks until the transfer completes.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Hashable, Optional

from .backend import BackendError
from .descriptors import TransferType
from .discovery import DeviceInfo
from .errors import (
    ClosedHandleError,
    TransferError,
    UnsupportedTransferError,
    UsbError,
    UsbTimeoutError,
)

if TYPE_CHECKING:
    from .context import Context

log = logging.getLogger(__name__)


class DeviceHandle:
    """A live, claimed USB interface.

    Use as a context manager to guarantee ``close()``::

        with ctx.open(info) as dev:
            dev.write(b'\\x01\\x02')
            data = dev.read_bytes(64)
    """

    def __init__(
        self,
        context: Context,
        info: DeviceInfo,
        handle: Any,
        device_key: Hashable,
        read_timeout: int = 0,
        write_timeout: int = 0,
    ):
        self._context = context
        self._backend = context.backend
        self.info = info
        self._handle = handle
        self._device_key = device_key
        self._lock = threading.Lock()
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout

    # -- State -------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._handle is None

    @property
    def read_timeout(self) -> int:
        return self._read_timeout

    @property
    def write_timeout(self) -> int:
        return self._write_timeout

    def set_read_timeout(self, ms: int) -> None:
        """Timeout for subsequent reads.  In-flight reads keep their own."""
        if ms < 0:
            raise ValueError(f"timeout must be >= 0, got {ms}")
        with self._lock:
            self._read_timeout = ms

    def set_write_timeout(self, ms: int) -> None:
        """Timeout for subsequent writes.  In-flight writes keep their own."""
        if ms < 0:
            raise ValueError(f"timeout must be >= 0, got {ms}")
        with self._lock:
            self._write_timeout = ms

    # -- Lifecycle ---------------------------------------------------------

    def close(self) -> None:
        """Release the interface, close the handle and drop the device reference.

        Idempotent: closing an already-closed handle does nothing.
        """
        with self._lock:
            if self._handle is None:
                return
            handle, self._handle = self._handle, None
            try:
                try:
                    self._backend.release_interface(handle, self.info.interface)
                finally:
                    self._backend.close(handle)
            except BackendError as exc:
                raise UsbError(f"failed to close {self.info.path}: {exc}") from exc
            finally:
                self._context.arena.release(self._device_key)
                self._context._discard(self)
                log.info("Closed %s (interface %d)", self.info.path, self.info.interface)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -- Transfers ---------------------------------------------------------

    def write(self, data) -> int:
        """Send *data* to the OUT endpoint.  Returns bytes written.

        Raises:
            ClosedHandleError: handle already closed.
            UnsupportedTransferError: endpoint is neither bulk nor interrupt.
            UsbTimeoutError: the write timeout expired.
            TransferError: any other native failure.
        """
        with self._lock:
            handle = self._require_open()
            kind = self.info.writer_transfer_type
            if kind == TransferType.BULK:
                fn = self._backend.bulk_write
            elif kind == TransferType.INTERRUPT:
                fn = self._backend.interrupt_write
            else:
                raise UnsupportedTransferError(
                    f"device transfer type unsupported: {kind}")

            timeout = self._write_timeout
            log.debug("write %d bytes to 0x%02x (%s, timeout %d ms)",
                      len(data), self.info.writer, kind, timeout)
            try:
                return fn(handle, self.info.writer, self.info.interface, data, timeout)
            except BackendError as exc:
                raise self._transfer_error("write to", exc) from exc

    def read(self, buffer) -> int:
        """Fill *buffer* (a writable bytes-like object) from the IN endpoint.

        Returns the number of bytes read.  Raises like ``write()``.
        """
        with self._lock:
            handle = self._require_open()
            kind = self.info.reader_transfer_type
            if kind == TransferType.BULK:
                fn = self._backend.bulk_read
            elif kind == TransferType.INTERRUPT:
                fn = self._backend.interrupt_read
            else:
                raise UnsupportedTransferError(
                    f"device transfer type unsupported: {kind}")

            timeout = self._read_timeout
            log.debug("read up to %d bytes from 0x%02x (%s, timeout %d ms)",
                      len(buffer), self.info.reader, kind, timeout)
            try:
                return fn(handle, self.info.reader, self.info.interface, buffer, timeout)
            except BackendError as exc:
                raise self._transfer_error("read from", exc) from exc

    def read_bytes(self, length: int) -> bytes:
        """Read up to *length* bytes and return them."""
        buffer = bytearray(length)
        n = self.read(buffer)
        return bytes(buffer[:n])

    def _require_open(self) -> Any:
        if self._handle is None:
            raise ClosedHandleError(f"{self.info.path} is closed")
        return self._handle

    def _transfer_error(self, verb: str, exc: BackendError) -> UsbError:
        if exc.timed_out:
            return UsbTimeoutError(f"failed to {verb} device {self.info.path}: {exc}")
        return TransferError(f"failed to {verb} device {self.info.path}: {exc}",
                             reason=str(exc), code=exc.code)

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<DeviceHandle {self.info.path} interface={self.info.interface} {state}>"
