"""
Process-wide USB context: lazy native init, device open and teardown.

The native library context is created on the first ``enumerate()`` or
``open()`` call and lives until ``close()``.  ``enumerate()`` and
``open()`` are serialized against each other by one context lock; handle
I/O is not, each handle carries its own lock.

Teardown order is fixed: refuse new opens, close every open handle
(waiting for in-flight transfers), then exit the native context.

Usage:
    from rawusb import get_or_init_context

    ctx = get_or_init_context()
    infos = ctx.enumerate(vendor_id=0x1209)
    with ctx.open(infos[0]) as dev:
        dev.write(b'ping')
    for info in infos[1:]:
        info.release()
"""

from __future__ import annotations

import logging
import threading
from typing import FrozenSet, List, Optional, Set

from . import conf
from .arena import DeviceArena
from .backend import BackendError, UsbBackend, default_backend
from .device import DeviceHandle
from .discovery import DeviceInfo, enumerate_devices
from .errors import (
    ClaimError,
    ContextClosedError,
    DetachError,
    DiscoveryError,
    InitError,
    NotFoundError,
    OpenError,
    UsbError,
)

log = logging.getLogger(__name__)


class Context:
    """Coordination point for discovery, open handles and teardown."""

    def __init__(self, backend: Optional[UsbBackend] = None,
                 settings: Optional[conf.Settings] = None):
        self._backend = backend
        self.settings = settings if settings is not None else conf.settings
        self.arena = DeviceArena()

        self._init_lock = threading.Lock()
        self._initialized = False
        self._lock = threading.RLock()
        self._handles_lock = threading.Lock()
        self._handles: Set[DeviceHandle] = set()
        self._closing = threading.Event()

    # -- State -------------------------------------------------------------

    @property
    def backend(self) -> Optional[UsbBackend]:
        return self._backend

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def closed(self) -> bool:
        return self._closing.is_set()

    @property
    def handles(self) -> FrozenSet[DeviceHandle]:
        """Snapshot of currently open handles."""
        with self._handles_lock:
            return frozenset(self._handles)

    def _check_open(self) -> None:
        if self._closing.is_set():
            raise ContextClosedError("USB context has been torn down")

    def _ensure_initialized(self) -> None:
        """Create the native context once.  A failed init is retried on next use."""
        with self._init_lock:
            if self._initialized:
                return
            if self._backend is None:
                try:
                    self._backend = default_backend()
                except ImportError as exc:
                    raise InitError(f"failed to initialize libusb: {exc}") from exc
            try:
                self._backend.init()
            except BackendError as exc:
                raise InitError(f"failed to initialize libusb: {exc}") from exc
            self._initialized = True
            log.debug("USB context initialized (%s)", type(self._backend).__name__)

    def _discard(self, handle: DeviceHandle) -> None:
        with self._handles_lock:
            self._handles.discard(handle)

    # -- Discovery ---------------------------------------------------------

    def enumerate(self, vendor_id: int = 0, product_id: int = 0) -> List[DeviceInfo]:
        """List raw bulk/interrupt interfaces, optionally filtered by VID/PID.

        Each returned record holds a device reference: open it or call
        ``release()`` on it.
        """
        with self._lock:
            self._check_open()
            self._ensure_initialized()
            return enumerate_devices(
                self._backend, self.arena, vendor_id, product_id,
                strict_endpoints=self.settings.strict_endpoints,
            )

    # -- Open --------------------------------------------------------------

    def open(self, info: DeviceInfo, read_timeout: Optional[int] = None,
             write_timeout: Optional[int] = None) -> DeviceHandle:
        """Open and claim the interface described by *info*.

        The device is re-resolved by a fresh scan matching port number and
        interface index.  On success the caller's record reference is
        consumed; on failure the caller still owns it.

        Raises:
            NotFoundError: no rescanned device matches port and interface.
            OpenError: the native open failed.
            DetachError: a kernel driver could not be detached.
            ClaimError: the interface could not be claimed.
            ValueError: a negative timeout was given.
        """
        for name, ms in (('read_timeout', read_timeout), ('write_timeout', write_timeout)):
            if ms is not None and ms < 0:
                raise ValueError(f"{name} must be >= 0, got {ms}")

        with self._lock:
            self._check_open()
            self._ensure_initialized()

            try:
                matches = enumerate_devices(
                    self._backend, self.arena, info.vendor_id, info.product_id,
                    strict_endpoints=self.settings.strict_endpoints,
                )
            except DiscoveryError as exc:
                for match in exc.partial:
                    match.release()
                raise

            # Keep the matching device reference, release anything else
            selected: Optional[DeviceInfo] = None
            for match in matches:
                if selected is None and match.port == info.port and match.interface == info.interface:
                    selected = match
                else:
                    match.release()

            if selected is None:
                raise NotFoundError(f"failed to open device {info.path}: not found")

            key = selected._take()
            device = self.arena.get(key)
            try:
                native = self._backend.open(device)
            except BackendError as exc:
                self.arena.release(key)
                raise OpenError(f"failed to open device {info.path}: {exc}") from exc

            try:
                self._detach_kernel_drivers(native, selected)
                try:
                    self._backend.claim_interface(native, selected.interface)
                except BackendError as exc:
                    raise ClaimError(
                        f"failed to claim interface {selected.interface} "
                        f"of {info.path}: {exc}") from exc
            except UsbError:
                try:
                    self._backend.close(native)
                except BackendError as close_exc:
                    log.warning("Failed to close %s after open error: %s",
                                info.path, close_exc)
                finally:
                    self.arena.release(key)
                raise

            handle = DeviceHandle(
                self, selected, native, key,
                read_timeout=self.settings.read_timeout_ms if read_timeout is None else read_timeout,
                write_timeout=self.settings.write_timeout_ms if write_timeout is None else write_timeout,
            )
            with self._handles_lock:
                self._handles.add(handle)
            info.release()

            log.info("Opened %s", selected)
            return handle

    def _detach_kernel_drivers(self, native, info: DeviceInfo) -> None:
        try:
            self._backend.set_auto_detach(native, True)
        except BackendError as exc:
            if not exc.not_supported:
                if self.settings.auto_detach_policy == 'error':
                    raise DetachError(
                        f"failed to enable kernel driver auto-detach on "
                        f"{info.path}: {exc}") from exc
                log.warning("Failed to enable kernel driver auto-detach on %s: %s",
                            info.path, exc)

        try:
            self._backend.detach_kernel_driver(native, info.interface)
        except BackendError as exc:
            # NOT_SUPPORTED on non-Linux, NOT_FOUND when no driver is bound
            if not (exc.not_supported or exc.not_found):
                raise DetachError(
                    f"failed to detach kernel driver from interface "
                    f"{info.interface} of {info.path}: {exc}") from exc
            log.debug("No kernel driver detached from %s: %s", info.path, exc)

    # -- Teardown ----------------------------------------------------------

    def close(self) -> None:
        """Close every open handle, then tear down the native context.

        New ``enumerate()``/``open()`` calls fail with ``ContextClosedError``
        from the moment teardown starts.  Idempotent.
        """
        with self._lock:
            if self._closing.is_set():
                return
            self._closing.set()

            first_error: Optional[UsbError] = None
            for handle in self.handles:
                try:
                    handle.close()
                except UsbError as exc:
                    log.error("Error closing %r during teardown: %s", handle, exc)
                    if first_error is None:
                        first_error = exc

            with self._init_lock:
                if self._initialized:
                    self._backend.exit()
                    self._initialized = False
            log.info("USB context torn down (%d device reference(s) outstanding)",
                     self.arena.outstanding())

            if first_error is not None:
                raise first_error

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


# =========================================================================
# Process-wide default context
# =========================================================================

_default_context: Optional[Context] = None
_default_lock = threading.Lock()


def get_or_init_context() -> Context:
    """The process-wide context, created on first use."""
    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = Context()
        return _default_context


def shutdown() -> None:
    """Tear down the process-wide context if one exists."""
    global _default_context
    with _default_lock:
        ctx, _default_context = _default_context, None
    if ctx is not None:
        ctx.close()

