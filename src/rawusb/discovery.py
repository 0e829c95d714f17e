"""
Device discovery and interface matching.

Walks the backend's device list, filters by vendor/product, and descends
each device's configuration -> interface -> alt-setting -> endpoint tree.
One ``DeviceInfo`` is emitted per alt-setting exposing a usable IN and a
usable OUT endpoint of the same transfer type (bulk+bulk or
interrupt+interrupt).

HID and mass-storage devices and interfaces are skipped: the OS HID and
usb-storage drivers own them.

Each emitted record holds one retained arena reference on its native
device.  Callers either open the record (the reference moves to the
handle) or call ``DeviceInfo.release()``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Hashable, List, Optional, Tuple

from .arena import DeviceArena
from .backend import BackendError, UsbBackend
from .descriptors import (
    Class,
    DeviceDescriptor,
    EndpointDescriptor,
    EndpointDirection,
    InterfaceDescriptor,
    TransferType,
)
from .errors import AmbiguousEndpointError, DiscoveryError

log = logging.getLogger(__name__)

# Guards the read-and-clear of DeviceInfo._device_key
_ref_lock = threading.Lock()

# Endpoint kinds usable for raw I/O
RAW_TRANSFER_TYPES = (TransferType.BULK, TransferType.INTERRUPT)

# Device and interface classes left to kernel drivers
SKIPPED_CLASSES = (Class.HID, Class.MASS_STORAGE)


@dataclass
class DeviceInfo:
    """A matched raw interface: identity, classification and endpoints."""
    path: str
    vendor_id: int
    product_id: int
    device_class: int = 0
    device_subclass: int = 0
    device_protocol: int = 0
    interface: int = 0
    interface_alternate: int = 0
    interface_class: int = 0
    interface_subclass: int = 0
    interface_protocol: int = 0
    port: int = 0
    reader: int = 0            # IN endpoint address
    reader_transfer_type: TransferType = TransferType.BULK
    writer: int = 0            # OUT endpoint address
    writer_transfer_type: TransferType = TransferType.BULK

    _arena: Optional[DeviceArena] = field(default=None, repr=False, compare=False)
    _device_key: Optional[Hashable] = field(default=None, repr=False, compare=False)

    @property
    def retained(self) -> bool:
        """Whether this record still holds its native device reference."""
        return self._device_key is not None

    def release(self) -> None:
        """Drop the retained device reference.  Safe to call more than once."""
        with _ref_lock:
            key, self._device_key = self._device_key, None
        if key is not None and self._arena is not None:
            self._arena.release(key)

    def _bind(self, arena: DeviceArena, key: Hashable) -> None:
        with _ref_lock:
            if self._device_key is not None:
                raise RuntimeError(f"{self.path} already holds a device reference")
            self._arena = arena
            self._device_key = key

    def _take(self) -> Hashable:
        """Hand the retained reference over to a new owner."""
        with _ref_lock:
            key, self._device_key = self._device_key, None
        if key is None:
            raise RuntimeError(f"{self.path} holds no device reference")
        return key

    def __str__(self) -> str:
        return (f"{self.path} [{self.vendor_id:04x}:{self.product_id:04x}] "
                f"interface {self.interface} alt {self.interface_alternate} "
                f"(IN 0x{self.reader:02x} {self.reader_transfer_type}, "
                f"OUT 0x{self.writer:02x} {self.writer_transfer_type})")


def make_path(vendor_id: int, product_id: int, port: int) -> str:
    """Human-stable device path: ``vvvv:pppp:NN`` (NN = port number)."""
    return f"{vendor_id:04x}:{product_id:04x}:{port:02d}"


def _matches_filter(desc: DeviceDescriptor, vendor_id: int, product_id: int) -> bool:
    if vendor_id and desc.vendor_id != vendor_id:
        return False
    if product_id and desc.product_id != product_id:
        return False
    return True


def match_endpoints(
    alt: InterfaceDescriptor,
    strict: bool = False,
) -> Optional[Tuple[EndpointDescriptor, EndpointDescriptor]]:
    """Pick the ``(IN, OUT)`` endpoint pair of an alt-setting.

    Only bulk and interrupt endpoints count.  When several endpoints share
    a direction the last one scanned wins, unless *strict* is set, in which
    case ``AmbiguousEndpointError`` is raised.  Returns None when either
    direction is missing or the two kinds differ.
    """
    reader: Optional[EndpointDescriptor] = None
    writer: Optional[EndpointDescriptor] = None

    for ep in alt.endpoints:
        if ep.transfer_type not in RAW_TRANSFER_TYPES:
            continue
        if ep.direction == EndpointDirection.IN:
            if reader is not None and strict:
                raise AmbiguousEndpointError(
                    f"interface {alt.number} alt {alt.alternate}: multiple IN "
                    f"endpoints (0x{reader.address:02x}, 0x{ep.address:02x})")
            reader = ep
        else:
            if writer is not None and strict:
                raise AmbiguousEndpointError(
                    f"interface {alt.number} alt {alt.alternate}: multiple OUT "
                    f"endpoints (0x{writer.address:02x}, 0x{ep.address:02x})")
            writer = ep

    if reader is None or writer is None:
        return None
    if reader.transfer_type != writer.transfer_type:
        log.debug("interface %d alt %d: IN is %s but OUT is %s, skipping",
                  alt.number, alt.alternate, reader.transfer_type, writer.transfer_type)
        return None
    return reader, writer


def enumerate_devices(
    backend: UsbBackend,
    arena: DeviceArena,
    vendor_id: int = 0,
    product_id: int = 0,
    strict_endpoints: bool = False,
) -> List[DeviceInfo]:
    """Scan every attached device for raw IN/OUT interface pairs.

    A zero *vendor_id* / *product_id* matches anything.  Each returned
    record holds one arena reference.

    Raises:
        DiscoveryError: listing or descriptor retrieval failed.  Records
            matched so far are attached as ``partial``.
    """
    try:
        devices = backend.get_device_list()
    except BackendError as exc:
        raise DiscoveryError(f"failed to list USB devices: {exc}") from exc

    log.debug("Scanning %d USB devices (filter %04x:%04x)",
              len(devices), vendor_id, product_id)

    infos: List[DeviceInfo] = []
    try:
        for devnum, dev in enumerate(devices):
            try:
                _scan_device(backend, arena, devnum, dev, vendor_id, product_id,
                             strict_endpoints, infos)
            except AmbiguousEndpointError as exc:
                exc.partial = list(infos)
                raise
    finally:
        backend.free_device_list(devices)

    log.debug("Matched %d raw interface(s)", len(infos))
    return infos


def _scan_device(
    backend: UsbBackend,
    arena: DeviceArena,
    devnum: int,
    dev: Any,
    vendor_id: int,
    product_id: int,
    strict: bool,
    infos: List[DeviceInfo],
) -> None:
    """Append a record for every matching alt-setting of *dev* to *infos*."""
    try:
        desc = backend.get_device_descriptor(dev)
    except BackendError as exc:
        raise DiscoveryError(
            f"failed to get device {devnum} descriptor: {exc}", infos) from exc

    if desc.device_class in SKIPPED_CLASSES:
        return
    if not _matches_filter(desc, vendor_id, product_id):
        return

    port = desc.port_number or 0
    for cfgnum in range(desc.num_configurations):
        try:
            cfg = backend.get_config_descriptor(dev, cfgnum)
        except BackendError as exc:
            raise DiscoveryError(
                f"failed to get device {devnum} config {cfgnum}: {exc}", infos) from exc

        for ifacenum, alt in cfg.alt_settings():
            if alt.interface_class in SKIPPED_CLASSES:
                continue
            pair = match_endpoints(alt, strict)
            if pair is None:
                continue
            reader, writer = pair

            try:
                key = backend.device_key(dev)
            except BackendError as exc:
                raise DiscoveryError(
                    f"failed to identify device {devnum}: {exc}", infos) from exc

            info = DeviceInfo(
                path=make_path(desc.vendor_id, desc.product_id, port),
                vendor_id=desc.vendor_id,
                product_id=desc.product_id,
                device_class=desc.device_class,
                device_subclass=desc.device_subclass,
                device_protocol=desc.device_protocol,
                interface=ifacenum,
                interface_alternate=alt.alternate,
                interface_class=alt.interface_class,
                interface_subclass=alt.interface_subclass,
                interface_protocol=alt.interface_protocol,
                port=port,
                reader=reader.address,
                reader_transfer_type=reader.transfer_type,
                writer=writer.address,
                writer_transfer_type=writer.transfer_type,
            )
            info._bind(arena, arena.retain(key, dev))
            log.debug("Matched %s", info)
            infos.append(info)
