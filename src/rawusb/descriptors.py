"""
USB descriptor vocabulary and value types.

Enumerations for the protocol constants (class codes, descriptor types,
endpoint direction, transfer type, iso sync type, usage type, speed) plus
frozen dataclasses describing the device -> configuration -> interface ->
alt-setting -> endpoint tree as returned by a backend.

Every enum renders a short canonical name via ``str()``.  Use
``display()`` for raw integers that may not map to a known member:
unknown values fall back to their decimal representation.

Bit layout (USB 2.0 spec, chapter 9.6.6)::

    bEndpointAddress  bit 7     direction (1 = IN)
                      bits 0-3  endpoint number
    bmAttributes      bits 0-1  transfer type
                      bits 2-3  iso synchronization type
                      bits 4-5  usage type
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, Optional, Tuple, Type

# =========================================================================
# Bit masks
# =========================================================================

ENDPOINT_NUM_MASK = 0x0F
ENDPOINT_DIRECTION_MASK = 0x80
TRANSFER_TYPE_MASK = 0x03
ISO_SYNC_TYPE_MASK = 0x0C
USAGE_TYPE_MASK = 0x30

SELF_POWERED_MASK = 0x40
REMOTE_WAKEUP_MASK = 0x20

# Control request type bit fields, e.g. CONTROL_OUT | CONTROL_VENDOR | CONTROL_DEVICE.
# "Standard" and "Reserved" request types are deliberately not listed.
CONTROL_IN = 0x80
CONTROL_OUT = 0x00
CONTROL_CLASS = 0x20
CONTROL_VENDOR = 0x40
CONTROL_DEVICE = 0x00
CONTROL_INTERFACE = 0x01
CONTROL_ENDPOINT = 0x02
CONTROL_OTHER = 0x03


def display(enum_cls: Type[IntEnum], value: int) -> str:
    """Display name for *value* in *enum_cls*, or its decimal form if unmapped."""
    try:
        return str(enum_cls(value))
    except ValueError:
        return str(int(value))


# =========================================================================
# Enumerations
# =========================================================================

class _Named(IntEnum):
    """IntEnum whose format() follows its str(), so f-strings show names."""

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)


class Class(_Named):
    """USB-IF class code (https://www.usb.org/defined-class-codes)."""
    PER_INTERFACE = 0x00
    AUDIO = 0x01
    COMM = 0x02
    HID = 0x03
    PHYSICAL = 0x05
    IMAGE = 0x06
    PTP = 0x06  # legacy name for IMAGE
    PRINTER = 0x07
    MASS_STORAGE = 0x08
    HUB = 0x09
    DATA = 0x0A
    SMART_CARD = 0x0B
    CONTENT_SECURITY = 0x0D
    VIDEO = 0x0E
    PERSONAL_HEALTHCARE = 0x0F
    AUDIO_VIDEO = 0x10
    BILLBOARD = 0x11
    USB_TYPE_C_BRIDGE = 0x12
    DIAGNOSTIC_DEVICE = 0xDC
    WIRELESS = 0xE0
    MISCELLANEOUS = 0xEF
    APPLICATION = 0xFE
    VENDOR_SPEC = 0xFF

    def __str__(self) -> str:
        return _CLASS_NAMES.get(self, str(int(self)))


_CLASS_NAMES = {
    Class.PER_INTERFACE: "per-interface",
    Class.AUDIO: "audio",
    Class.COMM: "communications",
    Class.HID: "human interface device",
    Class.PHYSICAL: "physical",
    Class.IMAGE: "image",
    Class.PRINTER: "printer",
    Class.MASS_STORAGE: "mass storage",
    Class.HUB: "hub",
    Class.DATA: "data",
    Class.SMART_CARD: "smart card",
    Class.CONTENT_SECURITY: "content security",
    Class.VIDEO: "video",
    Class.PERSONAL_HEALTHCARE: "personal healthcare",
    Class.AUDIO_VIDEO: "audio/video",
    Class.BILLBOARD: "billboard",
    Class.USB_TYPE_C_BRIDGE: "USB type-C bridge",
    Class.DIAGNOSTIC_DEVICE: "diagnostic device",
    Class.WIRELESS: "wireless",
    Class.MISCELLANEOUS: "miscellaneous",
    Class.APPLICATION: "application-specific",
    Class.VENDOR_SPEC: "vendor-specific",
}


class Protocol(int):
    """Interface protocol code; only meaningful together with class and subclass."""

    def __str__(self) -> str:
        return str(int(self))

    __repr__ = int.__repr__


class DescriptorType(_Named):
    DEVICE = 0x01
    CONFIG = 0x02
    STRING = 0x03
    INTERFACE = 0x04
    ENDPOINT = 0x05
    HID = 0x21
    REPORT = 0x22
    PHYSICAL = 0x23
    HUB = 0x29

    def __str__(self) -> str:
        return _DESCRIPTOR_TYPE_NAMES[self]


_DESCRIPTOR_TYPE_NAMES = {
    DescriptorType.DEVICE: "device",
    DescriptorType.CONFIG: "configuration",
    DescriptorType.STRING: "string",
    DescriptorType.INTERFACE: "interface",
    DescriptorType.ENDPOINT: "endpoint",
    DescriptorType.HID: "HID",
    DescriptorType.REPORT: "HID report",
    DescriptorType.PHYSICAL: "physical",
    DescriptorType.HUB: "hub",
}


class EndpointDirection(_Named):
    """IN = device to host, OUT = host to device."""
    OUT = 0x00
    IN = 0x80

    def __str__(self) -> str:
        return self.name


class TransferType(_Named):
    CONTROL = 0x0
    ISOCHRONOUS = 0x1
    BULK = 0x2
    INTERRUPT = 0x3

    def __str__(self) -> str:
        return self.name.lower()


class IsoSyncType(_Named):
    NONE = 0x0 << 2
    ASYNC = 0x1 << 2
    ADAPTIVE = 0x2 << 2
    SYNC = 0x3 << 2

    def __str__(self) -> str:
        return _ISO_SYNC_NAMES[self]


_ISO_SYNC_NAMES = {
    IsoSyncType.NONE: "unsynchronized",
    IsoSyncType.ASYNC: "asynchronous",
    IsoSyncType.ADAPTIVE: "adaptive",
    IsoSyncType.SYNC: "synchronous",
}


class UsageType(_Named):
    """Usage type for iso and interrupt endpoints.

    USB 3.0 reuses the same bmAttributes bits with different meanings for
    isochronous and interrupt endpoints, so these values do not correspond
    to raw attribute bits.  Use ``usage_type()`` to decode.
    """
    UNDEFINED = 0
    ISO_DATA = 1
    ISO_FEEDBACK = 2
    ISO_IMPLICIT = 3
    INTERRUPT_PERIODIC = 4
    INTERRUPT_NOTIFICATION = 5

    def __str__(self) -> str:
        return _USAGE_NAMES[self]


_USAGE_NAMES = {
    UsageType.UNDEFINED: "undefined usage",
    UsageType.ISO_DATA: "data",
    UsageType.ISO_FEEDBACK: "feedback",
    UsageType.ISO_IMPLICIT: "implicit data",
    UsageType.INTERRUPT_PERIODIC: "periodic",
    UsageType.INTERRUPT_NOTIFICATION: "notification",
}


class Speed(_Named):
    UNKNOWN = 0x0
    LOW = 0x1
    FULL = 0x2
    HIGH = 0x3
    SUPER = 0x4

    def __str__(self) -> str:
        return self.name.lower()


# =========================================================================
# Bit-field decoding
# =========================================================================

def endpoint_direction(address: int) -> EndpointDirection:
    return EndpointDirection(address & ENDPOINT_DIRECTION_MASK)


def endpoint_number(address: int) -> int:
    return address & ENDPOINT_NUM_MASK


def transfer_type(attributes: int) -> TransferType:
    return TransferType(attributes & TRANSFER_TYPE_MASK)


def iso_sync_type(attributes: int) -> IsoSyncType:
    return IsoSyncType(attributes & ISO_SYNC_TYPE_MASK)


def usage_type(attributes: int) -> UsageType:
    """Decode bits 4-5 according to the endpoint's transfer type."""
    bits = (attributes & USAGE_TYPE_MASK) >> 4
    kind = transfer_type(attributes)
    if kind == TransferType.ISOCHRONOUS and bits < 3:
        return UsageType(UsageType.ISO_DATA + bits)
    if kind == TransferType.INTERRUPT and bits < 2:
        return UsageType(UsageType.INTERRUPT_PERIODIC + bits)
    return UsageType.UNDEFINED


# =========================================================================
# Descriptor value types
# =========================================================================

@dataclass(frozen=True)
class EndpointDescriptor:
    address: int
    attributes: int
    max_packet_size: int = 0
    interval: int = 0

    @property
    def number(self) -> int:
        return endpoint_number(self.address)

    @property
    def direction(self) -> EndpointDirection:
        return endpoint_direction(self.address)

    @property
    def transfer_type(self) -> TransferType:
        return transfer_type(self.attributes)

    @property
    def iso_sync_type(self) -> IsoSyncType:
        return iso_sync_type(self.attributes)

    @property
    def usage_type(self) -> UsageType:
        return usage_type(self.attributes)

    def __str__(self) -> str:
        return (f"ep #{self.number} {self.direction} "
                f"(address 0x{self.address:02x}) {self.transfer_type}")


@dataclass(frozen=True)
class InterfaceDescriptor:
    """One alternate setting of an interface."""
    number: int
    alternate: int
    interface_class: int = 0
    interface_subclass: int = 0
    interface_protocol: int = 0
    endpoints: Tuple[EndpointDescriptor, ...] = ()


@dataclass(frozen=True)
class ConfigDescriptor:
    """A configuration; ``interfaces[i]`` lists the alt-settings of interface *i*."""
    value: int
    interfaces: Tuple[Tuple[InterfaceDescriptor, ...], ...] = ()
    attributes: int = 0x80
    max_power: int = 0

    @property
    def self_powered(self) -> bool:
        return bool(self.attributes & SELF_POWERED_MASK)

    @property
    def remote_wakeup(self) -> bool:
        return bool(self.attributes & REMOTE_WAKEUP_MASK)

    def alt_settings(self) -> Iterator[Tuple[int, InterfaceDescriptor]]:
        """Yield ``(interface_index, alt_setting)`` pairs in descriptor order."""
        for index, alts in enumerate(self.interfaces):
            for alt in alts:
                yield index, alt


@dataclass(frozen=True)
class DeviceDescriptor:
    vendor_id: int
    product_id: int
    device_class: int = 0
    device_subclass: int = 0
    device_protocol: int = 0
    num_configurations: int = 1
    bus: int = 0
    address: int = 0
    port_number: Optional[int] = None
    speed: Speed = field(default=Speed.UNKNOWN)
