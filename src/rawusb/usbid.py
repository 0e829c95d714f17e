"""
Human-readable vendor, product and class names from the ``usb.ids`` database.

Display-only: the core never depends on these names.  The database is
the one shipped by most distributions (hwdata / usbutils); when none is
installed every lookup falls back to numeric output.

    describe(info)  ->  "Vendor (Product)" | "Vendor - Unknown" | "Unknown vvvv:pppp"
    classify(info)  ->  "Class (SubClass) Protocol" | ... | "Unknown c.s.p"

File format (tab-indented)::

    vvvv  Vendor name
    <TAB>pppp  Product name
    C cc  Class name
    <TAB>ss  Subclass name
    <TAB><TAB>pp  Protocol name
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, Optional, Tuple

log = logging.getLogger(__name__)

DEFAULT_PATHS = (
    '/usr/share/hwdata/usb.ids',
    '/usr/share/misc/usb.ids',
    '/usr/share/usb.ids',
    '/var/lib/usbutils/usb.ids',
)


@dataclass
class Vendor:
    name: str
    products: Dict[int, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.name


@dataclass
class SubClass:
    name: str
    protocols: Dict[int, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.name


@dataclass
class UsbClass:
    name: str
    subclasses: Dict[int, SubClass] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.name


@dataclass
class Database:
    vendors: Dict[int, Vendor] = field(default_factory=dict)
    classes: Dict[int, UsbClass] = field(default_factory=dict)


def _split(text: str) -> Tuple[int, str]:
    code, _, name = text.partition(' ')
    return int(code, 16), name.strip()


def parse_ids(lines: Iterable[str]) -> Database:
    """Parse usb.ids content.  Malformed lines are skipped."""
    db = Database()
    vendor: Optional[Vendor] = None
    usb_class: Optional[UsbClass] = None
    subclass: Optional[SubClass] = None
    section = 'vendor'

    for lineno, raw in enumerate(lines, 1):
        line = raw.rstrip('\r\n')
        if not line.strip() or line.lstrip().startswith('#'):
            continue
        try:
            if not line.startswith('\t'):
                vendor = usb_class = subclass = None
                if line.startswith('C '):
                    section = 'class'
                    code, name = _split(line[2:])
                    usb_class = db.classes[code] = UsbClass(name)
                elif section == 'vendor' and line[:4].strip() and ' ' in line:
                    code, name = _split(line)
                    vendor = db.vendors[code] = Vendor(name)
                else:
                    # AT, HID, R, BIAS, PHY, HUT, L, HCC, VT ... not needed
                    section = 'other'
            elif line.startswith('\t\t'):
                if subclass is not None:
                    code, name = _split(line[2:])
                    subclass.protocols[code] = name
            elif vendor is not None:
                code, name = _split(line[1:])
                vendor.products[code] = name
            elif usb_class is not None:
                code, name = _split(line[1:])
                subclass = usb_class.subclasses[code] = SubClass(name)
        except ValueError:
            log.debug("usb.ids line %d: cannot parse %r", lineno, line)

    return db


def load(path: Optional[str] = None) -> Database:
    """Load the database from *path* or the first default location found."""
    candidates = (path,) if path else DEFAULT_PATHS
    for candidate in candidates:
        if candidate and os.path.isfile(candidate):
            with open(candidate, 'r', encoding='utf-8', errors='replace') as f:
                db = parse_ids(f)
            log.debug("Loaded %d vendors, %d classes from %s",
                      len(db.vendors), len(db.classes), candidate)
            return db
    log.debug("No usb.ids database found in %s", ", ".join(candidates))
    return Database()


@lru_cache(maxsize=1)
def default_database() -> Database:
    return load()


def describe(info, db: Optional[Database] = None) -> str:
    """Vendor and product of *info* (anything with ``vendor_id``/``product_id``)."""
    db = db if db is not None else default_database()
    vendor = db.vendors.get(info.vendor_id)
    if vendor is None:
        return f"Unknown {info.vendor_id:04x}:{info.product_id:04x}"
    product = vendor.products.get(info.product_id)
    if product is None:
        return f"{vendor} - Unknown"
    return f"{vendor} ({product})"


def classify(info, db: Optional[Database] = None, interface: bool = False) -> str:
    """Class, subclass and protocol of *info*'s device (or its interface)."""
    db = db if db is not None else default_database()
    if interface:
        cls, sub, proto = info.interface_class, info.interface_subclass, info.interface_protocol
    else:
        cls, sub, proto = info.device_class, info.device_subclass, info.device_protocol

    usb_class = db.classes.get(cls)
    if usb_class is None:
        return f"Unknown {cls}.{sub}.{proto}"
    subclass = usb_class.subclasses.get(sub)
    if subclass is None:
        return str(usb_class)
    protocol = subclass.protocols.get(proto)
    if protocol is None:
        return f"{usb_class} ({subclass})"
    return f"{usb_class} ({subclass}) {protocol}"
