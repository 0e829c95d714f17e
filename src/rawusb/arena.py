"""
Reference retention for native device objects.

A ``DeviceArena`` keeps native device objects alive exactly as long as a
``DeviceInfo`` or an open ``DeviceHandle`` refers to them.  Records are
indexed by the backend's stable device key and carry a counter; the native
object is dropped (and so released by the backend) when its counter falls
back to zero.

Rules:
  • every ``retain()`` is paired with exactly one ``release()``;
  • releasing a key that holds no reference is a logic error and raises.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Hashable

log = logging.getLogger(__name__)


@dataclass
class _Record:
    device: Any
    count: int = 0


class DeviceArena:
    """Thread-safe, reference-counted registry of native device objects."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[Hashable, _Record] = {}

    def retain(self, key: Hashable, device: Any) -> Hashable:
        """Take one reference on *device*, registering it under *key* if new."""
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = self._records[key] = _Record(device)
            record.count += 1
            log.debug("retain %s -> %d", key, record.count)
            return key

    def release(self, key: Hashable) -> None:
        """Drop one reference; forget the device when none remain."""
        with self._lock:
            record = self._records.get(key)
            if record is None or record.count <= 0:
                raise RuntimeError(f"release of unretained device {key!r}")
            record.count -= 1
            log.debug("release %s -> %d", key, record.count)
            if record.count == 0:
                del self._records[key]

    def get(self, key: Hashable) -> Any:
        """Native device object for *key*; raises ``KeyError`` if not retained."""
        with self._lock:
            return self._records[key].device

    def count(self, key: Hashable) -> int:
        with self._lock:
            record = self._records.get(key)
            return record.count if record else 0

    def outstanding(self) -> int:
        """Total references held across all devices."""
        with self._lock:
            return sum(r.count for r in self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._records
