"""Attribute registry and handle range reconstruction.

BlueZ exports a device's GATT tree as a flat set of object paths
(``…/service000a``, ``…/service000a/char000b``, …) which appear one at
a time during discovery, in no particular order.  No signal carries the
end handle of a service or characteristic, so ranges are inferred from
handle adjacency once BlueZ reports ``ServicesResolved``:

- Services and characteristics are ranged independently.
- Within each stream, sorted by handle, an entry ends one before the
  next entry starts.
- The last entry of a stream extends to ``0xFFFF``.

Gaps are not validated.  A missing attribute silently widens its
neighbour's range.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from typing import NamedTuple

from bleak.uuids import normalize_uuid_str

from .const import MAX_HANDLE
from .models import AttributeType, Characteristic, CharPropFlags, Handle

_LOGGER = logging.getLogger(__name__)

_RANGED_TYPES = (AttributeType.SERVICE, AttributeType.CHARACTERISTIC)


class AttributeRecord(NamedTuple):
    """Object path, parsed handle and placeholder characteristic."""

    path: str
    handle: Handle
    characteristic: Characteristic


def build_characteristic_ranges(
    records: Iterable[AttributeRecord],
) -> list[Characteristic]:
    """Compute ``[start_handle, end_handle]`` for every ranged record.

    Returns one sorted list holding both the service and the
    characteristic entries.  Descriptors and unknown attributes do not
    get a range of their own.

    Example: services at 10, 20, 30 and characteristics at 11, 21 give
    services ``[10,19] [20,29] [30,65535]`` and characteristics
    ``[11,20] [21,65535]``.
    """
    records = list(records)
    result: list[Characteristic] = []

    for typ in _RANGED_TYPES:
        stream = sorted(
            (r for r in records if r.handle.typ is typ),
            key=lambda r: r.handle.handle,
        )
        for current, following in zip(stream, stream[1:] + [None]):
            end = MAX_HANDLE if following is None else following.handle.handle - 1
            result.append(
                Characteristic(
                    start_handle=current.handle.handle,
                    end_handle=end,
                    value_handle=current.handle.handle,
                    uuid=current.characteristic.uuid,
                    properties=current.characteristic.properties,
                )
            )

    result.sort()
    return result


class AttributeRegistry:
    """Handle → :class:`AttributeRecord` map plus the finalized ranges.

    All methods are thread-safe; one lock guards both the records and
    the cached characteristic list.
    """

    def __init__(self, owner: str = "") -> None:
        self._owner = owner
        self._lock = threading.Lock()
        self._records: dict[int, AttributeRecord] = {}
        self._characteristics: list[Characteristic] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def add(self, path: str, uuid: str, properties: CharPropFlags) -> AttributeRecord:
        """Register the attribute at *path*.

        Raises :class:`~bluez_peripheral.exc.InvalidHandlePath` if *path*
        does not end in an attribute segment.  A second announcement for
        the same handle replaces the first and is logged.
        """
        _LOGGER.debug(
            "%s: Adding attribute %s (%r) under %s",
            self._owner,
            uuid,
            properties,
            path,
        )
        handle = Handle.parse(path)
        record = AttributeRecord(
            path=path,
            handle=handle,
            characteristic=Characteristic(
                start_handle=0,
                end_handle=0,
                value_handle=handle.handle,
                uuid=uuid,
                properties=properties,
            ),
        )
        with self._lock:
            old = self._records.get(handle.handle)
            self._records[handle.handle] = record
        if old is not None:
            _LOGGER.error(
                "%s: Replaced existing mapping for handle 0x%04x: %s -> %s",
                self._owner,
                handle.handle,
                old.path,
                path,
            )
        return record

    def records(self) -> list[AttributeRecord]:
        """Return a snapshot of the records in registration order."""
        with self._lock:
            return list(self._records.values())

    def path_for(self, characteristic: Characteristic) -> str | None:
        """Return the object path registered for *characteristic*'s value handle."""
        with self._lock:
            record = self._records.get(characteristic.value_handle)
        return None if record is None else record.path

    def find(self, uuid: str, start: int, end: int) -> Characteristic | None:
        """Return the first registered attribute matching *uuid* in ``[start, end]``.

        Search order is registration order.
        """
        target = normalize_uuid_str(uuid)
        with self._lock:
            for record in self._records.values():
                char = record.characteristic
                if char.uuid == target and start <= char.value_handle <= end:
                    return char
        return None

    def rebuild(self) -> list[Characteristic]:
        """Recompute ranges from the current records and cache the result."""
        with self._lock:
            count = len(self._records)
            characteristics = build_characteristic_ranges(self._records.values())
            self._characteristics = characteristics
        _LOGGER.debug(
            "%s: Rebuilt %d characteristic ranges from %d attributes",
            self._owner,
            len(characteristics),
            count,
        )
        return list(characteristics)

    def characteristics(self) -> list[Characteristic]:
        """Return a copy of the characteristic list from the last rebuild."""
        with self._lock:
            return list(self._characteristics)

    def clear(self) -> None:
        """Forget every record and the cached ranges."""
        with self._lock:
            self._records.clear()
            self._characteristics = []
