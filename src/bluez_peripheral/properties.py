"""Apply BlueZ ``PropertiesChanged`` batches to a peripheral.

BlueZ reports device state as ``org.freedesktop.DBus.Properties``
signals on the device object path.  Each batch is a dict of changed
property name → value (possibly wrapped in ``dbus_fast.Variant``) plus a
list of invalidated names.  The handler:

1. Merges the advertised fields into :class:`PeripheralProperties`.
2. Drives the :class:`~bluez_peripheral.state.ConnectionState` machine
   from ``Connected`` and ``ServicesResolved``.
3. Rebuilds the characteristic ranges when services resolve.

Every field is decoded on its own.  A malformed value is logged and
skipped so the rest of the batch still applies.
"""

from __future__ import annotations

import logging
import struct
import threading
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from dbus_fast import Variant

from .bluez import is_in_namespace
from .exc import InvalidHandlePath
from .models import AddressType, Handle, PeripheralProperties
from .registry import AttributeRegistry
from .state import ConnectionState, StateCell

_LOGGER = logging.getLogger(__name__)

_MAX_COMPANY_ID = 0xFFFF


def _unwrap(value: Any) -> Any:
    """Strip any number of ``Variant`` layers."""
    while isinstance(value, Variant):
        value = value.value
    return value


def decode_bool(value: Any) -> bool | None:
    """Decode a D-Bus boolean, or ``None`` if *value* is not one."""
    value = _unwrap(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value > 0
    return None


def decode_str(value: Any) -> str | None:
    value = _unwrap(value)
    return value if isinstance(value, str) else None


def decode_rssi(value: Any) -> int | None:
    """Decode an RSSI reading and narrow it to a signed 8-bit value."""
    value = _unwrap(value)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return ((value + 0x80) & 0xFF) - 0x80


def _decode_payload(value: Any) -> bytes | None:
    value = _unwrap(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, (list, tuple)):
        items = [_unwrap(b) for b in value]
        if all(isinstance(b, int) and 0 <= b <= 0xFF for b in items):
            return bytes(items)
    return None


def decode_manufacturer_data(value: Any) -> bytes | None:
    """Flatten BlueZ ``ManufacturerData`` (``a{qv}``) into one blob.

    Each entry becomes its company id as little-endian ``uint16``
    followed by the payload bytes, in iteration order::

        >>> decode_manufacturer_data({0x1234: Variant("ay", b"\\xaa\\xbb")})
        b'4\\x12\\xaa\\xbb'

    Returns ``None`` if *value* is not a mapping.  Entries with an
    out-of-range id or a non-byte payload are logged and skipped.
    """
    value = _unwrap(value)
    if not isinstance(value, Mapping):
        return None

    result = bytearray()
    for company_id, payload in value.items():
        company_id = _unwrap(company_id)
        if (
            isinstance(company_id, bool)
            or not isinstance(company_id, int)
            or not 0 <= company_id <= _MAX_COMPANY_ID
        ):
            _LOGGER.debug("Skipping manufacturer data with bad id %r", company_id)
            continue
        data = _decode_payload(payload)
        if data is None:
            _LOGGER.debug(
                "Skipping manufacturer data 0x%04x with bad payload %r",
                company_id,
                payload,
            )
            continue
        result += struct.pack("<H", company_id)
        result += data
    return bytes(result)


class PropertyUpdateHandler:
    """Owns a peripheral's :class:`PeripheralProperties` and applies updates.

    Called from the transport's notification thread.  The properties
    lock is never held together with the state or registry locks; the
    only nesting is registry-inside-state during the services-resolved
    transition.
    """

    def __init__(
        self,
        path: str,
        address: str,
        state: StateCell,
        registry: AttributeRegistry,
    ) -> None:
        self._path = path
        self._address = address
        self._state = state
        self._registry = registry
        self._lock = threading.Lock()
        self._properties = PeripheralProperties(address=address)

    def snapshot(self) -> PeripheralProperties:
        """Return a copy of the current properties."""
        with self._lock:
            return replace(self._properties)

    @property
    def local_name(self) -> str | None:
        with self._lock:
            return self._properties.local_name

    def properties_changed(
        self,
        path: str,
        changed: Mapping[str, Any],
        invalidated: list[str],
    ) -> None:
        """Entry point for one ``PropertiesChanged`` batch on *path*."""
        if not is_in_namespace(path, self._path):
            _LOGGER.error(
                "%s: Got properties changed for %s, but it is not under %s",
                self._address,
                path,
                self._path,
            )
            return

        try:
            Handle.parse(path)
        except InvalidHandlePath:
            pass
        else:
            _LOGGER.warning(
                "%s: Ignoring properties changed on attribute %s: %s",
                self._address,
                path,
                sorted(changed),
            )
            return

        self.update_properties(changed)
        if invalidated:
            _LOGGER.warning(
                "%s: Ignoring invalidated properties %s",
                self._address,
                invalidated,
            )

    def update_properties(self, changed: Mapping[str, Any]) -> None:
        """Merge a batch of device-level property changes."""
        _LOGGER.debug("%s: Updating peripheral properties", self._address)

        with self._lock:
            props = self._properties
            props.discovery_count += 1

            if "Name" in changed:
                name = decode_str(changed["Name"])
                _LOGGER.debug("%s: Updating local name to %r", self._address, name)
                props.local_name = name

            if "ManufacturerData" in changed:
                data = decode_manufacturer_data(changed["ManufacturerData"])
                if data is None:
                    _LOGGER.warning(
                        "%s: Unexpected ManufacturerData shape %r",
                        self._address,
                        changed["ManufacturerData"],
                    )
                else:
                    _LOGGER.debug(
                        "%s: Updating manufacturer data to %s",
                        self._address,
                        data.hex(),
                    )
                    props.manufacturer_data = data

            if "AddressType" in changed:
                raw = decode_str(changed["AddressType"])
                props.address_type = (
                    AddressType.default() if raw is None else AddressType.parse(raw)
                )
                _LOGGER.debug(
                    "%s: Updating address type to %s",
                    self._address,
                    props.address_type.value,
                )

            if "RSSI" in changed:
                rssi = decode_rssi(changed["RSSI"])
                _LOGGER.debug("%s: Updating RSSI to %s", self._address, rssi)
                props.tx_power_level = rssi

        if "Connected" in changed:
            connected = decode_bool(changed["Connected"])
            if connected is None:
                _LOGGER.warning(
                    "%s: Unexpected Connected value %r",
                    self._address,
                    changed["Connected"],
                )
            else:
                self._on_connected(connected)

        if "ServicesResolved" in changed:
            resolved = decode_bool(changed["ServicesResolved"])
            if resolved is None:
                _LOGGER.warning(
                    "%s: Unexpected ServicesResolved value %r",
                    self._address,
                    changed["ServicesResolved"],
                )
            else:
                self._on_services_resolved(resolved)

    def _on_connected(self, connected: bool) -> None:
        _LOGGER.debug("%s: Updating connected to %s", self._address, connected)
        with self._state.transition() as t:
            if not connected:
                t.state = ConnectionState.NOT_CONNECTED
            elif t.state == ConnectionState.NOT_CONNECTED:
                t.state = ConnectionState.CONNECTED

    def _on_services_resolved(self, resolved: bool) -> None:
        _LOGGER.debug(
            "%s: Updating services resolved to %s", self._address, resolved
        )
        with self._state.transition() as t:
            if resolved:
                self._registry.rebuild()
                t.state = ConnectionState.SERVICES_RESOLVED
