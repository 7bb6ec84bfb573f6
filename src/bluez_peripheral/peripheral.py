"""A remote BLE peripheral as seen through BlueZ.

:class:`Peripheral` gives callers blocking ``connect()``,
``discover_characteristics()``, ``read()`` and ``write()`` on top of
BlueZ's asynchronous, signal-driven API.  Three pieces of state are
each guarded by their own lock:

- :class:`~bluez_peripheral.properties.PropertyUpdateHandler` owns the
  advertised properties.
- :class:`~bluez_peripheral.registry.AttributeRegistry` owns the
  handle → object path map and the finalized characteristic ranges.
- :class:`~bluez_peripheral.state.StateCell` owns the connection state.

The transport thread feeds ``PropertiesChanged`` batches into the
handler, which moves the state machine and wakes callers blocked in
:meth:`Peripheral.connect` or
:meth:`Peripheral.discover_characteristics_in_range`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from .bluez import address_to_bluez_path
from .const import (
    ERROR_ALREADY_CONNECTED,
    ERROR_FAILED,
    MAX_HANDLE,
    MIN_HANDLE,
    PeripheralConfig,
)
from .exc import NotConnectedError, NotSupportedError, TimedOutError, TransportError
from .models import Characteristic, CharPropFlags, PeripheralProperties
from .properties import PropertyUpdateHandler
from .registry import AttributeRegistry
from .state import ConnectionState, StateCell
from .transport import CommandSink, NotificationSource

_LOGGER = logging.getLogger(__name__)

NotificationHandler = Callable[[Characteristic, bytes], None]


class Peripheral:
    """One remote device, identified by its BlueZ object path.

    Parameters
    ----------
    transport:
        Object implementing both
        :class:`~bluez_peripheral.transport.CommandSink` and
        :class:`~bluez_peripheral.transport.NotificationSource`,
        normally a :class:`~bluez_peripheral.transport.BluezTransport`.
    path:
        The device object path, e.g.
        ``/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF``.
    address:
        The device MAC address.
    config:
        Timeouts; defaults to :class:`PeripheralConfig`.
    """

    def __init__(
        self,
        transport: Any,
        path: str,
        address: str,
        config: PeripheralConfig | None = None,
    ) -> None:
        self._transport = transport
        self._path = path
        self._address = address.upper()
        self._config = config or PeripheralConfig()
        self._state = StateCell(owner=self._address)
        self._registry = AttributeRegistry(owner=self._address)
        self._handler = PropertyUpdateHandler(
            path, self._address, self._state, self._registry
        )
        self._listen_token: int | None = None
        self._listen_lock = threading.Lock()

    @classmethod
    def for_address(
        cls,
        transport: Any,
        address: str,
        config: PeripheralConfig | None = None,
    ) -> Peripheral:
        """Create a peripheral whose path is derived from *address*."""
        config = config or PeripheralConfig()
        return cls(
            transport,
            address_to_bluez_path(address, config.adapter),
            address,
            config,
        )

    def __str__(self) -> str:
        connected = " connected" if self.is_connected() else ""
        name = self._handler.local_name or "(unknown)"
        return f"{self._address} {name}{connected}"

    def __repr__(self) -> str:
        return (
            f"<Peripheral {self._address} state={self._state.get().name} "
            f"properties={self.properties()!r} "
            f"characteristics={len(self.characteristics())}>"
        )

    # ── Identity and snapshots ─────────────────────────────────────

    @property
    def address(self) -> str:
        return self._address

    @property
    def path(self) -> str:
        return self._path

    @property
    def state(self) -> ConnectionState:
        return self._state.get()

    def properties(self) -> PeripheralProperties:
        """Return a copy of the current advertised properties."""
        return self._handler.snapshot()

    def characteristics(self) -> list[Characteristic]:
        """Return a copy of the characteristics from the last resolution."""
        return self._registry.characteristics()

    def is_connected(self) -> bool:
        return self._state.get() >= ConnectionState.CONNECTED

    # ── Notification plumbing ──────────────────────────────────────

    def listen(self) -> None:
        """Subscribe to property changes on the device and its attributes.

        Calling ``listen()`` while already listening is a no-op.
        """
        source: NotificationSource = self._transport
        with self._listen_lock:
            if self._listen_token is not None:
                return
            self._listen_token = source.add_match(self._path, self.properties_changed)
        _LOGGER.debug("%s: Listening for property changes", self._address)

    def stop_listening(self) -> None:
        """Undo :meth:`listen`.  Safe to call repeatedly."""
        source: NotificationSource = self._transport
        with self._listen_lock:
            token, self._listen_token = self._listen_token, None
            if token is None:
                return
            source.remove_match(token)
        _LOGGER.debug("%s: Stopped listening for property changes", self._address)

    def properties_changed(
        self,
        path: str,
        changed: dict[str, Any],
        invalidated: list[str],
    ) -> None:
        """Feed one ``PropertiesChanged`` batch for *path* to the handler."""
        self._handler.properties_changed(path, changed, invalidated)

    def add_attribute(self, path: str, uuid: str, properties: CharPropFlags) -> None:
        """Register a GATT attribute announced by BlueZ at *path*.

        Called during discovery, before ``ServicesResolved`` is true.
        """
        self._registry.add(path, uuid, properties)

    # ── Connection ─────────────────────────────────────────────────

    def connect(self) -> None:
        """Connect and block until BlueZ reports ``Connected=True``.

        Raises :class:`NotConnectedError` if BlueZ reports a generic
        failure, :class:`TimedOutError` if the device is not connected
        within ``config.connect_timeout`` seconds (the state is left as
        is), and passes any other transport error through.
        """
        sink: CommandSink = self._transport
        budget = self._config.connect_timeout
        started = time.monotonic()
        _LOGGER.info("%s: Connecting", self._address)

        try:
            sink.connect(self._path, timeout=budget)
        except TransportError as ex:
            if ex.error_name == ERROR_ALREADY_CONNECTED:
                _LOGGER.debug("%s: Already connected", self._address)
                return
            if ex.error_name == ERROR_FAILED:
                _LOGGER.error(
                    "%s: BlueZ failed to connect: %s", self._address, ex.message
                )
                raise NotConnectedError(
                    f"{self._address}: {ex.message or 'connect failed'}"
                ) from ex
            raise
        except TimedOutError:
            raise TimedOutError(budget) from None

        # BlueZ may answer Connect before the Connected property flips.
        remaining = budget - (time.monotonic() - started)
        connected, state = self._state.wait_for(
            lambda s: s >= ConnectionState.CONNECTED, timeout=remaining
        )
        if not connected:
            _LOGGER.warning(
                "%s: Not connected after %.1f s (state %s)",
                self._address,
                budget,
                state.name,
            )
            raise TimedOutError(budget)
        _LOGGER.info("%s: Connected", self._address)

    def disconnect(self) -> None:
        """Ask BlueZ to disconnect.  Does not wait for the state change."""
        sink: CommandSink = self._transport
        _LOGGER.info("%s: Disconnecting", self._address)
        sink.disconnect(self._path, timeout=self._config.method_call_timeout)

    # ── Discovery ──────────────────────────────────────────────────

    def discover_characteristics(self) -> list[Characteristic]:
        return self.discover_characteristics_in_range(MIN_HANDLE, MAX_HANDLE)

    def discover_characteristics_in_range(
        self, start: int, end: int
    ) -> list[Characteristic]:
        """Wait for service resolution and return characteristics in range.

        Blocks, with no timeout, while the device is connected but its
        services are not resolved yet.  Raises :class:`NotConnectedError`
        if the device is (or becomes) disconnected.  Returns the
        characteristics whose value handle lies in ``[start, end]``.
        """
        _LOGGER.debug("%s: Waiting for services to be resolved", self._address)
        _, state = self._state.wait_for(lambda s: s != ConnectionState.CONNECTED)
        if state == ConnectionState.NOT_CONNECTED:
            raise NotConnectedError(f"{self._address}: not connected")

        _LOGGER.debug("%s: Services resolved", self._address)
        return [
            c
            for c in self._registry.characteristics()
            if start <= c.value_handle <= end
        ]

    # ── GATT access ────────────────────────────────────────────────

    def read(self, characteristic: Characteristic) -> bytes:
        """Read the value of *characteristic*."""
        path = self._registry.path_for(characteristic)
        if path is None:
            raise NotSupportedError("read")
        sink: CommandSink = self._transport
        return sink.read_value(path, timeout=self._config.method_call_timeout)

    def write(self, characteristic: Characteristic, data: bytes) -> None:
        """Write *data* to *characteristic*."""
        path = self._registry.path_for(characteristic)
        if path is None:
            raise NotSupportedError("write_without_response")
        sink: CommandSink = self._transport
        sink.write_value(path, bytes(data), timeout=self._config.method_call_timeout)

    command = write

    def request(self, characteristic: Characteristic, data: bytes) -> bytes:
        """Write *data* then read back.  The pair is not atomic."""
        self.write(characteristic, data)
        return self.read(characteristic)

    def read_by_type(self, characteristic: Characteristic, uuid: str) -> bytes:
        """Read the first attribute with *uuid* inside *characteristic*'s range."""
        match = self._registry.find(
            uuid, characteristic.start_handle, characteristic.end_handle
        )
        if match is None:
            raise NotSupportedError("read_by_type")
        return self.read(match)

    # ── Extension points ───────────────────────────────────────────
    # BlueZ delivers notifications as PropertiesChanged on the
    # characteristic path, which the handler does not interpret yet.

    def subscribe(self, characteristic: Characteristic) -> None:
        raise NotImplementedError("subscribe")

    def unsubscribe(self, characteristic: Characteristic) -> None:
        raise NotImplementedError("unsubscribe")

    def on_notification(self, handler: NotificationHandler) -> None:
        raise NotImplementedError("on_notification")

    def read_async(
        self,
        characteristic: Characteristic,
        handler: Callable[[bytes], None] | None = None,
    ) -> None:
        raise NotImplementedError("read_async")

    def command_async(
        self,
        characteristic: Characteristic,
        data: bytes,
        handler: Callable[[], None] | None = None,
    ) -> None:
        raise NotImplementedError("command_async")

    def request_async(
        self,
        characteristic: Characteristic,
        data: bytes,
        handler: Callable[[bytes], None] | None = None,
    ) -> None:
        raise NotImplementedError("request_async")

    def read_by_type_async(
        self,
        characteristic: Characteristic,
        uuid: str,
        handler: Callable[[bytes], None] | None = None,
    ) -> None:
        raise NotImplementedError("read_by_type_async")
