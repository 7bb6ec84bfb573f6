"""Command sink and notification source over BlueZ's D-Bus API.

A :class:`~bluez_peripheral.peripheral.Peripheral` only needs two small
collaborators:

- a :class:`CommandSink` that performs ``Connect``, ``Disconnect``,
  ``ReadValue`` and ``WriteValue`` and raises
  :class:`~bluez_peripheral.exc.TransportError` on a D-Bus error reply;
- a :class:`NotificationSource` that delivers ``PropertiesChanged``
  batches for an object path and everything below it.

:class:`BluezTransport` implements both with ``dbus-fast``, the same
D-Bus library bleak uses internally.  The asyncio ``MessageBus`` runs on
a private daemon thread, which is therefore the single thread that
delivers notifications.  Callers on any other thread get blocking
methods built on ``asyncio.run_coroutine_threadsafe``.

Method calls go through raw ``bus.call(Message(...))`` rather than
proxy objects, which skips the ``Introspect`` round-trip.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import itertools
import logging
import threading
from collections.abc import Callable, Coroutine, Mapping
from typing import Any, Protocol

from dbus_fast import Message, MessageType, Variant

from .bluez import is_in_namespace
from .const import (
    BLUEZ_SERVICE,
    DEVICE_INTERFACE,
    GATT_CHARACTERISTIC_INTERFACE,
    IS_LINUX,
    METHOD_CALL_TIMEOUT,
    PROPERTIES_INTERFACE,
)
from .exc import TimedOutError, TransportError

_LOGGER = logging.getLogger(__name__)

_DBUS_SERVICE = "org.freedesktop.DBus"
_DBUS_PATH = "/org/freedesktop/DBus"

PropertiesCallback = Callable[[str, Mapping[str, Any], list[str]], None]


class CommandSink(Protocol):
    """Outbound BlueZ commands.  Errors raise ``TransportError``."""

    def connect(self, path: str, timeout: float | None = None) -> None: ...

    def disconnect(self, path: str, timeout: float | None = None) -> None: ...

    def read_value(self, path: str, timeout: float | None = None) -> bytes: ...

    def write_value(
        self, path: str, data: bytes, timeout: float | None = None
    ) -> None: ...


class NotificationSource(Protocol):
    """Subscription to ``PropertiesChanged`` under an object path."""

    def add_match(self, path: str, callback: PropertiesCallback) -> int: ...

    def remove_match(self, token: int) -> None: ...


def properties_match_rule(path: str) -> str:
    """Build the ``AddMatch`` rule for property changes under *path*."""
    return (
        "type='signal',"
        f"interface='{PROPERTIES_INTERFACE}',"
        "member='PropertiesChanged',"
        f"path_namespace='{path}'"
    )


class BluezTransport:
    """``dbus-fast`` backed :class:`CommandSink` and :class:`NotificationSource`.

    Usage::

        with BluezTransport() as transport:
            peripheral = Peripheral.for_address(transport, "AA:BB:CC:DD:EE:FF")
            peripheral.listen()
            peripheral.connect()

    Parameters
    ----------
    method_call_timeout:
        Default seconds to wait for a D-Bus reply when a call does not
        pass its own timeout.
    """

    def __init__(self, method_call_timeout: float = METHOD_CALL_TIMEOUT) -> None:
        self._method_call_timeout = method_call_timeout
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._bus: Any = None  # dbus_fast.aio.MessageBus once started
        self._matches: dict[int, tuple[str, PropertiesCallback]] = {}
        self._matches_lock = threading.Lock()
        self._tokens = itertools.count(1)

    # ── Lifecycle ──────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the event loop thread and connect to the system bus.

        Calling ``start()`` on a running transport is a no-op.
        """
        if self.is_running:
            return
        if not IS_LINUX:
            raise RuntimeError("BlueZ transport is only available on Linux")

        loop = asyncio.new_event_loop()
        self._loop = loop
        self._thread = threading.Thread(
            name="BluezTransport",
            target=self._run_loop,
            args=(loop,),
            daemon=True,
        )
        self._thread.start()
        try:
            self._bus = self._submit(self._connect_bus(), self._method_call_timeout)
        except Exception:
            self.stop()
            raise
        _LOGGER.debug("BluezTransport: connected to system bus")

    def stop(self) -> None:
        """Disconnect the bus and stop the loop thread.

        Safe to call multiple times or before ``start()``.
        """
        loop, thread, bus = self._loop, self._thread, self._bus
        self._loop = self._thread = self._bus = None
        with self._matches_lock:
            self._matches.clear()
        if loop is None:
            return
        if bus is not None:
            loop.call_soon_threadsafe(bus.disconnect)
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=3.0)
        _LOGGER.debug("BluezTransport: stopped")

    def __enter__(self) -> BluezTransport:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            loop.close()

    async def _connect_bus(self) -> Any:
        from dbus_fast.aio import MessageBus
        from dbus_fast.constants import BusType

        bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        bus.add_message_handler(self._on_message)
        return bus

    def _submit(
        self, coro: Coroutine[Any, Any, Any], timeout: float | None
    ) -> Any:
        """Run *coro* on the loop thread and block for its result."""
        loop = self._loop
        if loop is None:
            coro.close()
            raise RuntimeError("BluezTransport is not started")
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise TimedOutError(timeout or 0.0) from None

    # ── Method calls ───────────────────────────────────────────────

    async def _call(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: list[Any] | None = None,
    ) -> list[Any]:
        """Send one method call and return the reply body.

        Raises :class:`TransportError` carrying the D-Bus error name if
        the reply is an error.
        """
        reply = await self._bus.call(
            Message(
                destination=destination,
                path=path,
                interface=interface,
                member=member,
                signature=signature,
                body=body or [],
            )
        )
        if reply is None:
            return []
        if reply.message_type == MessageType.ERROR:
            message = reply.body[0] if reply.body else ""
            raise TransportError(reply.error_name or "", str(message))
        return reply.body

    def _call_sync(
        self,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: list[Any] | None = None,
        timeout: float | None = None,
        destination: str = BLUEZ_SERVICE,
    ) -> list[Any]:
        if timeout is None:
            timeout = self._method_call_timeout
        _LOGGER.debug("BluezTransport: %s.%s on %s", interface, member, path)
        return self._submit(
            self._call(destination, path, interface, member, signature, body),
            timeout,
        )

    def connect(self, path: str, timeout: float | None = None) -> None:
        self._call_sync(path, DEVICE_INTERFACE, "Connect", timeout=timeout)

    def disconnect(self, path: str, timeout: float | None = None) -> None:
        self._call_sync(path, DEVICE_INTERFACE, "Disconnect", timeout=timeout)

    def read_value(self, path: str, timeout: float | None = None) -> bytes:
        body = self._call_sync(
            path,
            GATT_CHARACTERISTIC_INTERFACE,
            "ReadValue",
            "a{sv}",
            [{}],
            timeout=timeout,
        )
        return bytes(body[0]) if body else b""

    def write_value(
        self, path: str, data: bytes, timeout: float | None = None
    ) -> None:
        self._call_sync(
            path,
            GATT_CHARACTERISTIC_INTERFACE,
            "WriteValue",
            "aya{sv}",
            [bytes(data), {}],
            timeout=timeout,
        )

    # ── Notifications ──────────────────────────────────────────────

    def add_match(self, path: str, callback: PropertiesCallback) -> int:
        """Deliver ``PropertiesChanged`` for *path* and its children to *callback*.

        *callback* runs on the transport thread.  Returns a token for
        :meth:`remove_match`.
        """
        token = next(self._tokens)
        with self._matches_lock:
            self._matches[token] = (path, callback)
        try:
            self._call_sync(
                _DBUS_PATH,
                _DBUS_SERVICE,
                "AddMatch",
                "s",
                [properties_match_rule(path)],
                destination=_DBUS_SERVICE,
            )
        except Exception:
            with self._matches_lock:
                self._matches.pop(token, None)
            raise
        _LOGGER.debug("BluezTransport: listening on %s (token %d)", path, token)
        return token

    def remove_match(self, token: int) -> None:
        """Remove a match added by :meth:`add_match`.  Unknown tokens are ignored."""
        with self._matches_lock:
            entry = self._matches.pop(token, None)
        if entry is None or self._loop is None:
            return
        path, _callback = entry
        self._call_sync(
            _DBUS_PATH,
            _DBUS_SERVICE,
            "RemoveMatch",
            "s",
            [properties_match_rule(path)],
            destination=_DBUS_SERVICE,
        )
        _LOGGER.debug("BluezTransport: stopped listening on %s", path)

    def _on_message(self, msg: Message) -> None:
        """Dispatch a ``PropertiesChanged`` signal to matching callbacks."""
        if (
            msg.message_type != MessageType.SIGNAL
            or msg.interface != PROPERTIES_INTERFACE
            or msg.member != "PropertiesChanged"
        ):
            return
        try:
            _interface, changed, invalidated = msg.body
        except (TypeError, ValueError):
            _LOGGER.debug(
                "BluezTransport: malformed PropertiesChanged on %s", msg.path
            )
            return
        changed = {
            key: value.value if isinstance(value, Variant) else value
            for key, value in changed.items()
        }
        invalidated = list(invalidated)

        with self._matches_lock:
            targets = [
                callback
                for namespace, callback in self._matches.values()
                if is_in_namespace(msg.path, namespace)
            ]
        for callback in targets:
            try:
                callback(msg.path, changed, invalidated)
            except Exception:
                _LOGGER.exception(
                    "BluezTransport: PropertiesChanged callback failed for %s",
                    msg.path,
                )
