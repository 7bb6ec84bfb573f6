"""Exceptions raised by bluez-peripheral.

Every error derives from :class:`PeripheralError`, which is a
``BleakError`` so code already catching bleak failures keeps working.
"""

from __future__ import annotations

from bleak.exc import BleakError


class PeripheralError(BleakError):
    """Base class for all peripheral errors."""


class NotConnectedError(PeripheralError):
    """The device is not connected, or dropped while we were waiting."""

    def __init__(self, message: str = "Not connected") -> None:
        super().__init__(message)


class TimedOutError(PeripheralError):
    """An operation exceeded its time budget."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.1f} s")
        self.timeout = timeout


class NotSupportedError(PeripheralError):
    """No attribute mapping exists for the requested operation."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"Not supported: {operation}")
        self.operation = operation


class TransportError(PeripheralError):
    """A D-Bus method call returned an error reply.

    ``error_name`` is the D-Bus error name, e.g.
    ``org.bluez.Error.AlreadyConnected``.
    """

    def __init__(self, error_name: str, message: str = "") -> None:
        super().__init__(f"{error_name}: {message}" if message else error_name)
        self.error_name = error_name
        self.message = message


class InvalidHandlePath(PeripheralError, ValueError):
    """An object path does not name a GATT attribute."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Not an attribute path: {path}")
        self.path = path
