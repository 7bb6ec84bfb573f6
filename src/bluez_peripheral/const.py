"""Constants and configuration dataclasses for bluez-peripheral."""

from __future__ import annotations

import platform
from dataclasses import dataclass

IS_LINUX = platform.system() == "Linux"

# Overall budget for ``Peripheral.connect()`` (seconds).  Covers both the
# ``Device1.Connect`` round-trip and the wait for ``Connected=True``,
# because BlueZ may acknowledge Connect before the property flips.
CONNECT_TIMEOUT = 30.0

# Reply timeout for a single D-Bus method call (seconds).
METHOD_CALL_TIMEOUT = 30.0

# Largest ATT handle.  Used as the end of the last range in a run.
MAX_HANDLE = 0xFFFF

# Full handle span used by ``discover_characteristics()``.
MIN_HANDLE = 0x0001

# D-Bus names
BLUEZ_SERVICE = "org.bluez"
DEVICE_INTERFACE = "org.bluez.Device1"
GATT_CHARACTERISTIC_INTERFACE = "org.bluez.GattCharacteristic1"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

# BlueZ error names the connection state machine classifies
ERROR_ALREADY_CONNECTED = "org.bluez.Error.AlreadyConnected"
ERROR_FAILED = "org.bluez.Error.Failed"


@dataclass
class PeripheralConfig:
    """Tunables for a :class:`~bluez_peripheral.peripheral.Peripheral`.

    Parameters
    ----------
    connect_timeout:
        Absolute budget for :meth:`Peripheral.connect` in seconds.  The
        time spent waiting for the ``Connect`` reply is deducted from
        the wait for the ``Connected`` property.
    method_call_timeout:
        Maximum seconds to wait for a single D-Bus method reply
        (``ReadValue``, ``WriteValue``, ``Disconnect``).
    adapter:
        Adapter name used when deriving object paths from an address.
    """

    connect_timeout: float = CONNECT_TIMEOUT
    method_call_timeout: float = METHOD_CALL_TIMEOUT
    adapter: str = "hci0"
