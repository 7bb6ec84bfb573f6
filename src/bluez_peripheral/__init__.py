"""bluez-peripheral: a blocking model of one BLE peripheral over BlueZ D-Bus.

Tracks the connection lifecycle from BlueZ property-change signals,
rebuilds GATT handle ranges from out-of-order attribute announcements,
and offers blocking connect/discover/read/write on top.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .bluez import address_to_bluez_path, bluez_path_to_address
from .const import (
    CONNECT_TIMEOUT,
    IS_LINUX,
    MAX_HANDLE,
    METHOD_CALL_TIMEOUT,
    PeripheralConfig,
)
from .exc import (
    InvalidHandlePath,
    NotConnectedError,
    NotSupportedError,
    PeripheralError,
    TimedOutError,
    TransportError,
)
from .models import (
    AddressType,
    AttributeType,
    Characteristic,
    CharPropFlags,
    Handle,
    PeripheralProperties,
)
from .peripheral import Peripheral
from .properties import PropertyUpdateHandler, decode_manufacturer_data
from .registry import AttributeRecord, AttributeRegistry, build_characteristic_ranges
from .state import ConnectionState, StateCell
from .transport import BluezTransport, CommandSink, NotificationSource

__all__ = [
    # Facade
    "Peripheral",
    "PeripheralConfig",
    # Transport
    "BluezTransport",
    "CommandSink",
    "NotificationSource",
    # Model
    "AddressType",
    "AttributeType",
    "Characteristic",
    "CharPropFlags",
    "Handle",
    "PeripheralProperties",
    # Engine
    "AttributeRecord",
    "AttributeRegistry",
    "build_characteristic_ranges",
    "ConnectionState",
    "StateCell",
    "PropertyUpdateHandler",
    "decode_manufacturer_data",
    # Errors
    "PeripheralError",
    "NotConnectedError",
    "NotSupportedError",
    "TimedOutError",
    "TransportError",
    "InvalidHandlePath",
    # BlueZ helpers
    "address_to_bluez_path",
    "bluez_path_to_address",
    # Constants
    "CONNECT_TIMEOUT",
    "IS_LINUX",
    "MAX_HANDLE",
    "METHOD_CALL_TIMEOUT",
]
