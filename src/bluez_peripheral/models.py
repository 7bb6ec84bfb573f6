"""Value types shared by the registry, state machine and facade."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, IntFlag

from bleak.uuids import normalize_uuid_str

from .exc import InvalidHandlePath

# Last segment of a BlueZ GATT object path, e.g. ``service001a``,
# ``char001b`` or ``desc001d``.
_HANDLE_SEGMENT = re.compile(r"^([a-z]+)([0-9a-fA-F]{4})$")


class AddressType(str, Enum):
    """LE address type as reported by BlueZ's ``AddressType`` property."""

    PUBLIC = "public"
    RANDOM = "random"

    @classmethod
    def default(cls) -> AddressType:
        return cls.PUBLIC

    @classmethod
    def parse(cls, value: str) -> AddressType:
        """Parse *value*, falling back to :meth:`default` if unrecognised."""
        try:
            return cls(value.lower())
        except (ValueError, AttributeError):
            return cls.default()


class CharPropFlags(IntFlag):
    """GATT characteristic property bits."""

    NONE = 0
    BROADCAST = 0x01
    READ = 0x02
    WRITE_WITHOUT_RESPONSE = 0x04
    WRITE = 0x08
    NOTIFY = 0x10
    INDICATE = 0x20
    AUTHENTICATED_SIGNED_WRITES = 0x40
    EXTENDED_PROPERTIES = 0x80

    @classmethod
    def from_bluez_flags(cls, flags: list[str]) -> CharPropFlags:
        """Convert BlueZ's ``Flags`` string list into a bitset.

        Flags with no GATT property bit (``reliable-write``,
        ``encrypt-read`` etc.) are ignored.
        """
        result = cls.NONE
        for flag in flags:
            bit = _BLUEZ_FLAG_BITS.get(flag)
            if bit is not None:
                result |= bit
        return result


_BLUEZ_FLAG_BITS = {
    "broadcast": CharPropFlags.BROADCAST,
    "read": CharPropFlags.READ,
    "write-without-response": CharPropFlags.WRITE_WITHOUT_RESPONSE,
    "write": CharPropFlags.WRITE,
    "notify": CharPropFlags.NOTIFY,
    "indicate": CharPropFlags.INDICATE,
    "authenticated-signed-writes": CharPropFlags.AUTHENTICATED_SIGNED_WRITES,
    "extended-properties": CharPropFlags.EXTENDED_PROPERTIES,
}


class AttributeType(Enum):
    """Kind of GATT attribute an object path names."""

    SERVICE = "service"
    CHARACTERISTIC = "char"
    DESCRIPTOR = "desc"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Handle:
    """Numeric ATT handle plus attribute type, parsed from an object path."""

    handle: int
    typ: AttributeType

    @classmethod
    def parse(cls, path: str) -> Handle:
        """Parse the trailing ``<kind><hhhh>`` segment of *path*.

        Example::

            >>> Handle.parse("/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF/service000a/char000b")
            Handle(handle=11, typ=<AttributeType.CHARACTERISTIC: 'char'>)

        Raises :class:`~bluez_peripheral.exc.InvalidHandlePath` when the
        last segment carries no handle (a device or adapter path).
        """
        segment = path.rstrip("/").rsplit("/", 1)[-1]
        match = _HANDLE_SEGMENT.match(segment)
        if match is None:
            raise InvalidHandlePath(path)
        prefix, digits = match.groups()
        try:
            typ = AttributeType(prefix)
        except ValueError:
            typ = AttributeType.UNKNOWN
        return cls(handle=int(digits, 16), typ=typ)


@dataclass(frozen=True, order=True)
class Characteristic:
    """A GATT attribute with the handle range it occupies.

    Instances order by ``start_handle``, then ``end_handle``, then
    ``value_handle``, so a sorted list is sorted by range.
    """

    start_handle: int
    end_handle: int
    value_handle: int
    uuid: str
    properties: CharPropFlags = CharPropFlags.NONE

    def __post_init__(self) -> None:
        object.__setattr__(self, "uuid", normalize_uuid_str(self.uuid))


@dataclass
class PeripheralProperties:
    """Mutable snapshot of a device's advertised properties.

    ``manufacturer_data`` holds every entry as a little-endian 16-bit
    company id followed by its payload, entries concatenated.
    ``discovery_count`` is bumped on every property update.
    """

    address: str
    address_type: AddressType = field(default_factory=AddressType.default)
    local_name: str | None = None
    tx_power_level: int | None = None
    manufacturer_data: bytes | None = None
    discovery_count: int = 0
