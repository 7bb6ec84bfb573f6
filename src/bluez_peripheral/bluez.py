"""BlueZ object path helpers."""

from __future__ import annotations

import re

_DEVICE_SEGMENT = re.compile(r"^dev_((?:[0-9A-Fa-f]{2}_){5}[0-9A-Fa-f]{2})$")


def address_to_bluez_path(address: str, adapter: str = "hci0") -> str:
    """Convert a BLE address + adapter to a BlueZ D-Bus object path.

    Example::

        >>> address_to_bluez_path("AA:BB:CC:DD:EE:FF", "hci0")
        '/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF'
    """
    dev_part = f"dev_{address.upper().replace(':', '_')}"
    return f"/org/bluez/{adapter}/{dev_part}"


def bluez_path_to_address(path: str) -> str | None:
    """Extract the device address from a device or attribute object path.

    Returns ``None`` if *path* has no ``dev_XX_XX_XX_XX_XX_XX`` segment.
    """
    for segment in path.split("/"):
        match = _DEVICE_SEGMENT.match(segment)
        if match is not None:
            return match.group(1).upper().replace("_", ":")
    return None


def is_in_namespace(path: str, namespace: str) -> bool:
    """Return whether *path* is *namespace* itself or a descendant of it.

    Same semantics as the D-Bus ``path_namespace`` match key, so
    ``/org/bluez/hci0/dev_A`` does not contain ``/org/bluez/hci0/dev_AB``.
    """
    namespace = namespace.rstrip("/")
    if not namespace:
        return True
    return path == namespace or path.startswith(namespace + "/")
