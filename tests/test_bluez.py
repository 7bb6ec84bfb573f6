"""Tests for bluez module."""

from bluez_peripheral.bluez import (
    address_to_bluez_path,
    bluez_path_to_address,
    is_in_namespace,
)


def test_address_to_bluez_path_default_adapter():
    path = address_to_bluez_path("AA:BB:CC:DD:EE:FF")
    assert path == "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF"


def test_address_to_bluez_path_specific_adapter():
    path = address_to_bluez_path("AA:BB:CC:DD:EE:FF", "hci1")
    assert path == "/org/bluez/hci1/dev_AA_BB_CC_DD_EE_FF"


def test_address_to_bluez_path_lowercase_normalized():
    path = address_to_bluez_path("aa:bb:cc:dd:ee:ff")
    assert path == "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF"


def test_bluez_path_to_address_device():
    assert (
        bluez_path_to_address("/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF")
        == "AA:BB:CC:DD:EE:FF"
    )


def test_bluez_path_to_address_attribute():
    path = "/org/bluez/hci0/dev_aa_bb_cc_dd_ee_01/service000a/char000b"
    assert bluez_path_to_address(path) == "AA:BB:CC:DD:EE:01"


def test_bluez_path_to_address_adapter_only():
    assert bluez_path_to_address("/org/bluez/hci0") is None


# ── is_in_namespace ───────────────────────────────────────────────


def test_namespace_contains_itself():
    assert is_in_namespace("/org/bluez/hci0/dev_A", "/org/bluez/hci0/dev_A")


def test_namespace_contains_children():
    assert is_in_namespace(
        "/org/bluez/hci0/dev_A/service000a/char000b", "/org/bluez/hci0/dev_A"
    )


def test_namespace_excludes_sibling_prefix():
    assert not is_in_namespace("/org/bluez/hci0/dev_AB", "/org/bluez/hci0/dev_A")


def test_namespace_trailing_slash():
    assert is_in_namespace("/org/bluez/hci0/dev_A/x", "/org/bluez/hci0/dev_A/")


def test_root_namespace_contains_everything():
    assert is_in_namespace("/org/bluez", "/")
