"""Tests for const module."""

from bluez_peripheral.const import (
    CONNECT_TIMEOUT,
    IS_LINUX,
    MAX_HANDLE,
    METHOD_CALL_TIMEOUT,
    MIN_HANDLE,
    PeripheralConfig,
)


def test_peripheral_config_defaults():
    config = PeripheralConfig()
    assert config.connect_timeout == 30.0
    assert config.method_call_timeout == 30.0
    assert config.adapter == "hci0"


def test_peripheral_config_custom():
    config = PeripheralConfig(connect_timeout=2.5, adapter="hci1")
    assert config.connect_timeout == 2.5
    assert config.adapter == "hci1"
    assert config.method_call_timeout == METHOD_CALL_TIMEOUT


def test_constants():
    assert CONNECT_TIMEOUT == 30.0
    assert MAX_HANDLE == 0xFFFF
    assert MIN_HANDLE == 0x0001
    assert isinstance(IS_LINUX, bool)
