"""Tests for transport module: the dbus-fast command sink and signal source.

No system bus is needed: ``_connect_bus`` is patched to return a mock
bus, while the event loop thread and future plumbing run for real.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from dbus_fast import MessageType, Variant

from bluez_peripheral.const import PROPERTIES_INTERFACE
from bluez_peripheral.exc import TimedOutError, TransportError
from bluez_peripheral.transport import BluezTransport, properties_match_rule

_DEV = "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF"
_CHAR = f"{_DEV}/service0010/char0011"


def _reply(body=None, error_name=None):
    reply = MagicMock()
    if error_name is None:
        reply.message_type = MessageType.METHOD_RETURN
    else:
        reply.message_type = MessageType.ERROR
    reply.error_name = error_name
    reply.body = body if body is not None else []
    return reply


def _signal(path, changed, invalidated=None, interface=PROPERTIES_INTERFACE):
    msg = MagicMock()
    msg.message_type = MessageType.SIGNAL
    msg.interface = interface
    msg.member = "PropertiesChanged"
    msg.path = path
    msg.body = ["org.bluez.Device1", changed, invalidated or []]
    return msg


@pytest.fixture
def bus():
    bus = MagicMock()
    bus.call = AsyncMock(return_value=_reply())
    return bus


@pytest.fixture
def transport(bus):
    with (
        patch("bluez_peripheral.transport.IS_LINUX", True),
        patch.object(BluezTransport, "_connect_bus", new=AsyncMock(return_value=bus)),
    ):
        transport = BluezTransport(method_call_timeout=2.0)
        transport.start()
        yield transport
        transport.stop()


def _sent(bus):
    return bus.call.call_args.args[0]


# ── Lifecycle ─────────────────────────────────────────────────────


@patch("bluez_peripheral.transport.IS_LINUX", False)
def test_start_non_linux():
    with pytest.raises(RuntimeError):
        BluezTransport().start()


def test_start_and_stop(transport):
    assert transport.is_running
    transport.stop()
    assert not transport.is_running


def test_stop_is_idempotent():
    transport = BluezTransport()
    transport.stop()
    transport.stop()
    assert not transport.is_running


def test_calls_before_start_raise():
    with pytest.raises(RuntimeError):
        BluezTransport().connect(_DEV)


# ── Method calls ──────────────────────────────────────────────────


def test_connect_sends_device_connect(transport, bus):
    transport.connect(_DEV)
    msg = _sent(bus)
    assert msg.destination == "org.bluez"
    assert msg.path == _DEV
    assert msg.interface == "org.bluez.Device1"
    assert msg.member == "Connect"


def test_disconnect_sends_device_disconnect(transport, bus):
    transport.disconnect(_DEV)
    assert _sent(bus).member == "Disconnect"


def test_read_value_returns_bytes(transport, bus):
    bus.call.return_value = _reply([b"\x01\x02"])
    assert transport.read_value(_CHAR) == b"\x01\x02"
    msg = _sent(bus)
    assert msg.interface == "org.bluez.GattCharacteristic1"
    assert msg.member == "ReadValue"
    assert msg.signature == "a{sv}"


def test_write_value_sends_payload(transport, bus):
    transport.write_value(_CHAR, bytearray(b"\xaa"))
    msg = _sent(bus)
    assert msg.member == "WriteValue"
    assert msg.signature == "aya{sv}"
    assert msg.body == [b"\xaa", {}]


def test_error_reply_raises_transport_error(transport, bus):
    bus.call.return_value = _reply(
        ["Already Connected"], error_name="org.bluez.Error.AlreadyConnected"
    )
    with pytest.raises(TransportError) as exc_info:
        transport.connect(_DEV)
    assert exc_info.value.error_name == "org.bluez.Error.AlreadyConnected"
    assert exc_info.value.message == "Already Connected"


def test_slow_reply_times_out(transport, bus):
    async def slow(msg):
        await asyncio.sleep(5)

    bus.call.side_effect = slow
    with pytest.raises(TimedOutError):
        transport.read_value(_CHAR, timeout=0.1)


@pytest.mark.asyncio
async def test_call_returns_empty_body_for_no_reply(bus):
    bus.call.return_value = None
    transport = BluezTransport()
    transport._bus = bus
    assert await transport._call("org.bluez", _DEV, "org.bluez.Device1", "Connect") == []


@pytest.mark.asyncio
async def test_call_error_without_message(bus):
    bus.call.return_value = _reply(error_name="org.bluez.Error.Failed")
    transport = BluezTransport()
    transport._bus = bus
    with pytest.raises(TransportError) as exc_info:
        await transport._call("org.bluez", _DEV, "org.bluez.Device1", "Connect")
    assert exc_info.value.error_name == "org.bluez.Error.Failed"
    assert exc_info.value.message == ""


# ── Matches ───────────────────────────────────────────────────────


def test_match_rule_uses_path_namespace():
    rule = properties_match_rule(_DEV)
    assert "member='PropertiesChanged'" in rule
    assert f"path_namespace='{_DEV}'" in rule


def test_add_match_sends_add_match(transport, bus):
    token = transport.add_match(_DEV, MagicMock())
    msg = _sent(bus)
    assert msg.destination == "org.freedesktop.DBus"
    assert msg.member == "AddMatch"
    assert msg.body == [properties_match_rule(_DEV)]
    assert isinstance(token, int)


def test_add_match_failure_forgets_callback(transport, bus):
    callback = MagicMock()
    bus.call.return_value = _reply(error_name="org.freedesktop.DBus.Error.AccessDenied")
    with pytest.raises(TransportError):
        transport.add_match(_DEV, callback)
    transport._on_message(_signal(_DEV, {"Connected": Variant("b", True)}))
    callback.assert_not_called()


def test_remove_match_sends_remove_match(transport, bus):
    token = transport.add_match(_DEV, MagicMock())
    transport.remove_match(token)
    assert _sent(bus).member == "RemoveMatch"


def test_remove_unknown_token_is_noop(transport, bus):
    transport.remove_match(12345)
    bus.call.assert_not_called()


# ── Signal dispatch ───────────────────────────────────────────────


def test_signal_dispatched_with_unwrapped_values(transport):
    callback = MagicMock()
    transport.add_match(_DEV, callback)
    transport._on_message(
        _signal(_DEV, {"Connected": Variant("b", True)}, ["RSSI"])
    )
    callback.assert_called_once_with(_DEV, {"Connected": True}, ["RSSI"])


def test_signal_for_child_path_dispatched(transport):
    callback = MagicMock()
    transport.add_match(_DEV, callback)
    transport._on_message(_signal(_CHAR, {"Value": Variant("ay", b"\x01")}))
    callback.assert_called_once_with(_CHAR, {"Value": b"\x01"}, [])


def test_signal_for_other_device_not_dispatched(transport):
    callback = MagicMock()
    transport.add_match(_DEV, callback)
    transport._on_message(_signal("/org/bluez/hci0/dev_11_22_33_44_55_66", {}))
    callback.assert_not_called()


def test_other_signals_ignored(transport):
    callback = MagicMock()
    transport.add_match(_DEV, callback)
    msg = _signal(_DEV, {})
    msg.member = "InterfacesAdded"
    transport._on_message(msg)
    callback.assert_not_called()


def test_callback_error_does_not_stop_dispatch(transport):
    bad = MagicMock(side_effect=RuntimeError("boom"))
    good = MagicMock()
    transport.add_match(_DEV, bad)
    transport.add_match(_DEV, good)
    transport._on_message(_signal(_DEV, {"Name": Variant("s", "x")}))
    good.assert_called_once()


def test_peripheral_end_to_end(transport):
    from bluez_peripheral.peripheral import Peripheral

    peripheral = Peripheral(transport, _DEV, "AA:BB:CC:DD:EE:FF")
    peripheral.listen()
    transport._on_message(_signal(_DEV, {"Connected": Variant("b", True)}))
    assert peripheral.is_connected()
    peripheral.stop_listening()
    peripheral.stop_listening()
