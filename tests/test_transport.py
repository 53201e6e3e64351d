"""Tests for transport selection and the individual backends."""

import socket
from unittest.mock import MagicMock, patch

import pytest
import serial

from vmc_vendify_mcp.config import LinkConfig
from vmc_vendify_mcp.protocol.commands import (
    DispenseCommand,
    DoorStatusCommand,
    LightingControlCommand,
    ReadTemperatureCommand,
    SetTargetTemperatureCommand,
)
from vmc_vendify_mcp.protocol.framing import decode_response
from vmc_vendify_mcp.transport import (
    RfcommTransport,
    SerialTransport,
    SimulatedTransport,
    SimulatedVMC,
    create_transport,
)
from vmc_vendify_mcp.transport.rfcomm_connection import (
    is_bluetooth_address,
    parse_rfcomm_address,
)


# ─── SELECTION ───────────────────────────────────────────────────────

def test_create_transport_sim():
    assert isinstance(create_transport("sim://demo"), SimulatedTransport)


def test_create_transport_rfcomm():
    assert isinstance(create_transport("00:11:22:33:44:55"), RfcommTransport)
    assert isinstance(create_transport("00:11:22:33:44:55/2"), RfcommTransport)


def test_create_transport_serial():
    transport = create_transport("/dev/rfcomm0", LinkConfig(baudrate=19200))
    assert isinstance(transport, SerialTransport)
    assert transport._baudrate == 19200


# ─── RFCOMM ──────────────────────────────────────────────────────────

def test_is_bluetooth_address():
    assert is_bluetooth_address("aa:bb:cc:dd:ee:ff")
    assert is_bluetooth_address("AA-BB-CC-DD-EE-FF/4")
    assert not is_bluetooth_address("/dev/ttyUSB0")
    assert not is_bluetooth_address("COM5")


def test_parse_rfcomm_address():
    assert parse_rfcomm_address("aa-bb-cc-dd-ee-ff") == ("AA:BB:CC:DD:EE:FF", 1)
    assert parse_rfcomm_address("AA:BB:CC:DD:EE:FF/3") == ("AA:BB:CC:DD:EE:FF", 3)
    assert parse_rfcomm_address("AA:BB:CC:DD:EE:FF", default_channel=5)[1] == 5


@pytest.mark.parametrize("address", ["AA:BB:CC:DD:EE", "AA:BB:CC:DD:EE:FF/0", "AA:BB:CC:DD:EE:FF/x"])
def test_parse_rfcomm_address_rejects(address):
    with pytest.raises(ValueError):
        parse_rfcomm_address(address)


def test_rfcomm_open_write_read_close():
    sock = MagicMock()
    sock.recv.return_value = b"\x00\x5d\x00\x00\x5d"
    with patch.object(socket, "AF_BLUETOOTH", 31, create=True), \
         patch.object(socket, "BTPROTO_RFCOMM", 3, create=True), \
         patch("socket.socket", return_value=sock) as factory:
        transport = RfcommTransport()
        info = transport.open("aa:bb:cc:dd:ee:ff/2")

    factory.assert_called_once_with(31, socket.SOCK_STREAM, 3)
    sock.connect.assert_called_once_with(("AA:BB:CC:DD:EE:FF", 2))
    assert info.backend == "rfcomm"
    assert transport.is_open

    assert transport.write(b"\x01\x02") == 2
    sock.sendall.assert_called_once_with(b"\x01\x02")
    assert transport.read(1024) == b"\x00\x5d\x00\x00\x5d"

    transport.close()
    sock.shutdown.assert_called_once_with(socket.SHUT_RDWR)
    sock.close.assert_called_once()
    assert not transport.is_open
    assert transport.read(1024) == b""


def test_rfcomm_connect_failure_closes_socket():
    sock = MagicMock()
    sock.connect.side_effect = OSError("Host is down")
    with patch.object(socket, "AF_BLUETOOTH", 31, create=True), \
         patch.object(socket, "BTPROTO_RFCOMM", 3, create=True), \
         patch("socket.socket", return_value=sock):
        with pytest.raises(ConnectionError, match="Host is down"):
            RfcommTransport().open("AA:BB:CC:DD:EE:FF")
    sock.close.assert_called_once()


def test_rfcomm_write_when_closed():
    with pytest.raises(ConnectionError):
        RfcommTransport().write(b"\x00")


# ─── SERIAL ──────────────────────────────────────────────────────────

def test_serial_open_uses_8n1():
    port = MagicMock()
    port.name = "/dev/rfcomm0"
    with patch("serial.Serial", return_value=port) as factory:
        transport = SerialTransport(baudrate=9600, poll_timeout=0.2)
        info = transport.open("/dev/rfcomm0")

    factory.assert_called_once_with(
        "/dev/rfcomm0",
        baudrate=9600,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        timeout=0.2,
    )
    assert info.backend == "serial"


def test_serial_open_failure():
    with patch("serial.Serial", side_effect=serial.SerialException("busy")):
        with pytest.raises(ConnectionError, match="busy"):
            SerialTransport().open("COM5")


def test_serial_read_polls_until_data():
    port = MagicMock()
    port.is_open = True
    port.in_waiting = 0
    port.read.side_effect = [b"", b"", b"\x01"]
    with patch("serial.Serial", return_value=port):
        transport = SerialTransport()
        transport.open("COM5")
    assert transport.read(64) == b"\x01"
    assert port.read.call_count == 3


def test_serial_read_after_close_is_end_of_stream():
    port = MagicMock()
    with patch("serial.Serial", return_value=port):
        transport = SerialTransport()
        transport.open("COM5")
    transport.close()
    port.close.assert_called_once()
    assert transport.read(64) == b""


def test_serial_write_flushes():
    port = MagicMock()
    port.write.return_value = 6
    with patch("serial.Serial", return_value=port):
        transport = SerialTransport()
        transport.open("COM5")
    assert transport.write(b"\x00" * 6) == 6
    port.flush.assert_called_once()


# ─── SIMULATOR ───────────────────────────────────────────────────────

def test_simulator_dispense_reply():
    vmc = SimulatedVMC()
    reply = decode_response(vmc(DispenseCommand(2, 7).encode()))
    assert reply.is_checksum_valid
    assert reply.driver_board_number == 2
    assert reply.has_product_delivery
    assert vmc.dispensed == [(2, 7)]


def test_simulator_temperature_is_signed():
    vmc = SimulatedVMC(temperature=-5, standby_temperature=3)
    reply = decode_response(vmc(ReadTemperatureCommand(0).encode()))
    assert reply.error_code == 0xFB
    assert reply.product_flag == 3


def test_simulator_state_changes():
    vmc = SimulatedVMC()
    vmc(SetTargetTemperatureCommand(0, -10).encode())
    assert vmc.standby_temperature == -10
    vmc(LightingControlCommand(0, True).encode())
    assert vmc.lights_on
    vmc.door_open = True
    reply = decode_response(vmc(DoorStatusCommand(0).encode()))
    assert reply.product_flag == 0x01


def test_simulator_ignores_malformed_frame():
    assert SimulatedVMC()(b"\x00\x00\x00\x00\x00\x00") is None


def test_simulated_transport_loopback():
    transport = SimulatedTransport()
    info = transport.open("sim://bench")
    assert info.name == "bench"
    transport.write(ReadTemperatureCommand(0).encode())
    assert transport.read(2) + transport.read(16) == SimulatedVMC()(ReadTemperatureCommand(0).encode())


def test_simulated_transport_close_ends_stream():
    transport = SimulatedTransport()
    transport.open("sim://x")
    transport.close()
    assert transport.read(16) == b""
    with pytest.raises(ConnectionError):
        transport.write(b"\x00")
