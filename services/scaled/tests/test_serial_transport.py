import asyncio
import threading
from types import SimpleNamespace

import pytest
import serial

from scaled import serial_transport
from scaled.errors import OpenFailed, UserCancelled, WriteFailed
from scaled.models import SerialConfig
from scaled.serial_transport import SerialTransport, discover_ports
from scaled.transport import PortInfo


def fake_ports(*pairs):
    return lambda: [SimpleNamespace(device=d, description=desc) for d, desc in pairs]


def test_discover_ports_prefers_usb_adapters(monkeypatch):
    monkeypatch.setattr(
        serial_transport.list_ports,
        "comports",
        fake_ports(("/dev/ttyS0", "n/a"), ("/dev/ttyUSB0", "CH340 serial converter")),
    )
    assert [p.device for p in discover_ports()] == ["/dev/ttyUSB0", "/dev/ttyS0"]


def test_request_connection_without_ports_is_a_cancel(monkeypatch):
    monkeypatch.setattr(serial_transport.list_ports, "comports", fake_ports())
    with pytest.raises(UserCancelled):
        asyncio.run(SerialTransport().request_connection())


def test_configured_port_is_used_as_is():
    handle = asyncio.run(SerialTransport(port="/dev/ttyUSB3").request_connection())
    assert handle.device == "/dev/ttyUSB3"


def test_open_maps_parameters(monkeypatch):
    calls = []

    def fake_serial(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(is_open=True, close=lambda: None, cancel_read=lambda: None)

    monkeypatch.setattr(serial_transport.serial, "Serial", fake_serial)
    transport = SerialTransport()
    asyncio.run(transport.open(PortInfo(device="/dev/ttyUSB0"), SerialConfig.parse("2400-7E1")))
    assert calls[0]["baudrate"] == 2400
    assert calls[0]["bytesize"] == serial.SEVENBITS
    assert calls[0]["parity"] == serial.PARITY_EVEN
    assert calls[0]["stopbits"] == serial.STOPBITS_ONE


def test_open_failure_becomes_open_failed(monkeypatch):
    def busy(**kwargs):
        raise serial.SerialException("device busy")

    monkeypatch.setattr(serial_transport.serial, "Serial", busy)
    with pytest.raises(OpenFailed, match="device busy"):
        asyncio.run(SerialTransport().open(PortInfo(device="/dev/ttyUSB0"), SerialConfig.parse("9600-8N1")))


def test_close_and_write_when_not_open():
    transport = SerialTransport()
    handle = PortInfo(device="/dev/ttyUSB0")
    asyncio.run(transport.close(handle))
    asyncio.run(transport.close(handle))
    with pytest.raises(WriteFailed):
        asyncio.run(transport.write_bytes(handle, b"P\r\n"))


def test_cancelled_open_closes_late_port(monkeypatch):
    release = threading.Event()
    closed = threading.Event()

    def slow_serial(**kwargs):
        release.wait(2)
        return SimpleNamespace(is_open=True, close=closed.set, cancel_read=lambda: None)

    monkeypatch.setattr(serial_transport.serial, "Serial", slow_serial)

    async def run():
        transport = SerialTransport()
        task = asyncio.ensure_future(
            transport.open(PortInfo(device="/dev/ttyUSB0"), SerialConfig.parse("9600-8N1"))
        )
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        release.set()
        for _ in range(100):
            if closed.is_set():
                break
            await asyncio.sleep(0.01)
        return transport

    transport = asyncio.run(run())
    assert closed.is_set()
    assert transport._ser is None
