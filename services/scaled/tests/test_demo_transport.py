import asyncio

from scaled.decoder import decode
from scaled.demo_transport import DemoTransport
from scaled.models import SerialConfig
from scaled.reader import ScaleReader


def test_demo_lines_decode():
    t = DemoTransport()
    r1 = decode(t.sample_line().decode())
    r2 = decode(t.sample_line().decode())
    # Values should stay within the synthetic swing around the base weight
    assert 1200 <= r1.weight_kg <= 1300
    assert 1200 <= r2.weight_kg <= 1300


def test_reader_finds_demo_native_config():
    native = SerialConfig.parse("9600-7E1")

    async def run():
        reader = ScaleReader(
            DemoTransport(native=native, interval=0.005),
            candidates=[SerialConfig.parse("2400-8N1"), native],
            probe_window=0.1,
            settle_delay=0,
        )
        ok = await reader.connect()
        active = reader.state.active_config
        weight = reader.get_current_weight()
        await reader.disconnect()
        return ok, active, weight

    ok, active, weight = asyncio.run(run())
    assert ok is True
    assert active == native
    assert 1200 <= weight <= 1300
