"""Tests for SPI multiplex arbitration and the I2C/SPI register transports."""
import logging
import os
import sys
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

# parent directory to the python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("spi_mux_test")

from sensors.bus import I2CBus, SPIBus, open_bus
from sensors.exceptions import ArbitrationMisconfigured, BusLockTimeout, TransportError
from sensors.models import MultiplexWiring, SensorConfig
from sensors.spi_mux import SpiMuxGate, build_gate
from utils.clock import Clock
from tests.fakes import FakeClock, FakeLine, FakeWire, ScriptedLine


def make_gate(address, lock_line=None, bit_lines=None, clock=None, **kwargs):
    lock_line = lock_line or FakeLine()
    bit_lines = bit_lines or [FakeLine(), FakeLine(), FakeLine()]
    with patch("sensors.spi_mux.atexit"):
        gate = SpiMuxGate(address, lock_line, bit_lines, clock=clock or FakeClock(), **kwargs)
    return gate, lock_line, bit_lines


def line_address(bit_lines):
    return sum(line.value << bit for bit, line in enumerate(bit_lines))


def test_gate_addresses_then_locks():
    """Address lines are programmed before the lock line goes high."""
    events = []

    class RecordingLine(FakeLine):
        def __init__(self, label):
            super().__init__()
            self.label = label

        def write(self, value):
            super().write(value)
            events.append((self.label, self.value))

    lock = RecordingLine("lock")
    bits = [RecordingLine("a0"), RecordingLine("a1"), RecordingLine("a2")]
    gate, _, _ = make_gate(5, lock_line=lock, bit_lines=bits)

    with gate.selected():
        assert gate.held
        assert lock.value == 1
        assert line_address(bits) == 5

    assert events == [("a0", 1), ("a1", 0), ("a2", 1), ("lock", 1), ("lock", 0)]
    assert not gate.held


def test_gate_releases_on_failure():
    """The lock line drops even when the transfer raises."""
    gate, lock, bits = make_gate(3)

    with pytest.raises(TransportError):
        with gate.selected():
            raise TransportError("transfer failed")

    assert lock.value == 0
    assert not gate.held
    assert not lock.claimed and not any(line.claimed for line in bits)


def test_gate_waits_for_lock():
    """A held lock line is polled at the configured interval until free."""
    clock = FakeClock()
    lock = ScriptedLine(held_reads=3)
    gate, _, bits = make_gate(6, lock_line=lock, clock=clock, poll_interval=0.2)

    gate.acquire()

    assert clock.sleeps == [0.2, 0.2, 0.2]
    assert gate.held
    assert line_address(bits) == 6
    gate.release()


def test_gate_lock_timeout():
    """A lock that never frees raises BusLockTimeout without touching the address lines."""
    clock = FakeClock()
    lock = FakeLine(value=1)
    gate, _, bits = make_gate(1, lock_line=lock, clock=clock, poll_interval=0.2, timeout=1.0)

    with pytest.raises(BusLockTimeout):
        gate.acquire()

    assert all(line.history == [] for line in bits)
    assert lock.history == []
    assert not gate.held


def test_exit_hook_registered_once_per_gate():
    """The process exit hook is registered at construction, not per transaction."""
    with patch("sensors.spi_mux.atexit") as atexit_mock:
        gate = SpiMuxGate(2, FakeLine(), [FakeLine(), FakeLine(), FakeLine()], clock=FakeClock())
        for _ in range(3):
            with gate.selected():
                pass
        atexit_mock.register.assert_called_once_with(gate.release_if_held)

        gate.close()
        atexit_mock.unregister.assert_called_once_with(gate.release_if_held)


def test_release_if_held_forces_lock_low():
    """The exit hook drops a lock left held, and is a no-op otherwise."""
    gate, lock, _ = make_gate(4)
    gate.release_if_held()
    assert lock.history == []

    gate.acquire()
    gate.release_if_held()
    assert lock.value == 0
    assert not gate.held


def test_competing_gates_are_mutually_exclusive():
    """Two sensors sharing lock and address lines never transfer at the same time."""
    lock = FakeLine()
    bits = [FakeLine(), FakeLine(), FakeLine()]
    clock = Clock()
    gates = [make_gate(addr, lock_line=lock, bit_lines=bits, clock=clock,
                       poll_interval=0.0005, timeout=10)[0] for addr in (2, 5)]

    in_transfer = []
    violations = []
    guard = threading.Lock()

    def transfer(gate):
        with guard:
            in_transfer.append(gate.address)
            if len(in_transfer) > 1:
                violations.append(tuple(in_transfer))
        if lock.value != 1 or line_address(bits) != gate.address:
            violations.append(("address", gate.address, line_address(bits)))
        time.sleep(0.001)
        if line_address(bits) != gate.address:
            violations.append(("changed", gate.address, line_address(bits)))
        with guard:
            in_transfer.remove(gate.address)

    def worker(gate):
        for i in range(20):
            try:
                with gate.selected():
                    transfer(gate)
                    if i % 5 == 0:
                        raise TransportError("simulated transfer failure")
            except TransportError:
                pass

    threads = [threading.Thread(target=worker, args=(gate,)) for gate in gates]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert violations == []
    assert lock.value == 0
    assert not any(gate.held for gate in gates)


def test_partial_wiring_disables_arbitration():
    """Incomplete wiring warns and falls back to unguarded access."""
    factory = MagicMock()

    missing_bit = MultiplexWiring(address=2, select_pin=48, bit_pins=(49, None, 115))
    with pytest.warns(ArbitrationMisconfigured):
        assert build_gate(missing_bit, line_factory=factory) is None

    missing_select = MultiplexWiring(address=2, select_pin=0, bit_pins=(49, 117, 115))
    with pytest.warns(ArbitrationMisconfigured):
        assert build_gate(missing_select, line_factory=factory) is None

    factory.assert_not_called()
    assert build_gate(None, line_factory=factory) is None


def test_complete_wiring_builds_gate():
    """Complete wiring sets up the lock line and three address lines."""
    factory = MagicMock(side_effect=lambda chip, pin: FakeLine())
    wiring = MultiplexWiring(address=7, select_pin=48, bit_pins=(49, 117, 115), gpio_chip=1)

    with patch("sensors.spi_mux.atexit"):
        gate = build_gate(wiring, clock=FakeClock(), line_factory=factory)

    assert gate.address == 7
    assert [c.args for c in factory.call_args_list] == [(1, 48), (1, 49), (1, 117), (1, 115)]


def make_process_view(wires):
    """Line handles of one process over the shared lock and address wires."""
    lock_wire, *bit_wires = wires
    return FakeLine(wire=lock_wire), [FakeLine(wire=wire) for wire in bit_wires]


def test_lock_visible_across_processes():
    """A second process sees the lock as busy while the first holds it, then takes it."""
    wires = [FakeWire() for _ in range(4)]
    lock_a, bits_a = make_process_view(wires)
    lock_b, bits_b = make_process_view(wires)
    gate_a, _, _ = make_gate(2, lock_line=lock_a, bit_lines=bits_a)
    clock_b = FakeClock()
    gate_b, _, _ = make_gate(5, lock_line=lock_b, bit_lines=bits_b, clock=clock_b,
                             poll_interval=0.2, timeout=1.0)

    gate_a.acquire()
    with pytest.raises(BusLockTimeout, match="GPIO busy"):
        gate_b.acquire()
    assert lock_b.peeks > 1
    assert not lock_b.claimed and not any(line.claimed for line in bits_b)
    # Process B never disturbed A's address or lock
    assert wires[0].level == 1
    assert line_address(bits_a) == 2

    gate_a.release()
    assert all(wire.owner is None for wire in wires)

    gate_b.acquire()
    assert wires[0].level == 1
    assert line_address(bits_b) == 5
    gate_b.release()
    assert wires[0].level == 0


def test_building_gate_does_not_touch_lines():
    """Creating a gate while another process holds the lock neither fails nor drives the lock low."""
    wires = [FakeWire() for _ in range(4)]
    lock_a, bits_a = make_process_view(wires)
    gate_a, _, _ = make_gate(1, lock_line=lock_a, bit_lines=bits_a)
    gate_a.acquire()

    views = iter([FakeLine(wire=wire) for wire in wires])
    wiring = MultiplexWiring(address=6, select_pin=48, bit_pins=(49, 117, 115))
    with patch("sensors.spi_mux.atexit"):
        gate_b = build_gate(wiring, clock=FakeClock(), line_factory=lambda chip, pin: next(views))

    assert gate_b is not None
    assert not gate_b.held
    assert wires[0].level == 1
    assert wires[0].history == [1]
    gate_a.release()


def test_processes_are_mutually_exclusive():
    """Gates in separate processes, each with their own line handles, never overlap."""
    wires = [FakeWire() for _ in range(4)]
    gates = []
    for addr in (3, 6):
        lock, bits = make_process_view(wires)
        gates.append(make_gate(addr, lock_line=lock, bit_lines=bits, clock=Clock(),
                               poll_interval=0.0005, timeout=10)[0])

    holders = []
    violations = []
    guard = threading.Lock()

    def worker(gate):
        for _ in range(15):
            with gate.selected():
                with guard:
                    holders.append(gate.address)
                    if len(holders) > 1:
                        violations.append(tuple(holders))
                level = sum(wire.level << bit for bit, wire in enumerate(wires[1:]))
                if wires[0].level != 1 or level != gate.address:
                    violations.append(("address", gate.address, level))
                time.sleep(0.001)
                with guard:
                    holders.remove(gate.address)

    threads = [threading.Thread(target=worker, args=(gate,)) for gate in gates]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert violations == []
    assert wires[0].level == 0
    assert all(wire.owner is None for wire in wires)


class LgpioError(Exception):
    pass


@patch("sensors.spi_mux.lgpio")
def test_open_line_requests_nothing(lgpio_mock):
    """Opening a line only opens the chip; one line object is shared per pin."""
    from sensors import spi_mux

    lgpio_mock.error = LgpioError
    lgpio_mock.gpiochip_open.return_value = 7
    with patch.dict(spi_mux._lines, clear=True), patch.dict(spi_mux._chip_handles, clear=True):
        first = spi_mux.open_line(0, 48)
        second = spi_mux.open_line(0, 48)

    assert first is second
    lgpio_mock.gpiochip_open.assert_called_once_with(0)
    lgpio_mock.gpio_claim_output.assert_not_called()
    lgpio_mock.gpio_write.assert_not_called()


@patch("sensors.spi_mux.lgpio")
def test_gpio_line_requests(lgpio_mock):
    """peek samples a pulled-down input and frees it; busy requests are reported, not raised."""
    from sensors.spi_mux import GpioLine

    lgpio_mock.error = LgpioError
    lgpio_mock.gpio_read.return_value = 0
    line = GpioLine(7, 48)

    assert line.peek() == 0
    lgpio_mock.gpio_claim_input.assert_called_once_with(7, 48, lgpio_mock.SET_PULL_DOWN)
    lgpio_mock.gpio_free.assert_called_once_with(7, 48)

    assert line.claim(1)
    lgpio_mock.gpio_claim_output.assert_called_once_with(7, 48, 1)
    line.write(0)
    lgpio_mock.gpio_write.assert_called_once_with(7, 48, 0)
    line.free()
    assert not line.claimed
    assert lgpio_mock.gpio_free.call_count == 2

    lgpio_mock.gpio_claim_input.side_effect = LgpioError("GPIO busy")
    lgpio_mock.gpio_claim_output.side_effect = LgpioError("GPIO busy")
    assert line.peek() is None
    assert not line.claim(1)
    assert line.busy_reason == "GPIO busy"

    lgpio_mock.gpio_write.side_effect = LgpioError("bad handle")
    with pytest.raises(TransportError):
        line.write(1)


@patch("sensors.bus.smbus2.SMBus")
def test_i2c_bus_reads_and_writes(smbus_cls):
    """I2C transport uses block reads and byte writes at the slave address."""
    smbus = smbus_cls.return_value
    smbus.read_i2c_block_data.return_value = [0x60]

    bus = I2CBus(1, 0x77)
    assert bus.read_register(0xD0) == 0x60
    smbus.read_i2c_block_data.assert_called_once_with(0x77, 0xD0, 1)

    bus.write_register(0xE0, 0xB6)
    smbus.write_byte_data.assert_called_once_with(0x77, 0xE0, 0xB6)

    smbus.read_i2c_block_data.side_effect = OSError(121, "Remote I/O error")
    with pytest.raises(TransportError):
        bus.read_registers(0xF7, 8)

    bus.close()
    smbus.close.assert_called_once()


@patch("sensors.bus.spidev.SpiDev")
def test_spi_bus_framing(spidev_cls):
    """Reads set bit 7 of the masked address, writes clear it."""
    spi = spidev_cls.return_value
    spi.xfer2.return_value = [0xFF, 0x12, 0x34]

    bus = SPIBus(1, 0)
    spi.open.assert_called_once_with(1, 0)

    assert bus.read_registers(0x75, 2) == bytes([0x12, 0x34])
    spi.xfer2.assert_called_with([0xF5, 0x00, 0x00])

    bus.write_register(0xF4, 0x29)
    spi.xfer2.assert_called_with([0x74, 0x29])

    spi.xfer2.side_effect = OSError("transfer failed")
    with pytest.raises(TransportError):
        bus.write_register(0xF4, 0x29)


@patch("sensors.bus.spidev.SpiDev")
def test_spi_bus_transfers_under_gate(spidev_cls):
    """Every SPI transfer holds the mux lock and releases it afterwards, even on error."""
    gate, lock, bits = make_gate(3)
    spi = spidev_cls.return_value
    seen = []

    def xfer2(frame):
        seen.append((lock.value, line_address(bits)))
        if frame[0] == 0x74:
            raise OSError("transfer failed")
        return [0x00, 0x60]

    spi.xfer2.side_effect = xfer2
    bus = SPIBus(0, 1, gate=gate)

    assert bus.read_register(0xD0) == 0x60
    with pytest.raises(TransportError):
        bus.write_register(0xF4, 0x01)

    assert seen == [(1, 3), (1, 3)]
    assert lock.value == 0

    bus.close()
    spi.close.assert_called_once()


@patch("sensors.bus.spidev.SpiDev")
@patch("sensors.bus.smbus2.SMBus")
def test_open_bus_selects_transport(smbus_cls, spidev_cls):
    """The configured interface picks the transport."""
    i2c = open_bus(SensorConfig(interface="i2c", bus=2, address=0x77))
    assert isinstance(i2c, I2CBus)
    smbus_cls.assert_called_once_with(2)

    spi = open_bus(SensorConfig(interface="spi", bus=1, address=0))
    assert isinstance(spi, SPIBus)
    spidev_cls.return_value.open.assert_called_once_with(1, 0)
