# tests/fakes.py
"""Fake hardware collaborators shared by the driver tests."""
import threading

from sensors.bus import RegisterBus
from sensors.exceptions import TransportError

# Datasheet example trimming values:
# T1=27504 T2=26435 T3=-1000
# P1=36477 P2=-10685 P3=3024 P4=2855 P5=140 P6=-7 P7=15500 P8=-14600 P9=6000
CALIBRATION_BLOCK = bytes([
    0x70, 0x6B, 0x43, 0x67, 0x18, 0xFC,
    0x7D, 0x8E, 0x43, 0xD6, 0xD0, 0x0B, 0x27, 0x0B, 0x8C, 0x00,
    0xF9, 0xFF, 0x8C, 0x3C, 0xF8, 0xC6, 0x70, 0x17,
])

# H1=75 H2=362 H3=0 H4=313 H5=50 H6=30
HUMIDITY_REGISTERS = {
    0xA1: 0x4B,
    0xE1: 0x6A, 0xE2: 0x01,
    0xE3: 0x00,
    0xE4: 0x13, 0xE5: 0x29, 0xE6: 0x03,
    0xE7: 0x1E,
}

# adc_P=415148 adc_T=519888 adc_H=30000
DATA_BLOCK = bytes([0x65, 0x5A, 0xC0, 0x7E, 0xED, 0x00, 0x75, 0x30])

# Values the driver should report for DATA_BLOCK at sea level
EXPECTED_T_FINE = 128422
EXPECTED_TEMPERATURE = 25.1
EXPECTED_PRESSURE = 1006.53
EXPECTED_HUMIDITY = 55.0


class FakeRegisterBus(RegisterBus):
    """
    In-memory BME280 register file.

    Status reads pop from status_sequence and fall back to status_default.
    Registers in fail_reads/fail_writes raise TransportError; a value of None
    fails forever, an integer fails that many times.
    """

    def __init__(self, chip_id=0x60):
        self.registers = bytearray(256)
        self.registers[0x88:0x88 + len(CALIBRATION_BLOCK)] = CALIBRATION_BLOCK
        for register, value in HUMIDITY_REGISTERS.items():
            self.registers[register] = value
        self.registers[0xD0] = chip_id
        self.registers[0xF7:0xF7 + len(DATA_BLOCK)] = DATA_BLOCK

        self.status_sequence = []
        self.status_default = 0x00
        self.fail_reads = {}
        self.fail_writes = {}
        self.reads = []
        self.writes = []
        self.closed = False

    def read_registers(self, register, length):
        self._maybe_fail(self.fail_reads, register, "read")
        self.reads.append((register, length))
        if register == 0xF3:
            status = self.status_sequence.pop(0) if self.status_sequence else self.status_default
            return bytes([status])
        return bytes(self.registers[register:register + length])

    def write_register(self, register, value):
        self._maybe_fail(self.fail_writes, register, "write")
        self.writes.append((register, value))
        if register != 0xE0:
            self.registers[register] = value

    def close(self):
        self.closed = True

    @property
    def burst_reads(self):
        """Number of full data block reads."""
        return sum(1 for register, length in self.reads if register == 0xF7 and length == 8)

    def _maybe_fail(self, table, register, kind):
        if register not in table:
            return
        remaining = table[register]
        if remaining is not None:
            if remaining <= 1:
                del table[register]
            else:
                table[register] = remaining - 1
        raise TransportError(f"Simulated {kind} failure at 0x{register:02x}")


class FakeClock:
    """Clock that advances only when slept on."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def elapsed(self, start):
        return self.now - start

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTimer:
    """Timer that only fires when the test calls fire()."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


class TimerRecorder:
    """timer_factory that keeps every FakeTimer it creates."""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]


class FakeWire:
    """
    A physical GPIO wire. One line handle at a time may request it, like the
    kernel GPIO character device. level is what a pulled-down input reads
    when no handle drives it.
    """

    def __init__(self, level=0):
        self.level = level
        self.owner = None
        self.history = []
        self.requests = threading.Lock()


class FakeLine:
    """One process's handle on a GPIO wire. Share a wire to model several processes."""

    def __init__(self, value=0, wire=None):
        self.wire = wire or FakeWire(value)
        self.mutex = threading.Lock()
        self.claimed = False
        self.busy_reason = None
        self.peeks = 0

    @property
    def value(self):
        return self.wire.level

    @property
    def history(self):
        return self.wire.history

    def peek(self):
        self.peeks += 1
        with self.wire.requests:
            if self.wire.owner not in (None, self):
                self.busy_reason = "GPIO busy"
                return None
            return self.wire.level

    def claim(self, level):
        with self.wire.requests:
            if self.wire.owner not in (None, self):
                self.busy_reason = "GPIO busy"
                return False
            self.wire.owner = self
        self.claimed = True
        self.write(level)
        return True

    def write(self, value):
        self.wire.level = 1 if value else 0
        self.wire.history.append(self.wire.level)

    def free(self):
        if not self.claimed:
            return
        self.claimed = False
        with self.wire.requests:
            self.wire.owner = None


class ScriptedLine(FakeLine):
    """Lock line that reads as driven high by someone else for the first held_reads polls."""

    def __init__(self, held_reads):
        super().__init__(value=0)
        self.held_reads = held_reads

    def peek(self):
        if self.held_reads > 0:
            self.held_reads -= 1
            return 1
        return super().peek()
