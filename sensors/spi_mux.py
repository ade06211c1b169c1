# sensors/spi_mux.py
"""
Hardware arbitration for several BME280s sharing one SPI chip select.

The sensors' chip selects hang off a 3-to-8 line decoder. A shared GPIO acts
as a lock: a device may only drive the decoder address lines and talk on the
bus after it has seen the lock line low and raised it.

The kernel GPIO character device lets one requester own a line at a time, so
lines are requested only for the length of a transaction and freed after it.
While one process holds the lock its request on the lock line makes every
other process see the line as busy; between transactions the line is free
and reads low through its pull-down.
"""
import atexit
import logging
import threading
import warnings
from contextlib import contextmanager

import lgpio

from sensors.bme280_constants import LOCK_POLL_INTERVAL, LOCK_TIMEOUT
from sensors.exceptions import ArbitrationMisconfigured, BusLockTimeout, TransportError
from utils.clock import SYSTEM_CLOCK

logger = logging.getLogger(__name__)

# Line objects are shared by every gate in this process: (chip, pin) -> GpioLine
_chip_handles = {}
_lines = {}
_registry_lock = threading.Lock()


def _lg(action, func, *args):
    try:
        return func(*args)
    except lgpio.error as e:
        raise TransportError(f"Could not {action}: {e}") from e


class GpioLine:
    """One GPIO pin, requested from the kernel only while in use."""

    def __init__(self, handle, pin):
        self.handle = handle
        self.pin = pin
        self.claimed = False
        self.busy_reason = None
        # Serializes test-and-set of this line between threads of one process
        self.mutex = threading.Lock()

    def peek(self):
        """
        Sample the pin as a pulled-down input without driving it.

        Returns:
            int or None: the level, or None if another process has the pin requested
        """
        try:
            lgpio.gpio_claim_input(self.handle, self.pin, lgpio.SET_PULL_DOWN)
        except lgpio.error as e:
            self.busy_reason = str(e)
            return None
        try:
            return _lg(f"read GPIO {self.pin}", lgpio.gpio_read, self.handle, self.pin)
        finally:
            _lg(f"free GPIO {self.pin}", lgpio.gpio_free, self.handle, self.pin)

    def claim(self, level):
        """Request the pin as an output at level. Returns False if another process holds it."""
        try:
            lgpio.gpio_claim_output(self.handle, self.pin, 1 if level else 0)
        except lgpio.error as e:
            self.busy_reason = str(e)
            return False
        self.claimed = True
        return True

    def write(self, level):
        _lg(f"write GPIO {self.pin}", lgpio.gpio_write, self.handle, self.pin, 1 if level else 0)

    def free(self):
        if not self.claimed:
            return
        self.claimed = False
        _lg(f"free GPIO {self.pin}", lgpio.gpio_free, self.handle, self.pin)


def open_line(chip, pin):
    """Return this process's line object for a pin. Nothing is requested or driven yet."""
    with _registry_lock:
        key = (chip, pin)
        if key in _lines:
            return _lines[key]

        if chip not in _chip_handles:
            _chip_handles[chip] = _lg(f"open gpiochip{chip}", lgpio.gpiochip_open, chip)
        line = GpioLine(_chip_handles[chip], pin)
        _lines[key] = line
        logger.debug(f"Using GPIO {pin} on gpiochip{chip}")
        return line


class SpiMuxGate:
    """
    Lock line plus decoder address lines for one multiplexed sensor.

    Use selected() around every SPI transfer; the lock is released on every
    exit path. An atexit hook drops the lock if the process exits while
    holding it.
    """

    def __init__(self, address, lock_line, bit_lines, clock=SYSTEM_CLOCK,
                 poll_interval=LOCK_POLL_INTERVAL, timeout=LOCK_TIMEOUT):
        """
        Args:
            address: Decoder output (0-7) for this sensor
            lock_line: Shared lock line
            bit_lines: Lines driving decoder inputs A0, A1, A2
            clock: Clock used for the spin-wait
            poll_interval: Seconds between lock line polls
            timeout: Seconds to wait for the lock before giving up
        """
        self.address = address
        self.lock_line = lock_line
        self.bit_lines = tuple(bit_lines)
        self.clock = clock
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.held = False
        self._closed = False
        atexit.register(self.release_if_held)

    def acquire(self):
        """Spin until the lock line is free, then address this sensor and take the lock."""
        start = self.clock.monotonic()
        waited = False
        while not self._try_take():
            if self.clock.elapsed(start) >= self.timeout:
                reason = self.lock_line.busy_reason
                raise BusLockTimeout(f"SPI mux lock held for more than {self.timeout}s "
                                     f"(mux address {self.address})"
                                     + (f": {reason}" if reason else ""))
            waited = True
            self.clock.sleep(self.poll_interval)

        if waited:
            logger.debug(f"Mux address {self.address} acquired lock after "
                         f"{self.clock.elapsed(start):.3f}s")

    def release(self):
        """Drop the lock line and give the lines back to the kernel."""
        lock = self.lock_line
        with lock.mutex:
            try:
                if lock.claimed:
                    lock.write(0)
            finally:
                self.held = False
                # Address lines first, so a free lock line means free address lines
                self._free(self.bit_lines + (lock,))

    def release_if_held(self):
        """Force the lock line low if this gate still owns it."""
        if self.held:
            logger.warning(f"Releasing SPI mux lock still held by mux address {self.address}")
            self.release()

    @contextmanager
    def selected(self):
        """Hold the lock for the duration of the block."""
        self.acquire()
        try:
            yield self
        finally:
            self.release()

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.release_if_held()
        atexit.unregister(self.release_if_held)

    def _try_take(self):
        lock = self.lock_line
        with lock.mutex:
            # Another thread of this process holds it
            if lock.claimed:
                return False

            level = lock.peek()
            if level is None or level:
                return False

            for bit, line in enumerate(self.bit_lines):
                if not line.claim((self.address >> bit) & 1):
                    self._free(self.bit_lines)
                    return False

            if not lock.claim(1):
                self._free(self.bit_lines)
                return False

            lock.busy_reason = None
            self.held = True
            return True

    @staticmethod
    def _free(lines):
        error = None
        for line in lines:
            try:
                line.free()
            except TransportError as e:
                error = error or e
        if error is not None:
            raise error


def build_gate(wiring, clock=SYSTEM_CLOCK, line_factory=open_line):
    """
    Create the arbitration gate for a multiplex wiring, if the wiring is complete.

    Incomplete wiring disables arbitration with an ArbitrationMisconfigured
    warning; the sensor then talks on the shared bus unguarded.

    Args:
        wiring: MultiplexWiring or None
        clock: Clock for the lock spin-wait
        line_factory: Callable (chip, pin) -> line

    Returns:
        SpiMuxGate or None
    """
    if wiring is None:
        return None

    if not wiring.select_valid:
        _warn_disabled(f"Multiplex SPI failed due to incompatible select line definition "
                       f"{wiring.select_pin!r}")
        return None

    if not wiring.bits_valid:
        _warn_disabled(f"Multiplex SPI failed due to incompatible address line definition "
                       f"{wiring.bit_pins!r}")
        return None

    lock_line = line_factory(wiring.gpio_chip, wiring.select_pin)
    bit_lines = [line_factory(wiring.gpio_chip, pin) for pin in wiring.bit_pins]
    logger.info(f"SPI mux arbitration enabled for address {wiring.address} "
                f"(lock GPIO {wiring.select_pin}, address GPIOs {wiring.bit_pins})")
    return SpiMuxGate(wiring.address, lock_line, bit_lines, clock=clock)


def _warn_disabled(message):
    message += "; arbitration disabled, shared SPI access is unguarded"
    logger.warning(message)
    warnings.warn(message, ArbitrationMisconfigured, stacklevel=3)
