# sensors/bus.py
"""Register access to the BME280 over I2C or SPI."""
import logging
from contextlib import nullcontext

import smbus2
import spidev

from sensors.bme280_constants import SPI_ADDRESS_MASK, SPI_READ_FLAG
from sensors.exceptions import TransportError
from sensors.models import InterfaceKind

logger = logging.getLogger(__name__)

SPI_MAX_SPEED_HZ = 500_000


class RegisterBus:
    """Byte-addressed register reads and writes. Subclasses provide the transport."""

    def read_registers(self, register, length):
        """Read length bytes starting at register."""
        raise NotImplementedError

    def write_register(self, register, value):
        """Write one byte to register."""
        raise NotImplementedError

    def read_register(self, register):
        return self.read_registers(register, 1)[0]

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


class I2CBus(RegisterBus):
    """I2C transport using smbus2."""

    def __init__(self, bus_number, address):
        self.bus_number = bus_number
        self.address = address
        try:
            self.bus = smbus2.SMBus(bus_number)
        except OSError as e:
            raise TransportError(f"Could not open I2C bus {bus_number}: {e}") from e

    def read_registers(self, register, length):
        try:
            return bytes(self.bus.read_i2c_block_data(self.address, register, length))
        except OSError as e:
            raise TransportError(f"I2C read of {length} bytes at 0x{register:02x} "
                                 f"from 0x{self.address:02x} failed: {e}") from e

    def write_register(self, register, value):
        try:
            self.bus.write_byte_data(self.address, register, value & 0xFF)
        except OSError as e:
            raise TransportError(f"I2C write to 0x{register:02x} "
                                 f"on 0x{self.address:02x} failed: {e}") from e

    def close(self):
        self.bus.close()


class SPIBus(RegisterBus):
    """
    4-wire SPI transport using spidev.

    Bit 7 of the address byte is set for reads and cleared for writes. When a
    multiplex gate is given, every transfer runs while holding its lock.
    """

    def __init__(self, bus_number, device, gate=None, max_speed_hz=SPI_MAX_SPEED_HZ):
        self.bus_number = bus_number
        self.device = device
        self.gate = gate
        try:
            self.spi = spidev.SpiDev()
            self.spi.open(bus_number, device)
            self.spi.max_speed_hz = max_speed_hz
            self.spi.mode = 0b00
        except OSError as e:
            raise TransportError(f"Could not open SPI device {bus_number}.{device}: {e}") from e

    def read_registers(self, register, length):
        frame = [(register & SPI_ADDRESS_MASK) | SPI_READ_FLAG] + [0x00] * length
        response = self._transfer(frame)
        # First byte is clocked out while the address is sent
        return bytes(response[1:])

    def write_register(self, register, value):
        self._transfer([register & SPI_ADDRESS_MASK, value & 0xFF])

    def close(self):
        try:
            if self.gate is not None:
                self.gate.close()
        finally:
            self.spi.close()

    def _transfer(self, frame):
        selected = self.gate.selected() if self.gate is not None else nullcontext()
        with selected:
            try:
                return self.spi.xfer2(frame)
            except OSError as e:
                raise TransportError(f"SPI transfer on {self.bus_number}.{self.device} "
                                     f"at 0x{frame[0] & SPI_ADDRESS_MASK:02x} failed: {e}") from e


def open_bus(config, gate=None):
    """Open the transport described by a SensorConfig."""
    if config.interface == InterfaceKind.SPI:
        logger.debug(f"Opening SPI device {config.bus}.{config.address}")
        return SPIBus(config.bus, config.address, gate=gate)

    logger.debug(f"Opening I2C bus {config.bus} for address 0x{config.address:02x}")
    return I2CBus(config.bus, config.address)
