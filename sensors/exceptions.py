# sensors/exceptions.py
"""Errors raised by the BME280 driver."""


class BME280Error(Exception):
    """Base class for all driver errors."""


class TransportError(BME280Error):
    """A register read or write on the bus failed."""


class DeviceTimeout(TransportError):
    """The device did not clear a status bit within the poll limit."""


class BusLockTimeout(TransportError):
    """The shared multiplex lock line stayed held past the allowed wait."""


class IdentityMismatch(BME280Error):
    """The chip ID register did not hold the BME280 identifier."""

    def __init__(self, chip_id):
        super().__init__(f"Unexpected chip ID 0x{chip_id:02x}")
        self.chip_id = chip_id


class IndexOutOfRange(BME280Error, IndexError):
    """Parameter index or name does not exist."""


class NotActive(BME280Error):
    """A value was requested before initialization succeeded."""


class ConfigurationError(BME280Error, ValueError):
    """Invalid driver configuration."""


class ArbitrationMisconfigured(UserWarning):
    """Multiplex wiring is incomplete, arbitration has been disabled."""
