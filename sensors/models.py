# sensors/models.py
"""Configuration and device state models for the BME280 driver."""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from config.settings import (
    DEFAULT_NAME, DEFAULT_INTERFACE, DEFAULT_BUS, DEFAULT_I2C_ADDRESS,
    DEFAULT_SPI_DEVICE, DEFAULT_ELEVATION, DEFAULT_MODE,
    DEFAULT_REFRESH_SECONDS, DEFAULT_GPIO_CHIP
)
from sensors.bme280_constants import (
    PARAMETER_NAMES, PARAMETER_TYPE, MUX_ADDRESS_COUNT,
    PowerMode, Sampling, Filter, Standby
)
from sensors.exceptions import ConfigurationError, IndexOutOfRange


class InterfaceKind(Enum):
    """Bus the sensor is wired to."""
    I2C = "i2c"
    SPI = "spi"


class InitState(Enum):
    """Progress of the initialization sequence."""
    UNVERIFIED = "unverified"
    ID_VERIFIED = "id_verified"
    RESETTING = "resetting"
    CALIBRATION_LOADING = "calibration_loading"
    SAMPLING_CONFIGURED = "sampling_configured"
    CALIBRATION_WAITING = "calibration_waiting"
    ACTIVE = "active"
    FAILED = "failed"


def parse_mode(mode):
    """Return the PowerMode for a mode name or PowerMode, or None if unknown."""
    if isinstance(mode, PowerMode):
        return mode
    try:
        return PowerMode(str(mode).lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class SamplingSettings:
    """Oversampling, filter and standby settings written during initialization."""
    pressure: Sampling = Sampling.X1
    temperature: Sampling = Sampling.X1
    humidity: Sampling = Sampling.X1
    iir_filter: Filter = Filter.OFF
    standby: Standby = Standby.MS_1000


@dataclass(frozen=True)
class MultiplexWiring:
    """
    GPIO wiring for several sensors sharing one SPI chip select through a
    3-to-8 line decoder such as the 74HC138.

    Attributes:
        address: Decoder output (0-7) that selects this sensor
        select_pin: GPIO used as the shared hardware lock line
        bit_pins: GPIOs driving decoder inputs A0, A1, A2
        gpio_chip: gpiochip number the pins belong to
    """
    address: int
    select_pin: Optional[int] = None
    bit_pins: Tuple[Optional[int], Optional[int], Optional[int]] = (None, None, None)
    gpio_chip: int = DEFAULT_GPIO_CHIP

    def __post_init__(self):
        if not isinstance(self.address, int) or not 0 <= self.address < MUX_ADDRESS_COUNT:
            raise ConfigurationError(
                f"Multiplex address must be 0-{MUX_ADDRESS_COUNT - 1}, got {self.address!r}")
        if len(self.bit_pins) != 3:
            raise ConfigurationError(f"Exactly three address bit pins are required, got {len(self.bit_pins)}")

    @property
    def select_valid(self):
        return self.select_pin is not None and self.select_pin > 0

    @property
    def bits_valid(self):
        return all(pin is not None and pin > 0 for pin in self.bit_pins)


@dataclass
class SensorConfig:
    """
    Every option the driver recognizes, with its default.

    The address is the I2C slave address for I2C and the chip select index
    for SPI; it defaults per interface when left as None.
    """
    name: str = DEFAULT_NAME
    interface: InterfaceKind = DEFAULT_INTERFACE
    bus: int = DEFAULT_BUS
    address: Optional[int] = None
    elevation: float = DEFAULT_ELEVATION
    mode: PowerMode = DEFAULT_MODE
    refresh: float = DEFAULT_REFRESH_SECONDS
    sampling: SamplingSettings = field(default_factory=SamplingSettings)
    multiplex: Optional[MultiplexWiring] = None

    def __post_init__(self):
        try:
            self.interface = InterfaceKind(str(getattr(self.interface, "value", self.interface)).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown interface '{self.interface}', expected 'i2c' or 'spi'")

        mode = parse_mode(self.mode)
        if mode is None:
            raise ConfigurationError(f"Unknown mode '{self.mode}', expected sleep, forced or normal")
        self.mode = mode

        if not isinstance(self.bus, int) or self.bus < 0:
            raise ConfigurationError(f"Bus must be a non-negative integer, got {self.bus!r}")

        if self.address is None:
            self.address = DEFAULT_I2C_ADDRESS if self.interface == InterfaceKind.I2C else DEFAULT_SPI_DEVICE
        if isinstance(self.address, bool) or not isinstance(self.address, int):
            raise ConfigurationError(f"Address must be an integer, got {self.address!r}")
        if self.interface == InterfaceKind.I2C and not 0x03 <= self.address <= 0x77:
            raise ConfigurationError(f"I2C address 0x{self.address:02x} is outside 0x03-0x77")
        if self.interface == InterfaceKind.SPI and self.address < 0:
            raise ConfigurationError(f"SPI chip select must be non-negative, got {self.address}")

        try:
            self.elevation = float(self.elevation)
            self.refresh = float(self.refresh)
        except (TypeError, ValueError):
            raise ConfigurationError("Elevation and refresh must be numbers")
        if math.isnan(self.elevation):
            raise ConfigurationError("Elevation must not be NaN")
        if not self.refresh >= 0:
            raise ConfigurationError(f"Refresh interval must be >= 0 seconds, got {self.refresh}")

        if self.multiplex is not None and self.interface != InterfaceKind.SPI:
            raise ConfigurationError("Multiplex wiring only applies to the SPI interface")


class Parameter:
    """One entry of the device parameter table."""

    def __init__(self, name, value_type=PARAMETER_TYPE, value=math.nan):
        self.name = name
        self.type = value_type
        self.value = value

    def to_dict(self):
        return {"name": self.name, "type": self.type, "value": self.value}

    def __repr__(self):
        return f"Parameter({self.name!r}, {self.type!r}, {self.value!r})"


class DeviceDescriptor:
    """Identity, operating state and parameter table of one sensor."""

    def __init__(self, config, version):
        """
        Create a descriptor from a validated configuration.

        Args:
            config: SensorConfig for this sensor
            version: Driver version string
        """
        self.name = config.name
        self.type = "sensor"
        self.version = version
        self.interface = config.interface
        self.bus = config.bus
        self.address = config.address
        self.mux_address = config.multiplex.address if config.multiplex else None

        self.active = False
        self.mode = config.mode
        self.refresh = config.refresh
        self.elevation = config.elevation

        # Order and count never change
        self.parameters = tuple(Parameter(name) for name in PARAMETER_NAMES)

    def parameter_at(self, idx):
        """Return the parameter at idx, rejecting anything outside the table."""
        if isinstance(idx, bool) or not isinstance(idx, int) or not 0 <= idx < len(self.parameters):
            raise IndexOutOfRange(f"{self.name} Error: index {idx} out of range")
        return self.parameters[idx]

    def index_of(self, name):
        """Return the table index of a parameter name."""
        for idx, param in enumerate(self.parameters):
            if param.name == name:
                return idx
        raise IndexOutOfRange(f"{self.name} Error: unknown parameter '{name}'")

    def clear_values(self):
        for param in self.parameters:
            param.value = math.nan

    def describe(self):
        """Human readable bus location, used in log and error messages."""
        if self.interface == InterfaceKind.SPI:
            location = f"spi device {self.bus}.{self.address}"
            if self.mux_address is not None:
                location += f" (mux {self.mux_address})"
            return location
        return f"i2c device on bus {self.bus} with address 0x{self.address:02x}"

    def to_dict(self):
        """Convert descriptor to a serializable dictionary."""
        return {
            "name": self.name,
            "type": self.type,
            "version": self.version,
            "interface": self.interface.value,
            "bus": self.bus,
            "address": self.address,
            "mux_address": self.mux_address,
            "active": self.active,
            "mode": self.mode.value,
            "refresh": self.refresh,
            "elevation": self.elevation,
            "parameters": [param.to_dict() for param in self.parameters],
        }
