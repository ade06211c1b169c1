# sensors/__init__.py
"""
BME280 driver package.
Register protocol, compensation and cached access for the Bosch BME280 over I2C or SPI.
"""
from sensors.bme280 import BME280
from sensors.bme280_async import AsyncBME280
from sensors.bme280_constants import PowerMode, Sampling, Filter, Standby
from sensors.exceptions import (
    BME280Error, TransportError, DeviceTimeout, BusLockTimeout,
    IdentityMismatch, IndexOutOfRange, NotActive, ConfigurationError,
    ArbitrationMisconfigured
)
from sensors.models import SensorConfig, SamplingSettings, MultiplexWiring, InterfaceKind, InitState

from config.settings import DRIVER_VERSION as __version__
