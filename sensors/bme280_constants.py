# sensors/bme280_constants.py
"""BME280 register map, chip constants and register bit fields."""
from enum import Enum, IntEnum

# Calibration registers (little-endian words unless noted)
BME280_DIG_T1 = 0x88  # Start of the 24-byte temperature/pressure calibration block
BME280_DIG_T2 = 0x8A
BME280_DIG_T3 = 0x8C
BME280_DIG_P1 = 0x8E
BME280_DIG_P2 = 0x90
BME280_DIG_P3 = 0x92
BME280_DIG_P4 = 0x94
BME280_DIG_P5 = 0x96
BME280_DIG_P6 = 0x98
BME280_DIG_P7 = 0x9A
BME280_DIG_P8 = 0x9C
BME280_DIG_P9 = 0x9E
BME280_DIG_H1 = 0xA1  # unsigned byte
BME280_DIG_H2 = 0xE1  # signed word
BME280_DIG_H3 = 0xE3  # unsigned byte
BME280_DIG_H4 = 0xE4  # 12 bits split across 0xE4 and the low nibble of 0xE5
BME280_DIG_H5 = 0xE5  # 12 bits split across the high nibble of 0xE5 and 0xE6
BME280_DIG_H6 = 0xE7  # signed byte

TEMP_PRESS_CALIB_LENGTH = 24

# Identification and control registers
BME280_CHIP_ID = 0xD0     # Chip ID register (should return 0x60)
BME280_VERSION = 0xD1
BME280_SOFTRESET = 0xE0
BME280_CTRL_HUM = 0xF2    # Humidity oversampling, latched on the next CTRL_MEAS write
BME280_STATUS = 0xF3
BME280_CTRL_MEAS = 0xF4   # Pressure/temperature oversampling and power mode
BME280_CONFIG = 0xF5      # Standby time and IIR filter

# Data registers, burst read 0xF7..0xFE: pressure[3] temperature[3] humidity[2]
BME280_PRESSURE_DATA = 0xF7
BME280_TEMP_DATA = 0xFA
BME280_HUMIDITY_DATA = 0xFD
DATA_BLOCK_LENGTH = 8

# Chip constants
CHIP_ID = 0x60
SOFT_RESET_COMMAND = 0xB6

# Status register bits
STATUS_MEASURING = 0b1000  # Conversion running
STATUS_IM_UPDATE = 0b0001  # NVM data being copied to image registers

# Raw codes the chip reports for a channel whose oversampling is "none"
SKIPPED_PRESSURE = 0x80000
SKIPPED_TEMPERATURE = 0x80000
SKIPPED_HUMIDITY = 0x8000

# SPI framing: bit 7 of the address byte selects read (1) or write (0)
SPI_ADDRESS_MASK = 0x7F
SPI_READ_FLAG = 0x80

# Timing (seconds)
SOFT_RESET_DELAY = 0.004       # 2 ms datasheet startup time, doubled
CALIBRATION_POLL_INTERVAL = 0.01
CALIBRATION_POLL_LIMIT = 50
MEASUREMENT_POLL_INTERVAL = 0.004
MEASUREMENT_POLL_LIMIT = 250   # Worst case x16 on all channels is ~113 ms
CHIP_ID_ATTEMPTS = 3
CHIP_ID_RETRY_DELAY = 0.05
LOCK_POLL_INTERVAL = 0.2
LOCK_TIMEOUT = 30.0

# Parameter table order, fixed for the lifetime of a device
PARAMETER_NAMES = ("pressure", "temperature", "humidity")
PARAMETER_TYPE = "float"
PRESSURE_INDEX = 0
TEMPERATURE_INDEX = 1
HUMIDITY_INDEX = 2

# Multiplexed SPI address range (3-to-8 line decoder)
MUX_ADDRESS_COUNT = 8


class Sampling(IntEnum):
    """Oversampling setting, 3-bit field."""
    NONE = 0b000
    X1 = 0b001
    X2 = 0b010
    X4 = 0b011
    X8 = 0b100
    X16 = 0b101


class Filter(IntEnum):
    """IIR filter coefficient, 3-bit field."""
    OFF = 0b000
    X2 = 0b001
    X4 = 0b010
    X8 = 0b011
    X16 = 0b100


class Standby(IntEnum):
    """Inactive duration between conversions in normal mode, 3-bit field."""
    MS_0_5 = 0b000
    MS_62_5 = 0b001
    MS_125 = 0b010
    MS_250 = 0b011
    MS_500 = 0b100
    MS_1000 = 0b101
    MS_10 = 0b110
    MS_20 = 0b111


class PowerMode(Enum):
    """Sensor power modes."""
    SLEEP = "sleep"    # No conversions
    FORCED = "forced"  # One conversion, then back to sleep
    NORMAL = "normal"  # Free-running conversions separated by the standby time

    @property
    def bits(self):
        """2-bit CTRL_MEAS encoding of this mode."""
        return _MODE_BITS[self]

    @property
    def is_one_shot(self):
        """True for modes that need a forced trigger before each read."""
        return self in (PowerMode.SLEEP, PowerMode.FORCED)


_MODE_BITS = {
    PowerMode.SLEEP: 0b00,
    PowerMode.FORCED: 0b01,
    PowerMode.NORMAL: 0b11,
}


def ctrl_meas_byte(pressure_osr, temperature_osr, mode):
    """Pack the CTRL_MEAS register value."""
    return ((int(pressure_osr) & 0b111) << 5) | ((int(temperature_osr) & 0b111) << 3) | mode.bits


def config_byte(standby, iir_filter):
    """Pack the CONFIG register value. 3-wire SPI stays disabled."""
    return ((int(standby) & 0b111) << 5) | ((int(iir_filter) & 0b111) << 3)


def ctrl_hum_byte(humidity_osr):
    """Pack the CTRL_HUM register value."""
    return int(humidity_osr) & 0b111
