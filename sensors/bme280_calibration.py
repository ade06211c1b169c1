# sensors/bme280_calibration.py
"""Factory trimming coefficients stored in the BME280's non-volatile memory."""
import logging
from dataclasses import dataclass

from sensors.bme280_constants import (
    BME280_DIG_T1, BME280_DIG_H1, BME280_DIG_H2, BME280_DIG_H3,
    BME280_DIG_H4, BME280_DIG_H5, BME280_DIG_H6, TEMP_PRESS_CALIB_LENGTH
)

logger = logging.getLogger(__name__)


def uint16(msb, lsb):
    return (msb << 8) | lsb


def int16(msb, lsb):
    """Combine two bytes into a signed short."""
    value = uint16(msb, lsb)
    if value & (1 << 15):
        value -= (1 << 16)
    return value


def int8(value):
    if value & (1 << 7):
        value -= (1 << 8)
    return value


def uint20(msb, lsb, xlsb):
    """Combine a 3-byte ADC reading into its 20-bit value (low nibble of xlsb is unused)."""
    return ((msb << 16) | (lsb << 8) | xlsb) >> 4


def humidity_h4(e4, e5):
    """dig_H4: 0xE4 supplies bits 11:4 (signed), low nibble of 0xE5 supplies bits 3:0."""
    return (int8(e4) << 4) | (e5 & 0x0F)


def humidity_h5(e5, e6):
    """dig_H5: 0xE6 supplies bits 11:4 (signed), high nibble of 0xE5 supplies bits 3:0."""
    return (int8(e6) << 4) | (e5 >> 4)


@dataclass(frozen=True)
class Calibration:
    """Trimming parameters, see datasheet section 4.2.2. Immutable once read."""
    dig_T1: int
    dig_T2: int
    dig_T3: int

    dig_P1: int
    dig_P2: int
    dig_P3: int
    dig_P4: int
    dig_P5: int
    dig_P6: int
    dig_P7: int
    dig_P8: int
    dig_P9: int

    dig_H1: int
    dig_H2: int
    dig_H3: int
    dig_H4: int
    dig_H5: int
    dig_H6: int

    @classmethod
    def from_registers(cls, block, h1, h2_bytes, h3, e4, e5, e6, h6):
        """
        Assemble coefficients from raw register bytes.

        Args:
            block: 24 bytes read in one burst from 0x88 (T1..T3, P1..P9, little-endian)
            h1: Byte at 0xA1
            h2_bytes: Two bytes at 0xE1..0xE2 (little-endian)
            h3: Byte at 0xE3
            e4, e5, e6: Bytes at 0xE4..0xE6 holding H4 and H5
            h6: Byte at 0xE7

        Returns:
            Calibration: Parsed coefficients
        """
        if len(block) != TEMP_PRESS_CALIB_LENGTH:
            raise ValueError(f"Expected {TEMP_PRESS_CALIB_LENGTH} calibration bytes, got {len(block)}")

        return cls(
            dig_T1=uint16(block[1], block[0]),
            dig_T2=int16(block[3], block[2]),
            dig_T3=int16(block[5], block[4]),

            dig_P1=uint16(block[7], block[6]),
            dig_P2=int16(block[9], block[8]),
            dig_P3=int16(block[11], block[10]),
            dig_P4=int16(block[13], block[12]),
            dig_P5=int16(block[15], block[14]),
            dig_P6=int16(block[17], block[16]),
            dig_P7=int16(block[19], block[18]),
            dig_P8=int16(block[21], block[20]),
            dig_P9=int16(block[23], block[22]),

            dig_H1=h1,
            dig_H2=int16(h2_bytes[1], h2_bytes[0]),
            dig_H3=h3,
            dig_H4=humidity_h4(e4, e5),
            dig_H5=humidity_h5(e5, e6),
            dig_H6=int8(h6),
        )

    @classmethod
    def read_from(cls, bus):
        """Read every trimming register through a register bus."""
        block = bus.read_registers(BME280_DIG_T1, TEMP_PRESS_CALIB_LENGTH)

        h1 = bus.read_register(BME280_DIG_H1)
        h2_bytes = bus.read_registers(BME280_DIG_H2, 2)
        h3 = bus.read_register(BME280_DIG_H3)
        e4 = bus.read_register(BME280_DIG_H4)
        e5 = bus.read_register(BME280_DIG_H5)
        e6 = bus.read_register(BME280_DIG_H5 + 1)
        h6 = bus.read_register(BME280_DIG_H6)

        calibration = cls.from_registers(block, h1, h2_bytes, h3, e4, e5, e6, h6)
        logger.debug(f"Loaded calibration: {calibration}")
        return calibration
