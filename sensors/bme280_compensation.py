# sensors/bme280_compensation.py
"""
Conversion of raw BME280 ADC codes into physical units.

All functions are pure. Temperature compensation produces the fine
temperature term that pressure and humidity compensation take as an
argument, so within one measurement the temperature must be decoded first.
"""
import math
from collections import namedtuple

from sensors.bme280_calibration import uint16, uint20
from sensors.bme280_constants import (
    BME280_PRESSURE_DATA, BME280_TEMP_DATA, BME280_HUMIDITY_DATA,
    SKIPPED_PRESSURE, SKIPPED_TEMPERATURE, SKIPPED_HUMIDITY
)

# Standard atmosphere lapse rate (K/m) and barometric exponent
LAPSE_RATE = 0.0065
BAROMETRIC_EXPONENT = 5.257
KELVIN_OFFSET = 273.15

# Channel positions inside the burst read starting at the pressure MSB
TEMPERATURE_OFFSET = BME280_TEMP_DATA - BME280_PRESSURE_DATA
HUMIDITY_OFFSET = BME280_HUMIDITY_DATA - BME280_PRESSURE_DATA

Measurement = namedtuple("Measurement", ["pressure", "temperature", "humidity", "t_fine"])


def compensate_temperature(adc_T, cal):
    """
    Apply the 32-bit fixed-point temperature formula from the datasheet.

    Args:
        adc_T: Raw 20-bit temperature code
        cal: Calibration coefficients

    Returns:
        tuple: (temperature in °C rounded to 0.1, fine temperature) or
               (nan, None) when the temperature conversion was skipped
    """
    if adc_T == SKIPPED_TEMPERATURE:
        return math.nan, None

    var1 = (((adc_T >> 3) - (cal.dig_T1 << 1)) * cal.dig_T2) >> 11
    var2 = (((((adc_T >> 4) - cal.dig_T1) * ((adc_T >> 4) - cal.dig_T1)) >> 12) * cal.dig_T3) >> 14
    t_fine = var1 + var2

    return round(t_fine / 5120.0, 1), t_fine


def compensate_pressure(adc_P, t_fine, cal):
    """
    Apply the double-precision pressure formula from the datasheet.

    Returns pressure in hPa, unrounded. NaN when the conversion was skipped,
    no fine temperature is available, or the divisor evaluates to zero.
    """
    if adc_P == SKIPPED_PRESSURE or t_fine is None:
        return math.nan

    var1 = t_fine / 2.0 - 64000.0
    var2 = var1 * var1 * cal.dig_P6 / 32768.0
    var2 = var2 + var1 * cal.dig_P5 * 2.0
    var2 = var2 / 4.0 + cal.dig_P4 * 65536.0
    var1 = (cal.dig_P3 * var1 * var1 / 524288.0 + cal.dig_P2 * var1) / 524288.0
    var1 = (1.0 + var1 / 32768.0) * cal.dig_P1

    # No pressure can be derived, we must be in deep space
    if var1 == 0:
        return math.nan

    p = 1048576.0 - adc_P
    p = (p - var2 / 4096.0) * 6250.0 / var1
    var1 = cal.dig_P9 * p * p / 2147483648.0
    var2 = p * cal.dig_P8 / 32768.0
    p = p + (var1 + var2 + cal.dig_P7) / 16.0

    return p / 100.0


def compensate_humidity(adc_H, t_fine, cal):
    """
    Apply the double-precision humidity formula from the datasheet.

    Returns relative humidity in %, clamped to [0, 100] and unrounded.
    """
    if adc_H == SKIPPED_HUMIDITY or t_fine is None:
        return math.nan

    var1 = t_fine - 76800.0
    var1 = ((adc_H - (cal.dig_H4 * 64.0 + cal.dig_H5 / 16384.0 * var1)) *
            (cal.dig_H2 / 65536.0 * (1.0 + cal.dig_H6 / 67108864.0 * var1 *
                                     (1.0 + cal.dig_H3 / 67108864.0 * var1))))
    var1 = var1 * (1.0 - cal.dig_H1 * var1 / 524288.0)

    return min(max(var1, 0.0), 100.0)


def sea_level_pressure(pressure_hpa, temperature_c, elevation):
    """
    Reduce station pressure to sea level.

    Elevations at or below zero leave the pressure untouched.
    """
    if elevation <= 0:
        return pressure_hpa

    lapse = LAPSE_RATE * elevation
    return pressure_hpa * math.pow(1.0 - lapse / (temperature_c + lapse + KELVIN_OFFSET), -BAROMETRIC_EXPONENT)


def pressure_to_altitude(sea_level_hpa, pressure_hpa, temperature_c):
    """
    Altitude in meters for a measured pressure, using the hypsometric formula.

        h = ((P0 / P) ^ (1 / 5.257) - 1) * (T + 273.15) / 0.0065
    """
    return ((math.pow(sea_level_hpa / pressure_hpa, 1.0 / BAROMETRIC_EXPONENT) - 1.0) *
            (temperature_c + KELVIN_OFFSET)) / LAPSE_RATE


def sea_level_for_altitude(altitude, pressure_hpa, temperature_c):
    """Sea-level pressure for a pressure measured at a known altitude (inverse of pressure_to_altitude)."""
    return math.pow(altitude * LAPSE_RATE / (temperature_c + KELVIN_OFFSET) + 1.0, BAROMETRIC_EXPONENT) * pressure_hpa


def parse_data_block(block):
    """
    Split the 8-byte burst starting at 0xF7 into raw codes.

    Returns:
        tuple: (adc_P, adc_T, adc_H)
    """
    adc_P = uint20(*block[0:TEMPERATURE_OFFSET])
    adc_T = uint20(*block[TEMPERATURE_OFFSET:HUMIDITY_OFFSET])
    adc_H = uint16(*block[HUMIDITY_OFFSET:HUMIDITY_OFFSET + 2])
    return adc_P, adc_T, adc_H


def decode_measurement(block, cal, elevation=0.0):
    """
    Decode one full burst into rounded physical values.

    Temperature is decoded first and its fine temperature is passed to the
    pressure and humidity formulas. The sea-level correction uses the
    temperature from the same cycle.

    Returns:
        Measurement: pressure (hPa, 0.01), temperature (°C, 0.1),
                     humidity (%RH, 0.1) and the fine temperature
    """
    adc_P, adc_T, adc_H = parse_data_block(block)

    temperature, t_fine = compensate_temperature(adc_T, cal)

    pressure = compensate_pressure(adc_P, t_fine, cal)
    if not math.isnan(pressure):
        pressure = round(sea_level_pressure(pressure, temperature, elevation), 2)

    humidity = compensate_humidity(adc_H, t_fine, cal)
    if not math.isnan(humidity):
        humidity = round(humidity, 1)

    return Measurement(pressure, temperature, humidity, t_fine)
