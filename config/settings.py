# config/settings.py

"""Configuration settings for the BME280 driver."""
import os

from dotenv import load_dotenv

# Load sensor environment variables from an optional .env at the project root
ENV_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env")
if os.path.exists(ENV_PATH):
    load_dotenv(ENV_PATH)

# Bus defaults
DEFAULT_NAME = os.environ.get("BME280_NAME", "Bme280")
DEFAULT_INTERFACE = os.environ.get("BME280_INTERFACE", "i2c")  # "i2c" or "spi"
DEFAULT_BUS = int(os.environ.get("BME280_BUS", 1))
DEFAULT_I2C_ADDRESS = int(os.environ.get("BME280_ADDRESS", "0x76"), 0)
DEFAULT_SPI_DEVICE = int(os.environ.get("BME280_SPI_DEVICE", 0))  # chip select index

# Measurement defaults
DEFAULT_ELEVATION = float(os.environ.get("BME280_ELEVATION", 0))  # meters, 0 disables sea-level correction
DEFAULT_MODE = os.environ.get("BME280_MODE", "forced")
DEFAULT_REFRESH_SECONDS = float(os.environ.get("BME280_REFRESH_SECONDS", 10))

# GPIO chip carrying the multiplex lock and address lines
DEFAULT_GPIO_CHIP = int(os.environ.get("BME280_GPIO_CHIP", 0))

# Driver version reported by device_version()
DRIVER_VERSION = "1.0.0"
