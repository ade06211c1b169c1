# sensors/bme280.py
"""BME280 pressure, temperature and humidity sensor interface."""
import logging
import threading

from config.settings import DRIVER_VERSION
from sensors.bme280_calibration import Calibration
from sensors.bme280_compensation import decode_measurement
from sensors.bme280_constants import (
    BME280_CHIP_ID, BME280_SOFTRESET, BME280_CTRL_HUM, BME280_STATUS,
    BME280_CTRL_MEAS, BME280_CONFIG, BME280_PRESSURE_DATA, DATA_BLOCK_LENGTH,
    CHIP_ID, SOFT_RESET_COMMAND, STATUS_MEASURING, STATUS_IM_UPDATE,
    SOFT_RESET_DELAY, CALIBRATION_POLL_INTERVAL, CALIBRATION_POLL_LIMIT,
    MEASUREMENT_POLL_INTERVAL, MEASUREMENT_POLL_LIMIT,
    CHIP_ID_ATTEMPTS, CHIP_ID_RETRY_DELAY,
    PRESSURE_INDEX, TEMPERATURE_INDEX, HUMIDITY_INDEX,
    PowerMode, ctrl_meas_byte, config_byte, ctrl_hum_byte
)
from sensors.bus import open_bus
from sensors.cache import MeasurementCache
from sensors.exceptions import (
    BME280Error, ConfigurationError, DeviceTimeout, IdentityMismatch,
    NotActive, TransportError
)
from sensors.models import DeviceDescriptor, InitState, SensorConfig, parse_mode
from sensors.spi_mux import build_gate
from utils.clock import SYSTEM_CLOCK

logger = logging.getLogger(__name__)


class BME280:
    """
    Interface for the BME280 pressure, temperature and humidity sensor.

    Handles chip identification, soft reset, calibration loading and sampling
    setup, then serves compensated values from a cache that is refreshed with
    one burst read whenever it has gone stale.

    Construction never raises for device-side failures: the sensor is left
    inactive, the error is logged and kept in last_error, and reset() must be
    called to try again.
    """

    def __init__(self, config=None, bus=None, clock=SYSTEM_CLOCK, timer_factory=threading.Timer, **options):
        """
        Create the driver and run the initialization sequence.

        Args:
            config: SensorConfig; alternatively pass its fields as keyword options
            bus: RegisterBus to use instead of opening one from the config
            clock: Clock used for every delay and poll loop
            timer_factory: Timer constructor for the staleness timer
        """
        if config is None:
            config = SensorConfig(**options)
        elif options:
            raise ConfigurationError(f"Pass either a SensorConfig or keyword options, not both: {sorted(options)}")

        self.config = config
        self.device = DeviceDescriptor(config, DRIVER_VERSION)
        self.clock = clock
        self.cache = MeasurementCache(self.device.refresh, timer_factory)
        self.calibration = None
        self.state = InitState.UNVERIFIED
        self.last_error = None

        # One register transaction sequence at a time per sensor
        self._lock = threading.RLock()

        if bus is None:
            gate = build_gate(config.multiplex, clock)
            try:
                bus = open_bus(config, gate)
            except TransportError:
                if gate is not None:
                    gate.close()
                raise
        self.bus = bus

        try:
            self.initialize()
        except BME280Error as e:
            logger.error(f"Could not initialize {self.device.describe()} : {e}. {self.device.name} is inactive")

    # Device metadata

    def device_name(self):
        return self.device.name

    def device_type(self):
        return self.device.type

    def device_version(self):
        return self.device.version

    def device_num_values(self):
        return len(self.device.parameters)

    def type_at_index(self, idx):
        return self.device.parameter_at(idx).type

    def name_at_index(self, idx):
        return self.device.parameter_at(idx).name

    def device_active(self):
        return self.device.active

    def device_mode(self):
        return self.device.mode.value

    # Initialization

    def initialize(self):
        """
        Bring the sensor into a known measurement configuration.

        Verifies the chip ID, soft-resets the chip, reads the trimming
        parameters, writes the sampling registers and waits for the NVM copy
        to finish. Any failure leaves the sensor inactive in the FAILED state
        and is re-raised.
        """
        with self._lock:
            self.device.active = False
            self.last_error = None
            self.state = InitState.UNVERIFIED
            logger.info(f"Initializing {self.device.name} ({self.device.describe()})")

            try:
                self._verify_chip_id()
                self.state = InitState.ID_VERIFIED

                # Soft reset makes sure the IIR is off, etc.
                self.state = InitState.RESETTING
                self.bus.write_register(BME280_SOFTRESET, SOFT_RESET_COMMAND)
                self.clock.sleep(SOFT_RESET_DELAY)

                self.state = InitState.CALIBRATION_LOADING
                self.calibration = Calibration.read_from(self.bus)

                self._write_sampling()
                self.state = InitState.SAMPLING_CONFIGURED

                self.state = InitState.CALIBRATION_WAITING
                self._wait_for_status_clear(STATUS_IM_UPDATE, CALIBRATION_POLL_INTERVAL,
                                            CALIBRATION_POLL_LIMIT, "calibration copy")
            except BME280Error as e:
                self.state = InitState.FAILED
                self.last_error = e
                raise

            self.state = InitState.ACTIVE
            self.device.active = True
            logger.info(f"{self.device.name} initialization complete, mode {self.device.mode.value}")

    def reset(self):
        """
        Discard calibration and cached values and initialize from scratch.

        Raises the initialization error if the sensor does not come back.
        """
        with self._lock:
            logger.info(f"Resetting {self.device.name}")
            self.cache.cancel()
            with self.cache.lock:
                self.device.clear_values()
                self.device.active = False
            self.calibration = None
            self.initialize()

    def _verify_chip_id(self):
        error = None
        for attempt in range(1, CHIP_ID_ATTEMPTS + 1):
            try:
                chip_id = self.bus.read_register(BME280_CHIP_ID)
            except TransportError as e:
                error = e
            else:
                if chip_id == CHIP_ID:
                    return
                error = IdentityMismatch(chip_id)

            if attempt < CHIP_ID_ATTEMPTS:
                logger.warning(f"Chip ID probe {attempt}/{CHIP_ID_ATTEMPTS} failed: {error}")
                self.clock.sleep(CHIP_ID_RETRY_DELAY)

        raise error

    def _write_sampling(self):
        sampling = self.config.sampling

        # CTRL_HUM is only latched by a following CTRL_MEAS write (DS 7.4.3),
        # so the order of these writes matters
        self.bus.write_register(BME280_CTRL_HUM, ctrl_hum_byte(sampling.humidity))
        self.bus.write_register(BME280_CONFIG, config_byte(sampling.standby, sampling.iir_filter))
        self.bus.write_register(BME280_CTRL_MEAS, self._ctrl_meas(self.device.mode))

    def _ctrl_meas(self, mode):
        sampling = self.config.sampling
        return ctrl_meas_byte(sampling.pressure, sampling.temperature, mode)

    def _wait_for_status_clear(self, mask, interval, limit, what):
        for _ in range(limit):
            if not self.bus.read_register(BME280_STATUS) & mask:
                return
            self.clock.sleep(interval)
        raise DeviceTimeout(f"{self.device.name} {what} still busy after {limit} status polls")

    # Power mode

    def set_mode(self, mode):
        """
        Switch power mode and wait for the resulting conversion to finish.

        Args:
            mode: "sleep", "forced", "normal" or a PowerMode

        Returns:
            bool: False if the mode name is not recognized (nothing is written)
        """
        new_mode = parse_mode(mode)
        if new_mode is None:
            logger.warning(f"{self.device.name}: ignoring unknown mode '{mode}'")
            return False

        with self._lock:
            self.device.mode = new_mode
            self._write_mode(new_mode)
        return True

    def _write_mode(self, mode):
        self.bus.write_register(BME280_CTRL_MEAS, self._ctrl_meas(mode))
        # Data registers hold the previous conversion until measuring clears
        self._wait_for_status_clear(STATUS_MEASURING, MEASUREMENT_POLL_INTERVAL,
                                    MEASUREMENT_POLL_LIMIT, "measurement")

    def _trigger_forced(self):
        """Start one conversion in sleep/forced mode. Failures are logged, not raised."""
        try:
            self._write_mode(PowerMode.FORCED)
        except TransportError as e:
            logger.warning(f"Could not set mode forced on {self.device.name}, "
                           f"reading possibly stale data: {e}")

    # Measurements

    def get_data_from_device(self):
        """
        Read all three channels in one burst and update the parameter table.

        Returns:
            Measurement: decoded pressure, temperature, humidity and fine temperature
        """
        with self._lock:
            if not self.device.active:
                raise NotActive(f"{self.device.name} device not active")

            # Sleep and forced modes need a wake-up before each measurement
            if self.device.mode.is_one_shot:
                self._trigger_forced()

            block = self.bus.read_registers(BME280_PRESSURE_DATA, DATA_BLOCK_LENGTH)
            measurement = decode_measurement(block, self.calibration, self.device.elevation)

            with self.cache.lock:
                parameters = self.device.parameters
                parameters[TEMPERATURE_INDEX].value = measurement.temperature
                parameters[PRESSURE_INDEX].value = measurement.pressure
                parameters[HUMIDITY_INDEX].value = measurement.humidity
                self.cache.mark_fresh()

            logger.debug(f"{self.device.name} read: pressure={measurement.pressure} hPa, "
                         f"temperature={measurement.temperature}°C, humidity={measurement.humidity}%")
            return measurement

    def value_at_index(self, idx):
        """
        Return one parameter value, reading the device only if the cache is stale.

        Args:
            idx: 0 pressure (hPa), 1 temperature (°C), 2 humidity (%RH)
        """
        param = self.device.parameter_at(idx)

        with self._lock:
            if not self.device.active:
                raise NotActive(f"{self.device.name} device not active")

            with self.cache.lock:
                if not self.cache.is_stale:
                    return param.value

            self.get_data_from_device()
            with self.cache.lock:
                return param.value

    def value_by_name(self, name):
        """Return a parameter value by name: pressure, temperature or humidity."""
        return self.value_at_index(self.device.index_of(name))

    def read_pressure(self):
        """Pressure in hPa, sea-level corrected when an elevation is configured."""
        return self.value_at_index(PRESSURE_INDEX)

    def read_temperature(self):
        """Temperature in degrees Celsius."""
        return self.value_at_index(TEMPERATURE_INDEX)

    def read_humidity(self):
        """Relative humidity in %."""
        return self.value_at_index(HUMIDITY_INDEX)

    # Lifecycle

    def close(self):
        """Stop the staleness timer and release the bus."""
        self.cache.cancel()
        self.bus.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
