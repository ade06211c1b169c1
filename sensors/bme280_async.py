# sensors/bme280_async.py
"""asyncio front end for the BME280 driver."""
import asyncio
import logging

from sensors.bme280 import BME280

logger = logging.getLogger(__name__)


class AsyncBME280:
    """
    Awaitable query surface over a blocking BME280.

    Bus work runs in a worker thread; an asyncio.Lock keeps one transaction in
    flight per sensor. Metadata lookups and index checks stay synchronous and
    never touch the bus.
    """

    def __init__(self, sensor):
        self.sensor = sensor
        self._lock = asyncio.Lock()

    @classmethod
    async def create(cls, *args, **kwargs):
        """Construct and initialize a BME280 without blocking the event loop."""
        sensor = await asyncio.to_thread(BME280, *args, **kwargs)
        return cls(sensor)

    def device_name(self):
        return self.sensor.device_name()

    def device_type(self):
        return self.sensor.device_type()

    def device_version(self):
        return self.sensor.device_version()

    def device_num_values(self):
        return self.sensor.device_num_values()

    def type_at_index(self, idx):
        return self.sensor.type_at_index(idx)

    def name_at_index(self, idx):
        return self.sensor.name_at_index(idx)

    def device_active(self):
        return self.sensor.device_active()

    def device_mode(self):
        return self.sensor.device_mode()

    async def value_at_index(self, idx):
        # Reject bad indices before queuing any bus work
        self.sensor.device.parameter_at(idx)
        return await self._run(self.sensor.value_at_index, idx)

    async def value_by_name(self, name):
        idx = self.sensor.device.index_of(name)
        return await self.value_at_index(idx)

    async def get_data_from_device(self):
        return await self._run(self.sensor.get_data_from_device)

    async def set_mode(self, mode):
        return await self._run(self.sensor.set_mode, mode)

    async def reset(self):
        await self._run(self.sensor.reset)

    async def close(self):
        await self._run(self.sensor.close)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    async def _run(self, func, *args):
        async with self._lock:
            return await asyncio.to_thread(func, *args)
