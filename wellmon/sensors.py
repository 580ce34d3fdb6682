"""Reading and calibrating the pump-house temperature, pressure and current sensors."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

log = logging.getLogger(__name__)


class SensorError(Exception):
    """A sensor could not be read or produced an implausible value."""


class AnalogReader(ABC):
    """A four-channel analog-to-digital converter returning volts."""

    @abstractmethod
    def begin(self) -> bool:
        """Prepare the converter; return False if it is not present."""

    @abstractmethod
    def read_volts(self, channel: int) -> float:
        """Return the single-ended voltage on ``channel``."""


class ClimateReader(ABC):
    """A combined temperature and relative-humidity sensor."""

    @abstractmethod
    def begin(self) -> bool:
        """Prepare the sensor; return False if it is not present."""

    @abstractmethod
    def read(self) -> tuple[float, float]:
        """Return ``(celsius, relative_humidity)``; raise SensorError on failure."""


def _millis() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class _Calibration:
    offset: float
    scale: float

    def convert(self, volts: float) -> float:
        return (volts - self.offset) * self.scale


def _celsius_to_fahrenheit(celsius: float) -> float:
    return celsius * 9.0 / 5.0 + 32.0


class SensorManager:
    """Reads the climate sensor and three ADC channels with caching and validation.

    Pressure is on ADC channel 2, pump current 1 on channel 0 and pump
    current 2 on channel 1. Temperatures are reported in Fahrenheit.
    """

    TEMP_READ_INTERVAL = 5000
    PRESSURE_READ_INTERVAL = 3000
    CURRENT_READ_INTERVAL = 1000

    PRESSURE_CHANNEL = 2
    CURRENT1_CHANNEL = 0
    CURRENT2_CHANNEL = 1

    FULL_SCALE_VOLTS = 6.144

    def __init__(
        self,
        adc: AnalogReader,
        climate: ClimateReader,
        clock: Callable[[], int] = _millis,
    ) -> None:
        self._adc = adc
        self._climate = climate
        self._clock = clock

        # 0.5 V - 4.5 V spans 0 - 100 PSI.
        self._pressure_cal = _Calibration(offset=0.5, scale=25.0)
        # Hall-effect sensors: 2.5 V is 0 A, 30 A per volt.
        self._current1_cal = _Calibration(offset=2.5, scale=30.0)
        self._current2_cal = _Calibration(offset=2.5, scale=30.0)

        self._aht_ok = False
        self._ads_ok = False

        self._last_temp_read = 0
        self._last_pressure_read = 0
        self._last_current_read = 0

        self._temperature = 0.0
        self._humidity = 0.0
        self._pressure = 0.0
        self._current1 = 0.0
        self._current2 = 0.0

    def begin(self) -> bool:
        """Start both sensors; True only if both came up."""
        self._aht_ok = bool(self._climate.begin())
        if self._aht_ok:
            log.info("climate sensor initialized")
        else:
            log.warning("failed to initialize climate sensor")

        if not self._adc.begin():
            log.warning("failed to initialize ADC")
            self._ads_ok = False
            return False
        self._ads_ok = True
        return self._aht_ok and self._ads_ok

    def is_healthy(self) -> bool:
        return self._aht_ok and self._ads_ok

    @property
    def aht_healthy(self) -> bool:
        return self._aht_ok

    @property
    def ads_healthy(self) -> bool:
        return self._ads_ok

    @property
    def temperature(self) -> float:
        return self._temperature

    @property
    def humidity(self) -> float:
        return self._humidity

    @property
    def pressure(self) -> float:
        return self._pressure

    @property
    def current1(self) -> float:
        return self._current1

    @property
    def current2(self) -> float:
        return self._current2

    def read_temperature(self) -> float:
        """Return the temperature in Fahrenheit, cached for five seconds."""
        now = self._clock()
        if now - self._last_temp_read < self.TEMP_READ_INTERVAL:
            return self._temperature
        if not self._aht_ok:
            raise SensorError("climate sensor not initialized")
        celsius, humidity = self._climate.read()
        temp = _celsius_to_fahrenheit(celsius)
        if not -40.0 <= temp <= 150.0:
            raise SensorError(f"temperature out of range: {temp:.1f}F")
        self._temperature = temp
        self._humidity = humidity
        self._last_temp_read = now
        return temp

    def read_humidity(self) -> float:
        """Return relative humidity in percent, cached for five seconds."""
        now = self._clock()
        if now - self._last_temp_read < self.TEMP_READ_INTERVAL:
            return self._humidity
        if not self._aht_ok:
            raise SensorError("climate sensor not initialized")
        celsius, humidity = self._climate.read()
        if not 0.0 <= humidity <= 100.0:
            raise SensorError(f"humidity out of range: {humidity:.1f}%")
        self._humidity = humidity
        self._temperature = _celsius_to_fahrenheit(celsius)
        self._last_temp_read = now
        return humidity

    def read_pressure(self) -> float:
        """Return system pressure in PSI, cached for three seconds."""
        now = self._clock()
        if now - self._last_pressure_read < self.PRESSURE_READ_INTERVAL:
            log.debug("pressure: using cached value %.1f PSI", self._pressure)
            return self._pressure
        value = self._convert(self.PRESSURE_CHANNEL, self._pressure_cal, "pressure")
        if not 0.0 <= value <= 150.0:
            raise SensorError(f"pressure out of range: {value:.1f} PSI (range: 0-150)")
        self._pressure = value
        self._last_pressure_read = now
        return value

    def read_current1(self) -> float:
        """Return pump current 1 in amperes, cached for one second."""
        now = self._clock()
        if now - self._last_current_read < self.CURRENT_READ_INTERVAL:
            log.debug("current1: using cached value %.2f A", self._current1)
            return self._current1
        value = self._convert(self.CURRENT1_CHANNEL, self._current1_cal, "current1")
        self._check_current(value, "current1")
        self._current1 = value
        self._last_current_read = now
        return value

    def read_current2(self) -> float:
        """Return pump current 2 in amperes; never cached."""
        value = self._convert(self.CURRENT2_CHANNEL, self._current2_cal, "current2")
        self._check_current(value, "current2")
        self._current2 = value
        return value

    def calibrate_pressure(self, zero_point: float, full_scale: float) -> None:
        self._pressure_cal = self._two_point(zero_point, full_scale)

    def calibrate_current1(self, zero_point: float, full_scale: float) -> None:
        self._current1_cal = self._two_point(zero_point, full_scale)

    def calibrate_current2(self, zero_point: float, full_scale: float) -> None:
        self._current2_cal = self._two_point(zero_point, full_scale)

    def calibrate_pressure_at_value(self, known_pressure: float) -> bool:
        """Calibrate against a known pressure; return True if applied."""
        return self._single_point(self.PRESSURE_CHANNEL, self._pressure_cal, known_pressure, "pressure")

    def calibrate_current1_at_value(self, known_current: float) -> bool:
        """Calibrate against a known current; return True if applied."""
        return self._single_point(self.CURRENT1_CHANNEL, self._current1_cal, known_current, "current1")

    def calibrate_current2_at_value(self, known_current: float) -> bool:
        """Calibrate against a known current; return True if applied."""
        return self._single_point(self.CURRENT2_CHANNEL, self._current2_cal, known_current, "current2")

    def raw_pressure_voltage(self) -> float:
        return self._read_channel(self.PRESSURE_CHANNEL)

    def raw_current1_voltage(self) -> float:
        return self._read_channel(self.CURRENT1_CHANNEL)

    def raw_current2_voltage(self) -> float:
        return self._read_channel(self.CURRENT2_CHANNEL)

    def set_calibration(
        self,
        press_offset: float,
        press_scale: float,
        curr1_offset: float,
        curr1_scale: float,
        curr2_offset: float,
        curr2_scale: float,
    ) -> None:
        self._pressure_cal = _Calibration(press_offset, press_scale)
        self._current1_cal = _Calibration(curr1_offset, curr1_scale)
        self._current2_cal = _Calibration(curr2_offset, curr2_scale)

    def _read_channel(self, channel: int) -> float:
        if not self._ads_ok:
            raise SensorError("ADC not initialized")
        if channel not in range(4):
            raise SensorError(f"invalid ADC channel {channel}")
        volts = self._adc.read_volts(channel)
        log.debug("ADC ch%d: %.3fV", channel, volts)
        return volts

    def _convert(self, channel: int, cal: _Calibration, name: str) -> float:
        raw = self._read_channel(channel)
        if raw < 0:
            raise SensorError(f"{name}: negative voltage {raw:.3f}V")
        value = cal.convert(raw)
        log.debug(
            "%s: raw=%.3fV value=%.2f (offset=%.1f, scale=%.1f)",
            name, raw, value, cal.offset, cal.scale,
        )
        return value

    @staticmethod
    def _check_current(value: float, name: str) -> None:
        # Bidirectional Hall sensors may read negative.
        if not -50.0 <= value <= 50.0:
            raise SensorError(f"{name} out of range: {value:.2f} A")

    def _two_point(self, zero_point: float, full_scale: float) -> _Calibration:
        span = self.FULL_SCALE_VOLTS - zero_point
        if span == 0:
            raise ValueError("zero point must differ from the ADC full-scale voltage")
        return _Calibration(offset=zero_point, scale=full_scale / span)

    def _single_point(self, channel: int, cal: _Calibration, known: float, name: str) -> bool:
        try:
            raw = self._read_channel(channel)
        except SensorError:
            return False
        if raw <= 0:
            return False
        if known == 0.0:
            cal.offset = raw
            log.info("%s zero calibrated: offset=%.3fV", name, raw)
        else:
            if raw == cal.offset:
                raise ValueError(f"{name}: reading equals the zero offset, cannot derive a scale")
            cal.scale = known / (raw - cal.offset)
            log.info("%s calibrated: %.2f at %.3fV, scale=%.2f", name, known, raw, cal.scale)
        return True