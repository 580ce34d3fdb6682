"""Periodic sensor sampling and one-minute aggregation of the readings."""

from __future__ import annotations

import logging
import math
import queue
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from .noise_filter import NoiseFilter
from .sensors import SensorError, SensorManager

log = logging.getLogger(__name__)

UNIX_TIME_VALID_AFTER = 1600000000


def _millis() -> int:
    return int(time.monotonic() * 1000)


def _unix_seconds() -> int:
    return int(time.time())


@dataclass
class SensorData:
    """One snapshot of all sensors; failed readings are NaN."""

    temperature: float = math.nan
    humidity: float = math.nan
    pressure: float = math.nan
    current1: float = math.nan
    current2: float = math.nan
    timestamp: int = 0
    valid: bool = False


@dataclass
class AggregatedData:
    """Statistics over one aggregation window."""

    temp_min: float = 0.0
    temp_max: float = 0.0
    temp_avg: float = 0.0
    hum_min: float = 0.0
    hum_max: float = 0.0
    hum_avg: float = 0.0
    press_min: float = 0.0
    press_max: float = 0.0
    press_avg: float = 0.0
    current1_min: float = 0.0
    current1_max: float = 0.0
    current1_avg: float = 0.0
    current1_rms: float = 0.0
    current2_min: float = 0.0
    current2_max: float = 0.0
    current2_avg: float = 0.0
    current2_rms: float = 0.0
    duty_cycle1: float = 0.0
    duty_cycle2: float = 0.0
    start_time: int = 0
    end_time: int = 0
    temp_sample_count: int = 0
    hum_sample_count: int = 0
    press_sample_count: int = 0
    current1_sample_count: int = 0
    current2_sample_count: int = 0
    sample_count: int = 0  # smallest of the per-metric counts


class DataCollector:
    """Samples the sensors every two seconds and aggregates every minute.

    ``timestamp_source`` returns unix seconds, or 0 when wall-clock time is
    not known; ``clock`` returns a monotonic millisecond counter.
    """

    QUEUE_SIZE = 100
    FILTER_SIZE = 30
    AGGREGATION_INTERVAL = 60000
    COLLECTION_PERIOD = 2.0
    AGGREGATION_PERIOD = 2.0
    STARTUP_DELAY = 0.1
    MAX_BATCH = 10

    DEFAULT_TEMPERATURE = 70.0
    DEFAULT_HUMIDITY = 50.0

    def __init__(
        self,
        sensor_manager: Optional[SensorManager],
        timestamp_source: Callable[[], int] = _unix_seconds,
        clock: Callable[[], int] = _millis,
    ) -> None:
        self._sensors = sensor_manager
        self._timestamp_source = timestamp_source
        self._clock = clock

        self._temp_filter = NoiseFilter(self.FILTER_SIZE, 20.0, 0.1)
        self._hum_filter = NoiseFilter(self.FILTER_SIZE, 20.0, 0.1)
        self._press_filter = NoiseFilter(self.FILTER_SIZE, 2.0, 0.1)
        self._current1_filter = NoiseFilter(self.FILTER_SIZE, 1.5, 0.2)
        self._current2_filter = NoiseFilter(self.FILTER_SIZE, 1.5, 0.2)

        self._queue: queue.Queue[SensorData] = queue.Queue(maxsize=self.QUEUE_SIZE)
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

        self._current = SensorData()
        self._aggregated = AggregatedData()

        self._running = False
        self._last_aggregation_time = 0

        self._threshold1 = 0.5
        self._threshold2 = 0.5

    # lifecycle

    def start(self) -> bool:
        """Start the collection and aggregation threads."""
        if self._running:
            return True
        if self._sensors is None:
            log.error("no sensor manager given to the data collector")
            return False

        self._stop_event.clear()
        self._running = True
        self._last_aggregation_time = self._clock()
        self._threads = [
            threading.Thread(
                target=self._run_periodic,
                args=(self.COLLECTION_PERIOD, self.collect_sensor_data),
                name="DataCollection",
                daemon=True,
            ),
            threading.Thread(
                target=self._run_periodic,
                args=(self.AGGREGATION_PERIOD, self._aggregation_step),
                name="DataAggregation",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        log.info("data collector started")
        return True

    def stop(self) -> None:
        """Stop the background threads and discard queued samples."""
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(timeout=5.0)
        self._threads = []
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        log.info("data collector stopped")

    def is_running(self) -> bool:
        return self._running

    # accessors

    def current_data(self) -> Optional[SensorData]:
        """The latest snapshot, or None if not running or the snapshot is invalid."""
        if not self._running:
            return None
        with self._lock:
            data = replace(self._current)
        return data if data.valid else None

    def aggregated_data(self) -> Optional[AggregatedData]:
        """The last aggregate, or None if not running or it holds no samples."""
        if not self._running:
            return None
        with self._lock:
            data = replace(self._aggregated)
        return data if data.sample_count > 0 else None

    def clear_aggregated_data(self) -> None:
        """Forget the last aggregate, typically after it has been sent."""
        if not self._running:
            return
        with self._lock:
            self._aggregated = AggregatedData()
        log.info("aggregated data cleared")

    def set_current_thresholds(self, threshold1: float, threshold2: float) -> None:
        self._threshold1 = threshold1
        self._threshold2 = threshold2

    def queue_size(self) -> int:
        return self._queue.qsize()

    # work steps

    def collect_sensor_data(self) -> Optional[SensorData]:
        """Read every sensor once and queue the snapshot; None if sensors are unhealthy."""
        if self._sensors is None or not self._sensors.is_healthy():
            return None

        timestamp = self._timestamp_source()
        data = SensorData(timestamp=timestamp if timestamp > 0 else self._clock())

        readings = {
            "temperature": self._sensors.read_temperature,
            "humidity": self._sensors.read_humidity,
            "pressure": self._sensors.read_pressure,
            "current1": self._sensors.read_current1,
            "current2": self._sensors.read_current2,
        }
        ok: dict[str, bool] = {}
        for name, read in readings.items():
            try:
                setattr(data, name, read())
                ok[name] = True
            except SensorError as exc:
                ok[name] = False
                log.debug("%s validation failed: %s", name, exc)

        # Temperature and humidity may fail occasionally; pressure and
        # currents are what aggregation depends on.
        data.valid = ok["pressure"] and ok["current1"] and ok["current2"]

        with self._lock:
            self._current = replace(data)

        try:
            self._queue.put_nowait(data)
        except queue.Full:
            log.warning("data queue full, dropping sample")
        return data

    def process_queue(self) -> int:
        """Feed up to ten queued samples into the filters; return how many."""
        processed = 0
        with self._lock:
            while processed < self.MAX_BATCH:
                try:
                    data = self._queue.get_nowait()
                except queue.Empty:
                    break

                if -40.0 <= data.temperature <= 150.0:
                    self._temp_filter.add_sample(data.temperature)
                else:
                    log.debug("invalid temperature %.1f, using default", data.temperature)
                    self._temp_filter.add_sample(self.DEFAULT_TEMPERATURE)

                if 0.0 <= data.humidity <= 100.0:
                    self._hum_filter.add_sample(data.humidity)
                else:
                    log.debug("invalid humidity %.1f, using default", data.humidity)
                    self._hum_filter.add_sample(self.DEFAULT_HUMIDITY)

                if data.valid:
                    self._press_filter.add_sample(data.pressure)
                    self._current1_filter.add_sample(data.current1)
                    self._current2_filter.add_sample(data.current2)
                else:
                    log.debug("skipping pressure/current samples: data invalid")
                processed += 1

        if processed:
            log.debug("processed %d samples, %d remaining", processed, self._queue.qsize())
        return processed

    def aggregate(self) -> AggregatedData:
        """Summarise the filters into a new aggregate, store it and reset the filters."""
        agg = AggregatedData()
        now = self._timestamp_source()
        if now > UNIX_TIME_VALID_AFTER:
            agg.start_time = now - self.AGGREGATION_INTERVAL // 1000
            agg.end_time = now

        with self._lock:
            agg.temp_sample_count = self._temp_filter.sample_count()
            agg.hum_sample_count = self._hum_filter.sample_count()
            agg.press_sample_count = self._press_filter.sample_count()
            agg.current1_sample_count = self._current1_filter.sample_count()
            agg.current2_sample_count = self._current2_filter.sample_count()
            agg.sample_count = min(
                agg.temp_sample_count,
                agg.hum_sample_count,
                agg.press_sample_count,
                agg.current1_sample_count,
                agg.current2_sample_count,
            )

            if agg.temp_sample_count:
                agg.temp_min, agg.temp_max, agg.temp_avg = self._stats(self._temp_filter)
            if agg.hum_sample_count:
                agg.hum_min, agg.hum_max, agg.hum_avg = self._stats(self._hum_filter)
            if agg.press_sample_count:
                agg.press_min, agg.press_max, agg.press_avg = self._stats(self._press_filter)
            if agg.current1_sample_count:
                agg.current1_min, agg.current1_max, agg.current1_avg = self._stats(self._current1_filter)
                agg.current1_rms = self._current1_filter.rms()
                agg.duty_cycle1 = self._duty_cycle(self._current1_filter, self._threshold1)
            if agg.current2_sample_count:
                agg.current2_min, agg.current2_max, agg.current2_avg = self._stats(self._current2_filter)
                agg.current2_rms = self._current2_filter.rms()
                agg.duty_cycle2 = self._duty_cycle(self._current2_filter, self._threshold2)

            self._aggregated = replace(agg)

            for flt in (
                self._temp_filter,
                self._hum_filter,
                self._press_filter,
                self._current1_filter,
                self._current2_filter,
            ):
                flt.reset()

        log.info(
            "aggregated: T=%.1f P=%.1f I1=%.2f I2=%.2f DC1=%.1f%% DC2=%.1f%%",
            agg.temp_avg, agg.press_avg, agg.current1_avg,
            agg.current2_avg, agg.duty_cycle1, agg.duty_cycle2,
        )
        return agg

    # internals

    @staticmethod
    def _stats(flt: NoiseFilter) -> tuple[float, float, float]:
        return flt.minimum(), flt.maximum(), flt.average()

    @staticmethod
    def _duty_cycle(flt: NoiseFilter, threshold: float) -> float:
        # Judged on the window average, so the result is either 0 or 100.
        if flt.sample_count() == 0:
            return 0.0
        return 100.0 if flt.average() > threshold else 0.0

    def _aggregation_step(self) -> None:
        now = self._clock()
        self.process_queue()
        if now - self._last_aggregation_time >= self.AGGREGATION_INTERVAL:
            self.aggregate()
            self._last_aggregation_time = now

    def _run_periodic(self, period: float, step: Callable[[], object]) -> None:
        if self._stop_event.wait(self.STARTUP_DELAY):
            return
        next_run = time.monotonic()
        while not self._stop_event.is_set():
            try:
                step()
            except Exception:
                log.exception("error in %s", threading.current_thread().name)
            next_run += period
            delay = max(0.0, next_run - time.monotonic())
            if self._stop_event.wait(delay):
                return