"""Detection of alarm conditions from the latest sensor snapshot."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Callable, Optional

from .collector import DataCollector, SensorData

log = logging.getLogger(__name__)


def _millis() -> int:
    return int(time.monotonic() * 1000)


def _unix_seconds() -> int:
    return int(time.time())


class EventType(IntEnum):
    NONE = 0
    HIGH_CURRENT = 1
    LOW_PRESSURE = 2
    LOW_TEMPERATURE = 3
    SENSOR_ERROR = 4
    SYSTEM_ERROR = 5

    @property
    def label(self) -> str:
        return _LABELS.get(self, "Unknown")


_LABELS = {
    EventType.HIGH_CURRENT: "High Current",
    EventType.LOW_PRESSURE: "Low Pressure",
    EventType.LOW_TEMPERATURE: "Low Temperature",
    EventType.SENSOR_ERROR: "Sensor Error",
    EventType.SYSTEM_ERROR: "System Error",
}


@dataclass
class Event:
    """An alarm condition, active or resolved."""

    type: EventType = EventType.NONE
    value: float = 0.0
    threshold: float = 0.0
    start_time: int = 0
    duration: int = 0
    active: bool = False
    description: str = ""


@dataclass
class _Watch:
    active: bool = False
    since: int = 0


class EventDetector:
    """Raises and clears events for high current, low pressure, low temperature
    and sensor faults.

    A threshold condition must persist for a delay before its event is raised,
    and clears only once the reading is past the threshold by the hysteresis.
    ``timestamp_source`` returns unix seconds (0 when unknown); ``clock``
    returns a monotonic millisecond counter.
    """

    MAX_EVENTS = 10
    CURRENT_EVENT_DELAY = 3000
    PRESSURE_EVENT_DELAY = 10000
    TEMPERATURE_EVENT_DELAY = 10000

    def __init__(
        self,
        collector: Optional[DataCollector],
        timestamp_source: Callable[[], int] = _unix_seconds,
        clock: Callable[[], int] = _millis,
    ) -> None:
        self._collector = collector
        self._timestamp_source = timestamp_source
        self._clock = clock

        self.high_current_threshold = 7.2
        self.low_pressure_threshold = 5.0
        self.low_temperature_threshold = 38.0

        self.pressure_hysteresis = 2.0
        self.current_hysteresis = 1.0
        self.temperature_hysteresis = 2.0

        self._watches = {
            EventType.HIGH_CURRENT: _Watch(),
            EventType.LOW_PRESSURE: _Watch(),
            EventType.LOW_TEMPERATURE: _Watch(),
        }
        self._sensor_error_active = False

        self._events: list[Event] = []
        self._resolved: list[Event] = []

    # input

    def update(self) -> None:
        """Check the collector's latest snapshot, if there is one."""
        if self._collector is None or not self._collector.is_running():
            return
        data = self._collector.current_data()
        if data is None:
            return
        self.process(data)

    def process(self, data: SensorData) -> None:
        """Run every check against ``data``."""
        self._check_high_current(data)
        self._check_low_pressure(data)
        self._check_low_temperature(data)
        self._check_sensor_health(data)

    def set_thresholds(self, high_current: float, low_pressure: float, low_temp: float) -> None:
        self.high_current_threshold = high_current
        self.low_pressure_threshold = low_pressure
        self.low_temperature_threshold = low_temp

    def set_hysteresis(self, pressure_hyst: float, current_hyst: float, temp_hyst: float) -> None:
        self.pressure_hysteresis = pressure_hyst
        self.current_hysteresis = current_hyst
        self.temperature_hysteresis = temp_hyst

    # state

    @property
    def high_current_active(self) -> bool:
        return self._watches[EventType.HIGH_CURRENT].active

    @property
    def low_pressure_active(self) -> bool:
        return self._watches[EventType.LOW_PRESSURE].active

    @property
    def low_temperature_active(self) -> bool:
        return self._watches[EventType.LOW_TEMPERATURE].active

    @property
    def sensor_error_active(self) -> bool:
        return self._sensor_error_active

    def has_active_events(self) -> bool:
        return any(event.active for event in self._events)

    def events(self) -> list[Event]:
        """Copies of the current events, oldest first."""
        return [replace(event) for event in self._events]

    def get_event(self, index: int) -> Event:
        """The event at ``index``, or a blank event if there is none."""
        if 0 <= index < len(self._events):
            return replace(self._events[index])
        return Event()

    def resolved_events(self) -> list[Event]:
        """Copies of events that have cleared and not yet been collected."""
        return [replace(event) for event in self._resolved]

    def get_resolved_event(self, index: int) -> Event:
        """The resolved event at ``index``, or a blank event if there is none."""
        if 0 <= index < len(self._resolved):
            return replace(self._resolved[index])
        return Event()

    def clear_resolved_events(self) -> None:
        self._resolved.clear()

    def status_string(self) -> str:
        if not self.has_active_events():
            return "Normal"
        flags = (
            (self.high_current_active, "High Current"),
            (self.low_pressure_active, "Low Pressure"),
            (self.low_temperature_active, "Low Temperature"),
            (self._sensor_error_active, "Sensor Error"),
        )
        return "ALERT: " + ", ".join(name for active, name in flags if active)

    def event_summary(self) -> str:
        summary = f"Events: {len(self._events)} active"
        if self._events:
            summary += " (" + ", ".join(event.type.label for event in self._events) + ")"
        return summary

    # checks

    def _check_high_current(self, data: SensorData) -> None:
        value = max(data.current1, data.current2)
        threshold = self.high_current_threshold
        self._watch(
            EventType.HIGH_CURRENT,
            triggered=value > threshold,
            recovered=value < threshold - self.current_hysteresis,
            value=value,
            threshold=threshold,
            delay=self.CURRENT_EVENT_DELAY,
            description="High current detected on pump motor",
        )

    def _check_low_pressure(self, data: SensorData) -> None:
        threshold = self.low_pressure_threshold
        self._watch(
            EventType.LOW_PRESSURE,
            triggered=data.pressure < threshold,
            recovered=data.pressure > threshold + self.pressure_hysteresis,
            value=data.pressure,
            threshold=threshold,
            delay=self.PRESSURE_EVENT_DELAY,
            description="Low pressure detected in system",
        )

    def _check_low_temperature(self, data: SensorData) -> None:
        threshold = self.low_temperature_threshold
        self._watch(
            EventType.LOW_TEMPERATURE,
            triggered=data.temperature < threshold,
            recovered=data.temperature > threshold + self.temperature_hysteresis,
            value=data.temperature,
            threshold=threshold,
            delay=self.TEMPERATURE_EVENT_DELAY,
            description="Low temperature detected in pump house",
        )

    def _check_sensor_health(self, data: SensorData) -> None:
        error = not data.valid
        if error and not self._sensor_error_active:
            self._sensor_error_active = True
            self._add_event(EventType.SENSOR_ERROR, 0.0, 0.0, "Sensor communication error detected")
            log.warning("sensor error event")
        elif not error and self._sensor_error_active:
            self._sensor_error_active = False
            self._clear_event(EventType.SENSOR_ERROR)
            log.info("sensor error cleared")

    def _watch(
        self,
        kind: EventType,
        *,
        triggered: bool,
        recovered: bool,
        value: float,
        threshold: float,
        delay: int,
        description: str,
    ) -> None:
        watch = self._watches[kind]
        now = self._clock()
        if triggered and not watch.active:
            if watch.since == 0:
                watch.since = now
            elif now - watch.since >= delay:
                watch.active = True
                self._add_event(kind, value, threshold, description)
                log.warning("%s event: %.2f (threshold %.2f)", kind.label, value, threshold)
        elif not triggered and watch.active:
            if recovered:
                watch.active = False
                watch.since = 0
                self._clear_event(kind)
                log.info("%s event cleared", kind.label)
        elif not triggered:
            watch.since = 0

        if watch.active:
            self._update_event(kind, value, now - watch.since)

    # event list

    def _add_event(self, kind: EventType, value: float, threshold: float, description: str) -> None:
        if len(self._events) >= self.MAX_EVENTS:
            self._events.pop(0)
        timestamp = self._timestamp_source()
        start = timestamp if timestamp > 0 else self._clock()
        self._events.append(
            Event(
                type=kind,
                value=value,
                threshold=threshold,
                start_time=start,
                duration=0,
                active=True,
                description=description,
            )
        )

    def _find(self, kind: EventType) -> Optional[int]:
        return next((i for i, event in enumerate(self._events) if event.type == kind), None)

    def _clear_event(self, kind: EventType) -> None:
        index = self._find(kind)
        if index is None:
            return
        event = self._events.pop(index)
        if len(self._resolved) < self.MAX_EVENTS:
            self._resolved.append(replace(event, active=False))

    def _update_event(self, kind: EventType, value: float, duration: int) -> None:
        index = self._find(kind)
        if index is not None:
            self._events[index].value = value
            self._events[index].duration = duration