"""Client that stores aggregated readings and events through a document-database HTTP data API."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from .collector import AggregatedData
from .events import Event

log = logging.getLogger(__name__)


def _millis() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class _BufferEntry:
    data: AggregatedData
    timestamp: int


def _format_timestamp(timestamp: int) -> str:
    return str(timestamp)


class WellPumpMongoClient:
    """Inserts sensor aggregates and events as documents, buffering aggregates while offline.

    ``session`` is the ``requests.Session`` to use (a new one is made when
    omitted); ``clock`` returns a monotonic millisecond counter.
    """

    BUFFER_SIZE = 10
    CONNECTION_TEST_INTERVAL = 300000
    RETRY_DELAY = 30000
    MAX_RETRY_DELAY = 300000
    MAX_RETRIES = 3
    REQUEST_TIMEOUT = 10.0

    SENSOR_COLLECTION = "sensor_data"
    EVENT_COLLECTION = "events"

    def __init__(
        self,
        url: str,
        key: str,
        data_source: str,
        database: str,
        device: str,
        location: str,
        session: Optional[requests.Session] = None,
        clock: Callable[[], int] = _millis,
    ) -> None:
        self.url = url
        self.api_key = key
        self.data_source = data_source
        self.database = database
        self.device = device
        self.location = location
        self.sensor_collection = self.SENSOR_COLLECTION
        self.event_collection = self.EVENT_COLLECTION

        self._given_session = session
        self._session: Optional[requests.Session] = None
        self._clock = clock

        self._connected = False
        self._initialized = False
        self._last_connection_test = 0
        self._last_retry_time = 0
        self._retry_count = 0

        self._buffer: list[Optional[_BufferEntry]] = [None] * self.BUFFER_SIZE
        self._buffer_index = 0
        self._buffered_count = 0

    # state

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def buffered_count(self) -> int:
        return self._buffered_count

    @property
    def retry_count(self) -> int:
        return self._retry_count

    # lifecycle

    def begin(self) -> bool:
        """Set up the HTTP session and test the connection."""
        if self._initialized:
            return True
        if not self._validate_configuration():
            log.error("database client: invalid configuration")
            return False
        self._cleanup_session()
        self._session = self._given_session if self._given_session is not None else requests.Session()
        self._initialized = True
        return self.test_connection()

    def set_credentials(self, url: str, key: str, data_source: str, database: str) -> None:
        """Replace the endpoint settings; the client must be started again."""
        self.url = url
        self.api_key = key
        self.data_source = data_source
        self.database = database
        if self._initialized:
            self._disconnect()
            self._initialized = False

    def test_connection(self) -> bool:
        """Run a one-document query, at most once every five minutes."""
        if self._session is None:
            return False
        now = self._clock()
        if now - self._last_connection_test < self.CONNECTION_TEST_INTERVAL:
            return self._connected

        payload = {
            "dataSource": self.data_source,
            "database": self.database,
            "collection": self.sensor_collection,
            "filter": {},
            "limit": 1,
        }
        status, _ = self._post("/action/findOne", payload)
        self._connected = status == 200
        self._last_connection_test = now
        if self._connected:
            self._retry_count = 0
        return self._connected

    # writing

    def write_aggregated_data(self, data: AggregatedData) -> bool:
        """Insert an aggregate now, or buffer it if that is not possible."""
        if not self._initialized or not self._connected:
            self._add_to_buffer(data)
            return False
        if self._write_data_document(data):
            self._retry_count = 0
            return True
        self._add_to_buffer(data)
        return False

    def write_event(self, event: Event) -> bool:
        """Insert an event; events are not buffered."""
        if not self._initialized or not self._connected:
            return False
        return self._insert_document(self.event_collection, self.create_event_document(event))

    def flush_buffer(self) -> bool:
        return self._process_buffer()

    def update(self) -> None:
        """Reconnect with exponential backoff and drain the buffer when possible."""
        if not self._initialized:
            return
        now = self._clock()
        if not self._connected and now - self._last_retry_time > self._retry_delay():
            if self.test_connection():
                self._process_buffer()
            else:
                self._retry_count += 1
                self._last_retry_time = now
        if self._connected and self._buffered_count > 0:
            self._process_buffer()

    def connection_status(self) -> str:
        if not self._initialized:
            return "Not initialized"
        if self._connected:
            if self._buffered_count > 0:
                return f"Connected (buffer: {self._buffered_count})"
            return "Connected"
        if self._retry_count > self.MAX_RETRIES:
            return "Failed (max retries exceeded)"
        return f"Disconnected (retry {self._retry_count}/{self.MAX_RETRIES})"

    def last_error(self) -> str:
        if self._session is None:
            return "No HTTP client"
        return "HTTP error"

    # documents

    def create_sensor_document(self, data: AggregatedData) -> dict[str, Any]:
        return {
            "device": self.device,
            "location": self.location,
            "timestamp": _format_timestamp(data.end_time),
            "startTime": _format_timestamp(data.start_time),
            "endTime": _format_timestamp(data.end_time),
            "sampleCount": data.sample_count,
            "temperature": {"min": data.temp_min, "max": data.temp_max, "avg": data.temp_avg},
            "humidity": {"min": data.hum_min, "max": data.hum_max, "avg": data.hum_avg},
            "pressure": {"min": data.press_min, "max": data.press_max, "avg": data.press_avg},
            "current1": {
                "min": data.current1_min,
                "max": data.current1_max,
                "avg": data.current1_avg,
                "rms": data.current1_rms,
                "dutyCycle": data.duty_cycle1,
            },
            "current2": {
                "min": data.current2_min,
                "max": data.current2_max,
                "avg": data.current2_avg,
                "rms": data.current2_rms,
                "dutyCycle": data.duty_cycle2,
            },
        }

    def create_event_document(self, event: Event) -> dict[str, Any]:
        return {
            "device": self.device,
            "location": self.location,
            "timestamp": _format_timestamp(event.start_time),
            "type": int(event.type),
            "value": event.value,
            "threshold": event.threshold,
            "startTime": _format_timestamp(event.start_time),
            "duration": event.duration,
            "active": event.active,
            "description": event.description,
        }

    # internals

    def _validate_configuration(self) -> bool:
        return all((self.url, self.api_key, self.data_source, self.database, self.device))

    def _disconnect(self) -> None:
        self._cleanup_session()
        self._connected = False

    def _cleanup_session(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def _write_data_document(self, data: AggregatedData) -> bool:
        return self._insert_document(self.sensor_collection, self.create_sensor_document(data))

    def _insert_document(self, collection: str, document: dict[str, Any]) -> bool:
        if self._session is None:
            return False
        payload = {
            "dataSource": self.data_source,
            "database": self.database,
            "collection": collection,
            "document": document,
        }
        status, text = self._post("/action/insertOne", payload)
        success = status in (200, 201)
        if not success:
            log.warning("database insert failed (HTTP %d)", status)
            if text:
                log.debug("response: %s", text)
        return success

    def _post(self, action: str, payload: dict[str, Any]) -> tuple[int, str]:
        assert self._session is not None
        headers = {
            "Content-Type": "application/json",
            "Authorization": "Bearer " + self.api_key,
        }
        try:
            response = self._session.post(
                self.url + action,
                data=json.dumps(payload, separators=(",", ":")).encode("utf-8"),
                headers=headers,
                timeout=self.REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            log.warning("request to %s failed: %s", action, exc)
            return -1, ""
        return response.status_code, response.text

    def _add_to_buffer(self, data: AggregatedData) -> None:
        self._buffer[self._buffer_index] = _BufferEntry(data, self._clock())
        self._buffer_index = (self._buffer_index + 1) % self.BUFFER_SIZE
        if self._buffered_count < self.BUFFER_SIZE:
            self._buffered_count += 1

    def _process_buffer(self) -> bool:
        if self._buffered_count == 0 or not self._connected:
            return True
        all_sent = True
        processed = 0
        for slot, entry in enumerate(self._buffer):
            if processed >= self._buffered_count:
                break
            if entry is None:
                continue
            if not self._write_data_document(entry.data):
                all_sent = False
                break
            self._buffer[slot] = None
            processed += 1
        self._buffered_count -= processed
        return all_sent

    def _retry_delay(self) -> int:
        delay = self.RETRY_DELAY * (1 << min(self._retry_count, 4))
        return min(delay, self.MAX_RETRY_DELAY)