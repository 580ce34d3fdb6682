"""HTTP client that pushes aggregated readings and events to the well-pump API."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from .collector import UNIX_TIME_VALID_AFTER, AggregatedData
from .events import Event

log = logging.getLogger(__name__)


def _millis() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class APIConfig:
    """Where and how to reach the API."""

    base_url: str = ""
    api_key: str = ""
    use_https: bool = True
    verify_certificate: bool = True


@dataclass
class _BufferEntry:
    data: AggregatedData
    timestamp: int


def format_timestamp(timestamp: int) -> str:
    """Unix seconds as a millisecond string; "0" when the value is not a unix time."""
    if timestamp > UNIX_TIME_VALID_AFTER:
        return str(timestamp * 1000)
    log.warning("received non-unix timestamp %d, wall clock not synced", timestamp)
    return "0"


class WellPumpAPIClient:
    """Sends sensor aggregates and events, buffering aggregates while offline.

    ``session`` is the ``requests.Session`` to use (a new one is made when
    omitted); ``clock`` returns a monotonic millisecond counter.
    """

    BUFFER_SIZE = 20
    CONNECTION_TEST_INTERVAL = 30000
    RETRY_DELAY = 5000
    MAX_RETRY_DELAY = 300000
    MAX_RETRIES = 3
    REQUEST_TIMEOUT = 10.0
    SEND_PAUSE = 0.1

    def __init__(
        self,
        config: APIConfig,
        device: str,
        location: str,
        session: Optional[requests.Session] = None,
        clock: Callable[[], int] = _millis,
    ) -> None:
        self._apply_config(config)
        self.device = device
        self.location = location
        self._given_session = session
        self._session: Optional[requests.Session] = None
        self._clock = clock

        self._connected = False
        self._initialized = False
        self._last_connection_test = 0
        self._last_retry_time = 0
        self._retry_count = 0
        self._last_status = -1

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
    def last_http_status_code(self) -> int:
        return self._last_status

    @property
    def retry_count(self) -> int:
        return self._retry_count

    # lifecycle

    def begin(self) -> bool:
        """Set up the HTTP session and test the connection."""
        if self._initialized:
            return True
        if not self.validate_configuration():
            log.error("API client: invalid configuration")
            return False
        self._setup_session()
        self._initialized = True
        log.info("API client initialized")
        return self.test_connection()

    def validate_configuration(self) -> bool:
        return bool(self.base_url) and bool(self.device) and bool(self.location)

    def set_credentials(self, config: APIConfig) -> None:
        """Replace the endpoint settings; the client must be started again."""
        self._apply_config(config)
        if self._initialized:
            self.disconnect()
            self._initialized = False

    def test_connection(self) -> bool:
        """Query the health endpoint, at most once every thirty seconds."""
        if self._session is None:
            return False
        now = self._clock()
        if now - self._last_connection_test < self.CONNECTION_TEST_INTERVAL:
            return self._connected

        url = self.base_url + "/api/health"
        log.debug("connection test: %s (verify=%s)", url, self.verify_certificate)
        status, text = self._send("GET", url, None)

        self._last_status = status
        self._connected = 200 <= status < 300
        self._last_connection_test = now

        if self._connected:
            log.info("API connection test successful (HTTP %d)", status)
            self._retry_count = 0
        else:
            log.warning("API connection test failed (HTTP %d)", status)
        if text and len(text) < 500:
            log.debug("response: %s", text)
        return self._connected

    def connect(self) -> bool:
        return self.test_connection()

    def disconnect(self) -> None:
        self._cleanup_session()
        self._connected = False

    # sending

    def send_sensor_data(self, data: AggregatedData) -> bool:
        """Send an aggregate now, or buffer it if that is not possible."""
        if not self._initialized or not self._connected:
            log.info("API client not connected, buffering data")
            self.add_to_buffer(data)
            return False
        if self._post("/api/sensors", self.create_sensor_json(data)):
            self._retry_count = 0
            return True
        log.warning("failed to send sensor data, buffering")
        self.add_to_buffer(data)
        return False

    def send_event(self, event: Event) -> bool:
        """Send an event; events are not buffered."""
        if not self._initialized or not self._connected:
            log.warning("API client not connected, cannot send event")
            return False
        return self._post("/api/events", self.create_event_json(event))

    # buffering

    def add_to_buffer(self, data: AggregatedData) -> None:
        """Store an aggregate in the ring buffer, overwriting the oldest slot when full."""
        self._buffer[self._buffer_index] = _BufferEntry(data, self._clock())
        self._buffer_index = (self._buffer_index + 1) % self.BUFFER_SIZE
        if self._buffered_count < self.BUFFER_SIZE:
            self._buffered_count += 1
        log.info("data added to buffer (%d/%d)", self._buffered_count, self.BUFFER_SIZE)

    def process_buffer(self) -> bool:
        """Send buffered aggregates, stopping at the first failure."""
        if self._buffered_count == 0 or not self._connected:
            return True

        all_sent = True
        processed = 0
        for slot, entry in enumerate(self._buffer):
            if processed >= self._buffered_count:
                break
            if entry is None:
                continue
            if not self._post("/api/sensors", self.create_sensor_json(entry.data)):
                all_sent = False
                log.warning("failed to send buffered data, stopping")
                break
            self._buffer[slot] = None
            processed += 1
            if self.SEND_PAUSE > 0:
                time.sleep(self.SEND_PAUSE)

        self._buffered_count -= processed
        if processed:
            log.info("sent %d buffered items, %d remaining", processed, self._buffered_count)
        return all_sent

    def flush_buffer(self) -> bool:
        return self.process_buffer()

    def update(self) -> None:
        """Reconnect with exponential backoff and drain the buffer when possible."""
        if not self._initialized:
            return
        now = self._clock()
        if not self._connected and now - self._last_retry_time > self._retry_delay():
            log.info("API client attempting reconnection (attempt %d)", self._retry_count + 1)
            if self.test_connection():
                self.process_buffer()
            else:
                self._retry_count += 1
                self._last_retry_time = now
        if self._connected and self._buffered_count > 0:
            self.process_buffer()

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

    # payloads

    def create_sensor_json(self, data: AggregatedData) -> str:
        doc = {
            "device": self.device,
            "location": self.location,
            "timestamp": format_timestamp(data.end_time),
            "startTime": format_timestamp(data.start_time),
            "endTime": format_timestamp(data.end_time),
            "sampleCount": data.sample_count,
            "tempMin": data.temp_min,
            "tempMax": data.temp_max,
            "tempAvg": data.temp_avg,
            "humMin": data.hum_min,
            "humMax": data.hum_max,
            "humAvg": data.hum_avg,
            "pressMin": data.press_min,
            "pressMax": data.press_max,
            "pressAvg": data.press_avg,
            "current1Min": data.current1_min,
            "current1Max": data.current1_max,
            "current1Avg": data.current1_avg,
            "current1RMS": data.current1_rms,
            "dutyCycle1": data.duty_cycle1,
            "current2Min": data.current2_min,
            "current2Max": data.current2_max,
            "current2Avg": data.current2_avg,
            "current2RMS": data.current2_rms,
            "dutyCycle2": data.duty_cycle2,
        }
        return json.dumps(doc, separators=(",", ":"))

    def create_event_json(self, event: Event) -> str:
        doc = {
            "device": self.device,
            "location": self.location,
            "timestamp": format_timestamp(event.start_time),
            "type": int(event.type),
            "value": event.value,
            "threshold": event.threshold,
            "startTime": format_timestamp(event.start_time),
            "duration": event.duration,
            "active": event.active,
            "description": event.description,
        }
        return json.dumps(doc, separators=(",", ":"))

    # internals

    def _apply_config(self, config: APIConfig) -> None:
        self.base_url = config.base_url
        self.api_key = config.api_key
        self.use_https = config.use_https
        self.verify_certificate = config.verify_certificate

    def _setup_session(self) -> None:
        self._cleanup_session()
        self._session = self._given_session if self._given_session is not None else requests.Session()

    def _cleanup_session(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = "Bearer " + self.api_key
        return headers

    def _send(self, method: str, url: str, payload: Optional[str]) -> tuple[int, str]:
        assert self._session is not None
        try:
            response = self._session.request(
                method,
                url,
                data=payload.encode("utf-8") if payload is not None else None,
                headers=self._headers(),
                timeout=self.REQUEST_TIMEOUT,
                allow_redirects=True,
                verify=self.verify_certificate if self.use_https else True,
            )
        except requests.RequestException as exc:
            log.warning("request to %s failed: %s", url, exc)
            return -1, ""
        return response.status_code, response.text

    def _post(self, endpoint: str, payload: str) -> bool:
        if self._session is None:
            return False
        url = self.base_url + endpoint
        log.debug("POST %s payload=%s", url, payload)
        status, text = self._send("POST", url, payload)
        self._last_status = status
        success = status in (200, 201)
        if success:
            log.info("API request successful: %s", endpoint)
        else:
            log.warning("API request failed (HTTP %d)", status)
            if text:
                log.debug("response: %s", text)
        return success

    def _retry_delay(self) -> int:
        delay = self.RETRY_DELAY * (1 << min(self._retry_count, 4))
        return min(delay, self.MAX_RETRY_DELAY)