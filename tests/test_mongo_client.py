import json

import pytest
import requests
import responses

from wellmon.collector import AggregatedData
from wellmon.events import Event, EventType
from wellmon.mongo_client import WellPumpMongoClient

BASE = "http://localhost/data/v1"
FIND = BASE + "/action/findOne"
INSERT = BASE + "/action/insertOne"


class Clock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mock:
        yield mock


@pytest.fixture
def clock():
    return Clock()


def make_client(clock, key="placeholder", device="pump-1"):
    return WellPumpMongoClient(
        BASE, key, "Cluster0", "wells", device, "barn",
        session=requests.Session(), clock=clock,
    )


def sample(temp_min=40.5, end=1_700_000_060):
    return AggregatedData(
        temp_min=temp_min, temp_max=45.0, temp_avg=42.0,
        current1_rms=3.5, duty_cycle1=100.0,
        start_time=end - 60, end_time=end, sample_count=30,
    )


def test_status_before_begin(clock):
    client = make_client(clock)
    assert client.connection_status() == "Not initialized"
    assert client.last_error() == "No HTTP client"


def test_begin_rejects_missing_key(rsps, clock):
    client = make_client(clock, key="")
    assert client.begin() is False
    assert client.is_initialized is False
    assert len(rsps.calls) == 0


def test_begin_queries_find_one(rsps, clock):
    rsps.add(responses.POST, FIND, status=200, json={"document": None})
    client = make_client(clock)
    assert client.begin() is True
    assert client.is_connected
    request = rsps.calls[0].request
    assert request.headers["Authorization"] == "Bearer placeholder"
    body = json.loads(request.body)
    assert body == {
        "dataSource": "Cluster0",
        "database": "wells",
        "collection": "sensor_data",
        "filter": {},
        "limit": 1,
    }
    assert client.connection_status() == "Connected"


def test_begin_failure_reports_disconnected(rsps, clock):
    rsps.add(responses.POST, FIND, status=500)
    client = make_client(clock)
    assert client.begin() is False
    assert client.connection_status() == "Disconnected (retry 0/3)"


def test_connection_test_is_throttled(rsps, clock):
    rsps.add(responses.POST, FIND, status=200)
    client = make_client(clock)
    client.begin()
    clock.now += 1000
    assert client.test_connection() is True
    assert len(rsps.calls) == 1


def test_write_buffers_when_not_initialized(clock):
    client = make_client(clock)
    assert client.write_aggregated_data(sample()) is False
    assert client.buffered_count == 1


def test_buffer_is_capped(clock):
    client = make_client(clock)
    for _ in range(WellPumpMongoClient.BUFFER_SIZE + 2):
        client.write_aggregated_data(sample())
    assert client.buffered_count == WellPumpMongoClient.BUFFER_SIZE


def test_write_inserts_nested_document(rsps, clock):
    rsps.add(responses.POST, FIND, status=200)
    rsps.add(responses.POST, INSERT, status=201)
    client = make_client(clock)
    client.begin()
    assert client.write_aggregated_data(sample(temp_min=40.5)) is True
    body = json.loads(rsps.calls[1].request.body)
    assert body["collection"] == "sensor_data"
    assert body["database"] == "wells"
    assert body["document"]["temperature"]["min"] == 40.5
    assert body["document"]["current1"]["rms"] == 3.5
    assert client.buffered_count == 0


def test_failed_write_is_buffered(rsps, clock):
    rsps.add(responses.POST, FIND, status=200)
    rsps.add(responses.POST, INSERT, status=400, body="bad")
    client = make_client(clock)
    client.begin()
    assert client.write_aggregated_data(sample()) is False
    assert client.buffered_count == 1
    assert client.connection_status() == "Connected (buffer: 1)"


def test_write_event_requires_connection(rsps, clock):
    rsps.add(responses.POST, FIND, status=500)
    client = make_client(clock)
    client.begin()
    assert client.write_event(Event(type=EventType.LOW_PRESSURE)) is False
    assert len(rsps.calls) == 1


def test_write_event_goes_to_events_collection(rsps, clock):
    rsps.add(responses.POST, FIND, status=200)
    rsps.add(responses.POST, INSERT, status=200)
    client = make_client(clock)
    client.begin()
    event = Event(type=EventType.HIGH_CURRENT, value=8.0, threshold=7.2,
                  start_time=1_700_000_000, active=True, description="High current")
    assert client.write_event(event) is True
    body = json.loads(rsps.calls[1].request.body)
    assert body["collection"] == "events"
    assert body["document"]["type"] == 1
    assert body["document"]["startTime"] == "1700000000"


def test_sensor_document_timestamps_are_strings(clock):
    client = make_client(clock)
    doc = client.create_sensor_document(sample(end=1_700_000_060))
    assert doc["timestamp"] == "1700000060"
    assert doc["endTime"] == "1700000060"
    assert doc["startTime"] == str(1_700_000_060 - 60)
    assert doc["device"] == "pump-1"
    assert set(doc["current2"]) == {"min", "max", "avg", "rms", "dutyCycle"}
    assert set(doc["pressure"]) == {"min", "max", "avg"}


def test_event_document_fields(clock):
    client = make_client(clock)
    event = Event(type=EventType.SENSOR_ERROR, duration=1500, active=False, description="x")
    doc = client.create_event_document(event)
    assert doc["type"] == int(EventType.SENSOR_ERROR)
    assert doc["active"] is False
    assert doc["duration"] == 1500
    assert doc["location"] == "barn"


def test_update_reconnects_and_flushes(rsps, clock):
    rsps.add(responses.POST, FIND, status=500)
    client = make_client(clock)
    client.begin()
    client.write_aggregated_data(sample())
    client.write_aggregated_data(sample())
    rsps.replace(responses.POST, FIND, status=200)
    rsps.add(responses.POST, INSERT, status=201)
    clock.now += WellPumpMongoClient.CONNECTION_TEST_INTERVAL + 1
    client.update()
    assert client.is_connected
    assert client.buffered_count == 0
    inserts = [c for c in rsps.calls if c.request.url == INSERT]
    assert len(inserts) == 2


def test_retries_exhaust(rsps, clock):
    rsps.add(responses.POST, FIND, status=500)
    client = make_client(clock)
    client.begin()
    for _ in range(WellPumpMongoClient.MAX_RETRIES + 1):
        clock.now += 400_000
        client.update()
    assert client.retry_count == WellPumpMongoClient.MAX_RETRIES + 1
    assert client.connection_status() == "Failed (max retries exceeded)"


def test_set_credentials_requires_restart(rsps, clock):
    rsps.add(responses.POST, FIND, status=200)
    client = make_client(clock)
    client.begin()
    client.set_credentials(BASE, "token", "Cluster1", "other")
    assert client.is_initialized is False
    assert client.is_connected is False
    assert client.connection_status() == "Not initialized"
    assert client.database == "other"


def test_flush_when_disconnected_keeps_buffer(clock):
    client = make_client(clock)
    client.write_aggregated_data(sample())
    assert client.flush_buffer() is True
    assert client.buffered_count == 1