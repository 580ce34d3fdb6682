# wellmon

Monitoring for a well pump. The package reads pressure, motor current,
temperature and humidity. It smooths the readings and aggregates them over
sixty-second windows. It raises alerts for abnormal conditions and uploads
the results to a web API or to a MongoDB-style HTTP data API.

## Install

```
pip install wellmon
```

To run the tests:

```
pip install "wellmon[test]"
pytest
```

## Modules

### `wellmon.noise_filter`

`NoiseFilter(size, outlier_threshold=2.0, smoothing=0.1)` keeps the last
`size` accepted samples. It provides these statistics:

- `average()`, `minimum()`, `maximum()` and `rms()`.
- `filtered()`, an exponentially smoothed average.
- `sample_count()`.
- `is_ready()`, which is true once half of the window is filled.

It ignores NaN and infinite samples. After the first three samples, it rejects
any sample that is further from the average than
`outlier_threshold * average`, or 0.1 if that is larger.
`set_smoothing_factor()` clamps its value to the range 0.01–1.0.

### `wellmon.sensors`

`SensorManager(adc, climate, clock)` turns raw readings into calibrated values:

| Reading | Unit | ADC channel | Default calibration | Valid range |
|---|---|---|---|---|
| Pressure | PSI | 2 | 0.5 V offset, 25 PSI/V | 0–150 |
| Current 1 | A | 0 | 2.5 V offset, 30 A/V | −50 to 50 |
| Current 2 | A | 1 | 2.5 V offset, 30 A/V | −50 to 50 |
| Temperature | °F | — | — | −40 to 150 |
| Humidity | % | — | — | 0–100 |

You supply the hardware as two implementations:

- `AnalogReader`, with `begin()` and `read_volts(channel)`.
- `ClimateReader`, with `begin()` and `read()`. `read()` returns `(celsius, humidity)`.

Readings are cached:

- Temperature and humidity for 5 s. These two are refreshed together.
- Pressure for 3 s.
- Current 1 for 1 s.
- Current 2 is never cached.

A failed or out-of-range read raises `SensorError`.

Calibration methods:

- `calibrate_pressure`, `calibrate_current1` and `calibrate_current2` do a two-point calibration against the 6.144 V full scale.
- `calibrate_*_at_value` does a single-point calibration. A known value of 0 sets the offset; any other value sets the scale.
- `set_calibration` sets all offsets and scales at once.

### `wellmon.collector`

`DataCollector(sensor_manager, timestamp_source, clock)` builds `SensorData`
snapshots and `AggregatedData` windows.

- `start()` launches two background threads. One calls `collect_sensor_data()` every 2 s. The other calls `process_queue()` every 2 s and `aggregate()` every 60 s.
- These three steps can also be called directly.
- Invalid temperature and humidity are replaced by 70 °F and 50 %.
- Pressure and currents are used only from snapshots marked valid.
- `aggregated_data()` returns the last window, or `None` if the window holds no samples.
- Duty cycle is judged on the window average against the current threshold, so it is either 0 or 100.
- Window start and end times are set only when `timestamp_source` returns a plausible Unix time.

### `wellmon.events`

`EventDetector(collector, timestamp_source, clock)` checks each snapshot, through `update()` or `process(data)`. It watches for four conditions:

| Condition | Default threshold | Delay before the event | Clears when |
|---|---|---|---|
| High current | 7.2 A | 3 s | below threshold − 1.0 A |
| Low pressure | 5.0 PSI | 10 s | above threshold + 2.0 PSI |
| Low temperature | 38 °F | 10 s | above threshold + 2.0 °F |
| Sensor error | invalid snapshot | none | valid snapshot |

Up to ten active events are kept. When they clear, they move to `resolved_events()` and stay there until `clear_resolved_events()` is called. `status_string()` and `event_summary()` give short text descriptions.

### `wellmon.api_client`

`WellPumpAPIClient(config, device, location, session, clock)` takes an `APIConfig`. It sends JSON to these endpoints:

- `/api/health` for the connection test, at most every 30 s.
- `/api/sensors` for aggregates.
- `/api/events` for events.

Aggregates that cannot be sent are kept in a 20-slot ring buffer. `update()` reconnects with exponential back-off from 5 s up to 80 s and drains the buffer. Events are not buffered.

`format_timestamp()` turns Unix seconds into a millisecond string. For anything that is not a Unix time it returns `"0"`.

### `wellmon.mongo_client`

`WellPumpMongoClient(url, key, data_source, database, device, location, session, clock)` does the same job against an HTTP data API:

- `/action/findOne` for the connection test, at most every 5 minutes.
- `/action/insertOne` into the `sensor_data` and `events` collections.

It keeps a 10-slot buffer and backs off from 30 s up to 300 s between reconnects.

## Example

```python
from wellmon.api_client import APIConfig, WellPumpAPIClient

config = APIConfig(
    base_url="https://pump.example.com",
    api_key="placeholder",
    use_https=True,
    verify_certificate=True,
)
client = WellPumpAPIClient(config, "well-pump", "pump house")
if client.begin():
    print(client.connection_status())
```

## What this package does not do

- It has no drivers for real sensors. You must provide `AnalogReader` and `ClimateReader` implementations for your hardware.
- It has no command-line program or service. Nothing wires the collector, detector and upload clients into a running monitor; your own code has to create them and call `update()` periodically.
- It does not synchronise the clock.
- It does not store readings locally beyond the in-memory upload buffers.