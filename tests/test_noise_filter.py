import math

import pytest

from wellmon.noise_filter import NoiseFilter


def test_empty_filter_reports_zeroes():
    f = NoiseFilter(10)
    assert f.sample_count() == 0
    assert f.average() == 0.0
    assert f.minimum() == 0.0
    assert f.maximum() == 0.0
    assert f.rms() == 0.0
    assert f.filtered() == 0.0


def test_invalid_size_rejected():
    with pytest.raises(ValueError):
        NoiseFilter(0)


def test_constant_samples_statistics():
    f = NoiseFilter(10)
    for _ in range(6):
        f.add_sample(4.0)
    assert f.sample_count() == 6
    assert f.average() == pytest.approx(4.0)
    assert f.minimum() == 4.0
    assert f.maximum() == 4.0
    assert f.rms() == pytest.approx(4.0)
    assert f.filtered() == pytest.approx(4.0)


def test_statistics_ordering_invariant():
    f = NoiseFilter(10, outlier_threshold=20.0)
    for value in (3.0, 5.0, 4.0, 6.0, 5.5, 4.5):
        f.add_sample(value)
    assert f.minimum() == 3.0
    assert f.maximum() == 6.0
    assert f.minimum() <= f.average() <= f.maximum()
    assert f.rms() >= f.average()


def test_nan_and_inf_ignored():
    f = NoiseFilter(5)
    f.add_sample(float("nan"))
    f.add_sample(float("inf"))
    f.add_sample(-float("inf"))
    assert f.sample_count() == 0
    f.add_sample(1.0)
    assert f.sample_count() == 1


def test_first_four_samples_skip_outlier_check():
    f = NoiseFilter(10, outlier_threshold=2.0)
    for value in (1.0, 1.0, 1.0, 100.0):
        f.add_sample(value)
    assert f.sample_count() == 4
    assert f.maximum() == 100.0


def test_outlier_rejected_after_warmup():
    f = NoiseFilter(10, outlier_threshold=2.0)
    for _ in range(4):
        f.add_sample(10.0)
    f.add_sample(100.0)
    assert f.sample_count() == 4
    assert f.maximum() == 10.0
    f.add_sample(25.0)
    assert f.sample_count() == 5
    assert f.maximum() == 25.0


def test_minimum_outlier_band_for_negative_average():
    f = NoiseFilter(10, outlier_threshold=2.0)
    for _ in range(4):
        f.add_sample(-5.0)
    f.add_sample(-5.05)
    assert f.sample_count() == 5
    f.add_sample(-6.0)
    assert f.sample_count() == 5
    assert f.minimum() == -5.05


def test_window_is_capped_and_drops_oldest():
    f = NoiseFilter(3, outlier_threshold=100.0)
    for value in (1.0, 2.0, 3.0, 4.0, 5.0):
        f.add_sample(value)
    assert f.sample_count() == 3
    assert f.minimum() == 3.0
    assert f.maximum() == 5.0


def test_is_ready_at_half_window():
    f = NoiseFilter(4)
    f.add_sample(1.0)
    assert not f.is_ready()
    f.add_sample(1.0)
    assert f.is_ready()


def test_reset_clears_everything():
    f = NoiseFilter(5)
    for _ in range(5):
        f.add_sample(2.0)
    f.reset()
    assert f.sample_count() == 0
    assert f.average() == 0.0
    assert f.filtered() == 0.0
    assert not f.is_ready()


def test_smoothing_factor_one_tracks_average():
    f = NoiseFilter(10, outlier_threshold=50.0)
    f.set_smoothing_factor(5.0)
    for value in (1.0, 3.0, 8.0, 2.0, 6.0):
        f.add_sample(value)
        assert f.filtered() == pytest.approx(f.average())


def test_small_smoothing_lags_average():
    f = NoiseFilter(10, outlier_threshold=50.0)
    f.set_smoothing_factor(0.0)
    f.add_sample(1.0)
    assert f.filtered() == pytest.approx(1.0)
    f.add_sample(9.0)
    assert 1.0 < f.filtered() < f.average()


def test_outlier_threshold_can_be_changed():
    f = NoiseFilter(10, outlier_threshold=2.0)
    for _ in range(4):
        f.add_sample(10.0)
    f.set_outlier_threshold(0.01)
    f.add_sample(11.0)
    assert f.sample_count() == 4
    f.set_outlier_threshold(1.0)
    f.add_sample(11.0)
    assert f.sample_count() == 5


def test_rms_of_symmetric_values():
    f = NoiseFilter(4, outlier_threshold=100.0)
    f.add_sample(-3.0)
    f.add_sample(3.0)
    assert f.average() == pytest.approx(0.0)
    assert f.rms() == pytest.approx(3.0)
    assert not math.isnan(f.rms())