import numpy as np
import pytest
from numpy.testing import assert_allclose

from pyptoa.image.slice_analysis import FitUnitResult
from pyptoa.results.indexing import Bone, Compartment, Layer, Modality, SubRegion
from pyptoa.statistics import (
    DEFAULT_VALID_RANGES,
    RoiStatistics,
    ValidRange,
    coefficient_of_variation,
    filter_valid,
    summarize_units,
    summarize_valid,
)


def test_default_ranges():
    assert DEFAULT_VALID_RANGES[Modality.T1RHO] == ValidRange(0.0, 100.0)
    assert DEFAULT_VALID_RANGES[Modality.T2STAR] == ValidRange(0.0, 100.0)


def test_invalid_range_raises():
    with pytest.raises(ValueError, match="minimum"):
        ValidRange(10.0, 5.0)


def test_filter_valid_is_closed_interval_and_drops_nan():
    values = np.array([-0.1, 0.0, 12.5, np.nan, 100.0, 100.1, np.inf])
    np.testing.assert_array_equal(filter_valid(values, ValidRange(0.0, 100.0)), [0.0, 12.5, 100.0])


def test_summarize_valid_statistics():
    values = np.array([20.0, 30.0, 40.0, 250.0, -5.0])

    stats = summarize_valid(values, ValidRange(0.0, 100.0))

    assert stats.n_valid == 3
    assert_allclose(stats.mean, 30.0)
    assert stats.min == 20.0
    assert stats.max == 40.0
    # sample standard deviation
    assert_allclose(stats.sd, 10.0)
    assert_allclose(stats.cov, 100.0 * 10.0 / 30.0)


def test_all_values_outside_range_gives_zeros():
    stats = summarize_valid([150.0, -3.0, np.nan], ValidRange(0.0, 100.0))

    assert stats == RoiStatistics(n_valid=0, mean=0.0, min=0.0, max=0.0, sd=0.0, cov=0.0)
    assert not any(np.isnan(value) for value in vars(stats).values())


def test_empty_unit_gives_zeros():
    assert summarize_valid(np.zeros(0)) == RoiStatistics()


def test_single_valid_pixel_has_zero_spread():
    stats = summarize_valid([42.0, 180.0])

    assert stats.n_valid == 1
    assert stats.mean == 42.0
    assert stats.min == stats.max == 42.0
    assert stats.sd == 0.0
    assert stats.cov == 0.0


def test_zero_mean_cov_is_zero():
    # all valid values zero
    stats = summarize_valid([0.0, 0.0, 0.0])
    assert stats.n_valid == 3
    assert stats.sd == 0.0
    assert stats.cov == 0.0

    # symmetric values around zero, mean 0 but sd > 0
    stats = summarize_valid([-1.0, 1.0], ValidRange(-10.0, 10.0))
    assert stats.mean == 0.0
    assert stats.sd > 0
    assert stats.cov == 0.0


def test_coefficient_of_variation_arrays():
    cov = coefficient_of_variation(np.array([1.0, 2.0, 3.0]), np.array([10.0, 0.0, 30.0]))
    assert_allclose(cov, [10.0, 0.0, 10.0])


def test_summarize_is_idempotent():
    rng = np.random.default_rng(7)
    values = rng.normal(50.0, 20.0, size=200)
    values_copy = values.copy()

    first = summarize_valid(values)
    second = summarize_valid(values)

    assert first == second
    np.testing.assert_array_equal(values, values_copy)


def test_summarize_units_keeps_order():
    units = [
        FitUnitResult(
            Bone.FEMUR,
            Compartment.LATERAL,
            SubRegion.ANTERIOR,
            layer,
            pixel_time_constants=np.array(values),
        )
        for layer, values in ((Layer.DEEP, [10.0, 20.0]), (Layer.SUPERFICIAL, [500.0]))
    ]

    stats = summarize_units(units, ValidRange(0.0, 100.0))

    assert [s.n_valid for s in stats] == [2, 0]
    assert_allclose(stats[0].mean, 15.0)
