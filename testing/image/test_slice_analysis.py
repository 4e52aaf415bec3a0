import numpy as np
import pytest
from numpy.testing import assert_allclose

from pyptoa import RTOL
from pyptoa.image import slice_analysis
from pyptoa.image.roi_masks import compose_roi_masks
from pyptoa.image.slice_analysis import (
    LAYER_MASK_SLOT,
    FitUnitResult,
    analyze_slices,
    enumerate_units,
    relaxation_map,
    slice_positions,
    slice_signals,
)
from pyptoa.results.indexing import Bone, Compartment, Layer, SubRegion
from pyptoa.utils.testing import (
    assert_units_same,
    femur_plane_masks,
    layer_masks,
    synthetic_decay,
    tibia_plane_masks,
)

ROWS, COLS, N_IMAGE_SLICES = 4, 6, 4
N_PIXELS = ROWS * COLS
TIMES = np.array([0.0, 5.0, 10.0, 20.0, 40.0, 80.0])
PIXEL_ROWS = np.arange(N_PIXELS) % ROWS
PIXEL_COLS = np.arange(N_PIXELS) // ROWS
ANTERIOR = PIXEL_COLS < 2
POSTERIOR = PIXEL_COLS >= 4
SUPERFICIAL = PIXEL_ROWS < 2
# time constant of each column group (anterior, central, posterior)
REGION_TAUS = np.array([30.0, 45.0, 60.0])

SLICES = np.array([1, 2, 3])
BONE_SLICES = {Bone.FEMUR: np.array([1, 2]), Bone.TIBIA: np.array([2, 3])}


def make_volume():
    """Noiseless volume whose time constant only depends on the column group."""
    pixel_taus = REGION_TAUS[np.searchsorted([2, 4], PIXEL_COLS, side="right")]
    signals = synthetic_decay(TIMES, pixel_taus, amplitude=1000.0)  # (n_pixels, n_times)
    data = np.zeros((ROWS, COLS, N_IMAGE_SLICES, len(TIMES)))
    for slice_index in range(N_IMAGE_SLICES):
        data[:, :, slice_index, :] = signals.reshape(ROWS, COLS, len(TIMES), order="F")
    return data


def make_masks(lateral=None):
    if lateral is None:
        lateral = np.ones(N_PIXELS, dtype=bool)
    n_slices = len(SLICES)
    roi = compose_roi_masks(
        femur_plane_masks(lateral, ANTERIOR, POSTERIOR, n_slices=n_slices),
        tibia_plane_masks(lateral, ANTERIOR, POSTERIOR, n_slices=n_slices),
    )
    layers = {bone: layer_masks(SUPERFICIAL, n_slices=n_slices) for bone in Bone}
    return layers, roi


def test_enumerate_units_order():
    units = enumerate_units()

    assert len(units) == 24
    assert units[0] == (Bone.FEMUR, Compartment.LATERAL, SubRegion.ANTERIOR, Layer.DEEP)
    assert units[1] == (Bone.FEMUR, Compartment.LATERAL, SubRegion.ANTERIOR, Layer.SUPERFICIAL)
    assert units[2] == (Bone.FEMUR, Compartment.LATERAL, SubRegion.CENTRAL, Layer.DEEP)
    assert units[6] == (Bone.FEMUR, Compartment.MEDIAL, SubRegion.ANTERIOR, Layer.DEEP)
    assert units[12] == (Bone.TIBIA, Compartment.LATERAL, SubRegion.ANTERIOR, Layer.DEEP)
    assert units[-1] == (Bone.TIBIA, Compartment.MEDIAL, SubRegion.POSTERIOR, Layer.SUPERFICIAL)
    # bone-major, then compartment, sub-region and layer
    assert units == sorted(units)


def test_layer_mask_slots():
    assert LAYER_MASK_SLOT[Layer.SUPERFICIAL] == 0
    assert LAYER_MASK_SLOT[Layer.DEEP] == 1


def test_slice_signals_are_column_major():
    data = make_volume()
    data[1, 2, 0, :] = -1.0

    signals = slice_signals(data, 1)

    assert signals.shape == (N_PIXELS, len(TIMES))
    np.testing.assert_array_equal(signals[1 + ROWS * 2], -1.0)


def test_slice_positions():
    assert slice_positions([3, 5, 7, 9], [5, 9]) == [1, 3]
    with pytest.raises(ValueError, match="Slice 4"):
        slice_positions([3, 5, 7], [4])


def test_analyze_slices_recovers_region_time_constants():
    data = make_volume()
    layers, roi = make_masks()

    # the medial compartments are empty
    with pytest.warns(UserWarning, match="No pixels"):
        units = analyze_slices(data, TIMES, layers, roi, SLICES, BONE_SLICES, t0=65.0)

    assert [unit.sub_index for unit in units] == enumerate_units()
    for unit in units:
        if unit.compartment is Compartment.MEDIAL:
            assert unit.n_pixels == 0
            assert unit.time_constant == 0.0
            assert unit.rss == 0.0
            assert len(unit.pixel_time_constants) == 0
            continue
        expected_tau = REGION_TAUS[int(unit.sub_region)]
        # 2 columns x 2 rows per slice, 2 slices per bone
        assert unit.n_pixels == 8
        assert_allclose(unit.time_constant, expected_tau, rtol=RTOL)
        assert unit.rss < 1e-6
        assert_allclose(unit.pixel_time_constants, expected_tau, rtol=RTOL)
        assert len(unit.pixel_rss) == unit.n_pixels
        np.testing.assert_array_equal(unit.pixel_n_samples, len(TIMES))
        np.testing.assert_array_equal(np.unique(unit.pixel_slices), BONE_SLICES[unit.bone])


def test_analyze_slices_layers_select_rows():
    data = make_volume()
    layers, roi = make_masks()

    with pytest.warns(UserWarning):
        units = analyze_slices(data, TIMES, layers, roi, SLICES, BONE_SLICES)

    by_index = {unit.sub_index: unit for unit in units}
    deep = by_index[(Bone.FEMUR, Compartment.LATERAL, SubRegion.CENTRAL, Layer.DEEP)]
    superficial = by_index[(Bone.FEMUR, Compartment.LATERAL, SubRegion.CENTRAL, Layer.SUPERFICIAL)]
    assert np.all(PIXEL_ROWS[deep.pixel_indices] >= 2)
    assert np.all(PIXEL_ROWS[superficial.pixel_indices] < 2)
    assert np.all(np.isin(PIXEL_COLS[deep.pixel_indices], [2, 3]))


def test_analyze_slices_empty_unit_does_not_raise():
    data = make_volume()
    layers, roi = make_masks()
    for bone in Bone:
        layers[bone][:] = False

    with pytest.warns(UserWarning, match="No pixels"):
        units = analyze_slices(data, TIMES, layers, roi, SLICES, BONE_SLICES)

    assert len(units) == 24
    assert all(unit.n_pixels == 0 for unit in units)
    assert all(isinstance(unit, FitUnitResult) for unit in units)


def test_analyze_slices_shape_checks():
    data = make_volume()
    layers, roi = make_masks()

    with pytest.raises(ValueError, match="4D"):
        analyze_slices(data[..., 0], TIMES, layers, roi, SLICES, BONE_SLICES)
    with pytest.raises(ValueError, match="Number of times"):
        analyze_slices(data, TIMES[:-1], layers, roi, SLICES, BONE_SLICES)
    with pytest.raises(ValueError, match="outside"):
        analyze_slices(data, TIMES, layers, roi, np.array([1, 2, 9]), BONE_SLICES)

    bad_layers = dict(layers)
    bad_layers[Bone.TIBIA] = layers[Bone.TIBIA][:, :, :2]
    with pytest.raises(ValueError, match="Tibia layer masks"):
        analyze_slices(data, TIMES, bad_layers, roi, SLICES, BONE_SLICES)


def test_relaxation_map_places_pixel_values():
    data = make_volume()
    layers, roi = make_masks()
    with pytest.warns(UserWarning):
        units = analyze_slices(data, TIMES, layers, roi, SLICES, BONE_SLICES)

    tau_map = relaxation_map(units, (ROWS, COLS), N_IMAGE_SLICES)

    assert tau_map.shape == (ROWS, COLS, N_IMAGE_SLICES)
    # slice 4 is not analysed
    assert np.all(np.isnan(tau_map[:, :, 3]))
    assert_allclose(tau_map[:, 0, 0], REGION_TAUS[0], rtol=RTOL)
    assert_allclose(tau_map[:, 5, 2], REGION_TAUS[2], rtol=RTOL)


def test_analyze_slices_is_repeatable():
    data = make_volume()
    layers, roi = make_masks()

    with pytest.warns(UserWarning):
        first = analyze_slices(data, TIMES, layers, roi, SLICES, BONE_SLICES)
    with pytest.warns(UserWarning):
        second = analyze_slices(data.copy(), TIMES, layers, roi, SLICES, BONE_SLICES)

    for unit1, unit2 in zip(first, second):
        assert_units_same(unit1, unit2)


def test_analyze_slices_reads_each_bone_slice_once(monkeypatch):
    data = make_volume()
    layers, roi = make_masks()
    calls = []

    def counting_slice_signals(data_4d, slice_number):
        calls.append(slice_number)
        return slice_signals(data_4d, slice_number)

    monkeypatch.setattr(slice_analysis, "slice_signals", counting_slice_signals)
    with pytest.warns(UserWarning):
        units = analyze_slices(data, TIMES, layers, roi, SLICES, BONE_SLICES)

    # femur slices 1, 2 and tibia slices 2, 3, not once per unit
    assert sorted(calls) == [1, 2, 2, 3]
    assert len(units) == 24
