import numpy as np
import pytest

from pyptoa.image.roi_masks import (
    check_layer_masks,
    check_masks_disjoint,
    compose_femur_masks,
    compose_roi_masks,
    compose_tibia_masks,
)
from pyptoa.results.indexing import Bone, Compartment, SubRegion
from pyptoa.utils.testing import femur_plane_masks, tibia_plane_masks

ROWS, COLS = 4, 6
N_PIXELS = ROWS * COLS
# column of every pixel, column-major flattening
PIXEL_COLS = np.arange(N_PIXELS) // ROWS


def thirds():
    """Anterior, central and posterior pixels as equal groups of columns."""
    return PIXEL_COLS < 2, (PIXEL_COLS >= 2) & (PIXEL_COLS < 4), PIXEL_COLS >= 4


def test_femur_equal_thirds_partition_the_plane():
    anterior, central, posterior = thirds()
    everything = np.ones(N_PIXELS, dtype=bool)
    planes = femur_plane_masks(everything, anterior, posterior)

    masks = compose_femur_masks(planes)
    lateral = masks[Compartment.LATERAL]

    assert lateral[SubRegion.ANTERIOR].shape == (N_PIXELS, 1)
    np.testing.assert_array_equal(lateral[SubRegion.ANTERIOR][:, 0], anterior)
    np.testing.assert_array_equal(lateral[SubRegion.CENTRAL][:, 0], central)
    np.testing.assert_array_equal(lateral[SubRegion.POSTERIOR][:, 0], posterior)
    for region in SubRegion:
        assert lateral[region].sum() == N_PIXELS // 3

    union = lateral[SubRegion.ANTERIOR] | lateral[SubRegion.CENTRAL] | lateral[SubRegion.POSTERIOR]
    assert np.all(union)
    assert check_masks_disjoint(lateral) == []

    # everything is lateral, so nothing is medial
    for region in SubRegion:
        assert not np.any(masks[Compartment.MEDIAL][region])


def test_femur_uses_compartment_specific_trochlea_plane():
    anterior, _, posterior = thirds()
    lateral = PIXEL_COLS % 2 == 0
    planes = femur_plane_masks(lateral, anterior, posterior)
    # move the medial trochlea plane so medial trochlea is empty
    planes[:, 3, 0, :] = False
    planes[:, 3, 1, :] = True

    masks = compose_femur_masks(planes)

    np.testing.assert_array_equal(
        masks[Compartment.LATERAL][SubRegion.ANTERIOR][:, 0], lateral & anterior
    )
    assert not np.any(masks[Compartment.MEDIAL][SubRegion.ANTERIOR])
    np.testing.assert_array_equal(
        masks[Compartment.MEDIAL][SubRegion.CENTRAL][:, 0], ~lateral & ~posterior
    )
    np.testing.assert_array_equal(
        masks[Compartment.MEDIAL][SubRegion.POSTERIOR][:, 0], ~lateral & posterior
    )


def test_femur_slot_mapping_matches_anatomy():
    """Each composed mask uses exactly the documented plane slots."""
    rng = np.random.default_rng(0)
    planes = rng.random((N_PIXELS, 4, 2, 3)) > 0.5

    masks = compose_femur_masks(planes)

    lat = masks[Compartment.LATERAL]
    med = masks[Compartment.MEDIAL]
    np.testing.assert_array_equal(lat[SubRegion.ANTERIOR], planes[:, 0, 0] & planes[:, 2, 0])
    np.testing.assert_array_equal(
        lat[SubRegion.CENTRAL], planes[:, 0, 0] & planes[:, 1, 0] & planes[:, 2, 1]
    )
    np.testing.assert_array_equal(lat[SubRegion.POSTERIOR], planes[:, 0, 0] & planes[:, 1, 1])
    np.testing.assert_array_equal(med[SubRegion.ANTERIOR], planes[:, 0, 1] & planes[:, 3, 0])
    np.testing.assert_array_equal(
        med[SubRegion.CENTRAL], planes[:, 0, 1] & planes[:, 1, 0] & planes[:, 3, 1]
    )
    np.testing.assert_array_equal(med[SubRegion.POSTERIOR], planes[:, 0, 1] & planes[:, 1, 1])


def test_tibia_slot_mapping_matches_anatomy():
    rng = np.random.default_rng(1)
    planes = rng.random((N_PIXELS, 4, 2, 2)) > 0.5

    masks = compose_tibia_masks(planes)

    lat = masks[Compartment.LATERAL]
    med = masks[Compartment.MEDIAL]
    np.testing.assert_array_equal(lat[SubRegion.ANTERIOR], planes[:, 0, 0])
    np.testing.assert_array_equal(lat[SubRegion.CENTRAL], planes[:, 0, 1] & planes[:, 1, 0])
    np.testing.assert_array_equal(lat[SubRegion.POSTERIOR], planes[:, 1, 1])
    np.testing.assert_array_equal(med[SubRegion.ANTERIOR], planes[:, 2, 0])
    np.testing.assert_array_equal(med[SubRegion.CENTRAL], planes[:, 2, 1] & planes[:, 3, 0])
    np.testing.assert_array_equal(med[SubRegion.POSTERIOR], planes[:, 3, 1])


@pytest.mark.parametrize("compartment", list(Compartment))
def test_composed_masks_partition_both_bones(compartment):
    anterior, _, posterior = thirds()
    lateral = np.arange(N_PIXELS) % ROWS < 2
    n_slices = 3

    masks = compose_roi_masks(
        femur_plane_masks(lateral, anterior, posterior, n_slices=n_slices),
        tibia_plane_masks(lateral, anterior, posterior, n_slices=n_slices),
    )

    side = lateral if compartment is Compartment.LATERAL else ~lateral
    for bone in Bone:
        regions = masks[bone][compartment]
        assert check_masks_disjoint(regions) == []
        assert not np.any(regions[SubRegion.ANTERIOR] & regions[SubRegion.POSTERIOR])
        union = np.logical_or.reduce([regions[sub_region] for sub_region in SubRegion])
        np.testing.assert_array_equal(union, np.repeat(side[:, np.newaxis], n_slices, axis=1))


def test_single_slice_tensor_is_accepted():
    anterior, _, posterior = thirds()
    planes = femur_plane_masks(np.ones(N_PIXELS, dtype=bool), anterior, posterior)[..., 0]
    assert planes.ndim == 3

    masks = compose_femur_masks(planes)
    assert masks[Compartment.LATERAL][SubRegion.CENTRAL].shape == (N_PIXELS, 1)


def test_overlapping_regions_are_reported():
    anterior = PIXEL_COLS < 3
    posterior = PIXEL_COLS >= 2  # column 2 is both trochlea and posterior
    planes = femur_plane_masks(np.ones(N_PIXELS, dtype=bool), anterior, posterior)

    overlaps = check_masks_disjoint(compose_femur_masks(planes)[Compartment.LATERAL])

    assert overlaps == [(SubRegion.ANTERIOR, SubRegion.POSTERIOR, ROWS)]


@pytest.mark.parametrize(
    "shape, match",
    [
        ((N_PIXELS, 4), "dimensions"),
        ((N_PIXELS, 3, 2, 1), "4 planes"),
        ((N_PIXELS, 4, 3, 1), "2 sides"),
    ],
)
def test_malformed_plane_masks_raise(shape, match):
    with pytest.raises(ValueError, match=match):
        compose_femur_masks(np.zeros(shape, dtype=bool))


def test_bone_shape_mismatch_raises():
    femur = np.zeros((N_PIXELS, 4, 2, 3), dtype=bool)
    with pytest.raises(ValueError, match="slices"):
        compose_roi_masks(femur, np.zeros((N_PIXELS, 4, 2, 2), dtype=bool))
    with pytest.raises(ValueError, match="pixels"):
        compose_roi_masks(femur, np.zeros((N_PIXELS + 1, 4, 2, 3), dtype=bool))


def test_layer_mask_shape_is_checked():
    femur = np.zeros((N_PIXELS, 4, 2, 3), dtype=bool)
    with pytest.raises(ValueError, match="Femur layer masks"):
        compose_roi_masks(femur, femur, femur_layers=np.zeros((N_PIXELS, 2, 2), dtype=bool))

    layers = check_layer_masks(np.ones((N_PIXELS, 2)), n_pixels=N_PIXELS, n_slices=1)
    assert layers.shape == (N_PIXELS, 2, 1)
    assert layers.dtype == bool
