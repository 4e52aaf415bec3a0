"""
Compose anatomical sub-region masks of the femoral and tibial cartilage from
the plane masks stored by the ROI segmentation.

Plane masks are boolean tensors with shape ``(n_pixels, 4, 2, n_slices)``:

    axis 0 - pixels of a slice image (column-major flattened)
    axis 1 - plane number
    axis 2 - side of the plane
    axis 3 - analysed slices

Femur planes:
    0 - lateral / medial
    1 - central / posterior
    2 - lateral trochlea / lateral central
    3 - medial trochlea / medial central

Tibia planes:
    0 - lateral anterior / lateral central
    1 - lateral central / lateral posterior
    2 - medial anterior / medial central
    3 - medial central / medial posterior
"""

import itertools

import numpy as np

from pyptoa.results.indexing import Bone, Compartment, SubRegion

N_PLANES = 4
N_SIDES = 2
N_LAYERS = 2

# Femur trochlea plane used by each compartment.
FEMUR_TROCHLEA_PLANE = {Compartment.LATERAL: 2, Compartment.MEDIAL: 3}

# Tibia (anterior/central, central/posterior) planes used by each compartment.
TIBIA_PLANES = {Compartment.LATERAL: (0, 1), Compartment.MEDIAL: (2, 3)}


def _as_plane_tensor(plane_masks, bone_name):
    """
    Validate a plane mask tensor and return it as a 4D boolean array.

    A 3D tensor ``(n_pixels, 4, 2)`` is treated as a single slice.
    """
    plane_masks = np.asarray(plane_masks)
    if plane_masks.ndim == 3:
        plane_masks = plane_masks[..., np.newaxis]
    if plane_masks.ndim != 4:
        raise ValueError(
            f"{bone_name} plane masks must have shape (n_pixels, {N_PLANES}, {N_SIDES}, n_slices), "
            f"got {plane_masks.ndim} dimensions with shape {plane_masks.shape}."
        )
    if plane_masks.shape[1] != N_PLANES:
        raise ValueError(
            f"{bone_name} plane masks must have {N_PLANES} planes on axis 1, "
            f"got {plane_masks.shape[1]}."
        )
    if plane_masks.shape[2] != N_SIDES:
        raise ValueError(
            f"{bone_name} plane masks must have {N_SIDES} sides on axis 2, "
            f"got {plane_masks.shape[2]}."
        )
    return plane_masks.astype(bool)


def compose_femur_masks(plane_masks):
    """
    Build the trochlea, central and posterior masks of both femoral compartments.

    Parameters
    ----------
    plane_masks : np.ndarray
        Boolean femur plane masks with shape ``(n_pixels, 4, 2, n_slices)``.

    Returns
    -------
    dict
        ``{Compartment: {SubRegion: np.ndarray}}`` where every mask has shape
        ``(n_pixels, n_slices)``. `SubRegion.ANTERIOR` is the trochlea.

    Notes
    -----
    For a compartment `c` (side of plane 0) with trochlea plane `t`:

        trochlea  = plane0[c] & plane_t[0]
        central   = plane0[c] & plane1[0] & plane_t[1]
        posterior = plane0[c] & plane1[1]
    """
    planes = _as_plane_tensor(plane_masks, "Femur")

    masks = {}
    for compartment in Compartment:
        side = planes[:, 0, int(compartment), :]
        trochlea_plane = FEMUR_TROCHLEA_PLANE[compartment]
        masks[compartment] = {
            SubRegion.ANTERIOR: side & planes[:, trochlea_plane, 0, :],
            SubRegion.CENTRAL: side & planes[:, 1, 0, :] & planes[:, trochlea_plane, 1, :],
            SubRegion.POSTERIOR: side & planes[:, 1, 1, :],
        }
    return masks


def compose_tibia_masks(plane_masks):
    """
    Build the anterior, central and posterior masks of both tibial compartments.

    Parameters
    ----------
    plane_masks : np.ndarray
        Boolean tibia plane masks with shape ``(n_pixels, 4, 2, n_slices)``.

    Returns
    -------
    dict
        ``{Compartment: {SubRegion: np.ndarray}}`` where every mask has shape
        ``(n_pixels, n_slices)``.

    Notes
    -----
    The tibial planes already carry the compartment, so anterior and posterior
    are single plane sides:

        anterior  = planeA[0]
        central   = planeA[1] & planeB[0]
        posterior = planeB[1]
    """
    planes = _as_plane_tensor(plane_masks, "Tibia")

    masks = {}
    for compartment in Compartment:
        plane_a, plane_b = TIBIA_PLANES[compartment]
        masks[compartment] = {
            SubRegion.ANTERIOR: planes[:, plane_a, 0, :].copy(),
            SubRegion.CENTRAL: planes[:, plane_a, 1, :] & planes[:, plane_b, 0, :],
            SubRegion.POSTERIOR: planes[:, plane_b, 1, :].copy(),
        }
    return masks


def compose_roi_masks(femur_planes, tibia_planes, femur_layers=None, tibia_layers=None):
    """
    Compose the sub-region masks of both bones.

    Parameters
    ----------
    femur_planes, tibia_planes : np.ndarray
        Plane masks of each bone, see `compose_femur_masks`.
    femur_layers, tibia_layers : np.ndarray, optional
        Whole cartilage (layer) masks of each bone with shape
        ``(n_pixels, 2, n_slices)``. If given, pixel and slice counts are
        checked against the plane masks.

    Returns
    -------
    dict
        ``{Bone: {Compartment: {SubRegion: np.ndarray}}}``.

    Raises
    ------
    ValueError
        If any of the tensors are malformed or their shapes disagree.
    """
    femur_planes = _as_plane_tensor(femur_planes, "Femur")
    tibia_planes = _as_plane_tensor(tibia_planes, "Tibia")
    if femur_planes.shape[0] != tibia_planes.shape[0]:
        raise ValueError(
            f"Femur and tibia plane masks cover a different number of pixels "
            f"({femur_planes.shape[0]} vs {tibia_planes.shape[0]})."
        )
    if femur_planes.shape[3] != tibia_planes.shape[3]:
        raise ValueError(
            f"Femur and tibia plane masks cover a different number of slices "
            f"({femur_planes.shape[3]} vs {tibia_planes.shape[3]})."
        )

    for bone_name, planes, layers in (
        ("Femur", femur_planes, femur_layers),
        ("Tibia", tibia_planes, tibia_layers),
    ):
        if layers is None:
            continue
        check_layer_masks(
            layers, n_pixels=planes.shape[0], n_slices=planes.shape[3], bone_name=bone_name
        )

    return {
        Bone.FEMUR: compose_femur_masks(femur_planes),
        Bone.TIBIA: compose_tibia_masks(tibia_planes),
    }


def check_layer_masks(layer_masks, n_pixels, n_slices, bone_name="Bone"):
    """
    Validate a whole cartilage (layer) mask and return it as a boolean array.

    Parameters
    ----------
    layer_masks : np.ndarray
        Layer masks with shape ``(n_pixels, 2, n_slices)``. Layer slot 0 is
        the superficial layer and slot 1 the deep layer.
    n_pixels : int
        Expected number of pixels.
    n_slices : int
        Expected number of slices.
    bone_name : str, optional
        Used in error messages.

    Returns
    -------
    np.ndarray
        The layer masks as booleans.
    """
    layer_masks = np.asarray(layer_masks)
    if layer_masks.ndim == 2:
        layer_masks = layer_masks[..., np.newaxis]
    expected = (n_pixels, N_LAYERS, n_slices)
    if layer_masks.shape != expected:
        raise ValueError(
            f"{bone_name} layer masks have shape {layer_masks.shape}, expected {expected}."
        )
    return layer_masks.astype(bool)


def check_masks_disjoint(compartment_masks):
    """
    Find overlapping sub-regions of one compartment.

    Parameters
    ----------
    compartment_masks : dict
        ``{SubRegion: np.ndarray}`` for one bone compartment.

    Returns
    -------
    list
        ``(SubRegion, SubRegion, n_overlapping_pixels)`` for every pair of
        sub-regions that share pixels. Empty if the masks are disjoint.
    """
    overlaps = []
    for region_a, region_b in itertools.combinations(sorted(compartment_masks), 2):
        n_overlap = int(np.sum(compartment_masks[region_a] & compartment_masks[region_b]))
        if n_overlap > 0:
            overlaps.append((region_a, region_b, n_overlap))
    return overlaps
