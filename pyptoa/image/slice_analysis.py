"""
Fit the relaxation model to every cartilage sub-region and layer of the
analysed slices of one acquisition.
"""

import warnings
from dataclasses import dataclass, field

import numpy as np

from pyptoa.image.relaxation import InitPolicy, fit_pixels, fit_pooled
from pyptoa.image.roi_masks import check_layer_masks
from pyptoa.results.indexing import Bone, Compartment, Layer, SubRegion

# Slot of each layer in the whole cartilage masks of the ROI files.
LAYER_MASK_SLOT = {Layer.SUPERFICIAL: 0, Layer.DEEP: 1}


@dataclass
class FitUnitResult:
    """
    Fit of one bone / compartment / sub-region / layer of one acquisition.

    `time_constant`, `amplitude` and `rss` describe the fit of all pixel
    samples of the unit together. The ``pixel_*`` arrays hold one entry per
    pixel of the unit, in the same order.
    """

    bone: Bone
    compartment: Compartment
    sub_region: SubRegion
    layer: Layer
    time_constant: float = 0.0
    amplitude: float = 0.0
    rss: float = 0.0
    n_pixels: int = 0
    pixel_time_constants: np.ndarray = field(default_factory=lambda: np.zeros(0))
    pixel_amplitudes: np.ndarray = field(default_factory=lambda: np.zeros(0))
    pixel_rss: np.ndarray = field(default_factory=lambda: np.zeros(0))
    pixel_n_samples: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    pixel_indices: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    pixel_slices: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))

    @property
    def sub_index(self):
        """``(bone, compartment, sub_region, layer)`` used to place the result."""
        return (self.bone, self.compartment, self.sub_region, self.layer)


def slice_signals(data_4d, slice_number):
    """
    Pixel decays of one image slice.

    Parameters
    ----------
    data_4d : np.ndarray
        Image data with shape ``(rows, cols, n_slices, n_times)``.
    slice_number : int
        One based slice number.

    Returns
    -------
    np.ndarray
        Array with shape ``(rows * cols, n_times)``. Pixels are flattened in
        column-major order to match the ROI masks.
    """
    rows, cols, _, n_times = data_4d.shape
    return data_4d[:, :, slice_number - 1, :].reshape(rows * cols, n_times, order="F")


def slice_positions(slices, bone_slices):
    """
    Map slice numbers of a bone to their positions along the mask slice axis.

    Raises
    ------
    ValueError
        If a bone slice is not one of the analysed `slices`.
    """
    slices = np.asarray(slices, dtype=int).ravel()
    positions = []
    for slice_number in np.asarray(bone_slices, dtype=int).ravel():
        match = np.flatnonzero(slices == slice_number)
        if match.size == 0:
            raise ValueError(
                f"Slice {slice_number} is not one of the analysed slices {slices.tolist()}."
            )
        positions.append(int(match[0]))
    return positions


def enumerate_units():
    """Sub-indices of all fit units in traversal order (bone, compartment, sub-region, layer)."""
    return [
        (bone, compartment, sub_region, layer)
        for bone in Bone
        for compartment in Compartment
        for sub_region in SubRegion
        for layer in Layer
    ]


def _check_inputs(data_4d, times, layer_masks, roi_masks, slices):
    data_4d = np.asarray(data_4d)
    if data_4d.ndim != 4:
        raise ValueError(
            f"Image data must be 4D (rows, cols, slices, times), got shape {data_4d.shape}."
        )
    times = np.asarray(times, dtype=float).ravel()
    if len(times) != data_4d.shape[3]:
        raise ValueError(
            f"Number of times ({len(times)}) does not match the image data ({data_4d.shape[3]})."
        )
    n_pixels = data_4d.shape[0] * data_4d.shape[1]
    n_slices = len(np.asarray(slices).ravel())
    if np.max(slices) > data_4d.shape[2] or np.min(slices) < 1:
        raise ValueError(
            f"Analysed slices {np.asarray(slices).ravel().tolist()} are outside the "
            f"{data_4d.shape[2]} image slices."
        )

    checked_layers = {}
    for bone in Bone:
        checked_layers[bone] = check_layer_masks(
            layer_masks[bone], n_pixels=n_pixels, n_slices=n_slices, bone_name=bone.name.title()
        )
        for compartment in Compartment:
            for sub_region in SubRegion:
                mask = roi_masks[bone][compartment][sub_region]
                if mask.shape != (n_pixels, n_slices):
                    raise ValueError(
                        f"{bone.name.title()} {compartment.name.lower()} {sub_region.name.lower()} "
                        f"mask has shape {mask.shape}, expected {(n_pixels, n_slices)}."
                    )
    return data_4d, times, checked_layers


def analyze_slices(
    data_4d,
    times,
    layer_masks,
    roi_masks,
    slices,
    bone_slices,
    init=InitPolicy.FIXED,
    t0=65.0,
    fit_options=None,
    verbose=False,
):
    """
    Fit every cartilage unit of one acquisition.

    Parameters
    ----------
    data_4d : np.ndarray
        Image data with shape ``(rows, cols, n_slices, n_times)``.
    times : np.ndarray
        Spin lock or echo times (ms).
    layer_masks : dict
        ``{Bone: np.ndarray}`` whole cartilage masks with shape
        ``(n_pixels, 2, n_analysed_slices)``.
    roi_masks : dict
        ``{Bone: {Compartment: {SubRegion: np.ndarray}}}`` from
        `pyptoa.image.roi_masks.compose_roi_masks`.
    slices : array-like
        One based numbers of the analysed slices (the mask slice axis).
    bone_slices : dict
        ``{Bone: array-like}`` slice numbers analysed for each bone.
    init : InitPolicy, optional
        Starting parameter policy for the nonlinear fits.
    t0 : float, optional
        Fixed starting time constant (ms).
    fit_options : FitOptions, optional
        Solver tolerances.
    verbose : bool, optional
        Print the result of each unit.

    Returns
    -------
    list
        `FitUnitResult` for every unit in the order of `enumerate_units`.
        Units without pixels have zero fit values and empty pixel arrays.
    """
    data_4d, times, layer_masks = _check_inputs(data_4d, times, layer_masks, roi_masks, slices)
    init = InitPolicy.parse(init)

    # (mask slice position, slice number, pixel decays) of each bone slice
    bone_slice_signals = {}
    for bone in Bone:
        slice_numbers = np.asarray(bone_slices[bone], dtype=int).ravel()
        positions = slice_positions(slices, slice_numbers)
        bone_slice_signals[bone] = [
            (position, int(slice_number), slice_signals(data_4d, int(slice_number)))
            for position, slice_number in zip(positions, slice_numbers)
        ]

    results = []
    for bone, compartment, sub_region, layer in enumerate_units():
        region_mask = roi_masks[bone][compartment][sub_region]
        layer_mask = layer_masks[bone][:, LAYER_MASK_SLOT[layer], :]

        signals = []
        pixel_indices = []
        pixel_slices = []
        for position, slice_number, decays in bone_slice_signals[bone]:
            pixels = np.flatnonzero(region_mask[:, position] & layer_mask[:, position])
            if pixels.size == 0:
                continue
            signals.append(decays[pixels])
            pixel_indices.append(pixels)
            pixel_slices.append(np.full(pixels.size, slice_number, dtype=np.int64))

        unit = FitUnitResult(bone, compartment, sub_region, layer)
        if not signals:
            warnings.warn(
                f"No pixels in {bone.name.lower()} {compartment.name.lower()} "
                f"{sub_region.name.lower()} {layer.name.lower()} layer."
            )
            results.append(unit)
            continue

        signals = np.vstack(signals).astype(float)
        amplitude, tau, rss = fit_pooled(times, signals, init=init, t0=t0, options=fit_options)
        pixel_fits = fit_pixels(times, signals, init=init, t0=t0, options=fit_options)

        unit.time_constant = tau
        unit.amplitude = amplitude
        unit.rss = rss
        unit.n_pixels = signals.shape[0]
        unit.pixel_time_constants = pixel_fits["tau"]
        unit.pixel_amplitudes = pixel_fits["amplitude"]
        unit.pixel_rss = pixel_fits["rss"]
        unit.pixel_n_samples = pixel_fits["n_samples"]
        unit.pixel_indices = np.concatenate(pixel_indices)
        unit.pixel_slices = np.concatenate(pixel_slices)

        if verbose is True:
            print(
                f"{bone.name.title():>6} {compartment.name.lower():>8} "
                f"{sub_region.name.lower():>9} "
                f"{layer.name.lower():>11}: {unit.n_pixels:5d} pixels, T = {tau:.2f} ms"
            )
        results.append(unit)

    return results


def relaxation_map(units, image_shape, n_slices):
    """
    Place the pixel time constants of all units into an image volume.

    Parameters
    ----------
    units : list
        `FitUnitResult` of one acquisition.
    image_shape : tuple
        ``(rows, cols)`` of a slice image.
    n_slices : int
        Number of image slices.

    Returns
    -------
    np.ndarray
        Array with shape ``(rows, cols, n_slices)``. Pixels outside all units
        are NaN.
    """
    rows, cols = image_shape
    flat = np.full((rows * cols, n_slices), np.nan)
    for unit in units:
        if unit.n_pixels == 0:
            continue
        flat[unit.pixel_indices, unit.pixel_slices - 1] = unit.pixel_time_constants
    return flat.reshape(rows, cols, n_slices, order="F")
