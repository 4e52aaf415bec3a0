import numpy as np
from numpy.testing import assert_allclose

from pyptoa.image.relaxation import exp_decay


def synthetic_decay(times, taus, amplitude=1000.0, noise_level=0.0, seed=None):
    """
    Monoexponential decays for a set of pixels.

    Parameters
    ----------
    times : array-like
        Spin lock or echo times (ms).
    taus : array-like
        Time constant of each pixel (ms).
    amplitude : float, optional
        Signal at time 0, by default 1000.
    noise_level : float, optional
        Standard deviation of added Gaussian noise as a fraction of
        `amplitude`, by default 0 (noiseless).
    seed : int, optional
        Seed of the noise generator.

    Returns
    -------
    np.ndarray
        Signals with shape ``(n_pixels, n_times)``.
    """
    times = np.asarray(times, dtype=float)
    taus = np.atleast_1d(np.asarray(taus, dtype=float))
    signals = exp_decay(times[np.newaxis, :], amplitude, taus[:, np.newaxis])
    if noise_level > 0:
        rng = np.random.default_rng(seed)
        signals = signals + rng.normal(0, noise_level * amplitude, size=signals.shape)
        signals = np.maximum(signals, 0)
    return signals


def assert_units_same(unit1, unit2, rtol=1e-4, atol=1e-5):
    """
    Helper function to assert that 2 `FitUnitResult` are the same.

    Parameters
    ----------
    unit1 : FitUnitResult
        Version 1 of the unit.
    unit2 : FitUnitResult
        Version 2 of the unit.
    """
    assert unit1.sub_index == unit2.sub_index
    assert unit1.n_pixels == unit2.n_pixels
    assert_allclose(unit1.time_constant, unit2.time_constant, rtol=rtol, atol=atol)
    assert_allclose(unit1.rss, unit2.rss, rtol=rtol, atol=atol)
    assert_allclose(unit1.pixel_time_constants, unit2.pixel_time_constants, rtol=rtol, atol=atol)
    assert_allclose(unit1.pixel_rss, unit2.pixel_rss, rtol=rtol, atol=atol)
    np.testing.assert_array_equal(unit1.pixel_n_samples, unit2.pixel_n_samples)


def femur_plane_masks(lateral, trochlea, posterior, n_slices=1):
    """
    Femur plane masks ``(n_pixels, 4, 2, n_slices)`` that split the pixels of
    a slice into compartments and sub-regions.

    Parameters
    ----------
    lateral : np.ndarray
        Boolean pixels of the lateral compartment (the rest is medial).
    trochlea : np.ndarray
        Boolean pixels in front of both trochlea planes.
    posterior : np.ndarray
        Boolean pixels behind the central/posterior plane.
    n_slices : int, optional
        Number of (identical) slices, by default 1.
    """
    lateral = np.asarray(lateral, dtype=bool)
    trochlea = np.asarray(trochlea, dtype=bool)
    posterior = np.asarray(posterior, dtype=bool)
    planes = np.stack(
        [
            np.stack([lateral, ~lateral], axis=1),
            np.stack([~posterior, posterior], axis=1),
            np.stack([trochlea, ~trochlea], axis=1),
            np.stack([trochlea, ~trochlea], axis=1),
        ],
        axis=1,
    )
    return np.repeat(planes[..., np.newaxis], n_slices, axis=3)


def tibia_plane_masks(lateral, anterior, posterior, n_slices=1):
    """
    Tibia plane masks ``(n_pixels, 4, 2, n_slices)``, see `femur_plane_masks`.
    """
    lateral = np.asarray(lateral, dtype=bool)
    anterior = np.asarray(anterior, dtype=bool)
    posterior = np.asarray(posterior, dtype=bool)
    medial = ~lateral
    planes = np.stack(
        [
            np.stack([lateral & anterior, lateral & ~anterior], axis=1),
            np.stack([lateral & ~posterior, lateral & posterior], axis=1),
            np.stack([medial & anterior, medial & ~anterior], axis=1),
            np.stack([medial & ~posterior, medial & posterior], axis=1),
        ],
        axis=1,
    )
    return np.repeat(planes[..., np.newaxis], n_slices, axis=3)


def layer_masks(superficial, n_slices=1, cartilage=None):
    """
    Whole cartilage masks ``(n_pixels, 2, n_slices)``: slot 0 superficial,
    slot 1 deep. Pixels outside `cartilage` (default all) are in neither.
    """
    superficial = np.asarray(superficial, dtype=bool)
    if cartilage is None:
        cartilage = np.ones_like(superficial)
    cartilage = np.asarray(cartilage, dtype=bool)
    layers = np.stack([superficial & cartilage, ~superficial & cartilage], axis=1)
    return np.repeat(layers[..., np.newaxis], n_slices, axis=2)
