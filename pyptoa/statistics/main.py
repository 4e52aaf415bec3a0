from dataclasses import dataclass

import numpy as np

from pyptoa.results.indexing import Modality


@dataclass(frozen=True)
class ValidRange:
    """Closed interval of physiologically plausible time constants (ms)."""

    minimum: float = 0.0
    maximum: float = 100.0

    def __post_init__(self):
        if self.minimum > self.maximum:
            raise ValueError(
                f"Invalid range: minimum ({self.minimum}) is larger than maximum ({self.maximum})."
            )


DEFAULT_VALID_RANGES = {
    Modality.T1RHO: ValidRange(0.0, 100.0),
    Modality.T2STAR: ValidRange(0.0, 100.0),
}


@dataclass(frozen=True)
class RoiStatistics:
    n_valid: int = 0
    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0
    sd: float = 0.0
    cov: float = 0.0


def filter_valid(values, valid_range=None):
    """
    Keep the time constants inside the closed interval `valid_range`.

    Parameters
    ----------
    values : array-like
        Pixel time constants. NaN is never valid.
    valid_range : ValidRange, optional
        Plausible interval, by default [0, 100] ms.

    Returns
    -------
    np.ndarray
        The valid values, in their original order.
    """
    if valid_range is None:
        valid_range = ValidRange()
    values = np.asarray(values, dtype=float).ravel()
    with np.errstate(invalid="ignore"):
        keep = (values >= valid_range.minimum) & (values <= valid_range.maximum)
    return values[keep]


def coefficient_of_variation(sd, mean):
    """
    Coefficient of variation in percent, ``100 * sd / mean``.

    A zero mean gives 0 rather than an infinite or undefined value.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        cov = 100.0 * np.asarray(sd, dtype=float) / np.asarray(mean, dtype=float)
    cov = np.where(np.isfinite(cov), cov, 0.0)
    return float(cov) if cov.ndim == 0 else cov


def summarize_valid(values, valid_range=None):
    """
    Descriptive statistics of the valid pixel time constants of one unit.

    Parameters
    ----------
    values : array-like
        Pixel time constants of one fit unit.
    valid_range : ValidRange, optional
        Plausible interval, by default [0, 100] ms.

    Returns
    -------
    RoiStatistics
        Count, mean, minimum, maximum, sample standard deviation and
        coefficient of variation of the valid values. With no valid values all
        statistics are zero; with one valid value the SD and COV are zero.
    """
    valid = filter_valid(values, valid_range)
    n_valid = valid.size
    if n_valid == 0:
        return RoiStatistics()

    mean = float(np.mean(valid))
    sd = float(np.std(valid, ddof=1)) if n_valid > 1 else 0.0
    return RoiStatistics(
        n_valid=int(n_valid),
        mean=mean,
        min=float(np.min(valid)),
        max=float(np.max(valid)),
        sd=sd,
        cov=coefficient_of_variation(sd, mean),
    )


def summarize_units(units, valid_range=None):
    """`summarize_valid` for the pixel time constants of each `FitUnitResult`."""
    return [summarize_valid(unit.pixel_time_constants, valid_range) for unit in units]
