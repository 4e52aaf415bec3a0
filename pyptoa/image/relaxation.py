"""
Monoexponential relaxation model and the least squares fits used to get
T1rho (spin lock times) or T2* (echo times) from MRI signal decays.
"""

import warnings
from dataclasses import dataclass
from enum import Enum

import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit


class InitPolicy(Enum):
    """How the starting parameters of the nonlinear fit are chosen."""

    FIXED = "fixed"
    LINEAR = "linear"
    WEIGHTED = "weighted"

    @classmethod
    def parse(cls, value):
        """
        Accept an `InitPolicy`, its name/value, or the legacy integer codes
        (1 = fixed, 0 = linear least squares, -1 = weighted least squares).
        """
        if isinstance(value, cls):
            return value
        legacy = {1: cls.FIXED, 0: cls.LINEAR, -1: cls.WEIGHTED}
        if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
            if int(value) in legacy:
                return legacy[int(value)]
        elif isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                pass
        raise ValueError(
            f"Invalid initialization policy: {value!r}. "
            f"Must be one of {[p.value for p in cls]} or a legacy code 1, 0, -1."
        )


@dataclass
class FitOptions:
    """Levenberg-Marquardt solver tolerances."""

    ftol: float = 1e-8
    xtol: float = 1e-8
    maxfev: int = 2000


def exp_decay(t, amplitude, tau):
    """Monoexponential decay ``amplitude * exp(-t / tau)``."""
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        tau_safe = np.where(tau == 0, np.finfo(float).eps, tau)
        return amplitude * np.exp(-np.asarray(t, dtype=float) / tau_safe)


def exp_decay_jacobian(t, amplitude, tau):
    """
    Jacobian of `exp_decay` with respect to ``(amplitude, tau)``.

    Returns
    -------
    np.ndarray
        Array with shape ``(len(t), 2)``.
    """
    t = np.asarray(t, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        tau_safe = np.where(tau == 0, np.finfo(float).eps, tau)
        decay = np.exp(-t / tau_safe)
        d_amplitude = decay
        d_tau = amplitude * t * decay / tau_safe**2
    return np.column_stack((d_amplitude, d_tau))


def valid_samples(signal):
    """Boolean mask of samples that can be fitted (finite and positive)."""
    signal = np.asarray(signal, dtype=float)
    with np.errstate(invalid="ignore"):
        return np.isfinite(signal) & (signal > 0)


def log_linear_fit(times, signal, weighted=False):
    """
    Estimate ``(amplitude, tau)`` from a straight line fit to ``log(signal)``.

    Parameters
    ----------
    times : np.ndarray
        Spin lock or echo times (ms).
    signal : np.ndarray
        Positive signal intensities at `times`.
    weighted : bool, optional
        If True, weight each sample by ``signal**2``. This undoes the
        amplification of noise at low signal caused by the log transform.
        Default is False.

    Returns
    -------
    tuple
        ``(amplitude, tau)``. `tau` is NaN if the fitted slope is not negative.
    """
    times = np.asarray(times, dtype=float)
    signal = np.asarray(signal, dtype=float)
    design = np.column_stack((np.ones_like(times), times))
    log_signal = np.log(signal)
    if weighted:
        design = design * signal[:, np.newaxis]
        log_signal = log_signal * signal

    coefs, _, _, _ = np.linalg.lstsq(design, log_signal, rcond=None)
    intercept, slope = coefs
    with np.errstate(divide="ignore", invalid="ignore"):
        tau = -1.0 / slope if slope < 0 else np.nan
    return np.exp(intercept), tau


def initial_parameters(times, signal, init=InitPolicy.FIXED, t0=65.0):
    """
    Starting ``(amplitude, tau)`` of a nonlinear fit.

    Parameters
    ----------
    times : np.ndarray
        Times of the valid samples (ms).
    signal : np.ndarray
        Valid (positive) samples.
    init : InitPolicy, optional
        Policy used to derive the starting parameters, by default fixed.
    t0 : float, optional
        Fixed starting time constant (ms). Also used whenever a least squares
        estimate is not finite and positive. Default 65.

    Returns
    -------
    tuple
        ``(amplitude, tau)``.
    """
    init = InitPolicy.parse(init)
    signal = np.asarray(signal, dtype=float)
    amplitude = float(np.max(signal))
    tau = float(t0)

    if init is not InitPolicy.FIXED and len(np.unique(times)) > 1:
        amp_ls, tau_ls = log_linear_fit(times, signal, weighted=init is InitPolicy.WEIGHTED)
        if np.isfinite(tau_ls) and tau_ls > 0 and np.isfinite(amp_ls) and amp_ls > 0:
            amplitude, tau = float(amp_ls), float(tau_ls)
    return amplitude, tau


def fit_exp_decay(times, signal, p0, options=None):
    """
    Nonlinear least squares fit of `exp_decay` with the Levenberg-Marquardt method.

    Parameters
    ----------
    times : np.ndarray
        Spin lock or echo times (ms) of each sample.
    signal : np.ndarray
        Signal intensities.
    p0 : tuple
        Starting ``(amplitude, tau)``.
    options : FitOptions, optional
        Solver tolerances.

    Returns
    -------
    tuple
        ``(amplitude, tau, rss)``.

    Raises
    ------
    RuntimeError
        If the solver does not converge within ``options.maxfev`` evaluations.
    """
    if options is None:
        options = FitOptions()
    times = np.asarray(times, dtype=float)
    signal = np.asarray(signal, dtype=float)

    with warnings.catch_warnings():
        # covariance is not used
        warnings.simplefilter("ignore", OptimizeWarning)
        popt, _ = curve_fit(
            f=exp_decay,
            xdata=times,
            ydata=signal,
            p0=p0,
            jac=exp_decay_jacobian,
            method="lm",
            ftol=options.ftol,
            xtol=options.xtol,
            maxfev=options.maxfev,
        )
    amplitude, tau = popt
    residuals = signal - exp_decay(times, amplitude, tau)
    rss = float(np.sum(residuals**2))
    return float(amplitude), float(tau), rss


def fit_pooled(times, signals, init=InitPolicy.FIXED, t0=65.0, options=None):
    """
    Fit one decay to all samples of a set of pixels.

    Parameters
    ----------
    times : np.ndarray
        Spin lock or echo times (ms), shape ``(n_times,)``.
    signals : np.ndarray
        Pixel decays with shape ``(n_pixels, n_times)``.

    Returns
    -------
    tuple
        ``(amplitude, tau, rss)``. NaN for all three if fewer than two valid
        samples exist or the solver fails.
    """
    times = np.asarray(times, dtype=float)
    signals = np.atleast_2d(np.asarray(signals, dtype=float))
    all_times = np.broadcast_to(times, signals.shape).ravel()
    all_signals = signals.ravel()
    keep = valid_samples(all_signals)
    if np.sum(keep) < 2:
        return np.nan, np.nan, np.nan

    p0 = initial_parameters(all_times[keep], all_signals[keep], init=init, t0=t0)
    try:
        return fit_exp_decay(all_times[keep], all_signals[keep], p0, options=options)
    except (RuntimeError, ValueError, TypeError) as err:
        warnings.warn(f"Region fit failed: {err}")
        return np.nan, np.nan, np.nan


def fit_pixels(times, signals, init=InitPolicy.FIXED, t0=65.0, options=None):
    """
    Fit a decay to every pixel independently.

    Parameters
    ----------
    times : np.ndarray
        Spin lock or echo times (ms), shape ``(n_times,)``.
    signals : np.ndarray
        Pixel decays with shape ``(n_pixels, n_times)``.
    init : InitPolicy, optional
        Starting parameter policy.
    t0 : float, optional
        Fixed starting time constant (ms).
    options : FitOptions, optional
        Solver tolerances.

    Returns
    -------
    dict
        ``{'tau', 'amplitude', 'rss', 'n_samples'}`` with one entry per
        pixel. Pixels with fewer than two valid samples, or where the solver
        failed, get NaN for `tau`, `amplitude` and `rss`.
    """
    times = np.asarray(times, dtype=float)
    signals = np.asarray(signals, dtype=float).reshape(-1, len(times))
    n_pixels = signals.shape[0]

    tau = np.full(n_pixels, np.nan)
    amplitude = np.full(n_pixels, np.nan)
    rss = np.full(n_pixels, np.nan)
    valid = valid_samples(signals)
    n_samples = valid.sum(axis=1).astype(np.int64)

    for i in range(n_pixels):
        if n_samples[i] < 2:
            continue
        keep = valid[i]
        p0 = initial_parameters(times[keep], signals[i, keep], init=init, t0=t0)
        try:
            amplitude[i], tau[i], rss[i] = fit_exp_decay(
                times[keep], signals[i, keep], p0, options=options
            )
        except (RuntimeError, ValueError, TypeError):
            # leave the pixel as NaN, it is excluded by the validity filter
            continue

    return {"tau": tau, "amplitude": amplitude, "rss": rss, "n_samples": n_samples}
