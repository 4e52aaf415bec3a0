from . import io, plotting, relaxation, roi_masks, slice_analysis
from .relaxation import FitOptions, InitPolicy, exp_decay, fit_pixels, fit_pooled
from .roi_masks import compose_femur_masks, compose_roi_masks, compose_tibia_masks
from .slice_analysis import FitUnitResult, analyze_slices, enumerate_units

__all__ = [
    "compose_femur_masks",
    "compose_tibia_masks",
    "compose_roi_masks",
    "exp_decay",
    "fit_pixels",
    "fit_pooled",
    "FitOptions",
    "InitPolicy",
    "FitUnitResult",
    "analyze_slices",
    "enumerate_units",
]
