import os
import warnings

import numpy as np
from matplotlib.backends.backend_pdf import PdfPages
from matplotlib.figure import Figure

from pyptoa.results.indexing import Bone


def slice_overlay(units, bone, slice_number, image_shape):
    """
    Pixel time constants of one bone on one slice as a ``(rows, cols)`` image.

    Pixels without a fit result are NaN.
    """
    rows, cols = image_shape
    overlay = np.full(rows * cols, np.nan)
    for unit in units:
        if unit.bone != bone or unit.n_pixels == 0:
            continue
        on_slice = unit.pixel_slices == slice_number
        overlay[unit.pixel_indices[on_slice]] = unit.pixel_time_constants[on_slice]
    return overlay.reshape(rows, cols, order="F")


def _save_slice_pages(pdf, data_4d, bone_slices, units, time_index, vmax, title):
    image_shape = data_4d.shape[:2]
    for bone in Bone:
        for slice_number in np.asarray(bone_slices[bone], dtype=int).ravel():
            image = data_4d[:, :, slice_number - 1, time_index]
            overlay = slice_overlay(units, bone, slice_number, image_shape)

            fig = Figure(figsize=(8.5, 11))
            ax = fig.add_subplot(111)
            ax.imshow(image, cmap="gray")
            mappable = ax.imshow(np.ma.masked_invalid(overlay), cmap="jet", vmin=0.0, vmax=vmax)
            fig.colorbar(mappable, ax=ax, shrink=0.6, label="Time constant (ms)")
            ax.set_title(f"{title}\n{bone.name.title()} Slice {slice_number}", fontsize=14)
            ax.set_axis_off()
            pdf.savefig(fig)


def plot_slice_results(
    data_4d,
    bone_slices,
    units,
    filepath,
    time_index=0,
    vmax=80.0,
    title="",
    documents=None,
):
    """
    Save one page per bone and slice with the pixel time constants drawn over
    the image.

    Parameters
    ----------
    data_4d : np.ndarray
        Image data with shape ``(rows, cols, n_slices, n_times)``.
    bone_slices : dict
        ``{Bone: array-like}`` one based slice numbers of each bone.
    units : list
        `FitUnitResult` of the acquisition.
    filepath : str
        Output PDF file.
    time_index : int, optional
        Spin lock / echo time of the background image, by default 0.
    vmax : float, optional
        Upper limit of the time constant color scale (ms), by default 80.
    title : str, optional
        Subject, modality and leg shown on each page.
    documents : dict, optional
        Open ``{filepath: PdfPages}`` shared between calls. Pages are appended
        to the document of `filepath`, which is opened on first use and left
        open; the caller closes the documents. By default the file is written
        and closed by this call.
    """
    if not any(unit.n_pixels > 0 for unit in units):
        warnings.warn(f"No fitted pixels to plot, {filepath} not written.")
        return

    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)

    if documents is None:
        with PdfPages(filepath) as pdf:
            _save_slice_pages(pdf, data_4d, bone_slices, units, time_index, vmax, title)
        return

    if filepath not in documents:
        documents[filepath] = PdfPages(filepath)
    _save_slice_pages(documents[filepath], data_4d, bone_slices, units, time_index, vmax, title)


def close_documents(documents):
    """Close every ``PdfPages`` of a `documents` dict and empty it."""
    while documents:
        _, pdf = documents.popitem()
        pdf.close()
