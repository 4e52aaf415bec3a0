"""
Find and read the MAT files of a subject directory.

A subject directory (name starting with "0") holds, for each modality, image
MAT files and ROI MAT files:

    T1rho_S<series>...mat        - T1rho images
    T1rho_S<series>...proi...mat - T1rho ROI masks (name contains the image file stem)
    T1rho_S<series>...chk...mat  - check files, ignored

and likewise with the ``T2star_S`` prefix for T2*.
"""

import os
from dataclasses import dataclass
from enum import Enum

import numpy as np
import scipy.io
import SimpleITK as sitk

from pyptoa.results.indexing import Bone, Leg, Modality, storage_index

FILE_PREFIX = {Modality.T1RHO: "T1rho_S", Modality.T2STAR: "T2star_S"}
TIME_VARIABLE = {Modality.T1RHO: "splt", Modality.T2STAR: "etns"}
ROI_TAG = "proi"
CHECK_TAG = "chk"


class FileCountMismatchError(RuntimeError):
    """Image and ROI MAT files of a subject do not pair up."""


class FileRole(Enum):
    IMAGE = "image"
    ROI = "roi"
    CHECK = "check"
    OTHER = "other"


def classify_file(filename, modality):
    """
    Role of a file of a subject directory for `modality`.

    Parameters
    ----------
    filename : str
        File name (a path is reduced to its base name).
    modality : Modality
        Modality whose files are being collected.

    Returns
    -------
    FileRole
        `FileRole.OTHER` for anything that is not a MAT file of `modality`.
        ROI masks are recognised before check files.
    """
    modality = Modality(storage_index(modality, Modality))
    name = os.path.basename(filename)
    if not name.startswith(FILE_PREFIX[modality]) or not name.lower().endswith(".mat"):
        return FileRole.OTHER
    lower = name.lower()
    if ROI_TAG in lower:
        return FileRole.ROI
    if CHECK_TAG in lower:
        return FileRole.CHECK
    return FileRole.IMAGE


def find_subject_dirs(root_dir):
    """Sorted names of the subject directories (starting with "0") in `root_dir`."""
    return sorted(
        name
        for name in os.listdir(root_dir)
        if name.startswith("0") and os.path.isdir(os.path.join(root_dir, name))
    )


def parse_subject_number(subject_dir):
    """Subject number of a subject directory, e.g. "007" -> 7."""
    name = os.path.basename(os.path.normpath(subject_dir))
    try:
        return int(name)
    except ValueError:
        raise ValueError(f"Subject directory name {name!r} is not a number.") from None


def parse_leg(series_label):
    """Leg of a series: "L" as first character of the series label is the left leg."""
    label = str(series_label).strip()
    if label[:1].upper() == "L":
        return Leg.LEFT
    return Leg.RIGHT


def shares_stem(roi_name, stem):
    """
    True if `roi_name` is `stem` followed by a separator.

    "T1rho_S1_proi.mat" shares the stem "T1rho_S1", "T1rho_S12_proi.mat" does not.
    """
    if not roi_name.startswith(stem):
        return False
    rest = roi_name[len(stem) :]
    return len(rest) > 0 and not rest[0].isalnum()


def find_acquisition_pairs(subject_dir, modality):
    """
    Pair the image MAT files of `modality` with their ROI MAT files.

    Parameters
    ----------
    subject_dir : str
        Subject directory.
    modality : Modality
        T1rho or T2*.

    Returns
    -------
    list
        Sorted ``(image_path, roi_path)`` tuples.

    Raises
    ------
    FileCountMismatchError
        If the number of image files does not match the number of ROI files,
        an image file has no ROI file or more than one, or two image files
        share an ROI file.
    """
    modality = Modality(storage_index(modality, Modality))
    roles = {role: [] for role in FileRole}
    for name in sorted(os.listdir(subject_dir)):
        roles[classify_file(name, modality)].append(name)

    image_names = roles[FileRole.IMAGE]
    roi_names = roles[FileRole.ROI]
    if len(image_names) != len(roi_names):
        raise FileCountMismatchError(
            f"Number of {modality.name} MAT files ({len(image_names)}) does not match the "
            f"number of ROI MAT files ({len(roi_names)}) in {subject_dir}."
        )

    pairs = []
    claimed = {}
    for image_name in image_names:
        stem = os.path.splitext(image_name)[0]
        matches = [name for name in roi_names if shares_stem(name, stem)]
        if not matches:
            raise FileCountMismatchError(f"No ROI MAT file for {image_name} in {subject_dir}.")
        if len(matches) > 1:
            raise FileCountMismatchError(
                f"{image_name} matches more than one ROI MAT file {matches} in {subject_dir}."
            )
        roi_name = matches[0]
        if roi_name in claimed:
            raise FileCountMismatchError(
                f"ROI MAT file {roi_name} matches both {claimed[roi_name]} and {image_name} "
                f"in {subject_dir}."
            )
        claimed[roi_name] = image_name
        pairs.append((os.path.join(subject_dir, image_name), os.path.join(subject_dir, roi_name)))
    return pairs


@dataclass
class ImageVolume:
    """
    Images of one acquisition series.

    `data` has shape ``(rows, cols, n_slices, n_times)`` and `times` holds the
    spin lock (T1rho) or echo (T2*) times in ms.
    """

    data: np.ndarray
    times: np.ndarray
    series_label: str = ""
    series_number: str = ""

    @property
    def leg(self):
        return parse_leg(self.series_label)

    @property
    def image_shape(self):
        return self.data.shape[:2]

    @property
    def n_slices(self):
        return self.data.shape[2]


@dataclass
class RoiMasks:
    """
    ROI masks of one acquisition series.

    `layer_masks` are ``(n_pixels, 2, n_analysed)`` and `plane_masks`
    ``(n_pixels, 4, 2, n_analysed)`` per bone. `slices` are the one based
    analysed slice numbers and `bone_slices` the slices of each bone.
    """

    layer_masks: dict
    plane_masks: dict
    slices: np.ndarray
    bone_slices: dict


def _load_variables(filepath, names):
    if not os.path.isfile(filepath):
        raise FileNotFoundError(f"File {filepath} not found")
    contents = scipy.io.loadmat(filepath, squeeze_me=False)
    missing = [name for name in names if name not in contents]
    if missing:
        raise ValueError(f"{filepath} is missing the variable(s) {missing}.")
    return contents


def _mat_string(value):
    value = np.asarray(value).ravel()
    if value.size == 0:
        return ""
    return str(value[0]).strip()


def load_image_volume(filepath, modality):
    """
    Read the images and times of an image MAT file.

    Parameters
    ----------
    filepath : str
        Path of the image MAT file.
    modality : Modality
        Selects the time variable (``splt`` for T1rho, ``etns`` for T2*).

    Returns
    -------
    ImageVolume

    Notes
    -----
    A 3D image variable ``v`` (rows, cols, slices * times) is split into
    slices and times with the slice index running fastest, using the slice
    count ``sns`` when present.
    """
    modality = Modality(storage_index(modality, Modality))
    time_name = TIME_VARIABLE[modality]
    contents = _load_variables(filepath, ["v", time_name, "st"])

    times = np.asarray(contents[time_name], dtype=float).ravel()
    data = np.asarray(contents["v"], dtype=float)
    if data.ndim == 3:
        if data.shape[2] % len(times) != 0:
            raise ValueError(
                f"Image data in {filepath} has {data.shape[2]} images which cannot be split "
                f"into {len(times)} times."
            )
        n_slices = data.shape[2] // len(times)
        if "sns" in contents and int(np.asarray(contents["sns"]).ravel()[0]) != n_slices:
            raise ValueError(
                f"Image data in {filepath} has {n_slices} slices per time, "
                f"but the file records {int(np.asarray(contents['sns']).ravel()[0])}."
            )
        data = data.reshape(data.shape[0], data.shape[1], n_slices, len(times), order="F")
    elif data.ndim != 4:
        raise ValueError(f"Image data in {filepath} must be 3D or 4D, got shape {data.shape}.")
    if data.shape[3] != len(times):
        raise ValueError(
            f"Number of times ({len(times)}) does not match the image data "
            f"({data.shape[3]}) in {filepath}."
        )

    return ImageVolume(
        data=data,
        times=times,
        series_label=_mat_string(contents["st"]),
        series_number=_mat_string(contents["snt"]) if "snt" in contents else "",
    )


def load_roi_masks(filepath):
    """
    Read the layer masks, plane masks and slice lists of a ROI MAT file.

    Returns
    -------
    RoiMasks
    """
    contents = _load_variables(
        filepath, ["maskf", "maskfr", "maskt", "masktr", "rsl", "rslf", "rslt"]
    )
    return RoiMasks(
        layer_masks={
            Bone.FEMUR: np.asarray(contents["maskf"]).astype(bool),
            Bone.TIBIA: np.asarray(contents["maskt"]).astype(bool),
        },
        plane_masks={
            Bone.FEMUR: np.asarray(contents["maskfr"]).astype(bool),
            Bone.TIBIA: np.asarray(contents["masktr"]).astype(bool),
        },
        slices=np.asarray(contents["rsl"], dtype=int).ravel(),
        bone_slices={
            Bone.FEMUR: np.asarray(contents["rslf"], dtype=int).ravel(),
            Bone.TIBIA: np.asarray(contents["rslt"], dtype=int).ravel(),
        },
    )


def relaxation_map_image(relaxation_map, spacing=(1.0, 1.0, 1.0)):
    """
    Wrap a ``(rows, cols, slices)`` time constant map in a SimpleITK image.

    NaN pixels (outside the cartilage) are set to 0.
    """
    array = np.nan_to_num(np.asarray(relaxation_map, dtype=np.float32), nan=0.0)
    # SimpleITK arrays are (slices, rows, cols)
    image = sitk.GetImageFromArray(np.ascontiguousarray(np.transpose(array, (2, 0, 1))))
    image.SetSpacing(spacing)
    return image


def write_relaxation_map(relaxation_map, filepath, spacing=(1.0, 1.0, 1.0)):
    """Save a time constant map as a medical image (e.g. ``.nrrd`` or ``.nii.gz``)."""
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    sitk.WriteImage(relaxation_map_image(relaxation_map, spacing=spacing), filepath)
