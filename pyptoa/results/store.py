"""
Storage of the fit results of a whole run in dense six-dimensional arrays.

One set of arrays is kept for each modality:

    res   - fitted time constant of the unit (ms)
    npx   - number of pixels in the unit
    rss   - residual sum of squares of the unit fit
    respx - pixel time constants (ragged, one 1D array per cell)
    rsspx - pixel residual sums of squares (ragged)
    nps   - number of valid samples in each pixel fit (ragged)

Archive variable names are the modality prefix plus the array name, e.g.
``t1r_res`` or ``t2s_nps``.
"""

import os
import warnings

import numpy as np
import scipy.io

from pyptoa.results.indexing import (
    CATEGORY_SHAPE,
    MODALITY_PREFIX,
    Modality,
    ResultIndex,
    storage_index,
)

DENSE_FIELDS = ("res", "npx", "rss")
RAGGED_FIELDS = ("respx", "rsspx", "nps")
RAGGED_DTYPES = {"respx": np.float64, "rsspx": np.float64, "nps": np.int64}


def _empty_ragged(shape, dtype):
    ragged = np.empty(shape, dtype=object)
    for cell in np.ndindex(*shape):
        ragged[cell] = np.zeros(0, dtype=dtype)
    return ragged


class ResultStore:
    """
    Owns the result arrays of both modalities for a run.

    Parameters
    ----------
    n_subjects : int
        Number of subjects in the run. Sets the size of the first axis.
    subjects : array-like, optional
        Subject numbers in run order. Defaults to ``0 .. n_subjects - 1``.
    """

    def __init__(self, n_subjects, subjects=None):
        if n_subjects < 1:
            raise ValueError(f"n_subjects must be at least 1, got {n_subjects}.")
        self.n_subjects = int(n_subjects)
        self.shape = (self.n_subjects,) + CATEGORY_SHAPE
        if subjects is None:
            subjects = np.arange(self.n_subjects)
        self.subjects = np.asarray(subjects, dtype=np.int64).ravel()
        if self.subjects.size != self.n_subjects:
            raise ValueError(
                f"Got {self.subjects.size} subject numbers for {self.n_subjects} subjects."
            )

        self._arrays = {}
        self._written = {}
        for modality in Modality:
            arrays = {name: np.zeros(self.shape) for name in DENSE_FIELDS}
            for name in RAGGED_FIELDS:
                arrays[name] = _empty_ragged(self.shape, RAGGED_DTYPES[name])
            self._arrays[modality] = arrays
            self._written[modality] = np.zeros(self.shape, dtype=bool)

    def __getitem__(self, key):
        modality, name = key
        return self._arrays[Modality(storage_index(modality, Modality))][name]

    def arrays(self, modality):
        """Arrays of one modality keyed by their archive names."""
        modality = Modality(storage_index(modality, Modality))
        prefix = MODALITY_PREFIX[modality]
        return {f"{prefix}_{name}": array for name, array in self._arrays[modality].items()}

    def written(self, modality):
        """Boolean array of the cells written for `modality`."""
        return self._written[Modality(storage_index(modality, Modality))].copy()

    def store(self, modality, index, unit):
        """
        Write the results of one fit unit into its cell.

        Parameters
        ----------
        modality : Modality
            Result set to write to.
        index : ResultIndex
            Cell of the unit.
        unit : FitUnitResult
            Fit results of the unit.

        Notes
        -----
        Writing a cell twice in a run (e.g. duplicated input files) keeps the
        last write and issues a warning.
        """
        modality = Modality(storage_index(modality, Modality))
        if not isinstance(index, ResultIndex):
            index = ResultIndex.from_codes(*index)
        cell = index.cell
        if cell[0] >= self.n_subjects:
            raise ValueError(
                f"Subject position {cell[0]} is outside the {self.n_subjects} subjects "
                f"of the store."
            )

        n_pixels = len(unit.pixel_time_constants)
        if len(unit.pixel_rss) != n_pixels or len(unit.pixel_n_samples) != n_pixels:
            raise ValueError(
                f"Pixel arrays of {index} have inconsistent lengths "
                f"({n_pixels}, {len(unit.pixel_rss)}, {len(unit.pixel_n_samples)})."
            )

        written = self._written[modality]
        if written[cell]:
            warnings.warn(
                f"Overwriting {modality.name} results of {index}; "
                f"the same unit was already stored in this run."
            )
        arrays = self._arrays[modality]
        arrays["res"][cell] = unit.time_constant
        arrays["npx"][cell] = unit.n_pixels
        arrays["rss"][cell] = unit.rss
        arrays["respx"][cell] = np.asarray(unit.pixel_time_constants, dtype=np.float64).ravel()
        arrays["rsspx"][cell] = np.asarray(unit.pixel_rss, dtype=np.float64).ravel()
        arrays["nps"][cell] = np.asarray(unit.pixel_n_samples, dtype=np.int64).ravel()
        written[cell] = True

    def store_units(self, modality, subject, leg, units):
        """Store all units of one acquisition file of `subject` (run position) and `leg`."""
        for unit in units:
            index = ResultIndex.from_codes(subject, leg, *unit.sub_index)
            self.store(modality, index, unit)

    def equals(self, other):
        """True if both stores hold bit-identical arrays (NaN equal to NaN)."""
        if self.shape != other.shape or not np.array_equal(self.subjects, other.subjects):
            return False
        for modality in Modality:
            mine = self._arrays[modality]
            theirs = other._arrays[modality]
            for name in DENSE_FIELDS:
                if not np.array_equal(mine[name], theirs[name], equal_nan=True):
                    return False
            for name in RAGGED_FIELDS:
                for cell in np.ndindex(*self.shape):
                    a, b = mine[name][cell], theirs[name][cell]
                    if a.dtype != b.dtype or not np.array_equal(
                        a, b, equal_nan=a.dtype.kind == "f"
                    ):
                        return False
        return True

    def save(self, filepath):
        """
        Save all arrays of both modalities to a MAT file.

        Ragged arrays are written as cell arrays.
        """
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        variables = {"subjects": self.subjects}
        for modality in Modality:
            variables.update(self.arrays(modality))
        scipy.io.savemat(filepath, variables, do_compression=True)

    @classmethod
    def load(cls, filepath):
        """
        Load a store saved by `ResultStore.save`.

        Raises
        ------
        FileNotFoundError
            If `filepath` does not exist.
        ValueError
            If an archive variable is missing or has the wrong shape.
        """
        if not os.path.isfile(filepath):
            raise FileNotFoundError(f"File {filepath} not found")
        contents = scipy.io.loadmat(filepath, squeeze_me=False)

        try:
            subjects = np.asarray(contents["subjects"]).ravel()
        except KeyError:
            raise ValueError(f"{filepath} does not contain the variable 'subjects'.") from None
        store = cls(subjects.size, subjects=subjects)

        for modality in Modality:
            prefix = MODALITY_PREFIX[modality]
            arrays = store._arrays[modality]
            for name in DENSE_FIELDS + RAGGED_FIELDS:
                key = f"{prefix}_{name}"
                if key not in contents:
                    raise ValueError(f"{filepath} does not contain the variable '{key}'.")
                loaded = contents[key]
                if loaded.shape != store.shape:
                    raise ValueError(
                        f"Variable '{key}' in {filepath} has shape {loaded.shape}, "
                        f"expected {store.shape}."
                    )
                if name in DENSE_FIELDS:
                    arrays[name] = np.asarray(loaded, dtype=np.float64)
                    continue
                for cell in np.ndindex(*store.shape):
                    arrays[name][cell] = np.asarray(loaded[cell], dtype=RAGGED_DTYPES[name]).ravel()

            store._written[modality] = (arrays["npx"] != 0) | np.vectorize(len, otypes=[int])(
                arrays["respx"]
            ).astype(bool)
        return store
