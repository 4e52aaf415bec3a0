"""
Tables of the per unit results of one acquisition file and the spreadsheet
they are collected in.
"""

import os

import pandas as pd

from pyptoa.results.indexing import Leg, Modality, storage_index

ID_COLUMNS = ["Subject", "Result", "Leg", "Bone", "Comprt", "ROI", "Layer"]
RESULT_COLUMNS = ["Pixels", "T1R/T2S", "RSS", "ValidPix", "Mean", "Min", "Max", "SD", "COV"]
COLUMNS = ID_COLUMNS + RESULT_COLUMNS


def results_table(subject, modality, leg, units, statistics):
    """
    Build the table of one acquisition file, one row per fit unit.

    Parameters
    ----------
    subject : int
        Subject number (from the subject directory name).
    modality : Modality
        T1rho or T2*.
    leg : Leg
        Leg of the acquisition.
    units : list
        `FitUnitResult` of the file.
    statistics : list
        `RoiStatistics` of each unit, in the same order as `units`.

    Returns
    -------
    pandas.DataFrame
        Table with columns `COLUMNS`. Categorical columns hold the zero-based
        storage codes.
    """
    if len(units) != len(statistics):
        raise ValueError(
            f"Got {len(units)} fit units but {len(statistics)} sets of statistics."
        )
    modality_code = storage_index(modality, Modality)
    leg_code = storage_index(leg, Leg)

    rows = []
    for unit, stats in zip(units, statistics):
        rows.append(
            [
                int(subject),
                modality_code,
                leg_code,
                int(unit.bone),
                int(unit.compartment),
                int(unit.sub_region),
                int(unit.layer),
                int(unit.n_pixels),
                unit.time_constant,
                unit.rss,
                stats.n_valid,
                stats.mean,
                stats.min,
                stats.max,
                stats.sd,
                stats.cov,
            ]
        )
    return pd.DataFrame(rows, columns=COLUMNS)


class ResultsSpreadsheet:
    """
    Collects result tables in one spreadsheet file.

    The first write of a spreadsheet object replaces any existing file and
    writes the header. Later writes append rows without the header.

    Parameters
    ----------
    filepath : str
        Path of the ``.xlsx`` or ``.csv`` file.
    sheet_name : str, optional
        Worksheet used for ``.xlsx`` files, by default "Sheet1".
    """

    SUPPORTED_EXTENSIONS = {".xlsx", ".csv"}

    def __init__(self, filepath, sheet_name="Sheet1"):
        _, extension = os.path.splitext(filepath)
        extension = extension.lower()
        if extension not in self.SUPPORTED_EXTENSIONS:
            raise ValueError(
                f"File extension {extension} not supported. Please use .xlsx or .csv"
            )
        self.filepath = filepath
        self.extension = extension
        self.sheet_name = sheet_name
        self.first_write = True

    def write(self, table):
        """Write (first call) or append (later calls) `table`."""
        directory = os.path.dirname(self.filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        if self.extension == ".csv":
            mode = "w" if self.first_write else "a"
            table.to_csv(self.filepath, mode=mode, header=self.first_write, index=False)
        elif self.first_write:
            with pd.ExcelWriter(self.filepath, engine="openpyxl", mode="w") as writer:
                table.to_excel(writer, sheet_name=self.sheet_name, index=False)
        else:
            with pd.ExcelWriter(
                self.filepath, engine="openpyxl", mode="a", if_sheet_exists="overlay"
            ) as writer:
                start_row = writer.sheets[self.sheet_name].max_row
                table.to_excel(
                    writer,
                    sheet_name=self.sheet_name,
                    index=False,
                    header=False,
                    startrow=start_row,
                )
        self.first_write = False

    def read(self):
        """Read the spreadsheet back into a DataFrame."""
        if self.extension == ".csv":
            return pd.read_csv(self.filepath)
        return pd.read_excel(self.filepath, sheet_name=self.sheet_name, engine="openpyxl")
