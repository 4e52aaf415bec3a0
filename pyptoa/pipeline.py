"""
Fit T1rho and T2* in the cartilage sub-regions of all subjects of a study and
collect the results.

Run from the study directory (holding the subject directories "0*")::

    pyptoa-fitps .

Outputs in the results directory (default ``Results/mri_fitps``):

    mri_fitps.xlsx                         - one row per fit unit and file
    mri_fitps.mat                          - all result arrays of the run
    mri_fitps_<subject>_<T1R|T2S>_<L|R>.pdf - slice plots
"""

import argparse
import os
from dataclasses import dataclass, field, replace

from pyptoa.image.io import (
    find_acquisition_pairs,
    find_subject_dirs,
    load_image_volume,
    load_roi_masks,
    parse_subject_number,
    write_relaxation_map,
)
from pyptoa.image.plotting import close_documents, plot_slice_results
from pyptoa.image.relaxation import FitOptions, InitPolicy
from pyptoa.image.roi_masks import check_masks_disjoint, compose_roi_masks
from pyptoa.image.slice_analysis import analyze_slices, relaxation_map
from pyptoa.results.indexing import MODALITY_LABEL, Bone, Modality
from pyptoa.results.store import ResultStore
from pyptoa.results.tables import ResultsSpreadsheet, results_table
from pyptoa.statistics.main import DEFAULT_VALID_RANGES, summarize_units

MODALITY_TEXT = {Modality.T1RHO: "T1rho", Modality.T2STAR: "T2*"}


@dataclass
class FitConfig:
    """Settings of a run. Times are in ms."""

    init: InitPolicy = InitPolicy.FIXED
    t0: dict = field(default_factory=lambda: {Modality.T1RHO: 65.0, Modality.T2STAR: 35.0})
    valid_ranges: dict = field(default_factory=lambda: dict(DEFAULT_VALID_RANGES))
    plot_max: dict = field(default_factory=lambda: {Modality.T1RHO: 80.0, Modality.T2STAR: 75.0})
    # background image of the plots: 0 ms spin lock, 5 ms echo time
    plot_time_index: dict = field(default_factory=lambda: {Modality.T1RHO: 0, Modality.T2STAR: 2})
    fit_options: FitOptions = field(default_factory=FitOptions)
    modalities: tuple = (Modality.T1RHO, Modality.T2STAR)
    results_dir: str = os.path.join("Results", "mri_fitps")
    spreadsheet_name: str = "mri_fitps.xlsx"
    archive_name: str = "mri_fitps.mat"
    plot: bool = True
    save_maps: bool = False
    verbose: bool = True

    @property
    def spreadsheet_path(self):
        return os.path.join(self.results_dir, self.spreadsheet_name)

    @property
    def archive_path(self):
        return os.path.join(self.results_dir, self.archive_name)

    def plot_path(self, subject_dir, modality, leg):
        return os.path.join(
            self.results_dir,
            f"mri_fitps_{subject_dir}_{MODALITY_LABEL[modality]}_{leg.name[0]}.pdf",
        )

    def map_path(self, subject_dir, modality, leg, series_number):
        name = f"mri_fitps_{subject_dir}_{MODALITY_LABEL[modality]}_{leg.name[0]}"
        return os.path.join(self.results_dir, f"{name}_S{series_number}.nrrd")


def process_acquisition(
    image_path,
    roi_path,
    modality,
    subject_position,
    subject_dir,
    store,
    spreadsheet,
    config,
    plot_documents=None,
):
    """
    Fit, store, tabulate and plot one image MAT file.

    `plot_documents` are the open plot documents of the run (see
    `pyptoa.image.plotting.plot_slice_results`). Without them the plot file
    of the acquisition is written on its own.

    Returns
    -------
    pandas.DataFrame
        The table written for the file.
    """
    volume = load_image_volume(image_path, modality)
    rois = load_roi_masks(roi_path)
    leg = volume.leg

    roi_masks = compose_roi_masks(
        rois.plane_masks[Bone.FEMUR],
        rois.plane_masks[Bone.TIBIA],
        femur_layers=rois.layer_masks[Bone.FEMUR],
        tibia_layers=rois.layer_masks[Bone.TIBIA],
    )
    if config.verbose is True:
        for bone, compartments in roi_masks.items():
            for compartment, regions in compartments.items():
                for region_a, region_b, n_overlap in check_masks_disjoint(regions):
                    print(
                        f"   {bone.name.title()} {compartment.name.lower()} {region_a.name.lower()}"
                        f" and {region_b.name.lower()} share {n_overlap} pixels"
                    )
    units = analyze_slices(
        volume.data,
        volume.times,
        rois.layer_masks,
        roi_masks,
        rois.slices,
        rois.bone_slices,
        init=config.init,
        t0=config.t0[modality],
        fit_options=config.fit_options,
    )

    store.store_units(modality, subject_position, leg, units)

    statistics = summarize_units(units, config.valid_ranges[modality])
    subject = parse_subject_number(subject_dir)
    table = results_table(subject, modality, leg, units, statistics)
    spreadsheet.write(table)

    title = f"Subject {subject_dir} {MODALITY_TEXT[modality]} {leg.name.title()} Leg"
    if config.plot is True:
        plot_slice_results(
            volume.data,
            rois.bone_slices,
            units,
            config.plot_path(subject_dir, modality, leg),
            time_index=config.plot_time_index[modality],
            vmax=config.plot_max[modality],
            title=title,
            documents=plot_documents,
        )
    if config.save_maps is True:
        write_relaxation_map(
            relaxation_map(units, volume.image_shape, volume.n_slices),
            config.map_path(subject_dir, modality, leg, volume.series_number),
        )

    if config.verbose is True:
        print(f"   {title}: {os.path.basename(image_path)} ({len(units)} units)")
    return table


def run(root_dir=".", config=None):
    """
    Process every subject directory of `root_dir`.

    Parameters
    ----------
    root_dir : str, optional
        Study directory holding the subject directories.
    config : FitConfig, optional
        Run settings. Relative result paths are relative to `root_dir`.

    Returns
    -------
    ResultStore
        Results of all subjects. Also saved to ``config.archive_path``.

    Raises
    ------
    FileNotFoundError
        If `root_dir` has no subject directories.
    FileCountMismatchError
        If the image and ROI MAT files of a subject do not pair up. Checked for
        all modalities of a subject before any of its files are fitted.
    """
    if config is None:
        config = FitConfig()
    if not os.path.isabs(config.results_dir):
        config = replace(config, results_dir=os.path.join(root_dir, config.results_dir))

    subject_dirs = find_subject_dirs(root_dir)
    if not subject_dirs:
        raise FileNotFoundError(f"No subject directories (starting with '0') in {root_dir}")

    store = ResultStore(
        len(subject_dirs), subjects=[parse_subject_number(name) for name in subject_dirs]
    )
    spreadsheet = ResultsSpreadsheet(config.spreadsheet_path)

    # plots of all files with the same subject, modality and leg share one document
    plot_documents = {}
    try:
        for position, subject_dir in enumerate(subject_dirs):
            subject_path = os.path.join(root_dir, subject_dir)
            if config.verbose is True:
                print(f"Subject {subject_dir}")

            pairs = {
                modality: find_acquisition_pairs(subject_path, modality)
                for modality in config.modalities
            }
            for modality in config.modalities:
                for image_path, roi_path in pairs[modality]:
                    process_acquisition(
                        image_path,
                        roi_path,
                        modality,
                        position,
                        subject_dir,
                        store,
                        spreadsheet,
                        config,
                        plot_documents=plot_documents,
                    )
    finally:
        close_documents(plot_documents)

    store.save(config.archive_path)
    if config.verbose is True:
        print(f"Saved results to {config.archive_path}")
    return store


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Fit T1rho and T2* in knee cartilage sub-regions of registered MRI slices"
    )
    parser.add_argument(
        "root", nargs="?", default=".", help="Study directory with subject directories"
    )
    parser.add_argument(
        "--results-dir",
        default=os.path.join("Results", "mri_fitps"),
        help="Output directory (relative to the study directory)",
    )
    parser.add_argument(
        "--init",
        choices=[policy.value for policy in InitPolicy],
        default=InitPolicy.FIXED.value,
        help="Starting parameters of the nonlinear fits",
    )
    parser.add_argument("--no-plots", action="store_true", help="Do not write slice plots")
    parser.add_argument("--save-maps", action="store_true", help="Write time constant maps as NRRD")
    parser.add_argument("--skip-t1rho", action="store_true", help="Do not process T1rho files")
    parser.add_argument("--skip-t2star", action="store_true", help="Do not process T2* files")
    parser.add_argument("--quiet", action="store_true", help="Do not print progress")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    skipped = {Modality.T1RHO: args.skip_t1rho, Modality.T2STAR: args.skip_t2star}
    modalities = tuple(modality for modality in Modality if not skipped[modality])
    config = FitConfig(
        init=InitPolicy.parse(args.init),
        modalities=modalities,
        results_dir=args.results_dir,
        plot=not args.no_plots,
        save_maps=args.save_maps,
        verbose=not args.quiet,
    )
    run(args.root, config)


if __name__ == "__main__":
    main()
