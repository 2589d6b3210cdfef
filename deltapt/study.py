"""
Delta-pt/pt cut study

Orchestrates the study over one input file, strictly in sequence:

  1. Truth pass: primary-particle true pt spectrum
  2. Flat-cut pass: baseline distributions plus one set per flat cut
  3. Sigma-band estimation from the baseline (track pt, delta-pt/pt) distribution
  4. Sigma-band pass: one set per sigma multiplier
  5. Rejection factors and efficiencies
  6. Optional sector-boundary mask check
  7. Output file, rejection table and optional plots

Usage:
    config = StudyConfig.load("my_study.toml")
    result = DeltaPtCutStudy(config).run()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

from .modules.boundary_mask import BoundaryMaskCheck
from .modules.classifier import (
    DistributionSet,
    FlatDeltaPtCut,
    PassResult,
    fill_truth_spectrum,
    make_bundles,
    run_classification_pass,
)
from .modules.config import StudyConfig
from .modules.efficiency_calculator import EfficiencyCalculator, EfficiencyCurve, RejectionFactor
from .modules.exceptions import ConfigurationError, FittingError
from .modules.histograms import Hist1D
from .modules.output_writer import OutputStore
from .modules.sigma_band import SigmaBandEstimator, SigmaBands
from .modules.tuple_reader import TRACK_BRANCHES, TRUTH_BRANCHES, TupleReader


@dataclass
class StudyResult:
    """What one study run produced."""

    output_file: Path
    table_file: Path
    passes: list[PassResult] = field(default_factory=list)
    flat_rejection: list[RejectionFactor] = field(default_factory=list)
    sigma_rejection: list[RejectionFactor] = field(default_factory=list)
    efficiencies: dict[str, EfficiencyCurve] = field(default_factory=dict)
    bands: SigmaBands | None = None
    rejection_table: pd.DataFrame | None = None
    plot_files: list[Path] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """True when every pass read its whole table and pass 2 ran."""
        return self.bands is not None and all(p.complete for p in self.passes)

    def pass_status(self, name: str) -> PassResult:
        for p in self.passes:
            if p.name == name:
                return p
        raise KeyError(name)


class DeltaPtCutStudy:
    """
    Runs the complete cut study for one configuration.

    Attributes:
        config: StudyConfig for this run
        store: OutputStore collecting every output object
    """

    def __init__(self, config: StudyConfig) -> None:
        self.config = config
        self.logger = logging.getLogger("DeltaPtStudy.Study")
        self.binning = {name: config.get_binning(name) for name in ("pt", "frac", "delta", "phi")}
        self.calculator = EfficiencyCalculator.from_config(config)
        self.store = OutputStore()

    @property
    def input_file(self) -> Path:
        path = self.config.io.get("input_file", "")
        if not path:
            raise ConfigurationError("No input file given (io.input_file or --input)")
        return Path(path)

    @property
    def output_file(self) -> Path:
        return Path(self.config.io.get("output_file", "deltapt_study.root"))

    @property
    def table_file(self) -> Path:
        out = self.output_file
        return out.with_name(f"{out.stem}_rejection.csv")

    def run(self) -> StudyResult:
        """
        Execute every stage and write the outputs.

        Raises:
            ConfigurationError: No input file configured
            DataLoadError: Input file or tuple missing, unreadable or empty
        """
        result = StudyResult(self.output_file, self.table_file)
        io = self.config.io

        self.logger.info("=" * 60)
        self.logger.info("Delta-pt/pt cut study")
        self.logger.info(f"  Input:  {self.input_file}")
        self.logger.info(f"  Output: {self.output_file}")
        self.logger.info(f"  Flat cuts: {list(self.config.flat_cuts)}")
        self.logger.info(f"  Sigma cuts: {list(self.config.sigma_cuts)}")
        self.logger.info("=" * 60)

        with TupleReader(self.input_file, io["track_tuple"], io["truth_tuple"],
                         self.config.step_size) as reader:
            reader.check_branches(io["track_tuple"], TRACK_BRANCHES)
            reader.check_branches(io["truth_tuple"], TRUTH_BRANCHES)

            truth_spectrum = self.truth_pass(reader, result)
            baseline, flat_bundles = self.flat_pass(reader, result)
            result.bands = self.estimate_bands(baseline)
            sigma_bundles = {}
            if result.bands is not None:
                sigma_bundles = self.sigma_pass(reader, result.bands, result)
            if self.config.boundary_mask.get("enabled", False):
                self.boundary_mask_pass(reader, result)

        self.logger.info("Flat cut rejection factors:")
        result.flat_rejection = self.calculator.rejection_factors(flat_bundles)
        self.logger.info("Sigma cut rejection factors:")
        result.sigma_rejection = self.calculator.rejection_factors(sigma_bundles)

        self.store.add(self.calculator.rejection_graph("grReject_flatDPtCut", result.flat_rejection))
        if result.bands is not None:
            self.store.add(self.calculator.rejection_graph("grReject_sigmaCut", result.sigma_rejection))

        result.efficiencies["all"] = self.calculator.overall_efficiency(truth_spectrum, baseline.pt_matched)
        result.efficiencies.update(self.calculator.efficiencies(truth_spectrum, flat_bundles))
        result.efficiencies.update(self.calculator.efficiencies(truth_spectrum, sigma_bundles))
        self.store.extend(result.efficiencies.values())

        self.store.write(self.output_file)
        result.rejection_table = self.calculator.rejection_table(result.flat_rejection,
                                                                 result.sigma_rejection)
        result.rejection_table.to_csv(self.table_file, index=False)
        self.logger.info(f"Saved rejection table to {self.table_file}")

        if self.config.plots_enabled:
            result.plot_files = self.make_plots(result, flat_bundles, sigma_bundles)

        self._log_summary(result)
        return result

    def truth_pass(self, reader: TupleReader, result: StudyResult) -> Hist1D:
        self.logger.info("Step 1: Filling truth pt spectrum...")
        spectrum = Hist1D("hPtTruth", ";p_{T}^{true} [GeV/c];counts", *self.binning["pt"])
        result.passes.append(fill_truth_spectrum(reader.iterate_truth(TRUTH_BRANCHES), spectrum))
        self.store.add(spectrum)
        return spectrum

    def flat_pass(self, reader: TupleReader, result: StudyResult):
        self.logger.info("Step 2: Classifying tracks with flat delta-pt/pt cuts...")
        baseline = DistributionSet("", self.binning)
        windows = [FlatDeltaPtCut(label, value) for label, value in self.config.flat_cuts.items()]
        bundles = make_bundles(windows, self.binning)
        result.passes.append(run_classification_pass(
            reader.iterate_tracks(TRACK_BRANCHES, "Flat cuts"), self.config.track_cuts, bundles,
            self.config.norm_range, self.config.absolute_delta, baseline=baseline, name="flat"
        ))
        self.store.extend(baseline.objects())
        for bundle in bundles.values():
            self.store.extend(bundle.distributions.objects())
        return baseline, bundles

    def estimate_bands(self, baseline: DistributionSet) -> SigmaBands | None:
        """Sigma envelopes from the baseline distribution; None when they cannot be fit."""
        self.logger.info("Step 3: Estimating sigma bands...")
        estimator = SigmaBandEstimator.from_config(self.config)
        try:
            bands = estimator.estimate(baseline.delta_vs_track)
        except FittingError as e:
            self.logger.error(f"Sigma-band estimation failed, skipping sigma cuts: {e}")
            return None
        self.store.extend(bands.objects())
        return bands

    def sigma_pass(self, reader: TupleReader, bands: SigmaBands, result: StudyResult):
        self.logger.info("Step 4: Classifying tracks with sigma-band cuts...")
        bundles = make_bundles(bands.windows(), self.binning)
        result.passes.append(run_classification_pass(
            reader.iterate_tracks(TRACK_BRANCHES, "Sigma cuts"), self.config.track_cuts, bundles,
            self.config.norm_range, self.config.absolute_delta, name="sigma"
        ))
        for bundle in bundles.values():
            self.store.extend(bundle.distributions.objects())
        return bundles

    def boundary_mask_pass(self, reader: TupleReader, result: StudyResult) -> None:
        self.logger.info("Checking TPC sector-boundary mask...")
        if "phi" not in reader.available_branches(reader.track_tuple):
            self.logger.warning(f"No 'phi' branch in {reader.track_tuple}; skipping boundary mask check")
            return
        settings = self.config.boundary_mask
        check = BoundaryMaskCheck(self.binning, int(settings.get("n_sectors", 12)),
                                  float(settings.get("mask_size", 0.02)), self.config.absolute_delta)
        branches = TRACK_BRANCHES + ("phi",)
        result.passes.append(check.run(reader.iterate_tracks(branches, "Boundary mask"),
                                       self.config.track_cuts))
        self.store.extend(check.objects())

    def make_plots(self, result: StudyResult, flat_bundles, sigma_bundles) -> list[Path]:
        # matplotlib is only imported when plots are requested
        from .modules.plotter import StudyPlotter

        plotter = StudyPlotter(self.output_file.parent / "plots")
        files = [plotter.plot_rejection(result.flat_rejection, result.sigma_rejection)]
        flat = {label: result.efficiencies[label] for label in flat_bundles}
        files.append(plotter.plot_efficiencies(flat, "flat"))
        if result.bands is not None:
            sigma = {label: result.efficiencies[label] for label in sigma_bundles}
            files.append(plotter.plot_efficiencies(sigma, "sigma"))
            files.append(plotter.plot_sigma_bands(result.bands))
        return files

    def _log_summary(self, result: StudyResult) -> None:
        self.logger.info("=" * 60)
        self.logger.info("STUDY COMPLETE" if result.complete else "STUDY FINISHED WITH PARTIAL RESULTS")
        for p in result.passes:
            status = "complete" if p.complete else f"INCOMPLETE ({p.error})"
            self.logger.info(f"  {p.name:14s} {p.n_selected:>10d}/{p.n_rows:<10d} {status}")
        if result.bands is None:
            self.logger.info("  sigma          skipped (no sigma envelopes)")
        self.logger.info(f"  Objects written: {len(self.store)}")
        self.logger.info("=" * 60)
