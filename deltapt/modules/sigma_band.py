"""
Sigma-band estimation

Characterizes how the delta-pt/pt distribution moves and widens with
track pt:

1. Project the (track pt, delta-pt/pt) distribution at a set of pt anchors
2. Fit each projection with a Gaussian seeded with (max, mean, RMS)
3. For every sigma multiplier N, fit mean + N*sigma and mean - N*sigma
   versus pt with a quadratic

The quadratics are the envelopes that define the pt-dependent sigma-band
cuts. Fits that fail to converge keep their starting values and are
flagged; they never abort the study.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit

from .classifier import SigmaBandCut
from .exceptions import FittingError
from .histograms import Graph, Hist1D, Hist2D

logger = logging.getLogger("DeltaPtStudy.SigmaBandEstimator")


def gaussian(x, amp, mean, sigma):
    return amp * np.exp(-0.5 * ((x - mean) / sigma) ** 2)


def quadratic(x, p0, p1, p2):
    return p0 + p1 * x + p2 * x ** 2


def anchor_suffix(anchor: float) -> str:
    """Name suffix for a pt anchor, e.g. 0.5 -> '_pt0p5'."""
    return "_pt" + f"{anchor:g}".replace(".", "p")


@dataclass
class ProjectionSlice:
    """Gaussian fit of the delta-pt/pt projection at one pt anchor."""

    anchor: float
    histogram: Hist1D
    amplitude: float
    mean: float
    sigma: float
    fit_range: tuple[float, float]
    converged: bool

    @property
    def fit_name(self) -> str:
        return "f" + self.histogram.name[1:]

    def to_columns(self) -> dict[str, np.ndarray]:
        return {
            "anchor": np.array([self.anchor]),
            "amplitude": np.array([self.amplitude]),
            "mean": np.array([self.mean]),
            "sigma": np.array([self.sigma]),
            "fit_min": np.array([self.fit_range[0]]),
            "fit_max": np.array([self.fit_range[1]]),
            "converged": np.array([self.converged], dtype=np.int32),
        }


@dataclass
class EnvelopeFunction:
    """Quadratic p0 + p1*pt + p2*pt^2 bounding one side of a sigma band."""

    name: str
    multiplier: float
    side: str
    params: np.ndarray
    fit_range: tuple[float, float]
    converged: bool

    def __call__(self, pt):
        return quadratic(np.asarray(pt, dtype=np.float64), *self.params)

    def to_columns(self) -> dict[str, np.ndarray]:
        return {
            "p0": np.array([self.params[0]]),
            "p1": np.array([self.params[1]]),
            "p2": np.array([self.params[2]]),
            "multiplier": np.array([self.multiplier]),
            "fit_min": np.array([self.fit_range[0]]),
            "fit_max": np.array([self.fit_range[1]]),
            "converged": np.array([self.converged], dtype=np.int32),
        }


@dataclass
class SigmaBands:
    """Estimator output: slices, mean/sigma graphs and per-multiplier envelopes."""

    slices: list[ProjectionSlice]
    mean_graph: Graph
    sigma_graph: Graph
    envelopes: dict[str, tuple[EnvelopeFunction, EnvelopeFunction]] = field(default_factory=dict)
    envelope_graphs: dict[str, tuple[Graph, Graph]] = field(default_factory=dict)

    def windows(self) -> list[SigmaBandCut]:
        """One SigmaBandCut per multiplier, in configuration order."""
        return [SigmaBandCut(label, lo.multiplier, lower=lo, upper=hi)
                for label, (lo, hi) in self.envelopes.items()]

    def objects(self) -> list:
        objects: list[Any] = []
        for s in self.slices:
            objects.extend([s.histogram, _FitRecord(s.fit_name, s.to_columns())])
        objects.extend([self.mean_graph, self.sigma_graph])
        for label, (lo_graph, hi_graph) in self.envelope_graphs.items():
            lo, hi = self.envelopes[label]
            objects.extend([hi_graph, lo_graph, _FitRecord(hi.name, hi.to_columns()),
                            _FitRecord(lo.name, lo.to_columns())])
        return objects


class _FitRecord:
    """Named column bundle so fit parameters land in the output file."""

    def __init__(self, name: str, columns: dict[str, np.ndarray]) -> None:
        self.name = name
        self.columns = columns

    def to_columns(self) -> dict[str, np.ndarray]:
        return self.columns


def fit_gaussian(histogram: Hist1D, fit_range: tuple[float, float]) -> tuple[float, float, float, bool]:
    """
    Chi-square Gaussian fit of a histogram over ``fit_range``.

    Empty bins are skipped and bin errors are sqrt(N). Returns
    (amplitude, mean, sigma, converged); on failure the seeds are returned
    with converged False.
    """
    amp, mean, sigma = histogram.maximum(), histogram.mean(), histogram.rms()
    seeds = (amp, mean, sigma)
    if not np.all(np.isfinite(seeds)) or sigma <= 0:
        return amp, mean, sigma, False

    centers = histogram.centers
    use = (centers >= fit_range[0]) & (centers <= fit_range[1]) & (histogram.counts > 0)
    if np.count_nonzero(use) < 3:
        return amp, mean, sigma, False

    try:
        popt, pcov = curve_fit(gaussian, centers[use], histogram.counts[use], p0=seeds,
                               sigma=np.sqrt(histogram.counts[use]), absolute_sigma=True,
                               maxfev=5000)
    except (RuntimeError, ValueError, OptimizeWarning) as e:
        logger.warning(f"Gaussian fit of {histogram.name} failed: {e}")
        return amp, mean, sigma, False

    converged = bool(np.all(np.isfinite(popt)) and np.all(np.isfinite(pcov)))
    return float(popt[0]), float(popt[1]), float(abs(popt[2])), converged


def fit_quadratic(x: np.ndarray, y: np.ndarray, fit_range: tuple[float, float],
                  guess: Sequence[float], name: str = "") -> tuple[np.ndarray, bool]:
    """
    Least-squares quadratic through the points with x inside ``fit_range``.

    Raises:
        FittingError: Fewer than three usable points
    """
    use = (x >= fit_range[0]) & (x <= fit_range[1]) & np.isfinite(y)
    if np.count_nonzero(use) < 3:
        raise FittingError(
            f"Quadratic fit {name} needs 3 points in {fit_range}, got {np.count_nonzero(use)}"
        )
    guess = np.asarray(guess, dtype=np.float64)
    try:
        popt, pcov = curve_fit(quadratic, x[use], y[use], p0=guess)
    except (RuntimeError, ValueError, OptimizeWarning) as e:
        logger.warning(f"Quadratic fit {name} failed: {e}")
        return guess, False
    converged = bool(np.all(np.isfinite(popt)) and np.all(np.isfinite(pcov)))
    return popt, converged


class SigmaBandEstimator:
    """
    Derive pt-dependent sigma-band envelopes from the baseline
    (track pt, delta-pt/pt) distribution.

    Attributes:
        anchors: pt values at which projections are fit
        sigma_cuts: Ordered ``{label: multiplier}``
        delta_fit_range: delta-pt/pt range of the Gaussian fits
        pt_fit_range: pt range of the envelope fits
        hi_guess, lo_guess: Starting quadratic parameters
    """

    def __init__(self, anchors: Sequence[float], sigma_cuts: dict[str, float],
                 delta_fit_range: tuple[float, float] = (0.0, 0.1),
                 pt_fit_range: tuple[float, float] = (0.5, 40.0),
                 hi_guess: Sequence[float] = (1.0, -1.0, 1.0),
                 lo_guess: Sequence[float] = (1.0, -1.0, 1.0)) -> None:
        self.anchors = [float(a) for a in anchors]
        self.sigma_cuts = dict(sigma_cuts)
        self.delta_fit_range = tuple(delta_fit_range)
        self.pt_fit_range = tuple(pt_fit_range)
        self.hi_guess = list(hi_guess)
        self.lo_guess = list(lo_guess)

    @classmethod
    def from_config(cls, config) -> "SigmaBandEstimator":
        return cls(
            anchors=config.projection["pt_anchors"],
            sigma_cuts=config.sigma_cuts,
            delta_fit_range=tuple(config.projection["delta_fit_range"]),
            pt_fit_range=tuple(config.envelope["pt_fit_range"]),
            hi_guess=config.envelope["hi_guess"],
            lo_guess=config.envelope["lo_guess"],
        )

    def fit_slices(self, delta_vs_track: Hist2D) -> list[ProjectionSlice]:
        """
        Project and fit the delta-pt/pt distribution at every anchor.

        An anchor outside the pt axis gives an empty, non-converged slice
        with NaN mean and sigma, which the envelope fits leave out.
        """
        slices = []
        for anchor in self.anchors:
            name = "hDeltaPtProj" + anchor_suffix(anchor)
            title = ";#deltap_{T}/p_{T}^{reco};counts"
            try:
                projection = delta_vs_track.projection_y(name, anchor, title=title)
            except FittingError as e:
                logger.warning(f"Skipping anchor pt = {anchor}: {e}")
                projection = Hist1D(name, title, edges=delta_vs_track.y_edges)
                slices.append(ProjectionSlice(anchor, projection, 0.0, np.nan, np.nan,
                                              self.delta_fit_range, False))
                continue
            amp, mean, sigma, converged = fit_gaussian(projection, self.delta_fit_range)
            if not converged:
                logger.warning(f"Projection at pt = {anchor} did not converge; "
                               f"keeping mean = {mean:.4g}, sigma = {sigma:.4g}")
            slices.append(ProjectionSlice(anchor, projection, amp, mean, sigma,
                                          self.delta_fit_range, converged))
        logger.info(f"Fit {len(slices)} delta-pt/pt projections")
        return slices

    def estimate(self, delta_vs_track: Hist2D) -> SigmaBands:
        """
        Run the projection fits and the envelope fits.

        Raises:
            FittingError: An envelope has fewer than three usable anchors
        """
        slices = self.fit_slices(delta_vs_track)
        pts = np.array([s.anchor for s in slices])
        means = np.array([s.mean for s in slices])
        sigmas = np.array([s.sigma for s in slices])

        bands = SigmaBands(
            slices=slices,
            mean_graph=Graph("grProjectionMean", pts, means, ";p_{T}^{reco} [GeV/c];#mu"),
            sigma_graph=Graph("grProjectionSigma", pts, sigmas, ";p_{T}^{reco} [GeV/c];#sigma"),
        )

        for label, n_sigma in self.sigma_cuts.items():
            hi_graph = Graph("grMuHiProj" + label, pts, means + n_sigma * sigmas)
            lo_graph = Graph("grMuLoProj" + label, pts, means - n_sigma * sigmas)
            hi_params, hi_ok = fit_quadratic(hi_graph.x, hi_graph.y, self.pt_fit_range,
                                             self.hi_guess, hi_graph.name)
            lo_params, lo_ok = fit_quadratic(lo_graph.x, lo_graph.y, self.pt_fit_range,
                                             self.lo_guess, lo_graph.name)
            hi = EnvelopeFunction("fMuHiProj" + label, n_sigma, "hi", hi_params, self.pt_fit_range, hi_ok)
            lo = EnvelopeFunction("fMuLoProj" + label, n_sigma, "lo", lo_params, self.pt_fit_range, lo_ok)
            bands.envelopes[label] = (lo, hi)
            bands.envelope_graphs[label] = (lo_graph, hi_graph)

        logger.info(f"Created and fit sigma envelopes for {len(self.sigma_cuts)} multipliers")
        return bands
