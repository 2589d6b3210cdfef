"""
Rejection factor and efficiency calculation

Rejection factor of a cut:

    R = N_normal / N_anomalous

Efficiency of a cut versus true pt, per bin:

    eps = N(primaries with a track passing the cut) / N(primary truth particles)

The numerator counts each matched primary particle once per cut, however
many of its tracks pass, so eps stays within [0, 1].

A zero denominator gives an *undefined* result. Undefined rejection
factors carry ``value = None``; undefined efficiency bins are NaN and
flagged False in ``EfficiencyCurve.defined``. Neither is ever reported
as 0 or infinity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

import numpy as np
import pandas as pd

from .classifier import ClassificationCounters, CutBundle
from .exceptions import EfficiencyError
from .histograms import Graph, Hist1D


@dataclass(frozen=True)
class RejectionFactor:
    """Normal-to-anomalous ratio for one cut."""

    label: str
    cut_value: float
    n_normal: int
    n_anomalous: int

    @property
    def is_defined(self) -> bool:
        return self.n_anomalous > 0

    @property
    def value(self) -> float | None:
        if not self.is_defined:
            return None
        return self.n_normal / self.n_anomalous

    def as_float(self) -> float:
        """Value for graphs and tables, NaN when undefined."""
        value = self.value
        return float("nan") if value is None else float(value)


def rejection_factor(label: str, cut_value: float, counters: ClassificationCounters) -> RejectionFactor:
    return RejectionFactor(label, float(cut_value), counters.n_normal, counters.n_anomalous)


@dataclass
class EfficiencyCurve:
    """
    Per-bin efficiency versus true pt.

    Attributes:
        name: Output object name
        edges: Bin edges after any rebinning
        values: Efficiency per bin, NaN where undefined
        errors: Binomial uncertainty per bin, NaN where undefined
        defined: True where the truth bin is non-empty
        numerator, denominator: Counts the ratio was built from
    """

    name: str
    edges: np.ndarray
    values: np.ndarray
    errors: np.ndarray
    defined: np.ndarray
    numerator: np.ndarray
    denominator: np.ndarray

    @property
    def centers(self) -> np.ndarray:
        return 0.5 * (self.edges[:-1] + self.edges[1:])

    def to_numpy(self) -> tuple[np.ndarray, np.ndarray]:
        return self.values.copy(), self.edges.copy()


def compute_efficiency(numerator: Hist1D, denominator: Hist1D, name: str,
                       rebin_factor: int | None = None) -> EfficiencyCurve:
    """
    Bin-by-bin ratio of two histograms with identical binning.

    Args:
        numerator: Matched primary particles with a track passing a cut, binned in true pt
        denominator: Primary truth particles, same binning
        name: Name of the resulting curve
        rebin_factor: Merge this many adjacent bins of both inputs first

    Raises:
        EfficiencyError: Binning mismatch or invalid rebin factor
    """
    if not numerator.same_binning(denominator):
        raise EfficiencyError(
            f"Cannot divide {numerator.name} by {denominator.name}: binning differs"
        )
    if rebin_factor is not None and rebin_factor != 1:
        numerator = numerator.rebin(rebin_factor)
        denominator = denominator.rebin(rebin_factor)

    num = numerator.counts
    den = denominator.counts
    defined = den > 0
    values = np.full(len(den), np.nan)
    errors = np.full(len(den), np.nan)
    values[defined] = num[defined] / den[defined]
    clipped = np.clip(values[defined], 0.0, 1.0)
    errors[defined] = np.sqrt(clipped * (1.0 - clipped) / den[defined])

    if np.any(values[defined] > 1.0):
        logging.getLogger("DeltaPtStudy.EfficiencyCalculator").warning(
            f"{name}: efficiency above 1 in {int(np.count_nonzero(values[defined] > 1.0))} bin(s); "
            "the track tuple matches primaries missing from the truth tuple"
        )

    return EfficiencyCurve(name, numerator.edges.copy(), values, errors, defined,
                           num.copy(), den.copy())


class EfficiencyCalculator:
    """
    Derive rejection factors and efficiency curves from the classifier passes.

    Attributes:
        rebin_factor: Bins merged before every efficiency ratio (1 = none)
    """

    def __init__(self, rebin: bool = True, rebin_factor: int = 5) -> None:
        self.rebin_factor = int(rebin_factor) if rebin else 1
        if self.rebin_factor < 1:
            raise EfficiencyError(f"Rebin factor must be >= 1, got {rebin_factor}")
        self.logger = logging.getLogger("DeltaPtStudy.EfficiencyCalculator")

    @classmethod
    def from_config(cls, config) -> "EfficiencyCalculator":
        return cls(bool(config.efficiency.get("rebin", False)),
                   int(config.efficiency.get("rebin_factor", 1)))

    def rejection_factors(self, bundles: Mapping[str, CutBundle]) -> list[RejectionFactor]:
        """One RejectionFactor per cut, in cut order."""
        factors = [rejection_factor(label, b.window.value, b.counters) for label, b in bundles.items()]
        for f in factors:
            shown = f"{f.value:.4g}" if f.is_defined else "undefined"
            self.logger.info(
                f"  {f.label}: n(Norm, Weird) = ({f.n_normal}, {f.n_anomalous}), rejection = {shown}"
            )
        return factors

    @staticmethod
    def rejection_graph(name: str, factors: list[RejectionFactor]) -> Graph:
        """Cut value versus rejection; undefined points are NaN."""
        return Graph(name, [f.cut_value for f in factors], [f.as_float() for f in factors],
                     ";cut;rejection factor")

    def efficiencies(self, truth_spectrum: Hist1D, bundles: Mapping[str, CutBundle],
                     base_name: str = "hEff") -> dict[str, EfficiencyCurve]:
        """Efficiency curve per cut, keyed by cut label."""
        return {
            label: compute_efficiency(b.distributions.pt_matched, truth_spectrum,
                                      base_name + label, self.rebin_factor)
            for label, b in bundles.items()
        }

    def overall_efficiency(self, truth_spectrum: Hist1D, matched_true_pt: Hist1D) -> EfficiencyCurve:
        """Efficiency of all good tracks before any delta-pt/pt cut."""
        return compute_efficiency(matched_true_pt, truth_spectrum, "hEff", self.rebin_factor)

    @staticmethod
    def rejection_table(flat: list[RejectionFactor], sigma: list[RejectionFactor]) -> pd.DataFrame:
        """Rejection factors of both cut families as one table."""
        rows = []
        for kind, factors in (("flat", flat), ("sigma", sigma)):
            for f in factors:
                rows.append({
                    "kind": kind,
                    "label": f.label,
                    "cut_value": f.cut_value,
                    "n_normal": f.n_normal,
                    "n_anomalous": f.n_anomalous,
                    "rejection": f.value,
                    "defined": f.is_defined,
                })
        return pd.DataFrame(rows, columns=["kind", "label", "cut_value", "n_normal",
                                           "n_anomalous", "rejection", "defined"])
