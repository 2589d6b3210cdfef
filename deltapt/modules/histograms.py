"""
Binned accumulators for the cut study

Lightweight numpy-backed 1D/2D histograms and point graphs. They are
plain values owned by whoever creates them; nothing is registered
globally, and they reach the output file only through OutputStore.
"""

from __future__ import annotations

import logging

import numpy as np

from .exceptions import EfficiencyError, FittingError


def _as_array(values) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


class Hist1D:
    """
    Fixed-binning 1D histogram.

    Attributes:
        name: Unique object name in the output file
        title: ROOT-style title string ("title;x-axis;y-axis")
        edges: Bin edges (n_bins + 1)
        counts: Sum of weights per bin
        sumw2: Sum of squared weights per bin
        underflow, overflow: Weight outside the axis range
    """

    def __init__(self, name: str, title: str, n_bins: int = None, low: float = None,
                 high: float = None, edges=None) -> None:
        self.name = name
        self.title = title
        if edges is None:
            edges = np.linspace(low, high, int(n_bins) + 1)
        self.edges = _as_array(edges)
        self.counts = np.zeros(len(self.edges) - 1)
        self.sumw2 = np.zeros(len(self.edges) - 1)
        self.underflow = 0.0
        self.overflow = 0.0

    @property
    def n_bins(self) -> int:
        return len(self.counts)

    @property
    def centers(self) -> np.ndarray:
        return 0.5 * (self.edges[:-1] + self.edges[1:])

    @property
    def entries(self) -> float:
        return float(self.counts.sum() + self.underflow + self.overflow)

    def fill(self, values, weights=None) -> None:
        """Fill half-open bins [lo, hi); x equal to the upper edge is overflow."""
        values = _as_array(values)
        weights = np.ones_like(values) if weights is None else _as_array(weights)
        in_range = (values >= self.edges[0]) & (values < self.edges[-1])
        counts, _ = np.histogram(values[in_range], bins=self.edges, weights=weights[in_range])
        sumw2, _ = np.histogram(values[in_range], bins=self.edges, weights=weights[in_range] ** 2)
        self.counts += counts
        self.sumw2 += sumw2
        self.underflow += float(weights[values < self.edges[0]].sum())
        self.overflow += float(weights[values >= self.edges[-1]].sum())

    def maximum(self) -> float:
        return float(self.counts.max()) if self.n_bins else 0.0

    def mean(self) -> float:
        """Bin-center mean of the in-range contents (NaN if empty)."""
        total = self.counts.sum()
        if total <= 0:
            return float("nan")
        return float(np.sum(self.counts * self.centers) / total)

    def rms(self) -> float:
        """Bin-center standard deviation of the in-range contents (NaN if empty)."""
        total = self.counts.sum()
        if total <= 0:
            return float("nan")
        mean = np.sum(self.counts * self.centers) / total
        return float(np.sqrt(np.sum(self.counts * (self.centers - mean) ** 2) / total))

    def rebin(self, factor: int, name: str | None = None) -> "Hist1D":
        """
        Merge ``factor`` adjacent bins into a new histogram.

        Trailing bins that do not fill a whole group are moved to the
        overflow, matching how ROOT rebins an indivisible axis.
        """
        factor = int(factor)
        if factor < 1:
            raise EfficiencyError(f"Rebin factor must be >= 1, got {factor}")
        n_groups = self.n_bins // factor
        used = n_groups * factor
        rebinned = Hist1D(name or self.name, self.title, edges=self.edges[:used + 1:factor])
        rebinned.counts = self.counts[:used].reshape(n_groups, factor).sum(axis=1)
        rebinned.sumw2 = self.sumw2[:used].reshape(n_groups, factor).sum(axis=1)
        rebinned.underflow = self.underflow
        rebinned.overflow = self.overflow + float(self.counts[used:].sum())
        if used < self.n_bins:
            logging.getLogger("DeltaPtStudy.Histograms").warning(
                f"{self.name}: rebinning by {factor} moved the last {self.n_bins - used} bin(s) to overflow"
            )
        return rebinned

    def same_binning(self, other: "Hist1D") -> bool:
        return self.edges.shape == other.edges.shape and np.allclose(self.edges, other.edges)

    def to_numpy(self) -> tuple[np.ndarray, np.ndarray]:
        return self.counts.copy(), self.edges.copy()


class Hist2D:
    """Fixed-binning 2D histogram; x is the first fill argument."""

    def __init__(self, name: str, title: str, x_bins: tuple[int, float, float],
                 y_bins: tuple[int, float, float]) -> None:
        self.name = name
        self.title = title
        self.x_edges = np.linspace(x_bins[1], x_bins[2], int(x_bins[0]) + 1)
        self.y_edges = np.linspace(y_bins[1], y_bins[2], int(y_bins[0]) + 1)
        self.counts = np.zeros((len(self.x_edges) - 1, len(self.y_edges) - 1))

    @property
    def entries(self) -> float:
        return float(self.counts.sum())

    def fill(self, x, y) -> None:
        """Fill half-open bins on both axes; points outside are dropped."""
        x, y = _as_array(x), _as_array(y)
        in_range = ((x >= self.x_edges[0]) & (x < self.x_edges[-1])
                    & (y >= self.y_edges[0]) & (y < self.y_edges[-1]))
        counts, _, _ = np.histogram2d(x[in_range], y[in_range],
                                      bins=[self.x_edges, self.y_edges])
        self.counts += counts

    def find_x_bin(self, x: float) -> int:
        if x < self.x_edges[0] or x >= self.x_edges[-1]:
            return -1
        return int(np.searchsorted(self.x_edges, x, side="right") - 1)

    def projection_y(self, name: str, x: float, title: str = "") -> Hist1D:
        """
        Project the y distribution of the x bin containing ``x``.

        Raises:
            FittingError: If x lies outside the x axis
        """
        ix = self.find_x_bin(x)
        if ix < 0:
            raise FittingError(
                f"Projection point {x} outside x axis "
                f"[{self.x_edges[0]}, {self.x_edges[-1]})"
            )
        projection = Hist1D(name, title or self.title, edges=self.y_edges)
        projection.counts = self.counts[ix].copy()
        projection.sumw2 = self.counts[ix].copy()
        return projection

    def to_numpy(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self.counts.copy(), self.x_edges.copy(), self.y_edges.copy()


class Graph:
    """Set of (x, y) points, the numpy stand-in for a TGraph."""

    def __init__(self, name: str, x, y, title: str = "") -> None:
        self.name = name
        self.title = title
        self.x = _as_array(x)
        self.y = _as_array(y)
        if self.x.shape != self.y.shape:
            raise ValueError(f"Graph '{name}' has {len(self.x)} x and {len(self.y)} y values")

    def __len__(self) -> int:
        return len(self.x)

    def to_columns(self) -> dict[str, np.ndarray]:
        return {"x": self.x.copy(), "y": self.y.copy()}
