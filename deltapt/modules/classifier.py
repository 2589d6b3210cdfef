"""
Track classification passes

One classification routine serves both the flat delta-pt/pt cuts and the
pt-dependent sigma bands; the two differ only in the acceptance window
they plug in. Every good track is labelled "normal" when its
reco/true pt fraction lies in the normalization range and "anomalous"
otherwise, and each cut keeps its own counters and distributions.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping

import numpy as np

from .exceptions import RowReadError
from .histograms import Hist1D, Hist2D
from .selection import TrackCuts, good_track_mask

logger = logging.getLogger("DeltaPtStudy.Classifier")

Binning = tuple[int, float, float]

# Leaves identifying the truth particle behind a track
MATCH_FIELDS = ("event", "gtrackID", "gprimary")
TRACK_FIELDS = ("pt", "gpt", "deltapt", "vz", "nintt", "nlmaps", "ntpc", "quality") + MATCH_FIELDS


@dataclass
class ClassificationCounters:
    """Normal/anomalous counts for one cut; summable across chunks or workers."""

    n_normal: int = 0
    n_anomalous: int = 0

    def add(self, n_normal: int, n_anomalous: int) -> None:
        if n_normal < 0 or n_anomalous < 0:
            raise ValueError("Counters can only be incremented")
        self.n_normal += int(n_normal)
        self.n_anomalous += int(n_anomalous)

    @property
    def total(self) -> int:
        return self.n_normal + self.n_anomalous

    def __add__(self, other: "ClassificationCounters") -> "ClassificationCounters":
        return ClassificationCounters(self.n_normal + other.n_normal,
                                      self.n_anomalous + other.n_anomalous)


@dataclass
class TrackQuantities:
    """
    Per-track derived quantities for a chunk of good tracks.

    ``primary``, ``event`` and ``track_id`` describe the matched truth
    particle; they are None when the chunk has no truth-match leaves.
    """

    pt: np.ndarray
    true_pt: np.ndarray
    pt_frac: np.ndarray
    pt_delta: np.ndarray
    primary: np.ndarray | None = None
    event: np.ndarray | None = None
    track_id: np.ndarray | None = None

    @classmethod
    def from_columns(cls, columns: Mapping[str, np.ndarray], absolute_delta: bool = True) -> "TrackQuantities":
        pt = np.asarray(columns["pt"], dtype=np.float64)
        true_pt = np.asarray(columns["gpt"], dtype=np.float64)
        deltapt = np.asarray(columns["deltapt"], dtype=np.float64)
        with np.errstate(divide="ignore", invalid="ignore"):
            pt_frac = pt / true_pt
            pt_delta = deltapt / pt
        if absolute_delta:
            pt_delta = np.abs(pt_delta)
        q = cls(pt, true_pt, pt_frac, pt_delta)
        if all(f in columns for f in MATCH_FIELDS):
            q.event = np.asarray(columns["event"], dtype=np.float64)
            q.track_id = np.asarray(columns["gtrackID"], dtype=np.float64)
            q.primary = np.asarray(columns["gprimary"]) == 1
        return q

    @property
    def matched(self) -> bool:
        return self.primary is not None

    def __len__(self) -> int:
        return len(self.pt)

    def select(self, mask: np.ndarray) -> "TrackQuantities":
        if not self.matched:
            return TrackQuantities(self.pt[mask], self.true_pt[mask],
                                   self.pt_frac[mask], self.pt_delta[mask])
        return TrackQuantities(self.pt[mask], self.true_pt[mask], self.pt_frac[mask],
                               self.pt_delta[mask], self.primary[mask], self.event[mask],
                               self.track_id[mask])


def normal_mask(pt_frac: np.ndarray, norm_range: tuple[float, float]) -> np.ndarray:
    """Tracks whose reco/true pt fraction lies in the closed normalization range."""
    return (pt_frac >= norm_range[0]) & (pt_frac <= norm_range[1])


class DistributionSet:
    """
    The distributions filled for one cut (or for no cut), plus the
    de-duplicated true pt of matched primaries used for efficiencies.

    Object names are the base name plus the cut suffix, so the
    baseline set (empty suffix) and every cut set never collide.
    """

    def __init__(self, suffix: str, binning: Mapping[str, Binning]) -> None:
        self.suffix = suffix
        pt, frac, delta = binning["pt"], binning["frac"], binning["delta"]
        self.pt_delta = Hist1D("hPtDelta" + suffix, ";#deltap_{T}/p_{T}^{reco};counts", *delta)
        self.pt_track = Hist1D("hPtTrack" + suffix, ";p_{T}^{reco} [GeV/c];counts", *pt)
        self.pt_frac = Hist1D("hPtFrac" + suffix, ";p_{T}^{reco}/p_{T}^{true};counts", *frac)
        self.pt_true = Hist1D("hPtTrkTru" + suffix, ";p_{T}^{true} [GeV/c];counts", *pt)
        self.delta_vs_frac = Hist2D("hPtDeltaVsFrac" + suffix,
                                    ";p_{T}^{reco}/p_{T}^{true};#deltap_{T}/p_{T}^{reco}", frac, delta)
        self.delta_vs_true = Hist2D("hPtDeltaVsTrue" + suffix,
                                    ";p_{T}^{true} [GeV/c];#deltap_{T}/p_{T}^{reco}", pt, delta)
        self.delta_vs_track = Hist2D("hPtDeltaVsTrack" + suffix,
                                     ";p_{T}^{reco} [GeV/c];#deltap_{T}/p_{T}^{reco}", pt, delta)
        self.true_vs_track = Hist2D("hPtTrueVsTrack" + suffix,
                                    ";p_{T}^{reco} [GeV/c];p_{T}^{true} [GeV/c]", pt, pt)
        self.pt_matched = Hist1D("hPtTrkTruMatch" + suffix,
                                 ";p_{T}^{true} [GeV/c];matched primaries", *pt)
        self._matched_ids: set[tuple[float, float]] = set()

    def fill_matched(self, q: TrackQuantities) -> None:
        """
        Fill the true pt of each primary particle the first time one of
        its tracks is seen, so duplicate tracks are counted once.
        """
        if not q.matched or not np.any(q.primary):
            return
        keys = np.column_stack([q.event[q.primary], q.track_id[q.primary]])
        keys, first = np.unique(keys, axis=0, return_index=True)
        true_pt = q.true_pt[q.primary][first]
        ids = [tuple(k) for k in keys.tolist()]
        fresh = np.array([k not in self._matched_ids for k in ids], dtype=bool)
        self._matched_ids.update(ids)
        self.pt_matched.fill(true_pt[fresh])

    def fill(self, q: TrackQuantities) -> None:
        self.pt_delta.fill(q.pt_delta)
        self.pt_track.fill(q.pt)
        self.pt_frac.fill(q.pt_frac)
        self.pt_true.fill(q.true_pt)
        self.delta_vs_frac.fill(q.pt_frac, q.pt_delta)
        self.delta_vs_true.fill(q.true_pt, q.pt_delta)
        self.delta_vs_track.fill(q.pt, q.pt_delta)
        self.true_vs_track.fill(q.pt, q.true_pt)
        self.fill_matched(q)

    def objects(self) -> list:
        return [self.pt_delta, self.pt_track, self.pt_frac, self.pt_true,
                self.delta_vs_frac, self.delta_vs_true, self.delta_vs_track, self.true_vs_track,
                self.pt_matched]


class AcceptanceWindow(ABC):
    """Maps a track's pt to the [lo, hi] range of accepted delta-pt/pt."""

    def __init__(self, label: str, value: float) -> None:
        self.label = label
        self.value = value

    @abstractmethod
    def bounds(self, pt: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Lower and upper delta-pt/pt limit at each pt."""

    @abstractmethod
    def accepts(self, pt: np.ndarray, pt_delta: np.ndarray) -> np.ndarray:
        """Boolean mask of the tracks inside the window."""


class FlatDeltaPtCut(AcceptanceWindow):
    """Fixed threshold: accept ``pt_delta < threshold``."""

    def bounds(self, pt):
        pt = np.asarray(pt, dtype=np.float64)
        return np.full_like(pt, -np.inf), np.full_like(pt, self.value)

    def accepts(self, pt, pt_delta):
        return np.asarray(pt_delta) < self.value


class SigmaBandCut(AcceptanceWindow):
    """pt-dependent band: accept ``lower(pt) <= pt_delta <= upper(pt)``."""

    def __init__(self, label: str, multiplier: float,
                 lower: Callable[[np.ndarray], np.ndarray],
                 upper: Callable[[np.ndarray], np.ndarray]) -> None:
        super().__init__(label, multiplier)
        self.lower = lower
        self.upper = upper

    def bounds(self, pt):
        pt = np.asarray(pt, dtype=np.float64)
        return self.lower(pt), self.upper(pt)

    def accepts(self, pt, pt_delta):
        lo, hi = self.bounds(pt)
        pt_delta = np.asarray(pt_delta)
        return (pt_delta >= lo) & (pt_delta <= hi)


@dataclass
class CutBundle:
    """Everything owned by one cut: its window, counters and distributions."""

    window: AcceptanceWindow
    distributions: DistributionSet
    counters: ClassificationCounters = field(default_factory=ClassificationCounters)

    @property
    def label(self) -> str:
        return self.window.label


@dataclass
class PassResult:
    """Bookkeeping for one pass over a tuple."""

    name: str
    n_rows: int = 0
    n_selected: int = 0
    complete: bool = True
    error: str | None = None


def make_bundles(windows: Iterable[AcceptanceWindow], binning: Mapping[str, Binning]) -> dict[str, CutBundle]:
    """Ordered ``{label: CutBundle}`` for a list of windows."""
    return {w.label: CutBundle(w, DistributionSet(w.label, binning)) for w in windows}


def classify(q: TrackQuantities, bundles: Mapping[str, CutBundle],
             norm_range: tuple[float, float]) -> None:
    """
    Classify a chunk of good tracks against every cut independently.

    A track may satisfy several cuts; within one cut it is counted
    exactly once, as normal or anomalous.
    """
    is_normal = normal_mask(q.pt_frac, norm_range)
    for bundle in bundles.values():
        accepted = bundle.window.accepts(q.pt, q.pt_delta)
        n_normal = int(np.count_nonzero(accepted & is_normal))
        n_anomalous = int(np.count_nonzero(accepted & ~is_normal))
        bundle.counters.add(n_normal, n_anomalous)
        bundle.distributions.fill(q.select(accepted))


def read_columns(chunk, fields: Iterable[str]) -> dict[str, np.ndarray]:
    return {f: np.asarray(chunk[f], dtype=np.float64) for f in fields}


def run_classification_pass(chunks: Iterable, track_cuts: TrackCuts,
                            bundles: Mapping[str, CutBundle], norm_range: tuple[float, float],
                            absolute_delta: bool = True, baseline: DistributionSet | None = None,
                            name: str = "classification") -> PassResult:
    """
    Stream track chunks through the quality selector and the classifier.

    A RowReadError stops this pass only; counters and distributions keep
    what was filled before the failure and the result is marked incomplete.
    """
    result = PassResult(name)
    try:
        for chunk in chunks:
            columns = read_columns(chunk, TRACK_FIELDS)
            result.n_rows += len(columns["pt"])
            good = np.asarray(good_track_mask(columns, track_cuts), dtype=bool)
            q = TrackQuantities.from_columns(columns, absolute_delta).select(good)
            result.n_selected += len(q)
            if baseline is not None:
                baseline.fill(q)
            classify(q, bundles, norm_range)
    except RowReadError as e:
        logger.error(f"{name} pass aborted: {e}")
        result.complete = False
        result.error = str(e)

    logger.info(f"{name} pass: {result.n_selected}/{result.n_rows} good tracks")
    return result


def fill_truth_spectrum(chunks: Iterable, spectrum: Hist1D, name: str = "truth") -> PassResult:
    """Fill the true pt of every primary truth particle into ``spectrum``."""
    result = PassResult(name)
    try:
        for chunk in chunks:
            columns = read_columns(chunk, ("gpt", "gprimary"))
            result.n_rows += len(columns["gpt"])
            primary = columns["gprimary"] == 1
            spectrum.fill(columns["gpt"][primary])
            result.n_selected += int(np.count_nonzero(primary))
    except RowReadError as e:
        logger.error(f"{name} pass aborted: {e}")
        result.complete = False
        result.error = str(e)

    logger.info(f"{name} pass: {result.n_selected}/{result.n_rows} primary particles")
    return result
