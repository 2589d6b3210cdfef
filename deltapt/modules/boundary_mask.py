"""
TPC sector-boundary masking check

Compares the delta-pt/pt distribution of good tracks before masking
the TPC sector boundaries in phi with the tracks left in and the
tracks cut out by the mask.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

import numpy as np

from .classifier import PassResult, TrackQuantities, read_columns
from .exceptions import RowReadError
from .histograms import Hist1D, Hist2D
from .selection import TrackCuts, good_track_mask

logger = logging.getLogger("DeltaPtStudy.BoundaryMask")

MASK_LABELS = ("_beforeMask", "_afterMask_leftIn", "_afterMask_cutOut")


def sector_boundaries(n_sectors: int = 12) -> np.ndarray:
    """Phi of the sector boundaries, -pi + (2k+1)*pi/n for k = 0..n-1."""
    k = np.arange(n_sectors)
    return -np.pi + (2 * k + 1) * np.pi / n_sectors


def in_boundary_mask(phi, boundaries: np.ndarray, mask_size: float) -> np.ndarray:
    """True for phi strictly within mask_size/2 of any sector boundary."""
    phi = np.asarray(phi, dtype=np.float64)
    distance = np.abs(phi[:, np.newaxis] - boundaries[np.newaxis, :])
    return np.any(distance < 0.5 * mask_size, axis=1)


class MaskHistograms:
    """Distributions filled for one side of the mask."""

    def __init__(self, suffix: str, binning: Mapping[str, tuple[int, float, float]]) -> None:
        pt, frac, delta, phi = binning["pt"], binning["frac"], binning["delta"], binning["phi"]
        self.pt_reco = Hist1D("hPtReco" + suffix, ";p_{T}^{reco} [GeV/c];counts", *pt)
        self.pt_true = Hist1D("hPtTrue" + suffix, ";p_{T}^{true} [GeV/c];counts", *pt)
        self.pt_frac = Hist1D("hPtFrac" + suffix, ";p_{T}^{reco}/p_{T}^{true};counts", *frac)
        self.phi = Hist1D("hPhi" + suffix, ";#varphi^{trk};counts", *phi)
        self.delta = Hist1D("hDeltaPt" + suffix, ";#deltap_{T}^{reco}/p_{T}^{reco};counts", *delta)
        self.delta_vs_phi = Hist2D("hDPtVsPhi" + suffix,
                                   ";#varphi^{trk};#deltap_{T}^{reco}/p_{T}^{reco}", phi, delta)

    def fill(self, q: TrackQuantities, phi: np.ndarray) -> None:
        self.pt_reco.fill(q.pt)
        self.pt_true.fill(q.true_pt)
        self.pt_frac.fill(q.pt_frac)
        self.phi.fill(phi)
        self.delta.fill(q.pt_delta)
        self.delta_vs_phi.fill(phi, q.pt_delta)

    def objects(self) -> list:
        return [self.pt_reco, self.pt_true, self.pt_frac, self.phi, self.delta, self.delta_vs_phi]


class BoundaryMaskCheck:
    """Fill before/left-in/cut-out distributions for the phi boundary mask."""

    def __init__(self, binning: Mapping[str, tuple[int, float, float]], n_sectors: int = 12,
                 mask_size: float = 0.02, absolute_delta: bool = True) -> None:
        self.boundaries = sector_boundaries(n_sectors)
        self.mask_size = mask_size
        self.absolute_delta = absolute_delta
        self.histograms = {label: MaskHistograms(label, binning) for label in MASK_LABELS}

    def fill(self, columns: Mapping[str, np.ndarray], good: np.ndarray) -> None:
        q = TrackQuantities.from_columns(columns, self.absolute_delta).select(good)
        phi = columns["phi"][good]
        masked = in_boundary_mask(phi, self.boundaries, self.mask_size)
        before, left_in, cut_out = (self.histograms[label] for label in MASK_LABELS)
        before.fill(q, phi)
        left_in.fill(q.select(~masked), phi[~masked])
        cut_out.fill(q.select(masked), phi[masked])

    def run(self, chunks: Iterable, track_cuts: TrackCuts) -> PassResult:
        """Stream track chunks (with ``phi``) through the mask check."""
        result = PassResult("boundary mask")
        fields = ("pt", "gpt", "deltapt", "phi", "vz", "nintt", "nlmaps", "ntpc", "quality")
        try:
            for chunk in chunks:
                columns = read_columns(chunk, fields)
                good = np.asarray(good_track_mask(columns, track_cuts), dtype=bool)
                result.n_rows += len(good)
                result.n_selected += int(np.count_nonzero(good))
                self.fill(columns, good)
        except RowReadError as e:
            logger.error(f"Boundary mask pass aborted: {e}")
            result.complete = False
            result.error = str(e)

        n_out = self.histograms["_afterMask_cutOut"].phi.entries
        logger.info(f"Boundary mask: {n_out:.0f}/{result.n_selected} good tracks in masked regions")
        return result

    def objects(self) -> list:
        return [obj for hists in self.histograms.values() for obj in hists.objects()]
