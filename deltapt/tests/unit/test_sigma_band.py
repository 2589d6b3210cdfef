"""
Unit tests for the sigma-band estimator.

Uses synthetic (track pt, delta-pt/pt) distributions with a known
Gaussian shape so the fitted means, widths and envelopes can be
checked against the generating values.
"""

from __future__ import annotations

import numpy as np
import pytest

from deltapt.modules.exceptions import FittingError
from deltapt.modules.histograms import Hist1D, Hist2D
from deltapt.modules.sigma_band import (
    SigmaBandEstimator,
    anchor_suffix,
    fit_gaussian,
    fit_quadratic,
    quadratic,
)

MEAN = 0.04
SIGMA = 0.008


@pytest.fixture
def gaussian_delta_vs_pt() -> Hist2D:
    """20000 tracks, pt uniform in [0, 10], delta-pt/pt ~ N(0.04, 0.008)."""
    rng = np.random.default_rng(11)
    hist = Hist2D("hPtDeltaVsTrack", "", (10, 0.0, 10.0), (200, 0.0, 0.2))
    hist.fill(rng.uniform(0.0, 10.0, 20000), rng.normal(MEAN, SIGMA, 20000))
    return hist


@pytest.fixture
def estimator() -> SigmaBandEstimator:
    return SigmaBandEstimator(
        anchors=[1.0, 3.0, 5.0, 7.0, 9.0],
        sigma_cuts={"_sigDPt1": 1.0, "_sigDPt2": 2.0, "_sigDPt3": 3.0},
        delta_fit_range=(0.0, 0.1),
        pt_fit_range=(0.5, 10.0),
    )


@pytest.mark.unit
class TestGaussianFit:
    """Test projection fits."""

    def test_recovers_mean_and_sigma(self, gaussian_delta_vs_pt, estimator) -> None:
        """Fitted parameters match the generating Gaussian within a few percent."""
        slices = estimator.fit_slices(gaussian_delta_vs_pt)

        assert len(slices) == 5
        for s in slices:
            assert s.converged
            assert abs(s.mean - MEAN) < 0.05 * MEAN
            assert abs(s.sigma - SIGMA) < 0.1 * SIGMA
            assert s.sigma > 0

    def test_single_anchor_recovery(self) -> None:
        """20000 tracks in the anchor's pt bin recover mean and sigma within 3%."""
        rng = np.random.default_rng(29)
        hist = Hist2D("hPtDeltaVsTrack", "", (10, 0.0, 10.0), (200, 0.0, 0.2))
        hist.fill(rng.uniform(5.0, 6.0, 20000), rng.normal(MEAN, SIGMA, 20000))

        estimator = SigmaBandEstimator([5.5], {"_sigDPt1": 1.0}, delta_fit_range=(0.0, 0.1))
        (s,) = estimator.fit_slices(hist)

        assert s.histogram.entries == pytest.approx(20000, abs=10)
        assert s.converged
        assert s.mean == pytest.approx(MEAN, rel=0.03)
        assert s.sigma == pytest.approx(SIGMA, rel=0.03)

    def test_projection_names(self, gaussian_delta_vs_pt, estimator) -> None:
        slices = estimator.fit_slices(gaussian_delta_vs_pt)
        assert [s.histogram.name for s in slices] == [
            "hDeltaPtProj_pt1", "hDeltaPtProj_pt3", "hDeltaPtProj_pt5",
            "hDeltaPtProj_pt7", "hDeltaPtProj_pt9",
        ]
        assert slices[0].fit_name == "fDeltaPtProj_pt1"

    def test_anchor_suffix(self) -> None:
        assert anchor_suffix(0.5) == "_pt0p5"
        assert anchor_suffix(40.0) == "_pt40"

    def test_too_few_bins_not_converged(self) -> None:
        """A two-bin projection keeps its seed values."""
        hist = Hist1D("hDeltaPtProj", "", 100, 0.0, 0.1)
        hist.fill([0.0105, 0.0105, 0.0205])
        amp, mean, sigma, converged = fit_gaussian(hist, (0.0, 0.1))
        assert not converged
        assert amp == hist.maximum()
        assert mean == pytest.approx(hist.mean())

    def test_empty_projection_not_converged(self) -> None:
        hist = Hist1D("hDeltaPtProj", "", 100, 0.0, 0.1)
        amp, mean, sigma, converged = fit_gaussian(hist, (0.0, 0.1))
        assert not converged
        assert np.isnan(mean)


@pytest.mark.unit
class TestEnvelopes:
    """Test the mean +- N sigma envelope fits."""

    def test_envelopes_follow_flat_band(self, gaussian_delta_vs_pt, estimator) -> None:
        """For a pt-independent Gaussian the envelopes are flat at mean +- N sigma."""
        bands = estimator.estimate(gaussian_delta_vs_pt)

        assert list(bands.envelopes) == ["_sigDPt1", "_sigDPt2", "_sigDPt3"]
        for label, n_sigma in estimator.sigma_cuts.items():
            lo, hi = bands.envelopes[label]
            for pt in (2.0, 5.0, 8.0):
                assert hi(pt) == pytest.approx(MEAN + n_sigma * SIGMA, abs=0.003)
                assert lo(pt) == pytest.approx(MEAN - n_sigma * SIGMA, abs=0.003)

    def test_windows_in_configuration_order(self, gaussian_delta_vs_pt, estimator) -> None:
        bands = estimator.estimate(gaussian_delta_vs_pt)
        windows = bands.windows()
        assert [w.label for w in windows] == ["_sigDPt1", "_sigDPt2", "_sigDPt3"]
        assert [w.value for w in windows] == [1.0, 2.0, 3.0]

        # A track at the fitted mean lies inside every band
        pt = np.array([5.0])
        for w in windows:
            assert w.accepts(pt, np.array([MEAN]))[0]

    def test_output_object_names(self, gaussian_delta_vs_pt, estimator) -> None:
        names = [obj.name for obj in estimator.estimate(gaussian_delta_vs_pt).objects()]
        for expected in ("grProjectionMean", "grProjectionSigma", "grMuHiProj_sigDPt2",
                         "grMuLoProj_sigDPt2", "fMuHiProj_sigDPt2", "fMuLoProj_sigDPt2",
                         "hDeltaPtProj_pt5", "fDeltaPtProj_pt5"):
            assert expected in names
        assert len(names) == len(set(names))

    def test_empty_slices_left_out(self, estimator) -> None:
        """Anchors without entries are skipped, three populated anchors still fit."""
        rng = np.random.default_rng(5)
        hist = Hist2D("hPtDeltaVsTrack", "", (10, 0.0, 10.0), (200, 0.0, 0.2))
        hist.fill(rng.uniform(0.0, 6.0, 12000), rng.normal(MEAN, SIGMA, 12000))

        bands = estimator.estimate(hist)
        converged = [s.converged for s in bands.slices]
        assert converged == [True, True, True, False, False]
        lo, hi = bands.envelopes["_sigDPt1"]
        assert np.isfinite(hi.params).all()

    def test_too_few_points_raises(self, estimator) -> None:
        """Fewer than three populated anchors cannot constrain a quadratic."""
        rng = np.random.default_rng(5)
        hist = Hist2D("hPtDeltaVsTrack", "", (10, 0.0, 10.0), (200, 0.0, 0.2))
        hist.fill(rng.uniform(0.0, 4.0, 8000), rng.normal(MEAN, SIGMA, 8000))

        with pytest.raises(FittingError):
            estimator.estimate(hist)

    def test_quadratic_fit_recovers_parameters(self) -> None:
        x = np.linspace(0.5, 40.0, 8)
        y = quadratic(x, 0.02, 0.001, -1e-5)
        params, converged = fit_quadratic(x, y, (0.5, 40.0), [1.0, -1.0, 1.0])
        assert converged
        assert np.allclose(quadratic(x, *params), y, atol=1e-6)

    def test_anchor_outside_axis_is_skipped(self) -> None:
        """An anchor beyond the pt axis gives a NaN slice instead of an error."""
        hist = Hist2D("hPtDeltaVsTrack", "", (10, 0.0, 10.0), (200, 0.0, 0.2))
        estimator = SigmaBandEstimator([50.0], {"_sigDPt1": 1.0})
        slices = estimator.fit_slices(hist)

        assert len(slices) == 1
        assert not slices[0].converged
        assert np.isnan(slices[0].mean) and np.isnan(slices[0].sigma)
        assert slices[0].histogram.name == "hDeltaPtProj_pt50"
        assert slices[0].histogram.entries == 0.0

    def test_anchor_on_upper_edge_keeps_other_bands(self) -> None:
        """The default anchors on a 0-40 GeV/c axis: 40 is skipped, the rest still fit."""
        rng = np.random.default_rng(17)
        hist = Hist2D("hPtDeltaVsTrack", "", (40, 0.0, 40.0), (200, 0.0, 0.2))
        hist.fill(rng.uniform(0.0, 40.0, 80000), rng.normal(MEAN, SIGMA, 80000))
        estimator = SigmaBandEstimator(
            anchors=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 40.0],
            sigma_cuts={"_sigDPt1": 1.0, "_sigDPt3": 3.0},
            pt_fit_range=(0.5, 40.0),
        )
        bands = estimator.estimate(hist)

        assert [s.converged for s in bands.slices] == [True] * 7 + [False]
        assert np.isnan(bands.slices[-1].mean)
        assert list(bands.envelopes) == ["_sigDPt1", "_sigDPt3"]
        lo, hi = bands.envelopes["_sigDPt3"]
        assert hi(10.0) == pytest.approx(MEAN + 3 * SIGMA, abs=0.003)
        assert lo(10.0) == pytest.approx(MEAN - 3 * SIGMA, abs=0.003)
