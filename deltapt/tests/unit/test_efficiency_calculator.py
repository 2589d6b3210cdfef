"""
Unit tests for the rejection/efficiency calculator.

Tests rejection factors, the explicit undefined results, efficiency
bounds and rebinning.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from deltapt.modules.classifier import (
    ClassificationCounters,
    CutBundle,
    DistributionSet,
    FlatDeltaPtCut,
    fill_truth_spectrum,
    make_bundles,
    run_classification_pass,
)
from deltapt.modules.efficiency_calculator import (
    EfficiencyCalculator,
    RejectionFactor,
    compute_efficiency,
    rejection_factor,
)
from deltapt.modules.exceptions import EfficiencyError
from deltapt.modules.histograms import Hist1D
from deltapt.modules.selection import TrackCuts


def histogram(name: str, counts) -> Hist1D:
    hist = Hist1D(name, "", len(counts), 0.0, float(len(counts)))
    hist.counts = np.asarray(counts, dtype=np.float64)
    return hist


@pytest.mark.unit
class TestRejectionFactor:
    """Test normal/anomalous ratios."""

    def test_defined_ratio(self) -> None:
        factor = rejection_factor("_dPt05", 0.05, ClassificationCounters(90, 10))
        assert factor.is_defined
        assert factor.value == pytest.approx(9.0)

    def test_undefined_without_anomalous_tracks(self) -> None:
        """Zero anomalous tracks gives an undefined factor, never 0 or inf."""
        factor = rejection_factor("_dPt01", 0.01, ClassificationCounters(50, 0))
        assert not factor.is_defined
        assert factor.value is None
        assert np.isnan(factor.as_float())

    def test_zero_normal_is_defined_zero(self) -> None:
        assert rejection_factor("_dPt50", 0.5, ClassificationCounters(0, 4)).value == 0.0


@pytest.mark.unit
class TestComputeEfficiency:
    """Test per-bin efficiency curves."""

    def test_values_bounded_and_undefined_bins_flagged(self) -> None:
        num = histogram("num", [0, 2, 5, 0, 0])
        den = histogram("den", [0, 4, 5, 3, 0])
        curve = compute_efficiency(num, den, "hEff_test")

        assert curve.defined.tolist() == [False, True, True, True, False]
        assert np.isnan(curve.values[0]) and np.isnan(curve.values[4])
        assert curve.values[curve.defined].tolist() == [0.5, 1.0, 0.0]
        assert np.all((curve.values[curve.defined] >= 0) & (curve.values[curve.defined] <= 1))

    def test_binomial_errors(self) -> None:
        curve = compute_efficiency(histogram("num", [25]), histogram("den", [100]), "hEff")
        assert curve.errors[0] == pytest.approx(np.sqrt(0.25 * 0.75 / 100))

    def test_binning_mismatch_raises(self) -> None:
        with pytest.raises(EfficiencyError):
            compute_efficiency(histogram("num", [1, 2]), histogram("den", [1, 2, 3]), "hEff")

    def test_rebin_commutes_on_uniform_input(self) -> None:
        """Rebinning uniform numerator and denominator leaves the efficiency unchanged."""
        num = histogram("num", [5] * 20)
        den = histogram("den", [10] * 20)

        fine = compute_efficiency(num, den, "hEff")
        coarse = compute_efficiency(num, den, "hEff", rebin_factor=5)

        assert len(coarse.values) == 4
        assert np.allclose(fine.values, 0.5)
        assert np.allclose(coarse.values, 0.5)
        assert coarse.denominator.tolist() == [50.0] * 4

    def test_rebin_sums_groups(self) -> None:
        num = histogram("num", [1, 0, 2, 1, 0, 0])
        den = histogram("den", [2, 2, 2, 2, 0, 1])
        curve = compute_efficiency(num, den, "hEff", rebin_factor=2)
        assert curve.values.tolist() == [0.25, 0.75, 0.0]
        assert curve.edges.tolist() == [0.0, 2.0, 4.0, 6.0]

    def test_trailing_bins_go_to_overflow(self) -> None:
        hist = histogram("h", [1, 1, 1, 1, 1, 1, 1])
        rebinned = hist.rebin(3)
        assert rebinned.counts.tolist() == [3.0, 3.0]
        assert rebinned.overflow == 1.0


@pytest.mark.unit
class TestEfficiencyCalculator:
    """Test calculator configuration and per-cut outputs."""

    def test_invalid_rebin_factor(self) -> None:
        with pytest.raises(EfficiencyError):
            EfficiencyCalculator(rebin=True, rebin_factor=0)

    def test_rebin_disabled(self) -> None:
        assert EfficiencyCalculator(rebin=False, rebin_factor=5).rebin_factor == 1

    def test_per_cut_efficiencies(self, small_binning) -> None:
        truth = Hist1D("hPtTruth", "", *small_binning["pt"])
        truth.fill(np.linspace(0.25, 9.75, 20).repeat(10))

        bundles = {}
        for label, fraction in (("_dPt50", 0.8), ("_dPt01", 0.2)):
            dist = DistributionSet(label, small_binning)
            dist.pt_matched.counts = truth.counts * fraction
            bundles[label] = CutBundle(FlatDeltaPtCut(label, 0.5), dist, ClassificationCounters(8, 2))

        curves = EfficiencyCalculator(rebin_factor=5).efficiencies(truth, bundles)
        assert list(curves) == ["_dPt50", "_dPt01"]
        assert curves["_dPt50"].name == "hEff_dPt50"
        assert np.allclose(curves["_dPt50"].values, 0.8)
        assert np.allclose(curves["_dPt01"].values, 0.2)

    def test_rejection_graph_marks_undefined_as_nan(self) -> None:
        factors = [RejectionFactor("_a", 0.5, 10, 5), RejectionFactor("_b", 0.1, 10, 0)]
        graph = EfficiencyCalculator.rejection_graph("grReject_flatDPtCut", factors)
        assert graph.x.tolist() == [0.5, 0.1]
        assert graph.y[0] == 2.0
        assert np.isnan(graph.y[1])

    def test_rejection_table(self) -> None:
        flat = [RejectionFactor("_dPt50", 0.5, 90, 10), RejectionFactor("_dPt01", 0.01, 5, 0)]
        sigma = [RejectionFactor("_sigDPt1", 1.0, 40, 4)]
        table = EfficiencyCalculator.rejection_table(flat, sigma)

        assert isinstance(table, pd.DataFrame)
        assert table["kind"].tolist() == ["flat", "flat", "sigma"]
        assert table.loc[0, "rejection"] == pytest.approx(9.0)
        assert not table.loc[1, "defined"]
        assert pd.isna(table.loc[1, "rejection"])


@pytest.mark.unit
class TestRejectionFromPasses:
    """Test rejection factors derived from a classification pass."""

    def test_tighter_cuts_reject_more(self, small_binning) -> None:
        """Anomalous tracks spread to large delta-pt/pt, so rejection grows as the cut tightens."""
        rng = np.random.default_rng(21)
        n = 2000
        gpt = rng.uniform(1.0, 5.0, 2 * n)
        frac = np.concatenate([np.ones(n), np.full(n, 3.0)])
        delta = np.concatenate([np.abs(rng.normal(0.0, 0.02, n)), rng.uniform(0.0, 0.6, n)])
        pt = gpt * frac
        columns = {
            "pt": pt, "gpt": gpt, "deltapt": delta * pt,
            "vz": np.zeros(2 * n), "nintt": np.ones(2 * n), "nlmaps": np.full(2 * n, 3.0),
            "ntpc": np.full(2 * n, 40.0), "quality": np.ones(2 * n),
            "event": np.zeros(2 * n), "gtrackID": np.arange(2.0 * n), "gprimary": np.ones(2 * n),
        }

        thresholds = [0.5, 0.25, 0.1, 0.05, 0.03]
        bundles = make_bundles([FlatDeltaPtCut(f"_t{i}", t) for i, t in enumerate(thresholds)],
                               small_binning)
        run_classification_pass([columns], TrackCuts(), bundles, (0.2, 1.2))

        factors = EfficiencyCalculator().rejection_factors(bundles)
        values = [f.value for f in factors]
        assert all(f.is_defined for f in factors)
        assert values == sorted(values)
        for f in factors:
            assert f.value == pytest.approx(f.n_normal / f.n_anomalous)


@pytest.mark.unit
class TestTruthMatchedEfficiency:
    """Test that the efficiency numerator counts matched primaries once."""

    @staticmethod
    def tracks(event, track_id, gprimary, gpt) -> dict:
        n = len(gpt)
        gpt = np.asarray(gpt, dtype=np.float64)
        return {
            "pt": gpt.copy(), "gpt": gpt, "deltapt": 0.01 * gpt,
            "vz": np.zeros(n), "nintt": np.ones(n), "nlmaps": np.full(n, 3.0),
            "ntpc": np.full(n, 40.0), "quality": np.ones(n),
            "event": np.asarray(event, dtype=np.float64),
            "gtrackID": np.asarray(track_id, dtype=np.float64),
            "gprimary": np.asarray(gprimary, dtype=np.float64),
        }

    @pytest.fixture
    def truth_spectrum(self, small_binning) -> Hist1D:
        """One primary at 2.2 GeV/c and one secondary at 2.3 GeV/c, same pt bin."""
        spectrum = Hist1D("hPtTruth", "", *small_binning["pt"])
        truth = {"gpt": np.array([2.2, 2.3]), "gprimary": np.array([1.0, 0.0])}
        fill_truth_spectrum([truth], spectrum)
        return spectrum

    def test_duplicates_and_secondaries_keep_efficiency_at_one(self, small_binning,
                                                               truth_spectrum) -> None:
        """Two tracks of the primary and one of the secondary give efficiency 1, not 3."""
        chunk = self.tracks([0, 0, 0], [1, 1, 2], [1, 1, 0], [2.2, 2.2, 2.3])
        baseline = DistributionSet("", small_binning)
        bundles = make_bundles([FlatDeltaPtCut("_dPt05", 0.05)], small_binning)
        run_classification_pass([chunk], TrackCuts(), bundles, (0.2, 1.2), baseline=baseline)

        calculator = EfficiencyCalculator(rebin=False)
        curve = calculator.efficiencies(truth_spectrum, bundles)["_dPt05"]
        overall = calculator.overall_efficiency(truth_spectrum, baseline.pt_matched)

        # Rejection counters still see every accepted track
        assert bundles["_dPt05"].counters.n_normal == 3
        assert bundles["_dPt05"].distributions.pt_true.entries == 3
        assert bundles["_dPt05"].distributions.pt_matched.entries == 1
        for eff in (curve, overall):
            assert np.nanmax(eff.values) == 1.0
            assert eff.values[4] == 1.0
            assert np.all(eff.values[eff.defined] <= 1.0)

    def test_duplicate_in_later_chunk_not_recounted(self, small_binning, truth_spectrum) -> None:
        chunks = [self.tracks([0], [1], [1], [2.2]), self.tracks([0, 0], [1, 2], [1, 0], [2.2, 2.3])]
        bundles = make_bundles([FlatDeltaPtCut("_dPt05", 0.05)], small_binning)
        run_classification_pass(chunks, TrackCuts(), bundles, (0.2, 1.2))

        curve = EfficiencyCalculator(rebin=False).efficiencies(truth_spectrum, bundles)["_dPt05"]
        assert bundles["_dPt05"].distributions.pt_matched.counts.sum() == 1.0
        assert curve.values[4] == 1.0

    def test_same_track_id_in_other_event_is_distinct(self, small_binning) -> None:
        dist = DistributionSet("", small_binning)
        bundles = make_bundles([FlatDeltaPtCut("_dPt05", 0.05)], small_binning)
        chunk = self.tracks([0, 1, 1], [7, 7, 7], [1, 1, 1], [2.2, 3.1, 3.1])
        run_classification_pass([chunk], TrackCuts(), bundles, (0.2, 1.2), baseline=dist)
        assert dist.pt_matched.counts.sum() == 2.0
