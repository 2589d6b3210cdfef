"""
Module for creating summary plots of the delta-pt/pt cut study

Example usage:
    plotter = StudyPlotter(output_dir="output/plots")

    # Rejection factor versus cut value for both cut families
    plotter.plot_rejection(flat_factors, sigma_factors)

    # Efficiency curves, one series per cut
    plotter.plot_efficiencies(flat_curves, "flat")

    # Projection means with the fitted sigma envelopes
    plotter.plot_sigma_bands(bands)
"""

import logging
import warnings
from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt
import mplhep as hep
import numpy as np

warnings.filterwarnings('ignore', category=UserWarning, module='matplotlib')
logging.getLogger('matplotlib.font_manager').setLevel(logging.ERROR)

matplotlib.rcParams['font.family'] = 'sans-serif'
matplotlib.rcParams['font.sans-serif'] = ['DejaVu Sans', 'Arial', 'Helvetica', 'sans-serif']

plt.style.use(hep.style.ROOT)

# The style sets a serif family; keep sans-serif
matplotlib.rcParams['font.family'] = 'sans-serif'


class StudyPlotter:
    """Class for creating rejection, efficiency and envelope plots"""

    def __init__(self, output_dir):
        """
        Initialize with output directory

        Parameters:
        - output_dir: Directory to save plots
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger("DeltaPtStudy.StudyPlotter")

    def plot_rejection(self, flat, sigma):
        """
        Plot rejection factor versus cut value

        Parameters:
        - flat: RejectionFactor list for the flat cuts
        - sigma: RejectionFactor list for the sigma cuts (may be empty)

        Returns:
        - Path of the saved figure
        """
        fig, (ax_flat, ax_sig) = plt.subplots(1, 2, figsize=(16, 7))
        panels = ((ax_flat, flat, r'max $\delta p_T/p_T$'), (ax_sig, sigma, r'$n\sigma$'))
        for ax, factors, xlabel in panels:
            x = np.array([f.cut_value for f in factors], dtype=float)
            y = np.array([f.as_float() for f in factors], dtype=float)
            defined = np.isfinite(y)
            ax.plot(x[defined], y[defined], 'o-', color='steelblue', label='rejection')
            # Undefined factors (no anomalous tracks) sit on the axis as open markers
            if np.any(~defined):
                ax.plot(x[~defined], np.zeros(np.count_nonzero(~defined)), 'o',
                        mfc='none', color='red', label='undefined')
            ax.set_xlabel(xlabel, fontsize=14)
            ax.set_ylabel('rejection factor', fontsize=14)
            ax.grid(alpha=0.3, linestyle='--')
            if len(x):
                ax.legend(fontsize=12, loc='best')
        return self._save(fig, "rejection_factors")

    def plot_efficiencies(self, curves, tag):
        """
        Plot efficiency versus true pt

        Parameters:
        - curves: Mapping of cut label to EfficiencyCurve
        - tag: Suffix for the file name
        """
        fig, ax = plt.subplots(figsize=(10, 7))
        for label, curve in curves.items():
            ok = curve.defined
            ax.errorbar(curve.centers[ok], curve.values[ok], yerr=curve.errors[ok],
                        fmt='o', markersize=4, capsize=2, capthick=1, elinewidth=1,
                        label=label.lstrip('_') or 'all')
        ax.set_xlabel(r'$p_T^{true}$ [GeV/c]', fontsize=14)
        ax.set_ylabel('efficiency', fontsize=14)
        ax.set_ylim(0.0, 1.2)
        ax.grid(alpha=0.3, linestyle='--')
        if curves:
            ax.legend(fontsize=10, loc='best', ncol=2)
        return self._save(fig, f"efficiency_{tag}")

    def plot_sigma_bands(self, bands):
        """Plot the projection means together with every fitted envelope"""
        fig, ax = plt.subplots(figsize=(10, 7))
        ax.plot(bands.mean_graph.x, bands.mean_graph.y, 'ko', label=r'$\mu$')
        for label, (lo, hi) in bands.envelopes.items():
            pt = np.linspace(lo.fit_range[0], lo.fit_range[1], 200)
            line, = ax.plot(pt, hi(pt), '-', label=label.lstrip('_'))
            ax.plot(pt, lo(pt), '-', color=line.get_color())
            lo_graph, hi_graph = bands.envelope_graphs[label]
            ax.plot(hi_graph.x, hi_graph.y, '^', color=line.get_color())
            ax.plot(lo_graph.x, lo_graph.y, 'v', color=line.get_color())
        ax.set_xlabel(r'$p_T^{reco}$ [GeV/c]', fontsize=14)
        ax.set_ylabel(r'$\delta p_T/p_T$', fontsize=14)
        ax.grid(alpha=0.3, linestyle='--')
        ax.legend(fontsize=10, loc='best', ncol=2)
        return self._save(fig, "sigma_envelopes")

    def _save(self, fig, filename):
        plot_path = self.output_dir / f"{filename}.pdf"
        fig.tight_layout()
        fig.savefig(plot_path, dpi=300, bbox_inches='tight')
        plt.close(fig)
        self.logger.info(f"Created plot: {plot_path}")
        return plot_path
