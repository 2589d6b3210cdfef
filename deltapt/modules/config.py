"""
Study configuration

Loads the TOML study configuration. The packaged ``config/study.toml``
provides every default; a user file only needs the keys it changes.
"""

from __future__ import annotations

import copy
import logging
import math
from pathlib import Path
from typing import Any

import tomli

from .exceptions import ConfigurationError
from .selection import TrackCuts

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "study.toml"


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load TOML configuration file with proper error handling

    Raises:
        ConfigurationError: If file not found or parsing fails
    """
    try:
        with open(path, "rb") as f:
            return tomli.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {path}")
    except tomli.TOMLDecodeError as e:
        raise ConfigurationError(f"Error parsing TOML file {path}: {e}")


def flat_cut_label(threshold: float) -> str:
    """Suffix for a flat cut, e.g. 0.05 -> '_dPt05'."""
    return f"_dPt{int(round(threshold * 100)):02d}"


def sigma_cut_label(multiplier: float) -> str:
    """Suffix for a sigma band, e.g. 1.5 -> '_sigDPt15'."""
    return "_sigDPt" + f"{multiplier:g}".replace(".", "")


class StudyConfig:
    """
    Configuration for one cut-study run.

    Attributes:
        raw: Merged configuration dictionary
        track_cuts: Quality-selector thresholds
        flat_cuts: Ordered ``{label: threshold}``
        sigma_cuts: Ordered ``{label: multiplier}``
    """

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self.logger = logging.getLogger("DeltaPtStudy.StudyConfig")
        defaults = _load_toml(DEFAULT_CONFIG_PATH)
        self.raw: dict[str, Any] = _merge(defaults, values or {})
        self._validate()

        self.track_cuts: TrackCuts = TrackCuts.from_dict(self.raw["track_cuts"])
        self.flat_cuts: dict[str, float] = self._labelled(
            self.deltapt["flat_cuts"], self.deltapt.get("flat_labels", []), flat_cut_label
        )
        self.sigma_cuts: dict[str, float] = self._labelled(
            self.deltapt["sigma_cuts"], self.deltapt.get("sigma_labels", []), sigma_cut_label
        )

    @classmethod
    def load(cls, path: str | Path | None = None, overrides: dict[str, Any] | None = None) -> "StudyConfig":
        """
        Load configuration from a TOML file merged over the defaults.

        Args:
            path: User TOML file (defaults only if None)
            overrides: Extra values applied last, e.g. from the command line
        """
        values: dict[str, Any] = {}
        if path is not None:
            values = _load_toml(Path(path))
        if overrides:
            values = _merge(values, overrides)
        return cls(values)

    # section accessors

    @property
    def io(self) -> dict[str, Any]:
        return self.raw["io"]

    @property
    def deltapt(self) -> dict[str, Any]:
        return self.raw["deltapt"]

    @property
    def projection(self) -> dict[str, Any]:
        return self.raw["projection"]

    @property
    def envelope(self) -> dict[str, Any]:
        return self.raw["envelope"]

    @property
    def efficiency(self) -> dict[str, Any]:
        return self.raw["efficiency"]

    @property
    def boundary_mask(self) -> dict[str, Any]:
        return self.raw["boundary_mask"]

    @property
    def norm_range(self) -> tuple[float, float]:
        lo, hi = self.deltapt["norm_range"]
        return float(lo), float(hi)

    @property
    def absolute_delta(self) -> bool:
        return bool(self.deltapt.get("absolute_delta", True))

    @property
    def step_size(self) -> int | str:
        return self.raw["reader"]["step_size"]

    @property
    def plots_enabled(self) -> bool:
        return bool(self.raw["plots"].get("enabled", False))

    def get_binning(self, name: str) -> tuple[int, float, float]:
        """Returns (n_bins, low, high) for 'pt', 'frac', 'delta' or 'phi'."""
        try:
            spec = self.raw["binning"][name]
        except KeyError:
            raise ConfigurationError(f"No binning defined for '{name}'")
        lo, hi = spec["range"]
        return int(spec["bins"]), float(lo), float(hi)

    def _labelled(self, values, labels, make_label) -> dict[str, float]:
        if labels and len(labels) != len(values):
            raise ConfigurationError(
                f"Got {len(labels)} labels for {len(values)} cut values"
            )
        names = list(labels) if labels else [make_label(v) for v in values]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Cut labels are not unique: {names}")
        return {name: float(value) for name, value in zip(names, values)}

    def _validate(self) -> None:
        """Check the merged configuration, raising ConfigurationError."""
        required = ("io", "track_cuts", "deltapt", "projection", "envelope",
                    "binning", "efficiency", "reader", "boundary_mask", "plots")
        missing = [section for section in required if section not in self.raw]
        if missing:
            raise ConfigurationError(f"Missing config sections: {missing}")

        if not self.deltapt.get("flat_cuts"):
            raise ConfigurationError("deltapt.flat_cuts must not be empty")
        sigmas = self.deltapt.get("sigma_cuts", [])
        if any(not (s > 0) for s in sigmas):
            raise ConfigurationError(f"Sigma multipliers must be positive, got {sigmas}")

        for section, key in (("deltapt", "norm_range"),
                             ("projection", "delta_fit_range"),
                             ("envelope", "pt_fit_range")):
            bounds = self.raw[section].get(key)
            if bounds is None or len(bounds) != 2 or not bounds[0] < bounds[1]:
                raise ConfigurationError(f"{section}.{key} must be [low, high], got {bounds}")

        for key in ("hi_guess", "lo_guess"):
            if len(self.envelope.get(key, [])) != 3:
                raise ConfigurationError(f"envelope.{key} needs 3 quadratic parameters")

        for name, spec in self.raw["binning"].items():
            lo, hi = spec["range"]
            if int(spec["bins"]) < 1 or not lo < hi:
                raise ConfigurationError(f"Invalid binning for '{name}': {spec}")

        if int(self.efficiency.get("rebin_factor", 1)) < 1:
            raise ConfigurationError("efficiency.rebin_factor must be >= 1")

        mask_size = self.boundary_mask.get("mask_size", 0.0)
        if self.boundary_mask.get("enabled") and not (mask_size > 0 and math.isfinite(mask_size)):
            raise ConfigurationError("boundary_mask.mask_size must be positive")
