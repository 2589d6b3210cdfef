"""
Track quality selection

The six quality thresholds are not symmetric: the INTT requirement is
inclusive, every other hit and kinematic requirement is strict.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np


@dataclass(frozen=True)
class TrackCuts:
    """Thresholds defining a "good" reconstructed track."""

    nintt_min: int = 1
    nmvtx_min: int = 2
    ntpc_min: int = 35
    quality_max: float = 10.0
    vz_max: float = 10.0
    pt_min: float = 0.1

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "TrackCuts":
        """Build cuts from a ``[track_cuts]`` config table, unknown keys ignored."""
        known = {name: values[name] for name in cls.__dataclass_fields__ if name in values}
        return cls(**known)


# Leaves read by the selector
QUALITY_FIELDS = ("vz", "nintt", "nlmaps", "ntpc", "pt", "quality")


def good_track_mask(tracks: Mapping[str, Any], cuts: TrackCuts):
    """
    Vectorized quality selection.

    Args:
        tracks: Record or columnar chunk with the ``QUALITY_FIELDS`` leaves
        cuts: Quality thresholds

    Returns:
        Boolean mask (or a single boolean for a scalar record)
    """
    in_zvtx = np.abs(tracks["vz"]) < cuts.vz_max
    in_intt = tracks["nintt"] >= cuts.nintt_min
    in_mvtx = tracks["nlmaps"] > cuts.nmvtx_min
    in_tpc = tracks["ntpc"] > cuts.ntpc_min
    in_pt = tracks["pt"] > cuts.pt_min
    in_qual = tracks["quality"] < cuts.quality_max
    return in_zvtx & in_intt & in_mvtx & in_tpc & in_pt & in_qual


def is_good_track(record: Mapping[str, float], cuts: TrackCuts) -> bool:
    """True if a single track record passes all six quality requirements."""
    return bool(good_track_mask(record, cuts))
