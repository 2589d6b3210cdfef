"""
Module for reading the track and truth tuples from ROOT files using uproot

Rows are streamed in chunks; no chunk is kept once a pass has consumed it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Sequence

import awkward as ak
import uproot
from tqdm import tqdm

from ..utils.logging_config import get_tqdm_kwargs
from .exceptions import BranchMissingError, DataLoadError, EmptyTableError, RowReadError

# Leaves each pass needs from the SVtxEvaluator tuples
TRACK_BRANCHES = ("pt", "gpt", "deltapt", "vz", "nintt", "nlmaps", "ntpc", "quality",
                  "event", "gtrackID", "gprimary")
TRUTH_BRANCHES = ("gpt", "gprimary")


class TupleReader:
    """
    Chunked reader for the ``ntp_track`` / ``ntp_gtrack`` tuples.

    Usage:
        with TupleReader("input.root", "ntp_track", "ntp_gtrack") as reader:
            for chunk in reader.iterate_tracks(TRACK_BRANCHES):
                ...
    """

    def __init__(self, file_path: str | Path, track_tuple: str = "ntp_track",
                 truth_tuple: str = "ntp_gtrack", step_size: int | str = 100000) -> None:
        self.file_path = Path(file_path)
        self.track_tuple = track_tuple
        self.truth_tuple = truth_tuple
        self.step_size = step_size
        self.logger = logging.getLogger("DeltaPtStudy.TupleReader")
        self._file = None

    def __enter__(self) -> "TupleReader":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        """
        Open the input file and check both tuples are present and non-empty.

        Raises:
            DataLoadError: File or tuple missing or unreadable
            EmptyTableError: A tuple has zero entries
        """
        if not self.file_path.exists():
            raise DataLoadError(f"Input file not found: {self.file_path}")
        try:
            self._file = uproot.open(self.file_path)
        except Exception as e:
            raise DataLoadError(f"Could not open {self.file_path}: {e}") from e

        for name in (self.track_tuple, self.truth_tuple):
            if name not in self._file:
                self.close()
                raise DataLoadError(f"Tuple '{name}' not found in {self.file_path}")
            if self._file[name].num_entries == 0:
                self.close()
                raise EmptyTableError(name, str(self.file_path))

        self.logger.info(
            f"Opened {self.file_path}: {self.num_entries(self.track_tuple)} tracks, "
            f"{self.num_entries(self.truth_tuple)} truth particles"
        )

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _tree(self, name: str):
        if self._file is None:
            raise DataLoadError("TupleReader used before open()")
        return self._file[name]

    def num_entries(self, name: str) -> int:
        return int(self._tree(name).num_entries)

    def available_branches(self, name: str) -> list[str]:
        return list(self._tree(name).keys())

    def check_branches(self, name: str, branches: Sequence[str]) -> None:
        """Raise BranchMissingError for the first required leaf not in the tuple."""
        available = set(self.available_branches(name))
        for branch in branches:
            if branch not in available:
                raise BranchMissingError(branch, str(self.file_path))

    def iterate(self, name: str, branches: Sequence[str], desc: str = "") -> Iterator[ak.Array]:
        """
        Yield consecutive chunks of ``name`` as awkward record arrays.

        Raises:
            RowReadError: A chunk could not be materialized
        """
        tree = self._tree(name)
        self.check_branches(name, branches)
        entry = 0
        with tqdm(total=tree.num_entries, **get_tqdm_kwargs(desc or name)) as progress:
            try:
                for chunk, report in tree.iterate(list(branches), step_size=self.step_size,
                                                  library="ak", report=True):
                    entry = report.tree_entry_stop
                    progress.update(len(chunk))
                    yield chunk
            except (OSError, ValueError, KeyError, uproot.DeserializationError) as e:
                raise RowReadError(name, entry, str(e)) from e

    def iterate_tracks(self, branches: Sequence[str] = TRACK_BRANCHES, desc: str = "") -> Iterator[ak.Array]:
        return self.iterate(self.track_tuple, branches, desc or "Tracks")

    def iterate_truth(self, branches: Sequence[str] = TRUTH_BRANCHES, desc: str = "") -> Iterator[ak.Array]:
        return self.iterate(self.truth_tuple, branches, desc or "Truth particles")
