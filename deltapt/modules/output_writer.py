"""
Output container for the cut study

Collects every histogram, graph and fit record produced by a run in a
flat namespace and writes them to one ROOT file with uproot. Histograms
become TH1D/TH2D; graphs and fit parameters become small TTrees.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import numpy as np
import uproot

from .exceptions import ValidationError


class OutputStore:
    """
    Ordered, name-unique collection of output objects.

    Objects need a ``name`` plus either ``to_numpy()`` (histograms) or
    ``to_columns()`` (graphs and fit records).
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger("DeltaPtStudy.OutputStore")
        self._objects: dict[str, Any] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._objects

    def __len__(self) -> int:
        return len(self._objects)

    def __getitem__(self, name: str) -> Any:
        return self._objects[name]

    @property
    def names(self) -> list[str]:
        return list(self._objects)

    def add(self, obj: Any) -> None:
        """
        Register one object.

        Raises:
            ValidationError: Another object already uses the name
        """
        name = obj.name
        if name in self._objects:
            raise ValidationError(f"Output object name collision: '{name}'")
        if not (hasattr(obj, "to_numpy") or hasattr(obj, "to_columns")):
            raise ValidationError(f"Don't know how to store '{name}' ({type(obj).__name__})")
        self._objects[name] = obj

    def extend(self, objects: Iterable[Any]) -> None:
        for obj in objects:
            self.add(obj)

    def write(self, path: str | Path) -> Path:
        """Write every object to a new ROOT file at ``path``."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with uproot.recreate(path) as out_file:
            for name, obj in self._objects.items():
                if hasattr(obj, "to_columns"):
                    out_file[name] = obj.to_columns()
                else:
                    out_file[name] = tuple(np.asarray(a) for a in obj.to_numpy())
        self.logger.info(f"Saved {len(self._objects)} objects to {path}")
        return path
