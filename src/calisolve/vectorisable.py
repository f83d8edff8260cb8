"""
Conversion between a model's native state and a flat parameter vector.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class Vectorisable(Protocol):
    """
    Anything the solver can optimise.

    store() returns a 1-D float64 copy of the state, or None if the state
    cannot be represented. restore() is the inverse and returns False,
    leaving the state untouched, when the vector does not fit.
    """

    def store(self) -> np.ndarray | None: ...

    def restore(self, vector: np.ndarray) -> bool: ...


class ParameterVector:
    """A model whose native state already is a flat vector."""

    def __init__(self, values: np.ndarray | None = None, size: int | None = None):
        if values is not None:
            values = np.array(values, dtype=np.float64).ravel()
            size = values.size if size is None else size
            if values.size != size:
                raise ValueError(f"expected {size} values, got {values.size}")
        if size is None:
            raise ValueError("either values or size is required")

        self.size = size
        self.values = values

    def store(self) -> np.ndarray | None:
        if self.values is None:
            return None
        return self.values.copy()

    def restore(self, vector: np.ndarray) -> bool:
        vector = np.asarray(vector, dtype=np.float64)
        if vector.ndim != 1 or vector.size != self.size:
            return False

        self.values = vector.copy()
        return True
