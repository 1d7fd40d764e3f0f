from __future__ import annotations

"""Column visitation order.

The first passage visits columns by decreasing number of missing cells, so the
columns with the most gaps are imputed while the largest number of fully
observed predictors is still available. Later passages visit the same columns
in a random order drawn from the imputation's own generator.

Columns without missing cells are still visited: their model is trained (and
kept for predicting on new data) even though no cell is replaced.
"""

from typing import List, Sequence

import numpy as np


def missing_counts(mask: np.ndarray) -> np.ndarray:
    """Number of missing cells per column of an N x D boolean mask."""
    return np.asarray(mask, dtype=bool).sum(axis=0).astype(int)


def initial_order(counts: Sequence[int]) -> List[int]:
    """Column positions sorted by decreasing missing count.

    This is the reverse of a stable ascending sort, so among columns with the
    same count the right-most one comes first.
    """
    asc = np.argsort(np.asarray(counts), kind="stable")
    return [int(d) for d in asc[::-1]]


class PassScheduler:
    """Produces the column order of each recursive passage for one imputation run."""

    def __init__(self, mask: np.ndarray, rng: np.random.Generator):
        self.counts = missing_counts(mask)
        self.rng = rng
        self._order = initial_order(self.counts)
        self.history: List[List[int]] = []

    def order_for(self, passage: int) -> List[int]:
        """Order for passage ``passage`` (1-based); passages > 1 permute the previous order."""
        if passage > 1:
            self._order = [int(d) for d in self.rng.permutation(self._order)]
        order = list(self._order)
        self.history.append(order)
        return order
