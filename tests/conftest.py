from __future__ import annotations

import numpy as np
import pandas as pd
import pytest


# Example table with a single gap at row 0, column 1.
SCENARIO_X = [
    [2, None, 10],
    [2000, 4000, 1000],
    [2000, 4000, 10000],
    [3, 5, 12],
    [4, 8, 20],
    [1, 2, 5],
]


@pytest.fixture
def scenario_matrix():
    return [list(row) for row in SCENARIO_X]


@pytest.fixture
def mixed_complete() -> pd.DataFrame:
    """60 rows: continuous 'a', ordinal 'b', categorical 'c', continuous 'd'."""
    rng = np.random.default_rng(0)
    n = 60
    a = rng.normal(50.0, 10.0, n)
    b = rng.integers(0, 5, n)
    c = np.where(a > 50.0, "high", "low")
    flip = rng.random(n) < 0.1
    c = np.where(flip, "mid", c)
    d = 0.5 * a + rng.normal(0.0, 1.0, n)
    return pd.DataFrame(
        {
            "a": a.astype(float),
            "b": b.astype(np.int64),
            "c": pd.Series(c.tolist(), dtype=object),
            "d": d.astype(float),
        }
    )


def _blank(df: pd.DataFrame, cells) -> pd.DataFrame:
    out = df.copy()
    out["b"] = out["b"].astype("Int64")
    for r, col in cells:
        out.loc[r, col] = None
    return out


@pytest.fixture
def mixed_missing(mixed_complete) -> pd.DataFrame:
    """``mixed_complete`` with 5 gaps in 'a', 3 in 'c', 1 in 'd' and none in 'b'."""
    cells = [(0, "a"), (7, "a"), (13, "a"), (21, "a"), (40, "a"),
             (3, "c"), (17, "c"), (33, "c"),
             (9, "d")]
    return _blank(mixed_complete, cells)


def observed_cells_equal(before: pd.DataFrame, after: pd.DataFrame, mask: np.ndarray) -> bool:
    for j in range(before.shape[1]):
        keep = ~mask[:, j]
        left = before.iloc[keep, j].tolist()
        right = after.iloc[keep, j].tolist()
        if left != right:
            return False
    return True
