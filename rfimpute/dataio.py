from __future__ import annotations

"""Data I/O helpers.

These helpers keep a **stable schema** for mixed-type tabular CSVs, which
matters here because the imputers derive each column's kind from its dtype.

Motivation
----------
CSV files that contain missing values will often coerce integer columns into
``float64`` (e.g., ``82`` becomes ``82.0``). An integer column read that way
would be modelled as continuous and imputed with non-integer values. We read
everything as strings first and keep integer-like columns as ``Int64``
(nullable integer), listed categorical columns as strings and the rest as
``float64``.
"""

from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd


def _strip_df_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Return a copy of ``df`` with whitespace-trimmed column names.

    This prevents brittle failures when upstream CSV headers accidentally include
    trailing spaces (e.g., ``'ConcreteCS '``).
    """
    out = df.copy()
    out.columns = [str(c).strip() for c in out.columns]
    # Guard against accidental duplicates after stripping.
    if len(set(out.columns)) != len(out.columns):
        raise ValueError(
            "Duplicate column names after stripping whitespace. "
            "Please sanitize the dataset headers."
        )
    return out


def _clean_var_list(vars: Optional[Sequence[Any]]) -> List[str]:
    """Clean a list of variable names.

    - drop None/NaN/empty tokens
    - strip leading/trailing whitespace
    - drop the literal token 'nan'
    """
    out: List[str] = []
    for v in vars or []:
        if v is None:
            continue
        if isinstance(v, float) and np.isnan(v):
            continue
        s = str(v).strip()
        if s == "" or s.lower() == "nan":
            continue
        out.append(s)
    return out


def _is_int_like(series: pd.Series, *, tol: float = 1e-6) -> bool:
    """Return True if all observed values are integers (``'82'`` and ``'82.0'`` both count)."""
    s = pd.to_numeric(series, errors="coerce")
    observed = series.notna()
    if not observed.any() or s[observed].isna().any():
        return False
    vals = s[observed]
    return bool(((vals - np.round(vals)).abs() < tol).all())


def _is_numeric(series: pd.Series) -> bool:
    s = pd.to_numeric(series, errors="coerce")
    observed = series.notna()
    return bool(observed.any()) and not s[observed].isna().any()


def type_columns(df_raw: pd.DataFrame, categorical_vars: Optional[Sequence[Any]] = None) -> pd.DataFrame:
    """Cast a table read as strings to kind-bearing dtypes.

    Rules:
      - listed categorical vars -> object (strings)
      - integer-like columns    -> Int64 (ordinal)
      - numeric columns         -> float64 (continuous)
      - anything else           -> object (categorical)
    """
    cat_vars = set(_clean_var_list(categorical_vars))
    unknown = sorted(cat_vars - set(df_raw.columns))
    if unknown:
        raise KeyError(f"Categorical columns {unknown} not found. Available columns: {list(df_raw.columns)}")

    out = pd.DataFrame(index=df_raw.index)
    for col in df_raw.columns:
        s = df_raw[col]
        if s.dtype == object:
            s = s.where(s.isna(), s.astype(str).str.strip())
            s = s.replace("", np.nan)
        if col in cat_vars:
            out[col] = s.astype(object)
        elif _is_int_like(s):
            num = pd.to_numeric(s, errors="coerce")
            out[col] = pd.Series(np.rint(num), index=s.index).astype("Int64")
        elif _is_numeric(s):
            out[col] = pd.to_numeric(s, errors="coerce").astype("float64")
        else:
            out[col] = s.astype(object)
    return out


def load_table(
    path: Union[str, Path],
    *,
    categorical_vars: Optional[Sequence[Any]] = None,
    id_col: Optional[str] = None,
) -> pd.DataFrame:
    """Load a CSV with missing cells into a frame the imputers can type.

    We read with ``dtype=str`` to avoid pandas inferring ``float64`` for
    integer columns that contain gaps. ``id_col``, when given, becomes the
    index (it must be fully observed and unique).
    """
    df = _strip_df_columns(pd.read_csv(path, dtype=str))
    if id_col is not None:
        if id_col not in df.columns:
            raise KeyError(f"ID column '{id_col}' not found in {path}")
        if df[id_col].isna().any():
            raise ValueError(f"Missing {id_col} values in {path}")
        if df[id_col].duplicated().any():
            raise ValueError(f"Duplicate {id_col} values in {path}")
        df = df.set_index(id_col)
    return type_columns(df, categorical_vars)


def load_complete_and_missing(
    *,
    input_complete: Union[str, Path],
    input_missing: Union[str, Path],
    categorical_vars: Optional[Sequence[Any]] = None,
    id_col: str = "ID",
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Load ground-truth/missing CSVs typed by the *complete* table.

    Rows are aligned on ``id_col`` when both files carry it; this prevents
    silent metric corruption if a missing CSV is shuffled. Without it, rows are
    paired by position and must have the same count.
    """
    df_complete_raw = _strip_df_columns(pd.read_csv(input_complete, dtype=str))
    df_missing_raw = _strip_df_columns(pd.read_csv(input_missing, dtype=str))

    if id_col in df_complete_raw.columns and id_col in df_missing_raw.columns:
        for name, df in ((input_complete, df_complete_raw), (input_missing, df_missing_raw)):
            if df[id_col].isna().any():
                raise ValueError(f"Missing {id_col} values in {name}")
            if df[id_col].duplicated().any():
                raise ValueError(f"Duplicate {id_col} values in {name}")
        df_complete_raw = df_complete_raw.set_index(id_col)
        df_missing_raw = df_missing_raw.set_index(id_col)

        ids_complete = set(df_complete_raw.index)
        ids_missing = set(df_missing_raw.index)
        if ids_complete != ids_missing:
            missing_ids = sorted(ids_complete - ids_missing)[:10]
            extra_ids = sorted(ids_missing - ids_complete)[:10]
            raise ValueError(
                f"ID mismatch between complete and missing CSVs. "
                f"Missing in missing: {missing_ids}; Extra in missing: {extra_ids}."
            )
        df_missing_raw = df_missing_raw.loc[df_complete_raw.index]
    elif len(df_complete_raw) != len(df_missing_raw):
        raise ValueError(
            f"Row count mismatch: {len(df_complete_raw)} (complete) vs {len(df_missing_raw)} (missing)."
        )

    missing_cols = [c for c in df_complete_raw.columns if c not in df_missing_raw.columns]
    if missing_cols:
        raise KeyError(f"Columns {missing_cols} not found in missing CSV: {input_missing}")
    df_missing_raw = df_missing_raw[list(df_complete_raw.columns)]

    df_complete = type_columns(df_complete_raw, categorical_vars)
    df_missing = cast_like(df_missing_raw, df_complete)
    return df_complete, df_missing


def cast_like(df: pd.DataFrame, reference: pd.DataFrame) -> pd.DataFrame:
    """Cast ``df`` to the dtypes of ``reference`` (same columns)."""
    out = pd.DataFrame(index=df.index)
    for col in reference.columns:
        dt = reference[col].dtype
        s = df[col]
        if str(dt) == "Int64":
            num = pd.to_numeric(s, errors="coerce")
            out[col] = pd.Series(np.rint(num), index=s.index).astype("Int64")
        elif pd.api.types.is_float_dtype(dt):
            out[col] = pd.to_numeric(s, errors="coerce").astype("float64")
        else:
            out[col] = s.astype(object)
    return out


def introduce_mcar(
    df: pd.DataFrame,
    rate: float,
    *,
    seed: int = 42,
    exclude_cols: Optional[Sequence[str]] = None,
) -> Tuple[pd.DataFrame, np.ndarray]:
    """Mask cells completely at random. Returns ``(masked_copy, mask)`` with True = missing."""
    if not 0.0 <= rate < 1.0:
        raise ValueError(f"rate must be in [0, 1), got {rate}")
    rng = np.random.default_rng(seed)
    mask = rng.random(df.shape) < rate
    for col in exclude_cols or []:
        mask[:, df.columns.get_loc(col)] = False

    out = df.copy()
    for j, col in enumerate(out.columns):
        rows = mask[:, j]
        if not rows.any():
            continue
        if pd.api.types.is_integer_dtype(out[col].dtype):
            out[col] = out[col].astype("Int64")
        elif pd.api.types.is_bool_dtype(out[col].dtype):
            out[col] = out[col].astype(object)
        out.loc[rows, col] = None
    return out, mask


def save_imputations(
    imputations: Union[pd.DataFrame, List[pd.DataFrame]],
    outdir: Union[str, Path],
    stem: str = "imputed",
    *,
    index: bool = False,
) -> List[Path]:
    """Write one CSV per imputation (``<stem>.csv`` or ``<stem>_<i>.csv``)."""
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    frames = imputations if isinstance(imputations, list) else [imputations]
    paths: List[Path] = []
    for i, frame in enumerate(frames, start=1):
        name = f"{stem}.csv" if len(frames) == 1 else f"{stem}_{i}.csv"
        path = outdir / name
        frame.to_csv(path, index=index)
        paths.append(path)
    return paths
