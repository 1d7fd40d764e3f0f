from __future__ import annotations

"""Column typing for mixed tabular data.

Every column gets an explicit :class:`ColumnKind` once, when a table is first
seen by an imputer. The kind drives both model selection (classifier vs.
regressor) and the coercion of predictions back into the column's type, so the
rest of the package never branches on pandas dtypes again.

Rules
-----
- float dtype                               -> CONTINUOUS
- integer dtype (``int64`` or ``Int64``)     -> ORDINAL
- object / string / category / bool          -> CATEGORICAL

Object columns (including every column of a table given as nested lists) are
inspected value by value: all integers -> ORDINAL, all reals -> CONTINUOUS,
anything else -> CATEGORICAL. Integer columns listed in
``forced_categorical_cols`` become CATEGORICAL while keeping integer labels.

Missingness is whatever :func:`pandas.isna` flags (``None``, ``NaN``,
``pd.NA``, ``NaT``) and is always tracked as a separate boolean mask.
"""

import numbers
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, ShapeMismatchError, TypeCoercionError


class ColumnKind(str, Enum):
    CONTINUOUS = "continuous"
    ORDINAL = "ordinal"
    CATEGORICAL = "categorical"


def _isna(value: Any) -> bool:
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        # array-like values are never a missing marker
        return False


def _is_int(value: Any) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, (bool, np.bool_))


def _is_real(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, (bool, np.bool_))


def _element_type(values: Iterable[Any]) -> str:
    """Return the common element type ('int', 'float', 'str', 'bool' or 'object')."""
    vals = [v for v in values if not _isna(v)]
    if not vals:
        return "object"
    if all(isinstance(v, (bool, np.bool_)) for v in vals):
        return "bool"
    if all(_is_int(v) for v in vals):
        return "int"
    if all(_is_real(v) for v in vals):
        return "float"
    if all(isinstance(v, str) for v in vals):
        return "str"
    return "object"


def _category_order(series: pd.Series) -> List[Any]:
    """Deterministic category order: declared categories, else sorted, else first-seen."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    cats = pd.unique(series.dropna().astype(object)).tolist()
    try:
        cats = sorted(cats)
    except TypeError:
        pass
    return cats


@dataclass
class ColumnSpec:
    """Kind and typing information for one column."""

    name: Any
    position: int
    kind: ColumnKind
    dtype: Any
    element: str
    categories: List[Any] = field(default_factory=list)
    code_map: Dict[Any, int] = field(init=False, repr=False)

    def __post_init__(self):
        self.code_map = {c: i for i, c in enumerate(self.categories)}

    @property
    def is_categorical(self) -> bool:
        return self.kind is ColumnKind.CATEGORICAL

    @property
    def closed(self) -> bool:
        """True when the column only accepts its declared categories."""
        return self.is_categorical and isinstance(self.dtype, pd.CategoricalDtype)

    def coerce(self, value: Any, exact: bool = False) -> Any:
        """Convert one value (typically a model prediction) to this column's type.

        Integer columns round numeric values to the nearest integer and parse
        strings; categorical columns parse strings back to their element type.
        With ``exact`` (used for observed cells) integer columns accept only
        integral values. Anything that cannot be converted raises
        :class:`TypeCoercionError`.
        """
        if _isna(value):
            raise TypeCoercionError(self.name, self.kind.value, value)

        if isinstance(value, np.generic):
            value = value.item()

        if self.kind is ColumnKind.CONTINUOUS:
            out = self._to_float(value)
        elif self.kind is ColumnKind.ORDINAL or self.element == "int":
            out = self._to_int(value, exact)
        elif self.element == "float":
            out = self._to_float(value)
        elif self.element == "str":
            if not isinstance(value, str):
                raise TypeCoercionError(self.name, self.kind.value, value)
            out = value
        elif self.element == "bool":
            if not isinstance(value, bool):
                raise TypeCoercionError(self.name, self.kind.value, value)
            out = value
        else:
            out = value

        if self.closed and out not in self.code_map:
            raise TypeCoercionError(self.name, self.kind.value, value)
        return out

    def _to_float(self, value: Any) -> float:
        if _is_real(value):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                pass
        raise TypeCoercionError(self.name, self.kind.value, value)

    def _to_int(self, value: Any, exact: bool = False) -> int:
        if _is_int(value):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                pass
            try:
                value = float(value.strip())
            except ValueError:
                raise TypeCoercionError(self.name, self.kind.value, value) from None
        if _is_real(value):
            if not np.isfinite(value) or (exact and not float(value).is_integer()):
                raise TypeCoercionError(self.name, self.kind.value, value)
            return int(np.rint(value))
        raise TypeCoercionError(self.name, self.kind.value, value)

    def encode(self, values: Sequence[Any]) -> np.ndarray:
        """Encode values as floats for the learners (categories -> codes, NA/unseen -> NaN)."""
        if self.is_categorical:
            out = np.empty(len(values), dtype=float)
            for i, v in enumerate(values):
                out[i] = np.nan if _isna(v) else self.code_map.get(v, np.nan)
            return out
        return np.array([np.nan if _isna(v) else float(v) for v in values], dtype=float)


@dataclass
class TableSchema:
    """Per-column specs plus the container type the table arrived in."""

    columns: List[ColumnSpec]
    container: str = "frame"

    @property
    def n_columns(self) -> int:
        return len(self.columns)

    @property
    def labels(self) -> List[Any]:
        return [c.name for c in self.columns]

    @property
    def kinds(self) -> List[ColumnKind]:
        return [c.kind for c in self.columns]

    def check_width(self, n_columns: int) -> None:
        if n_columns != self.n_columns:
            raise ShapeMismatchError(
                f"The imputer was fitted on {self.n_columns} columns but received "
                f"a table with {n_columns} columns."
            )

    def encode(self, frame: pd.DataFrame) -> np.ndarray:
        """Encode a working frame into an N x D float matrix."""
        out = np.empty(frame.shape, dtype=float)
        for spec in self.columns:
            out[:, spec.position] = spec.encode(frame.iloc[:, spec.position].tolist())
        return out


# ---------------------------------------------------------------------
# Container handling
# ---------------------------------------------------------------------

def _normalize_object_column(series: pd.Series) -> pd.Series:
    """Give an object column the numeric dtype its values support, if any."""
    el = _element_type(series.tolist())
    if el == "int":
        return pd.Series(
            [pd.NA if _isna(v) else int(v) for v in series], index=series.index, dtype="Int64"
        )
    if el == "float":
        return pd.to_numeric(series, errors="coerce").astype("float64")
    return series


def as_frame(X: Any) -> Tuple[pd.DataFrame, str]:
    """Return ``(frame, container)`` for a DataFrame, ndarray or nested list."""
    if isinstance(X, pd.DataFrame):
        df = X.copy()
        container = "frame"
    else:
        arr = np.asarray(X, dtype=object)
        if arr.ndim != 2:
            raise ShapeMismatchError(f"Expected a 2-D table, got an array with {arr.ndim} dimension(s).")
        df = pd.DataFrame(arr)
        container = "array"

    for pos in range(df.shape[1]):
        s = df.iloc[:, pos]
        if s.dtype == object:
            df.isetitem(pos, _normalize_object_column(s))
    return df, container


def _resolve_forced(forced: Sequence[Any], labels: List[Any]) -> List[int]:
    positions: List[int] = []
    for f in forced:
        if f in labels:
            positions.append(labels.index(f))
        elif _is_int(f) and 0 <= int(f) < len(labels):
            positions.append(int(f))
        else:
            raise ConfigurationError(
                f"forced_categorical_cols entry {f!r} matches neither a column label "
                f"nor a column position (table has {len(labels)} columns)."
            )
    return positions


def infer_schema(
    df: pd.DataFrame,
    *,
    container: str = "frame",
    forced_categorical_cols: Optional[Sequence[Any]] = None,
) -> TableSchema:
    """Infer a :class:`TableSchema` from a frame produced by :func:`as_frame`."""
    labels = list(df.columns)
    if len(set(labels)) != len(labels):
        raise ShapeMismatchError("Duplicate column labels are not supported.")
    forced = set(_resolve_forced(forced_categorical_cols or [], labels))

    specs: List[ColumnSpec] = []
    for pos, name in enumerate(labels):
        s = df.iloc[:, pos]
        dt = s.dtype

        if pd.api.types.is_bool_dtype(dt) or isinstance(dt, pd.CategoricalDtype):
            kind = ColumnKind.CATEGORICAL
        elif pd.api.types.is_integer_dtype(dt):
            kind = ColumnKind.ORDINAL
        elif pd.api.types.is_float_dtype(dt):
            kind = ColumnKind.CONTINUOUS
        else:
            kind = ColumnKind.CATEGORICAL

        if pos in forced:
            if kind is not ColumnKind.ORDINAL:
                raise ConfigurationError(
                    f"Column '{name}' is {kind.value}; only integer columns can be forced to categorical."
                )
            kind = ColumnKind.CATEGORICAL

        if kind is ColumnKind.CATEGORICAL:
            cats = _category_order(s)
            element = _element_type(cats)
        else:
            cats = []
            element = "int" if kind is ColumnKind.ORDINAL else "float"

        specs.append(ColumnSpec(name=name, position=pos, kind=kind, dtype=dt, element=element, categories=cats))

    return TableSchema(columns=specs, container=container)


def _to_float_series(s: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(s.dtype) and not pd.api.types.is_bool_dtype(s.dtype):
        return s.astype("float64")
    obj = s.astype(object).where(s.notna(), np.nan)
    return pd.to_numeric(obj, errors="coerce").astype("float64")


def missing_mask(df: pd.DataFrame) -> np.ndarray:
    """N x D boolean matrix, True where a cell is missing."""
    return df.isna().to_numpy(dtype=bool)


def cast_to_schema(df: pd.DataFrame, schema: TableSchema) -> pd.DataFrame:
    """Cast a frame to the working representation of ``schema``.

    CONTINUOUS -> float64, ORDINAL -> Int64, CATEGORICAL -> object holding
    values of the column's element type. Missing cells stay missing; any
    non-missing value that cannot be converted raises
    :class:`TypeCoercionError` instead of silently becoming NaN. Integer
    columns never pass through float, and a non-integral observed value in
    an ORDINAL column is an error rather than being rounded.
    """
    schema.check_width(df.shape[1])
    out = pd.DataFrame(index=df.index)
    for spec in schema.columns:
        s = df.iloc[:, spec.position]
        if spec.kind is ColumnKind.CATEGORICAL:
            vals = [np.nan if _isna(v) else spec.coerce(v, exact=True) for v in s.astype(object)]
            col = pd.Series(vals, index=df.index, dtype=object)
        elif spec.kind is ColumnKind.ORDINAL:
            if pd.api.types.is_integer_dtype(s.dtype):
                col = s.astype("Int64")
            else:
                vals = [pd.NA if _isna(v) else spec.coerce(v, exact=True) for v in s.astype(object)]
                col = pd.Series(vals, index=df.index, dtype="Int64")
        else:
            col = _to_float_series(s)
            bad = col.isna() & s.notna()
            if bad.any():
                raise TypeCoercionError(spec.name, spec.kind.value, s[bad].iloc[0])
        out[spec.position] = col
    return out


def restore_output(work: pd.DataFrame, schema: TableSchema, labels: Optional[Sequence[Any]] = None) -> Any:
    """Convert a completed working frame back to the caller's container and dtypes.

    Frames get ``labels`` as column names (default: the fitted names); columns
    are always matched by position.
    """
    if schema.container == "array":
        kinds = set(schema.kinds)
        if kinds == {ColumnKind.CONTINUOUS}:
            return work.to_numpy(dtype=float)
        if kinds == {ColumnKind.ORDINAL} and not work.isna().any().any():
            return work.to_numpy(dtype=np.int64)
        arr = np.empty(work.shape, dtype=object)
        for spec in schema.columns:
            col = work.iloc[:, spec.position]
            arr[:, spec.position] = [None if _isna(v) else v for v in col.astype(object)]
        return arr

    cols = {}
    for spec in schema.columns:
        col = work.iloc[:, spec.position]
        has_na = bool(col.isna().any())
        dt = spec.dtype
        if spec.kind is ColumnKind.CONTINUOUS:
            col = col.astype(dt)
        elif isinstance(dt, pd.CategoricalDtype):
            col = pd.Series(pd.Categorical(col, dtype=dt), index=work.index)
        elif isinstance(dt, np.dtype) and dt.kind in "iub" and not has_na:
            col = col.astype(dt)
        elif spec.kind is ColumnKind.ORDINAL or spec.element == "int":
            col = col.astype("Int64")
        elif isinstance(dt, pd.StringDtype):
            col = col.astype(dt)
        cols[spec.position] = col.array
    out = pd.DataFrame(cols, index=work.index)
    out.columns = pd.Index(schema.labels if labels is None else list(labels), tupleize_cols=False)
    return out
