from __future__ import annotations

import warnings

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.stats import ConstantInputWarning, spearmanr
from sklearn.exceptions import UndefinedMetricWarning
from sklearn.metrics import (
    accuracy_score,
    cohen_kappa_score,
    f1_score,
    mean_absolute_error,
    mean_squared_error,
    r2_score,
)

from .schema import ColumnKind, as_frame, infer_schema


def nrmse(true: np.ndarray, pred: np.ndarray, value_range: Optional[float] = None) -> float:
    rmse = float(np.sqrt(mean_squared_error(true, pred)))
    if value_range is None:
        value_range = float(np.nanmax(true) - np.nanmin(true))
    return rmse / value_range if value_range and value_range > 0 else rmse


def spearman_rho(true: np.ndarray, pred: np.ndarray) -> float:
    """Spearman's rho on 1-D arrays.

    Spearman is undefined when either input is constant. We treat such cases as
    rho=0.0 (conservative) and avoid emitting scipy warnings.
    """
    true = np.asarray(true, dtype=float)
    pred = np.asarray(pred, dtype=float)
    if true.size < 2:
        return float("nan")

    std_true = float(np.nanstd(true))
    std_pred = float(np.nanstd(pred))
    if (not np.isfinite(std_true)) or (not np.isfinite(std_pred)):
        return 0.0
    if std_true < 1e-12 or std_pred < 1e-12:
        return 0.0

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=ConstantInputWarning)
        warnings.filterwarnings("ignore", category=RuntimeWarning)
        rho, _ = spearmanr(true, pred, nan_policy="omit")

    if np.isnan(rho) or (not np.isfinite(rho)):
        return 0.0
    return float(rho)


def compute_continuous_metrics(
    true_vals: np.ndarray, pred_vals: np.ndarray, full_true_col: Optional[pd.Series] = None
) -> Dict[str, float]:
    true_vals = np.asarray(true_vals, dtype=float)
    pred_vals = np.asarray(pred_vals, dtype=float)
    rmse = float(np.sqrt(mean_squared_error(true_vals, pred_vals)))
    mae = float(mean_absolute_error(true_vals, pred_vals))
    r2 = float(r2_score(true_vals, pred_vals)) if len(true_vals) >= 2 else float("nan")

    if full_true_col is not None:
        full = pd.to_numeric(full_true_col, errors="coerce").astype(float)
        vr = float(full.max() - full.min())
    else:
        vr = float(np.nanmax(true_vals) - np.nanmin(true_vals))
    nrmse_val = nrmse(true_vals, pred_vals, vr)

    mb = float(np.mean(pred_vals - true_vals))
    rho = spearman_rho(true_vals, pred_vals)

    return {"RMSE": rmse, "NRMSE": nrmse_val, "MAE": mae, "MB": mb, "R2": r2, "Spearman": rho}


def compute_categorical_metrics(
    true_vals: Sequence[Any],
    pred_vals: Sequence[Any],
    *,
    labels: Optional[List[Any]] = None,
) -> Dict[str, float]:
    """Accuracy, macro-F1 and Cohen's kappa on aligned label sequences.

    Notes
    -----
    - Labels are compared as strings so that ``3`` and ``'3'`` agree.
    - Cohen's kappa is undefined for degenerate single-class problems; we
      return 0.0 in that case (conservative) and suppress runtime warnings.
    """
    true_s = [str(v) for v in true_vals]
    pred_s = [str(v) for v in pred_vals]
    if len(true_s) == 0:
        return {"Accuracy": float("nan"), "Macro-F1": float("nan"), "Cohen_kappa": float("nan")}

    if labels is None:
        labels = sorted(set(true_s) | set(pred_s))
    else:
        labels = [str(v) for v in labels]

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=UndefinedMetricWarning)
        warnings.filterwarnings("ignore", category=UserWarning)
        warnings.filterwarnings("ignore", category=RuntimeWarning)

        acc = float(accuracy_score(true_s, pred_s))
        f1_macro = float(f1_score(true_s, pred_s, labels=labels, average="macro", zero_division=0))

        if len(labels) < 2:
            kappa = 0.0
        else:
            kappa = float(cohen_kappa_score(true_s, pred_s, labels=labels))
            if np.isnan(kappa) or (not np.isfinite(kappa)):
                kappa = 0.0

    return {"Accuracy": acc, "Macro-F1": f1_macro, "Cohen_kappa": kappa}


@dataclass
class EvaluationResult:
    per_feature: pd.DataFrame
    summary: Dict[str, float]


def _column_kinds(X_complete: pd.DataFrame, forced_categorical_cols: Optional[Sequence[Any]]) -> List[ColumnKind]:
    frame, container = as_frame(X_complete)
    return infer_schema(frame, container=container, forced_categorical_cols=forced_categorical_cols).kinds


def evaluate_imputation(
    X_imputed: Any,
    X_complete: Any,
    mask: Union[np.ndarray, pd.DataFrame],
    *,
    forced_categorical_cols: Optional[Sequence[Any]] = None,
) -> EvaluationResult:
    """
    Evaluate only on positions flagged in ``mask`` (True = originally missing).

    Column kinds come from the ground-truth table: continuous and ordinal
    columns get RMSE-family metrics, categorical columns get label metrics.
    """
    imputed, _ = as_frame(X_imputed)
    complete, _ = as_frame(X_complete)
    mask = np.asarray(mask, dtype=bool)
    if imputed.shape != complete.shape or mask.shape != complete.shape:
        raise ValueError(
            f"Shape mismatch: imputed {imputed.shape}, complete {complete.shape}, mask {mask.shape}"
        )
    kinds = _column_kinds(complete, forced_categorical_cols)

    rows = []
    for j, kind in enumerate(kinds):
        miss = mask[:, j]
        if int(miss.sum()) == 0:
            continue
        name = complete.columns[j]
        true_col = complete.iloc[:, j]
        pred_col = imputed.iloc[:, j]

        if kind is ColumnKind.CATEGORICAL:
            keep = miss & true_col.notna().to_numpy()
            if not keep.any():
                continue
            labels = pd.unique(true_col.dropna().astype(object)).tolist()
            m = compute_categorical_metrics(
                true_col[keep].tolist(), pred_col[keep].tolist(), labels=labels
            )
            m.update({"feature": name, "type": "categorical", "n_eval": int(keep.sum())})
        else:
            true_num = pd.to_numeric(true_col, errors="coerce").astype(float)
            pred_num = pd.to_numeric(pred_col, errors="coerce").astype(float)
            keep = miss & true_num.notna().to_numpy() & pred_num.notna().to_numpy()
            if not keep.any():
                continue
            m = compute_continuous_metrics(true_num[keep].values, pred_num[keep].values, full_true_col=true_num)
            m.update({"feature": name, "type": kind.value, "n_eval": int(keep.sum())})
        rows.append(m)

    per_feature = pd.DataFrame(rows)

    summary: Dict[str, float] = {}
    if not per_feature.empty:
        num_df = per_feature[per_feature["type"] != "categorical"]
        cat_df = per_feature[per_feature["type"] == "categorical"]

        for metric in ["NRMSE", "RMSE", "MAE", "MB", "R2", "Spearman"]:
            if metric in num_df.columns and len(num_df) > 0:
                summary[f"num_{metric}"] = float(np.nanmean(num_df[metric].values))
        for metric in ["Accuracy", "Macro-F1", "Cohen_kappa"]:
            if metric in cat_df.columns and len(cat_df) > 0:
                summary[f"cat_{metric}"] = float(np.nanmean(cat_df[metric].values))

        summary["n_num_features"] = int(len(num_df))
        summary["n_cat_features"] = int(len(cat_df))
        summary["n_features_total"] = int(len(per_feature))

    return EvaluationResult(per_feature=per_feature, summary=summary)


def imputation_spread(
    imputations: Sequence[Any],
    mask: Union[np.ndarray, pd.DataFrame],
    *,
    forced_categorical_cols: Optional[Sequence[Any]] = None,
) -> pd.DataFrame:
    """
    Between-imputation variability on the originally missing cells.

    Numeric columns: mean over cells of the standard deviation across
    imputations. Categorical columns: mean over cells of the share of
    imputations disagreeing with the cell's most frequent value.
    """
    if len(imputations) < 2:
        raise ValueError("imputation_spread needs at least two imputations")
    frames = [as_frame(x)[0] for x in imputations]
    mask = np.asarray(mask, dtype=bool)
    kinds = _column_kinds(frames[0], forced_categorical_cols)

    rows = []
    for j, kind in enumerate(kinds):
        cells = np.flatnonzero(mask[:, j])
        if cells.size == 0:
            continue
        stacked = [f.iloc[cells, j].tolist() for f in frames]
        if kind is ColumnKind.CATEGORICAL:
            per_cell = []
            for c in range(cells.size):
                votes = pd.Series([str(s[c]) for s in stacked]).value_counts()
                per_cell.append(1.0 - votes.iloc[0] / len(stacked))
            rows.append({"feature": frames[0].columns[j], "type": kind.value,
                         "disagreement": float(np.mean(per_cell)), "n_cells": int(cells.size)})
        else:
            arr = np.asarray(stacked, dtype=float)
            rows.append({"feature": frames[0].columns[j], "type": kind.value,
                         "std": float(np.mean(arr.std(axis=0))), "n_cells": int(cells.size)})
    return pd.DataFrame(rows)
