# MeanImputer_v1.py
# -*- coding: utf-8 -*-

import logging
import time
from dataclasses import replace

import numpy as np

from rfimpute.exceptions import (
    ConfigurationError,
    FitStateError,
    TrainingDataExhaustedError,
)
from rfimpute.imputer import ImputationInfo, WorkingMatrix
from rfimpute.scheduler import missing_counts
from rfimpute.schema import ColumnKind, as_frame, cast_to_schema, infer_schema, missing_mask, restore_output

log = logging.getLogger(__name__)


class MeanImputer:
    """
    Simple closed-form imputation of mixed-type data:
      - continuous columns: column mean of the observed values
      - ordinal (integer) columns: column mean rounded to the nearest integer
      - categorical columns: most frequent label (ties -> first category)

    A fully missing numeric column falls back to the mean of all observed
    numeric cells; a fully missing categorical column cannot be imputed.

    With ``norm`` (e.g. 1 for the l-1 norm) the numeric means are scaled per
    record by the record's norm relative to the average record norm. Useful
    when records have very different magnitudes (e.g. export quantities of
    different countries). Predicting then requires the same number of rows.

    Example:
        imp = MeanImputer()
        X_imputed = imp.fit_predict(X_missing)
    """

    description = "A simple feature-mean imputer"

    def __init__(self, norm=None, forced_categorical_cols=None, cache=True, logger=None):
        if norm is not None and (isinstance(norm, bool) or not isinstance(norm, (int, float)) or norm <= 0):
            raise ConfigurationError(f"norm must be None or a positive number, got {norm!r}")
        self.norm = norm
        self.forced_categorical_cols = list(forced_categorical_cols or [])
        self.cache = cache
        self.log = logger or log

        self.fitted = False
        self.schema_ = None
        self.fill_values_ = None
        self.record_norms_ = None
        self.imputations_ = None
        self.info_ = None

    def __repr__(self):
        return f"MeanImputer - {self.description} ({'fitted' if self.fitted else 'unfitted'})"

    def _record_norms(self, encoded, mask, numeric):
        """Per-record l-norm of the observed numeric cells divided by their count."""
        norms = np.full(encoded.shape[0], np.nan)
        for r in range(encoded.shape[0]):
            vals = encoded[r, numeric][~mask[r, numeric]]
            if vals.size:
                norms[r] = np.linalg.norm(vals, ord=self.norm) / vals.size
        if np.isnan(norms).all():
            return np.ones_like(norms)
        norms[np.isnan(norms)] = np.nanmean(norms)
        return norms

    def _fill(self, work, mask):
        for spec in self.schema_.columns:
            d = spec.position
            rows = np.flatnonzero(mask[:, d])
            if rows.size == 0:
                continue
            value = self.fill_values_[d]
            if spec.is_categorical:
                values = [value] * rows.size
            else:
                scale = np.ones(rows.size)
                if self.record_norms_ is not None:
                    scale = self.record_norms_[rows] / np.mean(self.record_norms_)
                values = [value * s for s in scale]
                if spec.kind is ColumnKind.ORDINAL:
                    values = [int(np.rint(v)) for v in values]
            work.assign(d, rows, values)

    def fit(self, X):
        """Compute the column statistics on ``X``."""
        # 1. refuse silent retraining
        if self.fitted:
            raise FitStateError("MeanImputer has already been fitted: multiple training is unsupported.")
        t0 = time.time()

        # 2. type the columns and record the missing cells
        frame, container = as_frame(X)
        schema = infer_schema(frame, container=container, forced_categorical_cols=self.forced_categorical_cols)
        mask = missing_mask(frame)
        work0 = cast_to_schema(frame, schema)
        encoded = schema.encode(work0)
        numeric = [s.position for s in schema.columns if not s.is_categorical]

        # 3. column statistics
        observed_numeric = encoded[:, numeric][~mask[:, numeric]]
        overall_mean = float(observed_numeric.mean()) if observed_numeric.size else 0.0
        fill_values = []
        for spec in schema.columns:
            d = spec.position
            obs = ~mask[:, d]
            if spec.is_categorical:
                if not obs.any():
                    raise TrainingDataExhaustedError(spec.name)
                counts = {}
                for v in work0.iloc[np.flatnonzero(obs), d]:
                    counts[v] = counts.get(v, 0) + 1
                top = max(counts.values())
                fill_values.append(next(c for c in spec.categories if counts.get(c, 0) == top))
            else:
                fill_values.append(float(encoded[obs, d].mean()) if obs.any() else overall_mean)

        self.schema_ = schema
        self.fill_values_ = fill_values
        self.record_norms_ = self._record_norms(encoded, mask, numeric) if self.norm is not None else None

        # 4. impute the training table itself
        work = WorkingMatrix.fresh(work0, encoded, mask, schema)
        self._fill(work, mask)
        out = restore_output(work.frame, schema)

        self.imputations_ = [out.copy()] if self.cache else None
        counts = missing_counts(mask)
        self.info_ = ImputationInfo(
            n_imputed_cells=int(mask.sum()),
            missing_per_column={s.name: int(c) for s, c in zip(schema.columns, counts)},
            column_orders=[[list(range(schema.n_columns))]],
            oob_errors=None,
            random_entropy=0,
            runtime_seconds=time.time() - t0,
        )
        self.fitted = True
        self.log.info("MeanImputer fitted: %d cell(s) imputed", self.info_.n_imputed_cells)
        return out

    def fit_predict(self, X):
        return self.fit(X)

    def predict(self, X=None):
        """Impute ``X`` (or return the cached training imputation) with the fitted statistics."""
        if not self.fitted:
            raise FitStateError("MeanImputer must be fitted before calling predict.")
        if X is None:
            if self.imputations_ is None:
                raise FitStateError("Fit-time imputation was not cached (cache=False); pass the data to impute.")
            return self.imputations_[0].copy()

        frame, container = as_frame(X)
        self.schema_.check_width(frame.shape[1])
        if self.record_norms_ is not None and frame.shape[0] != len(self.record_norms_):
            raise ConfigurationError(
                "With norm set, MeanImputer can only predict tables with the same number of rows "
                f"as the training table ({len(self.record_norms_)})."
            )
        schema = replace(self.schema_, container=container)
        mask = missing_mask(frame)
        work0 = cast_to_schema(frame, schema)
        work = WorkingMatrix.fresh(work0, schema.encode(work0), mask, schema)
        self._fill(work, mask)
        return restore_output(work.frame, schema, labels=frame.columns)

    def info(self):
        if not self.fitted:
            raise FitStateError("MeanImputer has not been fitted yet.")
        return self.info_
