# GMMImputer_v1.py
# -*- coding: utf-8 -*-

import logging
import time
import warnings
from dataclasses import replace

import numpy as np
from scipy.special import logsumexp
from scipy.stats import norm as normal
from sklearn.mixture import GaussianMixture

from rfimpute.exceptions import ConfigurationError, FitStateError, TrainingDataExhaustedError
from rfimpute.imputer import ImputationInfo, WorkingMatrix
from rfimpute.scheduler import missing_counts
from rfimpute.schema import ColumnKind, as_frame, cast_to_schema, infer_schema, missing_mask, restore_output
from rfimpute.utils import draw_seed, master_seed_sequence

log = logging.getLogger(__name__)


class GMMImputer:
    """
    Imputation from a Gaussian mixture model with diagonal covariances.

    EM over the incomplete table:
      - fit sklearn's GaussianMixture on the current completion (warm started)
      - per record, component responsibilities from its observed cells only
      - each missing cell <- responsibility-weighted mean of the component means
    until the imputed cells move less than ``tol`` (relative to the column
    standard deviation) or ``max_iter`` rounds.

    Numeric columns only; ordinal columns get rounded values. The procedure is
    deterministic given ``random_state``, so there is a single imputation.

    Parameters
    ----------
    n_classes : number of mixture components
    initial_probmixtures : initial component weights (None -> sklearn init)
    minimum_variance : added to every component variance (sklearn ``reg_covar``)

    Example:
        imp = GMMImputer(n_classes=2, random_state=0)
        X_imputed = imp.fit_predict(X_missing)
        imp.scores_["BIC"]
    """

    description = "A Gaussian Mixture Model based imputer"

    def __init__(
        self,
        n_classes=3,
        initial_probmixtures=None,
        tol=1e-4,
        max_iter=100,
        minimum_variance=1e-6,
        random_state=None,
        cache=True,
        logger=None,
    ):
        if isinstance(n_classes, bool) or not isinstance(n_classes, (int, np.integer)) or n_classes < 1:
            raise ConfigurationError(f"n_classes must be a positive integer, got {n_classes!r}")
        if initial_probmixtures is not None:
            p0 = np.asarray(initial_probmixtures, dtype=float)
            if p0.shape != (n_classes,) or (p0 < 0).any() or not np.isclose(p0.sum(), 1.0):
                raise ConfigurationError(
                    f"initial_probmixtures must be {n_classes} non-negative weights summing to 1, "
                    f"got {initial_probmixtures!r}"
                )
            initial_probmixtures = p0
        if not tol > 0:
            raise ConfigurationError(f"tol must be positive, got {tol!r}")
        if isinstance(max_iter, bool) or not isinstance(max_iter, (int, np.integer)) or max_iter < 1:
            raise ConfigurationError(f"max_iter must be a positive integer, got {max_iter!r}")
        if not minimum_variance >= 0:
            raise ConfigurationError(f"minimum_variance must be >= 0, got {minimum_variance!r}")
        if isinstance(random_state, bool) or not (
            random_state is None or isinstance(random_state, (int, np.integer, np.random.SeedSequence))
        ):
            raise ConfigurationError(f"random_state must be None, an int or a SeedSequence, got {random_state!r}")

        self.n_classes = int(n_classes)
        self.initial_probmixtures = initial_probmixtures
        self.tol = float(tol)
        self.max_iter = int(max_iter)
        self.minimum_variance = float(minimum_variance)
        self.random_state = random_state
        self.cache = cache
        self.log = logger or log

        self.fitted = False
        self.schema_ = None
        self.mixture_ = None
        self.scores_ = None
        self.imputations_ = None
        self.info_ = None

    def __repr__(self):
        return f"GMMImputer - {self.description} ({'fitted' if self.fitted else 'unfitted'})"

    def _responsibilities(self, encoded, mask):
        """Posterior component probabilities of each record given its observed cells, and the log-likelihood."""
        gm = self.mixture_
        obs = ~mask
        x = np.where(obs, encoded, 0.0)
        log_prob = np.tile(np.log(gm.weights_), (encoded.shape[0], 1))
        for k in range(gm.n_components):
            lp = normal.logpdf(x, loc=gm.means_[k], scale=np.sqrt(gm.covariances_[k]))
            log_prob[:, k] += np.where(obs, lp, 0.0).sum(axis=1)
        log_norm = logsumexp(log_prob, axis=1)
        return np.exp(log_prob - log_norm[:, None]), float(log_norm.sum())

    def _fill(self, work, mask, expected):
        for spec in self.schema_.columns:
            d = spec.position
            rows = np.flatnonzero(mask[:, d])
            if rows.size == 0:
                continue
            values = expected[rows, d].tolist()
            if spec.kind is ColumnKind.ORDINAL:
                values = [int(np.rint(v)) for v in values]
            work.assign(d, rows, values)

    def fit(self, X):
        """Run EM on ``X`` and return its completion."""
        # 1. refuse silent retraining
        if self.fitted:
            raise FitStateError("GMMImputer has already been fitted: multiple training is unsupported.")
        t0 = time.time()

        # 2. type the columns (numeric only) and record the missing cells
        frame, container = as_frame(X)
        schema = infer_schema(frame, container=container)
        categorical = [s.name for s in schema.columns if s.is_categorical]
        if categorical:
            raise ConfigurationError(f"GMMImputer only handles numeric columns; categorical: {categorical}")
        mask = missing_mask(frame)
        for spec in schema.columns:
            if mask[:, spec.position].all():
                raise TrainingDataExhaustedError(spec.name)
        n_rows, n_cols = frame.shape
        if n_rows < self.n_classes:
            raise ConfigurationError(f"n_classes={self.n_classes} exceeds the number of records ({n_rows}).")
        work0 = cast_to_schema(frame, schema)
        encoded = schema.encode(work0)
        self.schema_ = schema

        # 3. EM, starting from the column means
        master = master_seed_sequence(self.random_state)
        col_mean = np.nanmean(encoded, axis=0)
        col_scale = np.nanstd(encoded, axis=0)
        col_scale[~(col_scale > 0)] = 1.0
        filled = encoded.copy()
        filled[mask] = np.take(col_mean, np.nonzero(mask)[1])

        gm = GaussianMixture(
            n_components=self.n_classes,
            covariance_type="diag",
            weights_init=self.initial_probmixtures,
            reg_covar=self.minimum_variance,
            random_state=draw_seed(np.random.default_rng(master)),
            warm_start=True,
        )
        self.mixture_ = gm
        for it in range(1, self.max_iter + 1):
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                gm.fit(filled)
            resp, loglik = self._responsibilities(encoded, mask)
            expected = resp @ gm.means_
            if not mask.any():
                break
            cols = np.nonzero(mask)[1]
            delta = float(np.max(np.abs(expected[mask] - filled[mask]) / col_scale[cols]))
            filled[mask] = expected[mask]
            self.log.debug("EM round %d: max relative change %.3g", it, delta)
            if delta <= self.tol:
                break

        n_params = self.n_classes * n_cols * 2 + self.n_classes - 1
        self.scores_ = {
            "log_likelihood": loglik,
            "BIC": float(-2.0 * loglik + n_params * np.log(n_rows)),
            "AIC": float(-2.0 * loglik + 2.0 * n_params),
            "n_iter": it,
        }

        # 4. impute the training table itself
        work = WorkingMatrix.fresh(work0, encoded, mask, schema)
        self._fill(work, mask, expected)
        out = restore_output(work.frame, schema)

        self.imputations_ = [out.copy()] if self.cache else None
        counts = missing_counts(mask)
        self.info_ = ImputationInfo(
            n_imputed_cells=int(mask.sum()),
            missing_per_column={s.name: int(c) for s, c in zip(schema.columns, counts)},
            column_orders=[[list(range(schema.n_columns))]],
            oob_errors=None,
            random_entropy=int(master.entropy),
            runtime_seconds=time.time() - t0,
        )
        self.fitted = True
        self.log.info(
            "GMMImputer fitted: %d cell(s) imputed, %d EM round(s), BIC %.2f",
            self.info_.n_imputed_cells, it, self.scores_["BIC"],
        )
        return out

    def fit_predict(self, X):
        return self.fit(X)

    def predict(self, X=None):
        """Impute ``X`` with the fitted mixture (or return the cached training imputation)."""
        if not self.fitted:
            raise FitStateError("GMMImputer must be fitted before calling predict.")
        if X is None:
            if self.imputations_ is None:
                raise FitStateError("Fit-time imputation was not cached (cache=False); pass the data to impute.")
            return self.imputations_[0].copy()

        frame, container = as_frame(X)
        self.schema_.check_width(frame.shape[1])
        schema = replace(self.schema_, container=container)
        mask = missing_mask(frame)
        work0 = cast_to_schema(frame, schema)
        encoded = schema.encode(work0)
        resp, _ = self._responsibilities(encoded, mask)
        work = WorkingMatrix.fresh(work0, encoded, mask, schema)
        self._fill(work, mask, resp @ self.mixture_.means_)
        return restore_output(work.frame, schema, labels=frame.columns)

    def info(self):
        if not self.fitted:
            raise FitStateError("GMMImputer has not been fitted yet.")
        return self.info_
