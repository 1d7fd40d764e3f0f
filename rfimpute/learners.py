from __future__ import annotations

"""Per-column learners.

Any object following the scikit-learn estimator duck type can impute a column:
``fit(X, y)`` and ``predict(X)``, optionally ``predict_proba(X)`` with a
``classes_`` attribute. The default learner is a random forest, a classifier
for categorical columns and a regressor otherwise (Stekhoven & Bühlmann
2012 style, with small forests of 30 trees by default).
"""

import copy
import warnings
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

import numpy as np
from sklearn.base import clone
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor

from .exceptions import ConfigurationError, TypeCoercionError
from .schema import ColumnKind, ColumnSpec


class Learner(Protocol):
    def fit(self, X: np.ndarray, y: np.ndarray) -> Any:
        ...

    def predict(self, X: np.ndarray) -> Any:
        ...


@dataclass
class ForestParams:
    """Random forest hyperparameters shared by every column slot."""

    n_estimators: int = 30
    max_depth: Optional[int] = None
    min_samples_split: int = 2
    min_impurity_decrease: float = 0.0
    max_features: Optional[int] = None      # None -> round(sqrt(D - 1))
    classification_criterion: str = "gini"
    regression_criterion: str = "squared_error"
    oob: bool = False

    def validate(self) -> None:
        if int(self.n_estimators) < 1:
            raise ConfigurationError(f"n_estimators must be >= 1, got {self.n_estimators}")
        if self.max_depth is not None and int(self.max_depth) < 1:
            raise ConfigurationError(f"max_depth must be >= 1 or None, got {self.max_depth}")
        if int(self.min_samples_split) < 2:
            raise ConfigurationError(f"min_samples_split must be >= 2, got {self.min_samples_split}")
        if self.max_features is not None and int(self.max_features) < 1:
            raise ConfigurationError(f"max_features must be >= 1 or None, got {self.max_features}")
        if self.classification_criterion not in {"gini", "entropy", "log_loss"}:
            raise ConfigurationError(f"Unknown classification_criterion '{self.classification_criterion}'")
        if self.regression_criterion not in {"squared_error", "friedman_mse", "poisson"}:
            raise ConfigurationError(f"Unknown regression_criterion '{self.regression_criterion}'")


def make_forest(kind: ColumnKind, params: ForestParams, n_features: int, random_state: Optional[int] = None):
    """Build an unfitted forest for a column of the given kind."""
    if params.max_features is None:
        mtry = max(1, int(round(np.sqrt(n_features))))
    else:
        mtry = int(params.max_features)
    mtry = min(mtry, n_features)

    common = dict(
        n_estimators=int(params.n_estimators),
        max_depth=params.max_depth,
        min_samples_split=int(params.min_samples_split),
        min_impurity_decrease=float(params.min_impurity_decrease),
        max_features=mtry,
        bootstrap=True,
        oob_score=bool(params.oob),
        random_state=random_state,
    )
    if kind is ColumnKind.CATEGORICAL:
        return RandomForestClassifier(criterion=params.classification_criterion, **common)
    return RandomForestRegressor(criterion=params.regression_criterion, **common)


def clone_learner(prototype: Any) -> Any:
    """Fresh, unfitted copy of a learner prototype (or the product of a factory)."""
    if not hasattr(prototype, "fit") and callable(prototype):
        learner = prototype()
    elif hasattr(prototype, "get_params"):
        learner = clone(prototype)
    else:
        learner = copy.deepcopy(prototype)
    if not (hasattr(learner, "fit") and hasattr(learner, "predict")):
        raise ConfigurationError(
            f"{type(learner).__name__} does not implement the fit(X, y) / predict(X) learner contract."
        )
    return learner


def seed_learner(learner: Any, seed: int) -> None:
    """Set ``random_state`` on learners that expose it as a parameter."""
    if not hasattr(learner, "get_params"):
        return
    if "random_state" in learner.get_params(deep=False):
        learner.set_params(random_state=int(seed))


def mode_of(dist: Dict[Any, float], rank: Callable[[Any], int]) -> Any:
    """Most likely label of a ``{label: weight}`` distribution; ties go to the lowest rank."""
    if not dist:
        raise ValueError("empty distribution")
    return min(dist.items(), key=lambda kv: (-kv[1], rank(kv[0])))[0]


def mode_from_proba(classes: np.ndarray, proba: np.ndarray, rank: Callable[[Any], int]) -> List[Any]:
    """Row-wise mode of a probability matrix whose columns follow ``classes``."""
    order = sorted(range(len(classes)), key=lambda j: rank(classes[j]))
    proba = np.asarray(proba, dtype=float)[:, order]
    best = np.argmax(proba, axis=1)   # first maximum wins
    return [classes[order[j]] for j in best]


def oob_error(learner: Any) -> float:
    """Out-of-bag error (``1 - oob_score_``), NaN when the learner has none."""
    score = getattr(learner, "oob_score_", None)
    if score is None:
        return float("nan")
    return 1.0 - float(score)


class ColumnModel:
    """One learner bound to one target column.

    The slot knows how to present the column's observed values to its learner
    and how to turn whatever the learner predicts (labels, numbers, class
    probabilities or ``{label: p}`` dicts) back into values of the column's
    declared type.
    """

    def __init__(self, spec: ColumnSpec, learner: Learner):
        self.spec = spec
        self.learner = learner
        self.fitted = False
        self.oob_error = float("nan")
        # categorical columns without a natural sklearn label type are trained on codes
        self._codes = spec.is_categorical and spec.element not in {"int", "str", "bool"}

    def __repr__(self) -> str:
        state = "fitted" if self.fitted else "unfitted"
        return f"ColumnModel({self.spec.name!r}, {type(self.learner).__name__}, {state})"

    def _rank(self, label: Any) -> int:
        if self._codes:
            return int(label)
        return self.spec.code_map.get(label, len(self.spec.categories))

    def _target(self, values: List[Any]) -> np.ndarray:
        spec = self.spec
        if spec.kind is ColumnKind.CONTINUOUS:
            return np.asarray(values, dtype=float)
        if spec.kind is ColumnKind.ORDINAL or spec.element == "int":
            return np.asarray(values, dtype=np.int64)
        if spec.element == "bool":
            return np.asarray(values, dtype=bool)
        if spec.element == "str":
            return np.asarray(values, dtype=object)
        return np.asarray([spec.code_map[v] for v in values], dtype=np.int64)

    def _decode(self, labels: List[Any]) -> List[Any]:
        if not self._codes:
            return labels
        cats = self.spec.categories
        out = []
        for lab in labels:
            code = int(np.rint(float(lab)))
            if not 0 <= code < len(cats):
                raise TypeCoercionError(self.spec.name, self.spec.kind.value, lab)
            out.append(cats[code])
        return out

    def train(self, X: np.ndarray, values: List[Any]) -> "ColumnModel":
        y = self._target(values)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            self.learner.fit(X, y)
        self.fitted = True
        self.oob_error = oob_error(self.learner)
        return self

    def predict(self, X: np.ndarray) -> List[Any]:
        """Predict and coerce values for the rows of ``X``."""
        n = X.shape[0]
        if n == 0:
            return []
        learner = self.learner
        if self.spec.is_categorical and hasattr(learner, "predict_proba") and hasattr(learner, "classes_"):
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                proba = learner.predict_proba(X)
            labels = mode_from_proba(np.asarray(learner.classes_), proba, self._rank)
        else:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                raw = learner.predict(X)
            labels = self._reduce(raw, n)
        return [self.spec.coerce(v) for v in self._decode(labels)]

    def _reduce(self, raw: Any, n: int) -> List[Any]:
        """Flatten a raw prediction into one value per row."""
        if hasattr(raw, "to_numpy"):
            raw = raw.to_numpy()
        if isinstance(raw, dict):
            raw = [raw]
        if isinstance(raw, (list, tuple)) and raw and isinstance(raw[0], dict):
            out = [mode_of(d, self._rank) for d in raw]
        else:
            arr = np.asarray(raw, dtype=object)
            if arr.ndim == 0:
                arr = arr.reshape(1)
            if arr.ndim == 2 and arr.shape[1] == 1:
                arr = arr[:, 0]
            if arr.ndim != 1:
                raise TypeCoercionError(
                    self.spec.name, self.spec.kind.value, f"<prediction of shape {arr.shape}>"
                )
            out = [mode_of(v, self._rank) if isinstance(v, dict) else v for v in arr]
        if len(out) != n:
            raise TypeCoercionError(
                self.spec.name, self.spec.kind.value, f"<{len(out)} predictions for {n} rows>"
            )
        return out
