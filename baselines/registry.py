from __future__ import annotations

"""Imputer registry.

Single entry point used by the scripts to build any imputer by name:

    imputer = build_imputer("RF", multiple_imputations=5, random_state=1)
    X_imputed = imputer.fit_predict(X_missing)

- RF:      chained random-forest imputer
- General: chained imputer over arbitrary regressors/classifiers
- Mean:    column mean / rounded mean / mode
- GMM:     Gaussian mixture EM imputer (numeric tables)
"""

from typing import Any, Dict, List

import pandas as pd

from rfimpute import GeneralImputer, RFImputer
from rfimpute.exceptions import ConfigurationError

from .GMMImputer_v1 import GMMImputer
from .MeanImputer_v1 import MeanImputer

_REGISTRY = {
    "RF": RFImputer,
    "General": GeneralImputer,
    "Mean": MeanImputer,
    "GMM": GMMImputer,
}

# Baselines take plain keyword arguments; the chained imputers validate their own.
_BASELINE_OPTIONS = {
    "Mean": ["norm", "forced_categorical_cols", "cache"],
    "GMM": ["n_classes", "initial_probmixtures", "tol", "max_iter", "minimum_variance", "random_state", "cache"],
}


def _drop_nan_kwargs(kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """Return a new kwargs dict without NaN values (blank cells of a parameter sheet)."""
    out: Dict[str, Any] = {}
    for k, v in kwargs.items():
        if isinstance(v, float) and pd.isna(v):
            continue
        out[k] = v
    return out


def list_imputers() -> List[str]:
    return sorted(_REGISTRY.keys())


def build_imputer(method: str, *, logger=None, **kwargs: Any):
    """Build an imputer by name. Unknown methods or options raise ConfigurationError."""
    m = str(method).strip()
    if m not in _REGISTRY:
        raise ConfigurationError(f"Unknown imputation method '{method}'. Available: {list_imputers()}")

    options = _drop_nan_kwargs(kwargs)
    if m in _BASELINE_OPTIONS:
        allowed = _BASELINE_OPTIONS[m]
        unknown = sorted(k for k in options if k not in allowed)
        if unknown:
            raise ConfigurationError(
                f"Unknown option(s) {unknown} for {_REGISTRY[m].__name__}. Available: {allowed}"
            )
    return _REGISTRY[m](logger=logger, **options)
