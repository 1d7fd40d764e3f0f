"""Imputers runnable from the scripts.

- RF (chained random forests, from ``rfimpute``)
- General (chained arbitrary learners, from ``rfimpute``)
- Mean (column mean / rounded mean / mode)
- GMM (Gaussian mixture EM, numeric tables)

Every imputer shares the same interface:

    imputer = build_imputer(method, **options)
    X_imputed = imputer.fit_predict(X_missing)
    imputer.info()
"""

from .GMMImputer_v1 import GMMImputer
from .MeanImputer_v1 import MeanImputer
from .registry import build_imputer, list_imputers

__all__ = ["GMMImputer", "MeanImputer", "build_imputer", "list_imputers"]
