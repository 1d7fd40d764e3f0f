# imputer.py - chained per-column imputers (random forests or arbitrary learners)
# with recursive passages and replicable multiple imputations

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm.auto import tqdm

from .exceptions import (
    ConfigurationError,
    FitStateError,
    ImputationError,
    ShapeMismatchError,
    TrainingDataExhaustedError,
)
from .learners import ColumnModel, ForestParams, clone_learner, make_forest, mode_of, seed_learner
from .scheduler import PassScheduler, missing_counts
from .schema import (
    ColumnKind,
    ColumnSpec,
    TableSchema,
    as_frame,
    cast_to_schema,
    infer_schema,
    missing_mask,
    restore_output,
)
from .utils import draw_seed, master_seed_sequence, substream, tqdm_joblib

log = logging.getLogger(__name__)

_INITIAL_STRATEGIES = (None, "mean")


@dataclass
class ImputerConfig:
    """
    Options shared by every chained imputer.

    - recursive_passages: sweeps over all columns per imputation. The first
      sweep visits columns by decreasing missing count, later ones in random order.
    - multiple_imputations: independent completions of the whole table.
    - forced_categorical_cols: integer columns (labels or positions) to model
      as categorical instead of ordinal.
    - initial_strategy: None leaves not-yet-imputed cells as NaN predictors;
      "mean" pre-fills them with mean / rounded mean / mode.
    - random_state: master seed. Each imputation derives its own sub-stream.
    - n_jobs: joblib threads for the independent imputations.
    - cache: keep the fit-time imputations for ``predict()``.
    - allow_refit: a second ``fit`` replaces every model instead of failing.
    - progress: tqdm progress bar over the imputations.
    """
    recursive_passages: int = 1
    multiple_imputations: int = 1
    forced_categorical_cols: List[Any] = field(default_factory=list)
    initial_strategy: Optional[str] = None
    random_state: Any = None
    n_jobs: Optional[int] = None
    cache: bool = True
    allow_refit: bool = False
    progress: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        for name in ("recursive_passages", "multiple_imputations"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, (int, np.integer)) or v < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {v!r}")
        if self.initial_strategy not in _INITIAL_STRATEGIES:
            raise ConfigurationError(
                f"initial_strategy must be one of {_INITIAL_STRATEGIES}, got {self.initial_strategy!r}"
            )
        if not (
            self.random_state is None
            or isinstance(self.random_state, (int, np.integer, np.random.SeedSequence))
        ) or isinstance(self.random_state, bool):
            raise ConfigurationError(f"random_state must be None, an int or a SeedSequence, got {self.random_state!r}")
        if self.n_jobs is not None and (not isinstance(self.n_jobs, (int, np.integer)) or self.n_jobs == 0):
            raise ConfigurationError(f"n_jobs must be None or a non-zero integer, got {self.n_jobs!r}")
        if isinstance(self.forced_categorical_cols, (str, bytes)) or not isinstance(
            self.forced_categorical_cols, (list, tuple)
        ):
            raise ConfigurationError("forced_categorical_cols must be a list of column labels or positions")


@dataclass
class RFImputerConfig(ForestParams, ImputerConfig):
    """Chained imputer options plus the random forest hyperparameters."""

    def validate(self) -> None:
        ImputerConfig.validate(self)
        ForestParams.validate(self)


@dataclass
class GeneralImputerConfig(RFImputerConfig):
    """
    models: None (a default forest per column), one learner used for every
    column, or a list with one entry per column. Entries are unfitted
    estimators, zero-argument factories, or None for the default forest.
    Forest fields apply to the default forests only.
    """
    models: Any = None
    initial_strategy: Optional[str] = "mean"


def build_config(config_class, options: Dict[str, Any]):
    """Instantiate ``config_class`` from keyword options, rejecting unknown names."""
    allowed = [f.name for f in fields(config_class)]
    unknown = sorted(k for k in options if k not in allowed)
    if unknown:
        raise ConfigurationError(
            f"Unknown option(s) {unknown} for {config_class.__name__}. Available: {allowed}"
        )
    return config_class(**options)


@dataclass
class ImputationInfo:
    """Report produced by ``fit``."""
    n_imputed_cells: int
    missing_per_column: Dict[Any, int]
    column_orders: List[List[List[int]]]
    oob_errors: Optional[np.ndarray]
    random_entropy: int
    runtime_seconds: float

    @property
    def number_of_imputed_cells(self) -> int:
        return self.n_imputed_cells

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["missing_per_column"] = {str(k): int(v) for k, v in self.missing_per_column.items()}
        out["oob_errors"] = None if self.oob_errors is None else self.oob_errors.tolist()
        out["random_entropy"] = int(self.random_entropy)
        return out


class WorkingMatrix:
    """
    Current best-known value of every cell for one imputation run.

    Keeps the typed frame (what the caller gets back) and its float encoding
    (what the learners see) in step. Only cells flagged in ``mask`` are ever
    assigned.
    """

    def __init__(self, frame: pd.DataFrame, encoded: np.ndarray, mask: np.ndarray, schema: TableSchema):
        self.frame = frame
        self.encoded = encoded
        self.mask = mask
        self.schema = schema

    @classmethod
    def fresh(cls, frame: pd.DataFrame, encoded: np.ndarray, mask: np.ndarray, schema: TableSchema) -> "WorkingMatrix":
        return cls(frame.copy(), encoded.copy(), mask, schema)

    def features(self, d: int, rows: np.ndarray) -> np.ndarray:
        others = [j for j in range(self.encoded.shape[1]) if j != d]
        return self.encoded[np.ix_(rows, others)]

    def values(self, d: int, rows: np.ndarray) -> List[Any]:
        return self.frame.iloc[rows, d].tolist()

    def assign(self, d: int, rows: np.ndarray, values: Sequence[Any]) -> None:
        if not self.mask[rows, d].all():
            raise ImputationError(f"Refusing to overwrite observed cells of column {d}.")
        spec = self.schema.columns[d]
        self.frame.iloc[rows, d] = list(values)
        self.encoded[rows, d] = spec.encode(values)

    def prefill(self) -> None:
        """Fill missing cells with column mean / rounded mean / mode (initial_strategy='mean')."""
        for spec in self.schema.columns:
            d = spec.position
            rows = np.flatnonzero(self.mask[:, d])
            observed = np.flatnonzero(~self.mask[:, d])
            if rows.size == 0 or observed.size == 0:
                continue
            if spec.is_categorical:
                counts = pd.Series(self.values(d, observed)).value_counts().to_dict()
                fill = mode_of(counts, lambda v: spec.code_map.get(v, len(spec.categories)))
            else:
                fill = float(np.mean(self.encoded[observed, d]))
                if spec.kind is ColumnKind.ORDINAL:
                    fill = int(np.rint(fill))
            self.assign(d, rows, [fill] * rows.size)


@dataclass
class _RunResult:
    frame: pd.DataFrame
    models: List[ColumnModel]
    oob: np.ndarray
    orders: List[List[int]]


class ChainedImputer:
    """
    Base class of the chained per-column imputers.

    For each of ``multiple_imputations`` independent runs, a fresh copy of
    the input is completed by ``recursive_passages`` sweeps over the columns.
    Each column step trains a model on the rows where that column is observed
    (using the latest values of all other columns, so columns imputed earlier
    in the sweep feed forward) and predicts its missing cells. Models of the
    last sweep are kept to impute new data with ``predict(X)``.
    """
    config_class = ImputerConfig
    description = "A chained per-column imputer"

    def __init__(self, config: Optional[ImputerConfig] = None, *, logger: Optional[logging.Logger] = None, **options):
        if config is not None and options:
            raise ConfigurationError("Pass either a config object or keyword options, not both.")
        if config is None:
            config = build_config(self.config_class, options)
        elif not isinstance(config, self.config_class):
            raise ConfigurationError(
                f"{type(self).__name__} expects a {self.config_class.__name__}, got {type(config).__name__}"
            )
        self.config = config
        self.log = logger or log

        self.fitted = False
        self.schema_: Optional[TableSchema] = None
        self.models_: Optional[List[List[ColumnModel]]] = None
        self.imputations_: Optional[List[Any]] = None
        self.info_: Optional[ImputationInfo] = None

    def __repr__(self) -> str:
        state = "fitted" if self.fitted else "unfitted"
        return f"{type(self).__name__} - {self.description} ({state})"

    # -------------------------
    # Learner slots
    # -------------------------
    def _check_schema(self, schema: TableSchema) -> None:
        """Hook for subclasses to validate options against the table."""

    def _new_learner(self, spec: ColumnSpec, n_features: int, seed: int):
        raise NotImplementedError

    def _new_slot(self, spec: ColumnSpec, n_features: int, rng: np.random.Generator) -> ColumnModel:
        seed = draw_seed(rng)
        return ColumnModel(spec, self._new_learner(spec, n_features, seed))

    # -------------------------
    # Column step / passages / one imputation
    # -------------------------
    def _impute_column(self, work: WorkingMatrix, slot: ColumnModel) -> int:
        d = slot.spec.position
        donors = np.flatnonzero(~work.mask[:, d])
        recipients = np.flatnonzero(work.mask[:, d])
        if donors.size == 0:
            raise TrainingDataExhaustedError(slot.spec.name)

        slot.train(work.features(d, donors), work.values(d, donors))
        if recipients.size > 0:
            preds = slot.predict(work.features(d, recipients))
            work.assign(d, recipients, preds)
        return int(recipients.size)

    def _run_imputation(
        self,
        index: int,
        schema: TableSchema,
        frame: pd.DataFrame,
        encoded: np.ndarray,
        mask: np.ndarray,
        master: np.random.SeedSequence,
    ) -> _RunResult:
        cfg = self.config
        rng = substream(master, index)
        work = WorkingMatrix.fresh(frame, encoded, mask, schema)
        if cfg.initial_strategy == "mean":
            work.prefill()

        scheduler = PassScheduler(mask, rng)
        kept: List[Optional[ColumnModel]] = [None] * schema.n_columns
        oob = np.full(schema.n_columns, np.nan)

        self.log.info("Processing imputation %d/%d", index + 1, cfg.multiple_imputations)
        for passage in range(1, cfg.recursive_passages + 1):
            order = scheduler.order_for(passage)
            self.log.debug("- passage %d, column order %s", passage, order)
            for d in order:
                spec = schema.columns[d]
                slot = self._new_slot(spec, schema.n_columns - 1, rng)
                n_imp = self._impute_column(work, slot)
                self.log.debug("  - column %r: %d cell(s) imputed", spec.name, n_imp)
                if passage == cfg.recursive_passages:
                    kept[d] = slot
                    oob[d] = slot.oob_error

        return _RunResult(frame=work.frame, models=kept, oob=oob, orders=scheduler.history)

    def _run_all(self, schema, frame, encoded, mask, master) -> List[_RunResult]:
        cfg = self.config
        k = cfg.multiple_imputations
        args = (schema, frame, encoded, mask, master)

        if cfg.n_jobs is None or cfg.n_jobs == 1 or k == 1:
            indices = tqdm(range(k), desc="Imputations", disable=not cfg.progress)
            return [self._run_imputation(i, *args) for i in indices]

        tasks = (delayed(self._run_imputation)(i, *args) for i in range(k))
        if cfg.progress:
            with tqdm_joblib(tqdm(desc="Imputations", total=k)):
                return Parallel(n_jobs=cfg.n_jobs, prefer="threads")(tasks)
        return Parallel(n_jobs=cfg.n_jobs, prefer="threads")(tasks)

    # -------------------------
    # Public API
    # -------------------------
    def _prepare(self, X: Any):
        frame, container = as_frame(X)
        schema = infer_schema(frame, container=container, forced_categorical_cols=self.config.forced_categorical_cols)
        if schema.n_columns < 2:
            raise ShapeMismatchError(
                f"At least two columns are required to impute from the others, got {schema.n_columns}."
            )
        mask = missing_mask(frame)
        work = cast_to_schema(frame, schema)
        return schema, mask, work, schema.encode(work)

    def _fit(self, X: Any) -> List[Any]:
        cfg = self.config
        if self.fitted:
            if not cfg.allow_refit:
                raise FitStateError(
                    f"{type(self).__name__} has already been fitted and does not support multiple "
                    "training. Create a new imputer or set allow_refit=True."
                )
            self.log.warning(
                "%s has already been fitted: this training replaces the previous models.", type(self).__name__
            )

        t0 = time.time()
        schema, mask, work, encoded = self._prepare(X)
        self._check_schema(schema)
        master = master_seed_sequence(cfg.random_state)

        results = self._run_all(schema, work, encoded, mask, master)
        outputs = [restore_output(r.frame, schema) for r in results]

        counts = missing_counts(mask)
        self.schema_ = schema
        self.models_ = [r.models for r in results]
        self.info_ = ImputationInfo(
            n_imputed_cells=int(mask.sum()),
            missing_per_column={spec.name: int(c) for spec, c in zip(schema.columns, counts)},
            column_orders=[r.orders for r in results],
            oob_errors=np.vstack([r.oob for r in results]) if getattr(cfg, "oob", False) else None,
            random_entropy=int(master.entropy),
            runtime_seconds=time.time() - t0,
        )
        self.imputations_ = [o.copy() for o in outputs] if cfg.cache else None
        self.fitted = True
        self.log.info(
            "%s fitted: %d cell(s) imputed, %d imputation(s) in %.2fs",
            type(self).__name__, self.info_.n_imputed_cells, len(outputs), self.info_.runtime_seconds,
        )
        return outputs

    def _collapse(self, outputs: List[Any]) -> Any:
        return outputs[0] if self.config.multiple_imputations == 1 else outputs

    def fit(self, X: Any) -> "ChainedImputer":
        """Fit the per-column models on ``X`` (missing cells marked by None/NaN/NA)."""
        self._fit(X)
        return self

    def fit_predict(self, X: Any) -> Any:
        """Fit on ``X`` and return its completed version(s)."""
        return self._collapse(self._fit(X))

    def predict(self, X: Any = None) -> Any:
        """
        Completed table(s).

        Without ``X`` the cached fit-time imputations are returned. With ``X``
        the stored models fill the missing cells of the new table, column by
        column in plain column order, using the other columns of ``X`` itself.
        Columns are matched by position and keep the labels of ``X``. Returned
        tables are copies, never the cached objects. A list is returned when
        ``multiple_imputations > 1``.
        """
        if not self.fitted:
            raise FitStateError(f"{type(self).__name__} must be fitted before calling predict.")
        if X is None:
            if self.imputations_ is None:
                raise FitStateError("Fit-time imputations were not cached (cache=False); pass the data to impute.")
            return self._collapse([o.copy() for o in self.imputations_])

        frame, container = as_frame(X)
        self.schema_.check_width(frame.shape[1])
        schema = replace(self.schema_, container=container)
        mask = missing_mask(frame)
        work0 = cast_to_schema(frame, schema)
        encoded = schema.encode(work0)

        outputs = []
        for i, models in enumerate(self.models_):
            self.log.info("Predicting imputation %d/%d", i + 1, len(self.models_))
            work = WorkingMatrix.fresh(work0, encoded, mask, schema)
            if self.config.initial_strategy == "mean":
                work.prefill()
            for d, slot in enumerate(models):
                rows = np.flatnonzero(mask[:, d])
                if rows.size == 0:
                    continue
                work.assign(d, rows, slot.predict(work.features(d, rows)))
            outputs.append(restore_output(work.frame, schema, labels=frame.columns))
        return self._collapse(outputs)

    def info(self) -> ImputationInfo:
        if not self.fitted:
            raise FitStateError(f"{type(self).__name__} has not been fitted yet.")
        return self.info_


class RFImputer(ChainedImputer):
    """
    Impute missing data using Random Forests, with optional replicable
    multiple imputations.

    Given the same ``random_state`` the result is fully deterministic, for any
    ``n_jobs``. Integer columns are modelled as ordinal (regression, rounded
    predictions) unless listed in ``forced_categorical_cols``; non-numeric
    columns are modelled by classification forests.

    Example
    -------
    >>> X = [[2, None, 10], [2000, 4000, 1000], [2000, 4000, 10000],
    ...      [3, 5, 12], [4, 8, 20], [1, 2, 5]]
    >>> imp = RFImputer(multiple_imputations=10, random_state=1)
    >>> completed = imp.fit_predict(X)   # list of 10 arrays
    >>> imp.info().n_imputed_cells
    1
    """
    config_class = RFImputerConfig
    description = "A Random-Forests based imputer"

    def _new_learner(self, spec: ColumnSpec, n_features: int, seed: int):
        return make_forest(spec.kind, self.config, n_features, random_state=seed)


class GeneralImputer(ChainedImputer):
    """
    Impute missing data using any regressor/classifier implementing
    ``fit(X, y)`` and ``predict(X)`` (scikit-learn estimators, or anything
    with the same duck type). See :class:`GeneralImputerConfig` for ``models``.
    """
    config_class = GeneralImputerConfig
    description = "An imputer based on arbitrary regressors/classifiers"

    def _column_prototypes(self, n_columns: int) -> List[Any]:
        models = self.config.models
        if models is None:
            return [None] * n_columns
        if isinstance(models, (list, tuple)):
            if len(models) != n_columns:
                raise ConfigurationError(
                    f"models has {len(models)} entries but the table has {n_columns} columns."
                )
            return list(models)
        return [models] * n_columns

    def _check_schema(self, schema: TableSchema) -> None:
        self._prototypes = self._column_prototypes(schema.n_columns)

    def _new_learner(self, spec: ColumnSpec, n_features: int, seed: int):
        proto = self._prototypes[spec.position]
        if proto is None:
            return make_forest(spec.kind, self.config, n_features, random_state=seed)
        learner = clone_learner(proto)
        seed_learner(learner, seed)
        return learner
