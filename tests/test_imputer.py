import logging

import numpy as np
import pandas as pd
import pytest
from sklearn.linear_model import LinearRegression
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor

from conftest import observed_cells_equal
from rfimpute import (
    ConfigurationError,
    FitStateError,
    GeneralImputer,
    RFImputer,
    RFImputerConfig,
    ShapeMismatchError,
    TrainingDataExhaustedError,
)
from rfimpute.schema import missing_mask


def _changed_cells(before: pd.DataFrame, after: pd.DataFrame) -> int:
    changed = 0
    for j in range(before.shape[1]):
        for x, y in zip(before.iloc[:, j].tolist(), after.iloc[:, j].tolist()):
            if pd.isna(x) or x != y:
                changed += 1
    return changed


# ---------------------------------------------------------------------
# Example table
# ---------------------------------------------------------------------

def test_scenario_ten_imputations_fill_the_single_gap(scenario_matrix):
    imp = RFImputer(multiple_imputations=10, random_state=1)
    out = imp.fit_predict(scenario_matrix)

    assert isinstance(out, list) and len(out) == 10
    expected = np.array([[0 if v is None else v for v in row] for row in scenario_matrix])
    for X in out:
        assert X.shape == (6, 3)
        assert X.dtype == np.int64
        diff = X != expected
        diff[0, 1] = False
        assert not diff.any()
        assert isinstance(X[0, 1].item(), int)
    assert imp.info().number_of_imputed_cells == 1


def test_single_imputation_is_not_wrapped_in_a_list(scenario_matrix):
    out = RFImputer(random_state=0).fit_predict(scenario_matrix)
    assert isinstance(out, np.ndarray)


# ---------------------------------------------------------------------
# Observed cells and counts
# ---------------------------------------------------------------------

@pytest.mark.parametrize("passages,k", [(1, 1), (3, 2)])
def test_only_missing_cells_change(mixed_missing, passages, k):
    mask = missing_mask(mixed_missing)
    imp = RFImputer(recursive_passages=passages, multiple_imputations=k, random_state=7)
    out = imp.fit_predict(mixed_missing)
    outputs = out if isinstance(out, list) else [out]
    assert len(outputs) == k
    for X in outputs:
        assert not X.isna().any().any()
        assert observed_cells_equal(mixed_missing, X, mask)
        assert _changed_cells(mixed_missing, X) == int(mask.sum())
    assert imp.info().n_imputed_cells == int(mask.sum())


def test_output_keeps_frame_labels_and_dtypes(mixed_missing):
    X = RFImputer(random_state=3).fit_predict(mixed_missing)
    assert list(X.columns) == ["a", "b", "c", "d"]
    assert X["a"].dtype == np.float64
    assert str(X["b"].dtype) == "Int64"
    assert set(X["c"]) <= {"high", "low", "mid"}


def test_forced_categorical_column_gets_observed_labels():
    rng = np.random.default_rng(5)
    n = 40
    code = rng.choice([10, 20, 30], size=n)
    df = pd.DataFrame({"code": code, "x": code * 1.5 + rng.normal(size=n), "y": rng.normal(size=n)})
    df["code"] = df["code"].astype("Int64")
    df.loc[[1, 5, 9], "code"] = None
    X = RFImputer(forced_categorical_cols=["code"], random_state=0).fit_predict(df)
    assert set(X.loc[[1, 5, 9], "code"].tolist()) <= {10, 20, 30}


# ---------------------------------------------------------------------
# Ordering and determinism
# ---------------------------------------------------------------------

def test_single_passage_follows_descending_missing_count(mixed_missing):
    imp = RFImputer(recursive_passages=1, random_state=0).fit(mixed_missing)
    # a: 5 gaps, c: 3, d: 1, b: 0
    assert imp.info().column_orders == [[[0, 2, 3, 1]]]


def test_later_passages_are_permutations(mixed_missing):
    imp = RFImputer(recursive_passages=4, multiple_imputations=2, random_state=0).fit(mixed_missing)
    for orders in imp.info().column_orders:
        assert len(orders) == 4
        assert orders[0] == [0, 2, 3, 1]
        for order in orders[1:]:
            assert sorted(order) == [0, 1, 2, 3]


def test_same_seed_same_result_for_any_worker_count(mixed_missing):
    serial = RFImputer(multiple_imputations=3, recursive_passages=2, random_state=11, n_jobs=1)
    threaded = RFImputer(multiple_imputations=3, recursive_passages=2, random_state=11, n_jobs=3)
    out_a = serial.fit_predict(mixed_missing)
    out_b = threaded.fit_predict(mixed_missing)
    for a, b in zip(out_a, out_b):
        pd.testing.assert_frame_equal(a, b)
    assert serial.info().column_orders == threaded.info().column_orders


def test_random_entropy_is_reported(scenario_matrix):
    imp = RFImputer(random_state=123).fit(scenario_matrix)
    assert imp.info().random_entropy == 123


# ---------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------

def test_all_missing_column_raises_training_data_exhausted():
    df = pd.DataFrame({"a": [np.nan] * 4, "b": [1.0, 2.0, 3.0, 4.0], "c": [2.0, 1.0, 0.0, 1.0]})
    with pytest.raises(TrainingDataExhaustedError) as exc:
        RFImputer(random_state=0).fit(df)
    assert exc.value.column == "a"

    X = [[None, 1, 2], [None, 2, 3], [None, 3, 4]]
    with pytest.raises(TrainingDataExhaustedError):
        RFImputer(random_state=0).fit(X)


def test_refit_raises_fit_state_error(scenario_matrix):
    imp = RFImputer(random_state=0)
    imp.fit(scenario_matrix)
    with pytest.raises(FitStateError):
        imp.fit(scenario_matrix)


def test_refit_override_replaces_models(scenario_matrix, caplog):
    imp = RFImputer(random_state=0, allow_refit=True)
    imp.fit(scenario_matrix)
    first = imp.models_
    with caplog.at_level(logging.WARNING, logger="rfimpute"):
        imp.fit(scenario_matrix)
    assert imp.models_ is not first
    assert any("already been fitted" in r.getMessage() for r in caplog.records)


def test_predict_before_fit_raises(scenario_matrix):
    with pytest.raises(FitStateError):
        RFImputer().predict(scenario_matrix)
    with pytest.raises(FitStateError):
        RFImputer().info()


def test_predict_with_wrong_column_count_raises(scenario_matrix):
    imp = RFImputer(random_state=0).fit(scenario_matrix)
    wider = [row + [1] for row in scenario_matrix]
    with pytest.raises(ShapeMismatchError):
        imp.predict(wider)


def test_single_column_table_is_rejected():
    with pytest.raises(ShapeMismatchError):
        RFImputer().fit([[1.0], [None], [3.0]])


def test_unknown_or_invalid_options_are_configuration_errors():
    with pytest.raises(ConfigurationError) as exc:
        RFImputer(recursive_pasages=2)
    assert "recursive_pasages" in str(exc.value)
    with pytest.raises(ConfigurationError):
        RFImputer(recursive_passages=0)
    with pytest.raises(ConfigurationError):
        RFImputer(multiple_imputations=2.5)
    with pytest.raises(ConfigurationError):
        RFImputer(initial_strategy="median")
    with pytest.raises(ConfigurationError):
        RFImputer(RFImputerConfig(), random_state=1)
    with pytest.raises(ConfigurationError):
        RFImputer(n_estimators=0)


def test_config_object_is_accepted(scenario_matrix):
    cfg = RFImputerConfig(n_estimators=5, random_state=2)
    imp = RFImputer(cfg)
    assert imp.config is cfg
    imp.fit(scenario_matrix)
    assert repr(imp) == "RFImputer - A Random-Forests based imputer (fitted)"


# ---------------------------------------------------------------------
# Cache and predict on new data
# ---------------------------------------------------------------------

def test_predict_without_data_returns_cached_imputations(mixed_missing):
    imp = RFImputer(multiple_imputations=2, random_state=4)
    out = imp.fit_predict(mixed_missing)
    cached = imp.predict()
    for a, b in zip(out, cached):
        pd.testing.assert_frame_equal(a, b)


def test_cache_disabled_requires_data(mixed_missing):
    imp = RFImputer(random_state=4, cache=False).fit(mixed_missing)
    with pytest.raises(FitStateError):
        imp.predict()
    X = imp.predict(mixed_missing)
    assert not X.isna().any().any()


def test_predict_fills_new_data_with_stored_models(mixed_complete, mixed_missing):
    imp = RFImputer(multiple_imputations=2, random_state=9).fit(mixed_missing)
    new = mixed_complete.head(10).copy()
    new["b"] = new["b"].astype("Int64")
    new.loc[[2, 4], "b"] = None
    new.loc[[5], "c"] = None
    mask = missing_mask(new)
    out = imp.predict(new)
    assert len(out) == 2
    for X in out:
        assert observed_cells_equal(new, X, mask)
        assert not X.isna().any().any()
        assert X.loc[5, "c"] in {"high", "low", "mid"}


def test_oob_errors_reported_per_imputation_and_column(mixed_missing):
    imp = RFImputer(multiple_imputations=2, oob=True, initial_strategy="mean", random_state=0).fit(mixed_missing)
    oob = imp.info().oob_errors
    assert oob.shape == (2, 4)
    assert np.isfinite(oob).all()
    assert RFImputer(random_state=0).fit(mixed_missing).info().oob_errors is None


# ---------------------------------------------------------------------
# GeneralImputer
# ---------------------------------------------------------------------

def test_general_imputer_with_per_column_models(mixed_missing):
    mask = missing_mask(mixed_missing)
    imp = GeneralImputer(
        models=[LinearRegression(), DecisionTreeRegressor(), DecisionTreeClassifier(), None],
        random_state=0,
    )
    X = imp.fit_predict(mixed_missing)
    assert observed_cells_equal(mixed_missing, X, mask)
    assert not X.isna().any().any()
    assert isinstance(imp.models_[0][0].learner, LinearRegression)
    assert isinstance(imp.models_[0][2].learner, DecisionTreeClassifier)
    assert imp.models_[0][2].learner.random_state is not None


def test_general_imputer_accepts_a_factory_for_every_column():
    rng = np.random.default_rng(2)
    X = rng.normal(size=(30, 3))
    X[1, 0] = np.nan
    X[4, 2] = np.nan
    out = GeneralImputer(models=lambda: DecisionTreeRegressor(max_depth=3), random_state=1).fit_predict(X)
    assert out.dtype == np.float64
    assert not np.isnan(out).any()
    np.testing.assert_array_equal(np.delete(out.ravel(), [3, 14]), np.delete(X.ravel(), [3, 14]))


def test_general_imputer_rejects_model_list_of_wrong_length(mixed_missing):
    with pytest.raises(ConfigurationError):
        GeneralImputer(models=[LinearRegression()]).fit(mixed_missing)


# ---------------------------------------------------------------------
# Exactness, isolation and feed-forward
# ---------------------------------------------------------------------

def test_large_integer_cells_are_returned_unchanged():
    rng = np.random.default_rng(0)
    ids = [2**53 + 1 + 2 * i for i in range(20)]
    df = pd.DataFrame({"id": np.array(ids, dtype=np.int64), "x": rng.normal(size=20), "y": rng.normal(size=20)})
    df.loc[3, "x"] = np.nan
    X = RFImputer(random_state=0).fit_predict(df)
    assert X["id"].dtype == np.int64
    assert X["id"].tolist() == ids
    assert not np.isnan(X.loc[3, "x"])


def test_returned_tables_do_not_alias_the_cache(mixed_missing):
    imp = RFImputer(random_state=0)
    out = imp.fit_predict(mixed_missing)
    original = out.loc[0, "a"]
    out.loc[0, "a"] = -999.0
    cached = imp.predict()
    assert cached.loc[0, "a"] == original
    cached.loc[0, "a"] = -999.0
    assert imp.predict().loc[0, "a"] == original


def test_predict_keeps_the_labels_of_new_data(mixed_missing):
    imp = RFImputer(random_state=0).fit(mixed_missing)
    renamed = mixed_missing.set_axis(["w", "x", "y", "z"], axis=1)
    X = imp.predict(renamed)
    assert list(X.columns) == ["w", "x", "y", "z"]
    assert not X.isna().any().any()
    assert set(X["y"]) <= {"high", "low", "mid"}


class _RecordingTree(DecisionTreeRegressor):
    nan_counts = []

    def fit(self, X, y, sample_weight=None):
        type(self).nan_counts.append(int(np.isnan(X).sum()))
        return super().fit(X, y, sample_weight=sample_weight)


def test_imputed_values_feed_later_columns_within_a_passage():
    rng = np.random.default_rng(1)
    X = rng.normal(size=(30, 3))
    X[[1, 3], 0] = np.nan   # imputed first
    X[5, 1] = np.nan        # imputed second
    _RecordingTree.nan_counts = []
    imp = GeneralImputer(models=_RecordingTree(max_depth=3), initial_strategy=None, random_state=0)
    out = imp.fit_predict(X)
    assert imp.info().column_orders == [[[0, 1, 2]]]
    # column 0 still sees the gap of column 1; later steps see every gap filled
    assert _RecordingTree.nan_counts == [1, 0, 0]
    assert not np.isnan(out).any()
