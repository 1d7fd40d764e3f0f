import numpy as np
import pandas as pd
import pytest

from baselines import GMMImputer, MeanImputer, build_imputer, list_imputers
from rfimpute import GeneralImputer, RFImputer
from rfimpute.exceptions import ConfigurationError, FitStateError, ShapeMismatchError, TrainingDataExhaustedError


def test_mean_imputer_fills_mean_rounded_mean_and_mode():
    X = [[1.0, 1, "a"], [None, 2, "b"], [3.0, None, "b"], [5.0, 4, None]]
    imp = MeanImputer()
    out = imp.fit_predict(X)
    assert out[1][0] == pytest.approx(3.0)
    assert out[2][1] == 2
    assert out[3][2] == "b"
    assert out[0][0] == 1.0 and out[0][2] == "a"
    assert imp.info().n_imputed_cells == 3


def test_mean_imputer_mode_ties_go_to_first_category():
    X = [["b", 1.0], ["a", 2.0], [None, 3.0]]
    assert MeanImputer().fit_predict(X)[2][0] == "a"


def test_mean_imputer_fully_missing_numeric_column_uses_overall_mean():
    df = pd.DataFrame({"a": [np.nan, np.nan, np.nan], "b": [1.0, 2.0, 6.0]})
    out = MeanImputer().fit_predict(df)
    assert out["a"].tolist() == pytest.approx([3.0, 3.0, 3.0])


def test_mean_imputer_fully_missing_categorical_column_raises():
    df = pd.DataFrame({"s": pd.Series([None, None], dtype=object), "b": [1.0, 2.0]})
    df["s"] = df["s"].astype(pd.CategoricalDtype(["x", "y"]))
    with pytest.raises(TrainingDataExhaustedError):
        MeanImputer().fit(df)


def test_mean_imputer_norm_scales_by_record_norm():
    X = np.array([[1.0, 2.0], [np.nan, 4.0], [10.0, 20.0]])
    imp = MeanImputer(norm=1)
    out = imp.fit_predict(X)
    norms = [1.5, 4.0, 15.0]
    assert out[1, 0] == pytest.approx(5.5 * 4.0 / np.mean(norms))
    with pytest.raises(ConfigurationError):
        imp.predict(X[:2])
    with pytest.raises(ConfigurationError):
        MeanImputer(norm=-1)


def test_mean_imputer_predict_on_new_data():
    imp = MeanImputer()
    imp.fit(pd.DataFrame({"x": [1.0, 3.0, np.nan], "k": pd.array([1, 2, 4], dtype="Int64")}))
    new = pd.DataFrame({"x": [np.nan, 10.0], "k": pd.array([None, 7], dtype="Int64")})
    out = imp.predict(new)
    assert out["x"].tolist() == [2.0, 10.0]
    assert out["k"].tolist() == [2, 7]
    with pytest.raises(ShapeMismatchError):
        imp.predict(pd.DataFrame({"x": [1.0]}))


def test_mean_imputer_fit_state_errors():
    X = [[1.0, None], [2.0, 3.0]]
    with pytest.raises(FitStateError):
        MeanImputer().predict(X)
    imp = MeanImputer(cache=False)
    imp.fit(X)
    with pytest.raises(FitStateError):
        imp.fit(X)
    with pytest.raises(FitStateError):
        imp.predict()


def test_registry_builds_by_name():
    assert list_imputers() == ["GMM", "General", "Mean", "RF"]
    assert isinstance(build_imputer("RF", random_state=0, n_estimators=5), RFImputer)
    assert isinstance(build_imputer(" General "), GeneralImputer)
    assert isinstance(build_imputer("Mean", norm=float("nan")), MeanImputer)
    assert isinstance(build_imputer("GMM", n_classes=2, random_state=0), GMMImputer)


def test_registry_rejects_unknown_methods_and_options():
    with pytest.raises(ConfigurationError):
        build_imputer("KNN")
    with pytest.raises(ConfigurationError):
        build_imputer("Mean", random_state=1)
    with pytest.raises(ConfigurationError):
        build_imputer("RF", trees=10)
    with pytest.raises(ConfigurationError):
        build_imputer("GMM", multiple_imputations=2)


def test_mean_imputer_cache_is_not_aliased():
    imp = MeanImputer()
    out = imp.fit_predict(pd.DataFrame({"x": [1.0, np.nan, 3.0], "y": [1.0, 2.0, 3.0]}))
    out.loc[1, "x"] = -999.0
    assert imp.predict().loc[1, "x"] == 2.0


def test_mean_imputer_predict_keeps_new_labels():
    imp = MeanImputer()
    imp.fit(pd.DataFrame({"x": [1.0, np.nan, 3.0], "y": [1.0, 2.0, 3.0]}))
    out = imp.predict(pd.DataFrame({"p": [np.nan], "q": [5.0]}))
    assert list(out.columns) == ["p", "q"]
    assert out["p"].tolist() == [2.0]


# ---------------------------------------------------------------------
# GMMImputer
# ---------------------------------------------------------------------

@pytest.fixture
def two_clusters():
    rng = np.random.default_rng(0)
    low = rng.normal(0.0, 0.1, size=(40, 3))
    high = rng.normal(10.0, 0.1, size=(40, 3))
    X = np.vstack([low, high])
    X[[2, 50], 0] = np.nan
    X[[7, 61], 2] = np.nan
    return X


def test_gmm_imputer_uses_the_component_of_each_record(two_clusters):
    X = two_clusters
    imp = GMMImputer(n_classes=2, random_state=0)
    out = imp.fit_predict(X)
    assert out.dtype == np.float64
    assert abs(out[2, 0]) < 1.0 and abs(out[7, 2]) < 1.0
    assert abs(out[50, 0] - 10.0) < 1.0 and abs(out[61, 2] - 10.0) < 1.0
    observed = ~np.isnan(X)
    np.testing.assert_array_equal(out[observed], X[observed])
    assert imp.info().n_imputed_cells == 4
    assert set(imp.scores_) == {"log_likelihood", "BIC", "AIC", "n_iter"}
    assert np.isfinite(imp.scores_["BIC"])


def test_gmm_imputer_is_deterministic_for_a_seed(two_clusters):
    a = GMMImputer(n_classes=2, random_state=3).fit_predict(two_clusters)
    b = GMMImputer(n_classes=2, random_state=3).fit_predict(two_clusters)
    np.testing.assert_array_equal(a, b)


def test_gmm_imputer_predict_new_records(two_clusters):
    imp = GMMImputer(n_classes=2, random_state=0)
    imp.fit(two_clusters)
    new = np.array([[np.nan, 10.0, 10.0], [0.0, np.nan, 0.0]])
    out = imp.predict(new)
    assert abs(out[0, 0] - 10.0) < 1.0
    assert abs(out[1, 1]) < 1.0
    assert out[0, 1] == 10.0
    with pytest.raises(ShapeMismatchError):
        imp.predict(new[:, :2])
    with pytest.raises(FitStateError):
        imp.fit(two_clusters)


def test_gmm_imputer_rounds_integer_columns():
    rng = np.random.default_rng(4)
    df = pd.DataFrame({"k": rng.integers(0, 10, 30), "x": rng.normal(size=30)})
    df["k"] = df["k"].astype("Int64")
    df.loc[[0, 9], "k"] = None
    out = GMMImputer(n_classes=1, random_state=0).fit_predict(df)
    assert str(out["k"].dtype) == "Int64"
    assert not out["k"].isna().any()


def test_gmm_imputer_rejects_bad_input_and_options():
    with pytest.raises(ConfigurationError):
        GMMImputer(n_classes=0)
    with pytest.raises(ConfigurationError):
        GMMImputer(n_classes=2, initial_probmixtures=[1.0])
    with pytest.raises(ConfigurationError):
        GMMImputer().fit([[1.0, "a"], [None, "b"], [2.0, "a"]])
    with pytest.raises(ConfigurationError):
        GMMImputer(n_classes=5).fit([[1.0, 2.0], [None, 3.0]])
    with pytest.raises(FitStateError):
        GMMImputer().predict()
