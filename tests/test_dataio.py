import numpy as np
import pandas as pd
import pytest

from rfimpute.dataio import (
    cast_like,
    introduce_mcar,
    load_complete_and_missing,
    load_table,
    save_imputations,
    type_columns,
)


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_load_table_keeps_integer_columns_integer(tmp_path):
    p = _write(tmp_path / "m.csv", "age ,score,city\n82,1.5,Rome\n,2.25,\n40,,Oslo\n")
    df = load_table(p)
    assert list(df.columns) == ["age", "score", "city"]
    assert str(df["age"].dtype) == "Int64"
    assert df["score"].dtype == np.float64
    assert df["city"].dtype == object
    assert df["age"].isna().tolist() == [False, True, False]


def test_load_table_categorical_vars_and_id_col(tmp_path):
    p = _write(tmp_path / "m.csv", "ID,code,x\nr1,1,0.5\nr2,2,\nr3,,1.5\n")
    df = load_table(p, categorical_vars=["code"], id_col="ID")
    assert df.index.tolist() == ["r1", "r2", "r3"]
    assert df["code"].dtype == object
    with pytest.raises(KeyError):
        load_table(p, categorical_vars=["nope"])


def test_type_columns_rules():
    raw = pd.DataFrame({"i": ["1", "2.0", None], "f": ["0.5", "1", None], "s": ["a", "1", None]}, dtype=object)
    typed = type_columns(raw)
    assert str(typed["i"].dtype) == "Int64"
    assert typed["f"].dtype == np.float64
    assert typed["s"].dtype == object


def test_load_complete_and_missing_aligns_on_ids(tmp_path):
    complete = _write(tmp_path / "c.csv", "ID,x,y\n1,1.0,3\n2,2.0,4\n3,3.0,5\n")
    missing = _write(tmp_path / "m.csv", "ID,x,y\n3,,5\n1,1.0,\n2,2.0,4\n")
    Xc, Xm = load_complete_and_missing(input_complete=complete, input_missing=missing)
    assert Xm.index.tolist() == Xc.index.tolist() == ["1", "2", "3"]
    assert np.isnan(Xm.loc["3", "x"])
    assert pd.isna(Xm.loc["1", "y"])
    assert str(Xm["y"].dtype) == "Int64"


def test_load_complete_and_missing_id_mismatch(tmp_path):
    complete = _write(tmp_path / "c.csv", "ID,x\n1,1.0\n2,2.0\n")
    missing = _write(tmp_path / "m.csv", "ID,x\n1,\n9,2.0\n")
    with pytest.raises(ValueError):
        load_complete_and_missing(input_complete=complete, input_missing=missing)


def test_cast_like_follows_reference_dtypes():
    ref = pd.DataFrame({"a": pd.array([1], dtype="Int64"), "b": [1.0], "c": ["x"]})
    raw = pd.DataFrame({"a": ["3"], "b": ["2.5"], "c": ["y"]}, dtype=object)
    out = cast_like(raw, ref)
    assert str(out["a"].dtype) == "Int64" and out["a"].iloc[0] == 3
    assert out["b"].iloc[0] == 2.5


def test_introduce_mcar_masks_and_excludes():
    df = pd.DataFrame({"x": np.arange(200, dtype=float), "k": np.arange(200), "id": np.arange(200)})
    masked, mask = introduce_mcar(df, 0.3, seed=1, exclude_cols=["id"])
    assert mask.shape == df.shape
    assert not mask[:, 2].any()
    assert masked.isna().to_numpy().tolist() == mask.tolist()
    assert 0.15 < mask[:, :2].mean() < 0.45
    assert str(masked["k"].dtype) == "Int64"
    with pytest.raises(ValueError):
        introduce_mcar(df, 1.0)


def test_save_imputations_names_files(tmp_path):
    df = pd.DataFrame({"x": [1.0]})
    single = save_imputations(df, tmp_path / "one")
    assert [p.name for p in single] == ["imputed.csv"]
    many = save_imputations([df, df], tmp_path / "many", stem="run")
    assert [p.name for p in many] == ["run_1.csv", "run_2.csv"]
    assert all(p.exists() for p in many)
