#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import yaml

from baselines import build_imputer, list_imputers
from rfimpute.dataio import load_complete_and_missing, load_table, save_imputations
from rfimpute.metrics import evaluate_imputation, imputation_spread
from rfimpute.utils import configure_logging

log = logging.getLogger("rfimpute.run_imputation")


def _parse_list(arg: Optional[List[str]]) -> List[str]:
    if arg is None:
        return []
    # allow "A,B,C" or space separated
    out = []
    for x in arg:
        parts = [p.strip() for p in x.split(",") if p.strip()]
        out.extend(parts)
    return out


def _save_json(path: Path, obj) -> None:
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=False, default=str) + "\n", encoding="utf-8")


def _ensure_outdir(outdir: str) -> Path:
    p = Path(outdir)
    p.mkdir(parents=True, exist_ok=True)
    return p


def _load_config(path: Optional[str]) -> Dict[str, Any]:
    """Read imputer options from a YAML mapping (empty file -> no options)."""
    if not path:
        return {}
    with open(path) as f:
        cfg = yaml.safe_load(f)
    if cfg is None:
        return {}
    if not isinstance(cfg, dict):
        raise ValueError(f"Config file {path} must contain a mapping of imputer options.")
    return cfg


def _imputer_options(args: argparse.Namespace) -> Dict[str, Any]:
    """YAML options overridden by explicit command-line flags."""
    opts = _load_config(args.config)
    if args.forced_categorical_vars:
        opts["forced_categorical_cols"] = args.forced_categorical_vars
    if args.method == "GMM" and args.seed is not None:
        opts["random_state"] = args.seed
    if args.method in ("Mean", "GMM"):
        return opts
    if args.multiple_imputations is not None:
        opts["multiple_imputations"] = args.multiple_imputations
    if args.recursive_passages is not None:
        opts["recursive_passages"] = args.recursive_passages
    if args.seed is not None:
        opts["random_state"] = args.seed
    if args.n_jobs is not None:
        opts["n_jobs"] = args.n_jobs
    if args.oob:
        opts["oob"] = True
    return opts


def _mean_summary(summaries: List[Dict[str, float]]) -> Dict[str, float]:
    keys = sorted({k for s in summaries for k in s})
    return {k: float(np.nanmean([s.get(k, np.nan) for s in summaries])) for k in keys}


def main(argv: Optional[List[str]] = None) -> Dict[str, Any]:
    ap = argparse.ArgumentParser(description="Impute the missing cells of a CSV table.")
    ap.add_argument("--input", type=str, required=True, help="CSV with missing cells (blank = missing).")
    ap.add_argument("--method", type=str, default="RF", choices=list_imputers())
    ap.add_argument("--categorical-vars", nargs="+", default=[], help="Columns to read as categorical labels.")
    ap.add_argument("--forced-categorical-vars", nargs="+", default=[],
                    help="Integer columns to model as categorical instead of ordinal.")
    ap.add_argument("--id-col", type=str, default=None, help="Optional row identifier column (kept as index).")
    ap.add_argument("--config", type=str, default=None, help="YAML file of imputer options.")
    ap.add_argument("--multiple-imputations", type=int, default=None)
    ap.add_argument("--recursive-passages", type=int, default=None)
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--n-jobs", type=int, default=None)
    ap.add_argument("--oob", action="store_true", help="Compute out-of-bag errors of the default forests.")
    ap.add_argument("--input-complete", type=str, default=None,
                    help="Optional ground-truth CSV; originally missing cells are evaluated.")
    ap.add_argument("--outdir", type=str, required=True)
    ap.add_argument("-v", "--verbose", action="count", default=0)

    args = ap.parse_args(argv)
    configure_logging(args.verbose)
    outdir = _ensure_outdir(args.outdir)

    cat_vars = _parse_list(args.categorical_vars)
    args.forced_categorical_vars = _parse_list(args.forced_categorical_vars)

    if args.input_complete:
        X_complete, X_missing = load_complete_and_missing(
            input_complete=args.input_complete,
            input_missing=args.input,
            categorical_vars=cat_vars,
            id_col=args.id_col or "ID",
        )
    else:
        X_complete = None
        X_missing = load_table(args.input, categorical_vars=cat_vars, id_col=args.id_col)
    mask = X_missing.isna().to_numpy()

    options = _imputer_options(args)
    imputer = build_imputer(args.method, **options)
    log.info("Running %r on %s (%d rows x %d columns)", imputer, args.input, *X_missing.shape)

    out = imputer.fit_predict(X_missing)
    imputations = out if isinstance(out, list) else [out]
    keep_index = args.id_col is not None or X_missing.index.name is not None
    paths = save_imputations(imputations, outdir, index=keep_index)

    info = imputer.info().as_dict()
    info.update({"method": args.method, "input": args.input, "options": options})
    if getattr(imputer, "scores_", None):
        info["scores"] = imputer.scores_
    _save_json(outdir / "info.json", info)

    summary: Dict[str, Any] = {}
    if X_complete is not None:
        forced = args.forced_categorical_vars
        results = [
            evaluate_imputation(X_imp, X_complete, mask, forced_categorical_cols=forced) for X_imp in imputations
        ]
        results[0].per_feature.to_csv(outdir / "metrics_per_feature.csv", index=False)
        summary = _mean_summary([r.summary for r in results])
        if len(imputations) > 1:
            spread = imputation_spread(imputations, mask, forced_categorical_cols=forced)
            spread.to_csv(outdir / "imputation_spread.csv", index=False)
        summary.update(
            {
                "method": args.method,
                "n_imputations": len(imputations),
                "runtime_sec": info["runtime_seconds"],
                "n_rows": int(X_missing.shape[0]),
                "n_cols": int(X_missing.shape[1]),
            }
        )
        pd.DataFrame([summary]).to_csv(outdir / "metrics_summary.csv", index=False)
        _save_json(outdir / "metrics_summary.json", summary)

    print(f"[DONE] outdir={outdir} files={[p.name for p in paths]}")
    if summary:
        print(json.dumps(summary, indent=2, ensure_ascii=False))
    return summary


if __name__ == "__main__":
    main()
