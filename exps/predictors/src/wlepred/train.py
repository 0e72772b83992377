import itertools
import logging
import random
import time
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.metrics import accuracy_score, f1_score
from sklearn.model_selection import StratifiedKFold

from exps.predictors.src.wlepred.errors import EmptyAfterPruning, LabelMissing
from exps.predictors.src.wlepred.models import (
    ClassifierSpec, TrainedModel, build_pipeline, classifier_name, default_param_grid, split_feature_types,
)
from exps.utils.io_utils import log_fold_progress


def expand_grid(param_grid: Dict[str, List[Any]], max_samples: int = None, random_state: int = 2026):
    keys = list(param_grid.keys())
    combos = list(itertools.product(*[param_grid[k] for k in keys]))
    configs = [dict(zip(keys, vals)) for vals in combos]
    if (max_samples is not None) and (len(configs) > max_samples):
        configs = random.Random(random_state).sample(configs, max_samples)
    return configs


def stratified_cv_splits(y: np.ndarray, desired_splits: int = 5, random_state: int = 2026) -> StratifiedKFold:
    _, counts = np.unique(y, return_counts=True)
    max_splits = int(counts.min())
    n_splits = max(2, min(desired_splits, max_splits))
    return StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=random_state)


def train_one_fold(
    X: pd.DataFrame,
    y: np.ndarray,
    tr_idx: np.ndarray,
    va_idx: np.ndarray,
    classifier: ClassifierSpec,
    params: Dict[str, Any],
    numerical_cols: List[str],
    categorical_cols: List[str],
    random_state: int,
) -> Dict[str, float]:
    """Fit on the training folds, score on the held-out fold."""
    t0 = time.time()
    pipe = build_pipeline(classifier, params, numerical_cols, categorical_cols, random_state)
    pipe.fit(X.iloc[tr_idx], y[tr_idx])
    y_pred = pipe.predict(X.iloc[va_idx])
    return {
        "acc": float(accuracy_score(y[va_idx], y_pred)),
        "f1_macro": float(f1_score(y[va_idx], y_pred, average="macro", zero_division=0)),
        "n_train": int(len(tr_idx)),
        "n_valid": int(len(va_idx)),
        "elapsed": float(time.time() - t0),
    }


def evaluate_param_set(
    X: pd.DataFrame,
    y: np.ndarray,
    classifier: ClassifierSpec,
    params: Dict[str, Any],
    numerical_cols: List[str],
    categorical_cols: List[str],
    cv_splits: int = 5,
    random_state: int = 2026,
    n_jobs: int = 1,
) -> Dict[str, Any]:
    skf = stratified_cv_splits(y, desired_splits=cv_splits, random_state=random_state)
    splits = list(skf.split(X, y))
    cv_logger = logging.getLogger("cv")
    cv_logger.info(f"Evaluating {classifier_name(classifier)} params={params} over {len(splits)} folds")

    # Folds are independent; results come back in fold order either way
    fold_metrics = Parallel(n_jobs=n_jobs)(
        delayed(train_one_fold)(
            X, y, tr_idx, va_idx, classifier, params, numerical_cols, categorical_cols, random_state
        )
        for tr_idx, va_idx in splits
    )
    for fold, metrics in enumerate(fold_metrics, start=1):
        log_fold_progress(
            logging.getLogger(f"fold_{fold}"), fold, len(splits),
            {"acc": metrics["acc"], "f1": metrics["f1_macro"]}, prefix="  ",
        )

    accs = [m["acc"] for m in fold_metrics]
    mean_acc = float(np.mean(accs))
    std_acc = float(np.std(accs, ddof=1)) if len(accs) > 1 else 0.0
    mean_f1 = float(np.mean([m["f1_macro"] for m in fold_metrics]))
    cv_logger.info(f"  mean acc={mean_acc:.4f}±{std_acc:.4f}, mean f1={mean_f1:.4f}")

    return dict(mean_acc=mean_acc, std_acc=std_acc, mean_f1=mean_f1,
                params=params, per_fold=fold_metrics, n_splits=len(splits))


def select_best(config_results: List[Dict[str, Any]]):
    """Highest mean accuracy; ties go to the lower spread, then to the earlier configuration."""
    order = {id(r): i for i, r in enumerate(config_results)}

    def keyfn(r):
        return (r["mean_acc"], -r["std_acc"], -order[id(r)])
    return max(config_results, key=keyfn)


def train_model(
    df: pd.DataFrame,
    label_col: str,
    classifier: ClassifierSpec = "random_forest",
    classifier_params: Optional[Dict[str, Any]] = None,
    param_grid: Optional[Dict[str, List[Any]]] = None,
    cv_splits: int = 5,
    random_state: int = 2026,
    n_jobs: int = 1,
    max_configs: Optional[int] = None,
) -> TrainedModel:
    """
    Fit a classifier on the pruned fitting table.

    Every configuration of the hyperparameter grid is scored by stratified
    k-fold cross-validation; the best one is refit on the whole table and
    returned with its cross-validation summary.
    """
    train_logger = logging.getLogger("train")
    if label_col not in df.columns:
        raise LabelMissing("Label column not found in fitting table", table="fit", column=label_col)
    feature_cols = [c for c in df.columns if c != label_col]
    if len(df) == 0 or not feature_cols:
        raise EmptyAfterPruning("Fitting table has no rows or no predictors", table="fit")
    n_missing_labels = int(df[label_col].isna().sum())
    if n_missing_labels:
        raise LabelMissing(f"{n_missing_labels} fitting rows have no label", table="fit", column=label_col)

    X = df[feature_cols]
    y = df[label_col].to_numpy()
    numerical_cols, categorical_cols = split_feature_types(df, feature_cols)
    train_logger.info(
        f"Training {classifier_name(classifier)} on {len(df):,} rows: "
        f"{len(numerical_cols)} numerical + {len(categorical_cols)} categorical predictors"
    )

    base_params = dict(classifier_params or {})
    grid = param_grid if param_grid is not None else default_param_grid(classifier, len(feature_cols))
    configs = expand_grid(grid, max_samples=max_configs, random_state=random_state) or [{}]
    train_logger.info(f"Hyperparameter grid: {grid} ({len(configs)} configurations)")

    results = []
    for config in configs:
        params = {**base_params, **config}
        res = evaluate_param_set(
            X, y, classifier, params, numerical_cols, categorical_cols,
            cv_splits=cv_splits, random_state=random_state, n_jobs=n_jobs,
        )
        res["config"] = config
        results.append(res)

    best = select_best(results)
    train_logger.info(
        f"Selected {best['config']} with CV accuracy {best['mean_acc']:.4f}±{best['std_acc']:.4f}"
    )

    pipe = build_pipeline(classifier, best["params"], numerical_cols, categorical_cols, random_state)
    pipe.fit(X, y)

    cv_summary = {
        "n_splits": best["n_splits"],
        "mean_acc": best["mean_acc"],
        "std_acc": best["std_acc"],
        "mean_f1": best["mean_f1"],
        "per_fold": [m["acc"] for m in best["per_fold"]],
        "selected": best["config"],
        "configs": [
            {"config": r["config"], "mean_acc": r["mean_acc"], "std_acc": r["std_acc"],
             "per_fold": [m["acc"] for m in r["per_fold"]]}
            for r in results
        ],
    }
    return TrainedModel(
        pipeline=pipe,
        label_col=label_col,
        feature_columns=feature_cols,
        classes_=np.asarray(pipe.classes_).tolist(),
        classifier=classifier_name(classifier),
        best_params=best["params"],
        cv_summary=cv_summary,
    )
