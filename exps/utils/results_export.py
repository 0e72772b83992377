import os
import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    f1_score,
    precision_score,
    recall_score,
)

from exps.utils.io_utils import write_json, write_text


def _fmt_table(df: pd.DataFrame) -> str:
    return df.to_string()


def format_report(
    *,
    stage_shapes: Optional[pd.DataFrame] = None,
    cv_summary: Optional[Dict[str, Any]] = None,
    classifier: Optional[str] = None,
    confusion: Optional[pd.DataFrame] = None,
    error_rate: Optional[float] = None,
    predictions: Optional[pd.DataFrame] = None,
    environment: Optional[Dict[str, Any]] = None,
) -> str:
    """Human-readable run report; sections for missing inputs are left out."""
    lines: List[str] = []

    if stage_shapes is not None:
        lines += ["=== Table dimensions by pruning stage ===", _fmt_table(stage_shapes), ""]

    if cv_summary is not None:
        lines.append("=== Model summary ===")
        if classifier:
            lines.append(f"Classifier: {classifier}")
        lines.append(f"Selected hyperparameters: {cv_summary.get('selected', {})}")
        lines.append(
            f"{cv_summary.get('n_splits')}-fold CV accuracy: "
            f"{cv_summary.get('mean_acc', float('nan')):.4f} ± {cv_summary.get('std_acc', float('nan')):.4f}"
        )
        per_fold = cv_summary.get("per_fold", [])
        lines.append("Per-fold accuracy: " + ", ".join(f"{a:.4f}" for a in per_fold))
        for res in cv_summary.get("configs", []):
            lines.append(f"  {res['config']}: mean acc={res['mean_acc']:.4f} ± {res['std_acc']:.4f}")
        lines.append("")

    if confusion is not None:
        lines += ["=== Confusion matrix (rows=true, cols=predicted) ===", _fmt_table(confusion), ""]

    if error_rate is not None:
        lines += [
            "=== Out-of-sample error ===",
            f"Error rate: {error_rate:.4f} (accuracy {1.0 - error_rate:.4f})",
            "",
        ]

    if predictions is not None:
        lines += ["=== Predictions on scoring table ===", predictions.to_string(index=False), ""]

    if environment is not None:
        lines.append("=== Runtime environment ===")
        for key, value in environment.items():
            if isinstance(value, dict):
                lines.append(f"{key}:")
                lines.extend(f"  {k}: {v}" for k, v in value.items())
            else:
                lines.append(f"{key}: {value}")
        lines.append("")

    return "\n".join(lines)


def export_experiment_results(
    *,
    logger: logging.Logger,
    out_dir: str,
    # Pruning
    stage_shapes: Optional[pd.DataFrame] = None,
    column_stats: Optional[pd.DataFrame] = None,
    # Model
    cv_summary: Optional[Dict[str, Any]] = None,
    classifier: Optional[str] = None,
    # Evaluation
    y_true: Optional[np.ndarray] = None,
    y_pred: Optional[np.ndarray] = None,
    confusion: Optional[pd.DataFrame] = None,
    error_rate: Optional[float] = None,
    # Scoring predictions
    predicted_labels: Optional[Sequence[Any]] = None,
    sample_ids: Optional[Sequence[Any]] = None,
    environment: Optional[Dict[str, Any]] = None,
    artifact_prefix: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Unified export for a pipeline run.

    Writes whichever artifacts its inputs allow (stage shapes, column stats, CV results,
    confusion matrix, metrics, predictions, environment) plus ``report.txt``,
    logs the report, and returns the computed metrics and created file paths.
    """
    os.makedirs(out_dir, exist_ok=True)
    created: Dict[str, Any] = {"files": []}
    prefix = f"{artifact_prefix.rstrip('_')}_" if artifact_prefix else ""

    def _path(name: str) -> str:
        p = os.path.join(out_dir, f"{prefix}{name}")
        created["files"].append(p)
        return p

    # 1) Pruning stage dimensions
    if stage_shapes is not None:
        stage_shapes.to_csv(_path("stage_shapes.csv"), index=False)
    if column_stats is not None:
        # per-column descriptors computed on the fitting table
        column_stats.to_csv(_path("column_stats.csv"))

    # 2) Cross-validation results
    if cv_summary is not None:
        write_json(_path("cv_results.json"), {"classifier": classifier, **cv_summary})

    # 3) Metrics + confusion
    metrics_dict: Optional[Dict[str, float]] = None
    if y_true is not None and y_pred is not None:
        y_true = np.asarray(y_true)
        y_pred = np.asarray(y_pred)
        metrics_dict = dict(
            n_rows=int(len(y_true)),
            acc=float(accuracy_score(y_true, y_pred)),
            error_rate=float(error_rate if error_rate is not None else 1.0 - accuracy_score(y_true, y_pred)),
            f1_macro=float(f1_score(y_true, y_pred, average="macro", zero_division=0)),
            prec_macro=float(precision_score(y_true, y_pred, average="macro", zero_division=0)),
            rec_macro=float(recall_score(y_true, y_pred, average="macro", zero_division=0)),
        )
        logger.info(
            f"Metrics: acc={metrics_dict['acc']:.4f} error_rate={metrics_dict['error_rate']:.4f} "
            f"f1_macro={metrics_dict['f1_macro']:.4f}"
        )
        write_json(_path("metrics.json"), metrics_dict)
        created["metrics"] = metrics_dict
        if error_rate is None:
            error_rate = metrics_dict["error_rate"]

    if confusion is not None:
        confusion.to_csv(_path("confusion_matrix.csv"))

    # 4) Per-row predictions on the scoring table
    predictions_df = None
    if predicted_labels is not None:
        rows = {"row": list(range(1, len(predicted_labels) + 1))}
        if sample_ids is not None:
            rows["id"] = list(sample_ids)
        rows["prediction"] = list(predicted_labels)
        predictions_df = pd.DataFrame(rows)
        predictions_df.to_csv(_path("predictions.csv"), index=False)

    # 5) Runtime environment
    if environment is not None:
        write_json(_path("environment.json"), environment)

    report = format_report(
        stage_shapes=stage_shapes,
        cv_summary=cv_summary,
        classifier=classifier,
        confusion=confusion,
        error_rate=error_rate,
        predictions=predictions_df,
        environment=environment,
    )
    write_text(_path("report.txt"), report)
    for line in report.splitlines():
        logger.info(line)
    created["report"] = report
    return created
