from dataclasses import dataclass
from pathlib import Path
from typing import Any, List
import logging
import joblib
import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix

from .errors import EmptyAfterPruning, LabelMissing
from .models import TrainedModel

MODEL_FILENAME = "model.joblib"


@dataclass(frozen=True)
class EvaluationResult:
    confusion: pd.DataFrame  # rows = true label, columns = predicted label
    error_rate: float
    accuracy: float
    n_rows: int
    labels: List[Any]
    y_true: np.ndarray
    y_pred: np.ndarray


def predict_labels(model: TrainedModel, X_df: pd.DataFrame, table: str = "scoring") -> pd.Series:
    """One predicted label per input row, in input order and with the input's index."""
    yhat = model.predict(X_df, table=table)
    return pd.Series(yhat, index=X_df.index, name=f"predicted_{model.label_col}")


def evaluate_model(model: TrainedModel, df: pd.DataFrame, table: str = "validation") -> EvaluationResult:
    """Confusion matrix and misclassification rate on a labelled table."""
    if model.label_col not in df.columns:
        raise LabelMissing("Label column not found", table=table, column=model.label_col)
    if len(df) == 0:
        raise EmptyAfterPruning("Nothing to evaluate", table=table)

    y_true = df[model.label_col].to_numpy()
    y_pred = predict_labels(model, df, table=table).to_numpy()

    labels = sorted(set(model.classes_) | set(pd.unique(y_true)), key=str)
    cm = confusion_matrix(y_true, y_pred, labels=labels)
    confusion = pd.DataFrame(
        cm,
        index=pd.Index(labels, name="true"),
        columns=pd.Index(labels, name="predicted"),
    )

    n_rows = int(len(df))
    errors = int(np.sum(y_true != y_pred))
    error_rate = errors / n_rows
    return EvaluationResult(
        confusion=confusion,
        error_rate=float(error_rate),
        accuracy=float(1.0 - error_rate),
        n_rows=n_rows,
        labels=labels,
        y_true=y_true,
        y_pred=y_pred,
    )


def save_model_bundle(model: TrainedModel, out_dir: str, logger: logging.Logger) -> Path:
    path = Path(out_dir) / MODEL_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(model, path)
    logger.info(f"Saved model bundle to: {path}")
    return path


def load_model_bundle(out_dir: str, logger: logging.Logger) -> TrainedModel:
    """Load a model bundle saved by ``save_model_bundle``."""
    path = Path(out_dir) / MODEL_FILENAME
    try:
        model = joblib.load(path)
    except Exception as e:
        logger.error(f"Failed to load model bundle from {path}: {e}")
        raise
    if not isinstance(model, TrainedModel):
        raise ValueError(f"{path} does not contain a trained model bundle (got {type(model).__name__})")
    logger.info(f"Loaded {model.classifier} model bundle from: {path}")
    return model
