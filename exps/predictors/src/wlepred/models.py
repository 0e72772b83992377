import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.ensemble import ExtraTreesClassifier, GradientBoostingClassifier, RandomForestClassifier
from sklearn.impute import SimpleImputer
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import FunctionTransformer, OneHotEncoder, StandardScaler

from exps.predictors.src.wlepred.errors import ColumnNotFound


# name -> (estimator class, default kwargs)
CLASSIFIERS: Dict[str, Tuple[type, Dict[str, Any]]] = {
    "random_forest": (RandomForestClassifier, {"n_estimators": 200, "n_jobs": 1}),
    "extra_trees": (ExtraTreesClassifier, {"n_estimators": 200, "n_jobs": 1}),
    "logistic_regression": (LogisticRegression, {"max_iter": 2000}),
    "gradient_boosting": (GradientBoostingClassifier, {"n_estimators": 100}),
}

ClassifierSpec = Union[str, Callable[[Dict[str, Any], int], Any]]


def seed_everything(seed: int = 2026) -> None:
    random.seed(seed)
    np.random.seed(seed)


def classifier_name(classifier: ClassifierSpec) -> str:
    if isinstance(classifier, str):
        return classifier
    return getattr(classifier, "__name__", type(classifier).__name__)


def build_classifier(classifier: ClassifierSpec, params: Optional[Dict[str, Any]] = None, random_state: int = 2026):
    """
    Instantiate the underlying estimator.

    ``classifier`` is either a key of ``CLASSIFIERS`` or a factory
    ``callable(params, random_state) -> estimator`` exposing ``fit``/``predict``.
    """
    params = dict(params or {})
    if callable(classifier):
        return classifier(params, random_state)
    if classifier not in CLASSIFIERS:
        raise ValueError(f"Unknown classifier {classifier!r}; expected one of {sorted(CLASSIFIERS)}")
    cls, defaults = CLASSIFIERS[classifier]
    kwargs = {**defaults, **params, "random_state": random_state}
    return cls(**kwargs)


def default_param_grid(classifier: ClassifierSpec, n_features: int) -> Dict[str, List[Any]]:
    """Hyperparameter grid searched by cross-validation when none is configured."""
    if classifier in ("random_forest", "extra_trees"):
        # predictors tried per split: 2, about half, all
        mtry = sorted({min(2, n_features), max(1, (2 + n_features) // 2), n_features})
        return {"max_features": mtry}
    if classifier == "logistic_regression":
        return {"C": [0.1, 1.0, 10.0]}
    if classifier == "gradient_boosting":
        return {"max_depth": [2, 3]}
    return {}


def _astype_str(X):
    """Cast incoming array/dataframe to string dtype for safe categorical encoding."""
    return X.astype(str)


def split_feature_types(df: pd.DataFrame, feature_cols: List[str]) -> Tuple[List[str], List[str]]:
    numerical = [c for c in feature_cols if pd.api.types.is_numeric_dtype(df[c])]
    categorical = [c for c in feature_cols if c not in numerical]
    return numerical, categorical


def build_pipeline(
    classifier: ClassifierSpec,
    params: Optional[Dict[str, Any]],
    numerical_cols: List[str],
    categorical_cols: List[str],
    random_state: int = 2026,
) -> Pipeline:
    """
    Preprocessing + estimator. Numeric predictors are median-imputed, centered and
    scaled; categoricals are one-hot encoded. Every statistic is learned in ``fit``,
    i.e. on the fitting rows only.
    """
    num_pipeline = Pipeline(steps=[
        ("impute", SimpleImputer(strategy="median")),
        ("scale", StandardScaler()),
    ])
    cat_pipeline = Pipeline(steps=[
        ("impute", SimpleImputer(strategy="constant", fill_value="<MISSING>")),
        ("to_str", FunctionTransformer(_astype_str, validate=False)),
        ("encode", OneHotEncoder(handle_unknown="ignore", sparse_output=False, dtype=float)),
    ])
    transformers = []
    if numerical_cols:
        transformers.append(("num", num_pipeline, list(numerical_cols)))
    if categorical_cols:
        transformers.append(("cat", cat_pipeline, list(categorical_cols)))

    pre = ColumnTransformer(transformers=transformers, remainder="drop")
    return Pipeline(steps=[
        ("preprocess", pre),
        ("clf", build_classifier(classifier, params, random_state)),
    ])


@dataclass
class TrainedModel:
    """A fitted pipeline together with what is needed to use and describe it."""
    pipeline: Pipeline
    label_col: str
    feature_columns: List[str]
    classes_: List[Any]
    classifier: str
    best_params: Dict[str, Any] = field(default_factory=dict)
    cv_summary: Dict[str, Any] = field(default_factory=dict)

    def _features(self, df: pd.DataFrame, table: str) -> pd.DataFrame:
        missing = [c for c in self.feature_columns if c not in df.columns]
        if missing:
            raise ColumnNotFound("Model predictors absent from input", table=table, column=missing)
        return df[self.feature_columns]

    def predict(self, df: pd.DataFrame, table: str = "input") -> np.ndarray:
        return self.pipeline.predict(self._features(df, table))

    def predict_row(self, row: Mapping[str, Any]) -> Any:
        return self.predict(pd.DataFrame([dict(row)]), table="row")[0]
