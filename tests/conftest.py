import logging

import numpy as np
import pandas as pd
import pytest

from exps.predictors.src.wlepred.pruning import PruningConfig


LABELS = ["A", "B", "C", "D", "E"]
INFORMATIVE = [f"sensor_{i}" for i in range(10)]


def make_training_frame(n_per_class: int = 200, seed: int = 7) -> pd.DataFrame:
    """
    Synthetic sensor table: five balanced classes separable on ten numeric
    columns, plus identifier/metadata columns, one near-constant column and one
    column that is 98% missing.
    """
    rng = np.random.default_rng(seed)
    n = n_per_class * len(LABELS)
    labels = np.repeat(LABELS, n_per_class)
    rng.shuffle(labels)
    class_idx = np.array([LABELS.index(lbl) for lbl in labels])

    df = pd.DataFrame({
        "X": np.arange(1, n + 1),
        "user_name": rng.choice(["adelmo", "carlitos", "charles", "eurico", "jeremy", "pedro"], size=n),
        "raw_timestamp_part_1": 1322489000 + np.arange(n) * 3,
        "raw_timestamp_part_2": rng.integers(0, 999999, size=n),
        "cvtd_timestamp": rng.choice([f"05/12/2011 11:{m:02d}" for m in range(20)], size=n),
        "new_window": np.where(np.arange(n) % 50 == 0, "yes", "no"),
        "num_window": np.arange(n) // 10,
    })
    for j, col in enumerate(INFORMATIVE):
        df[col] = class_idx * 10.0 + (j % 3) + rng.normal(0.0, 1.0, size=n)

    near_constant = np.zeros(n)
    near_constant[:5] = 1.0
    df["near_constant"] = near_constant

    mostly_missing = np.full(n, np.nan)
    present = rng.choice(n, size=int(n * 0.02), replace=False)
    mostly_missing[present] = rng.normal(size=len(present))
    df["mostly_missing"] = mostly_missing

    df["classe"] = labels
    return df


def make_scoring_frame(n: int = 20, seed: int = 11) -> pd.DataFrame:
    df = make_training_frame(n_per_class=4, seed=seed).head(n).drop(columns=["classe"])
    df["problem_id"] = np.arange(1, len(df) + 1)
    return df


@pytest.fixture
def logger():
    return logging.getLogger("tests")


@pytest.fixture
def training_df():
    return make_training_frame()


@pytest.fixture
def scoring_df():
    return make_scoring_frame()


@pytest.fixture
def pruning_config():
    return PruningConfig(identifier_columns=["X", "user_name", "cvtd_timestamp"])


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
