import json

import pandas as pd
import pytest
import yaml

from exps.data_split.src import main as split_main
from exps.predictors.src import main as pipeline_main
from exps.predictors.src.wlepred import data
from exps.predictors.src.wlepred.errors import SourceUnavailable

from conftest import INFORMATIVE, make_scoring_frame, make_training_frame


def _write_config(tmp_path, **overrides):
    params = {
        "seed": 2026,
        "training_url": "https://example.invalid/pml-training.csv",
        "scoring_url": "https://example.invalid/pml-testing.csv",
        "download_retries": 1,
        "train_frac": 0.6,
        "pruning": {"identifier_columns": ["X", "user_name", "cvtd_timestamp"]},
        "classifier": "random_forest",
        "classifier_params": {"n_estimators": 30},
        "param_grid": {"max_features": [2, 5]},
        "cv_splits": 5,
        "log_to_file": False,
    }
    params.update(overrides)
    config = {
        "paths": {"out": str(tmp_path / "out"), "cache": str(tmp_path / "data")},
        "input_params": params,
    }
    path = tmp_path / "pipeline.yaml"
    path.write_text(yaml.safe_dump(config))
    return path


@pytest.fixture
def offline(monkeypatch):
    def fail(*args, **kwargs):
        raise data.requests.ConnectionError("offline")
    monkeypatch.setattr(data.requests, "get", fail)
    monkeypatch.setattr(data.time, "sleep", lambda seconds: None)


@pytest.fixture
def cached_tables(tmp_path):
    cache = tmp_path / "data"
    cache.mkdir()
    make_training_frame().to_csv(cache / "pml-training.csv", index=False)
    make_scoring_frame().to_csv(cache / "pml-testing.csv", index=False)
    return cache


def test_end_to_end(tmp_path, cached_tables, offline, restore_root_logger):
    results = pipeline_main.main(["--config", str(_write_config(tmp_path))])

    plan = results["plan"]
    assert plan.feature_columns == INFORMATIVE
    assert {"near_constant", "new_window", "mostly_missing", "X", "num_window"} <= set(plan.dropped_columns)

    tables = results["tables"]
    assert list(tables["scoring"].columns) == INFORMATIVE
    assert list(tables["validation"].columns) == INFORMATIVE + ["classe"]
    assert len(tables["fit"]) + len(tables["validation"]) == 1000

    evaluation = results["evaluation"]
    assert evaluation.n_rows == len(tables["validation"])
    assert evaluation.error_rate < 0.1
    assert evaluation.confusion.to_numpy().sum() == evaluation.n_rows

    predictions = results["predictions"]
    assert len(predictions) == 20
    assert set(predictions) <= {"A", "B", "C", "D", "E"}

    out = tmp_path / "out"
    for name in ("report.txt", "predictions.csv", "confusion_matrix.csv", "metrics.json", "column_stats.csv",
                 "cv_results.json", "stage_shapes.csv", "environment.json", "model.joblib"):
        assert (out / name).exists(), name
    metrics = json.loads((out / "metrics.json").read_text())
    assert metrics["error_rate"] == pytest.approx(evaluation.error_rate)


def test_end_to_end_is_reproducible(tmp_path, cached_tables, offline, restore_root_logger):
    config = str(_write_config(tmp_path, save_model=False))
    first = pipeline_main.main(["--config", config])
    second = pipeline_main.main(["--config", config])

    assert first["tables"]["fit"].index.tolist() == second["tables"]["fit"].index.tolist()
    assert first["model"].cv_summary["per_fold"] == second["model"].cv_summary["per_fold"]
    assert first["predictions"].tolist() == second["predictions"].tolist()
    assert not (tmp_path / "out" / "model.joblib").exists()


def test_unreachable_source_aborts(tmp_path, offline, restore_root_logger):
    with pytest.raises(SourceUnavailable):
        pipeline_main.main(["--config", str(_write_config(tmp_path))])


def test_pipeline_reads_split_stage_output(tmp_path, cached_tables, offline, restore_root_logger):
    fit_path, val_path = split_main.main(["--config", str(_write_config(tmp_path))])
    # only the scoring table may be read from the cache from here on
    (cached_tables / "pml-training.csv").unlink()

    config = _write_config(
        tmp_path,
        dataset_fit_path=str(fit_path),
        dataset_validation_path=str(val_path),
        save_model=False,
    )
    results = pipeline_main.main(["--config", str(config)])

    n_fit = len(pd.read_csv(fit_path))
    n_val = len(pd.read_csv(val_path))
    assert len(results["tables"]["fit"]) == n_fit
    assert results["evaluation"].n_rows == n_val
    assert results["plan"].feature_columns == INFORMATIVE
    assert results["evaluation"].error_rate < 0.1
    assert len(results["predictions"]) == 20


def test_pre_split_paths_must_come_together(tmp_path, cached_tables, offline, restore_root_logger):
    config = _write_config(tmp_path, dataset_fit_path=str(tmp_path / "fit.csv"))
    with pytest.raises(KeyError):
        pipeline_main.main(["--config", str(config)])
