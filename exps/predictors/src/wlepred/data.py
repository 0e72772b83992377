import os
import time
import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import pandas as pd
import requests

from exps.predictors.src.wlepred.errors import SourceUnavailable
from exps.utils.io_utils import ensure_dir, log_dataset_info


# Every marker below is read as NaN, for all tables alike
MISSING_TOKENS = ["", "NA", "#DIV/0!"]

DEFAULT_TRAINING_URL = "https://d396qusza40orc.cloudfront.net/predmachlearn/pml-training.csv"
DEFAULT_SCORING_URL = "https://d396qusza40orc.cloudfront.net/predmachlearn/pml-testing.csv"
DEFAULT_TRAINING_FILE = "pml-training.csv"
DEFAULT_SCORING_FILE = "pml-testing.csv"


def fetch_dataset(
    logger: logging.Logger,
    url: Optional[str],
    cache_path: str,
    retries: int = 3,
    backoff: float = 1.0,
    timeout: float = 60.0,
) -> Path:
    """
    Return a local path for ``url``, downloading it into ``cache_path`` when no
    cached copy exists.

    Downloads are retried with exponential backoff. The cache write is
    best-effort: if the file cannot be moved into the cache the downloaded
    temporary copy is returned instead.
    """
    cache_path = Path(cache_path)
    if cache_path.is_file():
        logger.info(f"Using cached copy: {cache_path}")
        return cache_path

    if not url:
        raise SourceUnavailable("No cached copy and no remote location configured", table=cache_path.name)

    attempts = max(1, int(retries))
    last_error: Optional[Exception] = None
    for attempt in range(attempts):
        tmp_path: Optional[Path] = None
        try:
            logger.info(f"Downloading {url} (attempt {attempt + 1}/{attempts})")
            with requests.get(url, stream=True, timeout=timeout) as response:
                response.raise_for_status()
                with tempfile.NamedTemporaryFile("wb", suffix=".csv", delete=False) as tmp:
                    tmp_path = Path(tmp.name)
                    for chunk in response.iter_content(chunk_size=1 << 16):
                        if chunk:
                            tmp.write(chunk)
            break
        except (requests.RequestException, OSError) as e:
            last_error = e
            logger.warning(f"Download of {url} failed: {e}")
            # partial download
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            if attempt + 1 < attempts:
                time.sleep(backoff * (2 ** attempt))
    else:
        raise SourceUnavailable(
            f"Could not retrieve {url} after {attempts} attempt(s): {last_error}",
            table=cache_path.name,
        )

    try:
        ensure_dir(cache_path.parent)
        os.replace(tmp_path, cache_path)
    except OSError as e:
        logger.warning(f"Could not cache {url} at {cache_path}: {e}; using temporary copy")
        return tmp_path
    logger.info(f"Cached {url} at {cache_path}")
    return cache_path


def load_dataset(logger: logging.Logger, dataset_path, name: str = "Dataset") -> pd.DataFrame:
    dataset_path = Path(dataset_path)
    if not dataset_path.is_file():
        raise SourceUnavailable(f"Dataset not found at: {dataset_path}", table=name)
    logger.info(f"Loading {name} from: {dataset_path}")
    df = pd.read_csv(
        dataset_path,
        na_values=MISSING_TOKENS,
        keep_default_na=False,
        low_memory=False,
    )
    logger.info(f"Successfully loaded {name} with shape: {df.shape}")
    log_dataset_info(logger, df, name)
    return df


def _fetch_kwargs(params: Dict[str, Any]) -> Dict[str, Any]:
    return dict(
        retries=int(params.get("download_retries", 3)),
        backoff=float(params.get("download_backoff", 1.0)),
        timeout=float(params.get("download_timeout", 60.0)),
    )


def load_training_dataset(logger: logging.Logger, params: Dict[str, Any], cache_dir) -> pd.DataFrame:
    path = fetch_dataset(
        logger,
        params.get("training_url", DEFAULT_TRAINING_URL),
        Path(cache_dir) / params.get("training_file", DEFAULT_TRAINING_FILE),
        **_fetch_kwargs(params),
    )
    return load_dataset(logger, path, "Training Dataset")


def load_scoring_dataset(logger: logging.Logger, params: Dict[str, Any], cache_dir) -> pd.DataFrame:
    path = fetch_dataset(
        logger,
        params.get("scoring_url", DEFAULT_SCORING_URL),
        Path(cache_dir) / params.get("scoring_file", DEFAULT_SCORING_FILE),
        **_fetch_kwargs(params),
    )
    return load_dataset(logger, path, "Scoring Dataset")


def load_datasets(
    logger: logging.Logger,
    params: Dict[str, Any],
    cache_dir,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Resolve the training and scoring sources (cache first, then remote) and load both."""
    return load_training_dataset(logger, params, cache_dir), load_scoring_dataset(logger, params, cache_dir)
