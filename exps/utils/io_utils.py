# exps/utils/io_utils.py
from pathlib import Path
import os
import sys
import logging
import platform
from datetime import datetime, timezone
from importlib import metadata
from typing import Optional, Dict, Any, Iterable
import json
import yaml

ENV_PACKAGES = ("numpy", "pandas", "scikit-learn", "joblib", "requests", "PyYAML")


def ensure_dir(p: Path):
    Path(p).mkdir(parents=True, exist_ok=True)

def write_text(path: Path, text: str):
    ensure_dir(Path(path).parent)
    with open(path, "w") as f:
        f.write(text)

def write_json(path: Path, payload: Any):
    ensure_dir(Path(path).parent)
    with open(path, "w") as f:
        json.dump(payload, f, indent=4, default=str)

def describe_environment(packages: Iterable[str] = ENV_PACKAGES) -> Dict[str, Any]:
    """Runtime description for the run report: interpreter, platform and library versions."""
    versions = {}
    for name in packages:
        try:
            versions[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            versions[name] = None
    return {
        "python": sys.version.split()[0],
        "implementation": platform.python_implementation(),
        "platform": platform.platform(),
        "machine": platform.machine(),
        "cpu_count": os.cpu_count(),
        "packages": versions,
        "generated_utc": datetime.now(timezone.utc).isoformat(timespec="seconds"),
    }


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False)

def setup_logging(
    level: int = logging.INFO,
    to_file: bool = False,
    log_dir: str = "logs",
    use_json: bool = False,
    quiet_libs: bool = True,
    to_console: bool = True,
) -> logging.Logger:
    """
    Set up logging for a pipeline run.

    Args:
        level: Logging level (default: INFO)
        to_file: Whether to write logs to file (default: False, logs to stdout)
        log_dir: Directory for log files (default: "logs")
        use_json: Use JSON formatting (default: False, use human-readable)
        quiet_libs: Reduce noise from third-party libraries (default: True)
        to_console: Attach a stream handler (default: True)

    Returns:
        Configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    if use_json:
        formatter = JSONFormatter()
    else:
        fmt = "%(asctime)sZ [%(levelname)s] - %(message)s"
        datefmt = "%Y-%m-%dT%H:%M:%S"
        formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)
        # UTC timestamps
        formatter.converter = lambda *args: datetime.now(timezone.utc).timetuple()

    if to_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if to_file:
        ensure_dir(Path(log_dir))
        level_name = logging.getLevelName(level)
        # WARNING -> warn.log, others lower-cased
        level_token = "warn" if level_name == "WARNING" else str(level_name).lower()
        log_file = Path(log_dir) / f"{level_token}.log"
        log_file.touch(exist_ok=True)
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8", delay=False)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if quiet_libs:
        noisy_libs = [
            "urllib3", "urllib3.connectionpool", "requests", "charset_normalizer",
            "joblib", "sklearn",
        ]
        for lib in noisy_libs:
            logging.getLogger(lib).setLevel(logging.WARNING)

    return logger



def log_dataset_info(logger: logging.Logger, df, name: str = "Dataset", max_missing_cols: int = 10):
    """Log dataset information for debugging."""
    logger.info(f"=== {name} Information ===")
    logger.info(f"Shape: {df.shape[0]:,} rows × {df.shape[1]:,} columns")
    logger.info(f"Memory usage: {df.memory_usage(deep=True).sum() / (1024**2):.1f} MB")

    dtypes = df.dtypes.astype(str).value_counts()
    logger.info(f"Data types: {dict(dtypes)}")

    missing = df.isnull().sum()
    missing_info = missing[missing > 0].sort_values(ascending=False)
    if missing_info.empty:
        logger.info("No missing values found")
        return
    missing_pct = (missing / max(len(df), 1) * 100).round(2)
    logger.info(f"Missing values in {len(missing_info):,} columns:")
    for col, count in missing_info.head(max_missing_cols).items():
        logger.info(f"  {col}: {count:,} ({missing_pct[col]:.2f}%)")
    if len(missing_info) > max_missing_cols:
        logger.info(f"  ... and {len(missing_info) - max_missing_cols} more")

def log_fold_progress(logger: logging.Logger, fold: int, total_folds: int,
                      metrics: Dict[str, float], prefix: str = ""):
    """Log cross-validation progress with consistent formatting."""
    progress = f"Fold {fold:2d}/{total_folds}"
    metric_str = " ".join([f"{k}={v:.4f}" for k, v in metrics.items()])
    logger.info(f"{prefix}{progress} | {metric_str}")


def load_config_and_params(resolved_path):
    """
    Load the run configuration and its input parameters.

    Returns a tuple: (config, params)
    - config: the parsed YAML at resolved_path
    - params: the embedded ``input_params`` mapping, or the mapping loaded from
      ``input_params_path`` when nothing is embedded
    """
    if not resolved_path or not os.path.exists(resolved_path):
        raise FileNotFoundError(f"Config file not found: {resolved_path}")

    with open(resolved_path, "r") as rf:
        config = yaml.safe_load(rf) or {}

    if not isinstance(config, dict):
        raise ValueError(f"{resolved_path} must define a YAML mapping at the root")

    embedded_params = config.get("input_params")
    if embedded_params is not None and isinstance(embedded_params, dict):
        params = embedded_params
    else:
        input_params_path = config.get("input_params_path")
        if input_params_path and not os.path.isabs(input_params_path):
            input_params_path = os.path.join(os.path.dirname(os.path.abspath(resolved_path)), input_params_path)
        if not input_params_path or not os.path.exists(input_params_path):
            raise FileNotFoundError(
                "Both input_params (embedded) and input_params_path are missing from config"
            )

        with open(input_params_path, "r") as f:
            loaded = yaml.safe_load(f) or {}

        if not isinstance(loaded, dict):
            raise ValueError("input_params file must define a YAML mapping at the root")

        params = loaded

    return config, params
