import argparse
import json
import logging
from pathlib import Path

from exps.utils.io_utils import setup_logging, load_config_and_params
from exps.predictors.src.wlepred.data import load_training_dataset
from exps.data_split.src.utils import split_dataset


logging.captureWarnings(True)


def _persist_indices_mapping(df_fit, df_val, output_path, logger):
    mapping = {
        "fit": [int(idx) for idx in df_fit.index.tolist()],
        "validation": [int(idx) for idx in df_val.index.tolist()],
    }
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(mapping, f, indent=4)
    logger.info(f"Index mapping exported to: {output_path}")


def _export(df_fit, df_val, out_dir, logger):
	out_dir = Path(out_dir)
	out_dir.mkdir(parents=True, exist_ok=True)
	fit_path = out_dir / "fit.csv"
	val_path = out_dir / "validation.csv"
	df_fit.to_csv(fit_path, index=False)
	df_val.to_csv(val_path, index=False)
	_persist_indices_mapping(df_fit, df_val, out_dir / "split_indices.json", logger)
	logger.info(f"Dataset splits exported to: {fit_path} and {val_path}")
	return fit_path, val_path


def main(argv=None):
	parser = argparse.ArgumentParser(description="Split the training table into fitting and validation subsets.")
	parser.add_argument("--config", default="configs/pipeline.yaml", help="Path to the run configuration")
	args = parser.parse_args(argv)

	config, input_params = load_config_and_params(args.config)
	paths = config.get("paths", {}) or {}
	out_dir = paths.get("out", "out")
	logger = setup_logging(level=logging.INFO, to_file=True, log_dir=out_dir)
	logger.info(f"Loading configuration from: {args.config}")

	seed = int(input_params.get("seed", 2026))
	logger.info(f"Random seed set to: {seed}")

	df = load_training_dataset(logger, input_params, paths.get("cache", "data"))

	df_fit, df_val = split_dataset(
		logger, df,
		train_frac=input_params.get("train_frac", 0.6),
		label_col=input_params.get("label_col", "classe"),
		seed=seed,
	)

	return _export(df_fit, df_val, Path(out_dir) / "splits", logger)


if __name__ == "__main__":
	try:
		main()
	except Exception:
		logging.getLogger("main").exception("Fatal error in main")
		raise
