import argparse
import logging
import warnings
from pathlib import Path

from exps.utils.io_utils import setup_logging, load_config_and_params, describe_environment, log_dataset_info
from exps.utils.results_export import export_experiment_results
from exps.data_split.src import split_dataset, load_pre_split_dataset
from exps.predictors.src.wlepred.data import load_datasets, load_scoring_dataset
from exps.predictors.src.wlepred.models import seed_everything
from exps.predictors.src.wlepred.pruning import PruningConfig, prune_tables
from exps.predictors.src.wlepred.train import train_model
from exps.predictors.src.wlepred.infer import evaluate_model, predict_labels, save_model_bundle


logging.captureWarnings(True)

DEFAULT_CONFIG = "configs/pipeline.yaml"


def parse_args(argv=None):
	parser = argparse.ArgumentParser(
		description="Fit and evaluate the weight lifting exercise classifier, then score the test set."
	)
	parser.add_argument("--config", default=DEFAULT_CONFIG, help=f"Path to the run configuration (default: {DEFAULT_CONFIG})")
	return parser.parse_args(argv)


def run_pipeline(config, input_params, logger):
	"""Load, split, prune, train, evaluate, predict and export. Returns the run results."""
	paths = config.get("paths", {}) or {}
	out_dir = paths.get("out", "out")
	cache_dir = paths.get("cache", "data")

	seed = int(input_params.get("seed", 2026))
	seed_everything(seed)
	logger.info(f"Random seed set to: {seed}")

	label_col = input_params.get("label_col", "classe")
	id_col = input_params.get("id_col", "problem_id")

	# Fitting/validation subsets: materialized by the split stage, or split here
	dataset_fit_path = input_params.get("dataset_fit_path")
	dataset_validation_path = input_params.get("dataset_validation_path")
	if dataset_fit_path or dataset_validation_path:
		if not dataset_fit_path or not dataset_validation_path:
			raise KeyError("Both 'dataset_fit_path' and 'dataset_validation_path' must be defined in input params")
		df_fit, df_val = load_pre_split_dataset(logger, dataset_fit_path, dataset_validation_path)
		df_scoring = load_scoring_dataset(logger, input_params, cache_dir)
	else:
		df_training, df_scoring = load_datasets(logger, input_params, cache_dir)
		df_fit, df_val = split_dataset(
			logger, df_training,
			train_frac=input_params.get("train_frac", 0.6),
			label_col=label_col,
			seed=seed,
		)

	# Prune predictors on the fitting table, apply to all three
	pruning_config = PruningConfig.from_params(input_params.get("pruning"))
	plan, fit, val, score = prune_tables(logger, df_fit, df_val, df_scoring, label_col, pruning_config)
	log_dataset_info(logger, fit, "Pruned Fitting Table")

	# Cross-validated training
	model = train_model(
		fit, label_col,
		classifier=input_params.get("classifier", "random_forest"),
		classifier_params=input_params.get("classifier_params"),
		param_grid=input_params.get("param_grid"),
		cv_splits=int(input_params.get("cv_splits", 5)),
		random_state=seed,
		n_jobs=int(input_params.get("n_jobs", 1)),
		max_configs=input_params.get("max_configs"),
	)

	logger.info("=== Validation ===")
	evaluation = evaluate_model(model, val, table="validation")
	logger.info(f"Validation error rate: {evaluation.error_rate:.4f} on {evaluation.n_rows:,} rows")

	logger.info("=== Scoring ===")
	predictions = predict_labels(model, score, table="scoring")
	sample_ids = df_scoring[id_col].tolist() if id_col and id_col in df_scoring.columns else None

	exported = export_experiment_results(
		logger=logger,
		out_dir=out_dir,
		stage_shapes=plan.stage_table(),
		column_stats=plan.column_stats,
		cv_summary=model.cv_summary,
		classifier=model.classifier,
		y_true=evaluation.y_true,
		y_pred=evaluation.y_pred,
		confusion=evaluation.confusion,
		error_rate=evaluation.error_rate,
		predicted_labels=predictions.tolist(),
		sample_ids=sample_ids,
		environment=describe_environment(),
	)

	if input_params.get("save_model", True):
		save_model_bundle(model, out_dir, logger)

	return {
		"plan": plan,
		"model": model,
		"evaluation": evaluation,
		"predictions": predictions,
		"tables": {"fit": fit, "validation": val, "scoring": score},
		"exported": exported,
	}


def main(argv=None):
	args = parse_args(argv)
	config, input_params = load_config_and_params(args.config)

	out_dir = (config.get("paths", {}) or {}).get("out", "out")
	Path(out_dir).mkdir(parents=True, exist_ok=True)
	logger = setup_logging(
		level=logging.INFO,
		to_file=bool(input_params.get("log_to_file", True)),
		log_dir=out_dir,
		use_json=bool(input_params.get("log_json", False)),
	)
	logger.info(f"Loading configuration from: {args.config}")

	with warnings.catch_warnings():
		warnings.simplefilter("ignore", category=FutureWarning)
		results = run_pipeline(config, input_params, logger)

	logger.info("=== Weight Lifting Exercise pipeline completed successfully ===")
	return results


if __name__ == "__main__":
	try:
		main()
	except Exception:
		logging.getLogger("main").exception("Fatal error in main")
		raise
