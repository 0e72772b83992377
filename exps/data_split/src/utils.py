import random
from pathlib import Path

import pandas as pd

from exps.predictors.src.wlepred.data import load_dataset
from exps.predictors.src.wlepred.errors import InvalidFraction, LabelMissing


def split_dataset(logger, df, train_frac=0.6, label_col="classe", seed=2026):
    """
    Stratified partition of ``df`` into a fitting subset and a validation subset.

    Parameters
    ----------
    logger : logging.Logger
        Logger used for status messages.
    df : pd.DataFrame
        Labelled table to partition. It is not modified.
    train_frac : float
        Target share of each label level assigned to the fitting subset, in (0, 1).
    label_col : str
        Column whose levels drive the stratification.
    seed : int
        Seed for the per-level shuffles; equal inputs and seed give equal partitions.

    Returns
    -------
    tuple[pd.DataFrame, pd.DataFrame]
        Fitting and validation tables. Both keep the original index labels and
        row order; together they hold every input row exactly once.
    """
    try:
        train_frac = float(train_frac)
    except (TypeError, ValueError):
        raise InvalidFraction(f"train_frac must be a number in (0, 1); got {train_frac!r}")
    if not 0 < train_frac < 1:
        raise InvalidFraction(f"train_frac must be in (0, 1); got {train_frac}")

    if label_col not in df.columns:
        raise LabelMissing("Label column not found in dataset to split", table="training", column=label_col)
    n_unlabelled = int(df[label_col].isna().sum())
    if n_unlabelled:
        raise LabelMissing(f"{n_unlabelled} rows have no label", table="training", column=label_col)

    if len(df) < 2:
        raise ValueError("Dataset must contain at least two samples before splitting")

    rng = random.Random(seed)
    # groupby(...).indices gives positional indices, sorted by level
    groups = df.groupby(label_col, sort=True).indices
    target_fit = max(1, min(len(df) - 1, int(round(len(df) * train_frac))))

    fit_positions = []
    val_positions = []
    singletons = []

    for level, idxs in groups.items():
        idxs = list(idxs)
        rng.shuffle(idxs)
        n = len(idxs)

        if n == 1:
            singletons.append(idxs[0])
            continue

        fit_count = int(round(n * train_frac))
        fit_count = max(1, min(fit_count, n - 1))

        fit_positions.extend(idxs[:fit_count])
        val_positions.extend(idxs[fit_count:])

    # Levels with a single row go to whichever side is furthest below its target
    for pos in singletons:
        fit_gap = target_fit - len(fit_positions)
        val_gap = (len(df) - target_fit) - len(val_positions)
        if fit_gap >= val_gap:
            fit_positions.append(pos)
        else:
            val_positions.append(pos)

    if not fit_positions or not val_positions:
        raise RuntimeError("Unable to create two non-empty splits from the given dataset")

    df_fit = df.iloc[sorted(fit_positions)].copy()
    df_val = df.iloc[sorted(val_positions)].copy()

    logger.info(
        "Stratified dataset split across %d levels of '%s': %d fitting samples, %d validation samples "
        "(train_frac=%.2f, seed=%s)",
        len(groups),
        label_col,
        len(df_fit),
        len(df_val),
        train_frac,
        seed,
    )
    return df_fit, df_val


def load_pre_split_dataset(logger, dataset_fit_path, dataset_validation_path):
    """
    Load the fitting and validation splits written by the data_split stage.

    Returns
    -------
    tuple[pd.DataFrame, pd.DataFrame]
    """
    dataset_fit_path = Path(dataset_fit_path)
    dataset_validation_path = Path(dataset_validation_path)

    df_fit = load_dataset(logger, dataset_fit_path, "Fitting Split")
    df_val = load_dataset(logger, dataset_validation_path, "Validation Split")

    logger.info(
        "Loaded pre-split dataset (%d fitting rows, %d validation rows, %d columns)",
        len(df_fit),
        len(df_val),
        len(df_fit.columns),
    )
    return df_fit, df_val
