"""
Predictor pruning.

Four filters run in a fixed order on the fitting table:

1. near-zero-variance columns
2. identifier / timestamp columns, by name
3. window-tracking metadata columns, by named range
4. columns that are almost entirely missing

Every decision is taken on the fitting table only; the resulting column list is
then applied unchanged to the validation and scoring tables.
"""
import logging
import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from exps.predictors.src.wlepred.errors import ColumnNotFound, EmptyAfterPruning, LabelMissing


NZV_RULES = ("all", "any")

STAGE_NZV = "near_zero_variance"
STAGE_IDENTIFIERS = "identifiers"
STAGE_METADATA = "metadata"
STAGE_MISSING = "high_missingness"
STAGES = (STAGE_NZV, STAGE_IDENTIFIERS, STAGE_METADATA, STAGE_MISSING)


@dataclass
class PruningConfig:
    # 95/5: most common value at least 19x as frequent as the runner-up
    freq_cut: float = 19.0
    # percent of distinct values over all rows
    unique_cut: float = 10.0
    nzv_rule: str = "all"
    identifier_columns: List[str] = field(
        default_factory=lambda: ["Unnamed: 0", "user_name", "cvtd_timestamp"]
    )
    metadata_range: Optional[List[str]] = field(
        default_factory=lambda: ["raw_timestamp_part_1", "num_window"]
    )
    metadata_columns: List[str] = field(default_factory=list)
    min_non_missing: Optional[int] = None
    min_non_missing_frac: float = 0.95
    strict: bool = False

    def __post_init__(self):
        if self.nzv_rule not in NZV_RULES:
            raise ValueError(f"nzv_rule must be one of {NZV_RULES}; got {self.nzv_rule!r}")
        if self.freq_cut <= 1:
            raise ValueError(f"freq_cut must be greater than 1; got {self.freq_cut}")
        if not 0 < self.unique_cut <= 100:
            raise ValueError(f"unique_cut must be a percentage in (0, 100]; got {self.unique_cut}")
        if not 0 < self.min_non_missing_frac <= 1:
            raise ValueError(f"min_non_missing_frac must be in (0, 1]; got {self.min_non_missing_frac}")
        if self.min_non_missing is not None and int(self.min_non_missing) < 0:
            raise ValueError(f"min_non_missing must be non-negative; got {self.min_non_missing}")
        if self.metadata_range is not None and len(self.metadata_range) != 2:
            raise ValueError(f"metadata_range must name exactly two columns; got {self.metadata_range}")

    @classmethod
    def from_params(cls, params: Optional[Mapping[str, Any]]) -> "PruningConfig":
        params = dict(params or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ValueError(f"Unknown pruning parameters: {unknown}")
        return cls(**params)

    def missing_threshold(self, n_rows: int) -> int:
        """Smallest non-missing count a column needs to survive the missingness filter."""
        if self.min_non_missing is not None:
            return int(self.min_non_missing)
        return int(math.ceil(self.min_non_missing_frac * n_rows))


@dataclass
class PruningPlan:
    label_col: str
    feature_columns: List[str]
    dropped: Dict[str, List[str]]
    stage_shapes: List[Dict[str, Any]]
    skipped_names: List[str] = field(default_factory=list)
    column_stats: Optional[pd.DataFrame] = field(default=None, repr=False)

    @property
    def dropped_columns(self) -> List[str]:
        return [c for stage in STAGES for c in self.dropped.get(stage, [])]

    def stage_table(self) -> pd.DataFrame:
        return pd.DataFrame(self.stage_shapes, columns=["table", "stage", "rows", "columns"])


def _column_kind(series: pd.Series, n_unique: int, n_present: int) -> str:
    if pd.api.types.is_numeric_dtype(series):
        return "numeric"
    if n_present > 1 and n_unique == n_present:
        return "identifier"
    return "categorical"


def near_zero_variance(
    df: pd.DataFrame,
    freq_cut: float = 19.0,
    unique_cut: float = 10.0,
    rule: str = "all",
) -> pd.DataFrame:
    """
    Per-column descriptor used by the near-zero-variance filter.

    ``freq_ratio`` is the count of the most frequent value over the count of the
    second most frequent one, on non-missing values. ``percent_unique`` is the
    number of distinct non-missing values over all rows, times 100. A column with
    at most one distinct value is always flagged; otherwise it is flagged when
    both conditions hold (``rule="all"``) or either does (``rule="any"``).
    """
    if rule not in NZV_RULES:
        raise ValueError(f"rule must be one of {NZV_RULES}; got {rule!r}")

    n_rows = len(df)
    records = []
    for col in df.columns:
        series = df[col]
        counts = series.value_counts(dropna=True)
        n_unique = int(len(counts))
        n_present = int(counts.sum())
        if n_unique >= 2:
            freq_ratio = float(counts.iloc[0]) / float(counts.iloc[1])
        else:
            freq_ratio = np.inf
        percent_unique = 100.0 * n_unique / n_rows if n_rows else 0.0

        zero_var = n_unique <= 1
        too_frequent = freq_ratio > freq_cut
        too_few_unique = percent_unique < unique_cut
        if rule == "all":
            nzv = zero_var or (too_frequent and too_few_unique)
        else:
            nzv = zero_var or too_frequent or too_few_unique

        records.append({
            "column": col,
            "kind": _column_kind(series, n_unique, n_present),
            "n_missing": n_rows - n_present,
            "n_unique": n_unique,
            "freq_ratio": freq_ratio,
            "percent_unique": percent_unique,
            "zero_var": zero_var,
            "nzv": bool(nzv),
        })

    return pd.DataFrame.from_records(
        records,
        columns=["column", "kind", "n_missing", "n_unique", "freq_ratio", "percent_unique", "zero_var", "nzv"],
    ).set_index("column")


def _resolve_names(
    logger: logging.Logger,
    names: Sequence[str],
    original: Sequence[str],
    remaining: Sequence[str],
    stage: str,
    strict: bool,
    skipped: List[str],
) -> List[str]:
    """Return the named columns still present; names never present are skipped or raise."""
    absent = [n for n in names if n not in original]
    if absent:
        if strict:
            raise ColumnNotFound(f"Columns named by the {stage} filter are absent", table="fit", column=absent)
        logger.warning(f"[{stage}] columns not found, skipping: {absent}")
        skipped.extend(absent)
    remaining_set = set(remaining)
    return [n for n in names if n in remaining_set]


def _metadata_names(logger, config: PruningConfig, original: Sequence[str], skipped: List[str]) -> List[str]:
    names = list(config.metadata_columns)
    if config.metadata_range:
        start, end = config.metadata_range
        absent = [n for n in (start, end) if n not in original]
        if absent:
            if config.strict:
                raise ColumnNotFound("Metadata range endpoint is absent", table="fit", column=absent)
            logger.warning(f"[{STAGE_METADATA}] range endpoints not found, skipping range: {absent}")
            skipped.extend(absent)
        else:
            i, j = original.index(start), original.index(end)
            if i > j:
                i, j = j, i
            names.extend(c for c in original[i:j + 1] if c not in names)
    return names


def plan_pruning(
    logger: logging.Logger,
    df_fit: pd.DataFrame,
    label_col: str,
    config: Optional[PruningConfig] = None,
) -> PruningPlan:
    """Decide the surviving predictor columns from the fitting table alone."""
    config = config or PruningConfig()
    if label_col not in df_fit.columns:
        raise LabelMissing("Label column not found in fitting table", table="fit", column=label_col)
    n_rows = len(df_fit)
    if n_rows == 0:
        raise EmptyAfterPruning("Fitting table has no rows", table="fit")

    original = [c for c in df_fit.columns if c != label_col]
    remaining = list(original)
    dropped: Dict[str, List[str]] = {}
    skipped: List[str] = []
    stage_shapes = [{"table": "fit", "stage": "loaded", "rows": n_rows, "columns": len(remaining) + 1}]

    def _drop(stage: str, to_drop: Sequence[str]):
        nonlocal remaining
        to_drop_set = set(to_drop)
        dropped[stage] = [c for c in remaining if c in to_drop_set]
        remaining = [c for c in remaining if c not in to_drop_set]
        stage_shapes.append({"table": "fit", "stage": stage, "rows": n_rows, "columns": len(remaining) + 1})
        logger.info(
            f"[{stage}] dropped {len(dropped[stage])} columns, {len(remaining)} predictors remain"
        )
        if dropped[stage]:
            logger.debug(f"[{stage}] dropped: {dropped[stage]}")
        if not remaining:
            raise EmptyAfterPruning(f"No predictor columns left after the {stage} filter", table="fit")

    # 1) near-zero variance
    stats = near_zero_variance(df_fit[remaining], config.freq_cut, config.unique_cut, config.nzv_rule)
    _drop(STAGE_NZV, stats.index[stats["nzv"]].tolist())

    # 2) identifiers and collection timestamps
    _drop(STAGE_IDENTIFIERS, _resolve_names(
        logger, config.identifier_columns, original, remaining, STAGE_IDENTIFIERS, config.strict, skipped,
    ))

    # 3) raw timestamp / window tracking metadata
    meta = _metadata_names(logger, config, original, skipped)
    _drop(STAGE_METADATA, _resolve_names(
        logger, meta, original, remaining, STAGE_METADATA, config.strict, skipped,
    ))

    # 4) almost entirely missing
    threshold = config.missing_threshold(n_rows)
    non_missing = df_fit[remaining].notna().sum()
    logger.info(f"[{STAGE_MISSING}] keeping columns with at least {threshold:,} of {n_rows:,} values present")
    _drop(STAGE_MISSING, non_missing.index[non_missing < threshold].tolist())

    drop_stage = {c: stage for stage, cols in dropped.items() for c in cols}
    stats["dropped_by"] = [drop_stage.get(c, "") for c in stats.index]

    return PruningPlan(
        label_col=label_col,
        feature_columns=remaining,
        dropped=dropped,
        stage_shapes=stage_shapes,
        skipped_names=skipped,
        column_stats=stats,
    )


def apply_pruning(plan: PruningPlan, df: pd.DataFrame, table: str, with_label: bool = True) -> pd.DataFrame:
    """Return a new table restricted to the plan's predictors (and the label when ``with_label``)."""
    if with_label and plan.label_col not in df.columns:
        raise LabelMissing("Label column not found", table=table, column=plan.label_col)
    missing = [c for c in plan.feature_columns if c not in df.columns]
    if missing:
        raise ColumnNotFound("Predictor columns selected on the fitting table are absent", table=table, column=missing)
    cols = list(plan.feature_columns) + ([plan.label_col] if with_label else [])
    return df.loc[:, cols].copy()


def prune_tables(
    logger: logging.Logger,
    df_fit: pd.DataFrame,
    df_val: pd.DataFrame,
    df_score: pd.DataFrame,
    label_col: str,
    config: Optional[PruningConfig] = None,
) -> Tuple[PruningPlan, pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """Plan on ``df_fit`` and apply the same column set to all three tables."""
    logger.info("=== Predictor pruning ===")
    plan = plan_pruning(logger, df_fit, label_col, config)

    fit = apply_pruning(plan, df_fit, "fit", with_label=True)
    val = apply_pruning(plan, df_val, "validation", with_label=True)
    score = apply_pruning(plan, df_score, "scoring", with_label=False)

    for name, before, after in (("validation", df_val, val), ("scoring", df_score, score)):
        plan.stage_shapes.append({"table": name, "stage": "loaded", "rows": before.shape[0], "columns": before.shape[1]})
        plan.stage_shapes.append({"table": name, "stage": "pruned", "rows": after.shape[0], "columns": after.shape[1]})

    logger.info(
        f"Pruned shapes - fit: {fit.shape}, validation: {val.shape}, scoring: {score.shape} "
        f"({len(plan.feature_columns)} predictors)"
    )
    return plan, fit, val, score
