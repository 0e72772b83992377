"""Weight Lifting Exercise predictor package.

Modules:
- data: dataset fetching, caching and loading
- pruning: predictor pruning planned on the fitting table
- models: classifier registry and the trained model bundle
- train: cross-validated training and hyperparameter selection
- infer: evaluation and prediction helpers
- errors: error kinds raised by the stages

Importing this package has no side effects.
"""

__all__ = [
    "data",
    "pruning",
    "models",
    "train",
    "infer",
    "errors",
]
