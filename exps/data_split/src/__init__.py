from .utils import load_pre_split_dataset, split_dataset

__all__ = ["load_pre_split_dataset", "split_dataset"]
