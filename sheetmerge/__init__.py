from sheetmerge.dataset import HeaderInfo, Record, TabularDataset
from sheetmerge.merger import MergeReport, MergeSpec, merge_file, merge_folder, merge_one, run_merge
from sheetmerge.settings import FieldMapping, JoinKey, MergeSettings

__all__ = [
    "FieldMapping",
    "HeaderInfo",
    "JoinKey",
    "MergeReport",
    "MergeSettings",
    "MergeSpec",
    "Record",
    "TabularDataset",
    "merge_file",
    "merge_folder",
    "merge_one",
    "run_merge",
]
