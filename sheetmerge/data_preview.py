# sheetmerge/data_preview.py
import pandas as pd
from tabulate import tabulate

from sheetmerge.codec import is_integer, serial_to_date
from sheetmerge.dataset import TabularDataset


def _as_date(value: str) -> str:
    if is_integer(value):
        return serial_to_date(int(value))
    return value


def preview_frame(dataset: TabularDataset) -> pd.DataFrame:
    """Records as a DataFrame with invisible headers dropped and date headers rendered."""
    df = dataset.to_frame()
    hidden = [c for c in df.columns if dataset.settings.header_flag(c, "invisible")]
    df = df.drop(columns=hidden)
    for col in df.columns:
        if dataset.settings.header_flag(col, "date"):
            df[col] = df[col].map(_as_date)
    return df


def preview_records(dataset: TabularDataset, max_rows: int = 20) -> str:
    if not dataset.ready:
        return "(No file loaded)"
    df = preview_frame(dataset)
    if df.empty:
        return "(Empty)"
    text = tabulate(df.head(max_rows), headers="keys", tablefmt="psql", showindex=True)
    if len(df) > max_rows:
        text += f"\n... ({len(df)} total rows)"
    return text
