# sheetmerge/dataset.py
import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from sheetmerge.errors import (
    CorruptFileError,
    ImmutableFileError,
    MissingFileError,
    MissingHeaderSentinelError,
)
from sheetmerge.exporter import save_grid
from sheetmerge.file_loader import Grid, load_grid
from sheetmerge.settings import FileSettings

logger = logging.getLogger(__name__)

SENTINEL = "DATA"
EMPTY_MARKER = "-"


@dataclass(frozen=True)
class HeaderInfo:
    raw_name: str
    ordinal: int
    column: int
    row: int

    @property
    def display_name(self) -> str:
        if self.ordinal == 0:
            return self.raw_name
        return f"{self.raw_name} ({self.ordinal + 1})"


class Record:
    """One data row: display header -> value, plus a changed flag."""

    def __init__(self, values: Optional[Iterable[Tuple[str, str]]] = None, placeholder: bool = False):
        self._values: Dict[str, str] = {}
        self._changed = False
        self.placeholder = placeholder
        for header, value in values or []:
            self.add(header, value)

    def add(self, header: str, value: str):
        self._values[header] = value

    def update(self, header: str, value: str) -> bool:
        """Set an existing header. Unknown headers are ignored."""
        if header not in self._values:
            return False
        if self._values[header] != value:
            self._values[header] = value
            self._changed = True
        return True

    def get(self, header: str, default: str = "") -> str:
        return self._values.get(header, default)

    def headers(self) -> List[str]:
        return list(self._values)

    def items(self) -> List[Tuple[str, str]]:
        return list(self._values.items())

    def has_header(self, header: str) -> bool:
        return header in self._values

    @property
    def changed(self) -> bool:
        return self._changed

    def consume_changed(self) -> bool:
        """Return the changed flag and reset it."""
        changed = self._changed
        self._changed = False
        return changed

    def reset_changed(self):
        self._changed = False

    def is_empty(self) -> bool:
        return not any(self._values.values())

    def is_placeholder(self) -> bool:
        return self.placeholder

    def blank_copy(self) -> "Record":
        return Record((h, "") for h in self._values)

    def copy(self) -> "Record":
        clone = Record(self._values.items(), placeholder=self.placeholder)
        clone._changed = self._changed
        return clone

    def __eq__(self, other):
        if not isinstance(other, Record):
            return NotImplemented
        return self.items() == other.items()

    def __repr__(self):
        return f"Record({self._values!r})"


def find_header_row(grid: Grid) -> int:
    """Index of the last row whose first cell is the sentinel, or -1."""
    header_row = -1
    for idx, row in enumerate(grid):
        if row and row[0] == SENTINEL:
            header_row = idx
    return header_row


def build_header_index(grid: Grid, header_row: int) -> List[HeaderInfo]:
    headers = []
    seen: Dict[str, int] = {}
    taken = set()
    row = grid[header_row]
    for col in range(1, len(row)):
        name = row[col]
        if name == "":
            continue
        ordinal = seen.get(name, 0)
        info = HeaderInfo(name, ordinal, col, header_row)
        while info.display_name in taken:
            ordinal += 1
            info = HeaderInfo(name, ordinal, col, header_row)
        seen[name] = ordinal + 1
        taken.add(info.display_name)
        headers.append(info)
    return headers


def extract_records(grid: Grid, headers: List[HeaderInfo], header_row: int) -> List[Record]:
    records = []
    for row in grid[header_row + 1:]:
        record = Record()
        for info in headers:
            value = row[info.column] if info.column < len(row) else ""
            record.add(info.display_name, value)
        if record.is_empty():
            break
        records.append(record)
    return records


def placeholder_record(headers: List[HeaderInfo]) -> Record:
    """Stand-in record that keeps the header layout alive; never saved."""
    return Record(((h.display_name, EMPTY_MARKER) for h in headers), placeholder=True)


class TabularDataset:
    def __init__(self, path: Optional[str] = None):
        self.grid: Grid = []
        self.headers: List[HeaderInfo] = []
        self.records: List[Record] = []
        self.source_path: str = ""
        self.ready = False
        self.settings = FileSettings()
        if path:
            self.load(path)

    # -------------------------
    # Load / unload
    # -------------------------
    def load(self, path: str) -> Tuple[bool, Optional[str]]:
        """
        Load a file. Never raises for missing, corrupt or sentinel-less files:
        the dataset stays empty and the reason is returned.
        """
        self.unload()
        try:
            grid = load_grid(path)
            header_row = find_header_row(grid)
            if header_row < 0:
                raise MissingHeaderSentinelError(
                    f"{path} does not contain '{SENTINEL}' in column A"
                )
        except (MissingFileError, CorruptFileError, MissingHeaderSentinelError) as e:
            logger.warning("Could not load %s: %s", path, e)
            return False, str(e)

        self._build(grid, header_row)
        self.source_path = path
        logger.info("Dataset %s: %d headers, %d records",
                    os.path.basename(path), len(self.headers), len(self.records))
        return True, None

    def _build(self, grid: Grid, header_row: int):
        self.grid = grid
        self.headers = build_header_index(grid, header_row)
        self.records = extract_records(grid, self.headers, header_row)
        if not self.records:
            self.records.append(placeholder_record(self.headers))
        self.ready = True

    @classmethod
    def from_grid(cls, grid: Grid, source_path: str = "") -> "TabularDataset":
        """Dataset over an in-memory grid; stays non-ready without a sentinel row."""
        dataset = cls()
        header_row = find_header_row(grid)
        if header_row >= 0:
            dataset._build([list(r) for r in grid], header_row)
            dataset.source_path = source_path
        return dataset

    def unload(self):
        self.grid = []
        self.headers = []
        self.records = []
        self.source_path = ""
        self.ready = False

    # -------------------------
    # Headers
    # -------------------------
    def header_names(self) -> List[str]:
        return [h.display_name for h in self.headers]

    def find_header(self, name: str) -> Optional[HeaderInfo]:
        for info in self.headers:
            if info.display_name == name:
                return info
        return None

    def has_header(self, name: str) -> bool:
        return self.find_header(name) is not None

    def set_header_info(self, headers: List[HeaderInfo]):
        """Replace the header layout, e.g. with a template's layout before an export."""
        self.headers = list(headers)

    def column_values(self, name: str) -> List[str]:
        return [r.get(name) for r in self.records]

    # -------------------------
    # Records
    # -------------------------
    def _in_range(self, idx: int) -> bool:
        return 0 <= idx < len(self.records)

    def get_record(self, idx: int) -> Optional[Record]:
        if not self._in_range(idx):
            return None
        return self.records[idx]

    def add_record(self, record: Record):
        self.records.append(record)

    def add_new_record(self) -> Record:
        record = Record((h.display_name, "") for h in self.headers)
        self.records.append(record)
        return record

    def replace_record(self, idx: int, record: Record):
        if self._in_range(idx):
            self.records[idx] = record

    def remove_record(self, idx: int):
        if self._in_range(idx):
            del self.records[idx]

    def clear_records(self):
        self.records = []

    def changed_records(self) -> List[int]:
        return [i for i, r in enumerate(self.records) if r.changed]

    def extract(self, indices: Iterable[int]) -> "TabularDataset":
        """New unsaved dataset with this header layout and copies of the chosen records."""
        subset = TabularDataset()
        subset.set_header_info(self.headers)
        subset.settings = self.settings
        for idx in indices:
            record = self.get_record(idx)
            if record is not None:
                subset.add_record(record.copy())
        subset.ready = True
        return subset

    # -------------------------
    # Save
    # -------------------------
    def _header_row_index(self) -> int:
        return self.headers[0].row if self.headers else 0

    def rebuild_grid(self) -> Grid:
        header_row = self._header_row_index()
        width = max([h.column for h in self.headers] + [0]) + 1

        if self.grid and header_row < len(self.grid):
            preamble = [list(r) for r in self.grid[:header_row + 1]]
        else:
            preamble = [[] for _ in range(header_row + 1)]
            header_cells = [""] * width
            header_cells[0] = SENTINEL
            for info in self.headers:
                header_cells[info.column] = info.raw_name
            preamble[header_row] = header_cells

        rows = []
        for record in self.records:
            if record.is_placeholder():
                continue
            cells = [""] * width
            for info in self.headers:
                cells[info.column] = record.get(info.display_name)
            rows.append(cells)

        self.grid = preamble + rows
        return self.grid

    def check_writable(self, path: str):
        if self.settings.file_flag("immutable"):
            raise ImmutableFileError(f"{path} is marked immutable")

    def save(self, target_path: Optional[str] = None, template_path: Optional[str] = None) -> Tuple[bool, Optional[str]]:
        path = target_path or self.source_path
        if not path:
            return False, "No target path"
        if not self.headers:
            return False, "Dataset has no header layout"
        try:
            self.check_writable(path)
            save_grid(path, self.rebuild_grid(), template_path=template_path,
                      overwrite=self.settings.file_flag("overwrite"))
        except ImmutableFileError as e:
            logger.warning("Not saving %s: %s", path, e)
            return False, str(e)
        except (CorruptFileError, OSError) as e:
            logger.error("Saving %s failed: %s", path, e)
            return False, str(e)
        for record in self.records:
            record.reset_changed()
        return True, None

    # -------------------------
    # Inspection
    # -------------------------
    def to_frame(self) -> pd.DataFrame:
        rows = [dict(r.items()) for r in self.records if not r.is_placeholder()]
        return pd.DataFrame(rows, columns=self.header_names())

    def __len__(self):
        return len(self.records)

