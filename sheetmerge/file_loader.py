# sheetmerge/file_loader.py
import datetime
import logging
import os
import tempfile
from typing import List

import openpyxl
from openpyxl.utils.datetime import to_excel

from sheetmerge.codec import legacy_to_utf8, to_display_decimal
from sheetmerge.errors import CorruptFileError, MissingFileError

logger = logging.getLogger(__name__)

Grid = List[List[str]]

CSV_EXT = ".csv"
TABLE_EXT = (".csv", ".xlsx")
DEFAULT_SEPARATOR = ";"
SEPARATOR_DIRECTIVE = "sep="
UTF8_BOM = b"\xef\xbb\xbf"

_STRIPPED_CHARS = ('"', "\n", "\r", "\t")


def is_csv(path: str) -> bool:
    return path.lower().endswith(CSV_EXT)


def is_table_file(fname: str) -> bool:
    """Skip Office lock files (~$...) and our own scratch files."""
    base = os.path.basename(fname)
    if base.startswith("~"):
        return False
    return base.lower().endswith(TABLE_EXT)


def check_workbook(path: str) -> bool:
    """
    Round-trip integrity check: open, re-save to a scratch file, re-open it.
    Any failure along the way means the workbook is not safe to read.
    """
    try:
        with tempfile.TemporaryDirectory(prefix="sheetmerge_") as scratch_dir:
            scratch = os.path.join(scratch_dir, "to_check.xlsx")
            wb = openpyxl.load_workbook(path)
            wb.save(scratch)
            wb.close()
            wb = openpyxl.load_workbook(scratch)
            wb.close()
    except Exception as e:
        logger.warning("Error checking workbook %s: %s", path, e)
        return False
    logger.debug("Workbook is intact: %s", path)
    return True


def _has_fraction(number_format: str) -> bool:
    return ".0" in (number_format or "")


def _serial_text(value) -> str:
    # dates travel as their 1900 serial so they are written back as numbers
    serial = to_excel(value)
    if float(serial).is_integer():
        return str(int(serial))
    return to_display_decimal(serial)


def _cell_text(value, number_format: str = "General") -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).upper()
    if isinstance(value, int):
        if _has_fraction(number_format):
            return to_display_decimal(value)
        return str(value)
    if isinstance(value, float):
        return to_display_decimal(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return _serial_text(value)
    return str(value)


def _read_excel(path: str) -> Grid:
    if not check_workbook(path):
        raise CorruptFileError(f"Workbook failed the integrity check: {path}")
    try:
        wb = openpyxl.load_workbook(path, data_only=True)
        try:
            ws = wb.active
            grid = [[_cell_text(c.value, c.number_format) for c in row] for row in ws.iter_rows()]
        finally:
            wb.close()
    except Exception as e:
        raise CorruptFileError(f"Error reading workbook {path}: {e}") from e
    return grid


def parse_csv_text(text: str) -> Grid:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    cleaned = []
    for line in lines:
        for ch in _STRIPPED_CHARS:
            line = line.replace(ch, "")
        cleaned.append(line)

    separator = DEFAULT_SEPARATOR
    if cleaned and cleaned[0].startswith(SEPARATOR_DIRECTIVE):
        separator = cleaned[0][len(SEPARATOR_DIRECTIVE):].strip() or DEFAULT_SEPARATOR
        cleaned = cleaned[1:]

    return [line.split(separator) for line in cleaned]


def _read_csv(path: str) -> Grid:
    with open(path, "rb") as f:
        raw = f.read()
    if raw.startswith(UTF8_BOM):
        text = raw[len(UTF8_BOM):].decode("utf-8", errors="replace")
    else:
        text = legacy_to_utf8(raw)
    return parse_csv_text(text)


def load_grid(path: str) -> Grid:
    """
    Load a .csv or spreadsheet file into a list of rows of cell strings.
    Raises MissingFileError / CorruptFileError.
    """
    if not path or not os.path.isfile(path):
        raise MissingFileError(f"File does not exist: {path}")
    if is_csv(path):
        try:
            grid = _read_csv(path)
        except OSError as e:
            raise CorruptFileError(f"Error reading CSV {path}: {e}") from e
    else:
        grid = _read_excel(path)
    width = max((len(r) for r in grid), default=0)
    logger.info("Loaded %s => %d rows, %d cols", os.path.basename(path), len(grid), width)
    return grid
