# sheetmerge/exporter.py
import logging
import os
import tempfile
from typing import List, Optional

import openpyxl
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE, MergedCell

from sheetmerge.codec import (
    ValueKind,
    classify,
    parse_decimal,
    sanitize_text,
    utf8_to_legacy,
)
from sheetmerge.errors import CorruptFileError
from sheetmerge.file_loader import DEFAULT_SEPARATOR, SEPARATOR_DIRECTIVE, check_workbook, is_csv

logger = logging.getLogger(__name__)

DECIMAL_NUMBER_FORMAT = "0.000"
CSV_LINE_END = "\r\n"


def _csv_field(value: str) -> str:
    if classify(value) is not ValueKind.TEXT:
        return value
    return f'"{value}"'


def format_csv(grid: List[List[str]]) -> str:
    lines = [SEPARATOR_DIRECTIVE + DEFAULT_SEPARATOR]
    for row in grid:
        lines.append(DEFAULT_SEPARATOR.join(_csv_field(v) for v in row))
    return CSV_LINE_END.join(lines) + CSV_LINE_END


def _save_csv(path: str, grid: List[List[str]]):
    data = utf8_to_legacy(format_csv(grid))
    with open(path, "wb") as f:
        f.write(data)


def _base_workbook(path: str, template_path: Optional[str], overwrite: bool):
    """Pick the workbook whose formatting survives the write."""
    base = None
    if template_path and os.path.abspath(template_path) != os.path.abspath(path):
        base = template_path
    elif not overwrite and os.path.isfile(path):
        base = path
    if base is None:
        return openpyxl.Workbook()
    if not check_workbook(base):
        raise CorruptFileError(f"Base workbook failed the integrity check: {base}")
    return openpyxl.load_workbook(base)


def _clear_stale_cells(ws, grid: List[List[str]]):
    nrows = len(grid)
    ncols = max((len(r) for r in grid), default=0)
    for row in ws.iter_rows():
        for cell in row:
            if cell.row <= nrows and cell.column <= ncols:
                continue
            if isinstance(cell, MergedCell) or cell.value is None:
                continue
            cell.value = None


def _write_cell(cell, value: str):
    kind = classify(value)
    if kind is ValueKind.INTEGER:
        cell.value = int(value)
        return
    if kind is ValueKind.DECIMAL:
        number = parse_decimal(value)
        if number is not None:
            cell.value = number
            cell.number_format = DECIMAL_NUMBER_FORMAT
            return
    cell.value = ILLEGAL_CHARACTERS_RE.sub("", sanitize_text(value))


def _validate_saved(path: str):
    try:
        wb = openpyxl.load_workbook(path)
        wb.close()
    except Exception as e:
        raise CorruptFileError(f"Saved workbook could not be re-opened: {e}") from e


def _save_excel(path: str, grid: List[List[str]], template_path: Optional[str], overwrite: bool):
    wb = _base_workbook(path, template_path, overwrite)
    ws = wb.active
    _clear_stale_cells(ws, grid)
    for r, row in enumerate(grid, start=1):
        for c, value in enumerate(row, start=1):
            # blanks never overwrite what is already in the sheet
            if value == "":
                continue
            cell = ws.cell(row=r, column=c)
            if isinstance(cell, MergedCell):
                continue
            _write_cell(cell, value)

    folder = os.path.dirname(os.path.abspath(path))
    fd, scratch = tempfile.mkstemp(prefix="~sheetmerge_", suffix=".xlsx", dir=folder)
    os.close(fd)
    try:
        wb.save(scratch)
        wb.close()
        _validate_saved(scratch)
        os.replace(scratch, path)
    finally:
        if os.path.exists(scratch):
            os.remove(scratch)


def save_grid(path: str, grid: List[List[str]], template_path: Optional[str] = None, overwrite: bool = False):
    """
    Write a grid back to .csv or spreadsheet.

    Spreadsheets are written on top of a base workbook (the template when one
    is given, else the existing destination unless overwrite is set) and are
    validated through a scratch file before the destination is replaced.
    Raises CorruptFileError; the destination is untouched in that case.
    """
    if is_csv(path):
        _save_csv(path, grid)
    else:
        _save_excel(path, grid, template_path, overwrite)
    logger.info("Saved %s => %d rows", os.path.basename(path), len(grid))
