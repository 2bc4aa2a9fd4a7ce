from pathlib import Path
from typing import Dict, Iterable, List, Optional

import openpyxl
import pytest


def write_xlsx(path: Path, rows: Iterable[List], merged: Optional[List[str]] = None,
               formats: Optional[Dict[str, str]] = None) -> Path:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(list(row))
    for cell_range in merged or []:
        sheet.merge_cells(cell_range)
    for coord, number_format in (formats or {}).items():
        sheet[coord].number_format = number_format
    workbook.save(path)
    workbook.close()
    return path


def write_csv(path: Path, lines: Iterable[str], encoding: str = "cp1252") -> Path:
    path.write_bytes("\r\n".join(lines).encode(encoding) + b"\r\n")
    return path


def read_sheet(path: Path) -> List[List]:
    workbook = openpyxl.load_workbook(path)
    try:
        return [list(row) for row in workbook.active.iter_rows(values_only=True)]
    finally:
        workbook.close()


@pytest.fixture
def receiving_xlsx(tmp_path: Path) -> Path:
    """Sheet with a title, a sentinel header row, three records and a footer."""
    return write_xlsx(
        tmp_path / "receiving.xlsx",
        [
            ["Goods receiving", None, None, None],
            [None, None, None, None],
            ["DATA", "Article", "Qty", "Price"],
            [None, "A-100", 5, 1.5],
            [None, "A-200", 12, 0.25],
            [None, "A-300", None, 7.0],
            [None, None, None, None],
            ["Total", None, 17, None],
        ],
        formats={"D4": "0.000", "D5": "0.000", "D6": "0.000"},
    )
