import datetime
from pathlib import Path

import openpyxl
import pytest

from conftest import read_sheet, write_csv, write_xlsx
from sheetmerge.dataset import (
    EMPTY_MARKER,
    HeaderInfo,
    Record,
    TabularDataset,
    build_header_index,
    find_header_row,
    placeholder_record,
)
from sheetmerge.errors import ImmutableFileError


def test_load_extracts_rows_until_first_blank_row(receiving_xlsx: Path) -> None:
    dataset = TabularDataset()
    ok, err = dataset.load(str(receiving_xlsx))
    assert ok and err is None
    assert dataset.ready
    assert dataset.header_names() == ["Article", "Qty", "Price"]
    assert [r.get("Article") for r in dataset.records] == ["A-100", "A-200", "A-300"]
    assert dataset.records[0].items() == [("Article", "A-100"), ("Qty", "5"), ("Price", "1,500")]
    assert dataset.records[2].get("Qty") == ""


def test_last_sentinel_row_wins() -> None:
    grid = [["DATA", "old"], ["", "x"], ["DATA", "new"], ["", "y"]]
    assert find_header_row(grid) == 2
    dataset = TabularDataset.from_grid(grid)
    assert dataset.header_names() == ["new"]
    assert [r.get("new") for r in dataset.records] == ["y"]


def test_duplicate_headers_are_disambiguated() -> None:
    headers = build_header_index([["DATA", "Qty", "", "Qty", "Name", "Qty"]], 0)
    assert [(h.raw_name, h.ordinal, h.column) for h in headers] == [
        ("Qty", 0, 1), ("Qty", 1, 3), ("Name", 0, 4), ("Qty", 2, 5)
    ]
    assert [h.display_name for h in headers] == ["Qty", "Qty (2)", "Name", "Qty (3)"]


def test_display_names_stay_unique_against_literal_suffixes() -> None:
    headers = build_header_index([["DATA", "Qty (2)", "Qty", "Qty"]], 0)
    names = [h.display_name for h in headers]
    assert len(set(names)) == 3
    assert names[0] == "Qty (2)"
    assert headers[2].raw_name == "Qty"


def test_missing_sentinel_leaves_dataset_empty(tmp_path: Path) -> None:
    path = write_xlsx(tmp_path / "plain.xlsx", [["Article", "Qty"], ["A-100", 5]])
    dataset = TabularDataset()
    ok, err = dataset.load(str(path))
    assert not ok
    assert "DATA" in err
    assert not dataset.ready
    assert dataset.records == [] and dataset.headers == []


def test_missing_and_corrupt_files_do_not_raise(tmp_path: Path) -> None:
    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"garbage")
    for path in (tmp_path / "absent.csv", broken):
        dataset = TabularDataset()
        ok, err = dataset.load(str(path))
        assert not ok and err
        assert not dataset.ready


def test_zero_records_yield_one_placeholder() -> None:
    dataset = TabularDataset.from_grid([["DATA", "Article", "Qty"], ["", "", ""]])
    assert len(dataset.records) == 1
    assert dataset.records[0].items() == [("Article", EMPTY_MARKER), ("Qty", EMPTY_MARKER)]
    assert dataset.records[0].is_placeholder()
    assert dataset.to_frame().empty


def test_unload_resets_everything(receiving_xlsx: Path) -> None:
    dataset = TabularDataset(str(receiving_xlsx))
    dataset.unload()
    assert not dataset.ready
    assert dataset.grid == [] and dataset.headers == [] and dataset.records == []


def test_record_operations_ignore_out_of_range_indices() -> None:
    dataset = TabularDataset.from_grid([["DATA", "A"], ["", "1"], ["", "2"]])
    assert dataset.get_record(5) is None
    assert dataset.get_record(-1) is None
    dataset.replace_record(9, Record([("A", "x")]))
    dataset.remove_record(9)
    assert dataset.column_values("A") == ["1", "2"]
    dataset.remove_record(0)
    assert dataset.column_values("A") == ["2"]
    dataset.replace_record(0, Record([("A", "3")]))
    assert dataset.column_values("A") == ["3"]
    new = dataset.add_new_record()
    assert new.items() == [("A", "")]
    assert len(dataset) == 2
    dataset.clear_records()
    assert len(dataset) == 0


def test_record_changed_flag() -> None:
    record = Record([("A", "1"), ("B", "")])
    assert not record.changed
    record.update("A", "1")
    assert not record.changed
    assert not record.update("missing", "x")
    record.update("B", "2")
    assert record.consume_changed()
    assert not record.changed


def test_save_round_trip_keeps_types(receiving_xlsx: Path) -> None:
    dataset = TabularDataset(str(receiving_xlsx))
    dataset.records[0].update("Qty", "6")
    assert dataset.changed_records() == [0]
    ok, err = dataset.save()
    assert ok, err
    assert dataset.changed_records() == []

    rows = read_sheet(receiving_xlsx)
    assert rows[0][0] == "Goods receiving"
    assert rows[3][2] == 6 and isinstance(rows[3][2], int)
    assert rows[4][3] == 0.25 and isinstance(rows[4][3], float)

    reloaded = TabularDataset(str(receiving_xlsx))
    assert [r.items() for r in reloaded.records] == [r.items() for r in dataset.records]


def test_save_csv_round_trip(tmp_path: Path) -> None:
    path = write_csv(tmp_path / "list.csv", ["sep=;", "Title", 'DATA;"Name";"Qty"', ';"Bolt";5', ';"Nut";2,5'])
    dataset = TabularDataset(str(path))
    ok, _ = dataset.save()
    assert ok
    assert path.read_bytes().decode("cp1252").splitlines() == [
        "sep=;", '"Title"', '"DATA";"Name";"Qty"', '"";"Bolt";5', '"";"Nut";2,5'
    ]


def test_placeholder_is_not_written(tmp_path: Path) -> None:
    path = write_xlsx(tmp_path / "empty.xlsx", [["DATA", "A", "B"]])
    dataset = TabularDataset(str(path))
    ok, _ = dataset.save()
    assert ok
    assert read_sheet(path) == [["DATA", "A", "B"]]


def test_extract_exports_subset_onto_template(tmp_path: Path, receiving_xlsx: Path) -> None:
    template = write_xlsx(tmp_path / "template.xlsx", [["Export"], [None], ["DATA", "Article", "Qty", "Price"]])
    dataset = TabularDataset(str(receiving_xlsx))
    subset = dataset.extract([1, 7])
    assert [r.get("Article") for r in subset.records] == ["A-200"]

    out = tmp_path / "export.xlsx"
    ok, err = subset.save(str(out), template_path=str(template))
    assert ok, err
    rows = read_sheet(out)
    assert rows[0][0] == "Export"
    assert rows[2] == ["DATA", "Article", "Qty", "Price"]
    assert rows[3] == [None, "A-200", 12, 0.25]


def test_synthetic_grid_when_saving_without_source(tmp_path: Path) -> None:
    dataset = TabularDataset()
    dataset.set_header_info([HeaderInfo("Name", 0, 1, 0), HeaderInfo("Name", 1, 2, 0)])
    record = dataset.add_new_record()
    record.update("Name", "a")
    record.update("Name (2)", "b")
    out = tmp_path / "fresh.xlsx"
    ok, _ = dataset.save(str(out))
    assert ok
    assert read_sheet(out) == [["DATA", "Name", "Name"], [None, "a", "b"]]


def test_immutable_file_is_not_saved(receiving_xlsx: Path) -> None:
    before = receiving_xlsx.read_bytes()
    dataset = TabularDataset(str(receiving_xlsx))
    dataset.settings.set_file_flag("immutable")
    dataset.records[0].update("Qty", "99")
    ok, err = dataset.save()
    assert not ok
    assert "immutable" in err
    assert receiving_xlsx.read_bytes() == before


def test_failed_save_reports_error(receiving_xlsx: Path, monkeypatch) -> None:
    from sheetmerge import exporter
    from sheetmerge.errors import CorruptFileError

    def fail(path):
        raise CorruptFileError("validation failed")

    monkeypatch.setattr(exporter, "_validate_saved", fail)
    dataset = TabularDataset(str(receiving_xlsx))
    ok, err = dataset.save()
    assert not ok
    assert "validation failed" in err
    workbook = openpyxl.load_workbook(receiving_xlsx)
    assert workbook.active["B4"].value == "A-100"
    workbook.close()


def test_to_frame_columns_follow_display_names(receiving_xlsx: Path) -> None:
    df = TabularDataset(str(receiving_xlsx)).to_frame()
    assert list(df.columns) == ["Article", "Qty", "Price"]
    assert df["Article"].tolist() == ["A-100", "A-200", "A-300"]


def test_date_cells_survive_a_save(tmp_path: Path) -> None:
    path = write_xlsx(tmp_path / "dated.xlsx", [["DATA", "Received", "Qty"], [None, datetime.datetime(2023, 3, 15), 5]])
    dataset = TabularDataset(str(path))
    assert dataset.records[0].get("Received") == "45000"
    dataset.records[0].update("Qty", "6")
    ok, err = dataset.save()
    assert ok, err

    workbook = openpyxl.load_workbook(path)
    received = workbook.active["B2"].value
    workbook.close()
    assert isinstance(received, datetime.datetime)
    assert received == datetime.datetime(2023, 3, 15)


def test_whole_decimal_stays_decimal_across_saves(receiving_xlsx: Path) -> None:
    dataset = TabularDataset(str(receiving_xlsx))
    assert dataset.records[2].get("Price") == "7,000"
    dataset.save()
    dataset.save()
    assert TabularDataset(str(receiving_xlsx)).records[2].get("Price") == "7,000"


def test_records_holding_the_empty_marker_are_kept(tmp_path: Path) -> None:
    path = write_xlsx(tmp_path / "notes.xlsx", [["DATA", "Note"], [None, EMPTY_MARKER], [None, "x"]])
    dataset = TabularDataset(str(path))
    assert not dataset.records[0].is_placeholder()
    assert len(dataset.to_frame()) == 2
    ok, _ = dataset.save()
    assert ok
    reloaded = TabularDataset(str(path))
    assert [r.items() for r in reloaded.records] == [[("Note", EMPTY_MARKER)], [("Note", "x")]]


def test_placeholder_flag_survives_copy_but_not_blank_copy() -> None:
    placeholder = placeholder_record([HeaderInfo("A", 0, 1, 0)])
    assert placeholder.copy().is_placeholder()
    assert not placeholder.blank_copy().is_placeholder()
    assert not Record([("A", EMPTY_MARKER)]).is_placeholder()


def test_check_writable_rejects_immutable_files() -> None:
    dataset = TabularDataset.from_grid([["DATA", "A"], ["", "1"]])
    dataset.check_writable("a.xlsx")
    dataset.settings.set_file_flag("immutable")
    with pytest.raises(ImmutableFileError):
        dataset.check_writable("a.xlsx")
