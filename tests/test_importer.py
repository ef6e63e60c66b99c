from __future__ import annotations

import json
from pathlib import Path

import pytest

from leadledger.errors import ImportFormatError
from leadledger.importer import detect_format, parse_csv, parse_json, read_records


def test_detect_format_from_extension_or_override(tmp_path: Path) -> None:
    assert detect_format(tmp_path / "leads.CSV") == "csv"
    assert detect_format(tmp_path / "leads.txt", "json") == "json"
    with pytest.raises(ImportFormatError):
        detect_format(tmp_path / "leads.xlsx")


def test_parse_csv_strips_cells_and_blank_rows() -> None:
    text = "\ufeffname, address ,phone\n Cafe , Kyoto ,075\n,,\nBar,Osaka,\n"
    assert parse_csv(text) == [
        {"name": "Cafe", "address": "Kyoto", "phone": "075"},
        {"name": "Bar", "address": "Osaka", "phone": ""},
    ]
    assert parse_csv("") == []


@pytest.mark.parametrize(
    "payload",
    [
        [{"name": "A"}],
        {"stores": [{"name": "A"}]},
        {"data": [{"name": "A"}]},
        {"name": "A"},
    ],
)
def test_parse_json_shapes(payload) -> None:
    assert parse_json(json.dumps(payload)) == [{"name": "A"}]


def test_parse_json_rejects_bad_input() -> None:
    with pytest.raises(ImportFormatError):
        parse_json("{not json")
    with pytest.raises(ImportFormatError):
        parse_json("[1, 2]")
    with pytest.raises(ImportFormatError):
        parse_json('"just a string"')


def test_read_records_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        read_records(tmp_path / "absent.json")


def test_read_records_csv(tmp_path: Path) -> None:
    path = tmp_path / "leads.csv"
    path.write_text("name,address\nCafe,Kyoto\n", encoding="utf-8")
    assert read_records(path) == [{"name": "Cafe", "address": "Kyoto"}]
