"""Read CSV / JSON lead files into raw record mappings."""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path
from typing import Any

from .errors import ImportFormatError

SUPPORTED_FORMATS = ("csv", "json")
# Wrapper keys a JSON export may nest its record list under
_LIST_KEYS = ("stores", "data", "leads", "records")


def detect_format(path: Path, fmt: str | None = None) -> str:
    candidate = (fmt or path.suffix.lstrip(".")).lower()
    if candidate not in SUPPORTED_FORMATS:
        raise ImportFormatError(
            f"Unsupported format: {candidate or '(none)'}; expected one of {', '.join(SUPPORTED_FORMATS)}"
        )
    return candidate


def parse_csv(text: str) -> list[dict[str, Any]]:
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if not reader.fieldnames:
        return []
    rows: list[dict[str, Any]] = []
    for row in reader:
        cleaned = {
            (key or "").strip(): (value or "").strip() if isinstance(value, str) else value
            for key, value in row.items()
            if key
        }
        if any(cleaned.values()):
            rows.append(cleaned)
    return rows


def parse_json(text: str) -> list[dict[str, Any]]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ImportFormatError(f"Malformed JSON: {exc}") from exc
    if isinstance(payload, dict):
        for key in _LIST_KEYS:
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
        else:
            payload = [payload]
    if not isinstance(payload, list):
        raise ImportFormatError("JSON import must be an object or an array of objects")
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise ImportFormatError(f"JSON record #{index + 1} is not an object")
    return payload


def read_records(path: Path, fmt: str | None = None) -> list[dict[str, Any]]:
    """Load records from ``path``; raises for missing or malformed files."""

    if not path.exists():
        raise FileNotFoundError(f"Import file not found: {path}")
    resolved = detect_format(path, fmt)
    text = path.read_text(encoding="utf-8")
    if resolved == "csv":
        return parse_csv(text)
    return parse_json(text)


__all__ = ["SUPPORTED_FORMATS", "detect_format", "parse_csv", "parse_json", "read_records"]
