"""
Tabular file readers and writers for the import/export executors.

CSV goes through ``csv.DictReader``/``DictWriter`` (UTF-8 with BOM
stripping on read), JSON is a list of objects, XLSX goes through openpyxl
with the first row as the header.  Rows are plain ``dict[str, Any]``.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Iterable

import openpyxl

SUPPORTED_FORMATS = ("csv", "json", "xlsx")


def detect_format(path: Path) -> str:
    """Format from the file suffix.

    Raises:
        ValueError: For unsupported suffixes.
    """
    suffix = path.suffix.lower().lstrip(".")
    if suffix not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported file type '{path.suffix}' for {path.name}")
    return suffix


def _xlsx_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, float) and value == int(value):
        return int(value)
    if isinstance(value, str):
        return value.strip()
    return value


def read_rows(path: Path) -> list[dict[str, Any]]:
    """Read every data row of a CSV, JSON or XLSX file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: Unsupported suffix or malformed JSON payload.
    """
    fmt = detect_format(path)
    if fmt == "csv":
        with path.open("r", encoding="utf-8-sig", newline="") as f:
            return [dict(row) for row in csv.DictReader(f)]
    if fmt == "json":
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
            raise ValueError(f"{path.name} must contain a JSON array of objects")
        return data

    if not path.exists():
        raise FileNotFoundError(path)
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        rows = list(wb.active.iter_rows(values_only=True))
    finally:
        wb.close()
    if not rows:
        return []
    headers = [
        str(h).strip() if h not in (None, "") else f"Column_{i + 1}"
        for i, h in enumerate(rows[0])
    ]
    result = []
    for row in rows[1:]:
        values = [_xlsx_cell(v) for v in row]
        if not any(v != "" for v in values):
            continue
        result.append(dict(zip(headers, values)))
    return result


def write_rows(
    path: Path,
    rows: Iterable[dict[str, Any]],
    columns: list[str],
    fmt: str,
) -> int:
    """Write rows to ``path`` in ``fmt`` and return the row count."""
    rows = list(rows)
    path.parent.mkdir(parents=True, exist_ok=True)

    if fmt == "csv":
        with path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(rows)
    elif fmt == "json":
        with path.open("w", encoding="utf-8") as f:
            json.dump(
                [{c: row.get(c) for c in columns} for row in rows],
                f, indent=2, default=str,
            )
    elif fmt == "xlsx":
        wb = openpyxl.Workbook()
        sheet = wb.active
        sheet.title = "export"
        sheet.append(columns)
        for row in rows:
            sheet.append([_xlsx_value(row.get(c)) for c in columns])
        wb.save(path)
    else:
        raise ValueError(f"Unsupported export format '{fmt}'")
    return len(rows)


def _xlsx_value(value: Any) -> Any:
    # openpyxl only accepts scalars; timezone-aware datetimes are rejected.
    if isinstance(value, (list, dict, tuple, set)):
        return json.dumps(value, default=str)
    if hasattr(value, "tzinfo") and getattr(value, "tzinfo", None) is not None:
        return value.isoformat()
    return value
