from __future__ import annotations

import csv
import io
from collections.abc import Iterator

from app.crm.imports.errors import MalformedInput


RawRow = dict[str, str]


def _read_header(reader: Iterator[list[str]]) -> list[str]:
    for cells in reader:
        if any(cell.strip() for cell in cells):
            return [cell.strip() for cell in cells]
    return []


def decode(content: bytes) -> list[RawRow]:
    """Decode CSV bytes into header-keyed rows.

    Header names and cell values are trimmed. Cells missing from a short line
    are left out of that row's mapping rather than set to ``""``, surplus cells
    past the header are dropped, and lines with no non-blank cell are skipped.
    Columns with a blank header name are ignored.
    """
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise MalformedInput("Invalid CSV format: file is not UTF-8 text") from exc

    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    rows: list[RawRow] = []
    try:
        header = _read_header(reader)
        if not header:
            return rows

        named = [name for name in header if name]
        if not named:
            raise MalformedInput("Invalid CSV format: header row has no column names")
        duplicates = sorted({name for name in named if named.count(name) > 1})
        if duplicates:
            raise MalformedInput(f"Invalid CSV format: duplicate columns {', '.join(duplicates)}")

        for cells in reader:
            if not any(cell.strip() for cell in cells):
                continue
            row: RawRow = {}
            for name, cell in zip(header, cells):
                if name:
                    row[name] = cell.strip()
            rows.append(row)
    except csv.Error as exc:
        raise MalformedInput(f"Invalid CSV format: {exc}") from exc

    return rows
