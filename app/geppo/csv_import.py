from __future__ import annotations

import csv
import io
from dataclasses import dataclass


@dataclass(frozen=True)
class CsvRowError:
    row_number: int
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.message}"


def parse_import_csv(file_bytes: bytes, permitted: tuple[str, ...]) -> list[tuple[int, dict[str, str]]]:
    """
    Read a back-office CSV import.

    The header row names columns; only columns in `permitted` are kept (others,
    like `id` or timestamps from an export, are dropped). Fully empty rows are
    skipped. Returns (row_number, values) pairs; row 1 is the header.
    Anything that is not UTF-8 is rejected with ValueError.
    """
    try:
        text = file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValueError("CSV must be UTF-8 encoded.") from e
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("CSV has no header row.")
    known = [f for f in reader.fieldnames if f and f.strip() in permitted]
    if not known:
        raise ValueError(f"CSV header must include at least one of: {', '.join(permitted)}")

    rows: list[tuple[int, dict[str, str]]] = []
    for idx, raw in enumerate(reader, start=2):
        if not raw or all((v or "").strip() == "" for v in raw.values() if isinstance(v, str)):
            continue
        values = {f.strip(): (raw.get(f) or "").strip() for f in known}
        rows.append((idx, values))
    return rows
