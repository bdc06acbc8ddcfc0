"""Loading data sets for data-driven tests from CSV and JSON files."""

import csv
import io
import json
from pathlib import Path
from typing import Any, List, Optional

from .config import DataSet
from .errors import DataFileError


def _coerce(value: str) -> Any:
    """Coerce a CSV cell: booleans and numbers become typed values."""
    if value == "true":
        return True
    if value == "false":
        return False
    if value == "":
        return value
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def parse_csv(content: str) -> List[DataSet]:
    """Parse CSV content into data sets.

    The first row holds the column names. Rows are named ``Row 1``, ``Row 2``...
    and blank rows are ignored.
    """
    rows = list(csv.reader(io.StringIO(content.strip())))
    if len(rows) < 2:
        return []

    headers = [h.strip() for h in rows[0]]
    data_sets: List[DataSet] = []
    for index, row in enumerate(rows[1:], start=1):
        if not any(cell.strip() for cell in row):
            continue
        values = {}
        for col, header in enumerate(headers):
            cell = row[col].strip() if col < len(row) else ""
            values[header] = _coerce(cell)
        data_sets.append(DataSet(values=values, name=f"Row {index}"))

    return data_sets


def parse_json_data(content: str) -> List[DataSet]:
    """Parse a JSON array into data sets.

    Each item is either ``{"name": ..., "values": {...}}`` or a plain object
    used directly as the values.

    Raises:
        DataFileError: If the document is not a JSON array
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise DataFileError(f"Invalid JSON data file: {e}") from e

    if not isinstance(data, list):
        raise DataFileError("JSON data file must contain an array")

    data_sets: List[DataSet] = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            raise DataFileError(f"Data item {idx + 1} must be an object")
        values = item["values"] if isinstance(item.get("values"), dict) else item
        data_sets.append(DataSet(values=dict(values), name=item.get("name") or f"Item {idx + 1}"))
    return data_sets


def load_data_file(file_path: str, base_dir: Optional[Path] = None) -> List[DataSet]:
    """Load data sets from a CSV or JSON file.

    Args:
        file_path: Path to the data file, relative paths resolved against base_dir
        base_dir: Directory of the test file declaring the data file

    Raises:
        DataFileError: If the file is missing, unparsable, or has an unsupported extension
    """
    path = Path(file_path)
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path

    if not path.exists():
        raise DataFileError(f"Data file not found: {path}")

    content = path.read_text(encoding="utf-8")
    ext = path.suffix.lower()
    if ext == ".csv":
        return parse_csv(content)
    if ext == ".json":
        return parse_json_data(content)
    raise DataFileError(f"Unsupported data file format: {ext}")
