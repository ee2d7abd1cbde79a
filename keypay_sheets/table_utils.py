"""
table_utils.py - Pure helpers for moving between sheet grids and row dictionaries.

Functions:
- map_rows: Converts a grid (header row first) into a list of row dictionaries
- rows_to_obj: Groups row dictionaries by the value of one column
- tabulate_array: Converts row dictionaries back into a grid
- hash_by / find_in: Small lookup helpers over lists of dictionaries
- to_aus_date: Formats a date as D/M/YYYY
- column_letter / a1_to_grid_range: A1 notation helpers for the Sheets API

Nothing here talks to Google; see google_sheets_client.py for the I/O side.
"""

import re
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

_A1_CELL = re.compile(r"^([A-Za-z]*)(\d*)$")


def map_rows(rows: List[List[str]]) -> List[Dict[str, str]]:
    """
    Converts a grid of rows into a list of dictionaries, using the first row as keys.

    Args:
        rows: A list of row lists. rows[0] is the header row.

    Returns:
        One dictionary per data row. Keys follow header order; cells missing from a
        short row map to an empty string. The input grid is left untouched.
    """
    if not rows:
        return []

    headers = rows[0]
    records = []
    for row in rows[1:]:
        padded_row = list(row) + [''] * (len(headers) - len(row))
        records.append(dict(zip(headers, padded_row)))
    return records


def rows_to_obj(records: List[Dict[str, Any]], id_col_name: str,
                combine_entries: bool) -> Dict[str, Union[Dict[str, Any], List[Dict[str, Any]]]]:
    """
    Groups row dictionaries by the value found in the column `id_col_name`.

    Args:
        records: Row dictionaries, e.g. from map_rows.
        id_col_name: The header whose value identifies each entry.
        combine_entries: If True, each key maps to a list of every matching row (in input order).
                         If False, each key maps to the last row seen with that value.

    Returns:
        A dictionary keyed by the string form of the id value. Rows without the
        column are grouped under "None".
    """
    combined = {}
    for record in records:
        key = str(record.get(id_col_name))
        if combine_entries:
            combined.setdefault(key, []).append(record)
        else:
            combined[key] = record
    return combined


def tabulate_array(records: List[Dict[str, Any]], header_row: Optional[List[str]] = None) -> List[List[Any]]:
    """
    Generates a grid from a list of dictionaries (e.g. earnings lines).

    Args:
        records: The dictionaries to tabulate.
        header_row: Property names to use as columns. When omitted, every property seen
                    across all records is used, in first-seen order.

    Returns:
        A list of rows, header first. Properties a record lacks become empty strings.
    """
    if header_row is None:
        header_row = []
        for record in records:
            for prop in record:
                if prop not in header_row:
                    header_row.append(prop)

    rows = [list(header_row)]
    for record in records:
        rows.append([record.get(prop, '') for prop in header_row])
    return rows


def hash_by(records: List[Dict[str, Any]], id_property: str,
            return_property: Optional[str] = None) -> Dict[Any, Any]:
    """Maps each record's `id_property` to the record, or to its `return_property` if given."""
    hash_map = {}
    for record in records:
        hash_map[record.get(id_property)] = record.get(return_property) if return_property else record
    return hash_map


def find_in(records: List[Dict[str, Any]], property_name: str, value: Any) -> Union[Dict[str, Any], bool]:
    """Returns the first record whose `property_name` equals `value`, or False."""
    for record in records:
        if record.get(property_name) == value:
            return record
    return False


def to_aus_date(value: date) -> str:
    return f"{value.day}/{value.month}/{value.year}"


def column_letter(index: int) -> str:
    """Converts a 1-based column index to its letter (1 -> A, 27 -> AA)."""
    if index < 1:
        raise ValueError(f"Column index must be 1 or greater, got {index}")
    letters = ""
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def _column_index(letters: str) -> int:
    index = 0
    for char in letters.upper():
        index = index * 26 + (ord(char) - 64)
    return index


def a1_to_grid_range(a1: str, sheet_id: int) -> Dict[str, int]:
    """
    Converts an A1 range such as "B2:D10", "A:A" or "C3" into a Sheets API GridRange.

    Args:
        a1: The range in A1 notation, without a sheet prefix.
        sheet_id: The numeric id of the worksheet the range belongs to.

    Returns:
        A GridRange dictionary with 0-based, end-exclusive indexes. Open-ended sides are omitted.
    """
    parts = a1.split(':')
    if len(parts) > 2:
        raise ValueError(f"Invalid A1 range: {a1}")
    start, end = parts[0], parts[-1]

    start_match = _A1_CELL.match(start)
    end_match = _A1_CELL.match(end)
    if not start_match or not end_match or not (start or end):
        raise ValueError(f"Invalid A1 range: {a1}")

    grid_range = {'sheetId': sheet_id}
    start_col, start_row = start_match.groups()
    end_col, end_row = end_match.groups()
    if start_col:
        grid_range['startColumnIndex'] = _column_index(start_col) - 1
    if start_row:
        grid_range['startRowIndex'] = int(start_row) - 1
    if end_col:
        grid_range['endColumnIndex'] = _column_index(end_col)
    if end_row:
        grid_range['endRowIndex'] = int(end_row)
    return grid_range
