"""
This module provides the GoogleSheetsClient class for reading tables from and
printing tables to a Google Spreadsheet.

Sheets can be passed to every method either by title or as a Worksheet
(title + numeric id); the two are normalized once at the start of each call.
"""

import time
import json
import random
import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Union

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
import google.auth.exceptions
from googleapiclient.errors import HttpError

from .config import GOOGLE_SHEETS_CONFIG
from .table_utils import map_rows, rows_to_obj, tabulate_array, column_letter, a1_to_grid_range

logger = logging.getLogger(__name__)

BORDER_SIDES = ("top", "left", "bottom", "right")


class Worksheet(NamedTuple):
    title: str
    sheet_id: int


SheetRef = Union[str, Worksheet]


def _quote_title(title: str) -> str:
    """Quotes a worksheet title for use in an A1 range."""
    return "'" + title.replace("'", "''") + "'"


def _cell_value(value: Any) -> Any:
    """Makes an API payload value safe to write into a single cell."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _hex_to_color(colour: str) -> Dict[str, float]:
    """Converts "#rrggbb" to a Sheets API Color."""
    hex_value = colour.lstrip('#')
    if len(hex_value) != 6:
        raise ValueError(f"Expected a colour like '#ff0000', got '{colour}'")
    red, green, blue = (int(hex_value[i:i + 2], 16) / 255 for i in (0, 2, 4))
    return {'red': red, 'green': green, 'blue': blue}


class GoogleSheetsClient:
    """
    A class to read and print tables in one Google Spreadsheet.
    It includes retry logic with exponential backoff for API requests.

    Reading:
       - read_table / read_records / get_obj
       - get_cell_a1

    Printing:
       - print_table / print_rows: new (or cleared) sheet, data, formatting
       - make_new_sheet, append_rows, pretty_up, trim_sheet, insert_borders
       - add_column, set_cell_a1, apply_conditional_formatting, delete_all_sheets
    """

    def __init__(self, credentials_path: str = GOOGLE_SHEETS_CONFIG["credentials_file"],
                 spreadsheet_id: Optional[str] = GOOGLE_SHEETS_CONFIG["default_spreadsheet_id"]):
        """
        Initializes the GoogleSheetsClient.

        Args:
            credentials_path (str): Path to the service account credentials JSON file.
                                    Defaults to the path specified in GOOGLE_SHEETS_CONFIG.
            spreadsheet_id (str | None): The spreadsheet every call works on.
                                         Can be changed later with set_spreadsheet().
        """
        self.credentials = None
        self.service = None
        self.spreadsheet_id = spreadsheet_id
        try:
            self.credentials = Credentials.from_service_account_file(
                credentials_path,
                scopes=GOOGLE_SHEETS_CONFIG["scopes"]
            )
            self.service = build('sheets', 'v4', credentials=self.credentials)
            logger.info("Successfully authenticated with Google Sheets API.")
        except FileNotFoundError:
            logger.error(f"Credentials file not found at {credentials_path}. "
                         "Please ensure the file exists and the path is correct.")
        except google.auth.exceptions.GoogleAuthError as e:
            logger.error(f"Google authentication failed: {e}")

    def set_spreadsheet(self, spreadsheet_id: str) -> None:
        """Points the client at another spreadsheet."""
        self.spreadsheet_id = spreadsheet_id
        logger.info(f"Active spreadsheet set to '{spreadsheet_id}'.")

    def _make_api_request_with_retry(self, api_call: Callable[[], Any], method_name: str) -> Optional[Any]:
        """
        Executes an API call with retry logic and exponential backoff.

        Args:
            api_call (Callable[[], Any]): The function that makes the API call (e.g., lambda: self.service.spreadsheets().get(...).execute()).
            method_name (str): The name of the public method calling this helper, for logging.

        Returns:
            Optional[Any]: The API response if successful, None otherwise.
        """
        if not self.service:
            logger.error(f"Google Sheets API service is not initialized. Cannot make API call for {method_name}.")
            return None

        for attempt in range(GOOGLE_SHEETS_CONFIG.get("retry_attempts", 3)):
            try:
                return api_call()
            except HttpError as e:
                logger.error(f"API error on attempt {attempt + 1} for {method_name}: {e.resp.status} - {e.content}")
                if e.resp.status == 429:
                    sleep_time = (2 ** attempt) + random.random()
                    logger.info(f"Rate limit exceeded for {method_name}. Retrying in {sleep_time:.2f} seconds...")
                    time.sleep(sleep_time)
                elif 500 <= e.resp.status < 600:
                    sleep_time = (2 ** attempt) + random.random()
                    logger.info(f"Server error ({e.resp.status}) for {method_name}. Retrying in {sleep_time:.2f} seconds...")
                    time.sleep(sleep_time)
                else:
                    logger.error(f"Non-retriable HttpError for {method_name}: {e}. Not retrying.")
                    return None

        logger.error(f"All {GOOGLE_SHEETS_CONFIG.get('retry_attempts', 3)} retry attempts failed for {method_name}.")
        return None

    # ---------------------------------- Worksheets ----------------------------------

    def _get_sheets(self, method_name: str) -> Optional[List[Dict]]:
        """Returns the raw `sheets` entries (properties and conditional formats) of the spreadsheet."""
        api_call = lambda: self.service.spreadsheets().get(
            spreadsheetId=self.spreadsheet_id,
            fields='sheets(properties,conditionalFormats)'
        ).execute()
        response = self._make_api_request_with_retry(api_call, method_name)
        if response is None:
            logger.error(f"Failed to get spreadsheet details for '{self.spreadsheet_id}'.")
            return None
        return response.get('sheets', [])

    def _get_sheet(self, worksheet: Worksheet, method_name: str) -> Optional[Dict]:
        sheets = self._get_sheets(method_name)
        if sheets is None:
            return None
        for sheet in sheets:
            if sheet.get('properties', {}).get('sheetId') == worksheet.sheet_id:
                return sheet
        logger.warning(f"Sheet '{worksheet.title}' not found in spreadsheet '{self.spreadsheet_id}'.")
        return None

    def list_worksheets(self) -> Optional[List[Worksheet]]:
        sheets = self._get_sheets("list_worksheets")
        if sheets is None:
            return None
        return [Worksheet(sheet['properties']['title'], sheet['properties']['sheetId']) for sheet in sheets]

    def find_worksheet(self, name: str) -> Optional[Worksheet]:
        """Returns the worksheet titled `name`, or None if there is none."""
        worksheets = self.list_worksheets()
        if worksheets is None:
            return None
        for worksheet in worksheets:
            if worksheet.title == name:
                return worksheet
        return None

    def resolve_worksheet(self, sheet: SheetRef) -> Optional[Worksheet]:
        """Normalizes a title or Worksheet into a Worksheet (looking the title up if needed)."""
        if isinstance(sheet, Worksheet):
            return sheet
        worksheet = self.find_worksheet(sheet)
        if worksheet is None:
            logger.warning(f"Sheet '{sheet}' not found in spreadsheet '{self.spreadsheet_id}'.")
        return worksheet

    @staticmethod
    def _title_of(sheet: SheetRef) -> str:
        return sheet.title if isinstance(sheet, Worksheet) else sheet

    def _apply_formatting_requests(self, requests: List[Dict]) -> bool:
        """
        Applies a list of batchUpdate requests to the spreadsheet.

        Args:
            requests (List[Dict]): A list of Google Sheets API Request objects.

        Returns:
            bool: True if the requests were applied, False otherwise.
        """
        method_name = "_apply_formatting_requests"
        if not requests:
            logger.info(f"No formatting requests to apply for spreadsheet '{self.spreadsheet_id}'.")
            return True

        body = {'requests': requests}
        api_call = lambda: self.service.spreadsheets().batchUpdate(spreadsheetId=self.spreadsheet_id, body=body).execute()
        response = self._make_api_request_with_retry(api_call, method_name)

        if response:
            logger.info(f"Successfully applied {len(requests)} formatting requests to spreadsheet '{self.spreadsheet_id}'.")
            return True
        else:
            logger.error(f"Failed to apply formatting requests to spreadsheet '{self.spreadsheet_id}'.")
            return False

    # ---------------------------------- Sheet Input ----------------------------------

    def read_table(self, sheet: SheetRef) -> Optional[List[List[str]]]:
        """
        Reads the occupied rectangle of a sheet as display strings.

        Args:
            sheet (SheetRef): The worksheet or its title.

        Returns:
            Optional[List[List[str]]]: Rows padded to equal width with empty strings,
                                       or None if the read fails.
        """
        title = self._title_of(sheet)
        api_call = lambda: self.service.spreadsheets().values().get(
            spreadsheetId=self.spreadsheet_id,
            range=_quote_title(title),
            valueRenderOption='FORMATTED_VALUE'
        ).execute()
        response = self._make_api_request_with_retry(api_call, "read_table")

        if response is None:
            logger.error(f"Failed to read data from spreadsheet '{self.spreadsheet_id}', worksheet '{title}'")
            return None

        values = response.get('values', [])
        width = max((len(row) for row in values), default=0)
        table = [[str(cell) for cell in row] + [''] * (width - len(row)) for row in values]
        logger.info(f"Read {len(table)} rows from worksheet '{title}'")
        return table

    def read_records(self, sheet: SheetRef) -> Optional[List[Dict[str, str]]]:
        """Reads a sheet as one dictionary per row, keyed by the header row."""
        table = self.read_table(sheet)
        if table is None:
            return None
        return map_rows(table)

    def get_obj(self, sheet: SheetRef, id_col_name: str, combine_entries: bool) -> Optional[Dict[str, Any]]:
        """
        Reads a sheet and groups its rows by the column `id_col_name`.

        Args:
            sheet (SheetRef): The worksheet or its title.
            id_col_name (str): The header whose value identifies each entry.
            combine_entries (bool): If True, map each id to a list of all its rows;
                                    otherwise map it to the last row found.
        """
        records = self.read_records(sheet)
        if records is None:
            return None
        return rows_to_obj(records, id_col_name, combine_entries)

    def get_cell_a1(self, sheet: SheetRef, cell: str) -> Any:
        """Returns the raw value of one cell (A1 notation), or '' if it is empty."""
        title = self._title_of(sheet)
        api_call = lambda: self.service.spreadsheets().values().get(
            spreadsheetId=self.spreadsheet_id,
            range=f"{_quote_title(title)}!{cell}",
            valueRenderOption='UNFORMATTED_VALUE'
        ).execute()
        response = self._make_api_request_with_retry(api_call, "get_cell_a1")
        if response is None:
            logger.error(f"Failed to read cell {cell} of worksheet '{title}'.")
            return None
        values = response.get('values', [])
        if not values or not values[0]:
            return ''
        return values[0][0]

    # ---------------------------------- Sheet Printing ----------------------------------

    def clear_worksheet(self, sheet: SheetRef) -> bool:
        """Clears all values and formatting of a worksheet."""
        worksheet = self.resolve_worksheet(sheet)
        if worksheet is None:
            return False
        requests = [{'updateCells': {'range': {'sheetId': worksheet.sheet_id}, 'fields': '*'}}]
        if self._apply_formatting_requests(requests):
            logger.info(f"Successfully cleared worksheet '{worksheet.title}' in spreadsheet '{self.spreadsheet_id}'.")
            return True
        logger.error(f"Failed to clear worksheet '{worksheet.title}' in spreadsheet '{self.spreadsheet_id}'.")
        return False

    def make_new_sheet(self, name: str) -> Optional[Worksheet]:
        """
        Creates a worksheet with the given name, or clears it if it already exists.

        Names longer than GOOGLE_SHEETS_CONFIG["max_sheet_name_length"] are truncated.

        Returns:
            Optional[Worksheet]: The new or cleared worksheet, None on failure.
        """
        max_length = GOOGLE_SHEETS_CONFIG["max_sheet_name_length"]
        if len(name) > max_length:
            name = name[:max_length]

        existing = self.find_worksheet(name)
        if existing is not None:
            return existing if self.clear_worksheet(existing) else None

        body = {'requests': [{'addSheet': {'properties': {'title': name}}}]}
        api_call = lambda: self.service.spreadsheets().batchUpdate(spreadsheetId=self.spreadsheet_id, body=body).execute()
        response = self._make_api_request_with_retry(api_call, "make_new_sheet")

        if not response:
            logger.error(f"Failed to create worksheet '{name}' in spreadsheet '{self.spreadsheet_id}'.")
            return None

        properties = response['replies'][0]['addSheet']['properties']
        logger.info(f"Successfully created worksheet '{name}' in spreadsheet '{self.spreadsheet_id}'.")
        return Worksheet(properties['title'], properties['sheetId'])

    def append_rows(self, sheet: SheetRef, rows: List[List[Any]]) -> bool:
        """
        Appends a grid below the last occupied row of a sheet, in batches.

        Args:
            sheet (SheetRef): The worksheet or its title.
            rows (List[List[Any]]): Rows of equal length. Nested values are written as JSON.

        Returns:
            bool: True if every batch was appended (or there was nothing to append).
        """
        if not rows:
            logger.info("No rows to append.")
            return True

        title = self._title_of(sheet)
        values = [[_cell_value(cell) for cell in row] for row in rows]
        batch_size = GOOGLE_SHEETS_CONFIG.get("batch_size", 100)
        num_batches = (len(values) + batch_size - 1) // batch_size

        for i in range(num_batches):
            current_batch_values = values[i * batch_size:(i + 1) * batch_size]
            logger.info(f"Appending batch {i+1} of {num_batches} ({len(current_batch_values)} rows) to worksheet '{title}'.")

            body = {'values': current_batch_values}
            api_call = lambda: self.service.spreadsheets().values().append(
                spreadsheetId=self.spreadsheet_id,
                range=_quote_title(title),
                valueInputOption='USER_ENTERED',
                insertDataOption='INSERT_ROWS',
                body=body
            ).execute()
            response = self._make_api_request_with_retry(api_call, f"append_rows (batch {i+1}/{num_batches})")

            if not response:
                logger.error(f"Failed to append batch {i+1} of {num_batches} to worksheet '{title}'.")
                return False

        return True

    def trim_sheet(self, sheet: SheetRef) -> bool:
        """Removes rows and columns beyond the occupied extent of a sheet."""
        worksheet = self.resolve_worksheet(sheet)
        if worksheet is None:
            return False
        sheet_data = self._get_sheet(worksheet, "trim_sheet")
        table = self.read_table(worksheet)
        if sheet_data is None or table is None:
            logger.error(f"Could not trim worksheet '{worksheet.title}'.")
            return False

        grid = sheet_data['properties'].get('gridProperties', {})
        max_rows = grid.get('rowCount', 0)
        max_columns = grid.get('columnCount', 0)
        last_row = len(table)
        last_column = len(table[0]) if table else 0

        requests = []
        # A sheet must keep at least one row and column.
        if last_row > 0 and max_rows > last_row:
            requests.append({'deleteDimension': {'range': {
                'sheetId': worksheet.sheet_id, 'dimension': 'ROWS',
                'startIndex': last_row, 'endIndex': max_rows}}})
        if last_column > 0 and max_columns > last_column:
            requests.append({'deleteDimension': {'range': {
                'sheetId': worksheet.sheet_id, 'dimension': 'COLUMNS',
                'startIndex': last_column, 'endIndex': max_columns}}})
        return self._apply_formatting_requests(requests)

    def insert_borders(self, sheet: SheetRef, row_vs_col: str, side: str,
                       index: Union[int, List[int]]) -> bool:
        """
        Applies a solid border to one side of every cell in a set of rows or columns.

        Args:
            sheet (SheetRef): The worksheet or its title.
            row_vs_col (str): "row" or "col".
            side (str): "top", "left", "bottom" or "right".
            index (int | List[int]): 1-based row/column index, or a list of them.
        """
        if row_vs_col not in ("row", "col"):
            raise ValueError(f"row_vs_col must be 'row' or 'col', got '{row_vs_col}'")
        if side not in BORDER_SIDES:
            raise ValueError(f"side must be one of {BORDER_SIDES}, got '{side}'")

        worksheet = self.resolve_worksheet(sheet)
        if worksheet is None:
            return False

        indexes = index if isinstance(index, (list, tuple)) else [index]
        requests = []
        for i in indexes:
            if row_vs_col == "row":
                grid_range = {'sheetId': worksheet.sheet_id, 'startRowIndex': i - 1, 'endRowIndex': i}
            else:
                grid_range = {'sheetId': worksheet.sheet_id, 'startColumnIndex': i - 1, 'endColumnIndex': i}
            requests.append({'updateBorders': {'range': grid_range, side: {'style': 'SOLID'}}})
        return self._apply_formatting_requests(requests)

    def pretty_up(self, sheet: SheetRef) -> bool:
        """Bolds the header row, borders its bottom, auto-sizes the columns and trims the sheet."""
        worksheet = self.resolve_worksheet(sheet)
        if worksheet is None:
            return False

        sheet_id = worksheet.sheet_id
        requests = [
            {'repeatCell': {'range': {'sheetId': sheet_id, 'startRowIndex': 0, 'endRowIndex': 1},
                            'cell': {'userEnteredFormat': {'textFormat': {'bold': True}}},
                            'fields': 'userEnteredFormat.textFormat.bold'}},
            {'updateBorders': {'range': {'sheetId': sheet_id, 'startRowIndex': 0, 'endRowIndex': 1},
                               'bottom': {'style': 'SOLID'}}},
            {'autoResizeDimensions': {'dimensions': {'sheetId': sheet_id, 'dimension': 'COLUMNS'}}},
        ]
        if not self._apply_formatting_requests(requests):
            return False
        return self.trim_sheet(worksheet)

    def print_table(self, sheet_name: str, table: List[List[Any]]) -> Optional[Worksheet]:
        """
        Creates (or clears) a sheet, fills it with a table, then tidies its formatting.

        Args:
            sheet_name (str): The sheet to create or clear out.
            table (List[List[Any]]): Rows of equal length, header first.

        Returns:
            Optional[Worksheet]: The printed sheet, or None if any step failed.
        """
        worksheet = self.make_new_sheet(sheet_name)
        if worksheet is None:
            return None
        if not self.append_rows(worksheet, table):
            return None
        if not self.pretty_up(worksheet):
            logger.warning(f"Data printed to '{worksheet.title}' but formatting could not be applied.")
        logger.info(f"Printed {len(table)} rows to worksheet '{worksheet.title}'.")
        return worksheet

    def print_rows(self, sheet_name: str, records: List[Dict[str, Any]],
                   header_row: Optional[List[str]] = None) -> Optional[Worksheet]:
        """Tabulates a list of dictionaries and prints it with print_table."""
        return self.print_table(sheet_name, tabulate_array(records, header_row))

    # ---------------------------------- Other Output ----------------------------------

    def add_column(self, sheet: SheetRef, column: List[List[Any]], index: int) -> bool:
        """
        Inserts a column after the 1-based column `index` and fills it.

        Args:
            sheet (SheetRef): The worksheet or its title.
            column (List[List[Any]]): One single-item list per cell, top to bottom.
            index (int): The new column goes immediately to the right of this one.
        """
        worksheet = self.resolve_worksheet(sheet)
        if worksheet is None:
            return False

        requests = [{'insertDimension': {
            'range': {'sheetId': worksheet.sheet_id, 'dimension': 'COLUMNS',
                      'startIndex': index, 'endIndex': index + 1},
            'inheritFromBefore': index > 0}}]
        if not self._apply_formatting_requests(requests):
            return False

        target = f"{_quote_title(worksheet.title)}!{column_letter(index + 1)}1"
        body = {'values': [[_cell_value(row[0])] for row in column]}
        api_call = lambda: self.service.spreadsheets().values().update(
            spreadsheetId=self.spreadsheet_id, range=target,
            valueInputOption='USER_ENTERED', body=body
        ).execute()
        if self._make_api_request_with_retry(api_call, "add_column") is None:
            logger.error(f"Failed to fill new column at {target}.")
            return False
        return True

    def set_cell_a1(self, sheet: SheetRef, cell: str, value: Any) -> bool:
        """Enters a value into a cell given in A1 notation."""
        title = self._title_of(sheet)
        api_call = lambda: self.service.spreadsheets().values().update(
            spreadsheetId=self.spreadsheet_id,
            range=f"{_quote_title(title)}!{cell}",
            valueInputOption='USER_ENTERED',
            body={'values': [[_cell_value(value)]]}
        ).execute()
        if self._make_api_request_with_retry(api_call, "set_cell_a1") is None:
            logger.error(f"Failed to set cell {cell} of worksheet '{title}'.")
            return False
        return True

    def apply_conditional_formatting(self, sheet: SheetRef, a1_range: str, formula: str, colour: str) -> bool:
        """
        Adds a custom-formula conditional format rule after the sheet's existing rules.

        Args:
            sheet (SheetRef): The worksheet or its title.
            a1_range (str): The range to format, e.g. "A2:F100".
            formula (str): The custom formula, e.g. "=$C2>38".
            colour (str): Background colour applied when the formula is satisfied, e.g. "#f4cccc".
        """
        worksheet = self.resolve_worksheet(sheet)
        if worksheet is None:
            return False
        sheet_data = self._get_sheet(worksheet, "apply_conditional_formatting")
        if sheet_data is None:
            return False

        rule = {
            'ranges': [a1_to_grid_range(a1_range, worksheet.sheet_id)],
            'booleanRule': {
                'condition': {'type': 'CUSTOM_FORMULA', 'values': [{'userEnteredValue': formula}]},
                'format': {'backgroundColor': _hex_to_color(colour)},
            },
        }
        existing_rules = len(sheet_data.get('conditionalFormats', []))
        return self._apply_formatting_requests([{'addConditionalFormatRule': {'rule': rule, 'index': existing_rules}}])

    def delete_all_sheets(self, keep: str = "EOF") -> bool:
        """Deletes every worksheet except the one titled `keep`."""
        worksheets = self.list_worksheets()
        if worksheets is None:
            return False
        requests = [{'deleteSheet': {'sheetId': worksheet.sheet_id}}
                    for worksheet in worksheets if worksheet.title != keep]
        if len(requests) == len(worksheets):
            logger.error(f"Refusing to delete every sheet: no sheet named '{keep}' to keep.")
            return False
        return self._apply_formatting_requests(requests)
