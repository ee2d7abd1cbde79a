"""
cli.py - Command-line interface for pulling KeyPay payroll data into Google Sheets.

Credential commands:
1. `set-api-key`: Prompts for the KeyPay API key and stores it in the document properties.
2. `set-business-id`: Prompts for the business id, stores it and confirms the business name.

Export commands (each prints one table to a fresh or cleared worksheet):
- `businesses`, `export-earnings`, `export-employees`, `export-locations`,
  `export-pay-categories`, `export-timesheets`
"""

import os
import sys
import logging
import argparse
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv, find_dotenv

from .config import GOOGLE_SHEETS_CONFIG, DOCUMENT_PROPERTIES_CONFIG
from .document_properties import DocumentProperties, prompt_for_property
from .google_sheets_client import GoogleSheetsClient
from .keypay_client import KeypayClient, KeypayError

logger = logging.getLogger(__name__)


def flatten_earnings_lines(response: Any) -> List[Dict[str, Any]]:
    """
    Flattens an earnings-lines response into one list of lines.

    The endpoint groups lines per employee under "earningsLines"; a plain list is
    returned unchanged.
    """
    if isinstance(response, list):
        return response
    if not isinstance(response, dict):
        return []
    lines = []
    for employee_lines in response.get("earningsLines", {}).values():
        lines.extend(employee_lines)
    return lines


def set_api_key(properties: DocumentProperties) -> bool:
    return prompt_for_property(properties, DOCUMENT_PROPERTIES_CONFIG["api_key_property"], "Enter API Key")


def set_business_id(properties: DocumentProperties) -> bool:
    """Stores the business id, then looks the business up to confirm it."""
    if not prompt_for_property(properties, DOCUMENT_PROPERTIES_CONFIG["business_id_property"], "Enter Business ID"):
        return False

    client = KeypayClient.from_properties(properties)
    if client is None:
        return False
    business = client.get_business_details()
    if not business:
        logger.error("Business ID saved, but the business could not be retrieved. Check the ID and API key.")
        return False
    logger.info(f"Business set to {business.get('name')}")
    return True


def _print_to_sheet(sheets: GoogleSheetsClient, sheet_name: str, records: Any) -> bool:
    if records is False:
        logger.error(f"KeyPay request failed; nothing printed to '{sheet_name}'.")
        return False
    if isinstance(records, dict):
        records = [records]
    if not records:
        logger.warning(f"No records returned; '{sheet_name}' not printed.")
        return True
    return sheets.print_rows(sheet_name, records) is not None


def run_export(args: argparse.Namespace, client: KeypayClient, sheets: GoogleSheetsClient) -> bool:
    """Fetches the data for an export command and prints it."""
    if args.mode == 'businesses':
        return _print_to_sheet(sheets, args.sheet_name or "Businesses", client.list_businesses())
    if args.mode == 'export-earnings':
        response = client.list_earnings_lines(args.payrun_id)
        records = False if response is False else flatten_earnings_lines(response)
        return _print_to_sheet(sheets, args.sheet_name or f"Earnings {args.payrun_id}", records)
    if args.mode == 'export-employees':
        employees = client.list_employees_by_payschedule(args.pay_schedule_id)
        return _print_to_sheet(sheets, args.sheet_name or "Employees", employees)
    if args.mode == 'export-locations':
        return _print_to_sheet(sheets, args.sheet_name or "Locations", client.list_locations())
    if args.mode == 'export-pay-categories':
        return _print_to_sheet(sheets, args.sheet_name or "Pay Categories", client.list_pay_categories())
    if args.mode == 'export-timesheets':
        report = client.get_timesheet_report(args.from_date, args.to_date, args.pay_schedule_id)
        return _print_to_sheet(sheets, args.sheet_name or f"Timesheets {args.from_date} to {args.to_date}", report)
    raise ValueError(f"Unknown mode: {args.mode}")


def build_parser() -> argparse.ArgumentParser:
    # Environment is read here, not at import, so values loaded from .env apply.
    parser = argparse.ArgumentParser(
        description='CLI for exporting KeyPay payroll data to Google Sheets.',
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument(
        '--properties-file',
        type=str,
        default=os.getenv("KEYPAY_PROPERTIES_FILE", DOCUMENT_PROPERTIES_CONFIG["properties_file"]),
        help='YAML file holding API_KEY and BUSINESS_ID. Defaults to "%(default)s".'
    )
    parser.add_argument(
        '--credentials',
        type=str,
        default=os.getenv("GOOGLE_APPLICATION_CREDENTIALS", GOOGLE_SHEETS_CONFIG["credentials_file"]),
        help='Google service account credentials file. Defaults to "%(default)s".'
    )
    parser.add_argument(
        '--spreadsheet-id',
        type=str,
        default=os.getenv("KEYPAY_SPREADSHEET_ID", GOOGLE_SHEETS_CONFIG["default_spreadsheet_id"]),
        help='Spreadsheet to print to. Defaults to $KEYPAY_SPREADSHEET_ID.'
    )
    subparsers = parser.add_subparsers(dest='mode', help='Operation mode')
    subparsers.required = True

    subparsers.add_parser('set-api-key', help='Prompt for and store the KeyPay API key.')
    subparsers.add_parser('set-business-id', help='Prompt for and store the KeyPay business id.')

    export_parsers = {
        'businesses': subparsers.add_parser('businesses', help='Print all businesses the API key can access.'),
        'export-earnings': subparsers.add_parser('export-earnings', help='Print the earnings lines of a pay run.'),
        'export-employees': subparsers.add_parser('export-employees', help='Print employees, optionally for one pay schedule.'),
        'export-locations': subparsers.add_parser('export-locations', help='Print the business locations.'),
        'export-pay-categories': subparsers.add_parser('export-pay-categories', help='Print the pay categories.'),
        'export-timesheets': subparsers.add_parser('export-timesheets', help='Print a timesheet report.'),
    }
    for export_parser in export_parsers.values():
        export_parser.add_argument('--sheet-name', type=str, default=None,
                                   help='Worksheet to print to (created or cleared).')

    export_parsers['export-earnings'].add_argument('payrun_id', type=str, help='Pay run id.')
    export_parsers['export-employees'].add_argument('--pay-schedule-id', type=str, default=None)
    export_parsers['export-timesheets'].add_argument('from_date', type=str, help='e.g. 2019-05-15T00:00:00')
    export_parsers['export-timesheets'].add_argument('to_date', type=str, help='e.g. 2019-05-21T00:00:00')
    export_parsers['export-timesheets'].add_argument('--pay-schedule-id', type=str, default=None)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')

    args = build_parser().parse_args(argv)
    properties = DocumentProperties(args.properties_file)

    if args.mode == 'set-api-key':
        return 0 if set_api_key(properties) else 1
    if args.mode == 'set-business-id':
        return 0 if set_business_id(properties) else 1

    client = KeypayClient.from_properties(properties)
    if client is None:
        return 1

    if not args.spreadsheet_id:
        logger.error("No spreadsheet id given. Use --spreadsheet-id or set KEYPAY_SPREADSHEET_ID.")
        return 1
    sheets = GoogleSheetsClient(credentials_path=args.credentials, spreadsheet_id=args.spreadsheet_id)
    if not sheets.service:
        logger.error("Failed to initialize Google Sheets Client. Check the credentials file.")
        return 1

    try:
        return 0 if run_export(args, client, sheets) else 1
    except KeypayError as e:
        logger.error(f"KeyPay request failed: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
