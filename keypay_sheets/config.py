"""
This file contains configuration settings for the Google Sheets helpers and the KeyPay API client.

Attributes:
    GOOGLE_SHEETS_CONFIG (dict): Configuration parameters for Google Sheets / Drive API integration.
        - "scopes" (list): Authorization scopes required for API access.
        - "credentials_file" (str): The service account JSON file. Can be overridden with
                                    the GOOGLE_APPLICATION_CREDENTIALS environment variable.
        - "default_spreadsheet_id" (str | None): The spreadsheet to work on when none is given.
        - "batch_size" (int): The number of rows to send in a single append request.
        - "retry_attempts" (int): The number of times to retry a failed Sheets API request.
        - "max_sheet_name_length" (int): Longest worksheet title Google Sheets accepts.
    KEYPAY_CONFIG (dict): Configuration parameters for the KeyPay payroll API.
        - "base_url" (str): Host and versioned path prefix of the API.
        - "max_attempts" (int): Total attempts for a request that fails at the transport level.
        - "page_size" (int): Rows requested per page when paginating employees.
    DOCUMENT_PROPERTIES_CONFIG (dict): Where the per-document key/value store lives.
"""

import os

GOOGLE_SHEETS_CONFIG = {
    "scopes": [
        "https://www.googleapis.com/auth/spreadsheets",
        "https://www.googleapis.com/auth/drive.readonly",
    ],
    "credentials_file": os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "credentials.json"),
    "default_spreadsheet_id": os.getenv("KEYPAY_SPREADSHEET_ID"),
    "batch_size": 100,
    "retry_attempts": 3,
    "max_sheet_name_length": 100,
}

KEYPAY_CONFIG = {
    "base_url": "https://api.yourpayroll.com.au/api/v2",
    "max_attempts": 5,
    "page_size": 100,
}

DOCUMENT_PROPERTIES_CONFIG = {
    "properties_file": os.getenv("KEYPAY_PROPERTIES_FILE", "document_properties.yaml"),
    "api_key_property": "API_KEY",
    "business_id_property": "BUSINESS_ID",
}
