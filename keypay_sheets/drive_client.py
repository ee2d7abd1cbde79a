"""
drive_client.py - Looks up files in Google Drive folders.

Example usage:
    from keypay_sheets.drive_client import DriveClient

    drive = DriveClient()
    file_id = drive.get_file_id("1AbCdEfolderId", "Pay Run Template")
"""

import logging
from typing import Optional

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
import google.auth.exceptions
from googleapiclient.errors import HttpError

from .config import GOOGLE_SHEETS_CONFIG

logger = logging.getLogger(__name__)


def _escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveClient:
    """Read-only access to Drive, using the same service account as the Sheets client."""

    def __init__(self, credentials_path: str = GOOGLE_SHEETS_CONFIG["credentials_file"]):
        self.service = None
        try:
            credentials = Credentials.from_service_account_file(
                credentials_path,
                scopes=GOOGLE_SHEETS_CONFIG["scopes"]
            )
            self.service = build('drive', 'v3', credentials=credentials)
            logger.info("Successfully authenticated with Google Drive API.")
        except FileNotFoundError:
            logger.error(f"Credentials file not found at {credentials_path}.")
        except google.auth.exceptions.GoogleAuthError as e:
            logger.error(f"Google authentication failed: {e}")

    def get_file_id(self, folder_id: str, file_name: str) -> Optional[str]:
        """
        Finds a file by name inside a folder.

        Args:
            folder_id (str): The Drive id of the folder to search.
            file_name (str): The exact file name.

        Returns:
            Optional[str]: The id of the first matching file, None if there is none
                           or the lookup failed.
        """
        if not self.service:
            logger.error("Google Drive API service is not initialized. Cannot look up files.")
            return None

        query = (f"'{_escape_query_value(folder_id)}' in parents and "
                 f"name = '{_escape_query_value(file_name)}' and trashed = false")
        try:
            response = self.service.files().list(q=query, fields='files(id, name)', pageSize=1).execute()
        except HttpError as e:
            logger.error(f"Drive lookup for '{file_name}' in folder '{folder_id}' failed: {e}")
            return None

        files = response.get('files', [])
        if not files:
            logger.warning(f"File '{file_name}' not found in folder '{folder_id}'.")
            return None
        return files[0]['id']
