# __init__.py
__all__ = ["config", "document_properties", "drive_client", "google_sheets_client", "keypay_client", "table_utils"]

from . import config
from . import document_properties
from . import drive_client
from . import google_sheets_client
from . import keypay_client
from . import table_utils
