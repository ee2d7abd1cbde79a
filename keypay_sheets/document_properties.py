"""
Per-document key/value properties and the prompts that fill them in.

Properties live in a small YAML file next to the spreadsheet configuration.
The KeyPay API key and business id are stored here once and read back by
KeypayClient.from_properties() on every run.
"""

import os
import logging
from typing import Callable, Dict, Optional

import yaml

from .config import DOCUMENT_PROPERTIES_CONFIG

logger = logging.getLogger(__name__)


class DocumentProperties:
    """A YAML-backed string property store scoped to one document."""

    def __init__(self, path: str = DOCUMENT_PROPERTIES_CONFIG["properties_file"]):
        self.path = path

    def get_properties(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid properties file {self.path}: expected a mapping, got {type(data).__name__}")
        # A key with no value (`API_KEY:`) is treated as unset.
        return {str(key): str(value) for key, value in data.items() if value is not None}

    def get_property(self, key: str) -> Optional[str]:
        return self.get_properties().get(key)

    def set_property(self, key: str, value: str) -> None:
        properties = self.get_properties()
        properties[key] = value
        self._save(properties)
        logger.info(f"Saved property '{key}' to {self.path}")

    def delete_property(self, key: str) -> None:
        properties = self.get_properties()
        if properties.pop(key, None) is not None:
            self._save(properties)
            logger.info(f"Deleted property '{key}' from {self.path}")

    def _save(self, properties: Dict[str, str]) -> None:
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(properties, f, default_flow_style=False)


def prompt_for_property(properties: DocumentProperties, key: str, message: str,
                        input_func: Callable[[str], str] = input) -> bool:
    """
    Asks the operator for a value and stores it under `key`.

    An empty answer, end of input or Ctrl-C count as Cancel.

    Args:
        properties: The store to write to.
        key: Property name, e.g. "API_KEY".
        message: The prompt shown to the operator.
        input_func: Reads one line of input; `input` by default.

    Returns:
        True if a value was stored (OK), False if the operator cancelled.
    """
    try:
        response = input_func(f"{message}: ").strip()
    except (EOFError, KeyboardInterrupt):
        response = ""

    if not response:
        logger.info("Selected cancel")
        return False

    properties.set_property(key, response)
    return True
