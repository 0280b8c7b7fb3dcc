"""
Questionnaire definition files.

Definitions are plain JSON documents (see core/schema_model.py for the
shape). Files are read-only inputs: the engine never writes them.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


def load_definition(path: str) -> Dict[str, Any]:
    """
    Read one definition file.

    Args:
        path: Path to a .json definition

    Returns:
        Parsed definition dict

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a JSON object
    """
    filepath = Path(path)
    if not filepath.exists():
        raise FileNotFoundError(f"Questionnaire definition not found: {filepath}")

    with open(filepath, 'r', encoding='utf-8') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {filepath}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Definition {filepath} must be a JSON object, got {type(data).__name__}")

    logger.info(f"Loaded questionnaire definition: {filepath.name}")
    return data


def list_definitions(directory: str) -> List[Path]:
    """Definition files in a directory, sorted by name (empty if missing)"""
    base = Path(directory)
    if not base.is_dir():
        logger.warning(f"Definitions directory not found: {base}")
        return []
    return sorted(base.glob("*.json"))
