"""
JSON Schema loading for Admin API request bodies.

Schemas are JSON files next to this module, loaded once at import time and
exposed as module-level constants. A missing or malformed schema file fails
the import, so a broken deployment never starts serving requests.
"""
import json
from pathlib import Path
from typing import Dict, Any

SCHEMA_DIR = Path(__file__).parent


def _load_schema(schema_filename: str) -> Dict[str, Any]:
    """
    Load a JSON schema file from the schema directory.

    Args:
        schema_filename: Name of the JSON schema file (e.g., "ghost_post_request_schema.json")

    Returns:
        Parsed JSON schema as a dictionary, ready for use with jsonschema

    Raises:
        FileNotFoundError: If the schema file doesn't exist
        json.JSONDecodeError: If the schema file contains invalid JSON
    """
    schema_path = SCHEMA_DIR / schema_filename

    if not schema_path.exists():
        raise FileNotFoundError(
            f"Schema file not found: {schema_path}. "
            f"Expected location: {SCHEMA_DIR}"
        )

    try:
        with open(schema_path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise json.JSONDecodeError(
            f"Invalid JSON in schema file {schema_filename}: {e.msg}",
            e.doc,
            e.pos
        ) from e


# Body of POST /posts/ (title required on every entry)
GHOST_POST_REQUEST_SCHEMA = _load_schema("ghost_post_request_schema.json")

# Body of PUT /posts/{id}/ (every field optional)
GHOST_POST_UPDATE_SCHEMA = _load_schema("ghost_post_update_schema.json")
