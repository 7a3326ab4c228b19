"""Schema Package - JSON Schemas for Admin API request bodies.

Schemas are stored as JSON files in src/schema/, loaded once when this
package is imported and exposed as constants:

    GHOST_POST_REQUEST_SCHEMA: body of POST /posts/
    GHOST_POST_UPDATE_SCHEMA: body of PUT /posts/{id}/

Usage:
    from schema import GHOST_POST_REQUEST_SCHEMA
    Draft7Validator(GHOST_POST_REQUEST_SCHEMA).iter_errors(body)
"""
from .schema import (
    GHOST_POST_REQUEST_SCHEMA,
    GHOST_POST_UPDATE_SCHEMA,
)

__all__ = [
    "GHOST_POST_REQUEST_SCHEMA",
    "GHOST_POST_UPDATE_SCHEMA",
]
