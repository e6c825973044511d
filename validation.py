"""
Input checks shared by every handler and by the repository.

The id check has two documented outcomes. ``get_by_id``/``update``/``delete``
treat a malformed id as "not found", while ``add_review`` raises
``InvalidIdError``. Both go through ``is_valid_object_id`` below.

Field types and coercion live on the pydantic models in schemas.py; only the
ordered presence checks for a new game are done by hand.
"""
from typing import Any, Dict

from bson import ObjectId

from exceptions import InputValidationError


def is_valid_object_id(value: Any) -> bool:
    # bson also accepts 12 raw bytes; ids arrive as path strings
    return isinstance(value, str) and ObjectId.is_valid(value)


def check_new_game(body: Dict[str, Any]) -> None:
    """Title first, then genre; each failure echoes the received body."""
    if not body.get("titulo"):
        raise InputValidationError(
            'The "titulo" field is required', field="titulo", received=body
        )

    genre = body.get("genero")
    if not genre or (isinstance(genre, (list, tuple)) and len(genre) == 0):
        raise InputValidationError(
            'The "genero" field is required', field="genero", received=body
        )
