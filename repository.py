"""
Game persistence on top of a single MongoDB collection.

Store errors are not caught here; handlers in main.py classify them.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument

from exceptions import InvalidIdError, NotConnectedError, NotInitializedError
from schemas import Game, GameCreate, GameUpdate, Review, ReviewFields
from validation import is_valid_object_id

logger = logging.getLogger("playlib.repository")

COL_GAMES = "games"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class GameRepository:
    """CRUD for games plus embedded reviews.

    ``connection`` is anything with a ``get_handle()`` returning a pymongo
    ``Database``; in production that is ``database.ConnectionManager``.
    """

    def __init__(
        self,
        connection,
        collection_name: str = COL_GAMES,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self._connection = connection
        self.collection_name = collection_name
        self._clock = clock

    def _col(self):
        try:
            db = self._connection.get_handle()
        except NotConnectedError as exc:
            raise NotInitializedError() from exc
        return db[self.collection_name]

    def create(self, data: Union[GameCreate, Dict[str, Any]]) -> Dict[str, Any]:
        col = self._col()
        if not isinstance(data, GameCreate):
            data = GameCreate.model_validate(data)

        new_game = Game(**data.model_dump(), created_at=self._clock()).model_dump(by_alias=True)
        result = col.insert_one(new_game)
        logger.info("Game created: %s", result.inserted_id)
        return {**new_game, "_id": result.inserted_id}

    def list(self, filter: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        query = {}
        for key in ("genero", "plataforma"):
            value = (filter or {}).get(key)
            if value:
                query[key] = {"$in": [value]}
        return list(self._col().find(query).sort("fechaCreacion", DESCENDING))

    def get_by_id(self, game_id: str) -> Optional[Dict[str, Any]]:
        if not is_valid_object_id(game_id):
            return None
        return self._col().find_one({"_id": ObjectId(game_id)})

    def update(self, game_id: str, patch: Union[GameUpdate, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not is_valid_object_id(game_id):
            return None
        col = self._col()
        _id = ObjectId(game_id)

        if not isinstance(patch, GameUpdate):
            stripped = {"_id", "id", "fechaCreacion", "reseñas"} & set(patch)
            if stripped:
                logger.debug("Ignoring immutable fields on update of %s: %s", game_id, sorted(stripped))
            patch = GameUpdate.model_validate(patch)

        changes = patch.model_dump(by_alias=True, exclude_unset=True)
        if not changes:
            return col.find_one({"_id": _id})
        return col.find_one_and_update(
            {"_id": _id}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )

    def delete(self, game_id: str) -> bool:
        if not is_valid_object_id(game_id):
            return False
        result = self._col().delete_one({"_id": ObjectId(game_id)})
        return result.deleted_count == 1

    def add_review(
        self, game_id: str, review_data: Union[ReviewFields, Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """Append a review and return it, or ``None`` if the game does not exist.

        Unlike ``get_by_id`` a malformed id is an error here.
        """
        if not is_valid_object_id(game_id):
            raise InvalidIdError(game_id)
        col = self._col()
        _id = ObjectId(game_id)

        if not isinstance(review_data, ReviewFields):
            review_data = ReviewFields.model_validate(review_data)
        review = Review(**review_data.model_dump(), created_at=self._clock()).model_dump(by_alias=True)
        doc = {"_id": ObjectId(), "juegoId": _id, **review}

        result = col.update_one({"_id": _id}, {"$push": {"reseñas": doc}})
        if result.matched_count == 0:
            return None
        return doc

    def list_reviews(self, game_id: str) -> List[Dict[str, Any]]:
        if not is_valid_object_id(game_id):
            return []
        game = self._col().find_one({"_id": ObjectId(game_id)}, {"reseñas": 1})
        if not game:
            return []
        return game.get("reseñas") or []
