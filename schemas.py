"""
Database Schemas for the PlayLib game catalog

Each Pydantic model describes a document shape in MongoDB or a request body.
Attribute names are English, aliases are the field names stored in the
database and sent over the wire.

- Game -> "games" collection (GameCreate / GameUpdate are the request bodies)
- Review -> embedded in Game.reseñas (ReviewCreate is the request body)

``_id`` and the review back-reference ``juegoId`` are ObjectIds and are added
by the repository, not validated here.
"""

import math
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _as_list(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return list(value) or [""]
    return [value]


def _as_int(value: Any) -> Any:
    """Truncate numeric input to an int; ``""`` means absent."""
    if value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("must be a valid number")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ValueError("must be a valid number") from None
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError("must be a valid number")
        return int(value)
    raise ValueError("must be a valid number")


def _without_nulls(data: Any, keep=()) -> Any:
    if isinstance(data, dict):
        return {k: v for k, v in data.items() if v is not None or k in keep}
    return data


class GameCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., alias="titulo", min_length=1, description="Game title")
    genre: List[str] = Field(default_factory=lambda: [""], alias="genero", description="Genres, always a list")
    platform: List[str] = Field(default_factory=lambda: [""], alias="plataforma", description="Platforms, always a list")
    release_year: Optional[int] = Field(None, alias="añoLanzamiento", description="Release year")
    developer: str = Field("", alias="desarrollador", description="Developer studio")
    cover_image_url: str = Field("", alias="imagenPortada", description="Cover image URL")
    description: str = Field("", alias="descripcion", description="Free-text description")
    completed: bool = Field(False, alias="completado", description="Whether the game was finished")
    hours_played: int = Field(0, ge=0, alias="horasJugadas", description="Hours played")

    # null means "use the default" on create
    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        return _without_nulls(data)

    @field_validator("genre", "platform", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        return _as_list(value)

    @field_validator("release_year", "hours_played", mode="before")
    @classmethod
    def _truncate(cls, value: Any) -> Any:
        return _as_int(value)


class Game(GameCreate):
    created_at: str = Field(..., alias="fechaCreacion", description="ISO-8601 creation time, never updated")
    reviews: List["Review"] = Field(default_factory=list, alias="reseñas", description="Embedded reviews")


class GameUpdate(BaseModel):
    """Partial update. Fields not declared here (``_id``, ``fechaCreacion``,
    ``reseñas`` or anything unknown) are dropped on validation, and so are
    nulls, except for the release year, which may be cleared."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(None, alias="titulo", min_length=1)
    genre: Optional[List[str]] = Field(None, alias="genero")
    platform: Optional[List[str]] = Field(None, alias="plataforma")
    release_year: Optional[int] = Field(None, alias="añoLanzamiento")
    developer: Optional[str] = Field(None, alias="desarrollador")
    cover_image_url: Optional[str] = Field(None, alias="imagenPortada")
    description: Optional[str] = Field(None, alias="descripcion")
    completed: Optional[bool] = Field(None, alias="completado")
    hours_played: Optional[int] = Field(None, ge=0, alias="horasJugadas")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        return _without_nulls(data, keep=("añoLanzamiento", "release_year"))

    @field_validator("genre", "platform", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        return _as_list(value)

    @field_validator("release_year", "hours_played", mode="before")
    @classmethod
    def _truncate(cls, value: Any) -> Any:
        return None if value is None else _as_int(value)


class ReviewFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_name: str = Field("Anonymous", alias="nombreUsuario", description="Reviewer name")
    review_text: str = Field("", alias="textoReseña", description="Review body")
    rating: Optional[float] = Field(None, ge=0, le=5, alias="calificaciones", description="Score from 0 to 5")
    hours_played: int = Field(0, ge=0, alias="horasJugadas", description="Hours played by the reviewer")
    difficulty: str = Field("Normal", alias="dificultad", description="Perceived difficulty")
    would_recommend: bool = Field(True, alias="recomendaria", description="Would recommend the game")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        return _without_nulls(data)

    @field_validator("rating", mode="before")
    @classmethod
    def _rating_not_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("Rating must be a number between 0 and 5")
        return value

    @field_validator("hours_played", mode="before")
    @classmethod
    def _truncate(cls, value: Any) -> Any:
        hours = _as_int(value)
        return 0 if hours is None else hours


class ReviewCreate(ReviewFields):
    user_name: str = Field(..., alias="nombreUsuario", min_length=1, description="Reviewer name")
    review_text: str = Field(..., alias="textoReseña", min_length=1, description="Review body")


class Review(ReviewFields):
    created_at: str = Field(..., alias="fechaCreacion", description="ISO-8601 creation time")


Game.model_rebuild()
