#!/usr/bin/env python3
"""
Unit tests for repository.GameRepository against an in-memory mongomock database.

Run with:
    python -m pytest tests/test_repository.py
"""
import itertools
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import mongomock
from bson import ObjectId
from pydantic import ValidationError

from exceptions import InvalidIdError, NotConnectedError, NotInitializedError
from repository import GameRepository


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class InMemoryConnection:
    """Offers the ConnectionManager surface the repository uses."""

    def __init__(self):
        self.db = mongomock.MongoClient().db
        self.connected = True

    def get_handle(self):
        if not self.connected:
            raise NotConnectedError()
        return self.db


def _ticking_clock():
    counter = itertools.count(1)
    return lambda: f"2024-01-01T00:00:{next(counter):02d}.000Z"


class RepoMixin(unittest.TestCase):

    def setUp(self):
        self.connection = InMemoryConnection()
        self.repo = GameRepository(self.connection, clock=_ticking_clock())

    def _create(self, **fields):
        data = {"titulo": "Chrono Trigger", "genero": "RPG"}
        data.update(fields)
        return self.repo.create(data)


# ===========================================================================
# create / list
# ===========================================================================

class TestCreate(RepoMixin):

    def test_create_assigns_id_and_timestamp(self):
        game = self._create()
        self.assertIsInstance(game["_id"], ObjectId)
        self.assertEqual(game["fechaCreacion"], "2024-01-01T00:00:01.000Z")

    def test_single_values_become_lists(self):
        game = self._create(genero="Action", plataforma="SNES")
        self.assertEqual(game["genero"], ["Action"])
        self.assertEqual(game["plataforma"], ["SNES"])

    def test_missing_platform_is_list_with_empty_string(self):
        self.assertEqual(self._create()["plataforma"], [""])

    def test_defaults(self):
        game = self._create()
        self.assertEqual(game["desarrollador"], "")
        self.assertEqual(game["imagenPortada"], "")
        self.assertEqual(game["descripcion"], "")
        self.assertFalse(game["completado"])
        self.assertEqual(game["horasJugadas"], 0)
        self.assertIsNone(game["añoLanzamiento"])
        self.assertEqual(game["reseñas"], [])

    def test_numeric_fields_coerced(self):
        game = self._create(añoLanzamiento="1995", horasJugadas="42")
        self.assertEqual(game["añoLanzamiento"], 1995)
        self.assertEqual(game["horasJugadas"], 42)

    def test_caller_timestamp_ignored(self):
        game = self._create(fechaCreacion="1999-01-01T00:00:00.000Z")
        self.assertEqual(game["fechaCreacion"], "2024-01-01T00:00:01.000Z")

    def test_stored_document_matches_returned(self):
        game = self._create()
        self.assertEqual(self.repo.get_by_id(str(game["_id"])), game)

    def test_missing_title_raises_validation_error(self):
        with self.assertRaises(ValidationError):
            self.repo.create({"genero": "RPG"})

    def test_not_connected_raises_not_initialized(self):
        self.connection.connected = False
        with self.assertRaises(NotInitializedError):
            self._create()


class TestList(RepoMixin):

    def test_newest_first(self):
        first = self._create(titulo="Old")
        second = self._create(titulo="New")
        ids = [g["_id"] for g in self.repo.list()]
        self.assertEqual(ids, [second["_id"], first["_id"]])

    def test_filter_by_genre_membership(self):
        self._create(titulo="Doom", genero=["Shooter"])
        rpg = self._create(titulo="FF6", genero=["RPG", "Fantasy"])
        found = self.repo.list({"genero": "RPG"})
        self.assertEqual([g["_id"] for g in found], [rpg["_id"]])

    def test_filter_by_platform(self):
        self._create(titulo="A", plataforma=["PC"])
        self._create(titulo="B", plataforma=["SNES", "PC"])
        self._create(titulo="C", plataforma="PS1")
        titles = [g["titulo"] for g in self.repo.list({"plataforma": "PC"})]
        self.assertEqual(titles, ["B", "A"])

    def test_empty_filter_values_ignored(self):
        self._create()
        self.assertEqual(len(self.repo.list({"genero": None, "plataforma": ""})), 1)


# ===========================================================================
# get / update / delete
# ===========================================================================

class TestGetUpdateDelete(RepoMixin):

    def test_get_invalid_id_returns_none(self):
        self.assertIsNone(self.repo.get_by_id("abc"))

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.repo.get_by_id(str(ObjectId())))

    def test_update_merges_fields(self):
        game = self._create()
        updated = self.repo.update(str(game["_id"]), {"completado": True, "plataforma": "SNES"})
        self.assertTrue(updated["completado"])
        self.assertEqual(updated["plataforma"], ["SNES"])
        self.assertEqual(updated["titulo"], "Chrono Trigger")

    def test_update_strips_identity_and_creation_time(self):
        game = self._create()
        game_id = str(game["_id"])
        updated = self.repo.update(game_id, {
            "_id": str(ObjectId()),
            "id": "forged",
            "fechaCreacion": "1990-01-01T00:00:00.000Z",
            "descripcion": "Time travel",
        })
        self.assertEqual(updated["_id"], game["_id"])
        self.assertEqual(updated["fechaCreacion"], game["fechaCreacion"])
        self.assertNotIn("id", updated)
        self.assertEqual(self.repo.get_by_id(game_id)["descripcion"], "Time travel")

    def test_update_cannot_replace_reviews(self):
        game = self._create()
        self.repo.add_review(str(game["_id"]), {"nombreUsuario": "Ana", "textoReseña": "Great"})
        updated = self.repo.update(str(game["_id"]), {"reseñas": []})
        self.assertEqual(len(updated["reseñas"]), 1)

    def test_empty_patch_returns_current_document(self):
        game = self._create()
        self.assertEqual(self.repo.update(str(game["_id"]), {"fechaCreacion": "x"}), game)

    def test_update_missing_returns_none(self):
        self.assertIsNone(self.repo.update(str(ObjectId()), {"titulo": "X"}))

    def test_update_invalid_id_returns_none(self):
        self.assertIsNone(self.repo.update("nope", {"titulo": "X"}))

    def test_update_rejects_bad_type(self):
        game = self._create()
        with self.assertRaises(ValidationError):
            self.repo.update(str(game["_id"]), {"horasJugadas": -3})

    def test_update_null_values_leave_fields_untouched(self):
        game = self._create(genero=["RPG", "Indie"], completado=True, horasJugadas=12)
        updated = self.repo.update(str(game["_id"]), {"genero": None, "completado": None, "horasJugadas": None})
        self.assertEqual(updated["genero"], ["RPG", "Indie"])
        self.assertTrue(updated["completado"])
        self.assertEqual(updated["horasJugadas"], 12)
        self.assertEqual(self.repo.get_by_id(str(game["_id"])), game)

    def test_update_null_release_year_clears_it(self):
        game = self._create(añoLanzamiento=1995, horasJugadas=12)
        updated = self.repo.update(str(game["_id"]), {"añoLanzamiento": None, "horasJugadas": None})
        self.assertIsNone(updated["añoLanzamiento"])
        self.assertEqual(updated["horasJugadas"], 12)

    def test_delete(self):
        game = self._create()
        self.assertTrue(self.repo.delete(str(game["_id"])))
        self.assertFalse(self.repo.delete(str(game["_id"])))
        self.assertIsNone(self.repo.get_by_id(str(game["_id"])))

    def test_delete_invalid_id(self):
        self.assertFalse(self.repo.delete("123"))


# ===========================================================================
# Reviews
# ===========================================================================

class TestReviews(RepoMixin):

    def test_add_review_defaults(self):
        game = self._create()
        review = self.repo.add_review(str(game["_id"]), {"textoReseña": "Fun"})
        self.assertIsInstance(review["_id"], ObjectId)
        self.assertEqual(review["juegoId"], game["_id"])
        self.assertEqual(review["nombreUsuario"], "Anonymous")
        self.assertEqual(review["horasJugadas"], 0)
        self.assertEqual(review["dificultad"], "Normal")
        self.assertTrue(review["recomendaria"])
        self.assertIsNone(review["calificaciones"])
        self.assertTrue(review["fechaCreacion"])

    def test_add_review_returns_review_not_game(self):
        game = self._create()
        review = self.repo.add_review(str(game["_id"]), {"nombreUsuario": "Ana", "textoReseña": "Great", "calificaciones": 5})
        self.assertNotIn("titulo", review)
        self.assertEqual(review["calificaciones"], 5)

    def test_reviews_listed_in_append_order(self):
        game = self._create()
        game_id = str(game["_id"])
        self.repo.add_review(game_id, {"nombreUsuario": "Ana", "textoReseña": "one"})
        self.repo.add_review(game_id, {"nombreUsuario": "Luis", "textoReseña": "two"})
        texts = [r["textoReseña"] for r in self.repo.list_reviews(game_id)]
        self.assertEqual(texts, ["one", "two"])

    def test_add_review_invalid_id_raises(self):
        with self.assertRaises(InvalidIdError):
            self.repo.add_review("abc", {"textoReseña": "x"})

    def test_add_review_missing_game_returns_none(self):
        self.assertIsNone(self.repo.add_review(str(ObjectId()), {"textoReseña": "x"}))

    def test_add_review_rating_out_of_range(self):
        game = self._create()
        with self.assertRaises(ValidationError):
            self.repo.add_review(str(game["_id"]), {"textoReseña": "x", "calificaciones": 9})

    def test_list_reviews_empty_cases(self):
        game = self._create()
        self.assertEqual(self.repo.list_reviews(str(game["_id"])), [])
        self.assertEqual(self.repo.list_reviews(str(ObjectId())), [])
        self.assertEqual(self.repo.list_reviews("bad"), [])

    def test_deleting_game_removes_reviews(self):
        game = self._create()
        game_id = str(game["_id"])
        self.repo.add_review(game_id, {"textoReseña": "x"})
        self.repo.delete(game_id)
        self.assertEqual(self.repo.list_reviews(game_id), [])


if __name__ == "__main__":
    unittest.main()
