import logging
import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, WriteError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, setup_logging
from database import ConnectionManager, serialize_document
from exceptions import InputValidationError, InvalidIdError
from repository import GameRepository
from schemas import GameCreate, ReviewCreate
from validation import check_new_game, is_valid_object_id

logger = logging.getLogger("playlib.api")

API_PREFIX = "/api/juegos"


# ---------- Dependencies ----------
def get_repository(request: Request) -> GameRepository:
    return request.app.state.games


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# ---------- Error shaping ----------
def fail(status_code: int, message: str, **extra) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"success": False, "message": message, **extra})


def input_error(exc: InputValidationError) -> HTTPException:
    extra = {}
    if exc.field:
        extra["field"] = exc.field
    if exc.received is not None:
        extra["receivedData"] = exc.received
    return fail(400, exc.message, **extra)


def invalid_id(game_id: str) -> HTTPException:
    return fail(
        400,
        "Invalid game id. It must be a valid MongoDB ObjectId (24 hexadecimal characters)",
        receivedId=game_id,
    )


def format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def _validation_messages(errors):
    return [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" if err["loc"] else err["msg"]
        for err in errors
    ]


def validation_failure(errors, error: Optional[str] = None) -> Dict[str, Any]:
    """Envelope for pydantic errors; ``field`` names the first offending wire field."""
    content = {"success": False, "message": "Validation error"}
    for err in errors:
        names = [part for part in err["loc"] if isinstance(part, str) and part != "body"]
        if names:
            content["field"] = names[0]
            break
    content["errors"] = _validation_messages(errors)
    if error is not None:
        content["error"] = error
    return content


def classify_error(exc: Exception, message: str, settings: Settings) -> HTTPException:
    """Map a repository failure onto the response a client should see."""
    if isinstance(exc, InputValidationError):
        return input_error(exc)
    if isinstance(exc, InvalidIdError):
        return invalid_id(exc.value)
    if isinstance(exc, ValidationError):
        logger.warning("%s: validation error: %s", message, exc)
        return HTTPException(status_code=400, detail=validation_failure(exc.errors(), error=str(exc)))
    if isinstance(exc, DuplicateKeyError) or getattr(exc, "code", None) == 11000:
        logger.warning("%s: duplicate key: %s", message, exc)
        return fail(400, "A game with this title already exists", error=str(exc))
    if isinstance(exc, WriteError) and exc.code == 121:
        logger.warning("%s: document failed validation: %s", message, exc)
        errmsg = (exc.details or {}).get("errmsg", str(exc))
        return fail(400, "Validation error", errors=[errmsg], error=str(exc))

    logger.error("%s: %s", message, exc, exc_info=exc)
    extra = {"error": str(exc)}
    if settings.is_development:
        extra["stack"] = format_stack(exc)
    return fail(500, message, **extra)


# ---------- Games ----------
router = APIRouter(prefix=API_PREFIX, tags=["juegos"])


@router.get("")
def list_games(
    genero: Optional[str] = Query(None),
    plataforma: Optional[str] = Query(None),
    games: GameRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    try:
        docs = games.list({"genero": genero, "plataforma": plataforma})
    except Exception as exc:
        raise classify_error(exc, "Error fetching games", settings)
    return {"success": True, "data": serialize_document(docs)}


@router.get("/{game_id}")
def get_game(
    game_id: str,
    games: GameRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    if not is_valid_object_id(game_id):
        raise invalid_id(game_id)
    try:
        doc = games.get_by_id(game_id)
    except Exception as exc:
        raise classify_error(exc, "Error fetching the game", settings)
    if not doc:
        raise fail(404, "Game not found")
    return {"success": True, "data": serialize_document(doc)}


@router.post("", status_code=201)
def create_game(
    body: Optional[Dict[str, Any]] = Body(None),
    games: GameRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    body = body or {}
    logger.debug("Received create request with body: %s", body)
    try:
        check_new_game(body)
        data = GameCreate.model_validate(body)
    except InputValidationError as exc:
        raise input_error(exc)
    except ValidationError as exc:
        raise classify_error(exc, "Error creating the game", settings)

    try:
        created = games.create(data)
    except Exception as exc:
        raise classify_error(exc, "Error creating the game", settings)
    return {"success": True, "data": serialize_document(created), "message": "Game created successfully"}


@router.put("/{game_id}")
def update_game(
    game_id: str,
    body: Optional[Dict[str, Any]] = Body(None),
    games: GameRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    if not is_valid_object_id(game_id):
        raise invalid_id(game_id)
    try:
        updated = games.update(game_id, body or {})
    except Exception as exc:
        raise classify_error(exc, "Error updating the game", settings)
    if not updated:
        raise fail(404, "Game not found for update")
    return {"success": True, "data": serialize_document(updated), "message": "Game updated"}


@router.delete("/{game_id}")
def delete_game(
    game_id: str,
    games: GameRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    if not is_valid_object_id(game_id):
        raise invalid_id(game_id)
    try:
        deleted = games.delete(game_id)
    except Exception as exc:
        raise classify_error(exc, "Error deleting the game", settings)
    if not deleted:
        raise fail(404, "Game not found for deletion")
    return {"success": True, "message": "Game deleted"}


# ---------- Reviews ----------
# The /reseñas paths predate /reviews and are kept for older clients.
@router.post("/{game_id}/reviews", status_code=201)
@router.post("/{game_id}/reseñas", status_code=201, deprecated=True)
def add_review(
    game_id: str,
    payload: ReviewCreate,
    games: GameRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    try:
        review = games.add_review(game_id, payload)
    except Exception as exc:
        raise classify_error(exc, "Error adding the review", settings)
    if review is None:
        raise fail(404, "Game not found")
    return {"success": True, "data": serialize_document(review), "message": "Review added successfully"}


@router.get("/{game_id}/reviews")
@router.get("/{game_id}/reseñas", deprecated=True)
def list_reviews(
    game_id: str,
    games: GameRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    try:
        reviews = games.list_reviews(game_id)
    except Exception as exc:
        raise classify_error(exc, "Error fetching reviews", settings)
    return {"success": True, "data": serialize_document(reviews)}


# ---------- Application ----------
class BodySizeLimitMiddleware:
    """Answers 413 for bodies over ``max_body_bytes``.

    A declared Content-Length is checked up front; chunked bodies are counted
    as they are read and fail the request once the running total passes the
    limit.
    """

    def __init__(self, app, max_body_bytes: int):
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = dict(scope["headers"]).get(b"content-length", b"")
        if length.isdigit() and int(length) > self.max_body_bytes:
            response = JSONResponse(status_code=413, content={"success": False, "message": "Request body too large"})
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    raise fail(413, "Request body too large")
            return message

        await self.app(scope, limited_receive, send)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    logger.info("Connecting to %s@%s", settings.db_name, settings.server_db)
    # a failure here aborts startup; the server never serves without a connection
    await run_in_threadpool(app.state.connection.connect)
    logger.info("Frontend origin: %s", settings.frontend_url)
    yield
    logger.info("Shutting down, closing the database connection")
    await run_in_threadpool(app.state.connection.close)


def create_app(settings: Optional[Settings] = None, connection=None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    connection = connection or ConnectionManager(settings)

    app = FastAPI(title="PlayLib API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.connection = connection
    app.state.games = GameRepository(connection)

    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict):
            content = exc.detail
        elif exc.status_code == 404:
            content = {"success": False, "message": "Route not found", "path": request.url.path}
        else:
            content = {"success": False, "message": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content=validation_failure(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        content = {"success": False, "message": "Internal server error"}
        if settings.is_development:
            content["stack"] = format_stack(exc)
        return JSONResponse(status_code=500, content=content)

    @app.get("/health")
    def health():
        return {"status": "ok", "message": "API is running"}

    @app.get("/")
    def root():
        return {
            "message": "Welcome to the PlayLib API",
            "endpoints": {"juegos": API_PREFIX, "health": "/health"},
            "documentation": "/docs",
        }

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # uvicorn drains in-flight requests on SIGINT/SIGTERM before lifespan shutdown
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port, timeout_graceful_shutdown=30)
