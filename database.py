"""
MongoDB connection handling for the PlayLib API.

``ConnectionManager`` owns the one ``MongoClient`` used by the process. It is
built once by ``main.create_app`` and handed to the repository, so nothing
imports a live connection as module state.
"""
import logging
import threading
import time
from typing import Any, Callable, Optional
from urllib.parse import quote_plus

from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import PyMongoError
from pymongo.monitoring import ConnectionPoolListener, ServerHeartbeatListener
from pymongo.server_api import ServerApi

from config import Settings
from exceptions import ConfigurationError, ConnectionFailedError, NotConnectedError

logger = logging.getLogger("playlib.database")

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_SECONDS = 5.0


def build_uri(settings: Settings) -> str:
    return (
        f"mongodb+srv://{quote_plus(settings.user_db)}:{quote_plus(settings.password_db)}"
        f"@{settings.server_db}/?retryWrites=true&w=majority&appName=Cluster0"
    )


def serialize_document(value: Any) -> Any:
    """Return a JSON-ready copy of a stored document, ObjectIds as hex strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize_document(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_document(v) for v in value]
    return value


class _HeartbeatMonitor(ServerHeartbeatListener):
    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager

    def started(self, event):
        pass

    def succeeded(self, event):
        self._manager._on_heartbeat_succeeded(event)

    def failed(self, event):
        self._manager._on_heartbeat_failed(event)


class _PoolMonitor(ConnectionPoolListener):
    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager

    def pool_created(self, event):
        pass

    def pool_ready(self, event):
        self._manager._on_pool_ready(event)

    def pool_cleared(self, event):
        pass

    def pool_closed(self, event):
        self._manager._on_pool_closed(event)

    def connection_created(self, event):
        pass

    def connection_ready(self, event):
        pass

    def connection_closed(self, event):
        pass

    def connection_check_out_started(self, event):
        pass

    def connection_check_out_failed(self, event):
        pass

    def connection_checked_out(self, event):
        pass

    def connection_checked_in(self, event):
        pass


class ConnectionManager:
    """Bounded-retry MongoDB connection with event-driven reconnection.

    Usage::

        manager = ConnectionManager(Settings.from_env())
        manager.connect()            # raises on config error or after 5 failed pings
        db = manager.get_handle()    # raises NotConnectedError while disconnected
        manager.close()

    Every retry chain, whether started by ``connect`` or by a heartbeat/pool
    event, runs while holding ``self._lock``. An event that arrives while a
    chain is running is logged and dropped rather than starting a second loop.
    """

    def __init__(
        self,
        settings: Settings,
        client_factory: Callable[..., Any] = MongoClient,
        sleep: Callable[[float], None] = time.sleep,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ):
        self.settings = settings
        self.client = None
        self.db = None
        self.connection_attempts = 0
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self._client_factory = client_factory
        self._sleep = sleep
        self._connected = False
        self._listening = False
        self._lock = threading.Lock()
        self._reconnect_thread: Optional[threading.Thread] = None

    def connect(self):
        if self.client is not None and self.is_connected():
            logger.info("An active MongoDB connection already exists")
            return self.client
        return self.initialize()

    def initialize(self):
        missing = self.settings.missing_connection_settings()
        if missing:
            raise ConfigurationError(missing)

        if self.client is not None:
            self.close()
        self.connection_attempts = 0
        self.client = self._client_factory(
            build_uri(self.settings),
            server_api=ServerApi("1", strict=True, deprecation_errors=True),
            maxPoolSize=10,
            serverSelectionTimeoutMS=5000,
            socketTimeoutMS=45000,
            event_listeners=[_HeartbeatMonitor(self), _PoolMonitor(self)],
        )
        client = self.connect_with_retry()
        self._listening = True
        return client

    def connect_with_retry(self):
        with self._lock:
            return self._retry_loop()

    def _retry_loop(self):
        if self.client is None:
            raise NotConnectedError("No MongoDB client to connect with")
        while True:
            try:
                self.client.admin.command("ping")
            except PyMongoError as exc:
                self.connection_attempts += 1
                if self.connection_attempts >= self.max_reconnect_attempts:
                    self._connected = False
                    raise ConnectionFailedError(self.connection_attempts, exc) from exc
                logger.warning(
                    "Connection attempt %d failed. Retrying in %s seconds...",
                    self.connection_attempts,
                    self.reconnect_delay,
                )
                self._sleep(self.reconnect_delay)
                continue

            self.db = self.client[self.settings.db_name]
            self.connection_attempts = 0
            self._connected = True
            logger.info("Connected to MongoDB database %r", self.settings.db_name)
            return self.client

    def handle_connection_error(self, error: BaseException) -> None:
        """React to a lost connection without blocking the caller."""
        logger.error("MongoDB connection error: %s", error)
        if self.connection_attempts >= self.max_reconnect_attempts:
            logger.error(
                "Maximum reconnect attempts reached. Check the MongoDB connection."
            )
            return
        if not self._lock.acquire(blocking=False):
            logger.info("Reconnect already in progress, ignoring signal")
            return
        logger.info("Attempting to reconnect...")
        # the worker thread owns the lock from here and releases it
        self._reconnect_thread = threading.Thread(
            target=self._reconnect_worker, name="playlib-reconnect", daemon=True
        )
        self._reconnect_thread.start()

    def _reconnect_worker(self) -> None:
        try:
            self._sleep(self.reconnect_delay)
            if self.client is None:
                return
            self._retry_loop()
        except ConnectionFailedError as exc:
            logger.error("Background reconnect gave up: %s", exc)
        except NotConnectedError:
            logger.info("Connection closed before reconnect started")
        finally:
            self._lock.release()

    def _on_heartbeat_succeeded(self, event) -> None:
        if not self._listening:
            return
        logger.debug("MongoDB heartbeat succeeded")
        self._connected = True

    def _on_heartbeat_failed(self, event) -> None:
        if not self._listening:
            return
        logger.warning("MongoDB heartbeat failed: %s", getattr(event, "reply", event))
        self._connected = False
        self.handle_connection_error(ConnectionError("MongoDB heartbeat failed"))

    def _on_pool_ready(self, event) -> None:
        logger.info("MongoDB connection pool ready")

    def _on_pool_closed(self, event) -> None:
        if not self._listening:
            return
        logger.warning("MongoDB connection pool closed: %s", getattr(event, "address", event))
        self._connected = False
        self.handle_connection_error(ConnectionError("MongoDB connection pool closed"))

    def is_connected(self) -> bool:
        return self.client is not None and self.db is not None and self._connected

    def get_handle(self):
        if not self.is_connected():
            raise NotConnectedError()
        return self.db

    def close(self) -> None:
        if self.client is None:
            return
        self._listening = False
        try:
            self.client.close()
            logger.info("MongoDB connection closed")
        except PyMongoError:
            logger.exception("Error while closing the MongoDB connection")
            raise
        finally:
            self.client = None
            self.db = None
            self._connected = False
