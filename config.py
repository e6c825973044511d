"""
Runtime configuration for the PlayLib API.

Values come from the environment (optionally a local .env file) and are
gathered once into a ``Settings`` instance that is passed to ``create_app``.
"""
import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_MAX_BODY_BYTES = 50 * 1024 * 1024


class Settings(BaseModel):
    user_db: Optional[str] = Field(None, description="MongoDB Atlas user")
    password_db: Optional[str] = Field(None, description="MongoDB Atlas password")
    server_db: Optional[str] = Field(None, description="Cluster host, e.g. cluster0.abcde.mongodb.net")
    db_name: str = Field("test", description="Database holding the games collection")
    port: int = Field(5100, description="HTTP listen port")
    frontend_url: str = Field("http://localhost:3000", description="Only origin allowed by CORS")
    app_env: str = Field("production", description="'development' echoes stack traces in 500 responses")
    log_level: str = Field("INFO", description="Level for the playlib logger")
    max_body_bytes: int = Field(DEFAULT_MAX_BODY_BYTES, ge=0, description="Largest accepted request body")

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            user_db=os.getenv("USER_DB") or None,
            password_db=os.getenv("PASSWORD_DB") or None,
            server_db=os.getenv("SERVER_DB") or None,
            db_name=os.getenv("DB_NAME") or "test",
            port=int(os.getenv("PORT", 5100)),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            app_env=os.getenv("APP_ENV", "production"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            max_body_bytes=int(os.getenv("MAX_BODY_BYTES", DEFAULT_MAX_BODY_BYTES)),
        )

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"

    def missing_connection_settings(self) -> List[str]:
        required = {
            "USER_DB": self.user_db,
            "PASSWORD_DB": self.password_db,
            "SERVER_DB": self.server_db,
        }
        return [name for name, value in required.items() if not value]


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the root ``playlib`` logger.

    Safe to call more than once; the stream handler is only attached the
    first time.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logger = logging.getLogger("playlib")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(numeric)
    return logger
