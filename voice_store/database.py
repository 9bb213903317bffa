# voice_store/database.py
import json
import logging
import os
import secrets
import time
from typing import Optional

from sqlalchemy import create_engine, event, select, Text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from .errors import MalformedDataError

logger = logging.getLogger(__name__)

# Bumped whenever a table or column is added; recorded once in schema_version
SCHEMA_VERSION = 3
SCHEMA_DESCRIPTION = "Operational tables, analytics tables and demo configuration aggregate"

# Base class for models
Base = declarative_base()

# Session factory; bound per adapter because every adapter owns its own engine
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


class LenientJSON(TypeDecorator):
    """JSON stored as text, decoded on read.

    Legacy or hand-edited rows may hold text that is not valid JSON. Those
    degrade to ``None`` for the one field instead of failing the whole read.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(value)

    def process_result_value(self, value, dialect):
        if value is None or value == "":
            return None
        try:
            return decode_json(value)
        except MalformedDataError as e:
            logger.warning(f"{str(e)}; reading it as null")
            return None


def decode_json(value: str):
    try:
        return json.loads(value)
    except (TypeError, ValueError) as e:
        raise MalformedDataError(f"Malformed JSON column value: {str(e)}")


def generate_id(prefix: str) -> str:
    """Build a ``PREFIX-<epoch ms>-<random>`` identifier."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def create_memory_engine(echo: bool = False) -> Engine:
    """In-process SQLite engine over exactly one in-memory connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=echo,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite's own BEGIN handling breaks SAVEPOINT; emit BEGIN ourselves
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def create_tables(engine: Engine) -> None:
    """Create all tables and record the schema version marker - MUST import models first!"""
    from . import models  # registers every table on Base.metadata

    Base.metadata.create_all(bind=engine)
    with engine.begin() as conn:
        current = conn.execute(
            select(models.SchemaVersion.version).where(models.SchemaVersion.version == SCHEMA_VERSION)
        ).first()
        if current is None:
            conn.execute(
                models.SchemaVersion.__table__.insert().values(
                    version=SCHEMA_VERSION, description=SCHEMA_DESCRIPTION
                )
            )
            logger.info(f"Schema version {SCHEMA_VERSION} recorded")


def _driver_connection(engine: Engine):
    raw = engine.raw_connection()
    return raw, raw.driver_connection


def load_image(engine: Engine, path: str) -> bool:
    """Replace the in-memory database with the byte image stored at ``path``."""
    if not path or not os.path.exists(path):
        return False
    with open(path, "rb") as fh:
        data = fh.read()
    if not data:
        return False
    raw, conn = _driver_connection(engine)
    try:
        conn.deserialize(data)
        # deserialize resets connection state; foreign keys must be re-enabled
        conn.execute("PRAGMA foreign_keys=ON")
    finally:
        raw.close()
    logger.info(f"Loaded database image from {path} ({len(data)} bytes)")
    return True


def dump_image(engine: Engine, path: str) -> int:
    """Write the whole in-memory database to ``path`` as one byte image."""
    raw, conn = _driver_connection(engine)
    try:
        data = conn.serialize()
    finally:
        raw.close()
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "wb") as fh:
        fh.write(data)
    os.replace(tmp_path, path)
    return len(data)

