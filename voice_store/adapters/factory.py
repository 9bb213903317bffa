# voice_store/adapters/factory.py
import logging
from typing import Optional

from ..config import Settings, get_settings
from .base import DatabaseAdapter

logger = logging.getLogger(__name__)


def build_adapter(settings: Optional[Settings] = None) -> DatabaseAdapter:
    """Pick the backend named by DATABASE_BACKEND. Callers only ever see the contract."""
    settings = settings or get_settings()
    if settings.database_backend == "remote":
        from .remote import RemoteDatabaseAdapter
        logger.info(f"Using remote database at {settings.remote_base_url}")
        return RemoteDatabaseAdapter(
            base_url=settings.remote_base_url,
            timeout=settings.remote_timeout_seconds,
        )

    from .embedded import EmbeddedDatabaseAdapter
    logger.info(f"Using embedded database (image: {settings.database_image_path or 'none'})")
    return EmbeddedDatabaseAdapter(
        image_path=settings.database_image_path,
        flush_delay=settings.flush_debounce_seconds,
    )
