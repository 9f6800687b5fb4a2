"""
Database manager for sharing kvite databases between requests.
"""
import logging
import threading
from typing import Dict, Optional, Tuple

from django.conf import settings

import kvite
from kvite.exceptions import EngineError

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Keeps one open database per configured location."""

    def __init__(self) -> None:
        self._databases: Dict[Tuple[str, Optional[str], str], kvite.Database] = {}
        self._lock = threading.Lock()

    def get_database(self) -> kvite.Database:
        """Get or open the database described by the current settings."""
        config = (settings.KVITE_DATABASE_PATH, settings.KVITE_NAMESPACE, settings.KVITE_SCHEMA)
        with self._lock:
            database = self._databases.get(config)
            if database is None:
                path, namespace, schema = config
                database = kvite.open(path, namespace, schema=schema)
                self._databases[config] = database
                logger.info("Opened kvite database at %s", path)
            return database

    def close_all(self) -> None:
        """Close every open database."""
        with self._lock:
            databases, self._databases = self._databases, {}
        for database in databases.values():
            try:
                database.close()
            except EngineError as e:
                logger.warning("Failed to close kvite database at %s: %s", database.location, e)


# Global database manager instance
database_manager = DatabaseManager()
