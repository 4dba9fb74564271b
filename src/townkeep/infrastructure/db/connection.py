from __future__ import annotations

import logging
import threading
from typing import Optional, Union

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from townkeep.domain.errors import ConfigurationMissing
from townkeep.infrastructure.config import ConfigProvider, DatabaseSettings
from townkeep.infrastructure.db.dialect import Dialect, dialect_for


class ConnectionManager:
    """Owns the single live connection shared by the store and the town repository.

    The connection is opened lazily on first use and re-opened whenever it
    reports closed or invalidated. Statements run under AUTOCOMMIT: every
    statement is its own transaction.
    """

    def __init__(
        self,
        config: Union[ConfigProvider, DatabaseSettings, None],
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        if config is None:
            self._logger.error("No configuration provider given to the connection manager")
            raise ConfigurationMissing("Database configuration is required")
        if isinstance(config, DatabaseSettings):
            self.settings = config
        else:
            self.settings = DatabaseSettings.from_provider(config)
        self.settings.ensure_sqlite_directory()
        self._dialect = dialect_for(self.settings.backend)
        self._engine: Optional[Engine] = None
        self._connection: Optional[Connection] = None
        self._lock = threading.RLock()

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._is_usable(self._connection)

    @staticmethod
    def _is_usable(connection: Optional[Connection]) -> bool:
        return connection is not None and not connection.closed and not connection.invalidated

    def _build_engine(self) -> Engine:
        return create_engine(
            self.settings.url(),
            future=True,
            isolation_level="AUTOCOMMIT",
            **self._dialect.engine_options(),
        )

    def ensure_connection(self) -> Optional[Connection]:
        """Return the live connection, opening one if needed; ``None`` when connecting fails."""
        with self._lock:
            if self._is_usable(self._connection):
                return self._connection

            stale = self._connection
            self._connection = None
            if stale is not None:
                try:
                    stale.close()
                except SQLAlchemyError:
                    self._logger.debug("Discarding stale database connection failed", exc_info=True)

            try:
                if self._engine is None:
                    self._engine = self._build_engine()
                self._connection = self._engine.connect()
            except SQLAlchemyError as exc:
                self._logger.error(
                    "Could not establish database connection (%s): %s",
                    self.settings.backend,
                    exc,
                    extra={"backend": self.settings.backend},
                )
                return None

            self._logger.info("Database connection established (%s)", self.settings.backend)
            return self._connection

    def close(self) -> None:
        with self._lock:
            connection, self._connection = self._connection, None
            engine, self._engine = self._engine, None
            try:
                if connection is not None and not connection.closed:
                    connection.close()
                    self._logger.info("Database connection closed")
            except SQLAlchemyError as exc:
                self._logger.error("Failed to close database connection: %s", exc)
            finally:
                if engine is not None:
                    engine.dispose()

    def __enter__(self) -> ConnectionManager:
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()
