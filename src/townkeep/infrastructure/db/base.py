from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Mapping, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Connection, CursorResult
from sqlalchemy.exc import SQLAlchemyError

from townkeep.domain.errors import ConnectionFailure, StoreError
from townkeep.infrastructure.db.connection import ConnectionManager
from townkeep.infrastructure.db.dialect import Dialect


T = TypeVar("T")


class GuardedSqlRepository:
    """Shared plumbing for the SQL-backed store and repository.

    Each instance holds its own lock around "reconnect if needed, then
    execute". Two instances sharing one ``ConnectionManager`` do not share that
    lock; only the reconnect step itself is serialized by the manager.
    """

    def __init__(self, connections: ConnectionManager, *, logger: Optional[logging.Logger] = None) -> None:
        self._connections = connections
        self._logger = logger or connections.logger
        self._lock = threading.RLock()

    @property
    def dialect(self) -> Dialect:
        return self._connections.dialect

    def _q(self, identifier: str) -> str:
        return self.dialect.quote(identifier)

    def _c(self, logical_name: str) -> str:
        return self.dialect.quote(self.dialect.column(logical_name))

    def _require_connection(self) -> Connection:
        connection = self._connections.ensure_connection()
        if connection is None:
            raise ConnectionFailure(f"No {self.dialect.name} connection available")
        return connection

    @staticmethod
    def _execute(connection: Connection, sql: str, params: Mapping[str, Any] | None = None) -> CursorResult:
        return connection.execute(text(sql), dict(params or {}))

    def _discard_failed_statement(self, connection: Optional[Connection]) -> None:
        if connection is None:
            return
        try:
            connection.rollback()
        except SQLAlchemyError:
            self._logger.debug("Rollback after failed statement also failed", exc_info=True)

    def _guarded(self, action: str, default: T, work: Callable[[Connection], T], *, level: int = logging.ERROR) -> T:
        """Run ``work`` on the live connection; log and return ``default`` on any store failure."""
        with self._lock:
            connection: Optional[Connection] = None
            try:
                connection = self._require_connection()
                return work(connection)
            except ConnectionFailure as exc:
                self._logger.log(level, "%s aborted: %s", action, exc)
            except SQLAlchemyError as exc:
                self._discard_failed_statement(connection)
                self._logger.log(level, "%s failed: %s", action, exc, extra={"backend": self.dialect.name})
            except StoreError as exc:
                self._logger.log(level, "%s failed: %s", action, exc)
        return default
