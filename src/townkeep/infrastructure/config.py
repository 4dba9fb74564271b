from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from sqlalchemy.engine import URL

from townkeep.domain.errors import ConfigurationMissing


SUPPORTED_BACKENDS: tuple[str, ...] = ("sqlite", "mysql")
MEMORY_PATH = ":memory:"
DEFAULT_SQLITE_PATH = "data/townkeep.db"
DEFAULT_ENV_PREFIX = "TOWNKEEP_"

_logger = logging.getLogger(__name__)


class ConfigProvider(Protocol):
    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        ...

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        ...


def _coerce_int(raw: Any, default: Optional[int]) -> Optional[int]:
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


class MappingConfigProvider:
    """Settings read from a mapping, either flat (``{"database.type": ...}``)
    or nested (``{"database": {"type": ...}}``)."""

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values = dict(values or {})

    def _lookup(self, key: str) -> Any:
        if key in self._values:
            return self._values[key]
        node: Any = self._values
        for part in key.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return None
            node = node[part]
        return None if isinstance(node, Mapping) else node

    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        raw = self._lookup(key)
        return default if raw is None else str(raw)

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        return _coerce_int(self._lookup(key), default)


class EnvConfigProvider:
    """Settings read from environment variables.

    ``database.mysql.host`` becomes ``TOWNKEEP_DATABASE_MYSQL_HOST``.
    """

    def __init__(self, prefix: str = DEFAULT_ENV_PREFIX, environ: Mapping[str, str] | None = None) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def env_name(self, key: str) -> str:
        return self._prefix + key.replace(".", "_").upper()

    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        raw = self._environ.get(self.env_name(key))
        if raw is None or not raw.strip():
            return default
        return raw.strip()

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        return _coerce_int(self.get_string(key), default)


@dataclass(frozen=True)
class DatabaseSettings:
    backend: str = "sqlite"
    sqlite_path: str = DEFAULT_SQLITE_PATH
    mysql_host: str = "localhost"
    mysql_port: int = 3306
    mysql_database: str = "townkeep"
    mysql_username: str = "root"
    mysql_password: str = ""
    economy_table: str = "economy"

    @classmethod
    def from_provider(cls, provider: ConfigProvider | None) -> DatabaseSettings:
        if provider is None:
            raise ConfigurationMissing("No configuration provider available for the database layer")

        backend = str(provider.get_string("database.type", "sqlite") or "sqlite").strip().lower()
        if backend not in SUPPORTED_BACKENDS:
            raise ConfigurationMissing(
                f"Unsupported database.type {backend!r}; expected one of {', '.join(SUPPORTED_BACKENDS)}"
            )

        settings = cls(
            backend=backend,
            sqlite_path=provider.get_string("database.sqlite.path", DEFAULT_SQLITE_PATH) or DEFAULT_SQLITE_PATH,
            mysql_host=provider.get_string("database.mysql.host", "localhost") or "localhost",
            mysql_port=provider.get_int("database.mysql.port", 3306) or 3306,
            mysql_database=provider.get_string("database.mysql.database", "townkeep") or "townkeep",
            mysql_username=provider.get_string("database.mysql.username", "root") or "root",
            mysql_password=provider.get_string("database.mysql.password", "") or "",
            economy_table=provider.get_string("database.economytable", "economy") or "economy",
        )
        _logger.info("Using database type: %s", settings.backend)
        return settings

    @property
    def is_memory(self) -> bool:
        return self.sqlite_path.strip() == MEMORY_PATH

    def ensure_sqlite_directory(self) -> None:
        if self.backend != "sqlite" or self.is_memory:
            return
        data_folder = Path(self.sqlite_path).expanduser().resolve().parent
        try:
            data_folder.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _logger.warning("Could not create data folder for SQLite database %s: %s", data_folder, exc)

    def url(self) -> URL:
        if self.backend == "mysql":
            return URL.create(
                "mysql+mysqlconnector",
                username=self.mysql_username,
                password=self.mysql_password or None,
                host=self.mysql_host,
                port=self.mysql_port,
                database=self.mysql_database,
                query={"charset": "utf8mb4"},
            )
        database = MEMORY_PATH if self.is_memory else str(Path(self.sqlite_path).expanduser())
        return URL.create("sqlite+pysqlite", database=database)
