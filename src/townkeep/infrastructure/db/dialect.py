"""SQL differences between the supported backends.

Every statement the store issues is rendered through a ``Dialect`` so that the
call sites never branch on the backend themselves.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Sequence

from sqlalchemy.pool import NullPool, StaticPool


_IDENTIFIER_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")


def is_plain_identifier(name: str) -> bool:
    return bool(_IDENTIFIER_PATTERN.match(str(name)))


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    kind: str
    nullable: bool = True
    default: Any = None


@dataclass(frozen=True)
class TableSpec:
    name: str
    columns: tuple[ColumnSpec, ...]
    primary_key: tuple[str, ...]
    unique: tuple[str, ...] = field(default_factory=tuple)

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]


class Dialect(ABC):
    name: str = ""
    reserved_aliases: Dict[str, str] = {}
    column_types: Dict[str, str] = {}

    def column(self, logical_name: str) -> str:
        """Physical column name, swapping names the backend reserves."""
        return self.reserved_aliases.get(logical_name, logical_name)

    @abstractmethod
    def quote(self, identifier: str) -> str:
        raise NotImplementedError

    def column_type(self, kind: str) -> str:
        try:
            return self.column_types[kind]
        except KeyError as exc:
            raise ValueError(f"Unknown column kind for {self.name}: {kind}") from exc

    def table_options(self) -> str:
        return ""

    def _render_default(self, value: Any) -> str:
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float)):
            return str(value)
        escaped = str(value).replace("'", "''")
        return f"'{escaped}'"

    def create_table(self, spec: TableSpec) -> str:
        lines: list[str] = []
        for column in spec.columns:
            parts = [self.quote(self.column(column.name)), self.column_type(column.kind)]
            if not column.nullable:
                parts.append("NOT NULL")
            if column.default is not None:
                parts.append(f"DEFAULT {self._render_default(column.default)}")
            lines.append(" ".join(parts))

        key_list = ", ".join(self.quote(self.column(name)) for name in spec.primary_key)
        lines.append(f"PRIMARY KEY ({key_list})")
        for name in spec.unique:
            lines.append(f"UNIQUE ({self.quote(self.column(name))})")

        body = ",\n    ".join(lines)
        options = self.table_options()
        suffix = f" {options}" if options else ""
        return f"CREATE TABLE IF NOT EXISTS {self.quote(spec.name)} (\n    {body}\n){suffix}"

    def _insert_head(self, table: str, columns: Sequence[str], verb: str = "INSERT") -> str:
        column_list = ", ".join(self.quote(self.column(name)) for name in columns)
        values = ", ".join(f":{name}" for name in columns)
        return f"{verb} INTO {self.quote(table)} ({column_list}) VALUES ({values})"

    @abstractmethod
    def upsert(
        self,
        table: str,
        columns: Sequence[str],
        key_columns: Sequence[str],
        *,
        replace: bool = False,
    ) -> str:
        """Insert-or-update keyed by ``key_columns``; bind names are the logical column names.

        ``replace=True`` allows a delete-and-insert form where the backend has
        one; only safe for tables without secondary unique keys.
        """
        raise NotImplementedError

    @abstractmethod
    def insert_ignore(self, table: str, columns: Sequence[str]) -> str:
        raise NotImplementedError

    @abstractmethod
    def table_exists_query(self) -> str:
        """Catalog lookup taking a ``:table_name`` bind and returning a row when the table exists."""
        raise NotImplementedError

    @abstractmethod
    def engine_options(self) -> Dict[str, Any]:
        raise NotImplementedError


class SqliteDialect(Dialect):
    name = "sqlite"
    reserved_aliases: Dict[str, str] = {}
    column_types = {
        "uuid": "TEXT",
        "key": "TEXT",
        "text": "TEXT",
        "tag": "TEXT",
        "int": "INTEGER",
        "bool": "INTEGER",
    }

    def quote(self, identifier: str) -> str:
        return '"' + str(identifier).replace('"', '""') + '"'

    def upsert(
        self,
        table: str,
        columns: Sequence[str],
        key_columns: Sequence[str],
        *,
        replace: bool = False,
    ) -> str:
        if replace:
            return self._insert_head(table, columns, verb="INSERT OR REPLACE")
        keys = ", ".join(self.quote(self.column(name)) for name in key_columns)
        updates = [
            f"{self.quote(self.column(name))} = excluded.{self.quote(self.column(name))}"
            for name in columns
            if name not in key_columns
        ]
        if not updates:
            return f"{self._insert_head(table, columns)} ON CONFLICT({keys}) DO NOTHING"
        return f"{self._insert_head(table, columns)} ON CONFLICT({keys}) DO UPDATE SET " + ", ".join(updates)

    def insert_ignore(self, table: str, columns: Sequence[str]) -> str:
        return self._insert_head(table, columns, verb="INSERT OR IGNORE")

    def table_exists_query(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'table' AND name = :table_name"

    def engine_options(self) -> Dict[str, Any]:
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }


class MysqlDialect(Dialect):
    name = "mysql"
    reserved_aliases = {"Key": "KeyName"}
    column_types = {
        "uuid": "VARCHAR(36)",
        "key": "VARCHAR(255)",
        "text": "TEXT",
        "tag": "VARCHAR(20)",
        "int": "INT",
        "bool": "TINYINT(1)",
    }

    def quote(self, identifier: str) -> str:
        return "`" + str(identifier).replace("`", "``") + "`"

    def table_options(self) -> str:
        return "ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"

    def upsert(
        self,
        table: str,
        columns: Sequence[str],
        key_columns: Sequence[str],
        *,
        replace: bool = False,
    ) -> str:
        updates = [
            f"{self.quote(self.column(name))} = VALUES({self.quote(self.column(name))})"
            for name in columns
            if name not in key_columns
        ]
        if not updates:
            return self.insert_ignore(table, columns)
        return f"{self._insert_head(table, columns)} ON DUPLICATE KEY UPDATE " + ", ".join(updates)

    def insert_ignore(self, table: str, columns: Sequence[str]) -> str:
        return self._insert_head(table, columns, verb="INSERT IGNORE")

    def table_exists_query(self) -> str:
        return (
            "SELECT TABLE_NAME FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table_name"
        )

    def engine_options(self) -> Dict[str, Any]:
        return {"poolclass": NullPool}


_DIALECTS: Dict[str, type[Dialect]] = {
    SqliteDialect.name: SqliteDialect,
    MysqlDialect.name: MysqlDialect,
}


def dialect_for(kind: str) -> Dialect:
    try:
        return _DIALECTS[str(kind).strip().lower()]()
    except KeyError as exc:
        raise ValueError(f"Unsupported database backend: {kind}") from exc
