from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple, TypeVar
from uuid import UUID

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from townkeep.domain.errors import SchemaFailure, SerializationFailure, StoreError, TypeMismatch
from townkeep.domain.models.attribute import AttributeValue, TypeTag
from townkeep.domain.repositories import DEFAULT_NAMESPACE, AttributeStore
from townkeep.infrastructure.db.base import GuardedSqlRepository
from townkeep.infrastructure.db.connection import ConnectionManager
from townkeep.infrastructure.db.schema import (
    ATTRIBUTE_COLUMNS,
    ATTRIBUTE_KEY_COLUMNS,
    SchemaProvisioner,
    normalize_namespace,
)


WIPE_NAMESPACES: tuple[str, ...] = ("users", "currency", "info")

T = TypeVar("T")


class SqlAttributeStore(GuardedSqlRepository, AttributeStore):
    """Typed key/value attributes per entity, one table per namespace.

    Rows are ``(EntityId, Key) -> (Value, Type)``. Writes are upserts. Reads
    never raise: a missing row, a type tag that does not match the accessor,
    or text that cannot be decoded all fall back to the caller's default.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        *,
        logger: Optional[logging.Logger] = None,
        provisioner: Optional[SchemaProvisioner] = None,
        wipe_namespaces: Sequence[str] = WIPE_NAMESPACES,
    ) -> None:
        super().__init__(connections, logger=logger)
        self._provisioner = provisioner or SchemaProvisioner(connections, logger=self._logger)
        self._wipe_namespaces = tuple(normalize_namespace(namespace) for namespace in wipe_namespaces)

    def _namespace(self, namespace: str) -> str:
        return normalize_namespace(namespace)

    def create_table(self, namespace: str = DEFAULT_NAMESPACE) -> bool:
        return self._provisioner.ensure_generic_table(namespace)

    # -- writes ---------------------------------------------------------------

    def save(
        self,
        entity_id: UUID,
        key: str,
        value: Any,
        tag: Optional[TypeTag] = None,
        *,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        try:
            table = self._namespace(namespace)
            if isinstance(value, AttributeValue):
                if tag is not None and value.tag is not TypeTag(tag):
                    raise TypeMismatch(TypeTag(tag), value.tag)
                attribute = value
            elif tag is not None:
                attribute = AttributeValue(TypeTag(tag), value)
            else:
                attribute = AttributeValue.infer(value)
        except (StoreError, TypeError, ValueError) as exc:
            self._logger.error("Saving %s for %s rejected: %s", key, entity_id, exc)
            return

        statement = self.dialect.upsert(table, ATTRIBUTE_COLUMNS, ATTRIBUTE_KEY_COLUMNS, replace=True)
        params = {
            "EntityId": str(entity_id),
            "Key": str(key),
            "Value": attribute.encode(),
            "Type": attribute.tag.value,
        }

        def _work(connection: Connection) -> bool:
            self._execute(connection, statement, params)
            return True

        if self._guarded(f"Saving {table}.{key} for {entity_id}", False, _work):
            self._logger.debug("Saved %s.%s (%s) for %s", table, key, attribute.tag.value, entity_id)

    def save_string(self, entity_id: UUID, key: str, value: str, *, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.save(entity_id, key, value, TypeTag.STRING, namespace=namespace)

    def save_int(self, entity_id: UUID, key: str, value: int, *, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.save(entity_id, key, value, TypeTag.INT, namespace=namespace)

    def save_double(self, entity_id: UUID, key: str, value: float, *, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.save(entity_id, key, value, TypeTag.DOUBLE, namespace=namespace)

    def save_bool(self, entity_id: UUID, key: str, value: bool, *, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.save(entity_id, key, value, TypeTag.BOOLEAN, namespace=namespace)

    def save_long(self, entity_id: UUID, key: str, value: int, *, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.save(entity_id, key, value, TypeTag.LONG, namespace=namespace)

    def save_float(self, entity_id: UUID, key: str, value: float, *, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.save(entity_id, key, value, TypeTag.FLOAT, namespace=namespace)

    def save_string_array(
        self, entity_id: UUID, key: str, value: Iterable[str], *, namespace: str = DEFAULT_NAMESPACE
    ) -> None:
        self.save(entity_id, key, value, TypeTag.STRING_ARRAY, namespace=namespace)

    def save_string_list(
        self, entity_id: UUID, key: str, value: Iterable[str], *, namespace: str = DEFAULT_NAMESPACE
    ) -> None:
        self.save(entity_id, key, value, TypeTag.STRING_LIST, namespace=namespace)

    # -- reads ----------------------------------------------------------------

    def _load_row(self, namespace: str, entity_id: UUID, key: str) -> Optional[Tuple[Optional[str], Optional[str]]]:
        try:
            table = self._namespace(namespace)
        except SchemaFailure as exc:
            self._logger.error("Loading %s for %s rejected: %s", key, entity_id, exc)
            return None

        sql = (
            f"SELECT {self._c('Value')} AS value, {self._c('Type')} AS type_tag "
            f"FROM {self._q(table)} "
            f"WHERE {self._c('EntityId')} = :entity_id AND {self._c('Key')} = :key"
        )

        def _work(connection: Connection) -> Optional[Tuple[Optional[str], Optional[str]]]:
            row = self._execute(connection, sql, {"entity_id": str(entity_id), "key": str(key)}).first()
            if row is None:
                return None
            return row.value, row.type_tag

        return self._guarded(f"Loading {table}.{key} for {entity_id}", None, _work)

    def load(
        self, entity_id: UUID, key: str, default: Optional[str] = None, *, namespace: str = DEFAULT_NAMESPACE
    ) -> Optional[str]:
        row = self._load_row(namespace, entity_id, key)
        if row is None or row[0] is None:
            return default
        return row[0]

    def load_value(self, entity_id: UUID, key: str, *, namespace: str = DEFAULT_NAMESPACE) -> Optional[AttributeValue]:
        row = self._load_row(namespace, entity_id, key)
        if row is None:
            return None
        raw, stored_tag = row
        tag = TypeTag.parse(stored_tag)
        if tag is None:
            self._logger.warning("Unknown type tag %r stored for %s of %s", stored_tag, key, entity_id)
            return None
        try:
            return AttributeValue.decode(tag, raw)
        except SerializationFailure as exc:
            self._logger.warning("Could not decode %s of %s: %s", key, entity_id, exc)
            return None

    def _load_typed(self, expected: TypeTag, entity_id: UUID, key: str, default: T, namespace: str) -> T:
        row = self._load_row(namespace, entity_id, key)
        if row is None:
            return default
        raw, stored_tag = row
        try:
            actual = TypeTag.parse(stored_tag)
            if actual is not expected:
                raise TypeMismatch(expected, stored_tag)
            return AttributeValue.decode(expected, raw).value
        except TypeMismatch as exc:
            self._logger.warning("Type mismatch loading %s of %s: %s", key, entity_id, exc)
        except SerializationFailure as exc:
            self._logger.warning("Could not decode %s of %s: %s", key, entity_id, exc)
        return default

    def load_string(self, entity_id: UUID, key: str, default: str = "", *, namespace: str = DEFAULT_NAMESPACE) -> str:
        return self._load_typed(TypeTag.STRING, entity_id, key, default, namespace)

    def load_int(self, entity_id: UUID, key: str, default: int = 0, *, namespace: str = DEFAULT_NAMESPACE) -> int:
        return self._load_typed(TypeTag.INT, entity_id, key, default, namespace)

    def load_double(self, entity_id: UUID, key: str, default: float = 0.0, *, namespace: str = DEFAULT_NAMESPACE) -> float:
        return self._load_typed(TypeTag.DOUBLE, entity_id, key, default, namespace)

    def load_bool(self, entity_id: UUID, key: str, default: bool = False, *, namespace: str = DEFAULT_NAMESPACE) -> bool:
        return self._load_typed(TypeTag.BOOLEAN, entity_id, key, default, namespace)

    def load_long(self, entity_id: UUID, key: str, default: int = 0, *, namespace: str = DEFAULT_NAMESPACE) -> int:
        return self._load_typed(TypeTag.LONG, entity_id, key, default, namespace)

    def load_float(self, entity_id: UUID, key: str, default: float = 0.0, *, namespace: str = DEFAULT_NAMESPACE) -> float:
        return self._load_typed(TypeTag.FLOAT, entity_id, key, default, namespace)

    def load_string_array(self, entity_id: UUID, key: str, *, namespace: str = DEFAULT_NAMESPACE) -> Tuple[str, ...]:
        return self._load_typed(TypeTag.STRING_ARRAY, entity_id, key, (), namespace)

    def load_string_list(self, entity_id: UUID, key: str, *, namespace: str = DEFAULT_NAMESPACE) -> List[str]:
        return self._load_typed(TypeTag.STRING_LIST, entity_id, key, [], namespace)

    # -- removal and existence ------------------------------------------------

    def delete(self, entity_id: UUID, key: str, *, namespace: str = DEFAULT_NAMESPACE) -> bool:
        try:
            table = self._namespace(namespace)
        except SchemaFailure as exc:
            self._logger.error("Deleting %s for %s rejected: %s", key, entity_id, exc)
            return False

        sql = (
            f"DELETE FROM {self._q(table)} "
            f"WHERE {self._c('EntityId')} = :entity_id AND {self._c('Key')} = :key"
        )

        def _work(connection: Connection) -> bool:
            result = self._execute(connection, sql, {"entity_id": str(entity_id), "key": str(key)})
            return result.rowcount > 0

        return self._guarded(f"Deleting {table}.{key} for {entity_id}", False, _work)

    def wipe(self, entity_id: UUID) -> bool:
        """Remove the entity's rows from every wipe namespace; True if anything was removed."""

        def _work(connection: Connection) -> bool:
            wiped = False
            for namespace in self._wipe_namespaces:
                sql = f"DELETE FROM {self._q(namespace)} WHERE {self._c('EntityId')} = :entity_id"
                try:
                    result = self._execute(connection, sql, {"entity_id": str(entity_id)})
                except SQLAlchemyError as exc:
                    self._discard_failed_statement(connection)
                    self._logger.error("Wiping %s for %s failed: %s", namespace, entity_id, exc)
                    continue
                wiped = result.rowcount > 0 or wiped
            return wiped

        return self._guarded(f"Wiping data for {entity_id}", False, _work)

    def exists(self, entity_id: UUID, key: str, *, namespace: str = DEFAULT_NAMESPACE) -> bool:
        try:
            table = self._namespace(namespace)
        except SchemaFailure as exc:
            self._logger.error("Existence check for %s rejected: %s", key, exc)
            return False

        sql = (
            f"SELECT 1 FROM {self._q(table)} "
            f"WHERE {self._c('EntityId')} = :entity_id AND {self._c('Key')} = :key LIMIT 1"
        )

        def _work(connection: Connection) -> bool:
            return self._execute(connection, sql, {"entity_id": str(entity_id), "key": str(key)}).first() is not None

        return self._guarded(f"Checking {table}.{key} for {entity_id}", False, _work)

    def table_exists(self, name: str) -> bool:
        table_name = str(name or "").strip()

        def _work(connection: Connection) -> bool:
            row = self._execute(connection, self.dialect.table_exists_query(), {"table_name": table_name}).first()
            return row is not None

        return self._guarded(f"Checking whether table {table_name} exists", False, _work)
