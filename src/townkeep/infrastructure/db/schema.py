from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.engine import Connection

from townkeep.domain.errors import SchemaFailure
from townkeep.domain.models.town import DEFAULT_MAX_CLAIMED_PLOTS, xp_threshold
from townkeep.infrastructure.db.base import GuardedSqlRepository
from townkeep.infrastructure.db.connection import ConnectionManager
from townkeep.infrastructure.db.dialect import ColumnSpec, Dialect, TableSpec, is_plain_identifier


ATTRIBUTE_COLUMNS: tuple[str, ...] = ("EntityId", "Key", "Value", "Type")
ATTRIBUTE_KEY_COLUMNS: tuple[str, ...] = ("EntityId", "Key")

TOWNS_TABLE = "towns"
PLOTS_TABLE = "town_plots"
CITIZENS_TABLE = "town_citizens"
RANKS_TABLE = "town_ranks"
INVITATIONS_TABLE = "town_invitations"


def attribute_table_spec(namespace: str) -> TableSpec:
    return TableSpec(
        name=namespace,
        columns=(
            ColumnSpec("EntityId", "uuid", nullable=False),
            ColumnSpec("Key", "key", nullable=False),
            ColumnSpec("Value", "text"),
            ColumnSpec("Type", "tag"),
        ),
        primary_key=ATTRIBUTE_KEY_COLUMNS,
    )


DOMAIN_TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name=TOWNS_TABLE,
        columns=(
            ColumnSpec("Id", "uuid", nullable=False),
            ColumnSpec("Name", "key", nullable=False),
            ColumnSpec("Owner", "uuid", nullable=False),
            ColumnSpec("CenterPlotId", "key"),
            ColumnSpec("Level", "int", nullable=False, default=1),
            ColumnSpec("Budget", "int", nullable=False, default=0),
            ColumnSpec("Xp", "int", nullable=False, default=0),
            ColumnSpec("XpToNextLevel", "int", nullable=False, default=xp_threshold(1)),
            ColumnSpec("Tax", "int", nullable=False, default=0),
            ColumnSpec("MaxClaimedPlots", "int", nullable=False, default=DEFAULT_MAX_CLAIMED_PLOTS),
            ColumnSpec("IsPublic", "bool", nullable=False, default=False),
        ),
        primary_key=("Id",),
        unique=("Name",),
    ),
    TableSpec(
        name=PLOTS_TABLE,
        columns=(
            ColumnSpec("PlotId", "key", nullable=False),
            ColumnSpec("TownId", "uuid", nullable=False),
        ),
        primary_key=("PlotId",),
    ),
    TableSpec(
        name=CITIZENS_TABLE,
        columns=(
            ColumnSpec("PlayerId", "uuid", nullable=False),
            ColumnSpec("TownId", "uuid", nullable=False),
            ColumnSpec("Role", "tag", nullable=False, default="member"),
        ),
        primary_key=("PlayerId", "TownId"),
    ),
    TableSpec(
        name=RANKS_TABLE,
        columns=(
            ColumnSpec("TownId", "uuid", nullable=False),
            ColumnSpec("RankName", "tag", nullable=False),
            ColumnSpec("Permissions", "text"),
        ),
        primary_key=("TownId", "RankName"),
    ),
    TableSpec(
        name=INVITATIONS_TABLE,
        columns=(
            ColumnSpec("PlayerId", "uuid", nullable=False),
            ColumnSpec("TownId", "uuid", nullable=False),
        ),
        primary_key=("PlayerId", "TownId"),
    ),
)


def normalize_namespace(namespace: str) -> str:
    """Lower-case a namespace and reject names that are not plain SQL identifiers."""
    normalized = str(namespace or "").strip().lower()
    if not is_plain_identifier(normalized):
        raise SchemaFailure(f"Invalid namespace name: {namespace!r}")
    return normalized


def render_generic_table(dialect: Dialect, namespace: str) -> str:
    return dialect.create_table(attribute_table_spec(normalize_namespace(namespace)))


def render_domain_schema(dialect: Dialect) -> List[str]:
    return [dialect.create_table(spec) for spec in DOMAIN_TABLES]


class SchemaProvisioner(GuardedSqlRepository):
    def __init__(self, connections: ConnectionManager, *, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(connections, logger=logger)

    def _run_ddl(self, action: str, sql: str) -> bool:
        def _work(connection: Connection) -> bool:
            self._execute(connection, sql)
            return True

        succeeded = self._guarded(action, False, _work)
        if succeeded:
            self._logger.info("%s succeeded", action)
        return succeeded

    def ensure_generic_table(self, namespace: str) -> bool:
        try:
            statement = render_generic_table(self.dialect, namespace)
        except SchemaFailure as exc:
            self._logger.error("Attribute table creation rejected: %s", exc)
            return False
        return self._run_ddl(f"Creating attribute table '{normalize_namespace(namespace)}'", statement)

    def ensure_domain_schema(self) -> Dict[str, bool]:
        outcome: Dict[str, bool] = {}
        for spec in DOMAIN_TABLES:
            outcome[spec.name] = self._run_ddl(f"Creating table '{spec.name}'", self.dialect.create_table(spec))
        failed = [name for name, ok in outcome.items() if not ok]
        if failed:
            self._logger.error("Town schema incomplete; failed tables: %s", ", ".join(failed))
        return outcome

    def execute_arbitrary_ddl(self, sql: str) -> bool:
        """Execute caller-supplied SQL verbatim; the caller owns its correctness."""
        return self._run_ddl("Table statement", sql)

    def execute_script(self, statements: Iterable[str]) -> int:
        return sum(1 for statement in statements if self.execute_arbitrary_ddl(statement))
