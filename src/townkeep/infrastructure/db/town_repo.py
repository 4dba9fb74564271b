from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import List, Optional
from uuid import UUID

from sqlalchemy.engine import Connection

from townkeep.domain.events import TownLeveledUpEvent, TownUpgradedEvent
from townkeep.domain.models.town import DEFAULT_CITIZEN_ROLE, DEFAULT_MAX_CLAIMED_PLOTS, Citizen, Rank, Town
from townkeep.domain.repositories import TownRepository
from townkeep.domain.services.leveling import LevelingEngine, LevelingOutcome
from townkeep.infrastructure.db.base import GuardedSqlRepository
from townkeep.infrastructure.db.connection import ConnectionManager
from townkeep.infrastructure.db.schema import (
    CITIZENS_TABLE,
    INVITATIONS_TABLE,
    PLOTS_TABLE,
    RANKS_TABLE,
    TOWNS_TABLE,
)


TOWN_COLUMNS: tuple[str, ...] = (
    "Id",
    "Name",
    "Owner",
    "CenterPlotId",
    "Level",
    "Budget",
    "Xp",
    "XpToNextLevel",
    "Tax",
    "MaxClaimedPlots",
    "IsPublic",
)


def _parse_uuid(raw) -> Optional[UUID]:
    if raw is None:
        return None
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw).strip())
    except ValueError:
        return None


def _parse_permissions(raw_value) -> list[str]:
    if raw_value is None:
        return []
    text_value = str(raw_value).strip()
    if not text_value:
        return []
    try:
        parsed = json.loads(text_value)
    except ValueError:
        parsed = [segment.strip() for segment in text_value.split(",") if segment.strip()]
    if isinstance(parsed, list):
        return [str(item).strip().lower() for item in parsed if str(item).strip()]
    return [str(parsed).strip().lower()] if str(parsed).strip() else []


def _row_to_town(row) -> Town:
    return Town(
        id=_parse_uuid(row.Id),
        name=row.Name,
        owner_id=_parse_uuid(row.Owner),
        center_plot_id=row.CenterPlotId or "",
        level=max(int(row.Level or 1), 1),
        budget=int(row.Budget or 0),
        xp=int(row.Xp or 0),
        xp_to_next_level=int(row.XpToNextLevel or 0),
        tax=max(int(row.Tax or 0), 0),
        max_claimed_plots=max(int(row.MaxClaimedPlots if row.MaxClaimedPlots is not None else DEFAULT_MAX_CLAIMED_PLOTS), 0),
        is_public=bool(row.IsPublic),
    )


class SqlTownRepository(GuardedSqlRepository, TownRepository):
    """Towns and their plots, citizens, ranks and invitations over one shared connection."""

    def __init__(
        self,
        connections: ConnectionManager,
        *,
        logger: Optional[logging.Logger] = None,
        leveling: Optional[LevelingEngine] = None,
        event_publisher: Optional[Callable[[object], None]] = None,
    ) -> None:
        super().__init__(connections, logger=logger)
        self._leveling = leveling or LevelingEngine()
        self._event_publisher = event_publisher

    def _town_select(self, alias: str = "t") -> str:
        columns = ", ".join(f"{alias}.{self._c(name)} AS {self._q(name)}" for name in TOWN_COLUMNS)
        return f"SELECT {columns} FROM {self._q(TOWNS_TABLE)} {alias}"

    def _fetch_town(self, action: str, where: str, params: dict) -> Optional[Town]:
        sql = f"{self._town_select()} {where}"

        def _work(connection: Connection) -> Optional[Town]:
            row = self._execute(connection, sql, params).first()
            return _row_to_town(row) if row is not None else None

        return self._guarded(action, None, _work)

    def _fetch_towns(self, action: str, where: str, params: dict) -> List[Town]:
        sql = f"{self._town_select()} {where}"

        def _work(connection: Connection) -> List[Town]:
            return [_row_to_town(row) for row in self._execute(connection, sql, params).all()]

        return self._guarded(action, [], _work)

    def _write(self, action: str, sql: str, params: dict) -> int:
        """Execute a write; returns affected rows, or -1 when the statement did not run."""

        def _work(connection: Connection) -> int:
            return int(self._execute(connection, sql, params).rowcount)

        return self._guarded(action, -1, _work)

    def _exists(self, action: str, table: str, where: str, params: dict) -> bool:
        sql = f"SELECT 1 FROM {self._q(table)} {where} LIMIT 1"

        def _work(connection: Connection) -> bool:
            return self._execute(connection, sql, params).first() is not None

        return self._guarded(action, False, _work)

    def _publish(self, event: object) -> None:
        if self._event_publisher is None:
            return
        try:
            self._event_publisher(event)
        except Exception:
            self._logger.exception("Town event publisher failed", extra={"event_type": type(event).__name__})

    # -- aggregate ------------------------------------------------------------

    def upsert_town(self, town: Town) -> None:
        name = str(town.name).strip()
        statement = self.dialect.upsert(TOWNS_TABLE, TOWN_COLUMNS, ("Id",))
        params = {
            "Id": str(town.id),
            "Name": name,
            "Owner": str(town.owner_id),
            "CenterPlotId": str(town.center_plot_id or ""),
            "Level": int(town.level),
            "Budget": int(town.budget),
            "Xp": int(town.xp),
            "XpToNextLevel": int(town.xp_to_next_level),
            "Tax": int(town.tax),
            "MaxClaimedPlots": int(town.max_claimed_plots),
            "IsPublic": 1 if town.is_public else 0,
        }

        # The name check and the write share one lock hold: MySQL resolves
        # ON DUPLICATE KEY against the Name key too.
        with self._lock:
            holder = self.get_town_by_name(name)
            if holder is not None and holder.id != town.id:
                self._logger.error("Town name %s is already taken by %s", name, holder.id)
                return
            written = self._write(f"Saving town {name}", statement, params)

        if written >= 0:
            self._logger.debug("Saved town %s (%s)", name, town.id)

    def get_town(self, town_id: UUID) -> Optional[Town]:
        return self._fetch_town(f"Loading town {town_id}", f"WHERE t.{self._c('Id')} = :town_id", {"town_id": str(town_id)})

    def get_town_by_name(self, name: str) -> Optional[Town]:
        return self._fetch_town(
            f"Loading town named {name}",
            f"WHERE LOWER(t.{self._c('Name')}) = :name",
            {"name": str(name).strip().lower()},
        )

    def get_town_by_owner(self, owner_id: UUID) -> Optional[Town]:
        return self._fetch_town(
            f"Loading town owned by {owner_id}",
            f"WHERE t.{self._c('Owner')} = :owner_id ORDER BY t.{self._c('Name')} LIMIT 1",
            {"owner_id": str(owner_id)},
        )

    def get_town_by_member(self, player_id: UUID) -> Optional[Town]:
        where = (
            f"JOIN {self._q(CITIZENS_TABLE)} c ON c.{self._c('TownId')} = t.{self._c('Id')} "
            f"WHERE c.{self._c('PlayerId')} = :player_id LIMIT 1"
        )
        return self._fetch_town(f"Loading town of member {player_id}", where, {"player_id": str(player_id)})

    def list_towns(self) -> List[Town]:
        return self._fetch_towns("Listing towns", f"ORDER BY t.{self._c('Name')}", {})

    def is_name_taken(self, name: str) -> bool:
        return self._exists(
            f"Checking town name {name}",
            TOWNS_TABLE,
            f"WHERE LOWER({self._c('Name')}) = :name",
            {"name": str(name).strip().lower()},
        )

    def delete_town(self, town_id: UUID) -> bool:
        params = {"town_id": str(town_id)}
        for table in (PLOTS_TABLE, CITIZENS_TABLE, RANKS_TABLE, INVITATIONS_TABLE):
            self._write(
                f"Removing {table} rows of town {town_id}",
                f"DELETE FROM {self._q(table)} WHERE {self._c('TownId')} = :town_id",
                params,
            )
        removed = self._write(
            f"Deleting town {town_id}",
            f"DELETE FROM {self._q(TOWNS_TABLE)} WHERE {self._c('Id')} = :town_id",
            params,
        )
        return removed > 0

    # -- plots ----------------------------------------------------------------

    def assign_plot(self, plot_id: str, town_id: UUID) -> None:
        statement = self.dialect.upsert(PLOTS_TABLE, ("PlotId", "TownId"), ("PlotId",))
        self._write(f"Assigning plot {plot_id} to {town_id}", statement, {"PlotId": str(plot_id), "TownId": str(town_id)})

    def unassign_plot(self, plot_id: str) -> bool:
        removed = self._write(
            f"Releasing plot {plot_id}",
            f"DELETE FROM {self._q(PLOTS_TABLE)} WHERE {self._c('PlotId')} = :plot_id",
            {"plot_id": str(plot_id)},
        )
        return removed > 0

    def is_plot_assigned(self, plot_id: str) -> bool:
        return self._exists(
            f"Checking plot {plot_id}",
            PLOTS_TABLE,
            f"WHERE {self._c('PlotId')} = :plot_id",
            {"plot_id": str(plot_id)},
        )

    def get_plot_town(self, plot_id: str) -> Optional[Town]:
        where = (
            f"JOIN {self._q(PLOTS_TABLE)} p ON p.{self._c('TownId')} = t.{self._c('Id')} "
            f"WHERE p.{self._c('PlotId')} = :plot_id"
        )
        return self._fetch_town(f"Loading town of plot {plot_id}", where, {"plot_id": str(plot_id)})

    def list_plots(self, town_id: UUID) -> List[str]:
        sql = (
            f"SELECT {self._c('PlotId')} AS plot_id FROM {self._q(PLOTS_TABLE)} "
            f"WHERE {self._c('TownId')} = :town_id ORDER BY {self._c('PlotId')}"
        )

        def _work(connection: Connection) -> List[str]:
            return [str(row.plot_id) for row in self._execute(connection, sql, {"town_id": str(town_id)}).all()]

        return self._guarded(f"Listing plots of {town_id}", [], _work)

    # -- citizens -------------------------------------------------------------

    def add_citizen(self, player_id: UUID, town_id: UUID, role: str = DEFAULT_CITIZEN_ROLE) -> None:
        statement = self.dialect.upsert(CITIZENS_TABLE, ("PlayerId", "TownId", "Role"), ("PlayerId", "TownId"))
        self._write(
            f"Adding citizen {player_id} to {town_id}",
            statement,
            {"PlayerId": str(player_id), "TownId": str(town_id), "Role": str(role or DEFAULT_CITIZEN_ROLE)},
        )

    def remove_citizen(self, player_id: UUID, town_id: UUID) -> None:
        self._write(
            f"Removing citizen {player_id} from {town_id}",
            f"DELETE FROM {self._q(CITIZENS_TABLE)} WHERE {self._c('PlayerId')} = :player_id AND {self._c('TownId')} = :town_id",
            {"player_id": str(player_id), "town_id": str(town_id)},
        )

    def list_citizens(self, town_id: UUID) -> List[Citizen]:
        sql = (
            f"SELECT {self._c('PlayerId')} AS player_id, {self._c('Role')} AS role FROM {self._q(CITIZENS_TABLE)} "
            f"WHERE {self._c('TownId')} = :town_id ORDER BY {self._c('PlayerId')}"
        )

        def _work(connection: Connection) -> List[Citizen]:
            citizens: List[Citizen] = []
            for row in self._execute(connection, sql, {"town_id": str(town_id)}).all():
                player_id = _parse_uuid(row.player_id)
                if player_id is None:
                    continue
                citizens.append(Citizen(player_id=player_id, town_id=town_id, role=row.role or DEFAULT_CITIZEN_ROLE))
            return citizens

        return self._guarded(f"Listing citizens of {town_id}", [], _work)

    def get_citizen_role(self, player_id: UUID, town_id: UUID) -> Optional[str]:
        sql = (
            f"SELECT {self._c('Role')} AS role FROM {self._q(CITIZENS_TABLE)} "
            f"WHERE {self._c('PlayerId')} = :player_id AND {self._c('TownId')} = :town_id"
        )

        def _work(connection: Connection) -> Optional[str]:
            row = self._execute(connection, sql, {"player_id": str(player_id), "town_id": str(town_id)}).first()
            return row.role if row is not None else None

        return self._guarded(f"Loading role of {player_id} in {town_id}", None, _work)

    # -- invitations ----------------------------------------------------------

    def invite(self, player_id: UUID, town_id: UUID) -> None:
        statement = self.dialect.insert_ignore(INVITATIONS_TABLE, ("PlayerId", "TownId"))
        self._write(
            f"Inviting {player_id} to {town_id}",
            statement,
            {"PlayerId": str(player_id), "TownId": str(town_id)},
        )

    def has_invitation(self, player_id: UUID, town_id: UUID) -> bool:
        return self._exists(
            f"Checking invitation of {player_id} to {town_id}",
            INVITATIONS_TABLE,
            f"WHERE {self._c('PlayerId')} = :player_id AND {self._c('TownId')} = :town_id",
            {"player_id": str(player_id), "town_id": str(town_id)},
        )

    def revoke_invitation(self, player_id: UUID, town_id: UUID) -> None:
        self._write(
            f"Revoking invitation of {player_id} to {town_id}",
            f"DELETE FROM {self._q(INVITATIONS_TABLE)} WHERE {self._c('PlayerId')} = :player_id AND {self._c('TownId')} = :town_id",
            {"player_id": str(player_id), "town_id": str(town_id)},
        )

    def list_invited_towns(self, player_id: UUID) -> List[Town]:
        where = (
            f"JOIN {self._q(INVITATIONS_TABLE)} i ON i.{self._c('TownId')} = t.{self._c('Id')} "
            f"WHERE i.{self._c('PlayerId')} = :player_id ORDER BY t.{self._c('Name')}"
        )
        return self._fetch_towns(f"Listing invitations of {player_id}", where, {"player_id": str(player_id)})

    # -- ranks ----------------------------------------------------------------

    def set_rank(self, rank: Rank) -> None:
        statement = self.dialect.upsert(RANKS_TABLE, ("TownId", "RankName", "Permissions"), ("TownId", "RankName"))
        self._write(
            f"Saving rank {rank.rank_name} of {rank.town_id}",
            statement,
            {
                "TownId": str(rank.town_id),
                "RankName": str(rank.rank_name).strip().lower(),
                "Permissions": json.dumps(sorted({str(item).strip().lower() for item in rank.permissions if str(item).strip()})),
            },
        )

    def get_rank_permissions(self, town_id: UUID, rank_name: str) -> List[str]:
        sql = (
            f"SELECT {self._c('Permissions')} AS permissions FROM {self._q(RANKS_TABLE)} "
            f"WHERE {self._c('TownId')} = :town_id AND {self._c('RankName')} = :rank_name"
        )

        def _work(connection: Connection) -> List[str]:
            row = self._execute(connection, sql, {"town_id": str(town_id), "rank_name": str(rank_name).strip().lower()}).first()
            return _parse_permissions(row.permissions) if row is not None else []

        return self._guarded(f"Loading rank {rank_name} of {town_id}", [], _work)

    def list_ranks(self, town_id: UUID) -> List[Rank]:
        sql = (
            f"SELECT {self._c('RankName')} AS rank_name, {self._c('Permissions')} AS permissions "
            f"FROM {self._q(RANKS_TABLE)} WHERE {self._c('TownId')} = :town_id ORDER BY {self._c('RankName')}"
        )

        def _work(connection: Connection) -> List[Rank]:
            return [
                Rank(town_id=town_id, rank_name=row.rank_name, permissions=_parse_permissions(row.permissions))
                for row in self._execute(connection, sql, {"town_id": str(town_id)}).all()
            ]

        return self._guarded(f"Listing ranks of {town_id}", [], _work)

    def remove_rank(self, town_id: UUID, rank_name: str) -> bool:
        removed = self._write(
            f"Removing rank {rank_name} of {town_id}",
            f"DELETE FROM {self._q(RANKS_TABLE)} WHERE {self._c('TownId')} = :town_id AND {self._c('RankName')} = :rank_name",
            {"town_id": str(town_id), "rank_name": str(rank_name).strip().lower()},
        )
        return removed > 0

    # -- scalar settings ------------------------------------------------------

    def _update_town_column(self, action: str, town_id: UUID, column: str, value) -> None:
        self._write(
            action,
            f"UPDATE {self._q(TOWNS_TABLE)} SET {self._c(column)} = :value WHERE {self._c('Id')} = :town_id",
            {"value": value, "town_id": str(town_id)},
        )

    def _read_town_column(self, action: str, town_id: UUID, column: str, default):
        sql = f"SELECT {self._c(column)} AS value FROM {self._q(TOWNS_TABLE)} WHERE {self._c('Id')} = :town_id"

        def _work(connection: Connection):
            row = self._execute(connection, sql, {"town_id": str(town_id)}).first()
            if row is None or row.value is None:
                return default
            return row.value

        return self._guarded(action, default, _work)

    def set_tax(self, town_id: UUID, tax: int) -> None:
        tax = int(tax)
        if tax < 0:
            self._logger.error("Refusing negative tax %s for town %s", tax, town_id)
            return
        self._update_town_column(f"Setting tax of {town_id}", town_id, "Tax", tax)

    def get_tax(self, town_id: UUID) -> int:
        return int(self._read_town_column(f"Loading tax of {town_id}", town_id, "Tax", 0))

    def set_visibility(self, town_id: UUID, is_public: bool) -> None:
        self._update_town_column(f"Setting visibility of {town_id}", town_id, "IsPublic", 1 if is_public else 0)

    def is_public_town(self, town_id: UUID) -> bool:
        return bool(self._read_town_column(f"Loading visibility of {town_id}", town_id, "IsPublic", False))

    def get_max_plots(self, town_id: UUID) -> int:
        return int(
            self._read_town_column(
                f"Loading plot limit of {town_id}", town_id, "MaxClaimedPlots", DEFAULT_MAX_CLAIMED_PLOTS
            )
        )

    # -- leveling -------------------------------------------------------------

    def grant_xp(self, town: Town, amount: int) -> LevelingOutcome:
        from_level = town.level
        try:
            outcome = self._leveling.apply_xp(town, amount)
        except ValueError as exc:
            self._logger.error("Granting %s xp to town %s rejected: %s", amount, town.name, exc)
            return LevelingOutcome(level=town.level, xp=town.xp, xp_to_next_level=town.xp_to_next_level)
        self._leveling.apply(town, outcome)
        self.upsert_town(town)
        if outcome.leveled_up:
            self._logger.info("Town %s reached level %s", town.name, outcome.level)
            self._publish(
                TownLeveledUpEvent(town_id=town.id, from_level=from_level, to_level=outcome.level, xp=outcome.xp)
            )
        return outcome

    def upgrade_town(self, town: Town) -> LevelingOutcome:
        from_level = town.level
        outcome = self._leveling.upgrade(town)
        self._leveling.apply(town, outcome)
        self.upsert_town(town)
        self._publish(
            TownUpgradedEvent(
                town_id=town.id,
                from_level=from_level,
                to_level=outcome.level,
                max_claimed_plots=town.max_claimed_plots,
            )
        )
        return outcome
