import logging
import os
from dataclasses import dataclass
from typing import Optional

from townkeep.application.services.event_bus import EventBus
from townkeep.infrastructure.config import ConfigProvider, EnvConfigProvider
from townkeep.infrastructure.db.attribute_store import WIPE_NAMESPACES, SqlAttributeStore
from townkeep.infrastructure.db.connection import ConnectionManager
from townkeep.infrastructure.db.schema import SchemaProvisioner
from townkeep.infrastructure.db.town_repo import SqlTownRepository


@dataclass
class StoreBundle:
    connections: ConnectionManager
    provisioner: SchemaProvisioner
    attributes: SqlAttributeStore
    towns: SqlTownRepository
    event_bus: EventBus

    def close(self) -> None:
        self.connections.close()


def configure_logging() -> None:
    level_name = os.getenv("TOWNKEEP_LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_store(
    provider: Optional[ConfigProvider] = None,
    *,
    logger: Optional[logging.Logger] = None,
    provision: bool = False,
) -> StoreBundle:
    """Wire the attribute store and town repository over one connection manager.

    With ``provision=True`` the wipe namespaces and the town tables are created
    up front; failures there are logged and do not stop startup.
    """
    connections = ConnectionManager(provider or EnvConfigProvider(), logger=logger)
    event_bus = EventBus(logger=logger)
    provisioner = SchemaProvisioner(connections, logger=logger)
    attributes = SqlAttributeStore(connections, logger=logger, provisioner=provisioner)
    towns = SqlTownRepository(connections, logger=logger, event_publisher=event_bus.publish)

    if provision:
        for namespace in WIPE_NAMESPACES:
            provisioner.ensure_generic_table(namespace)
        provisioner.ensure_domain_schema()

    return StoreBundle(
        connections=connections,
        provisioner=provisioner,
        attributes=attributes,
        towns=towns,
        event_bus=event_bus,
    )
