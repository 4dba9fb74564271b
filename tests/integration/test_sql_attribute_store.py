import logging
import sys
from pathlib import Path
import unittest
from uuid import uuid4

from sqlalchemy import text

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from townkeep.domain.models.attribute import AttributeValue, TypeTag
from townkeep.infrastructure.config import MappingConfigProvider
from townkeep.infrastructure.db.attribute_store import SqlAttributeStore
from townkeep.infrastructure.db.connection import ConnectionManager
from townkeep.infrastructure.db.schema import SchemaProvisioner


LOGGER_NAME = "townkeep.tests.attribute_store"


def _memory_manager() -> ConnectionManager:
    return ConnectionManager(MappingConfigProvider({"database": {"type": "sqlite", "sqlite": {"path": ":memory:"}}}))


class SqlAttributeStoreIntegrationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.connections = _memory_manager()
        self.store = SqlAttributeStore(self.connections, logger=logging.getLogger(LOGGER_NAME))
        for namespace in ("users", "currency", "info"):
            self.assertTrue(self.store.create_table(namespace))
        self.player = uuid4()

    def tearDown(self) -> None:
        self.connections.close()

    def _insert_raw(self, namespace: str, key: str, value, tag: str) -> None:
        connection = self.connections.ensure_connection()
        connection.execute(
            text(f'INSERT INTO "{namespace}" ("EntityId", "Key", "Value", "Type") VALUES (:e, :k, :v, :t)'),
            {"e": str(self.player), "k": key, "v": value, "t": tag},
        )

    def _row_count(self, namespace: str) -> int:
        connection = self.connections.ensure_connection()
        return int(connection.execute(text(f'SELECT COUNT(*) FROM "{namespace}"')).scalar_one())

    def test_each_typed_accessor_round_trips(self) -> None:
        self.store.save_string(self.player, "title", "Reeve of Ashford")
        self.store.save_int(self.player, "kills", 12)
        self.store.save_double(self.player, "balance", 99.25, namespace="currency")
        self.store.save_bool(self.player, "muted", True)
        self.store.save_long(self.player, "joined_at", 1_700_000_000_000, namespace="info")
        self.store.save_float(self.player, "speed", 0.5)
        self.store.save_string_array(self.player, "homes", ["spawn", "farm"])
        self.store.save_string_list(self.player, "friends", ["ada", "bo"])

        self.assertEqual("Reeve of Ashford", self.store.load_string(self.player, "title"))
        self.assertEqual(12, self.store.load_int(self.player, "kills"))
        self.assertEqual(99.25, self.store.load_double(self.player, "balance", namespace="currency"))
        self.assertIs(True, self.store.load_bool(self.player, "muted"))
        self.assertEqual(1_700_000_000_000, self.store.load_long(self.player, "joined_at", namespace="info"))
        self.assertEqual(0.5, self.store.load_float(self.player, "speed"))
        self.assertEqual(("spawn", "farm"), self.store.load_string_array(self.player, "homes"))
        self.assertEqual(["ada", "bo"], self.store.load_string_list(self.player, "friends"))

    def test_generic_save_infers_tag_and_load_returns_raw_text(self) -> None:
        self.store.save(self.player, "kills", 5)
        self.store.save(self.player, "motto", "Hold fast")

        self.assertEqual("5", self.store.load(self.player, "kills"))
        self.assertEqual("Hold fast", self.store.load(self.player, "motto"))
        self.assertEqual(AttributeValue.int_(5), self.store.load_value(self.player, "kills"))
        self.assertIsNone(self.store.load(self.player, "missing"))
        self.assertEqual("fallback", self.store.load(self.player, "missing", "fallback"))

    def test_saving_twice_leaves_one_row_with_latest_value(self) -> None:
        self.store.save_int(self.player, "kills", 1)
        self.store.save_int(self.player, "kills", 2)

        self.assertEqual(1, self._row_count("users"))
        self.assertEqual(2, self.store.load_int(self.player, "kills"))

    def test_overwrite_can_change_the_type_tag(self) -> None:
        self.store.save_int(self.player, "rank", 3)
        self.store.save_string(self.player, "rank", "captain")

        self.assertEqual("captain", self.store.load_string(self.player, "rank"))
        self.assertEqual(-1, self.store.load_int(self.player, "rank", -1))

    def test_reading_with_wrong_accessor_returns_default(self) -> None:
        self.store.save_int(self.player, "kills", 12)

        with self.assertLogs(LOGGER_NAME, level="WARNING") as captured:
            self.assertEqual(0.0, self.store.load_double(self.player, "kills"))
        self.assertIn("Type mismatch", captured.output[0])

    def test_malformed_stored_text_returns_default(self) -> None:
        self._insert_raw("users", "kills", "twelve", "int")
        self._insert_raw("users", "friends", "not-json", "string_list")

        with self.assertLogs(LOGGER_NAME, level="WARNING"):
            self.assertEqual(7, self.store.load_int(self.player, "kills", 7))
            self.assertEqual([], self.store.load_string_list(self.player, "friends"))
            self.assertIsNone(self.store.load_value(self.player, "friends"))

    def test_missing_keys_use_accessor_defaults(self) -> None:
        self.assertEqual("", self.store.load_string(self.player, "nothing"))
        self.assertEqual(0, self.store.load_int(self.player, "nothing"))
        self.assertIs(False, self.store.load_bool(self.player, "nothing"))
        self.assertEqual((), self.store.load_string_array(self.player, "nothing"))
        self.assertIsNone(self.store.load_value(self.player, "nothing"))

    def test_int_values_outside_32_bits_are_refused(self) -> None:
        with self.assertLogs(LOGGER_NAME, level="ERROR"):
            self.store.save_int(self.player, "huge", 2**40)

        self.assertFalse(self.store.exists(self.player, "huge"))

    def test_namespace_names_are_case_folded(self) -> None:
        self.store.save_string(self.player, "nick", "Wren", namespace="USERS")

        self.assertEqual("Wren", self.store.load_string(self.player, "nick", namespace="users"))
        self.assertTrue(self.store.table_exists("users"))

    def test_invalid_namespace_is_logged_not_raised(self) -> None:
        with self.assertLogs(LOGGER_NAME, level="ERROR"):
            self.store.save_string(self.player, "nick", "Wren", namespace="users; DROP TABLE info")
            self.assertEqual("none", self.store.load_string(self.player, "nick", "none", namespace="bad name"))

        self.assertTrue(self.store.table_exists("info"))

    def test_delete_and_exists(self) -> None:
        self.store.save_bool(self.player, "muted", True)

        self.assertTrue(self.store.exists(self.player, "muted"))
        self.assertTrue(self.store.delete(self.player, "muted"))
        self.assertFalse(self.store.exists(self.player, "muted"))
        self.assertFalse(self.store.delete(self.player, "muted"))

    def test_wipe_clears_every_wipe_namespace(self) -> None:
        other = uuid4()
        self.store.save_int(self.player, "kills", 1)
        self.store.save_double(self.player, "balance", 10.0, namespace="currency")
        self.store.save_long(self.player, "joined_at", 1_700_000_000_000, namespace="info")
        self.store.save_string(other, "title", "Miller")

        self.assertTrue(self.store.wipe(self.player))
        self.assertFalse(self.store.exists(self.player, "kills"))
        self.assertFalse(self.store.exists(self.player, "balance", namespace="currency"))
        self.assertFalse(self.store.exists(self.player, "joined_at", namespace="info"))
        self.assertEqual("Miller", self.store.load_string(other, "title"))

        self.assertFalse(self.store.wipe(self.player))
        self.assertFalse(self.store.wipe(uuid4()))

    def test_wipe_skips_missing_tables(self) -> None:
        store = SqlAttributeStore(
            self.connections,
            logger=logging.getLogger(LOGGER_NAME),
            wipe_namespaces=("ghosts", "users"),
        )
        store.save_int(self.player, "kills", 3)

        with self.assertLogs(LOGGER_NAME, level="ERROR") as captured:
            self.assertTrue(store.wipe(self.player))
        self.assertIn("ghosts", captured.output[0])
        self.assertFalse(store.exists(self.player, "kills"))

    def test_table_exists(self) -> None:
        self.assertTrue(self.store.table_exists("currency"))
        self.assertFalse(self.store.table_exists("economy"))

    def test_table_exists_keeps_the_given_case(self) -> None:
        provisioner = SchemaProvisioner(self.connections, logger=logging.getLogger(LOGGER_NAME))
        self.assertTrue(provisioner.execute_arbitrary_ddl('CREATE TABLE "Homes" (id INTEGER)'))

        self.assertTrue(self.store.table_exists("Homes"))
        self.assertTrue(self.store.table_exists(" Homes "))

    def test_string_collections_refuse_a_bare_string(self) -> None:
        with self.assertLogs(LOGGER_NAME, level="ERROR"):
            self.store.save_string_array(self.player, "homes", "spawn")
            self.store.save_string_list(self.player, "friends", "ada")

        self.assertFalse(self.store.exists(self.player, "homes"))
        self.assertFalse(self.store.exists(self.player, "friends"))

    def test_string_collections_accept_any_iterable(self) -> None:
        self.store.save_string_array(self.player, "homes", (name for name in ("spawn", "farm")))

        self.assertEqual(("spawn", "farm"), self.store.load_string_array(self.player, "homes"))

    def test_explicit_tag_must_match_attribute_value(self) -> None:
        with self.assertLogs(LOGGER_NAME, level="ERROR"):
            self.store.save(self.player, "kills", AttributeValue.int_(4), TypeTag.LONG)

        self.assertFalse(self.store.exists(self.player, "kills"))


if __name__ == "__main__":
    unittest.main()
