import sys
from pathlib import Path
import unittest

from sqlalchemy.pool import NullPool, StaticPool

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from townkeep.domain.errors import SchemaFailure
from townkeep.infrastructure.db.dialect import MysqlDialect, SqliteDialect, dialect_for
from townkeep.infrastructure.db.schema import (
    ATTRIBUTE_COLUMNS,
    ATTRIBUTE_KEY_COLUMNS,
    normalize_namespace,
    render_domain_schema,
    render_generic_table,
)


class DialectLookupTests(unittest.TestCase):
    def test_dialect_for_is_case_insensitive(self) -> None:
        self.assertIsInstance(dialect_for("MySQL"), MysqlDialect)
        self.assertIsInstance(dialect_for(" sqlite "), SqliteDialect)

    def test_unknown_backend_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            dialect_for("postgres")


class MysqlDialectTests(unittest.TestCase):
    def setUp(self) -> None:
        self.dialect = MysqlDialect()

    def test_key_column_is_aliased_in_ddl(self) -> None:
        ddl = render_generic_table(self.dialect, "Users")

        self.assertIn("CREATE TABLE IF NOT EXISTS `users`", ddl)
        self.assertIn("`KeyName` VARCHAR(255) NOT NULL", ddl)
        self.assertIn("PRIMARY KEY (`EntityId`, `KeyName`)", ddl)
        self.assertNotIn("`Key`", ddl)
        self.assertTrue(ddl.endswith("ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"))

    def test_upsert_uses_on_duplicate_key_with_alias(self) -> None:
        sql = self.dialect.upsert("users", ATTRIBUTE_COLUMNS, ATTRIBUTE_KEY_COLUMNS, replace=True)

        self.assertTrue(sql.startswith("INSERT INTO `users` (`EntityId`, `KeyName`, `Value`, `Type`)"))
        self.assertIn("VALUES (:EntityId, :Key, :Value, :Type)", sql)
        self.assertIn("ON DUPLICATE KEY UPDATE `Value` = VALUES(`Value`), `Type` = VALUES(`Type`)", sql)

    def test_upsert_without_updatable_columns_ignores_duplicates(self) -> None:
        sql = self.dialect.upsert("town_invitations", ("PlayerId", "TownId"), ("PlayerId", "TownId"))
        self.assertTrue(sql.startswith("INSERT IGNORE INTO `town_invitations`"))

    def test_table_exists_reads_information_schema(self) -> None:
        query = self.dialect.table_exists_query()
        self.assertIn("information_schema.TABLES", query)
        self.assertIn(":table_name", query)

    def test_engine_options_disable_pooling(self) -> None:
        self.assertIs(NullPool, self.dialect.engine_options()["poolclass"])


class SqliteDialectTests(unittest.TestCase):
    def setUp(self) -> None:
        self.dialect = SqliteDialect()

    def test_key_column_keeps_its_name(self) -> None:
        ddl = render_generic_table(self.dialect, "currency")

        self.assertIn('"Key" TEXT NOT NULL', ddl)
        self.assertNotIn("ENGINE", ddl)

    def test_attribute_upsert_replaces_row(self) -> None:
        sql = self.dialect.upsert("users", ATTRIBUTE_COLUMNS, ATTRIBUTE_KEY_COLUMNS, replace=True)
        self.assertTrue(sql.startswith('INSERT OR REPLACE INTO "users"'))

    def test_keyed_upsert_updates_in_place(self) -> None:
        sql = self.dialect.upsert("towns", ("Id", "Name", "Level"), ("Id",))

        self.assertIn('ON CONFLICT("Id") DO UPDATE SET', sql)
        self.assertIn('"Name" = excluded."Name"', sql)
        self.assertNotIn('"Id" = excluded', sql)

    def test_insert_ignore(self) -> None:
        sql = self.dialect.insert_ignore("town_invitations", ("PlayerId", "TownId"))
        self.assertTrue(sql.startswith('INSERT OR IGNORE INTO "town_invitations"'))

    def test_table_exists_reads_sqlite_master(self) -> None:
        self.assertIn("sqlite_master", self.dialect.table_exists_query())

    def test_engine_options_share_one_connection(self) -> None:
        options = self.dialect.engine_options()
        self.assertIs(StaticPool, options["poolclass"])
        self.assertFalse(options["connect_args"]["check_same_thread"])

    def test_quote_escapes_embedded_quotes(self) -> None:
        self.assertEqual('"we""ird"', self.dialect.quote('we"ird'))


class SchemaRenderingTests(unittest.TestCase):
    def test_domain_schema_covers_every_town_table(self) -> None:
        statements = render_domain_schema(SqliteDialect())
        joined = "\n".join(statements)

        self.assertEqual(5, len(statements))
        for table in ("towns", "town_plots", "town_citizens", "town_ranks", "town_invitations"):
            self.assertIn(f'"{table}"', joined)
        self.assertIn('UNIQUE ("Name")', joined)
        self.assertIn('"XpToNextLevel" INTEGER NOT NULL DEFAULT 1500', joined)

    def test_namespace_is_lowercased(self) -> None:
        self.assertEqual("users", normalize_namespace("  USERS "))

    def test_namespace_must_be_plain_identifier(self) -> None:
        for bad in ("", "users; DROP TABLE towns", "9lives", "with space"):
            with self.subTest(bad=bad):
                with self.assertRaises(SchemaFailure):
                    normalize_namespace(bad)


if __name__ == "__main__":
    unittest.main()
