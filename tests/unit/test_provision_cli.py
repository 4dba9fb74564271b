import contextlib
import io
import sys
import tempfile
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from townkeep.infrastructure.config import MappingConfigProvider
from townkeep.infrastructure.db.attribute_store import SqlAttributeStore
from townkeep.infrastructure.db.connection import ConnectionManager
from townkeep.infrastructure.db.provision import build_plan, main, split_sql_statements


def _run(argv: list[str], provider: MappingConfigProvider) -> tuple[int, str]:
    buffer = io.StringIO()
    with contextlib.redirect_stdout(buffer):
        code = main(argv, provider=provider)
    return code, buffer.getvalue()


class SplitSqlStatementsTests(unittest.TestCase):
    def test_semicolons_inside_quotes_are_kept(self) -> None:
        statements = split_sql_statements(
            "INSERT INTO demo(txt) VALUES ('alpha;beta');\n"
            'INSERT INTO demo(txt) VALUES ("gamma;delta");\n'
            "SELECT `odd;name` FROM demo"
        )

        self.assertEqual(3, len(statements))
        self.assertIn("alpha;beta", statements[0])
        self.assertIn("gamma;delta", statements[1])
        self.assertEqual("SELECT `odd;name` FROM demo", statements[2])

    def test_comments_are_dropped(self) -> None:
        statements = split_sql_statements(
            "-- CREATE TABLE ignored(id INT);\n"
            "# also ignored;\n"
            "/* block; comment */ CREATE TABLE kept(id INT);\n"
        )

        self.assertEqual(["CREATE TABLE kept(id INT)"], statements)

    def test_blank_statements_are_skipped(self) -> None:
        self.assertEqual(["SELECT 1"], split_sql_statements(";;\n SELECT 1 ;  ;"))


class ProvisionPlanTests(unittest.TestCase):
    def test_default_plan_covers_wipe_namespaces_and_town_tables(self) -> None:
        plan = build_plan(None)

        self.assertEqual(["users", "currency", "info"], plan.namespaces)
        self.assertTrue(plan.include_domain)
        self.assertEqual([], plan.script_statements)

    def test_missing_script_is_reported(self) -> None:
        code, output = _run(["--script", "/nonexistent/extra.sql", "--dry-run"], MappingConfigProvider())

        self.assertEqual(2, code)
        self.assertIn("DDL script not found", output)


class ProvisionCliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.provider = MappingConfigProvider(
            {"database.type": "sqlite", "database.sqlite.path": str(self.root / "data" / "townkeep.db")}
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_dry_run_renders_for_requested_dialect_without_connecting(self) -> None:
        code, output = _run(["--dry-run", "--dialect", "mysql", "--namespace", "Users"], self.provider)

        self.assertEqual(0, code)
        self.assertIn("CREATE TABLE IF NOT EXISTS `users`", output)
        self.assertIn("`KeyName` VARCHAR(255)", output)
        self.assertIn("CREATE TABLE IF NOT EXISTS `towns`", output)
        self.assertIn("Dry run complete. 6 statement(s)", output)
        self.assertFalse((self.root / "data" / "townkeep.db").exists())

    def test_dry_run_rejects_bad_namespace(self) -> None:
        code, output = _run(["--dry-run", "--namespace", "bad name"], self.provider)

        self.assertEqual(2, code)
        self.assertIn("Invalid namespace", output)

    def test_creates_tables_and_runs_script(self) -> None:
        script = self.root / "economy.sql"
        script.write_text(
            "-- balances kept outside the attribute store\n"
            "CREATE TABLE IF NOT EXISTS economy (EntityId TEXT PRIMARY KEY, Note TEXT);\n"
            "INSERT INTO economy (EntityId, Note) VALUES ('bank', 'a;b');\n",
            encoding="utf-8",
        )

        code, output = _run(["--namespace", "users", "--script", str(script)], self.provider)

        self.assertEqual(0, code)
        self.assertIn("Executed 8 of 8 statement(s) successfully.", output)

        with ConnectionManager(self.provider) as connections:
            store = SqlAttributeStore(connections)
            for table in ("users", "towns", "town_plots", "town_citizens", "town_ranks", "town_invitations", "economy"):
                self.assertTrue(store.table_exists(table), table)
            self.assertFalse(store.table_exists("currency"))

    def test_failed_statement_gives_partial_exit_code(self) -> None:
        script = self.root / "broken.sql"
        script.write_text("CREATE TABLE broken (;\nCREATE TABLE fine (id INTEGER);\n", encoding="utf-8")

        code, output = _run(["--namespace", "info", "--no-domain", "--script", str(script)], self.provider)

        self.assertEqual(1, code)
        self.assertIn("Executed 2 of 3 statement(s) successfully.", output)

    def test_invalid_configuration_exits_with_error(self) -> None:
        code, output = _run(["--no-domain"], MappingConfigProvider({"database.type": "oracle"}))

        self.assertEqual(2, code)
        self.assertIn("Database configuration invalid", output)


if __name__ == "__main__":
    unittest.main()
