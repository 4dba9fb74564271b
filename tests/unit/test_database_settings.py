import sys
from pathlib import Path
import tempfile
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from townkeep.domain.errors import ConfigurationMissing
from townkeep.infrastructure.config import DatabaseSettings, EnvConfigProvider, MappingConfigProvider


class ConfigProviderTests(unittest.TestCase):
    def test_mapping_provider_reads_flat_and_nested_keys(self) -> None:
        flat = MappingConfigProvider({"database.mysql.port": "3307"})
        nested = MappingConfigProvider({"database": {"mysql": {"port": 3308}}})

        self.assertEqual(3307, flat.get_int("database.mysql.port"))
        self.assertEqual(3308, nested.get_int("database.mysql.port"))
        self.assertEqual("fallback", nested.get_string("database.mysql.host", "fallback"))

    def test_mapping_provider_ignores_sections(self) -> None:
        provider = MappingConfigProvider({"database": {"mysql": {"port": 1}}})
        self.assertIsNone(provider.get_string("database.mysql"))

    def test_bad_integers_fall_back_to_default(self) -> None:
        provider = MappingConfigProvider({"database.mysql.port": "abc"})
        self.assertEqual(3306, provider.get_int("database.mysql.port", 3306))

    def test_env_provider_maps_dotted_keys(self) -> None:
        provider = EnvConfigProvider(environ={"TOWNKEEP_DATABASE_MYSQL_HOST": " db.internal "})

        self.assertEqual("TOWNKEEP_DATABASE_MYSQL_HOST", provider.env_name("database.mysql.host"))
        self.assertEqual("db.internal", provider.get_string("database.mysql.host"))

    def test_env_provider_treats_blank_as_missing(self) -> None:
        provider = EnvConfigProvider(environ={"TOWNKEEP_DATABASE_TYPE": "   "})
        self.assertEqual("sqlite", provider.get_string("database.type", "sqlite"))


class DatabaseSettingsTests(unittest.TestCase):
    def test_missing_provider_is_fatal(self) -> None:
        with self.assertRaises(ConfigurationMissing):
            DatabaseSettings.from_provider(None)

    def test_unknown_backend_is_fatal(self) -> None:
        with self.assertRaises(ConfigurationMissing):
            DatabaseSettings.from_provider(MappingConfigProvider({"database.type": "oracle"}))

    def test_defaults(self) -> None:
        settings = DatabaseSettings.from_provider(MappingConfigProvider())

        self.assertEqual("sqlite", settings.backend)
        self.assertEqual("localhost", settings.mysql_host)
        self.assertEqual(3306, settings.mysql_port)
        self.assertEqual("economy", settings.economy_table)

    def test_mysql_url(self) -> None:
        settings = DatabaseSettings.from_provider(
            MappingConfigProvider(
                {
                    "database": {
                        "type": "MySQL",
                        "mysql": {
                            "host": "db",
                            "port": "3310",
                            "database": "towns",
                            "username": "keeper",
                            "password": "s3cret",
                        },
                    }
                }
            )
        )
        url = settings.url()

        self.assertEqual("mysql", settings.backend)
        self.assertEqual("mysql+mysqlconnector", url.drivername)
        self.assertEqual("db", url.host)
        self.assertEqual(3310, url.port)
        self.assertEqual("towns", url.database)
        self.assertEqual("keeper", url.username)
        self.assertEqual("s3cret", url.password)
        self.assertEqual("utf8mb4", url.query["charset"])

    def test_sqlite_memory_url(self) -> None:
        settings = DatabaseSettings(sqlite_path=":memory:")

        self.assertTrue(settings.is_memory)
        self.assertEqual("sqlite+pysqlite", settings.url().drivername)
        self.assertEqual(":memory:", settings.url().database)

    def test_sqlite_directory_is_created(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "nested" / "data" / "store.db"
            DatabaseSettings(sqlite_path=str(target)).ensure_sqlite_directory()

            self.assertTrue(target.parent.is_dir())
            self.assertFalse(target.exists())


if __name__ == "__main__":
    unittest.main()
