import os
import unittest

from crm import create_app
from crm.config import Config
from crm.db import close_db
from tests.helpers.temp_db import TempDbSandbox


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="crm_migrations_test")
        self._prev_env = {key: os.environ.get(key) for key in ("FLASK_ENV", "DATABASE_URL", "DB_PATH")}
        os.environ["FLASK_ENV"] = "development"
        os.environ.pop("DATABASE_URL", None)
        os.environ.pop("DB_PATH", None)

    def tearDown(self) -> None:
        for key, value in self._prev_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        self._temp_db.cleanup()

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        return create_app(self._temp_db.make_config(Config, TESTING=testing, DB_AUTO_INIT=db_auto_init))

    def _has_table(self, schema: str, table_name: str) -> bool:
        return self._temp_db.table_exists(schema, table_name)

    def test_schema_not_created_by_default(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(self._has_table("mak", "sCart"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        self.assertTrue(self._has_table("mak", "sCart"))
        self.assertTrue(self._has_table("mak_0101", "Estoque_TTD_1"))
        self.assertTrue(self._has_table("csuite_pricing", "pricing_decision_events"))

    def test_auto_init_ignored_outside_development(self) -> None:
        os.environ["FLASK_ENV"] = "production"
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        self.assertFalse(self._has_table("mak", "sCart"))

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(self._has_table("mak", "sCart"))
        self.assertTrue(self._has_table("mak_0101", "Estoque"))
        self.assertTrue(self._has_table("csuite_pricing", "pricing_exceptions"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(self._has_table("mak", "sCart"))
        self.assertFalse(self._has_table("csuite_pricing", "pricing_exceptions"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(self._has_table("mak", "sCart"))

    def test_flask_db_schemas_lists_stock_units(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        result = app.test_cli_runner().invoke(args=["db", "schemas"])

        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertIn(f"mak_0101: {self._temp_db.schema_path('mak_0101')}", result.output)
        self.assertIn("csuite_pricing:", result.output)


if __name__ == "__main__":
    unittest.main()
