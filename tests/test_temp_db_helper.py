import os
import tempfile
import unittest

from crm import create_app
from crm.config import Config
from crm.db import close_db, get_db
from tests.helpers.temp_db import TempDbSandbox, assert_safe_temp_db_path


class TempDbHelperTest(unittest.TestCase):
    def test_sandbox_lists_one_file_per_attached_schema(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_layout", stock_suffixes=("0101", "0202"))
        try:
            self.assertTrue(sandbox.db_path.startswith(tempfile.gettempdir()))
            self.assertEqual(
                sorted(sandbox.schema_files),
                ["NFE", "csuite_pricing", "mak", "mak_0101", "mak_0202", "staging"],
            )
            self.assertTrue(sandbox.schema_path("mak_0202").endswith("crm_vendas_test.mak_0202.db"))
        finally:
            sandbox.cleanup()

    def test_app_writes_schema_files_that_cleanup_removes(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_cleanup")
        app = create_app(sandbox.make_config(Config, TESTING=True))
        with app.app_context():
            get_db().execute("SELECT 1").fetchone()
            close_db()

        self.assertTrue(sandbox.table_exists("mak", "sCart"))
        self.assertTrue(sandbox.table_exists("mak_0101", "Estoque"))
        self.assertFalse(sandbox.table_exists("mak_9999", "Estoque"))

        sandbox.cleanup()
        self.assertFalse(os.path.exists(sandbox.schema_path("mak")))
        self.assertFalse(os.path.exists(sandbox.temp_dir))

    def test_disallow_workspace_paths(self) -> None:
        workspace_db = os.path.join(os.getcwd(), "crm_vendas_test.db")
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(workspace_db)

    def test_disallow_development_database_name(self) -> None:
        dev_db = os.path.join(tempfile.gettempdir(), "qualquer", "crm_vendas.db")
        with self.assertRaises(ValueError):
            assert_safe_temp_db_path(dev_db)

    def test_make_config_points_app_at_sandbox(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_config", stock_suffixes=("0101", "0202"))
        try:
            base = type("BaseConfig", (), {"DB_PATH": "database/crm_vendas.db", "INSIGHTS_SCHEDULER_ENABLED": True})
            config = sandbox.make_config(base, TESTING=True)

            self.assertEqual(config.DB_PATH, sandbox.db_path)
            self.assertEqual(config.DATABASE_DIR, sandbox.temp_dir)
            self.assertEqual(config.STOCK_UNIT_SUFFIXES, "0101,0202")
            self.assertFalse(config.INSIGHTS_SCHEDULER_ENABLED)
            self.assertTrue(config.TESTING)
        finally:
            sandbox.cleanup()


if __name__ == "__main__":
    unittest.main()
