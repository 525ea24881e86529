import unittest

from crm import create_app
from crm.config import Config
from crm.contexts.sales.domain.stock import StockSource, StockTables, cnpj_suffix, history_ttd_flag, select_source
from crm.contexts.sales.infrastructure.repositories.stock_repository import StockRepository
from crm.db import close_db, get_db
from crm.errors import InvalidStockUnitError, StockUnitNotFoundError
from tests.helpers.seed import MACHINE_ID, STOCK_SUFFIX, seed_catalog, seed_stock, stock_levels
from tests.helpers.temp_db import TempDbSandbox


class StockSourceRulesTest(unittest.TestCase):
    def test_normal_pool_wins_when_it_covers_the_quantity(self) -> None:
        self.assertEqual(select_source(5, 3, 5), StockSource.NORMAL)

    def test_ttd_pool_used_when_normal_is_short(self) -> None:
        self.assertEqual(select_source(2, 6, 5), StockSource.TTD)

    def test_mixed_when_only_both_pools_together_cover(self) -> None:
        self.assertEqual(select_source(4, 3, 6), StockSource.MIXED)

    def test_insufficient_when_pools_do_not_cover(self) -> None:
        self.assertEqual(select_source(1, 1, 5), StockSource.INSUFFICIENT)

    def test_negative_stock_allowed_falls_back_to_normal(self) -> None:
        self.assertEqual(select_source(0, 0, 5, allow_negative=True), StockSource.NORMAL)

    def test_mixed_debits_normal_table_and_records_zero_flag(self) -> None:
        tables = StockTables(suffix="0101", normal="mak_0101.Estoque", ttd="mak_0101.Estoque_TTD_1")
        self.assertEqual(tables.table_for(StockSource.MIXED), "mak_0101.Estoque")
        self.assertEqual(tables.table_for(StockSource.TTD), "mak_0101.Estoque_TTD_1")
        self.assertEqual(history_ttd_flag(StockSource.MIXED), 0)
        self.assertEqual(history_ttd_flag(StockSource.TTD), 1)
        self.assertEqual(history_ttd_flag(StockSource.NORMAL), 0)

    def test_cnpj_suffix_uses_branch_digits(self) -> None:
        self.assertEqual(cnpj_suffix("12345678000101"), "0101")
        self.assertEqual(cnpj_suffix(None), "")


class StockRepositoryTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="stock_repo")
        self.app = create_app(
            self._temp_db.make_config(Config, TESTING=True, STOCK_UNIT_SUFFIXES=STOCK_SUFFIX)
        )
        self.repository = StockRepository(allowed_suffixes=(STOCK_SUFFIX,))
        with self.app.app_context():
            db = get_db()
            seed_catalog(db)
            seed_stock(db, MACHINE_ID, normal=5, ttd=3)

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_resolves_tables_for_allowed_unit(self) -> None:
        with self.app.app_context():
            tables = self.repository.resolve_tables(get_db(), 1)

        self.assertEqual(tables.suffix, STOCK_SUFFIX)
        self.assertEqual(tables.normal, "mak_0101.Estoque")
        self.assertEqual(tables.ttd, "mak_0101.Estoque_TTD_1")

    def test_unit_outside_allow_list_is_rejected(self) -> None:
        with self.app.app_context():
            with self.assertRaises(InvalidStockUnitError) as ctx:
                self.repository.resolve_tables(get_db(), 2)
        self.assertEqual(ctx.exception.code, "STOCK_UNIT_INVALID")

    def test_unknown_unit_is_not_found(self) -> None:
        with self.app.app_context():
            with self.assertRaises(StockUnitNotFoundError):
                self.repository.resolve_tables(get_db(), 77)

    def test_totals_and_debit(self) -> None:
        with self.app.app_context():
            db = get_db()
            totals = self.repository.totals(db, MACHINE_ID, 1)
            self.assertEqual(totals, {"total_disponivel": 8.0, "normal": 5.0, "ttd": 3.0})

            tables = self.repository.resolve_tables(db, 1)
            source = self.repository.select_fulfillment_source(db, MACHINE_ID, 2, tables)
            self.assertEqual(source, StockSource.NORMAL)
            self.assertEqual(
                self.repository.select_fulfillment_source(db, MACHINE_ID, 7, tables),
                StockSource.MIXED,
            )
            self.repository.debit(db, MACHINE_ID, 2, StockSource.TTD, tables)
            db.commit()

            self.assertEqual(stock_levels(db, MACHINE_ID), (5.0, 1.0))

    def test_debit_rejects_unknown_operator(self) -> None:
        with self.app.app_context():
            db = get_db()
            tables = self.repository.resolve_tables(db, 1)
            with self.assertRaises(ValueError):
                self.repository.debit(db, MACHINE_ID, 1, StockSource.NORMAL, tables, sign="*")


if __name__ == "__main__":
    unittest.main()
