from __future__ import annotations

import logging
from typing import Sequence

from crm.contexts.sales.domain.stock import StockSource, StockTables, cnpj_suffix, select_source
from crm.db import STOCK_TABLE_NORMAL, STOCK_TABLE_TTD, quote_identifier, stock_schema_name
from crm.errors import InvalidStockUnitError, StockUnitNotFoundError
from crm.infrastructure.repositories.base import BaseRepository


LOGGER = logging.getLogger("crm.stock")


class StockRepository(BaseRepository):
    """Per-unit stock pools. Units map to ``mak_<suffix>`` schemas through their CNPJ."""

    def __init__(self, *, allowed_suffixes: Sequence[str] = (), allow_negative_stock: bool = False) -> None:
        self.allowed_suffixes = tuple(allowed_suffixes)
        self.allow_negative_stock = bool(allow_negative_stock)

    def resolve_tables(self, db, unit_id: int) -> StockTables:
        row = db.execute(
            "SELECT CNPJ AS cnpj FROM mak.Emitentes WHERE EmitentePOID = ?",
            (unit_id,),
        ).fetchone()
        if row is None:
            raise StockUnitNotFoundError(payload={"unitId": unit_id})

        suffix = cnpj_suffix(row["cnpj"])
        if suffix not in self.allowed_suffixes:
            LOGGER.error("stock_unit_suffix_rejected", extra={"unit_id": unit_id, "suffix": suffix})
            raise InvalidStockUnitError(payload={"unitId": unit_id})

        schema = quote_identifier(stock_schema_name(suffix))
        return StockTables(
            suffix=suffix,
            normal=f"{schema}.{STOCK_TABLE_NORMAL}",
            ttd=f"{schema}.{STOCK_TABLE_TTD}",
        )

    def available(self, db, table: str, product_id: int) -> float:
        row = db.execute(
            f"SELECT EstoqueDisponivel AS disponivel FROM {table} WHERE ProdutoPOID = ?",
            (product_id,),
        ).fetchone()
        if row is None or row["disponivel"] is None:
            return 0.0
        return float(row["disponivel"])

    def totals(self, db, product_id: int, unit_id: int) -> dict:
        tables = self.resolve_tables(db, unit_id)
        normal = self.available(db, tables.normal, product_id)
        ttd = self.available(db, tables.ttd, product_id)
        return {"total_disponivel": normal + ttd, "normal": normal, "ttd": ttd}

    def select_fulfillment_source(self, db, product_id: int, quantity: float, tables: StockTables) -> StockSource:
        normal = self.available(db, tables.normal, product_id)
        if normal >= float(quantity):
            return StockSource.NORMAL
        ttd = self.available(db, tables.ttd, product_id)
        source = select_source(normal, ttd, quantity, allow_negative=self.allow_negative_stock)
        if self.allow_negative_stock and normal + ttd < float(quantity):
            LOGGER.warning(
                "stock_check_bypassed",
                extra={"product_id": product_id, "available": normal + ttd, "required": float(quantity)},
            )
        return source

    def debit(
        self,
        db,
        product_id: int,
        quantity: float,
        source: StockSource,
        tables: StockTables,
        sign: str = "-",
    ) -> None:
        if sign not in ("-", "+"):
            raise ValueError(f"Operador de estoque invalido: {sign!r}")
        table = tables.table_for(source)
        db.execute(
            f"""
            UPDATE {table}
            SET EstoqueDisponivel = EstoqueDisponivel {sign} ?
            WHERE ProdutoPOID = ?
            """,
            (float(quantity), product_id),
        )
