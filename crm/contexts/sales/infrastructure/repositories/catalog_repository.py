from __future__ import annotations

from typing import Dict, Iterable

from crm.infrastructure.repositories.base import BaseRepository


class CatalogRepository(BaseRepository):
    """Read-only lookups over products, customers and the commercial metadata tables."""

    def find_product(self, db, product_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, modelo, marca, nome, revenda, custo, motor, tampo, ncm
            FROM mak.inv
            WHERE id = ?
            LIMIT 1
            """,
            (product_id,),
        ).fetchone()
        return dict(row) if row else None

    def find_products(self, db, product_ids: Iterable[int]) -> Dict[int, dict]:
        ids = sorted({int(product_id) for product_id in product_ids if product_id})
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = db.execute(
            f"""
            SELECT id, modelo, marca, nome, revenda, custo, motor, tampo, ncm
            FROM mak.inv
            WHERE id IN ({placeholders})
            """,
            ids,
        ).fetchall()
        return {int(row["id"]): dict(row) for row in rows}

    def screen_price(self, db, product_id: int) -> float:
        row = db.execute("SELECT revenda FROM mak.inv WHERE id = ? LIMIT 1", (product_id,)).fetchone()
        if row is None or row["revenda"] is None:
            return 0.0
        return float(row["revenda"])

    def find_customer(self, db, customer_id: int | None) -> dict | None:
        if not customer_id:
            return None
        row = db.execute(
            """
            SELECT id, nome, ender, cidade, estado, tipo_pessoa, isento_st, limite, segmento
            FROM mak.clientes
            WHERE id = ?
            LIMIT 1
            """,
            (customer_id,),
        ).fetchone()
        return dict(row) if row else None

    def payment_overcharge(self, db, payment_type_id: int | None) -> float:
        row = db.execute(
            "SELECT overcharge FROM mak.payment_types WHERE id_payment_type = ?",
            (payment_type_id or 1,),
        ).fetchone()
        if row is None or row["overcharge"] is None:
            return 0.0
        return float(row["overcharge"])

    def payment_term_label(self, db, term_id: int) -> str | None:
        row = db.execute("SELECT terms FROM mak.terms WHERE id = ? LIMIT 1", (term_id,)).fetchone()
        if row is None:
            return None
        return row["terms"] or None

    def list_payment_types(self, db) -> list[dict]:
        rows = db.execute(
            """
            SELECT id_payment_type AS id, nome AS name, overcharge
            FROM mak.payment_types
            ORDER BY id_payment_type
            """
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_transporters(self, db) -> list[dict]:
        rows = db.execute("SELECT id, nome AS name FROM mak.transportadora ORDER BY nome ASC").fetchall()
        return self.rows_to_dicts(rows)

    def list_units(self, db) -> list[dict]:
        rows = db.execute(
            """
            SELECT EmitentePOID AS id, nome AS name, UF AS uf
            FROM mak.Emitentes
            ORDER BY nome ASC
            """
        ).fetchall()
        return self.rows_to_dicts(rows)
