from __future__ import annotations

from typing import Any, Mapping

from crm.db import utc_timestamp
from crm.infrastructure.repositories.base import BaseRepository


ITEM_WRITABLE_COLUMNS = (
    "cProduct",
    "qProduct",
    "vProduct",
    "vProductCC",
    "vProductOriginal",
    "tProduct",
    "vIPI",
    "vCST",
    "TTD",
    "ai_decision_id",
)

_ITEM_SELECT = """
    SELECT
        i.*,
        inv.id AS product_id,
        inv.modelo AS product_model,
        inv.marca AS product_brand,
        inv.nome AS product_name,
        inv.ncm AS product_ncm,
        inv.motor AS product_motor,
        inv.tampo AS product_tampo
    FROM mak.icart i
    LEFT JOIN mak.inv inv ON inv.id = i.cProduct
"""


class CartItemRepository(BaseRepository):
    def find_by_lead(self, db, lead_id: int) -> list[dict]:
        rows = db.execute(
            f"{_ITEM_SELECT} WHERE i.cSCart = ? ORDER BY i.cCart ASC",
            (lead_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def find_by_id(self, db, item_id: int) -> dict | None:
        row = db.execute(f"{_ITEM_SELECT} WHERE i.cCart = ?", (item_id,)).fetchone()
        return dict(row) if row else None

    def find_by_lead_and_product(self, db, lead_id: int, product_id: int) -> dict | None:
        row = db.execute(
            f"{_ITEM_SELECT} WHERE i.cSCart = ? AND i.cProduct = ? ORDER BY i.cCart ASC LIMIT 1",
            (lead_id, product_id),
        ).fetchone()
        return dict(row) if row else None

    def create(self, db, lead_id: int, values: Mapping[str, Any]) -> int:
        columns = ("cSCart",) + ITEM_WRITABLE_COLUMNS + ("dInquiry",)
        params = [lead_id]
        params.extend(values.get(column) for column in ITEM_WRITABLE_COLUMNS)
        params.append(values.get("dInquiry") or utc_timestamp())
        placeholders = ", ".join("?" for _ in columns)
        row = db.execute(
            f"""
            INSERT INTO mak.icart ({", ".join(columns)})
            VALUES ({placeholders})
            RETURNING cCart AS id
            """,
            params,
        ).fetchone()
        return self.inserted_id(row)

    def update(self, db, item_id: int, values: Mapping[str, Any]) -> None:
        columns = [column for column in ITEM_WRITABLE_COLUMNS if column in values]
        if not columns:
            return
        assignments = ", ".join(f"{column} = ?" for column in columns)
        db.execute(
            f"UPDATE mak.icart SET {assignments} WHERE cCart = ?",
            [*[values[column] for column in columns], item_id],
        )

    def set_quantity(self, db, item_id: int, quantity: float) -> None:
        db.execute("UPDATE mak.icart SET qProduct = ? WHERE cCart = ?", (float(quantity), item_id))

    def increment_quantity(self, db, item_id: int, delta: float) -> None:
        db.execute("UPDATE mak.icart SET qProduct = qProduct + ? WHERE cCart = ?", (float(delta), item_id))

    def set_times(self, db, item_id: int, times: int) -> None:
        db.execute("UPDATE mak.icart SET tProduct = ? WHERE cCart = ?", (int(times), item_id))

    def set_taxes(self, db, item_id: int, ipi: float, st: float) -> None:
        db.execute("UPDATE mak.icart SET vIPI = ?, vCST = ? WHERE cCart = ?", (ipi, st, item_id))

    def delete(self, db, item_id: int) -> None:
        db.execute("DELETE FROM mak.icart WHERE cCart = ?", (item_id,))

    def delete_by_lead(self, db, lead_id: int) -> None:
        db.execute("DELETE FROM mak.icart WHERE cSCart = ?", (lead_id,))

    def calculate_totals(self, db, lead_id: int) -> dict:
        row = db.execute(
            """
            SELECT
                COUNT(*) AS item_count,
                COALESCE(SUM(qProduct), 0) AS total_quantity,
                COALESCE(SUM(qProduct * vProduct), 0) AS subtotal,
                COALESCE(SUM(qProduct * vProductCC), 0) AS consumer_subtotal,
                COALESCE(SUM(vIPI), 0) AS total_ipi,
                COALESCE(SUM(vCST), 0) AS total_st
            FROM mak.icart
            WHERE cSCart = ?
            """,
            (lead_id,),
        ).fetchone()
        subtotal = float(row["subtotal"] or 0)
        consumer_subtotal = float(row["consumer_subtotal"] or 0)
        total_ipi = float(row["total_ipi"] or 0)
        total_st = float(row["total_st"] or 0)
        return {
            "itemCount": int(row["item_count"] or 0),
            "totalQuantity": float(row["total_quantity"] or 0),
            "subtotal": subtotal,
            "consumerSubtotal": consumer_subtotal,
            "totalIPI": total_ipi,
            "totalST": total_st,
            "total": subtotal + total_ipi + total_st,
            "consumerTotal": consumer_subtotal + total_ipi + total_st,
        }
