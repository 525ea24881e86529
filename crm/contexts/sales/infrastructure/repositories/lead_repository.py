from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Tuple

from crm.contexts.sales.domain.lead import LEAD_TYPE_CONVERTED, LEAD_TYPE_DELETED, LEAD_TYPE_OPEN
from crm.db import utc_timestamp
from crm.infrastructure.repositories.base import BaseRepository


LEAD_WRITABLE_COLUMNS = (
    "dCart",
    "cSegment",
    "cNatOp",
    "cCustomer",
    "cUser",
    "cSeller",
    "cCC",
    "cPaymentType",
    "vPaymentTerms",
    "cPaymentTerms",
    "cTransporter",
    "vFreight",
    "vFreightType",
    "cEmitUnity",
    "cLogUnity",
    "cUpdated",
    "dDelivery",
    "xRemarksFinance",
    "xRemarksLogistic",
    "xRemarksNFE",
    "xRemarksOBS",
    "xRemarksManager",
    "cOrderWeb",
    "cType",
    "xBuyer",
    "cPurchaseOrder",
    "cAuthorized",
    "cSource",
    "vComission",
)

_TOTAL_VALUE_SQL = """
    (SELECT COALESCE(SUM(i.qProduct * i.vProduct + COALESCE(i.vIPI, 0) + COALESCE(i.vCST, 0)), 0)
     FROM mak.icart i WHERE i.cSCart = s.cSCart)
"""

_SORT_COLUMNS = {
    "total": "total_value",
    "id": "s.cSCart",
    "customer": "c.nome",
    "date": "s.dCart",
    "orderWeb": "s.cOrderWeb",
    "segment": "s.cSegment",
}


def _is_numeric(term: str) -> bool:
    try:
        float(term)
    except ValueError:
        return False
    return True


class LeadRepository(BaseRepository):
    def _filter_clause(self, filters: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []

        if filters.get("customerId"):
            clauses.append("s.cCustomer = ?")
            params.append(int(filters["customerId"]))

        search = str(filters.get("search") or "").strip()
        if search:
            if _is_numeric(search):
                number = int(float(search))
                clauses.append("(s.cSCart = ? OR s.cCustomer = ? OR s.cOrderWeb = ?)")
                params.extend([number, number, number])
            else:
                like = f"%{search.lower()}%"
                clauses.append(
                    "(LOWER(COALESCE(c.nome, '')) LIKE ? "
                    "OR CAST(s.cOrderWeb AS TEXT) LIKE ? "
                    "OR LOWER(COALESCE(s.xBuyer, '')) LIKE ?)"
                )
                params.extend([like, like, like])

        user_id = filters.get("userId")
        seller_id = filters.get("sellerId")
        if user_id and seller_id and int(user_id) == int(seller_id):
            joiner = "AND" if filters.get("strictUserSeller") else "OR"
            clauses.append(f"(s.cUser = ? {joiner} s.cSeller = ?)")
            params.extend([int(user_id), int(seller_id)])
        else:
            if user_id:
                clauses.append("s.cUser = ?")
                params.append(int(user_id))
            if seller_id:
                clauses.append("s.cSeller = ?")
                params.append(int(seller_id))

        if filters.get("type") is not None:
            clauses.append("s.cType = ?")
            params.append(int(filters["type"]))

        segment = filters.get("segment")
        if "segment" in filters and segment not in ("",):
            empty_segment = "(s.cSegment IS NULL OR s.cSegment = '' OR s.cSegment = '0')"
            if segment is None or segment in ("null", "sem-segmento"):
                clauses.append(empty_segment)
            else:
                clauses.append(f"(s.cSegment = ? OR {empty_segment})")
                params.append(str(segment))

        status = filters.get("status")
        if status == "aberto":
            clauses.append("COALESCE(s.cOrderWeb, 0) = 0")
        elif status == "convertido":
            clauses.append("COALESCE(s.cOrderWeb, 0) <> 0")

        date_from = str(filters.get("dateFrom") or "")[:10]
        date_to = str(filters.get("dateTo") or "")[:10]
        if date_from and date_to and date_from == date_to:
            clauses.append("SUBSTR(s.dCart, 1, 10) = ?")
            params.append(date_from)
        else:
            if date_from:
                clauses.append("SUBSTR(s.dCart, 1, 10) >= ?")
                params.append(date_from)
            if date_to:
                clauses.append("SUBSTR(s.dCart, 1, 10) <= ?")
                params.append(date_to)

        where = " AND ".join(clauses) if clauses else "1=1"
        return where, params

    def find_all(
        self,
        db,
        filters: Mapping[str, Any],
        *,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "date",
        sort_dir: str = "desc",
    ) -> Dict[str, Any]:
        page = max(1, int(page or 1))
        limit = max(1, int(limit or 20))
        offset = (page - 1) * limit
        where, params = self._filter_clause(filters)

        count_row = db.execute(
            f"""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(t.total_value), 0) AS total_value,
                COALESCE(SUM(CASE WHEN COALESCE(t.order_web, 0) <> 0 THEN 1 ELSE 0 END), 0) AS converted_count
            FROM (
                SELECT s.cOrderWeb AS order_web, {_TOTAL_VALUE_SQL} AS total_value
                FROM mak.sCart s
                LEFT JOIN mak.clientes c ON c.id = s.cCustomer
                WHERE {where}
            ) t
            """,
            params,
        ).fetchone()
        total = int(count_row["total"] or 0) if count_row else 0

        direction = "ASC" if str(sort_dir or "").upper() == "ASC" else "DESC"
        column = _SORT_COLUMNS.get(sort_by)
        if column is None:
            order_by = "s.dCart DESC, s.cSCart DESC"
        elif sort_by == "id":
            order_by = f"s.cSCart {direction}"
        else:
            order_by = f"{column} {direction}, s.cSCart DESC"

        rows = db.execute(
            f"""
            SELECT
                s.*,
                c.nome AS customer_nome,
                {_TOTAL_VALUE_SQL} AS total_value,
                (SELECT COUNT(*) FROM mak.icart i WHERE i.cSCart = s.cSCart) AS item_count,
                (SELECT COUNT(*) FROM mak.icart i WHERE i.cSCart = s.cSCart AND i.vProduct > 0) AS priced_item_count
            FROM mak.sCart s
            LEFT JOIN mak.clientes c ON c.id = s.cCustomer
            WHERE {where}
            ORDER BY {order_by}
            LIMIT ? OFFSET ?
            """,
            [*params, limit, offset],
        ).fetchall()

        return {
            "data": self.rows_to_dicts(rows),
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit) if limit else 0,
            },
            "metrics": {
                "totalValue": float(count_row["total_value"] or 0) if count_row else 0.0,
                "convertedCount": int(count_row["converted_count"] or 0) if count_row else 0,
            },
        }

    def find_by_id(self, db, lead_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT
                s.*,
                c.nome AS customer_nome,
                c.ender AS customer_ender,
                c.cidade AS customer_cidade,
                c.estado AS customer_estado,
                c.tipo_pessoa AS customer_tipo_pessoa,
                c.isento_st AS customer_isento_st
            FROM mak.sCart s
            LEFT JOIN mak.clientes c ON c.id = s.cCustomer
            WHERE s.cSCart = ?
            """,
            (lead_id,),
        ).fetchone()
        return dict(row) if row else None

    def create(self, db, values: Mapping[str, Any]) -> int:
        data = {column: values.get(column) for column in LEAD_WRITABLE_COLUMNS}
        data["dCart"] = data.get("dCart") or utc_timestamp()
        columns = ", ".join(LEAD_WRITABLE_COLUMNS)
        placeholders = ", ".join("?" for _ in LEAD_WRITABLE_COLUMNS)
        row = db.execute(
            f"""
            INSERT INTO mak.sCart ({columns})
            VALUES ({placeholders})
            RETURNING cSCart AS id
            """,
            [data[column] for column in LEAD_WRITABLE_COLUMNS],
        ).fetchone()
        return self.inserted_id(row)

    def update(self, db, lead_id: int, values: Mapping[str, Any]) -> None:
        columns = [column for column in LEAD_WRITABLE_COLUMNS if column in values]
        if not columns:
            return
        assignments = ", ".join(f"{column} = ?" for column in columns)
        db.execute(
            f"UPDATE mak.sCart SET {assignments} WHERE cSCart = ?",
            [*[values[column] for column in columns], lead_id],
        )

    def soft_delete(self, db, lead_id: int) -> None:
        db.execute("UPDATE mak.sCart SET cType = ? WHERE cSCart = ?", (LEAD_TYPE_DELETED, lead_id))

    def mark_converted(self, db, lead_id: int, order_id: int) -> int:
        """Flip an open lead to converted. Returns 0 when the lead was no longer open."""
        cursor = db.execute(
            """
            UPDATE mak.sCart
            SET cType = ?, cOrderWeb = ?, cUpdated = 1
            WHERE cSCart = ? AND cType = ? AND (cOrderWeb IS NULL OR cOrderWeb = 0)
            """,
            (LEAD_TYPE_CONVERTED, order_id, lead_id, LEAD_TYPE_OPEN),
        )
        return int(cursor.rowcount or 0)

    def segments(self, db) -> list[str]:
        rows = db.execute(
            """
            SELECT DISTINCT cSegment AS segment
            FROM mak.sCart
            WHERE cSegment IS NOT NULL AND cSegment <> ''
            ORDER BY cSegment ASC
            """
        ).fetchall()
        return [row["segment"] for row in rows]
