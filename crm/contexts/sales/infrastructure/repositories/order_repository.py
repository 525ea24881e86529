from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from crm.contexts.sales.domain.lead import DEFAULT_PAYMENT_TERM_DAYS, logistic_unit
from crm.contexts.sales.domain.stock import StockSource, history_ttd_flag
from crm.contexts.sales.infrastructure.repositories.lead_repository import LeadRepository
from crm.contexts.sales.infrastructure.repositories.stock_repository import StockRepository
from crm.db import utc_timestamp
from crm.errors import InsufficientStockError, LeadAlreadyConvertedError
from crm.infrastructure.repositories.base import BaseRepository
from crm.observability import observe_stock_shortage


LOGGER = logging.getLogger("crm.orders")


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _remarks_summary(lead: Mapping[str, Any]) -> str:
    parts = [
        str(lead.get(key) or "")
        for key in ("xRemarksFinance", "xRemarksLogistic", "xRemarksNFE", "xRemarksOBS", "xRemarksManager")
    ]
    return " | ".join(part for part in parts if part.strip())


class OrderRepository(BaseRepository):
    def __init__(
        self,
        *,
        stock_repository: StockRepository | None = None,
        lead_repository: LeadRepository | None = None,
    ) -> None:
        self.stock_repository = stock_repository or StockRepository()
        self.lead_repository = lead_repository or LeadRepository()

    @staticmethod
    def compute_totals(lead: Mapping[str, Any], items: Sequence[Mapping[str, Any]]) -> dict:
        subtotal = 0.0
        total_ipi = 0.0
        total_st = 0.0
        total_quantity = 0.0
        for item in items:
            subtotal += _num(item.get("vProduct")) * _num(item.get("qProduct"))
            total_ipi += _num(item.get("vIPI"))
            total_st += _num(item.get("vCST"))
            total_quantity += _num(item.get("qProduct"))
        freight = _num(lead.get("vFreight"))
        return {
            "subtotal": subtotal,
            "total_ipi": total_ipi,
            "total_st": total_st,
            "total_quantity": total_quantity,
            "freight": freight,
            "total": subtotal + total_ipi + total_st + freight,
        }

    def create_from_lead(self, db, lead: Mapping[str, Any], items: Sequence[Mapping[str, Any]], user_id: int | None) -> int:
        """Turn an open lead into an order header plus history lines, debiting stock.

        Everything runs inside one transaction: a shortage on any line rolls back
        the header, the lines already written and every stock debit.
        """
        totals = self.compute_totals(lead, items)
        unit = logistic_unit(lead)

        with db.transaction():
            order_row = db.execute(
                """
                INSERT INTO mak.hoje (
                    data, nop, idcli, idcom, emissor, vendedor, pg, terms, fprazo, prazo,
                    idtr, frete, EmissorPOID, UnidadeLogistica, datae, crossover, obs,
                    obsfinanc, obslogistic, obsnfe, valor_base, valor_st, valor_ipi,
                    valor, usvale, comissao_revenda, entrada, spedido, source
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                (
                    utc_timestamp(),
                    lead.get("cNatOp"),
                    lead.get("cCustomer"),
                    lead.get("cCC") or 0,
                    user_id,
                    lead.get("cSeller") or user_id,
                    lead.get("cPaymentType"),
                    str(lead.get("vPaymentTerms") or 0),
                    lead.get("cPaymentTerms"),
                    DEFAULT_PAYMENT_TERM_DAYS,
                    lead.get("cTransporter") or 9,
                    totals["freight"],
                    unit,
                    unit,
                    lead.get("dDelivery") or utc_timestamp(),
                    lead.get("cOrderWeb") or 0,
                    _remarks_summary(lead),
                    lead.get("xRemarksFinance") or "",
                    lead.get("xRemarksLogistic") or "",
                    lead.get("xRemarksNFE") or "",
                    totals["subtotal"],
                    totals["total_st"],
                    totals["total_ipi"],
                    totals["total"],
                    totals["total"],
                    lead.get("vComission") or 0,
                    0,
                    lead.get("cOrderWeb") or 0,
                    lead.get("cSource") or 0,
                ),
            ).fetchone()
            order_id = self.inserted_id(order_row)

            tables = self.stock_repository.resolve_tables(db, lead.get("cEmitUnity") or 1)
            for item in items:
                product_id = int(item["cProduct"])
                quantity = _num(item.get("qProduct"))
                source = self.stock_repository.select_fulfillment_source(db, product_id, quantity, tables)
                if source == StockSource.INSUFFICIENT:
                    observe_stock_shortage()
                    LOGGER.warning(
                        "order_stock_shortage",
                        extra={"lead_id": lead.get("cSCart"), "product_id": product_id, "quantity": quantity},
                    )
                    raise InsufficientStockError(product_id, quantity)

                unit_price = _num(item.get("vProduct"))
                db.execute(
                    """
                    INSERT INTO mak.hist (
                        quant, vezes, valor, valor_base, vProduct, vProductCC,
                        aliquota_ipi, valor_ipi, valor_st, entrada, tabela,
                        pedido, idcli, isbn, estoque, obs, TTD
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        quantity,
                        item.get("tProduct") or 1,
                        unit_price * quantity,
                        unit_price,
                        unit_price,
                        _num(item.get("vProductCC")) or unit_price,
                        0,
                        _num(item.get("vIPI")),
                        _num(item.get("vCST")),
                        0,
                        _num(item.get("vProductOriginal")) or unit_price,
                        order_id,
                        lead.get("cCustomer"),
                        product_id,
                        0,
                        "",
                        history_ttd_flag(source),
                    ),
                )
                self.stock_repository.debit(db, product_id, quantity, source, tables, "-")

            if not self.lead_repository.mark_converted(db, int(lead["cSCart"]), order_id):
                raise LeadAlreadyConvertedError(int(lead["cSCart"]))

        LOGGER.info(
            "order_created_from_lead",
            extra={"lead_id": lead.get("cSCart"), "order_id": order_id, "items": len(items), "total": totals["total"]},
        )
        return order_id

    def find_by_id(self, db, order_id: int) -> tuple[dict, list[dict]] | None:
        header = db.execute(
            """
            SELECT
                h.*,
                c.nome AS customer_nome,
                c.cidade AS customer_cidade,
                c.estado AS customer_estado,
                t.nome AS transporter_name,
                e.nome AS emit_name
            FROM mak.hoje h
            LEFT JOIN mak.clientes c ON c.id = h.idcli
            LEFT JOIN mak.transportadora t ON t.id = h.idtr
            LEFT JOIN mak.Emitentes e ON e.EmitentePOID = h.EmissorPOID
            WHERE h.id = ?
            """,
            (order_id,),
        ).fetchone()
        if header is None:
            return None
        lines = db.execute(
            """
            SELECT
                hist.*,
                inv.modelo AS product_model,
                inv.marca AS product_brand,
                inv.nome AS product_name
            FROM mak.hist hist
            LEFT JOIN mak.inv inv ON inv.id = hist.isbn
            WHERE hist.pedido = ?
            ORDER BY hist.id ASC
            """,
            (order_id,),
        ).fetchall()
        return dict(header), self.rows_to_dicts(lines)

    def list_by_lead(self, db, lead_id: int) -> list[dict]:
        rows = db.execute(
            "SELECT id, valor FROM mak.hoje WHERE id = (SELECT cOrderWeb FROM mak.sCart WHERE cSCart = ?)",
            (lead_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)
