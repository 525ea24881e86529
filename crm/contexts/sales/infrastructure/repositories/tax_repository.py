from __future__ import annotations

import logging

from crm.contexts.sales.domain.tax import apply_interstate_override
from crm.db import BRAZILIAN_STATES, quote_identifier, tax_rule_table
from crm.errors import InvalidTaxStateError
from crm.infrastructure.repositories.base import BaseRepository


LOGGER = logging.getLogger("crm.tax")


class TaxRepository(BaseRepository):
    def resolve_rule(
        self,
        db,
        *,
        state: str,
        people_type: str,
        ncm: str,
        origin: int = 1,
        emitter_state: str | None = None,
    ) -> dict | None:
        emitter = str(emitter_state or "SP").strip().upper()
        if emitter not in BRAZILIAN_STATES:
            raise InvalidTaxStateError(payload={"state": emitter})
        table = f"NFE.{quote_identifier(tax_rule_table(emitter))}"

        row = db.execute(
            f"""
            SELECT *
            FROM {table}
            WHERE (ncm = ? OR ? LIKE ncm || '%')
              AND (state = ? OR state = 'BR')
              AND (people_type = ? OR people_type = '*')
            ORDER BY
                LENGTH(ncm) DESC,
                CASE WHEN state = 'BR' THEN 1 ELSE 0 END,
                CASE WHEN people_type = '*' THEN 1 ELSE 0 END
            LIMIT 1
            """,
            (ncm, ncm, state, people_type),
        ).fetchone()
        if row is None:
            LOGGER.info("tax_rule_not_found", extra={"ncm": ncm, "state": state, "emitter_state": emitter})
            return None

        return apply_interstate_override(
            dict(row),
            state=state,
            people_type=people_type,
            origin=origin,
            emitter_state=emitter,
        )

    def emitter_state(self, db, unit_id: int | None) -> str:
        row = db.execute(
            "SELECT UF AS uf FROM mak.Emitentes WHERE EmitentePOID = ?",
            (unit_id or 1,),
        ).fetchone()
        if row is None or not row["uf"]:
            return "SP"
        return str(row["uf"]).strip().upper()
