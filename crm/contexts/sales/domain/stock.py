from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class StockSource(IntEnum):
    NORMAL = 0
    TTD = 1
    MIXED = 99
    INSUFFICIENT = 999


@dataclass(frozen=True)
class StockTables:
    """Resolved stock tables for one emitter unit (``mak_<suffix>.Estoque`` and its TTD pool)."""

    suffix: str
    normal: str
    ttd: str

    def table_for(self, source: StockSource) -> str:
        # Mixed fulfilment debits the normal pool.
        if source == StockSource.TTD:
            return self.ttd
        return self.normal


def cnpj_suffix(cnpj: str | None) -> str:
    return str(cnpj or "")[10:14]


def select_source(normal: float, ttd: float, quantity: float, allow_negative: bool = False) -> StockSource:
    """Pick the pool a sale is fulfilled from: normal, then TTD, then both combined."""
    normal = float(normal or 0)
    ttd = float(ttd or 0)
    quantity = float(quantity or 0)
    if normal >= quantity:
        return StockSource.NORMAL
    if ttd >= quantity:
        return StockSource.TTD
    if normal + ttd >= quantity:
        return StockSource.MIXED
    if allow_negative:
        return StockSource.NORMAL
    return StockSource.INSUFFICIENT


def history_ttd_flag(source: StockSource) -> int:
    if source == StockSource.MIXED:
        return 0
    return int(source)
