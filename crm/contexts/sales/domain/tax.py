from __future__ import annotations

from typing import Any, Dict, Mapping


IPI_DEFAULT_REDUCTION_PERCENT = 35.0
IPI_REDUCTION_OVERRIDES = {
    "8714.10.00": 25.0,
    "7326.90.90": 0.0,
}
ST_ALWAYS_TAXED_NCM = ("2710.19.32", "2710.19.99", "3401.30.00")
ST_DEFAULT_RATE = 18.0
ICMS_DEFAULT_RATE = 12.0
INTERSTATE_IMPORTED_ICMS = 4.0
IMPORTED_ORIGINS = (1, 2)


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def apply_interstate_override(
    rule: Mapping[str, Any],
    *,
    state: str,
    people_type: str,
    origin: int,
    emitter_state: str,
) -> Dict[str, Any]:
    """Interstate sale to a company of imported goods: ICMS 4% with the adjusted MVA index."""
    resolved = dict(rule)
    if state == emitter_state or people_type != "J" or origin not in IMPORTED_ORIGINS:
        return resolved
    resolved["icms"] = INTERSTATE_IMPORTED_ICMS
    resolved["reducao_icms"] = 0.0
    mva4 = _as_float(resolved.get("indice_st_mva4"))
    mva_orig = _as_float(resolved.get("indice_st_mva_orig"))
    if mva4 > 0:
        resolved["indice_st"] = mva4
    elif mva_orig > 0:
        resolved["indice_st"] = mva_orig
    return resolved


def compute_item_taxes(
    item: Mapping[str, Any],
    customer: Mapping[str, Any] | None,
    rule: Mapping[str, Any] | None,
) -> Dict[str, Any]:
    if not rule:
        return {"ipi": 0.0, "st": 0.0}

    customer = customer or {}
    subtotal = _as_float(item.get("vProduct")) * _as_float(item.get("qProduct"))
    ncm = str(rule.get("ncm") or "")

    ipi_rate = _as_float(rule.get("ipi"))
    ipi_value = 0.0
    if ipi_rate > 0:
        reduction = IPI_REDUCTION_OVERRIDES.get(ncm, IPI_DEFAULT_REDUCTION_PERCENT)
        effective_ipi = ipi_rate * (1 - reduction / 100)
        ipi_value = subtotal * effective_ipi / 100

    st_value = 0.0
    exempt = _as_float(item.get("isento_st")) == 1 or _as_float(customer.get("isento_st")) == 1
    really_exempt = exempt and ncm not in ST_ALWAYS_TAXED_NCM
    st_index = _as_float(rule.get("indice_st"))
    if not really_exempt and st_index > 0:
        base_st = subtotal + ipi_value
        base_calc_st = base_st + base_st * st_index / 100
        st_rate = _as_float(rule.get("aliquota_st")) or ST_DEFAULT_RATE
        icms_rate = _as_float(rule.get("icms")) or ICMS_DEFAULT_RATE
        own_icms = subtotal * icms_rate / 100
        st_value = max(0.0, base_calc_st * st_rate / 100 - own_icms)

    return {
        "ipi": round(ipi_value, 2),
        "st": round(st_value, 2),
        "rules": {
            "ipiRate": rule.get("ipi"),
            "stRate": rule.get("indice_st"),
            "icmsRate": rule.get("icms"),
        },
    }
