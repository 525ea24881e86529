from __future__ import annotations

from typing import Dict


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "lead_created": "Lead criado com sucesso.",
        "lead_updated": "Lead atualizado com sucesso.",
        "lead_deleted": "Lead excluido com sucesso.",
        "lead_converted": "Lead convertido no pedido #{order_id}.",
        "item_added": "Item adicionado ao carrinho.",
        "item_updated": "Item atualizado.",
        "item_removed": "Item removido do carrinho.",
        "taxes_calculated": "Impostos calculados.",
        "price_frozen": "Preco congelado.",
        "exception_requested": "Solicitacao de excecao enviada para aprovacao.",
        "exception_decided": "Solicitacao de excecao atualizada.",
        "alert_read": "Alerta marcado como lido.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "validation_error": "Erro de validacao.",
        "invalid_id": "Identificador invalido.",
        "not_found": "Recurso nao encontrado.",
        "method_not_allowed": "Metodo nao permitido.",
        "permission_denied": "Sem permissao para esta operacao.",
        "lead_not_found": "Lead nao encontrado.",
        "item_not_found": "Item nao encontrado neste lead.",
        "order_not_found": "Pedido nao encontrado.",
        "product_not_found": "Produto nao encontrado.",
        "customer_not_found": "Cliente nao encontrado.",
        "decision_not_found": "Decisao de preco nao encontrada.",
        "exception_not_found": "Solicitacao de excecao nao encontrada.",
        "alert_not_found": "Alerta nao encontrado.",
        "lead_already_converted": "Este lead ja foi convertido em pedido.",
        "empty_cart": "O carrinho esta vazio.",
        "insufficient_stock": "Produto sem estoque disponivel.",
        "stock_unit_not_found": "Unidade emitente nao encontrada.",
        "stock_unit_invalid": "Unidade de estoque nao permitida.",
        "tax_state_invalid": "UF invalida para tabela de tributacao.",
        "price_frozen": "Este item pertence a um pedido com preco congelado.",
        "exception_status_invalid": "Status de excecao invalido.",
        "no_changes": "Nenhuma alteracao informada.",
        "pricing_api_error": "Pricing API error",
        "pricing_api_unavailable": "Pricing API unavailable",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente.",
    },
}


HISTORY_LABELS: Dict[str, Dict[str, str]] = {
    "LEAD_CREATE": {"label": "Lead criado", "icon": "add_circle", "color": "success"},
    "LEAD_UPDATE": {"label": "Lead atualizado", "icon": "edit", "color": "primary"},
    "LEAD_DELETE": {"label": "Lead excluido", "icon": "delete", "color": "error"},
    "LEAD_CONVERT": {"label": "Convertido em pedido", "icon": "check_circle", "color": "success"},
    "ITEM_ADD": {"label": "Item adicionado", "icon": "add_shopping_cart", "color": "info"},
    "ITEM_UPDATE": {"label": "Item atualizado", "icon": "shopping_cart", "color": "primary"},
    "ITEM_DELETE": {"label": "Item removido", "icon": "remove_shopping_cart", "color": "warning"},
}


TRACKED_LEAD_FIELDS = (
    ("customerId", "Cliente"),
    ("freight", "Frete"),
    ("paymentType", "Tipo de Pagamento"),
    ("paymentTerms", "Condicoes de Pagamento"),
    ("deliveryDate", "Data de Entrega"),
    ("remarks", "Observacoes"),
    ("buyer", "Comprador"),
    ("purchaseOrder", "Pedido de Compra"),
)


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None, **values: object) -> str:
    message = get_message("success", key, default)
    if values:
        try:
            return message.format(**values)
        except (KeyError, IndexError):
            return message
    return message


def history_label(action: str) -> Dict[str, str]:
    return dict(HISTORY_LABELS.get(action) or {"label": action, "icon": "info", "color": "default"})
