import contextlib
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

import psycopg2
import psycopg2.extras
from flask import current_app, g


LOGICAL_SCHEMAS = ("mak", "NFE", "csuite_pricing", "staging")

BRAZILIAN_STATES = (
    "AC", "AL", "AM", "AP", "BA", "CE", "DF", "ES", "GO", "MA", "MG", "MS", "MT", "PA",
    "PB", "PE", "PI", "PR", "RJ", "RN", "RO", "RR", "RS", "SC", "SE", "SP", "TO",
)

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_STOCK_SUFFIX_PATTERN = re.compile(r"^[0-9]{4}$")

Column = Tuple[str, str, str]

_SQLITE_TYPES = {
    "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "id": "INTEGER PRIMARY KEY",
    "int": "INTEGER",
    "num": "REAL",
    "text": "TEXT",
}

_POSTGRES_TYPES = {
    "pk": "SERIAL PRIMARY KEY",
    "id": "INTEGER PRIMARY KEY",
    "int": "INTEGER",
    "num": "DOUBLE PRECISION",
    "text": "TEXT",
}

# Timestamps are stored as ISO text ("YYYY-MM-DD HH:MM:SS") on both backends.
CORE_TABLES: Tuple[Tuple[str, str, Tuple[Column, ...]], ...] = (
    ("mak", "Emitentes", (
        ("EmitentePOID", "id", ""),
        ("CNPJ", "text", "NOT NULL"),
        ("UF", "text", "NOT NULL DEFAULT 'SP'"),
        ("nome", "text", ""),
    )),
    ("mak", "inv", (
        ("id", "id", ""),
        ("modelo", "text", ""),
        ("marca", "text", ""),
        ("nome", "text", ""),
        ("revenda", "num", "NOT NULL DEFAULT 0"),
        ("custo", "num", "NOT NULL DEFAULT 0"),
        ("motor", "text", ""),
        ("tampo", "text", ""),
        ("ncm", "text", ""),
    )),
    ("mak", "clientes", (
        ("id", "id", ""),
        ("nome", "text", ""),
        ("ender", "text", ""),
        ("cidade", "text", ""),
        ("estado", "text", "DEFAULT 'SP'"),
        ("tipo_pessoa", "text", "DEFAULT 'J'"),
        ("isento_st", "int", "NOT NULL DEFAULT 0"),
        ("limite", "num", "NOT NULL DEFAULT 0"),
        ("segmento", "text", ""),
    )),
    ("mak", "transportadora", (
        ("id", "id", ""),
        ("nome", "text", ""),
    )),
    ("mak", "payment_types", (
        ("id_payment_type", "id", ""),
        ("nome", "text", ""),
        ("overcharge", "num", "NOT NULL DEFAULT 0"),
    )),
    ("mak", "terms", (
        ("id", "id", ""),
        ("terms", "text", "NOT NULL"),
        ("descricao", "text", ""),
    )),
    ("mak", "sCart", (
        ("cSCart", "pk", ""),
        ("dCart", "text", ""),
        ("cSegment", "text", ""),
        ("cNatOp", "int", "DEFAULT 27"),
        ("cCustomer", "int", "NOT NULL"),
        ("cUser", "int", "NOT NULL"),
        ("cSeller", "int", ""),
        ("cCC", "int", "DEFAULT 0"),
        ("cPaymentType", "int", "DEFAULT 2"),
        ("vPaymentTerms", "text", ""),
        ("cPaymentTerms", "text", "DEFAULT 'n:30:30'"),
        ("cTransporter", "int", "DEFAULT 9"),
        ("vFreight", "num", "DEFAULT 0"),
        ("vFreightType", "int", "DEFAULT 1"),
        ("cEmitUnity", "int", "DEFAULT 1"),
        ("cLogUnity", "int", "DEFAULT 1"),
        ("cUpdated", "int", "DEFAULT 0"),
        ("dDelivery", "text", ""),
        ("xRemarksFinance", "text", ""),
        ("xRemarksLogistic", "text", ""),
        ("xRemarksNFE", "text", ""),
        ("xRemarksOBS", "text", ""),
        ("xRemarksManager", "text", ""),
        ("cOrderWeb", "int", ""),
        ("cType", "int", "NOT NULL DEFAULT 1"),
        ("xBuyer", "text", ""),
        ("cPurchaseOrder", "text", ""),
        ("cAuthorized", "int", "DEFAULT 0"),
        ("cSource", "int", "DEFAULT 0"),
        ("vComission", "num", "DEFAULT 0"),
    )),
    ("mak", "icart", (
        ("cCart", "pk", ""),
        ("cSCart", "int", "NOT NULL"),
        ("cProduct", "int", "NOT NULL"),
        ("qProduct", "num", "NOT NULL DEFAULT 0"),
        ("vProduct", "num", "NOT NULL DEFAULT 0"),
        ("vProductCC", "num", "DEFAULT 0"),
        ("vProductOriginal", "num", "DEFAULT 0"),
        ("tProduct", "int", "DEFAULT 1"),
        ("vIPI", "num", "DEFAULT 0"),
        ("vCST", "num", "DEFAULT 0"),
        ("TTD", "int", "DEFAULT 0"),
        ("dInquiry", "text", ""),
        ("ai_decision_id", "text", ""),
    )),
    ("mak", "hoje", (
        ("id", "pk", ""),
        ("data", "text", "NOT NULL"),
        ("nop", "int", ""),
        ("idcli", "int", ""),
        ("idcom", "int", "DEFAULT 0"),
        ("emissor", "int", ""),
        ("vendedor", "int", ""),
        ("pg", "int", ""),
        ("terms", "text", ""),
        ("fprazo", "text", ""),
        ("prazo", "int", ""),
        ("idtr", "int", ""),
        ("frete", "num", "DEFAULT 0"),
        ("EmissorPOID", "int", ""),
        ("UnidadeLogistica", "int", ""),
        ("datae", "text", ""),
        ("crossover", "int", "DEFAULT 0"),
        ("obs", "text", ""),
        ("obsfinanc", "text", ""),
        ("obslogistic", "text", ""),
        ("obsnfe", "text", ""),
        ("valor_base", "num", "DEFAULT 0"),
        ("valor_st", "num", "DEFAULT 0"),
        ("valor_ipi", "num", "DEFAULT 0"),
        ("valor", "num", "DEFAULT 0"),
        ("usvale", "num", "DEFAULT 0"),
        ("comissao_revenda", "num", "DEFAULT 0"),
        ("entrada", "num", "DEFAULT 0"),
        ("spedido", "int", "DEFAULT 0"),
        ("source", "int", "DEFAULT 0"),
    )),
    ("mak", "hist", (
        ("id", "pk", ""),
        ("pedido", "int", "NOT NULL"),
        ("idcli", "int", ""),
        ("isbn", "int", "NOT NULL"),
        ("quant", "num", "NOT NULL"),
        ("vezes", "int", "DEFAULT 1"),
        ("valor", "num", "DEFAULT 0"),
        ("valor_base", "num", "DEFAULT 0"),
        ("vProduct", "num", "DEFAULT 0"),
        ("vProductCC", "num", "DEFAULT 0"),
        ("aliquota_ipi", "num", "DEFAULT 0"),
        ("valor_ipi", "num", "DEFAULT 0"),
        ("valor_st", "num", "DEFAULT 0"),
        ("entrada", "num", "DEFAULT 0"),
        ("tabela", "num", "DEFAULT 0"),
        ("estoque", "int", "DEFAULT 0"),
        ("obs", "text", ""),
        ("TTD", "int", "DEFAULT 0"),
    )),
    ("csuite_pricing", "pricing_decision_events", (
        ("id", "pk", ""),
        ("event_id", "text", "NOT NULL UNIQUE"),
        ("event_version", "text", "NOT NULL DEFAULT '1.0'"),
        ("event_timestamp", "text", "NOT NULL"),
        ("source", "text", ""),
        ("action", "text", ""),
        ("customer_id", "int", ""),
        ("seller_id", "int", ""),
        ("lead_id", "int", ""),
        ("order_id", "int", ""),
        ("cart_id", "int", ""),
        ("policy_version", "text", ""),
        ("price_base", "num", "DEFAULT 0"),
        ("price_final", "num", "DEFAULT 0"),
        ("discount_total", "num", "DEFAULT 0"),
        ("discount_percent", "num", "DEFAULT 0"),
        ("margin_absolute", "num", "DEFAULT 0"),
        ("margin_percent", "num", "DEFAULT 0"),
        ("risk_level", "text", ""),
        ("compliance_status", "text", ""),
        ("is_within_policy", "int", "DEFAULT 0"),
        ("requires_approval", "int", "DEFAULT 0"),
        ("is_frozen", "int", "NOT NULL DEFAULT 0"),
        ("frozen_at", "text", ""),
        ("customer_context", "text", ""),
        ("seller_context", "text", ""),
        ("transaction_context", "text", ""),
        ("policy_context", "text", ""),
        ("pricing_result", "text", ""),
        ("metadata", "text", ""),
        ("created_by", "int", ""),
    )),
    ("csuite_pricing", "pricing_exceptions", (
        ("id", "pk", ""),
        ("exception_id", "text", "NOT NULL UNIQUE"),
        ("event_id", "text", "NOT NULL"),
        ("status", "text", "NOT NULL DEFAULT 'PENDING'"),
        ("requested_by", "int", ""),
        ("requested_discount", "num", "DEFAULT 0"),
        ("requested_reason", "text", ""),
        ("margin_impact", "num", "DEFAULT 0"),
        ("expires_at", "text", ""),
        ("approved_by", "int", ""),
        ("approved_at", "text", ""),
        ("approval_notes", "text", ""),
        ("created_at", "text", ""),
    )),
    ("csuite_pricing", "pricing_policies", (
        ("id", "pk", ""),
        ("policy_id", "text", "NOT NULL"),
        ("policy_name", "text", "NOT NULL"),
        ("policy_type", "text", "NOT NULL"),
        ("priority", "int", "NOT NULL DEFAULT 100"),
        ("config", "text", ""),
        ("conditions", "text", ""),
        ("is_active", "int", "NOT NULL DEFAULT 1"),
        ("effective_from", "text", ""),
        ("effective_until", "text", ""),
    )),
    ("staging", "customer_churn_scores", (
        ("customer_id", "id", ""),
        ("score", "int", "NOT NULL DEFAULT 0"),
        ("risk_level", "text", "NOT NULL DEFAULT 'LOW'"),
        ("days_since_last_order", "int", ""),
        ("avg_ticket_variation", "num", ""),
        ("last_calculated", "text", ""),
    )),
    ("staging", "customer_interactions", (
        ("id", "pk", ""),
        ("customer_id", "int", "NOT NULL"),
        ("user_id", "int", ""),
        ("type", "text", ""),
        ("notes", "text", ""),
        ("created_at", "text", "NOT NULL"),
    )),
    ("staging", "alerts", (
        ("id", "pk", ""),
        ("user_id", "int", ""),
        ("type", "text", "NOT NULL DEFAULT 'info'"),
        ("category", "text", "NOT NULL DEFAULT 'GENERAL'"),
        ("title", "text", "NOT NULL"),
        ("description", "text", ""),
        ("reference_id", "text", ""),
        ("is_read", "int", "NOT NULL DEFAULT 0"),
        ("created_at", "text", "NOT NULL"),
    )),
    ("staging", "audit_log", (
        ("id", "pk", ""),
        ("action", "text", "NOT NULL"),
        ("user_id", "int", ""),
        ("user_name", "text", ""),
        ("resource_type", "text", ""),
        ("resource_id", "text", ""),
        ("old_value", "text", ""),
        ("new_value", "text", ""),
        ("ip_address", "text", ""),
        ("user_agent", "text", ""),
        ("request_id", "text", ""),
        ("metadata", "text", ""),
        ("created_at", "text", "NOT NULL"),
    )),
)

STOCK_TABLE_COLUMNS: Tuple[Column, ...] = (
    ("ProdutoPOID", "id", ""),
    ("EstoqueDisponivel", "num", "NOT NULL DEFAULT 0"),
)

TAX_RULE_COLUMNS: Tuple[Column, ...] = (
    ("id", "pk", ""),
    ("ncm", "text", "NOT NULL"),
    ("state", "text", "NOT NULL DEFAULT 'BR'"),
    ("people_type", "text", "NOT NULL DEFAULT '*'"),
    ("icms", "num", "DEFAULT 0"),
    ("reducao_icms", "num", "DEFAULT 0"),
    ("ipi", "num", "DEFAULT 0"),
    ("indice_st", "num", "DEFAULT 0"),
    ("indice_st_mva4", "num", "DEFAULT 0"),
    ("indice_st_mva_orig", "num", "DEFAULT 0"),
    ("aliquota_st", "num", "DEFAULT 0"),
)

STOCK_TABLE_NORMAL = "Estoque"
STOCK_TABLE_TTD = "Estoque_TTD_1"


def _canonical_column_names() -> Dict[str, str]:
    names: Dict[str, str] = {}
    for _schema, _table, columns in CORE_TABLES:
        for name, _kind, _extra in columns:
            names[name.lower()] = name
    for name, _kind, _extra in STOCK_TABLE_COLUMNS + TAX_RULE_COLUMNS:
        names[name.lower()] = name
    return names


_CANONICAL_COLUMNS = _canonical_column_names()


def utc_timestamp(value: datetime | None = None) -> str:
    resolved = value or datetime.now(timezone.utc)
    if resolved.tzinfo is not None:
        resolved = resolved.astimezone(timezone.utc).replace(tzinfo=None)
    return resolved.strftime("%Y-%m-%d %H:%M:%S")


def parse_stock_suffixes(value: object) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items: Iterable[str] = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = [str(item) for item in value]
    else:
        items = [str(value)]
    suffixes: List[str] = []
    for item in items:
        candidate = item.strip()
        if _STOCK_SUFFIX_PATTERN.match(candidate) and candidate not in suffixes:
            suffixes.append(candidate)
    return tuple(suffixes)


def stock_schema_name(suffix: str) -> str:
    return f"mak_{suffix}"


def tax_rule_table(state: str) -> str:
    return f"Tributacao{state}"


def all_schemas(stock_suffixes: Sequence[str]) -> Tuple[str, ...]:
    return LOGICAL_SCHEMAS + tuple(stock_schema_name(suffix) for suffix in stock_suffixes)


def schema_db_path(db_path: str, schema: str) -> str:
    if db_path == ":memory:":
        return ":memory:"
    path = Path(db_path)
    return str(path.with_name(f"{path.stem}.{schema}{path.suffix or '.db'}"))


def quote_identifier(name: str) -> str:
    if not _IDENTIFIER_PATTERN.match(name or ""):
        raise ValueError(f"Identificador SQL invalido: {name!r}")
    return name


class _PostgresCursor:
    """Restores legacy mixed-case column names on rows fetched from postgres."""

    def __init__(self, cursor) -> None:
        self._cursor = cursor

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    @staticmethod
    def _restore(row):
        if row is None:
            return None
        return {_CANONICAL_COLUMNS.get(key, key): value for key, value in row.items()}

    def fetchone(self):
        return self._restore(self._cursor.fetchone())

    def fetchall(self) -> List[dict]:
        return [self._restore(row) for row in self._cursor.fetchall()]

    def __iter__(self) -> Iterator[dict]:
        return iter(self.fetchall())


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._transaction_depth = 0

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return _PostgresCursor(cursor)
        return self._conn.execute(sql, tuple(params or ()))

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in sql.split(";"):
            if statement.strip():
                self.execute(statement)

    @contextlib.contextmanager
    def transaction(self):
        """Run the block atomically: commit on success, rollback and re-raise otherwise."""
        if self._transaction_depth:
            self._transaction_depth += 1
            try:
                yield self
            finally:
                self._transaction_depth -= 1
            return

        self._transaction_depth = 1
        if self.backend == "postgres":
            self._conn.autocommit = False
        try:
            yield self
            self._conn.commit()
        except BaseException:
            self._conn.rollback()
            raise
        finally:
            self._transaction_depth = 0
            if self.backend == "postgres":
                self._conn.autocommit = True

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    def commit(self):
        if self._transaction_depth:
            return
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def _connect_database(db_path: str, stock_suffixes: Sequence[str] = ()) -> Database:
    if db_path.lower().startswith("postgres"):
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    for schema in all_schemas(stock_suffixes):
        conn.execute(
            f"ATTACH DATABASE ? AS {quote_identifier(schema)}",
            (schema_db_path(db_path, schema),),
        )
    return Database("sqlite", conn)


def _configured_suffixes() -> Tuple[str, ...]:
    return parse_stock_suffixes(current_app.config.get("STOCK_UNIT_SUFFIXES"))


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = _connect_database(db_path, _configured_suffixes())
    return g.db


def get_read_db():
    if "db_read" not in g:
        db_path = current_app.config.get("DATABASE_READ_URL") or current_app.config["DB_PATH"]
        g.db_read = _connect_database(db_path, _configured_suffixes())
    return g.db_read


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()
    db_read = g.pop("db_read", None)
    if db_read is not None:
        db_read.close()


def init_db():
    db = get_db()
    suffixes = _configured_suffixes()
    for statement in schema_statements(db.backend, suffixes):
        db.execute(statement)
    db.commit()


def schema_tables(
    stock_suffixes: Sequence[str],
    only_schemas: Sequence[str] | None = None,
) -> List[Tuple[str, str, Tuple[Column, ...]]]:
    tables: List[Tuple[str, str, Tuple[Column, ...]]] = list(CORE_TABLES)
    for state in BRAZILIAN_STATES:
        tables.append(("NFE", tax_rule_table(state), TAX_RULE_COLUMNS))
    for suffix in stock_suffixes:
        schema = stock_schema_name(suffix)
        tables.append((schema, STOCK_TABLE_NORMAL, STOCK_TABLE_COLUMNS))
        tables.append((schema, STOCK_TABLE_TTD, STOCK_TABLE_COLUMNS))
    if only_schemas is None:
        return tables
    wanted = set(only_schemas)
    return [entry for entry in tables if entry[0] in wanted or (entry[0].startswith("mak_") and "mak_*" in wanted)]


def schema_statements(
    backend: str,
    stock_suffixes: Sequence[str],
    only_schemas: Sequence[str] | None = None,
) -> List[str]:
    types = _POSTGRES_TYPES if backend == "postgres" else _SQLITE_TYPES
    statements: List[str] = []
    tables = schema_tables(stock_suffixes, only_schemas)
    if backend == "postgres":
        for schema in dict.fromkeys(entry[0] for entry in tables):
            statements.append(f"CREATE SCHEMA IF NOT EXISTS {quote_identifier(schema)}")

    for schema, table, columns in tables:
        statements.append(_create_table_sql(schema, table, columns, types))
    if only_schemas is not None and "mak" not in only_schemas:
        return statements

    statements.extend(
        [
            "CREATE INDEX IF NOT EXISTS {schema}idx_icart_lead ON {target}icart (cSCart)",
            "CREATE INDEX IF NOT EXISTS {schema}idx_hist_pedido ON {target}hist (pedido)",
        ]
    )
    return [_qualify_index(statement, backend) for statement in statements]


def _create_table_sql(schema: str, table: str, columns: Tuple[Column, ...], types: Dict[str, str]) -> str:
    body = ",\n            ".join(
        f"{quote_identifier(name)} {types[kind]} {extra}".rstrip() for name, kind, extra in columns
    )
    return f"""
        CREATE TABLE IF NOT EXISTS {quote_identifier(schema)}.{quote_identifier(table)} (
            {body}
        )
        """


def _qualify_index(statement: str, backend: str) -> str:
    if "{schema}" not in statement:
        return statement
    # sqlite qualifies the index name, postgres qualifies the table.
    if backend == "postgres":
        return statement.format(schema="", target="mak.")
    return statement.format(schema="mak.", target="")
