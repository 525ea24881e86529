"""Pricing governance events, exceptions, policies and insights staging tables.

Revision ID: 20261018_000002
Revises: 20261018_000001
Create Date: 2026-10-18 00:00:02
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from crm.db import quote_identifier, schema_statements, schema_tables


# revision identifiers, used by Alembic.
revision: str = "20261018_000002"
down_revision: Union[str, Sequence[str], None] = "20261018_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMAS = ("csuite_pricing", "staging")


def _resolve_backend(connection: Connection) -> str:
    dialect = (connection.dialect.name or "").lower()
    if dialect.startswith("postgres"):
        return "postgres"
    return "sqlite"


def upgrade() -> None:
    connection = op.get_bind()
    backend = _resolve_backend(connection)
    for statement in schema_statements(backend, (), SCHEMAS):
        connection.exec_driver_sql(statement)


def downgrade() -> None:
    for schema, table, _columns in reversed(schema_tables((), SCHEMAS)):
        op.execute(f"DROP TABLE IF EXISTS {quote_identifier(schema)}.{quote_identifier(table)}")
