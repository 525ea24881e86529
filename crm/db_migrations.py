from __future__ import annotations

from pathlib import Path
from typing import List, Tuple

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask

from crm.db import all_schemas, parse_stock_suffixes, schema_db_path


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _normalize_postgres_url(url: str) -> str:
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://") :]
    return url


def _is_postgres(raw_db_path: str) -> bool:
    return _normalize_postgres_url((raw_db_path or "").strip()).startswith(("postgresql://", "postgresql+"))


def to_sqlalchemy_url(raw_db_path: str) -> str:
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH indefinido: informe o arquivo sqlite ou a URL postgres do CRM.")

    normalized = _normalize_postgres_url(raw)
    if _is_postgres(normalized) or normalized.startswith(("sqlite://", "sqlite+pysqlite://")):
        return normalized

    sqlite_path = Path(normalized).expanduser().resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


def schema_locations(app: Flask) -> List[Tuple[str, str]]:
    """Where each CRM schema lives: a sibling sqlite file, or a native postgres schema.

    The stock schemas (`mak_<suffix>`) come from the STOCK_UNIT_SUFFIXES allow-list.
    """
    db_path = str(app.config.get("DB_PATH") or "")
    schemas = all_schemas(parse_stock_suffixes(app.config.get("STOCK_UNIT_SUFFIXES")))
    if _is_postgres(db_path):
        return [(schema, f"postgres schema {schema}") for schema in schemas]
    return [(schema, schema_db_path(db_path, schema)) for schema in schemas]


def build_alembic_config(app: Flask) -> AlembicConfig:
    root = _project_root()
    alembic_ini = root / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError("alembic.ini nao encontrado na raiz do CRM.")

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str((root / "migrations").as_posix()))
    alembic_cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(app.config["DB_PATH"]))
    suffixes = parse_stock_suffixes(app.config.get("STOCK_UNIT_SUFFIXES"))
    alembic_cfg.set_main_option("stock_unit_suffixes", ",".join(suffixes))
    return alembic_cfg


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Migrations do CRM: vendas (mak), estoque por unidade, precos e insights."""

    @db_group.command("upgrade", help="Aplica as migrations de vendas, estoque e precos ate a revisao.")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        cfg = build_alembic_config(app)
        command.upgrade(cfg, revision)
        stock = cfg.get_main_option("stock_unit_suffixes") or "-"
        click.echo(f"Migrations do CRM aplicadas ate {revision} (unidades de estoque: {stock}).")

    @db_group.command("downgrade", help="Desfaz migrations do CRM ate a revisao (padrao: a ultima).")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        cfg = build_alembic_config(app)
        command.downgrade(cfg, revision)
        click.echo(f"Rollback do CRM aplicado ate {revision}.")

    @db_group.command("current", help="Mostra a revisao atual do banco do CRM.")
    def db_current() -> None:
        cfg = build_alembic_config(app)
        command.current(cfg, verbose=True)

    @db_group.command("schemas", help="Lista os schemas do CRM e onde cada um e armazenado.")
    def db_schemas() -> None:
        for schema, location in schema_locations(app):
            click.echo(f"{schema}: {location}")
