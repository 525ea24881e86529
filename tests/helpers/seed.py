from __future__ import annotations

from crm.db import utc_timestamp


STOCK_SUFFIX = "0101"
UNIT_CNPJ = "12345678000101"
FOREIGN_UNIT_CNPJ = "12345678000299"

MACHINE_ID = 100
MOTOR_ID = 200
TABLETOP_ID = 300
PLAIN_ID = 400

CUSTOMER_SP = 10
CUSTOMER_RJ = 20


def seed_catalog(db) -> None:
    """Emitter units, products, customers and commercial metadata shared by the tests."""
    db.execute(
        "INSERT INTO mak.Emitentes (EmitentePOID, CNPJ, UF, nome) VALUES (?, ?, ?, ?)",
        (1, UNIT_CNPJ, "SP", "Matriz Sao Paulo"),
    )
    db.execute(
        "INSERT INTO mak.Emitentes (EmitentePOID, CNPJ, UF, nome) VALUES (?, ?, ?, ?)",
        (2, FOREIGN_UNIT_CNPJ, "SC", "Filial Joinville"),
    )
    products = (
        (MACHINE_ID, "MC-900", "Zoje", "Maquina reta industrial", 1000.0, 600.0, str(MOTOR_ID), str(TABLETOP_ID), "8452.10.00"),
        (MOTOR_ID, "MT-550", "Zoje", "Motor servo 550W", 150.0, 80.0, None, None, "8501.10.00"),
        (TABLETOP_ID, "TP-120", "Zoje", "Tampo 120cm", 50.0, 20.0, None, None, "9403.90.00"),
        (PLAIN_ID, "RL-6204", "NSK", "Rolamento 6204", 100.0, 70.0, None, None, "8482.10.10"),
    )
    for product in products:
        db.execute(
            """
            INSERT INTO mak.inv (id, modelo, marca, nome, revenda, custo, motor, tampo, ncm)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            product,
        )
    db.execute(
        """
        INSERT INTO mak.clientes (id, nome, cidade, estado, tipo_pessoa, isento_st, limite, segmento)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (CUSTOMER_SP, "Confeccoes Aurora", "Sao Paulo", "SP", "J", 0, 5000.0, "1"),
    )
    db.execute(
        """
        INSERT INTO mak.clientes (id, nome, cidade, estado, tipo_pessoa, isento_st, limite, segmento)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (CUSTOMER_RJ, "Malharia Carioca", "Rio de Janeiro", "RJ", "J", 0, 0.0, "1"),
    )
    db.execute("INSERT INTO mak.transportadora (id, nome) VALUES (?, ?)", (9, "Transportadora Padrao"))
    db.execute("INSERT INTO mak.transportadora (id, nome) VALUES (?, ?)", (12, "Rodonaves"))
    db.execute(
        "INSERT INTO mak.payment_types (id_payment_type, nome, overcharge) VALUES (?, ?, ?)",
        (2, "Boleto", 2.0),
    )
    db.execute("INSERT INTO mak.terms (id, terms, descricao) VALUES (?, ?, ?)", (5, "n:30:60", "30/60 dias"))
    db.commit()


def seed_stock(db, product_id: int, normal: float, ttd: float = 0.0, suffix: str = STOCK_SUFFIX) -> None:
    db.execute(
        f"INSERT INTO mak_{suffix}.Estoque (ProdutoPOID, EstoqueDisponivel) VALUES (?, ?)",
        (product_id, normal),
    )
    db.execute(
        f"INSERT INTO mak_{suffix}.Estoque_TTD_1 (ProdutoPOID, EstoqueDisponivel) VALUES (?, ?)",
        (product_id, ttd),
    )
    db.commit()


def stock_levels(db, product_id: int, suffix: str = STOCK_SUFFIX) -> tuple[float, float]:
    normal = db.execute(
        f"SELECT EstoqueDisponivel AS qty FROM mak_{suffix}.Estoque WHERE ProdutoPOID = ?",
        (product_id,),
    ).fetchone()
    ttd = db.execute(
        f"SELECT EstoqueDisponivel AS qty FROM mak_{suffix}.Estoque_TTD_1 WHERE ProdutoPOID = ?",
        (product_id,),
    ).fetchone()
    return float(normal["qty"]), float(ttd["qty"])


def seed_tax_rule(db, state_table: str = "SP", **values) -> None:
    row = {
        "ncm": "8452",
        "state": "BR",
        "people_type": "*",
        "icms": 18.0,
        "reducao_icms": 0.0,
        "ipi": 10.0,
        "indice_st": 40.0,
        "indice_st_mva4": 0.0,
        "indice_st_mva_orig": 0.0,
        "aliquota_st": 18.0,
    }
    row.update(values)
    columns = ", ".join(row)
    placeholders = ", ".join("?" for _ in row)
    db.execute(f"INSERT INTO NFE.Tributacao{state_table} ({columns}) VALUES ({placeholders})", list(row.values()))
    db.commit()


def seed_order(db, *, customer_id: int, seller_id: int, day: str, value: float) -> int:
    row = db.execute(
        """
        INSERT INTO mak.hoje (data, idcli, vendedor, emissor, valor, valor_base)
        VALUES (?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        (f"{day} 10:00:00", customer_id, seller_id, seller_id, value, value),
    ).fetchone()
    db.commit()
    return int(row[0])


def seed_interaction(db, *, customer_id: int, created_at: str | None = None) -> None:
    db.execute(
        "INSERT INTO staging.customer_interactions (customer_id, user_id, type, notes, created_at) VALUES (?, ?, ?, ?, ?)",
        (customer_id, 7, "CALL", "Contato de rotina", created_at or utc_timestamp()),
    )
    db.commit()


def count_rows(db, table: str, where: str = "1=1", params: tuple = ()) -> int:
    row = db.execute(f"SELECT COUNT(*) AS total FROM {table} WHERE {where}", params).fetchone()
    return int(row["total"])
