from __future__ import annotations

import json
from typing import Any, Iterable


class BaseRepository:
    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def row_to_dict(row: Any) -> dict | None:
        if row is None:
            return None
        return dict(row)

    @staticmethod
    def inserted_id(row: Any) -> int:
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def to_json(value: Any) -> str | None:
        if value is None:
            return None
        return json.dumps(value, ensure_ascii=True, default=str)

    @staticmethod
    def from_json(value: Any, default: Any = None) -> Any:
        if value in (None, ""):
            return default
        if isinstance(value, (dict, list)):
            return value
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return default
