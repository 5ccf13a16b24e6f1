from __future__ import annotations

from datetime import date, datetime
from typing import Any, Sequence


class BaseRepository:
    table_name: str = ""

    @staticmethod
    def returned_id(row: Any) -> int:
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def scalar(row: Any, key: str = "total") -> int:
        if not row:
            return 0
        value = row.get(key) if isinstance(row, dict) else row[0]
        return int(value or 0)

    @staticmethod
    def placeholders(values: Sequence[Any]) -> str:
        return ", ".join("?" for _ in values)

    @staticmethod
    def iso_timestamp(value: Any) -> Any:
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value
