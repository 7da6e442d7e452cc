from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class KeyValueModel(Base):
    """One JSON document per key (table config, history, presets, model configs)."""

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, default="null")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def set_value(self, value: Any) -> None:
        self.value_json = json.dumps(value, ensure_ascii=False)

    def get_value(self) -> Any:
        try:
            return json.loads(self.value_json or "null")
        except ValueError:
            return None
