from __future__ import annotations

import copy
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy import select

from papertable.infrastructure.stores.models import Base, KeyValueModel
from papertable.infrastructure.stores.sqlalchemy_db import SessionProvider, get_db_url


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlAlchemyKeyValueStore:
    """JSON key-value persistence backed by a single SQL table."""

    def __init__(self, db_url: Optional[str] = None, *, auto_create_schema: bool = True):
        self.db_url = db_url or get_db_url()
        self._provider = SessionProvider(self.db_url)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    def get(self, key: str) -> Any:
        k = (key or "").strip()
        if not k:
            return None
        with self._provider.session() as session:
            row = session.execute(
                select(KeyValueModel).where(KeyValueModel.key == k)
            ).scalar_one_or_none()
            return row.get_value() if row else None

    def set(self, key: str, value: Any) -> None:
        k = (key or "").strip()
        if not k:
            raise ValueError("key is required")

        with self._provider.session() as session:
            row = session.execute(
                select(KeyValueModel).where(KeyValueModel.key == k)
            ).scalar_one_or_none()
            if row is None:
                row = KeyValueModel(key=k, updated_at=_utcnow())
            row.set_value(value)
            row.updated_at = _utcnow()
            session.add(row)
            session.commit()
        logger.debug(f"kv set key={k}")

    def delete(self, key: str) -> bool:
        with self._provider.session() as session:
            row = session.execute(
                select(KeyValueModel).where(KeyValueModel.key == (key or "").strip())
            ).scalar_one_or_none()
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def close(self) -> None:
        self._provider.engine.dispose()


class InMemoryKeyValueStore:
    """Process-local store. Values are JSON round-tripped to match SQL semantics."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        self.set_calls = 0
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value, ensure_ascii=False)

    def get(self, key: str) -> Any:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        self.set_calls += 1
        self._data[key] = json.dumps(copy.deepcopy(value), ensure_ascii=False)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def close(self) -> None:
        return None
