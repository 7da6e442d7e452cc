from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from papertable.application.ports.kv_store_port import KeyValuePort
from papertable.domain.table import ColumnPreset, TableConfig

CONFIG_KEY = "table_config"
HISTORY_KEY = "table_history"
PRESETS_KEY = "column_presets"
MAX_HISTORY_ENTRIES = 20


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TableConfigStore:
    """
    Persist papers tables on top of a generic key-value store.

    Layout:
        table_config   -> the table currently open in the UI
        table_history  -> {"entries": [{"config": ..., "used_at": ...}], "max_entries": 20}
        column_presets -> [preset, ...]

    All writes go through one asyncio lock, so concurrent batch tasks that
    each persist a single cell are applied one after another and never
    overwrite each other's read-modify-write.
    """

    def __init__(self, kv: KeyValuePort, *, max_history: int = MAX_HISTORY_ENTRIES):
        self._kv = kv
        self._max_history = max(1, int(max_history))
        self._write_lock = asyncio.Lock()

    # -- current table ---------------------------------------------------

    async def load(self) -> TableConfig:
        raw = await asyncio.to_thread(self._kv.get, CONFIG_KEY)
        if isinstance(raw, dict) and raw:
            return TableConfig.from_dict(raw)
        return TableConfig.new()

    async def save(self, config: TableConfig) -> TableConfig:
        async with self._write_lock:
            return await self._write(config, make_current=True)

    async def load_table(self, table_id: str) -> Optional[TableConfig]:
        current = await asyncio.to_thread(self._kv.get, CONFIG_KEY)
        if isinstance(current, dict) and current.get("id") == table_id:
            return TableConfig.from_dict(current)
        return await self.load_from_history(table_id)

    async def update_table(
        self,
        table_id: str,
        mutator: Callable[[TableConfig], None],
    ) -> Optional[TableConfig]:
        """Atomically load a table, apply ``mutator`` and persist the result."""
        async with self._write_lock:
            config = await self.load_table(table_id)
            if config is None:
                logger.warning(f"update_table: table not found id={table_id}")
                return None
            mutator(config)
            return await self._write(config, make_current=False)

    async def set_cell(self, table_id: str, paper_id: str, column_id: str, value: str) -> bool:
        updated = await self.update_table(
            table_id, lambda t: t.set_cell(paper_id, column_id, value)
        )
        return updated is not None

    async def record_error(self, table_id: str, paper_id: str, column_id: str, message: str) -> bool:
        updated = await self.update_table(
            table_id, lambda t: t.set_error(paper_id, column_id, message)
        )
        return updated is not None

    async def _write(self, config: TableConfig, *, make_current: bool) -> TableConfig:
        config.updated_at = _utcnow_iso()
        payload = config.to_dict()

        current = await asyncio.to_thread(self._kv.get, CONFIG_KEY)
        is_current = isinstance(current, dict) and current.get("id") == config.id
        if make_current or is_current or not current:
            await asyncio.to_thread(self._kv.set, CONFIG_KEY, payload)

        history = await self._load_history_raw()
        entries: List[Dict[str, Any]] = history["entries"]
        entry = {"config": payload, "used_at": _utcnow_iso()}
        for idx, existing in enumerate(entries):
            if (existing.get("config") or {}).get("id") == config.id:
                entries[idx] = entry
                break
        else:
            entries.insert(0, entry)
            del entries[self._max_history:]
        await asyncio.to_thread(self._kv.set, HISTORY_KEY, history)
        return config

    # -- history -----------------------------------------------------------

    async def _load_history_raw(self) -> Dict[str, Any]:
        raw = await asyncio.to_thread(self._kv.get, HISTORY_KEY)
        if not isinstance(raw, dict) or not isinstance(raw.get("entries"), list):
            return {"entries": [], "max_entries": self._max_history}
        raw["max_entries"] = self._max_history
        return raw

    async def get_all_tables(self) -> List[TableConfig]:
        """Tables from history, most recently used first."""
        history = await self._load_history_raw()
        return [
            TableConfig.from_dict(e["config"])
            for e in history["entries"]
            if isinstance(e.get("config"), dict)
        ]

    async def load_from_history(self, table_id: str) -> Optional[TableConfig]:
        history = await self._load_history_raw()
        for entry in history["entries"]:
            config = entry.get("config") or {}
            if config.get("id") == table_id:
                return TableConfig.from_dict(config)
        return None

    async def delete_table(self, table_id: str) -> bool:
        async with self._write_lock:
            history = await self._load_history_raw()
            before = len(history["entries"])
            history["entries"] = [
                e for e in history["entries"] if (e.get("config") or {}).get("id") != table_id
            ]
            await asyncio.to_thread(self._kv.set, HISTORY_KEY, history)

            current = await asyncio.to_thread(self._kv.get, CONFIG_KEY)
            if isinstance(current, dict) and current.get("id") == table_id:
                await asyncio.to_thread(self._kv.set, CONFIG_KEY, {})
            deleted = len(history["entries"]) < before
        if deleted:
            logger.info(f"Deleted table {table_id}")
        return deleted

    async def clear(self) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._kv.set, CONFIG_KEY, {})
            await asyncio.to_thread(
                self._kv.set, HISTORY_KEY, {"entries": [], "max_entries": self._max_history}
            )

    # -- column presets ------------------------------------------------------

    async def load_presets(self) -> List[ColumnPreset]:
        raw = await asyncio.to_thread(self._kv.get, PRESETS_KEY)
        if not isinstance(raw, list):
            return []
        return [ColumnPreset.from_dict(p) for p in raw if isinstance(p, dict)]

    async def save_preset(self, preset: ColumnPreset) -> None:
        async with self._write_lock:
            presets = await self.load_presets()
            for idx, existing in enumerate(presets):
                if existing.id == preset.id:
                    presets[idx] = preset
                    break
            else:
                presets.append(preset)
            await asyncio.to_thread(self._kv.set, PRESETS_KEY, [p.to_dict() for p in presets])
        logger.info(f"Saved column preset: {preset.name}")

    async def delete_preset(self, preset_id: str) -> bool:
        async with self._write_lock:
            presets = await self.load_presets()
            remaining = [p for p in presets if p.id != preset_id]
            await asyncio.to_thread(self._kv.set, PRESETS_KEY, [p.to_dict() for p in remaining])
        return len(remaining) < len(presets)
