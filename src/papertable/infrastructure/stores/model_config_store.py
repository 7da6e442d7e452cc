from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from papertable.application.ports.kv_store_port import KeyValuePort
from papertable.domain.model_config import ModelConfig, validate_model_config
from papertable.utils.secret import decrypt as _decrypt_secret
from papertable.utils.secret import encrypt as _encrypt_secret

CONFIGS_KEY = "model_configs"
ACTIVE_MODEL_KEY = "active_model_id"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ModelConfigStore:
    """CRUD for user-defined chat-completion endpoints. API keys are encrypted at rest."""

    def __init__(self, kv: KeyValuePort):
        self._kv = kv

    def list_configs(self) -> List[ModelConfig]:
        raw = self._kv.get(CONFIGS_KEY)
        if not isinstance(raw, list):
            return []
        configs: List[ModelConfig] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            config = ModelConfig.from_dict(item)
            config.api_key = _decrypt_secret(config.api_key)
            configs.append(config)
        return configs

    def _save_configs(self, configs: List[ModelConfig]) -> None:
        rows: List[Dict[str, Any]] = []
        for config in configs:
            row = config.to_dict()
            row["api_key"] = _encrypt_secret(config.api_key)
            rows.append(row)
        self._kv.set(CONFIGS_KEY, rows)
        logger.info(f"Saved {len(rows)} model configurations")

    def get_config(self, config_id: str) -> Optional[ModelConfig]:
        for config in self.list_configs():
            if config.id == config_id:
                return config
        return None

    def get_default(self) -> Optional[ModelConfig]:
        configs = self.list_configs()
        for config in configs:
            if config.is_default:
                return config
        return configs[0] if configs else None

    def get_active_id(self) -> Optional[str]:
        value = self._kv.get(ACTIVE_MODEL_KEY)
        return str(value) if value else None

    def set_active_id(self, config_id: str) -> None:
        self._kv.set(ACTIVE_MODEL_KEY, config_id or "")

    def get_active(self) -> Optional[ModelConfig]:
        """Active model, falling back to the default and then the first config."""
        active_id = self.get_active_id()
        if active_id:
            config = self.get_config(active_id)
            if config is not None:
                return config
        return self.get_default()

    def add_config(self, payload: Dict[str, Any]) -> ModelConfig:
        errors = validate_model_config(payload)
        if errors:
            raise ValueError("; ".join(errors))

        configs = self.list_configs()
        now = _utcnow_iso()
        config = ModelConfig(
            id=str(uuid.uuid4()),
            name=str(payload["name"]).strip(),
            api_url=str(payload["api_url"]).strip(),
            api_key=str(payload["api_key"]).strip(),
            model=str(payload["model"]).strip(),
            is_default=bool(payload.get("is_default", False)),
            created_at=now,
            updated_at=now,
        )
        if config.is_default or not configs:
            for existing in configs:
                existing.is_default = False
            config.is_default = True

        configs.append(config)
        self._save_configs(configs)
        logger.info(f"Added model config: {config.name} ({config.id})")
        return config

    def update_config(self, config_id: str, updates: Dict[str, Any]) -> Optional[ModelConfig]:
        configs = self.list_configs()
        target = next((c for c in configs if c.id == config_id), None)
        if target is None:
            logger.warning(f"Model config not found: {config_id}")
            return None

        merged = {**target.to_dict(), **{k: v for k, v in updates.items() if v is not None}}
        errors = validate_model_config(merged)
        if errors:
            raise ValueError("; ".join(errors))

        if updates.get("is_default"):
            for config in configs:
                config.is_default = False

        target.name = str(merged["name"]).strip()
        target.api_url = str(merged["api_url"]).strip()
        target.api_key = str(merged["api_key"]).strip()
        target.model = str(merged["model"]).strip()
        target.is_default = bool(merged.get("is_default", target.is_default))
        target.updated_at = _utcnow_iso()
        self._save_configs(configs)
        return target

    def delete_config(self, config_id: str) -> bool:
        configs = self.list_configs()
        target = next((c for c in configs if c.id == config_id), None)
        if target is None:
            return False

        configs = [c for c in configs if c.id != config_id]
        if target.is_default and configs:
            configs[0].is_default = True
        self._save_configs(configs)

        if self.get_active_id() == config_id:
            default = self.get_default()
            self.set_active_id(default.id if default else "")
        logger.info(f"Deleted model config: {config_id}")
        return True

    def set_default(self, config_id: str) -> bool:
        configs = self.list_configs()
        if not any(c.id == config_id for c in configs):
            return False
        for config in configs:
            config.is_default = config.id == config_id
        self._save_configs(configs)
        return True
