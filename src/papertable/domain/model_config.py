"""User-defined AI model (chat-completion endpoint) configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List
from urllib.parse import urlparse


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ModelConfig:
    id: str
    name: str
    api_url: str
    api_key: str
    model: str
    is_default: bool = False
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)

    @property
    def completions_endpoint(self) -> str:
        base = self.api_url.rstrip("/")
        return f"{base}/chat/completions"

    def to_dict(self, *, include_secrets: bool = True) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "api_url": self.api_url,
            "api_key": self.api_key if include_secrets else _mask(self.api_key),
            "model": self.model,
            "is_default": self.is_default,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelConfig":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            api_url=str(data.get("api_url") or ""),
            api_key=str(data.get("api_key") or ""),
            model=str(data.get("model") or ""),
            is_default=bool(data.get("is_default", False)),
            created_at=str(data.get("created_at") or _utcnow_iso()),
            updated_at=str(data.get("updated_at") or _utcnow_iso()),
        )


def validate_model_config(payload: Dict[str, Any]) -> List[str]:
    """Return human-readable validation errors (empty when valid)."""
    errors: List[str] = []
    if not str(payload.get("name") or "").strip():
        errors.append("Name is required")

    api_url = str(payload.get("api_url") or "").strip()
    if not api_url:
        errors.append("API URL is required")
    else:
        parsed = urlparse(api_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            errors.append("API URL must be a valid URL")

    if not str(payload.get("api_key") or "").strip():
        errors.append("API Key is required")
    if not str(payload.get("model") or "").strip():
        errors.append("Model is required")
    return errors


def _mask(secret: str) -> str:
    if not secret:
        return ""
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:3]}...{secret[-4:]}"
