from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from papertable.domain.paper import Attachment, Paper

logger = logging.getLogger(__name__)


class ZoteroHostRepository:
    """HostRepositoryPort over the Zotero Web API v3."""

    def __init__(
        self,
        *,
        api_key: str,
        library_type: str,
        library_id: str,
        cache_dir: str | Path = "data/attachments",
        timeout_s: float = 30.0,
        base_url: str = "https://api.zotero.org",
        session: Optional[requests.Session] = None,
    ):
        self.api_key = str(api_key or "").strip()
        self.timeout_s = timeout_s
        self.base_url = base_url.rstrip("/")
        self.cache_dir = Path(cache_dir)
        self._library = self._library_path(library_type, library_id)
        self._http = session or requests.Session()
        self._user_agent = "papertable/1.0"

    # -- items ---------------------------------------------------------------

    def get_item(self, item_id: str) -> Optional[Paper]:
        item = self._get_json(f"/items/{item_id}")
        if not isinstance(item, dict):
            return None
        children = self._children(item_id)
        return self.zotero_item_to_paper(item, children)

    def list_items(self, *, limit: int = 100, start: int = 0) -> List[Paper]:
        """Top-level items, without child lookups (note/attachment ids left empty)."""
        payload = self._get_json(
            "/items/top",
            params={
                "format": "json",
                "limit": max(1, min(int(limit), 100)),
                "start": max(0, int(start)),
            },
        )
        rows = payload if isinstance(payload, list) else []
        return [self.zotero_item_to_paper(row, []) for row in rows]

    def get_items_by_tag(self, tag: str) -> List[str]:
        payload = self._get_json(
            "/items/top",
            params={"tag": str(tag or "").strip(), "format": "json", "limit": 100},
        )
        rows = payload if isinstance(payload, list) else []
        return [str(row.get("key")) for row in rows if isinstance(row, dict) and row.get("key")]

    def get_attachments(self, item_id: str) -> List[str]:
        return [
            str(child.get("key"))
            for child in self._children(item_id)
            if _item_type(child) == "attachment"
        ]

    def get_attachment(self, attachment_id: str) -> Optional[Attachment]:
        item = self._get_json(f"/items/{attachment_id}")
        if not isinstance(item, dict) or _item_type(item) != "attachment":
            return None
        return self.zotero_attachment(item)

    def get_attachment_file(self, attachment_id: str) -> Optional[Path]:
        target = self.cache_dir / f"{attachment_id}.pdf"
        if target.is_file() and target.stat().st_size > 0:
            return target

        response = self._http.get(
            f"{self.base_url}{self._library}/items/{attachment_id}/file",
            headers=self._headers(),
            timeout=self.timeout_s,
            allow_redirects=True,
        )
        if response.status_code == 404:
            logger.warning(f"Zotero attachment has no stored file: {attachment_id}")
            return None
        response.raise_for_status()

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(response.content)
        logger.info(f"Downloaded attachment {attachment_id} ({len(response.content)} bytes)")
        return target

    # -- notes -----------------------------------------------------------------

    def get_notes(self, item_id: str) -> List[str]:
        return [
            str(child.get("key"))
            for child in self._children(item_id)
            if _item_type(child) == "note"
        ]

    def read_note_text(self, note_id: str) -> str:
        item = self._get_json(f"/items/{note_id}")
        if not isinstance(item, dict):
            return ""
        return str((item.get("data") or {}).get("note") or "")

    def create_note(self, parent_id: str, html: str) -> str:
        response = self._http.post(
            f"{self.base_url}{self._library}/items",
            headers=self._headers(include_json=True),
            json=[{"itemType": "note", "parentItem": parent_id, "note": html}],
            timeout=self.timeout_s,
        )
        response.raise_for_status()
        payload = response.json()
        success = (payload or {}).get("success") or {}
        key = success.get("0")
        if not key:
            failed = (payload or {}).get("failed") or {}
            raise RuntimeError(f"Zotero rejected note creation: {failed.get('0')}")
        logger.info(f"Created note {key} under {parent_id}")
        return str(key)

    def update_note(self, note_id: str, html: str) -> None:
        item = self._get_json(f"/items/{note_id}")
        version = (item or {}).get("version") if isinstance(item, dict) else None
        headers = self._headers(include_json=True)
        if version is not None:
            headers["If-Unmodified-Since-Version"] = str(version)
        response = self._http.patch(
            f"{self.base_url}{self._library}/items/{note_id}",
            headers=headers,
            json={"note": html},
            timeout=self.timeout_s,
        )
        response.raise_for_status()

    # -- mapping ---------------------------------------------------------------

    @staticmethod
    def zotero_item_to_paper(item: Dict[str, Any], children: List[Dict[str, Any]]) -> Paper:
        record = item.get("data") if isinstance(item.get("data"), dict) else {}
        return Paper(
            id=str(item.get("key") or record.get("key") or ""),
            title=str(record.get("title") or "").strip(),
            authors=ZoteroHostRepository._extract_creators(record.get("creators")),
            year=ZoteroHostRepository._extract_year(record.get("date")),
            note_ids=[str(c.get("key")) for c in children if _item_type(c) == "note"],
            attachment_ids=[
                str(c.get("key")) for c in children if _item_type(c) == "attachment"
            ],
        )

    @staticmethod
    def zotero_attachment(item: Dict[str, Any]) -> Attachment:
        record = item.get("data") or {}
        return Attachment(
            id=str(item.get("key") or ""),
            parent_id=record.get("parentItem"),
            title=str(record.get("title") or ""),
            filename=str(record.get("filename") or ""),
            content_type=str(record.get("contentType") or ""),
        )

    @staticmethod
    def _extract_year(value: Any) -> Optional[int]:
        match = re.search(r"(19|20)\d{2}", str(value or ""))
        return int(match.group(0)) if match else None

    @staticmethod
    def _extract_creators(value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        names: List[str] = []
        for creator in value:
            if not isinstance(creator, dict):
                continue
            creator_type = str(creator.get("creatorType") or "").strip().lower()
            if creator_type and creator_type not in {"author", "editor"}:
                continue
            full_name = str(creator.get("name") or "").strip()
            if full_name:
                names.append(full_name)
                continue
            merged = f"{creator.get('firstName') or ''} {creator.get('lastName') or ''}".strip()
            if merged:
                names.append(merged)
        return names

    # -- http ------------------------------------------------------------------

    def _children(self, item_id: str) -> List[Dict[str, Any]]:
        payload = self._get_json(f"/items/{item_id}/children", params={"format": "json"})
        return [c for c in payload if isinstance(c, dict)] if isinstance(payload, list) else []

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self._http.get(
            f"{self.base_url}{self._library}{path}",
            headers=self._headers(),
            params=params,
            timeout=self.timeout_s,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _library_path(library_type: str, library_id: str) -> str:
        bucket = str(library_type or "").strip().lower()
        if bucket not in {"user", "group"}:
            raise ValueError("library_type must be 'user' or 'group'")
        external_id = str(library_id or "").strip()
        if not external_id:
            raise ValueError("library_id is required")
        return f"/{bucket}s/{external_id}"

    def _headers(self, *, include_json: bool = False) -> Dict[str, str]:
        headers = {
            "Zotero-API-Key": self.api_key,
            "Zotero-API-Version": "3",
            "User-Agent": self._user_agent,
            "Accept": "application/json",
        }
        if include_json:
            headers["Content-Type"] = "application/json"
        return headers


def _item_type(item: Dict[str, Any]) -> str:
    return str((item.get("data") or {}).get("itemType") or "")
