# src/papertable/domain/table.py
"""
Papers table domain models.

Contains the persisted table schema and the ephemeral batch values:
- ColumnDefinition: a static or computed table column
- TableConfig: authoritative table document, including the generated-value cache
- ColumnPreset: named, reusable column layout
- GenerationTask / ExtractionTask: one unit of batch work
- GenerationOutcome: per-task result of a batch run
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from papertable.domain.errors import ProtectedColumnError

PaperId = str
ColumnId = str
CellKey = Tuple[PaperId, ColumnId]

CORE_COLUMN_IDS = frozenset({"title", "author", "year", "sources"})


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _random_suffix(length: int) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def new_table_id() -> str:
    return f"table_{int(time.time() * 1000)}_{_random_suffix(9)}"


def new_column_id() -> str:
    return f"col_{int(time.time() * 1000)}_{_random_suffix(5)}"


class ColumnKind(str, Enum):
    """Static columns copy bibliographic metadata; computed columns are generated."""

    STATIC = "static"
    COMPUTED = "computed"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SourceKind(str, Enum):
    NOTES = "notes"
    PDF = "pdf"
    NONE = "none"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    EMPTY_SOURCE = "emptySource"
    ERROR = "error"


@dataclass
class ColumnDefinition:
    """A table column. Only computed columns are generation targets."""

    id: ColumnId
    name: str
    kind: ColumnKind = ColumnKind.STATIC
    generation_instruction: str = ""
    visible: bool = True
    sortable: bool = False
    width: int = 150

    @property
    def is_computed(self) -> bool:
        return self.kind == ColumnKind.COMPUTED

    @property
    def is_protected(self) -> bool:
        return self.id in CORE_COLUMN_IDS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "generation_instruction": self.generation_instruction,
            "visible": self.visible,
            "sortable": self.sortable,
            "width": self.width,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnDefinition":
        kind = data.get("kind") or ColumnKind.STATIC.value
        if kind not in {k.value for k in ColumnKind}:
            kind = ColumnKind.STATIC.value
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            kind=ColumnKind(kind),
            generation_instruction=str(data.get("generation_instruction") or ""),
            visible=bool(data.get("visible", True)),
            sortable=bool(data.get("sortable", False)),
            width=int(data.get("width") or 150),
        )


def default_columns() -> List[ColumnDefinition]:
    """Columns every new table starts with."""
    return [
        ColumnDefinition(id="title", name="Title", sortable=True, width=200),
        ColumnDefinition(id="author", name="Author", sortable=True, width=150),
        ColumnDefinition(id="year", name="Year", sortable=True, width=60),
        ColumnDefinition(id="sources", name="Sources", width=100),
        ColumnDefinition(
            id="analysisMethodology",
            name="Analysis Methodology",
            kind=ColumnKind.COMPUTED,
            generation_instruction=(
                "Identify and briefly describe the analysis methodology or "
                "research method used in this paper."
            ),
            width=180,
        ),
    ]


@dataclass
class TableConfig:
    """
    Persisted papers table.

    ``generated_data[p][c]`` is present and non-empty iff generation for
    (p, c) has completed successfully at least once.
    """

    id: str
    name: str = "Default Table"
    columns: List[ColumnDefinition] = field(default_factory=default_columns)
    added_paper_ids: List[PaperId] = field(default_factory=list)
    generated_data: Dict[PaperId, Dict[ColumnId, str]] = field(default_factory=dict)
    generation_errors: Dict[PaperId, Dict[ColumnId, str]] = field(default_factory=dict)
    filter_query: str = ""
    sort_by: str = "title"
    sort_order: SortOrder = SortOrder.ASC
    response_length_budget: int = 100
    filter_library_id: Optional[int] = None
    filter_collection_id: Optional[int] = None
    page_size: int = 25
    current_page: int = 1
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)

    @classmethod
    def new(cls, name: str = "Default Table", paper_ids: Optional[List[PaperId]] = None) -> "TableConfig":
        config = cls(id=new_table_id(), name=name)
        if paper_ids:
            config.add_papers(paper_ids)
        return config

    # -- columns -------------------------------------------------------

    def get_column(self, column_id: ColumnId) -> Optional[ColumnDefinition]:
        for column in self.columns:
            if column.id == column_id:
                return column
        return None

    def computed_columns(self, *, visible_only: bool = True) -> List[ColumnDefinition]:
        return [
            c for c in self.columns if c.is_computed and (c.visible or not visible_only)
        ]

    def add_column(self, name: str, instruction: str = "") -> ColumnDefinition:
        column = ColumnDefinition(
            id=new_column_id(),
            name=name.strip(),
            kind=ColumnKind.COMPUTED,
            generation_instruction=instruction.strip(),
        )
        self.columns.append(column)
        return column

    def update_column(
        self,
        column_id: ColumnId,
        *,
        name: Optional[str] = None,
        instruction: Optional[str] = None,
        visible: Optional[bool] = None,
    ) -> ColumnDefinition:
        column = self.get_column(column_id)
        if column is None:
            raise KeyError(f"Unknown column: {column_id}")
        if name is not None:
            column.name = name.strip()
        if instruction is not None:
            column.generation_instruction = instruction.strip()
        if visible is not None:
            column.visible = bool(visible)
        return column

    def remove_column(self, column_id: ColumnId) -> None:
        column = self.get_column(column_id)
        if column is None:
            raise KeyError(f"Unknown column: {column_id}")
        if column.is_protected:
            raise ProtectedColumnError(f"Column '{column.name}' cannot be deleted")
        self.columns = [c for c in self.columns if c.id != column_id]
        for cells in (self.generated_data, self.generation_errors):
            for paper_id in list(cells):
                cells[paper_id].pop(column_id, None)
                if not cells[paper_id]:
                    del cells[paper_id]

    # -- rows ----------------------------------------------------------

    def add_papers(self, paper_ids: List[PaperId]) -> int:
        existing = set(self.added_paper_ids)
        added = 0
        for paper_id in paper_ids:
            key = str(paper_id)
            if key in existing:
                continue
            existing.add(key)
            self.added_paper_ids.append(key)
            added += 1
        return added

    def remove_papers(self, paper_ids: List[PaperId]) -> int:
        doomed = {str(p) for p in paper_ids}
        before = len(self.added_paper_ids)
        self.added_paper_ids = [p for p in self.added_paper_ids if p not in doomed]
        for paper_id in doomed:
            self.generated_data.pop(paper_id, None)
            self.generation_errors.pop(paper_id, None)
        return before - len(self.added_paper_ids)

    # -- cells ---------------------------------------------------------

    def get_cell(self, paper_id: PaperId, column_id: ColumnId) -> str:
        return (self.generated_data.get(str(paper_id)) or {}).get(column_id) or ""

    def has_value(self, paper_id: PaperId, column_id: ColumnId) -> bool:
        return bool(self.get_cell(paper_id, column_id).strip())

    def set_cell(self, paper_id: PaperId, column_id: ColumnId, value: str) -> None:
        if not value or not value.strip():
            raise ValueError("generated value must be non-empty")
        self.generated_data.setdefault(str(paper_id), {})[column_id] = value
        self.clear_error(paper_id, column_id)

    def clear_cell(self, paper_id: PaperId, column_id: ColumnId) -> None:
        row = self.generated_data.get(str(paper_id))
        if row is None:
            return
        row.pop(column_id, None)
        if not row:
            del self.generated_data[str(paper_id)]

    def get_error(self, paper_id: PaperId, column_id: ColumnId) -> str:
        return (self.generation_errors.get(str(paper_id)) or {}).get(column_id) or ""

    def set_error(self, paper_id: PaperId, column_id: ColumnId, message: str) -> None:
        self.generation_errors.setdefault(str(paper_id), {})[column_id] = message or "error"

    def clear_error(self, paper_id: PaperId, column_id: ColumnId) -> None:
        row = self.generation_errors.get(str(paper_id))
        if row is None:
            return
        row.pop(column_id, None)
        if not row:
            del self.generation_errors[str(paper_id)]

    # -- serialization -------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
            "added_paper_ids": list(self.added_paper_ids),
            "generated_data": {p: dict(cells) for p, cells in self.generated_data.items()},
            "generation_errors": {p: dict(cells) for p, cells in self.generation_errors.items()},
            "filter_query": self.filter_query,
            "sort_by": self.sort_by,
            "sort_order": self.sort_order.value,
            "response_length_budget": self.response_length_budget,
            "filter_library_id": self.filter_library_id,
            "filter_collection_id": self.filter_collection_id,
            "page_size": self.page_size,
            "current_page": self.current_page,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableConfig":
        """Create instance from a stored document; missing fields take defaults."""
        columns_raw = data.get("columns")
        columns = (
            [ColumnDefinition.from_dict(c) for c in columns_raw if isinstance(c, dict)]
            if isinstance(columns_raw, list)
            else default_columns()
        )
        sort_order = str(data.get("sort_order") or SortOrder.ASC.value).lower()
        if sort_order not in {o.value for o in SortOrder}:
            sort_order = SortOrder.ASC.value
        return cls(
            id=str(data.get("id") or new_table_id()),
            name=str(data.get("name") or "Default Table"),
            columns=columns,
            added_paper_ids=[str(p) for p in data.get("added_paper_ids") or []],
            generated_data=_cells_from_json(data.get("generated_data")),
            generation_errors=_cells_from_json(data.get("generation_errors")),
            filter_query=str(data.get("filter_query") or ""),
            sort_by=str(data.get("sort_by") or "title"),
            sort_order=SortOrder(sort_order),
            response_length_budget=max(0, int(data.get("response_length_budget", 100) or 0)),
            filter_library_id=data.get("filter_library_id"),
            filter_collection_id=data.get("filter_collection_id"),
            page_size=max(1, int(data.get("page_size") or 25)),
            current_page=max(1, int(data.get("current_page") or 1)),
            created_at=str(data.get("created_at") or _utcnow_iso()),
            updated_at=str(data.get("updated_at") or _utcnow_iso()),
        )


def _cells_from_json(raw: Any) -> Dict[PaperId, Dict[ColumnId, str]]:
    if not isinstance(raw, dict):
        return {}
    cells: Dict[PaperId, Dict[ColumnId, str]] = {}
    for paper_id, row in raw.items():
        if not isinstance(row, dict):
            continue
        values = {str(k): str(v) for k, v in row.items() if v is not None and str(v)}
        if values:
            cells[str(paper_id)] = values
    return cells


@dataclass
class ColumnPreset:
    """Saved column layout that can be applied to any table."""

    id: str
    name: str
    columns: List[ColumnDefinition] = field(default_factory=list)
    created_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnPreset":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            columns=[ColumnDefinition.from_dict(c) for c in data.get("columns") or []],
            created_at=str(data.get("created_at") or _utcnow_iso()),
        )


@dataclass(frozen=True)
class GenerationTask:
    """One (paper, column) cell to fill. Never persisted."""

    paper_id: PaperId
    column: ColumnDefinition = field(hash=False, compare=False)
    source_kind: SourceKind
    column_id: ColumnId = ""

    def __post_init__(self) -> None:
        if not self.column_id:
            object.__setattr__(self, "column_id", self.column.id)

    @property
    def key(self) -> CellKey:
        return (self.paper_id, self.column_id)


@dataclass(frozen=True)
class ExtractionTask:
    """One paper whose PDF should be turned into a note ("Extract All")."""

    paper_id: PaperId
    source_kind: SourceKind = SourceKind.PDF

    @property
    def key(self) -> CellKey:
        return (self.paper_id, "")


BatchTask = Union[GenerationTask, ExtractionTask]


@dataclass
class GenerationOutcome:
    """Per-task result of a batch run."""

    task: BatchTask
    status: OutcomeStatus
    value: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        paper_id, column_id = self.task.key
        return {
            "paper_id": paper_id,
            "column_id": column_id or None,
            "status": self.status.value,
            "value": self.value,
            "error": self.error,
        }
