# src/papertable/application/workflows/task_planner.py
"""
Batch task planning.

Planning reads only the TableConfig document and the source kind of each
row; it never looks at rendered state and never mutates anything.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Mapping, Sequence

from papertable.domain.paper import Paper
from papertable.domain.table import (
    ExtractionTask,
    GenerationTask,
    PaperId,
    SortOrder,
    SourceKind,
    TableConfig,
)

logger = logging.getLogger(__name__)

SourceKindLookup = Callable[[PaperId], SourceKind]


def _memoized(lookup: SourceKindLookup) -> SourceKindLookup:
    cache: Dict[PaperId, SourceKind] = {}

    def resolve(paper_id: PaperId) -> SourceKind:
        if paper_id not in cache:
            cache[paper_id] = lookup(paper_id)
        return cache[paper_id]

    return resolve


def _relevant_rows(config: TableConfig, visible_row_paper_ids: Iterable[PaperId]) -> List[PaperId]:
    added = set(config.added_paper_ids)
    rows: List[PaperId] = []
    seen = set()
    for paper_id in visible_row_paper_ids:
        key = str(paper_id)
        if key in added and key not in seen:
            seen.add(key)
            rows.append(key)
    return rows


def plan_tasks(
    config: TableConfig,
    visible_row_paper_ids: Sequence[PaperId],
    source_kind: SourceKindLookup,
) -> List[GenerationTask]:
    """
    One task per empty (row, visible computed column) cell that has a source.

    Ordered by row, then column. Rows not added to the table are ignored and
    repeated row ids are planned once, so no two tasks share a cell.
    """
    columns = config.computed_columns(visible_only=True)
    if not columns:
        return []

    kind_of = _memoized(source_kind)
    tasks: List[GenerationTask] = []
    for paper_id in _relevant_rows(config, visible_row_paper_ids):
        pending = [c for c in columns if not config.has_value(paper_id, c.id)]
        if not pending:
            continue
        kind = kind_of(paper_id)
        if kind == SourceKind.NONE:
            continue
        for column in pending:
            tasks.append(GenerationTask(paper_id=paper_id, column=column, source_kind=kind))

    logger.debug(f"Planned {len(tasks)} generation tasks for table {config.id}")
    return tasks


def plan_extraction_tasks(
    config: TableConfig,
    visible_row_paper_ids: Sequence[PaperId],
    source_kind: SourceKindLookup,
) -> List[ExtractionTask]:
    """One OCR task per visible row that only has a PDF to generate from."""
    kind_of = _memoized(source_kind)
    return [
        ExtractionTask(paper_id=paper_id)
        for paper_id in _relevant_rows(config, visible_row_paper_ids)
        if kind_of(paper_id) == SourceKind.PDF
    ]


def _matches(config: TableConfig, paper: Paper, query: str) -> bool:
    haystack = [paper.title, ", ".join(paper.authors), str(paper.year or "")]
    haystack.extend((config.generated_data.get(paper.id) or {}).values())
    return any(query in (value or "").lower() for value in haystack)


def _sort_key(paper: Paper, sort_by: str):
    if sort_by == "year":
        # Papers without a year sort last in ascending order.
        return (paper.year is None, paper.year or 0)
    if sort_by == "author":
        return (paper.authors[0].lower() if paper.authors else "",)
    return ((paper.title or "").lower(),)


def build_rows(config: TableConfig, papers: Mapping[PaperId, Paper]) -> List[PaperId]:
    """
    Visible row ids: added papers that still exist, filtered and sorted.

    The filter is a case-insensitive substring match over title, authors,
    year and generated values.
    """
    rows = [papers[p] for p in config.added_paper_ids if p in papers]

    query = (config.filter_query or "").strip().lower()
    if query:
        rows = [paper for paper in rows if _matches(config, paper, query)]

    if config.sort_by in ("title", "author", "year"):
        rows.sort(
            key=lambda paper: _sort_key(paper, config.sort_by),
            reverse=config.sort_order == SortOrder.DESC,
        )
    return [paper.id for paper in rows]


def page_rows(rows: Sequence[PaperId], page: int, page_size: int) -> List[PaperId]:
    """Rows on a 1-based page. Pages past the end are empty."""
    size = max(1, int(page_size))
    start = (max(1, int(page)) - 1) * size
    return list(rows[start:start + size])
