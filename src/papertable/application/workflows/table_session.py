from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from papertable.application.ports.host_repository_port import HostRepositoryPort
from papertable.application.services.source_resolver import SourceResolver
from papertable.application.workflows.batch_scheduler import (
    BatchScheduler,
    BatchSummary,
    ProgressCallback,
)
from papertable.application.workflows.task_planner import (
    build_rows,
    page_rows,
    plan_extraction_tasks,
    plan_tasks,
)
from papertable.domain.paper import Paper
from papertable.domain.table import (
    ExtractionTask,
    GenerationOutcome,
    GenerationTask,
    OutcomeStatus,
    PaperId,
    SourceKind,
    TableConfig,
)
from papertable.infrastructure.stores.table_store import TableConfigStore

logger = logging.getLogger(__name__)


class TableSession:
    """
    Everything one open papers table needs, in one place.

    Replaces the UI's module-level "current table" globals: several sessions
    can be open at once, each bound to its own table id.
    """

    def __init__(
        self,
        table_id: str,
        *,
        store: TableConfigStore,
        repository: HostRepositoryPort,
        resolver: SourceResolver,
        scheduler: BatchScheduler,
    ):
        self.table_id = table_id
        self.store = store
        self.repository = repository
        self.resolver = resolver
        self.scheduler = scheduler

    async def load(self) -> TableConfig:
        config = await self.store.load_table(self.table_id)
        if config is None:
            raise KeyError(f"Unknown table: {self.table_id}")
        return config

    # -- rows ----------------------------------------------------------

    def get_paper(self, paper_id: PaperId) -> Optional[Paper]:
        return self.repository.get_item(paper_id)

    def source_kind(self, paper_id: PaperId) -> SourceKind:
        paper = self.get_paper(paper_id)
        if paper is None:
            return SourceKind.NONE
        return self.resolver.resolve(paper).kind

    async def papers(self, config: TableConfig) -> Dict[PaperId, Paper]:
        found = await asyncio.gather(
            *(asyncio.to_thread(self.get_paper, p) for p in config.added_paper_ids)
        )
        return {paper.id: paper for paper in found if paper is not None}

    async def visible_rows(self, config: Optional[TableConfig] = None) -> List[PaperId]:
        config = config or await self.load()
        return build_rows(config, await self.papers(config))

    async def current_page(self, config: Optional[TableConfig] = None) -> List[PaperId]:
        config = config or await self.load()
        rows = await self.visible_rows(config)
        return page_rows(rows, config.current_page, config.page_size)

    # -- planning ------------------------------------------------------

    async def plan(self) -> List[GenerationTask]:
        config = await self.load()
        rows = await self.visible_rows(config)
        return await asyncio.to_thread(plan_tasks, config, rows, self.source_kind)

    async def plan_extraction(self) -> List[ExtractionTask]:
        config = await self.load()
        rows = await self.visible_rows(config)
        return await asyncio.to_thread(plan_extraction_tasks, config, rows, self.source_kind)

    # -- batches -------------------------------------------------------

    async def generate_all(
        self,
        *,
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchSummary:
        tasks = await self.plan()
        logger.info(f"Generate All table={self.table_id}: {len(tasks)} tasks")
        return await self.scheduler.run(
            self.table_id, tasks, concurrency=concurrency, on_progress=on_progress
        )

    async def extract_all(
        self,
        *,
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchSummary:
        tasks = await self.plan_extraction()
        logger.info(f"Extract All table={self.table_id}: {len(tasks)} papers")
        return await self.scheduler.run(
            self.table_id, tasks, concurrency=concurrency, on_progress=on_progress
        )

    async def generate_cell(self, paper_id: PaperId, column_id: str) -> GenerationOutcome:
        """Generate one cell on demand, replacing any cached value."""
        config = await self.load()
        column = config.get_column(column_id)
        if column is None or not column.is_computed:
            raise KeyError(f"Column {column_id} is not a computed column")
        if paper_id not in config.added_paper_ids:
            raise KeyError(f"Paper {paper_id} is not in table {self.table_id}")

        kind = await asyncio.to_thread(self.source_kind, paper_id)
        task = GenerationTask(paper_id=paper_id, column=column, source_kind=kind)
        if kind == SourceKind.NONE:
            return GenerationOutcome(task=task, status=OutcomeStatus.EMPTY_SOURCE)

        outcomes = await self.scheduler.run_batch(self.table_id, [task], concurrency=1)
        return outcomes[0]
