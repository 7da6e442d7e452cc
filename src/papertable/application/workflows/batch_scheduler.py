# src/papertable/application/workflows/batch_scheduler.py
"""
Batch Scheduler.

Runs "Generate All" / "Extract All" batches over a fixed-size window of
workers. Each task is its own pipeline (resolve and materialize, generate,
persist one cell); a failing task becomes an error outcome and never
cancels its siblings. Configuration errors are the exception: they end
the whole batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set

from papertable.application.services.content_generator import ContentGenerator
from papertable.application.services.source_resolver import SourceResolver
from papertable.domain.errors import (
    BatchInProgressError,
    ConfigurationError,
    PaperTableError,
    SourceUnavailable,
)
from papertable.domain.paper import Paper
from papertable.domain.table import (
    BatchTask,
    ExtractionTask,
    GenerationOutcome,
    GenerationTask,
    OutcomeStatus,
    PaperId,
    SourceKind,
)
from papertable.infrastructure.stores.table_store import TableConfigStore
from papertable.utils.logging_config import LogFiles, Logger, trace_scope

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5

ProgressCallback = Callable[[int, int], None]
PaperLookup = Callable[[PaperId], Optional[Paper]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _needs_ocr(task: BatchTask) -> bool:
    return isinstance(task, ExtractionTask) or task.source_kind == SourceKind.PDF


@dataclass
class BatchSummary:
    """Aggregate result of one batch run."""

    batch_id: str
    table_id: str
    total: int
    succeeded: int
    empty_source: int
    failed: int
    duration_seconds: float
    outcomes: List[GenerationOutcome] = field(default_factory=list)

    @classmethod
    def from_outcomes(
        cls,
        batch_id: str,
        table_id: str,
        outcomes: Sequence[GenerationOutcome],
        duration_seconds: float = 0.0,
    ) -> "BatchSummary":
        counts: Dict[OutcomeStatus, int] = {status: 0 for status in OutcomeStatus}
        for outcome in outcomes:
            counts[outcome.status] += 1
        return cls(
            batch_id=batch_id,
            table_id=table_id,
            total=len(outcomes),
            succeeded=counts[OutcomeStatus.SUCCESS],
            empty_source=counts[OutcomeStatus.EMPTY_SOURCE],
            failed=counts[OutcomeStatus.ERROR],
            duration_seconds=duration_seconds,
            outcomes=list(outcomes),
        )

    @property
    def message(self) -> str:
        return f"Done: generated {self.succeeded} of {self.total}"

    @property
    def errors(self) -> Dict[str, str]:
        """``"paper_id:column_id" -> message`` for every failed task."""
        result: Dict[str, str] = {}
        for outcome in self.outcomes:
            if outcome.status == OutcomeStatus.ERROR:
                paper_id, column_id = outcome.task.key
                result[f"{paper_id}:{column_id}" if column_id else paper_id] = outcome.error or ""
        return result


class BatchScheduler:
    """
    Bounded-concurrency batch runner.

    At most ``concurrency`` tasks are in flight at once. A table can have
    only one batch in flight; a second one raises BatchInProgressError.
    A missing model or OCR configuration aborts the batch before any task
    starts. Cells are always sent to the model, never served from a cache.
    """

    def __init__(
        self,
        store: TableConfigStore,
        resolver: SourceResolver,
        generator: ContentGenerator,
        papers: PaperLookup,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self._store = store
        self._resolver = resolver
        self._generator = generator
        self._papers = papers
        self.concurrency = max(1, int(concurrency))
        self._running: Set[str] = set()

    @staticmethod
    def new_batch_id() -> str:
        timestamp = _utcnow().strftime("%Y%m%d-%H%M%S")
        return f"batch-{timestamp}-{uuid.uuid4().hex[:8]}"

    def is_running(self, table_id: str) -> bool:
        return table_id in self._running

    async def run_batch(
        self,
        table_id: str,
        tasks: Sequence[BatchTask],
        *,
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        batch_id: Optional[str] = None,
    ) -> List[GenerationOutcome]:
        """
        Run every task and return one outcome per task, in task order.

        Raises:
            BatchInProgressError: another batch is running for ``table_id``
            ConfigurationError: no usable model (generation tasks present) or no
                usable OCR backend (extraction or PDF-sourced tasks present)
            KeyError: the table does not exist
        """
        if table_id in self._running:
            raise BatchInProgressError(table_id)
        self._running.add(table_id)
        try:
            with trace_scope(batch_id or self.new_batch_id()) as trace_id:
                return await self._run(
                    table_id,
                    list(tasks),
                    concurrency=concurrency or self.concurrency,
                    on_progress=on_progress,
                    trace_id=trace_id,
                )
        finally:
            self._running.discard(table_id)

    async def run(
        self,
        table_id: str,
        tasks: Sequence[BatchTask],
        *,
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchSummary:
        batch_id = self.new_batch_id()
        started = time.monotonic()
        outcomes = await self.run_batch(
            table_id,
            tasks,
            concurrency=concurrency,
            on_progress=on_progress,
            batch_id=batch_id,
        )
        summary = BatchSummary.from_outcomes(
            batch_id, table_id, outcomes, time.monotonic() - started
        )
        Logger.info(
            f"{summary.message} (empty={summary.empty_source} failed={summary.failed} "
            f"duration={summary.duration_seconds:.1f}s)",
            file=LogFiles.BATCH,
        )
        return summary

    async def _run(
        self,
        table_id: str,
        tasks: List[BatchTask],
        *,
        concurrency: int,
        on_progress: Optional[ProgressCallback],
        trace_id: str,
    ) -> List[GenerationOutcome]:
        total = len(tasks)
        if total == 0:
            return []

        config = await self._store.load_table(table_id)
        if config is None:
            raise KeyError(f"Unknown table: {table_id}")
        if any(isinstance(task, GenerationTask) for task in tasks):
            self._generator.preflight()
        if any(_needs_ocr(task) for task in tasks):
            self._resolver.preflight_ocr()

        budget = config.response_length_budget
        window = max(1, min(int(concurrency), total))
        Logger.info(
            f"Batch {trace_id} start table={table_id} tasks={total} concurrency={window}",
            file=LogFiles.BATCH,
        )

        queue: "asyncio.Queue[tuple[int, BatchTask]]" = asyncio.Queue()
        for index, task in enumerate(tasks):
            queue.put_nowait((index, task))

        outcomes: List[Optional[GenerationOutcome]] = [None] * total
        completed = 0

        async def worker() -> None:
            nonlocal completed
            while True:
                try:
                    index, task = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    outcomes[index] = await self._run_task(table_id, task, budget)
                except ConfigurationError:
                    # Drop the remaining tasks.
                    while not queue.empty():
                        queue.get_nowait()
                    raise
                completed += 1
                self._notify(on_progress, completed, total)

        results = await asyncio.gather(
            *(worker() for _ in range(window)), return_exceptions=True
        )
        for result in results:
            if isinstance(result, ConfigurationError):
                Logger.error(f"Batch {trace_id} aborted: {result}", file=LogFiles.ERROR)
                raise result
            if isinstance(result, BaseException):
                logger.error(f"Batch worker crashed: {result!r}")

        return [
            outcome
            if outcome is not None
            else GenerationOutcome(task=tasks[i], status=OutcomeStatus.ERROR, error="Task did not run")
            for i, outcome in enumerate(outcomes)
        ]

    @staticmethod
    def _notify(on_progress: Optional[ProgressCallback], completed: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            on_progress(completed, total)
        except Exception:
            logger.exception("Progress callback failed")

    async def _run_task(self, table_id: str, task: BatchTask, budget: int) -> GenerationOutcome:
        try:
            paper = await asyncio.to_thread(self._papers, task.paper_id)
            if paper is None:
                raise PaperTableError(f"Paper {task.paper_id} not found")
            if isinstance(task, ExtractionTask):
                return await self._extract(task, paper)
            return await self._generate(table_id, task, paper, budget)
        except SourceUnavailable as exc:
            Logger.info(f"task={task.key} empty source: {exc}", file=LogFiles.BATCH)
            return GenerationOutcome(task=task, status=OutcomeStatus.EMPTY_SOURCE)
        except ConfigurationError:
            raise
        except PaperTableError as exc:
            message = str(exc)
            logger.warning(f"Task {task.key} failed: {message}")
        except Exception as exc:
            logger.exception(f"Task {task.key} failed unexpectedly")
            message = f"Unexpected error: {exc}"

        Logger.error(f"task={task.key} error={message}", file=LogFiles.ERROR)
        if isinstance(task, GenerationTask):
            try:
                await self._store.record_error(table_id, task.paper_id, task.column_id, message)
            except Exception:
                logger.exception(f"Could not record error for {task.key}")
        return GenerationOutcome(task=task, status=OutcomeStatus.ERROR, error=message)

    async def _generate(
        self,
        table_id: str,
        task: GenerationTask,
        paper: Paper,
        budget: int,
    ) -> GenerationOutcome:
        source = await self._resolver.resolve_and_materialize(paper)
        if not source.available:
            Logger.info(f"task={task.key} empty source", file=LogFiles.BATCH)
            return GenerationOutcome(task=task, status=OutcomeStatus.EMPTY_SOURCE)

        value = await self._generator.generate(
            paper,
            task.column,
            source.text,
            response_length_budget=budget,
            use_cache=False,
        )
        saved = await self._store.set_cell(table_id, task.paper_id, task.column_id, value)
        if not saved:
            raise PaperTableError(f"Table {table_id} no longer exists")

        Logger.info(f"task={task.key} generated chars={len(value)}", file=LogFiles.BATCH)
        return GenerationOutcome(task=task, status=OutcomeStatus.SUCCESS, value=value)

    async def _extract(self, task: ExtractionTask, paper: Paper) -> GenerationOutcome:
        source = await self._resolver.resolve_and_materialize(paper)
        if not source.available:
            return GenerationOutcome(task=task, status=OutcomeStatus.EMPTY_SOURCE)
        Logger.info(f"task={task.key} extracted chars={len(source.text)}", file=LogFiles.BATCH)
        return GenerationOutcome(task=task, status=OutcomeStatus.SUCCESS)
