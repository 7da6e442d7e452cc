"""
CLI entry point.

Commands:
    papertable tables                       list stored tables
    papertable create-table --name N -p ID  create a table
    papertable add-papers --table-id T ID.. add rows
    papertable add-column --table-id T ...  add a computed column
    papertable models [--add ...]           list or add model configurations
    papertable rows --table-id T [--page N] list the rows on the current page
    papertable plan --table-id T            show the cells "Generate All" would fill
    papertable generate --table-id T        run "Generate All"
    papertable extract --table-id T         run "Extract All" (OCR only)
    papertable search -q QUERY              Semantic Scholar search
    papertable chat -m TEXT [--paper ID]    ask the assistant about papers, notes or tags
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from dataclasses import dataclass
from typing import List, Optional

import requests
from dotenv import find_dotenv, load_dotenv

from papertable import __version__
from papertable.application.ports.host_repository_port import HostRepositoryPort
from papertable.application.services import (
    ChatMessageStore,
    ChatSession,
    ContentGenerator,
    ContextKind,
    LLMService,
    SourceResolver,
)
from papertable.application.workflows import BatchScheduler, BatchSummary, TableSession
from papertable.domain.errors import PaperTableError
from papertable.domain.search import SearchFilters
from papertable.domain.table import TableConfig
from papertable.infrastructure.api_clients.base import APIError
from papertable.infrastructure.api_clients.semantic_scholar import SemanticScholarClient
from papertable.infrastructure.connectors.zotero_host_repository import ZoteroHostRepository
from papertable.infrastructure.llm.openai_backend import OpenAICompatibleBackend
from papertable.infrastructure.ocr.datalab_client import DataLabService
from papertable.infrastructure.stores import (
    ModelConfigStore,
    SqlAlchemyKeyValueStore,
    TableConfigStore,
)
from papertable.utils.logging_config import LogFiles, Logger
from papertable.utils.settings import PaperTableSettings

VERSION = __version__

# Load local .env automatically for CLI workflows using model/OCR credentials.
load_dotenv(find_dotenv(usecwd=True), override=False)


@dataclass
class AppContext:
    """Wired collaborators for one CLI invocation."""

    settings: PaperTableSettings
    kv: SqlAlchemyKeyValueStore
    tables: TableConfigStore
    models: ModelConfigStore
    repository: Optional[HostRepositoryPort] = None
    ocr: Optional[DataLabService] = None
    llm: Optional[LLMService] = None
    scheduler: Optional[BatchScheduler] = None
    resolver: Optional[SourceResolver] = None

    @classmethod
    def build(cls, settings: PaperTableSettings, *, with_pipeline: bool = False) -> "AppContext":
        kv = SqlAlchemyKeyValueStore(settings.db_url)
        ctx = cls(
            settings=settings,
            kv=kv,
            tables=TableConfigStore(kv),
            models=ModelConfigStore(kv),
        )
        if with_pipeline:
            ctx._build_pipeline()
        return ctx

    def _build_pipeline(self) -> None:
        s = self.settings
        self.repository = ZoteroHostRepository(
            api_key=s.zotero_api_key,
            library_type=s.zotero_library_type,
            library_id=s.zotero_library_id,
            cache_dir=s.attachment_cache_dir,
        )
        self.ocr = DataLabService(s)
        self.llm = LLMService(self.models, OpenAICompatibleBackend())
        self.resolver = SourceResolver(
            self.repository, self.ocr, ocr_max_concurrent=s.ocr_max_concurrent
        )
        generator = ContentGenerator(self.llm, max_source_chars=s.max_source_chars)
        self.scheduler = BatchScheduler(
            self.tables,
            self.resolver,
            generator,
            self.repository.get_item,
            concurrency=s.ai_max_concurrent,
        )

    def session(self, table_id: str) -> TableSession:
        if self.scheduler is None or self.resolver is None or self.repository is None:
            self._build_pipeline()
        return TableSession(
            table_id,
            store=self.tables,
            repository=self.repository,
            resolver=self.resolver,
            scheduler=self.scheduler,
        )

    def chat_session(self, conversation_id: str) -> ChatSession:
        if self.llm is None or self.repository is None:
            self._build_pipeline()
        return ChatSession(
            self.llm,
            self.repository,
            ChatMessageStore(self.kv),
            conversation_id=conversation_id,
            max_context_chars=self.settings.max_source_chars,
        )

    async def close(self) -> None:
        if self.ocr is not None:
            await self.ocr.close()
        if self.llm is not None:
            await self.llm.close()
        self.kv.close()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="papertable",
        description="papertable - AI-generated columns for a papers table",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("tables", help="List stored tables")

    create_parser_ = subparsers.add_parser("create-table", help="Create a new table")
    create_parser_.add_argument("--name", default="Default Table", help="Table name")
    create_parser_.add_argument(
        "--paper", "-p", action="append", dest="papers", default=None, help="Paper id, repeatable"
    )

    add_papers = subparsers.add_parser("add-papers", help="Add papers to a table")
    add_papers.add_argument("--table-id", required=True)
    add_papers.add_argument("paper_ids", nargs="+")

    add_column = subparsers.add_parser("add-column", help="Add a computed column")
    add_column.add_argument("--table-id", required=True)
    add_column.add_argument("--name", required=True, help="Column name")
    add_column.add_argument("--instruction", default="", help="Generation instruction")

    models = subparsers.add_parser("models", help="List or add model configurations")
    models.add_argument("--add", action="store_true", help="Add a model configuration")
    models.add_argument("--name")
    models.add_argument("--api-url")
    models.add_argument("--api-key")
    models.add_argument("--model")
    models.add_argument("--default", action="store_true", help="Make it the default model")

    rows = subparsers.add_parser("rows", help="List the rows on the table's current page")
    rows.add_argument("--table-id", required=True)
    rows.add_argument("--page", type=int, default=None, help="Switch to this 1-based page first")
    rows.add_argument("--json", action="store_true", help="Print JSON output")

    for name, help_text in (
        ("plan", "Show the cells Generate All would fill"),
        ("generate", "Generate all empty computed cells"),
        ("extract", "OCR every visible paper that only has a PDF"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--table-id", required=True)
        if name != "plan":
            sub.add_argument("--concurrency", type=int, default=None, help="Worker window size")
        sub.add_argument("--json", action="store_true", help="Print JSON output")

    search = subparsers.add_parser("search", help="Search Semantic Scholar")
    search.add_argument("--query", "-q", required=True)
    search.add_argument("--limit", type=int, default=10)
    search.add_argument("--offset", type=int, default=0)
    search.add_argument("--year", default=None, help='e.g. "2020-2024", "2023-" or "-2020"')
    search.add_argument("--open-access", action="store_true", help="Only papers with a PDF")
    search.add_argument("--min-citations", type=int, default=None)
    search.add_argument("--venue", default=None)
    search.add_argument(
        "--sort",
        default="relevance",
        choices=[
            "relevance",
            "citationCount:desc",
            "citationCount:asc",
            "publicationDate:desc",
            "publicationDate:asc",
        ],
    )
    search.add_argument("--json", action="store_true", help="Print JSON output")

    chat = subparsers.add_parser("chat", help="Ask the research assistant")
    chat.add_argument("--message", "-m", default=None, help="Message to send")
    chat.add_argument("--conversation", default="default", help="Conversation id")
    chat.add_argument("--paper", action="append", default=[], help="Paper id to add as context")
    chat.add_argument("--note", action="append", default=[], help="Note id to add as context")
    chat.add_argument("--tag", action="append", default=[], help="Tag whose papers to add as context")
    chat.add_argument("--clear", action="store_true", help="Forget messages and context first")
    chat.add_argument("--history", action="store_true", help="Print the stored conversation")

    parser.add_argument("--version", "-v", action="store_true", help="Show version")
    return parser


def run_cli(args: Optional[list] = None) -> int:
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.version:
        print(f"papertable v{VERSION}")
        return 0

    if not parsed.command:
        parser.print_help()
        return 0

    settings = PaperTableSettings.from_env()
    try:
        if parsed.command == "search":
            return asyncio.run(_run_search(parsed, settings))
        return asyncio.run(_dispatch(parsed, settings))
    except (PaperTableError, APIError, requests.RequestException, KeyError, ValueError) as e:
        Logger.error(f"command={parsed.command} error={e}", file=LogFiles.ERROR)
        print(f"Error: {e}", file=sys.stderr)
        return 1


async def _dispatch(parsed: argparse.Namespace, settings: PaperTableSettings) -> int:
    ctx = AppContext.build(settings)
    try:
        if parsed.command == "tables":
            return await _run_tables(ctx)
        if parsed.command == "create-table":
            config = TableConfig.new(parsed.name, parsed.papers or [])
            await ctx.tables.save(config)
            print(f"created table {config.id} ({len(config.added_paper_ids)} papers)")
            return 0
        if parsed.command == "add-papers":
            added: List[int] = []
            updated = await ctx.tables.update_table(
                parsed.table_id, lambda t: added.append(t.add_papers(parsed.paper_ids))
            )
            if updated is None:
                raise KeyError(f"Unknown table: {parsed.table_id}")
            print(f"added {added[0]} papers")
            return 0
        if parsed.command == "add-column":
            columns = []
            updated = await ctx.tables.update_table(
                parsed.table_id,
                lambda t: columns.append(t.add_column(parsed.name, parsed.instruction)),
            )
            if updated is None:
                raise KeyError(f"Unknown table: {parsed.table_id}")
            print(f"added column {columns[0].id}")
            return 0
        if parsed.command == "models":
            return _run_models(parsed, ctx)
        if parsed.command == "rows":
            return await _run_rows(parsed, ctx)
        if parsed.command == "plan":
            return await _run_plan(parsed, ctx)
        if parsed.command == "chat":
            return await _run_chat(parsed, ctx)
        if parsed.command in ("generate", "extract"):
            return await _run_batch(parsed, ctx)
        return 0
    finally:
        await ctx.close()


async def _run_tables(ctx: AppContext) -> int:
    tables = await ctx.tables.get_all_tables()
    if not tables:
        print("no tables")
        return 0
    for table in tables:
        computed = len(table.computed_columns(visible_only=False))
        print(
            f"{table.id}  {table.name}  papers={len(table.added_paper_ids)} "
            f"computed_columns={computed}  updated={table.updated_at}"
        )
    return 0


def _run_models(parsed: argparse.Namespace, ctx: AppContext) -> int:
    if parsed.add:
        config = ctx.models.add_config(
            {
                "name": parsed.name,
                "api_url": parsed.api_url,
                "api_key": parsed.api_key,
                "model": parsed.model,
                "is_default": parsed.default,
            }
        )
        print(f"added model {config.name} ({config.id})")
        return 0

    active = ctx.models.get_active()
    for config in ctx.models.list_configs():
        marker = "*" if active and active.id == config.id else " "
        print(f"{marker} {config.id}  {config.name}  {config.model}  {config.api_url}")
    return 0


async def _run_rows(parsed: argparse.Namespace, ctx: AppContext) -> int:
    if parsed.page is not None:
        page = max(1, parsed.page)

        def _set_page(table: TableConfig) -> None:
            table.current_page = page

        if await ctx.tables.update_table(parsed.table_id, _set_page) is None:
            raise KeyError(f"Unknown table: {parsed.table_id}")

    session = ctx.session(parsed.table_id)
    config = await session.load()
    visible = await session.visible_rows(config)
    rows = await session.current_page(config)
    papers = await session.papers(config)
    if parsed.json:
        payload = [
            {
                "paper_id": paper_id,
                "title": papers[paper_id].title,
                "source_kind": session.source_kind(paper_id).value,
            }
            for paper_id in rows
        ]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0
    for paper_id in rows:
        print(f"{paper_id}  {papers[paper_id].title}  ({session.source_kind(paper_id).value})")
    pages = max(1, -(-len(visible) // config.page_size))
    print(f"page {config.current_page} of {pages} ({len(visible)} rows)")
    return 0


async def _run_chat(parsed: argparse.Namespace, ctx: AppContext) -> int:
    chat = ctx.chat_session(parsed.conversation)
    if parsed.clear:
        chat.clear()
    for kind, ids in (
        (ContextKind.PAPER, parsed.paper),
        (ContextKind.NOTE, parsed.note),
        (ContextKind.TAG, parsed.tag),
    ):
        for item_id in ids:
            chat.add_context(kind, item_id)

    if parsed.history or not parsed.message:
        for message in chat.history():
            suffix = " [stopped]" if message.stopped else ""
            print(f"{message.role.value}: {message.content}{suffix}")
        if not parsed.message:
            return 0

    loop = asyncio.get_running_loop()
    streamed: List[str] = []

    def _print_token(token: str) -> None:
        streamed.append(token)
        print(token, end="", flush=True)

    # Ctrl-C stops the reply instead of killing the process.
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, chat.stop)
    try:
        reply = await chat.send(parsed.message, on_token=_print_token)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)

    if not streamed:
        print(reply.content, end="")
    print(" [stopped]" if reply.stopped else "")
    return 0


async def _run_plan(parsed: argparse.Namespace, ctx: AppContext) -> int:
    tasks = await ctx.session(parsed.table_id).plan()
    if parsed.json:
        rows = [
            {"paper_id": t.paper_id, "column_id": t.column_id, "source_kind": t.source_kind.value}
            for t in tasks
        ]
        print(json.dumps(rows, ensure_ascii=False, indent=2))
        return 0
    for task in tasks:
        print(f"{task.paper_id}  {task.column.name}  ({task.source_kind.value})")
    print(f"{len(tasks)} cells to generate")
    return 0


def _print_progress(completed: int, total: int) -> None:
    end = "\n" if completed == total else ""
    print(f"\r{completed}/{total}", end=end, flush=True)


async def _run_batch(parsed: argparse.Namespace, ctx: AppContext) -> int:
    session = ctx.session(parsed.table_id)
    if parsed.command == "generate":
        summary = await session.generate_all(
            concurrency=parsed.concurrency, on_progress=_print_progress
        )
    else:
        summary = await session.extract_all(
            concurrency=parsed.concurrency, on_progress=_print_progress
        )
    _print_summary(summary, as_json=parsed.json)
    return 0 if summary.failed == 0 else 2


def _print_summary(summary: BatchSummary, *, as_json: bool = False) -> None:
    if as_json:
        payload = {
            "batch_id": summary.batch_id,
            "table_id": summary.table_id,
            "total": summary.total,
            "succeeded": summary.succeeded,
            "empty_source": summary.empty_source,
            "failed": summary.failed,
            "duration_seconds": round(summary.duration_seconds, 2),
            "outcomes": [o.to_dict() for o in summary.outcomes],
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return
    print(summary.message)
    for key, message in summary.errors.items():
        print(f"  error {key}: {message}")


async def _run_search(parsed: argparse.Namespace, settings: PaperTableSettings) -> int:
    client = SemanticScholarClient(api_key=settings.semantic_scholar_api_key or None)
    filters = SearchFilters(
        year=parsed.year,
        open_access_pdf=parsed.open_access,
        min_citation_count=parsed.min_citations,
        venue=parsed.venue,
        sort=parsed.sort,
    )
    try:
        page = await client.search_papers(
            parsed.query, filters, limit=parsed.limit, offset=parsed.offset
        )
    finally:
        await client.close()

    Logger.info(f"search query={parsed.query!r} hits={len(page.papers)}", file=LogFiles.SEARCH)
    if parsed.json:
        print(json.dumps([p.to_dict() for p in page.papers], ensure_ascii=False, indent=2))
        return 0

    print(f"total: {page.total}")
    for idx, paper in enumerate(page.papers, start=1 + page.offset):
        authors = ", ".join(paper.authors[:3]) or "Unknown"
        print(f"{idx}. {paper.title} ({paper.year or 'n.d.'}) - {authors}")
        print(f"   citations={paper.citation_count} id={paper.paper_id}")
    if page.next_offset is not None:
        print(f"next offset: {page.next_offset}")
    return 0


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
