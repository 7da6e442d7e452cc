import json

import pytest

from papertable.application.services import ContentGenerator, LLMService, SourceResolver
from papertable.application.workflows import BatchScheduler
from papertable.domain.search import SearchPage, SearchPaper
from papertable.infrastructure.connectors import InMemoryHostRepository
from papertable.presentation.cli import main as cli_main


class _EchoBackend:
    async def complete(self, system, user, model):
        return "generated: " + user.splitlines()[0]

    async def complete_stream(self, system, user, model, callbacks):
        return await self.complete(system, user, model)

    async def close(self):
        return None


class _FakeSearchClient:
    def __init__(self, api_key=None):
        self.calls = []

    async def search_papers(self, query, filters=None, *, limit=20, offset=0, token=None):
        self.calls.append((query, filters, limit, offset))
        return SearchPage(
            total=1,
            offset=offset,
            papers=[SearchPaper(paper_id="s2-1", title="Paper about " + query, year=2024)],
        )

    async def close(self):
        return None


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("PAPERTABLE_DB_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    repo = InMemoryHostRepository()
    repo.add_paper("p1", "Trial of drug X", notes=["<p>Randomized trial, N=120</p>"])
    repo.add_paper("p2", "Untouched paper")

    def _build_pipeline(self):
        self.repository = repo
        self.llm = LLMService(self.models, _EchoBackend())
        self.resolver = SourceResolver(repo)
        self.scheduler = BatchScheduler(
            self.tables, self.resolver, ContentGenerator(self.llm), repo.get_item
        )

    monkeypatch.setattr(cli_main.AppContext, "_build_pipeline", _build_pipeline)
    return repo


def _create_table(capsys, *papers):
    args = ["create-table", "--name", "Review"]
    for paper in papers:
        args += ["-p", paper]
    assert cli_main.run_cli(args) == 0
    out = capsys.readouterr().out
    return out.split()[2]


def _add_model():
    return cli_main.run_cli(
        [
            "models",
            "--add",
            "--name",
            "local",
            "--api-url",
            "http://llm.local/v1",
            "--api-key",
            "sk-local",
            "--model",
            "local-model",
        ]
    )


def test_cli_parser_flags():
    parser = cli_main.create_parser()
    args = parser.parse_args(["generate", "--table-id", "t1", "--concurrency", "3", "--json"])

    assert args.command == "generate"
    assert args.table_id == "t1"
    assert args.concurrency == 3
    assert args.json is True


def test_cli_version(capsys):
    assert cli_main.run_cli(["--version"]) == 0
    assert "papertable v" in capsys.readouterr().out


def test_cli_create_and_list_tables(cli_env, capsys):
    table_id = _create_table(capsys, "p1", "p2")

    assert cli_main.run_cli(["tables"]) == 0
    out = capsys.readouterr().out
    assert table_id in out
    assert "papers=2" in out


def test_cli_unknown_table_is_an_error(cli_env, capsys):
    exit_code = cli_main.run_cli(["add-papers", "--table-id", "missing", "p1"])

    assert exit_code == 1
    assert "Unknown table" in capsys.readouterr().err


def test_cli_models_add_and_list(cli_env, capsys):
    assert _add_model() == 0
    capsys.readouterr()

    assert cli_main.run_cli(["models"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("*")
    assert "local-model" in out
    assert "sk-local" not in out


def test_cli_plan_json_lists_only_rows_with_sources(cli_env, capsys):
    table_id = _create_table(capsys, "p1", "p2")

    assert cli_main.run_cli(["plan", "--table-id", table_id, "--json"]) == 0
    rows = json.loads(capsys.readouterr().out)

    assert rows
    assert {row["paper_id"] for row in rows} == {"p1"}
    assert {row["source_kind"] for row in rows} == {"notes"}


def test_cli_generate_without_model_fails(cli_env, capsys):
    table_id = _create_table(capsys, "p1")

    assert cli_main.run_cli(["generate", "--table-id", table_id]) == 1
    assert "Error:" in capsys.readouterr().err


def test_cli_generate_fills_cells(cli_env, capsys):
    table_id = _create_table(capsys, "p1", "p2")
    assert _add_model() == 0
    capsys.readouterr()

    assert cli_main.run_cli(["generate", "--table-id", table_id, "--json"]) == 0
    payload = json.loads(capsys.readouterr().out.split("\n", 1)[1])
    assert payload["failed"] == 0
    assert payload["succeeded"] == payload["total"] > 0

    assert cli_main.run_cli(["plan", "--table-id", table_id]) == 0
    assert "0 cells to generate" in capsys.readouterr().out


def test_cli_search_json_output(monkeypatch, capsys):
    monkeypatch.setattr(cli_main, "SemanticScholarClient", _FakeSearchClient)

    exit_code = cli_main.run_cli(["search", "-q", "transformers", "--year", "2020-", "--json"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload[0]["title"] == "Paper about transformers"


def test_cli_rows_lists_current_page_and_switches_pages(cli_env, capsys):
    table_id = _create_table(capsys, "p1", "p2")

    assert cli_main.run_cli(["rows", "--table-id", table_id, "--json"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert [row["paper_id"] for row in rows] == ["p1", "p2"]
    assert rows[0]["source_kind"] == "notes"
    assert rows[1]["source_kind"] == "none"

    assert cli_main.run_cli(["rows", "--table-id", table_id, "--page", "2"]) == 0
    assert capsys.readouterr().out.strip() == "page 2 of 1 (2 rows)"


def test_cli_chat_sends_message_and_keeps_history(cli_env, capsys):
    assert _add_model() == 0
    capsys.readouterr()

    assert cli_main.run_cli(["chat", "--paper", "p1", "-m", "What is the design?"]) == 0
    assert capsys.readouterr().out.strip() == "generated: What is the design?"

    assert cli_main.run_cli(["chat", "--history"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out == ["user: What is the design?", "assistant: generated: What is the design?"]


def test_cli_chat_without_model_fails(cli_env, capsys):
    assert cli_main.run_cli(["chat", "-m", "hello"]) == 1
    assert "No AI model is configured" in capsys.readouterr().err
