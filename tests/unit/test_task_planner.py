from papertable.application.workflows.task_planner import (
    build_rows,
    page_rows,
    plan_extraction_tasks,
    plan_tasks,
)
from papertable.domain.paper import Paper
from papertable.domain.table import SortOrder, SourceKind, TableConfig


def _kinds(mapping):
    calls = []

    def lookup(paper_id):
        calls.append(paper_id)
        return mapping.get(paper_id, SourceKind.NONE)

    lookup.calls = calls
    return lookup


def _table(paper_ids, extra_columns=("Design",)):
    config = TableConfig.new("T", list(paper_ids))
    columns = [config.add_column(name, f"describe {name}") for name in extra_columns]
    return config, columns


def test_plan_orders_by_row_then_column():
    config, (design,) = _table(["p1", "p2"])
    lookup = _kinds({"p1": SourceKind.NOTES, "p2": SourceKind.PDF})

    tasks = plan_tasks(config, ["p2", "p1"], lookup)

    assert [t.key for t in tasks] == [
        ("p2", "analysisMethodology"),
        ("p2", design.id),
        ("p1", "analysisMethodology"),
        ("p1", design.id),
    ]
    assert [t.source_kind for t in tasks] == [
        SourceKind.PDF,
        SourceKind.PDF,
        SourceKind.NOTES,
        SourceKind.NOTES,
    ]


def test_plan_is_idempotent_without_mutation():
    config, _ = _table(["p1", "p2", "p3"])
    lookup = _kinds({"p1": SourceKind.NOTES, "p2": SourceKind.PDF, "p3": SourceKind.NOTES})
    rows = ["p1", "p2", "p3"]

    first = plan_tasks(config, rows, lookup)
    second = plan_tasks(config, rows, lookup)

    assert [(t.key, t.source_kind) for t in first] == [(t.key, t.source_kind) for t in second]


def test_plan_never_yields_duplicate_cells():
    config, _ = _table(["p1", "p2"])
    lookup = _kinds({"p1": SourceKind.NOTES, "p2": SourceKind.NOTES})

    tasks = plan_tasks(config, ["p1", "p2", "p1", "p2"], lookup)

    keys = [t.key for t in tasks]
    assert len(keys) == len(set(keys)) == 4


def test_plan_skips_cached_cells_even_if_sources_change():
    config, (design,) = _table(["p1"])
    config.set_cell("p1", "analysisMethodology", "meta-analysis")
    lookup = _kinds({"p1": SourceKind.PDF})

    tasks = plan_tasks(config, ["p1"], lookup)

    assert [t.key for t in tasks] == [("p1", design.id)]


def test_plan_skips_rows_without_source_and_not_added_rows():
    config, _ = _table(["p1", "p2"])
    lookup = _kinds({"p1": SourceKind.NONE, "p2": SourceKind.NOTES, "stranger": SourceKind.NOTES})

    tasks = plan_tasks(config, ["p1", "p2", "stranger"], lookup)

    assert {t.paper_id for t in tasks} == {"p2"}


def test_plan_ignores_hidden_and_static_columns():
    config, (design,) = _table(["p1"])
    config.update_column(design.id, visible=False)
    lookup = _kinds({"p1": SourceKind.NOTES})

    tasks = plan_tasks(config, ["p1"], lookup)

    assert [t.column_id for t in tasks] == ["analysisMethodology"]


def test_plan_resolves_each_row_once_and_skips_full_rows():
    config, (design,) = _table(["p1", "p2"])
    config.set_cell("p1", "analysisMethodology", "a")
    config.set_cell("p1", design.id, "b")
    lookup = _kinds({"p1": SourceKind.NOTES, "p2": SourceKind.NOTES})

    plan_tasks(config, ["p1", "p2"], lookup)

    assert lookup.calls == ["p2"]


def test_plan_extraction_tasks_only_for_pdf_rows():
    config, _ = _table(["p1", "p2", "p3"])
    lookup = _kinds({"p1": SourceKind.NOTES, "p2": SourceKind.PDF, "p3": SourceKind.NONE})

    tasks = plan_extraction_tasks(config, ["p1", "p2", "p3"], lookup)

    assert [t.paper_id for t in tasks] == ["p2"]


def _papers():
    return {
        "p1": Paper(id="p1", title="Beta trial", authors=["Zed"], year=2020),
        "p2": Paper(id="p2", title="alpha survey", authors=["Amy"], year=2018),
        "p3": Paper(id="p3", title="Gamma cohort", authors=["Bob"], year=None),
    }


def test_build_rows_sorts_by_title_case_insensitive():
    config = TableConfig.new("T", ["p1", "p2", "p3", "gone"])

    assert build_rows(config, _papers()) == ["p2", "p1", "p3"]

    config.sort_order = SortOrder.DESC
    assert build_rows(config, _papers()) == ["p3", "p1", "p2"]


def test_build_rows_sorts_by_year_with_missing_years_last():
    config = TableConfig.new("T", ["p1", "p2", "p3"])
    config.sort_by = "year"

    assert build_rows(config, _papers()) == ["p2", "p1", "p3"]


def test_build_rows_filter_matches_metadata_and_generated_values():
    config = TableConfig.new("T", ["p1", "p2", "p3"])
    config.set_cell("p3", "analysisMethodology", "Randomized controlled trial")

    config.filter_query = "AMY"
    assert build_rows(config, _papers()) == ["p2"]

    config.filter_query = "randomized"
    assert build_rows(config, _papers()) == ["p3"]

    config.filter_query = "2020"
    assert build_rows(config, _papers()) == ["p1"]


def test_page_rows():
    rows = [f"p{i}" for i in range(1, 8)]

    assert page_rows(rows, 1, 3) == ["p1", "p2", "p3"]
    assert page_rows(rows, 3, 3) == ["p7"]
    assert page_rows(rows, 4, 3) == []
    assert page_rows(rows, 0, 3) == ["p1", "p2", "p3"]
