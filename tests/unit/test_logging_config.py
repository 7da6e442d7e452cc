import pytest

from papertable.utils.logging_config import LogFiles, Logger, get_trace_id, trace_scope


@pytest.fixture
def log_dir(tmp_path):
    Logger.close()
    Logger.init(base_dir=str(tmp_path), level="INFO")
    yield tmp_path
    Logger.close()


def test_log_files_come_from_yaml():
    assert LogFiles.BATCH == "batch/batch.log"
    assert LogFiles.SEARCH == "search/search.log"
    with pytest.raises(AttributeError):
        LogFiles.NOT_A_LOG


def test_lines_carry_enclosing_trace_id(log_dir):
    with trace_scope("batch-20250101-000000-abcd1234") as trace_id:
        assert get_trace_id() == trace_id
        Logger.info("task started", file=LogFiles.BATCH)
    Logger.info("after batch", file=LogFiles.BATCH)

    lines = (log_dir / "batch" / "batch.log").read_text(encoding="utf-8").splitlines()
    assert "[batch-20250101-000000-abcd1234]" in lines[0]
    assert "task started" in lines[0]
    assert "[-]" in lines[1]
    assert get_trace_id() is None


def test_level_filters_lines(log_dir):
    Logger.set_level("ERROR")
    Logger.info("dropped", file=LogFiles.OCR)
    Logger.error("kept", file=LogFiles.OCR)

    text = (log_dir / "ocr" / "ocr.log").read_text(encoding="utf-8")
    assert "dropped" not in text
    assert "kept" in text
