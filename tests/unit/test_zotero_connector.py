from __future__ import annotations

from pathlib import Path

import pytest

from papertable.infrastructure.connectors import ZoteroHostRepository


class _DummyResponse:
    def __init__(self, payload=None, *, status_code=200, content=b""):
        self._payload = payload
        self.status_code = status_code
        self.content = content

    def raise_for_status(self) -> None:
        return None

    def json(self):
        return self._payload


class _DummySession:
    def __init__(self, routes=None, post_payload=None):
        self.routes = routes or {}
        self.post_payload = post_payload
        self.gets = []
        self.posts = []
        self.patches = []

    def get(self, url, headers=None, params=None, timeout=None, allow_redirects=False):
        self.gets.append({"url": url, "headers": headers, "params": params})
        for suffix, response in self.routes.items():
            if url.endswith(suffix):
                return response
        return _DummyResponse(None, status_code=404)

    def post(self, url, headers=None, json=None, timeout=None):
        self.posts.append({"url": url, "headers": headers, "json": json})
        return _DummyResponse(self.post_payload)

    def patch(self, url, headers=None, json=None, timeout=None):
        self.patches.append({"url": url, "headers": headers, "json": json})
        return _DummyResponse({})


def _repo(session, tmp_path: Path | None = None):
    return ZoteroHostRepository(
        api_key="k",
        library_type="user",
        library_id="123",
        cache_dir=tmp_path or "data/attachments",
        session=session,
    )


ITEM = {
    "key": "ABCD1234",
    "version": 7,
    "data": {
        "itemType": "journalArticle",
        "title": "  Scaling Laws for LMs ",
        "creators": [
            {"creatorType": "author", "firstName": "Alice", "lastName": "Smith"},
            {"creatorType": "author", "name": "Bob Doe"},
            {"creatorType": "translator", "name": "Not Counted"},
        ],
        "date": "March 2024",
    },
}
CHILDREN = [
    {"key": "NOTE1", "data": {"itemType": "note", "note": "<p>Summary</p>"}},
    {
        "key": "ATT1",
        "data": {
            "itemType": "attachment",
            "parentItem": "ABCD1234",
            "filename": "paper.pdf",
            "contentType": "application/pdf",
        },
    },
]


def test_zotero_item_to_paper_mapping():
    paper = ZoteroHostRepository.zotero_item_to_paper(ITEM, CHILDREN)

    assert paper.id == "ABCD1234"
    assert paper.title == "Scaling Laws for LMs"
    assert paper.authors == ["Alice Smith", "Bob Doe"]
    assert paper.year == 2024
    assert paper.note_ids == ["NOTE1"]
    assert paper.attachment_ids == ["ATT1"]


def test_attachment_mapping_detects_pdf():
    attachment = ZoteroHostRepository.zotero_attachment(CHILDREN[1])

    assert attachment.parent_id == "ABCD1234"
    assert attachment.is_pdf is True


def test_library_path_validation():
    with pytest.raises(ValueError):
        ZoteroHostRepository(api_key="k", library_type="team", library_id="1")
    with pytest.raises(ValueError):
        ZoteroHostRepository(api_key="k", library_type="group", library_id=" ")


def test_get_item_reads_children():
    session = _DummySession(
        {
            "/items/ABCD1234/children": _DummyResponse(CHILDREN),
            "/items/ABCD1234": _DummyResponse(ITEM),
        }
    )

    paper = _repo(session).get_item("ABCD1234")

    assert paper is not None
    assert paper.note_ids == ["NOTE1"]
    assert session.gets[0]["url"] == "https://api.zotero.org/users/123/items/ABCD1234"
    assert session.gets[0]["headers"]["Zotero-API-Key"] == "k"


def test_get_item_unknown_returns_none():
    assert _repo(_DummySession()).get_item("missing") is None


def test_create_note_posts_child_note():
    session = _DummySession(post_payload={"success": {"0": "NEWNOTE"}})

    key = _repo(session).create_note("ABCD1234", "<h1>T</h1><p>body</p>")

    assert key == "NEWNOTE"
    body = session.posts[0]["json"]
    assert body == [{"itemType": "note", "parentItem": "ABCD1234", "note": "<h1>T</h1><p>body</p>"}]
    assert session.posts[0]["headers"]["Content-Type"] == "application/json"


def test_create_note_rejected_raises():
    session = _DummySession(post_payload={"success": {}, "failed": {"0": {"message": "bad"}}})

    with pytest.raises(RuntimeError):
        _repo(session).create_note("ABCD1234", "<p>x</p>")


def test_update_note_sends_version_precondition():
    note = {"key": "NOTE1", "version": 12, "data": {"itemType": "note", "note": "<p>old</p>"}}
    session = _DummySession({"/items/NOTE1": _DummyResponse(note)})

    _repo(session).update_note("NOTE1", "<p>new</p>")

    patch = session.patches[0]
    assert patch["json"] == {"note": "<p>new</p>"}
    assert patch["headers"]["If-Unmodified-Since-Version"] == "12"


def test_attachment_file_is_downloaded_once(tmp_path: Path):
    session = _DummySession({"/items/ATT1/file": _DummyResponse(content=b"%PDF-1.4")})
    repo = _repo(session, tmp_path)

    first = repo.get_attachment_file("ATT1")
    second = repo.get_attachment_file("ATT1")

    assert first == second == tmp_path / "ATT1.pdf"
    assert first.read_bytes() == b"%PDF-1.4"
    assert len(session.gets) == 1


def test_items_by_tag_queries_top_level_items():
    session = _DummySession(routes={"/items/top": _DummyResponse([ITEM, {"data": {}}])})

    keys = _repo(session).get_items_by_tag(" rct ")

    assert keys == ["ABCD1234"]
    assert session.gets[0]["params"]["tag"] == "rct"
