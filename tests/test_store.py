import json

import pytest

from imageshelf.errors import NotFoundError, StorageError
from imageshelf.store import JsonImageStore, create_store, merge_into_index, SqlImageStore

from conftest import make_record


def test_load_initializes_missing_document(tmp_path, uploads_dir):
    document = tmp_path / "data" / "db.json"
    store = JsonImageStore(str(document), str(uploads_dir))
    store.load()

    assert json.loads(document.read_text()) == {"images": [], "tags": []}
    assert store.all() == []
    assert store.tags == []


def test_load_rejects_corrupt_document(tmp_path, uploads_dir):
    document = tmp_path / "db.json"
    document.write_text("{not json")
    store = JsonImageStore(str(document), str(uploads_dir))

    with pytest.raises(StorageError):
        store.load()


def test_load_rejects_non_object_document(tmp_path, uploads_dir):
    document = tmp_path / "db.json"
    document.write_text("[]")

    with pytest.raises(StorageError):
        JsonImageStore(str(document), str(uploads_dir)).load()


def test_append_rewrites_whole_document(json_store):
    json_store.append(make_record("a1", "Sunset.png", ["Red", "sky"]))
    json_store.append(make_record("b2", "cat.jpg", ["cat"]))

    with open(json_store.document_path, encoding="utf-8") as f:
        data = json.load(f)
    assert [img["id"] for img in data["images"]] == ["a1", "b2"]
    assert data["images"][0]["originalName"] == "Sunset.png"
    assert data["images"][0]["createdAt"] == "2024-01-01T00:00:00Z"
    assert data["tags"] == ["Red", "sky", "cat"]


def test_state_survives_reload(json_store, uploads_dir):
    json_store.append(make_record("a1", "one.png", ["x"]))

    reloaded = JsonImageStore(json_store.document_path, str(uploads_dir))
    reloaded.load()
    assert [r.id for r in reloaded.all()] == ["a1"]
    assert reloaded.get("a1").original_name == "one.png"
    assert reloaded.tags == ["x"]


def test_failed_write_leaves_memory_unchanged(json_store, monkeypatch):
    json_store.append(make_record("a1", "one.png", ["x"]))

    def broken_write():
        raise StorageError("disk full")

    monkeypatch.setattr(json_store, "_write", broken_write)
    with pytest.raises(StorageError):
        json_store.append(make_record("b2", "two.png", ["y"]))

    assert [r.id for r in json_store.all()] == ["a1"]
    assert json_store.tags == ["x"]


def test_merge_into_index_is_case_insensitive():
    index = ["Red"]
    added = merge_into_index(index, ["red", "Blue", "blue", "green"])

    assert added == ["Blue", "green"]
    assert index == ["Red", "Blue", "green"]


def test_replace_tags_overwrites_and_grows_index(any_store):
    any_store.append(make_record("a1", "one.png", ["old"]))

    updated = any_store.replace_tags("a1", ["new", "New", "other"])

    assert updated.tags == ["new", "New", "other"]
    assert any_store.get("a1").tags == ["new", "New", "other"]
    # The index keeps "old" and stores "new" only once.
    assert any_store.tags == ["old", "new", "other"]


def test_replace_tags_unknown_id_changes_nothing(any_store):
    any_store.append(make_record("a1", "one.png", ["keep"]))

    with pytest.raises(NotFoundError):
        any_store.replace_tags("missing", ["x"])

    assert [r.tags for r in any_store.all()] == [["keep"]]
    assert any_store.tags == ["keep"]


def test_remove_deletes_record_and_file(any_store, uploads_dir):
    record = make_record("a1", "one.png", ["cat"])
    (uploads_dir / record.filename).write_bytes(b"data")
    any_store.append(record)

    any_store.remove("a1")

    assert any_store.all() == []
    assert not (uploads_dir / record.filename).exists()
    with pytest.raises(NotFoundError):
        any_store.get("a1")
    # Tags are never dropped from the index.
    assert any_store.tags == ["cat"]


def test_remove_tolerates_missing_file(any_store):
    any_store.append(make_record("a1", "one.png", []))

    any_store.remove("a1")

    assert any_store.all() == []


def test_remove_unknown_id(any_store):
    with pytest.raises(NotFoundError):
        any_store.remove("nope")


def test_all_keeps_insertion_order(any_store):
    for image_id in ["c", "a", "b"]:
        any_store.append(make_record(image_id, f"{image_id}.png", []))

    assert [r.id for r in any_store.all()] == ["c", "a", "b"]


def test_duplicate_ids_are_rejected(any_store):
    any_store.append(make_record("a1", "one.png", ["x"], filename="one.png"))

    with pytest.raises(StorageError):
        any_store.append(make_record("a1", "two.png", ["y"], filename="two.png"))
    assert [r.original_name for r in any_store.all()] == ["one.png"]
    assert any_store.tags == ["x"]


def test_create_store_selects_backend(tmp_path, uploads_dir):
    sql = create_store("sql", "unused.json", f"sqlite:///{tmp_path / 'x.db'}", str(uploads_dir))
    fallback = create_store("bogus", str(tmp_path / "db.json"), "", str(uploads_dir))

    assert isinstance(sql, SqlImageStore)
    assert isinstance(fallback, JsonImageStore)
    sql.engine.dispose()
