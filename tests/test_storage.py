from __future__ import annotations

import io
import json
import os
import stat

import pytest

from modvault.errors import FileTooLarge, StorageFailure
from modvault.schemas import ItemRecord
from modvault.storage import (
    CatalogStore,
    UploadDirectory,
    clean_filename,
    extension_of,
    find_item,
    make_storage_name,
    new_storage_name,
)


def _record(item_id: str, storage_name: str) -> ItemRecord:
    return ItemRecord(
        id=item_id,
        title=f"title {item_id}",
        storage_name=storage_name,
        original_name=storage_name,
        size_bytes=3,
        uploaded_at="2026-03-01T12:00:00+00:00",
        uploader="admin",
    )


@pytest.mark.parametrize(
    ("original", "expected"),
    [
        ("Patch v1 (final).zip", "Patch_v1__final_.zip"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\me\\mod.zip", "mod.zip"),
        ("한글파일.txt", "____.txt"),
        ("..", "file"),
        ("", "file"),
    ],
)
def test_clean_filename(original, expected) -> None:
    assert clean_filename(original) == expected


def test_clean_filename_truncates_and_keeps_extension() -> None:
    cleaned = clean_filename("a" * 300 + ".zip")

    assert len(cleaned) == 128
    assert cleaned.endswith(".zip")


def test_make_storage_name_is_pure_and_prefixed() -> None:
    first = make_storage_name("my mod.zip", stamp=1_700_000_000_000_000_000, token="ab12")
    second = make_storage_name("my mod.zip", stamp=1_700_000_000_000_000_000, token="ab12")

    assert first == second == "1700000000000000000-ab12-my_mod.zip"


def test_make_storage_name_rejects_bad_token() -> None:
    with pytest.raises(ValueError):
        make_storage_name("a.zip", stamp=1, token="../x")


def test_new_storage_name_unique_for_same_input() -> None:
    names = {new_storage_name("same.zip") for _ in range(100)}

    assert len(names) == 100
    assert all(name.endswith("-same.zip") for name in names)


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("archive.ZIP", ".zip"),
        ("archive.tar.gz", ".gz"),
        ("noext", ""),
        (".zip", ""),
        ("trailing.", ""),
        ("dir.v2/readme", ""),
    ],
)
def test_extension_of(name, expected) -> None:
    assert extension_of(name) == expected


def test_catalog_missing_file_loads_empty(tmp_path) -> None:
    store = CatalogStore(tmp_path / "items.json")

    assert store.load() == []


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        '{"id": "x"}',
        '[{"id": "x"}]',
        "",
    ],
)
def test_catalog_corrupt_file_loads_empty(tmp_path, content) -> None:
    path = tmp_path / "items.json"
    path.write_text(content, encoding="utf-8")

    assert CatalogStore(path).load() == []


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        '{"id": "x"}',
        '[{"id": "x"}]',
    ],
)
def test_catalog_load_strict_raises_for_corrupt_file(tmp_path, content) -> None:
    path = tmp_path / "items.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(StorageFailure):
        CatalogStore(path).load_strict()


def test_catalog_load_strict_treats_missing_and_blank_as_empty(tmp_path) -> None:
    store = CatalogStore(tmp_path / "items.json")
    assert store.load_strict() == []

    store.path.write_text("  \n", encoding="utf-8")
    assert store.load_strict() == []


def test_catalog_transaction_refuses_record_with_unknown_field(tmp_path) -> None:
    store = CatalogStore(tmp_path / "items.json")
    store.save([_record("a", "1-a.zip"), _record("b", "2-b.zip")])
    payload = json.loads(store.path.read_text(encoding="utf-8"))
    payload[1]["note"] = "hand edited"
    store.path.write_text(json.dumps(payload), encoding="utf-8")
    before = store.path.read_bytes()

    with pytest.raises(StorageFailure, match="invalid record"):
        with store.transaction() as items:
            store.save(items)

    assert store.path.read_bytes() == before
    assert store.load() == []


def test_catalog_save_and_load_preserves_order(tmp_path) -> None:
    store = CatalogStore(tmp_path / "nested" / "items.json")
    items = [_record("b", "2-b.zip"), _record("a", "1-a.zip")]

    store.save(items)

    assert store.load() == items
    payload = json.loads((tmp_path / "nested" / "items.json").read_text(encoding="utf-8"))
    assert [entry["id"] for entry in payload] == ["b", "a"]
    assert payload[0]["storage_name"] == "2-b.zip"


def test_catalog_save_leaves_no_temp_files(tmp_path) -> None:
    store = CatalogStore(tmp_path / "items.json")

    store.save([_record("a", "1-a.zip")])
    store.save([])

    assert sorted(path.name for path in tmp_path.iterdir()) == ["items.json"]
    assert store.load() == []


def test_find_item_matches_id_or_storage_name() -> None:
    items = [_record("a", "1-a.zip"), _record("b", "2-b.zip")]

    assert find_item(items, "b") == 1
    assert find_item(items, "1-a.zip") == 0
    assert find_item(items, "c") is None


def test_item_record_rejects_path_like_storage_name() -> None:
    with pytest.raises(ValueError):
        _record("a", "../escape.zip")


def test_upload_directory_stage_and_promote(tmp_path) -> None:
    files = UploadDirectory(tmp_path / "uploads", tmp_path / "staging", chunk_size=3)

    staged = files.stage(io.BytesIO(b"abcdefg"), max_bytes=100)
    assert staged.size_bytes == 7
    assert staged.path.parent == tmp_path / "staging"

    files.promote(staged, "1-a.zip")

    assert files.list_names() == ["1-a.zip"]
    assert files.path_for("1-a.zip").read_bytes() == b"abcdefg"
    assert list((tmp_path / "staging").iterdir()) == []


def test_upload_directory_promote_refuses_overwrite(tmp_path) -> None:
    files = UploadDirectory(tmp_path / "uploads", tmp_path / "staging")
    files.path_for("taken.zip").write_bytes(b"old")
    staged = files.stage(io.BytesIO(b"new"), max_bytes=100)

    with pytest.raises(FileExistsError):
        files.promote(staged, "taken.zip")

    assert files.path_for("taken.zip").read_bytes() == b"old"


def test_upload_directory_stage_cleans_up_when_too_large(tmp_path) -> None:
    files = UploadDirectory(tmp_path / "uploads", tmp_path / "staging", chunk_size=2)

    with pytest.raises(FileTooLarge):
        files.stage(io.BytesIO(b"abcdef"), max_bytes=4)

    assert list((tmp_path / "staging").iterdir()) == []


def test_upload_directory_retire_and_restore(tmp_path) -> None:
    files = UploadDirectory(tmp_path / "uploads", tmp_path / "staging")
    files.path_for("1-a.zip").write_bytes(b"data")

    retired = files.retire("1-a.zip")
    assert files.list_names() == []
    assert retired.size_bytes == 4

    files.restore(retired, "1-a.zip")
    assert files.list_names() == ["1-a.zip"]


def test_upload_directory_retire_missing_file(tmp_path) -> None:
    files = UploadDirectory(tmp_path / "uploads", tmp_path / "staging")

    with pytest.raises(FileNotFoundError):
        files.retire("missing.zip")


@pytest.mark.parametrize("name", ["", ".", "..", "a/b.zip", "../x.zip"])
def test_upload_directory_rejects_unsafe_names(tmp_path, name) -> None:
    files = UploadDirectory(tmp_path / "uploads", tmp_path / "staging")

    with pytest.raises(ValueError):
        files.path_for(name)


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_upload_directory_promoted_file_uses_configured_mode(tmp_path) -> None:
    files = UploadDirectory(tmp_path / "uploads", tmp_path / "staging", file_mode=0o644)

    files.promote(files.stage(io.BytesIO(b"data"), max_bytes=100), "1-a.zip")

    assert stat.S_IMODE(files.path_for("1-a.zip").stat().st_mode) == 0o644


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_upload_directory_default_mode_follows_umask(tmp_path) -> None:
    previous = os.umask(0o027)
    try:
        files = UploadDirectory(tmp_path / "uploads", tmp_path / "staging")
    finally:
        os.umask(previous)

    files.promote(files.stage(io.BytesIO(b"data"), max_bytes=100), "1-a.zip")

    assert files.file_mode == 0o640
    assert stat.S_IMODE(files.path_for("1-a.zip").stat().st_mode) == 0o640
