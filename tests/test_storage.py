from __future__ import annotations

from pathlib import Path

import pytest

from bytelens.core.storage import (
    DirectorySchemaStore,
    MemorySchemaStore,
    SchemaStore,
    get_builtin_formats_dir,
    get_user_schemas_dir,
)


@pytest.fixture(params=["memory", "directory"])
def store(request, tmp_path: Path) -> SchemaStore:
    if request.param == "memory":
        return MemorySchemaStore()
    return DirectorySchemaStore(tmp_path / "formats")


def test_put_get_list_delete(store: SchemaStore) -> None:
    assert store.list() == []
    assert store.get("alpha") is None
    store.put("beta", "meta:\n  id: beta\n")
    store.put("alpha", "meta:\n  id: alpha\n")
    assert store.list() == ["alpha", "beta"]
    assert store.get("alpha") == "meta:\n  id: alpha\n"
    store.put("alpha", "meta:\n  id: alpha\n# v2\n")
    assert store.get("alpha").endswith("# v2\n")
    assert store.delete("alpha")
    assert not store.delete("alpha")
    assert store.list() == ["beta"]


def test_stores_satisfy_protocol(tmp_path: Path) -> None:
    assert isinstance(MemorySchemaStore(), SchemaStore)
    assert isinstance(DirectorySchemaStore(tmp_path), SchemaStore)


def test_directory_store_files(tmp_path: Path) -> None:
    store = DirectorySchemaStore(tmp_path / "nested" / "dir")
    store.put("gamma", "text")
    assert (tmp_path / "nested" / "dir" / "gamma.ksy").read_text() == "text"
    assert not list((tmp_path / "nested" / "dir").glob("*.tmp"))
    (tmp_path / "nested" / "dir" / "README.txt").write_text("not a schema")
    (tmp_path / "nested" / "dir" / "Bad-Name.ksy").write_text("skipped")
    assert store.list() == ["gamma"]


@pytest.mark.parametrize("bad", ["../escape", "Upper", "", "with space", "1st"])
def test_directory_store_rejects_unsafe_ids(tmp_path: Path, bad: str) -> None:
    store = DirectorySchemaStore(tmp_path)
    with pytest.raises(ValueError):
        store.put(bad, "x")


def test_user_dir_override(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("BYTELENS_SCHEMA_DIR", str(tmp_path))
    assert get_user_schemas_dir() == tmp_path
    assert DirectorySchemaStore().directory == tmp_path


def test_builtin_dir_ships_schemas() -> None:
    builtin = get_builtin_formats_dir()
    assert builtin.is_dir()
    assert (builtin / "png.ksy").is_file()
