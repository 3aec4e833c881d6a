from __future__ import annotations

import json
import os

import pytest

from nodebuild import cache as cache_module
from nodebuild.cache import CacheRecord, Signature


def _record() -> CacheRecord:
    signature = Signature(
        runtime_version="20.11.1",
        package_manager_version="10.2.4",
        package_manager_kind="npm",
        stack_id="linux-x86_64",
    )
    return CacheRecord(signature=signature, directories=("node_modules",))


def test_store_and_load_record(tmp_path):
    record = _record()

    path = cache_module.store_record(tmp_path, record)

    assert path == tmp_path / "node" / "signature.json"
    loaded = cache_module.load_record(tmp_path)
    assert loaded is not None
    assert loaded.signature == record.signature
    assert loaded.directories == ("node_modules",)
    assert loaded.created_at == record.created_at
    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored["version"] == cache_module.RECORD_VERSION


def test_load_record_missing_or_corrupt_returns_none(tmp_path):
    assert cache_module.load_record(tmp_path) is None

    path = cache_module.record_path(tmp_path)
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    assert cache_module.load_record(tmp_path) is None

    path.write_text(json.dumps({"directories": []}), encoding="utf-8")
    assert cache_module.load_record(tmp_path) is None


def test_cache_present_tracks_record_and_directories(tmp_path):
    assert cache_module.cache_present(tmp_path) is False

    cached = cache_module.cached_path(tmp_path, "node_modules")
    cached.mkdir(parents=True)
    assert cache_module.cache_present(tmp_path) is True

    cached.rmdir()
    assert cache_module.cache_present(tmp_path) is False
    cache_module.store_record(tmp_path, _record())
    assert cache_module.cache_present(tmp_path) is True


def test_copy_directory_atomic_replaces_destination(tmp_path):
    source = tmp_path / "src"
    (source / "pkg").mkdir(parents=True)
    (source / "pkg" / "index.js").write_text("module.exports = 1;\n", encoding="utf-8")
    destination = tmp_path / "dest" / "node_modules"
    (destination / "stale").mkdir(parents=True)
    (destination / "stale" / "old.js").write_text("old", encoding="utf-8")

    cache_module.copy_directory_atomic(source, destination)

    assert (destination / "pkg" / "index.js").read_text(encoding="utf-8") == "module.exports = 1;\n"
    assert not (destination / "stale").exists()
    assert sorted(p.name for p in destination.parent.iterdir()) == ["node_modules"]


def test_copy_directory_atomic_keeps_symlinks(tmp_path):
    source = tmp_path / "src"
    (source / "pkg").mkdir(parents=True)
    (source / ".bin").mkdir()
    os.symlink("../pkg", source / ".bin" / "pkg")
    destination = tmp_path / "dest"

    cache_module.copy_directory_atomic(source, destination)

    link = destination / ".bin" / "pkg"
    assert link.is_symlink()
    assert os.readlink(link) == "../pkg"


def test_copy_directory_atomic_failure_leaves_destination(tmp_path, monkeypatch):
    source = tmp_path / "src"
    source.mkdir()
    (source / "new.txt").write_text("new", encoding="utf-8")
    destination = tmp_path / "dest"
    destination.mkdir()
    (destination / "old.txt").write_text("old", encoding="utf-8")

    def broken_copytree(*_args, **_kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(cache_module.shutil, "copytree", broken_copytree)

    with pytest.raises(OSError):
        cache_module.copy_directory_atomic(source, destination)

    assert (destination / "old.txt").read_text(encoding="utf-8") == "old"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["dest", "src"]


def test_clear_cache_removes_only_node_namespace(tmp_path):
    cache_module.store_record(tmp_path, _record())
    cache_module.cached_path(tmp_path, "node_modules").mkdir(parents=True)
    data_dir = cache_module.build_data_dir(tmp_path)
    data_dir.mkdir()
    (data_dir / "nodejs.json").write_text("{}", encoding="utf-8")

    assert cache_module.clear_cache(tmp_path) is True
    assert not cache_module.node_cache_dir(tmp_path).exists()
    assert (data_dir / "nodejs.json").exists()
    assert cache_module.clear_cache(tmp_path) is False


def test_list_cached_directories_uses_record(tmp_path):
    cache_module.store_record(tmp_path, _record())
    cached = cache_module.cached_path(tmp_path, "node_modules")
    cached.mkdir(parents=True)
    (cached / "a.js").write_text("12345", encoding="utf-8")

    assert cache_module.list_cached_directories(tmp_path) == [("node_modules", 5)]
    assert cache_module.list_cached_directories(tmp_path, ["missing"]) == []


def test_remove_path_handles_files_dirs_and_missing(tmp_path):
    file_path = tmp_path / "file"
    file_path.write_text("x", encoding="utf-8")
    dir_path = tmp_path / "dir"
    (dir_path / "nested").mkdir(parents=True)

    assert cache_module.remove_path(file_path) is True
    assert cache_module.remove_path(dir_path) is True
    assert cache_module.remove_path(tmp_path / "missing") is False
