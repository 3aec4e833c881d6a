from __future__ import annotations

import json

import pytest

import nodebuild.utils as utils


def test_resolve_directory_validates(tmp_path):
    with pytest.raises(FileNotFoundError):
        utils.resolve_directory(tmp_path / "missing")

    file_path = tmp_path / "file.txt"
    file_path.write_text("x", encoding="utf-8")
    with pytest.raises(NotADirectoryError):
        utils.resolve_directory(file_path)

    assert utils.resolve_directory(tmp_path) == tmp_path.resolve()


def test_normalize_relative_path():
    assert utils.normalize_relative_path("node_modules") == "node_modules"
    assert utils.normalize_relative_path("./client//node_modules/") == "client/node_modules"
    assert utils.normalize_relative_path("client\\node_modules") == "client/node_modules"
    assert utils.normalize_relative_path("") is None
    assert utils.normalize_relative_path(".") is None
    assert utils.normalize_relative_path("/etc") is None
    assert utils.normalize_relative_path("a/../b") is None


def test_directory_size_and_count_packages(tmp_path):
    modules = tmp_path / "node_modules"
    (modules / "express").mkdir(parents=True)
    (modules / "express" / "index.js").write_text("12345", encoding="utf-8")
    (modules / "@babel" / "core").mkdir(parents=True)
    (modules / "@babel" / "parser").mkdir(parents=True)
    (modules / ".bin").mkdir()
    (modules / ".package-lock.json").write_text("{}", encoding="utf-8")

    assert utils.count_packages(modules) == 3
    assert utils.directory_size(modules) == 7
    assert utils.count_packages(tmp_path / "missing") == 0
    assert utils.directory_size(tmp_path / "missing") == 0


def test_format_size():
    assert utils.format_size(512) == "512 B"
    assert utils.format_size(2048) == "2.0 KB"
    assert utils.format_size(5 * 1024 * 1024) == "5.0 MB"


def test_format_path_relative(tmp_path):
    nested = tmp_path / "a" / "b.txt"

    assert utils.format_path(nested, tmp_path) == "./a/b.txt"
    assert utils.format_path(nested) == str(nested)
    assert utils.format_path(nested, tmp_path / "other") == str(nested)


def test_atomic_write_json_replaces_file(tmp_path):
    target = tmp_path / "out" / "data.json"

    utils.atomic_write_json(target, {"b": 1, "a": 2})
    utils.atomic_write_json(target, {"c": 3})

    assert json.loads(target.read_text(encoding="utf-8")) == {"c": 3}
    assert [p.name for p in target.parent.iterdir()] == ["data.json"]
