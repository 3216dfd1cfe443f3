import json
from pathlib import Path

import pytest

import sync_library

from conftest import build_epub


def test_add_then_list_offline(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    library_root = tmp_path / "library"
    epub = tmp_path / "example.epub"
    epub.write_bytes(build_epub())

    assert sync_library.main(["--library", str(library_root), "add", str(epub)]) == 0
    assert sync_library.main(["--library", str(library_root), "list"]) == 0

    output = capsys.readouterr().out
    assert "Added The Example Book" in output
    assert "The Example Book - Jane Doe" in output
    manifest = json.loads((library_root / "books.json").read_text(encoding="utf-8"))
    assert [row["name"] for row in manifest] == ["The Example Book"]


def test_config_file_and_flags_are_combined(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"library_root": str(tmp_path / "from-file"), "webdav_url": "https://dav.example.com"}),
        encoding="utf-8",
    )
    args = sync_library._parse_args(["--config", str(config_path), "--offline", "--remote-root", "/Books/", "list"])

    config = sync_library._combine_config(args)

    assert config.library_root == tmp_path / "from-file"
    assert config.remote_root == "Books"
    assert not config.has_remote


def test_fetch_without_server_reports_error(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    library_root = tmp_path / "library"
    library_root.mkdir()
    (library_root / "books.json").write_text(
        json.dumps([{"hash": "h1", "name": "Remote Only", "author": "", "ts": 1, "type": "EPUB"}]),
        encoding="utf-8",
    )

    assert sync_library.main(["--library", str(library_root), "fetch", "Remote Only"]) == 1

    assert "Error:" in capsys.readouterr().out


def test_unknown_book_exits(tmp_path: Path) -> None:
    with pytest.raises(SystemExit):
        sync_library.main(["--library", str(tmp_path), "remove", "missing"])
