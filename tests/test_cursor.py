import os
import stat

from parley.cursor import CursorStore


def test_missing_file_means_no_cursor(tmp_path):
    assert CursorStore(tmp_path / "cursor.txt").load() == ""


def test_save_then_load(tmp_path):
    store = CursorStore(tmp_path / "cursor.txt")

    store.save("  abc123\n")

    assert store.load() == "abc123"
    assert (tmp_path / "cursor.txt").read_text() == "abc123"


def test_clear_writes_empty_file(tmp_path):
    path = tmp_path / "cursor.txt"
    store = CursorStore(path)
    store.save("abc123")

    store.clear()

    assert path.exists()
    assert store.load() == ""


def test_save_creates_parent_dirs_and_leaves_no_temp_files(tmp_path):
    path = tmp_path / "state" / "cursor.txt"

    CursorStore(path).save("tok")

    assert sorted(os.listdir(path.parent)) == ["cursor.txt"]
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
