"""Tests for fax document storage."""

import os
import stat

import pytest

from sinchfax.errors import StorageWriteFailed
from sinchfax.services.fax_storage import FaxStorage, safe_file_stem


@pytest.mark.parametrize(
    "fax_id, expected",
    [
        ("01HXYZ", "01HXYZ"),
        ("../../etc/passwd", "_.._etc_passwd"),
        ("a b/c", "a_b_c"),
    ],
)
def test_safe_file_stem(fax_id, expected):
    assert safe_file_stem(fax_id) == expected


def test_safe_file_stem_rejects_empty():
    with pytest.raises(StorageWriteFailed):
        safe_file_stem("...")


def test_save_creates_directory_and_file(tmp_path):
    storage = FaxStorage(str(tmp_path / "nested" / "faxes"))

    path = storage.save("F1", b"%PDF-1.4 one")

    assert path == str(tmp_path / "nested" / "faxes" / "F1.pdf")
    with open(path, "rb") as f:
        assert f.read() == b"%PDF-1.4 one"
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o660


def test_save_keeps_existing_file(tmp_path):
    storage = FaxStorage(str(tmp_path))
    first = storage.save("F1", b"%PDF-1.4 one")

    second = storage.save("F1", b"%PDF-1.4 two")

    assert second == first
    assert os.listdir(tmp_path) == ["F1.pdf"]
    with open(first, "rb") as f:
        assert f.read() == b"%PDF-1.4 one"


def test_save_replaces_empty_file(tmp_path):
    storage = FaxStorage(str(tmp_path))
    (tmp_path / "F1.pdf").write_bytes(b"")

    storage.save("F1", b"%PDF-1.4 one")

    assert (tmp_path / "F1.pdf").read_bytes() == b"%PDF-1.4 one"


def test_save_failure_raises(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    storage = FaxStorage(str(blocker / "faxes"))

    with pytest.raises(StorageWriteFailed):
        storage.save("F1", b"%PDF-1.4 one")
