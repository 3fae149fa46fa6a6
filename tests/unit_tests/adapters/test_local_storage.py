import pytest

from files_agent.adapters.storage import (
    LocalStorageBackend,
    ObjectNotFound,
    TransferFailed,
    placeholder_folder,
    placeholder_key,
)
from files_agent.schemas import FileRecord

TEST_CONTENT = b"hello world"


@pytest.fixture
def backend(tmp_path):
    return LocalStorageBackend("example.com", str(tmp_path))


def test_write_creates_nested_directories(backend, tmp_path):
    key = backend.write("a/b/c/file.txt", TEST_CONTENT)

    assert key == "a/b/c/file.txt"
    assert (tmp_path / "example.com" / "a" / "b" / "c" / "file.txt").read_bytes() == TEST_CONTENT
    assert backend.read("a/b/c/file.txt") == TEST_CONTENT


def test_read_missing_key_raises_not_found(backend):
    with pytest.raises(ObjectNotFound):
        backend.read("nope.txt")


def test_delete_is_idempotent(backend):
    backend.write("file.txt", TEST_CONTENT)
    backend.delete("file.txt")
    backend.delete("file.txt")

    with pytest.raises(ObjectNotFound):
        backend.read("file.txt")


def test_delete_many_ignores_missing_keys(backend):
    backend.write("one", b"1")
    backend.write("two", b"2")

    backend.delete_many(["one", "two", "three"])

    assert backend.list_keys() == []


def test_keys_cannot_escape_the_namespace(backend):
    with pytest.raises(TransferFailed):
        backend.write("../other.com/file.txt", TEST_CONTENT)


def test_domains_are_isolated(tmp_path):
    first = LocalStorageBackend("first.com", str(tmp_path))
    second = LocalStorageBackend("second.com", str(tmp_path))
    first.write("shared.txt", b"first")

    with pytest.raises(ObjectNotFound):
        second.read("shared.txt")


def test_list_keys_filters_by_prefix(backend):
    backend.write("docs/a.txt", b"a")
    backend.write("docs/sub/b.txt", b"b")
    backend.write("images/c.png", b"c")

    assert backend.list_keys("docs/") == ["docs/a.txt", "docs/sub/b.txt"]


def test_placeholder_keys_round_trip():
    key = placeholder_key("docs/reports")

    assert key == "docs/reports/.folder"
    assert placeholder_folder(key) == "docs/reports"
    assert placeholder_folder("docs/reports/file.txt") is None


def test_store_file_keeps_extension_and_reads_back(backend):
    stored = backend.store_file("docs/abc123", TEST_CONTENT, {"name": "Notes.TXT"})

    assert stored.storage_key == "docs/abc123"
    assert stored.data_key == "docs/abc123.txt"
    assert stored.meta_key is None
    assert backend.read(stored.data_key) == TEST_CONTENT


def test_download_target_falls_back_to_storage_key(backend):
    backend.write("legacy-key", TEST_CONTENT)
    record = FileRecord(
        id="a" * 32,
        name="old.bin",
        size=len(TEST_CONTENT),
        hash="x",
        created_by="0xABC",
        modified_by="0xABC",
        storage_key="legacy-key",
    )

    target = backend.download_target(record)

    assert target.content == TEST_CONTENT
    assert target.redirect_url is None
    assert target.size == len(TEST_CONTENT)
    assert backend.derived_keys(record) == ["legacy-key"]
