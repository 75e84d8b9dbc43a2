"""Tests for the invoice bucket and the batch upload gateway."""

from __future__ import annotations

from io import BytesIO
from itertools import count

import pytest

from benefits_web.storage import (
    MAX_UPLOAD_BYTES,
    FileUploadGateway,
    LocalObjectStorage,
    StorageError,
    UploadError,
)

from conftest import make_file, make_large_file


class RecordingStorage(LocalObjectStorage):
    """Bucket that records every ``put`` call."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.put_calls = []

    def put(self, key, stream):
        self.put_calls.append(key)
        return super().put(key, stream)


class FailingStorage(RecordingStorage):
    """Bucket that rejects keys for one file name."""

    def __init__(self, *args, fail_on: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_on = fail_on

    def put(self, key, stream):
        if key.endswith(f"-{self.fail_on}"):
            self.put_calls.append(key)
            raise StorageError("connection reset by peer")
        return super().put(key, stream)


def _clock(start: int = 1_700_000_000_000):
    ticks = count(start)
    return lambda: next(ticks)


def test_empty_batch_returns_empty_list_without_storage_calls(tmp_path):
    storage = RecordingStorage(tmp_path)
    gateway = FileUploadGateway(storage)
    assert gateway.upload("42", []) == []
    assert storage.put_calls == []


def test_owner_id_is_required(gateway):
    with pytest.raises(ValueError):
        gateway.upload("", [make_file("a.pdf", 10)])


def test_oversized_file_rejected_before_storage_call(tmp_path):
    storage = RecordingStorage(tmp_path / "bucket")
    gateway = FileUploadGateway(storage)
    big = make_large_file(tmp_path, "scan.pdf", MAX_UPLOAD_BYTES + 1)

    with pytest.raises(UploadError) as excinfo:
        gateway.upload("42", [big])

    assert excinfo.value.file_name == "scan.pdf"
    assert "scan.pdf" in str(excinfo.value)
    assert storage.put_calls == []


def test_file_at_limit_is_accepted(tmp_path):
    gateway = FileUploadGateway(LocalObjectStorage(tmp_path / "bucket"), max_bytes=10)
    assert len(gateway.upload("42", [make_file("a.pdf", 10)])) == 1


def test_keys_follow_owner_timestamp_name_layout(storage):
    gateway = FileUploadGateway(storage, clock=lambda: 1_700_000_000_000)
    paths = gateway.upload("42", [make_file("nota fiscal.pdf", 10), make_file("b.png", 10)])

    assert paths == [
        "42/1700000000000-nota_fiscal.pdf",
        "42/1700000000001-b.png",
    ]
    assert storage.list("42/") == paths


def test_same_name_uploads_never_overwrite(storage):
    gateway = FileUploadGateway(storage, clock=lambda: 5)
    first = gateway.upload("7", [make_file("a.pdf", 3)])
    second = gateway.upload("7", [make_file("a.pdf", 4)])
    assert first != second
    assert len(storage.list("7/")) == 2


def test_storage_is_write_once(storage):
    storage.put("1/a.pdf", BytesIO(b"one"))
    with pytest.raises(StorageError):
        storage.put("1/a.pdf", BytesIO(b"two"))
    with storage.open("1/a.pdf") as handle:
        assert handle.read() == b"one"


def test_storage_rejects_keys_outside_bucket(storage):
    with pytest.raises(StorageError):
        storage.put("../escape.txt", BytesIO(b"x"))


def test_failure_stops_batch_and_leaves_earlier_files(tmp_path):
    """Given A, B, C with B failing: A stays stored, C is never attempted."""

    storage = FailingStorage(tmp_path / "bucket", fail_on="B.pdf")
    gateway = FileUploadGateway(storage, clock=_clock())
    files = [make_file("A.pdf", 10), make_file("B.pdf", 10), make_file("C.pdf", 10)]

    with pytest.raises(UploadError) as excinfo:
        gateway.upload("42", files)

    error = excinfo.value
    assert error.file_name == "B.pdf"
    assert "connection reset by peer" in error.cause
    assert error.uploaded_paths == ["42/1700000000000-A.pdf"]
    assert storage.list("42/") == ["42/1700000000000-A.pdf"]
    assert not any(key.endswith("C.pdf") for key in storage.put_calls)


def test_keys_skip_stamps_already_in_bucket(storage):
    storage.put("7/5-a.pdf", BytesIO(b"old"))
    storage.put("7/6-a.pdf", BytesIO(b"old"))
    gateway = FileUploadGateway(storage, clock=lambda: 5)

    assert gateway.upload("7", [make_file("a.pdf", 3)]) == ["7/7-a.pdf"]
    assert gateway.upload("8", [make_file("a.pdf", 3)]) == ["8/5-a.pdf"]


def test_gateway_keeps_no_state_between_batches(storage):
    gateway = FileUploadGateway(storage, clock=_clock())
    before = dict(vars(gateway))
    for owner in range(5):
        gateway.upload(str(owner), [make_file("a.pdf", 3)])
    assert vars(gateway) == before
