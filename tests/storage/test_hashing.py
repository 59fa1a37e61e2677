"""Streaming checksum helpers."""

from __future__ import annotations

import hashlib
import io
import threading

import pytest

from casedocs_api.storage import (
    ContentHasher,
    HashingReader,
    StorageLimitError,
    WriteCancelledError,
    hash_stream,
)


def test_hash_stream_matches_hashlib_for_multi_chunk_input() -> None:
    payload = b"client document " * 10_000

    digest = hash_stream(io.BytesIO(payload), chunk_size=1024)

    assert digest == hashlib.sha256(payload).hexdigest()


def test_md5_is_supported() -> None:
    payload = b"progress note"

    assert hash_stream(io.BytesIO(payload), algorithm="md5") == hashlib.md5(payload).hexdigest()


def test_unknown_algorithm_is_rejected() -> None:
    with pytest.raises(ValueError):
        ContentHasher("crc32")


def test_hashing_reader_tracks_size_and_checksum() -> None:
    payload = b"abc" * 1000
    reader = HashingReader(io.BytesIO(payload))

    consumed = b"".join(iter(reader))

    assert consumed == payload
    assert reader.size == len(payload)
    assert reader.checksum == hashlib.sha256(payload).hexdigest()


def test_hashing_reader_stops_at_limit() -> None:
    reader = HashingReader(io.BytesIO(b"x" * 100), max_bytes=64)

    with pytest.raises(StorageLimitError) as excinfo:
        while reader.read(32):
            pass

    assert excinfo.value.limit == 64
    assert excinfo.value.received == 96


def test_hashing_reader_stops_once_cancelled() -> None:
    cancel = threading.Event()
    reader = HashingReader(io.BytesIO(b"x" * 4096), cancel=cancel)

    assert reader.read(1024) == b"x" * 1024
    cancel.set()

    with pytest.raises(WriteCancelledError):
        reader.read(1024)
    assert reader.size == 1024
