"""Tests for one-shot retrieval."""
import asyncio
import random
from pathlib import Path
from unittest.mock import patch

import pytest

from relay.transfers import TransferManager
from relay.transfers.errors import InternalFaultError, NotFoundError, TransferAbortedError


async def _stream(*chunks: bytes):
    for chunk in chunks:
        yield chunk


async def _drain(download) -> bytes:
    data = b""
    async for chunk in download.iter_bytes():
        data += chunk
    return data


@pytest.fixture
def small_chunks(manager):
    manager.retrieval._chunk_size = 4
    return manager


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_round_trip_exactly_once(self, manager):
        payload = bytes(range(256)) * 40
        session = await manager.ingest(_stream(payload[:5000], payload[5000:]), "blob.bin")

        download = await manager.retrieve(session.code)
        assert download.filename == "blob.bin"
        assert download.size_bytes == len(payload)
        assert await _drain(download) == payload

        with pytest.raises(NotFoundError):
            await manager.retrieve(session.code)

    @pytest.mark.asyncio
    async def test_served_file_is_deleted(self, manager):
        session = await manager.ingest(_stream(b"bye"), "bye.txt")
        await _drain(await manager.retrieve(session.code))

        assert not (Path(manager.storage.upload_dir) / session.storage_key).exists()
        assert manager.registry.get(session.code) is None

    @pytest.mark.asyncio
    async def test_unknown_code_not_found(self, manager):
        with pytest.raises(NotFoundError) as exc_info:
            await manager.retrieve(4242)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_filename_strips_directories(self, manager):
        session = await manager.ingest(_stream(b"0123456789"), "a/../../etc/passwd")
        download = await manager.retrieve(session.code)
        assert download.filename == "passwd"

    @pytest.mark.asyncio
    async def test_missing_file_is_not_found(self, manager):
        session = await manager.ingest(_stream(b"data"), "gone.txt")
        (Path(manager.storage.upload_dir) / session.storage_key).unlink()

        with pytest.raises(NotFoundError):
            await manager.retrieve(session.code)

    @pytest.mark.asyncio
    async def test_stat_failure_is_internal_fault(self, manager):
        session = await manager.ingest(_stream(b"data"), "f.txt")
        with patch.object(manager.storage, "exists", side_effect=OSError("disk gone")):
            with pytest.raises(InternalFaultError):
                await manager.retrieve(session.code)

    @pytest.mark.asyncio
    async def test_streams_in_bounded_chunks(self, small_chunks):
        session = await small_chunks.ingest(_stream(b"abcdefghij"), "letters.txt")
        download = await small_chunks.retrieve(session.code)
        chunks = [c async for c in download.iter_bytes()]
        assert chunks == [b"abcd", b"efgh", b"ij"]


class TestDeliverThenDelete:
    @pytest.mark.asyncio
    async def test_abandoned_download_keeps_session(self, small_chunks):
        session = await small_chunks.ingest(_stream(b"abcdefghij"), "letters.txt")

        stream = (await small_chunks.retrieve(session.code)).iter_bytes()
        assert await stream.__anext__() == b"abcd"
        await stream.aclose()

        assert small_chunks.registry.get(session.code) is not None
        assert not small_chunks.registry.is_claimed(session.code)
        assert await _drain(await small_chunks.retrieve(session.code)) == b"abcdefghij"

    @pytest.mark.asyncio
    async def test_concurrent_download_of_same_code_refused(self, small_chunks):
        session = await small_chunks.ingest(_stream(b"abcdefghij"), "letters.txt")

        stream = (await small_chunks.retrieve(session.code)).iter_bytes()
        await stream.__anext__()
        with pytest.raises(NotFoundError):
            await small_chunks.retrieve(session.code)
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_second_stream_of_same_download_aborts(self, manager):
        session = await manager.ingest(_stream(b"once"), "once.txt")
        download = await manager.retrieve(session.code)
        assert await _drain(download) == b"once"

        with pytest.raises(TransferAbortedError):
            await _drain(download)

    @pytest.mark.asyncio
    async def test_read_failure_aborts_and_keeps_session(self, manager):
        session = await manager.ingest(_stream(b"data"), "f.txt")
        download = await manager.retrieve(session.code)

        async def vanished(key, chunk_size):
            raise FileNotFoundError(key)
            yield b""  # pragma: no cover

        with patch.object(manager.storage, "iter_chunks", vanished):
            with pytest.raises(TransferAbortedError):
                await _drain(download)

        assert manager.registry.get(session.code) is not None
        assert not manager.registry.is_claimed(session.code)

    @pytest.mark.asyncio
    async def test_short_read_aborts(self, manager):
        session = await manager.ingest(_stream(b"complete"), "f.txt")
        download = await manager.retrieve(session.code)
        (Path(manager.storage.upload_dir) / session.storage_key).write_bytes(b"comp")

        with pytest.raises(TransferAbortedError):
            await _drain(download)
        assert manager.registry.get(session.code) is not None

    @pytest.mark.asyncio
    async def test_sweeper_winning_the_race_is_not_an_error(self, small_chunks, clock):
        session = await small_chunks.ingest(_stream(b"abcdefghij"), "letters.txt")
        stream = (await small_chunks.retrieve(session.code)).iter_bytes()
        data = await stream.__anext__()

        clock.advance(small_chunks.config.sessions.ttl_seconds + 1)
        assert await small_chunks.sweep_once() == 1

        # The open handle still reads on POSIX; finishing must not raise.
        try:
            async for chunk in stream:
                data += chunk
        except TransferAbortedError:
            pass
        assert small_chunks.registry.get(session.code) is None
        with pytest.raises(NotFoundError):
            await small_chunks.retrieve(session.code)

    @pytest.mark.asyncio
    async def test_parallel_drains_serve_once(self, manager):
        session = await manager.ingest(_stream(b"single"), "single.txt")
        download_a = await manager.retrieve(session.code)
        download_b = await manager.retrieve(session.code)

        results = await asyncio.gather(
            _drain(download_a), _drain(download_b), return_exceptions=True
        )
        served = [r for r in results if r == b"single"]
        aborted = [r for r in results if isinstance(r, TransferAbortedError)]
        assert len(served) == 1
        assert len(aborted) == 1


class _SevenRng(random.Random):
    """Hands out code 7 whenever it is free."""

    def randint(self, a, b):
        return 7


@pytest.fixture
def reusing_manager(config, clock):
    config.storage.chunk_size = 4
    return TransferManager(config, clock=clock, rng=_SevenRng())


class TestCodeReuse:
    @pytest.mark.asyncio
    async def test_stale_download_does_not_retire_reissued_code(self, reusing_manager, clock):
        mgr = reusing_manager
        old = await mgr.ingest(_stream(b"old-contents"), "old.txt")
        assert old.code == 7

        stream = (await mgr.retrieve(7)).iter_bytes()
        assert await stream.__anext__() == b"old-"

        clock.advance(mgr.config.sessions.ttl_seconds + 1)
        await mgr.sweep_once()
        assert mgr.registry.get(7) is None

        new = await mgr.ingest(_stream(b"new"), "new.txt")
        assert new.code == 7

        rest = b"".join([chunk async for chunk in stream])
        assert rest == b"contents"

        current = mgr.registry.get(7)
        assert current is not None
        assert current.storage_key == new.storage_key
        assert (Path(mgr.storage.upload_dir) / new.storage_key).exists()
        assert await _drain(await mgr.retrieve(7)) == b"new"

    @pytest.mark.asyncio
    async def test_stale_abort_keeps_claim_of_reissued_code(self, reusing_manager, clock):
        mgr = reusing_manager
        await mgr.ingest(_stream(b"old-contents"), "old.txt")
        stale = (await mgr.retrieve(7)).iter_bytes()
        await stale.__anext__()

        clock.advance(mgr.config.sessions.ttl_seconds + 1)
        await mgr.sweep_once()
        await mgr.ingest(_stream(b"new-contents"), "new.txt")

        current = (await mgr.retrieve(7)).iter_bytes()
        await current.__anext__()
        await stale.aclose()

        assert mgr.registry.is_claimed(7)
        with pytest.raises(NotFoundError):
            await mgr.retrieve(7)
        await current.aclose()

    @pytest.mark.asyncio
    async def test_download_resolved_before_reissue_aborts(self, reusing_manager, clock):
        mgr = reusing_manager
        await mgr.ingest(_stream(b"old"), "old.txt")
        download = await mgr.retrieve(7)

        clock.advance(mgr.config.sessions.ttl_seconds + 1)
        await mgr.sweep_once()
        await mgr.ingest(_stream(b"new"), "new.txt")

        with pytest.raises(TransferAbortedError):
            await _drain(download)
        assert mgr.registry.get(7) is not None
        assert not mgr.registry.is_claimed(7)
