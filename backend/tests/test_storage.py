"""Tests for local file storage."""
import pytest

from relay.transfers.storage import LocalFileStorage


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "uploads")


class TestLocalFileStorage:
    def test_creates_upload_dir(self, tmp_path):
        LocalFileStorage(tmp_path / "nested" / "dir")
        assert (tmp_path / "nested" / "dir").is_dir()

    @pytest.mark.parametrize("key", ["", ".", "..", "a/b", "..\\x", "nul\x00byte"])
    def test_rejects_unsafe_keys(self, storage, key):
        with pytest.raises(ValueError):
            storage.path_for(key)

    @pytest.mark.asyncio
    async def test_write_read_delete(self, storage):
        writer = await storage.open_writer("k1")
        await writer.write(b"abc")
        await writer.write(b"defg")
        await writer.close()
        assert writer.bytes_written == 7

        assert await storage.exists("k1")
        assert await storage.size("k1") == 7
        assert await storage.modified_time("k1") is not None
        assert [c async for c in storage.iter_chunks("k1", 3)] == [b"abc", b"def", b"g"]
        assert await storage.list_keys() == ["k1"]

        assert await storage.delete("k1") is True
        assert await storage.delete("k1") is False
        assert not await storage.exists("k1")
        assert await storage.modified_time("k1") is None

    @pytest.mark.asyncio
    async def test_open_writer_refuses_existing_key(self, storage):
        writer = await storage.open_writer("dup")
        await writer.close()
        with pytest.raises(FileExistsError):
            await storage.open_writer("dup")

    @pytest.mark.asyncio
    async def test_discard_removes_partial_file(self, storage):
        writer = await storage.open_writer("partial")
        await writer.write(b"half")
        await writer.discard()
        assert not (storage.upload_dir / "partial").exists()
        # idempotent
        await writer.discard()

    @pytest.mark.asyncio
    async def test_list_keys_skips_directories(self, storage):
        (storage.upload_dir / "subdir").mkdir()
        (storage.upload_dir / "file").write_bytes(b"x")
        assert await storage.list_keys() == ["file"]
