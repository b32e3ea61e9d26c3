"""Tests for local chunk staging."""
import pytest

from media_ingest.core.exceptions import ChunkNotFoundException, ValidationException


class TestLocalChunkStore:

    @pytest.mark.asyncio
    async def test_put_and_get(self, chunk_store):
        await chunk_store.put("upload_1", 1, b"abcd")

        assert await chunk_store.exists("upload_1", 1)
        assert await chunk_store.get("upload_1", 1) == b"abcd"

    @pytest.mark.asyncio
    async def test_overwrite_keeps_last_write(self, chunk_store):
        await chunk_store.put("upload_1", 1, b"aaaa")
        await chunk_store.put("upload_1", 1, b"bbbb")

        assert await chunk_store.get("upload_1", 1) == b"bbbb"

    @pytest.mark.asyncio
    async def test_missing_chunk_raises(self, chunk_store):
        with pytest.raises(ChunkNotFoundException):
            await chunk_store.get("upload_1", 3)

    @pytest.mark.asyncio
    async def test_staged_chunk_invisible_until_commit(self, chunk_store):
        staged = await chunk_store.stage("upload_1", 2, b"data")

        assert not await chunk_store.exists("upload_1", 2)
        assert staged.temp_path.exists()

        await chunk_store.commit(staged)

        assert await chunk_store.exists("upload_1", 2)
        assert not staged.temp_path.exists()

    @pytest.mark.asyncio
    async def test_discard_removes_temp_file(self, chunk_store):
        staged = await chunk_store.stage("upload_1", 2, b"data")

        await chunk_store.discard(staged)
        await chunk_store.discard(staged)

        assert not staged.temp_path.exists()
        assert not await chunk_store.exists("upload_1", 2)

    @pytest.mark.asyncio
    async def test_delete_all_removes_directory(self, chunk_store, staging_dir):
        for index in (1, 2, 3):
            await chunk_store.put("upload_1", index, b"x")
        await chunk_store.put("upload_2", 1, b"y")

        removed = await chunk_store.delete_all("upload_1")

        assert removed == 3
        assert not (staging_dir / "upload_1").exists()
        assert await chunk_store.exists("upload_2", 1)

    @pytest.mark.asyncio
    async def test_delete_all_unknown_upload_is_noop(self, chunk_store):
        assert await chunk_store.delete_all("upload_missing") == 0
        assert await chunk_store.delete_all("../escape") == 0

    def test_rejects_path_like_upload_id(self, chunk_store):
        with pytest.raises(ValidationException):
            chunk_store.chunk_path("../etc", 1)
