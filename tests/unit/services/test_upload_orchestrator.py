"""Unit tests for the upload orchestrator with a fake Redis store and a mocked storage client."""

from typing import Any
from unittest.mock import AsyncMock
from unittest.mock import MagicMock
from unittest.mock import patch

import pytest
from fakeredis.aioredis import FakeRedis

from media_intake.chunks import RedisChunkStore
from media_intake.models.upload import UploadDB
from media_intake.result import Err
from media_intake.result import ErrorKind
from media_intake.result import Ok
from media_intake.services.upload_orchestrator import UploadOrchestrator
from media_intake.services.upload_orchestrator import parse_int
from media_intake.storage import AuthFailure
from media_intake.storage import DriveFile
from media_intake.storage import PermanentFailure
from media_intake.storage import PutOutcome
from media_intake.storage import ResumableTransfer
from media_intake.storage import RetriesExhausted
from media_intake.storage import TransferState


MODULE = "media_intake.services.upload_orchestrator"
SLOTS = ["Front", "Back"]


def completed_transfer(file_id: str, size: int) -> ResumableTransfer:
    return ResumableTransfer(
        total_size=size, bytes_confirmed=size, state=TransferState.COMPLETED, destination_file_id=file_id
    )


@pytest.fixture
def store() -> RedisChunkStore:
    return RedisChunkStore(FakeRedis())


@pytest.fixture
def bridge() -> MagicMock:
    mock = MagicMock()
    mock.find_file = AsyncMock(return_value=None)
    mock.init_session = AsyncMock(return_value="https://upload.test/session/1")
    mock.put = AsyncMock()
    mock.transfer = AsyncMock()
    return mock


@pytest.fixture
def orchestrator(store: RedisChunkStore, bridge: MagicMock, session_factory: Any) -> UploadOrchestrator:
    return UploadOrchestrator(store, bridge, session_factory, slot_names=SLOTS, reconstruct_max_bytes=1024)


async def send(orchestrator: UploadOrchestrator, index: int, payload: bytes, total: int = 3, **kwargs: Any) -> Any:
    return await orchestrator.accept_chunk(
        kwargs.pop("session_id", "sess-1"),
        str(index),
        str(total),
        "video.mp4",
        "video/mp4",
        payload,
        gym_slug="iron-temple",
        gym_name="Iron Temple",
        target_folder_id=kwargs.pop("target_folder_id", "folder-1"),
    )


def test_parse_int() -> None:
    assert parse_int("7") == 7
    assert parse_int(" 3 ") == 3
    assert parse_int(4) == 4
    assert parse_int("x") is None
    assert parse_int(None) is None
    assert parse_int(True) is None


@pytest.mark.asyncio
async def test_accept_chunk_reports_missing_fields(orchestrator: UploadOrchestrator) -> None:
    result = await orchestrator.accept_chunk(None, "abc", "3", "", "video/mp4", None)

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.MISSING_FIELD
    assert result.details["fields"] == ["sessionId", "chunkIndex", "originalFileName", "chunk"]
    assert result.kind.status_code == 400


@pytest.mark.asyncio
async def test_out_of_order_chunks_complete_session(orchestrator: UploadOrchestrator) -> None:
    for index in (2, 0):
        result = await send(orchestrator, index, b"x")
        assert isinstance(result, Ok)
        assert result.value.is_complete is False

    result = await send(orchestrator, 1, b"x")

    assert isinstance(result, Ok)
    assert result.value.received_chunks == 3
    assert result.value.is_complete is True


@pytest.mark.asyncio
async def test_invalid_chunk_index_maps_to_err(orchestrator: UploadOrchestrator) -> None:
    result = await send(orchestrator, 3, b"x", total=3)

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.INVALID_CHUNK_INDEX
    assert result.details["chunkIndex"] == 3


@pytest.mark.asyncio
async def test_chunk_after_completion_is_conflict(orchestrator: UploadOrchestrator) -> None:
    await send(orchestrator, 0, b"x", total=1)

    result = await send(orchestrator, 0, b"y", total=1)

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.SESSION_COMPLETE
    assert result.kind.status_code == 409


@pytest.mark.asyncio
async def test_chunk_status_unknown_session(orchestrator: UploadOrchestrator) -> None:
    result = await orchestrator.chunk_status("nope")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.SESSION_NOT_FOUND


@pytest.mark.asyncio
async def test_chunk_status_reports_metadata(orchestrator: UploadOrchestrator) -> None:
    await send(orchestrator, 1, b"x")

    result = await orchestrator.chunk_status("sess-1")

    assert isinstance(result, Ok)
    assert result.value.received_chunks == 1
    assert result.value.total_chunks == 3
    assert result.value.metadata["originalFileName"] == "video.mp4"
    assert result.value.metadata["targetFolderId"] == "folder-1"


@pytest.mark.asyncio
async def test_reconstruct_incomplete_session_is_retryable(orchestrator: UploadOrchestrator) -> None:
    await send(orchestrator, 0, b"a")

    result = await orchestrator.reconstruct("sess-1")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.SESSION_INCOMPLETE
    assert result.retryable is True
    assert result.details == {"receivedChunks": 1, "totalChunks": 3}


@pytest.mark.asyncio
async def test_reconstruct_transfers_in_index_order_and_drops_buffer(
    orchestrator: UploadOrchestrator, store: RedisChunkStore, bridge: MagicMock
) -> None:
    for index, payload in ((2, b"cc"), (0, b"aa"), (1, b"bb")):
        await send(orchestrator, index, payload)
    bridge.transfer.return_value = completed_transfer("file-1", 6)

    result = await orchestrator.reconstruct("sess-1")

    assert isinstance(result, Ok)
    assert result.value.file_id == "file-1"
    assert result.value.size_bytes == 6
    assert result.value.chunk_count == 3
    assert result.value.deduped is False
    bridge.transfer.assert_awaited_once_with(b"aabbcc", "video.mp4", "video/mp4", 6, "folder-1")
    assert await store.get_session("sess-1") is None


@pytest.mark.asyncio
async def test_reconstruct_dedupes_existing_file(
    orchestrator: UploadOrchestrator, store: RedisChunkStore, bridge: MagicMock
) -> None:
    await send(orchestrator, 0, b"abc", total=1)
    bridge.find_file.return_value = DriveFile(id="existing", name="video.mp4", size=3)

    result = await orchestrator.reconstruct("sess-1")

    assert isinstance(result, Ok)
    assert result.value.deduped is True
    assert result.value.file_id == "existing"
    bridge.transfer.assert_not_awaited()
    assert await store.get_session("sess-1") is None


@pytest.mark.asyncio
async def test_reconstruct_rejects_oversized_file(
    orchestrator: UploadOrchestrator, store: RedisChunkStore, bridge: MagicMock
) -> None:
    await send(orchestrator, 0, b"x" * 2048, total=1)

    result = await orchestrator.reconstruct("sess-1")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.FILE_TOO_LARGE
    assert result.kind.status_code == 413
    bridge.transfer.assert_not_awaited()
    assert await store.get_session("sess-1") is not None


@pytest.mark.asyncio
async def test_reconstruct_keeps_buffer_when_transfer_fails(
    orchestrator: UploadOrchestrator, store: RedisChunkStore, bridge: MagicMock
) -> None:
    await send(orchestrator, 0, b"abc", total=1)
    bridge.transfer.side_effect = RetriesExhausted("put failed", attempts=5, status_code=503)

    result = await orchestrator.reconstruct("sess-1")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.TRANSIENT_FAILURE
    assert result.details["attempts"] == 5
    assert await store.get_session("sess-1") is not None


@pytest.mark.asyncio
async def test_start_resumable_dedupes_by_name_and_size(orchestrator: UploadOrchestrator, bridge: MagicMock) -> None:
    bridge.find_file.return_value = DriveFile(id="existing", name="video.mp4", size=1048576, mimeType="video/mp4")

    result = await orchestrator.start_resumable("video.mp4", "video/mp4", "1048576", "folder-1")

    assert isinstance(result, Ok)
    assert result.value.deduped is True
    assert result.value.file_id == "existing"
    bridge.find_file.assert_awaited_once_with("folder-1", "video.mp4", 1048576)
    bridge.init_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_resumable_opens_session(orchestrator: UploadOrchestrator, bridge: MagicMock) -> None:
    result = await orchestrator.start_resumable("video.mp4", None, 10, "folder-1")

    assert isinstance(result, Ok)
    assert result.value.upload_url == "https://upload.test/session/1"
    bridge.init_session.assert_awaited_once_with("video.mp4", "application/octet-stream", 10, "folder-1")


@pytest.mark.asyncio
async def test_start_resumable_continues_when_lookup_fails(orchestrator: UploadOrchestrator, bridge: MagicMock) -> None:
    bridge.find_file.side_effect = PermanentFailure("File listing failed", 403, "forbidden")

    result = await orchestrator.start_resumable("video.mp4", "video/mp4", 10, "folder-1")

    assert isinstance(result, Ok)
    assert result.value.upload_url is not None


@pytest.mark.asyncio
async def test_start_resumable_auth_failure(orchestrator: UploadOrchestrator, bridge: MagicMock) -> None:
    bridge.find_file.side_effect = AuthFailure("no credential", {"direct": "no credential"})

    result = await orchestrator.start_resumable("video.mp4", "video/mp4", 10, "folder-1")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.AUTH_FAILURE
    assert result.details == {"strategies": {"direct": "no credential"}}
    bridge.init_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_resumable_rejects_empty_file(orchestrator: UploadOrchestrator) -> None:
    result = await orchestrator.start_resumable("video.mp4", "video/mp4", 0, "folder-1")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.INVALID_RANGE


@pytest.mark.asyncio
@pytest.mark.parametrize("start,end,total", [(0, 4, 10), (5, 4, 10), (8, 10, 10), (-1, 1, 10)])
async def test_put_range_rejects_mismatched_range(
    orchestrator: UploadOrchestrator, bridge: MagicMock, start: int, end: int, total: int
) -> None:
    result = await orchestrator.put_range("https://upload.test/session/1", start, end, total, b"abc")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.INVALID_RANGE
    bridge.put.assert_not_awaited()


@pytest.mark.asyncio
async def test_put_range_forwards_to_remote(orchestrator: UploadOrchestrator, bridge: MagicMock) -> None:
    bridge.put.return_value = PutOutcome(completed=False, bytes_confirmed=3, attempts=2)

    result = await orchestrator.put_range("https://upload.test/session/1", "0", "2", "10", b"abc", "video/mp4")

    assert isinstance(result, Ok)
    assert result.value.continued is True
    bridge.put.assert_awaited_once_with("https://upload.test/session/1", b"abc", 0, 10, "video/mp4")


@pytest.mark.asyncio
async def test_put_range_exhausted_retries_is_transient(orchestrator: UploadOrchestrator, bridge: MagicMock) -> None:
    bridge.put.side_effect = RetriesExhausted("put failed", attempts=5, status_code=503, body="unavailable")

    result = await orchestrator.put_range("https://upload.test/session/1", 0, 2, 10, b"abc")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.TRANSIENT_FAILURE
    assert result.retryable is True
    assert result.details == {"status": 503, "body": "unavailable", "attempts": 5}


@pytest.mark.asyncio
async def test_record_part_without_database(store: RedisChunkStore, bridge: MagicMock) -> None:
    orchestrator = UploadOrchestrator(store, bridge, None, slot_names=SLOTS)

    result = await orchestrator.record_part("u1", "Front", "file-1", "front.mp4")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.DATABASE_NOT_CONFIGURED


@pytest.mark.asyncio
async def test_record_part_rejects_unknown_slot(orchestrator: UploadOrchestrator) -> None:
    result = await orchestrator.record_part("u1", "Ceiling", "file-1", "front.mp4")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.INVALID_SLOT
    assert result.details["allowed"] == SLOTS


@pytest.mark.asyncio
async def test_record_part_upserts_row(orchestrator: UploadOrchestrator, session_factory: Any) -> None:
    with patch(f"{MODULE}.UploadRepository") as upload_repo, patch(f"{MODULE}.UploadFileRepository") as file_repo:
        upload_repo.return_value.get_by_id = AsyncMock(return_value=UploadDB(upload_id="u1", gym_name="Iron Temple"))
        file_repo.return_value.upsert = AsyncMock()

        result = await orchestrator.record_part("u1", "Front", "file-1", "front.mp4", "42", "video/mp4")

    assert isinstance(result, Ok)
    assert result.value.size_bytes == 42
    row = file_repo.return_value.upsert.await_args.args[0]
    assert (row.upload_id, row.slot_name, row.destination_file_id) == ("u1", "Front", "file-1")
    assert row.mime == "video/mp4"
    session_factory.session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_record_part_unknown_upload(orchestrator: UploadOrchestrator) -> None:
    with patch(f"{MODULE}.UploadRepository") as upload_repo, patch(f"{MODULE}.UploadFileRepository") as file_repo:
        upload_repo.return_value.get_by_id = AsyncMock(return_value=None)
        file_repo.return_value.upsert = AsyncMock()

        result = await orchestrator.record_part("missing", "Front", "file-1", "front.mp4")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.UPLOAD_NOT_FOUND
    file_repo.return_value.upsert.assert_not_awaited()


@pytest.mark.asyncio
async def test_reconstruct_records_part_for_slot(
    orchestrator: UploadOrchestrator, bridge: MagicMock
) -> None:
    await send(orchestrator, 0, b"abc", total=1)
    bridge.transfer.return_value = completed_transfer("file-7", 3)

    with patch(f"{MODULE}.UploadRepository") as upload_repo, patch(f"{MODULE}.UploadFileRepository") as file_repo:
        upload_repo.return_value.get_by_id = AsyncMock(return_value=UploadDB(upload_id="u1", gym_name="Iron Temple"))
        file_repo.return_value.upsert = AsyncMock()

        result = await orchestrator.reconstruct("sess-1", upload_id="u1", slot="Back")

    assert isinstance(result, Ok)
    assert result.value.part is not None
    assert result.value.part.slot == "Back"
    assert result.value.part.file_id == "file-7"


@pytest.mark.asyncio
async def test_upload_whole_file_enforces_size_limit(store: RedisChunkStore, bridge: MagicMock, session_factory: Any) -> None:
    orchestrator = UploadOrchestrator(store, bridge, session_factory, slot_names=SLOTS, max_upload_bytes=100)

    result = await orchestrator.upload_whole_file("u1", "Front", b"", "front.mp4", "video/mp4", 101, "folder-1")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.FILE_TOO_LARGE
    bridge.transfer.assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_whole_file_streams_then_records(orchestrator: UploadOrchestrator, bridge: MagicMock) -> None:
    bridge.transfer.return_value = completed_transfer("file-3", 5)

    with patch(f"{MODULE}.UploadRepository") as upload_repo, patch(f"{MODULE}.UploadFileRepository") as file_repo:
        upload_repo.return_value.get_by_id = AsyncMock(return_value=UploadDB(upload_id="u1", gym_name="Iron Temple"))
        file_repo.return_value.upsert = AsyncMock()

        result = await orchestrator.upload_whole_file("u1", "Front", b"hello", "front.mp4", None, "5", "folder-9")

    assert isinstance(result, Ok)
    assert result.value.file_id == "file-3"
    bridge.transfer.assert_awaited_once_with(b"hello", "front.mp4", "application/octet-stream", 5, "folder-9")


@pytest.mark.asyncio
async def test_reconstruct_session_swept_mid_request_is_not_found(
    orchestrator: UploadOrchestrator, store: RedisChunkStore, bridge: MagicMock
) -> None:
    await send(orchestrator, 0, b"abc", total=1)
    buffered = await store.get_session("sess-1")

    with patch.object(store, "get_session", AsyncMock(side_effect=[buffered, None])):
        result = await orchestrator.reconstruct("sess-1")

    assert isinstance(result, Err)
    assert result.kind is ErrorKind.SESSION_NOT_FOUND
    assert result.details == {"sessionId": "sess-1"}
    bridge.transfer.assert_not_awaited()


@pytest.mark.asyncio
async def test_resumable_status_reports_confirmed_bytes(orchestrator: UploadOrchestrator, bridge: MagicMock) -> None:
    bridge.query_status = AsyncMock(return_value=PutOutcome(completed=False, bytes_confirmed=4096))

    result = await orchestrator.resumable_status("https://upload.test/session/1", "10000")

    assert isinstance(result, Ok)
    assert result.value.bytes_confirmed == 4096
    bridge.query_status.assert_awaited_once_with("https://upload.test/session/1", 10000)


@pytest.mark.asyncio
async def test_resumable_status_validates_input(orchestrator: UploadOrchestrator) -> None:
    missing = await orchestrator.resumable_status(None, None)
    empty = await orchestrator.resumable_status("https://upload.test/session/1", 0)

    assert isinstance(missing, Err)
    assert missing.kind is ErrorKind.MISSING_FIELD
    assert isinstance(empty, Err)
    assert empty.kind is ErrorKind.INVALID_RANGE


@pytest.mark.asyncio
async def test_resumable_status_expired_session_is_permanent(orchestrator: UploadOrchestrator, bridge: MagicMock) -> None:
    bridge.query_status = AsyncMock(side_effect=PermanentFailure("Range upload rejected", 404, "session expired"))

    result = await orchestrator.resumable_status("https://upload.test/session/1", 10)

    assert isinstance(result, Err)
    assert result.retryable is False
