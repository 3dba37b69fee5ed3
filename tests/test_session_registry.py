import asyncio

import pytest

from meeting_backend.app.models.uploading import SessionStatus
from meeting_backend.app.utils.errors import InvalidChunkIndex, SessionNotFound, SessionTerminal, ValidationError


async def _create(registry, total_chunks=3, file_size=3000, ttl=3600):
    return await registry.create(
        filename="standup.mp3",
        original_filename="standup.mp3",
        file_size=file_size,
        mime_type="audio/mpeg",
        total_chunks=total_chunks,
        ttl=ttl,
    )


async def test_create_sets_expiry_and_initial_status(registry, clock):
    session = await _create(registry, ttl=24 * 3600)

    assert session.status is SessionStatus.INITIALIZED
    assert session.uploaded_chunks == 0
    assert (session.expires_at - clock.now()).total_seconds() == 24 * 3600

    stored = await registry.find(session.upload_id)
    assert stored is not None
    assert stored.upload_id == session.upload_id
    assert stored.total_chunks == 3
    assert stored.expires_at == session.expires_at


async def test_create_generates_distinct_tokens(registry):
    first = await _create(registry)
    second = await _create(registry)
    assert first.upload_id != second.upload_id


@pytest.mark.parametrize("file_size, total_chunks", [(0, 1), (10, 0), (-5, 2)])
async def test_create_rejects_empty_declarations(registry, file_size, total_chunks):
    with pytest.raises(ValidationError):
        await _create(registry, total_chunks=total_chunks, file_size=file_size)


async def test_find_unknown_session(registry):
    assert await registry.find("does-not-exist") is None
    assert await registry.find_active("does-not-exist") is None


async def test_find_active_hides_expired_sessions(registry, clock):
    session = await _create(registry, ttl=60)
    assert await registry.find_active(session.upload_id) is not None

    clock.advance(seconds=60)

    assert await registry.find_active(session.upload_id) is None
    assert await registry.find(session.upload_id) is not None


async def test_mark_chunk_complete_is_idempotent(registry):
    session = await _create(registry)

    await registry.mark_chunk_complete(session.upload_id, 1)
    await registry.mark_chunk_complete(session.upload_id, 1)

    stored = await registry.find(session.upload_id)
    assert stored.uploaded_chunks == 1
    assert stored.completed_chunks == {1}
    assert stored.status is SessionStatus.UPLOADING


@pytest.mark.parametrize("chunk_index", [-1, 3, 10])
async def test_mark_chunk_complete_rejects_out_of_range(registry, chunk_index):
    session = await _create(registry)
    with pytest.raises(InvalidChunkIndex):
        await registry.mark_chunk_complete(session.upload_id, chunk_index)


async def test_mark_chunk_complete_rejects_terminal_session(registry):
    session = await _create(registry)
    await registry.transition(session.upload_id, SessionStatus.CANCELLED)

    with pytest.raises(SessionTerminal):
        await registry.mark_chunk_complete(session.upload_id, 0)


async def test_mark_chunk_complete_unknown_session(registry):
    with pytest.raises(SessionNotFound):
        await registry.mark_chunk_complete("missing", 0)


async def test_concurrent_marks_do_not_lose_updates(registry):
    session = await _create(registry, total_chunks=20, file_size=20000)

    indexes = list(range(20)) + [3, 4, 5]
    await asyncio.gather(*(registry.mark_chunk_complete(session.upload_id, i) for i in indexes))

    stored = await registry.find(session.upload_id)
    assert stored.uploaded_chunks == 20
    assert registry.is_complete(stored)


async def test_completion_and_progress(registry):
    session = await _create(registry)

    stored = await registry.find(session.upload_id)
    assert registry.progress_percentage(stored) == 0
    assert registry.missing_chunks(stored) == [0, 1, 2]

    await registry.mark_chunk_complete(session.upload_id, 2)
    stored = await registry.find(session.upload_id)
    assert registry.progress_percentage(stored) == 33.33
    assert registry.missing_chunks(stored) == [0, 1]
    assert not registry.is_complete(stored)

    await registry.mark_chunk_complete(session.upload_id, 0)
    await registry.mark_chunk_complete(session.upload_id, 1)
    stored = await registry.find(session.upload_id)
    assert registry.progress_percentage(stored) == 100
    assert registry.is_complete(stored)


async def test_progress_is_zero_for_zero_total(registry):
    session = await _create(registry)
    session.total_chunks = 0
    assert registry.progress_percentage(session) == 0


async def test_transition_is_compare_and_set(registry):
    session = await _create(registry)

    completed = await registry.transition(session.upload_id, SessionStatus.COMPLETED)
    assert completed.status is SessionStatus.COMPLETED

    with pytest.raises(SessionTerminal):
        await registry.transition(session.upload_id, SessionStatus.EXPIRED)


async def test_completed_sessions_leave_the_expiry_index(registry, clock):
    done = await _create(registry, ttl=60)
    pending = await _create(registry, ttl=60)
    await registry.transition(done.upload_id, SessionStatus.COMPLETED)

    clock.advance(minutes=5)

    assert await registry.expired_upload_ids() == [pending.upload_id]
