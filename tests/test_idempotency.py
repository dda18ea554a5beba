"""
Tests for once-per-audio-file creation of transcripts and learning content.
"""
import asyncio

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

import services.idempotency as idempotency
from db_config import create_db_engine, create_session_factory, init_db
from models.models import AudioFile, Transcript
from services.idempotency import SOURCE_DATABASE, SOURCE_GENERATED, UNPERSISTED_WARNING, create_once, is_unique_violation


def run_with_session(test_body):
    async def runner():
        engine = create_db_engine("sqlite+aiosqlite:///:memory:", echo=False)
        await init_db(engine)
        try:
            async with create_session_factory(engine)() as db:
                db.add(AudioFile(
                    id="audio-1", uid="u1", original_filename="a.mp3", file_path="u1/a.mp3",
                    file_size_bytes=10, mime_type="audio/mpeg",
                ))
                await db.commit()
            return await test_body(create_session_factory(engine))
        finally:
            await engine.dispose()

    return asyncio.run(runner())


def transcript_row(text):
    return Transcript(audio_file_id="audio-1", uid="u1", content=text, word_count=len(text.split()))


async def count_transcripts(session_factory):
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(Transcript))


def test_first_call_generates_and_second_reads():
    calls = []

    async def generate():
        calls.append(1)
        return "hello world"

    async def body(session_factory):
        async with session_factory() as db:
            first = await create_once(db, Transcript, "audio-1", "u1", generate, transcript_row)
            second = await create_once(db, Transcript, "audio-1", "u1", generate, transcript_row)
        return first, second, await count_transcripts(session_factory)

    first, second, count = run_with_session(body)
    assert first.source == SOURCE_GENERATED and first.generated and first.persisted
    assert second.source == SOURCE_DATABASE and not second.generated
    assert second.row.id == first.row.id
    assert calls == [1]
    assert count == 1


def test_row_created_during_generation_wins():
    async def body(session_factory):
        async def generate():
            async with session_factory() as other:
                other.add(transcript_row("winner"))
                await other.commit()
            return "loser"

        async with session_factory() as db:
            outcome = await create_once(db, Transcript, "audio-1", "u1", generate, transcript_row)
            content = outcome.row.content
        return outcome, content, await count_transcripts(session_factory)

    outcome, content, count = run_with_session(body)
    assert outcome.source == SOURCE_DATABASE
    assert outcome.generated is True
    assert content == "winner"
    assert count == 1


def test_unique_violation_on_insert_reads_back_winner(monkeypatch):
    real_find = idempotency.find_for_audio_file
    lookups = []

    async def racing_find(db, model, audio_file_id, uid):
        lookups.append(1)
        # Both pre-insert reads miss; the competitor commits right after the second
        if len(lookups) <= 2:
            return None
        return await real_find(db, model, audio_file_id, uid)

    monkeypatch.setattr(idempotency, "find_for_audio_file", racing_find)

    async def body(session_factory):
        async def generate():
            async with session_factory() as other:
                other.add(transcript_row("winner"))
                await other.commit()
            return "loser"

        async with session_factory() as db:
            outcome = await create_once(db, Transcript, "audio-1", "u1", generate, transcript_row)
            content = outcome.row.content
        return outcome, content, await count_transcripts(session_factory)

    outcome, content, count = run_with_session(body)
    assert outcome.source == SOURCE_DATABASE
    assert outcome.persisted is True
    assert content == "winner"
    assert count == 1


def test_other_insert_failure_returns_unpersisted_result():
    async def generate():
        return "text"

    def broken_row(payload):
        # content is NOT NULL
        return Transcript(audio_file_id="audio-1", uid="u1", content=None)

    async def body(session_factory):
        async with session_factory() as db:
            outcome = await create_once(db, Transcript, "audio-1", "u1", generate, broken_row)
        return outcome, await count_transcripts(session_factory)

    outcome, count = run_with_session(body)
    assert outcome.persisted is False
    assert outcome.source == SOURCE_GENERATED
    assert outcome.payload == "text"
    assert outcome.warning == UNPERSISTED_WARNING
    assert count == 0


class _Orig(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


def test_is_unique_violation():
    assert is_unique_violation(IntegrityError("INSERT", {}, _Orig("dup", sqlstate="23505")))
    assert not is_unique_violation(IntegrityError("INSERT", {}, _Orig("null", sqlstate="23502")))
    assert is_unique_violation(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: transcripts.audio_file_id")))
    assert not is_unique_violation(IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: transcripts.content")))
