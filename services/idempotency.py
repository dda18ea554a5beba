"""
Once-per-audio-file creation of derived rows (transcripts, learning content).

Protocol for a ``(audio_file_id, uid)`` key:

1. Read; an existing row is returned as is.
2. Run the expensive generation.
3. Re-read; a row inserted meanwhile wins and the fresh result is discarded.
4. Insert; a unique-key violation means another request won the race, so the
   winner is read back and returned.
5. Any other insert failure returns the fresh result unpersisted with a warning.

The unique constraint on ``audio_file_id`` is what makes step 4 reliable; the
re-read in step 3 only narrows the window in which duplicate generation happens.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Type

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging import get_logger

logger = get_logger("database")

SOURCE_DATABASE = "database"
SOURCE_GENERATED = "generated"

UNIQUE_VIOLATION_SQLSTATE = "23505"

UNPERSISTED_WARNING = "Result generated but could not be saved. It will be regenerated on the next request."


@dataclass
class UpsertResult:
    """Outcome of an idempotent create."""
    row: Optional[Any]
    payload: Optional[Any]
    source: str
    persisted: bool
    generated: bool
    warning: Optional[str] = None

    @property
    def from_database(self) -> bool:
        return self.source == SOURCE_DATABASE


def is_unique_violation(exc: IntegrityError) -> bool:
    """
    True when the integrity error is a unique-key violation.

    PostgreSQL drivers expose SQLSTATE 23505 (``sqlstate`` on asyncpg,
    ``pgcode`` on psycopg); SQLite only reports it in the message.
    """
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION_SQLSTATE

    message = str(orig if orig is not None else exc)
    return "UNIQUE constraint failed" in message or "duplicate key value violates unique constraint" in message


async def find_for_audio_file(db: AsyncSession, model: Type, audio_file_id: str, uid: str):
    stmt = (
        select(model)
        .where(model.audio_file_id == audio_file_id, model.uid == uid)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_once(
    db: AsyncSession,
    model: Type,
    audio_file_id: str,
    uid: str,
    generate: Callable[[], Awaitable[Any]],
    build_row: Callable[[Any], Any],
) -> UpsertResult:
    """
    Return the single ``model`` row for ``audio_file_id``, generating it at most
    once per caller.

    ``generate`` performs the external call and returns its payload;
    ``build_row`` turns that payload into an unsaved ``model`` instance.
    Exceptions from ``generate`` propagate to the caller.
    """
    resource = model.__tablename__

    existing = await find_for_audio_file(db, model, audio_file_id, uid)
    if existing is not None:
        logger.info("Existing row returned", resource=resource, audio_file_id=audio_file_id, row_id=existing.id)
        return UpsertResult(row=existing, payload=None, source=SOURCE_DATABASE, persisted=True, generated=False)

    payload = await generate()

    existing = await find_for_audio_file(db, model, audio_file_id, uid)
    if existing is not None:
        logger.info(
            "Row created concurrently, discarding generated result",
            resource=resource,
            audio_file_id=audio_file_id,
            row_id=existing.id,
        )
        return UpsertResult(row=existing, payload=payload, source=SOURCE_DATABASE, persisted=True, generated=True)

    row = build_row(payload)
    db.add(row)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if is_unique_violation(exc):
            winner = await find_for_audio_file(db, model, audio_file_id, uid)
            if winner is not None:
                logger.info(
                    "Lost insert race, returning existing row",
                    resource=resource,
                    audio_file_id=audio_file_id,
                    row_id=winner.id,
                )
                return UpsertResult(row=winner, payload=payload, source=SOURCE_DATABASE, persisted=True, generated=True)

        logger.error("Insert failed, returning unpersisted result", resource=resource, audio_file_id=audio_file_id, error=str(exc.orig))
        return UpsertResult(
            row=None, payload=payload, source=SOURCE_GENERATED, persisted=False, generated=True,
            warning=UNPERSISTED_WARNING,
        )
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Insert failed, returning unpersisted result", resource=resource, audio_file_id=audio_file_id, error=str(exc))
        return UpsertResult(
            row=None, payload=payload, source=SOURCE_GENERATED, persisted=False, generated=True,
            warning=UNPERSISTED_WARNING,
        )

    logger.info("Row created", resource=resource, audio_file_id=audio_file_id, row_id=row.id)
    return UpsertResult(row=row, payload=payload, source=SOURCE_GENERATED, persisted=True, generated=True)
