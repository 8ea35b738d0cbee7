"""Booking code generation."""

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import utcnow
from app.models.booking import BookingCodeCounter


async def generate_booking_code(db: AsyncSession, year: int | None = None) -> str:
    """Issue the next booking code for the year, like 'RB-2026-00042'.

    The counter row is incremented inside the caller's transaction, so the
    row lock serializes concurrent creators and a rolled-back booking leaves
    no gap owner behind.

    Args:
        db: Session with an open transaction
        year: Counter year, defaults to the current UTC year

    Returns:
        str: Unique, per-year monotonic booking code
    """
    year = year or utcnow().year

    insert = sqlite_insert if db.get_bind().dialect.name == "sqlite" else pg_insert
    await db.execute(
        insert(BookingCodeCounter)
        .values(year=year, value=0)
        .on_conflict_do_nothing(index_elements=["year"])
    )
    await db.execute(
        update(BookingCodeCounter)
        .where(BookingCodeCounter.year == year)
        .values(value=BookingCodeCounter.value + 1)
    )
    value = await db.scalar(
        select(BookingCodeCounter.value).where(BookingCodeCounter.year == year)
    )
    return f"{settings.booking_code_prefix}-{year}-{value:05d}"
