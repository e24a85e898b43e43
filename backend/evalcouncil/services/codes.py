from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import DuplicateCodeError, ValidationError
from ..logger import logger
from ..models import utcnow

# No 0/O/1/I to keep codes readable when typed by hand.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
GENERATION_ATTEMPTS = 5

T = TypeVar("T")


def normalize_code(code: str) -> str:
    return code.strip().upper()


def generate_code(prefix: str = "", groups: int = 3, group_size: int = 4) -> str:
    """Random code such as PREFIX-ABCD-EFGH-JKLM drawn from a CSPRNG."""
    parts = [
        "".join(secrets.choice(CODE_ALPHABET) for _ in range(group_size))
        for _ in range(groups)
    ]
    if prefix:
        parts.insert(0, prefix)
    return "-".join(parts)


def validate_future_expiry(expires_at: Optional[datetime]) -> None:
    if expires_at is None:
        return
    if to_naive_utc(expires_at) <= utcnow():
        raise ValidationError("expires_at must be in the future")


def validate_max_uses(max_uses: Optional[int]) -> None:
    if max_uses is not None and max_uses <= 0:
        raise ValidationError("max_uses must be positive if provided")


def is_expired(expires_at: Optional[datetime]) -> bool:
    return expires_at is not None and to_naive_utc(expires_at) <= utcnow()


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


async def insert_with_code(
    db: AsyncSession,
    build: Callable[[str], T],
    *,
    custom_code: Optional[str],
    prefix: str,
) -> T:
    """
    Insert a promotion row under a unique code.

    A caller-supplied code that collides is rejected; a generated code that collides
    is re-rolled.
    """
    if custom_code:
        code = normalize_code(custom_code)
        if not code:
            raise ValidationError("Code must not be empty")
        row = build(code)
        db.add(row)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateCodeError(code)
        await db.refresh(row)
        return row

    for attempt in range(GENERATION_ATTEMPTS):
        row = build(generate_code(prefix))
        db.add(row)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.warning("Generated code collided, re-rolling", extra={"attempt": attempt + 1})
            continue
        await db.refresh(row)
        return row

    raise RuntimeError("Could not generate a unique code")
