"""Caller identity resolution and credit accounting.

Credits are checked and deducted in one conditional UPDATE so two
concurrent requests cannot both spend the same balance.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from promopipe.db.models import User
from promopipe.errors import AuthenticationRequired, InsufficientCreditsError

logger = logging.getLogger(__name__)


async def resolve_user(session: AsyncSession, raw_user_id: Optional[str]) -> User:
    """Resolve the caller from a user id header value.

    Raises:
        AuthenticationRequired: If the value is missing, malformed, or names
            no user.
    """
    if not raw_user_id:
        raise AuthenticationRequired("Missing caller identity")
    try:
        user_id = uuid.UUID(raw_user_id)
    except ValueError as exc:
        raise AuthenticationRequired("Malformed caller identity") from exc

    user = await session.get(User, user_id)
    if user is None:
        raise AuthenticationRequired("Unknown caller")
    return user


async def check_and_deduct_credits(session: AsyncSession, user: User, cost: int) -> int:
    """Deduct ``cost`` credits from ``user`` and commit.

    Returns:
        Remaining balance.

    Raises:
        InsufficientCreditsError: If the balance does not cover ``cost``.
    """
    if cost <= 0:
        return user.credit_balance

    # rollback() expires ``user``; keep the key for the balance lookup
    user_id = user.id
    result = await session.execute(
        update(User)
        .where(User.id == user_id, User.credit_balance >= cost)
        .values(credit_balance=User.credit_balance - cost)
    )
    if result.rowcount == 0:
        await session.rollback()
        balance = await session.scalar(select(User.credit_balance).where(User.id == user_id))
        raise InsufficientCreditsError(required=cost, balance=balance or 0)

    await session.commit()
    await session.refresh(user)
    logger.info(f"Deducted {cost} credits from user {user.id}, balance {user.credit_balance}")
    return user.credit_balance
