import asyncio
import logging
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ..core.config import Config
from ..models import Cart, CartItem
from ..models.base import utcnow


logger = logging.getLogger(__name__)


async def cleanup_abandoned_carts(db: AsyncSession, retention: Optional[timedelta] = None) -> int:
    """Deletes carts idle for longer than the retention window and returns how many went"""
    retention = retention or timedelta(days=Config.CART_RETENTION_DAYS)
    cutoff = utcnow() - retention

    stale = select(Cart.id).where(Cart.last_activity_at < cutoff)
    await db.execute(delete(CartItem).where(CartItem.cart_id.in_(stale)).execution_options(synchronize_session=False))
    result = await db.execute(delete(Cart).where(Cart.last_activity_at < cutoff).execution_options(synchronize_session=False))
    await db.commit()

    if result.rowcount:
        logger.info("Deleted %s abandoned carts idle since before %s", result.rowcount, cutoff)
    return result.rowcount or 0


async def run_cart_cleanup(session_factory: Callable[[], AsyncSession], interval: Optional[timedelta] = None) -> None:
    """
    Sweeps abandoned carts forever, once per interval.

    Meant to run as a background task for the lifetime of the app. A failed sweep
    is logged and the loop carries on; cancelling the task stops it.
    """
    interval = interval or timedelta(hours=Config.CART_CLEANUP_INTERVAL_HOURS)
    logger.info("Cart cleanup started, sweeping every %s", interval)

    while True:
        try:
            async with session_factory() as db:
                await cleanup_abandoned_carts(db)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error during cart cleanup")

        await asyncio.sleep(interval.total_seconds())
