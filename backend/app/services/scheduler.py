"""
In-process background jobs.

- Payment reminder: one delayed task per order that emails the customer if the
  order is still awaiting payment after ``PAYMENT_REMINDER_DELAY_MINUTES``.
- Payment timeout sweep: periodically cancels orders awaiting payment for more
  than ``PAYMENT_TIMEOUT_HOURS``.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import CHANGED_BY_SYSTEM, PAYMENT_EXPIRED, STATUS_AWAITING_PAYMENT, STATUS_CANCELLED
from backend.app.core.logging import get_logger
from backend.app.core.settings import get_settings
from backend.app.models.order import Order

logger = get_logger(__name__)

PAYMENT_TIMEOUT_REASON = "Pagamento expirou após 24 horas"

_reminder_tasks: Dict[str, asyncio.Task] = {}


def schedule_payment_reminder(order_number: str, delay_minutes: Optional[float] = None) -> bool:
    """Schedule the payment pending email. Returns False when schedulers are disabled."""
    settings = get_settings()
    if not settings.SCHEDULERS_ENABLED:
        return False
    if delay_minutes is None:
        delay_minutes = settings.PAYMENT_REMINDER_DELAY_MINUTES
    cancel_payment_reminder(order_number)
    task = asyncio.create_task(_payment_reminder(order_number, delay_minutes * 60))
    _reminder_tasks[order_number] = task

    def _forget(done: asyncio.Task) -> None:
        if _reminder_tasks.get(order_number) is done:
            del _reminder_tasks[order_number]

    task.add_done_callback(_forget)
    logger.info("Payment reminder scheduled", order_number=order_number, delay_minutes=delay_minutes)
    return True


def cancel_payment_reminder(order_number: str) -> bool:
    task = _reminder_tasks.pop(order_number, None)
    if task and not task.done():
        task.cancel()
        logger.info("Payment reminder cancelled", order_number=order_number)
        return True
    return False


def pending_reminders() -> List[str]:
    return list(_reminder_tasks)


async def send_payment_reminder(session: AsyncSession, order_number: str) -> bool:
    """Email the payment pending notice if the order still awaits payment."""
    from backend.app.services.email import EmailService, EMAIL_PAYMENT_PENDING

    result = await session.execute(select(Order).where(Order.order_number == order_number))
    order = result.scalar_one_or_none()
    if order is None or order.status != STATUS_AWAITING_PAYMENT:
        logger.info("Payment reminder skipped", order_number=order_number,
                    status=order.status if order else None)
        return False
    return await EmailService(session).send_order_email(order, EMAIL_PAYMENT_PENDING)


async def _payment_reminder(order_number: str, delay_seconds: float) -> None:
    from backend.app.core.database import async_session

    await asyncio.sleep(delay_seconds)
    async with async_session() as session:
        try:
            await send_payment_reminder(session, order_number)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("Payment reminder failed", order_number=order_number, error=str(e))


async def cancel_expired_orders(session: AsyncSession, now: Optional[datetime] = None) -> List[str]:
    """
    Cancel orders awaiting payment for longer than the timeout, counted from
    the gateway payment creation when there is one, else from the order.

    Each cancelled order gets payment_status ``expired``, a history entry by
    ``system`` and the payment timeout email. Caller commits.
    """
    from backend.app.services.orders import OrderService
    from backend.app.services.email import EmailService, EMAIL_PAYMENT_TIMEOUT

    settings = get_settings()
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=settings.PAYMENT_TIMEOUT_HOURS)
    result = await session.execute(
        select(Order).where(
            Order.status == STATUS_AWAITING_PAYMENT,
            func.coalesce(Order.payment_created_at, Order.created_at) < cutoff,
        )
    )
    expired = result.scalars().all()

    service = OrderService(session)
    email = EmailService(session)
    cancelled = []
    for order in expired:
        order.payment_status = PAYMENT_EXPIRED
        await service.update_status(
            order,
            STATUS_CANCELLED,
            changed_by=CHANGED_BY_SYSTEM,
            changed_by_name="Sistema",
            reason=PAYMENT_TIMEOUT_REASON,
            send_email=False,
        )
        cancel_payment_reminder(order.order_number)
        await email.send_order_email(order, EMAIL_PAYMENT_TIMEOUT)
        cancelled.append(order.order_number)

    if cancelled:
        logger.info("Expired unpaid orders cancelled", count=len(cancelled))
    return cancelled


async def payment_timeout_loop() -> None:
    """Background task: sweep for expired unpaid orders every PAYMENT_TIMEOUT_CHECK_MINUTES."""
    from backend.app.core.database import async_session

    interval = get_settings().PAYMENT_TIMEOUT_CHECK_MINUTES * 60
    while True:
        try:
            async with async_session() as session:
                try:
                    await cancel_expired_orders(session)
                    await session.commit()
                except Exception as e:
                    await session.rollback()
                    logger.error("Payment timeout sweep failed", error=str(e))
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Payment timeout loop: unexpected error", error=str(e))
            await asyncio.sleep(60)
