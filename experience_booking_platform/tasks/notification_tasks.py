"""
Celery tasks for booking notifications.

Each task runs on a fresh event loop, so it opens and disposes its own engine
instead of sharing the API process's pool.
"""

import asyncio
import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .celery_app import celery_app
from ..config import get_settings
from ..database import engine_options
from ..services.notification_service import NotificationService

logger = logging.getLogger(__name__)


async def _with_notification_service(action: str, booking_id: str) -> dict:
    settings = get_settings()
    engine = create_async_engine(settings.database_url, **engine_options(settings))
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with session_factory() as session:
            service = NotificationService(session)
            if action == "cancellation":
                success = await service.send_booking_cancellation(UUID(booking_id))
            else:
                success = await service.send_booking_confirmation(UUID(booking_id))
    finally:
        await engine.dispose()

    if success:
        logger.info(f"Booking {action} sent successfully for {booking_id}")
        return {"booking_id": booking_id, "status": "sent"}

    logger.error(f"Failed to send booking {action} for {booking_id}")
    return {"booking_id": booking_id, "status": "failed"}


def _run(action: str, booking_id: str) -> dict:
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_with_notification_service(action, booking_id))
    finally:
        loop.close()


@celery_app.task(bind=True, name="send_booking_confirmation_task", max_retries=3, default_retry_delay=60)
def send_booking_confirmation_task(self, booking_id: str):
    """
    Task to send booking confirmation notification.

    Args:
        booking_id: ID of the confirmed booking
    """
    logger.info(f"Sending booking confirmation for {booking_id}")
    try:
        return _run("confirmation", booking_id)
    except Exception as e:
        logger.error(f"Error in booking confirmation task: {e}")
        raise self.retry(exc=e)


@celery_app.task(bind=True, name="send_booking_cancellation_task", max_retries=3, default_retry_delay=60)
def send_booking_cancellation_task(self, booking_id: str):
    """
    Task to send booking cancellation notification.

    Args:
        booking_id: ID of the cancelled booking
    """
    logger.info(f"Sending booking cancellation for {booking_id}")
    try:
        return _run("cancellation", booking_id)
    except Exception as e:
        logger.error(f"Error in booking cancellation task: {e}")
        raise self.retry(exc=e)
