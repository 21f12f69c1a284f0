"""Asynchronous offer tasks."""

import structlog
from celery import shared_task

from modules.offers.services import OfferService

logger = structlog.get_logger(__name__)


@shared_task(name="offers.expire_overdue_offers")
def expire_overdue_offers():
    """Beat-scheduled sweep moving overdue SENT offers to EXPIRED."""
    expired = OfferService().expire_overdue()
    logger.info("expire_overdue_offers.executed", expired=expired)
    return {"expired": expired}
