"""
Dramatiq Broker Configuration
Background queue for scheduled sync passes

Redis when REDIS_URL is set, otherwise the in-process StubBroker (local dev
and tests; messages only run when a StubBroker worker is started).
"""
import logging
import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import (
    AgeLimit, Callbacks, Pipelines,
    Retries, ShutdownNotifications
)

from tether.core.config import get_settings

logger = logging.getLogger(__name__)


def create_broker(redis_url=None) -> dramatiq.Broker:
    if not redis_url:
        logger.warning("⚠️  REDIS_URL not set - using in-process StubBroker")
        return StubBroker()

    # Explicit middleware: TimeLimit excluded, the orchestrator bounds each account itself
    broker = RedisBroker(
        url=redis_url,
        middleware=[
            AgeLimit(),
            Retries(max_retries=0),
            Callbacks(),
            Pipelines(),
            ShutdownNotifications(),
        ]
    )
    logger.info(f"✅ Redis broker initialized: {redis_url[:20]}...")
    return broker


broker = create_broker(get_settings().redis_url)
dramatiq.set_broker(broker)
