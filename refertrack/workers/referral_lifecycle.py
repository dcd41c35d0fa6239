"""
Referral lifecycle worker - hourly sweep.

Phases per cycle:
1. Move wait_for_install referrals whose install day has arrived to complete
   (metrics recomputed, auto rewards paid)
2. Retry payouts left in reward_status=failed
"""
import asyncio
import logging

from refertrack.config import get_settings
from refertrack.database import session_scope
from refertrack.services.referral_store import ReferralStore
from refertrack.services.rewards import get_reward_dispatcher
from refertrack.storage.sql import SqlAlchemyReferralRepository
from refertrack.utils.redis import write_heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "referral_lifecycle"


async def run_lifecycle_cycle(store: ReferralStore) -> dict:
    """One sweep over every contractor. Returns per-phase counts."""
    refreshed = await store.refresh_statuses()
    rewards_sent = 0
    if store.reward_dispatcher is not None:
        rewards_sent = await store.retry_failed_rewards()
    return {"refreshed": refreshed, "rewards_sent": rewards_sent}


async def _run_once() -> dict:
    settings = get_settings()
    if settings.storage_backend == "memory":
        from refertrack.api.dependencies import get_memory_repository
        store = ReferralStore(
            get_memory_repository(), settings=settings, reward_dispatcher=get_reward_dispatcher(),
        )
        return await run_lifecycle_cycle(store)

    async with session_scope() as db:
        store = ReferralStore(
            SqlAlchemyReferralRepository(db),
            settings=settings,
            reward_dispatcher=get_reward_dispatcher(),
        )
        return await run_lifecycle_cycle(store)


async def run_referral_lifecycle():
    """Main loop - refresh statuses, retry failed rewards, heartbeat."""
    poll_interval = get_settings().lifecycle_poll_interval_seconds
    logger.info("Referral lifecycle worker started (poll every %ds)", poll_interval)

    while True:
        try:
            result = await _run_once()
            if result["refreshed"] or result["rewards_sent"]:
                logger.info(
                    "Referral lifecycle: refreshed=%d rewards_sent=%d",
                    result["refreshed"], result["rewards_sent"],
                )
        except Exception as e:
            logger.error("Referral lifecycle error: %s", str(e), exc_info=True)

        await write_heartbeat(WORKER_NAME)
        await asyncio.sleep(poll_interval)
