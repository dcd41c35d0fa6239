"""
Reward dispatcher - pays referrers once a referral completes.

Tremendous REST API (orders endpoint).
Auth: Bearer token via API key.
All calls have 10-second timeout per project standard.

The referral id is sent as the order's external_id. Tremendous treats a
repeated external_id as the same order, so a retried payout can never pay
twice. Service credit is applied on the contractor's books, not paid out.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from refertrack.errors import RewardDispatchError
from refertrack.utils.logging import mask_email

logger = logging.getLogger(__name__)

TIMEOUT = 10.0
CURRENCY = "USD"

PRODUCTS_BY_REWARD_TYPE = {
    "gift_card": ["GIFTCARD"],
    "direct_payment": ["PAYMENT"],
}


class RewardDispatcher(ABC):
    """Abstract base class for payout providers."""

    @abstractmethod
    async def payout(
        self,
        recipient: dict,
        amount: float,
        reward_type: str,
        *,
        idempotency_key: str,
    ) -> dict:
        """
        Pay a reward to {"email", "name"}.
        Returns: {"transaction_id": str, "status": str}
        Raises RewardDispatchError on failure.
        """
        ...


class TremendousRewardDispatcher(RewardDispatcher):
    """Tremendous API integration."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        funding_source_id: str = "balance",
        campaign_id: Optional[str] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.funding_source_id = funding_source_id
        self.campaign_id = campaign_id
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        """Make an authenticated request to the Tremendous API."""
        async with httpx.AsyncClient(timeout=TIMEOUT) as client:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers,
                json=json,
            )
            response.raise_for_status()
            return response.json()

    def _build_order(self, recipient: dict, amount: float, reward_type: str, external_id: str) -> dict:
        reward = {
            "value": {"denomination": round(float(amount), 2), "currency_code": CURRENCY},
            "delivery": {"method": "EMAIL"},
            "recipient": {"name": recipient.get("name") or recipient["email"], "email": recipient["email"]},
        }
        if self.campaign_id:
            reward["campaign_id"] = self.campaign_id
        else:
            reward["products"] = PRODUCTS_BY_REWARD_TYPE[reward_type]
        return {
            "external_id": external_id,
            "payment": {"funding_source_id": self.funding_source_id},
            "reward": reward,
        }

    async def payout(
        self,
        recipient: dict,
        amount: float,
        reward_type: str,
        *,
        idempotency_key: str,
    ) -> dict:
        if reward_type == "service_credit":
            logger.info(
                "Service credit of %.2f applied for %s",
                amount, mask_email(recipient.get("email")),
                extra={"referral_id": idempotency_key, "provider": "local"},
            )
            return {"transaction_id": f"CREDIT-{idempotency_key}", "status": "sent"}

        if reward_type not in PRODUCTS_BY_REWARD_TYPE:
            raise RewardDispatchError(f"Unsupported reward type: {reward_type}")
        if not self.api_key:
            raise RewardDispatchError("Tremendous not configured")
        if not recipient.get("email"):
            raise RewardDispatchError("Reward recipient has no email address")

        try:
            data = await self._request(
                "POST", "/orders",
                json=self._build_order(recipient, amount, reward_type, idempotency_key),
            )
        except httpx.HTTPStatusError as e:
            logger.error(
                "Tremendous order rejected: status=%d body=%s",
                e.response.status_code, e.response.text[:200],
                extra={"referral_id": idempotency_key, "provider": "tremendous"},
            )
            raise RewardDispatchError(
                f"Tremendous rejected the order ({e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "Tremendous request failed: %s", str(e),
                extra={"referral_id": idempotency_key, "provider": "tremendous"},
            )
            raise RewardDispatchError(f"Tremendous request failed: {e}") from e

        order = data.get("order", data)
        rewards = order.get("rewards") or []
        transaction_id = rewards[0].get("id") if rewards else order.get("id")
        if not transaction_id:
            raise RewardDispatchError("Tremendous response missing order id")

        logger.info(
            "Reward paid: %s %.2f to %s (order %s)",
            reward_type, amount, mask_email(recipient["email"]), order.get("id"),
            extra={"referral_id": idempotency_key, "provider": "tremendous"},
        )
        return {"transaction_id": str(transaction_id), "status": str(order.get("status", "sent")).lower()}


def get_reward_dispatcher() -> TremendousRewardDispatcher:
    """Build the payout provider from settings."""
    from refertrack.config import get_settings
    settings = get_settings()
    return TremendousRewardDispatcher(
        api_key=settings.tremendous_api_key,
        base_url=settings.tremendous_base_url,
        funding_source_id=settings.tremendous_funding_source_id,
        campaign_id=settings.tremendous_campaign_id or None,
    )
