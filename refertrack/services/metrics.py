"""
Metrics aggregator - per-contractor conversion snapshot.

compute_metrics is pure; recompute reads the contractor's referrals and
upserts the single ReferralMetric row. updated_at only moves when a value
changed, so recomputing twice with nothing in between returns the same row.
"""
import logging
import math
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from refertrack.models.referral import Referral, ReferralStatus
from refertrack.models.referral_metric import ReferralMetric
from refertrack.utils.timezone import ensure_utc, utc_now

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")


def _conversion_days(referral: Referral) -> Optional[int]:
    if referral.installation_date is None or referral.created_at is None:
        return None
    delta = ensure_utc(referral.installation_date) - ensure_utc(referral.created_at)
    return delta.days  # floors, same as whole elapsed days


def compute_metrics(referrals: Iterable[Referral]) -> dict:
    """
    Returns:
        {"total_referrals": int, "converted_referrals": int,
         "conversion_rate": Decimal, "average_time_to_conversion": int|None}
    """
    referrals = list(referrals)
    total = len(referrals)
    converted = [r for r in referrals if r.status == ReferralStatus.COMPLETE]

    if total:
        rate = (Decimal(len(converted)) / Decimal(total) * 100).quantize(_TWO_PLACES, ROUND_HALF_UP)
    else:
        rate = Decimal("0.00")

    days = [d for d in (_conversion_days(r) for r in converted) if d is not None]
    average = math.floor(sum(days) / len(days)) if days else None

    return {
        "total_referrals": total,
        "converted_referrals": len(converted),
        "conversion_rate": rate,
        "average_time_to_conversion": average,
    }


def _unchanged(metric: ReferralMetric, values: dict) -> bool:
    return (
        metric.total_referrals == values["total_referrals"]
        and metric.converted_referrals == values["converted_referrals"]
        and Decimal(metric.conversion_rate) == values["conversion_rate"]
        and metric.average_time_to_conversion == values["average_time_to_conversion"]
    )


async def recompute(repository, contractor_id: uuid.UUID) -> ReferralMetric:
    """Recompute and upsert the metric snapshot for one contractor."""
    referrals = await repository.list_referrals(contractor_id=contractor_id)
    values = compute_metrics(referrals)

    existing = await repository.get_metric(contractor_id)
    if existing is not None and _unchanged(existing, values):
        return existing

    values["updated_at"] = utc_now()
    metric = await repository.save_metric(contractor_id, values)
    logger.info(
        "Referral metrics recomputed: total=%d converted=%d rate=%s",
        values["total_referrals"], values["converted_referrals"], values["conversion_rate"],
        extra={"contractor_id": str(contractor_id)},
    )
    return metric
