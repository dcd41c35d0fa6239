"""
Tests for refertrack/services/metrics.py - conversion math and idempotent recompute.
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from refertrack.models.referral import Referral, ReferralStatus
from refertrack.services.metrics import compute_metrics, recompute

CREATED = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _referral(status, install_after_days=None, contractor_id=None) -> Referral:
    return Referral(
        id=uuid.uuid4(),
        contractor_id=contractor_id or uuid.uuid4(),
        referrer_id=uuid.uuid4(),
        referral_code=uuid.uuid4().hex[:8].upper(),
        status=status,
        verified=False,
        installation_date=(
            CREATED + timedelta(days=install_after_days) if install_after_days is not None else None
        ),
        created_at=CREATED,
        version=1,
    )


class TestComputeMetrics:
    def test_empty(self):
        result = compute_metrics([])
        assert result == {
            "total_referrals": 0,
            "converted_referrals": 0,
            "conversion_rate": Decimal("0.00"),
            "average_time_to_conversion": None,
        }

    def test_one_of_two_converted(self):
        result = compute_metrics([
            _referral(ReferralStatus.COMPLETE, 10),
            _referral(ReferralStatus.PENDING),
        ])
        assert result["total_referrals"] == 2
        assert result["converted_referrals"] == 1
        assert result["conversion_rate"] == Decimal("50.00")
        assert result["average_time_to_conversion"] == 10

    def test_rate_rounds_to_two_places(self):
        result = compute_metrics([
            _referral(ReferralStatus.COMPLETE, 1),
            _referral(ReferralStatus.PENDING),
            _referral(ReferralStatus.WAIT_FOR_INSTALL, 30),
        ])
        assert result["conversion_rate"] == Decimal("33.33")

    def test_average_floors(self):
        result = compute_metrics([
            _referral(ReferralStatus.COMPLETE, 3),
            _referral(ReferralStatus.COMPLETE, 4),
        ])
        assert result["average_time_to_conversion"] == 3

    def test_waiting_referrals_not_in_average(self):
        result = compute_metrics([
            _referral(ReferralStatus.COMPLETE, 2),
            _referral(ReferralStatus.WAIT_FOR_INSTALL, 100),
        ])
        assert result["average_time_to_conversion"] == 2

    def test_all_converted(self):
        result = compute_metrics([_referral(ReferralStatus.COMPLETE, 0)])
        assert result["conversion_rate"] == Decimal("100.00")
        assert result["average_time_to_conversion"] == 0


class TestRecompute:
    async def test_creates_snapshot(self, memory_repo):
        contractor_id = uuid.uuid4()
        referral = _referral(ReferralStatus.COMPLETE, 5, contractor_id)
        memory_repo.referrals[referral.id] = referral

        metric = await recompute(memory_repo, contractor_id)

        assert metric.total_referrals == 1
        assert metric.converted_referrals == 1
        assert metric.conversion_rate == Decimal("100.00")
        assert metric.average_time_to_conversion == 5

    async def test_second_recompute_leaves_row_untouched(self, memory_repo):
        """Nothing changed in between - same values, same updated_at."""
        contractor_id = uuid.uuid4()
        referral = _referral(ReferralStatus.PENDING, contractor_id=contractor_id)
        memory_repo.referrals[referral.id] = referral

        first = await recompute(memory_repo, contractor_id)
        first_updated_at = first.updated_at
        second = await recompute(memory_repo, contractor_id)

        assert second.updated_at == first_updated_at
        assert second.total_referrals == 1

    async def test_recompute_picks_up_changes(self, memory_repo):
        contractor_id = uuid.uuid4()
        referral = _referral(ReferralStatus.PENDING, contractor_id=contractor_id)
        memory_repo.referrals[referral.id] = referral
        await recompute(memory_repo, contractor_id)

        referral.status = ReferralStatus.COMPLETE
        referral.installation_date = CREATED + timedelta(days=7)
        metric = await recompute(memory_repo, contractor_id)

        assert metric.converted_referrals == 1
        assert metric.average_time_to_conversion == 7

    async def test_other_contractors_ignored(self, memory_repo):
        contractor_id = uuid.uuid4()
        mine = _referral(ReferralStatus.PENDING, contractor_id=contractor_id)
        theirs = _referral(ReferralStatus.COMPLETE, 1)
        memory_repo.referrals[mine.id] = mine
        memory_repo.referrals[theirs.id] = theirs

        metric = await recompute(memory_repo, contractor_id)
        assert metric.total_referrals == 1
        assert metric.converted_referrals == 0
