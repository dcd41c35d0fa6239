"""
Tests for refertrack/services/lifecycle.py - derived status, staleness, expiry.
"""
from datetime import date, datetime, timedelta, timezone

from refertrack.models.referral import Referral, ReferralStatus
from refertrack.services.lifecycle import compute_status, is_expired, is_status_stale

TODAY = date(2026, 3, 15)


def _referral(**fields) -> Referral:
    values = {
        "status": ReferralStatus.PENDING,
        "verified": False,
        "installation_date": None,
        "expires_at": None,
    }
    values.update(fields)
    return Referral(**values)


class TestComputeStatus:
    def test_no_installation_date_is_pending(self):
        assert compute_status(None, False, TODAY) == ReferralStatus.PENDING

    def test_no_installation_date_pending_even_if_verified(self):
        assert compute_status(None, True, TODAY) == ReferralStatus.PENDING

    def test_future_unverified_waits(self):
        assert compute_status(date(2026, 3, 16), False, TODAY) == ReferralStatus.WAIT_FOR_INSTALL

    def test_future_verified_is_complete(self):
        assert compute_status(date(2026, 4, 1), True, TODAY) == ReferralStatus.COMPLETE

    def test_today_is_complete(self):
        assert compute_status(date(2026, 3, 15), False, TODAY) == ReferralStatus.COMPLETE

    def test_past_is_complete(self):
        assert compute_status(date(2026, 3, 14), False, TODAY) == ReferralStatus.COMPLETE

    def test_time_of_day_ignored(self):
        """Late on install day still counts as today."""
        late = datetime(2026, 3, 15, 23, 59, tzinfo=timezone.utc)
        assert compute_status(late, False, TODAY) == ReferralStatus.COMPLETE

    def test_naive_datetime_treated_as_utc(self):
        tomorrow = datetime(2026, 3, 16, 0, 0)
        assert compute_status(tomorrow, False, TODAY) == ReferralStatus.WAIT_FOR_INSTALL


class TestIsStatusStale:
    def test_wait_for_install_becomes_stale_on_install_day(self):
        referral = _referral(
            status=ReferralStatus.WAIT_FOR_INSTALL,
            installation_date=datetime(2026, 3, 15, tzinfo=timezone.utc),
        )
        assert is_status_stale(referral, TODAY)

    def test_still_waiting_is_fresh(self):
        referral = _referral(
            status=ReferralStatus.WAIT_FOR_INSTALL,
            installation_date=datetime(2026, 3, 20, tzinfo=timezone.utc),
        )
        assert not is_status_stale(referral, TODAY)

    def test_pending_without_date_is_fresh(self):
        assert not is_status_stale(_referral(), TODAY)


class TestIsExpired:
    def test_pending_past_expiry(self):
        now = datetime(2026, 3, 15, tzinfo=timezone.utc)
        referral = _referral(expires_at=now - timedelta(seconds=1))
        assert is_expired(referral, now)

    def test_pending_before_expiry(self):
        now = datetime(2026, 3, 15, tzinfo=timezone.utc)
        referral = _referral(expires_at=now + timedelta(days=1))
        assert not is_expired(referral, now)

    def test_no_expiry_never_expires(self):
        assert not is_expired(_referral(), datetime(2030, 1, 1, tzinfo=timezone.utc))

    def test_non_pending_never_expires(self):
        now = datetime(2026, 3, 15, tzinfo=timezone.utc)
        referral = _referral(
            status=ReferralStatus.WAIT_FOR_INSTALL,
            expires_at=now - timedelta(days=30),
        )
        assert not is_expired(referral, now)
