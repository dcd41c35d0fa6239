"""
Referral lifecycle - status is a pure function of installation date and the
verified flag.

    pending           no installation date
    wait_for_install  installation date in the future, not verified
    complete          verified, or installation date today or earlier

Dates compare as UTC calendar dates; time-of-day is ignored.
"""
from datetime import date, datetime
from typing import Optional, Union

from refertrack.models.referral import Referral, ReferralStatus
from refertrack.utils.timezone import calendar_date, ensure_utc, utc_now, utc_today


def compute_status(
    installation_date: Optional[Union[date, datetime]],
    verified: bool,
    today: Optional[date] = None,
) -> ReferralStatus:
    if installation_date is None:
        return ReferralStatus.PENDING
    if verified:
        return ReferralStatus.COMPLETE
    today = today or utc_today()
    if calendar_date(installation_date) <= today:
        return ReferralStatus.COMPLETE
    return ReferralStatus.WAIT_FOR_INSTALL


def is_status_stale(referral: Referral, today: Optional[date] = None) -> bool:
    """True when the stored status no longer matches the dates (an install day has arrived)."""
    return compute_status(referral.installation_date, referral.verified, today) != referral.status


def is_expired(referral: Referral, now: Optional[datetime] = None) -> bool:
    """Only pending referrals expire; once an install is on the books the code is spent."""
    if referral.status != ReferralStatus.PENDING or referral.expires_at is None:
        return False
    return ensure_utc(referral.expires_at) < (now or utc_now())
